"""
Order Wizard

Tracks the seven-step order entry form: current step, per-step validation,
fields the operator set by hand, and whether the order is anchored to an
existing prescription.
"""

from typing import Any, Dict, Iterable, List, Optional, Set

from loguru import logger
from pydantic import ValidationError

from genorder.core.exceptions import ValidationFailure, field_errors
from genorder.domain.autofill.service import FieldPropagationResolver
from genorder.domain.resources.models import GenomeTest, Order, Patient, PrescriptionRecord
from genorder.domain.workflow.models import OrderSnapshot, StepValidation, WizardStep


WIZARD_STEPS: List[WizardStep] = [
    WizardStep(
        number=1,
        name="basic_info",
        fields=(
            "order_name", "order_status", "payment_type", "payment_status", "payment_amount",
            "barcode_id", "prescription_id", "customer_id", "sample_collector_id",
            "staff_analyst_id", "staff_id", "specify_vote_image_path", "order_note",
        ),
        required=("order_name", "payment_type"),
    ),
    WizardStep(
        number=2,
        name="patient",
        fields=(
            "patient_id", "patient_name", "patient_phone", "patient_email", "patient_dob",
            "patient_gender", "patient_job", "patient_contact_name", "patient_contact_phone",
            "patient_address",
        ),
        required_unless_anchored=("patient_name",),
    ),
    WizardStep(
        number=3,
        name="service",
        fields=("service_type", "service_detail", "service_detail_id"),
        required_unless_anchored=("service_type",),
    ),
    WizardStep(
        number=4,
        name="clinical",
        fields=(
            "patient_height", "patient_weight", "patient_history", "family_history",
            "medical_history", "medical_using", "chronic_disease", "toxic_exposure",
            "acute_disease",
        ),
    ),
    WizardStep(
        number=5,
        name="genome_test",
        fields=("genome_test_id", "test_name", "test_sample", "test_content"),
        required_unless_anchored=("genome_test_id",),
    ),
    WizardStep(
        number=6,
        name="sampling_payment",
        fields=(
            "doctor_id", "sampling_site", "sample_collect_date", "embryo_number",
            "notify_patient_email",
        ),
    ),
    WizardStep(
        number=7,
        name="results_note",
        fields=("genetic_test_results", "genetic_test_results_relationship", "specify_note"),
    ),
]

FIRST_STEP = WIZARD_STEPS[0].number
LAST_STEP = WIZARD_STEPS[-1].number

FORM_FIELDS = frozenset(OrderSnapshot.model_fields)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class OrderWizard:
    """Working state of one order entry session"""

    def __init__(
        self,
        values: Optional[Dict[str, Any]] = None,
        resolver: Optional[FieldPropagationResolver] = None,
    ):
        self.resolver = resolver or FieldPropagationResolver()
        self.values: Dict[str, Any] = {}
        self.manually_set: Set[str] = set()
        self.current_step = FIRST_STEP
        for name, value in (values or {}).items():
            if value is not None:
                self.set_field(name, value, manual=False)

    @classmethod
    def for_order(
        cls, order: Order, resolver: Optional[FieldPropagationResolver] = None
    ) -> "OrderWizard":
        """Edit session prefilled from an existing order"""
        wizard = cls(
            values={
                "order_id": order.order_id,
                "order_name": order.order_name,
                "order_status": order.order_status,
                "payment_type": order.payment_type,
                "payment_status": order.payment_status,
                "payment_amount": order.payment_amount,
                "barcode_id": order.barcode_id,
                "customer_id": order.customer_id,
                "sample_collector_id": order.sample_collector_id,
                "staff_analyst_id": order.staff_analyst_id,
                "staff_id": order.staff_id,
                "specify_vote_image_path": order.specify_vote_image_path,
                "order_note": order.order_note,
                "known_labcodes": order.labcodes,
            },
            resolver=resolver,
        )
        if order.prescription:
            wizard.select_prescription(order.prescription)
        elif order.prescription_id:
            wizard.set_field("prescription_id", order.prescription_id, manual=False)
        return wizard

    # ==================== Field state ====================

    @property
    def is_anchored(self) -> bool:
        return not _is_blank(self.values.get("prescription_id"))

    def set_field(self, name: str, value: Any, manual: bool = True) -> None:
        if name not in FORM_FIELDS:
            raise ValidationFailure(
                message=f"Unknown form field: {name}", details={"field": name}
            )
        self.values[name] = value
        if manual:
            self.manually_set.add(name)

    def apply_autofill(self, proposal: Dict[str, Any]) -> Dict[str, Any]:
        """Apply resolver output, leaving manually set fields untouched"""
        applied = {}
        for name, value in proposal.items():
            if name in self.manually_set or name not in FORM_FIELDS:
                continue
            self.values[name] = value
            applied[name] = value
        if applied:
            logger.debug(f"Autofill applied fields={sorted(applied)}")
        return applied

    def select_prescription(self, record: PrescriptionRecord) -> Dict[str, Any]:
        self.set_field("prescription_id", record.prescription_id)
        return self.apply_autofill(self.resolver.resolve_prescription(record, self.manually_set))

    def select_genome_test(self, genome_test: GenomeTest) -> Dict[str, Any]:
        self.set_field("genome_test_id", genome_test.test_id)
        return self.apply_autofill(self.resolver.resolve_genome_test(genome_test, self.manually_set))

    def select_patient(self, patient: Patient) -> Dict[str, Any]:
        return self.apply_autofill(self.resolver.resolve_patient(patient, self.manually_set))

    def clear_prescription(self) -> None:
        self.values.pop("prescription_id", None)
        self.manually_set.discard("prescription_id")

    # ==================== Navigation ====================

    def step(self, number: int) -> WizardStep:
        for wizard_step in WIZARD_STEPS:
            if wizard_step.number == number:
                return wizard_step
        raise ValidationFailure(message=f"Unknown wizard step: {number}", details={"step": number})

    def validate_step(self, number: Optional[int] = None) -> StepValidation:
        wizard_step = self.step(self.current_step if number is None else number)
        required: Iterable[str] = wizard_step.required
        if not self.is_anchored:
            required = tuple(required) + wizard_step.required_unless_anchored
        missing = [name for name in required if _is_blank(self.values.get(name))]
        return StepValidation(step=wizard_step.number, valid=not missing, missing_fields=missing)

    def validate_all(self) -> List[StepValidation]:
        return [self.validate_step(s.number) for s in WIZARD_STEPS]

    def next(self) -> StepValidation:
        """Advance one step; stays put when the current step is invalid"""
        validation = self.validate_step()
        if validation.valid and self.current_step < LAST_STEP:
            self.current_step += 1
        return validation

    def back(self) -> int:
        if self.current_step > FIRST_STEP:
            self.current_step -= 1
        return self.current_step

    def go_to(self, number: int) -> StepValidation:
        """Jump to a step; moving forward requires every step before it to be valid"""
        target = self.step(number)
        for wizard_step in WIZARD_STEPS:
            if wizard_step.number >= target.number:
                break
            validation = self.validate_step(wizard_step.number)
            if not validation.valid:
                self.current_step = wizard_step.number
                return validation
        self.current_step = target.number
        return StepValidation(step=target.number, valid=True)

    # ==================== Submission ====================

    def to_snapshot(self) -> OrderSnapshot:
        missing = [name for v in self.validate_all() for name in v.missing_fields]
        if missing:
            raise ValidationFailure(
                message="Please complete the required fields before submitting",
                details={"missing_fields": missing},
            )
        try:
            return OrderSnapshot.model_validate(self.values)
        except ValidationError as e:
            raise ValidationFailure(
                details={"errors": field_errors(e.errors())}
            ) from e

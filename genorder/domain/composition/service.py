"""
Order Composition Service

Turns one validated order snapshot into the persisted set of backend
resources: patient, clinical profile, service detail, prescription, order
and sample metadata.

The order commit is the success point. Steps before it are critical and stop
the composition on the first failure; nothing already created is rolled back.
Steps after it form a best-effort tail whose failures are logged as
PARTIAL_SUCCESS and never reach the caller.
"""

from typing import Awaitable, Callable, List, Optional
import re

from loguru import logger

from genorder.core.config import settings
from genorder.core.exceptions import (
    BaseCustomException, ErrorKind, NotFound, ValidationFailure,
    classify_failure, map_exception_to_custom,
)
from genorder.domain.allocation.service import IdentifierAllocator
from genorder.domain.composition.models import (
    STEP_POLICIES, STEP_STATES, CompositionResult, CompositionRun, CompositionState,
    CompositionStep, StepOutcome, StepPolicy, StepStatus,
)
from genorder.domain.resources.models import (
    BarcodeStatus, CatalogService, ClinicalProfile, GenomeTest, OrderInput, Patient,
    PrescriptionInput, PrescriptionStatus, ServiceType,
)
from genorder.domain.resources.repository import ResourceGateway
from genorder.domain.workflow.models import OrderSnapshot
from genorder.infrastructure.resource_api import ApiResponse

StepAction = Callable[[CompositionRun], Awaitable[StepStatus]]


def _is_missing(envelope: ApiResponse) -> bool:
    return envelope.status_code == 404 or "not found" in (envelope.error or "").lower()


def split_medications(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    items = [item.strip() for item in re.split(r"[,\n]", value) if item.strip()]
    return items or None


def merge_labcodes(known: List[str], new: Optional[str]) -> List[str]:
    merged: List[str] = []
    for labcode in [*known, new]:
        if labcode and labcode not in merged:
            merged.append(labcode)
    return merged


def service_matches(entry: CatalogService, service_type: ServiceType) -> bool:
    if not entry.service_id or not entry.service_id.strip() or not entry.name:
        return False
    name = entry.name.strip().lower()
    aliases = [a.lower() for a in settings.SERVICE_NAME_ALIASES.get(service_type.value, [])]
    return name == service_type.value or name in aliases


class CompositionOrchestrator:
    """Runs the composition steps in order under their failure policy"""

    def __init__(self, gateway: ResourceGateway):
        self.gateway = gateway

    # ==================== Entry points ====================

    async def compose(self, snapshot: OrderSnapshot) -> CompositionResult:
        """Commit the order, then run the tail to completion"""
        run = CompositionRun(snapshot)
        await self.commit(run)
        await self.run_tail(run)
        return run.to_result()

    async def commit(self, run: CompositionRun) -> CompositionRun:
        """Critical path up to and including the order commit.

        Raises the first critical failure; the run is left in ``FAILED``.
        """
        s = run.snapshot
        logger.info(
            f"Composition started flow={'edit' if s.is_edit else 'create'} "
            f"order_name={s.order_name} anchored={s.is_anchored} "
            f"service_type={s.service_type.value if s.service_type else None}"
        )
        await self._run_step(run, CompositionStep.RESOLVE_PATIENT, self._resolve_patient)
        await self._run_step(run, CompositionStep.UPSERT_CLINICAL_PROFILE, self._upsert_clinical_profile)
        await self._run_step(run, CompositionStep.CREATE_SERVICE_DETAIL, self._create_service_detail)
        await self._run_step(run, CompositionStep.RESOLVE_PRESCRIPTION, self._resolve_prescription)
        await self._run_step(run, CompositionStep.COMMIT_ORDER, self._commit_order)
        logger.info(f"Order committed order_id={run.order_id} prescription_id={run.prescription_id}")
        return run

    async def run_tail(self, run: CompositionRun) -> CompositionRun:
        """Best-effort steps after the commit. Never raises."""
        if not run.order_committed:
            logger.warning("Tail requested for a run without a committed order; ignoring")
            return run
        for step, action in (
            (CompositionStep.ENABLE_PATIENT_EMAIL, self._enable_patient_email),
            (CompositionStep.CREATE_SAMPLE_METADATA, self._create_sample_metadata),
            (CompositionStep.ATTACH_LABCODE, self._attach_labcode),
            (CompositionStep.FORWARD_PRESCRIPTION_STATUS, self._forward_prescription_status),
            (CompositionStep.RESET_BARCODE_STATUS, self._reset_barcode_status),
        ):
            await self._run_step(run, step, action)
        run.state = CompositionState.DONE
        result = run.to_result()
        logger.info(
            f"Composition done order_id={run.order_id} labcode={run.labcode} "
            f"partial_failures={[s.value for s in result.partial_failures]}"
        )
        return run

    # ==================== Step runner ====================

    async def _run_step(self, run: CompositionRun, step: CompositionStep, action: StepAction) -> None:
        policy = STEP_POLICIES[step]
        try:
            status = await action(run)
        except BaseCustomException as e:
            error = e
        except Exception as e:
            if policy == StepPolicy.CRITICAL:
                error = map_exception_to_custom(e)
            else:
                error = e
        else:
            run.outcomes.append(StepOutcome(step=step, policy=policy, status=status))
            if step in STEP_STATES:
                run.state = STEP_STATES[step]
            logger.info(f"Composition step={step.value} status={status.value} state={run.state.value}")
            return

        kind = error.kind if isinstance(error, BaseCustomException) else ErrorKind.REMOTE_FAILURE
        message = error.message if isinstance(error, BaseCustomException) else str(error)
        run.outcomes.append(
            StepOutcome(step=step, policy=policy, status=StepStatus.FAILED, error_kind=kind, message=message)
        )

        if policy == StepPolicy.BEST_EFFORT:
            logger.warning(
                f"PARTIAL_SUCCESS step={step.value} order_id={run.order_id} "
                f"kind={kind.value} error={message}"
            )
            return

        run.state = CompositionState.FAILED
        if run.created_patient_id:
            error.details.setdefault("created_patient_id", run.created_patient_id)
        logger.error(
            f"Composition failed step={step.value} kind={kind.value} "
            f"created_patient_id={run.created_patient_id} error={message}"
        )
        raise error

    # ==================== Critical steps ====================

    async def _load_prescription(self, run: CompositionRun) -> None:
        s = run.snapshot
        if run.prescription_record is not None or not s.prescription_id:
            return
        envelope = await self.gateway.prescriptions.get_by_id(s.prescription_id)
        if not envelope.success:
            raise classify_failure(envelope, "prescription", "get")
        if envelope.data is None:
            raise NotFound(
                message="The selected prescription could not be found.",
                details={"resource": "prescription", "prescription_id": s.prescription_id},
            )
        run.prescription_record = envelope.data

    def _patient_from_snapshot(self, run: CompositionRun, patient_id: str) -> Patient:
        s = run.snapshot
        return Patient(
            patient_id=patient_id,
            patient_name=s.patient_name,
            patient_phone=s.patient_phone or settings.PLACEHOLDER_PATIENT_PHONE,
            patient_email=s.patient_email,
            patient_dob=s.patient_dob,
            gender=s.patient_gender,
            patient_job=s.patient_job,
            patient_contact_name=s.patient_contact_name,
            patient_contact_phone=s.patient_contact_phone,
            patient_address=s.patient_address,
            hospital_id=settings.HOSPITAL_ID,
        )

    async def _resolve_patient(self, run: CompositionRun) -> StepStatus:
        s = run.snapshot

        patient_id = s.patient_id
        if s.is_anchored and not patient_id:
            # Patient identity comes from the selected prescription
            await self._load_prescription(run)
            patient_id = run.prescription_record.resolved_patient_id

        if s.is_anchored and not s.is_edit:
            if not patient_id:
                raise ValidationFailure(
                    message="The selected prescription is not linked to a patient",
                    details={"field": "prescription_id"},
                )
            run.patient_id = patient_id
            return StepStatus.SUCCEEDED

        if patient_id:
            run.patient_id = patient_id
            if not (s.patient_name and s.patient_phone):
                return StepStatus.SUCCEEDED
            envelope = await self.gateway.patients.update(
                patient_id, self._patient_from_snapshot(run, patient_id)
            )
            if not envelope.success:
                raise classify_failure(envelope, "patient", "update")
            return StepStatus.SUCCEEDED

        if s.patient_name:
            patient_id = IdentifierAllocator.generate_patient_id()
            envelope = await self.gateway.patients.create(self._patient_from_snapshot(run, patient_id))
            if not envelope.success:
                raise classify_failure(envelope, "patient", "create")
            created = envelope.data
            run.patient_id = (created.patient_id if created else None) or patient_id
            run.created_patient_id = run.patient_id
            return StepStatus.SUCCEEDED

        if s.genome_test_id or s.service_type:
            raise ValidationFailure(
                message="Patient information is required for a genetic test order",
                details={"field": "patient_name"},
            )
        return StepStatus.SKIPPED

    async def _resolve_service_id(self, service_type: ServiceType) -> str:
        envelope = await self.gateway.services.get_all()
        if not envelope.success:
            raise classify_failure(envelope, "service", "list")
        for entry in envelope.data or []:
            if service_matches(entry, service_type):
                return entry.service_id
        raise NotFound(
            message=f"No catalog service is configured for {service_type.value}",
            details={"resource": "service", "service_type": service_type.value},
        )

    async def _create_service_detail(self, run: CompositionRun) -> StepStatus:
        s = run.snapshot
        if s.service_type is None:
            return StepStatus.SKIPPED
        if s.service_detail_id:
            run.service_detail_id = s.service_detail_id
            return StepStatus.SKIPPED

        await self._load_prescription(run)
        if run.prescription_record is not None:
            embedded = run.prescription_record.embedded_detail(s.service_type)
            if embedded is not None:
                run.service_detail_id = embedded.id
                return StepStatus.SKIPPED

        if not run.patient_id:
            raise ValidationFailure(
                message="A patient is required before service details can be saved",
                details={"field": "patient_name"},
            )
        run.service_id = await self._resolve_service_id(s.service_type)
        envelope = await self.gateway.service_details.create(
            s.service_detail, run.service_id, run.patient_id
        )
        if not envelope.success:
            raise classify_failure(envelope, "service_detail", "create")
        run.service_detail_id = envelope.data.id if envelope.data else None
        return StepStatus.SUCCEEDED

    async def _build_prescription(self, run: CompositionRun) -> PrescriptionInput:
        s = run.snapshot
        envelope = await self.gateway.genome_tests.get_by_id(s.genome_test_id)
        if not envelope.success:
            raise classify_failure(envelope, "genome_test", "get")
        genome_test: Optional[GenomeTest] = envelope.data
        if genome_test is None:
            raise NotFound(
                message="The selected genome test could not be found.",
                details={"resource": "genome_test", "genome_test_id": s.genome_test_id},
            )
        if not genome_test.service or not genome_test.service.service_id:
            raise ValidationFailure(
                message="The selected genome test is not linked to a service",
                details={"field": "genome_test_id", "genome_test_id": s.genome_test_id},
            )
        if not run.patient_id:
            raise ValidationFailure(
                message="A patient is required to create a prescription",
                details={"field": "patient_name"},
            )
        return PrescriptionInput(
            service_id=genome_test.service.service_id,
            patient_id=run.patient_id,
            genome_test_id=genome_test.test_id,
            embryo_number=s.embryo_number,
            hospital_id=settings.HOSPITAL_ID,
            doctor_id=s.doctor_id,
            sampling_site=s.sampling_site,
            sample_collect_date=s.sample_collect_date,
            genetic_test_results=s.genetic_test_results,
            genetic_test_results_relationship=s.genetic_test_results_relationship,
            specify_note=s.specify_note,
            send_email_patient=False,
        )

    async def _resolve_prescription(self, run: CompositionRun) -> StepStatus:
        s = run.snapshot

        if s.prescription_id:
            if s.is_edit and s.genome_test_id:
                payload = await self._build_prescription(run)
                envelope = await self.gateway.prescriptions.update(s.prescription_id, payload)
                if not envelope.success:
                    raise classify_failure(envelope, "prescription", "update")
                run.prescription_payload = payload
            run.prescription_id = s.prescription_id
            return StepStatus.SUCCEEDED

        if not s.genome_test_id:
            return StepStatus.SKIPPED

        payload = await self._build_prescription(run)
        envelope = await self.gateway.prescriptions.create(payload)
        if not envelope.success:
            raise classify_failure(envelope, "prescription", "create")
        run.prescription_id = envelope.data.prescription_id
        run.prescription_payload = payload
        return StepStatus.SUCCEEDED

    async def _commit_order(self, run: CompositionRun) -> StepStatus:
        s = run.snapshot
        payload = OrderInput(
            order_name=s.order_name,
            order_status=s.order_status,
            payment_status=s.payment_status,
            payment_type=s.payment_type,
            prescription_id=run.prescription_id,
            customer_id=s.customer_id,
            sample_collector_id=s.sample_collector_id,
            staff_analyst_id=s.staff_analyst_id,
            staff_id=s.staff_id,
            barcode_id=s.barcode_id,
            payment_amount=s.payment_amount if s.payment_amount and s.payment_amount > 0 else None,
            specify_vote_image_path=s.specify_vote_image_path,
            order_note=s.order_note,
            # Order update replaces the whole record
            patient_metadata_ids=list(run.known_labcodes) if s.is_edit and run.known_labcodes else None,
        )
        if s.is_edit:
            envelope = await self.gateway.orders.update(s.order_id, payload)
            operation = "update"
        else:
            envelope = await self.gateway.orders.create(payload)
            operation = "create"
        if not envelope.success:
            raise classify_failure(envelope, "order", operation)

        order = envelope.data
        run.order_id = (order.order_id if order else None) or s.order_id
        if run.order_id is None:
            raise classify_failure(
                ApiResponse.failure(error="Order response did not include an id", status_code=envelope.status_code),
                "order",
                operation,
            )
        run.order_payload = payload
        if order is not None:
            run.known_labcodes = merge_labcodes(run.known_labcodes + order.labcodes, None)
        return StepStatus.SUCCEEDED

    # ==================== Best-effort steps ====================

    async def _upsert_clinical_profile(self, run: CompositionRun) -> StepStatus:
        s = run.snapshot
        values = s.clinical_values()
        if not run.patient_id or not values:
            return StepStatus.SKIPPED
        values["medical_using"] = split_medications(values.get("medical_using"))
        profile = ClinicalProfile(patient_id=run.patient_id, **values)
        repo = self.gateway.clinical_profiles

        existing = await repo.get_by_patient_id(run.patient_id)
        if existing.success and existing.data and existing.data.patient_clinical_id:
            envelope = await repo.update(existing.data.patient_clinical_id, profile)
            if not envelope.success:
                raise classify_failure(envelope, "clinical_profile", "update")
            return StepStatus.SUCCEEDED
        if not existing.success and not _is_missing(existing):
            raise classify_failure(existing, "clinical_profile", "get")

        envelope = await repo.create(profile)
        if envelope.success:
            return StepStatus.SUCCEEDED
        if "exist" not in (envelope.error or "").lower():
            raise classify_failure(envelope, "clinical_profile", "create")

        # Created concurrently since the first read
        existing = await repo.get_by_patient_id(run.patient_id)
        if not existing.success or not existing.data or not existing.data.patient_clinical_id:
            raise classify_failure(envelope, "clinical_profile", "create")
        envelope = await repo.update(existing.data.patient_clinical_id, profile)
        if not envelope.success:
            raise classify_failure(envelope, "clinical_profile", "update")
        return StepStatus.SUCCEEDED

    async def _enable_patient_email(self, run: CompositionRun) -> StepStatus:
        s = run.snapshot
        if not (s.notify_patient_email and s.patient_email):
            return StepStatus.SKIPPED
        if not run.prescription_id or run.prescription_payload is None:
            return StepStatus.SKIPPED
        payload = run.prescription_payload.model_copy(update={"send_email_patient": True})
        envelope = await self.gateway.prescriptions.update(run.prescription_id, payload)
        if not envelope.success:
            raise classify_failure(envelope, "prescription", "enable_email")
        return StepStatus.SUCCEEDED

    async def _create_sample_metadata(self, run: CompositionRun) -> StepStatus:
        s = run.snapshot
        if not run.prescription_id or not run.patient_id:
            return StepStatus.SKIPPED
        if s.is_edit and run.known_labcodes:
            # Edited order already carries its sample metadata
            return StepStatus.SKIPPED
        sample_name = s.sampling_site or s.test_sample or s.patient_name
        envelope = await self.gateway.sample_metadata.create(
            run.prescription_id, run.patient_id, sample_name
        )
        if not envelope.success:
            raise classify_failure(envelope, "sample_metadata", "create")
        run.labcode = envelope.data.labcode if envelope.data else None
        return StepStatus.SUCCEEDED

    async def _attach_labcode(self, run: CompositionRun) -> StepStatus:
        if not run.labcode:
            return StepStatus.SKIPPED
        labcodes = merge_labcodes(run.known_labcodes, run.labcode)
        payload = run.order_payload.model_copy(update={"patient_metadata_ids": labcodes})
        envelope = await self.gateway.orders.update(run.order_id, payload)
        if not envelope.success:
            raise classify_failure(envelope, "order", "attach_labcode")
        run.known_labcodes = labcodes
        run.state = CompositionState.METADATA_ATTACHED
        return StepStatus.SUCCEEDED

    async def _forward_prescription_status(self, run: CompositionRun) -> StepStatus:
        if run.snapshot.order_status != settings.FORWARD_STATUS or not run.prescription_id:
            return StepStatus.SKIPPED
        envelope = await self.gateway.prescriptions.update_status(
            run.prescription_id, PrescriptionStatus.FORWARD_ANALYSIS.value
        )
        if not envelope.success:
            raise classify_failure(envelope, "prescription", "update_status")
        return StepStatus.SUCCEEDED

    async def _reset_barcode_status(self, run: CompositionRun) -> StepStatus:
        s = run.snapshot
        if s.order_status != settings.FORWARD_STATUS or not s.barcode_id:
            return StepStatus.SKIPPED
        envelope = await self.gateway.barcodes.update(s.barcode_id, BarcodeStatus.NOT_PRINTED.value)
        if not envelope.success:
            raise classify_failure(envelope, "barcode", "update_status")
        return StepStatus.SUCCEEDED

"""
Field Propagation Service

Turns a selected record (prescription, genome test, patient) into proposed
form values. Each source has an explicit table of form field -> extractor;
fields the operator set by hand are never proposed.
"""

from typing import Any, AbstractSet, Callable, Dict, Optional
import re

from loguru import logger
from pydantic import BaseModel

from genorder.core.exceptions import ValidationFailure, classify_failure
from genorder.domain.resources.models import GenomeTest, Patient, PrescriptionRecord, ServiceType
from genorder.domain.resources.repository import ResourceGateway

Extractor = Callable[[Any], Any]

PATIENT_FIELDS: Dict[str, Extractor] = {
    "patient_id": lambda p: p.patient_id,
    "patient_name": lambda p: p.patient_name,
    "patient_phone": lambda p: p.patient_phone,
    "patient_email": lambda p: p.patient_email,
    "patient_dob": lambda p: p.patient_dob,
    "patient_gender": lambda p: p.gender.value if p.gender else None,
    "patient_job": lambda p: p.patient_job,
    "patient_contact_name": lambda p: p.patient_contact_name,
    "patient_contact_phone": lambda p: p.patient_contact_phone,
    "patient_address": lambda p: p.patient_address,
}

GENOME_TEST_FIELDS: Dict[str, Extractor] = {
    "genome_test_id": lambda t: t.test_id,
    "test_name": lambda t: t.test_name,
    "test_sample": lambda t: ", ".join(t.test_sample) if t.test_sample else None,
    "test_content": lambda t: t.test_description,
}

PRESCRIPTION_FIELDS: Dict[str, Extractor] = {
    "prescription_id": lambda r: r.prescription_id,
    "genome_test_id": lambda r: r.genome_test_id or (r.genome_test.test_id if r.genome_test else None),
    "doctor_id": lambda r: r.doctor_id,
    "sampling_site": lambda r: r.sampling_site,
    "sample_collect_date": lambda r: r.sample_collect_date,
    "embryo_number": lambda r: r.embryo_number,
    "genetic_test_results": lambda r: r.genetic_test_results,
    "genetic_test_results_relationship": lambda r: r.genetic_test_results_relationship,
    "specify_note": lambda r: r.specify_note,
    "service_type": lambda r: r.service_type,
}

VALID_SERVICE_TYPES = frozenset(t.value for t in ServiceType)


def _propose(
    table: Dict[str, Extractor], source: Any, manually_set: AbstractSet[str]
) -> Dict[str, Any]:
    proposal = {}
    for field, extract in table.items():
        if field in manually_set:
            continue
        value = extract(source)
        if value is None or value == "":
            continue
        proposal[field] = value
    return proposal


class FieldPropagationResolver:
    """Side-effect free: only proposes values, callers apply them"""

    def resolve_patient(
        self, patient: Patient, manually_set: AbstractSet[str] = frozenset()
    ) -> Dict[str, Any]:
        return _propose(PATIENT_FIELDS, patient, manually_set)

    def resolve_genome_test(
        self, genome_test: GenomeTest, manually_set: AbstractSet[str] = frozenset()
    ) -> Dict[str, Any]:
        return _propose(GENOME_TEST_FIELDS, genome_test, manually_set)

    def resolve_prescription(
        self, record: PrescriptionRecord, manually_set: AbstractSet[str] = frozenset()
    ) -> Dict[str, Any]:
        proposal = {}
        if record.patient:
            proposal.update(self.resolve_patient(record.patient, manually_set))
        if record.resolved_patient_id and "patient_id" not in manually_set:
            proposal["patient_id"] = record.resolved_patient_id
        if record.genome_test:
            proposal.update(self.resolve_genome_test(record.genome_test, manually_set))
        proposal.update(_propose(PRESCRIPTION_FIELDS, record, manually_set))

        service_type = proposal.get("service_type")
        if service_type is not None:
            service_type = str(service_type).lower()
            if service_type in VALID_SERVICE_TYPES:
                proposal["service_type"] = service_type
            else:
                del proposal["service_type"]
        return proposal


def normalize_phone(phone: str) -> str:
    digits = re.sub(r"[\s\-()]", "", phone or "")
    if len(digits) < 10:
        raise ValidationFailure(
            message="Phone number must contain at least 10 digits",
            details={"field": "phone"},
        )
    return digits


class PatientLookupResult(BaseModel):
    found: bool
    patient: Optional[Patient] = None
    fields: Dict[str, Any] = {}
    has_previous_orders: bool = False


class PatientLookupService:
    """Existing-patient lookup by phone number"""

    def __init__(self, gateway: ResourceGateway, resolver: Optional[FieldPropagationResolver] = None):
        self.gateway = gateway
        self.resolver = resolver or FieldPropagationResolver()

    async def lookup_by_phone(
        self, phone: str, manually_set: AbstractSet[str] = frozenset()
    ) -> PatientLookupResult:
        phone = normalize_phone(phone)
        envelope = await self.gateway.patients.get_by_phone(phone)
        if not envelope.success:
            if envelope.status_code == 404 or "not found" in (envelope.error or "").lower():
                logger.info(f"No patient for phone={phone}")
                return PatientLookupResult(found=False)
            raise classify_failure(envelope, "patient", "get_by_phone")
        patient: Optional[Patient] = envelope.data
        if patient is None or not patient.patient_id:
            return PatientLookupResult(found=False)

        has_previous_orders = False
        orders = await self.gateway.orders.get_by_patient_id(patient.patient_id)
        if orders.success:
            has_previous_orders = bool(orders.data)
        else:
            logger.warning(
                f"Previous orders unavailable patient_id={patient.patient_id}: {orders.error}"
            )

        logger.info(
            f"Patient found phone={phone} patient_id={patient.patient_id} "
            f"has_previous_orders={has_previous_orders}"
        )
        return PatientLookupResult(
            found=True,
            patient=patient,
            fields=self.resolver.resolve_patient(patient, manually_set),
            has_previous_orders=has_previous_orders,
        )

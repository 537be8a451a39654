from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import date
import enum

from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator, model_validator,
)
from pydantic.alias_generators import to_camel


class ServiceType(str, enum.Enum):
    REPRODUCTION = "reproduction"
    EMBRYO = "embryo"
    DISEASE = "disease"


class OrderStatus(str, enum.Enum):
    INITIATION = "initiation"
    FORWARD_ANALYSIS = "forward_analysis"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    SAMPLE_ERROR = "sample_error"
    RERUN_TESTING = "rerun_testing"
    COMPLETED = "completed"
    SAMPLE_ADDITION = "sample_addition"


class PrescriptionStatus(str, enum.Enum):
    INITIATION = "initation"  # backend spelling
    PAYMENT_FAILED = "payment_failed"
    WAITING_RECEIVE_SAMPLE = "waiting_receive_sample"
    FORWARD_ANALYSIS = "forward_analysis"
    SAMPLE_COLLECTING = "sample_collecting"
    SAMPLE_RETRIEVED = "sample_retrieved"
    ANALYZE_IN_PROGRESS = "analyze_in_progress"
    RERUN_TESTING = "rerun_testing"
    AWAITING_RESULTS_APPROVAL = "awaiting_results_approval"
    RESULTS_APPROVED = "results_approved"
    CANCELED = "canceled"
    REJECTED = "rejected"
    SAMPLE_ADDITION = "sample_addition"
    SAMPLE_ERROR = "sample_error"
    COMPLETED = "completed"


class BarcodeStatus(str, enum.Enum):
    CREATED = "created"
    NOT_PRINTED = "not_printed"
    PRINTED = "printed"


class PaymentType(str, enum.Enum):
    CASH = "CASH"
    ONLINE_PAYMENT = "ONLINE_PAYMENT"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    UNPAID = "UNPAID"


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


def _date_part(value: Any) -> Any:
    """Backend sends both plain dates and ISO datetimes"""
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


class ResourceModel(BaseModel):
    """Base for records exchanged with the resource API (camelCase on the wire)"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# Older backend builds return these names; they only fill the primary field when it is empty
LEGACY_PATIENT_FIELDS = {
    "name": "patientName",
    "email": "patientEmail",
    "phone": "patientPhone",
    "address": "patientAddress",
    "dateOfBirth": "patientDob",
}


class Patient(ResourceModel):
    patient_id: Optional[str] = None
    patient_code: Optional[str] = None
    patient_name: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_email: Optional[str] = None
    patient_dob: Optional[date] = None
    gender: Optional[Gender] = None
    patient_job: Optional[str] = None
    patient_contact_name: Optional[str] = None
    patient_contact_phone: Optional[str] = None
    patient_address: Optional[str] = None
    hospital_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def fold_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for legacy, primary in LEGACY_PATIENT_FIELDS.items():
            if data.get(legacy) and not data.get(primary):
                data[primary] = data[legacy]
            data.pop(legacy, None)
        return data

    @field_validator("patient_dob", mode="before")
    @classmethod
    def parse_dob(cls, v: Any) -> Any:
        return _date_part(v) or None

    @field_validator("gender", mode="before")
    @classmethod
    def normalize_gender(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return v if v in {g.value for g in Gender} else None
        return v


class ClinicalProfile(ResourceModel):
    patient_clinical_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("patientClinicalId", "patient_clinical_id", "id")
    )
    patient_id: str
    patient_height: Optional[float] = None
    patient_weight: Optional[float] = None
    patient_history: Optional[str] = None
    family_history: Optional[str] = None
    medical_history: Optional[str] = None
    medical_using: Optional[List[str]] = None
    chronic_disease: Optional[str] = None
    toxic_exposure: Optional[str] = None
    acute_disease: Optional[str] = None


class ReproductionDetail(ResourceModel):
    service_type: Literal["reproduction"] = "reproduction"
    fetuses_number: Optional[int] = None
    fetuses_week: Optional[int] = None
    fetuses_day: Optional[int] = None
    ultrasound_day: Optional[date] = None
    head_rump_length: Optional[float] = None
    neck_length: Optional[float] = None
    combined_test_result: Optional[str] = None
    ultrasound_result: Optional[str] = None


class EmbryoDetail(ResourceModel):
    service_type: Literal["embryo"] = "embryo"
    biospy: Optional[str] = None
    biospy_date: Optional[date] = None
    cell_containing_solution: Optional[str] = None
    embryo_create: Optional[int] = None
    embryo_status: Optional[str] = None
    morphological_assessment: Optional[str] = None
    cell_nucleus: Optional[bool] = None
    negative_control: Optional[str] = None


class DiseaseDetail(ResourceModel):
    service_type: Literal["disease"] = "disease"
    symptom: Optional[str] = None
    diagnose: Optional[str] = None
    diagnose_image: Optional[str] = None
    test_related: Optional[str] = None
    treatment_methods: Optional[str] = None
    treatment_time_day: Optional[int] = None
    drug_resistance: Optional[str] = None
    relapse: Optional[str] = None


def _detail_tag(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        tag = value.get("service_type") or value.get("serviceType")
    else:
        tag = getattr(value, "service_type", None)
    return tag.value if isinstance(tag, enum.Enum) else tag


ServiceDetail = Annotated[
    Union[
        Annotated[ReproductionDetail, Tag("reproduction")],
        Annotated[EmbryoDetail, Tag("embryo")],
        Annotated[DiseaseDetail, Tag("disease")],
    ],
    Discriminator(_detail_tag),
]

DETAIL_VARIANTS = {
    ServiceType.REPRODUCTION: ReproductionDetail,
    ServiceType.EMBRYO: EmbryoDetail,
    ServiceType.DISEASE: DiseaseDetail,
}


class ServiceDetailRecord(ResourceModel):
    """A persisted service detail, whatever its variant"""
    id: Optional[str] = None
    service_id: Optional[str] = None
    service_type: Optional[str] = None
    patient_id: Optional[str] = None


class CatalogService(ResourceModel):
    service_id: Optional[str] = None
    name: Optional[str] = None


class GenomeTest(ResourceModel):
    test_id: str
    test_name: Optional[str] = None
    test_description: Optional[str] = None
    test_sample: List[str] = []
    price: Optional[float] = None
    service: Optional[CatalogService] = None

    @field_validator("test_sample", mode="before")
    @classmethod
    def coerce_samples(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v


class PrescriptionRecord(ResourceModel):
    prescription_id: str = Field(
        validation_alias=AliasChoices("specifyVoteID", "specifyId", "prescription_id"),
        serialization_alias="specifyVoteID",
    )
    service_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("serviceID", "serviceId", "service_id"),
        serialization_alias="serviceID",
    )
    service_type: Optional[str] = None
    patient_id: Optional[str] = None
    genome_test_id: Optional[str] = None
    hospital_id: Optional[str] = None
    doctor_id: Optional[str] = None
    sampling_site: Optional[str] = None
    sample_collect_date: Optional[str] = None
    embryo_number: Optional[int] = None
    genetic_test_results: Optional[str] = None
    genetic_test_results_relationship: Optional[str] = None
    specify_status: Optional[str] = None
    specify_note: Optional[str] = None
    send_email_patient: Optional[bool] = None
    patient: Optional[Patient] = None
    genome_test: Optional[GenomeTest] = None
    reproduction_service: Optional[ServiceDetailRecord] = None
    embryo_service: Optional[ServiceDetailRecord] = None
    disease_service: Optional[ServiceDetailRecord] = None

    def embedded_detail(self, service_type: ServiceType) -> Optional[ServiceDetailRecord]:
        return {
            ServiceType.REPRODUCTION: self.reproduction_service,
            ServiceType.EMBRYO: self.embryo_service,
            ServiceType.DISEASE: self.disease_service,
        }[service_type]

    @property
    def resolved_patient_id(self) -> Optional[str]:
        if self.patient_id:
            return self.patient_id
        return self.patient.patient_id if self.patient else None


class PrescriptionInput(ResourceModel):
    service_id: str
    patient_id: str
    genome_test_id: str
    embryo_number: Optional[int] = None
    hospital_id: Optional[str] = None
    doctor_id: Optional[str] = None
    sampling_site: Optional[str] = None
    sample_collect_date: Optional[str] = None
    genetic_test_results: Optional[str] = None
    genetic_test_results_relationship: Optional[str] = None
    specify_note: Optional[str] = None
    send_email_patient: bool = False


class SampleMetadata(ResourceModel):
    labcode: Optional[str] = None
    specify_id: Optional[str] = None
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    sample_name: Optional[str] = None
    status: Optional[str] = None


class Barcode(ResourceModel):
    barcode: str
    status: Optional[str] = None
    create_at: Optional[str] = None
    used_at: Optional[str] = None


class Order(ResourceModel):
    order_id: str
    order_name: Optional[str] = None
    customer_id: Optional[str] = None
    sample_collector_id: Optional[str] = None
    staff_analyst_id: Optional[str] = None
    staff_id: Optional[str] = None
    barcode_id: Optional[str] = None
    prescription_id: Optional[str] = Field(default=None, serialization_alias="specifyId")
    prescription: Optional[PrescriptionRecord] = None
    specify_vote_image_path: Optional[str] = None
    order_status: Optional[str] = None
    order_note: Optional[str] = None
    patient_metadata: List[SampleMetadata] = []
    payment_status: Optional[str] = None
    payment_type: Optional[str] = None
    payment_amount: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def split_specify(cls, data: Any) -> Any:
        """``specifyId`` arrives either as a bare id or as the nested record"""
        if not isinstance(data, dict) or "specifyId" not in data:
            return data
        data = dict(data)
        specify = data.pop("specifyId")
        if isinstance(specify, dict):
            data["prescription"] = specify
            data["prescription_id"] = specify.get("specifyVoteID") or specify.get("specifyId")
        elif specify:
            data["prescription_id"] = str(specify)
        return data

    @field_validator("patient_metadata", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return v or []

    @property
    def labcodes(self) -> List[str]:
        return [m.labcode for m in self.patient_metadata if m.labcode]


class OrderInput(ResourceModel):
    """Full-replace payload for order create and update"""
    order_name: str
    order_status: str
    payment_status: str
    payment_type: str
    prescription_id: Optional[str] = Field(default=None, serialization_alias="specifyId")
    customer_id: Optional[str] = None
    sample_collector_id: Optional[str] = None
    staff_analyst_id: Optional[str] = None
    staff_id: Optional[str] = None
    barcode_id: Optional[str] = None
    payment_amount: Optional[float] = None
    specify_vote_image_path: Optional[str] = None
    order_note: Optional[str] = None
    patient_metadata_ids: Optional[List[str]] = None

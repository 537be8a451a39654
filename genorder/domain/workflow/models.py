from typing import Any, Dict, List, Optional, Tuple
from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from genorder.core.config import settings
from genorder.domain.resources.models import DETAIL_VARIANTS, ServiceDetail, ServiceType


CLINICAL_FIELDS = (
    "patient_height",
    "patient_weight",
    "patient_history",
    "family_history",
    "medical_history",
    "medical_using",
    "chronic_disease",
    "toxic_exposure",
    "acute_disease",
)


class OrderSnapshot(BaseModel):
    """Validated, flat form values handed to the composition orchestrator"""

    model_config = ConfigDict(extra="forbid")

    # Edit flow
    order_id: Optional[str] = None
    known_labcodes: List[str] = []

    # Step 1: basic order info
    order_name: str = Field(min_length=1)
    order_status: str = Field(default_factory=lambda: settings.DEFAULT_ORDER_STATUS)
    payment_type: str = Field(default_factory=lambda: settings.DEFAULT_PAYMENT_TYPE)
    payment_status: str = Field(default_factory=lambda: settings.DEFAULT_PAYMENT_STATUS)
    payment_amount: Optional[float] = None
    barcode_id: Optional[str] = None
    prescription_id: Optional[str] = None
    customer_id: Optional[str] = None
    sample_collector_id: Optional[str] = None
    staff_analyst_id: Optional[str] = None
    staff_id: Optional[str] = None
    specify_vote_image_path: Optional[str] = None
    order_note: Optional[str] = None

    # Step 2: patient
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_email: Optional[str] = None
    patient_dob: Optional[date] = None
    patient_gender: Optional[str] = None
    patient_job: Optional[str] = None
    patient_contact_name: Optional[str] = None
    patient_contact_phone: Optional[str] = None
    patient_address: Optional[str] = None

    # Step 3: service
    service_type: Optional[ServiceType] = None
    service_detail: Optional[ServiceDetail] = None
    service_detail_id: Optional[str] = None

    # Step 4: clinical
    patient_height: Optional[float] = None
    patient_weight: Optional[float] = None
    patient_history: Optional[str] = None
    family_history: Optional[str] = None
    medical_history: Optional[str] = None
    medical_using: Optional[str] = None
    chronic_disease: Optional[str] = None
    toxic_exposure: Optional[str] = None
    acute_disease: Optional[str] = None

    # Step 5: genome test
    genome_test_id: Optional[str] = None
    test_name: Optional[str] = None
    test_sample: Optional[str] = None
    test_content: Optional[str] = None

    # Step 6: sampling & payment
    doctor_id: Optional[str] = None
    sampling_site: Optional[str] = None
    sample_collect_date: Optional[str] = None
    embryo_number: Optional[int] = None
    notify_patient_email: bool = False

    # Step 7: genetic results & note
    genetic_test_results: Optional[str] = None
    genetic_test_results_relationship: Optional[str] = None
    specify_note: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @model_validator(mode="after")
    def check_service_detail(self) -> "OrderSnapshot":
        if self.service_detail is not None:
            tag = ServiceType(self.service_detail.service_type)
            if self.service_type is None:
                self.service_type = tag
            elif tag != self.service_type:
                raise ValueError(
                    f"service_detail is for {tag.value} but service_type is {self.service_type.value}"
                )
        elif self.service_type is not None:
            self.service_detail = DETAIL_VARIANTS[self.service_type]()
        return self

    @property
    def is_anchored(self) -> bool:
        return self.prescription_id is not None

    @property
    def is_edit(self) -> bool:
        return self.order_id is not None

    def clinical_values(self) -> Dict[str, Any]:
        values = {name: getattr(self, name) for name in CLINICAL_FIELDS}
        return {k: v for k, v in values.items() if v is not None}


class WizardStep(BaseModel):
    number: int
    name: str
    fields: Tuple[str, ...]
    required: Tuple[str, ...] = ()
    # Required only while no prescription is selected
    required_unless_anchored: Tuple[str, ...] = ()


class StepValidation(BaseModel):
    step: int
    valid: bool
    missing_fields: List[str] = []

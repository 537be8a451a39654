from typing import Dict, List, Optional
import enum

from pydantic import BaseModel, computed_field

from genorder.core.exceptions import ErrorKind
from genorder.domain.resources.models import OrderInput, PrescriptionInput, PrescriptionRecord
from genorder.domain.workflow.models import OrderSnapshot


class CompositionState(str, enum.Enum):
    IDLE = "idle"
    PATIENT_RESOLVED = "patient_resolved"
    SERVICE_DETAIL_COMMITTED = "service_detail_committed"
    PRESCRIPTION_RESOLVED = "prescription_resolved"
    ORDER_COMMITTED = "order_committed"
    METADATA_ATTACHED = "metadata_attached"
    DONE = "done"
    FAILED = "failed"


class StepPolicy(str, enum.Enum):
    CRITICAL = "critical"
    BEST_EFFORT = "best_effort"


class StepStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


class CompositionStep(str, enum.Enum):
    RESOLVE_PATIENT = "resolve_patient"
    UPSERT_CLINICAL_PROFILE = "upsert_clinical_profile"
    CREATE_SERVICE_DETAIL = "create_service_detail"
    RESOLVE_PRESCRIPTION = "resolve_prescription"
    COMMIT_ORDER = "commit_order"
    ENABLE_PATIENT_EMAIL = "enable_patient_email"
    CREATE_SAMPLE_METADATA = "create_sample_metadata"
    ATTACH_LABCODE = "attach_labcode"
    FORWARD_PRESCRIPTION_STATUS = "forward_prescription_status"
    RESET_BARCODE_STATUS = "reset_barcode_status"


STEP_POLICIES: Dict[CompositionStep, StepPolicy] = {
    CompositionStep.RESOLVE_PATIENT: StepPolicy.CRITICAL,
    CompositionStep.UPSERT_CLINICAL_PROFILE: StepPolicy.BEST_EFFORT,
    CompositionStep.CREATE_SERVICE_DETAIL: StepPolicy.CRITICAL,
    CompositionStep.RESOLVE_PRESCRIPTION: StepPolicy.CRITICAL,
    CompositionStep.COMMIT_ORDER: StepPolicy.CRITICAL,
    CompositionStep.ENABLE_PATIENT_EMAIL: StepPolicy.BEST_EFFORT,
    CompositionStep.CREATE_SAMPLE_METADATA: StepPolicy.BEST_EFFORT,
    CompositionStep.ATTACH_LABCODE: StepPolicy.BEST_EFFORT,
    CompositionStep.FORWARD_PRESCRIPTION_STATUS: StepPolicy.BEST_EFFORT,
    CompositionStep.RESET_BARCODE_STATUS: StepPolicy.BEST_EFFORT,
}

# State entered once a step has run (succeeded or skipped)
STEP_STATES: Dict[CompositionStep, CompositionState] = {
    CompositionStep.RESOLVE_PATIENT: CompositionState.PATIENT_RESOLVED,
    CompositionStep.CREATE_SERVICE_DETAIL: CompositionState.SERVICE_DETAIL_COMMITTED,
    CompositionStep.RESOLVE_PRESCRIPTION: CompositionState.PRESCRIPTION_RESOLVED,
    CompositionStep.COMMIT_ORDER: CompositionState.ORDER_COMMITTED,
}


class StepOutcome(BaseModel):
    step: CompositionStep
    policy: StepPolicy
    status: StepStatus
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None


class CompositionResult(BaseModel):
    """What the caller learns about one composition"""
    success: bool
    state: CompositionState
    order_id: Optional[str] = None
    prescription_id: Optional[str] = None
    patient_id: Optional[str] = None
    created_patient_id: Optional[str] = None
    service_detail_id: Optional[str] = None
    labcode: Optional[str] = None
    outcomes: List[StepOutcome] = []

    @computed_field
    @property
    def partial_failures(self) -> List[CompositionStep]:
        return [
            o.step for o in self.outcomes
            if o.policy == StepPolicy.BEST_EFFORT and o.status == StepStatus.FAILED
        ]


class CompositionRun:
    """Mutable context threaded through the steps of one composition"""

    def __init__(self, snapshot: OrderSnapshot):
        self.snapshot = snapshot
        self.state = CompositionState.IDLE
        self.outcomes: List[StepOutcome] = []

        self.patient_id: Optional[str] = None
        self.created_patient_id: Optional[str] = None
        self.prescription_record: Optional[PrescriptionRecord] = None
        self.service_id: Optional[str] = None
        self.service_detail_id: Optional[str] = None
        self.prescription_id: Optional[str] = None
        self.prescription_payload: Optional[PrescriptionInput] = None
        self.order_id: Optional[str] = None
        self.order_payload: Optional[OrderInput] = None
        self.known_labcodes: List[str] = list(snapshot.known_labcodes)
        self.labcode: Optional[str] = None

    @property
    def order_committed(self) -> bool:
        return self.order_id is not None

    def outcome(self, step: CompositionStep) -> Optional[StepOutcome]:
        for outcome in self.outcomes:
            if outcome.step == step:
                return outcome
        return None

    def to_result(self) -> CompositionResult:
        return CompositionResult(
            success=self.order_committed,
            state=self.state,
            order_id=self.order_id,
            prescription_id=self.prescription_id,
            patient_id=self.patient_id,
            created_patient_id=self.created_patient_id,
            service_detail_id=self.service_detail_id,
            labcode=self.labcode,
            outcomes=list(self.outcomes),
        )

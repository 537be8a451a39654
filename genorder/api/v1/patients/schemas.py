from typing import Any, Dict, Optional

from pydantic import BaseModel

from genorder.domain.resources.models import Patient


class PatientLookupResponse(BaseModel):
    found: bool
    patient: Optional[Patient] = None
    fields: Dict[str, Any] = {}
    has_previous_orders: bool = False


class NewPatientIdResponse(BaseModel):
    patient_id: str

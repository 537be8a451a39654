from typing import Any, Dict, List
import enum

from pydantic import BaseModel


class AutofillSource(str, enum.Enum):
    PRESCRIPTION = "prescription"
    GENOME_TEST = "genome-test"
    PATIENT = "patient"


class AutofillRequest(BaseModel):
    record: Dict[str, Any]
    manually_set: List[str] = []


class AutofillResponse(BaseModel):
    fields: Dict[str, Any]

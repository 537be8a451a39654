"""
Patients API Routes

Existing-patient lookup by phone and patient id generation.
"""

from fastapi import APIRouter, Depends, Query

from genorder.api.deps import get_patient_lookup_service
from genorder.api.v1.patients.schemas import NewPatientIdResponse, PatientLookupResponse
from genorder.domain.allocation.service import IdentifierAllocator
from genorder.domain.autofill.service import PatientLookupService

router = APIRouter()


@router.get("/lookup", response_model=PatientLookupResponse)
async def lookup_patient(
    phone: str = Query(..., min_length=1),
    service: PatientLookupService = Depends(get_patient_lookup_service),
):
    """Find a patient by phone and propose the demographic fields to prefill"""
    result = await service.lookup_by_phone(phone)
    return PatientLookupResponse(**result.model_dump())


@router.get("/new-id", response_model=NewPatientIdResponse)
async def new_patient_id():
    return NewPatientIdResponse(patient_id=IdentifierAllocator.generate_patient_id())

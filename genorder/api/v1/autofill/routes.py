"""
Autofill API Routes

Previews the form values a selected record would fill in.
"""

from fastapi import APIRouter, Depends
from pydantic import ValidationError

from genorder.api.deps import get_resolver
from genorder.api.v1.autofill.schemas import AutofillRequest, AutofillResponse, AutofillSource
from genorder.core.exceptions import ValidationFailure, field_errors
from genorder.domain.autofill.service import FieldPropagationResolver
from genorder.domain.resources.models import GenomeTest, Patient, PrescriptionRecord

router = APIRouter()


@router.post("/{source}", response_model=AutofillResponse)
async def preview_autofill(
    source: AutofillSource,
    request_in: AutofillRequest,
    resolver: FieldPropagationResolver = Depends(get_resolver),
):
    manually_set = frozenset(request_in.manually_set)
    try:
        if source == AutofillSource.PRESCRIPTION:
            record = PrescriptionRecord.model_validate(request_in.record)
            fields = resolver.resolve_prescription(record, manually_set)
        elif source == AutofillSource.GENOME_TEST:
            genome_test = GenomeTest.model_validate(request_in.record)
            fields = resolver.resolve_genome_test(genome_test, manually_set)
        else:
            patient = Patient.model_validate(request_in.record)
            fields = resolver.resolve_patient(patient, manually_set)
    except ValidationError as e:
        raise ValidationFailure(
            message=f"The {source.value} record could not be read",
            details={"errors": field_errors(e.errors())},
        ) from e
    return AutofillResponse(fields=fields)

from fastapi import Depends

from genorder.domain.allocation.service import AllocationService
from genorder.domain.autofill.service import FieldPropagationResolver, PatientLookupService
from genorder.domain.composition.service import CompositionOrchestrator
from genorder.domain.resources.repository import ResourceGateway
from genorder.infrastructure.resource_api import resource_api


def get_gateway() -> ResourceGateway:
    return ResourceGateway(resource_api)


def get_resolver() -> FieldPropagationResolver:
    return FieldPropagationResolver()


def get_orchestrator(gateway: ResourceGateway = Depends(get_gateway)) -> CompositionOrchestrator:
    return CompositionOrchestrator(gateway)


def get_allocation_service(gateway: ResourceGateway = Depends(get_gateway)) -> AllocationService:
    return AllocationService(gateway)


def get_patient_lookup_service(
    gateway: ResourceGateway = Depends(get_gateway),
    resolver: FieldPropagationResolver = Depends(get_resolver),
) -> PatientLookupService:
    return PatientLookupService(gateway, resolver)

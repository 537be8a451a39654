"""
Resource Repository Layer

Typed access to each remote resource kind. Every call returns an ApiResponse;
on success ``data`` holds the parsed model (or list of models).
"""

from typing import Any, List, Optional, Type, TypeVar
from loguru import logger
from pydantic import BaseModel, ValidationError

from genorder.infrastructure.resource_api import ApiResponse, ResourceApiClient
from genorder.domain.resources.models import (
    Barcode, CatalogService, ClinicalProfile, GenomeTest, Order, OrderInput,
    Patient, PrescriptionInput, PrescriptionRecord, SampleMetadata,
    ServiceDetail, ServiceDetailRecord, ServiceType,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

DETAIL_PATHS = {
    ServiceType.REPRODUCTION: "/api/v1/reproduction-services",
    ServiceType.EMBRYO: "/api/v1/embryo-services",
    ServiceType.DISEASE: "/api/v1/disease-services",
}


def _items(data: Any) -> List[Any]:
    """Lists come back bare or wrapped in a page object"""
    if data is None:
        return []
    if isinstance(data, dict):
        for key in ("content", "items", "results"):
            if isinstance(data.get(key), list):
                return data[key]
        return []
    return list(data)


def _typed(envelope: ApiResponse, model: Type[ModelT]) -> ApiResponse:
    if not envelope.success or envelope.data is None:
        return envelope
    try:
        envelope.data = model.model_validate(envelope.data)
    except ValidationError as e:
        logger.error(f"Unreadable {model.__name__} payload: {e}")
        return ApiResponse.failure(
            error=f"Unexpected {model.__name__} payload from server",
            status_code=envelope.status_code,
        )
    return envelope


def _typed_list(envelope: ApiResponse, model: Type[ModelT]) -> ApiResponse:
    if not envelope.success:
        return envelope
    try:
        envelope.data = [model.model_validate(item) for item in _items(envelope.data)]
    except ValidationError as e:
        logger.error(f"Unreadable {model.__name__} list payload: {e}")
        return ApiResponse.failure(
            error=f"Unexpected {model.__name__} payload from server",
            status_code=envelope.status_code,
        )
    return envelope


class PatientRepository:
    """Repository for patient records"""

    def __init__(self, api: ResourceApiClient):
        self.api = api

    async def create(self, patient: Patient) -> ApiResponse:
        return _typed(await self.api.post("/api/v1/patients", json=patient.to_payload()), Patient)

    async def update(self, patient_id: str, patient: Patient) -> ApiResponse:
        return _typed(
            await self.api.put(f"/api/v1/patients/{patient_id}", json=patient.to_payload()), Patient
        )

    async def get_by_id(self, patient_id: str) -> ApiResponse:
        return _typed(await self.api.get(f"/api/v1/patients/{patient_id}"), Patient)

    async def get_by_phone(self, phone: str) -> ApiResponse:
        return _typed(await self.api.get(f"/api/v1/patients/phone/{phone}"), Patient)


class ClinicalProfileRepository:
    """Repository for patient clinical profiles (1:1 with patient)"""

    def __init__(self, api: ResourceApiClient):
        self.api = api

    async def create(self, profile: ClinicalProfile) -> ApiResponse:
        payload = profile.to_payload()
        payload.pop("patientClinicalId", None)
        return _typed(await self.api.post("/api/v1/patient-clinicals", json=payload), ClinicalProfile)

    async def update(self, clinical_id: str, profile: ClinicalProfile) -> ApiResponse:
        payload = profile.to_payload()
        payload.pop("patientClinicalId", None)
        return _typed(
            await self.api.put(f"/api/v1/patient-clinicals/{clinical_id}", json=payload),
            ClinicalProfile,
        )

    async def get_by_patient_id(self, patient_id: str) -> ApiResponse:
        return _typed(
            await self.api.get(f"/api/v1/patient-clinicals/patient/{patient_id}"), ClinicalProfile
        )


class ServiceDetailRepository:
    """Repository for the per-service-type detail records"""

    def __init__(self, api: ResourceApiClient):
        self.api = api

    async def create(self, detail: ServiceDetail, service_id: str, patient_id: str) -> ApiResponse:
        service_type = ServiceType(detail.service_type)
        payload = detail.to_payload()
        payload.pop("serviceType", None)
        payload.update({"serviceId": service_id, "patientId": patient_id})
        envelope = await self.api.post(DETAIL_PATHS[service_type], json=payload)
        return _typed(envelope, ServiceDetailRecord)


class PrescriptionRepository:
    """Repository for prescription ("specify vote test") records"""

    def __init__(self, api: ResourceApiClient):
        self.api = api

    async def create(self, prescription: PrescriptionInput) -> ApiResponse:
        return _typed(
            await self.api.post("/api/v1/specify-vote-tests", json=prescription.to_payload()),
            PrescriptionRecord,
        )

    async def update(self, prescription_id: str, prescription: PrescriptionInput) -> ApiResponse:
        return _typed(
            await self.api.put(
                f"/api/v1/specify-vote-tests/{prescription_id}", json=prescription.to_payload()
            ),
            PrescriptionRecord,
        )

    async def update_status(self, prescription_id: str, status: str) -> ApiResponse:
        return await self.api.patch(
            f"/api/v1/specify-vote-tests/{prescription_id}/status", params={"status": status}
        )

    async def get_by_id(self, prescription_id: str) -> ApiResponse:
        return _typed(
            await self.api.get(f"/api/v1/specify-vote-tests/{prescription_id}"), PrescriptionRecord
        )

    async def get_by_status(self, status: str) -> ApiResponse:
        return _typed_list(
            await self.api.get(f"/api/v1/specify-vote-tests/status/{status}"), PrescriptionRecord
        )


class OrderRepository:
    """Repository for orders"""

    def __init__(self, api: ResourceApiClient):
        self.api = api

    async def create(self, order: OrderInput) -> ApiResponse:
        return _typed(await self.api.post("/api/v1/orders", json=order.to_payload()), Order)

    async def update(self, order_id: str, order: OrderInput) -> ApiResponse:
        return _typed(await self.api.put(f"/api/v1/orders/{order_id}", json=order.to_payload()), Order)

    async def get_by_id(self, order_id: str) -> ApiResponse:
        return _typed(await self.api.get(f"/api/v1/orders/{order_id}"), Order)

    async def get_all(self) -> ApiResponse:
        return _typed_list(await self.api.get("/api/v1/orders"), Order)

    async def get_by_status(self, status: str) -> ApiResponse:
        return _typed_list(await self.api.get(f"/api/v1/orders/status/{status}"), Order)

    async def get_by_patient_id(self, patient_id: str) -> ApiResponse:
        return _typed_list(await self.api.get(f"/api/v1/orders/patient/{patient_id}"), Order)


class SampleMetadataRepository:
    def __init__(self, api: ResourceApiClient):
        self.api = api

    async def create(self, specify_id: str, patient_id: str, sample_name: Optional[str]) -> ApiResponse:
        payload = SampleMetadata(
            specify_id=specify_id, patient_id=patient_id, sample_name=sample_name
        ).to_payload()
        return _typed(await self.api.post("/api/v1/patient-metadata", json=payload), SampleMetadata)


class BarcodeRepository:
    def __init__(self, api: ResourceApiClient):
        self.api = api

    async def get_by_status(self, status: str) -> ApiResponse:
        return _typed_list(await self.api.get(f"/api/v1/barcodes/status/{status}"), Barcode)

    async def update(self, barcode: str, status: str) -> ApiResponse:
        return await self.api.put(f"/api/v1/barcodes/{barcode}", json={"status": status})


class ServiceCatalogRepository:
    def __init__(self, api: ResourceApiClient):
        self.api = api

    async def get_all(self) -> ApiResponse:
        return _typed_list(await self.api.get("/api/v1/services"), CatalogService)


class GenomeTestRepository:
    def __init__(self, api: ResourceApiClient):
        self.api = api

    async def get_by_id(self, test_id: str) -> ApiResponse:
        return _typed(await self.api.get(f"/api/v1/genome-tests/{test_id}"), GenomeTest)

    async def get_all(self) -> ApiResponse:
        return _typed_list(await self.api.get("/api/v1/genome-tests"), GenomeTest)


class ResourceGateway:
    """All resource repositories over one API client"""

    def __init__(self, api: ResourceApiClient):
        self.api = api
        self.patients = PatientRepository(api)
        self.clinical_profiles = ClinicalProfileRepository(api)
        self.service_details = ServiceDetailRepository(api)
        self.prescriptions = PrescriptionRepository(api)
        self.orders = OrderRepository(api)
        self.sample_metadata = SampleMetadataRepository(api)
        self.barcodes = BarcodeRepository(api)
        self.services = ServiceCatalogRepository(api)
        self.genome_tests = GenomeTestRepository(api)

import pytest
from types import SimpleNamespace
from typing import Any, AsyncGenerator, List, Optional
from unittest.mock import AsyncMock

from httpx import ASGITransport, AsyncClient
from loguru import logger

from genorder.main import app
from genorder.api.deps import get_gateway
from genorder.domain.resources.models import (
    CatalogService, GenomeTest, Order, Patient, PrescriptionRecord,
    SampleMetadata, ServiceDetailRecord,
)
from genorder.domain.resources.repository import (
    BarcodeRepository, ClinicalProfileRepository, GenomeTestRepository, OrderRepository,
    PatientRepository, PrescriptionRepository, SampleMetadataRepository,
    ServiceCatalogRepository, ServiceDetailRepository,
)
from genorder.domain.workflow.models import OrderSnapshot
from genorder.infrastructure.resource_api import ApiResponse


def ok(data: Any = None, status_code: int = 200) -> ApiResponse:
    return ApiResponse(success=True, data=data, status_code=status_code)


def fail(error: str, status_code: Optional[int] = None, transport_error: bool = False) -> ApiResponse:
    return ApiResponse.failure(error=error, status_code=status_code, transport_error=transport_error)


@pytest.fixture
def created_orders() -> List[Order]:
    """Orders the fake backend has accepted during a test"""
    return []


@pytest.fixture
def gateway(created_orders: List[Order]) -> SimpleNamespace:
    """Resource gateway double: every repository call succeeds unless a test says otherwise."""
    gw = SimpleNamespace(
        patients=AsyncMock(spec=PatientRepository),
        clinical_profiles=AsyncMock(spec=ClinicalProfileRepository),
        service_details=AsyncMock(spec=ServiceDetailRepository),
        prescriptions=AsyncMock(spec=PrescriptionRepository),
        orders=AsyncMock(spec=OrderRepository),
        sample_metadata=AsyncMock(spec=SampleMetadataRepository),
        barcodes=AsyncMock(spec=BarcodeRepository),
        services=AsyncMock(spec=ServiceCatalogRepository),
        genome_tests=AsyncMock(spec=GenomeTestRepository),
    )

    gw.patients.create.side_effect = lambda patient: ok(patient, 201)
    gw.patients.update.side_effect = lambda patient_id, patient: ok(patient)
    gw.patients.get_by_id.return_value = fail("Patient not found", 404)
    gw.patients.get_by_phone.return_value = fail("Patient not found", 404)

    gw.clinical_profiles.get_by_patient_id.return_value = fail("Patient clinical not found", 404)
    gw.clinical_profiles.create.side_effect = lambda profile: ok(
        profile.model_copy(update={"patient_clinical_id": "PC-1"}), 201
    )
    gw.clinical_profiles.update.side_effect = lambda clinical_id, profile: ok(profile)

    gw.service_details.create.side_effect = lambda detail, service_id, patient_id: ok(
        ServiceDetailRecord(
            id="SD-1", service_id=service_id, service_type=detail.service_type, patient_id=patient_id
        ),
        201,
    )

    gw.services.get_all.return_value = ok([
        CatalogService(service_id="SRV-REPRO", name="Sản"),
        CatalogService(service_id="SRV-EMBRYO", name="Phôi"),
        CatalogService(service_id="SRV-DISEASE", name="disease"),
        CatalogService(service_id="", name="embryo"),
    ])
    gw.genome_tests.get_by_id.return_value = ok(
        GenomeTest(
            test_id="GT-1",
            test_name="NIPT 24",
            test_description="Non-invasive prenatal screening",
            test_sample=["Máu mẹ"],
            service=CatalogService(service_id="SRV-REPRO", name="Sản"),
        )
    )

    gw.prescriptions.create.side_effect = lambda payload: ok(
        PrescriptionRecord(
            prescription_id="SP-1",
            service_id=payload.service_id,
            patient_id=payload.patient_id,
            genome_test_id=payload.genome_test_id,
            specify_status="initation",
            send_email_patient=payload.send_email_patient,
        ),
        201,
    )
    gw.prescriptions.update.side_effect = lambda prescription_id, payload: ok(
        PrescriptionRecord(prescription_id=prescription_id, patient_id=payload.patient_id)
    )
    gw.prescriptions.update_status.return_value = ok()
    gw.prescriptions.get_by_id.return_value = fail("Specify vote test not found", 404)
    gw.prescriptions.get_by_status.return_value = ok([])

    def create_order(payload):
        order = Order(
            order_id=f"ORD-{len(created_orders) + 1}",
            order_name=payload.order_name,
            barcode_id=payload.barcode_id,
            prescription_id=payload.prescription_id,
            order_status=payload.order_status,
        )
        created_orders.append(order)
        return ok(order, 201)

    gw.orders.create.side_effect = create_order
    gw.orders.update.side_effect = lambda order_id, payload: ok(
        Order(
            order_id=order_id,
            order_name=payload.order_name,
            barcode_id=payload.barcode_id,
            prescription_id=payload.prescription_id,
        )
    )
    gw.orders.get_all.side_effect = lambda: ok(list(created_orders))
    gw.orders.get_by_patient_id.return_value = ok([])

    gw.sample_metadata.create.side_effect = lambda specify_id, patient_id, sample_name: ok(
        SampleMetadata(
            labcode="LAB-001", specify_id=specify_id, patient_id=patient_id, sample_name=sample_name
        ),
        201,
    )

    gw.barcodes.get_by_status.return_value = ok([])
    gw.barcodes.update.return_value = ok()
    return gw


@pytest.fixture
def sample_order_data() -> dict:
    """New patient, reproduction service, genome test selected"""
    return {
        "order_name": "NIPT-2024-001",
        "payment_type": "CASH",
        "barcode_id": "BC-100",
        "customer_id": "CUS-1",
        "staff_id": "STAFF-1",
        "patient_name": "Nguyen Thi Lan",
        "patient_phone": "0901234567",
        "patient_email": "lan@example.com",
        "patient_dob": "1992-04-18",
        "patient_gender": "female",
        "service_type": "reproduction",
        "service_detail": {
            "service_type": "reproduction",
            "fetuses_number": 1,
            "fetuses_week": 12,
            "fetuses_day": 3,
        },
        "patient_height": 158.0,
        "patient_weight": 55.5,
        "medical_using": "Folic acid, Iron\nVitamin D",
        "genome_test_id": "GT-1",
        "sampling_site": "Máu tĩnh mạch",
        "sample_collect_date": "2024-05-02",
    }


@pytest.fixture
def new_patient_snapshot(sample_order_data: dict) -> OrderSnapshot:
    return OrderSnapshot.model_validate(sample_order_data)


@pytest.fixture
def anchored_prescription() -> PrescriptionRecord:
    """Existing prescription already carrying a reproduction detail"""
    return PrescriptionRecord.model_validate({
        "specifyVoteID": "SP-9",
        "serviceID": "SRV-REPRO",
        "serviceType": "reproduction",
        "genomeTestId": "GT-1",
        "samplingSite": "Máu tĩnh mạch",
        "specifyStatus": "initation",
        "patient": {
            "patientId": "P-9",
            "patientName": "Tran Thi Hoa",
            "patientPhone": "0912345678",
            "patientEmail": "hoa@example.com",
            "gender": "FEMALE",
            "patientDob": "1990-01-15T00:00:00",
        },
        "genomeTest": {
            "testId": "GT-1",
            "testName": "NIPT 24",
            "testDescription": "Non-invasive prenatal screening",
            "testSample": ["Máu mẹ", "Huyết tương"],
        },
        "reproductionService": {"id": "SD-9", "serviceId": "SRV-REPRO", "patientId": "P-9"},
    })


@pytest.fixture
def sample_patient() -> Patient:
    return Patient(
        patient_id="P-42",
        patient_name="Le Van Minh",
        patient_phone="0987654321",
        patient_email="minh@example.com",
        gender="male",
        patient_dob="1985-07-30",
        patient_address="12 Tran Phu, Ha Noi",
    )


@pytest.fixture
def log_messages() -> List[str]:
    """Loguru output captured at WARNING and above"""
    messages: List[str] = []
    handler_id = logger.add(lambda message: messages.append(str(message)), level="WARNING")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
async def client(gateway: SimpleNamespace) -> AsyncGenerator[AsyncClient, None]:
    """API client wired to the fake gateway."""
    app.dependency_overrides[get_gateway] = lambda: gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "composition: mark test as order composition related"
    )
    config.addinivalue_line(
        "markers", "allocation: mark test as identifier allocation related"
    )

# Remote resource models and repositories
from genorder.domain.resources.models import (
    Barcode,
    BarcodeStatus,
    ClinicalProfile,
    GenomeTest,
    Order,
    OrderStatus,
    Patient,
    PaymentStatus,
    PaymentType,
    PrescriptionRecord,
    PrescriptionStatus,
    SampleMetadata,
    ServiceDetail,
    ServiceType,
)
from genorder.domain.resources.repository import ResourceGateway

__all__ = [
    "Barcode",
    "BarcodeStatus",
    "ClinicalProfile",
    "GenomeTest",
    "Order",
    "OrderStatus",
    "Patient",
    "PaymentStatus",
    "PaymentType",
    "PrescriptionRecord",
    "PrescriptionStatus",
    "SampleMetadata",
    "ServiceDetail",
    "ServiceType",
    "ResourceGateway",
]

"""
Identifier Allocation Service

Filters scarce identifiers (barcodes, prescriptions) down to the ones not
already bound to another order, and mints new patient ids.
"""

from typing import Iterable, List, Optional, Set
import uuid

from loguru import logger

from genorder.core.config import settings
from genorder.core.exceptions import classify_failure
from genorder.domain.resources.models import Barcode, Order, PrescriptionRecord
from genorder.domain.resources.repository import ResourceGateway


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _other_orders(orders: Iterable[Order], current_order_id: Optional[str]) -> List[Order]:
    current = _clean(current_order_id)
    return [o for o in orders if not current or _clean(o.order_id) != current]


def _find_order(orders: Iterable[Order], order_id: Optional[str]) -> Optional[Order]:
    order_id = _clean(order_id)
    if not order_id:
        return None
    return next((o for o in orders if _clean(o.order_id) == order_id), None)


class IdentifierAllocator:
    """Pure availability rules over a point-in-time snapshot"""

    @staticmethod
    def used_barcodes(orders: Iterable[Order], current_order_id: Optional[str] = None) -> Set[str]:
        used = set()
        for order in _other_orders(orders, current_order_id):
            barcode = _clean(order.barcode_id)
            if barcode:
                used.add(barcode)
        return used

    @staticmethod
    def used_prescriptions(orders: Iterable[Order], current_order_id: Optional[str] = None) -> Set[str]:
        used = set()
        for order in _other_orders(orders, current_order_id):
            prescription_id = _clean(order.prescription_id)
            if prescription_id:
                used.add(prescription_id)
        return used

    @classmethod
    def available_barcodes(
        cls,
        barcodes: Iterable[Barcode],
        orders: Iterable[Order],
        current_order_id: Optional[str] = None,
    ) -> List[Barcode]:
        """Candidates minus barcodes bound to any order other than ``current_order_id``"""
        used = cls.used_barcodes(orders, current_order_id)
        return [b for b in barcodes if _clean(b.barcode) and _clean(b.barcode) not in used]

    @classmethod
    def available_prescriptions(
        cls,
        prescriptions: Iterable[PrescriptionRecord],
        orders: Iterable[Order],
        current_order_id: Optional[str] = None,
    ) -> List[PrescriptionRecord]:
        used = cls.used_prescriptions(orders, current_order_id)
        return [p for p in prescriptions if _clean(p.prescription_id) not in used]

    @classmethod
    def is_barcode_available(
        cls, barcode: str, orders: Iterable[Order], current_order_id: Optional[str] = None
    ) -> bool:
        return _clean(barcode) not in cls.used_barcodes(orders, current_order_id)

    @classmethod
    def is_prescription_available(
        cls, prescription_id: str, orders: Iterable[Order], current_order_id: Optional[str] = None
    ) -> bool:
        return _clean(prescription_id) not in cls.used_prescriptions(orders, current_order_id)

    @staticmethod
    def generate_patient_id() -> str:
        return str(uuid.uuid4())


class AllocationService:
    """Loads candidates and existing orders, then applies IdentifierAllocator"""

    def __init__(self, gateway: ResourceGateway):
        self.gateway = gateway

    async def _load_orders(self) -> List[Order]:
        envelope = await self.gateway.orders.get_all()
        if not envelope.success:
            raise classify_failure(envelope, "order", "list")
        return envelope.data or []

    async def available_barcodes(self, current_order_id: Optional[str] = None) -> List[Barcode]:
        envelope = await self.gateway.barcodes.get_by_status(settings.BARCODE_CANDIDATE_STATUS)
        if not envelope.success:
            raise classify_failure(envelope, "barcode", "list")
        orders = await self._load_orders()
        available = IdentifierAllocator.available_barcodes(envelope.data or [], orders, current_order_id)

        # The order being edited keeps its own barcode even after it left the candidate status
        current = _find_order(orders, current_order_id)
        own = _clean(current.barcode_id) if current else None
        if own and all(_clean(b.barcode) != own for b in available):
            available.append(Barcode(barcode=own))
        logger.info(
            f"Barcode candidates={len(envelope.data or [])} available={len(available)} "
            f"current_order_id={current_order_id}"
        )
        return available

    async def available_prescriptions(
        self, current_order_id: Optional[str] = None
    ) -> List[PrescriptionRecord]:
        envelope = await self.gateway.prescriptions.get_by_status(
            settings.PRESCRIPTION_CANDIDATE_STATUS
        )
        if not envelope.success:
            raise classify_failure(envelope, "prescription", "list")
        orders = await self._load_orders()
        available = IdentifierAllocator.available_prescriptions(
            envelope.data or [], orders, current_order_id
        )

        current = _find_order(orders, current_order_id)
        if current and current.prescription and all(
            p.prescription_id != current.prescription.prescription_id for p in available
        ):
            available.append(current.prescription)
        logger.info(
            f"Prescription candidates={len(envelope.data or [])} available={len(available)} "
            f"current_order_id={current_order_id}"
        )
        return available

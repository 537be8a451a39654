"""
Orders API Schemas

Request/response models for order composition and identifier selection.
"""

from typing import List

from pydantic import BaseModel

from genorder.domain.resources.models import Barcode, PrescriptionRecord
from genorder.domain.workflow.models import OrderSnapshot


class ComposeOrderRequest(OrderSnapshot):
    """Validated form snapshot submitted by the order wizard"""
    pass


class BarcodeListResponse(BaseModel):
    items: List[Barcode]
    total: int


class PrescriptionListResponse(BaseModel):
    items: List[PrescriptionRecord]
    total: int

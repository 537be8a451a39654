"""
Orders API Routes

Order composition (create and edit) and the selectable barcode and
prescription lists.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from genorder.api.deps import get_allocation_service, get_orchestrator
from genorder.api.v1.orders.schemas import (
    BarcodeListResponse, ComposeOrderRequest, PrescriptionListResponse,
)
from genorder.domain.allocation.service import AllocationService
from genorder.domain.composition.models import CompositionResult, CompositionRun
from genorder.domain.composition.service import CompositionOrchestrator
from genorder.domain.workflow.models import OrderSnapshot
from genorder.domain.workflow.service import OrderWizard

router = APIRouter()


def _submitted_snapshot(order_in: ComposeOrderRequest, order_id: Optional[str]) -> OrderSnapshot:
    """Apply the wizard's step rules to a submitted form"""
    values = order_in.model_dump()
    values["order_id"] = order_id
    return OrderWizard(values).to_snapshot()


async def _commit_and_schedule_tail(
    snapshot: OrderSnapshot,
    orchestrator: CompositionOrchestrator,
    background_tasks: BackgroundTasks,
) -> CompositionResult:
    run = await orchestrator.commit(CompositionRun(snapshot))
    # The caller gets its answer once the order exists; the tail finishes on its own
    background_tasks.add_task(orchestrator.run_tail, run)
    return run.to_result()


# ==================== Composition Endpoints ====================

@router.post("/compose", response_model=CompositionResult, status_code=status.HTTP_201_CREATED)
async def compose_order(
    order_in: ComposeOrderRequest,
    background_tasks: BackgroundTasks,
    orchestrator: CompositionOrchestrator = Depends(get_orchestrator),
):
    """Create an order and the resources it depends on"""
    snapshot = _submitted_snapshot(order_in, None)
    return await _commit_and_schedule_tail(snapshot, orchestrator, background_tasks)


@router.put("/{order_id}/compose", response_model=CompositionResult)
async def recompose_order(
    order_id: str,
    order_in: ComposeOrderRequest,
    background_tasks: BackgroundTasks,
    orchestrator: CompositionOrchestrator = Depends(get_orchestrator),
):
    """Apply an edited form to an existing order"""
    snapshot = _submitted_snapshot(order_in, order_id)
    return await _commit_and_schedule_tail(snapshot, orchestrator, background_tasks)


# ==================== Selection Endpoints ====================

@router.get("/available-barcodes", response_model=BarcodeListResponse)
async def list_available_barcodes(
    current_order_id: Optional[str] = Query(None),
    service: AllocationService = Depends(get_allocation_service),
):
    barcodes = await service.available_barcodes(current_order_id)
    return BarcodeListResponse(items=barcodes, total=len(barcodes))


@router.get("/available-prescriptions", response_model=PrescriptionListResponse)
async def list_available_prescriptions(
    current_order_id: Optional[str] = Query(None),
    service: AllocationService = Depends(get_allocation_service),
):
    prescriptions = await service.available_prescriptions(current_order_id)
    return PrescriptionListResponse(items=prescriptions, total=len(prescriptions))

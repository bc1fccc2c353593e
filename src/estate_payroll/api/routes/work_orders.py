"""Work order transition endpoints."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, status

from estate_payroll.api.dependencies import Actor, DbSession
from estate_payroll.api.schemas import (
    ErrorResponse,
    TransitionRequest,
    TransitionResponse,
    WorkOrderHistoryResponse,
    WorkOrderResponse,
)
from estate_payroll.models import WorkOrder
from estate_payroll.result import Err
from estate_payroll.services.work_order_service import WorkOrderService

router = APIRouter(prefix="/work-orders", tags=["work-orders"])

WorkOrderId = Annotated[int, Path(ge=1)]

TRANSITION_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _response(work_order: WorkOrder, message: str | None = None) -> TransitionResponse:
    return TransitionResponse(
        work_order=WorkOrderResponse.model_validate(work_order),
        message=message,
    )


@router.post("/{work_order_id}/submit", response_model=TransitionResponse, responses=TRANSITION_RESPONSES)
async def submit_work_order(
    db: DbSession,
    actor: Actor,
    work_order_id: WorkOrderId,
    payload: TransitionRequest | None = None,
) -> TransitionResponse:
    """Submit an ongoing work order for approval."""
    service = WorkOrderService(db)
    work_order = await service.get_work_order(work_order_id, lock=True)
    await service.submit(work_order, actor, payload.remarks if payload else None)
    await db.commit()
    return _response(work_order)


@router.post(
    "/{work_order_id}/approve",
    response_model=TransitionResponse,
    responses={**TRANSITION_RESPONSES, 422: {"model": ErrorResponse}},
)
async def approve_work_order(
    db: DbSession,
    actor: Actor,
    work_order_id: WorkOrderId,
    payload: TransitionRequest | None = None,
) -> TransitionResponse:
    """Approve a pending work order and process its payroll."""
    service = WorkOrderService(db)
    work_order = await service.get_work_order(work_order_id, lock=True)
    result = await service.approve(work_order, actor, payload.remarks if payload else None)
    if isinstance(result, Err):
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=result.error,
        )
    await db.commit()
    return _response(work_order, result.value)


@router.post(
    "/{work_order_id}/request-amendment",
    response_model=TransitionResponse,
    responses=TRANSITION_RESPONSES,
)
async def request_amendment(
    db: DbSession,
    actor: Actor,
    work_order_id: WorkOrderId,
    payload: TransitionRequest | None = None,
) -> TransitionResponse:
    """Send a pending work order back for amendment."""
    service = WorkOrderService(db)
    work_order = await service.get_work_order(work_order_id, lock=True)
    await service.request_amendment(work_order, actor, payload.remarks if payload else None)
    await db.commit()
    return _response(work_order)


@router.post("/{work_order_id}/reopen", response_model=TransitionResponse, responses=TRANSITION_RESPONSES)
async def reopen_work_order(
    db: DbSession,
    actor: Actor,
    work_order_id: WorkOrderId,
    payload: TransitionRequest | None = None,
) -> TransitionResponse:
    """Resubmit an amended work order."""
    service = WorkOrderService(db)
    work_order = await service.get_work_order(work_order_id, lock=True)
    await service.reopen(work_order, actor, payload.remarks if payload else None)
    await db.commit()
    return _response(work_order)


@router.get("/{work_order_id}/history", response_model=list[WorkOrderHistoryResponse])
async def work_order_history(
    db: DbSession, work_order_id: WorkOrderId
) -> list[WorkOrderHistoryResponse]:
    """Audit trail of a work order's transitions."""
    service = WorkOrderService(db)
    await service.get_work_order(work_order_id)
    return [
        WorkOrderHistoryResponse.model_validate(row)
        for row in await service.history(work_order_id)
    ]

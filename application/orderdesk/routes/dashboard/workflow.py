from fastapi import APIRouter, BackgroundTasks, Depends

from orderdesk.dto.orders import (
    Actor,
    CancelRequest,
    ReworkRequest,
    SendToWarehouseRequest,
    StatusUpdateRequest,
    StockDecisionRequest,
    WarehouseStockRequest,
)
from orderdesk.routes.dependencies import get_actor, get_workflow_service
from orderdesk.services.order_workflow_service import OrderWorkflowService

workflow_router = APIRouter(tags=["workflow"])


@workflow_router.post("/orders/{order_id}/send_to_warehouse")
async def send_to_warehouse(
    order_id: str,
    body: SendToWarehouseRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    """Confirm availability: apply pending item actions and hand the order to the warehouse."""
    result = await service.send_to_warehouse(order_id, body.actions, actor, body.expected_version, background_tasks)
    return result.as_response("Order sent to warehouse")


@workflow_router.post("/orders/{order_id}/warehouse_stock")
async def report_warehouse_stock(
    order_id: str,
    body: WarehouseStockRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    result = await service.report_warehouse_stock(order_id, body.items, actor, body.expected_version, background_tasks)
    return result.as_response("Available quantities recorded")


@workflow_router.post("/orders/{order_id}/stock_decision")
async def stock_decision(
    order_id: str,
    body: StockDecisionRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    """Admin proceeds, holds or sends the order back for a warehouse recheck."""
    result = await service.stock_decision(
        order_id,
        body.decision,
        actor,
        quantities=body.items,
        reason=body.reason,
        expected_version=body.expected_version,
        background_tasks=background_tasks,
    )
    message = "Back-order created for the shortfall" if result.back_order else f"Order moved to {result.order.status}"
    return result.as_response(message)


@workflow_router.post("/orders/{order_id}/status")
async def update_status(
    order_id: str,
    body: StatusUpdateRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    """Manual forward advance through the shipping statuses."""
    result = await service.update_status(
        order_id,
        body.status,
        actor,
        tracking_number=body.tracking_number,
        reason=body.reason,
        expected_version=body.expected_version,
        background_tasks=background_tasks,
    )
    return result.as_response(f"Order moved to {result.order.status}")


@workflow_router.post("/orders/{order_id}/rework")
async def send_to_rework(
    order_id: str,
    body: ReworkRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    result = await service.send_to_rework(order_id, actor, body.reason, body.expected_version, background_tasks)
    return result.as_response("Order sent to rework")


@workflow_router.post("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    body: CancelRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    result = await service.cancel(order_id, actor, body.reason, body.expected_version, background_tasks)
    return result.as_response("Order cancelled")

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from orderdesk.dto.orders import Actor, OrderCreate, ItemActionsPreview
from orderdesk.routes.dependencies import get_actor, get_workflow_service
from orderdesk.services.order_workflow_service import OrderWorkflowService

orders_router = APIRouter(tags=["orders"])


@orders_router.post("/orders", status_code=status.HTTP_201_CREATED)
async def create_order(
    order: OrderCreate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    """Take a new order in at Order Placed."""
    created = await service.create_order(order, actor, background_tasks)
    return {"success": True, "message": "Order created", "order": created.as_dict()}


@orders_router.get("/orders")
async def list_orders(
    status: Optional[str] = Query(None, description="Only orders currently in this status"),
    limit: int = Query(100, ge=1, le=500),
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    """Newest orders first, for finding the ones waiting on a given step."""
    return await service.list_orders(status=status, limit=limit)


@orders_router.get("/orders/{order_id}")
async def get_order_details(
    order_id: str,
    actor: Actor = Depends(get_actor),
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    """Order with its working ledger, back-orders, lineage and the moves open to the caller."""
    return await service.get_order_details(order_id, actor)


@orders_router.get("/orders/{order_id}/history")
async def get_status_history(order_id: str, service: OrderWorkflowService = Depends(get_workflow_service)):
    return await service.get_status_history(order_id)


@orders_router.get("/orders/{order_id}/item_actions")
async def get_item_actions(order_id: str, service: OrderWorkflowService = Depends(get_workflow_service)):
    return await service.get_item_actions(order_id)


@orders_router.post("/orders/{order_id}/items/preview")
async def preview_item_actions(
    order_id: str,
    preview: ItemActionsPreview,
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    """Prune and apply pending item actions without saving anything."""
    return await service.preview_item_actions(order_id, preview.actions)

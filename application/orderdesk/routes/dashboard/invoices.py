from typing import Optional

import pydantic
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile

from orderdesk.core.constants import OrderStatus
from orderdesk.core.exceptions import ValidationError
from orderdesk.dto.invoices import InvoiceDocument, InvoiceUrlResponse
from orderdesk.dto.orders import Actor, InvoiceReviewRequest
from orderdesk.routes.dependencies import get_actor, get_workflow_service
from orderdesk.services.order_workflow_service import OrderWorkflowService

invoices_router = APIRouter(tags=["invoices"])


@invoices_router.post("/orders/{order_id}/invoice")
async def upload_invoice(
    order_id: str,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    invoice: Optional[str] = Form(None, description="InvoiceDocument as JSON"),
    expected_version: Optional[int] = Form(None),
    actor: Actor = Depends(get_actor),
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    """Upload the invoice file (pdf/png/jpeg) with its parsed content and send it for verification."""
    document = None
    if invoice:
        try:
            document = InvoiceDocument.model_validate_json(invoice)
        except pydantic.ValidationError as e:
            raise ValidationError("invoice", f"invalid invoice document: {e.errors()[0].get('msg', 'invalid')}")

    content = await file.read()
    result = await service.upload_invoice(
        order_id,
        file.filename,
        content,
        file.content_type,
        actor,
        invoice=document,
        expected_version=expected_version,
        background_tasks=background_tasks,
    )
    return result.as_response("Invoice uploaded for verification")


@invoices_router.post("/orders/{order_id}/invoice/review")
async def review_invoice(
    order_id: str,
    body: InvoiceReviewRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    service: OrderWorkflowService = Depends(get_workflow_service),
):
    result = await service.review_invoice(
        order_id, body.decision, actor, body.reason, body.expected_version, background_tasks
    )
    message = "Invoice approved" if result.order.status == OrderStatus.INVOICE_UPLOADED else "Invoice rejected"
    return result.as_response(message)


@invoices_router.get("/orders/{order_id}/invoice/url", response_model=InvoiceUrlResponse)
async def get_invoice_url(order_id: str, service: OrderWorkflowService = Depends(get_workflow_service)):
    return await service.get_invoice_url(order_id)

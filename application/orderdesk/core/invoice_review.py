from typing import NamedTuple, Optional

from orderdesk.core.constants import OrderStatus, InvoiceDecision
from orderdesk.core.exceptions import ValidationError
from orderdesk.dto.orders import OrderSnapshot


class ReviewOutcome(NamedTuple):
    status: str
    invoice_rejected_reason: str


class InvoiceReviewGate:
    """Approve/reject cycle over the invoice uploaded during Invoice Verification.

    Only the most recent rejection reason is kept; approval clears it.
    """

    @staticmethod
    def decide(decision: str, reason: Optional[str] = None) -> ReviewOutcome:
        if decision == InvoiceDecision.APPROVE:
            return ReviewOutcome(OrderStatus.INVOICE_UPLOADED, "")
        if decision == InvoiceDecision.REJECT:
            return ReviewOutcome(OrderStatus.AWAITING_INVOICE, reason or "")
        raise ValidationError("decision", f"must be 'approve' or 'reject', got '{decision}'")

    def review(self, order: OrderSnapshot, decision: str, reason: Optional[str] = None) -> OrderSnapshot:
        outcome = self.decide(decision, reason)
        if order.invoice is None and not order.invoice_key:
            raise ValidationError("invoice", f"order {order.order_id} has no uploaded invoice to review")
        return order.model_copy(update={
            "status": outcome.status,
            "invoice_rejected_reason": outcome.invoice_rejected_reason,
        })

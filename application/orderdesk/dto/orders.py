from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime

from orderdesk.core.constants import OrderStatus, StockDecision, ItemActionType
from orderdesk.dto.invoices import InvoiceDocument
from orderdesk.logging.utils import get_app_logger

logger = get_app_logger('orders_dto')


class OrderItemSnapshot(BaseModel):
    """One line of an order. Items are matched by (product_id, variant), never by position."""
    model_config = ConfigDict(frozen=True)

    product_id: str
    variant: str
    name: str = ""
    quantity: int
    available_quantity: Optional[int] = None
    price: float = 0.0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.product_id, self.variant)


class OrderSnapshot(BaseModel):
    """Immutable view of an order; workflow steps produce new snapshots with model_copy."""
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    order_id: str = ""
    customer_id: str
    customer_name: str = ""
    company_name: str = ""
    status: str = OrderStatus.ORDER_PLACED
    items: Tuple[OrderItemSnapshot, ...] = ()
    is_partial_order: bool = False
    original_order: Optional[str] = None
    invoice: Optional[InvoiceDocument] = None
    invoice_key: Optional[str] = None
    invoice_rejected_reason: str = ""
    tracking_number: Optional[str] = None
    total_amount: float = 0.0
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def updated_items(self) -> Optional[List[OrderItemSnapshot]]:
        # the working ledger only exists while the order is under review
        if self.status not in OrderStatus.REVIEW_STATUSES:
            return None
        return list(self.items)

    def as_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        updated = self.updated_items
        data["updated_items"] = [item.model_dump(mode="json") for item in updated] if updated is not None else None
        return data


class Actor(BaseModel):
    """Who is acting; role and id come from the actor-context middleware."""
    model_config = ConfigDict(frozen=True)

    role: str
    actor_id: str = ""


def compute_total(items) -> float:
    return round(sum(item.price * item.quantity for item in items), 2)


class ItemAction(BaseModel):
    """A pending add/remove/replace addressed to an item by its identity pair."""
    model_config = ConfigDict(frozen=True)

    type: str
    product_id: str = Field(..., min_length=1, max_length=100)
    variant: str = Field(..., max_length=100)
    name: Optional[str] = Field(None, max_length=200)
    quantity: Optional[int] = None
    new_variant: Optional[str] = Field(None, max_length=100)
    price: Optional[float] = Field(None, ge=0)

    @field_validator("type", mode="before")
    def validate_type(cls, action_type):
        normalized = str(action_type).strip().lower()
        if normalized not in ItemActionType.ALL:
            logger.error(f"invalid_item_action_type | type={action_type}")
            raise ValueError(f"Invalid item action type: {action_type}")
        return normalized

    @property
    def key(self) -> Tuple[str, str]:
        return (self.product_id, self.variant)


class OrderItemCreate(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=100)
    variant: str = Field(..., max_length=100)
    name: str = Field("", max_length=200)
    quantity: int = Field(..., gt=0)
    price: float = Field(0, ge=0)


class OrderCreate(BaseModel):
    customer_id: str = Field(..., min_length=1, max_length=50)
    customer_name: str = Field("", max_length=100)
    company_name: str = Field("", max_length=200)
    items: List[OrderItemCreate] = Field(..., min_length=1)

    @field_validator("items")
    def validate_unique_items(cls, items):
        seen = set()
        for item in items:
            key = (item.product_id, item.variant)
            if key in seen:
                raise ValueError(f"Duplicate item {item.product_id}/{item.variant}")
            seen.add(key)
        return items


class VersionedRequest(BaseModel):
    expected_version: Optional[int] = Field(None, ge=1, description="Fail with 409 when the stored version differs")


class ItemActionsPreview(BaseModel):
    actions: List[ItemAction] = []


class SendToWarehouseRequest(VersionedRequest):
    actions: List[ItemAction] = []


class AvailableQuantity(BaseModel):
    product_id: str = Field(..., min_length=1)
    variant: str
    available_quantity: Optional[int] = Field(None, ge=0, description="Omitted values keep the current figure, else 0")


class WarehouseStockRequest(VersionedRequest):
    items: List[AvailableQuantity] = []


class StockDecisionRequest(VersionedRequest):
    decision: str
    items: List[AvailableQuantity] = []
    reason: str = Field("", max_length=255)

    @field_validator("decision", mode="before")
    def validate_decision(cls, decision):
        normalized = str(decision).strip().lower()
        if normalized not in StockDecision.ALL:
            raise ValueError(f"decision must be one of {sorted(StockDecision.ALL)}")
        return normalized


class InvoiceReviewRequest(VersionedRequest):
    # left unconstrained here; the review gate reports bad decisions itself
    decision: str
    reason: Optional[str] = Field(None, max_length=255)

    @field_validator("decision", mode="before")
    def normalize_decision(cls, decision):
        return str(decision).strip().lower()


class StatusUpdateRequest(VersionedRequest):
    status: str
    tracking_number: Optional[str] = Field(None, max_length=100)
    reason: str = Field("", max_length=255)


class ReworkRequest(VersionedRequest):
    reason: str = Field("", max_length=255)


class CancelRequest(VersionedRequest):
    reason: str = Field("", max_length=255)

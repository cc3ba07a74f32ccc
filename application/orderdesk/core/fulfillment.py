"""
Split an order's ledger snapshot into the confirmed parent items and an
optional back-order carrying the shortfall.
"""
from typing import List, NamedTuple, Optional, Sequence, Tuple

from orderdesk.core.constants import OrderStatus
from orderdesk.core.item_ledger import LedgerLine
from orderdesk.dto.orders import OrderItemSnapshot, OrderSnapshot, compute_total


class FulfillmentLine(NamedTuple):
    """Per-item outcome of a split, kept for the fulfilment audit."""
    product_id: str
    variant: str
    requested: int
    available: int
    confirmed: int
    shortfall: int

    @property
    def dropped(self) -> bool:
        return self.confirmed == 0


class SplitResult(NamedTuple):
    parent: OrderSnapshot
    back_order: Optional[OrderSnapshot]
    lines: Tuple[FulfillmentLine, ...]

    @property
    def is_split(self) -> bool:
        return self.back_order is not None

    @property
    def dropped_items(self) -> List[FulfillmentLine]:
        return [line for line in self.lines if line.dropped]


class FulfillmentSplitter:

    def split(self, order: OrderSnapshot, ledger: Sequence[LedgerLine], next_status: str) -> SplitResult:
        """
        Partition the ledger into confirmed and short quantities.

        With no shortfall the parent keeps its requested quantities. Otherwise
        the parent keeps min(requested, available) per item (zero lines dropped)
        and one back-order in Order Placed carries requested - available for
        every short item. The parent moves to next_status either way, even when
        nothing at all is available.
        """
        lines = tuple(
            FulfillmentLine(
                product_id=line.product_id,
                variant=line.variant,
                requested=line.quantity,
                available=line.available_quantity,
                confirmed=line.confirmed_quantity,
                shortfall=line.shortfall,
            )
            for line in ledger
        )

        if not any(line.shortfall for line in lines):
            items = tuple(
                OrderItemSnapshot(
                    product_id=line.product_id,
                    variant=line.variant,
                    name=line.name,
                    price=line.price,
                    quantity=line.quantity,
                    available_quantity=line.available_quantity,
                )
                for line in ledger
            )
            parent = order.model_copy(update={"status": next_status, "items": items})
            return SplitResult(parent=parent, back_order=None, lines=lines)

        parent_items = tuple(
            OrderItemSnapshot(
                product_id=line.product_id,
                variant=line.variant,
                name=line.name,
                price=line.price,
                quantity=line.confirmed_quantity,
                available_quantity=line.confirmed_quantity,
            )
            for line in ledger
            if line.confirmed_quantity > 0
        )
        back_items = tuple(
            OrderItemSnapshot(
                product_id=line.product_id,
                variant=line.variant,
                name=line.name,
                price=line.price,
                quantity=line.shortfall,
            )
            for line in ledger
            if line.shortfall > 0
        )

        parent = order.model_copy(update={
            "status": next_status,
            "items": parent_items,
            "total_amount": compute_total(parent_items),
        })
        back_order = OrderSnapshot(
            customer_id=order.customer_id,
            customer_name=order.customer_name,
            company_name=order.company_name,
            status=OrderStatus.ORDER_PLACED,
            items=back_items,
            is_partial_order=True,
            original_order=order.order_id,
            total_amount=compute_total(back_items),
        )
        return SplitResult(parent=parent, back_order=back_order, lines=lines)

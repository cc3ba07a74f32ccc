"""
Working ledger of requested vs. available quantities for an order under review.

Quantities are keyed by the (product_id, variant) identity pair. The ledger
only holds state in memory; the workflow service persists its snapshot.
"""
from typing import Dict, Iterable, NamedTuple, Optional, Tuple

from orderdesk.core.exceptions import ValidationError
from orderdesk.dto.orders import OrderItemSnapshot

ItemKey = Tuple[str, str]


class LedgerLine(NamedTuple):
    product_id: str
    variant: str
    name: str
    price: float
    quantity: int
    available_quantity: int

    @property
    def key(self) -> ItemKey:
        return (self.product_id, self.variant)

    @property
    def shortfall(self) -> int:
        return max(self.quantity - self.available_quantity, 0)

    @property
    def confirmed_quantity(self) -> int:
        return min(self.quantity, self.available_quantity)


class ItemLedger:
    def __init__(self, items: Iterable[OrderItemSnapshot]):
        # insertion order is display order and must round-trip
        self._items: Dict[ItemKey, OrderItemSnapshot] = {}
        self._available: Dict[ItemKey, Optional[int]] = {}
        for item in items:
            if item.key in self._items:
                raise ValidationError("items", f"duplicate item {item.product_id}/{item.variant}")
            self._items[item.key] = item
            self._available[item.key] = item.available_quantity

    def __contains__(self, key: ItemKey) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def set_available(self, key: ItemKey, qty: Optional[int]) -> None:
        """
        Record the available quantity for one item.

        Any qty >= 0 is accepted, including more than was requested. None keeps
        the value already on the item (0 when the item has none yet).
        """
        if key not in self._items:
            raise ValidationError("items", f"unknown item {key[0]}/{key[1]}")
        if qty is None:
            qty = self._available[key] or 0
        if isinstance(qty, bool) or not isinstance(qty, int):
            raise ValidationError("available_quantity", f"must be an integer for {key[0]}/{key[1]}")
        if qty < 0:
            raise ValidationError("available_quantity", f"must be >= 0 for {key[0]}/{key[1]}, got {qty}")
        self._available[key] = qty

    def apply(self, updates: Iterable[Tuple[ItemKey, Optional[int]]]) -> None:
        """Validate every update first so a bad entry leaves the ledger untouched."""
        staged = ItemLedger(self.items())
        for key, qty in updates:
            staged.set_available(key, qty)
        self._available = staged._available

    def available(self, key: ItemKey) -> int:
        value = self._available[key]
        return value if value is not None else 0

    def snapshot(self) -> Tuple[LedgerLine, ...]:
        return tuple(
            LedgerLine(
                product_id=item.product_id,
                variant=item.variant,
                name=item.name,
                price=item.price,
                quantity=item.quantity,
                available_quantity=self.available(key),
            )
            for key, item in self._items.items()
        )

    def items(self) -> Tuple[OrderItemSnapshot, ...]:
        """Items carrying the ledger's available quantities."""
        return tuple(
            item.model_copy(update={"available_quantity": self._available[key]})
            for key, item in self._items.items()
        )

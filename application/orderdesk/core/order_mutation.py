"""
Item mutation protocol for orders that are still editable.

Pending add/remove/replace actions are folded into one net action per
identity pair (product_id, variant), then applied to the base item list.
Both steps are pure: the same base list and action log always give the same
result, and feeding the pruned log back in returns it unchanged.

Fold rules, in submission order:
    add      new pair -> pending add (a later add for the same pair wins)
    remove   base pair -> remove; pending add -> dropped, nothing is emitted
    replace  base pair -> replace, or nothing when the result equals the base
             item; pending add -> the add is rewritten
A remove purges every earlier action for its pair, and every action moves its
pair to the end of the output, so the log reads in last-touched order.
"""
from typing import Dict, List, Optional, Sequence, Tuple

from orderdesk.core.constants import ItemActionType
from orderdesk.core.exceptions import ValidationError
from orderdesk.dto.orders import ItemAction, OrderItemSnapshot

ItemKey = Tuple[str, str]


def _label(key: ItemKey) -> str:
    return f"{key[0]}/{key[1]}"


def _check_action(action: ItemAction) -> None:
    if not action.product_id:
        raise ValidationError("product_id", "a product must be selected")
    if action.type == ItemActionType.ADD and action.quantity is None:
        raise ValidationError("quantity", f"add for {_label(action.key)} needs a quantity")
    if action.quantity is not None and action.quantity <= 0:
        raise ValidationError("quantity", f"must be > 0 for {_label(action.key)}, got {action.quantity}")
    if action.type == ItemActionType.REPLACE and action.new_variant is not None and not action.new_variant.strip():
        raise ValidationError("new_variant", f"cannot be blank for {_label(action.key)}")


def _move_to_end(pending: Dict[ItemKey, ItemAction], key: ItemKey, action: Optional[ItemAction]) -> None:
    pending.pop(key, None)
    if action is not None:
        pending[key] = action


def _net_replace(base_item: OrderItemSnapshot, action: ItemAction) -> Optional[ItemAction]:
    variant = action.new_variant if action.new_variant is not None else base_item.variant
    quantity = action.quantity if action.quantity is not None else base_item.quantity
    if variant == base_item.variant and quantity == base_item.quantity:
        return None
    return ItemAction(
        type=ItemActionType.REPLACE,
        product_id=base_item.product_id,
        variant=base_item.variant,
        new_variant=variant if variant != base_item.variant else None,
        quantity=quantity if quantity != base_item.quantity else None,
    )


def prune_actions(base_items: Sequence[OrderItemSnapshot], actions: Sequence[ItemAction]) -> List[ItemAction]:
    """Collapse an action log to the minimal net actions against base_items."""
    base: Dict[ItemKey, OrderItemSnapshot] = {item.key: item for item in base_items}
    pending: Dict[ItemKey, ItemAction] = {}

    for action in actions:
        _check_action(action)
        key = action.key
        prior = pending.get(key)
        removed = prior is not None and prior.type == ItemActionType.REMOVE

        if action.type == ItemActionType.ADD:
            if key in base and not removed:
                raise ValidationError("items", f"{_label(key)} is already on the order")
            if key in base:
                # remove followed by add of the same base item nets to a replace
                _move_to_end(pending, key, _net_replace(base[key], action))
            else:
                _move_to_end(pending, key, action)

        elif action.type == ItemActionType.REMOVE:
            if key in base:
                if removed:
                    raise ValidationError("items", f"{_label(key)} is already removed")
                _move_to_end(pending, key, action)
            elif prior is not None:
                # only ever a pending add; it simply disappears
                _move_to_end(pending, key, None)
            else:
                raise ValidationError("items", f"{_label(key)} is not on the order")

        else:
            if key in base and not removed:
                _move_to_end(pending, key, _net_replace(base[key], action))
            elif key not in base and prior is not None:
                new_key = (key[0], action.new_variant) if action.new_variant is not None else key
                if new_key != key and (new_key in base or new_key in pending):
                    raise ValidationError("items", f"{_label(new_key)} is already on the order")
                rewritten = prior.model_copy(update={
                    "variant": new_key[1],
                    "quantity": action.quantity if action.quantity is not None else prior.quantity,
                })
                _move_to_end(pending, key, None)
                _move_to_end(pending, new_key, rewritten)
            else:
                raise ValidationError("items", f"{_label(key)} is not on the order")

    return list(pending.values())


def reconcile(base_items: Sequence[OrderItemSnapshot], actions: Sequence[ItemAction]) -> Tuple[OrderItemSnapshot, ...]:
    """
    Apply the pruned action log to base_items.

    Base items keep their positions (removed ones are dropped), replaced items
    lose their available quantity, and adds are appended in log order.
    """
    net = prune_actions(base_items, actions)
    by_key = {action.key: action for action in net}

    result: List[OrderItemSnapshot] = []
    for item in base_items:
        action = by_key.get(item.key)
        if action is None:
            result.append(item)
        elif action.type == ItemActionType.REPLACE:
            result.append(item.model_copy(update={
                "variant": action.new_variant if action.new_variant is not None else item.variant,
                "quantity": action.quantity if action.quantity is not None else item.quantity,
                "available_quantity": None,
            }))
        # removes drop the item

    for action in net:
        if action.type == ItemActionType.ADD:
            result.append(OrderItemSnapshot(
                product_id=action.product_id,
                variant=action.variant,
                name=action.name or "",
                quantity=action.quantity,
                price=action.price or 0.0,
            ))

    seen = set()
    for item in result:
        if item.key in seen:
            raise ValidationError("items", f"{_label(item.key)} would appear twice on the order")
        seen.add(item.key)
    return tuple(result)

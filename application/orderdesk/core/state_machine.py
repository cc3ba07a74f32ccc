"""
Order status state machine.

One explicit table maps each status to the statuses reachable from it, the
workflow action that performs the move and the roles allowed to perform it.
Two moves are not edges in the table: the manual override (linear forward
advance after invoicing) and cancellation (from any non-terminal status).
Every caller validates through OrderStateMachine.validate before touching
items, so a rejected transition never leaves a partially applied change.
"""
from typing import Dict, FrozenSet, List, NamedTuple, Optional

from orderdesk.core.constants import OrderStatus, ActorRole, WorkflowAction
from orderdesk.core.exceptions import InvalidTransition, ForbiddenTransition


class TransitionRule(NamedTuple):
    action: str
    roles: FrozenSet[str]


def _rule(action: str, *roles: str) -> TransitionRule:
    return TransitionRule(action, frozenset(roles))


_SEND = _rule(WorkflowAction.SEND_TO_WAREHOUSE, ActorRole.SALES, ActorRole.OPS)
_DECIDE = _rule(WorkflowAction.STOCK_DECISION, ActorRole.ADMIN)
_REVIEW = _rule(WorkflowAction.REVIEW_INVOICE, ActorRole.ADMIN)
_REWORK = _rule(WorkflowAction.REWORK, ActorRole.ADMIN, ActorRole.OPS)

TRANSITIONS: Dict[str, Dict[str, TransitionRule]] = {
    OrderStatus.ORDER_PLACED: {
        OrderStatus.WAREHOUSE_PROCESSING: _SEND,
    },
    OrderStatus.INPROCESSING: {
        OrderStatus.WAREHOUSE_PROCESSING: _SEND,
    },
    OrderStatus.WAREHOUSE_PROCESSING: {
        OrderStatus.ADMIN_STOCK_REVIEW: _rule(WorkflowAction.REPORT_STOCK, ActorRole.WAREHOUSE),
    },
    OrderStatus.ADMIN_STOCK_REVIEW: {
        OrderStatus.AWAITING_INVOICE: _DECIDE,
        OrderStatus.APPROVAL_PENDING: _DECIDE,
        OrderStatus.WAREHOUSE_PROCESSING: _DECIDE,
    },
    OrderStatus.APPROVAL_PENDING: {
        OrderStatus.AWAITING_INVOICE: _DECIDE,
        OrderStatus.WAREHOUSE_PROCESSING: _DECIDE,
    },
    OrderStatus.AWAITING_INVOICE: {
        OrderStatus.INVOICE_VERIFICATION: _rule(WorkflowAction.UPLOAD_INVOICE, ActorRole.MANAGER),
    },
    OrderStatus.INVOICE_VERIFICATION: {
        OrderStatus.INVOICE_UPLOADED: _REVIEW,
        OrderStatus.AWAITING_INVOICE: _REVIEW,
    },
}

for _status in OrderStatus.REWORKABLE:
    TRANSITIONS.setdefault(_status, {})[OrderStatus.REWORK] = _REWORK

MANUAL_ADVANCE_ROLES = frozenset({ActorRole.ADMIN, ActorRole.OPS})
CANCEL_ROLES = frozenset({ActorRole.ADMIN})


class OrderStateMachine:
    """Queries and validation over the transition table."""

    @staticmethod
    def _check_known(status: str):
        if not OrderStatus.is_valid(status):
            raise InvalidTransition(status, status, f"Unknown order status '{status}'")

    @classmethod
    def is_manual_advance_allowed(cls, current: str, target: str) -> bool:
        if current in OrderStatus.PRE_INVOICE or current in OrderStatus.TERMINAL:
            return False
        if target not in OrderStatus.LINEAR_TARGETS:
            return False
        if current == OrderStatus.REWORK:
            return True
        return OrderStatus.position(target) > OrderStatus.position(current)

    @classmethod
    def is_cancel_allowed(cls, current: str) -> bool:
        return OrderStatus.is_valid(current) and current not in OrderStatus.TERMINAL

    @classmethod
    def is_legal(cls, current: str, target: str) -> bool:
        """True when any action by any role can move current to target."""
        if target in TRANSITIONS.get(current, {}):
            return True
        if target == OrderStatus.CANCELLED:
            return cls.is_cancel_allowed(current)
        return cls.is_manual_advance_allowed(current, target)

    @classmethod
    def validate(cls, current: str, target: str, action: str, role: str) -> TransitionRule:
        """
        Validate that `role` may move an order from `current` to `target` via `action`.

        Raises:
            InvalidTransition: the move is not in the table for this action
            ForbiddenTransition: the move exists but not for this role
        """
        cls._check_known(current)
        cls._check_known(target)

        if action == WorkflowAction.CANCEL:
            if target != OrderStatus.CANCELLED or not cls.is_cancel_allowed(current):
                raise InvalidTransition(current, target)
            rule = TransitionRule(WorkflowAction.CANCEL, CANCEL_ROLES)
        elif action == WorkflowAction.MANUAL_ADVANCE:
            if not cls.is_manual_advance_allowed(current, target):
                raise InvalidTransition(current, target)
            rule = TransitionRule(WorkflowAction.MANUAL_ADVANCE, MANUAL_ADVANCE_ROLES)
        else:
            rule = TRANSITIONS.get(current, {}).get(target)
            if rule is None or rule.action != action:
                raise InvalidTransition(current, target)

        if role not in rule.roles:
            raise ForbiddenTransition(current, target, role)
        return rule

    @classmethod
    def allowed_targets(cls, current: str, role: Optional[str] = None) -> List[str]:
        """Statuses reachable from `current`, optionally filtered to what `role` may do."""
        targets = []
        for target, rule in TRANSITIONS.get(current, {}).items():
            if role is None or role in rule.roles:
                targets.append(target)
        if role is None or role in MANUAL_ADVANCE_ROLES:
            targets.extend(t for t in OrderStatus.LINEAR_TARGETS if cls.is_manual_advance_allowed(current, t))
        if cls.is_cancel_allowed(current) and (role is None or role in CANCEL_ROLES):
            targets.append(OrderStatus.CANCELLED)
        return list(dict.fromkeys(targets))

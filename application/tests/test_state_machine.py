import pytest

from orderdesk.core.constants import OrderStatus, ActorRole, WorkflowAction
from orderdesk.core.exceptions import InvalidTransition, ForbiddenTransition
from orderdesk.core.state_machine import OrderStateMachine, TRANSITIONS


class TestTransitionTable:

    def test_every_status_in_table_is_known(self):
        for current, targets in TRANSITIONS.items():
            assert OrderStatus.is_valid(current)
            for target in targets:
                assert OrderStatus.is_valid(target)

    def test_sales_sends_order_to_warehouse(self):
        rule = OrderStateMachine.validate(
            OrderStatus.ORDER_PLACED, OrderStatus.WAREHOUSE_PROCESSING, WorkflowAction.SEND_TO_WAREHOUSE, ActorRole.SALES
        )
        assert rule.action == WorkflowAction.SEND_TO_WAREHOUSE

    def test_inprocessing_can_be_sent_to_warehouse(self):
        OrderStateMachine.validate(
            OrderStatus.INPROCESSING, OrderStatus.WAREHOUSE_PROCESSING, WorkflowAction.SEND_TO_WAREHOUSE, ActorRole.OPS
        )

    def test_warehouse_cannot_send_to_warehouse(self):
        with pytest.raises(ForbiddenTransition) as exc:
            OrderStateMachine.validate(
                OrderStatus.ORDER_PLACED, OrderStatus.WAREHOUSE_PROCESSING,
                WorkflowAction.SEND_TO_WAREHOUSE, ActorRole.WAREHOUSE,
            )
        assert exc.value.role == ActorRole.WAREHOUSE
        assert exc.value.from_status == OrderStatus.ORDER_PLACED

    def test_stock_decision_targets_from_admin_stock_review(self):
        for target in (OrderStatus.AWAITING_INVOICE, OrderStatus.APPROVAL_PENDING, OrderStatus.WAREHOUSE_PROCESSING):
            OrderStateMachine.validate(OrderStatus.ADMIN_STOCK_REVIEW, target, WorkflowAction.STOCK_DECISION, ActorRole.ADMIN)

    def test_action_must_match_edge(self):
        # the edge exists but belongs to a different action
        with pytest.raises(InvalidTransition):
            OrderStateMachine.validate(
                OrderStatus.WAREHOUSE_PROCESSING, OrderStatus.ADMIN_STOCK_REVIEW,
                WorkflowAction.STOCK_DECISION, ActorRole.ADMIN,
            )

    def test_only_manager_uploads_invoice(self):
        OrderStateMachine.validate(
            OrderStatus.AWAITING_INVOICE, OrderStatus.INVOICE_VERIFICATION, WorkflowAction.UPLOAD_INVOICE, ActorRole.MANAGER
        )
        with pytest.raises(ForbiddenTransition):
            OrderStateMachine.validate(
                OrderStatus.AWAITING_INVOICE, OrderStatus.INVOICE_VERIFICATION, WorkflowAction.UPLOAD_INVOICE, ActorRole.ADMIN
            )

    def test_unknown_status_is_invalid(self):
        with pytest.raises(InvalidTransition):
            OrderStateMachine.validate("Shipped", OrderStatus.DELIVERED, WorkflowAction.MANUAL_ADVANCE, ActorRole.ADMIN)


class TestManualAdvance:

    def test_packing_back_to_invoice_uploaded_is_rejected(self):
        with pytest.raises(InvalidTransition) as exc:
            OrderStateMachine.validate(
                OrderStatus.PACKING, OrderStatus.INVOICE_UPLOADED, WorkflowAction.MANUAL_ADVANCE, ActorRole.ADMIN
            )
        assert not isinstance(exc.value, ForbiddenTransition)
        assert exc.value.from_status == "Packing"
        assert exc.value.to_status == "Invoice Uploaded"
        assert "Packing" in exc.value.message and "Invoice Uploaded" in exc.value.message

    def test_forward_skip_is_allowed(self):
        OrderStateMachine.validate(
            OrderStatus.INVOICE_UPLOADED, OrderStatus.DISPATCHED, WorkflowAction.MANUAL_ADVANCE, ActorRole.OPS
        )

    def test_no_manual_advance_before_invoicing(self):
        for current in OrderStatus.PRE_INVOICE:
            assert not OrderStateMachine.is_manual_advance_allowed(current, OrderStatus.CONFIRMED)

    def test_manual_advance_cannot_reach_pre_invoice_status(self):
        assert not OrderStateMachine.is_manual_advance_allowed(OrderStatus.CONFIRMED, OrderStatus.AWAITING_INVOICE)

    def test_rework_may_resume_anywhere_after_invoicing(self):
        for target in OrderStatus.LINEAR_TARGETS:
            assert OrderStateMachine.is_manual_advance_allowed(OrderStatus.REWORK, target)

    def test_delivered_is_terminal(self):
        assert OrderStateMachine.allowed_targets(OrderStatus.DELIVERED) == []

    def test_sales_cannot_advance_manually(self):
        with pytest.raises(ForbiddenTransition):
            OrderStateMachine.validate(
                OrderStatus.CONFIRMED, OrderStatus.PACKING, WorkflowAction.MANUAL_ADVANCE, ActorRole.SALES
            )


class TestSideStates:

    def test_cancel_from_any_non_terminal_status(self):
        for status in OrderStatus.ALL:
            if status in OrderStatus.TERMINAL:
                continue
            OrderStateMachine.validate(status, OrderStatus.CANCELLED, WorkflowAction.CANCEL, ActorRole.ADMIN)

    def test_cancelled_cannot_be_cancelled_again(self):
        with pytest.raises(InvalidTransition):
            OrderStateMachine.validate(
                OrderStatus.CANCELLED, OrderStatus.CANCELLED, WorkflowAction.CANCEL, ActorRole.ADMIN
            )

    def test_rework_only_after_invoice(self):
        assert OrderStateMachine.is_legal(OrderStatus.PACKING, OrderStatus.REWORK)
        assert not OrderStateMachine.is_legal(OrderStatus.AWAITING_INVOICE, OrderStatus.REWORK)


class TestAllowedTargets:

    def test_filtered_by_role(self):
        assert OrderStateMachine.allowed_targets(OrderStatus.ADMIN_STOCK_REVIEW, ActorRole.WAREHOUSE) == []
        targets = OrderStateMachine.allowed_targets(OrderStatus.ADMIN_STOCK_REVIEW, ActorRole.ADMIN)
        assert targets == [
            OrderStatus.AWAITING_INVOICE,
            OrderStatus.APPROVAL_PENDING,
            OrderStatus.WAREHOUSE_PROCESSING,
            OrderStatus.CANCELLED,
        ]

    def test_confirmed_for_ops(self):
        targets = OrderStateMachine.allowed_targets(OrderStatus.CONFIRMED, ActorRole.OPS)
        assert targets == [OrderStatus.REWORK, OrderStatus.PACKING, OrderStatus.DISPATCHED, OrderStatus.DELIVERED]


STATUS_PAIRS = [(current, target) for current in OrderStatus.ALL for target in OrderStatus.ALL]


class TestLegalitySweep:

    @pytest.mark.parametrize("current,target", STATUS_PAIRS)
    def test_pair_outside_table_always_refused(self, current, target):
        accepted = []
        for action in WorkflowAction.ALL:
            for role in sorted(ActorRole.ALL):
                try:
                    OrderStateMachine.validate(current, target, action, role)
                except InvalidTransition:
                    continue
                accepted.append((action, role))

        if OrderStateMachine.is_legal(current, target):
            assert accepted, f"{current} -> {target} is legal but no action/role can take it"
        else:
            assert accepted == []

    @pytest.mark.parametrize("current", OrderStatus.ALL)
    def test_no_self_transitions(self, current):
        assert not OrderStateMachine.is_legal(current, current)

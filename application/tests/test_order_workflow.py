import pytest
from fastapi import BackgroundTasks
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import text

from orderdesk.connections.database import get_raw_transaction
from orderdesk.core.constants import OrderStatus, WorkflowAction
from orderdesk.core.exceptions import (
    ConflictError,
    ExternalServiceError,
    ForbiddenTransition,
    InvalidTransition,
    OrderNotFound,
    ValidationError,
)
from orderdesk.dto.invoices import InvoiceDocument
from orderdesk.dto.orders import AvailableQuantity, ItemAction, OrderCreate
from orderdesk.services.order_workflow_service import OrderWorkflowService

from tests.conftest import ADMIN, MANAGER, OPS, SALES, WAREHOUSE, FakeStorage

PDF = b"%PDF-1.4 invoice"


def qty(product_id, variant, available):
    return AvailableQuantity(product_id=product_id, variant=variant, available_quantity=available)


async def _to_stock_review(service, order, *quantities):
    await service.send_to_warehouse(order.order_id, [], SALES)
    await service.report_warehouse_stock(order.order_id, list(quantities), WAREHOUSE)


async def _to_awaiting_invoice(service, place_order):
    order = await place_order(("P1", "Red", 10, 10.0), ("P2", "Blue", 5, 25.0))
    await _to_stock_review(service, order, qty("P1", "Red", 10), qty("P2", "Blue", 5))
    await service.stock_decision(order.order_id, "proceed", ADMIN)
    return order


class TestCreateOrder:

    async def test_order_starts_placed(self, service, place_order, notifier):
        order = await place_order(("P1", "Red", 2, 10.0))
        assert order.status == OrderStatus.ORDER_PLACED
        assert order.order_id.endswith(str(order.id))
        assert order.version == 1
        assert order.total_amount == 20.0
        assert notifier.events[0].action == WorkflowAction.CREATE

    async def test_warehouse_cannot_create(self, service, place_order):
        data = OrderCreate(customer_id="C1", items=[{"product_id": "P1", "variant": "Red", "quantity": 1}])
        with pytest.raises(ForbiddenTransition):
            await service.create_order(data, WAREHOUSE)

    async def test_unknown_variant_rejected(self, place_order):
        with pytest.raises(ValidationError):
            await place_order(("P1", "Purple", 1, 10.0))

    async def test_list_orders_by_status(self, service, place_order):
        first = await place_order(("P1", "Red", 1, 10.0))
        second = await place_order(("P2", "Blue", 2, 25.0))
        await service.send_to_warehouse(second.order_id, [], SALES)

        everything = await service.list_orders()
        assert [o["order_id"] for o in everything["orders"]] == [second.order_id, first.order_id]

        placed = await service.list_orders(status=OrderStatus.ORDER_PLACED)
        assert placed["count"] == 1
        assert placed["orders"][0]["order_id"] == first.order_id
        assert placed["orders"][0]["total_amount"] == 10.0

        in_warehouse = await service.list_orders(status=OrderStatus.WAREHOUSE_PROCESSING)
        assert [(o["order_id"], o["version"]) for o in in_warehouse["orders"]] == [(second.order_id, 2)]

        assert len((await service.list_orders(limit=1))["orders"]) == 1

    async def test_list_orders_unknown_status(self, service):
        with pytest.raises(ValidationError) as exc:
            await service.list_orders(status="Shipped")
        assert exc.value.field == "status"

    async def test_missing_order(self, service):
        with pytest.raises(OrderNotFound):
            await service.get_order_details("NOPE1", ADMIN)


class TestSendToWarehouse:

    async def test_actions_applied_and_recorded(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0), ("P2", "Blue", 5, 25.0))
        actions = [
            ItemAction(type="add", product_id="P3", variant="Std", quantity=2),
            ItemAction(type="replace", product_id="P1", variant="Red", quantity=8),
        ]
        result = await service.send_to_warehouse(order.order_id, actions, SALES, expected_version=1)

        assert result.order.status == OrderStatus.WAREHOUSE_PROCESSING
        assert result.order.version == 2

        stored = service.repository.get_order(order.order_id)
        assert [(i.key, i.quantity) for i in stored.items] == [
            (("P1", "Red"), 8), (("P2", "Blue"), 5), (("P3", "Std"), 2),
        ]
        assert stored.items[2].name == "Doohickey"
        assert stored.total_amount == 214.0

        recorded = (await service.get_item_actions(order.order_id))["actions"]
        assert [a["action_type"] for a in recorded] == ["add", "replace"]

    async def test_failed_catalog_check_writes_nothing(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        with pytest.raises(ValidationError):
            await service.send_to_warehouse(
                order.order_id, [ItemAction(type="add", product_id="P1", variant="Purple", quantity=1)], SALES
            )
        stored = service.repository.get_order(order.order_id)
        assert stored.status == OrderStatus.ORDER_PLACED
        assert stored.version == 1

    async def test_removing_every_item_rejected(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        with pytest.raises(ValidationError):
            await service.send_to_warehouse(
                order.order_id, [ItemAction(type="remove", product_id="P1", variant="Red")], SALES
            )

    async def test_cannot_resend_from_warehouse(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        await service.send_to_warehouse(order.order_id, [], SALES)
        await service.report_warehouse_stock(order.order_id, [qty("P1", "Red", 10)], WAREHOUSE)
        await service.stock_decision(order.order_id, "recheck", ADMIN)
        with pytest.raises(InvalidTransition):
            await service.send_to_warehouse(
                order.order_id, [ItemAction(type="remove", product_id="P1", variant="Red")], SALES
            )

    async def test_stale_version_conflicts(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        with pytest.raises(ConflictError) as exc:
            await service.send_to_warehouse(order.order_id, [], SALES, expected_version=3)
        assert exc.value.actual_version == 1


class TestStockReview:

    async def test_partial_stock_creates_back_order(self, service, place_order, notifier):
        order = await place_order(("P1", "Red", 10, 10.0), ("P2", "Blue", 5, 25.0))
        await _to_stock_review(service, order, qty("P1", "Red", 6), qty("P2", "Blue", 5))

        result = await service.stock_decision(order.order_id, "proceed", ADMIN)

        parent = service.repository.get_order(order.order_id)
        assert parent.status == OrderStatus.AWAITING_INVOICE
        assert [(i.key, i.quantity, i.available_quantity) for i in parent.items] == [
            (("P1", "Red"), 6, 6), (("P2", "Blue"), 5, 5),
        ]
        assert parent.version == 4

        back_order = service.repository.get_order(result.back_order.order_id)
        assert back_order.status == OrderStatus.ORDER_PLACED
        assert back_order.is_partial_order
        assert back_order.original_order == order.order_id
        assert [(i.key, i.quantity) for i in back_order.items] == [(("P1", "Red"), 4)]

        details = await service.get_order_details(back_order.order_id, ADMIN)
        assert details["lineage"] == [order.order_id]
        parent_details = await service.get_order_details(order.order_id, ADMIN)
        assert [b["order_id"] for b in parent_details["back_orders"]] == [back_order.order_id]

        fulfillment = (await service.get_item_actions(order.order_id))["fulfillment"]
        assert [(f["product_id"], f["confirmed"], f["shortfall"]) for f in fulfillment] == [("P1", 6, 4), ("P2", 5, 0)]
        assert all(f["back_order_id"] == back_order.order_id for f in fulfillment)

        assert [e.event for e in notifier.events][-2:] == ["order_status_changed", "back_order_created"]

    async def test_full_stock_does_not_split(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        await _to_stock_review(service, order, qty("P1", "Red", 15))
        result = await service.stock_decision(order.order_id, "proceed", ADMIN)
        assert result.back_order is None
        assert result.order.items[0].quantity == 10
        assert (await service.get_order_details(order.order_id, ADMIN))["back_orders"] == []

    async def test_nothing_available_still_advances(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0), ("P2", "Blue", 5, 25.0))
        await _to_stock_review(service, order, qty("P1", "Red", 0), qty("P2", "Blue", 0))
        result = await service.stock_decision(order.order_id, "proceed", ADMIN)

        parent = service.repository.get_order(order.order_id)
        assert parent.status == OrderStatus.AWAITING_INVOICE
        assert parent.items == ()
        assert [i.quantity for i in result.back_order.items] == [10, 5]

    async def test_hold_splits_then_proceed_does_not(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        await _to_stock_review(service, order, qty("P1", "Red", 7))
        held = await service.stock_decision(order.order_id, "hold", ADMIN, reason="waiting on customer")
        assert held.order.status == OrderStatus.APPROVAL_PENDING
        assert held.back_order is not None

        with pytest.raises(ValidationError):
            await service.stock_decision(order.order_id, "proceed", ADMIN, quantities=[qty("P1", "Red", 9)])

        result = await service.stock_decision(order.order_id, "proceed", ADMIN)
        assert result.order.status == OrderStatus.AWAITING_INVOICE
        assert result.back_order is None
        assert len((await service.get_order_details(order.order_id, ADMIN))["back_orders"]) == 1

    async def test_recheck_returns_to_warehouse(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        await _to_stock_review(service, order, qty("P1", "Red", 3))
        result = await service.stock_decision(order.order_id, "recheck", ADMIN, quantities=[qty("P1", "Red", 4)])
        assert result.order.status == OrderStatus.WAREHOUSE_PROCESSING
        assert result.back_order is None
        assert service.repository.get_order(order.order_id).items[0].available_quantity == 4

    async def test_updated_items_only_during_review(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        assert order.as_dict()["updated_items"] is None
        await _to_stock_review(service, order, qty("P1", "Red", 3))
        stored = service.repository.get_order(order.order_id)
        assert stored.as_dict()["updated_items"][0]["available_quantity"] == 3

    async def test_warehouse_role_required_for_stock_report(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        await service.send_to_warehouse(order.order_id, [], SALES)
        with pytest.raises(ForbiddenTransition):
            await service.report_warehouse_stock(order.order_id, [qty("P1", "Red", 3)], SALES)

    async def test_negative_quantity_writes_nothing(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        await service.send_to_warehouse(order.order_id, [], SALES)
        negative = AvailableQuantity.model_construct(product_id="P1", variant="Red", available_quantity=-1)
        with pytest.raises(ValidationError):
            await service.report_warehouse_stock(order.order_id, [negative], WAREHOUSE)
        assert service.repository.get_order(order.order_id).status == OrderStatus.WAREHOUSE_PROCESSING

    def test_negative_quantity_rejected_by_request_model(self):
        with pytest.raises(PydanticValidationError):
            qty("P1", "Red", -1)

    async def test_repeated_item_is_rejected(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        await service.send_to_warehouse(order.order_id, [], SALES)
        negative = AvailableQuantity.model_construct(product_id="P1", variant="Red", available_quantity=-1)

        with pytest.raises(ValidationError) as exc:
            await service.report_warehouse_stock(order.order_id, [negative, qty("P1", "Red", 6)], WAREHOUSE)
        assert exc.value.field == "items"
        assert exc.value.reason == "duplicate entry for P1/Red"

        with pytest.raises(ValidationError):
            await service.report_warehouse_stock(
                order.order_id, [qty("P1", "Red", 3), qty("P1", "Red", 6)], WAREHOUSE
            )
        stored = service.repository.get_order(order.order_id)
        assert stored.status == OrderStatus.WAREHOUSE_PROCESSING
        assert stored.version == 2

    async def test_repeated_item_in_stock_decision(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        await _to_stock_review(service, order, qty("P1", "Red", 4))
        with pytest.raises(ValidationError):
            await service.stock_decision(
                order.order_id, "proceed", ADMIN, quantities=[qty("P1", "Red", 2), qty("P1", "Red", 4)]
            )
        assert service.repository.get_order(order.order_id).status == OrderStatus.ADMIN_STOCK_REVIEW


class TestInvoicing:

    async def test_reject_reupload_approve(self, service, place_order, storage):
        order = await _to_awaiting_invoice(service, place_order)

        await service.upload_invoice(
            order.order_id, "inv.pdf", PDF, "application/pdf", MANAGER, invoice=InvoiceDocument(invoice_number="INV-1"),
        )
        rejected = await service.review_invoice(order.order_id, "reject", ADMIN, reason="HSN mismatch")
        assert rejected.order.status == OrderStatus.AWAITING_INVOICE
        stored = service.repository.get_order(order.order_id)
        assert stored.invoice_rejected_reason == "HSN mismatch"
        assert stored.invoice.invoice_number == "INV-1"

        await service.upload_invoice(
            order.order_id, "inv-v2.pdf", PDF, "application/pdf", MANAGER, invoice=InvoiceDocument(invoice_number="INV-1A"),
        )
        approved = await service.review_invoice(order.order_id, "approve", ADMIN)
        assert approved.order.status == OrderStatus.INVOICE_UPLOADED

        stored = service.repository.get_order(order.order_id)
        assert stored.invoice_rejected_reason == ""
        assert stored.invoice.invoice_number == "INV-1A"
        assert stored.invoice.file_name == "inv-v2.pdf"
        assert stored.invoice.size_bytes == len(PDF)
        assert stored.invoice_key == storage.uploads[-1][0]

        history = (await service.get_status_history(order.order_id))["history"]
        reasons = [e["reason"] for e in history if e["action"] == WorkflowAction.REVIEW_INVOICE]
        assert reasons == ["HSN mismatch", ""]

    async def test_disallowed_file_type(self, service, place_order, storage):
        order = await _to_awaiting_invoice(service, place_order)
        with pytest.raises(ValidationError) as exc:
            await service.upload_invoice(order.order_id, "inv.txt", b"hello", "text/plain", MANAGER)
        assert exc.value.field == "file"
        assert storage.uploads == []

    async def test_invoice_url(self, service, place_order):
        order = await _to_awaiting_invoice(service, place_order)
        with pytest.raises(ValidationError):
            await service.get_invoice_url(order.order_id)
        await service.upload_invoice(order.order_id, "inv.png", b"\x89PNG", "image/png", MANAGER)
        link = await service.get_invoice_url(order.order_id)
        assert link["url"].startswith("https://invoices.example.test/invoices/")
        assert link["expires_in"] == FakeStorage.expiry_seconds

    async def test_upload_needs_storage(self, place_order, notifier):
        service = OrderWorkflowService(notifier=notifier)
        order = await _to_awaiting_invoice(service, place_order)
        with pytest.raises(ExternalServiceError):
            await service.upload_invoice(order.order_id, "inv.pdf", PDF, "application/pdf", MANAGER)

    async def test_review_outside_verification(self, service, place_order):
        order = await _to_awaiting_invoice(service, place_order)
        with pytest.raises(InvalidTransition):
            await service.review_invoice(order.order_id, "approve", ADMIN)


class TestShippingAndSideStates:

    async def _invoiced(self, service, place_order):
        order = await _to_awaiting_invoice(service, place_order)
        await service.upload_invoice(order.order_id, "inv.pdf", PDF, "application/pdf", MANAGER)
        await service.review_invoice(order.order_id, "approve", ADMIN)
        return order

    async def test_backward_manual_move_rejected(self, service, place_order):
        order = await self._invoiced(service, place_order)
        await service.update_status(order.order_id, OrderStatus.CONFIRMED, OPS)
        await service.update_status(order.order_id, OrderStatus.PACKING, OPS)

        with pytest.raises(InvalidTransition) as exc:
            await service.update_status(order.order_id, OrderStatus.INVOICE_UPLOADED, ADMIN)
        assert (exc.value.from_status, exc.value.to_status) == ("Packing", "Invoice Uploaded")
        assert service.repository.get_order(order.order_id).status == OrderStatus.PACKING

    async def test_tracking_number_only_on_dispatch(self, service, place_order):
        order = await self._invoiced(service, place_order)
        with pytest.raises(ValidationError):
            await service.update_status(order.order_id, OrderStatus.CONFIRMED, OPS, tracking_number="TRK-1")
        result = await service.update_status(order.order_id, OrderStatus.DISPATCHED, OPS, tracking_number="TRK-1")
        assert service.repository.get_order(order.order_id).tracking_number == "TRK-1"
        assert result.order.status == OrderStatus.DISPATCHED

    async def test_rework_and_resume(self, service, place_order):
        order = await self._invoiced(service, place_order)
        await service.update_status(order.order_id, OrderStatus.PACKING, OPS)
        reworked = await service.send_to_rework(order.order_id, ADMIN, reason="label misprint")
        assert reworked.order.status == OrderStatus.REWORK
        resumed = await service.update_status(order.order_id, OrderStatus.CONFIRMED, ADMIN)
        assert resumed.order.status == OrderStatus.CONFIRMED

    async def test_cancel_is_admin_only(self, service, place_order):
        order = await place_order(("P1", "Red", 1, 10.0))
        with pytest.raises(ForbiddenTransition):
            await service.cancel(order.order_id, SALES)
        result = await service.cancel(order.order_id, ADMIN, reason="customer withdrew")
        assert result.order.status == OrderStatus.CANCELLED
        with pytest.raises(InvalidTransition):
            await service.cancel(order.order_id, ADMIN)


class TestPersistenceGuarantees:

    async def test_concurrent_save_with_stale_snapshot(self, service, place_order):
        order = await place_order(("P1", "Red", 10, 10.0))
        await service.send_to_warehouse(order.order_id, [], SALES)

        with pytest.raises(ConflictError) as exc:
            service.repository.save_transition(
                order,
                order.model_copy(update={"status": OrderStatus.CANCELLED}),
                action=WorkflowAction.CANCEL,
                actor_role=ADMIN.role,
            )
        assert (exc.value.expected_version, exc.value.actual_version) == (1, 2)
        assert service.repository.get_order(order.order_id).status == OrderStatus.WAREHOUSE_PROCESSING
        assert len(service.repository.get_status_history(order.order_id)) == 2

    async def test_failed_split_write_leaves_no_back_order(self, service, place_order, monkeypatch):
        order = await place_order(("P1", "Red", 10, 10.0), ("P2", "Blue", 5, 25.0))
        await _to_stock_review(service, order, qty("P1", "Red", 6), qty("P2", "Blue", 5))

        def fail_audit_insert(*args, **kwargs):
            raise RuntimeError("audit insert failed")

        monkeypatch.setattr(service.repository, "_insert_fulfillment_line", fail_audit_insert)
        with pytest.raises(RuntimeError):
            await service.stock_decision(order.order_id, "proceed", ADMIN)

        parent = service.repository.get_order(order.order_id)
        assert parent.status == OrderStatus.ADMIN_STOCK_REVIEW
        assert parent.version == 3
        assert [(i.key, i.quantity) for i in parent.items] == [(("P1", "Red"), 10), (("P2", "Blue"), 5)]
        assert service.repository.get_back_orders(order.order_id) == []
        assert (await service.get_item_actions(order.order_id))["fulfillment"] == []
        assert len(service.repository.get_status_history(order.order_id)) == 3

    async def test_lineage_cycle_detected(self, service, place_order):
        first = await place_order(("P1", "Red", 1, 10.0))
        second = await place_order(("P2", "Blue", 1, 25.0))
        with get_raw_transaction() as conn:
            conn.execute(text("UPDATE orders SET original_order = :parent WHERE order_id = :child"),
                         {"parent": second.order_id, "child": first.order_id})
            conn.execute(text("UPDATE orders SET original_order = :parent WHERE order_id = :child"),
                         {"parent": first.order_id, "child": second.order_id})
        with pytest.raises(ValidationError) as exc:
            service.repository.get_lineage(first.order_id)
        assert exc.value.field == "original_order"

    async def test_notification_failure_does_not_undo_transition(self, place_order, catalog, storage):
        class BrokenNotifier:
            async def dispatch(self, events):
                raise RuntimeError("webhook down")

        service = OrderWorkflowService(catalog=catalog, storage=storage, notifier=BrokenNotifier())
        order = await place_order(("P1", "Red", 1, 10.0))
        result = await service.send_to_warehouse(order.order_id, [], SALES)
        assert result.order.status == OrderStatus.WAREHOUSE_PROCESSING
        assert service.repository.get_order(order.order_id).version == 2

    async def test_notifications_go_to_background_tasks(self, service, place_order, notifier):
        order = await place_order(("P1", "Red", 1, 10.0))
        sent = len(notifier.events)
        tasks = BackgroundTasks()
        await service.send_to_warehouse(order.order_id, [], SALES, background_tasks=tasks)
        assert len(tasks.tasks) == 1
        assert len(notifier.events) == sent

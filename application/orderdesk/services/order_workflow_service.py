"""
Order workflow orchestration.

Every workflow step follows the same sequence: load the order, check the
caller's expected version, validate the transition, run the domain
component on an in-memory snapshot, persist the result in one transaction
and only then schedule notifications. Nothing is written when any step
before the save fails.
"""
from typing import Dict, List, NamedTuple, Optional, Sequence

from fastapi import BackgroundTasks

from orderdesk.core.constants import OrderStatus, WorkflowAction, StockDecision, ItemActionType
from orderdesk.core.exceptions import ExternalServiceError, ValidationError
from orderdesk.core.fulfillment import FulfillmentSplitter, FulfillmentLine
from orderdesk.core.invoice_review import InvoiceReviewGate
from orderdesk.core.item_ledger import ItemLedger
from orderdesk.core.order_mutation import prune_actions, reconcile
from orderdesk.core.state_machine import OrderStateMachine
from orderdesk.dto.invoices import InvoiceDocument
from orderdesk.dto.orders import (
    Actor,
    AvailableQuantity,
    ItemAction,
    OrderCreate,
    OrderItemSnapshot,
    OrderSnapshot,
    compute_total,
)
from orderdesk.repository.orders import OrdersRepository
from orderdesk.services.notification_service import NotificationService, status_changed, back_order_created
from orderdesk.validations.orders import OrderStateValidator, InvoiceFileValidator, validate_order_creator
from orderdesk.utils.datetime_helpers import format_datetime_ist

# Request context
from orderdesk.middlewares.request_context import request_context

# Logger
from orderdesk.logging.utils import get_app_logger
logger = get_app_logger("order_workflow_service")

STOCK_DECISION_TARGETS = {
    StockDecision.PROCEED: OrderStatus.AWAITING_INVOICE,
    StockDecision.HOLD: OrderStatus.APPROVAL_PENDING,
    StockDecision.RECHECK: OrderStatus.WAREHOUSE_PROCESSING,
}


class WorkflowResult(NamedTuple):
    order: OrderSnapshot
    back_order: Optional[OrderSnapshot] = None

    def as_response(self, message: str) -> Dict:
        return {
            "success": True,
            "message": message,
            "order": self.order.as_dict(),
            "back_order": self.back_order.as_dict() if self.back_order else None,
        }


class OrderWorkflowService:

    def __init__(self, repository=None, catalog=None, storage=None, notifier=None):
        request_context.module_name = 'order_workflow_service'
        self.repository = repository or OrdersRepository()
        self.catalog = catalog
        self.storage = storage
        self.notifier = notifier or NotificationService()
        self.splitter = FulfillmentSplitter()
        self.review_gate = InvoiceReviewGate()

    # plumbing

    def _load(self, order_id: str, actor: Actor, expected_version: Optional[int] = None) -> OrderSnapshot:
        request_context.order_id = order_id
        order = self.repository.get_order(order_id)
        OrderStateValidator(order, actor).validate_expected_version(expected_version)
        return order

    async def _commit(
        self,
        before: OrderSnapshot,
        after: OrderSnapshot,
        actor: Actor,
        action: str,
        background_tasks: Optional[BackgroundTasks],
        reason: str = "",
        item_actions: Sequence[ItemAction] = (),
        back_order: Optional[OrderSnapshot] = None,
        fulfillment_lines: Sequence[FulfillmentLine] = (),
    ) -> WorkflowResult:
        saved, created_back_order = self.repository.save_transition(
            before,
            after,
            action=action,
            actor_role=actor.role,
            actor_id=actor.actor_id,
            reason=reason,
            item_actions=item_actions,
            back_order=back_order,
            fulfillment_lines=fulfillment_lines,
        )
        logger.info(
            f"order_status_changed | order_id={before.order_id} from={before.status} to={saved.status} "
            f"action={action} role={actor.role}"
        )

        events = [status_changed(before.order_id, before.status, saved.status, action, actor.role, actor.actor_id, reason)]
        if created_back_order is not None:
            logger.info(
                f"back_order_created | order_id={before.order_id} back_order_id={created_back_order.order_id} "
                f"items={len(created_back_order.items)}"
            )
            events.append(back_order_created(
                before.order_id,
                created_back_order.order_id,
                [item.model_dump() for item in created_back_order.items],
                actor.role,
                actor.actor_id,
            ))
        await self._notify(events, background_tasks)
        return WorkflowResult(saved, created_back_order)

    async def _notify(self, events, background_tasks: Optional[BackgroundTasks]):
        if background_tasks is not None:
            background_tasks.add_task(self.notifier.dispatch, events)
            return
        try:
            await self.notifier.dispatch(events)
        except Exception as e:
            # the transition is already committed
            logger.error(f"notification_dispatch_failed | events={len(events)} error={e}", exc_info=True)

    @staticmethod
    def _ledger_updates(ledger: ItemLedger, quantities: Sequence[AvailableQuantity]):
        supplied = {}
        for entry in quantities:
            key = (entry.product_id, entry.variant)
            if key in supplied:
                raise ValidationError("items", f"duplicate entry for {entry.product_id}/{entry.variant}")
            if key not in ledger:
                raise ValidationError("items", f"unknown item {entry.product_id}/{entry.variant}")
            supplied[key] = entry.available_quantity
        # every item gets a value; unsupplied ones fall back to their current figure
        return [(line.key, supplied.get(line.key)) for line in ledger.snapshot()]

    # reads

    async def get_order_details(self, order_id: str, actor: Actor) -> Dict:
        request_context.order_id = order_id
        order = self.repository.get_order(order_id)
        back_orders = self.repository.get_back_orders(order_id)
        for back_order in back_orders:
            back_order["created_at"] = format_datetime_ist(back_order.get("created_at"))
        return {
            "success": True,
            "order": order.as_dict(),
            "back_orders": back_orders,
            "lineage": self.repository.get_lineage(order_id),
            "allowed_transitions": OrderStateMachine.allowed_targets(order.status, actor.role),
        }

    async def list_orders(self, status: Optional[str] = None, limit: int = 100) -> Dict:
        if status and not OrderStatus.is_valid(status):
            raise ValidationError("status", f"unknown order status '{status}'")
        orders = self.repository.list_orders(status=status, limit=limit)
        for order in orders:
            order["created_at"] = format_datetime_ist(order.get("created_at"))
            order["updated_at"] = format_datetime_ist(order.get("updated_at"))
        return {"success": True, "status": status, "count": len(orders), "orders": orders}

    async def get_status_history(self, order_id: str) -> Dict:
        self.repository.get_order(order_id)
        history = self.repository.get_status_history(order_id)
        for event in history:
            event["created_at"] = format_datetime_ist(event.get("created_at"))
        return {"success": True, "order_id": order_id, "history": history}

    async def get_item_actions(self, order_id: str) -> Dict:
        self.repository.get_order(order_id)
        actions = self.repository.get_item_actions(order_id)
        for action in actions:
            action["created_at"] = format_datetime_ist(action.get("created_at"))
        fulfillment = self.repository.get_fulfillment_audit(order_id)
        for line in fulfillment:
            line["created_at"] = format_datetime_ist(line.get("created_at"))
        return {"success": True, "order_id": order_id, "actions": actions, "fulfillment": fulfillment}

    async def get_invoice_url(self, order_id: str) -> Dict:
        order = self.repository.get_order(order_id)
        if not order.invoice_key:
            raise ValidationError("invoice", f"order {order_id} has no uploaded invoice")
        if self.storage is None:
            raise ExternalServiceError("invoice storage", "storage is not configured")
        url = self.storage.get_presigned_url(order.invoice_key)
        return {
            "order_id": order_id,
            "invoice_key": order.invoice_key,
            "url": url,
            "expires_in": self.storage.expiry_seconds,
        }

    # order intake

    async def create_order(self, data: OrderCreate, actor: Actor, background_tasks: Optional[BackgroundTasks] = None) -> OrderSnapshot:
        validate_order_creator(actor)
        items = tuple(
            OrderItemSnapshot(
                product_id=item.product_id,
                variant=item.variant,
                name=item.name,
                quantity=item.quantity,
                price=item.price,
            )
            for item in data.items
        )
        if self.catalog is not None:
            for item in items:
                await self.catalog.check_variant(item.product_id, item.variant)
        order = OrderSnapshot(
            customer_id=data.customer_id,
            customer_name=data.customer_name,
            company_name=data.company_name,
            status=OrderStatus.ORDER_PLACED,
            items=items,
            total_amount=compute_total(items),
        )
        created = self.repository.create_order(order, actor.role, actor.actor_id)
        request_context.order_id = created.order_id
        await self._notify(
            [status_changed(created.order_id, None, created.status, WorkflowAction.CREATE, actor.role, actor.actor_id)],
            background_tasks,
        )
        return created

    # item editing

    async def _enrich_actions(self, actions: Sequence[ItemAction]) -> List[ItemAction]:
        """Check variants against the catalog and fill names/prices for adds."""
        if self.catalog is None:
            if any(a.type != ItemActionType.REMOVE for a in actions):
                logger.warning("catalog_check_skipped | no catalog configured for item actions")
            return list(actions)

        enriched = []
        for action in actions:
            if action.type == ItemActionType.ADD:
                product = await self.catalog.check_variant(action.product_id, action.variant)
                if product is not None:
                    action = action.model_copy(update={
                        "name": action.name or product.name,
                        "price": action.price if action.price is not None else product.price,
                    })
            elif action.type == ItemActionType.REPLACE and action.new_variant is not None:
                await self.catalog.check_variant(action.product_id, action.new_variant)
            enriched.append(action)
        return enriched

    async def preview_item_actions(self, order_id: str, actions: Sequence[ItemAction]) -> Dict:
        order = self.repository.get_order(order_id)
        pruned = prune_actions(order.items, actions)
        items = reconcile(order.items, pruned)
        return {
            "success": True,
            "order_id": order_id,
            "actions": [a.model_dump(exclude_none=True) for a in pruned],
            "items": [i.model_dump() for i in items],
            "total_amount": compute_total(items),
        }

    async def send_to_warehouse(
        self,
        order_id: str,
        actions: Sequence[ItemAction],
        actor: Actor,
        expected_version: Optional[int] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> WorkflowResult:
        order = self._load(order_id, actor, expected_version)
        OrderStateMachine.validate(order.status, OrderStatus.WAREHOUSE_PROCESSING, WorkflowAction.SEND_TO_WAREHOUSE, actor.role)

        validator = OrderStateValidator(order, actor)
        validator.validate_items_editable(bool(actions))

        pruned = prune_actions(order.items, actions)
        pruned = await self._enrich_actions(pruned)
        items = reconcile(order.items, pruned)
        validator.validate_has_items(items)

        after = order.model_copy(update={
            "status": OrderStatus.WAREHOUSE_PROCESSING,
            "items": items,
            "total_amount": compute_total(items),
        })
        return await self._commit(
            order, after, actor, WorkflowAction.SEND_TO_WAREHOUSE, background_tasks, item_actions=pruned,
        )

    # review loop

    async def report_warehouse_stock(
        self,
        order_id: str,
        quantities: Sequence[AvailableQuantity],
        actor: Actor,
        expected_version: Optional[int] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> WorkflowResult:
        order = self._load(order_id, actor, expected_version)
        OrderStateMachine.validate(order.status, OrderStatus.ADMIN_STOCK_REVIEW, WorkflowAction.REPORT_STOCK, actor.role)

        ledger = ItemLedger(order.items)
        ledger.apply(self._ledger_updates(ledger, quantities))

        after = order.model_copy(update={"status": OrderStatus.ADMIN_STOCK_REVIEW, "items": ledger.items()})
        return await self._commit(order, after, actor, WorkflowAction.REPORT_STOCK, background_tasks)

    async def stock_decision(
        self,
        order_id: str,
        decision: str,
        actor: Actor,
        quantities: Sequence[AvailableQuantity] = (),
        reason: str = "",
        expected_version: Optional[int] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> WorkflowResult:
        if decision not in STOCK_DECISION_TARGETS:
            raise ValidationError("decision", f"must be one of {', '.join(sorted(STOCK_DECISION_TARGETS))}")
        target = STOCK_DECISION_TARGETS[decision]

        order = self._load(order_id, actor, expected_version)
        OrderStateMachine.validate(order.status, target, WorkflowAction.STOCK_DECISION, actor.role)

        if order.status == OrderStatus.APPROVAL_PENDING and decision == StockDecision.PROCEED and quantities:
            raise ValidationError(
                "items", f"quantities are settled in '{OrderStatus.APPROVAL_PENDING}'; use recheck to change them"
            )

        ledger = ItemLedger(order.items)
        ledger.apply(self._ledger_updates(ledger, quantities))

        if decision == StockDecision.RECHECK or order.status == OrderStatus.APPROVAL_PENDING:
            after = order.model_copy(update={"status": target, "items": ledger.items()})
            return await self._commit(order, after, actor, WorkflowAction.STOCK_DECISION, background_tasks, reason=reason)

        split = self.splitter.split(order, ledger.snapshot(), target)
        if split.dropped_items:
            logger.info(
                f"items_dropped_from_parent | order_id={order_id} "
                f"items={[f'{line.product_id}/{line.variant}' for line in split.dropped_items]}"
            )
        return await self._commit(
            order,
            split.parent,
            actor,
            WorkflowAction.STOCK_DECISION,
            background_tasks,
            reason=reason,
            back_order=split.back_order,
            fulfillment_lines=split.lines if split.is_split else (),
        )

    # invoicing

    async def upload_invoice(
        self,
        order_id: str,
        file_name: str,
        content: bytes,
        content_type: str,
        actor: Actor,
        invoice: Optional[InvoiceDocument] = None,
        expected_version: Optional[int] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> WorkflowResult:
        order = self._load(order_id, actor, expected_version)
        OrderStateMachine.validate(order.status, OrderStatus.INVOICE_VERIFICATION, WorkflowAction.UPLOAD_INVOICE, actor.role)
        InvoiceFileValidator(file_name, content_type, content).validate()

        if self.storage is None:
            raise ExternalServiceError("invoice storage", "storage is not configured")
        invoice_key = self.storage.upload_invoice(order_id, file_name, content, content_type)

        document = (invoice or InvoiceDocument()).model_copy(update={
            "file_name": file_name,
            "content_type": content_type,
            "size_bytes": len(content),
        })
        after = order.model_copy(update={
            "status": OrderStatus.INVOICE_VERIFICATION,
            "invoice": document,
            "invoice_key": invoice_key,
        })
        try:
            return await self._commit(order, after, actor, WorkflowAction.UPLOAD_INVOICE, background_tasks)
        except Exception:
            logger.warning(f"invoice_object_orphaned | order_id={order_id} key={invoice_key}")
            raise

    async def review_invoice(
        self,
        order_id: str,
        decision: str,
        actor: Actor,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> WorkflowResult:
        outcome = self.review_gate.decide(decision, reason)
        order = self._load(order_id, actor, expected_version)
        OrderStateMachine.validate(order.status, outcome.status, WorkflowAction.REVIEW_INVOICE, actor.role)

        after = self.review_gate.review(order, decision, reason)
        return await self._commit(
            order, after, actor, WorkflowAction.REVIEW_INVOICE, background_tasks, reason=after.invoice_rejected_reason,
        )

    # shipping and side states

    async def update_status(
        self,
        order_id: str,
        status: str,
        actor: Actor,
        tracking_number: Optional[str] = None,
        reason: str = "",
        expected_version: Optional[int] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> WorkflowResult:
        order = self._load(order_id, actor, expected_version)
        OrderStateMachine.validate(order.status, status, WorkflowAction.MANUAL_ADVANCE, actor.role)
        OrderStateValidator(order, actor).validate_tracking_number(status, tracking_number)

        update = {"status": status}
        if tracking_number:
            update["tracking_number"] = tracking_number
        after = order.model_copy(update=update)
        return await self._commit(order, after, actor, WorkflowAction.MANUAL_ADVANCE, background_tasks, reason=reason)

    async def send_to_rework(
        self,
        order_id: str,
        actor: Actor,
        reason: str = "",
        expected_version: Optional[int] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> WorkflowResult:
        order = self._load(order_id, actor, expected_version)
        OrderStateMachine.validate(order.status, OrderStatus.REWORK, WorkflowAction.REWORK, actor.role)
        after = order.model_copy(update={"status": OrderStatus.REWORK})
        return await self._commit(order, after, actor, WorkflowAction.REWORK, background_tasks, reason=reason)

    async def cancel(
        self,
        order_id: str,
        actor: Actor,
        reason: str = "",
        expected_version: Optional[int] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> WorkflowResult:
        order = self._load(order_id, actor, expected_version)
        OrderStateMachine.validate(order.status, OrderStatus.CANCELLED, WorkflowAction.CANCEL, actor.role)
        after = order.model_copy(update={"status": OrderStatus.CANCELLED})
        return await self._commit(order, after, actor, WorkflowAction.CANCEL, background_tasks, reason=reason)

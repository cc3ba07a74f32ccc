import json
import random
import string
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import text, bindparam, JSON

from orderdesk.connections.database import execute_raw_sql_readonly, get_raw_transaction
from orderdesk.core.constants import WorkflowAction
from orderdesk.core.exceptions import ConflictError, OrderDeskError, OrderNotFound, ValidationError
from orderdesk.core.fulfillment import FulfillmentLine
from orderdesk.dto.invoices import InvoiceDocument
from orderdesk.dto.orders import ItemAction, OrderItemSnapshot, OrderSnapshot
from orderdesk.utils.datetime_helpers import get_ist_now, parse_db_timestamp
from orderdesk.logging.utils import get_app_logger

logger = get_app_logger("orderdesk.orders_repository")

ORDER_COLUMNS = """
    o.id, o.order_id, o.customer_id, o.customer_name, o.company_name, o.status,
    o.total_amount, o.is_partial_order, o.original_order, o.invoice, o.invoice_key,
    o.invoice_rejected_reason, o.tracking_number, o.version, o.created_at, o.updated_at
"""


def generate_random_prefix() -> str:
    """4-character uppercase alphanumeric prefix for human-facing order ids."""
    characters = string.ascii_uppercase + string.digits
    return ''.join(random.choices(characters, k=4))


def _to_invoice(value) -> Optional[InvoiceDocument]:
    if value is None:
        return None
    if isinstance(value, (str, bytes)):
        value = json.loads(value)
    return InvoiceDocument.model_validate(value)


def _row_to_item(row: Dict) -> OrderItemSnapshot:
    return OrderItemSnapshot(
        product_id=row["product_id"],
        variant=row["variant"],
        name=row.get("name") or "",
        quantity=int(row["quantity"]),
        available_quantity=int(row["available_quantity"]) if row.get("available_quantity") is not None else None,
        price=float(row.get("price") or 0),
    )


def _row_to_order(row: Dict, items: Iterable[OrderItemSnapshot]) -> OrderSnapshot:
    return OrderSnapshot(
        id=row["id"],
        order_id=row["order_id"],
        customer_id=row["customer_id"],
        customer_name=row.get("customer_name") or "",
        company_name=row.get("company_name") or "",
        status=row["status"],
        items=tuple(items),
        is_partial_order=bool(row.get("is_partial_order")),
        original_order=row.get("original_order"),
        invoice=_to_invoice(row.get("invoice")),
        invoice_key=row.get("invoice_key"),
        invoice_rejected_reason=row.get("invoice_rejected_reason") or "",
        tracking_number=row.get("tracking_number"),
        total_amount=float(row.get("total_amount") or 0),
        version=int(row["version"]),
        created_at=parse_db_timestamp(row.get("created_at")),
        updated_at=parse_db_timestamp(row.get("updated_at")),
    )


class OrdersRepository:
    """Order store. Every write runs inside one raw-SQL transaction."""

    # reads

    def get_order(self, order_id: str) -> OrderSnapshot:
        try:
            rows = execute_raw_sql_readonly(
                f"SELECT {ORDER_COLUMNS} FROM orders o WHERE o.order_id = :order_id",
                {"order_id": order_id},
            )
            if not rows:
                raise OrderNotFound(order_id)
            order_row = rows[0]
            item_rows = execute_raw_sql_readonly(
                """
                SELECT oi.product_id, oi.variant, oi.name, oi.quantity, oi.available_quantity, oi.price
                FROM order_items oi
                WHERE oi.order_id = :id
                ORDER BY oi.position, oi.id
                """,
                {"id": order_row["id"]},
            )
            return _row_to_order(order_row, [_row_to_item(r) for r in item_rows])
        except OrderDeskError:
            raise
        except Exception as e:
            logger.error(f"order_fetch_error | order_id={order_id} error={e}", exc_info=True)
            raise

    def list_orders(self, status: Optional[str] = None, limit: int = 100) -> List[Dict]:
        """Order summaries, newest first, optionally narrowed to one status."""
        params = {"limit": limit}
        where = ""
        if status:
            where = "WHERE o.status = :status"
            params["status"] = status
        try:
            rows = execute_raw_sql_readonly(
                f"""
                SELECT o.order_id, o.customer_id, o.customer_name, o.company_name, o.status,
                       o.total_amount, o.is_partial_order, o.original_order, o.version,
                       o.created_at, o.updated_at
                FROM orders o
                {where}
                ORDER BY o.id DESC
                LIMIT :limit
                """,
                params,
            )
            return [
                {
                    "order_id": row["order_id"],
                    "customer_id": row["customer_id"],
                    "customer_name": row.get("customer_name") or "",
                    "company_name": row.get("company_name") or "",
                    "status": row["status"],
                    "total_amount": float(row.get("total_amount") or 0),
                    "is_partial_order": bool(row.get("is_partial_order")),
                    "original_order": row.get("original_order"),
                    "version": int(row["version"]),
                    "created_at": parse_db_timestamp(row.get("created_at")),
                    "updated_at": parse_db_timestamp(row.get("updated_at")),
                }
                for row in rows
            ]
        except Exception as e:
            logger.error(f"orders_list_error | status={status} error={e}", exc_info=True)
            raise

    def get_back_orders(self, order_id: str) -> List[Dict]:
        try:
            rows = execute_raw_sql_readonly(
                """
                SELECT o.order_id, o.status, o.total_amount, o.created_at
                FROM orders o
                WHERE o.original_order = :order_id
                ORDER BY o.id
                """,
                {"order_id": order_id},
            )
            return [
                {
                    "order_id": row["order_id"],
                    "status": row["status"],
                    "total_amount": float(row.get("total_amount") or 0),
                    "created_at": parse_db_timestamp(row.get("created_at")),
                }
                for row in rows
            ]
        except Exception as e:
            logger.error(f"back_orders_fetch_error | order_id={order_id} error={e}", exc_info=True)
            raise

    def get_lineage(self, order_id: str) -> List[str]:
        """Ancestor chain through original_order, nearest parent first."""
        chain: List[str] = []
        seen = {order_id}
        current = order_id
        while True:
            rows = execute_raw_sql_readonly(
                "SELECT o.original_order FROM orders o WHERE o.order_id = :order_id",
                {"order_id": current},
            )
            if not rows:
                if current == order_id:
                    raise OrderNotFound(order_id)
                logger.warning(f"lineage_parent_missing | order_id={order_id} missing={current}")
                return chain
            parent = rows[0].get("original_order")
            if not parent:
                return chain
            if parent in seen:
                logger.error(f"lineage_cycle_detected | order_id={order_id} chain={chain} repeated={parent}")
                raise ValidationError("original_order", f"back-order chain of {order_id} loops back to {parent}")
            seen.add(parent)
            chain.append(parent)
            current = parent

    def get_status_history(self, order_id: str) -> List[Dict]:
        rows = execute_raw_sql_readonly(
            """
            SELECT e.from_status, e.to_status, e.action, e.actor_role, e.actor_id, e.reason, e.created_at
            FROM order_status_events e
            JOIN orders o ON o.id = e.order_id
            WHERE o.order_id = :order_id
            ORDER BY e.id
            """,
            {"order_id": order_id},
        )
        for row in rows:
            row["created_at"] = parse_db_timestamp(row.get("created_at"))
        return rows

    def get_item_actions(self, order_id: str) -> List[Dict]:
        rows = execute_raw_sql_readonly(
            """
            SELECT a.action_type, a.product_id, a.variant, a.new_variant, a.name, a.quantity,
                   a.actor_role, a.actor_id, a.created_at
            FROM order_item_actions a
            JOIN orders o ON o.id = a.order_id
            WHERE o.order_id = :order_id
            ORDER BY a.id
            """,
            {"order_id": order_id},
        )
        for row in rows:
            row["created_at"] = parse_db_timestamp(row.get("created_at"))
        return rows

    # writes

    def create_order(self, order: OrderSnapshot, actor_role: str = "", actor_id: str = "") -> OrderSnapshot:
        try:
            with get_raw_transaction() as conn:
                created = self._insert_order(conn, order, actor_id)
                self._insert_status_event(
                    conn, created.id, None, created.status, WorkflowAction.CREATE,
                    actor_role, actor_id, "", created.created_at,
                )
            logger.info(f"order_created | order_id={created.order_id} items={len(created.items)} total={created.total_amount}")
            return created
        except Exception as e:
            logger.error(f"order_create_error | customer_id={order.customer_id} error={e}", exc_info=True)
            raise

    def save_transition(
        self,
        before: OrderSnapshot,
        after: OrderSnapshot,
        *,
        action: str,
        actor_role: str = "",
        actor_id: str = "",
        reason: str = "",
        item_actions: Sequence[ItemAction] = (),
        back_order: Optional[OrderSnapshot] = None,
        fulfillment_lines: Sequence[FulfillmentLine] = (),
    ) -> Tuple[OrderSnapshot, Optional[OrderSnapshot]]:
        """
        Persist one workflow step atomically.

        The order row is updated only if its version still equals before.version;
        otherwise ConflictError is raised and nothing is written. Items, the
        back-order with its items and all audit rows commit in the same
        transaction as the status change.
        """
        now = get_ist_now()
        try:
            with get_raw_transaction() as conn:
                update_sql = text("""
                    UPDATE orders SET
                        status = :status,
                        total_amount = :total_amount,
                        invoice = :invoice,
                        invoice_key = :invoice_key,
                        invoice_rejected_reason = :invoice_rejected_reason,
                        tracking_number = :tracking_number,
                        version = version + 1,
                        updated_by = :updated_by,
                        updated_at = :updated_at
                    WHERE id = :id AND version = :version
                """).bindparams(bindparam("invoice", type_=JSON(none_as_null=True)))
                result = conn.execute(update_sql, {
                    "status": after.status,
                    "total_amount": after.total_amount,
                    "invoice": after.invoice.model_dump(mode="json") if after.invoice else None,
                    "invoice_key": after.invoice_key,
                    "invoice_rejected_reason": after.invoice_rejected_reason or "",
                    "tracking_number": after.tracking_number,
                    "updated_by": actor_id,
                    "updated_at": now,
                    "id": before.id,
                    "version": before.version,
                })
                if result.rowcount != 1:
                    current = conn.execute(
                        text("SELECT version FROM orders WHERE id = :id"), {"id": before.id}
                    ).fetchone()
                    actual = int(current.version) if current else None
                    logger.warning(f"order_version_conflict | order_id={before.order_id} expected={before.version} actual={actual}")
                    raise ConflictError(before.order_id, before.version, actual)

                if after.items != before.items:
                    conn.execute(text("DELETE FROM order_items WHERE order_id = :id"), {"id": before.id})
                    self._insert_items(conn, before.id, after.items, now)

                created_back_order = None
                if back_order is not None:
                    created_back_order = self._insert_order(conn, back_order, actor_id, now)
                    self._insert_status_event(
                        conn, created_back_order.id, None, created_back_order.status, action,
                        actor_role, actor_id, f"back-order of {before.order_id}", now,
                    )

                self._insert_status_event(
                    conn, before.id, before.status, after.status, action, actor_role, actor_id, reason, now,
                )
                for item_action in item_actions:
                    self._insert_item_action(conn, before.id, item_action, actor_role, actor_id, now)
                for line in fulfillment_lines:
                    self._insert_fulfillment_line(
                        conn, before.id, created_back_order.id if created_back_order else None, line, now,
                    )

            saved = after.model_copy(update={"version": before.version + 1, "updated_at": now})
            logger.info(
                f"order_transition_saved | order_id={before.order_id} from={before.status} to={after.status} "
                f"version={saved.version} back_order={created_back_order.order_id if created_back_order else None}"
            )
            return saved, created_back_order
        except OrderDeskError:
            raise
        except Exception as e:
            logger.error(f"order_transition_save_error | order_id={before.order_id} action={action} error={e}", exc_info=True)
            raise

    # helpers, all run on the caller's transaction

    def _insert_order(self, conn, order: OrderSnapshot, actor_id: str, now: datetime = None) -> OrderSnapshot:
        now = now or get_ist_now()
        random_prefix = generate_random_prefix()
        insert_sql = text("""
            INSERT INTO orders (
                random_prefix, customer_id, customer_name, company_name, status, total_amount,
                is_partial_order, original_order, invoice, invoice_key, invoice_rejected_reason,
                tracking_number, version, created_by, updated_by, created_at, updated_at
            ) VALUES (
                :random_prefix, :customer_id, :customer_name, :company_name, :status, :total_amount,
                :is_partial_order, :original_order, :invoice, :invoice_key, :invoice_rejected_reason,
                :tracking_number, 1, :actor_id, :actor_id, :now, :now
            )
            RETURNING id
        """).bindparams(bindparam("invoice", type_=JSON(none_as_null=True)))
        row = conn.execute(insert_sql, {
            "random_prefix": random_prefix,
            "customer_id": order.customer_id,
            "customer_name": order.customer_name,
            "company_name": order.company_name,
            "status": order.status,
            "total_amount": order.total_amount,
            "is_partial_order": order.is_partial_order,
            "original_order": order.original_order,
            "invoice": order.invoice.model_dump(mode="json") if order.invoice else None,
            "invoice_key": order.invoice_key,
            "invoice_rejected_reason": order.invoice_rejected_reason or "",
            "tracking_number": order.tracking_number,
            "actor_id": actor_id,
            "now": now,
        }).fetchone()
        if not row:
            raise Exception("Failed to create order")

        internal_id = row.id
        generated_order_id = f"{random_prefix}{internal_id}"
        conn.execute(
            text("UPDATE orders SET order_id = :order_id WHERE id = :id"),
            {"order_id": generated_order_id, "id": internal_id},
        )
        self._insert_items(conn, internal_id, order.items, now)
        logger.info(f"order_row_created | id={internal_id} order_id={generated_order_id} original_order={order.original_order}")
        return order.model_copy(update={
            "id": internal_id,
            "order_id": generated_order_id,
            "version": 1,
            "created_at": now,
            "updated_at": now,
        })

    def _insert_items(self, conn, order_pk: int, items: Sequence[OrderItemSnapshot], now: datetime):
        item_sql = text("""
            INSERT INTO order_items (
                order_id, position, product_id, variant, name, quantity, available_quantity, price,
                created_at, updated_at
            ) VALUES (
                :order_id, :position, :product_id, :variant, :name, :quantity, :available_quantity, :price,
                :now, :now
            )
        """)
        for position, item in enumerate(items):
            conn.execute(item_sql, {
                "order_id": order_pk,
                "position": position,
                "product_id": item.product_id,
                "variant": item.variant,
                "name": item.name,
                "quantity": item.quantity,
                "available_quantity": item.available_quantity,
                "price": item.price,
                "now": now,
            })

    def _insert_status_event(self, conn, order_pk, from_status, to_status, action, actor_role, actor_id, reason, now):
        conn.execute(text("""
            INSERT INTO order_status_events (
                order_id, from_status, to_status, action, actor_role, actor_id, reason, created_at
            ) VALUES (
                :order_id, :from_status, :to_status, :action, :actor_role, :actor_id, :reason, :now
            )
        """), {
            "order_id": order_pk,
            "from_status": from_status,
            "to_status": to_status,
            "action": action,
            "actor_role": actor_role or "",
            "actor_id": actor_id or "",
            "reason": reason or "",
            "now": now,
        })

    def _insert_item_action(self, conn, order_pk, item_action: ItemAction, actor_role, actor_id, now):
        conn.execute(text("""
            INSERT INTO order_item_actions (
                order_id, action_type, product_id, variant, new_variant, name, quantity,
                actor_role, actor_id, created_at
            ) VALUES (
                :order_id, :action_type, :product_id, :variant, :new_variant, :name, :quantity,
                :actor_role, :actor_id, :now
            )
        """), {
            "order_id": order_pk,
            "action_type": item_action.type,
            "product_id": item_action.product_id,
            "variant": item_action.variant,
            "new_variant": item_action.new_variant,
            "name": item_action.name,
            "quantity": item_action.quantity,
            "actor_role": actor_role or "",
            "actor_id": actor_id or "",
            "now": now,
        })

    def _insert_fulfillment_line(self, conn, order_pk, back_order_pk, line: FulfillmentLine, now):
        conn.execute(text("""
            INSERT INTO order_fulfillment_audit (
                order_id, back_order_id, product_id, variant, requested, available, confirmed, shortfall, created_at
            ) VALUES (
                :order_id, :back_order_id, :product_id, :variant, :requested, :available, :confirmed, :shortfall, :now
            )
        """), {
            "order_id": order_pk,
            "back_order_id": back_order_pk,
            "product_id": line.product_id,
            "variant": line.variant,
            "requested": line.requested,
            "available": line.available,
            "confirmed": line.confirmed,
            "shortfall": line.shortfall,
            "now": now,
        })

    def get_fulfillment_audit(self, order_id: str) -> List[Dict]:
        rows = execute_raw_sql_readonly(
            """
            SELECT f.product_id, f.variant, f.requested, f.available, f.confirmed, f.shortfall,
                   b.order_id AS back_order_id, f.created_at
            FROM order_fulfillment_audit f
            JOIN orders o ON o.id = f.order_id
            LEFT JOIN orders b ON b.id = f.back_order_id
            WHERE o.order_id = :order_id
            ORDER BY f.id
            """,
            {"order_id": order_id},
        )
        for row in rows:
            row["created_at"] = parse_db_timestamp(row.get("created_at"))
        return rows

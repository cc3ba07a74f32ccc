from typing import Optional

from orderdesk.core.constants import ActorRole, OrderStatus
from orderdesk.core.exceptions import ConflictError, ForbiddenTransition, ValidationError
from orderdesk.dto.orders import Actor, OrderSnapshot
from orderdesk.logging.utils import get_app_logger
logger = get_app_logger('order_validations')

# Settings
from orderdesk.config.settings import OrderDeskConfigs
configs = OrderDeskConfigs()

ORDER_CREATE_ROLES = {ActorRole.SALES, ActorRole.OPS, ActorRole.ADMIN}


class OrderStateValidator:
    def __init__(self, order: OrderSnapshot, actor: Actor):
        self.order = order
        self.actor = actor

    def validate_expected_version(self, expected_version: Optional[int]):
        if expected_version is not None and expected_version != self.order.version:
            logger.warning(
                f"stale_order_version | order_id={self.order.order_id} expected={expected_version} actual={self.order.version}"
            )
            raise ConflictError(self.order.order_id, expected_version, self.order.version)

    def validate_items_editable(self, has_actions: bool):
        if has_actions and self.order.status not in OrderStatus.EDITABLE:
            raise ValidationError(
                "actions", f"items can only be edited in '{OrderStatus.ORDER_PLACED}', order is '{self.order.status}'"
            )

    def validate_has_items(self, items):
        if not items:
            raise ValidationError("items", f"order {self.order.order_id} must keep at least one item")

    def validate_tracking_number(self, target: str, tracking_number: Optional[str]):
        if tracking_number and target != OrderStatus.DISPATCHED:
            raise ValidationError("tracking_number", f"can only be set when moving to '{OrderStatus.DISPATCHED}'")


def validate_order_creator(actor: Actor):
    if actor.role not in ORDER_CREATE_ROLES:
        logger.warning(f"order_create_forbidden | role={actor.role} actor_id={actor.actor_id}")
        raise ForbiddenTransition(None, OrderStatus.ORDER_PLACED, actor.role)


class InvoiceFileValidator:
    def __init__(self, file_name: Optional[str], content_type: Optional[str], content: bytes):
        self.file_name = file_name or ""
        self.content_type = (content_type or "").lower()
        self.content = content

    def validate(self):
        if not self.content:
            raise ValidationError("file", "invoice file is empty")
        if self.content_type not in configs.INVOICE_CONTENT_TYPES:
            logger.warning(f"invoice_content_type_rejected | file={self.file_name} content_type={self.content_type}")
            raise ValidationError(
                "file", f"content type '{self.content_type}' not allowed (allowed: {', '.join(configs.INVOICE_CONTENT_TYPES)})"
            )
        if len(self.content) > configs.INVOICE_MAX_BYTES:
            raise ValidationError("file", f"invoice file exceeds {configs.INVOICE_MAX_BYTES} bytes")

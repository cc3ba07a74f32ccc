import httpx
from typing import Any, Dict, List, Optional
from pydantic import BaseModel

from orderdesk.utils.datetime_helpers import get_ist_now

# Logger
from orderdesk.logging.utils import get_app_logger, get_audit_logger
logger = get_app_logger("notification_service")
audit_logger = get_audit_logger()

# Settings
from orderdesk.config.settings import OrderDeskConfigs
configs = OrderDeskConfigs()


class NotificationEvent(BaseModel):
    event: str
    order_id: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    action: Optional[str] = None
    actor_role: str = ""
    actor_id: str = ""
    reason: str = ""
    back_order_id: Optional[str] = None
    items: List[Dict[str, Any]] = []


def status_changed(order_id, from_status, to_status, action, actor_role="", actor_id="", reason="") -> NotificationEvent:
    return NotificationEvent(
        event="order_status_changed",
        order_id=order_id,
        from_status=from_status,
        to_status=to_status,
        action=action,
        actor_role=actor_role or "",
        actor_id=actor_id or "",
        reason=reason or "",
    )


def back_order_created(parent_order_id, back_order_id, items, actor_role="", actor_id="") -> NotificationEvent:
    return NotificationEvent(
        event="back_order_created",
        order_id=parent_order_id,
        back_order_id=back_order_id,
        items=items,
        actor_role=actor_role or "",
        actor_id=actor_id or "",
    )


class NotificationService:
    """
    Fire-and-forget emitter for workflow events.

    Every event goes to the audit log; when a webhook is configured it is
    also POSTed there. Failures are logged and never raised to the caller.
    """

    def __init__(self):
        self.enabled = configs.NOTIFICATION_ENABLED and bool(configs.NOTIFICATION_WEBHOOK_URL)
        self.webhook_url = configs.NOTIFICATION_WEBHOOK_URL
        self.timeout = configs.NOTIFICATION_TIMEOUT

    async def dispatch(self, events: List[NotificationEvent]):
        for event in events:
            await self.send(event)

    async def send(self, event: NotificationEvent):
        payload = event.model_dump()
        payload["emitted_at"] = get_ist_now().isoformat()
        audit_logger.info(event.event, extra={"event": event.event, "payload": payload})

        if not self.enabled:
            return
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.webhook_url, json=payload)
            if resp.status_code >= 400:
                logger.error(f"notification_webhook_failed | event={event.event} order_id={event.order_id} status_code={resp.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"notification_webhook_error | event={event.event} order_id={event.order_id} error={e}")

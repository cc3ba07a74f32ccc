"""
Per-request workflow context carried in a contextvar.

The audit middleware opens a fresh context for every request, the actor
middleware adds who is calling and the workflow service adds the order it
is working on. Log filters copy these values onto every record.
"""
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Dict, Iterable, Optional
import uuid

REQUEST_FIELDS = ("request_id", "request_method", "request_path", "actor_id", "actor_role")
BUSINESS_FIELDS = ("order_id", "module_name")


@dataclass
class RequestContext:
    request_id: Optional[str] = None
    request_method: Optional[str] = None
    request_path: Optional[str] = None
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    order_id: Optional[str] = None
    module_name: Optional[str] = None

    def values(self, fields: Iterable[str]) -> Dict[str, str]:
        return {name: getattr(self, name) or '' for name in fields}


_current_context: ContextVar[Optional[RequestContext]] = ContextVar("orderdesk_request_context", default=None)


def current_context() -> RequestContext:
    ctx = _current_context.get()
    if ctx is None:
        # outside a request (startup, scripts, tests) each context gets its own holder
        ctx = RequestContext()
        _current_context.set(ctx)
    return ctx


class _RequestContextProxy:
    def __getattr__(self, name):
        return getattr(current_context(), name)

    def __setattr__(self, name, value):
        setattr(current_context(), name, value)


request_context = _RequestContextProxy()


def open_request_context(method: str, path: str) -> str:
    """Start a fresh context for one request and return its request id."""
    ctx = RequestContext(request_id=str(uuid.uuid4()), request_method=method, request_path=path)
    _current_context.set(ctx)
    return ctx.request_id


def clear_request_context():
    _current_context.set(None)

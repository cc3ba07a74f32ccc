"""
Logging filters that stamp records with the current request and order.
"""
import logging

from orderdesk.middlewares.request_context import BUSINESS_FIELDS, REQUEST_FIELDS, current_context


class _ContextFilter(logging.Filter):
    fields = ()

    def filter(self, record):
        for name, value in current_context().values(self.fields).items():
            # values passed through `extra` win over the ambient context
            if not getattr(record, name, ''):
                setattr(record, name, value)
        return True


class RequestContextFilter(_ContextFilter):
    """Request id, method, path and the calling actor."""
    fields = REQUEST_FIELDS


class BusinessContextFilter(_ContextFilter):
    """Order being worked on and the module doing the work."""
    fields = BUSINESS_FIELDS

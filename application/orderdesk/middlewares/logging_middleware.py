"""
Audit and Request Logging Middleware for FastAPI (Order Desk)
One audit record per request, written through the audit logger.
"""
import json
import socket
import time
from datetime import datetime

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from orderdesk.logging.utils import get_app_logger, get_audit_logger
from orderdesk.logging.config import LoggingConfig
from orderdesk.middlewares.request_context import open_request_context, request_context, clear_request_context

# settings
from orderdesk.config.settings import OrderDeskConfigs
configs = OrderDeskConfigs()

APP_NAME = configs.APP_NAME
APP_VERSION = configs.APP_VERSION

MASKED_HEADERS = {'authorization', 'cookie', 'x-api-key'}


class AuditMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, exclude_paths: list[str] | None = None):
        super().__init__(app)
        self.logger = get_app_logger('orderdesk.logging')
        self.audit_logger = get_audit_logger()
        self.exclude_audit_paths = exclude_paths or ['/health', '/docs', '/redoc', '/openapi.json']
        self.hostname = socket.gethostname()
        self.app_name = APP_NAME
        self.version = APP_VERSION

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = open_request_context(request.method, request.url.path)
        start_time = time.time()
        timestamp = datetime.now().isoformat()

        should_audit = LoggingConfig.AUDIT_LOGGING_ENABLED and not any(
            request.url.path.startswith(p) for p in self.exclude_audit_paths
        )
        body_bytes = await request.body() if should_audit else b''

        try:
            response = await call_next(request)
            duration = (time.time() - start_time) * 1000
            response.headers['X-Request-ID'] = request_id

            if should_audit:
                audit_data = self._build_audit_data(request, response, body_bytes, duration, request_id, timestamp)
                self.audit_logger.info("Audit log", extra=audit_data)
            return response
        except Exception as exc:
            duration = (time.time() - start_time) * 1000
            self.logger.error(
                f"Exception: {request.method} {request.url.path} - {exc.__class__.__name__} ({duration:.0f}ms)",
                exc_info=True,
            )
            if should_audit:
                audit_data = self._build_audit_data(request, Response(status_code=500), body_bytes, duration, request_id, timestamp)
                audit_data['exception'] = exc.__class__.__name__
                self.audit_logger.info("Audit log (exception)", extra=audit_data)
            raise
        finally:
            clear_request_context()

    def _mask_headers(self, headers) -> dict:
        return {k: ('****' if k.lower() in MASKED_HEADERS else v) for k, v in headers.items()}

    def _parse_body(self, request: Request, body_bytes: bytes):
        if not body_bytes:
            return {}
        content_type = request.headers.get('content-type', '')
        if 'application/json' in content_type:
            try:
                return json.loads(body_bytes.decode('utf-8'))
            except (json.JSONDecodeError, UnicodeDecodeError):
                return {}
        if 'multipart/form-data' in content_type:
            # invoice uploads; never log file content
            return {'multipart_bytes': len(body_bytes)}
        return body_bytes.decode('utf-8', errors='replace')[:1000]

    def _build_audit_data(
        self,
        request: Request,
        response: Response,
        body_bytes: bytes,
        duration: float,
        request_id: str,
        timestamp: str,
    ) -> dict:
        status = getattr(response, 'status_code', 0)
        response_data = ''
        # response bodies are only captured for failures, and never for streamed responses
        if LoggingConfig.CAPTURE_RESPONSE_BODY and not 200 <= status < 300 and getattr(response, 'body', None):
            response_data = response.body.decode('utf-8', errors='replace')[:1000]

        request_json = {
            "GET": dict(request.query_params),
            "BODY": self._parse_body(request, body_bytes),
            "HEADERS": self._mask_headers(dict(request.headers)),
        }

        return {
            'event': 'http_request',
            'duration': round(duration, 2),
            'hostname': self.hostname,
            'app_name': self.app_name,
            'module_name': request_context.module_name,
            'request': request_json,
            'request_id': request_id,
            'request_method': request.method,
            'request_path': request.url.path,
            'response': response_data,
            'status_code': status,
            'timestamp': timestamp,
            'version': self.version,
        }

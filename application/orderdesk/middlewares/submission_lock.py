"""
Submission Lock Middleware for workflow writes

Hashes the actor, path and payload of each mutating dashboard request and
stores the hash in Redis with a short TTL. An identical submission inside
that window gets 409 instead of being applied twice.
"""

import json
import hashlib
from typing import Callable
from fastapi import Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from orderdesk.connections.redis_wrapper import RedisJSONWrapper, redis_key
from orderdesk.config.settings import OrderDeskConfigs
from orderdesk.logging.utils import get_app_logger

logger = get_app_logger("submission_lock_middleware")
configs = OrderDeskConfigs()


class SubmissionLockMiddleware(BaseHTTPMiddleware):

    def __init__(self, app):
        super().__init__(app)
        self.enabled = configs.SUBMISSION_LOCK_ENABLED
        self.lock_ttl = configs.SUBMISSION_LOCK_TTL_SECONDS
        self.path_prefix = "/dashboard/v1/orders"
        # read-only POSTs
        self.excluded_suffixes = ("/items/preview",)

        logger.info(f"SubmissionLockMiddleware initialized | enabled={self.enabled} ttl={self.lock_ttl}s")

    def should_apply_lock(self, request: Request) -> bool:
        if not self.enabled or request.method != "POST":
            return False
        path = request.url.path
        return path.startswith(self.path_prefix) and not path.endswith(self.excluded_suffixes)

    def generate_payload_hash(self, request: Request, body: bytes) -> str:
        """SHA256 over actor, path and the normalized JSON body (raw bytes when not JSON)."""
        actor = f"{request.headers.get('x-actor-role', '')}:{request.headers.get('x-actor-id', '')}"
        try:
            payload = json.loads(body.decode('utf-8')) if body else {}
            normalized = json.dumps(payload, sort_keys=True)
            material = f"{actor}|{request.url.path}|{normalized}".encode('utf-8')
        except (json.JSONDecodeError, UnicodeDecodeError):
            material = f"{actor}|{request.url.path}|".encode('utf-8') + body
        return hashlib.sha256(material).hexdigest()

    def try_acquire_lock(self, lock_key: str, payload_hash: str, request: Request) -> bool:
        """
        Atomically try to acquire the lock with SETNX.

        Returns:
            True if lock was acquired (request can proceed)
            False if lock already exists (duplicate request)
        """
        try:
            redis_client = RedisJSONWrapper(database=configs.REDIS_CACHE_DB)
            if not redis_client.connected:
                logger.error("Redis not connected, allowing request (fail-open)")
                return True

            lock_data = {
                "payload_hash": payload_hash,
                "endpoint": request.url.path,
                "actor_id": request.headers.get("x-actor-id", ""),
            }
            acquired = redis_client.set_if_not_exists_with_ttl(lock_key, lock_data, self.lock_ttl)
            if acquired:
                logger.info(f"submission_lock_acquired | key={lock_key} ttl={self.lock_ttl}s")
            else:
                logger.warning(f"submission_lock_exists | key={lock_key}")
            return acquired
        except Exception as e:
            logger.error(f"submission_lock_error | key={lock_key} error={e}")
            return True

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.should_apply_lock(request):
            return await call_next(request)

        body = await request.body()
        payload_hash = self.generate_payload_hash(request, body)
        lock_key = redis_key("submission_lock", payload_hash)

        if not self.try_acquire_lock(lock_key, payload_hash, request):
            logger.warning(f"duplicate_submission | endpoint={request.url.path} hash={payload_hash[:16]}")
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content={
                    "success": False,
                    "error": "DUPLICATE_REQUEST",
                    "message": f"Duplicate submission detected. Please wait {self.lock_ttl} seconds before retrying.",
                    "retry_after_seconds": self.lock_ttl,
                },
            )

        # Restore body for downstream processing
        async def receive():
            return {"type": "http.request", "body": body}

        request._receive = receive
        return await call_next(request)

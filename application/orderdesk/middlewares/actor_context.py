from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from orderdesk.core.constants import ActorRole
from orderdesk.middlewares.request_context import request_context
from orderdesk.logging.utils import get_app_logger

logger = get_app_logger(__name__)

ROLE_HEADER = "x-actor-role"
ACTOR_ID_HEADER = "x-actor-id"


class ActorContextMiddleware(BaseHTTPMiddleware):
    """
    Puts the acting role and actor id on the request.

    Authentication happens upstream; this only checks that the forwarded role
    is one the workflow knows about.
    """

    include_path_start = "/dashboard/v1"

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)

        if not request.url.path.startswith(self.include_path_start):
            return await call_next(request)

        role = (request.headers.get(ROLE_HEADER) or "").strip().lower()
        actor_id = (request.headers.get(ACTOR_ID_HEADER) or "").strip()

        if not role:
            logger.warning(f"actor_role_missing | path={request.url.path}")
            return JSONResponse(
                status_code=401,
                content={"success": False, "error": "UNAUTHORIZED", "message": "X-Actor-Role header is required"},
            )
        if role not in ActorRole.ALL:
            logger.warning(f"actor_role_unknown | role={role} path={request.url.path}")
            return JSONResponse(
                status_code=401,
                content={
                    "success": False,
                    "error": "UNAUTHORIZED",
                    "message": f"Unknown actor role '{role}' (expected one of {', '.join(sorted(ActorRole.ALL))})",
                },
            )

        request.state.actor_role = role
        request.state.actor_id = actor_id
        request_context.actor_role = role
        request_context.actor_id = actor_id
        return await call_next(request)

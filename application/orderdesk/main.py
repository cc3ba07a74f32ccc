from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from dotenv import load_dotenv

from orderdesk.connections.database import close_db_pool
from orderdesk.logging.utils import initialize_logging, get_app_logger
from orderdesk.middlewares.logging_middleware import AuditMiddleware

load_dotenv()

# Initialize Sentry (must be done early, before other imports)
from orderdesk.config.sentry import init_sentry
init_sentry()

# Initialize structured logging
initialize_logging()
logger = get_app_logger('orderdesk.main')

# Settings
from orderdesk.config.settings import OrderDeskConfigs
configs = OrderDeskConfigs()

# Debug mode detection (DEBUG=false means production)
DEBUG = configs.DEBUG

logger.info(f"Running in {'debug' if DEBUG else 'production'} mode")

from orderdesk.routes.dependencies import close_workflow_service


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info("Starting Order Desk")
    yield
    logger.info("Shutting down Order Desk")
    await close_workflow_service()
    close_db_pool()

# Disable docs in production (when DEBUG=false)
docs_url = "/docs" if DEBUG else None
redoc_url = "/redoc" if DEBUG else None

app = FastAPI(
    title="Order Desk",
    version=configs.APP_VERSION,
    lifespan=lifespan,
    docs_url=docs_url,
    redoc_url=redoc_url
)

if configs.ALLOWED_ORIGINS:
    origins = [origin.strip() for origin in configs.ALLOWED_ORIGINS.split(",")]
else:
    origins = ["*"]

# Middlewares run outermost-last-added: CORS -> audit -> actor context -> submission lock
from orderdesk.middlewares.actor_context import ActorContextMiddleware
from orderdesk.middlewares.submission_lock import SubmissionLockMiddleware
app.add_middleware(SubmissionLockMiddleware)
app.add_middleware(ActorContextMiddleware)

# Request/Audit logging middleware; creates the request context the inner ones fill in
app.add_middleware(AuditMiddleware)

logger.info(f"Configuring CORS with allowed origins: {origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register custom exception handlers
from orderdesk.middlewares.handlers import register_exception_handlers
register_exception_handlers(app)


# Routes
from orderdesk.routes.dashboard import dashboard_router
from orderdesk.routes.health import router as health_router

app.include_router(dashboard_router, prefix="/dashboard/v1")
app.include_router(health_router, tags=["health"])

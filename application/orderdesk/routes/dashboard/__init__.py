# Routes used by the operations dashboard.
from fastapi import APIRouter

from orderdesk.routes.dashboard.orders import orders_router
from orderdesk.routes.dashboard.workflow import workflow_router
from orderdesk.routes.dashboard.invoices import invoices_router

# Aggregate into a single router that FastAPI can mount at /dashboard/v1
dashboard_router = APIRouter(tags=["dashboard"])
dashboard_router.include_router(orders_router)
dashboard_router.include_router(workflow_router)
dashboard_router.include_router(invoices_router)

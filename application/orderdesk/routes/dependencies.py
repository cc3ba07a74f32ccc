from functools import lru_cache

from fastapi import Request

from orderdesk.dto.orders import Actor
from orderdesk.services.order_workflow_service import OrderWorkflowService

# Settings
from orderdesk.config.settings import OrderDeskConfigs
configs = OrderDeskConfigs()


def get_actor(request: Request) -> Actor:
    """Actor set by ActorContextMiddleware."""
    return Actor(
        role=getattr(request.state, "actor_role", ""),
        actor_id=getattr(request.state, "actor_id", ""),
    )


@lru_cache(maxsize=1)
def get_workflow_service() -> OrderWorkflowService:
    catalog = None
    if configs.CATALOG_INTEGRATION_ENABLED:
        from orderdesk.integrations.catalog_service import CatalogService
        catalog = CatalogService()

    storage = None
    if configs.AWS_INTEGRATION_ENABLED:
        from orderdesk.services.boto3_service import Boto3Service
        storage = Boto3Service()

    return OrderWorkflowService(catalog=catalog, storage=storage)


async def close_workflow_service():
    if get_workflow_service.cache_info().currsize:
        service = get_workflow_service()
        if service.catalog is not None:
            await service.catalog.close()
        get_workflow_service.cache_clear()

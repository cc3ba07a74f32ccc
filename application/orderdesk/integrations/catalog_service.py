import httpx
from httpx_retry import AsyncRetryTransport, RetryPolicy
from typing import List, Optional
from pydantic import BaseModel

from orderdesk.core.exceptions import ExternalServiceError, ValidationError

# Redis product cache
from orderdesk.connections.redis_wrapper import RedisJSONWrapper, redis_key

# Logger
from orderdesk.logging.utils import get_app_logger
logger = get_app_logger("catalog_service")

# Settings
from orderdesk.config.settings import OrderDeskConfigs
configs = OrderDeskConfigs()


class CatalogProduct(BaseModel):
    product_id: str
    name: str = ""
    variants: List[str] = []
    price: Optional[float] = None


class CatalogService:
    """Read-only product lookups against the catalog API, cached in redis."""

    def __init__(self):
        self.enabled = configs.CATALOG_INTEGRATION_ENABLED and bool(configs.CATALOG_BASE_URL)
        self.base_url = configs.CATALOG_BASE_URL.rstrip("/")
        self.api_key = configs.CATALOG_API_KEY
        self.timeout = configs.CATALOG_TIMEOUT
        self.cache_ttl = configs.CATALOG_CACHE_TTL_SECONDS
        self._redis = None
        self.client = None

        if not self.enabled:
            logger.warning("catalog_integration_disabled | variant checks will be skipped")
            return

        self._redis = RedisJSONWrapper(database=configs.REDIS_CACHE_DB)

        # network-level retries only; 404 is an answer, not a failure
        retry_policy = RetryPolicy(
            max_retries=3,
            initial_delay=0.5,
            multiplier=2.0,
            retry_on=[429, 500, 502, 503, 504]
        )
        retry_transport = AsyncRetryTransport(policy=retry_policy)
        self.client = httpx.AsyncClient(transport=retry_transport, timeout=self.timeout)

    async def close(self):
        """Explicitly close the HTTP client to free resources."""
        if self.client is not None:
            await self.client.aclose()

    def _headers(self):
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _cache_get(self, product_id: str) -> Optional[CatalogProduct]:
        if not (self._redis and self._redis.connected):
            return None
        cached = self._redis.get(redis_key("catalog", "product", product_id))
        return CatalogProduct.model_validate(cached) if cached else None

    def _cache_set(self, product: CatalogProduct):
        if self._redis and self._redis.connected:
            self._redis.set_with_ttl(
                redis_key("catalog", "product", product.product_id), product.model_dump(), self.cache_ttl
            )

    async def get_product(self, product_id: str) -> Optional[CatalogProduct]:
        """
        Fetch {name, variants} for a product.

        Returns None when the integration is disabled. Raises ValidationError
        for unknown products and ExternalServiceError when the catalog cannot
        be reached.
        """
        if not self.enabled:
            return None

        cached = self._cache_get(product_id)
        if cached is not None:
            return cached

        endpoint = f"{self.base_url}/products/{product_id}"
        try:
            resp = await self.client.get(endpoint, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"catalog_request_failed | product_id={product_id} error={e}")
            raise ExternalServiceError("catalog", f"lookup of product {product_id} failed: {e}")

        if resp.status_code == 404:
            raise ValidationError("product_id", f"unknown product {product_id}")
        if resp.status_code != 200:
            logger.error(f"catalog_api_failed | product_id={product_id} status_code={resp.status_code} error={resp.text}")
            raise ExternalServiceError("catalog", f"lookup of product {product_id} returned {resp.status_code}")

        data = resp.json() if resp.content else {}
        product = CatalogProduct(
            product_id=product_id,
            name=data.get("name") or "",
            variants=[str(v) for v in data.get("variants") or []],
            price=data.get("price"),
        )
        self._cache_set(product)
        logger.info(f"catalog_product_fetched | product_id={product_id} variants={len(product.variants)}")
        return product

    async def check_variant(self, product_id: str, variant: str) -> Optional[CatalogProduct]:
        """Ensure variant is one of the product's catalog variants."""
        product = await self.get_product(product_id)
        if product is None:
            logger.warning(f"catalog_check_skipped | product_id={product_id} variant={variant}")
            return None
        if variant not in product.variants:
            raise ValidationError(
                "variant", f"'{variant}' is not a variant of product {product_id} (allowed: {', '.join(product.variants) or 'none'})"
            )
        return product

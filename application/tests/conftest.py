import os
import tempfile

# Configure the app before anything under orderdesk is imported
_TMP_DIR = tempfile.mkdtemp(prefix="orderdesk-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'orderdesk.db')}"
os.environ.pop("DATABASE_READ_URL", None)
os.environ["LOG_DIR"] = os.path.join(_TMP_DIR, "logs")
os.environ["SUBMISSION_LOCK_ENABLED"] = "false"
os.environ["CATALOG_INTEGRATION_ENABLED"] = "false"
os.environ["AWS_INTEGRATION_ENABLED"] = "false"
os.environ["NOTIFICATION_ENABLED"] = "false"
os.environ["SENTRY_ENABLED"] = "false"
os.environ["FIREHOSE_ENABLED"] = "false"
os.environ["AUDIT_LOGGING_ENABLED"] = "false"
os.environ["DEBUG"] = "true"

import pytest

from orderdesk.connections.database import create_schema, drop_schema
from orderdesk.core.exceptions import ValidationError
from orderdesk.dto.orders import Actor, OrderCreate
from orderdesk.integrations.catalog_service import CatalogProduct
from orderdesk.services.order_workflow_service import OrderWorkflowService

SALES = Actor(role="sales", actor_id="sales-1")
WAREHOUSE = Actor(role="warehouse", actor_id="wh-1")
ADMIN = Actor(role="admin", actor_id="admin-1")
MANAGER = Actor(role="manager", actor_id="mgr-1")
OPS = Actor(role="ops", actor_id="ops-1")


class FakeCatalog:
    """In-memory catalog: product id -> (name, price, variants)."""

    def __init__(self, products=None):
        self.products = products or {
            "P1": CatalogProduct(product_id="P1", name="Widget", variants=["Red", "Blue", "Green"], price=10.0),
            "P2": CatalogProduct(product_id="P2", name="Gadget", variants=["Blue", "Black"], price=25.0),
            "P3": CatalogProduct(product_id="P3", name="Doohickey", variants=["Std"], price=4.5),
        }
        self.checked = []

    async def get_product(self, product_id):
        if product_id not in self.products:
            raise ValidationError("product_id", f"unknown product {product_id}")
        return self.products[product_id]

    async def check_variant(self, product_id, variant):
        self.checked.append((product_id, variant))
        product = await self.get_product(product_id)
        if variant not in product.variants:
            raise ValidationError("variant", f"{variant} is not a variant of {product_id}")
        return product

    async def close(self):
        pass


class FakeStorage:
    expiry_seconds = 900

    def __init__(self):
        self.uploads = []

    def upload_invoice(self, order_id, file_name, content, content_type):
        key = f"invoices/{order_id}/{len(self.uploads) + 1}-{file_name}"
        self.uploads.append((key, content, content_type))
        return key

    def get_presigned_url(self, key):
        return f"https://invoices.example.test/{key}?signature=abc"


class FakeNotifier:
    def __init__(self):
        self.events = []

    async def dispatch(self, events):
        self.events.extend(events)


@pytest.fixture(autouse=True)
def database():
    create_schema()
    yield
    drop_schema()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def service(catalog, storage, notifier):
    return OrderWorkflowService(catalog=catalog, storage=storage, notifier=notifier)


@pytest.fixture
def place_order(service):
    """Create an order in Order Placed from (product_id, variant, quantity, price) tuples."""

    async def _place(*items, customer_id="CUST-1"):
        data = OrderCreate(
            customer_id=customer_id,
            customer_name="Asha Traders",
            company_name="Asha Traders Pvt Ltd",
            items=[
                {"product_id": p, "variant": v, "name": f"{p} {v}", "quantity": q, "price": price}
                for p, v, q, price in items
            ],
        )
        return await service.create_order(data, SALES)

    return _place

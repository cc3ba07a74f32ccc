"""
SQLAlchemy ORM Models
These models define the database schema using SQLAlchemy ORM.
Workflow writes go through raw SQL in orderdesk.repository.orders.
"""

from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey, Index, Boolean, JSON, UniqueConstraint, text
from orderdesk.models.common import ActorStampedModel, CreatedAtModel, TimestampedModel


class Order(TimestampedModel):
    """
    Order model using SQLAlchemy ORM.
    order_id is random_prefix + id, written right after the insert.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    random_prefix = Column(String(4), nullable=False)
    order_id = Column(String(50), unique=True, nullable=True, index=True)
    customer_id = Column(String(50), nullable=False, index=True)
    customer_name = Column(String(100), nullable=False, default="", server_default=text("''"))
    company_name = Column(String(200), nullable=False, default="", server_default=text("''"))
    status = Column(String(32), nullable=False, default="Order Placed", index=True)
    total_amount = Column(DECIMAL(12, 2), nullable=False, default=0, server_default="0.00")
    is_partial_order = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    original_order = Column(String(50), nullable=True, index=True)
    invoice = Column(JSON, nullable=True)
    invoice_key = Column(String(1024), nullable=True)
    invoice_rejected_reason = Column(String(255), nullable=False, default="", server_default=text("''"))
    tracking_number = Column(String(100), nullable=True)
    version = Column(Integer, nullable=False, default=1, server_default="1")
    created_by = Column(String(255), nullable=False, default="", server_default=text("''"))
    updated_by = Column(String(255), nullable=False, default="", server_default=text("''"))

    def __repr__(self):
        return f"<Order(id={self.id}, order_id='{self.order_id}', status='{self.status}', version={self.version})>"

    __table_args__ = (
        Index('idx_orders_status_created', 'status', 'created_at'),
        Index('idx_orders_customer_status', 'customer_id', 'status'),
    )


class OrderItem(TimestampedModel):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String(100), nullable=False, index=True)
    variant = Column(String(100), nullable=False, default="", server_default=text("''"))
    name = Column(String(200), nullable=False, default="", server_default=text("''"))
    quantity = Column(Integer, nullable=False)
    available_quantity = Column(Integer, nullable=True)
    price = Column(DECIMAL(10, 2), nullable=False, default=0, server_default="0.00")

    def __repr__(self):
        return f"<OrderItem(order_id={self.order_id}, product_id='{self.product_id}', variant='{self.variant}', quantity={self.quantity})>"

    __table_args__ = (
        UniqueConstraint('order_id', 'product_id', 'variant', name='uq_order_items_identity'),
    )


class OrderItemAction(ActorStampedModel):
    """Item actions applied when an order was sent to the warehouse."""
    __tablename__ = "order_item_actions"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    action_type = Column(String(16), nullable=False)
    product_id = Column(String(100), nullable=False)
    variant = Column(String(100), nullable=False)
    new_variant = Column(String(100), nullable=True)
    name = Column(String(200), nullable=True)
    quantity = Column(Integer, nullable=True)


class OrderStatusEvent(ActorStampedModel):
    __tablename__ = "order_status_events"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    from_status = Column(String(32), nullable=True)
    to_status = Column(String(32), nullable=False)
    action = Column(String(32), nullable=False)
    reason = Column(String(255), nullable=False, default="", server_default=text("''"))


class OrderFulfillmentAudit(CreatedAtModel):
    """Per-item outcome of a shortfall split, including items dropped from the parent."""
    __tablename__ = "order_fulfillment_audit"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    back_order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    product_id = Column(String(100), nullable=False)
    variant = Column(String(100), nullable=False)
    requested = Column(Integer, nullable=False)
    available = Column(Integer, nullable=False)
    confirmed = Column(Integer, nullable=False)
    shortfall = Column(Integer, nullable=False)

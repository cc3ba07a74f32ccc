from sqlalchemy import Column, String, TIMESTAMP, text
from sqlalchemy.sql import func
from orderdesk.connections.database import Base


class CreatedAtModel(Base):
    """Append-only rows, written once inside a workflow transaction"""
    __abstract__ = True

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())


class ActorStampedModel(CreatedAtModel):
    """Audit rows that remember who caused them"""
    __abstract__ = True

    actor_role = Column(String(32), nullable=False, default="", server_default=text("''"))
    actor_id = Column(String(255), nullable=False, default="", server_default=text("''"))


class TimestampedModel(CreatedAtModel):
    """Rows rewritten by workflow steps"""
    __abstract__ = True

    # raw SQL writes pass updated_at explicitly
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

"""
Base Model Mixins
"""
from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, DateTime, Uuid


def utcnow() -> datetime:
    """Naive UTC now, the storage convention for every timestamp column"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UUIDMixin:
    """Mixin for UUID primary key"""
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

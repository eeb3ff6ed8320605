"""Agency (tenant) model."""

import uuid

from sqlalchemy import Column, String, Boolean, DateTime, func
from agencyos.db.base import Base


class Agency(Base):
    """Top-level tenant. Every role, user and client belongs to exactly one."""
    __tablename__ = "agencies"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

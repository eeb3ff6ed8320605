"""Client and MemberClientAccess models."""

import enum
import uuid

from sqlalchemy import (
    Column, String, Text, Boolean, DateTime, ForeignKey, Enum, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship
from agencyos.db.base import Base


class ClientPermissionEnum(str, enum.Enum):
    read = "read"
    write = "write"


class Client(Base):
    """An agency's customer account."""
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agency_id = Column(String(36), ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255), nullable=True)
    contact_name = Column(String(255), nullable=True)
    stage = Column(String(50), default="Lead", nullable=False)
    health_status = Column(String(20), default="green", nullable=False)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    grants = relationship(
        "MemberClientAccess", back_populates="client", lazy="selectin", cascade="all, delete-orphan"
    )


class MemberClientAccess(Base):
    """Per-client read/write grant for users below manager level."""
    __tablename__ = "member_client_access"
    __table_args__ = (
        UniqueConstraint("user_id", "agency_id", "client_id", name="uq_member_client_access"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    agency_id = Column(String(36), ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    permission = Column(Enum(ClientPermissionEnum), default=ClientPermissionEnum.read, nullable=False)
    assigned_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    assigned_at = Column(DateTime, server_default=func.now(), nullable=False)

    client = relationship("Client", back_populates="grants")
    user = relationship("User", back_populates="client_grants", foreign_keys=[user_id])

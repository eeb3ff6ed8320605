"""Role, Permission and RolePermission models for RBAC."""

import uuid

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint, event, func,
)
from sqlalchemy.orm import relationship
from agencyos.db.base import Base


class Role(Base):
    """Agency-scoped role with a hierarchy level (lower = more privileged).

    System roles always carry a level. Custom roles may leave it NULL, in which
    case the holder is treated as the lowest privilege tier.
    """
    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("agency_id", "name", name="uq_role_agency_name"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agency_id = Column(String(36), ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    description = Column(String(255), nullable=True)
    hierarchy_level = Column(Integer, nullable=True, index=True)
    is_system = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    role_permissions = relationship("RolePermission", back_populates="role", lazy="selectin")


class Permission(Base):
    """Global (resource, action) pair; the unit of an authorization check."""
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("resource", "action", name="uq_permission_resource_action"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    resource = Column(String(50), nullable=False, index=True)
    action = Column(String(20), nullable=False)
    description = Column(String(255), nullable=True)


class RolePermission(Base):
    """Grants a permission to a role inside one agency."""
    __tablename__ = "role_permissions"
    __table_args__ = (UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agency_id = Column(String(36), ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_id = Column(String(36), ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    role = relationship("Role", back_populates="role_permissions")
    permission = relationship("Permission", lazy="joined")


@event.listens_for(Role, "before_insert")
@event.listens_for(Role, "before_update")
def _system_role_requires_level(mapper, connection, target: Role) -> None:
    if target.is_system and target.hierarchy_level is None:
        raise ValueError(f"System role '{target.name}' must define a hierarchy_level")

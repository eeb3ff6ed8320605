"""Models package — import all models so metadata.create_all can discover them."""

from agencyos.models.agency import Agency
from agencyos.models.role import Role, Permission, RolePermission
from agencyos.models.user import User
from agencyos.models.client import Client, MemberClientAccess, ClientPermissionEnum
from agencyos.models.audit_log import AuditLog

__all__ = [
    "Agency", "Role", "Permission", "RolePermission", "User",
    "Client", "MemberClientAccess", "ClientPermissionEnum", "AuditLog",
]

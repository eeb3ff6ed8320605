"""Permission service — role hierarchy and (resource, action) grants."""

import logging
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from agencyos.core.config import settings
from agencyos.models.client import MemberClientAccess
from agencyos.models.role import Permission, Role, RolePermission
from agencyos.models.user import User

logger = logging.getLogger("agencyos.rbac")

PermissionPair = Tuple[str, str]

OWNER_LEVEL = 0
LOWEST_PRIVILEGE_LEVEL = 999
MANAGE_ACTION = "manage"


class PermissionService:
    """Answers "does this role grant {resource, action}?" and "how privileged is this user?".

    Every lookup re-queries the database; nothing is cached across requests.
    Database errors are left to propagate so the caller can decide how to fail.
    """

    def __init__(self, manager_level: int = settings.MANAGER_LEVEL):
        self.manager_level = manager_level

    # ---- Role permissions ----

    def get_user_permissions(self, db: Session, user_id: str) -> Set[PermissionPair]:
        """Return every (resource, action) the user's role grants inside their agency."""
        user = db.query(User.role_id, User.agency_id).filter(User.id == user_id).first()
        if user is None or user.role_id is None:
            return set()

        rows = (
            db.query(Permission.resource, Permission.action)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .filter(
                RolePermission.role_id == user.role_id,
                RolePermission.agency_id == user.agency_id,
            )
            .all()
        )
        return {(row.resource, row.action) for row in rows}

    @staticmethod
    def check_permission(
        permissions: Iterable[PermissionPair],
        resource: str,
        action: str,
        client_id: Optional[str] = None,
    ) -> bool:
        """Exact (resource, action) match, or (resource, "manage") for any action.

        ``client_id`` is accepted so call sites look the same everywhere; client
        scoping is decided by the client access layer, not here.
        """
        granted = set(permissions)
        return (resource, action) in granted or (resource, MANAGE_ACTION) in granted

    # ---- Hierarchy ----

    def get_user_hierarchy_level(self, db: Session, user_id: str) -> int:
        """Owners are level 0; missing users, roles or levels get the lowest privilege."""
        row = (
            db.query(User.is_owner, Role.hierarchy_level)
            .outerjoin(Role, Role.id == User.role_id)
            .filter(User.id == user_id)
            .first()
        )
        if row is None:
            return LOWEST_PRIVILEGE_LEVEL
        if row.is_owner:
            return OWNER_LEVEL
        if row.hierarchy_level is None:
            return LOWEST_PRIVILEGE_LEVEL
        return row.hierarchy_level

    def is_manager_or_above(self, level: int) -> bool:
        return level <= self.manager_level

    # ---- Member client grants ----

    def get_member_grant(
        self, db: Session, user_id: str, agency_id: str, client_id: str
    ) -> Optional[MemberClientAccess]:
        return (
            db.query(MemberClientAccess)
            .filter(
                MemberClientAccess.user_id == user_id,
                MemberClientAccess.agency_id == agency_id,
                MemberClientAccess.client_id == client_id,
            )
            .first()
        )

    def has_member_client_access(
        self, db: Session, user_id: str, agency_id: str, client_id: str
    ) -> bool:
        """Managers and above always pass; members need a grant row of any level."""
        level = self.get_user_hierarchy_level(db, user_id)
        if self.is_manager_or_above(level):
            return True
        return self.get_member_grant(db, user_id, agency_id, client_id) is not None

    def get_member_accessible_client_ids(
        self, db: Session, user_id: str, agency_id: str
    ) -> List[str]:
        """Client ids a member is granted.

        Returns an empty list for managers and above, which means "no
        restriction". Callers must check the hierarchy level first; prefer
        ``ClientAccessService.get_client_scope`` which makes the distinction
        explicit.
        """
        level = self.get_user_hierarchy_level(db, user_id)
        if self.is_manager_or_above(level):
            return []
        rows = (
            db.query(MemberClientAccess.client_id)
            .filter(
                MemberClientAccess.user_id == user_id,
                MemberClientAccess.agency_id == agency_id,
            )
            .all()
        )
        return [row.client_id for row in rows]

    def get_member_client_permission(
        self, db: Session, user_id: str, agency_id: str, client_id: str
    ) -> Optional[str]:
        level = self.get_user_hierarchy_level(db, user_id)
        if self.is_manager_or_above(level):
            return "write"
        grant = self.get_member_grant(db, user_id, agency_id, client_id)
        if grant is None:
            return None
        return grant.permission.value

"""Client access service — per-client grants for members below manager level."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agencyos.core.context import AuthContext
from agencyos.core.exceptions import ResourceNotFoundError, ValidationError
from agencyos.models.client import Client, ClientPermissionEnum, MemberClientAccess
from agencyos.models.user import User
from agencyos.services.audit_service import AuditService
from agencyos.services.permission_service import PermissionService

logger = logging.getLogger("agencyos.access")

# write implies read; read does not imply write
PERMISSION_RANK = {"read": 1, "write": 2}


@dataclass(frozen=True)
class Unrestricted:
    """Manager or above: every client in the agency is visible."""

    def allows(self, client_id: str) -> bool:
        return True


@dataclass(frozen=True)
class RestrictedTo:
    """Member: only the listed clients are visible (possibly none)."""

    client_ids: Tuple[str, ...]

    def allows(self, client_id: str) -> bool:
        return client_id in self.client_ids


ClientScope = Union[Unrestricted, RestrictedTo]


def _client_id_of(client: Any) -> Optional[str]:
    if isinstance(client, dict):
        return client.get("id")
    return getattr(client, "id", None)


class ClientAccessService:
    """Read and manage MemberClientAccess grants.

    All checks fail closed: a missing row or a database error means "denied".
    """

    def __init__(self, permission_service: PermissionService, audit: Optional[AuditService] = None):
        self.permission_service = permission_service
        self.audit = audit or AuditService()

    # ---- Checks ----

    def verify_client_access(self, db: Session, user_id: str, agency_id: str, client_id: str) -> bool:
        return self.permission_service.has_member_client_access(db, user_id, agency_id, client_id)

    def get_client_scope(self, db: Session, user_id: str, agency_id: str) -> ClientScope:
        level = self.permission_service.get_user_hierarchy_level(db, user_id)
        if self.permission_service.is_manager_or_above(level):
            return Unrestricted()
        ids = self.permission_service.get_member_accessible_client_ids(db, user_id, agency_id)
        return RestrictedTo(tuple(ids))

    def get_accessible_client_ids(self, db: Session, user_id: str, agency_id: str) -> List[str]:
        """Legacy form: an empty list means "all clients" for managers.

        Use ``get_client_scope`` in new code.
        """
        scope = self.get_client_scope(db, user_id, agency_id)
        if isinstance(scope, Unrestricted):
            return []
        return list(scope.client_ids)

    def filter_clients_by_access(
        self, db: Session, clients: Iterable[Any], user_id: str, agency_id: str
    ) -> List[Any]:
        """Drop the clients a member has no grant for; managers get the input back."""
        clients = list(clients)
        scope = self.get_client_scope(db, user_id, agency_id)
        if isinstance(scope, Unrestricted):
            return clients
        return [c for c in clients if scope.allows(_client_id_of(c))]

    def get_member_client_permission(
        self, db: Session, user_id: str, agency_id: str, client_id: str
    ) -> Optional[str]:
        try:
            return self.permission_service.get_member_client_permission(db, user_id, agency_id, client_id)
        except SQLAlchemyError:
            logger.exception("Failed to load client grant for user %s on client %s", user_id, client_id)
            return None

    def has_member_write_access(self, db: Session, user_id: str, agency_id: str, client_id: str) -> bool:
        return self.get_member_client_permission(db, user_id, agency_id, client_id) == "write"

    def enforce_client_access(
        self,
        db: Session,
        user_id: str,
        agency_id: str,
        client_id: str,
        required_level: str = "read",
    ) -> bool:
        """The canonical gate for client-scoped operations."""
        if required_level not in PERMISSION_RANK:
            logger.warning("Unknown client access level requested: %s", required_level)
            return False
        try:
            level = self.permission_service.get_user_hierarchy_level(db, user_id)
            if self.permission_service.is_manager_or_above(level):
                return True
            grant = self.permission_service.get_member_grant(db, user_id, agency_id, client_id)
        except Exception:
            logger.exception("Client access check failed for user %s on client %s", user_id, client_id)
            return False

        if grant is None:
            return False
        return PERMISSION_RANK.get(grant.permission.value, 0) >= PERMISSION_RANK[required_level]

    @staticmethod
    def log_client_access_attempt(
        user_id: str,
        client_id: Optional[str],
        action: str,
        allowed: bool,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Emit a structured audit line. Never raises."""
        try:
            entry = {
                "userId": user_id,
                "clientId": client_id,
                "action": action,
                "allowed": allowed,
                "result": "allowed" if allowed else "denied",
                **(context or {}),
            }
            logger.info("[ClientAccess] Member access attempt: %s", entry, extra={"access": entry})
        except Exception:
            pass  # Audit logging is non-fatal

    # ---- Grant management ----

    def list_client_grants(self, db: Session, agency_id: str, client_id: str) -> List[MemberClientAccess]:
        return (
            db.query(MemberClientAccess)
            .filter(
                MemberClientAccess.agency_id == agency_id,
                MemberClientAccess.client_id == client_id,
            )
            .order_by(MemberClientAccess.assigned_at)
            .all()
        )

    def grant_client_access(
        self,
        db: Session,
        agency_id: str,
        user_id: str,
        client_id: str,
        permission: str,
        actor: Optional[AuthContext] = None,
    ) -> MemberClientAccess:
        """Create or update a grant. Both the user and the client must belong to the agency."""
        if permission not in PERMISSION_RANK:
            raise ValidationError(f"Invalid permission level '{permission}'")
        self._require_same_agency(db, agency_id, user_id, client_id)

        grant = self.permission_service.get_member_grant(db, user_id, agency_id, client_id)
        old_value = {"permission": grant.permission.value} if grant else None
        if grant is None:
            grant = MemberClientAccess(
                user_id=user_id,
                agency_id=agency_id,
                client_id=client_id,
                permission=ClientPermissionEnum(permission),
                assigned_by=actor.id if actor else None,
            )
            db.add(grant)
        else:
            grant.permission = ClientPermissionEnum(permission)
            grant.assigned_by = actor.id if actor else grant.assigned_by
        db.commit()
        db.refresh(grant)

        self.audit.log(
            db,
            agency_id=agency_id,
            actor_id=actor.id if actor else None,
            actor_email=actor.email if actor else None,
            action="client_access.granted",
            resource_type="client",
            resource_id=client_id,
            old_value=old_value,
            new_value={"user_id": user_id, "permission": permission},
        )
        return grant

    def revoke_client_access(
        self,
        db: Session,
        agency_id: str,
        user_id: str,
        client_id: str,
        actor: Optional[AuthContext] = None,
    ) -> bool:
        grant = self.permission_service.get_member_grant(db, user_id, agency_id, client_id)
        if grant is None:
            return False
        old_value = {"user_id": user_id, "permission": grant.permission.value}
        db.delete(grant)
        db.commit()

        self.audit.log(
            db,
            agency_id=agency_id,
            actor_id=actor.id if actor else None,
            actor_email=actor.email if actor else None,
            action="client_access.revoked",
            resource_type="client",
            resource_id=client_id,
            old_value=old_value,
        )
        return True

    @staticmethod
    def _require_same_agency(db: Session, agency_id: str, user_id: str, client_id: str) -> None:
        user = db.query(User).filter(User.id == user_id, User.agency_id == agency_id).first()
        if user is None:
            raise ResourceNotFoundError(f"User {user_id} not found")
        client = db.query(Client).filter(Client.id == client_id, Client.agency_id == agency_id).first()
        if client is None:
            raise ResourceNotFoundError(f"Client {client_id} not found")

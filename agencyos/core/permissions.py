"""RBAC dependencies — the single authorization chokepoint for route handlers.

Usage::

    @router.get("/clients/{client_id}")
    async def get_client(ctx: AuthContext = Depends(RequirePermission("clients", "read"))):
        ...

Every dependency resolves to an ``AuthContext``. Refusals raise ``AccessError``,
which the application renders as ``{"error", "code", "message"}``.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agencyos.core.context import AuthContext
from agencyos.core.exceptions import AccessError, AccessErrorKind, AuthenticationError
from agencyos.core.security import AuthIdentity, security_scheme
from agencyos.db.session import get_db
from agencyos.models.user import User
from agencyos.services.container import ServiceContainer

logger = logging.getLogger("agencyos.rbac")

CLIENT_SCOPED_RESOURCES = frozenset({"clients"})

_CLIENT_PATH = re.compile(r"/clients/([^/?#]+)")

RESOURCE_LABELS = {
    "clients": "clients",
    "tickets": "tickets",
    "integrations": "integrations",
    "cartridges": "cartridges",
    "settings": "agency settings",
    "users": "team members",
    "roles": "roles",
    "ai-features": "AI features",
    "communications": "communications",
    "analytics": "analytics",
    "knowledge-base": "the knowledge base",
}


@dataclass(frozen=True)
class PermissionRequirement:
    resource: str
    action: str


def extract_client_id(path: str) -> Optional[str]:
    """Client id from a ``/clients/{id}`` segment, or None when the path has none."""
    match = _CLIENT_PATH.search(path)
    return match.group(1) if match else None


def required_client_level(action: str) -> str:
    return "read" if action == "read" else "write"


def denial_message(requirement: PermissionRequirement) -> str:
    label = RESOURCE_LABELS.get(requirement.resource, requirement.resource)
    return f"You do not have permission to {requirement.action} {label}"


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


class _AccessGate:
    """Steps shared by every variant: authenticate, then load the app user."""

    def _authenticate(
        self,
        request: Request,
        services: ServiceContainer,
        credentials: Optional[HTTPAuthorizationCredentials],
    ) -> AuthIdentity:
        try:
            identity = services.auth_provider.authenticate(credentials)
        except AuthenticationError as exc:
            logger.info("Authentication rejected for %s: %s", request.url.path, exc.message)
            identity = None
        if identity is None or not identity.agency_id:
            raise AccessError(AccessErrorKind.AUTH_REQUIRED)
        return identity

    def _load_user(self, db: Session, identity: AuthIdentity) -> AuthContext:
        try:
            user = (
                db.query(User.id, User.email, User.agency_id, User.role_id, User.is_owner)
                .filter(User.id == identity.user_id, User.agency_id == identity.agency_id)
                .first()
            )
        except SQLAlchemyError:
            logger.exception("Failed to load user %s", identity.user_id)
            raise AccessError(AccessErrorKind.USER_FETCH_FAILED)
        if user is None:
            logger.warning("No user record for %s in agency %s", identity.user_id, identity.agency_id)
            raise AccessError(AccessErrorKind.USER_FETCH_FAILED)

        return AuthContext(
            id=user.id,
            email=identity.email or user.email,
            agency_id=user.agency_id,
            role_id=user.role_id,
            is_owner=bool(user.is_owner),
        )

    def _resolve(
        self,
        request: Request,
        db: Session,
        credentials: Optional[HTTPAuthorizationCredentials],
    ) -> Tuple[ServiceContainer, AuthContext]:
        services = get_services(request)
        identity = self._authenticate(request, services, credentials)
        return services, self._load_user(db, identity)


class RequireAuthenticated(_AccessGate):
    """Any signed-in user with an application record."""

    async def __call__(
        self,
        request: Request,
        db: Session = Depends(get_db),
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    ) -> AuthContext:
        try:
            _, ctx = self._resolve(request, db, credentials)
            return ctx
        except AccessError:
            raise
        except Exception:
            logger.exception("Authentication check failed for %s", request.url.path)
            raise AccessError(AccessErrorKind.PERMISSION_CHECK_FAILED)


class RequireAnyPermission(_AccessGate):
    """Allow the request when at least one requirement is satisfied.

    Requirements are evaluated in order and the first success wins. For
    client-scoped resources, a matching role permission is necessary but not
    sufficient: the member's client grant must also cover the action.
    """

    def __init__(self, requirements: Iterable[Tuple[str, str]]):
        self.requirements: Sequence[PermissionRequirement] = tuple(
            PermissionRequirement(resource, action) for resource, action in requirements
        )
        if not self.requirements:
            raise ValueError("At least one permission requirement is needed")

    async def __call__(
        self,
        request: Request,
        db: Session = Depends(get_db),
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    ) -> AuthContext:
        return self.authorize(request, db, credentials)

    def authorize(
        self,
        request: Request,
        db: Session,
        credentials: Optional[HTTPAuthorizationCredentials],
    ) -> AuthContext:
        client_id = extract_client_id(request.url.path)
        try:
            services, ctx = self._resolve(request, db, credentials)
            if ctx.is_owner:
                return ctx

            permissions = services.permission_service.get_user_permissions(db, ctx.id)
            denied: Optional[Tuple[PermissionRequirement, str]] = None
            for requirement in self.requirements:
                if not services.permission_service.check_permission(
                    permissions, requirement.resource, requirement.action, client_id
                ):
                    if denied is None:
                        denied = (requirement, "missing_permission")
                    continue

                if client_id and requirement.resource in CLIENT_SCOPED_RESOURCES:
                    level = required_client_level(requirement.action)
                    if not services.client_access.enforce_client_access(
                        db, ctx.id, ctx.agency_id, client_id, level
                    ):
                        denied = (requirement, "client_access_denied")
                        continue
                return ctx
        except AccessError:
            raise
        except Exception:
            logger.exception("Permission check failed for %s", request.url.path)
            raise AccessError(AccessErrorKind.PERMISSION_CHECK_FAILED)

        requirement, reason = denied
        services.client_access.log_client_access_attempt(
            ctx.id,
            client_id,
            requirement.action,
            False,
            {
                "agencyId": ctx.agency_id,
                "roleId": ctx.role_id,
                "resource": requirement.resource,
                "reason": reason,
            },
        )
        raise AccessError(AccessErrorKind.PERMISSION_DENIED, denial_message(requirement))


class RequirePermission(RequireAnyPermission):
    """Require exactly one (resource, action) permission."""

    def __init__(self, resource: str, action: str):
        super().__init__([(resource, action)])


class RequireOwner(_AccessGate):
    """Only the agency owner passes; roles and permissions are not consulted."""

    async def __call__(
        self,
        request: Request,
        db: Session = Depends(get_db),
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    ) -> AuthContext:
        try:
            services, ctx = self._resolve(request, db, credentials)
        except AccessError:
            raise
        except Exception:
            logger.exception("Owner check failed for %s", request.url.path)
            raise AccessError(AccessErrorKind.PERMISSION_CHECK_FAILED)

        if not ctx.is_owner:
            services.client_access.log_client_access_attempt(
                ctx.id,
                None,
                request.method.lower(),
                False,
                {"agencyId": ctx.agency_id, "roleId": ctx.role_id, "reason": "not_owner"},
            )
            raise AccessError(AccessErrorKind.OWNER_ONLY)
        return ctx


require_authenticated = RequireAuthenticated()
require_owner = RequireOwner()

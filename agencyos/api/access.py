"""Access API router — member client grants and role assignment."""

from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from agencyos.core.context import AuthContext
from agencyos.core.exceptions import ResourceNotFoundError, ValidationError
from agencyos.core.permissions import RequirePermission, get_services, require_owner
from agencyos.db.session import get_db
from agencyos.models.role import Role
from agencyos.models.user import User
from agencyos.schemas.schemas import (
    ClientGrantOut,
    ClientGrantRequest,
    ClientRevokeRequest,
    MessageResponse,
    RoleAssignRequest,
    RoleOut,
)

router = APIRouter(prefix="/access", tags=["access"])


@router.put("/grants", response_model=ClientGrantOut)
async def grant_client_access(
    body: ClientGrantRequest,
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("users", "manage")),
):
    """Create or change a member's grant on one client."""
    grant = get_services(request).client_access.grant_client_access(
        db, ctx.agency_id, body.user_id, body.client_id, body.permission, actor=ctx
    )
    return ClientGrantOut(
        user_id=grant.user_id,
        client_id=grant.client_id,
        permission=grant.permission.value,
        assigned_by=grant.assigned_by,
        assigned_at=grant.assigned_at,
    )


@router.delete("/grants", response_model=MessageResponse)
async def revoke_client_access(
    body: ClientRevokeRequest,
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("users", "manage")),
):
    revoked = get_services(request).client_access.revoke_client_access(
        db, ctx.agency_id, body.user_id, body.client_id, actor=ctx
    )
    if not revoked:
        raise ResourceNotFoundError("Grant not found")
    return MessageResponse(message="Access revoked")


@router.get("/roles", response_model=List[RoleOut])
async def list_roles(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("roles", "read")),
):
    roles = (
        db.query(Role)
        .filter(Role.agency_id == ctx.agency_id)
        .order_by(Role.hierarchy_level.is_(None), Role.hierarchy_level, Role.name)
        .all()
    )
    return [
        RoleOut(
            id=r.id,
            name=r.name,
            description=r.description,
            hierarchy_level=r.hierarchy_level,
            is_system=r.is_system,
            permissions=sorted(
                f"{rp.permission.resource}:{rp.permission.action}" for rp in r.role_permissions
            ),
        )
        for r in roles
    ]


@router.put("/users/{user_id}/role", response_model=MessageResponse)
async def assign_role(
    user_id: str,
    body: RoleAssignRequest,
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(require_owner),
):
    """Change a team member's role (owner only)."""
    user = db.query(User).filter(User.id == user_id, User.agency_id == ctx.agency_id).first()
    if not user:
        raise ResourceNotFoundError("User not found")
    if user.is_owner:
        raise ValidationError("The agency owner's role cannot be changed")
    role = db.query(Role).filter(Role.id == body.role_id, Role.agency_id == ctx.agency_id).first()
    if not role:
        raise ResourceNotFoundError("Role not found")

    old_role_id = user.role_id
    user.role_id = role.id
    db.commit()

    get_services(request).audit.log(
        db, agency_id=ctx.agency_id, actor_id=ctx.id, actor_email=ctx.email,
        action="user.role_changed", resource_type="user", resource_id=user_id,
        old_value={"role_id": old_role_id}, new_value={"role_id": role.id, "role": role.name},
    )
    return MessageResponse(message=f"Role set to {role.name}")

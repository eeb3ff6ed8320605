"""Current-user API router."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from agencyos.core.context import AuthContext
from agencyos.core.permissions import get_services, require_authenticated
from agencyos.db.session import get_db
from agencyos.schemas.schemas import AuthContextOut, MeResponse
from agencyos.services.client_access import Unrestricted

router = APIRouter(tags=["me"])


@router.get("/me", response_model=MeResponse)
async def get_me(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(require_authenticated),
):
    """Who am I, what may I do, and which clients can I see."""
    services = get_services(request)
    permissions = services.permission_service.get_user_permissions(db, ctx.id)
    scope = services.client_access.get_client_scope(db, ctx.id, ctx.agency_id)

    return MeResponse(
        user=AuthContextOut(**ctx.to_dict()),
        hierarchy_level=services.permission_service.get_user_hierarchy_level(db, ctx.id),
        permissions=sorted(f"{resource}:{action}" for resource, action in permissions),
        client_scope="all" if isinstance(scope, Unrestricted) else "restricted",
        accessible_client_ids=[] if isinstance(scope, Unrestricted) else list(scope.client_ids),
    )

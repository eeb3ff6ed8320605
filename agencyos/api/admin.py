"""Admin / Audit API router."""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agencyos.core.context import AuthContext
from agencyos.core.permissions import RequirePermission, get_services
from agencyos.db.session import get_db
from agencyos.schemas.schemas import AuditLogOut

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit")
async def get_audit_logs(
    request: Request,
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    actor_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("settings", "manage")),
):
    """Query the agency's audit trail."""
    result = get_services(request).audit.query_logs(
        db, ctx.agency_id, actor_id, action, resource_type, page, page_size,
    )
    return {
        "logs": [
            AuditLogOut.model_validate(log)
            for log in result["logs"]
        ],
        "total": result["total"],
        "page": result["page"],
    }


@router.get("/health")
async def health_check(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("settings", "read")),
):
    """Dependency health — DB, Redis and the memory gateway configuration."""
    services = get_services(request)

    db_ok = False
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError:
        pass

    redis_ok = services.cache.health_check() if services.cache is not None else False

    return {
        "database": "ok" if db_ok else "error",
        "redis": "ok" if redis_ok else "error",
        "memory": "enabled" if services.memory_service is not None else "disabled",
        "status": "healthy" if db_ok else "degraded",
    }

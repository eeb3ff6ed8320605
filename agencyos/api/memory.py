"""Memory API router — the caller's own cross-session memories.

Scoping ids always come from the authenticated context, never from the body.
"""

from typing import Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from agencyos.core.context import AuthContext
from agencyos.core.exceptions import AccessError, AccessErrorKind, bad_request, not_found
from agencyos.core.permissions import RequirePermission, get_services
from agencyos.db.session import get_db
from agencyos.models.client import Client
from agencyos.schemas.schemas import (
    Memory,
    MemoryAddRequest,
    MemoryCreate,
    MemoryDelete,
    MemorySearchRequest,
    MemoryUpdate,
)
from agencyos.services.memory_scope import ScopeKey, Specific
from agencyos.services.memory_service import MemoryService

router = APIRouter(prefix="/memory", tags=["memory"])


def _memory_service(request: Request) -> MemoryService:
    service = get_services(request).memory_service
    if service is None:
        raise HTTPException(status_code=503, detail="Memory service not available")
    return service


def _check_client(request: Request, db: Session, ctx: AuthContext, client_id: Optional[str], level: str) -> None:
    """Client-scoped memories follow the caller's client grant."""
    if not client_id:
        return
    if not db.query(Client.id).filter(Client.id == client_id, Client.agency_id == ctx.agency_id).first():
        raise not_found("Client not found")
    if ctx.is_owner:
        return
    client_access = get_services(request).client_access
    if not client_access.enforce_client_access(db, ctx.id, ctx.agency_id, client_id, level):
        client_access.log_client_access_attempt(
            ctx.id, client_id, level, False,
            {"agencyId": ctx.agency_id, "resource": "ai-features", "reason": "client_access_denied"},
        )
        raise AccessError(AccessErrorKind.PERMISSION_DENIED, "You do not have access to this client")


def _owned_memory(
    request: Request, db: Session, service: MemoryService, memory_id: str, ctx: AuthContext
) -> Tuple[Memory, ScopeKey]:
    """Only memories stored under the caller's own user scope in their agency can be changed.

    A record whose scope cannot be established is treated as missing.
    """
    found = service.get_memory_with_scope(memory_id)
    if found is None:
        raise not_found("Memory not found")
    memory, scope = found
    if (
        scope is None
        or scope.agency.id != ctx.agency_id
        or not isinstance(scope.user, Specific)
        or scope.user.id != ctx.id
    ):
        raise not_found("Memory not found")
    if isinstance(scope.client, Specific):
        _check_client(request, db, ctx, scope.client.id, "write")
    return memory, scope


@router.get("")
async def list_memories(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    search: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("ai-features", "read")),
):
    """List the caller's memories, or search them when ``search`` is given."""
    service = _memory_service(request)
    _check_client(request, db, ctx, client_id, "read")

    if search:
        result = service.search_memories(MemorySearchRequest(
            query=search, agency_id=ctx.agency_id, user_id=ctx.id,
            client_id=client_id, limit=page_size,
        ))
        return {
            "memories": result.memories,
            "total": result.total_found,
            "page": 1,
            "page_size": page_size,
            "search_time_ms": result.search_time_ms,
        }

    return service.list_memories(ctx.agency_id, ctx.id, page, page_size, client_id=client_id)


@router.post("", status_code=201)
async def create_memory(
    body: MemoryCreate,
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("ai-features", "write")),
):
    """Confirm and store a suggested memory."""
    service = _memory_service(request)
    _check_client(request, db, ctx, body.client_id, "write")

    memory = service.add_memory(MemoryAddRequest(
        content=body.content,
        agency_id=ctx.agency_id,
        user_id=ctx.id,
        client_id=body.client_id,
        type=body.type,
        importance=body.importance,
        topic=body.topic,
    ))
    if memory is None:
        raise HTTPException(status_code=503, detail="Failed to store memory")
    return {"success": True, "memory_id": memory.id, "action": "confirmed"}


@router.put("")
async def update_memory(
    body: MemoryUpdate,
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("ai-features", "write")),
):
    service = _memory_service(request)
    memory, scope = _owned_memory(request, db, service, body.memory_id, ctx)

    updated = service.update_memory(body.memory_id, body.content, memory.metadata, scope=scope)
    if updated is None:
        raise not_found("Memory not found or update failed")
    return {"success": True, "memory": updated}


@router.delete("")
async def delete_memory(
    body: MemoryDelete,
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("ai-features", "write")),
):
    """Delete one memory, or every memory in the caller's scope with ``delete_all``."""
    service = _memory_service(request)

    if body.delete_all:
        _check_client(request, db, ctx, body.client_id, "write")
        success = service.clear_memories(ctx.agency_id, ctx.id, client_id=body.client_id)
        if success:
            get_services(request).audit.log(
                db, agency_id=ctx.agency_id, actor_id=ctx.id, actor_email=ctx.email,
                action="memory.cleared", resource_type="memory",
                new_value={"client_id": body.client_id} if body.client_id else None,
            )
        return {"success": success, "action": "delete_all"}

    if body.memory_id:
        _, scope = _owned_memory(request, db, service, body.memory_id, ctx)
        success = service.delete_memory(body.memory_id, scope=scope)
        return {"success": success, "action": "delete", "memory_id": body.memory_id}

    raise bad_request("memory_id or delete_all is required")

"""Clients API router — agency customer accounts, filtered by the caller's grants."""

from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from agencyos.core.context import AuthContext
from agencyos.core.exceptions import ResourceNotFoundError
from agencyos.core.permissions import RequirePermission, get_services
from agencyos.db.session import get_db
from agencyos.models.client import Client
from agencyos.schemas.schemas import ClientCreate, ClientGrantOut, ClientOut, ClientUpdate, MessageResponse

router = APIRouter(prefix="/clients", tags=["clients"])


def _get_client(db: Session, agency_id: str, client_id: str) -> Client:
    client = db.query(Client).filter(Client.id == client_id, Client.agency_id == agency_id).first()
    if not client:
        raise ResourceNotFoundError("Client not found")
    return client


@router.get("", response_model=List[ClientOut])
async def list_clients(
    request: Request,
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("clients", "read")),
):
    """List clients in the caller's agency. Members only see granted clients."""
    query = db.query(Client).filter(Client.agency_id == ctx.agency_id)
    if not include_inactive:
        query = query.filter(Client.is_active.is_(True))
    clients = query.order_by(Client.name).all()

    services = get_services(request)
    visible = services.client_access.filter_clients_by_access(db, clients, ctx.id, ctx.agency_id)
    return [ClientOut.model_validate(c) for c in visible]


@router.post("", response_model=ClientOut, status_code=201)
async def create_client(
    body: ClientCreate,
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("clients", "manage")),
):
    client = Client(agency_id=ctx.agency_id, **body.model_dump())
    db.add(client)
    db.commit()
    db.refresh(client)

    get_services(request).audit.log(
        db, agency_id=ctx.agency_id, actor_id=ctx.id, actor_email=ctx.email,
        action="client.created", resource_type="client", resource_id=client.id,
        new_value={"name": client.name},
        ip_address=request.client.host if request.client else None,
    )
    return ClientOut.model_validate(client)


@router.get("/{client_id}", response_model=ClientOut)
async def get_client(
    client_id: str,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("clients", "read")),
):
    return ClientOut.model_validate(_get_client(db, ctx.agency_id, client_id))


@router.put("/{client_id}", response_model=ClientOut)
async def update_client(
    client_id: str,
    body: ClientUpdate,
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("clients", "write")),
):
    client = _get_client(db, ctx.agency_id, client_id)
    changes = body.model_dump(exclude_unset=True)
    old_value = {field: getattr(client, field) for field in changes}
    for field, value in changes.items():
        setattr(client, field, value)
    db.commit()
    db.refresh(client)

    get_services(request).audit.log(
        db, agency_id=ctx.agency_id, actor_id=ctx.id, actor_email=ctx.email,
        action="client.updated", resource_type="client", resource_id=client.id,
        old_value=old_value, new_value=changes,
    )
    return ClientOut.model_validate(client)


@router.delete("/{client_id}", response_model=MessageResponse)
async def delete_client(
    client_id: str,
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("clients", "manage")),
):
    client = _get_client(db, ctx.agency_id, client_id)
    name = client.name
    db.delete(client)
    db.commit()

    get_services(request).audit.log(
        db, agency_id=ctx.agency_id, actor_id=ctx.id, actor_email=ctx.email,
        action="client.deleted", resource_type="client", resource_id=client_id,
        old_value={"name": name},
    )
    return MessageResponse(message="Client deleted")


@router.get("/{client_id}/access", response_model=List[ClientGrantOut])
async def list_client_access(
    client_id: str,
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(RequirePermission("clients", "manage")),
):
    """Members holding a grant on this client."""
    _get_client(db, ctx.agency_id, client_id)
    grants = get_services(request).client_access.list_client_grants(db, ctx.agency_id, client_id)
    return [
        ClientGrantOut(
            user_id=g.user_id,
            client_id=g.client_id,
            permission=g.permission.value,
            assigned_by=g.assigned_by,
            assigned_at=g.assigned_at,
        )
        for g in grants
    ]

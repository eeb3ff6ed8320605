"""AgencyOS CLI tool (agencyctl)."""

from typing import Optional

import typer

app = typer.Typer(name="agencyctl", help="AgencyOS CLI")
db_app = typer.Typer(help="Database management commands")
access_app = typer.Typer(help="Member client access commands")
app.add_typer(db_app, name="db")
app.add_typer(access_app, name="access")


@db_app.command("create-tables")
def db_create_tables():
    """Create all tables that don't exist yet."""
    from agencyos.db.base import Base
    from agencyos.db.session import engine
    import agencyos.models  # noqa: F401  registers the mappers

    Base.metadata.create_all(bind=engine)
    typer.echo("Tables created (or already exist)")


@db_app.command("seed-agency")
def db_seed_agency(
    name: str = typer.Argument(..., help="Agency display name"),
    slug: str = typer.Argument(..., help="Unique agency slug"),
    owner_email: str = typer.Option(..., help="Owner's email address"),
    owner_id: Optional[str] = typer.Option(None, help="Owner's user id at the auth provider"),
):
    """Create an agency with its system roles and owner."""
    from agencyos.db.session import SessionLocal
    from agencyos.db.seeds.seed_roles import seed_agency

    db = SessionLocal()
    try:
        agency = seed_agency(db, name, slug, owner_email, owner_id)
        typer.echo(f"Agency '{agency.name}' ready (id={agency.id})")
    finally:
        db.close()


@access_app.command("grant")
def access_grant(
    user_id: str = typer.Argument(..., help="Member's user id"),
    agency_id: str = typer.Argument(..., help="Agency id"),
    client_id: str = typer.Argument(..., help="Client id"),
    level: str = typer.Option("read", help="read or write"),
):
    """Grant a member access to one client."""
    from agencyos.core.exceptions import AgencyOSError
    from agencyos.db.session import SessionLocal
    from agencyos.services.client_access import ClientAccessService
    from agencyos.services.permission_service import PermissionService

    db = SessionLocal()
    try:
        service = ClientAccessService(PermissionService())
        grant = service.grant_client_access(db, agency_id, user_id, client_id, level)
        typer.echo(f"Granted {grant.permission.value} on {client_id} to {user_id}")
    except AgencyOSError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(code=1)
    finally:
        db.close()


@access_app.command("revoke")
def access_revoke(
    user_id: str = typer.Argument(..., help="Member's user id"),
    agency_id: str = typer.Argument(..., help="Agency id"),
    client_id: str = typer.Argument(..., help="Client id"),
):
    """Remove a member's access to one client."""
    from agencyos.db.session import SessionLocal
    from agencyos.services.client_access import ClientAccessService
    from agencyos.services.permission_service import PermissionService

    db = SessionLocal()
    try:
        service = ClientAccessService(PermissionService())
        if service.revoke_client_access(db, agency_id, user_id, client_id):
            typer.echo(f"Revoked access to {client_id} for {user_id}")
        else:
            typer.echo("No grant found", err=True)
            raise typer.Exit(code=1)
    finally:
        db.close()


@app.command("token")
def mint_token(
    user_id: str = typer.Argument(..., help="User id (token subject)"),
    agency_id: str = typer.Argument(..., help="Agency id claim"),
    email: Optional[str] = typer.Option(None, help="Email claim"),
    hours: int = typer.Option(1, help="Lifetime in hours"),
):
    """Mint a development access token signed with JWT_SECRET."""
    from datetime import timedelta
    from agencyos.core.security import JwtAuthProvider

    token = JwtAuthProvider().create_access_token(
        user_id, email=email, agency_id=agency_id, expires_delta=timedelta(hours=hours)
    )
    typer.echo(token)


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(True, help="Auto-reload"),
):
    """Start the FastAPI development server."""
    import uvicorn
    uvicorn.run("agencyos.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()

"""Authorization dependencies end to end through FastAPI."""

from unittest.mock import patch

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from agencyos.core.context import AuthContext
from agencyos.core.permissions import (
    RequireAnyPermission,
    RequirePermission,
    extract_client_id,
    require_owner,
)
from agencyos.db.session import get_db
from agencyos.services.permission_service import PermissionService


@pytest.fixture()
def calls():
    return []


@pytest.fixture()
def guarded(app, calls):
    """The app plus a few routes that record whether the handler ran."""

    @app.get("/guarded/settings")
    async def guarded_settings(ctx: AuthContext = Depends(RequirePermission("settings", "manage"))):
        calls.append(ctx)
        return ctx.to_dict()

    @app.get("/guarded/clients/{client_id}/edit")
    async def guarded_client_write(
        client_id: str, ctx: AuthContext = Depends(RequirePermission("clients", "write"))
    ):
        calls.append(ctx)
        return {"client_id": client_id, "user": ctx.to_dict()}

    @app.get("/guarded/any")
    async def guarded_any(
        ctx: AuthContext = Depends(RequireAnyPermission([("settings", "manage"), ("tickets", "read")]))
    ):
        calls.append(ctx)
        return {"ok": True}

    @app.get("/guarded/owner")
    async def guarded_owner(ctx: AuthContext = Depends(require_owner)):
        calls.append(ctx)
        return {"ok": True}

    with TestClient(app) as c:
        yield c


class BrokenSession:
    def query(self, *args, **kwargs):
        raise OperationalError("SELECT users", {}, Exception("password=hunter2 connection reset"))

    def close(self):
        pass


class TestAuthentication:

    def test_missing_token_is_401(self, guarded, world, calls):
        resp = guarded.get("/guarded/settings")
        assert resp.status_code == 401
        assert resp.json() == {
            "error": "Unauthorized",
            "code": "AUTH_REQUIRED",
            "message": "Authentication required",
        }
        assert calls == []

    def test_bad_token_is_401(self, guarded, world):
        resp = guarded.get("/guarded/settings", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "AUTH_REQUIRED"

    def test_non_bearer_scheme_is_401(self, guarded, world, auth_provider):
        token = auth_provider.create_access_token(world.admin.id, agency_id=world.agency.id)
        resp = guarded.get("/guarded/settings", headers={"Authorization": f"Basic {token}"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "AUTH_REQUIRED"

    def test_bearer_scheme_is_published(self, guarded):
        schema = guarded.get("/openapi.json").json()
        assert schema["components"]["securitySchemes"]["HTTPBearer"] == {"type": "http", "scheme": "bearer"}

    def test_token_without_agency_is_401(self, guarded, world, auth_provider):
        token = auth_provider.create_access_token(world.admin.id, email=world.admin.email)
        resp = guarded.get("/guarded/settings", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_user_lookup_failure_is_500(self, app, guarded, world, auth_headers, calls):
        app.dependency_overrides[get_db] = lambda: BrokenSession()
        resp = guarded.get("/guarded/settings", headers=auth_headers(world.admin))
        assert resp.status_code == 500
        body = resp.json()
        assert body["code"] == "USER_FETCH_FAILED"
        assert "hunter2" not in resp.text
        assert calls == []

    def test_unknown_user_is_500(self, guarded, world, auth_provider):
        token = auth_provider.create_access_token("ghost", agency_id=world.agency.id)
        resp = guarded.get("/guarded/settings", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 500
        assert resp.json()["code"] == "USER_FETCH_FAILED"

    def test_agency_claim_must_match_user_record(self, guarded, world, auth_headers):
        resp = guarded.get("/guarded/settings", headers=auth_headers(world.admin, world.other_agency.id))
        assert resp.status_code == 500
        assert resp.json()["code"] == "USER_FETCH_FAILED"


class TestPermissionDenied:

    def test_missing_permission_names_the_resource(self, guarded, world, auth_headers, calls):
        resp = guarded.get("/guarded/settings", headers=auth_headers(world.member))
        assert resp.status_code == 403
        assert resp.json() == {
            "error": "Forbidden",
            "code": "PERMISSION_DENIED",
            "message": "You do not have permission to manage agency settings",
        }
        assert calls == []

    def test_user_without_role_is_denied(self, guarded, world, auth_headers):
        resp = guarded.get("/api/v1/clients", headers=auth_headers(world.roleless))
        assert resp.status_code == 403
        assert resp.json()["code"] == "PERMISSION_DENIED"

    def test_denial_is_logged(self, guarded, world, auth_headers, caplog):
        with caplog.at_level("INFO", logger="agencyos.access"):
            guarded.get("/guarded/settings", headers=auth_headers(world.member))
        assert "missing_permission" in caplog.text

    def test_admin_passes(self, guarded, world, auth_headers, calls):
        resp = guarded.get("/guarded/settings", headers=auth_headers(world.admin))
        assert resp.status_code == 200
        assert resp.json()["agencyId"] == world.agency.id
        assert calls[0].id == world.admin.id

    def test_owner_bypasses_roles(self, db, guarded, world, auth_headers):
        world.owner.role_id = None
        db.commit()
        resp = guarded.get("/guarded/settings", headers=auth_headers(world.owner))
        assert resp.status_code == 200
        assert resp.json()["isOwner"] is True


class TestClientScoping:

    def test_member_with_write_grant_passes(self, guarded, world, auth_headers, calls):
        resp = guarded.get(f"/guarded/clients/{world.alpha.id}/edit", headers=auth_headers(world.member))
        assert resp.status_code == 200
        assert resp.json()["client_id"] == world.alpha.id
        assert calls[0].id == world.member.id

    def test_member_with_read_grant_cannot_write(self, guarded, world, auth_headers, caplog):
        with caplog.at_level("INFO", logger="agencyos.access"):
            resp = guarded.get(f"/guarded/clients/{world.beta.id}/edit", headers=auth_headers(world.member))
        assert resp.status_code == 403
        assert resp.json()["message"] == "You do not have permission to write clients"
        assert "client_access_denied" in caplog.text

    def test_member_without_grant_is_denied(self, guarded, world, auth_headers):
        resp = guarded.get(f"/guarded/clients/{world.gamma.id}/edit", headers=auth_headers(world.member))
        assert resp.status_code == 403

    def test_manager_needs_no_grant(self, guarded, world, auth_headers):
        resp = guarded.get(f"/guarded/clients/{world.gamma.id}/edit", headers=auth_headers(world.manager))
        assert resp.status_code == 200


class TestVariants:

    def test_any_permission_first_success_wins(self, guarded, world, auth_headers):
        assert guarded.get("/guarded/any", headers=auth_headers(world.member)).status_code == 200
        assert guarded.get("/guarded/any", headers=auth_headers(world.admin)).status_code == 200

    def test_any_permission_denied_when_none_match(self, guarded, world, auth_headers):
        resp = guarded.get("/guarded/any", headers=auth_headers(world.roleless))
        assert resp.status_code == 403
        assert resp.json()["message"] == "You do not have permission to manage agency settings"

    def test_owner_only(self, guarded, world, auth_headers):
        assert guarded.get("/guarded/owner", headers=auth_headers(world.owner)).status_code == 200
        resp = guarded.get("/guarded/owner", headers=auth_headers(world.admin))
        assert resp.status_code == 403
        assert resp.json()["code"] == "OWNER_ONLY"

    def test_unexpected_error_is_500_without_detail(self, guarded, world, auth_headers, calls):
        with patch.object(
            PermissionService, "get_user_permissions", side_effect=RuntimeError("secret internals")
        ):
            resp = guarded.get("/guarded/settings", headers=auth_headers(world.admin))
        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Internal Server Error",
            "code": "PERMISSION_CHECK_FAILED",
            "message": "Failed to verify permissions",
        }
        assert "secret internals" not in resp.text
        assert calls == []

    def test_requirements_cannot_be_empty(self):
        with pytest.raises(ValueError):
            RequireAnyPermission([])


@pytest.mark.parametrize("path,expected", [
    ("/api/v1/clients/c1", "c1"),
    ("/api/v1/clients/c1/access", "c1"),
    ("/api/v1/clients", None),
    ("/api/v1/memory", None),
])
def test_extract_client_id(path, expected):
    assert extract_client_id(path) == expected

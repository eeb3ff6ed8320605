"""Clients, access and admin routes."""

from agencyos.models.audit_log import AuditLog
from agencyos.models.user import User


class TestMe:

    def test_member(self, client, world, auth_headers):
        resp = client.get("/api/v1/me", headers=auth_headers(world.member))
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["id"] == world.member.id
        assert body["user"]["agencyId"] == world.agency.id
        assert body["hierarchy_level"] == 4
        assert "clients:write" in body["permissions"]
        assert body["client_scope"] == "restricted"
        assert set(body["accessible_client_ids"]) == {world.alpha.id, world.beta.id}

    def test_manager_sees_all(self, client, world, auth_headers):
        body = client.get("/api/v1/me", headers=auth_headers(world.manager)).json()
        assert body["client_scope"] == "all"
        assert body["accessible_client_ids"] == []

    def test_requires_auth(self, client, world):
        assert client.get("/api/v1/me").status_code == 401


class TestClients:

    def test_member_list_is_filtered(self, client, world, auth_headers):
        resp = client.get("/api/v1/clients", headers=auth_headers(world.member))
        assert resp.status_code == 200
        assert {c["id"] for c in resp.json()} == {world.alpha.id, world.beta.id}

    def test_manager_list_is_whole_agency(self, client, world, auth_headers):
        resp = client.get("/api/v1/clients", headers=auth_headers(world.manager))
        names = [c["name"] for c in resp.json()]
        assert names == ["Alpha Co", "Beta Co", "Gamma Co"]

    def test_member_cannot_create(self, client, world, auth_headers):
        resp = client.post("/api/v1/clients", json={"name": "New Co"}, headers=auth_headers(world.member))
        assert resp.status_code == 403
        assert resp.json()["message"] == "You do not have permission to manage clients"

    def test_manager_creates_and_audits(self, client, db, world, auth_headers):
        resp = client.post("/api/v1/clients", json={"name": "New Co"}, headers=auth_headers(world.manager))
        assert resp.status_code == 201
        assert resp.json()["stage"] == "Lead"
        assert db.query(AuditLog).filter(AuditLog.action == "client.created").count() == 1

    def test_member_reads_granted_client(self, client, world, auth_headers):
        resp = client.get(f"/api/v1/clients/{world.beta.id}", headers=auth_headers(world.member))
        assert resp.status_code == 200
        assert resp.json()["name"] == "Beta Co"

    def test_member_cannot_read_ungranted_client(self, client, world, auth_headers):
        resp = client.get(f"/api/v1/clients/{world.gamma.id}", headers=auth_headers(world.member))
        assert resp.status_code == 403

    def test_member_updates_with_write_grant(self, client, world, auth_headers):
        resp = client.put(
            f"/api/v1/clients/{world.alpha.id}",
            json={"health_status": "yellow"},
            headers=auth_headers(world.member),
        )
        assert resp.status_code == 200
        assert resp.json()["health_status"] == "yellow"

    def test_member_cannot_update_with_read_grant(self, client, world, auth_headers):
        resp = client.put(
            f"/api/v1/clients/{world.beta.id}",
            json={"health_status": "red"},
            headers=auth_headers(world.member),
        )
        assert resp.status_code == 403

    def test_foreign_client_is_not_found(self, client, world, auth_headers):
        resp = client.get(f"/api/v1/clients/{world.foreign.id}", headers=auth_headers(world.admin))
        assert resp.status_code == 404

    def test_delete_requires_manage(self, client, world, auth_headers):
        assert client.delete(
            f"/api/v1/clients/{world.alpha.id}", headers=auth_headers(world.member)
        ).status_code == 403
        assert client.delete(
            f"/api/v1/clients/{world.alpha.id}", headers=auth_headers(world.manager)
        ).status_code == 200
        assert client.get(
            f"/api/v1/clients/{world.alpha.id}", headers=auth_headers(world.manager)
        ).status_code == 404

    def test_client_access_listing(self, client, world, auth_headers):
        resp = client.get(f"/api/v1/clients/{world.alpha.id}/access", headers=auth_headers(world.manager))
        assert resp.status_code == 200
        assert resp.json()[0]["user_id"] == world.member.id
        assert resp.json()[0]["permission"] == "write"


class TestAccessRoutes:

    def test_admin_grants_and_revokes(self, client, world, auth_headers):
        headers = auth_headers(world.admin)
        body = {"user_id": world.member.id, "client_id": world.gamma.id, "permission": "read"}
        resp = client.put("/api/v1/access/grants", json=body, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["assigned_by"] == world.admin.id

        member = auth_headers(world.member)
        assert client.get(f"/api/v1/clients/{world.gamma.id}", headers=member).status_code == 200

        resp = client.request(
            "DELETE", "/api/v1/access/grants",
            json={"user_id": world.member.id, "client_id": world.gamma.id}, headers=headers,
        )
        assert resp.status_code == 200
        assert client.get(f"/api/v1/clients/{world.gamma.id}", headers=member).status_code == 403

    def test_manager_cannot_grant(self, client, world, auth_headers):
        body = {"user_id": world.member.id, "client_id": world.gamma.id}
        resp = client.put("/api/v1/access/grants", json=body, headers=auth_headers(world.manager))
        assert resp.status_code == 403
        assert resp.json()["message"] == "You do not have permission to manage team members"

    def test_grant_to_foreign_client_is_404(self, client, world, auth_headers):
        body = {"user_id": world.member.id, "client_id": world.foreign.id}
        resp = client.put("/api/v1/access/grants", json=body, headers=auth_headers(world.admin))
        assert resp.status_code == 404

    def test_revoke_missing_grant_is_404(self, client, world, auth_headers):
        resp = client.request(
            "DELETE", "/api/v1/access/grants",
            json={"user_id": world.member.id, "client_id": world.gamma.id},
            headers=auth_headers(world.admin),
        )
        assert resp.status_code == 404

    def test_roles_listing(self, client, world, auth_headers):
        resp = client.get("/api/v1/access/roles", headers=auth_headers(world.member))
        assert resp.status_code == 403

        resp = client.get("/api/v1/access/roles", headers=auth_headers(world.manager))
        assert resp.status_code == 200
        names = [r["name"] for r in resp.json()]
        assert names[:4] == ["Owner", "Admin", "Manager", "Member"]
        member_role = next(r for r in resp.json() if r["name"] == "Member")
        assert "clients:write" in member_role["permissions"]

    def test_only_owner_assigns_roles(self, client, db, world, auth_headers):
        body = {"role_id": world.roles["Manager"].id}
        url = f"/api/v1/access/users/{world.member.id}/role"

        resp = client.put(url, json=body, headers=auth_headers(world.admin))
        assert resp.status_code == 403
        assert resp.json()["code"] == "OWNER_ONLY"

        resp = client.put(url, json=body, headers=auth_headers(world.owner))
        assert resp.status_code == 200
        db.expire_all()
        assert db.get(User, world.member.id).role_id == world.roles["Manager"].id
        assert db.query(AuditLog).filter(AuditLog.action == "user.role_changed").count() == 1

    def test_owner_role_is_fixed(self, client, world, auth_headers):
        resp = client.put(
            f"/api/v1/access/users/{world.owner.id}/role",
            json={"role_id": world.roles["Member"].id},
            headers=auth_headers(world.owner),
        )
        assert resp.status_code == 400


class TestAdmin:

    def test_audit_requires_settings_manage(self, client, world, auth_headers):
        assert client.get("/api/v1/admin/audit", headers=auth_headers(world.manager)).status_code == 403

    def test_audit_is_agency_scoped(self, client, world, auth_headers):
        client.put(
            "/api/v1/access/grants",
            json={"user_id": world.member.id, "client_id": world.gamma.id},
            headers=auth_headers(world.admin),
        )
        body = client.get("/api/v1/admin/audit", headers=auth_headers(world.admin)).json()
        assert body["total"] == 1
        assert body["logs"][0]["action"] == "client_access.granted"

    def test_health(self, client, world, auth_headers):
        body = client.get("/api/v1/admin/health", headers=auth_headers(world.manager)).json()
        assert body["database"] == "ok"
        assert body["memory"] == "enabled"


def test_public_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.headers["X-Request-Id"]

"""Shared pytest fixtures: in-memory database, seeded agency, app and tokens."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("FEATURE_AI_MEMORY", "false")

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import agencyos.models  # noqa: F401
from agencyos.core.security import JwtAuthProvider
from agencyos.db.base import Base
from agencyos.db.seeds.seed_roles import seed_agency_roles
from agencyos.db.session import get_db
from agencyos.main import create_app
from agencyos.models.agency import Agency
from agencyos.models.client import Client, ClientPermissionEnum, MemberClientAccess
from agencyos.models.role import Role
from agencyos.models.user import User
from agencyos.services.audit_service import AuditService
from agencyos.services.client_access import ClientAccessService
from agencyos.services.container import ServiceContainer
from agencyos.services.memory_injector import MemoryInjector
from agencyos.services.memory_service import MemoryService
from agencyos.services.memory_store import MemoryStoreClient
from agencyos.services.permission_service import PermissionService

TEST_SECRET = "test-secret"


# ── Doubles ───────────────────────────────────────────────────────────────────

class FakeMemoryStore(MemoryStoreClient):
    """In-memory store keyed by scope, recording every call."""

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.search_results: Dict[str, List[Dict[str, Any]]] = {}
        self.closed = False
        self._next = 0

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def add(self, content, scope):
        self.calls.append(("add", scope))
        self._next += 1
        memory_id = f"mem-{self._next}"
        now = self._now()
        self.records[memory_id] = {
            "id": memory_id, "memory": content, "user_id": scope,
            "created_at": now, "updated_at": now,
        }
        return {"id": memory_id}

    def search(self, query, scope, top_k=None):
        self.calls.append(("search", scope))
        if scope in self.search_results:
            return self.search_results[scope]
        return [dict(r, score=0.9) for r in self.records.values() if r["user_id"] == scope]

    def get(self, memory_id):
        self.calls.append(("get", memory_id))
        return self.records.get(memory_id) or {}

    def list(self, scope, page=1, page_size=50):
        self.calls.append(("list", scope))
        rows = [r for r in self.records.values() if r["user_id"] == scope]
        start = (page - 1) * page_size
        return {"results": rows[start:start + page_size], "count": len(rows)}

    def update(self, memory_id, content):
        self.calls.append(("update", memory_id))
        if memory_id not in self.records:
            return {}
        self.records[memory_id]["memory"] = content
        self.records[memory_id]["updated_at"] = self._now()
        return self.records[memory_id]

    def delete(self, memory_id):
        self.calls.append(("delete", memory_id))
        return self.records.pop(memory_id, None) is not None

    def delete_all(self, scope):
        self.calls.append(("delete_all", scope))
        for memory_id in [k for k, r in self.records.items() if r["user_id"] == scope]:
            del self.records[memory_id]
        return True

    def close(self):
        self.closed = True

    def history(self, memory_id):
        self.calls.append(("history", memory_id))
        return [{"id": "h1", "memory_id": memory_id, "old_memory": "", "new_memory": "x", "event": "ADD"}]

    def entities(self):
        self.calls.append(("entities",))
        return [{"type": "user", "id": "a1::_::u1", "count": 2}]


class UnreachableMemoryStore(MemoryStoreClient):
    """Every call fails the way a dead gateway does."""

    def _fail(self, *args, **kwargs):
        from agencyos.core.exceptions import MemoryStoreError
        raise MemoryStoreError("connection refused")

    add = search = get = list = update = delete = delete_all = history = entities = _fail


class FakeCache:
    """Dict-backed stand-in for CacheService."""

    def __init__(self):
        self.data: Dict[str, Any] = {}

    def get_json(self, key):
        return self.data.get(key)

    def set_json(self, key, value, ttl_seconds=300):
        self.data[key] = value

    def invalidate_prefix(self, key_prefix):
        for key in [k for k in self.data if k.startswith(key_prefix)]:
            del self.data[key]

    def health_check(self):
        return True


# ── Database ──────────────────────────────────────────────────────────────────

@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _make_user(db, agency_id: str, email: str, role: Optional[Role], is_owner: bool = False) -> User:
    user = User(agency_id=agency_id, email=email, role_id=role.id if role else None, is_owner=is_owner)
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def world(db):
    """One agency with every kind of user, three clients and member grants.

    The member can write ``alpha``, read ``beta`` and has no grant on ``gamma``.
    A second agency holds its own client and user to test tenant isolation.
    """
    agency = Agency(name="Acme Agency", slug="acme")
    other_agency = Agency(name="Other Agency", slug="other")
    db.add_all([agency, other_agency])
    db.commit()

    roles = seed_agency_roles(db, agency.id)
    other_roles = seed_agency_roles(db, other_agency.id)

    custom = Role(agency_id=agency.id, name="Contractor", is_system=False, hierarchy_level=None)
    db.add(custom)
    db.commit()

    owner = _make_user(db, agency.id, "owner@acme.test", roles["Owner"], is_owner=True)
    admin = _make_user(db, agency.id, "admin@acme.test", roles["Admin"])
    manager = _make_user(db, agency.id, "manager@acme.test", roles["Manager"])
    member = _make_user(db, agency.id, "member@acme.test", roles["Member"])
    roleless = _make_user(db, agency.id, "roleless@acme.test", None)
    contractor = _make_user(db, agency.id, "contractor@acme.test", custom)
    outsider = _make_user(db, other_agency.id, "member@other.test", other_roles["Member"])

    alpha = Client(agency_id=agency.id, name="Alpha Co")
    beta = Client(agency_id=agency.id, name="Beta Co")
    gamma = Client(agency_id=agency.id, name="Gamma Co")
    foreign = Client(agency_id=other_agency.id, name="Foreign Co")
    db.add_all([alpha, beta, gamma, foreign])
    db.commit()

    db.add_all([
        MemberClientAccess(user_id=member.id, agency_id=agency.id, client_id=alpha.id,
                           permission=ClientPermissionEnum.write, assigned_by=owner.id),
        MemberClientAccess(user_id=member.id, agency_id=agency.id, client_id=beta.id,
                           permission=ClientPermissionEnum.read, assigned_by=owner.id),
    ])
    db.commit()

    return SimpleNamespace(
        agency=agency, other_agency=other_agency, roles=roles, custom_role=custom,
        owner=owner, admin=admin, manager=manager, member=member,
        roleless=roleless, contractor=contractor, outsider=outsider,
        alpha=alpha, beta=beta, gamma=gamma, foreign=foreign,
    )


# ── Services and app ──────────────────────────────────────────────────────────

@pytest.fixture()
def auth_provider():
    return JwtAuthProvider(secret=TEST_SECRET, algorithm="HS256", audience="authenticated")


@pytest.fixture()
def memory_store():
    return FakeMemoryStore()


@pytest.fixture()
def memory_cache():
    return FakeCache()


@pytest.fixture()
def services(auth_provider, memory_store, memory_cache):
    permission_service = PermissionService(manager_level=3)
    audit = AuditService()
    memory_service = MemoryService(memory_store, cache=memory_cache)
    return ServiceContainer(
        auth_provider=auth_provider,
        permission_service=permission_service,
        client_access=ClientAccessService(permission_service, audit),
        audit=audit,
        cache=None,
        memory_service=memory_service,
        memory_injector=MemoryInjector(memory_service),
    )


@pytest.fixture()
def app(services, session_factory):
    application = create_app(services)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def auth_headers(auth_provider):
    """Build a bearer header for a user, optionally overriding the agency claim."""

    def _headers(user: User, agency_id: Optional[str] = None) -> Dict[str, str]:
        token = auth_provider.create_access_token(
            user.id, email=user.email, agency_id=agency_id or user.agency_id
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers

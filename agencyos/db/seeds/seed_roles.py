"""Seed the permission catalogue and an agency's system roles."""

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from agencyos.models.agency import Agency
from agencyos.models.role import Permission, Role, RolePermission
from agencyos.models.user import User

logger = logging.getLogger("agencyos.seed")

RESOURCES = [
    "clients", "tickets", "integrations", "cartridges", "settings", "users",
    "roles", "ai-features", "communications", "analytics", "knowledge-base",
]
ACTIONS = ["read", "write", "manage"]

# Resources a Manager fully controls; everything else is read-only for them.
MANAGER_MANAGED = ["clients", "tickets", "communications", "cartridges", "knowledge-base", "ai-features"]
MEMBER_READ_WRITE = ["clients", "tickets", "communications", "ai-features"]
MEMBER_READ_ONLY = ["cartridges", "knowledge-base"]


def default_role_matrix() -> Dict[str, List[Tuple[str, str]]]:
    """(resource, action) grants for each system role."""
    full = [(r, "manage") for r in RESOURCES]
    manager = [(r, "manage") if r in MANAGER_MANAGED else (r, "read") for r in RESOURCES]
    member = (
        [(r, a) for r in MEMBER_READ_WRITE for a in ("read", "write")]
        + [(r, "read") for r in MEMBER_READ_ONLY]
    )
    return {"Owner": full, "Admin": full, "Manager": manager, "Member": member}


SYSTEM_ROLES = [
    {"name": "Owner", "hierarchy_level": 1, "description": "Agency owner, full access"},
    {"name": "Admin", "hierarchy_level": 2, "description": "Manage the agency and its team"},
    {"name": "Manager", "hierarchy_level": 3, "description": "Manage clients and day-to-day work"},
    {"name": "Member", "hierarchy_level": 4, "description": "Work on assigned clients"},
]


def seed_permissions(db: Session) -> Dict[Tuple[str, str], Permission]:
    """Insert every (resource, action) pair that doesn't already exist."""
    existing = {(p.resource, p.action): p for p in db.query(Permission).all()}
    for resource in RESOURCES:
        for action in ACTIONS:
            if (resource, action) not in existing:
                permission = Permission(
                    resource=resource,
                    action=action,
                    description=f"{action.capitalize()} {resource}",
                )
                db.add(permission)
                existing[(resource, action)] = permission
    db.flush()
    return existing


def seed_agency_roles(db: Session, agency_id: str) -> Dict[str, Role]:
    """Create the four system roles for an agency with their default grants."""
    permissions = seed_permissions(db)
    matrix = default_role_matrix()
    roles: Dict[str, Role] = {}

    for role_data in SYSTEM_ROLES:
        role = (
            db.query(Role)
            .filter(Role.agency_id == agency_id, Role.name == role_data["name"])
            .first()
        )
        if not role:
            role = Role(agency_id=agency_id, is_system=True, **role_data)
            db.add(role)
            db.flush()
            for pair in matrix[role.name]:
                db.add(RolePermission(
                    agency_id=agency_id,
                    role_id=role.id,
                    permission_id=permissions[pair].id,
                ))
        roles[role.name] = role

    db.commit()
    logger.info("Seeded %d system roles for agency %s", len(roles), agency_id)
    return roles


def seed_agency(
    db: Session,
    name: str,
    slug: str,
    owner_email: str,
    owner_id: Optional[str] = None,
) -> Agency:
    """Create an agency, its system roles and its owner user."""
    agency = db.query(Agency).filter(Agency.slug == slug).first()
    if not agency:
        agency = Agency(name=name, slug=slug)
        db.add(agency)
        db.flush()

    roles = seed_agency_roles(db, agency.id)

    if not db.query(User).filter(User.email == owner_email).first():
        owner = User(
            agency_id=agency.id,
            email=owner_email,
            role_id=roles["Owner"].id,
            is_owner=True,
        )
        if owner_id:
            owner.id = owner_id
        db.add(owner)
        db.commit()
    return agency

"""Request-scoped identity produced by the permission dependencies."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AuthContext:
    """The authenticated caller, built once per request and never persisted."""

    id: str
    email: Optional[str]
    agency_id: str
    role_id: Optional[str]
    is_owner: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "agencyId": self.agency_id,
            "roleId": self.role_id,
            "isOwner": self.is_owner,
        }

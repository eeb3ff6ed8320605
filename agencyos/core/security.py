"""JWT authentication against the hosted auth provider."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from agencyos.core.config import settings
from agencyos.core.exceptions import AuthenticationError


@dataclass(frozen=True)
class AuthIdentity:
    """What the auth provider vouches for: a user id, an email and a tenant."""

    user_id: str
    email: Optional[str]
    agency_id: Optional[str]


class AuthProvider(ABC):
    """Resolves the caller of a request, or ``None`` when there is no session."""

    @abstractmethod
    def authenticate(self, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[AuthIdentity]:
        ...


security_scheme = HTTPBearer(auto_error=False)


class JwtAuthProvider(AuthProvider):
    """Verifies access tokens signed with the provider's shared secret.

    The tenant comes from the ``agency_id`` claim, either top-level or inside
    ``app_metadata`` where the hosted provider stores custom claims.
    """

    def __init__(
        self,
        secret: str = settings.JWT_SECRET,
        algorithm: str = settings.JWT_ALGORITHM,
        audience: Optional[str] = settings.JWT_AUDIENCE,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience

    def decode_token(self, token: str) -> dict:
        """Decode and validate a JWT token."""
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as exc:
            raise AuthenticationError("Invalid or expired token") from exc

    def authenticate(self, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[AuthIdentity]:
        if credentials is None or not credentials.credentials:
            return None

        payload = self.decode_token(credentials.credentials)
        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationError("Invalid token payload")

        app_metadata = payload.get("app_metadata") or {}
        agency_id = payload.get("agency_id") or app_metadata.get("agency_id")
        return AuthIdentity(user_id=str(user_id), email=payload.get("email"), agency_id=agency_id)

    def create_access_token(
        self,
        user_id: str,
        email: Optional[str] = None,
        agency_id: Optional[str] = None,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """Mint a token the way the provider does. Used by the CLI and the tests."""
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=1))
        claims = {"sub": user_id, "email": email, "exp": expire}
        if agency_id:
            claims["app_metadata"] = {"agency_id": agency_id}
        if self.audience:
            claims["aud"] = self.audience
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

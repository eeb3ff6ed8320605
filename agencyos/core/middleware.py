"""HTTP middleware: CORS and the tenant-aware access log.

Every response carries ``X-Request-Id`` (the caller's when sent) and
``X-Response-Time-Ms``. The access line names the agency and user the bearer
token vouches for; auth refusals (401/403) are logged at warning level.
"""

import logging
import time
import uuid
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from agencyos.core.config import settings
from agencyos.core.exceptions import AuthenticationError
from agencyos.core.security import AuthIdentity, security_scheme

logger = logging.getLogger("agencyos.http")

ANONYMOUS = "-"
DENIAL_STATUSES = frozenset({401, 403})


async def identify_caller(request: Request) -> Optional[AuthIdentity]:
    """Who the token claims to be, for attribution only. Authorization happens in the route."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        return None
    credentials = await security_scheme(request)
    try:
        return services.auth_provider.authenticate(credentials)
    except AuthenticationError:
        return None


class TenantAccessLogMiddleware(BaseHTTPMiddleware):
    """One access-log line per request, tagged with tenant, user and request id."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        identity = await identify_caller(request)
        start_time = time.time()

        response: Response = await call_next(request)

        duration = round((time.time() - start_time) * 1000, 2)
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Response-Time-Ms"] = str(duration)

        level = logging.WARNING if response.status_code in DENIAL_STATUSES else logging.INFO
        logger.log(
            level,
            "%s %s %s %sms agency=%s user=%s request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration,
            (identity and identity.agency_id) or ANONYMOUS,
            identity.user_id if identity else ANONYMOUS,
            request_id,
        )
        return response


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "X-Response-Time-Ms"],
    )
    app.add_middleware(TenantAccessLogMiddleware)

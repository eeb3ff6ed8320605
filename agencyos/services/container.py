"""Service container built once per application and stored on ``app.state``."""

from dataclasses import dataclass
from typing import Optional

from agencyos.core.config import Settings
from agencyos.core.security import AuthProvider, JwtAuthProvider
from agencyos.services.audit_service import AuditService
from agencyos.services.cache_service import CacheService
from agencyos.services.client_access import ClientAccessService
from agencyos.services.memory_injector import MemoryInjector
from agencyos.services.memory_service import MemoryService
from agencyos.services.memory_store import GatewayMemoryClient
from agencyos.services.permission_service import PermissionService


@dataclass
class ServiceContainer:
    auth_provider: AuthProvider
    permission_service: PermissionService
    client_access: ClientAccessService
    audit: AuditService
    cache: Optional[CacheService] = None
    memory_service: Optional[MemoryService] = None
    memory_injector: Optional[MemoryInjector] = None


def build_services(settings: Settings) -> ServiceContainer:
    """Wire the production services from settings."""
    audit = AuditService()
    permission_service = PermissionService(manager_level=settings.MANAGER_LEVEL)
    cache = CacheService(settings.REDIS_URL)

    memory_service = None
    if settings.FEATURE_AI_MEMORY:
        memory_service = MemoryService(
            GatewayMemoryClient(
                settings.MEMORY_GATEWAY_URL,
                settings.MEMORY_GATEWAY_API_KEY,
                settings.MEMORY_GATEWAY_TIMEOUT,
            ),
            cache=cache,
            cache_ttl_seconds=settings.MEMORY_CACHE_TTL_SECONDS,
        )

    return ServiceContainer(
        auth_provider=JwtAuthProvider(
            settings.JWT_SECRET, settings.JWT_ALGORITHM, settings.JWT_AUDIENCE
        ),
        permission_service=permission_service,
        client_access=ClientAccessService(permission_service, audit),
        audit=audit,
        cache=cache,
        memory_service=memory_service,
        memory_injector=MemoryInjector(memory_service),
    )

"""
Request-scoped dependencies.

Long-lived clients are built once in the application lifespan and stored on
``app.state``; routes reach them only through these functions so tests can
swap them with ``app.dependency_overrides``.
"""

from typing import Dict

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fasterclaw.api.auth import get_current_user
from fasterclaw.config import Settings, get_settings
from fasterclaw.db import Instance, User, get_db
from fasterclaw.services.encryption import TokenCipher
from fasterclaw.services.instance_service import InstanceLifecycle
from fasterclaw.services.integration_proxy import IntegrationProxy
from fasterclaw.services.integration_service import IntegrationService
from fasterclaw.services.oauth import OAuthProvider
from fasterclaw.services.providers import ProviderRegistry
from fasterclaw.services.provisioning import ProvisioningQueue
from fasterclaw.services.stripe_service import StripeBilling


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_queue(request: Request) -> ProvisioningQueue:
    return request.app.state.queue


def get_cipher(request: Request) -> TokenCipher:
    return request.app.state.cipher


def get_http(request: Request) -> httpx.AsyncClient:
    return request.app.state.http


def get_billing(request: Request) -> StripeBilling:
    return request.app.state.billing


def get_oauth_providers(request: Request) -> Dict[str, OAuthProvider]:
    return request.app.state.oauth_providers


def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    queue: ProvisioningQueue = Depends(get_queue),
    cipher: TokenCipher = Depends(get_cipher),
    settings: Settings = Depends(get_settings),
) -> InstanceLifecycle:
    return InstanceLifecycle(db, registry, queue, cipher, settings)


def get_integration_service(
    db: AsyncSession = Depends(get_db),
    cipher: TokenCipher = Depends(get_cipher),
    oauth_providers: Dict[str, OAuthProvider] = Depends(get_oauth_providers),
    registry: ProviderRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
) -> IntegrationService:
    return IntegrationService(db, cipher, oauth_providers, registry, settings)


def get_proxy(
    db: AsyncSession = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_http),
    cipher: TokenCipher = Depends(get_cipher),
) -> IntegrationProxy:
    return IntegrationProxy(db, http, cipher)


async def get_owned_instance(
    instance_id: str,
    current_user: User = Depends(get_current_user),
    lifecycle: InstanceLifecycle = Depends(get_lifecycle),
) -> Instance:
    """The path's instance if it belongs to the caller and is not deleted, else 404."""
    return await lifecycle.get_owned(current_user.id, instance_id)

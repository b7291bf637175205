"""
OAuth integrations: catalog, per-user connections and per-instance bindings.
"""

import logging
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fasterclaw.config import Settings
from fasterclaw.db.models import Instance, InstanceIntegration, Integration, UserIntegration
from fasterclaw.errors import ConflictError, InvalidStateError, NotFoundError, ServiceError, UpstreamError
from fasterclaw.services.encryption import TokenCipher
from fasterclaw.services.oauth import OAuthProvider, get_oauth_provider
from fasterclaw.services.oauth_state import oauth_redirect_uri, proxy_base_url, sign_state, verify_state
from fasterclaw.services.providers import ProviderRegistry, ProviderTarget

logger = logging.getLogger(__name__)

INSTRUCTIONS_DIR = Path(__file__).parent / "instructions"

DEFAULT_CATALOG = [
    {
        "slug": "slack",
        "name": "Slack",
        "description": "Read channels and post messages in your Slack workspace.",
        "category": "communication",
        "provider": "slack",
        "oauth_scopes": ["channels:read", "channels:history", "chat:write", "users:read"],
    },
    {
        "slug": "github",
        "name": "GitHub",
        "description": "Browse repositories, issues and pull requests.",
        "category": "development",
        "provider": "github",
        "oauth_scopes": ["repo", "read:user", "user:email"],
    },
    {
        "slug": "google",
        "name": "Google Workspace",
        "description": "Gmail and Google Calendar access.",
        "category": "productivity",
        "provider": "google",
        "oauth_scopes": [
            "https://www.googleapis.com/auth/userinfo.email",
            "https://www.googleapis.com/auth/gmail.modify",
            "https://www.googleapis.com/auth/calendar",
        ],
    },
]


@lru_cache()
def load_instructions(provider: str) -> Optional[str]:
    path = INSTRUCTIONS_DIR / f"{provider}.md"
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8")


def render_instructions(provider: str, proxy_url: str, instance_id: str) -> Optional[str]:
    """Instructions with the placeholders filled in, or None if the provider has none."""
    text = load_instructions(provider)
    if text is None:
        return None
    return text.replace("PROXY_URL", proxy_url).replace("INSTANCE_ID", instance_id)


async def seed_integrations(db: AsyncSession) -> int:
    """Insert catalog entries that are missing. Returns how many were added."""
    result = await db.execute(select(Integration.slug))
    existing = set(result.scalars().all())
    added = 0
    for entry in DEFAULT_CATALOG:
        if entry["slug"] not in existing:
            db.add(Integration(**entry))
            added += 1
    if added:
        await db.commit()
        logger.info("Seeded %d integration(s)", added)
    return added


class IntegrationService:
    def __init__(
        self,
        db: AsyncSession,
        cipher: TokenCipher,
        oauth_providers: Dict[str, OAuthProvider],
        registry: ProviderRegistry,
        settings: Settings,
    ):
        self.db = db
        self.cipher = cipher
        self.oauth_providers = oauth_providers
        self.registry = registry
        self.settings = settings

    # ── Catalog / connections ───────────────────────────────

    async def list_catalog(self) -> List[Integration]:
        result = await self.db.execute(select(Integration).order_by(Integration.name))
        return list(result.scalars().all())

    async def list_connections(self, user_id: str) -> List[UserIntegration]:
        result = await self.db.execute(
            select(UserIntegration)
            .options(selectinload(UserIntegration.integration))
            .where(UserIntegration.user_id == user_id)
            .order_by(UserIntegration.connected_at.desc())
        )
        return list(result.scalars().all())

    async def _integration(self, integration_id: str) -> Integration:
        integration = await self.db.get(Integration, integration_id)
        if integration is None:
            raise NotFoundError("Integration not found")
        return integration

    # ── OAuth flow ──────────────────────────────────────────

    async def initiate(self, user_id: str, integration_id: str) -> Dict[str, str]:
        integration = await self._integration(integration_id)
        provider = get_oauth_provider(self.oauth_providers, integration.provider)
        state = sign_state(self.settings, user_id, integration.id)
        url = provider.authorization_url(
            list(integration.oauth_scopes or []),
            state,
            oauth_redirect_uri(integration.provider, self.settings),
        )
        return {"authorizationUrl": url, "state": state}

    async def callback(self, code: Optional[str], state: Optional[str], error: Optional[str]) -> str:
        """Complete the flow and return the frontend URL to redirect to."""
        if error:
            raise InvalidStateError(f"OAuth error: {error}")
        if not code or not state:
            raise InvalidStateError("Missing code or state parameter")
        claims = verify_state(self.settings, state)
        integration = await self._integration(claims.integration_id)

        frontend = self.settings.frontend_url.rstrip("/")
        try:
            provider = get_oauth_provider(self.oauth_providers, integration.provider)
            tokens = await provider.exchange_code(code, oauth_redirect_uri(integration.provider, self.settings))
            account = await provider.account_info(tokens.access_token)
        except (ServiceError, httpx.HTTPError):
            logger.exception("OAuth callback for %s failed", integration.provider)
            return f"{frontend}/dashboard/integrations?error=oauth_failed"

        await self._upsert_connection(
            user_id=claims.user_id,
            integration_id=integration.id,
            encrypted_access_token=self.cipher.encrypt(tokens.access_token),
            encrypted_refresh_token=self.cipher.encrypt(tokens.refresh_token) if tokens.refresh_token else None,
            token_expires_at=tokens.expires_at,
            account_identifier=account.identifier,
        )
        logger.info("User %s connected %s", claims.user_id, integration.provider)
        return f"{frontend}/dashboard/integrations?success=true"

    async def _upsert_connection(self, user_id: str, integration_id: str, **values) -> UserIntegration:
        result = await self.db.execute(
            select(UserIntegration).where(
                UserIntegration.user_id == user_id,
                UserIntegration.integration_id == integration_id,
            )
        )
        connection = result.scalar_one_or_none()
        if connection is None:
            connection = UserIntegration(user_id=user_id, integration_id=integration_id, **values)
            self.db.add(connection)
        else:
            for key, value in values.items():
                setattr(connection, key, value)
            connection.last_refreshed_at = datetime.utcnow()
        await self.db.commit()
        return connection

    async def _owned_connection(self, user_id: str, user_integration_id: str) -> UserIntegration:
        result = await self.db.execute(
            select(UserIntegration)
            .options(selectinload(UserIntegration.integration))
            .where(UserIntegration.id == user_integration_id, UserIntegration.user_id == user_id)
        )
        connection = result.scalar_one_or_none()
        if connection is None:
            raise NotFoundError("Integration not found")
        return connection

    async def refresh(self, user_id: str, user_integration_id: str) -> None:
        connection = await self._owned_connection(user_id, user_integration_id)
        if not connection.encrypted_refresh_token:
            raise InvalidStateError("No refresh token available")

        provider = get_oauth_provider(self.oauth_providers, connection.integration.provider)
        try:
            tokens = await provider.refresh(self.cipher.decrypt(connection.encrypted_refresh_token))
        except (ServiceError, httpx.HTTPError):
            logger.exception("Token refresh failed for user integration %s", connection.id)
            raise UpstreamError("Failed to refresh token", status_code=500) from None

        connection.encrypted_access_token = self.cipher.encrypt(tokens.access_token)
        if tokens.refresh_token:
            connection.encrypted_refresh_token = self.cipher.encrypt(tokens.refresh_token)
        connection.token_expires_at = tokens.expires_at
        connection.last_refreshed_at = datetime.utcnow()
        await self.db.commit()

    async def disconnect(self, user_id: str, integration_id: str) -> None:
        result = await self.db.execute(
            select(UserIntegration)
            .options(selectinload(UserIntegration.instance_bindings))
            .where(UserIntegration.user_id == user_id, UserIntegration.integration_id == integration_id)
        )
        connection = result.scalar_one_or_none()
        if connection is None:
            raise NotFoundError("Integration not found")
        await self.db.delete(connection)
        await self.db.commit()
        logger.info("User %s disconnected integration %s", user_id, integration_id)

    # ── Instance bindings ───────────────────────────────────

    async def list_bindings(self, instance: Instance) -> List[InstanceIntegration]:
        result = await self.db.execute(
            select(InstanceIntegration)
            .options(selectinload(InstanceIntegration.user_integration).selectinload(UserIntegration.integration))
            .where(InstanceIntegration.instance_id == instance.id)
            .order_by(InstanceIntegration.enabled_at.desc())
        )
        return list(result.scalars().all())

    async def enable(self, user_id: str, instance: Instance, user_integration_id: str) -> InstanceIntegration:
        connection = await self._owned_connection(user_id, user_integration_id)
        result = await self.db.execute(
            select(InstanceIntegration).where(
                InstanceIntegration.instance_id == instance.id,
                InstanceIntegration.user_integration_id == connection.id,
            )
        )
        if result.scalar_one_or_none() is not None:
            raise ConflictError("Integration already enabled for this instance")

        binding = InstanceIntegration(instance_id=instance.id, user_integration_id=connection.id)
        self.db.add(binding)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Integration already enabled for this instance") from None

        await self._configure(instance, connection.integration.provider)

        result = await self.db.execute(
            select(InstanceIntegration)
            .options(selectinload(InstanceIntegration.user_integration).selectinload(UserIntegration.integration))
            .where(InstanceIntegration.id == binding.id)
        )
        return result.scalar_one()

    async def _configure(self, instance: Instance, provider_name: str) -> None:
        """Best-effort: hand the agent the proxy URL and usage notes. Never the token."""
        proxy_url = proxy_base_url(self.settings)
        instructions = render_instructions(provider_name, proxy_url, instance.id)
        if instructions is None:
            logger.warning("No instructions for integration provider %s", provider_name)
            return
        provider = self.registry.get(instance.provider)
        target = ProviderTarget.from_instance(instance)
        if not provider.has_resources(target):
            return
        try:
            await provider.configure_integration(target, instance.id, provider_name, proxy_url, instructions)
            logger.info("Configured %s integration on instance %s", provider_name, instance.id)
        except ServiceError:
            logger.exception("Failed to configure %s integration on instance %s", provider_name, instance.id)

    async def disable(self, user_id: str, instance: Instance, integration_id: str) -> None:
        result = await self.db.execute(
            select(InstanceIntegration)
            .join(UserIntegration, InstanceIntegration.user_integration_id == UserIntegration.id)
            .where(
                InstanceIntegration.instance_id == instance.id,
                UserIntegration.integration_id == integration_id,
                UserIntegration.user_id == user_id,
            )
        )
        binding = result.scalar_one_or_none()
        if binding is None:
            raise NotFoundError("Integration not enabled for this instance")
        await self.db.delete(binding)
        await self.db.commit()

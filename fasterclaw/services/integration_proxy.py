"""
Secure integration proxy.

Agents call ``/proxy/<provider>`` with their instance id; the OAuth token is
looked up through the instance's binding, decrypted in-process, used for a
single upstream call and dropped. Tokens never leave this server.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fasterclaw.db.models import Integration, InstanceIntegration, UserIntegration
from fasterclaw.services.encryption import DecryptionError, TokenCipher

logger = logging.getLogger(__name__)

SLACK_API = "https://slack.com/api"
GITHUB_API = "https://api.github.com"
GOOGLE_API = "https://www.googleapis.com"
BODY_METHODS = ("POST", "PUT", "PATCH")


@dataclass
class ProxyCall:
    instance_id: str
    endpoint: str
    method: str = "GET"
    params: Dict[str, str] = field(default_factory=dict)
    body: Any = None


def envelope(success: bool, data: Any = None, error: Optional[str] = None) -> Dict[str, Any]:
    result: Dict[str, Any] = {"success": success}
    if success:
        result["data"] = data
    else:
        result["error"] = error
    return result


def _safe_endpoint(endpoint: str) -> Optional[str]:
    """Relative API path, or None if it could escape the upstream host."""
    path = endpoint.strip().lstrip("/")
    if not path or "://" in path or path.startswith("/") or ".." in path.split("/") or "\\" in path:
        return None
    return path


class IntegrationProxy:
    def __init__(self, db: AsyncSession, http: httpx.AsyncClient, cipher: TokenCipher):
        self.db = db
        self.http = http
        self.cipher = cipher

    async def _binding(self, instance_id: str, provider: str) -> Optional[UserIntegration]:
        result = await self.db.execute(
            select(UserIntegration)
            .join(InstanceIntegration, InstanceIntegration.user_integration_id == UserIntegration.id)
            .join(Integration, Integration.id == UserIntegration.integration_id)
            .where(InstanceIntegration.instance_id == instance_id, Integration.provider == provider)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def call(self, provider: str, call: ProxyCall) -> Optional[Dict[str, Any]]:
        """Relay ``call`` upstream. None when the instance has no such binding."""
        relay = {
            "slack": self._slack,
            "github": self._github,
            "google": self._google,
        }.get(provider)
        if relay is None:
            return envelope(False, error=f"Unsupported integration: {provider}")

        connection = await self._binding(call.instance_id, provider)
        if connection is None:
            return None

        endpoint = _safe_endpoint(call.endpoint)
        if endpoint is None:
            return envelope(False, error="Invalid endpoint")

        try:
            token = self.cipher.decrypt(connection.encrypted_access_token)
        except DecryptionError:
            logger.error("Stored %s credentials for instance %s could not be decrypted", provider, call.instance_id)
            return envelope(False, error="Integration credentials unavailable")

        method = call.method.upper()
        logger.info("Proxy %s %s %s for instance %s", provider, method, endpoint, call.instance_id)
        try:
            return await relay(token, method, endpoint, call)
        except httpx.HTTPError as e:
            logger.warning("Proxy %s call to %s failed: %s", provider, endpoint, type(e).__name__)
            return envelope(False, error=f"{provider.capitalize()} API request failed")

    async def _slack(self, token: str, method: str, endpoint: str, call: ProxyCall) -> Dict[str, Any]:
        response = await self.http.request(
            method,
            f"{SLACK_API}/{endpoint}",
            params=call.params or None,
            json=call.body if call.body is not None and method in BODY_METHODS else None,
            headers={"Authorization": f"Bearer {token}"},
        )
        try:
            data = response.json()
        except ValueError:
            return envelope(False, error=f"Slack API error: {response.status_code}")
        if isinstance(data, dict) and data.get("ok") is False:
            return envelope(False, error=data.get("error") or "Slack API error")
        return envelope(True, data)

    async def _github(self, token: str, method: str, endpoint: str, call: ProxyCall) -> Dict[str, Any]:
        response = await self.http.request(
            method,
            f"{GITHUB_API}/{endpoint}",
            params=call.params or None,
            json=call.body if call.body is not None and method in BODY_METHODS else None,
            headers={
                "Authorization": f"token {token}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": "FasterClaw-Proxy",
            },
        )
        if response.status_code == 204:
            return envelope(True, None)
        try:
            data = response.json()
        except ValueError:
            data = None
        if response.status_code >= 400:
            message = data.get("message") if isinstance(data, dict) else None
            return envelope(False, error=message or f"GitHub API error: {response.status_code}")
        return envelope(True, data)

    async def _google(self, token: str, method: str, endpoint: str, call: ProxyCall) -> Dict[str, Any]:
        response = await self.http.request(
            method,
            f"{GOOGLE_API}/{endpoint}",
            params=call.params or None,
            json=call.body if call.body is not None and method in BODY_METHODS else None,
            headers={"Authorization": f"Bearer {token}"},
        )
        if response.status_code == 204:
            return envelope(True, None)
        try:
            data = response.json()
        except ValueError:
            data = None
        if response.status_code >= 400:
            # {"error": {"code": 404, "message": "...", "status": "NOT_FOUND"}}
            error = data.get("error") if isinstance(data, dict) else None
            message = error.get("message") if isinstance(error, dict) else None
            return envelope(False, error=message or f"Google API error: {response.status_code}")
        return envelope(True, data)

    async def list_available(self, instance_id: str) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(Integration.provider, Integration.name, UserIntegration.account_identifier)
            .select_from(InstanceIntegration)
            .join(UserIntegration, InstanceIntegration.user_integration_id == UserIntegration.id)
            .join(Integration, Integration.id == UserIntegration.integration_id)
            .where(InstanceIntegration.instance_id == instance_id)
            .order_by(Integration.provider)
        )
        return [
            {"provider": provider, "name": name, "accountIdentifier": account}
            for provider, name, account in result.all()
        ]

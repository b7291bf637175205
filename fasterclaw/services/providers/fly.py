"""
Fly.io provider - OpenClaw on Fly Machines.

Infrastructure goes through the Machines API (https://fly.io/docs/machines/api/);
chat and uploads go to the machine's public endpoint at ``https://<app>.fly.dev``.
"""

from __future__ import annotations

import base64
import logging
import secrets
import time
from typing import Any, Dict, Optional

import httpx

from fasterclaw.db.models import InstanceStatus, ProviderKind
from fasterclaw.services.providers.base import (
    ChatReply,
    CreateInstanceConfig,
    InstanceProvider,
    ProviderError,
    ProviderResult,
    ProviderTarget,
    UploadResult,
)
from fasterclaw.services.providers.bootstrap import (
    GATEWAY_PORT,
    SOUL_FILE,
    STARTUP_SCRIPT,
    instance_env,
    integration_section,
)

logger = logging.getLogger(__name__)

_STATE_MAP = {
    "started": InstanceStatus.RUNNING,
    "starting": InstanceStatus.STARTING,
    "stopping": InstanceStatus.STOPPING,
    "stopped": InstanceStatus.STOPPED,
    "suspended": InstanceStatus.STOPPED,
    "destroyed": InstanceStatus.DELETED,
    "created": InstanceStatus.CREATING,
    "replacing": InstanceStatus.CREATING,
}

_USER_MESSAGES = {
    404: "Fly.io resource not found",
    422: "Fly.io rejected the machine configuration",
    429: "Fly.io rate limit exceeded, please try again shortly",
}


def map_fly_state(state: str) -> str:
    return _STATE_MAP.get(state, InstanceStatus.UNKNOWN).value


class FlyApiError(ProviderError):
    def __init__(self, status: int, detail: str):
        self.status = status
        self.detail = detail
        super().__init__(_USER_MESSAGES.get(status, f"Fly.io API error ({status})"))


class FlyClient:
    """Thin async wrapper over the Fly Machines REST API."""

    def __init__(self, http: httpx.AsyncClient, token: Optional[str], base_url: str, org_slug: str):
        self.http = http
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.org_slug = org_slug

    async def request(self, method: str, path: str, json: Any = None) -> Any:
        if not self.token:
            raise ProviderError("FLY_API_TOKEN is not configured")
        try:
            response = await self.http.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers={"Authorization": f"Bearer {self.token}"},
            )
        except httpx.HTTPError as e:
            logger.exception("Fly.io %s %s failed", method, path)
            raise ProviderError("Could not reach Fly.io") from e
        if response.status_code >= 400:
            logger.error("Fly.io %s %s -> %s: %s", method, path, response.status_code, response.text[:500])
            raise FlyApiError(response.status_code, response.text)
        if not response.content:
            return None
        return response.json()

    async def create_app(self, name: str) -> None:
        await self.request("POST", "/apps", json={"app_name": name, "org_slug": self.org_slug})

    async def create_machine(self, app_name: str, region: str, config: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request(
            "POST",
            f"/apps/{app_name}/machines",
            json={"name": f"{app_name}-machine", "region": region, "config": config},
        )

    async def start_machine(self, app_name: str, machine_id: str) -> None:
        await self.request("POST", f"/apps/{app_name}/machines/{machine_id}/start")

    async def stop_machine(self, app_name: str, machine_id: str) -> None:
        await self.request("POST", f"/apps/{app_name}/machines/{machine_id}/stop")

    async def delete_machine(self, app_name: str, machine_id: str) -> None:
        await self.request("DELETE", f"/apps/{app_name}/machines/{machine_id}?force=true")

    async def delete_app(self, app_name: str) -> None:
        await self.request("DELETE", f"/apps/{app_name}")

    async def get_machine(self, app_name: str, machine_id: str) -> Dict[str, Any]:
        return await self.request("GET", f"/apps/{app_name}/machines/{machine_id}")

    async def exec(self, app_name: str, machine_id: str, command: list, stdin: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"command": command, "timeout": 30}
        if stdin is not None:
            body["stdin"] = stdin
        return await self.request("POST", f"/apps/{app_name}/machines/{machine_id}/exec", json=body)


class FlyProvider(InstanceProvider):
    name = ProviderKind.FLY.value

    def __init__(self, client: FlyClient, image: str, chat_timeout: int = 120):
        self.client = client
        self.image = image
        self.chat_timeout = chat_timeout

    async def create_instance(self, config: CreateInstanceConfig) -> ProviderResult:
        app_name = f"openclaw-{config.user_id[:8]}-{int(time.time() * 1000)}".lower()
        await self.client.create_app(app_name)

        machine = await self.client.create_machine(
            app_name,
            config.region,
            {
                "image": self.image,
                "env": instance_env(config, secrets.token_hex(24)),
                "services": [
                    {
                        "ports": [
                            {"port": 80, "handlers": ["http"]},
                            {"port": 443, "handlers": ["tls", "http"]},
                        ],
                        "protocol": "tcp",
                        "internal_port": GATEWAY_PORT,
                    }
                ],
                "init": {"cmd": ["sh", "-c", STARTUP_SCRIPT]},
            },
        )
        logger.info("Fly machine %s created in %s for instance %s", machine["id"], app_name, config.instance_id)
        return ProviderResult(
            provider_id=machine["id"],
            provider_app_id=app_name,
            ip_address=machine.get("private_ip"),
        )

    def instance_fields(self, result: ProviderResult) -> Dict[str, Any]:
        return {
            "fly_machine_id": result.provider_id,
            "fly_app_name": result.provider_app_id,
            "ip_address": result.ip_address,
        }

    def has_resources(self, target: ProviderTarget) -> bool:
        return bool(target.fly_app_name and target.fly_machine_id)

    def _require(self, target: ProviderTarget) -> tuple[str, str]:
        if not self.has_resources(target):
            raise ProviderError("Missing Fly.io app name or machine ID", status_code=400)
        return target.fly_app_name, target.fly_machine_id

    def _public_url(self, target: ProviderTarget, path: str) -> str:
        app_name, _ = self._require(target)
        return f"https://{app_name}.fly.dev{path}"

    async def start_instance(self, target: ProviderTarget) -> None:
        await self.client.start_machine(*self._require(target))

    async def stop_instance(self, target: ProviderTarget) -> None:
        await self.client.stop_machine(*self._require(target))

    async def delete_instance(self, target: ProviderTarget) -> None:
        if not target.fly_app_name:
            return
        if target.fly_machine_id:
            await self.client.delete_machine(target.fly_app_name, target.fly_machine_id)
        await self.client.delete_app(target.fly_app_name)

    async def get_instance_status(self, target: ProviderTarget) -> str:
        if not self.has_resources(target):
            return InstanceStatus.UNKNOWN.value
        machine = await self.client.get_machine(target.fly_app_name, target.fly_machine_id)
        return map_fly_state(machine.get("state", ""))

    async def send_message(self, target: ProviderTarget, session_id: str, message: str) -> ChatReply:
        url = self._public_url(target, "/v1/chat")
        try:
            response = await self.client.http.post(
                url,
                json={"sessionId": session_id, "message": message},
                timeout=self.chat_timeout + 30,
            )
        except httpx.HTTPError as e:
            logger.exception("Chat request to %s failed", url)
            raise ProviderError("Failed to communicate with OpenClaw instance") from e
        if response.status_code >= 400:
            logger.error("Chat request to %s -> %s: %s", url, response.status_code, response.text[:500])
            raise ProviderError("Failed to communicate with OpenClaw instance")
        data = response.json()
        return ChatReply(response=data.get("response", ""))

    async def upload_file(self, target: ProviderTarget, data: bytes, filename: str) -> UploadResult:
        url = self._public_url(target, "/v1/files")
        try:
            response = await self.client.http.post(url, files={"file": (filename, data)}, timeout=120)
        except httpx.HTTPError as e:
            logger.exception("Upload to %s failed", url)
            raise ProviderError("Failed to upload file to instance") from e
        if response.status_code >= 400:
            logger.error("Upload to %s -> %s: %s", url, response.status_code, response.text[:500])
            raise ProviderError("Failed to upload file to instance")
        return UploadResult(file_path=response.json()["filePath"])

    async def configure_integration(
        self,
        target: ProviderTarget,
        instance_id: str,
        provider_name: str,
        proxy_url: str,
        instructions: str,
    ) -> None:
        app_name, machine_id = self._require(target)
        section = integration_section(provider_name, instance_id, proxy_url, instructions)
        # exec passes stdin as a string; base64 keeps markdown intact
        encoded = base64.b64encode(section.encode("utf-8")).decode("ascii")
        await self.client.exec(
            app_name,
            machine_id,
            ["sh", "-c", f'base64 -d >> "{SOUL_FILE}"'],
            stdin=encoded,
        )

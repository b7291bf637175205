"""
Instance provider interface.

A provider owns the infrastructure behind an instance (a local Docker
container or a Fly.io machine) and the transport used to talk to the agent
running inside it. Callers pick a provider through ``ProviderRegistry`` using
the instance's stored ``provider`` column and never branch on the kind.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fasterclaw.errors import UpstreamError

# Instance columns owned by providers; cleared before a retry re-provisions
PROVIDER_FIELDS = (
    "fly_app_name",
    "fly_machine_id",
    "docker_container_id",
    "docker_port",
    "ip_address",
)


class ProviderError(UpstreamError):
    """Infrastructure call failed. ``message`` is short and safe to return."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message, status_code=status_code)


@dataclass
class ProviderTarget:
    """Provider-side identifiers of an existing instance."""
    fly_app_name: Optional[str] = None
    fly_machine_id: Optional[str] = None
    docker_container_id: Optional[str] = None
    docker_port: Optional[int] = None

    @classmethod
    def from_instance(cls, instance: Any) -> "ProviderTarget":
        return cls(
            fly_app_name=instance.fly_app_name,
            fly_machine_id=instance.fly_machine_id,
            docker_container_id=instance.docker_container_id,
            docker_port=instance.docker_port,
        )

    @classmethod
    def from_fields(cls, fields: Dict[str, Any]) -> "ProviderTarget":
        names = cls.__dataclass_fields__
        return cls(**{k: v for k, v in fields.items() if k in names})


@dataclass
class CreateInstanceConfig:
    instance_id: str
    user_id: str
    name: str
    ai_provider: str  # openai | anthropic | google
    ai_api_key: str
    ai_model: str
    region: str
    telegram_bot_token: Optional[str] = None


@dataclass
class ProviderResult:
    provider_id: str       # Fly machine id or Docker container id
    provider_app_id: str   # Fly app name or Docker container name
    ip_address: Optional[str] = None
    port: Optional[int] = None


@dataclass
class ChatReply:
    response: str


@dataclass
class UploadResult:
    file_path: str


class InstanceProvider(ABC):
    name: str = ""

    @abstractmethod
    async def create_instance(self, config: CreateInstanceConfig) -> ProviderResult:
        ...

    @abstractmethod
    def instance_fields(self, result: ProviderResult) -> Dict[str, Any]:
        """Instance column values to persist after a successful create."""

    @abstractmethod
    def has_resources(self, target: ProviderTarget) -> bool:
        """True when the identifiers needed for start/stop/chat are present."""

    @abstractmethod
    async def start_instance(self, target: ProviderTarget) -> None:
        ...

    @abstractmethod
    async def stop_instance(self, target: ProviderTarget) -> None:
        ...

    @abstractmethod
    async def delete_instance(self, target: ProviderTarget) -> None:
        ...

    @abstractmethod
    async def get_instance_status(self, target: ProviderTarget) -> str:
        """Live status mapped onto ``InstanceStatus`` values."""

    @abstractmethod
    async def send_message(self, target: ProviderTarget, session_id: str, message: str) -> ChatReply:
        ...

    @abstractmethod
    async def upload_file(self, target: ProviderTarget, data: bytes, filename: str) -> UploadResult:
        ...

    @abstractmethod
    async def configure_integration(
        self,
        target: ProviderTarget,
        instance_id: str,
        provider_name: str,
        proxy_url: str,
        instructions: str,
    ) -> None:
        """Hand the agent the proxy URL, its instance id and usage notes. Never a token."""

    async def aclose(self) -> None:
        return None

"""Instance providers and the registry that resolves them by stored kind."""

from typing import Dict, Iterable

from fasterclaw.errors import InvalidStateError
from fasterclaw.services.providers.base import (
    PROVIDER_FIELDS,
    ChatReply,
    CreateInstanceConfig,
    InstanceProvider,
    ProviderError,
    ProviderResult,
    ProviderTarget,
    UploadResult,
)
from fasterclaw.services.providers.docker import DockerProvider
from fasterclaw.services.providers.fly import FlyApiError, FlyClient, FlyProvider


class ProviderRegistry:
    def __init__(self, providers: Iterable[InstanceProvider], default: str):
        self._providers: Dict[str, InstanceProvider] = {p.name: p for p in providers}
        if default not in self._providers:
            raise ValueError(f"Unknown default instance provider: {default}")
        self.default = default

    def get(self, kind: str) -> InstanceProvider:
        try:
            return self._providers[kind]
        except KeyError:
            raise InvalidStateError(f"Unknown instance provider: {kind}") from None

    def kinds(self) -> list[str]:
        return list(self._providers)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()


__all__ = [
    "PROVIDER_FIELDS",
    "ChatReply",
    "CreateInstanceConfig",
    "DockerProvider",
    "FlyApiError",
    "FlyClient",
    "FlyProvider",
    "InstanceProvider",
    "ProviderError",
    "ProviderRegistry",
    "ProviderResult",
    "ProviderTarget",
    "UploadResult",
]

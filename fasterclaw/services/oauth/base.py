"""OAuth provider interface shared by Slack, GitHub and Google."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx

from fasterclaw.errors import UpstreamError


class OAuthError(UpstreamError):
    """Token exchange, refresh or account lookup failed upstream."""

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None

    @property
    def expires_at(self) -> Optional[datetime]:
        if not self.expires_in:
            return None
        return datetime.utcnow() + timedelta(seconds=self.expires_in)


@dataclass
class AccountInfo:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    username: Optional[str] = None

    @property
    def identifier(self) -> str:
        return self.email or self.username or self.name or self.id


class OAuthProvider(ABC):
    name: str = ""

    def __init__(self, http: httpx.AsyncClient, client_id: str, client_secret: str):
        self.http = http
        self.client_id = client_id
        self.client_secret = client_secret

    @abstractmethod
    def authorization_url(self, scopes: List[str], state: str, redirect_uri: str) -> str:
        ...

    @abstractmethod
    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        ...

    @abstractmethod
    async def refresh(self, refresh_token: str) -> OAuthTokens:
        ...

    @abstractmethod
    async def account_info(self, access_token: str) -> AccountInfo:
        ...

    async def _json(self, response: httpx.Response, what: str) -> Dict[str, Any]:
        if response.status_code >= 400:
            raise OAuthError(f"{self.name.capitalize()} {what} failed: {response.status_code}")
        try:
            return response.json()
        except ValueError:
            raise OAuthError(f"{self.name.capitalize()} {what} returned invalid JSON") from None

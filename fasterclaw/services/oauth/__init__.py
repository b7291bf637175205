"""OAuth providers by name."""

from typing import Dict

import httpx

from fasterclaw.config import Settings
from fasterclaw.errors import InvalidStateError
from fasterclaw.services.oauth.base import AccountInfo, OAuthError, OAuthProvider, OAuthTokens
from fasterclaw.services.oauth.github import GitHubOAuthProvider
from fasterclaw.services.oauth.google import GoogleOAuthProvider
from fasterclaw.services.oauth.slack import SlackOAuthProvider

SUPPORTED_PROVIDERS = ("google", "slack", "github")


def build_oauth_providers(http: httpx.AsyncClient, settings: Settings) -> Dict[str, OAuthProvider]:
    return {
        "slack": SlackOAuthProvider(http, settings.slack_oauth_client_id, settings.slack_oauth_client_secret),
        "github": GitHubOAuthProvider(http, settings.github_oauth_client_id, settings.github_oauth_client_secret),
        "google": GoogleOAuthProvider(http, settings.google_oauth_client_id, settings.google_oauth_client_secret),
    }


def get_oauth_provider(providers: Dict[str, OAuthProvider], name: str) -> OAuthProvider:
    try:
        return providers[name.lower()]
    except KeyError:
        raise InvalidStateError(f"Unknown OAuth provider: {name}") from None


__all__ = [
    "SUPPORTED_PROVIDERS",
    "AccountInfo",
    "OAuthError",
    "OAuthProvider",
    "OAuthTokens",
    "build_oauth_providers",
    "get_oauth_provider",
]

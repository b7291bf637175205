"""GitHub OAuth apps (https://docs.github.com/en/apps/oauth-apps)"""

from typing import List
from urllib.parse import urlencode

from fasterclaw.services.oauth.base import AccountInfo, OAuthError, OAuthProvider, OAuthTokens

GITHUB_AUTH_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_USER_URL = "https://api.github.com/user"


class GitHubOAuthProvider(OAuthProvider):
    name = "github"

    def authorization_url(self, scopes: List[str], state: str, redirect_uri: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(scopes),
            "state": state,
        }
        return f"{GITHUB_AUTH_URL}?{urlencode(params)}"

    async def _token_request(self, body: dict, what: str) -> dict:
        response = await self.http.post(
            GITHUB_TOKEN_URL,
            json={"client_id": self.client_id, "client_secret": self.client_secret, **body},
            headers={"Accept": "application/json"},
        )
        data = await self._json(response, what)
        # GitHub reports OAuth errors with HTTP 200
        if data.get("error"):
            raise OAuthError(f"GitHub {what} failed: {data.get('error_description') or data['error']}")
        return data

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        data = await self._token_request({"code": code, "redirect_uri": redirect_uri}, "token exchange")
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
            scope=data.get("scope"),
        )

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        data = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "token refresh",
        )
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_in=data.get("expires_in"),
            scope=data.get("scope"),
        )

    async def account_info(self, access_token: str) -> AccountInfo:
        response = await self.http.get(
            GITHUB_USER_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )
        data = await self._json(response, "userinfo")
        return AccountInfo(
            id=str(data["id"]),
            email=data.get("email"),
            name=data.get("name") or data.get("login"),
            username=data.get("login"),
        )

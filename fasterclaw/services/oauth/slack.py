"""Slack OAuth v2 (https://api.slack.com/authentication/oauth-v2)"""

from typing import List
from urllib.parse import urlencode

from fasterclaw.services.oauth.base import AccountInfo, OAuthError, OAuthProvider, OAuthTokens

SLACK_AUTH_URL = "https://slack.com/oauth/v2/authorize"
SLACK_TOKEN_URL = "https://slack.com/api/oauth.v2.access"
# auth.test works with bot tokens, users.identity does not
SLACK_AUTH_TEST_URL = "https://slack.com/api/auth.test"


class SlackOAuthProvider(OAuthProvider):
    name = "slack"

    def authorization_url(self, scopes: List[str], state: str, redirect_uri: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": ",".join(scopes),
            "state": state,
        }
        return f"{SLACK_AUTH_URL}?{urlencode(params)}"

    async def _token_request(self, form: dict, what: str) -> dict:
        response = await self.http.post(SLACK_TOKEN_URL, data=form)
        data = await self._json(response, what)
        if not data.get("ok"):
            raise OAuthError(f"Slack {what} failed: {data.get('error', 'unknown_error')}")
        return data

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        data = await self._token_request(
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
            },
            "token exchange",
        )
        # Bot token first, user token when only user scopes were granted
        access_token = data.get("access_token") or (data.get("authed_user") or {}).get("access_token")
        if not access_token:
            raise OAuthError("Slack did not return an access token")
        return OAuthTokens(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
            scope=data.get("scope"),
        )

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        data = await self._token_request(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            "token refresh",
        )
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_in=data.get("expires_in"),
            scope=data.get("scope"),
        )

    async def account_info(self, access_token: str) -> AccountInfo:
        response = await self.http.post(
            SLACK_AUTH_TEST_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        data = await self._json(response, "auth.test")
        if not data.get("ok"):
            raise OAuthError(f"Slack auth.test failed: {data.get('error', 'unknown_error')}")
        return AccountInfo(
            id=data.get("user_id") or data.get("bot_id") or data.get("team_id") or "unknown",
            name=data.get("team") or data.get("user"),
            username=data.get("user"),
        )

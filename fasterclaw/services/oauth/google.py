"""Google OAuth 2.0 for Workspace (Gmail, Calendar, Drive)"""

from typing import List
from urllib.parse import urlencode

from fasterclaw.services.oauth.base import AccountInfo, OAuthProvider, OAuthTokens

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class GoogleOAuthProvider(OAuthProvider):
    name = "google"

    def authorization_url(self, scopes: List[str], state: str, redirect_uri: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
            # offline + consent so Google issues a refresh token every time
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        response = await self.http.post(
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        data = await self._json(response, "token exchange")
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
            scope=data.get("scope"),
        )

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        response = await self.http.post(
            GOOGLE_TOKEN_URL,
            data={
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            },
        )
        data = await self._json(response, "token refresh")
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=refresh_token,
            expires_in=data.get("expires_in"),
            scope=data.get("scope"),
        )

    async def account_info(self, access_token: str) -> AccountInfo:
        response = await self.http.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        data = await self._json(response, "userinfo")
        email = data.get("email")
        return AccountInfo(
            id=data["id"],
            email=email,
            name=data.get("name"),
            username=email.split("@")[0] if email else None,
        )

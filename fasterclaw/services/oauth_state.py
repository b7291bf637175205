"""
Signed OAuth ``state`` and the public URLs the OAuth flow depends on.

State is a short-lived HS256 JWT, so the callback can be verified by any API
process without server-side session storage.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from fasterclaw.config import Settings
from fasterclaw.errors import InvalidStateError

STATE_TYPE = "oauth_state"
CALLBACK_PATH = "/integrations/oauth/callback"
LOCALHOST_API = "http://localhost:3001"


@dataclass(frozen=True)
class OAuthState:
    user_id: str
    integration_id: str
    nonce: str
    exp: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.exp


def sign_state(
    settings: Settings,
    user_id: str,
    integration_id: str,
    now: Optional[datetime] = None,
) -> str:
    issued = now or datetime.now(timezone.utc)
    claims = {
        "typ": STATE_TYPE,
        "uid": user_id,
        "iid": integration_id,
        "nonce": secrets.token_urlsafe(12),
        "exp": int((issued + timedelta(minutes=settings.oauth_state_ttl_minutes)).timestamp()),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm="HS256")


def verify_state(settings: Settings, token: str, now: Optional[datetime] = None) -> OAuthState:
    """Decode and validate ``token``; raises InvalidStateError when unusable."""
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            # expiry is checked below against ``now``
            options={"verify_exp": False},
        )
    except JWTError:
        raise InvalidStateError("Invalid or expired state") from None

    if claims.get("typ") != STATE_TYPE:
        raise InvalidStateError("Invalid or expired state")
    try:
        state = OAuthState(
            user_id=str(claims["uid"]),
            integration_id=str(claims["iid"]),
            nonce=str(claims["nonce"]),
            exp=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError):
        raise InvalidStateError("Invalid or expired state") from None
    if state.is_expired(now):
        raise InvalidStateError("Invalid or expired state")
    return state


def ngrok_url(settings: Settings) -> Optional[str]:
    return f"https://{settings.ngrok_domain}" if settings.ngrok_domain else None


def proxy_base_url(settings: Settings) -> str:
    """Where agents reach the integration proxy."""
    return ngrok_url(settings) or settings.api_url or LOCALHOST_API


def oauth_redirect_base(provider: str, settings: Settings) -> str:
    # Google accepts plain loopback redirects; Slack and GitHub require TLS
    localhost = settings.oauth_redirect_base_url or LOCALHOST_API
    if provider == "google":
        return settings.google_oauth_redirect_url or localhost
    return ngrok_url(settings) or localhost


def oauth_redirect_uri(provider: str, settings: Settings) -> str:
    return f"{oauth_redirect_base(provider, settings).rstrip('/')}{CALLBACK_PATH}"

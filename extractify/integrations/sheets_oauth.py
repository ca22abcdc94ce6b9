"""Google OAuth access-token resolution for Sheets targets."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timezone

from google.auth.exceptions import GoogleAuthError
from google.auth.transport import Request as AuthRequest
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from extractify.errors import ExtractifyError, GoogleOAuthError
from extractify.integrations.credentials import decrypt_secret, encrypt_secret
from extractify.schemas.integrations import SheetsOAuth

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_EXPIRY_SKEW_SECONDS = 60


@dataclass(slots=True)
class ResolvedAccessToken:
    access_token: str
    oauth: SheetsOAuth
    refreshed: bool = False


def _now_ms() -> int:
    return int(time.time() * 1000)


def _refresh_error_message(exc: GoogleAuthError) -> str:
    """Prefer the token endpoint's ``error_description`` over google-auth's composed text."""

    details = exc.args[1] if len(exc.args) > 1 else None
    if isinstance(details, dict):
        message = details.get("error_description") or details.get("error")
        if message:
            return str(message)
    if exc.args and exc.args[0]:
        return str(exc.args[0])
    return "Google token refresh failed"


def refresh_google_access_token(
    *,
    client_id: str,
    client_secret: str,
    refresh_token: str,
    scopes: list[str] | None = None,
    request: AuthRequest | None = None,
) -> Credentials:
    """Exchange a refresh token for a new access token; returns the refreshed credentials."""

    credentials = Credentials(
        token=None,
        refresh_token=refresh_token,
        client_id=client_id,
        client_secret=client_secret,
        token_uri=GOOGLE_TOKEN_URL,
        scopes=scopes or None,
    )
    try:
        credentials.refresh(request or Request())
    except GoogleAuthError as exc:
        raise GoogleOAuthError(_refresh_error_message(exc)) from exc
    if not credentials.token:
        raise GoogleOAuthError("Google token refresh failed")
    return credentials


def resolve_sheets_access_token(
    oauth: SheetsOAuth,
    *,
    secrets_key: bytes,
    client_id: str | None,
    client_secret: str | None,
    request: AuthRequest | None = None,
    force_refresh: bool = False,
    skew_seconds: int = DEFAULT_EXPIRY_SKEW_SECONDS,
    now_ms: Callable[[], int] = _now_ms,
) -> ResolvedAccessToken:
    """Return a usable access token, refreshing when the cached one is near expiry."""

    now = now_ms()
    has_valid_access_token = (
        oauth.access_token is not None
        and oauth.access_token_expires_at is not None
        and oauth.access_token_expires_at > now + skew_seconds * 1000
    )
    try:
        if has_valid_access_token and not force_refresh:
            return ResolvedAccessToken(access_token=decrypt_secret(oauth.access_token, secrets_key), oauth=oauth)

        if not client_id or not client_secret:
            raise GoogleOAuthError("Missing GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET in worker environment")

        current_refresh_token = decrypt_secret(oauth.refresh_token, secrets_key)
        credentials = refresh_google_access_token(
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=current_refresh_token,
            scopes=list(oauth.scopes),
            request=request,
        )
    except GoogleOAuthError:
        raise
    except ExtractifyError as exc:
        raise GoogleOAuthError(str(exc)) from exc

    access_token = str(credentials.token)
    rotated = bool(credentials.refresh_token) and credentials.refresh_token != current_refresh_token
    expires_at = oauth.access_token_expires_at
    if credentials.expiry is not None:
        # google-auth reports expiry as naive UTC.
        expires_at = int(credentials.expiry.replace(tzinfo=timezone.utc).timestamp() * 1000)
    next_oauth = oauth.model_copy(
        update={
            "scopes": list(credentials.granted_scopes or oauth.scopes),
            "refresh_token": (
                encrypt_secret(str(credentials.refresh_token), secrets_key) if rotated else oauth.refresh_token
            ),
            "access_token": encrypt_secret(access_token, secrets_key),
            "access_token_expires_at": expires_at,
        }
    )
    logger.info("sheets_oauth.refreshed rotated_refresh_token=%s forced=%s", rotated, force_refresh)
    return ResolvedAccessToken(access_token=access_token, oauth=next_oauth, refreshed=True)

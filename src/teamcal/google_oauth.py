"""Google OAuth 2.0 client for per-user calendar authorization.

Covers the authorization-code handshake (authorization URL, code exchange,
userinfo lookup), refresh-token exchange, and token revocation.  All calls
go through a caller-owned ``httpx.AsyncClient`` so timeouts and transports
are configured in one place.

Secret material (client secret, access and refresh tokens) is never logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

CALENDAR_SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.calendarlist.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
)

DEFAULT_EXPIRES_IN_SECONDS = 3600


class GoogleOAuthError(RuntimeError):
    """Base error raised by the Google OAuth client."""


class TokenExchangeError(GoogleOAuthError):
    """Raised when the authorization code -> token exchange fails."""


class TokenRefreshError(GoogleOAuthError):
    """Raised when refresh-token exchange fails."""


@dataclass(frozen=True)
class TokenGrant:
    """Output of a successful authorization handshake."""

    access_token: str
    refresh_token: str
    expires_at: datetime
    email: str

    def __repr__(self) -> str:
        return (
            f"TokenGrant(access_token=<REDACTED>, refresh_token=<REDACTED>, "
            f"expires_at={self.expires_at!r}, email={self.email!r})"
        )


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"RefreshedToken(access_token=<REDACTED>, expires_at={self.expires_at!r})"


_KNOWN_PROVIDER_ERRORS: dict[str, str] = {
    "access_denied": "Access to Google Calendar was denied. Please try again and allow access.",
    "invalid_request": "The authorization request was invalid. Please try again.",
    "invalid_client": "There was a configuration error. Please contact support.",
    "invalid_grant": "The authorization code has expired. Please try connecting again.",
    "unauthorized_client": "This application is not authorized. Please contact support.",
    "unsupported_response_type": "There was a configuration error. Please contact support.",
    "invalid_scope": "The requested permissions are invalid. Please contact support.",
    "server_error": "Google encountered an internal error. Please try again later.",
    "temporarily_unavailable": "Google is temporarily unavailable. Please try again later.",
}


def sanitize_provider_error(error: str) -> str:
    """Convert a provider error code into a safe, actionable user message.

    Unknown codes map to a generic message to avoid leaking provider state.
    """
    return _KNOWN_PROVIDER_ERRORS.get(error, "An unexpected error occurred. Please try again.")


def coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS


def safe_google_error_message(response: httpx.Response) -> str:
    """Extract a short, whitespace-normalized error message from a Google response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            description = payload.get("error_description")
            if isinstance(description, str) and description.strip():
                return " ".join(f"{error_payload}: {description}".split())[:200]
            return " ".join(error_payload.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


class GoogleOAuthClient:
    """Stateless OAuth helper bound to one Google OAuth application."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._http_client = http_client

    def __repr__(self) -> str:
        return (
            f"GoogleOAuthClient(client_id={self._client_id!r}, client_secret=<REDACTED>, "
            f"redirect_uri={self._redirect_uri!r})"
        )

    def authorization_url(self, state: str) -> str:
        """Build the consent URL; ``offline`` + ``consent`` force a refresh token."""
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens and the account email.

        Raises
        ------
        TokenExchangeError
            On transport failure, a non-2xx response, a missing access or
            refresh token, or when the account email cannot be resolved.
        """
        try:
            response = await self._http_client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "redirect_uri": self._redirect_uri,
                    "grant_type": "authorization_code",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"Network error during token exchange: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TokenExchangeError(
                f"Token endpoint returned HTTP {response.status_code}: "
                f"{safe_google_error_message(response)}"
            )

        payload = _json_object(response, TokenExchangeError)
        access_token = _non_empty(payload.get("access_token"))
        if access_token is None:
            raise TokenExchangeError("No access token received from Google")
        refresh_token = _non_empty(payload.get("refresh_token"))
        if refresh_token is None:
            raise TokenExchangeError(
                "No refresh token received from Google. "
                "The user may need to revoke access and reconnect."
            )

        expires_at = datetime.now(UTC) + timedelta(
            seconds=coerce_expires_in_seconds(payload.get("expires_in"))
        )
        try:
            email = await self.fetch_email(access_token)
        except GoogleOAuthError as exc:
            raise TokenExchangeError(str(exc)) from exc

        return TokenGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            email=email,
        )

    async def fetch_email(self, access_token: str) -> str:
        try:
            response = await self._http_client.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise GoogleOAuthError(f"Userinfo request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise GoogleOAuthError(
                f"Userinfo request failed ({response.status_code}): "
                f"{safe_google_error_message(response)}"
            )
        email = _non_empty(_json_object(response, GoogleOAuthError).get("email"))
        if email is None:
            raise GoogleOAuthError("Could not retrieve user email from Google")
        return email

    async def refresh(self, refresh_token: str) -> RefreshedToken:
        """Exchange *refresh_token* for a new access token.

        Raises
        ------
        TokenRefreshError
            On transport failure, a non-2xx response, or a response without a
            non-empty ``access_token``.
        """
        try:
            response = await self._http_client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(f"Google OAuth token refresh request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TokenRefreshError(
                "Google OAuth token refresh failed "
                f"({response.status_code}): {safe_google_error_message(response)}"
            )

        payload = _json_object(response, TokenRefreshError)
        access_token = _non_empty(payload.get("access_token"))
        if access_token is None:
            raise TokenRefreshError(
                "Google OAuth token response is missing a non-empty access_token"
            )
        expires_in = coerce_expires_in_seconds(payload.get("expires_in"))
        return RefreshedToken(
            access_token=access_token,
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
        )

    async def revoke(self, token: str) -> None:
        """Revoke *token* with Google.  Callers treat failures as best effort."""
        try:
            response = await self._http_client.post(
                GOOGLE_REVOKE_URL,
                data={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as exc:
            raise GoogleOAuthError(f"Token revocation request failed: {exc}") from exc
        if response.status_code < 200 or response.status_code >= 300:
            raise GoogleOAuthError(
                f"Token revocation failed ({response.status_code}): "
                f"{safe_google_error_message(response)}"
            )


def _non_empty(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _json_object(response: httpx.Response, error_cls: type[GoogleOAuthError]) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise error_cls("Google OAuth endpoint returned invalid JSON") from exc
    if not isinstance(payload, dict):
        raise error_cls("Google OAuth endpoint returned an unexpected JSON payload shape")
    return payload

"""Per-user Google Calendar connect flow.

Two-leg OAuth 2.0 authorization-code flow:

  1. GET /api/oauth/google/start?user_id=...
     - Generates a random state token bound to the requesting user
       (TTL 10 min) and returns or redirects to Google's consent screen.

  2. GET /api/oauth/google/callback
     - Consumes the state token, exchanges the code, looks up the Google
       account email and stores the encrypted connection for that user.
     - Redirects to ``OAUTH_DASHBOARD_URL`` when configured, otherwise
       returns a JSON payload.

Security notes:
  - State tokens are one-time-use and expire after 10 minutes.
  - Token values are never logged or echoed back.
  - Provider error strings are mapped to fixed messages.
"""

from __future__ import annotations

import logging
import secrets
import time

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse, Response

from teamcal.api.deps import get_connections, get_dashboard_url, get_oauth_client
from teamcal.api.models.oauth import OAuthCallbackError, OAuthCallbackSuccess, OAuthStartResponse
from teamcal.connections import CalendarConnectionStore
from teamcal.google_oauth import GoogleOAuthClient, TokenExchangeError, sanitize_provider_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/oauth", tags=["oauth"])

# ---------------------------------------------------------------------------
# In-memory state store
# ---------------------------------------------------------------------------

_STATE_TTL_SECONDS = 600  # 10 minutes

# Maps state token → (user_id, expiry timestamp on the monotonic clock).
# NOTE: This store is process-local. Run a single worker process, or CSRF
# state validation fails across workers.
_state_store: dict[str, tuple[str, float]] = {}


def _generate_state() -> str:
    return secrets.token_urlsafe(32)


def _store_state(state: str, user_id: str) -> None:
    _state_store[state] = (user_id, time.monotonic() + _STATE_TTL_SECONDS)
    _evict_expired_states()


def _consume_state(state: str) -> str | None:
    """Pop *state* and return the user it was issued for, if still valid."""
    _evict_expired_states()
    entry = _state_store.pop(state, None)
    if entry is None:
        return None
    user_id, expiry = entry
    if time.monotonic() >= expiry:
        return None
    return user_id


def _evict_expired_states() -> None:
    now = time.monotonic()
    expired = [key for key, (_, expiry) in _state_store.items() if now >= expiry]
    for key in expired:
        del _state_store[key]


def _clear_state_store() -> None:
    """Clear all state entries. Used in tests."""
    _state_store.clear()


def _error(
    error_code: str, message: str, dashboard_url: str | None = None, status_code: int = 400
) -> Response:
    payload = OAuthCallbackError(error_code=error_code, message=message)
    if dashboard_url:
        return RedirectResponse(url=f"{dashboard_url}?oauth_error={error_code}", status_code=302)
    return JSONResponse(status_code=status_code, content=payload.model_dump())


# ---------------------------------------------------------------------------
# Start endpoint
# ---------------------------------------------------------------------------


@router.get(
    "/google/start",
    responses={
        200: {"model": OAuthStartResponse, "description": "JSON payload (redirect=false)"},
        302: {"description": "Redirect to Google authorization URL"},
    },
)
async def oauth_google_start(
    user_id: str = Query(min_length=1, description="User connecting their calendar."),
    redirect: bool = Query(
        default=True,
        description="If true (default), redirect to Google authorization URL. "
        "If false, return the URL as JSON for programmatic callers.",
    ),
    oauth: GoogleOAuthClient = Depends(get_oauth_client),
) -> Response:
    """Begin the connect flow for *user_id*."""
    state = _generate_state()
    _store_state(state, user_id)
    authorization_url = oauth.authorization_url(state)

    logger.info("Google Calendar connect started (user_id=%s, state=%s...)", user_id, state[:8])

    if redirect:
        return RedirectResponse(url=authorization_url, status_code=302)
    return JSONResponse(
        content=OAuthStartResponse(authorization_url=authorization_url, state=state).model_dump()
    )


# ---------------------------------------------------------------------------
# Callback endpoint
# ---------------------------------------------------------------------------


@router.get("/google/callback")
async def oauth_google_callback(
    code: str | None = Query(default=None, description="Authorization code from Google."),
    state: str | None = Query(default=None, description="CSRF state token."),
    error: str | None = Query(default=None, description="OAuth error code from Google."),
    oauth: GoogleOAuthClient = Depends(get_oauth_client),
    store: CalendarConnectionStore = Depends(get_connections),
    dashboard_url: str | None = Depends(get_dashboard_url),
) -> Response:
    """Finish the connect flow and persist the user's connection."""
    if error:
        logger.warning("Google OAuth provider error: %s", error)
        # Burn the state so a denied flow cannot be replayed.
        if state:
            _consume_state(state)
        return _error("provider_error", sanitize_provider_error(error), dashboard_url)

    if not code:
        return _error("missing_code", "Authorization code is missing from the callback.")
    if not state:
        return _error(
            "missing_state",
            "State parameter is missing from the callback. Possible CSRF attempt.",
        )

    user_id = _consume_state(state)
    if user_id is None:
        logger.warning("OAuth callback received invalid or expired state token")
        return _error(
            "invalid_state",
            "State parameter is invalid or expired. Please restart the connect flow.",
        )

    try:
        grant = await oauth.exchange_code(code)
    except TokenExchangeError as exc:
        logger.warning("Google OAuth token exchange failed for user_id=%s: %s", user_id, exc)
        return _error(
            "token_exchange_failed",
            "Failed to exchange authorization code for tokens. "
            "The code may have expired or already been used. Please restart the connect flow.",
            dashboard_url,
        )

    await store.store_connection(user_id, grant)
    logger.info("Google Calendar connected (user_id=%s, email=%s)", user_id, grant.email)

    if dashboard_url:
        return RedirectResponse(url=f"{dashboard_url}?oauth_success=true", status_code=302)
    return JSONResponse(
        content=OAuthCallbackSuccess(user_id=user_id, google_email=grant.email).model_dump()
    )

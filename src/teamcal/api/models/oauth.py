"""Pydantic models for the per-user Google OAuth connect flow."""

from __future__ import annotations

from pydantic import BaseModel


class OAuthStartResponse(BaseModel):
    """Authorization URL the user should visit to grant calendar access."""

    authorization_url: str
    state: str


class OAuthCallbackSuccess(BaseModel):
    success: bool = True
    message: str = "Google Calendar connected."
    provider: str = "google"
    user_id: str
    google_email: str


class OAuthCallbackError(BaseModel):
    """Error payload returned when the OAuth callback fails.

    Messages are actionable but never carry client secrets or raw provider
    error details.
    """

    success: bool = False
    error_code: str
    message: str
    provider: str = "google"

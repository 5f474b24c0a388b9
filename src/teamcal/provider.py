"""Google Calendar provider: insert, update and delete remote events.

The provider is stateless with respect to users; every call carries the
access token and calendar id it should act on.  429 and 503 responses are
retried with exponential backoff (``Retry-After`` is honoured on 429); every
other non-2xx response surfaces as :class:`CalendarRequestError`, and 404 as
its subclass :class:`CalendarNotFoundError`.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from teamcal.google_oauth import safe_google_error_message
from teamcal.models import WireEvent

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"

RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0


class CalendarProviderError(RuntimeError):
    """Base error raised by calendar provider calls."""


class CalendarRequestError(CalendarProviderError):
    """Raised when a Google Calendar API request fails."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google Calendar API request failed ({status_code}): {message}")


class CalendarNotFoundError(CalendarRequestError):
    """The remote event (or calendar) does not exist."""

    def __init__(self, message: str = "Event not found in Google Calendar") -> None:
        super().__init__(status_code=404, message=message)


@dataclass(frozen=True)
class CalendarSummary:
    """One entry of the user's calendar list."""

    id: str
    summary: str
    primary: bool = False
    access_role: str | None = None


class CalendarProvider(abc.ABC):
    """Abstract remote calendar used by the reconciler."""

    @abc.abstractmethod
    async def insert(self, access_token: str, calendar_id: str, event: WireEvent) -> str:
        """Create *event* and return its remote id."""

    @abc.abstractmethod
    async def update(
        self, access_token: str, calendar_id: str, remote_id: str, event: WireEvent
    ) -> None:
        """Replace remote event *remote_id* with *event*."""

    @abc.abstractmethod
    async def delete(self, access_token: str, calendar_id: str, remote_id: str) -> None:
        """Delete remote event *remote_id*."""

    @abc.abstractmethod
    async def list_calendars(self, access_token: str) -> list[CalendarSummary]:
        """Return the calendars the token's user can see."""


class GoogleCalendarProvider(CalendarProvider):
    """Google Calendar v3 implementation over a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
    ) -> None:
        self._http_client = http_client
        self._sleep = sleep
        self._base_url = base_url.rstrip("/")

    async def insert(self, access_token: str, calendar_id: str, event: WireEvent) -> str:
        payload = await self._request_json(
            "POST",
            f"/calendars/{_quote(calendar_id)}/events",
            access_token=access_token,
            json_body=event.to_body(),
        )
        remote_id = payload.get("id")
        if not isinstance(remote_id, str) or not remote_id:
            raise CalendarProviderError("Google Calendar API did not return an event ID")
        return remote_id

    async def update(
        self, access_token: str, calendar_id: str, remote_id: str, event: WireEvent
    ) -> None:
        await self._request_json(
            "PUT",
            f"/calendars/{_quote(calendar_id)}/events/{_quote(remote_id)}",
            access_token=access_token,
            json_body=event.to_body(),
        )

    async def delete(self, access_token: str, calendar_id: str, remote_id: str) -> None:
        await self._request_json(
            "DELETE",
            f"/calendars/{_quote(calendar_id)}/events/{_quote(remote_id)}",
            access_token=access_token,
        )

    async def list_calendars(self, access_token: str) -> list[CalendarSummary]:
        payload = await self._request_json(
            "GET",
            "/users/me/calendarList",
            access_token=access_token,
            params={"minAccessRole": "writer"},
        )
        items = payload.get("items")
        if not isinstance(items, list):
            return []
        calendars: list[CalendarSummary] = []
        for item in items:
            if not isinstance(item, dict) or not isinstance(item.get("id"), str):
                continue
            calendars.append(
                CalendarSummary(
                    id=item["id"],
                    summary=str(item.get("summary") or item["id"]),
                    primary=bool(item.get("primary", False)),
                    access_role=item.get("accessRole"),
                )
            )
        return calendars

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        access_token: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self._request_with_retry(
            method,
            f"{self._base_url}{path}",
            access_token=access_token,
            params=params,
            json_body=json_body,
        )

        if response.status_code == 404:
            raise CalendarNotFoundError(safe_google_error_message(response))
        if response.status_code < 200 or response.status_code >= 300:
            raise CalendarRequestError(
                status_code=response.status_code,
                message=safe_google_error_message(response),
            )
        if response.status_code == 204 or not response.content:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarProviderError(
                "Google Calendar API returned invalid JSON for a successful response"
            ) from exc
        if not isinstance(payload, dict):
            raise CalendarProviderError("Google Calendar API returned an unexpected JSON payload")
        return payload

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        *,
        access_token: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
    ) -> httpx.Response:
        response = await self._request_once(method, url, access_token, params, json_body)

        retry = 0
        while (
            response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < RATE_LIMIT_MAX_RETRIES
        ):
            backoff = RATE_LIMIT_BASE_BACKOFF_SECONDS * (2**retry)
            if response.status_code == 429:
                retry_after_header = response.headers.get("Retry-After")
                if retry_after_header is not None:
                    try:
                        backoff = float(retry_after_header)
                    except ValueError:
                        pass
            logger.warning(
                "Calendar API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                backoff,
                retry + 1,
                RATE_LIMIT_MAX_RETRIES,
            )
            await self._sleep(backoff)
            response = await self._request_once(method, url, access_token, params, json_body)
            retry += 1

        return response

    async def _request_once(
        self,
        method: str,
        url: str,
        access_token: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
    ) -> httpx.Response:
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise CalendarProviderError(f"Google Calendar request failed: {exc}") from exc


def _quote(value: str) -> str:
    return quote(value, safe="")

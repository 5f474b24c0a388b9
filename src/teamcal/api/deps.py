"""Service wiring and FastAPI dependencies for the teamcal API.

``init_services`` builds the whole object graph from a
:class:`~teamcal.config.SyncConfig`: one asyncpg pool, one shared
``httpx.AsyncClient`` carrying the outbound request timeout, the stores, the
provider and the orchestrator.  The resulting :class:`SyncServices` is kept
on ``app.state.services``; route handlers reach individual services through
the ``get_*`` dependencies below.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from fastapi import HTTPException, Request

from teamcal.config import SyncConfig
from teamcal.connections import CalendarConnectionStore
from teamcal.db import Database
from teamcal.directory import PostgresDirectory
from teamcal.eligibility import EligibilityResolver
from teamcal.google_oauth import GoogleOAuthClient
from teamcal.ledger import SyncEntryStore
from teamcal.orchestrator import SyncOrchestrator
from teamcal.preferences import SyncPreferenceStore
from teamcal.provider import CalendarProvider, GoogleCalendarProvider
from teamcal.reconciler import SyncReconciler

logger = logging.getLogger(__name__)


@dataclass
class SyncServices:
    """Everything a request handler may need, built once per process."""

    config: SyncConfig
    connections: CalendarConnectionStore
    preferences: SyncPreferenceStore
    ledger: SyncEntryStore
    provider: CalendarProvider
    orchestrator: SyncOrchestrator
    oauth: GoogleOAuthClient | None = None
    _closers: list[Any] = field(default_factory=list, repr=False)

    async def close(self) -> None:
        for closer in reversed(self._closers):
            try:
                await closer()
            except Exception:
                logger.warning("Error while closing %r", closer, exc_info=True)
        self._closers.clear()


async def init_services(config: SyncConfig) -> SyncServices:
    """Open the database pool and HTTP client and assemble the services."""
    database = Database.from_env(config.db_name)
    pool = await database.connect()
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(config.sync.request_timeout_s))

    oauth: GoogleOAuthClient | None = None
    if config.google.configured:
        oauth = GoogleOAuthClient(
            client_id=str(config.google.client_id),
            client_secret=str(config.google.client_secret),
            redirect_uri=str(config.google.redirect_uri),
            http_client=http_client,
        )
    else:
        logger.warning("Google OAuth app credentials are not configured; connect flow disabled")

    connections = CalendarConnectionStore(pool, config.build_cipher(), oauth)
    preferences = SyncPreferenceStore(pool)
    ledger = SyncEntryStore(pool)
    provider = GoogleCalendarProvider(http_client)
    resolver = EligibilityResolver(connections, PostgresDirectory(pool), preferences)
    reconciler = SyncReconciler(connections, provider, ledger)
    orchestrator = SyncOrchestrator(
        resolver,
        reconciler,
        ledger,
        max_concurrency=config.sync.max_concurrency,
    )

    return SyncServices(
        config=config,
        connections=connections,
        preferences=preferences,
        ledger=ledger,
        provider=provider,
        orchestrator=orchestrator,
        oauth=oauth,
        _closers=[database.close, http_client.aclose],
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_services(request: Request) -> SyncServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Sync services are not initialized")
    return services


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return get_services(request).orchestrator


def get_connections(request: Request) -> CalendarConnectionStore:
    return get_services(request).connections


def get_preferences(request: Request) -> SyncPreferenceStore:
    return get_services(request).preferences


def get_provider(request: Request) -> CalendarProvider:
    return get_services(request).provider


def get_oauth_client(request: Request) -> GoogleOAuthClient:
    oauth = get_services(request).oauth
    if oauth is None:
        raise HTTPException(
            status_code=503,
            detail=(
                "Google OAuth app credentials are not configured. Set "
                "GOOGLE_OAUTH_CLIENT_ID, GOOGLE_OAUTH_CLIENT_SECRET and "
                "GOOGLE_OAUTH_REDIRECT_URI."
            ),
        )
    return oauth


def get_dashboard_url(request: Request) -> str | None:
    return get_services(request).config.google.dashboard_url

"""Shared fixtures for the teamcal test suite."""

from __future__ import annotations

import pytest

from teamcal.token_cipher import TokenCipher
from tests.fakes import KEY_HEX


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher.from_hex(KEY_HEX)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run with no teamcal-related environment and an empty working directory."""
    for name in (
        "TEAMCAL_CONFIG",
        "TEAMCAL_TOKEN_ENCRYPTION_KEY",
        "GOOGLE_OAUTH_CLIENT_ID",
        "GOOGLE_OAUTH_CLIENT_SECRET",
        "GOOGLE_OAUTH_REDIRECT_URI",
        "OAUTH_DASHBOARD_URL",
        "TEAMCAL_MAX_CONCURRENCY",
        "TEAMCAL_REQUEST_TIMEOUT_S",
        "TEAMCAL_LOG_LEVEL",
        "TEAMCAL_LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch

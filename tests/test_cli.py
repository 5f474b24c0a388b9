"""Tests for the CLI commands."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from teamcal.cli import cli
from tests.fakes import KEY_HEX

pytestmark = pytest.mark.unit


@pytest.fixture
def runner():
    return CliRunner()


class TestVersion:
    def test_version_flag(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestExpand:
    def test_weekly_rule_with_weekdays(self, runner):
        result = runner.invoke(
            cli,
            [
                "expand",
                "--start", "2026-01-05T18:00:00+00:00",
                "--end", "2026-01-05T20:00:00+00:00",
                "--type", "weekly",
                "--weekday", "1",
                "--weekday", "3",
                "--until", "2026-01-19",
            ],
        )

        assert result.exit_code == 0, result.output
        occurrences = json.loads(result.output)
        assert [o["start"][:10] for o in occurrences] == [
            "2026-01-05",
            "2026-01-07",
            "2026-01-12",
            "2026-01-14",
            "2026-01-19",
        ]
        assert occurrences[1]["end"] == "2026-01-07T20:00:00+00:00"
        assert [o["index"] for o in occurrences] == [0, 1, 2, 3, 4]

    def test_daily_rule_without_end(self, runner):
        result = runner.invoke(
            cli,
            ["expand", "--start", "2026-01-05T18:00:00+00:00", "--type", "daily",
             "--until", "2026-01-06"],
        )

        assert result.exit_code == 0, result.output
        occurrences = json.loads(result.output)
        assert len(occurrences) == 2
        assert occurrences[0]["end"] is None

    def test_invalid_start_exits_nonzero(self, runner):
        result = runner.invoke(cli, ["expand", "--start", "next tuesday", "--type", "daily"])
        assert result.exit_code == 1

    def test_weekday_out_of_range_is_rejected(self, runner):
        result = runner.invoke(
            cli,
            ["expand", "--start", "2026-01-05T18:00:00+00:00", "--type", "weekly",
             "--weekday", "7"],
        )
        assert result.exit_code == 2


class TestCheckConfig:
    def test_prints_summary_without_secrets(self, runner, clean_env):
        clean_env.setenv("TEAMCAL_TOKEN_ENCRYPTION_KEY", KEY_HEX)
        clean_env.setenv("GOOGLE_OAUTH_CLIENT_SECRET", "very-secret")

        result = runner.invoke(cli, ["check-config"])

        assert result.exit_code == 0, result.output
        assert "Google OAuth" in result.output
        assert "MISSING" in result.output
        assert KEY_HEX not in result.output
        assert "very-secret" not in result.output

    def test_missing_key_exits_nonzero(self, runner, clean_env):
        result = runner.invoke(cli, ["check-config"])
        assert result.exit_code == 1

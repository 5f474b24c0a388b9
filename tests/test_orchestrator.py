"""Tests for orchestrator fan-out over eligible users and ledger entries."""

from __future__ import annotations

from datetime import date

import pytest

from teamcal.eligibility import EligibilityResolver
from teamcal.models import OccurrenceType, RecurrenceRule, SyncOperation, SyncStatus
from teamcal.orchestrator import SyncOrchestrator
from teamcal.provider import CalendarRequestError
from teamcal.reconciler import ReconcileOutcome, SyncReconciler
from teamcal.recurrence import build_series
from tests.fakes import (
    FakeConnections,
    FakeDirectory,
    FakeLedger,
    FakePreferences,
    FakeProvider,
    make_entry,
    make_event,
)

pytestmark = pytest.mark.unit


class _Harness:
    def __init__(self, users=("u1", "u2", "u3"), *, entries=(), max_concurrency=8, delay=0.0):
        self.connections = FakeConnections(users)
        self.directory = FakeDirectory({user_id: "member" for user_id in users})
        self.preferences = FakePreferences()
        self.provider = FakeProvider(delay=delay)
        self.ledger = FakeLedger(list(entries))
        resolver = EligibilityResolver(self.connections, self.directory, self.preferences)
        self.reconciler = SyncReconciler(self.connections, self.provider, self.ledger)
        self.orchestrator = SyncOrchestrator(
            resolver, self.reconciler, self.ledger, max_concurrency=max_concurrency
        )


class TestCreateAndUpdate:
    async def test_create_reaches_every_eligible_user(self):
        harness = _Harness()

        report = await harness.orchestrator.on_event_mutated(make_event(), SyncOperation.CREATE)

        assert report.error is None
        assert report.users == 3
        assert report.counts() == {"created": 3}
        assert sorted(call[1] for call in harness.provider.calls) == [
            "token-u1",
            "token-u2",
            "token-u3",
        ]

    async def test_update_updates_existing_copies(self):
        harness = _Harness(entries=[make_entry("u1"), make_entry("u2")])

        report = await harness.orchestrator.on_event_mutated(make_event(), SyncOperation.UPDATE)

        assert report.outcome_for("u1") == ReconcileOutcome.UPDATED
        assert report.outcome_for("u2") == ReconcileOutcome.UPDATED
        assert report.outcome_for("u3") == ReconcileOutcome.CREATED

    async def test_operation_accepts_plain_string(self):
        harness = _Harness(users=("u1",))
        report = await harness.orchestrator.on_event_mutated(make_event(), "create")
        assert report.operation == SyncOperation.CREATE

    async def test_no_eligible_users(self):
        harness = _Harness(users=())
        report = await harness.orchestrator.on_event_mutated(make_event(), SyncOperation.CREATE)
        assert report.results == []
        assert report.error is None

    async def test_unmappable_event_yields_empty_report(self):
        harness = _Harness()
        report = await harness.orchestrator.on_event_mutated(
            make_event(title="  "), SyncOperation.CREATE
        )
        assert report.results == []
        assert "no title" in report.error
        assert harness.provider.calls == []

    async def test_fan_out_is_bounded(self):
        harness = _Harness(
            users=tuple(f"u{i}" for i in range(6)), max_concurrency=2, delay=0.01
        )
        report = await harness.orchestrator.on_event_mutated(make_event(), SyncOperation.CREATE)
        assert report.counts() == {"created": 6}
        assert harness.provider.max_in_flight == 2

    async def test_unexpected_error_is_isolated_to_one_user(self):
        harness = _Harness()
        original_get = harness.ledger.get

        async def _flaky_get(event_id, user_id):
            if user_id == "u2":
                raise RuntimeError("connection reset")
            return await original_get(event_id, user_id)

        harness.ledger.get = _flaky_get

        report = await harness.orchestrator.on_event_mutated(make_event(), SyncOperation.CREATE)

        assert report.outcome_for("u1") == ReconcileOutcome.CREATED
        assert report.outcome_for("u2") == ReconcileOutcome.FAILED
        assert report.outcome_for("u3") == ReconcileOutcome.CREATED
        failed = next(result for result in report.results if result.user_id == "u2")
        assert "connection reset" in failed.error

    async def test_eligibility_failure_means_no_sync(self):
        harness = _Harness()
        harness.directory.fail = True
        report = await harness.orchestrator.on_event_mutated(make_event(), SyncOperation.CREATE)
        assert report.results == []
        assert harness.provider.calls == []


class TestDelete:
    async def test_second_of_three_failing_does_not_stop_the_third(self):
        harness = _Harness(entries=[make_entry("u1"), make_entry("u2"), make_entry("u3")])
        harness.provider.failures[("delete", "g-u2")] = CalendarRequestError(
            status_code=500, message="Backend Error"
        )

        report = await harness.orchestrator.on_event_mutated(make_event(), SyncOperation.DELETE)

        assert report.outcome_for("u1") == ReconcileOutcome.DELETED
        assert report.outcome_for("u2") == ReconcileOutcome.FAILED
        assert report.outcome_for("u3") == ReconcileOutcome.DELETED
        second = harness.ledger.entries[("evt-1", "u2")]
        assert second.sync_status == SyncStatus.FAILED
        assert "Backend Error" in second.last_error
        assert harness.ledger.entries[("evt-1", "u3")].sync_status == SyncStatus.DELETED

    async def test_delete_ignores_current_eligibility(self):
        harness = _Harness(entries=[make_entry("u1")])
        harness.directory.roles.clear()

        report = await harness.orchestrator.on_event_mutated(make_event(), SyncOperation.DELETE)

        assert report.outcome_for("u1") == ReconcileOutcome.DELETED

    async def test_delete_skips_already_deleted_entries(self):
        harness = _Harness(
            entries=[make_entry("u1"), make_entry("u2", sync_status=SyncStatus.DELETED)]
        )
        report = await harness.orchestrator.on_event_mutated(make_event(), SyncOperation.DELETE)
        assert [result.user_id for result in report.results] == ["u1"]


class TestSeries:
    async def test_each_instance_is_created(self):
        harness = _Harness(users=("u1", "u2"))
        rule = RecurrenceRule(
            occurrence_type=OccurrenceType.DAILY, recurrence_end_date=date(2026, 3, 4)
        )
        instances = build_series(make_event(), rule)

        reports = await harness.orchestrator.on_series_created(instances)

        assert len(reports) == 3
        assert [report.event_id for report in reports] == [instance.id for instance in instances]
        assert all(report.counts() == {"created": 2} for report in reports)
        assert harness.provider.count("insert") == 6


class TestConstruction:
    def test_rejects_non_positive_concurrency(self):
        harness = _Harness()
        with pytest.raises(ValueError):
            SyncOrchestrator(None, harness.reconciler, harness.ledger, max_concurrency=0)

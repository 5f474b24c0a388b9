"""Tests for eligibility resolution."""

from __future__ import annotations

import pytest

from teamcal.eligibility import EligibilityResolver, is_user_eligible
from teamcal.models import ConnectionStatus, EventType, SyncPreference
from tests.fakes import FakeConnections, FakeDirectory, FakePreferences, make_event

pytestmark = pytest.mark.unit


def _resolver(
    connected=("admin1", "member1", "alum1", "outsider"),
    roles=None,
    preferences=(),
) -> tuple[EligibilityResolver, FakeConnections, FakeDirectory, FakePreferences]:
    connections = FakeConnections(connected)
    directory = FakeDirectory(
        roles if roles is not None else {"admin1": "admin", "member1": "member", "alum1": "alumni"}
    )
    prefs = FakePreferences(list(preferences))
    return EligibilityResolver(connections, directory, prefs), connections, directory, prefs


class TestIsUserEligible:
    def test_requires_connection(self):
        assert not is_user_eligible(
            make_event(), "u1", connected=False, role="member", preference=None
        )

    def test_requires_role(self):
        assert not is_user_eligible(make_event(), "u1", connected=True, role=None, preference=None)

    def test_target_list_overrides_audience(self):
        event = make_event(audience="alumni", target_user_ids=["u1"])
        assert is_user_eligible(event, "u1", connected=True, role="member", preference=None)

    def test_target_list_without_user_excludes_even_with_matching_role(self):
        event = make_event(audience="members", target_user_ids=["someone-else"])
        assert not is_user_eligible(event, "u1", connected=True, role="member", preference=None)

    @pytest.mark.parametrize(
        ("audience", "role", "expected"),
        [
            ("members", "member", True),
            ("members", "admin", True),
            ("members", "alumni", False),
            ("alumni", "alumni", True),
            ("alumni", "member", False),
            ("both", "alumni", True),
            ("all", "member", True),
            (None, "alumni", True),
            ("mystery", "member", True),
            ("MEMBERS", "alumni", False),
        ],
    )
    def test_audience(self, audience, role, expected):
        event = make_event(audience=audience)
        assert is_user_eligible(event, "u1", connected=True, role=role, preference=None) is expected

    @pytest.mark.parametrize("event_type", [t.value for t in EventType] + [None, "unknown"])
    def test_no_preference_row_includes_every_category(self, event_type):
        event = make_event(event_type=event_type)
        assert is_user_eligible(event, "u1", connected=True, role="member", preference=None)

    def test_disabled_category_excludes(self):
        pref = SyncPreference(user_id="u1", organization_id="org-1", sync_meeting=False)
        event = make_event(event_type="meeting")
        assert not is_user_eligible(event, "u1", connected=True, role="member", preference=pref)


class TestEligibilityResolver:
    async def test_everyone_with_a_role(self):
        resolver, *_ = _resolver()
        assert await resolver.resolve(make_event(audience="both")) == {
            "admin1",
            "member1",
            "alum1",
        }

    async def test_members_audience(self):
        resolver, *_ = _resolver()
        assert await resolver.resolve(make_event(audience="members")) == {"admin1", "member1"}

    async def test_alumni_audience(self):
        resolver, *_ = _resolver()
        assert await resolver.resolve(make_event(audience="alumni")) == {"alum1"}

    async def test_target_user_ids(self):
        resolver, *_ = _resolver()
        event = make_event(audience="members", target_user_ids=["alum1", "outsider", "ghost"])
        # outsider has no role, ghost has no connection.
        assert await resolver.resolve(event) == {"alum1"}

    async def test_disconnected_user_excluded(self):
        resolver, connections, *_ = _resolver()
        connections.connections["member1"].status = ConnectionStatus.DISCONNECTED
        assert "member1" not in await resolver.resolve(make_event())

    async def test_preference_excludes_category(self):
        resolver, *_ = _resolver(
            preferences=[
                SyncPreference(user_id="member1", organization_id="org-1", sync_game=False)
            ]
        )
        assert await resolver.resolve(make_event(event_type="game")) == {"admin1", "alum1"}
        assert "member1" in await resolver.resolve(make_event(event_type="social"))

    async def test_preferences_are_per_organization(self):
        resolver, *_ = _resolver(
            preferences=[
                SyncPreference(user_id="member1", organization_id="org-2", sync_game=False)
            ]
        )
        assert "member1" in await resolver.resolve(make_event(event_type="game"))

    async def test_organization_override(self):
        resolver, _, directory, _ = _resolver()
        seen: list[str] = []
        original = directory.get_roles

        async def _spy(organization_id, user_ids):
            seen.append(organization_id)
            return await original(organization_id, user_ids)

        directory.get_roles = _spy
        await resolver.resolve(make_event(), "org-9")
        assert seen == ["org-9"]

    async def test_connection_listing_failure_fails_closed(self):
        resolver, connections, *_ = _resolver()
        connections.fail_listing = True
        assert await resolver.resolve(make_event()) == set()

    async def test_directory_failure_fails_closed(self):
        resolver, _, directory, _ = _resolver()
        directory.fail = True
        assert await resolver.resolve(make_event()) == set()

    async def test_batch_role_failure_excludes_only_failing_users(self):
        resolver, _, directory, _ = _resolver()
        directory.fail_batch = True
        directory.failing_users = {"member1"}

        assert await resolver.resolve(make_event(audience="both")) == {"admin1", "alum1"}

    async def test_batch_role_failure_still_applies_audience(self):
        resolver, _, directory, _ = _resolver()
        directory.fail_batch = True

        assert await resolver.resolve(make_event(audience="members")) == {"admin1", "member1"}

    async def test_preference_failure_fails_closed(self):
        resolver, *_, prefs = _resolver()
        prefs.fail = True
        assert await resolver.resolve(make_event()) == set()

    async def test_nobody_connected(self):
        resolver, *_ = _resolver(connected=())
        assert await resolver.resolve(make_event()) == set()

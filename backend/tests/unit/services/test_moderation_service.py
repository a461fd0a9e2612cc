from datetime import datetime, timedelta, timezone

import pytest

from qachat.core.enums import AuditAction, AuditTargetType
from qachat.core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from qachat.core.timezone_utils import ensure_utc
from qachat.services.moderation_service import ModerationService

NOW = datetime(2026, 5, 4, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    current = {"now": NOW}

    def _now():
        return current["now"]

    _now.state = current
    return _now


@pytest.fixture
def service(db, recorder, clock):
    return ModerationService(db, publish_all=recorder.publish_all, clock=clock)


class TestMute:
    def test_timed_mute(self, service, admin, alice):
        user = service.mute_user(admin, alice.id, duration_minutes=30, reason="  spamming  ")

        assert user.is_muted is True
        assert ensure_utc(user.muted_until) == NOW + timedelta(minutes=30)
        assert user.mute_reason == "spamming"
        assert user.muted_by == admin.id

    def test_indefinite_mute(self, service, admin, alice):
        user = service.mute_user(admin, alice.id)
        assert user.is_muted is True
        assert user.muted_until is None

    def test_admin_cannot_be_muted(self, service, admin, make_user):
        from qachat.core.enums import RoleName

        other_admin = make_user("Second Admin", RoleName.ADMIN)
        with pytest.raises(BusinessRuleException):
            service.mute_user(admin, other_admin.id)

    def test_non_admin_actor_forbidden(self, service, alice, bob):
        with pytest.raises(ForbiddenException):
            service.mute_user(alice, bob.id)

    def test_past_end_rejected(self, service, admin, alice):
        with pytest.raises(ValidationException):
            service.mute_user(admin, alice.id, until=NOW - timedelta(seconds=1))

    def test_until_and_duration_are_exclusive(self, service, admin, alice):
        with pytest.raises(ValidationException):
            service.mute_user(admin, alice.id, until=NOW + timedelta(hours=1), duration_minutes=5)

    def test_unknown_user(self, service, admin):
        with pytest.raises(NotFoundException):
            service.mute_user(admin, "01HZZZZZZZZZZZZZZZZZZZZZZZ")


class TestUnmuteAndSweep:
    def test_unmute_clears_every_field(self, service, admin, alice):
        service.mute_user(admin, alice.id, duration_minutes=5, reason="noise")
        user = service.unmute_user(admin, alice.id)

        assert (user.is_muted, user.muted_until, user.mute_reason, user.muted_by) == (
            False,
            None,
            None,
            None,
        )

    def test_sweep_clears_only_elapsed_mutes(self, service, clock, admin, alice, bob, carol):
        service.mute_user(admin, alice.id, duration_minutes=5)
        service.mute_user(admin, bob.id, duration_minutes=60)
        service.mute_user(admin, carol.id)

        clock.state["now"] = NOW + timedelta(minutes=10)

        assert service.expire_mutes() == [alice.id]
        assert bob.is_muted is True
        assert carol.is_muted is True

    @pytest.mark.asyncio
    async def test_events_announce_changes(self, service, recorder, admin, alice):
        await service.mute(admin, alice.id, duration_minutes=5, reason="flood")
        await service.unmute(admin, alice.id)

        assert recorder.global_types() == ["user_muted", "user_unmuted"]
        muted = recorder.global_events[0]["payload"]
        assert muted["user_id"] == alice.id
        assert muted["reason"] == "flood"
        assert muted["muted_until"].startswith("2026-05-04T09:35")


class TestAuditLog:
    def test_each_action_is_recorded_newest_first(self, service, clock, admin, alice):
        service.mute_user(admin, alice.id, duration_minutes=5, reason="flood")
        service.unmute_user(admin, alice.id)
        service.mute_user(admin, alice.id, duration_minutes=5)
        clock.state["now"] = NOW + timedelta(minutes=10)
        service.expire_mutes()

        entries, total = service.audit_log(admin)

        assert total == 4
        assert [e.action for e in entries] == ["user_unmuted", "user_muted", "user_unmuted", "user_muted"]
        swept, _, _, first = entries
        assert (swept.actor_id, swept.actor_name) == (None, "system")
        assert swept.reason == "Mute window elapsed"
        assert (first.actor_id, first.target_id, first.target_name) == (admin.id, alice.id, "Alice")
        assert first.target_type == "user"
        assert first.reason == "flood"

    def test_default_reason_describes_the_window(self, service, admin, alice, bob):
        service.mute_user(admin, alice.id)
        service.mute_user(admin, bob.id, duration_minutes=15)

        entries, _ = service.audit_log(admin, target_id=bob.id)
        assert entries[0].reason.startswith("Muted until 2026-05-04T09:45")
        entries, _ = service.audit_log(admin, target_id=alice.id)
        assert entries[0].reason == "Muted indefinitely"

    def test_refused_action_leaves_no_entry(self, service, admin, make_user):
        from qachat.core.enums import RoleName

        other_admin = make_user("Second Admin", RoleName.ADMIN)
        with pytest.raises(BusinessRuleException):
            service.mute_user(admin, other_admin.id)

        assert service.audit_log(admin) == ([], 0)

    def test_filters_and_paging(self, service, clock, admin, alice, bob):
        service.mute_user(admin, alice.id)
        clock.state["now"] = NOW + timedelta(hours=1)
        service.mute_user(admin, bob.id)
        service.unmute_user(admin, bob.id)

        muted, total = service.audit_log(admin, action=AuditAction.USER_MUTED)
        assert total == 2
        assert [e.target_id for e in muted] == [bob.id, alice.id]

        recent, total = service.audit_log(admin, created_from=NOW + timedelta(minutes=30))
        assert total == 2
        assert {e.target_id for e in recent} == {bob.id}

        page, total = service.audit_log(admin, target_type=AuditTargetType.USER, limit=1, offset=1)
        assert total == 3
        assert len(page) == 1

    def test_reading_requires_admin(self, service, alice):
        with pytest.raises(ForbiddenException):
            service.audit_log(alice)

    def test_inverted_window_rejected(self, service, admin):
        with pytest.raises(ValidationException):
            service.audit_log(admin, created_from=NOW, created_to=NOW - timedelta(days=1))

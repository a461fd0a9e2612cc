"""Accept path of the message router: validation, policy, ordering, fan-out."""

from datetime import timedelta

import pytest

from qachat.core.conversation_lock import KeyedLock
from qachat.core.enums import RejectionReason, RoleName
from qachat.core.exceptions import ForbiddenException, MessageRejected, NotFoundException
from qachat.core.timezone_utils import utc_now
from qachat.models.conversation import direct_conversation_key
from qachat.models.message import Message
from qachat.models.user import User
from qachat.services.channel_service import ChannelService
from qachat.services.message_router import MessageRouter


@pytest.fixture
def router(db, recorder) -> MessageRouter:
    return MessageRouter(db, publish=recorder.publish, publish_all=recorder.publish_all)


@pytest.fixture
def channel(db, admin, alice, bob):
    return ChannelService(db).create_channel(
        admin, "Release 4.2 regression", [alice.id, bob.id], channel_id="exec-42"
    )


def _rejection(excinfo) -> RejectionReason:
    return excinfo.value.reason


class TestDirectSends:
    def test_first_send_creates_conversation(self, router, alice, bob):
        accepted = router.accept_direct(alice.id, bob.id, "  login page 500s on submit  ")

        assert accepted.message.body == "login page 500s on submit"
        assert accepted.message.conversation_key == direct_conversation_key(alice.id, bob.id)
        assert sorted(accepted.participant_ids) == sorted([alice.id, bob.id])
        assert accepted.event["type"] == "message_received"

    def test_key_is_independent_of_initiator(self, router, alice, bob):
        first = router.accept_direct(alice.id, bob.id, "ping")
        second = router.accept_direct(bob.id, alice.id, "pong")

        assert first.message.conversation_key == second.message.conversation_key

    def test_ids_increase_within_conversation(self, router, alice, bob):
        ids = [router.accept_direct(alice.id, bob.id, f"step {n}").message.id for n in range(5)]

        assert ids == sorted(ids)
        assert len(set(ids)) == 5

    def test_client_id_is_echoed_in_event(self, router, alice, bob):
        accepted = router.accept_direct(alice.id, bob.id, "hi", client_id="c-1")

        assert accepted.event["payload"]["client_id"] == "c-1"

    def test_self_conversation_rejected(self, router, alice):
        with pytest.raises(MessageRejected) as excinfo:
            router.accept_direct(alice.id, alice.id, "note to self")
        assert _rejection(excinfo) is RejectionReason.SELF_CONVERSATION

    def test_unknown_recipient_rejected(self, router, alice):
        with pytest.raises(MessageRejected) as excinfo:
            router.accept_direct(alice.id, "01HZZZZZZZZZZZZZZZZZZZZZZZ", "anyone there?")
        assert _rejection(excinfo) is RejectionReason.UNKNOWN_RECIPIENT

    def test_inactive_recipient_rejected(self, router, alice, make_user):
        gone = make_user("Former Tester", is_active=False)
        with pytest.raises(MessageRejected) as excinfo:
            router.accept_direct(alice.id, gone.id, "hello?")
        assert _rejection(excinfo) is RejectionReason.UNKNOWN_RECIPIENT

    def test_third_party_cannot_write_into_pair(self, router, alice, bob, carol):
        router.accept_direct(alice.id, bob.id, "private")
        with pytest.raises(MessageRejected) as excinfo:
            router.accept(direct_conversation_key(alice.id, bob.id), carol.id, "intrude")
        assert _rejection(excinfo) is RejectionReason.NOT_A_MEMBER


class TestBodyValidation:
    @pytest.mark.parametrize("body", ["", "   ", "\n\t"])
    def test_empty_body_rejected(self, router, alice, bob, body):
        with pytest.raises(MessageRejected) as excinfo:
            router.accept_direct(alice.id, bob.id, body)
        assert _rejection(excinfo) is RejectionReason.EMPTY_BODY

    def test_body_length_bound(self, db, recorder, alice, bob):
        router = MessageRouter(db, publish=recorder.publish, max_length=10)

        router.accept_direct(alice.id, bob.id, "0123456789")
        with pytest.raises(MessageRejected) as excinfo:
            router.accept_direct(alice.id, bob.id, "0123456789X")
        assert _rejection(excinfo) is RejectionReason.BODY_TOO_LONG
        assert excinfo.value.details["max_length"] == 10

    def test_rejection_does_not_create_conversation(self, router, db, alice, bob):
        with pytest.raises(MessageRejected):
            router.accept_direct(alice.id, bob.id, " ")

        key = direct_conversation_key(alice.id, bob.id)
        assert router.conversation_repository.get_by_key(key) is None


class TestChannelSends:
    def test_member_send_reaches_all_members(self, router, channel, admin, alice, bob):
        accepted = router.accept(channel.key, alice.id, "Smoke suite green")

        assert set(accepted.participant_ids) == {admin.id, alice.id, bob.id}

    def test_non_member_rejected(self, router, channel, carol):
        with pytest.raises(MessageRejected) as excinfo:
            router.accept(channel.key, carol.id, "can I join?")
        assert _rejection(excinfo) is RejectionReason.NOT_A_MEMBER

    def test_unknown_channel_rejected(self, router, alice):
        with pytest.raises(MessageRejected) as excinfo:
            router.accept("ch:does-not-exist", alice.id, "hello")
        assert _rejection(excinfo) is RejectionReason.UNKNOWN_CONVERSATION

    def test_malformed_key_rejected(self, router, alice):
        with pytest.raises(MessageRejected) as excinfo:
            router.accept("not-a-key", alice.id, "hello")
        assert _rejection(excinfo) is RejectionReason.UNKNOWN_CONVERSATION

    @pytest.mark.parametrize("switch", ["is_locked", "is_disabled"])
    def test_locked_or_disabled_channel_rejected(self, router, db, channel, admin, alice, switch):
        ChannelService(db).update_switches(admin, "exec-42", **{switch: True})

        with pytest.raises(MessageRejected) as excinfo:
            router.accept(channel.key, alice.id, "still testing")
        assert _rejection(excinfo) is RejectionReason.CHANNEL_LOCKED


class TestMuteGate:
    def test_indefinite_mute_blocks(self, router, db, alice, bob):
        alice.is_muted = True
        db.commit()

        with pytest.raises(MessageRejected) as excinfo:
            router.accept_direct(alice.id, bob.id, "let me speak")
        assert _rejection(excinfo) is RejectionReason.MUTED
        assert excinfo.value.details["muted_until"] is None

    def test_active_timed_mute_blocks(self, router, db, alice, bob):
        alice.is_muted = True
        alice.muted_until = utc_now() + timedelta(minutes=10)
        db.commit()

        with pytest.raises(MessageRejected) as excinfo:
            router.accept_direct(alice.id, bob.id, "let me speak")
        assert _rejection(excinfo) is RejectionReason.MUTED

    def test_elapsed_mute_is_cleared_on_send(self, router, db, alice, bob):
        alice.is_muted = True
        alice.muted_until = utc_now() - timedelta(seconds=1)
        db.commit()

        accepted = router.accept_direct(alice.id, bob.id, "back again")

        assert accepted.unmuted_sender is True
        db.refresh(alice)
        assert alice.is_muted is False
        assert alice.muted_until is None

    @pytest.mark.asyncio
    async def test_elapsed_mute_announces_unmute(self, router, recorder, db, alice, bob):
        alice.is_muted = True
        alice.muted_until = utc_now() - timedelta(minutes=1)
        db.commit()

        await router.send_direct(alice.id, bob.id, "back again")

        assert recorder.global_types() == ["user_unmuted"]
        assert recorder.global_events[0]["payload"]["user_id"] == alice.id

    def test_admins_are_subject_to_the_gate_too(self, router, db, make_user, bob):
        lead = make_user("Lead", RoleName.ADMIN, is_muted=True)
        with pytest.raises(MessageRejected):
            router.accept_direct(lead.id, bob.id, "hello")


class TestReplies:
    def test_reply_within_conversation(self, router, alice, bob):
        parent = router.accept_direct(alice.id, bob.id, "Found a crash").message
        reply = router.accept_direct(bob.id, alice.id, "Repro steps?", reply_to_id=parent.id)

        assert reply.message.reply_to_id == parent.id

    def test_reply_to_other_conversation_rejected(self, router, alice, bob, carol):
        elsewhere = router.accept_direct(alice.id, carol.id, "side thread").message
        with pytest.raises(MessageRejected) as excinfo:
            router.accept_direct(alice.id, bob.id, "re:", reply_to_id=elsewhere.id)
        assert _rejection(excinfo) is RejectionReason.INVALID_REPLY

    def test_reply_to_missing_message_rejected(self, router, alice, bob):
        with pytest.raises(MessageRejected) as excinfo:
            router.accept_direct(alice.id, bob.id, "re:", reply_to_id=999_999)
        assert _rejection(excinfo) is RejectionReason.INVALID_REPLY


class TestFanOut:
    @pytest.mark.asyncio
    async def test_publish_happens_after_commit(self, db, session_factory, alice, bob):
        seen = []

        async def publish(user_ids, event):
            check = session_factory()
            try:
                message_id = event["payload"]["message"]["id"]
                seen.append(check.get(Message, message_id) is not None)
            finally:
                check.close()

        router = MessageRouter(db, publish=publish)
        await router.send_direct(alice.id, bob.id, "committed first")

        assert seen == [True]

    @pytest.mark.asyncio
    async def test_sender_receives_own_message(self, router, recorder, alice, bob):
        await router.send_direct(alice.id, bob.id, "for both tabs", client_id="tab-1")

        recipients, event = recorder.to_users[0]
        assert alice.id in recipients and bob.id in recipients
        assert event["payload"]["client_id"] == "tab-1"

    @pytest.mark.asyncio
    async def test_persistence_failure_publishes_nothing(self, router, recorder, alice, bob, monkeypatch):
        def _boom(**_kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(router.message_repository, "create_message", _boom)

        with pytest.raises(RuntimeError):
            await router.send_direct(alice.id, bob.id, "lost")
        assert recorder.to_users == []

    @pytest.mark.asyncio
    async def test_rejection_publishes_nothing(self, router, recorder, alice):
        with pytest.raises(MessageRejected):
            await router.send_direct(alice.id, alice.id, "self")
        assert recorder.to_users == []


class TestReplayedSends:
    def test_resent_client_id_is_stored_once(self, router, alice, bob):
        first = router.accept_direct(alice.id, bob.id, "hello", client_id="tmp-1")
        again = router.accept_direct(alice.id, bob.id, "hello", client_id="tmp-1")

        assert again.message.id == first.message.id
        assert again.replayed is True
        page = router.history(direct_conversation_key(alice.id, bob.id), alice.id)
        assert [m.id for m in page] == [first.message.id]
        assert page[0].client_id == "tmp-1"

    def test_client_ids_are_scoped_per_sender(self, router, alice, bob):
        mine = router.accept_direct(alice.id, bob.id, "from alice", client_id="tmp-1")
        theirs = router.accept_direct(bob.id, alice.id, "from bob", client_id="tmp-1")

        assert theirs.message.id != mine.message.id
        assert theirs.replayed is False

    def test_sends_without_client_id_are_never_merged(self, router, alice, bob):
        first = router.accept_direct(alice.id, bob.id, "same text")
        second = router.accept_direct(alice.id, bob.id, "same text")

        assert first.message.id != second.message.id

    def test_client_id_reused_in_other_conversation_rejected(self, router, alice, bob, carol):
        router.accept_direct(alice.id, bob.id, "to bob", client_id="tmp-1")

        with pytest.raises(MessageRejected) as excinfo:
            router.accept_direct(alice.id, carol.id, "to carol", client_id="tmp-1")
        assert _rejection(excinfo) is RejectionReason.CLIENT_ID_REUSED

    @pytest.mark.asyncio
    async def test_replay_is_not_published_again(self, router, recorder, alice, bob):
        await router.send_direct(alice.id, bob.id, "once", client_id="tmp-1")
        message = await router.send_direct(alice.id, bob.id, "once", client_id="tmp-1")

        assert recorder.types() == ["message_received"]
        assert recorder.to_users[0][1]["payload"]["message"]["id"] == message.id


class TestHistory:
    def test_pages_are_ascending(self, router, alice, bob):
        ids = [router.accept_direct(alice.id, bob.id, f"m{n}").message.id for n in range(6)]
        key = direct_conversation_key(alice.id, bob.id)

        latest = router.history(key, alice.id, limit=3)
        assert [m.id for m in latest] == ids[3:]

        older = router.history(key, alice.id, limit=3, before=ids[3])
        assert [m.id for m in older] == ids[:3]

        forward = router.history(key, bob.id, limit=2, after=ids[1])
        assert [m.id for m in forward] == ids[2:4]

    def test_untouched_pair_is_empty(self, router, alice, bob):
        assert router.history(direct_conversation_key(alice.id, bob.id), alice.id) == []

    def test_outsider_forbidden(self, router, alice, bob, carol):
        router.accept_direct(alice.id, bob.id, "private")
        with pytest.raises(ForbiddenException):
            router.history(direct_conversation_key(alice.id, bob.id), carol.id)

    def test_unknown_channel_not_found(self, router, alice):
        with pytest.raises(NotFoundException):
            router.history("ch:nowhere", alice.id)

    def test_limit_is_clamped(self, router, alice, bob, monkeypatch):
        from qachat.core.config import settings

        monkeypatch.setattr(settings, "history_max_limit", 2)
        for n in range(4):
            router.accept_direct(alice.id, bob.id, f"m{n}")

        page = router.history(direct_conversation_key(alice.id, bob.id), alice.id, limit=50)
        assert len(page) == 2


class _RecordingLocks(KeyedLock):
    def __init__(self):
        super().__init__()
        self.keys = []

    def hold(self, key):
        self.keys.append(key)
        return super().hold(key)


def test_injected_lock_table_is_used_even_when_empty(db, recorder, alice, bob):
    locks = _RecordingLocks()
    assert len(locks) == 0
    router = MessageRouter(db, publish=recorder.publish, locks=locks)

    router.accept_direct(alice.id, bob.id, "ordered")

    assert locks.keys == [direct_conversation_key(alice.id, bob.id)]


def test_deactivated_sender_cannot_send(router, db, alice, bob):
    db.query(User).filter(User.id == alice.id).update({"is_active": False})
    db.commit()

    with pytest.raises(MessageRejected) as excinfo:
        router.accept_direct(alice.id, bob.id, "still here?")
    assert _rejection(excinfo) is RejectionReason.NOT_A_MEMBER

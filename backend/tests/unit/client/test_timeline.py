"""Timeline merge: dedup, ordering, optimistic replacement, rebuild."""

import pytest

from qachat.client.timeline import (
    ConversationTimeline,
    PendingStatus,
    TimelineCorrupted,
    TimelineState,
)

KEY = "dm:01A:01B"


@pytest.fixture
def timeline():
    return ConversationTimeline(KEY)


class TestMerge:
    def test_out_of_order_arrival_renders_ascending(self, timeline, message_factory):
        for message_id in (5, 2, 9, 3):
            timeline.apply_message(message_factory(message_id))

        assert timeline.message_ids() == [2, 3, 5, 9]
        assert timeline.highest_id == 9

    def test_duplicates_are_ignored(self, timeline, message_factory):
        assert timeline.apply_message(message_factory(4)) is True
        assert timeline.apply_message(message_factory(4)) is False
        assert timeline.merge([message_factory(4), message_factory(6)]) == 1
        assert timeline.message_ids() == [4, 6]

    def test_history_and_push_overlap(self, timeline, message_factory):
        timeline.apply_message(message_factory(12))
        added = timeline.merge(message_factory(i) for i in range(10, 14))

        assert added == 3
        assert timeline.message_ids() == [10, 11, 12, 13]

    def test_other_conversation_is_ignored(self, timeline, message_factory):
        assert timeline.apply_message(message_factory(1, conversation_key="ch:qa")) is False
        assert timeline.message_ids() == []


class TestOptimisticSends:
    def test_ack_replaces_pending_entry(self, timeline, message_factory):
        timeline.add_pending("c-1", "01A", "on my way")
        assert [p.client_id for p in timeline.pending] == ["c-1"]

        timeline.apply_message(message_factory(20, sender_id="01A", body="on my way"), client_id="c-1")

        assert timeline.pending == []
        assert timeline.message_ids() == [20]

    def test_duplicate_echo_still_clears_pending(self, timeline, message_factory):
        timeline.apply_message(message_factory(20), client_id=None)
        timeline.add_pending("c-1", "01A", "x")
        timeline.apply_message(message_factory(20), client_id="c-1")
        assert timeline.pending == []

    def test_history_page_settles_pending_by_stored_client_id(self, timeline, message_factory):
        timeline.add_pending("c-1", "01A", "sent before the drop")

        timeline.merge([message_factory(21, sender_id="01A", client_id="c-1")])

        assert timeline.pending == []
        assert timeline.message_ids() == [21]

    def test_failed_and_rejected_entries_stay_visible(self, timeline):
        timeline.add_pending("c-1", "01A", "a")
        timeline.add_pending("c-2", "01A", "b")
        timeline.mark_pending("c-1", PendingStatus.FAILED, "timeout")
        timeline.mark_pending("c-2", PendingStatus.REJECTED, "muted")

        statuses = {p.client_id: (p.status, p.error) for p in timeline.pending}
        assert statuses == {
            "c-1": (PendingStatus.FAILED, "timeout"),
            "c-2": (PendingStatus.REJECTED, "muted"),
        }


class TestReactions:
    def test_optimistic_toggle_then_authoritative(self, timeline, message_factory):
        timeline.apply_message(message_factory(3))

        assert timeline.toggle_reaction_optimistic(3, "👍", "01A") is True
        assert [g.user_ids for g in timeline.reactions_for(3, "01A")] == [["01A"]]

        timeline.apply_reactions(
            3, [{"emoji": "👍", "count": 2, "user_ids": ["01A", "01B"]}], emoji="👍"
        )
        groups = timeline.reactions_for(3, "01A")
        assert [(g.emoji, g.count) for g in groups] == [("👍", 2)]

    def test_authoritative_state_wins_over_overlay(self, timeline, message_factory):
        timeline.apply_message(message_factory(3))
        timeline.toggle_reaction_optimistic(3, "👍", "01A")

        # Server reports the set without us
        timeline.apply_reactions(3, [], emoji="👍")

        assert timeline.reactions_for(3, "01A") == []

    def test_toggle_off_existing_reaction(self, timeline, message_factory):
        timeline.apply_message(
            message_factory(3, reactions=[{"emoji": "🐛", "count": 1, "user_ids": ["01A"]}])
        )
        assert timeline.toggle_reaction_optimistic(3, "🐛", "01A") is False
        assert timeline.reactions_for(3, "01A") == []


class TestStateMachine:
    def test_transitions(self, timeline, message_factory):
        assert timeline.state is TimelineState.LOADING
        timeline.go_live()
        timeline.mark_reconnecting()
        assert timeline.state is TimelineState.RECONNECTING
        timeline.go_live()
        assert timeline.state is TimelineState.LIVE

    def test_reconnecting_only_from_live(self, timeline):
        timeline.mark_reconnecting()
        assert timeline.state is TimelineState.LOADING

    def test_rebuild_discards_corrupted_state(self, timeline, message_factory):
        timeline.merge(message_factory(i) for i in (1, 2, 3))
        timeline.add_pending("c-9", "01A", "keep me")
        timeline._ids.append(2)  # corrupt the index directly

        with pytest.raises(TimelineCorrupted):
            timeline.check_consistency()

        timeline.rebuild(message_factory(i) for i in (2, 3, 4))

        assert timeline.is_consistent()
        assert timeline.message_ids() == [2, 3, 4]
        assert timeline.state is TimelineState.LIVE
        assert [p.client_id for p in timeline.pending] == ["c-9"]

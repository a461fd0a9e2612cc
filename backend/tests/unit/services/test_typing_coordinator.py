import pytest

from qachat.services.typing_coordinator import TypingCoordinator


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(recorder, clock):
    return TypingCoordinator(publish=recorder.publish, clock=clock, ttl_seconds=3.0)


class TestTypingExpiry:
    def test_indicator_expires_without_stop(self, coordinator, clock):
        coordinator.record_start("dm:a:b", "a")
        assert coordinator.active("dm:a:b") == ["a"]

        clock.advance(2.9)
        assert coordinator.is_typing("dm:a:b", "a")
        clock.advance(0.2)
        assert coordinator.active("dm:a:b") == []

    def test_start_refreshes_deadline(self, coordinator, clock):
        coordinator.record_start("dm:a:b", "a")
        clock.advance(2.0)
        coordinator.record_start("dm:a:b", "a")
        clock.advance(2.0)
        assert coordinator.is_typing("dm:a:b", "a")

    def test_prune_drops_only_expired(self, coordinator, clock):
        coordinator.record_start("dm:a:b", "a")
        clock.advance(2.0)
        coordinator.record_start("dm:a:b", "b")
        clock.advance(1.5)

        assert coordinator.prune() == [("dm:a:b", "a")]
        assert len(coordinator) == 1

    def test_clear_identity(self, coordinator):
        coordinator.record_start("dm:a:b", "a")
        coordinator.record_start("ch:qa", "a")
        coordinator.record_start("ch:qa", "c")
        coordinator.clear_identity("a")
        assert coordinator.active("ch:qa") == ["c"]
        assert coordinator.active("dm:a:b") == []


class TestTypingBroadcast:
    @pytest.mark.asyncio
    async def test_start_goes_to_everyone_but_the_typist(self, coordinator, recorder):
        await coordinator.start_typing("ch:qa", "a", ["a", "b", "c"])

        recipients, event = recorder.to_users[0]
        assert recipients == ["b", "c"]
        assert event["type"] == "typing_started"
        assert event["payload"]["ttl_seconds"] == 3.0

    @pytest.mark.asyncio
    async def test_stop_after_expiry_is_silent(self, coordinator, recorder, clock):
        await coordinator.start_typing("ch:qa", "a", ["a", "b"])
        clock.advance(5)
        await coordinator.stop_typing("ch:qa", "a", ["a", "b"])

        assert recorder.types() == ["typing_started"]

    @pytest.mark.asyncio
    async def test_stop_while_live_is_broadcast(self, coordinator, recorder):
        await coordinator.start_typing("ch:qa", "a", ["a", "b"])
        await coordinator.stop_typing("ch:qa", "a", ["a", "b"])

        assert recorder.types() == ["typing_started", "typing_stopped"]

    @pytest.mark.asyncio
    async def test_expire_announces_each_timed_out_indicator_once(self, coordinator, recorder, clock):
        lookups = []

        async def participants_for(conversation_key):
            lookups.append(conversation_key)
            return ["a", "b", "c"]

        coordinator.record_start("ch:qa", "a")
        coordinator.record_start("ch:qa", "b")
        clock.advance(5)

        expired = await coordinator.expire(participants_for)

        assert sorted(expired) == [("ch:qa", "a"), ("ch:qa", "b")]
        assert lookups == ["ch:qa"]
        assert recorder.types() == ["typing_stopped", "typing_stopped"]
        assert await coordinator.expire(participants_for) == []

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self, clock):
        async def failing(user_ids, event):
            raise ConnectionError("backend down")

        coordinator = TypingCoordinator(publish=failing, clock=clock, ttl_seconds=3.0)
        await coordinator.start_typing("ch:qa", "a", ["a", "b"])

        assert coordinator.is_typing("ch:qa", "a")

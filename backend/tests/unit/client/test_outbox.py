"""Outbox: ordered replay, bounded retries, final rejections."""

import pytest

from qachat.client.outbox import EntryStatus, Outbox, backoff_delay


class FlakySend:
    def __init__(self, failures: int = 0, error: Exception = ConnectionError("socket closed")):
        self.failures = failures
        self.error = error
        self.frames = []

    async def __call__(self, frame):
        if self.failures:
            self.failures -= 1
            raise self.error
        self.frames.append(frame)


@pytest.fixture
def delays():
    return []


@pytest.fixture
def outbox(delays):
    async def fake_sleep(seconds):
        delays.append(seconds)

    return Outbox(sleep=fake_sleep)


def _frame(n):
    return {"type": "send_direct_message", "payload": {"client_id": f"c{n}", "body": str(n)}}


@pytest.mark.asyncio
async def test_entries_written_in_creation_order(outbox):
    for n in range(3):
        outbox.enqueue(f"c{n}", _frame(n))
    send = FlakySend()

    assert await outbox.drain(send) == 3
    assert [f["payload"]["client_id"] for f in send.frames] == ["c0", "c1", "c2"]
    assert all(e.status is EntryStatus.IN_FLIGHT for e in outbox.entries())


@pytest.mark.asyncio
async def test_ack_removes_entry(outbox):
    outbox.enqueue("c0", _frame(0))
    await outbox.drain(FlakySend())

    assert outbox.acknowledge("c0") is not None
    assert len(outbox) == 0


@pytest.mark.asyncio
async def test_transient_failure_is_retried_with_backoff(outbox, delays):
    outbox.enqueue("c0", _frame(0))
    send = FlakySend(failures=2)

    assert await outbox.drain(send) == 1
    assert delays == [0.5, 1.0]
    assert outbox.entries()[0].attempts == 2


@pytest.mark.asyncio
async def test_gives_up_after_five_attempts(delays):
    failed = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    outbox = Outbox(sleep=fake_sleep, on_failed=lambda entry, error: failed.append((entry, error)))
    outbox.enqueue("c0", _frame(0))
    outbox.enqueue("c1", _frame(1))

    written = await outbox.drain(FlakySend(failures=100))

    assert written == 0
    assert delays == [0.5, 1.0, 2.0, 4.0]
    assert [(e.client_id, e.attempts) for e, _ in failed] == [("c0", 5)]
    assert failed[0][1] == "socket closed"
    # The next entry keeps its place for the next drain
    assert [e.client_id for e in outbox.entries()] == ["c1"]
    assert outbox.entries()[0].status is EntryStatus.QUEUED


@pytest.mark.asyncio
async def test_rejection_is_not_retried(outbox):
    outbox.enqueue("c0", _frame(0))
    send = FlakySend()
    await outbox.drain(send)

    outbox.reject("c0")

    assert outbox.requeue_in_flight() == 0
    assert await outbox.drain(send) == 0
    assert len(send.frames) == 1


@pytest.mark.asyncio
async def test_unacknowledged_entries_replay_after_drop(outbox):
    outbox.enqueue("c0", _frame(0))
    outbox.enqueue("c1", _frame(1))
    first = FlakySend()
    await outbox.drain(first)
    outbox.acknowledge("c0")

    assert outbox.requeue_in_flight() == 1
    second = FlakySend()
    await outbox.drain(second)
    assert [f["payload"]["client_id"] for f in second.frames] == ["c1"]


@pytest.mark.asyncio
async def test_non_transport_errors_propagate(outbox):
    outbox.enqueue("c0", _frame(0))
    with pytest.raises(KeyError):
        await outbox.drain(FlakySend(failures=1, error=KeyError("bug")))


@pytest.mark.parametrize(
    "attempt, expected",
    [(1, 0.5), (2, 1.0), (3, 2.0), (4, 4.0), (5, 8.0), (9, 8.0)],
)
def test_backoff_delay_is_capped(attempt, expected):
    assert backoff_delay(attempt, 0.5, 8.0) == expected

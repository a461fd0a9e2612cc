from qachat.services.presence import PresenceTracker, SessionRegistry


def _tracker():
    registry = SessionRegistry()
    return registry, PresenceTracker(registry)


def test_deltas_carry_increasing_versions():
    registry, tracker = _tracker()
    deltas = []
    tracker.on_delta(deltas.append)

    registry.register("u1", "c1")
    registry.register("u2", "c2")
    registry.unregister("c1")

    assert [(d.user_id, d.online) for d in deltas] == [("u1", True), ("u2", True), ("u1", False)]
    assert [d.version for d in deltas] == [1, 2, 3]
    assert tracker.version_of("u1") == 3


def test_extra_tabs_do_not_emit_deltas():
    registry, tracker = _tracker()
    deltas = []
    tracker.on_delta(deltas.append)

    registry.register("u1", "c1")
    registry.register("u1", "c2")
    registry.unregister("c2")

    assert len(deltas) == 1


def test_snapshot_is_scoped():
    registry, tracker = _tracker()
    registry.register("u1", "c1")
    registry.register("u2", "c2")
    registry.register("u3", "c3")

    snapshot = tracker.snapshot(["u1", "u3", "u9"])

    assert snapshot.online == ["u1", "u3"]
    assert set(snapshot.versions) == {"u1", "u3"}
    assert snapshot.version == 3


def test_snapshot_keeps_versions_of_offline_identities():
    registry, tracker = _tracker()
    registry.register("u1", "c1")
    registry.unregister("c1")

    snapshot = tracker.snapshot(["u1"])

    assert snapshot.online == []
    assert snapshot.versions == {"u1": 2}


def test_unsubscribed_handler_is_not_called():
    registry, tracker = _tracker()
    deltas = []
    stop = tracker.on_delta(deltas.append)
    stop()
    registry.register("u1", "c1")
    assert deltas == []


def test_close_detaches_from_registry():
    registry, tracker = _tracker()
    tracker.close()
    registry.register("u1", "c1")
    assert tracker.version_of("u1") == 0

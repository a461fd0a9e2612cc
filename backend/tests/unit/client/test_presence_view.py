from qachat.client.presence import PresenceView


def test_newer_delta_wins():
    view = PresenceView()
    assert view.apply_delta("u1", True, 3)
    assert view.apply_delta("u1", False, 5)
    assert not view.is_online("u1")


def test_stale_and_duplicate_deltas_ignored():
    view = PresenceView()
    view.apply_delta("u1", False, 5)

    assert view.apply_delta("u1", True, 4) is False
    assert view.apply_delta("u1", False, 5) is False
    assert not view.is_online("u1")


def test_snapshot_does_not_override_newer_delta():
    view = PresenceView()
    view.apply_delta("u1", False, 8)

    view.apply_snapshot(online=["u1", "u2"], versions={"u1": 6, "u2": 7}, version=7)

    assert view.online_ids() == ["u2"]
    assert view.version_of("u1") == 8


def test_snapshot_marks_listed_offline_identities():
    view = PresenceView()
    view.apply_delta("u1", True, 2)

    view.apply_snapshot(online=[], versions={"u1": 3}, version=3)

    assert not view.is_online("u1")


def test_delta_after_snapshot_applies():
    view = PresenceView()
    view.apply_snapshot(online=["u1"], versions={"u1": 4}, version=4)
    assert view.apply_delta("u1", False, 5)
    assert view.online_ids() == []


def test_clear():
    view = PresenceView()
    view.apply_delta("u1", True, 1)
    view.clear()
    assert view.online_ids() == []
    assert view.version_of("u1") == 0

from qachat.client.typing_view import TypingView


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_indicator_expires_without_stop():
    clock = Clock()
    view = TypingView(clock=clock, default_ttl=3.0)
    view.on_started("ch:qa", "u1")

    clock.now = 2.5
    assert view.typing_in("ch:qa") == ["u1"]
    clock.now = 3.0
    assert view.typing_in("ch:qa") == []
    assert view.prune() == 1


def test_server_ttl_overrides_default():
    clock = Clock()
    view = TypingView(clock=clock, default_ttl=3.0)
    view.on_started("ch:qa", "u1", ttl_seconds=10)
    clock.now = 9
    assert view.typing_in("ch:qa") == ["u1"]


def test_stop_and_forget():
    view = TypingView(clock=Clock(), default_ttl=3.0)
    view.on_started("ch:qa", "u1")
    view.on_started("ch:qa", "u2")
    view.on_started("dm:u1:u2", "u1")

    view.on_stopped("ch:qa", "u2")
    view.forget_user("u1")

    assert view.typing_in("ch:qa") == []
    assert view.typing_in("dm:u1:u2") == []

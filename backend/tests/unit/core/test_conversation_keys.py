import pytest

from qachat.core.enums import ConversationKind
from qachat.models.conversation import (
    channel_conversation_key,
    direct_conversation_key,
    parse_conversation_key,
)


def test_direct_key_is_order_independent():
    assert direct_conversation_key("01B", "01A") == direct_conversation_key("01A", "01B") == "dm:01A:01B"


def test_channel_key():
    assert channel_conversation_key("exec-9") == "ch:exec-9"


def test_parse_round_trip():
    assert parse_conversation_key("dm:01A:01B") == (ConversationKind.DIRECT, ("01A", "01B"))
    assert parse_conversation_key("ch:exec-9") == (ConversationKind.CHANNEL, ("exec-9",))


@pytest.mark.parametrize(
    "key",
    ["", "dm:01A", "dm:01B:01A", "dm:01A:01A", "ch:", "xx:1", "dm::01A", "ch:a:b"],
)
def test_malformed_keys(key):
    with pytest.raises(ValueError):
        parse_conversation_key(key)

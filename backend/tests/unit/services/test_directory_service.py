import pytest

from qachat.core.exceptions import ForbiddenException, NotFoundException
from qachat.services.channel_service import ChannelService
from qachat.services.directory_service import DirectoryService
from qachat.services.message_router import MessageRouter
from qachat.services.read_receipt_service import ReadReceiptService


@pytest.fixture
def online():
    return set()


@pytest.fixture
def service(db, online):
    return DirectoryService(db, is_online=lambda uid: uid in online)


def test_contacts_exclude_caller_and_inactive(service, make_user, alice, bob, carol, online):
    make_user("Zed Disabled", is_active=False)
    online.add(bob.id)

    entries = service.list_contacts(alice.id)

    assert [e.user.name for e in entries] == ["Bob", "Carol"]
    assert [e.online for e in entries] == [True, False]


def test_channel_roster_requires_membership(db, service, admin, alice, carol):
    ChannelService(db).create_channel(alice, "Roster", channel_id="roster")

    assert [e.user.id for e in service.list_channel_members("roster", alice)] == [alice.id]
    assert service.list_channel_members("roster", admin)
    with pytest.raises(ForbiddenException):
        service.list_channel_members("roster", carol)
    with pytest.raises(NotFoundException):
        service.list_channel_members("nope", alice)


def test_conversation_list_has_unread_counts(db, service, alice, bob, carol):
    router = MessageRouter(db)
    first = router.accept_direct(bob.id, alice.id, "one").message
    router.accept_direct(bob.id, alice.id, "two")
    router.accept_direct(carol.id, alice.id, "hi from carol")
    ReadReceiptService(db).mark_read(alice.id, first.conversation_key, first.id)

    summaries = {s.other_user_id: s for s in service.list_conversations(alice.id)}

    assert summaries[bob.id].unread_count == 1
    assert summaries[bob.id].last_read_message_id == first.id
    assert summaries[carol.id].unread_count == 1

"""Contacts, presence snapshots, and reactions over REST."""

from qachat.models.conversation import direct_conversation_key


def test_contacts_exclude_caller(client, alice, bob, carol, headers_for):
    response = client.get("/api/v1/contacts", headers=headers_for(alice))
    assert response.status_code == 200
    contacts = response.json()["contacts"]
    assert [c["name"] for c in contacts] == ["Bob", "Carol"]
    assert all(c["online"] is False for c in contacts)
    assert contacts[0]["role"] == "developer"


def test_contacts_skip_inactive_users(client, db, alice, bob, carol, headers_for):
    carol.is_active = False
    db.commit()
    names = [c["name"] for c in client.get("/api/v1/contacts", headers=headers_for(alice)).json()["contacts"]]
    assert names == ["Bob"]


def test_presence_snapshot_with_nobody_online(client, alice, bob, headers_for):
    response = client.get("/api/v1/presence", headers=headers_for(alice))
    assert response.status_code == 200
    snapshot = response.json()
    assert snapshot["online"] == []
    assert snapshot["version"] >= 0


def test_presence_for_foreign_channel_is_forbidden(client, alice, carol, headers_for):
    client.post("/api/v1/channels", json={"name": "Smoke", "channel_id": "smoke"}, headers=headers_for(alice))
    response = client.get("/api/v1/presence", params={"channel_id": "smoke"}, headers=headers_for(carol))
    assert response.status_code == 403


class TestReactions:
    def _message_id(self, client, sender, recipient, headers_for):
        response = client.post(
            f"/api/v1/conversations/direct/{recipient.id}/messages",
            json={"body": "ready for review"},
            headers=headers_for(sender),
        )
        return response.json()["id"]

    def test_toggle_adds_then_removes(self, client, alice, bob, headers_for):
        message_id = self._message_id(client, alice, bob, headers_for)
        url = f"/api/v1/messages/{message_id}/reactions"

        added = client.post(url, json={"emoji": "👍"}, headers=headers_for(bob))
        assert added.status_code == 200
        state = added.json()
        assert state["action"] == "added"
        assert state["conversation_key"] == direct_conversation_key(alice.id, bob.id)
        assert state["reactions"] == [{"emoji": "👍", "count": 1, "user_ids": [bob.id]}]

        grouped = client.get(url, headers=headers_for(alice)).json()
        assert grouped == [{"emoji": "👍", "count": 1, "user_ids": [bob.id]}]

        removed = client.post(url, json={"emoji": "👍"}, headers=headers_for(bob)).json()
        assert removed["action"] == "removed"
        assert removed["reactions"] == []

    def test_outsider_cannot_react(self, client, alice, bob, carol, headers_for):
        message_id = self._message_id(client, alice, bob, headers_for)
        response = client.post(
            f"/api/v1/messages/{message_id}/reactions", json={"emoji": "🎉"}, headers=headers_for(carol)
        )
        assert response.status_code == 403

    def test_unknown_message_is_404(self, client, alice, headers_for):
        response = client.get("/api/v1/messages/999999/reactions", headers=headers_for(alice))
        assert response.status_code == 404

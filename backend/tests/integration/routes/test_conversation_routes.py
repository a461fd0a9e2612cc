"""REST fallback for sending, history, and read cursors."""

from fastapi.testclient import TestClient

from qachat.models.conversation import direct_conversation_key

BASE = "/api/v1/conversations"


def _send(client: TestClient, headers, recipient_id: str, body: str, **extra):
    return client.post(
        f"{BASE}/direct/{recipient_id}/messages", json={"body": body, **extra}, headers=headers
    )


class TestAuthentication:
    def test_missing_token_is_401(self, client):
        response = client.get(BASE)
        assert response.status_code == 401
        body = response.json()
        assert body["status"] == 401
        assert body["instance"] == BASE

    def test_garbage_token_is_401(self, client):
        response = client.get(BASE, headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_deactivated_user_is_401(self, client, db, alice, headers_for):
        alice.is_active = False
        db.commit()
        assert client.get(BASE, headers=headers_for(alice)).status_code == 401


class TestSendDirect:
    def test_send_trims_body_and_returns_201(self, client, alice, bob, headers_for):
        response = _send(client, headers_for(alice), bob.id, "  build 412 is green  ", client_id="c-1")

        assert response.status_code == 201
        message = response.json()
        assert message["body"] == "build 412 is green"
        assert message["sender_id"] == alice.id
        assert message["conversation_key"] == direct_conversation_key(alice.id, bob.id)
        assert message["reactions"] == []

    def test_empty_body_is_rejected(self, client, alice, bob, headers_for):
        response = _send(client, headers_for(alice), bob.id, "   ")
        assert response.status_code == 422
        assert response.json()["code"] == "empty_body"

    def test_self_message_is_rejected(self, client, alice, headers_for):
        response = _send(client, headers_for(alice), alice.id, "hi me")
        assert response.status_code == 422
        assert response.json()["code"] == "self_conversation"

    def test_resent_client_id_returns_the_stored_message(self, client, alice, bob, headers_for):
        first = _send(client, headers_for(alice), bob.id, "from the train", client_id="c-7")
        again = _send(client, headers_for(alice), bob.id, "from the train", client_id="c-7")

        assert again.status_code == 201
        assert again.json()["id"] == first.json()["id"]
        assert again.json()["client_id"] == "c-7"

    def test_client_id_reused_for_another_recipient_is_409(
        self, client, alice, bob, carol, headers_for
    ):
        _send(client, headers_for(alice), bob.id, "for bob", client_id="c-7")
        response = _send(client, headers_for(alice), carol.id, "for carol", client_id="c-7")

        assert response.status_code == 409
        assert response.json()["reason"] == "client_id_reused"

    def test_unknown_recipient_is_404(self, client, alice, headers_for):
        response = _send(client, headers_for(alice), "01HZZZZZZZZZZZZZZZZZZZZZZZ", "hello?")
        assert response.status_code == 404
        assert response.json()["code"] == "unknown_recipient"

    def test_muted_sender_is_refused(self, client, alice, bob, admin, headers_for):
        mute = client.post(
            f"/api/v1/admin/moderation/{alice.id}/mute",
            json={"reason": "spam"},
            headers=headers_for(admin),
        )
        assert mute.status_code == 200

        response = _send(client, headers_for(alice), bob.id, "let me talk")
        assert response.status_code == 403
        assert response.json()["code"] == "muted"

    def test_unknown_field_is_a_validation_error(self, client, alice, bob, headers_for):
        response = _send(client, headers_for(alice), bob.id, "hi", priority="high")
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"


class TestHistory:
    def test_pages_ascending_with_has_more(self, client, alice, bob, headers_for):
        for n in range(5):
            assert _send(client, headers_for(alice), bob.id, f"step {n}").status_code == 201
        key = direct_conversation_key(alice.id, bob.id)

        latest = client.get(f"{BASE}/{key}/messages", params={"limit": 3}, headers=headers_for(bob))
        assert latest.status_code == 200
        page = latest.json()
        bodies = [m["body"] for m in page["messages"]]
        assert bodies == ["step 2", "step 3", "step 4"]
        assert page["has_more"] is True

        first_id = page["messages"][0]["id"]
        older = client.get(
            f"{BASE}/{key}/messages", params={"before": first_id}, headers=headers_for(bob)
        ).json()
        assert [m["body"] for m in older["messages"]] == ["step 0", "step 1"]
        assert older["has_more"] is False

    def test_backfill_after_cursor(self, client, alice, bob, headers_for):
        ids = [_send(client, headers_for(alice), bob.id, f"m{n}").json()["id"] for n in range(3)]
        key = direct_conversation_key(alice.id, bob.id)

        response = client.get(
            f"{BASE}/{key}/messages", params={"after": ids[0]}, headers=headers_for(alice)
        )
        assert [m["id"] for m in response.json()["messages"]] == ids[1:]

    def test_untouched_direct_pair_is_empty(self, client, alice, bob, headers_for):
        key = direct_conversation_key(alice.id, bob.id)
        response = client.get(f"{BASE}/{key}/messages", headers=headers_for(alice))
        assert response.status_code == 200
        assert response.json()["messages"] == []

    def test_outsider_is_forbidden(self, client, alice, bob, carol, headers_for):
        _send(client, headers_for(alice), bob.id, "private")
        key = direct_conversation_key(alice.id, bob.id)
        response = client.get(f"{BASE}/{key}/messages", headers=headers_for(carol))
        assert response.status_code == 403

    def test_malformed_key_is_404(self, client, alice, headers_for):
        response = client.get(f"{BASE}/nonsense/messages", headers=headers_for(alice))
        assert response.status_code == 404


class TestReadCursor:
    def test_mark_read_and_unread_count(self, client, alice, bob, headers_for):
        ids = [_send(client, headers_for(alice), bob.id, f"m{n}").json()["id"] for n in range(3)]
        key = direct_conversation_key(alice.id, bob.id)

        unread = client.get(f"{BASE}/{key}/unread-count", headers=headers_for(bob)).json()
        assert unread["unread_count"] == 3
        assert client.get(f"{BASE}/{key}/unread-count", headers=headers_for(alice)).json()[
            "unread_count"
        ] == 0

        marked = client.patch(
            f"{BASE}/{key}/read", json={"up_to_message_id": ids[1]}, headers=headers_for(bob)
        )
        assert marked.status_code == 200
        assert marked.json() == {
            "conversation_key": key,
            "last_read_message_id": ids[1],
            "advanced": True,
        }
        assert client.get(f"{BASE}/{key}/unread-count", headers=headers_for(bob)).json()[
            "unread_count"
        ] == 1

    def test_cursor_never_moves_backwards(self, client, alice, bob, headers_for):
        ids = [_send(client, headers_for(alice), bob.id, f"m{n}").json()["id"] for n in range(2)]
        key = direct_conversation_key(alice.id, bob.id)
        client.patch(f"{BASE}/{key}/read", json={"up_to_message_id": ids[1]}, headers=headers_for(bob))

        stale = client.patch(
            f"{BASE}/{key}/read", json={"up_to_message_id": ids[0]}, headers=headers_for(bob)
        ).json()
        assert stale["advanced"] is False
        assert stale["last_read_message_id"] == ids[1]

    def test_cursor_is_clamped_to_last_message(self, client, alice, bob, headers_for):
        last_id = _send(client, headers_for(alice), bob.id, "only").json()["id"]
        key = direct_conversation_key(alice.id, bob.id)
        response = client.patch(
            f"{BASE}/{key}/read", json={"up_to_message_id": last_id + 100}, headers=headers_for(bob)
        )
        assert response.json()["last_read_message_id"] == last_id


class TestConversationList:
    def test_lists_with_unread_counts(self, client, alice, bob, headers_for):
        _send(client, headers_for(alice), bob.id, "one")
        _send(client, headers_for(alice), bob.id, "two")

        response = client.get(BASE, headers=headers_for(bob))
        assert response.status_code == 200
        (summary,) = response.json()["conversations"]
        assert summary["kind"] == "direct"
        assert summary["other_user_id"] == alice.id
        assert summary["unread_count"] == 2

    def test_empty_for_new_user(self, client, carol, headers_for):
        assert client.get(BASE, headers=headers_for(carol)).json() == {"conversations": []}

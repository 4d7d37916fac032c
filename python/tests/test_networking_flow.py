"""End-to-end networking flow over HTTP.

Two entrepreneurs meet: Ana asks Bruno to connect, Bruno finds the request
and accepts it, they chat, and the unread counts follow along.
"""

from fastapi.testclient import TestClient

from tests.helpers import auth_headers, create_test_user_id


def _send(client: TestClient, sender, recipient, content: str):
    return client.post(
        "/messages",
        json={"recipient_id": str(recipient), "content": content},
        headers=auth_headers(sender),
    )


def test_request_accept_and_chat(authenticated_client: TestClient):
    ana, bruno = create_test_user_id(), create_test_user_id()
    client = authenticated_client
    for user_id in (ana, bruno):
        client.get("/me", headers=auth_headers(user_id))

    # Messaging is closed until the request is accepted
    blocked = _send(client, ana, bruno, "¿Trabajamos juntos?")
    assert blocked.status_code == 403
    assert blocked.json()["error"]["code"] == "E_NOT_CONNECTED"

    request = client.post(
        "/connections",
        json={"addressee_id": str(bruno), "message": "Hola"},
        headers=auth_headers(ana),
    )
    assert request.status_code == 201
    connection_id = request.json()["data"]["id"]

    pending = client.get(
        "/connections",
        params={"status": "pending", "role": "addressee"},
        headers=auth_headers(bruno),
    ).json()["data"]
    assert len(pending) == 1
    assert pending[0]["id"] == connection_id
    assert pending[0]["requester_id"] == str(ana)
    assert pending[0]["message"] == "Hola"

    accepted = client.post(
        f"/connections/{connection_id}/respond",
        json={"decision": "accept"},
        headers=auth_headers(bruno),
    )
    assert accepted.json()["data"]["status"] == "accepted"

    assert _send(client, ana, bruno, "¿Trabajamos juntos?").status_code == 201

    inbox = client.get("/messages/channels", headers=auth_headers(bruno)).json()["data"]
    assert len(inbox) == 1
    assert inbox[0]["other_user_id"] == str(ana)
    assert inbox[0]["unread_count"] == 1
    assert inbox[0]["last_message"]["content"] == "¿Trabajamos juntos?"

    chat = client.get(
        "/messages/channel", params={"with_user_id": str(ana)}, headers=auth_headers(bruno)
    ).json()["data"]
    assert [m["content"] for m in chat] == ["¿Trabajamos juntos?"]
    assert chat[0]["read_at"] is not None

    inbox = client.get("/messages/channels", headers=auth_headers(bruno)).json()["data"]
    assert inbox[0]["unread_count"] == 0
    badge = client.get("/notifications/summary", headers=auth_headers(bruno)).json()["data"]
    assert badge == {"pending_connection_requests": 0, "unread_messages": 0}

    assert _send(client, bruno, ana, "¡Claro que sí!").status_code == 201

    chat = client.get(
        "/messages/channel", params={"with_user_id": str(bruno)}, headers=auth_headers(ana)
    ).json()["data"]
    assert [(m["seq"], m["content"]) for m in chat] == [
        (1, "¿Trabajamos juntos?"),
        (2, "¡Claro que sí!"),
    ]
    assert chat[0]["sender_id"] == str(ana)

    status = client.get(
        "/connections/status", params={"with_user_id": str(ana)}, headers=auth_headers(bruno)
    ).json()["data"]
    assert status == {"status": "accepted", "connection_id": connection_id}

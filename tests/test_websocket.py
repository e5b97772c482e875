"""
Tests del protocolo WebSocket /ws/{token}
"""
import pytest
from starlette.websockets import WebSocketDisconnect


def register(client, user_id, name):
    resp = client.post("/dev/users", json={"id": user_id, "name": name})
    assert resp.status_code == 201
    return resp.json()["access_token"]


def receive_until(ws, frame_type, limit=10):
    """Lee frames hasta encontrar uno del tipo indicado"""
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] == frame_type:
            return frame
    raise AssertionError(f"No llegó ningún frame {frame_type}")


def test_invalid_token_is_rejected(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/no-es-un-token") as ws:
            ws.receive_json()


def test_ping_and_unknown_frames(client):
    token = register(client, "ana", "Ana")
    with client.websocket_connect(f"/ws/{token}") as ws:
        connected = ws.receive_json()
        assert connected["type"] == "connected"
        assert connected["user_id"] == "ana"

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        ws.send_json({"type": "bailar"})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["code"] == "invalid_request"

        ws.send_text("esto no es json")
        assert ws.receive_json()["code"] == "invalid_request"

        # la conexión sigue abierta tras los errores
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_send_and_live_snapshots(client):
    ana = register(client, "ana", "Ana")
    luis = register(client, "luis", "Luis")
    cid = client.post(
        "/conversations", json={"other_user_id": "luis"}, headers={"Authorization": f"Bearer {ana}"}
    ).json()["id"]

    with client.websocket_connect(f"/ws/{luis}") as luis_ws, client.websocket_connect(f"/ws/{ana}") as ana_ws:
        receive_until(luis_ws, "connected")
        receive_until(ana_ws, "connected")

        luis_ws.send_json({"type": "subscribe_unread"})
        first = receive_until(luis_ws, "unread_count")
        assert first["total"] == 0
        subscribed = receive_until(luis_ws, "subscribed")
        assert subscribed["subscription_id"] == first["subscription_id"]

        ana_ws.send_json({"type": "send_message", "conversation_id": cid, "text": "Hello", "request_id": "r1"})
        sent = receive_until(ana_ws, "message_sent")
        assert sent["request_id"] == "r1"
        assert sent["message"]["text"] == "Hello"
        assert sent["message"]["receiver_id"] == "luis"

        assert receive_until(luis_ws, "unread_count")["total"] == 1

        luis_ws.send_json({"type": "mark_read", "conversation_id": cid})
        frames = [luis_ws.receive_json() for _ in range(2)]
        by_type = {f["type"]: f for f in frames}
        assert by_type["messages_read"]["updated"] == 1
        assert by_type["unread_count"]["total"] == 0

        luis_ws.send_json({"type": "unsubscribe", "subscription_id": subscribed["subscription_id"]})
        assert receive_until(luis_ws, "unsubscribed")["subscription_id"] == subscribed["subscription_id"]


def test_subscribe_messages_reads_on_view_by_default(client):
    ana = register(client, "ana", "Ana")
    luis = register(client, "luis", "Luis")
    headers = {"Authorization": f"Bearer {ana}"}
    cid = client.post("/conversations", json={"other_user_id": "luis"}, headers=headers).json()["id"]
    client.post(f"/conversations/{cid}/messages", json={"text": "Hello"}, headers=headers)

    with client.websocket_connect(f"/ws/{luis}") as ws:
        receive_until(ws, "connected")
        ws.send_json({"type": "subscribe_messages", "conversation_id": cid})
        # snapshot inicial, confirmación y snapshot tras marcar como leído (en cualquier orden)
        frames = [ws.receive_json() for _ in range(3)]
        assert sorted(f["type"] for f in frames) == ["messages", "messages", "subscribed"]
        snapshots = [f["messages"] for f in frames if f["type"] == "messages"]
        assert [m["text"] for m in snapshots[0]] == ["Hello"]
        assert snapshots[0][0]["is_read"] is False
        assert snapshots[1][0]["is_read"] is True

    resp = client.get("/conversations/unread-count", headers={"Authorization": f"Bearer {luis}"})
    assert resp.json() == {"total": 0}


def test_subscribe_conversations_snapshot(client):
    ana = register(client, "ana", "Ana")
    register(client, "luis", "Luis")
    with client.websocket_connect(f"/ws/{ana}") as ws:
        receive_until(ws, "connected")
        ws.send_json({"type": "subscribe_conversations"})
        assert receive_until(ws, "conversations")["conversations"] == []

        cid = client.post(
            "/conversations", json={"other_user_id": "luis"}, headers={"Authorization": f"Bearer {ana}"}
        ).json()["id"]
        snapshot = receive_until(ws, "conversations")
        assert [c["id"] for c in snapshot["conversations"]] == [cid]


def test_errors_are_frames(client):
    ana = register(client, "ana", "Ana")
    register(client, "luis", "Luis")
    eva = register(client, "eva", "Eva")
    cid = client.post(
        "/conversations", json={"other_user_id": "luis"}, headers={"Authorization": f"Bearer {ana}"}
    ).json()["id"]

    with client.websocket_connect(f"/ws/{eva}") as ws:
        receive_until(ws, "connected")
        ws.send_json({"type": "subscribe_messages", "conversation_id": cid})
        error = receive_until(ws, "error")
        assert error["code"] == "unauthorized"
        assert error["request_type"] == "subscribe_messages"

        ws.send_json({"type": "send_message", "conversation_id": cid, "text": "hola"})
        assert receive_until(ws, "error")["code"] == "unauthorized"

        ws.send_json({"type": "send_message", "conversation_id": cid, "text": "   "})
        assert receive_until(ws, "error")["code"] == "invalid_request"

        ws.send_json({"type": "unsubscribe", "subscription_id": "nope"})
        assert receive_until(ws, "error")["code"] == "invalid_request"


def test_passive_subscription_keeps_messages_unread(client):
    ana = register(client, "ana", "Ana")
    luis = register(client, "luis", "Luis")
    headers = {"Authorization": f"Bearer {ana}"}
    cid = client.post("/conversations", json={"other_user_id": "luis"}, headers=headers).json()["id"]
    client.post(f"/conversations/{cid}/messages", json={"text": "Hello"}, headers=headers)

    with client.websocket_connect(f"/ws/{luis}") as ws:
        receive_until(ws, "connected")
        ws.send_json({"type": "subscribe_messages", "conversation_id": cid, "mark_read": False})
        # el snapshot inicial llega antes de la confirmación
        snapshot = ws.receive_json()
        assert snapshot["type"] == "messages"
        assert snapshot["messages"][0]["is_read"] is False
        subscribed = ws.receive_json()
        assert subscribed["type"] == "subscribed"
        assert subscribed["subscription_id"] == snapshot["subscription_id"]

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

    resp = client.get("/conversations/unread-count", headers={"Authorization": f"Bearer {luis}"})
    assert resp.json() == {"total": 1}

"""
Test suite for the FastAPI app: health endpoints and the WebSocket loop.

Run with: pytest test_main.py -v
"""

import pytest
from fastapi.testclient import TestClient

import main
from routers import health


@pytest.fixture
def client():
    with TestClient(main.app) as client:
        yield client


class TestHealthEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/ready")
        assert response.status_code == 200
        assert response.json()["checks"]["rooms"]["status"] == "ok"

    def test_not_ready_while_shutting_down(self, client):
        health.mark_shutting_down()
        response = client.get("/ready")
        assert response.status_code == 503
        assert response.json()["checks"]["lifecycle"]["status"] == "shutting_down"

    def test_metrics_fields(self, client):
        data = client.get("/metrics").json()
        for key in ("active_rooms", "seated_players", "games_in_progress", "disconnected_seats"):
            assert isinstance(data[key], int)


class TestWebSocketEndpoint:

    def test_create_room_roundtrip(self, client):
        before = client.get("/metrics").json()["active_rooms"]

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "create_room", "player_name": "Alice"})
            created = ws.receive_json()
            joined = ws.receive_json()

            assert created["type"] == "room_created"
            assert len(created["room_code"]) == 6
            assert joined["type"] == "player_joined"
            assert client.get("/metrics").json()["active_rooms"] == before + 1

    def test_unknown_message_type(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "shuffle_everything"})
            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["code"] == "UNKNOWN_MESSAGE"

    def test_game_error_reported_to_requester(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "join_room", "room_code": "NOPE00", "player_name": "Bob"})
            error = ws.receive_json()
            assert error == {"type": "error", "code": "ROOM_NOT_FOUND", "message": "Room not found"}

            # The connection stays usable after an error
            ws.send_json({"type": "draw_card"})
            assert ws.receive_json()["code"] == "NOT_IN_ROOM"

    def test_disconnect_holds_seat(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "create_room", "player_name": "Alice"})
            code = ws.receive_json()["room_code"]
            ws.receive_json()

        room = main.room_manager.get_room(code)
        assert room is not None
        assert "Alice" in room.disconnected

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "reconnect", "room_code": code, "player_name": "Alice"})
            message = ws.receive_json()
            assert message["type"] == "reconnected"
            assert message["is_host"]

"""
Shared fixtures for the Uno server tests.

The Harness wires a RoomManager, a ConnectionSupervisor and the handler
dependencies the same way main.py does, minus the FastAPI app.
"""

import uuid
from typing import Optional

import pytest

from game import Card, Color, GamePhase
from handlers import (
    ConnectionContext,
    announce_turn_result,
    handle_create_room,
    handle_join_room,
    handle_start_game,
    send_game_state,
)
from room import Room, RoomManager
from services import ConnectionSupervisor


class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []
        self.closed = False

    async def send_json(self, data: dict):
        self.messages.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None):
        self.closed = True

    def last_message(self) -> dict:
        return self.messages[-1] if self.messages else {}

    def messages_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]

    def clear(self):
        self.messages.clear()


def _take(pool: list[Card], color: str, value: str) -> Card:
    for i, card in enumerate(pool):
        if card.color.value == color and card.value.value == value:
            return pool.pop(i)
    raise AssertionError(f"No {color} {value} left in pool")


class Harness:
    """In-process server: rooms, supervisor and handler dependencies."""

    def __init__(self, turn_skip_seconds: float = 30.0, forfeit_seconds: float = 600.0):
        self.room_manager = RoomManager()
        self.supervisor = ConnectionSupervisor(
            self.room_manager,
            broadcast_game_state=self.broadcast_game_state,
            publish_turn_result=self.publish_turn_result,
            turn_skip_seconds=turn_skip_seconds,
            forfeit_seconds=forfeit_seconds,
        )

    async def broadcast_game_state(self, room: Room, message_type: str = "game_state"):
        await send_game_state(room, self.supervisor, message_type)

    async def publish_turn_result(self, room, result):
        await announce_turn_result(room, result, broadcast_game_state=self.broadcast_game_state)

    def deps(self) -> dict:
        return dict(
            room_manager=self.room_manager,
            supervisor=self.supervisor,
            broadcast_game_state=self.broadcast_game_state,
            hand_size=7,
        )

    def connect(self) -> ConnectionContext:
        return ConnectionContext(websocket=MockWebSocket(), connection_id=str(uuid.uuid4()))

    async def setup_room(self, names=("Alice", "Bob"), start=True, seed=7):
        """Create a room, seat `names` in order and optionally start the game."""
        ctxs = {}
        host = self.connect()
        await handle_create_room({"player_name": names[0]}, host, **self.deps())
        room = host.current_room
        room.game.seed = seed
        ctxs[names[0]] = host

        for name in names[1:]:
            ctx = self.connect()
            await handle_join_room({"room_code": room.code, "player_name": name}, ctx, **self.deps())
            ctxs[name] = ctx

        if start:
            await handle_start_game({}, host, **self.deps())

        for ctx in ctxs.values():
            ctx.websocket.clear()
        return room, ctxs

    @staticmethod
    def arrange(room: Room, hands, top=("red", "5"), top_color: Optional[Color] = None, current=0):
        """
        Redistribute a started game's cards: chosen hands and top card, rest in the deck.

        Keeps the 108-card accounting intact.
        """
        game = room.game
        pool = game.all_cards()
        for card in pool:
            card.selected_color = None
        for player, keys in zip(game.players, hands):
            player.hand = [_take(pool, *key) for key in keys]
        top_card = _take(pool, *top)
        top_card.selected_color = top_color
        game.discard_pile = [top_card]
        game.deck.cards = pool
        game.forfeited_hands = []
        game.current_turn_index = current
        game.phase = GamePhase.IN_PROGRESS
        game.check_invariants()


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.fixture
def fast_harness() -> Harness:
    """Harness with grace periods short enough to elapse inside a test."""
    return Harness(turn_skip_seconds=0.02, forfeit_seconds=0.2)

"""WebSocket message handlers for the Uno card game.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict in main.py.

Handlers raise GameError subclasses for anything the requester got wrong;
the endpoint loop turns those into an `error` message for that connection
only. Every room mutation happens inside `async with room.game_lock`, and
the resulting broadcasts are sent before the lock is released.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import WebSocket

from constants import MAX_NAME_LENGTH
from errors import (
    AlreadyInRoom,
    InvalidCardIndex,
    InvalidColor,
    InvalidIdentity,
    InvariantViolation,
    NotHost,
    NotInRoom,
    RoomNotFound,
)
from game import CHOOSABLE_COLORS, Game, GamePhase, TurnResult
from logging_config import player_name_var, room_code_var
from room import Room

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    player_name: Optional[str] = None
    current_room: Optional[Room] = None

    def enter(self, room: Room, player_name: str) -> None:
        self.current_room = room
        self.player_name = player_name
        room_code_var.set(room.code)
        player_name_var.set(player_name)

    def leave(self) -> None:
        self.current_room = None
        self.player_name = None
        room_code_var.set(None)
        player_name_var.set(None)


def _validate_name(raw) -> str:
    if not isinstance(raw, str):
        raise InvalidIdentity()
    name = raw.strip()
    if not name or len(name) > MAX_NAME_LENGTH:
        raise InvalidIdentity(f"Player name must be 1-{MAX_NAME_LENGTH} characters")
    return name


def _require_room(ctx: ConnectionContext, room_manager) -> Room:
    """The connection's room, provided it still exists."""
    room = ctx.current_room
    if room is None or not room_manager.is_active(room) or ctx.player_name not in room.players:
        ctx.leave()
        raise NotInRoom()
    return room


def _reject_if_seated(ctx: ConnectionContext, room_manager) -> None:
    room = ctx.current_room
    if room is not None and room_manager.is_active(room) and ctx.player_name in room.players:
        raise AlreadyInRoom()


async def send_game_state(room: Room, supervisor, message_type: str = "game_state") -> None:
    """
    Send every connected seat its own view of the game.

    The player whose turn it is also gets `your_turn`. Afterwards the
    supervisor checks whether the turn now rests on an absent seat.
    """
    game = room.game
    current = game.current_player() if game.phase == GamePhase.IN_PROGRESS else None

    for name, player in room.players.items():
        if not player.websocket:
            continue

        await room.send_to(name, {
            "type": message_type,
            "game_state": game.get_state(name),
        })
        if current is not None and current.name == name:
            await room.send_to(name, {"type": "your_turn"})

    supervisor.watch_turn(room)


async def announce_turn_result(room: Room, result: TurnResult, *, broadcast_game_state) -> None:
    """
    Tell the room what an engine operation did.

    Drawn cards go privately to whoever drew them. A winner is announced
    before anything else about the new state.
    """
    if result.drawn:
        await room.send_to(result.player, {
            "type": "card_drawn",
            "cards": [card.to_dict() for card in result.drawn],
            "reason": "draw",
        })

    if result.penalty_player:
        await room.send_to(result.penalty_player, {
            "type": "card_drawn",
            "cards": [card.to_dict() for card in result.penalty_cards],
            "reason": result.card.value.value,
        })

    if result.selected_color is not None:
        await room.broadcast({
            "type": "color_selection_confirmed",
            "player_name": result.player,
            "color": result.selected_color.value,
            "auto_selected": result.auto_selected,
        })

    if result.winner:
        await room.broadcast({
            "type": "game_over",
            "winner": result.winner,
        })
        await broadcast_game_state(room)
        return

    if result.awaiting_color:
        await room.send_to(result.player, {
            "type": "color_selection_requested",
            "card": result.card.to_dict(),
            "colors": [color.value for color in CHOOSABLE_COLORS],
        })

    await broadcast_game_state(room)


async def _run_turn_action(
    ctx: ConnectionContext,
    action: Callable[[Game, int], TurnResult],
    *,
    room_manager,
    supervisor,
    broadcast_game_state,
    **kw,
) -> None:
    """Apply one engine action for the requester's seat and announce it."""
    room = _require_room(ctx, room_manager)

    async with room.game_lock:
        room = _require_room(ctx, room_manager)
        game = room.game
        result = action(game, game.seat_of(ctx.player_name))

        try:
            game.check_invariants()
        except InvariantViolation as e:
            await supervisor.abort_room(room, e)
            ctx.leave()
            return

        await announce_turn_result(room, result, broadcast_game_state=broadcast_game_state)


# ---------------------------------------------------------------------------
# Lobby / Room handlers
# ---------------------------------------------------------------------------

async def handle_create_room(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    _reject_if_seated(ctx, room_manager)
    player_name = _validate_name(data.get("player_name"))

    room = room_manager.create_room()
    async with room.game_lock:
        room.add_player(player_name, ctx.websocket, ctx.connection_id)
        ctx.enter(room, player_name)

        await ctx.websocket.send_json({
            "type": "room_created",
            "room_code": room.code,
            "player_name": player_name,
            "is_host": True,
        })
        await room.broadcast({
            "type": "player_joined",
            "player_name": player_name,
            "players": room.player_list(),
        })


async def handle_join_room(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    _reject_if_seated(ctx, room_manager)
    player_name = _validate_name(data.get("player_name"))

    room = room_manager.get_room(data.get("room_code"))
    if not room:
        raise RoomNotFound()

    async with room.game_lock:
        if not room_manager.is_active(room):
            raise RoomNotFound()

        room.add_player(player_name, ctx.websocket, ctx.connection_id)
        ctx.enter(room, player_name)
        logger.info(f"{player_name} joined room {room.code} ({len(room.players)} seated)")

        await ctx.websocket.send_json({
            "type": "room_joined",
            "room_code": room.code,
            "player_name": player_name,
            "is_host": False,
        })
        await room.broadcast({
            "type": "player_joined",
            "player_name": player_name,
            "players": room.player_list(),
        })


# ---------------------------------------------------------------------------
# Game lifecycle handlers
# ---------------------------------------------------------------------------

async def handle_start_game(data: dict, ctx: ConnectionContext, *, room_manager, supervisor, broadcast_game_state, hand_size, **kw) -> None:
    room = _require_room(ctx, room_manager)

    async with room.game_lock:
        room = _require_room(ctx, room_manager)
        if not room.get_player(ctx.player_name).is_host:
            raise NotHost("Only the host can start the game")

        room.game.start(hand_size)
        try:
            room.game.check_invariants()
        except InvariantViolation as e:
            await supervisor.abort_room(room, e)
            ctx.leave()
            return

        logger.info(f"Game started in room {room.code} with {len(room.game.players)} players")
        await broadcast_game_state(room, message_type="game_started")


# ---------------------------------------------------------------------------
# Turn action handlers
# ---------------------------------------------------------------------------

async def handle_play_card(data: dict, ctx: ConnectionContext, **kw) -> None:
    card_index = data.get("card_index")
    if not isinstance(card_index, int) or isinstance(card_index, bool):
        raise InvalidCardIndex()

    await _run_turn_action(ctx, lambda game, seat: game.play_card(seat, card_index), **kw)


async def handle_select_color(data: dict, ctx: ConnectionContext, **kw) -> None:
    color = data.get("color")
    if not isinstance(color, str):
        raise InvalidColor()

    await _run_turn_action(ctx, lambda game, seat: game.select_color(seat, color.lower()), **kw)


async def handle_draw_card(data: dict, ctx: ConnectionContext, **kw) -> None:
    await _run_turn_action(ctx, lambda game, seat: game.draw_card(seat), **kw)


# ---------------------------------------------------------------------------
# Reconnect / Leave / End handlers
# ---------------------------------------------------------------------------

async def handle_reconnect(data: dict, ctx: ConnectionContext, *, room_manager, supervisor, **kw) -> None:
    _reject_if_seated(ctx, room_manager)
    player_name = _validate_name(data.get("player_name"))

    room = await supervisor.reconnect(data.get("room_code"), player_name, ctx.websocket, ctx.connection_id)
    ctx.enter(room, player_name)


async def handle_leave_room(data: dict, ctx: ConnectionContext, *, room_manager, supervisor, **kw) -> None:
    room = _require_room(ctx, room_manager)

    async with room.game_lock:
        if room_manager.is_active(room):
            logger.info(f"{ctx.player_name} left room {room.code}")
            await supervisor.remove_player(room, ctx.player_name, reason="left")
    ctx.leave()


async def handle_end_game(data: dict, ctx: ConnectionContext, *, room_manager, supervisor, **kw) -> None:
    room = _require_room(ctx, room_manager)

    async with room.game_lock:
        room = _require_room(ctx, room_manager)
        finished = room.game.phase == GamePhase.FINISHED
        if not finished and not room.get_player(ctx.player_name).is_host:
            raise NotHost("Only the host can end the game")

        reason = "Game over" if finished else "Host ended the game"
        await supervisor.destroy_room(room, reason)
    ctx.leave()


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "create_room": handle_create_room,
    "join_room": handle_join_room,
    "start_game": handle_start_game,
    "play_card": handle_play_card,
    "select_color": handle_select_color,
    "draw_card": handle_draw_card,
    "reconnect": handle_reconnect,
    "leave_room": handle_leave_room,
    "end_game": handle_end_game,
}

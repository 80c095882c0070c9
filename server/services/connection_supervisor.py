"""
Connection supervision for Uno rooms.

Tracks which seats are connected, holds a seat open for a disconnected player
and re-binds it when they come back. Two timers run per disconnected seat:

    turn-skip   If the absent seat holds the turn, pass it after a short
                grace period so the table is not stalled.
    forfeiture  If the player has not returned after the long grace period,
                remove the seat for good.

Timers never mutate a room directly. They sleep outside the room lock, then
enter the same lock every handler uses and re-check that their disconnect
record is still live. A reconnection accepted first cancels them or leaves
them with nothing to do.
"""

import asyncio
from typing import Awaitable, Callable

from fastapi import WebSocket

from errors import GameError, InvariantViolation, ReconnectNotEligible
from game import ACTIVE_PHASES, GamePhase, TurnResult
from logging_config import get_logger
from room import DisconnectRecord, Room, RoomManager

logger = get_logger(__name__)

BroadcastFn = Callable[[Room], Awaitable[None]]
PublishFn = Callable[[Room, TurnResult], Awaitable[None]]


class ConnectionSupervisor:
    """
    Manage disconnects, grace periods and reconnection for every room.

    A single instance is shared by the server. Methods documented as
    "lock held" must be called from inside `async with room.game_lock`.
    """

    def __init__(
        self,
        room_manager: RoomManager,
        broadcast_game_state: BroadcastFn,
        publish_turn_result: PublishFn,
        turn_skip_seconds: float,
        forfeit_seconds: float,
    ) -> None:
        """
        Args:
            room_manager: Registry of active rooms.
            broadcast_game_state: Sends each seat its snapshot.
            publish_turn_result: Announces what an engine operation did.
            turn_skip_seconds: Grace before an absent player's turn is passed.
            forfeit_seconds: Grace before an absent player's seat is removed.
        """
        self.room_manager = room_manager
        self.broadcast_game_state = broadcast_game_state
        self.publish_turn_result = publish_turn_result
        self.turn_skip_seconds = turn_skip_seconds
        self.forfeit_seconds = forfeit_seconds

    # -------------------------------------------------------------------------
    # Disconnect
    # -------------------------------------------------------------------------

    async def handle_disconnect(self, room: Room, name: str, connection_id: str) -> bool:
        """
        Hold a seat open after its transport closed.

        Ignored when the closed connection is not the one bound to the seat
        (the player already reconnected on another socket).

        Returns:
            True if a disconnect record was opened.
        """
        async with room.game_lock:
            if not self.room_manager.is_active(room):
                return False
            room_player = room.get_player(name)
            if room_player is None or room_player.connection_id != connection_id:
                return False

            record = room.mark_disconnected(name)
            record.forfeit_timer = asyncio.create_task(self._forfeit_after(room, record))
            logger.with_context(room_code=room.code, player_name=name).info(
                f"Player disconnected, holding seat for {self.forfeit_seconds:g}s"
            )

            await room.broadcast({
                "type": "player_disconnected",
                "player_name": name,
                "players": room.player_list(),
            })
            self.watch_turn(room)
            return True

    def watch_turn(self, room: Room) -> None:
        """
        Start a turn-skip timer if the turn rests on a disconnected seat.

        Lock held. Called after every state broadcast, so a turn arriving at
        an already-absent seat is covered too.
        """
        game = room.game
        if game.phase not in ACTIVE_PHASES:
            return
        current = game.current_player()
        if current is None or current.connected:
            return
        record = room.disconnected.get(current.name)
        if record is None:
            return
        if record.turn_timer is not None and not record.turn_timer.done():
            return
        record.turn_timer = asyncio.create_task(self._skip_turn_after(room, record))

    def _record_live(self, room: Room, record: DisconnectRecord) -> bool:
        return self.room_manager.is_active(room) and room.disconnected.get(record.name) is record

    async def _skip_turn_after(self, room: Room, record: DisconnectRecord) -> None:
        await asyncio.sleep(self.turn_skip_seconds)
        async with room.game_lock:
            if not self._record_live(room, record):
                return
            record.turn_timer = None

            game = room.game
            seat = game.seat_of(record.name)
            if seat is None or game.phase not in ACTIVE_PHASES or seat != game.current_turn_index:
                return

            try:
                result = game.skip_turn(seat)
                game.check_invariants()
            except InvariantViolation as e:
                await self.abort_room(room, e)
                return
            except GameError as e:
                logger.with_context(room_code=room.code, player_name=record.name).warning(
                    f"Turn skip failed: {e.message}"
                )
                return

            logger.with_context(room_code=room.code, player_name=record.name).info(
                "Turn skipped for disconnected player"
            )
            await room.broadcast({
                "type": "turn_skipped",
                "player_name": record.name,
                "seat": seat,
            })
            await self.publish_turn_result(room, result)

    async def _forfeit_after(self, room: Room, record: DisconnectRecord) -> None:
        await asyncio.sleep(self.forfeit_seconds)
        async with room.game_lock:
            if not self._record_live(room, record):
                return
            logger.with_context(room_code=room.code, player_name=record.name).info(
                "Grace period expired, seat forfeited"
            )
            await self.remove_player(room, record.name, reason="forfeited")

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    async def remove_player(self, room: Room, name: str, reason: str) -> None:
        """
        Permanently remove a seat and tell the rest of the room.

        Lock held. Destroys the room when no seats remain.
        """
        was_active = room.game.phase in ACTIVE_PHASES
        removed = room.remove_player(name)
        if removed is None:
            return

        if room.is_empty():
            self.room_manager.remove_room(room.code)
            return

        try:
            room.game.check_invariants()
        except InvariantViolation as e:
            await self.abort_room(room, e)
            return

        await room.broadcast({
            "type": "player_left",
            "player_name": name,
            "reason": reason,
            "players": room.player_list(),
        })

        if was_active and room.game.phase == GamePhase.FINISHED:
            await room.broadcast({
                "type": "game_over",
                "winner": room.game.winner,
                "reason": "last_player_standing",
            })
        if room.game.phase != GamePhase.LOBBY:
            await self.broadcast_game_state(room)

    async def destroy_room(self, room: Room, reason: str) -> None:
        """Tell everyone the game is over and unregister the room. Lock held."""
        if not self.room_manager.is_active(room):
            return
        await room.broadcast({"type": "game_ended", "reason": reason})
        self.room_manager.remove_room(room.code)

    async def abort_room(self, room: Room, error: InvariantViolation) -> None:
        """Discard a room whose state can no longer be trusted. Lock held."""
        logger.with_context(room_code=room.code).error(
            f"Invariant violation, discarding room: {error.message}",
        )
        await self.destroy_room(room, "Game aborted: internal error")

    # -------------------------------------------------------------------------
    # Reconnect
    # -------------------------------------------------------------------------

    async def reconnect(
        self,
        room_code: str,
        name: str,
        websocket: WebSocket,
        connection_id: str,
    ) -> Room:
        """
        Re-bind a held seat to a new connection.

        Hand, seat and turn ownership are left exactly as they were. The
        returning player gets a full snapshot; the room is told they are back.

        Raises:
            ReconnectNotEligible: With reason room_gone, already_active or
                never_present.
        """
        room = self.room_manager.get_room(room_code)
        if room is None:
            raise ReconnectNotEligible(ReconnectNotEligible.ROOM_GONE)

        async with room.game_lock:
            if not self.room_manager.is_active(room):
                raise ReconnectNotEligible(ReconnectNotEligible.ROOM_GONE)
            if name not in room.disconnected:
                if name in room.players:
                    raise ReconnectNotEligible(ReconnectNotEligible.ALREADY_ACTIVE)
                raise ReconnectNotEligible(ReconnectNotEligible.NEVER_PRESENT)

            room_player = room.rebind(name, websocket, connection_id)
            logger.with_context(room_code=room.code, player_name=name).info("Player reconnected")

            await room.send_to(name, {
                "type": "reconnected",
                "room_code": room.code,
                "player_name": name,
                "is_host": room_player.is_host,
                "game_state": room.game.get_state(name),
            })
            await room.broadcast({
                "type": "player_reconnected",
                "player_name": name,
                "players": room.player_list(),
            }, exclude=name)

        return room

    async def shutdown(self) -> None:
        """Cancel every pending timer (process shutdown)."""
        for room in list(self.room_manager.rooms.values()):
            room.cancel_timers()

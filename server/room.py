"""
Room management for multiplayer Uno games.

This module handles room creation, seat bookkeeping and WebSocket
communication for multiplayer game sessions.

A Room contains:
    - A unique 6-character code for joining
    - A collection of RoomPlayers keyed by display name
    - A Game instance with the authoritative game state
    - Disconnect records for seats inside their reconnection grace period
    - A lock that serializes every mutation of the room
"""

import asyncio
import logging
import random
import string
import time
from dataclasses import dataclass, field
from typing import Optional

from fastapi import WebSocket

from constants import ROOM_CODE_LENGTH
from game import Card, Game

logger = logging.getLogger(__name__)


@dataclass
class RoomPlayer:
    """
    A participant in a game room (transport-level representation).

    This is separate from game.Player - RoomPlayer tracks the connection and
    host status, while game.Player tracks the seat's hand. The name is the
    stable identity; the connection can be rebound on reconnect.

    Attributes:
        name: Display name, unique within the room.
        connection_id: Id of the WebSocket currently bound to this seat.
        websocket: That WebSocket (None while disconnected).
        is_host: Whether this player may start or end the game.
    """

    name: str
    connection_id: Optional[str] = None
    websocket: Optional[WebSocket] = None
    is_host: bool = False

    @property
    def connected(self) -> bool:
        return self.websocket is not None


@dataclass
class DisconnectRecord:
    """
    A seat being held for a disconnected player.

    Attributes:
        name: The absent player's identity.
        saved_hand: The seat's live hand, held untouched for the player's return.
        disconnected_at: time.monotonic() at disconnect.
        turn_timer: Pending turn-skip task, if the seat holds the turn.
        forfeit_timer: Pending forfeiture task.
    """

    name: str
    saved_hand: list[Card]
    disconnected_at: float = field(default_factory=time.monotonic)
    turn_timer: Optional[asyncio.Task] = None
    forfeit_timer: Optional[asyncio.Task] = None

    def cancel_timers(self) -> None:
        """Cancel pending timers, except the one currently running."""
        current = asyncio.current_task() if _loop_running() else None
        for task in (self.turn_timer, self.forfeit_timer):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self.turn_timer = None
        self.forfeit_timer = None


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


@dataclass
class Room:
    """
    A game room/lobby hosting one Uno game.

    Attributes:
        code: Room code for joining (e.g., "K3ZQ7A").
        players: Dict mapping player names to RoomPlayer objects.
        game: The Game instance containing actual game state.
        disconnected: Live disconnect records, keyed by player name.
        game_lock: asyncio.Lock serializing every mutation of this room.
    """

    code: str
    players: dict[str, RoomPlayer] = field(default_factory=dict)
    game: Game = field(default_factory=Game)
    disconnected: dict[str, DisconnectRecord] = field(default_factory=dict)
    game_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def add_player(
        self,
        name: str,
        websocket: Optional[WebSocket],
        connection_id: Optional[str] = None,
    ) -> RoomPlayer:
        """
        Seat a player in the room.

        The first player to join becomes the host.

        Raises:
            GameAlreadyStarted, RoomFull, IdentityTaken: From Game.add_player.
        """
        self.game.add_player(name)

        room_player = RoomPlayer(
            name=name,
            connection_id=connection_id,
            websocket=websocket,
            is_host=len(self.players) == 0,
        )
        self.players[name] = room_player
        return room_player

    def remove_player(self, name: str) -> Optional[RoomPlayer]:
        """
        Permanently remove a player and their seat.

        Reassigns the host if the host leaves and drops any disconnect record.

        Returns:
            The removed RoomPlayer, or None if not found.
        """
        if name not in self.players:
            return None

        record = self.disconnected.pop(name, None)
        if record:
            record.cancel_timers()

        room_player = self.players.pop(name)
        seat = self.game.seat_of(name)
        if seat is not None:
            self.game.remove_seat(seat)

        if room_player.is_host and self.players:
            next_host = next(iter(self.players.values()))
            next_host.is_host = True

        return room_player

    def get_player(self, name: str) -> Optional[RoomPlayer]:
        """Get a player by name, or None if not found."""
        return self.players.get(name)

    def mark_disconnected(self, name: str) -> DisconnectRecord:
        """Unbind a player's connection and open a disconnect record."""
        room_player = self.players[name]
        room_player.websocket = None
        room_player.connection_id = None

        game_player = self.game.get_player(name)
        game_player.connected = False

        record = DisconnectRecord(name=name, saved_hand=game_player.hand)
        self.disconnected[name] = record
        return record

    def rebind(self, name: str, websocket: WebSocket, connection_id: str) -> RoomPlayer:
        """Attach a new connection to a held seat and close its disconnect record."""
        record = self.disconnected.pop(name)
        record.cancel_timers()

        room_player = self.players[name]
        room_player.websocket = websocket
        room_player.connection_id = connection_id
        self.game.get_player(name).connected = True
        return room_player

    def cancel_timers(self) -> None:
        """Cancel every pending grace-period timer in this room."""
        for record in self.disconnected.values():
            record.cancel_timers()

    def is_empty(self) -> bool:
        """Check if the room has no seats left."""
        return len(self.players) == 0

    def connected_count(self) -> int:
        return sum(1 for p in self.players.values() if p.connected)

    def player_list(self) -> list[dict]:
        """
        Get list of seats for client display, in turn order.

        Returns:
            List of dicts with seat, name, is_host, connected and card_count.
        """
        result = []
        for seat, game_player in enumerate(self.game.players):
            room_player = self.players.get(game_player.name)
            result.append({
                "seat": seat,
                "name": game_player.name,
                "is_host": bool(room_player and room_player.is_host),
                "connected": game_player.connected,
                "card_count": len(game_player.hand),
            })
        return result

    async def broadcast(self, message: dict, exclude: Optional[str] = None) -> None:
        """
        Send a message to every connected player in the room.

        Args:
            message: JSON-serializable message dict.
            exclude: Optional player name to skip.
        """
        for name, player in self.players.items():
            if name != exclude and player.websocket:
                try:
                    await player.websocket.send_json(message)
                except Exception as e:
                    logger.debug(f"Send to {name} in room {self.code} failed: {e}")

    async def send_to(self, name: str, message: dict) -> None:
        """
        Send a message to a specific player.

        Args:
            name: Name of the recipient player.
            message: JSON-serializable message dict.
        """
        player = self.players.get(name)
        if player and player.websocket:
            try:
                await player.websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Send to {name} in room {self.code} failed: {e}")


class RoomManager:
    """
    Manages all active game rooms.

    Provides room creation with unique codes, lookup, and cleanup.
    A single RoomManager instance is used by the server. It is only touched
    from the event loop, so creation and removal never interleave.
    """

    CODE_ALPHABET = string.ascii_uppercase + string.digits

    def __init__(self, code_length: int = ROOM_CODE_LENGTH) -> None:
        """Initialize an empty room manager."""
        self.rooms: dict[str, Room] = {}
        self.code_length = code_length

    def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a room code not used by any active room."""
        for _ in range(max_attempts):
            code = "".join(random.choices(self.CODE_ALPHABET, k=self.code_length))
            if code not in self.rooms:
                return code
        raise RuntimeError("Could not generate unique room code")

    def create_room(self) -> Room:
        """
        Create a new room with a unique code.

        Returns:
            The newly created Room.
        """
        code = self._generate_code()
        room = Room(code=code)
        self.rooms[code] = room
        logger.info(f"Room {code} created ({len(self.rooms)} active)")
        return room

    def get_room(self, code: str) -> Optional[Room]:
        """
        Get a room by its code (case-insensitive).

        Args:
            code: The room code.

        Returns:
            The Room if found, None otherwise.
        """
        if not isinstance(code, str):
            return None
        return self.rooms.get(code.strip().upper())

    def is_active(self, room: Room) -> bool:
        """Whether this exact room object is still registered."""
        return self.rooms.get(room.code) is room

    def remove_room(self, code: str) -> Optional[Room]:
        """
        Delete a room and cancel its pending timers.

        Args:
            code: The room code to remove.

        Returns:
            The removed Room, or None if it was already gone.
        """
        room = self.rooms.pop(code, None)
        if room:
            room.cancel_timers()
            logger.info(f"Room {code} removed ({len(self.rooms)} active)")
        return room

    def find_player_room(self, name: str) -> Optional[Room]:
        """
        Find a room holding a seat for this name.

        Args:
            name: The player name to search for.

        Returns:
            The first Room containing the player, or None.
        """
        for room in self.rooms.values():
            if name in room.players:
                return room
        return None

"""
Error taxonomy for the Uno server.

Every failure a player can cause is a GameError subclass carrying a stable
code. Handlers catch GameError at the room boundary and report it to the
requester only; nothing else in the room is notified.

    ValidationError     wrong turn, illegal card, bad color/index. State unchanged.
    LifecycleError      room/seat lifecycle problems (not found, taken, ...).
    ResourceExhaustion  the deck ran dry with nothing to recycle.
    InvariantViolation  card accounting or turn pointer is corrupt. Fatal to the room.
"""


class GameError(Exception):
    """Base exception for game-related errors."""

    code = "GAME_ERROR"
    default_message = "Game error"

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(f"[{self.code}] {self.message}")

    def to_message(self) -> dict:
        """Build the scoped error message sent to the requester."""
        return {"type": "error", "code": self.code, "message": self.message}


# =============================================================================
# Validation errors
# =============================================================================

class ValidationError(GameError):
    code = "VALIDATION_ERROR"


class NotYourTurn(ValidationError):
    code = "NOT_YOUR_TURN"
    default_message = "Not your turn"


class IllegalCard(ValidationError):
    code = "ILLEGAL_CARD"
    default_message = "That card does not match the top card"


class IllegalDrawFour(ValidationError):
    code = "ILLEGAL_DRAW_FOUR"
    default_message = "Wild Draw Four can only be played when you hold no card of the current color"


class InvalidColor(ValidationError):
    code = "INVALID_COLOR"
    default_message = "Color must be red, green, blue or yellow"


class InvalidCardIndex(ValidationError):
    code = "INVALID_CARD_INDEX"
    default_message = "No card at that position"


class InvalidSeat(ValidationError):
    code = "INVALID_SEAT"
    default_message = "No such seat"


class ColorSelectionPending(ValidationError):
    code = "COLOR_SELECTION_PENDING"
    default_message = "Waiting for a color to be chosen"


class NoPendingColor(ValidationError):
    code = "NO_PENDING_COLOR"
    default_message = "There is no wild card waiting for a color"


class GameNotInProgress(ValidationError):
    code = "GAME_NOT_IN_PROGRESS"
    default_message = "The game is not in progress"


class InvalidIdentity(ValidationError):
    code = "INVALID_IDENTITY"
    default_message = "Player name must not be empty"


# =============================================================================
# Lifecycle errors
# =============================================================================

class LifecycleError(GameError):
    code = "LIFECYCLE_ERROR"


class RoomNotFound(LifecycleError):
    code = "ROOM_NOT_FOUND"
    default_message = "Room not found"


class IdentityTaken(LifecycleError):
    code = "IDENTITY_TAKEN"
    default_message = "That name is already taken in this room"


class RoomFull(LifecycleError):
    code = "ROOM_FULL"
    default_message = "Room is full"


class GameAlreadyStarted(LifecycleError):
    code = "GAME_ALREADY_STARTED"
    default_message = "Game already in progress"


class NotEnoughPlayers(LifecycleError):
    code = "NOT_ENOUGH_PLAYERS"
    default_message = "Need at least 2 players"


class NotHost(LifecycleError):
    code = "NOT_HOST"
    default_message = "Only the host can do that"


class NotInRoom(LifecycleError):
    code = "NOT_IN_ROOM"
    default_message = "You are not in a room"


class AlreadyInRoom(LifecycleError):
    code = "ALREADY_IN_ROOM"
    default_message = "You are already in a room"


class ReconnectNotEligible(LifecycleError):
    """
    Reconnection refused.

    The reason distinguishes a room that no longer exists, an identity that
    is still actively connected, and an identity that never held a seat
    (or whose seat was already forfeited).
    """

    code = "RECONNECT_NOT_ELIGIBLE"

    ROOM_GONE = "room_gone"
    ALREADY_ACTIVE = "already_active"
    NEVER_PRESENT = "never_present"

    _MESSAGES = {
        ROOM_GONE: "That room no longer exists",
        ALREADY_ACTIVE: "That player is already connected",
        NEVER_PRESENT: "No seat is being held for that player",
    }

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(self._MESSAGES.get(reason, "Cannot reconnect"))

    def to_message(self) -> dict:
        message = super().to_message()
        message["reason"] = self.reason
        return message


# =============================================================================
# Resource exhaustion
# =============================================================================

class ResourceExhaustion(GameError):
    code = "RESOURCE_EXHAUSTION"


class InsufficientCards(ResourceExhaustion):
    code = "INSUFFICIENT_CARDS"
    default_message = "Not enough cards in the deck"


class UnrecoverableEmptyDeck(ResourceExhaustion):
    code = "UNRECOVERABLE_EMPTY_DECK"
    default_message = "The deck is empty and there is nothing to reshuffle"


# =============================================================================
# Invariant violations
# =============================================================================

class InvariantViolation(GameError):
    """Room state is corrupt. The room must be discarded, not repaired."""

    code = "INVARIANT_VIOLATION"
    default_message = "Internal error: game state is inconsistent"

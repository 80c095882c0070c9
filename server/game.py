"""
Game logic for Uno.

This module implements the authoritative game mechanics: the canonical deck,
card legality, special-card effects, the wild-card color handshake and turn
order. Nothing here touches the network; handlers.py drives a Game and
broadcasts what it returns.

Uno Rules Summary:
    - Each player is dealt 7 cards; one card starts the discard pile
    - On your turn: play a card matching the top card's color or value,
      play a wild, or draw one card (which ends your turn)
    - Skip skips the next player, Reverse flips direction (acts as Skip
      with two players), Draw Two / Wild Draw Four make the next player
      draw and lose their turn
    - A wild card is followed by a color choice from the player who played it
    - Wild Draw Four may only be played when you hold no card of the
      current color
    - First player to empty their hand wins

Turn Flow:
    IN_PROGRESS --play wild--> AWAITING_COLOR --select color--> IN_PROGRESS
    IN_PROGRESS/AWAITING_COLOR --last card played--> FINISHED
"""

import logging
import random
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from constants import (
    COPIES_PER_COLOR,
    DECK_SIZE,
    DRAW_PENALTIES,
    HAND_SIZE,
    MAX_PLAYERS,
    MIN_PLAYERS,
    SINGLE_COPY_VALUES,
    WILD_COPIES,
    WILD_VALUES,
)
from errors import (
    ColorSelectionPending,
    GameAlreadyStarted,
    GameNotInProgress,
    IdentityTaken,
    IllegalCard,
    IllegalDrawFour,
    InsufficientCards,
    InvalidCardIndex,
    InvalidColor,
    InvalidSeat,
    InvariantViolation,
    NoPendingColor,
    NotEnoughPlayers,
    NotYourTurn,
    ResourceExhaustion,
    RoomFull,
    UnrecoverableEmptyDeck,
)

logger = logging.getLogger(__name__)


class Color(str, Enum):
    """Card colors. WILD is only ever the intrinsic color of wild cards."""

    RED = "red"
    GREEN = "green"
    BLUE = "blue"
    YELLOW = "yellow"
    WILD = "wild"


class Value(str, Enum):
    """Card faces: numbers, colored action cards and the two wild faces."""

    ZERO = "0"
    ONE = "1"
    TWO = "2"
    THREE = "3"
    FOUR = "4"
    FIVE = "5"
    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    SKIP = "skip"
    REVERSE = "reverse"
    DRAW_TWO = "draw_two"
    WILD = "wild"
    DRAW_FOUR = "draw_four"


# Colors a player may name for a wild card, in tie-break order
CHOOSABLE_COLORS: tuple[Color, ...] = (Color.RED, Color.GREEN, Color.BLUE, Color.YELLOW)


@dataclass(eq=False)
class Card:
    """
    A single Uno card.

    Cards compare by identity so two red 5s in the same hand stay distinct.
    Use `key` when comparing faces.

    Attributes:
        color: Intrinsic color (WILD for wild and draw-four cards).
        value: Face value.
        selected_color: Color named for a played wild card, None until resolved.
    """

    color: Color
    value: Value
    selected_color: Optional[Color] = None

    def __post_init__(self) -> None:
        self.color = Color(self.color)
        self.value = Value(self.value)
        if (self.color == Color.WILD) != (self.value.value in WILD_VALUES):
            raise ValueError(f"Invalid card: {self.color.value} {self.value.value}")
        if self.selected_color is not None:
            self.selected_color = Color(self.selected_color)

    @property
    def is_wild(self) -> bool:
        return self.color == Color.WILD

    @property
    def effective_color(self) -> Color:
        """The color the next card must match."""
        return self.selected_color or self.color

    @property
    def key(self) -> tuple[Color, Value]:
        return (self.color, self.value)

    def to_dict(self) -> dict:
        """Convert card to dictionary for JSON serialization."""
        return {
            "color": self.color.value,
            "value": self.value.value,
            "selected_color": self.selected_color.value if self.selected_color else None,
        }


def build_canonical_deck() -> list[Card]:
    """
    Build the fixed 108-card Uno deck, unshuffled.

    Per color: one 0 and two of every other colored face. Then four Wild and
    four Wild Draw Four.
    """
    cards: list[Card] = []
    for color in CHOOSABLE_COLORS:
        for value in Value:
            if value.value in WILD_VALUES:
                continue
            copies = 1 if value.value in SINGLE_COPY_VALUES else COPIES_PER_COLOR
            cards.extend(Card(color, value) for _ in range(copies))

    for _ in range(WILD_COPIES):
        cards.append(Card(Color.WILD, Value.WILD))
        cards.append(Card(Color.WILD, Value.DRAW_FOUR))

    return cards


CANONICAL_COUNTS: Counter = Counter(card.key for card in build_canonical_deck())


class Deck:
    """
    The draw pile for one room, used as a stack (cards leave from the tail).

    Each deck owns its own random generator. Passing a seed makes shuffles
    reproducible in tests; otherwise the seed comes from system entropy.
    """

    def __init__(self, cards: Optional[list[Card]] = None, seed: Optional[int] = None) -> None:
        """
        Initialize a deck.

        Args:
            cards: Initial cards, bottom first. Defaults to a fresh canonical deck.
            seed: Optional random seed for deterministic shuffles.
        """
        self.cards: list[Card] = list(cards) if cards is not None else build_canonical_deck()
        self.seed: int = seed if seed is not None else random.SystemRandom().randrange(2**63)
        self._rng = random.Random(self.seed)
        self.recycle_count = 0

    def __len__(self) -> int:
        return len(self.cards)

    def shuffle(self) -> None:
        """Uniformly permute the cards in place (Fisher-Yates)."""
        self._rng.shuffle(self.cards)

    def deal(self, count: int) -> list[Card]:
        """
        Remove and return `count` cards from the top of the deck.

        Raises:
            InsufficientCards: If fewer than `count` cards remain. The deck is
                left untouched; the caller must recycle first.
        """
        if count < 0:
            raise ValueError("count must be non-negative")
        if count > len(self.cards):
            raise InsufficientCards(f"Cannot deal {count} cards from a deck of {len(self.cards)}")
        dealt = [self.cards.pop() for _ in range(count)]
        return dealt

    def draw(self) -> Card:
        """Draw the top card."""
        return self.deal(1)[0]

    def add_cards(self, cards: list[Card]) -> None:
        """Add cards to the deck and shuffle."""
        self.cards.extend(cards)
        self.shuffle()

    def recycle(self, discard_pile: list[Card]) -> None:
        """
        Rebuild the deck from the discard pile.

        Everything but the top discard is cleared of any chosen wild color,
        moved into the deck and shuffled. The discard pile is trimmed in place
        to just its top card.

        Raises:
            UnrecoverableEmptyDeck: If the discard pile has one card or fewer.
        """
        if len(discard_pile) <= 1:
            raise UnrecoverableEmptyDeck(
                f"Deck has {len(self.cards)} cards and discard pile has {len(discard_pile)}"
            )

        top_card = discard_pile[-1]
        recycled = discard_pile[:-1]
        for card in recycled:
            card.selected_color = None

        discard_pile[:] = [top_card]
        self.add_cards(recycled)
        self.recycle_count += 1

    def cards_remaining(self) -> int:
        """Return the number of cards left in the deck."""
        return len(self.cards)


@dataclass
class Player:
    """
    A seat in an Uno game.

    The seat index is the player's position in Game.players. Transport
    details (socket, connection id) live on room.RoomPlayer.

    Attributes:
        name: Display name, unique within the room (the player's identity).
        hand: Cards held. Only Game methods mutate it.
        connected: False while the seat is in its disconnect grace period.
    """

    name: str
    hand: list[Card] = field(default_factory=list)
    connected: bool = True

    def holds_color(self, color: Color) -> bool:
        """Whether any card in hand has this intrinsic color."""
        return any(card.color == color for card in self.hand)

    def hand_to_dict(self) -> list[dict]:
        return [card.to_dict() for card in self.hand]


class GamePhase(Enum):
    """
    Phases of an Uno room.

    Flow: LOBBY -> IN_PROGRESS <-> AWAITING_COLOR -> FINISHED
    """

    LOBBY = "lobby"                    # Waiting for players to join
    IN_PROGRESS = "in_progress"        # Current player must play or draw
    AWAITING_COLOR = "awaiting_color"  # Wild played, its color not yet chosen
    FINISHED = "finished"              # Someone emptied their hand


ACTIVE_PHASES = (GamePhase.IN_PROGRESS, GamePhase.AWAITING_COLOR)


@dataclass
class TurnResult:
    """
    What a single engine operation did, for the gateway to announce.

    Attributes:
        player: Name of the acting player.
        card: Card played (or the wild whose color was resolved).
        drawn: Cards the acting player drew (private to them).
        awaiting_color: A wild was played and its color is outstanding.
        selected_color: Color applied to a wild during this operation.
        auto_selected: The color was picked by the server for an absent player.
        penalty_player: Player forced to draw by Draw Two / Wild Draw Four.
        penalty_cards: Cards that player drew (private to them).
        skipped_player: Player whose turn was skipped by an effect.
        winner: Set when this operation ended the game.
        recycles: How many times the discard pile was reshuffled.
    """

    player: str
    card: Optional[Card] = None
    drawn: list[Card] = field(default_factory=list)
    awaiting_color: bool = False
    selected_color: Optional[Color] = None
    auto_selected: bool = False
    penalty_player: Optional[str] = None
    penalty_cards: list[Card] = field(default_factory=list)
    skipped_player: Optional[str] = None
    winner: Optional[str] = None
    recycles: int = 0


@dataclass
class _Snapshot:
    """Pre-operation state used to roll back on deck exhaustion."""

    deck_cards: list[Card]
    recycle_count: int
    discard_pile: list[Card]
    selected_colors: list[tuple[Card, Optional[Color]]]
    hands: list[list[Card]]
    current_turn_index: int
    direction: int
    phase: GamePhase
    winner: Optional[str]


@dataclass
class Game:
    """
    Main game state and turn engine for one Uno room.

    Every public mutating method validates first and raises a GameError
    subclass without touching state when the request is illegal.

    Attributes:
        players: Seats in turn order.
        deck: The draw pile (None until the game starts).
        discard_pile: Played cards; the last one is the top card.
        current_turn_index: Seat whose turn it is.
        direction: +1 for ascending seat order, -1 after an odd number of reverses.
        phase: Current phase.
        winner: Name of the player who emptied their hand.
        forfeited_hands: Hands of removed seats, kept out of play.
        max_players: Seat limit.
        seed: Optional shuffle seed (tests).
    """

    players: list[Player] = field(default_factory=list)
    deck: Optional[Deck] = None
    discard_pile: list[Card] = field(default_factory=list)
    current_turn_index: int = 0
    direction: int = 1
    phase: GamePhase = GamePhase.LOBBY
    winner: Optional[str] = None
    forfeited_hands: list[list[Card]] = field(default_factory=list)
    max_players: int = MAX_PLAYERS
    seed: Optional[int] = None

    # -------------------------------------------------------------------------
    # Player Management
    # -------------------------------------------------------------------------

    def add_player(self, name: str) -> Player:
        """
        Seat a new player at the end of the turn order.

        Raises:
            GameAlreadyStarted: If the game has left the lobby.
            RoomFull: If every seat is taken.
            IdentityTaken: If the name is already seated.
        """
        if self.phase != GamePhase.LOBBY:
            raise GameAlreadyStarted()
        if len(self.players) >= self.max_players:
            raise RoomFull()
        if self.get_player(name):
            raise IdentityTaken()

        player = Player(name=name)
        self.players.append(player)
        return player

    def remove_seat(self, seat: int) -> Player:
        """
        Permanently remove a seat (forfeit or leave).

        The seat's hand goes out of play. Later seats shift down by one. If the
        removed seat held the turn, the turn passes to whoever would have
        played next. A wild the seat left unresolved gets a color first. A
        game left with one seat is won by that seat.

        Returns:
            The removed Player.
        """
        self._require_seat(seat)

        if self.phase == GamePhase.AWAITING_COLOR and seat == self.current_turn_index:
            self._resolve_abandoned_wild(self.players[seat])

        removed = self.players.pop(seat)
        if self.phase != GamePhase.LOBBY and removed.hand:
            self.forfeited_hands.append(removed.hand)
        removed.hand = []

        remaining = len(self.players)
        if remaining == 0:
            self.current_turn_index = 0
        elif seat < self.current_turn_index:
            self.current_turn_index -= 1
        elif seat == self.current_turn_index:
            if self.direction == 1:
                self.current_turn_index = seat % remaining
            else:
                self.current_turn_index = (seat - 1) % remaining

        if self.phase in ACTIVE_PHASES and remaining == 1:
            self._finish(self.players[0])

        return removed

    def get_player(self, name: str) -> Optional[Player]:
        """Find a seated player by name."""
        for player in self.players:
            if player.name == name:
                return player
        return None

    def seat_of(self, name: str) -> Optional[int]:
        """Seat index of a player, or None if not seated."""
        for i, player in enumerate(self.players):
            if player.name == name:
                return i
        return None

    def current_player(self) -> Optional[Player]:
        """Get the player whose turn it currently is."""
        if self.players:
            return self.players[self.current_turn_index]
        return None

    def top_card(self) -> Optional[Card]:
        """Get the top card of the discard pile."""
        if self.discard_pile:
            return self.discard_pile[-1]
        return None

    # -------------------------------------------------------------------------
    # Game Lifecycle
    # -------------------------------------------------------------------------

    def start(self, hand_size: int = HAND_SIZE) -> None:
        """
        Deal a new game.

        Shuffles a fresh canonical deck, deals `hand_size` cards to each seat,
        then turns up the first discard. A wild or draw-four turned up is
        shuffled back in and another card drawn.

        Raises:
            GameAlreadyStarted: If not in the lobby.
            NotEnoughPlayers: If fewer than the minimum seats are filled.
            InsufficientCards: If the hands would not leave a starting discard.
        """
        if self.phase != GamePhase.LOBBY:
            raise GameAlreadyStarted()
        if len(self.players) < MIN_PLAYERS:
            raise NotEnoughPlayers(f"Need at least {MIN_PLAYERS} players")
        if hand_size * len(self.players) >= DECK_SIZE:
            raise InsufficientCards(f"Cannot deal {hand_size} cards to {len(self.players)} players")

        deck = Deck(seed=self.seed)
        deck.shuffle()
        hands = [deck.deal(hand_size) for _ in self.players]

        first_discard = deck.draw()
        while first_discard.is_wild:
            deck.add_cards([first_discard])
            first_discard = deck.draw()

        for player, hand in zip(self.players, hands):
            player.hand[:] = hand
        self.deck = deck
        self.discard_pile = [first_discard]
        self.current_turn_index = 0
        self.direction = 1
        self.winner = None
        self.forfeited_hands = []
        self.phase = GamePhase.IN_PROGRESS

    def _finish(self, winner: Player) -> None:
        self.phase = GamePhase.FINISHED
        self.winner = winner.name
        logger.debug(f"Game finished, winner={winner.name}")

    # -------------------------------------------------------------------------
    # Turn Actions
    # -------------------------------------------------------------------------

    def is_playable(self, card: Card) -> bool:
        """Whether a card may legally be placed on the current top card."""
        top = self.top_card()
        if top is None or card.is_wild:
            return True
        return card.color == top.effective_color or card.value == top.value

    def play_card(self, seat: int, card_index: int) -> TurnResult:
        """
        Play a card from hand onto the discard pile.

        Non-wild cards resolve their effect immediately and pass the turn.
        Wild cards move the game to AWAITING_COLOR. Emptying the hand ends the
        game before anything else resolves.

        Args:
            seat: Acting seat.
            card_index: Position of the card in the seat's hand.
        """
        self._require_turn(seat)
        player = self.players[seat]

        if (
            not isinstance(card_index, int)
            or isinstance(card_index, bool)
            or not 0 <= card_index < len(player.hand)
        ):
            raise InvalidCardIndex()

        card = player.hand[card_index]
        if not self.is_playable(card):
            raise IllegalCard()
        if card.value == Value.DRAW_FOUR and player.holds_color(self.top_card().effective_color):
            raise IllegalDrawFour()

        result = TurnResult(player=player.name, card=card)
        with self._transaction(result):
            player.hand.pop(card_index)
            self.discard_pile.append(card)

            if not player.hand:
                self._finish(player)
                result.winner = player.name
            elif card.is_wild:
                self.phase = GamePhase.AWAITING_COLOR
                result.awaiting_color = True
            else:
                self._resolve_effect(card, result)

        return result

    def select_color(self, seat: int, color: str) -> TurnResult:
        """
        Name the color for the wild card just played by `seat`.

        Resolves the wild's effect (Wild Draw Four makes the next player draw
        four and lose their turn) and passes the turn. If the deck cannot cover
        the penalty, the color still applies and the turn passes one seat.
        """
        if self.phase == GamePhase.IN_PROGRESS:
            raise NoPendingColor()
        if self.phase != GamePhase.AWAITING_COLOR:
            raise GameNotInProgress()
        self._require_seat(seat)
        if seat != self.current_turn_index:
            raise NotYourTurn()

        chosen = self._parse_color(color)
        player = self.players[seat]
        result = TurnResult(player=player.name, card=self.top_card(), selected_color=chosen)
        self._complete_wild_or_pass(chosen, result)
        return result

    def draw_card(self, seat: int) -> TurnResult:
        """Draw one card and pass the turn."""
        self._require_turn(seat)
        player = self.players[seat]

        result = TurnResult(player=player.name)
        with self._transaction(result):
            card = self._draw_one()
            player.hand.append(card)
            result.drawn.append(card)
            self._advance(1)
        return result

    def skip_turn(self, seat: int) -> TurnResult:
        """
        Force the current seat to pass (used when its player is away).

        A wild left waiting for a color gets one picked for it first.
        """
        if self.phase not in ACTIVE_PHASES:
            raise GameNotInProgress()
        self._require_seat(seat)
        if seat != self.current_turn_index:
            raise NotYourTurn()

        player = self.players[seat]
        result = TurnResult(player=player.name)
        if self.phase == GamePhase.AWAITING_COLOR:
            result.card = self.top_card()
            result.selected_color = self._auto_color(player)
            result.auto_selected = True
            self._complete_wild_or_pass(result.selected_color, result)
        else:
            self._advance(1)
        return result

    # -------------------------------------------------------------------------
    # Effect Resolution
    # -------------------------------------------------------------------------

    def _complete_wild(self, color: Color, result: TurnResult) -> None:
        top = self.top_card()
        top.selected_color = color
        self.phase = GamePhase.IN_PROGRESS
        self._resolve_effect(top, result)

    def _resolve_effect(self, card: Card, result: TurnResult) -> None:
        """Apply a fully placed card's effect and move the turn pointer."""
        if card.value == Value.SKIP:
            result.skipped_player = self.players[self._seat_after(1)].name
            self._advance(2)
        elif card.value == Value.REVERSE:
            self.direction = -self.direction
            if len(self.players) == 2:
                result.skipped_player = self.players[self._seat_after(1)].name
                self._advance(2)
            else:
                self._advance(1)
        elif card.value.value in DRAW_PENALTIES:
            victim = self.players[self._seat_after(1)]
            for _ in range(DRAW_PENALTIES[card.value.value]):
                drawn = self._draw_one()
                victim.hand.append(drawn)
                result.penalty_cards.append(drawn)
            result.penalty_player = victim.name
            result.skipped_player = victim.name
            self._advance(2)
        else:
            self._advance(1)

    def _complete_wild_or_pass(self, color: Color, result: TurnResult) -> None:
        """
        Resolve a pending wild. If its penalty cannot be drawn, apply the
        color and pass the turn without the penalty so the room keeps moving.
        """
        try:
            with self._transaction(result):
                self._complete_wild(color, result)
        except ResourceExhaustion:
            logger.warning("Deck exhausted resolving wild, applying color only")
            result.penalty_player = None
            result.penalty_cards = []
            result.skipped_player = None
            self.top_card().selected_color = color
            self.phase = GamePhase.IN_PROGRESS
            self._advance(1)

    def _resolve_abandoned_wild(self, player: Player) -> None:
        """Pick a color for a wild whose player is leaving."""
        self._complete_wild_or_pass(self._auto_color(player), TurnResult(player=player.name))

    def _auto_color(self, player: Player) -> Color:
        """The color the player holds most of (ties go to the earlier color)."""
        counts = Counter(card.color for card in player.hand if not card.is_wild)
        return max(CHOOSABLE_COLORS, key=lambda color: counts[color])

    def _draw_one(self) -> Card:
        """Draw a card, reshuffling the discard pile first if the deck is empty."""
        if not self.deck.cards:
            self.deck.recycle(self.discard_pile)
        return self.deck.draw()

    def _seat_after(self, steps: int) -> int:
        return (self.current_turn_index + steps * self.direction) % len(self.players)

    def _advance(self, steps: int) -> None:
        self.current_turn_index = self._seat_after(steps)

    # -------------------------------------------------------------------------
    # Validation helpers
    # -------------------------------------------------------------------------

    def _require_seat(self, seat: int) -> None:
        if not isinstance(seat, int) or isinstance(seat, bool) or not 0 <= seat < len(self.players):
            raise InvalidSeat()

    def _require_turn(self, seat: int) -> None:
        if self.phase == GamePhase.AWAITING_COLOR:
            raise ColorSelectionPending()
        if self.phase != GamePhase.IN_PROGRESS:
            raise GameNotInProgress()
        self._require_seat(seat)
        if seat != self.current_turn_index:
            raise NotYourTurn()

    @staticmethod
    def _parse_color(color: str) -> Color:
        try:
            chosen = Color(color)
        except ValueError:
            raise InvalidColor() from None
        if chosen not in CHOOSABLE_COLORS:
            raise InvalidColor()
        return chosen

    # -------------------------------------------------------------------------
    # Atomicity
    # -------------------------------------------------------------------------

    @contextmanager
    def _transaction(self, result: TurnResult) -> Iterator[None]:
        """
        Run a compound mutation; restore the prior state if the deck runs dry.

        Sets result.recycles on success.
        """
        snapshot = self._snapshot()
        try:
            yield
        except ResourceExhaustion:
            self._restore(snapshot)
            logger.warning(
                f"Deck exhausted during {result.player}'s action, state rolled back "
                f"(deck={len(self.deck.cards)}, discard={len(self.discard_pile)})"
            )
            raise
        result.recycles = self.deck.recycle_count - snapshot.recycle_count

    def _snapshot(self) -> _Snapshot:
        return _Snapshot(
            deck_cards=list(self.deck.cards),
            recycle_count=self.deck.recycle_count,
            discard_pile=list(self.discard_pile),
            selected_colors=[(card, card.selected_color) for card in self.discard_pile],
            hands=[list(player.hand) for player in self.players],
            current_turn_index=self.current_turn_index,
            direction=self.direction,
            phase=self.phase,
            winner=self.winner,
        )

    def _restore(self, snapshot: _Snapshot) -> None:
        self.deck.cards = snapshot.deck_cards
        self.deck.recycle_count = snapshot.recycle_count
        self.discard_pile = snapshot.discard_pile
        for card, selected in snapshot.selected_colors:
            card.selected_color = selected
        for player, hand in zip(self.players, snapshot.hands):
            player.hand[:] = hand
        self.current_turn_index = snapshot.current_turn_index
        self.direction = snapshot.direction
        self.phase = snapshot.phase
        self.winner = snapshot.winner

    # -------------------------------------------------------------------------
    # Invariants & State
    # -------------------------------------------------------------------------

    def all_cards(self) -> list[Card]:
        """Every card the room accounts for: deck, discard, hands, forfeited hands."""
        cards: list[Card] = list(self.deck.cards) if self.deck else []
        cards.extend(self.discard_pile)
        for player in self.players:
            cards.extend(player.hand)
        for hand in self.forfeited_hands:
            cards.extend(hand)
        return cards

    def check_invariants(self) -> None:
        """
        Verify card accounting and the turn pointer.

        Raises:
            InvariantViolation: Describing the first problem found.
        """
        if self.phase == GamePhase.LOBBY:
            return

        seats = len(self.players)
        if seats and not 0 <= self.current_turn_index < seats:
            raise InvariantViolation(
                f"Turn index {self.current_turn_index} out of range for {seats} seats"
            )
        if self.direction not in (1, -1):
            raise InvariantViolation(f"Invalid direction {self.direction}")

        cards = self.all_cards()
        if len({id(card) for card in cards}) != len(cards):
            raise InvariantViolation("A card is held in more than one place")

        counts = Counter(card.key for card in cards)
        if counts != CANONICAL_COUNTS:
            missing = CANONICAL_COUNTS - counts
            extra = counts - CANONICAL_COUNTS
            raise InvariantViolation(
                f"Card accounting mismatch: {sum(counts.values())} cards, "
                f"missing={[f'{c.value} {v.value}' for c, v in missing.elements()]}, "
                f"extra={[f'{c.value} {v.value}' for c, v in extra.elements()]}"
            )

        for card in cards:
            if card.selected_color is not None and not card.is_wild:
                raise InvariantViolation(f"Non-wild card {card.key} carries a selected color")

        top = self.top_card()
        if (
            top is not None
            and top.is_wild
            and top.selected_color is None
            and self.phase not in (GamePhase.AWAITING_COLOR, GamePhase.FINISHED)
        ):
            raise InvariantViolation("Top card is an unresolved wild outside color selection")

    def get_state(self, for_player: Optional[str]) -> dict:
        """
        Get the game state as seen from one seat.

        The requesting player sees their own hand; everyone else is reduced
        to a card count.

        Args:
            for_player: Name of the player who will receive this state.

        Returns:
            Dict suitable for JSON serialization.
        """
        current = self.current_player() if self.phase in ACTIVE_PHASES else None
        top = self.top_card()
        me = self.get_player(for_player) if for_player else None

        players_data = [
            {
                "seat": seat,
                "name": player.name,
                "card_count": len(player.hand),
                "connected": player.connected,
                "is_current": current is player,
            }
            for seat, player in enumerate(self.players)
        ]

        return {
            "phase": self.phase.value,
            "players": players_data,
            "seat": self.seat_of(for_player) if for_player else None,
            "hand": me.hand_to_dict() if me else [],
            "top_card": top.to_dict() if top else None,
            "current_color": top.effective_color.value if top else None,
            "current_player": current.name if current else None,
            "current_turn_index": self.current_turn_index,
            "direction": self.direction,
            "awaiting_color": self.phase == GamePhase.AWAITING_COLOR,
            "deck_remaining": self.deck.cards_remaining() if self.deck else 0,
            "discard_count": len(self.discard_pile),
            "winner": self.winner,
        }

"""
Deck composition and game constants for Uno.

This module is the single source of truth for what a canonical deck holds.
Room limits and the opening hand size come from config.py so they can be
tuned per deployment via environment variables.

Canonical 108-card deck:
    - Per color (red, green, blue, yellow): one 0, two each of 1-9,
      two Skip, two Reverse, two Draw Two (25 cards)
    - 4 Wild
    - 4 Wild Draw Four
"""

from config import config

# =============================================================================
# Deck Composition
# =============================================================================

WILD_VALUES: tuple[str, ...] = ("wild", "draw_four")

SINGLE_COPY_VALUES = frozenset({"0"})
COPIES_PER_COLOR = 2
WILD_COPIES = 4

DECK_SIZE = 108

# Cards the victim of a draw effect must take
DRAW_PENALTIES: dict[str, int] = {
    "draw_two": 2,
    "draw_four": 4,
}


# =============================================================================
# Game Constants
# =============================================================================

MAX_PLAYERS = config.MAX_PLAYERS_PER_ROOM
MIN_PLAYERS = config.MIN_PLAYERS_TO_START
ROOM_CODE_LENGTH = config.ROOM_CODE_LENGTH
HAND_SIZE = config.HAND_SIZE
MAX_NAME_LENGTH = 32

"""
Bot-wide constants for the Arena Duel Bot.

Collects the fixed numbers used by the rating engine, the skip quota
and tournament scoring so they live in one place.
"""

class RatingConstants:
    """Constants for the difficulty-based rating delta."""

    MIN_DIFFICULTY = 1
    MAX_DIFFICULTY = 10

    # delta = BASE_CHANGE + difficulty * DIFFICULTY_STEP
    BASE_CHANGE = 10
    DIFFICULTY_STEP = 7

    # Wrong answers lose this fraction of the base change (floored)
    LOSS_FACTOR = 0.8

    RATING_FLOOR = 0

class SkipConstants:
    """Constants for the daily skip quota."""

    MAX_SKIPS_PER_DAY = 3

class ArenaConstants:
    """Constants for arena tournaments."""

    ARENA_WIN_POINTS = 2

    # A streak of this length puts a player "on fire" and doubles win points
    ON_FIRE_STREAK = 2
    ON_FIRE_MULTIPLIER = 2

class SwissConstants:
    """Constants for Swiss tournaments."""

    WIN_POINTS = 1
    BYE_POINTS = 1

class UIConstants:
    """Constants for Discord UI elements."""

    DEFAULT_EMBED_COLOR = 0x3498db  # Blue
    ERROR_COLOR = 0xe74c3c         # Red for errors
    SUCCESS_COLOR = 0x2ecc71       # Green for success

    FIRE_EMOJI = "🔥"
    SWORDS_EMOJI = "⚔️"
    TROPHY_EMOJI = "🏆"

import math
from typing import Tuple

from arena_bot.constants import RatingConstants

class RatingCalculator:
    """Handles difficulty-based rating deltas for graded attempts"""

    @staticmethod
    def clamp_difficulty(difficulty: int) -> int:
        """
        Clamp a problem difficulty into the supported range

        Callers are expected to pass 1-10; anything outside is pulled to the
        nearest bound rather than rejected.
        """
        return max(RatingConstants.MIN_DIFFICULTY,
                   min(RatingConstants.MAX_DIFFICULTY, int(difficulty)))

    @staticmethod
    def base_change(difficulty: int) -> int:
        """Rating at stake for a problem of the given difficulty"""
        difficulty = RatingCalculator.clamp_difficulty(difficulty)
        return RatingConstants.BASE_CHANGE + difficulty * RatingConstants.DIFFICULTY_STEP

    @staticmethod
    def compute_delta(difficulty: int, correct: bool) -> int:
        """
        Calculate the rating change for one graded attempt

        Args:
            difficulty: Problem difficulty, 1 (easy) to 10 (hard)
            correct: Whether the attempt was graded correct

        Returns:
            +base for a correct attempt, -floor(base * 0.8) otherwise
        """
        base = RatingCalculator.base_change(difficulty)
        if correct:
            return base
        return -math.floor(base * RatingConstants.LOSS_FACTOR)

    @staticmethod
    def duel_deltas(difficulty: int) -> Tuple[int, int]:
        """
        Calculate rating changes for both sides of a decided duel

        Returns:
            Tuple of (winner_delta, loser_delta)
        """
        return (
            RatingCalculator.compute_delta(difficulty, True),
            RatingCalculator.compute_delta(difficulty, False),
        )


def compute_delta(difficulty: int, correct: bool) -> int:
    """Module-level shortcut for RatingCalculator.compute_delta"""
    return RatingCalculator.compute_delta(difficulty, correct)

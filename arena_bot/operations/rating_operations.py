"""
Rating Operations Module

Applies rating deltas to the per-user statistics row. The merge is done as a
single conditional UPDATE at the storage boundary (clamp included), so two
duels resolving at the same moment for the same user both land instead of
one overwriting the other.
"""

from dataclasses import dataclass
from typing import Iterable, Optional
from sqlalchemy import select, update, case
from sqlalchemy.ext.asyncio import AsyncSession

from arena_bot.config import Config
from arena_bot.constants import RatingConstants
from arena_bot.database.database import Database, insert_if_absent
from arena_bot.database.models import UserRating
from arena_bot.services.rating_cache import CachedRatingService
from arena_bot.utils.exceptions import require_actor, storage_guard
from arena_bot.utils.logger import setup_logger
from arena_bot.utils.rating import RatingCalculator
from arena_bot.utils.time_utils import utc_now

logger = setup_logger(__name__)


@dataclass
class AttemptResult:
    """Result of grading a single practice attempt"""
    correct: bool
    rating_delta: int
    rating: UserRating


class RatingOperations:
    """
    Service class for rating updates.

    Owns the insert-if-absent + atomic increment-and-clamp write path for
    UserRating rows and keeps the cached read side in sync.
    """

    def __init__(self, db: Database, cache: Optional[CachedRatingService] = None):
        self.db = db
        self.cache = cache
        self.logger = setup_logger(f"{__name__}.RatingOperations")

    async def apply_delta(
        self,
        user_id: Optional[int],
        rating_delta: int,
        points_delta: int = 0,
        solved_increment: int = 0,
        session: Optional[AsyncSession] = None
    ) -> UserRating:
        """
        Merge a delta into a user's cumulative statistics.

        Missing rows start at the default rating. Rating is clamped at the
        floor, negative point deltas are ignored and problems_solved only
        grows. All three fields change in one statement.

        Args:
            user_id: Acting user whose row is updated
            rating_delta: Signed rating change
            points_delta: Points earned; values below zero count as zero
            solved_increment: 0 or 1
            session: Optional existing session; the caller then owns the
                commit and cache invalidation

        Returns:
            The updated UserRating row

        Raises:
            UnauthenticatedError: If user_id is None
            StorageFailureError: If the read or write fails
        """
        require_actor(user_id, "apply_delta")
        if solved_increment not in (0, 1):
            raise ValueError(f"solved_increment must be 0 or 1, got {solved_increment}")

        async def _apply(session: AsyncSession) -> UserRating:
            await insert_if_absent(session, UserRating, {
                'user_id': user_id,
                'rating': Config.STARTING_RATING,
                'total_points': 0,
                'problems_solved': 0,
            })

            new_rating = UserRating.rating + rating_delta
            stmt = (
                update(UserRating)
                .where(UserRating.user_id == user_id)
                .values(
                    rating=case(
                        (new_rating < RatingConstants.RATING_FLOOR, RatingConstants.RATING_FLOOR),
                        else_=new_rating
                    ),
                    total_points=UserRating.total_points + max(0, points_delta),
                    problems_solved=UserRating.problems_solved + solved_increment,
                    updated_at=utc_now()
                )
                .execution_options(synchronize_session=False)
            )
            await session.execute(stmt)

            result = await session.execute(
                select(UserRating)
                .where(UserRating.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one()

            self.logger.debug(
                f"Applied rating delta {rating_delta:+d} (points +{max(0, points_delta)}, "
                f"solved +{solved_increment}) to user {user_id}: now {row.rating}"
            )
            return row

        async with storage_guard("apply_delta"):
            if session:
                return await _apply(session)
            async with self.db.transaction() as txn_session:
                row = await _apply(txn_session)

        self.invalidate([user_id])
        return row

    async def record_attempt(
        self,
        user_id: Optional[int],
        difficulty: int,
        correct: bool,
        session: Optional[AsyncSession] = None
    ) -> AttemptResult:
        """
        Apply the rating change of a graded practice attempt.

        A correct attempt earns the full delta as points and counts as a
        solved problem; a wrong one only loses rating. With a session the
        caller owns the commit and cache invalidation.
        """
        require_actor(user_id, "record_attempt")
        delta = RatingCalculator.compute_delta(difficulty, correct)
        row = await self.apply_delta(
            user_id,
            rating_delta=delta,
            points_delta=abs(delta) if correct else 0,
            solved_increment=1 if correct else 0,
            session=session
        )
        self.logger.info(
            f"User {user_id} {'solved' if correct else 'missed'} a difficulty "
            f"{RatingCalculator.clamp_difficulty(difficulty)} problem ({delta:+d})"
        )
        return AttemptResult(correct=correct, rating_delta=delta, rating=row)

    async def get_rating(self, user_id: int) -> Optional[UserRating]:
        """Get a user's rating row, served from the cache when one is attached."""
        async with storage_guard("get_rating"):
            if self.cache:
                return await self.cache.get_rating(user_id)

            async with self.db.get_session() as session:
                result = await session.execute(
                    select(UserRating).where(UserRating.user_id == user_id)
                )
                return result.scalar_one_or_none()

    def invalidate(self, user_ids: Iterable[int]):
        """Drop cached rating views for users whose row just changed."""
        if not self.cache:
            return
        for user_id in user_ids:
            self.cache.invalidate_user(user_id)

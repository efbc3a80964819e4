"""
Skip Quota Operations

Bounds how many problems a user may decline per category per day. The day
is passed in explicitly (UTC calendar date by default) so every check in a
request uses the same quota window.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional
from sqlalchemy import select, update

from arena_bot.constants import SkipConstants
from arena_bot.database.database import Database, insert_if_absent
from arena_bot.database.models import DailySkip
from arena_bot.utils.exceptions import QuotaExceededError, require_actor, storage_guard
from arena_bot.utils.logger import setup_logger
from arena_bot.utils.time_utils import utc_today

logger = setup_logger(__name__)


@dataclass
class SkipQuota:
    """Skip usage for one (user, category, day)"""
    skip_count: int
    can_skip: bool
    remaining: int

    @classmethod
    def from_count(cls, skip_count: int, limit: int = SkipConstants.MAX_SKIPS_PER_DAY) -> 'SkipQuota':
        return cls(
            skip_count=skip_count,
            can_skip=skip_count < limit,
            remaining=max(0, limit - skip_count)
        )


class SkipOperations:
    """Service class for the daily per-category skip quota."""

    def __init__(self, db: Database, max_skips_per_day: int = SkipConstants.MAX_SKIPS_PER_DAY):
        self.db = db
        self.max_skips_per_day = max_skips_per_day
        self.logger = setup_logger(f"{__name__}.SkipOperations")

    async def get_quota(
        self,
        user_id: int,
        category_id: int,
        today: Optional[date] = None
    ) -> SkipQuota:
        """Look up today's skip usage; a missing row means nothing skipped yet."""
        today = today or utc_today()
        async with storage_guard("get_quota"):
            async with self.db.get_session() as session:
                result = await session.execute(
                    select(DailySkip.skip_count).where(
                        DailySkip.user_id == user_id,
                        DailySkip.category_id == category_id,
                        DailySkip.skip_date == today
                    )
                )
                skip_count = result.scalar_one_or_none() or 0

        return SkipQuota.from_count(skip_count, self.max_skips_per_day)

    async def record_skip(
        self,
        user_id: Optional[int],
        category_id: int,
        today: Optional[date] = None
    ) -> int:
        """
        Record one skip for today.

        Args:
            user_id: Acting user
            category_id: Category of the declined problem
            today: Quota day; defaults to the current UTC date

        Returns:
            The new skip count

        Raises:
            UnauthenticatedError: If user_id is None
            QuotaExceededError: If the cap is already reached (nothing is written)
            StorageFailureError: If the store fails
        """
        require_actor(user_id, "record_skip")
        today = today or utc_today()

        async with storage_guard("record_skip"):
            async with self.db.transaction() as session:
                await insert_if_absent(session, DailySkip, {
                    'user_id': user_id,
                    'category_id': category_id,
                    'skip_date': today,
                    'skip_count': 0,
                })

                # Increment only while under the cap
                result = await session.execute(
                    update(DailySkip)
                    .where(
                        DailySkip.user_id == user_id,
                        DailySkip.category_id == category_id,
                        DailySkip.skip_date == today,
                        DailySkip.skip_count < self.max_skips_per_day
                    )
                    .values(skip_count=DailySkip.skip_count + 1)
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount == 0:
                    # Raising rolls the transaction back, so the quota row is untouched
                    raise QuotaExceededError(category_id, self.max_skips_per_day)

                count_result = await session.execute(
                    select(DailySkip.skip_count).where(
                        DailySkip.user_id == user_id,
                        DailySkip.category_id == category_id,
                        DailySkip.skip_date == today
                    )
                )
                new_count = count_result.scalar_one()

        self.logger.info(
            f"User {user_id} skipped in category {category_id} "
            f"({new_count}/{self.max_skips_per_day} on {today.isoformat()})"
        )
        return new_count

    async def get_all_skips(self, user_id: int, today: Optional[date] = None) -> Dict[int, int]:
        """Skip counts for every category the user skipped in today."""
        today = today or utc_today()
        async with storage_guard("get_all_skips"):
            async with self.db.get_session() as session:
                result = await session.execute(
                    select(DailySkip.category_id, DailySkip.skip_count)
                    .where(
                        DailySkip.user_id == user_id,
                        DailySkip.skip_date == today,
                        DailySkip.skip_count > 0
                    )
                    .order_by(DailySkip.category_id)
                )
                return {category_id: count for category_id, count in result.all()}

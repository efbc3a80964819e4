"""
Cached read side for user ratings.

Keeps a short TTL cache of UserRating rows so repeated /rating lookups do
not hit the database. Every rating write invalidates the affected users.
"""

import time
from typing import Dict, Optional, Tuple
from sqlalchemy import select

from arena_bot.config import Config
from arena_bot.database.models import UserRating
from arena_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class CachedRatingService:
    """TTL cache in front of the user_ratings table."""

    def __init__(self, session_factory, ttl: int = None, max_size: int = 1000):
        self.session_factory = session_factory
        self.ttl = Config.RATING_CACHE_TTL if ttl is None else ttl
        self._cache: Dict[int, Tuple[float, Optional[UserRating]]] = {}  # user_id -> (timestamp, row)
        self._cache_max_size = max_size

    async def get_rating(self, user_id: int) -> Optional[UserRating]:
        """Get a user's rating row, or None if they have never been rated."""
        if user_id in self._cache:
            timestamp, row = self._cache[user_id]
            if time.time() - timestamp < self.ttl:
                logger.debug(f"Cache hit for user {user_id}")
                return row

        logger.debug(f"Cache miss for user {user_id}, loading fresh")
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserRating).where(UserRating.user_id == user_id)
            )
            row = result.scalar_one_or_none()

        self._cache[user_id] = (time.time(), row)

        if len(self._cache) > self._cache_max_size:
            self._cleanup_cache()

        return row

    def invalidate_user(self, user_id: int):
        """Invalidate cache for specific user."""
        if self._cache.pop(user_id, None) is not None:
            logger.debug(f"Invalidated rating cache for user {user_id}")

    def invalidate_all(self):
        """Clear entire cache."""
        logger.info("Clearing entire rating cache")
        self._cache.clear()

    def _cleanup_cache(self):
        """Drop expired entries, then the oldest ones if still over size."""
        now = time.time()
        expired = [uid for uid, (ts, _) in self._cache.items() if now - ts >= self.ttl]
        for uid in expired:
            del self._cache[uid]

        overflow = len(self._cache) - self._cache_max_size
        if overflow > 0:
            oldest = sorted(self._cache.items(), key=lambda item: item[1][0])[:overflow]
            for uid, _ in oldest:
                del self._cache[uid]

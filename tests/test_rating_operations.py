"""Tests for rating writes and the cached read side."""

import asyncio

import pytest

from arena_bot.services.rating_cache import CachedRatingService
from arena_bot.utils.exceptions import UnauthenticatedError

USER = 111
OTHER = 222


class TestApplyDelta:
    async def test_missing_row_starts_at_default(self, rating_ops):
        row = await rating_ops.apply_delta(USER, 45, points_delta=45, solved_increment=1)

        assert row.rating == 1045
        assert row.total_points == 45
        assert row.problems_solved == 1

    async def test_rating_clamps_at_zero(self, rating_ops):
        row = await rating_ops.apply_delta(USER, -5000)
        assert row.rating == 0

        row = await rating_ops.apply_delta(USER, 20)
        assert row.rating == 20

    async def test_negative_points_are_ignored(self, rating_ops):
        row = await rating_ops.apply_delta(USER, -36, points_delta=-36)
        assert row.total_points == 0
        assert row.problems_solved == 0

    async def test_solved_increment_must_be_zero_or_one(self, rating_ops):
        with pytest.raises(ValueError):
            await rating_ops.apply_delta(USER, 10, solved_increment=2)

    async def test_requires_actor(self, rating_ops):
        with pytest.raises(UnauthenticatedError):
            await rating_ops.apply_delta(None, 10)

    async def test_concurrent_deltas_all_land(self, rating_ops):
        await asyncio.gather(*[
            rating_ops.apply_delta(USER, 10, points_delta=10, solved_increment=1)
            for _ in range(5)
        ])

        row = await rating_ops.get_rating(USER)
        assert row.rating == 1050
        assert row.total_points == 50
        assert row.problems_solved == 5

    async def test_concurrent_mixed_deltas(self, rating_ops):
        await asyncio.gather(
            rating_ops.apply_delta(USER, 45),
            rating_ops.apply_delta(USER, -36),
        )

        row = await rating_ops.get_rating(USER)
        assert row.rating == 1009


class TestRecordAttempt:
    async def test_correct_attempt(self, rating_ops):
        result = await rating_ops.record_attempt(USER, 5, True)

        assert result.correct
        assert result.rating_delta == 45
        assert result.rating.rating == 1045
        assert result.rating.total_points == 45
        assert result.rating.problems_solved == 1

    async def test_incorrect_attempt(self, rating_ops):
        result = await rating_ops.record_attempt(USER, 5, False)

        assert result.rating_delta == -36
        assert result.rating.rating == 964
        assert result.rating.total_points == 0
        assert result.rating.problems_solved == 0


class TestRatingCache:
    async def test_unrated_user_is_none(self, rating_ops):
        assert await rating_ops.get_rating(OTHER) is None

    async def test_write_invalidates_cached_view(self, rating_ops, rating_cache):
        await rating_ops.apply_delta(USER, 10)
        first = await rating_ops.get_rating(USER)
        assert first.rating == 1010
        assert USER in rating_cache._cache

        await rating_ops.apply_delta(USER, 10)
        assert USER not in rating_cache._cache

        second = await rating_ops.get_rating(USER)
        assert second.rating == 1020

    async def test_cleanup_respects_max_size(self, db):
        cache = CachedRatingService(db.session_factory, ttl=60, max_size=2)
        for user_id in (1, 2, 3):
            await cache.get_rating(user_id)

        assert len(cache._cache) == 2
        assert 1 not in cache._cache

"""Tests for the problem bank and graded practice attempts."""

import pytest

from arena_bot.database.models import AnswerType
from arena_bot.utils.exceptions import (
    InvalidTransitionError, ProblemNotFoundError, UnauthenticatedError
)

OWNER_ID = 900_000_000_000_000_001
USER = 3001


class TestProblemBank:
    async def test_add_problem_is_published(self, problem_ops):
        problem = await problem_ops.add_problem(
            OWNER_ID, "Capital", "Capital of France?", " Paris ", difficulty=2
        )

        assert problem.is_published
        assert problem.answer == "Paris"
        assert problem.answer_type == AnswerType.EXACT
        assert (await problem_ops.get_problem(problem.id)).title == "Capital"

    async def test_difficulty_is_clamped(self, problem_ops):
        problem = await problem_ops.add_problem(OWNER_ID, "Hard", "...", "1", difficulty=15)
        assert problem.difficulty == 10

    async def test_add_requires_actor_and_answer(self, problem_ops):
        with pytest.raises(UnauthenticatedError):
            await problem_ops.add_problem(None, "T", "S", "A", difficulty=3)
        with pytest.raises(InvalidTransitionError):
            await problem_ops.add_problem(OWNER_ID, "T", "S", "   ", difficulty=3)

    async def test_unknown_problem(self, problem_ops):
        with pytest.raises(ProblemNotFoundError):
            await problem_ops.get_problem(12345)

    async def test_random_problem_prefers_difficulty(self, problem_ops, problem):
        hard = await problem_ops.add_problem(OWNER_ID, "Hard", "...", "9", difficulty=9)

        assert (await problem_ops.random_problem(difficulty=9)).id == hard.id
        assert (await problem_ops.random_problem(difficulty=5)).id == problem.id

    async def test_random_problem_falls_back_within_category(self, problem_ops, problem):
        other = await problem_ops.add_problem(OWNER_ID, "Other", "...", "1", difficulty=9, category_id=2)

        assert (await problem_ops.random_problem(difficulty=1, category_id=2)).id == other.id
        assert await problem_ops.random_problem(category_id=77) is None

    async def test_list_problems_by_category(self, problem_ops, problem):
        await problem_ops.add_problem(OWNER_ID, "Other", "...", "1", difficulty=3, category_id=2)

        assert [p.id for p in await problem_ops.list_problems(category_id=1)] == [problem.id]
        assert len(await problem_ops.list_problems()) == 2


class TestSubmitAttempt:
    async def test_correct_answer_is_graded_by_the_key(self, problem_ops, rating_ops, problem):
        result = await problem_ops.submit_attempt(USER, problem.id, "42")

        assert result.correct
        assert result.rating_delta == 45
        row = await rating_ops.get_rating(USER)
        assert (row.rating, row.total_points, row.problems_solved) == (1045, 45, 1)

    async def test_wrong_answer_loses_rating(self, problem_ops, problem):
        result = await problem_ops.submit_attempt(USER, problem.id, "41")

        assert not result.correct
        assert result.rating_delta == -36
        assert result.rating.rating == 964

    async def test_problem_can_be_attempted_once(self, problem_ops, rating_ops, problem):
        await problem_ops.submit_attempt(USER, problem.id, "41")

        with pytest.raises(InvalidTransitionError):
            await problem_ops.submit_attempt(USER, problem.id, "42")

        assert (await rating_ops.get_rating(USER)).rating == 964

    async def test_other_users_can_still_attempt(self, problem_ops, problem):
        await problem_ops.submit_attempt(USER, problem.id, "42")
        result = await problem_ops.submit_attempt(USER + 1, problem.id, "42")
        assert result.correct

    async def test_unknown_problem_changes_nothing(self, problem_ops, rating_ops):
        with pytest.raises(ProblemNotFoundError):
            await problem_ops.submit_attempt(USER, 999, "42")
        assert await rating_ops.get_rating(USER) is None

    async def test_attempt_requires_actor(self, problem_ops, problem):
        with pytest.raises(UnauthenticatedError):
            await problem_ops.submit_attempt(None, problem.id, "42")

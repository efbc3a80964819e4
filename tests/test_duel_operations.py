"""Tests for the 1v1 duel state machine and rating settlement."""

import asyncio

import pytest
import pytest_asyncio
from sqlalchemy.exc import SQLAlchemyError

from arena_bot.database.models import DuelResult, DuelStatus
from arena_bot.operations.duel_operations import DuelAnswer, DuelCompletion
from arena_bot.utils.exceptions import (
    DuelNotFoundError, ForbiddenError, InvalidTransitionError, ProblemNotFoundError,
    StorageFailureError, UnauthenticatedError
)

ALICE = 1001
BOB = 1002
CAROL = 1003


@pytest_asyncio.fixture
async def active_duel(duel_ops):
    duel = await duel_ops.create_duel(ALICE, difficulty=6)
    return await duel_ops.accept_duel(duel.id, BOB)


@pytest_asyncio.fixture
async def problem_duel(duel_ops, problem):
    duel = await duel_ops.create_duel(ALICE, problem_id=problem.id)
    return await duel_ops.accept_duel(duel.id, BOB)


class TestCreateAndAccept:
    async def test_create_opens_waiting_duel(self, duel_ops):
        duel = await duel_ops.create_duel(ALICE, difficulty=4)

        assert duel.status == DuelStatus.WAITING
        assert duel.challenger_id == ALICE
        assert duel.opponent_id is None
        assert duel.difficulty == 4

    async def test_difficulty_is_clamped(self, duel_ops):
        duel = await duel_ops.create_duel(ALICE, difficulty=42)
        assert duel.difficulty == 10

    async def test_create_requires_actor(self, duel_ops):
        with pytest.raises(UnauthenticatedError):
            await duel_ops.create_duel(None)

    async def test_accept_activates(self, active_duel):
        assert active_duel.status == DuelStatus.ACTIVE
        assert active_duel.opponent_id == BOB
        assert active_duel.started_at is not None

    async def test_cannot_accept_own_duel(self, duel_ops):
        duel = await duel_ops.create_duel(ALICE)
        with pytest.raises(ForbiddenError):
            await duel_ops.accept_duel(duel.id, ALICE)

    async def test_second_accept_is_rejected(self, duel_ops, active_duel):
        with pytest.raises(InvalidTransitionError):
            await duel_ops.accept_duel(active_duel.id, CAROL)

    async def test_concurrent_accepts_have_one_winner(self, duel_ops):
        duel = await duel_ops.create_duel(ALICE)

        results = await asyncio.gather(
            duel_ops.accept_duel(duel.id, BOB),
            duel_ops.accept_duel(duel.id, CAROL),
            return_exceptions=True
        )

        accepted = [r for r in results if not isinstance(r, Exception)]
        assert len(accepted) == 1
        assert sum(isinstance(r, InvalidTransitionError) for r in results) == 1
        stored = await duel_ops.get_duel(duel.id)
        assert stored.opponent_id == accepted[0].opponent_id

    async def test_unknown_duel(self, duel_ops):
        with pytest.raises(DuelNotFoundError):
            await duel_ops.accept_duel(999, BOB)


class TestCancel:
    async def test_challenger_cancels_waiting_duel(self, duel_ops):
        duel = await duel_ops.create_duel(ALICE)
        cancelled = await duel_ops.cancel_duel(duel.id, ALICE)

        assert cancelled.status == DuelStatus.CANCELLED
        assert cancelled.cancelled_at is not None

    async def test_only_challenger_may_cancel(self, duel_ops):
        duel = await duel_ops.create_duel(ALICE)
        with pytest.raises(ForbiddenError):
            await duel_ops.cancel_duel(duel.id, BOB)

        assert (await duel_ops.get_duel(duel.id)).status == DuelStatus.WAITING

    async def test_active_duel_cannot_be_cancelled(self, duel_ops, active_duel):
        with pytest.raises(InvalidTransitionError):
            await duel_ops.cancel_duel(active_duel.id, ALICE)

        assert (await duel_ops.get_duel(active_duel.id)).status == DuelStatus.ACTIVE

    async def test_cancel_requires_actor(self, duel_ops):
        duel = await duel_ops.create_duel(ALICE)
        with pytest.raises(UnauthenticatedError):
            await duel_ops.cancel_duel(duel.id, None)

    async def test_cancelled_duel_cannot_be_accepted(self, duel_ops):
        duel = await duel_ops.create_duel(ALICE)
        await duel_ops.cancel_duel(duel.id, ALICE)

        with pytest.raises(InvalidTransitionError):
            await duel_ops.accept_duel(duel.id, BOB)


class TestComplete:
    async def test_complete_applies_both_ratings(self, duel_ops, rating_ops, active_duel):
        completion = await duel_ops.complete_duel(active_duel.id, ALICE, BOB)

        assert isinstance(completion, DuelCompletion)
        assert completion.winner_delta == 52
        assert completion.loser_delta == -41
        assert completion.winner_rating.rating == 1052
        assert completion.loser_rating.rating == 959
        assert completion.duel.status == DuelStatus.COMPLETED
        assert completion.duel.result == DuelResult.CHALLENGER_WIN
        assert completion.duel.winner_id == ALICE

        winner = await rating_ops.get_rating(ALICE)
        loser = await rating_ops.get_rating(BOB)
        assert (winner.rating, winner.total_points, winner.problems_solved) == (1052, 52, 1)
        assert (loser.rating, loser.total_points, loser.problems_solved) == (959, 0, 0)

    async def test_second_completion_changes_nothing(self, duel_ops, rating_ops, active_duel):
        await duel_ops.complete_duel(active_duel.id, ALICE, ALICE)

        with pytest.raises(InvalidTransitionError):
            await duel_ops.complete_duel(active_duel.id, BOB, BOB)

        assert (await rating_ops.get_rating(ALICE)).rating == 1052
        assert (await rating_ops.get_rating(BOB)).rating == 959

    async def test_concurrent_completions_apply_once(self, duel_ops, rating_ops, active_duel):
        results = await asyncio.gather(
            duel_ops.complete_duel(active_duel.id, ALICE, ALICE),
            duel_ops.complete_duel(active_duel.id, ALICE, BOB),
            return_exceptions=True
        )

        assert sum(isinstance(r, DuelCompletion) for r in results) == 1
        assert sum(isinstance(r, InvalidTransitionError) for r in results) == 1
        assert (await rating_ops.get_rating(ALICE)).rating == 1052
        assert (await rating_ops.get_rating(BOB)).rating == 959

    async def test_outsider_cannot_report(self, duel_ops, active_duel):
        with pytest.raises(ForbiddenError):
            await duel_ops.complete_duel(active_duel.id, ALICE, CAROL)

    async def test_winner_must_be_participant(self, duel_ops, active_duel):
        with pytest.raises(InvalidTransitionError):
            await duel_ops.complete_duel(active_duel.id, CAROL, ALICE)

        assert (await duel_ops.get_duel(active_duel.id)).status == DuelStatus.ACTIVE

    async def test_waiting_duel_cannot_complete(self, duel_ops):
        duel = await duel_ops.create_duel(ALICE)
        with pytest.raises(InvalidTransitionError):
            await duel_ops.complete_duel(duel.id, ALICE, ALICE)

    async def test_complete_requires_actor(self, duel_ops, active_duel):
        with pytest.raises(UnauthenticatedError):
            await duel_ops.complete_duel(active_duel.id, ALICE, None)

    async def test_failed_rating_write_rolls_back_completion(
        self, duel_ops, rating_ops, active_duel, monkeypatch
    ):
        real_apply_delta = rating_ops.apply_delta

        async def failing_for_loser(user_id, *args, **kwargs):
            if user_id == BOB:
                raise SQLAlchemyError("simulated write failure")
            return await real_apply_delta(user_id, *args, **kwargs)

        monkeypatch.setattr(rating_ops, "apply_delta", failing_for_loser)

        with pytest.raises(StorageFailureError):
            await duel_ops.complete_duel(active_duel.id, ALICE, ALICE)

        monkeypatch.undo()
        assert (await duel_ops.get_duel(active_duel.id)).status == DuelStatus.ACTIVE
        assert await rating_ops.get_rating(ALICE) is None
        assert await rating_ops.get_rating(BOB) is None

        # Nothing was half-applied, so the duel can still complete normally
        completion = await duel_ops.complete_duel(active_duel.id, ALICE, ALICE)
        assert completion.winner_rating.rating == 1052


class TestForfeit:
    async def test_forfeit_awards_the_other_side(self, duel_ops, active_duel):
        completion = await duel_ops.forfeit_duel(active_duel.id, ALICE)

        assert completion.winner_id == BOB
        assert completion.loser_id == ALICE
        assert completion.duel.result == DuelResult.OPPONENT_WIN

    async def test_outsider_cannot_forfeit(self, duel_ops, active_duel):
        with pytest.raises(ForbiddenError):
            await duel_ops.forfeit_duel(active_duel.id, CAROL)


class TestListing:
    async def test_open_duels_exclude_own_and_taken(self, duel_ops, active_duel):
        mine = await duel_ops.create_duel(CAROL)
        theirs = await duel_ops.create_duel(BOB)

        open_ids = [d.id for d in await duel_ops.list_open_duels(exclude_user_id=CAROL)]
        assert open_ids == [theirs.id]
        assert mine.id not in open_ids
        assert active_duel.id not in open_ids

    async def test_duels_for_user(self, duel_ops, active_duel):
        await duel_ops.create_duel(CAROL)

        bob_duels = await duel_ops.list_duels_for_user(BOB)
        assert [d.id for d in bob_duels] == [active_duel.id]


class TestProblemDuels:
    async def test_create_attaches_a_random_problem(self, duel_ops, problem):
        duel = await duel_ops.create_duel(ALICE, difficulty=5)

        assert duel.problem_id == problem.id
        assert duel.difficulty == 5

    async def test_duel_takes_the_problem_difficulty(self, duel_ops, problem):
        duel = await duel_ops.create_duel(ALICE, difficulty=9)

        assert duel.problem_id == problem.id
        assert duel.difficulty == problem.difficulty

    async def test_unknown_problem_is_rejected(self, duel_ops):
        with pytest.raises(ProblemNotFoundError):
            await duel_ops.create_duel(ALICE, problem_id=404)

    async def test_empty_bank_opens_duel_without_problem(self, duel_ops):
        duel = await duel_ops.create_duel(ALICE, difficulty=3)
        assert duel.problem_id is None


class TestSubmitAnswer:
    async def test_first_answer_is_graded_and_waits(self, duel_ops, problem_duel):
        submission = await duel_ops.submit_answer(problem_duel.id, ALICE, " 42 ", time_seconds=12.5)

        assert isinstance(submission, DuelAnswer)
        assert submission.correct
        assert submission.completion is None
        assert submission.duel.status == DuelStatus.ACTIVE
        assert submission.duel.challenger_answer == "42"
        assert submission.duel.challenger_correct is True
        assert submission.duel.challenger_time_seconds == 12.5
        assert submission.duel.opponent_answer is None

    async def test_faster_correct_answer_wins(self, duel_ops, rating_ops, problem_duel):
        await duel_ops.submit_answer(problem_duel.id, ALICE, "42", time_seconds=30)
        submission = await duel_ops.submit_answer(problem_duel.id, BOB, "42.0", time_seconds=12)

        completion = submission.completion
        assert completion.winner_id == BOB
        assert completion.loser_id == ALICE
        assert completion.duel.status == DuelStatus.COMPLETED
        assert completion.duel.result == DuelResult.OPPONENT_WIN
        assert (completion.winner_delta, completion.loser_delta) == (45, -36)
        assert (await rating_ops.get_rating(BOB)).rating == 1045
        assert (await rating_ops.get_rating(ALICE)).rating == 964

    async def test_wrong_answer_cannot_win_on_speed(self, duel_ops, problem_duel):
        await duel_ops.submit_answer(problem_duel.id, ALICE, "41", time_seconds=1)
        submission = await duel_ops.submit_answer(problem_duel.id, BOB, "42", time_seconds=300)

        assert submission.completion.winner_id == BOB

    async def test_tie_goes_to_challenger(self, duel_ops, problem_duel):
        await duel_ops.submit_answer(problem_duel.id, BOB, "42", time_seconds=20)
        submission = await duel_ops.submit_answer(problem_duel.id, ALICE, "42", time_seconds=20)

        assert submission.completion.winner_id == ALICE
        assert submission.completion.duel.result == DuelResult.CHALLENGER_WIN

    async def test_nobody_correct_means_no_winner(self, duel_ops, rating_ops, problem_duel):
        await duel_ops.submit_answer(problem_duel.id, ALICE, "41", time_seconds=10)
        submission = await duel_ops.submit_answer(problem_duel.id, BOB, "forty", time_seconds=11)

        completion = submission.completion
        assert completion.winner_id is None
        assert completion.loser_id is None
        assert completion.duel.result == DuelResult.NO_WINNER
        assert completion.duel.winner_id is None
        assert completion.deltas == {ALICE: -36, BOB: -36}
        for user_id in (ALICE, BOB):
            row = await rating_ops.get_rating(user_id)
            assert (row.rating, row.total_points, row.problems_solved) == (964, 0, 0)

    async def test_each_side_answers_once(self, duel_ops, problem_duel):
        await duel_ops.submit_answer(problem_duel.id, ALICE, "41", time_seconds=5)

        with pytest.raises(InvalidTransitionError):
            await duel_ops.submit_answer(problem_duel.id, ALICE, "42", time_seconds=6)

        stored = await duel_ops.get_duel(problem_duel.id)
        assert stored.challenger_answer == "41"
        assert stored.challenger_correct is False

    async def test_outsider_cannot_answer(self, duel_ops, problem_duel):
        with pytest.raises(ForbiddenError):
            await duel_ops.submit_answer(problem_duel.id, CAROL, "42")

    async def test_answer_requires_actor(self, duel_ops, problem_duel):
        with pytest.raises(UnauthenticatedError):
            await duel_ops.submit_answer(problem_duel.id, None, "42")

    async def test_waiting_duel_rejects_answers(self, duel_ops, problem):
        duel = await duel_ops.create_duel(ALICE, problem_id=problem.id)
        with pytest.raises(InvalidTransitionError):
            await duel_ops.submit_answer(duel.id, ALICE, "42")

    async def test_completed_duel_rejects_answers(self, duel_ops, problem_duel):
        await duel_ops.forfeit_duel(problem_duel.id, BOB)
        with pytest.raises(InvalidTransitionError):
            await duel_ops.submit_answer(problem_duel.id, ALICE, "42")

    async def test_duel_without_problem_can_only_be_forfeited(self, duel_ops, active_duel):
        with pytest.raises(InvalidTransitionError):
            await duel_ops.submit_answer(active_duel.id, ALICE, "42")

        completion = await duel_ops.forfeit_duel(active_duel.id, BOB)
        assert completion.winner_id == ALICE

    async def test_time_is_measured_when_not_given(self, duel_ops, problem_duel):
        submission = await duel_ops.submit_answer(problem_duel.id, ALICE, "42")

        assert submission.time_seconds >= 0
        assert submission.duel.challenger_time_seconds == submission.time_seconds

    async def test_concurrent_final_answers_settle_once(self, duel_ops, rating_ops, problem_duel):
        results = await asyncio.gather(
            duel_ops.submit_answer(problem_duel.id, ALICE, "42", time_seconds=8),
            duel_ops.submit_answer(problem_duel.id, BOB, "42", time_seconds=9),
        )

        completions = [r.completion for r in results if r.completion is not None]
        assert len(completions) == 1
        assert completions[0].winner_id == ALICE
        assert (await rating_ops.get_rating(ALICE)).rating == 1045
        assert (await rating_ops.get_rating(BOB)).rating == 964

"""Tests for the tournament lifecycle, lobby membership and scheduler tick."""

from datetime import timedelta

import pytest

from arena_bot.database.models import EntrantStatus, TournamentStatus
from arena_bot.utils.exceptions import (
    InvalidTransitionError, TournamentNotFoundError, UnauthenticatedError
)
from arena_bot.utils.time_utils import utc_now

OWNER = 42


class TestLifecycle:
    async def test_create_schedules(self, tournament_ops):
        tournament = await tournament_ops.create_tournament("Weekly", None, 45, actor_id=OWNER)

        assert tournament.status == TournamentStatus.SCHEDULED
        assert tournament.duration_minutes == 45
        assert tournament.created_by == OWNER

    async def test_create_requires_actor(self, tournament_ops):
        with pytest.raises(UnauthenticatedError):
            await tournament_ops.create_tournament("Weekly", None, 45, actor_id=None)

    async def test_create_rejects_non_positive_duration(self, tournament_ops):
        with pytest.raises(InvalidTransitionError):
            await tournament_ops.create_tournament("Weekly", None, 0, actor_id=OWNER)

    async def test_start_opens_first_arena(self, tournament_ops, arena_ops, active_tournament):
        assert active_tournament.status == TournamentStatus.ACTIVE

        arena = await arena_ops.get_current_arena(active_tournament.id)
        assert arena is not None
        assert arena.round_number == 1

    async def test_start_twice_is_rejected(self, tournament_ops, active_tournament):
        with pytest.raises(InvalidTransitionError):
            await tournament_ops.start_tournament(active_tournament.id)

    async def test_end_finishes(self, tournament_ops, arena_ops, active_tournament):
        finished = await tournament_ops.end_tournament(active_tournament.id)

        assert finished.status == TournamentStatus.FINISHED
        assert await arena_ops.get_current_arena(active_tournament.id) is None

    async def test_cannot_end_scheduled(self, tournament_ops):
        tournament = await tournament_ops.create_tournament("Weekly", None, 45, actor_id=OWNER)
        with pytest.raises(InvalidTransitionError):
            await tournament_ops.end_tournament(tournament.id)

    async def test_unknown_tournament(self, tournament_ops):
        with pytest.raises(TournamentNotFoundError):
            await tournament_ops.start_tournament(404)


class TestLobby:
    async def test_join_waits_alone(self, tournament_ops, active_tournament):
        entrant = await tournament_ops.join_tournament(active_tournament.id, 1)

        assert entrant.status == EntrantStatus.WAITING
        assert entrant.score == 0

    async def test_second_join_pairs_immediately(self, tournament_ops, active_tournament):
        await tournament_ops.join_tournament(active_tournament.id, 1)
        second = await tournament_ops.join_tournament(active_tournament.id, 2)

        assert second.status == EntrantStatus.PAIRED
        first = await tournament_ops.get_entrant(active_tournament.id, 1)
        assert first.duel_id == second.duel_id

    async def test_join_is_idempotent(self, tournament_ops, active_tournament):
        first = await tournament_ops.join_tournament(active_tournament.id, 1, pair_now=False)
        again = await tournament_ops.join_tournament(active_tournament.id, 1, pair_now=False)

        assert first.id == again.id
        assert len(await tournament_ops.list_entrants(active_tournament.id)) == 1

    async def test_join_requires_active_tournament(self, tournament_ops):
        tournament = await tournament_ops.create_tournament("Later", None, 45, actor_id=OWNER)
        with pytest.raises(InvalidTransitionError):
            await tournament_ops.join_tournament(tournament.id, 1)

    async def test_join_requires_actor(self, tournament_ops, active_tournament):
        with pytest.raises(UnauthenticatedError):
            await tournament_ops.join_tournament(active_tournament.id, None)

    async def test_withdraw_eliminates_waiting_entrant(self, tournament_ops, active_tournament):
        await tournament_ops.join_tournament(active_tournament.id, 1)
        entrant = await tournament_ops.withdraw(active_tournament.id, 1)

        assert entrant.status == EntrantStatus.ELIMINATED

    async def test_withdraw_while_paired_is_rejected(self, tournament_ops, active_tournament):
        await tournament_ops.join_tournament(active_tournament.id, 1)
        await tournament_ops.join_tournament(active_tournament.id, 2)

        with pytest.raises(InvalidTransitionError):
            await tournament_ops.withdraw(active_tournament.id, 1)

    async def test_withdraw_without_joining(self, tournament_ops, active_tournament):
        with pytest.raises(InvalidTransitionError):
            await tournament_ops.withdraw(active_tournament.id, 1)

    async def test_standings_order_by_score(self, tournament_ops, duel_ops, active_tournament):
        await tournament_ops.join_tournament(active_tournament.id, 1)
        paired = await tournament_ops.join_tournament(active_tournament.id, 2)
        await duel_ops.complete_duel(paired.duel_id, 2, 2)

        standings = await tournament_ops.list_entrants(active_tournament.id)
        assert [e.user_id for e in standings] == [2, 1]


class TestTick:
    async def test_tick_starts_due_tournaments(self, tournament_ops):
        now = utc_now()
        due = await tournament_ops.create_tournament("Due", now - timedelta(seconds=5), 30, actor_id=OWNER)
        later = await tournament_ops.create_tournament("Later", now + timedelta(hours=1), 30, actor_id=OWNER)

        result = await tournament_ops.tick(now)

        assert result.started == [due.id]
        assert (await tournament_ops.get_tournament(due.id)).status == TournamentStatus.ACTIVE
        assert (await tournament_ops.get_tournament(later.id)).status == TournamentStatus.SCHEDULED

    async def test_tick_ends_expired_tournaments(self, tournament_ops, active_tournament):
        result = await tournament_ops.tick(active_tournament.start_time + timedelta(minutes=61))

        assert result.ended == [active_tournament.id]
        assert (await tournament_ops.get_tournament(active_tournament.id)).status == TournamentStatus.FINISHED

    async def test_tick_pairs_waiting_entrants(self, tournament_ops, active_tournament):
        for user_id in (1, 2, 3):
            await tournament_ops.join_tournament(active_tournament.id, user_id, pair_now=False)

        result = await tournament_ops.tick()

        assert result.duels_created == 1
        assert result.pairing_failures == 0
        assert (await tournament_ops.get_entrant(active_tournament.id, 3)).status == EntrantStatus.WAITING

    async def test_idle_tick_does_nothing(self, tournament_ops, active_tournament):
        result = await tournament_ops.tick()

        assert result.started == []
        assert result.ended == []
        assert result.duels_created == 0

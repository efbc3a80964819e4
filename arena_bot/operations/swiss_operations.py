"""
Swiss Round Operations

Swiss tournaments play a fixed number of rounds. Every round pairs all
remaining entrants by standing, never repeating a matchup, and gives an odd
player out a one-point bye. A round is generated in a single transaction
guarded on the tournament's round counter, so two callers racing to open
the same round produce it once.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from arena_bot.config import Config
from arena_bot.constants import SwissConstants
from arena_bot.database.database import Database
from arena_bot.database.models import (
    Duel, DuelStatus, Entrant, EntrantStatus,
    Tournament, TournamentStatus, TournamentType
)
from arena_bot.operations.problem_operations import pick_problem
from arena_bot.utils.exceptions import (
    InvalidTransitionError, TournamentNotFoundError, storage_guard
)
from arena_bot.utils.logger import setup_logger
from arena_bot.utils.swiss import matchup, swiss_pairings
from arena_bot.utils.time_utils import utc_now

logger = setup_logger(__name__)


@dataclass
class SwissRound:
    """Outcome of generating one Swiss round"""
    round_number: int
    duel_ids: List[int] = field(default_factory=list)
    bye_user_id: Optional[int] = None


class SwissOperations:
    """Service class for Swiss round generation and result bookkeeping."""

    def __init__(self, db: Database, difficulty: int = None):
        self.db = db
        self.difficulty = Config.DEFAULT_DIFFICULTY if difficulty is None else difficulty
        self.logger = setup_logger(f"{__name__}.SwissOperations")

    async def generate_round(self, tournament_id: int) -> SwissRound:
        """
        Pair the next round of an active Swiss tournament.

        Raises:
            TournamentNotFoundError: If the tournament does not exist
            InvalidTransitionError: If the tournament is not an active Swiss
                tournament, all rounds were played, the previous round still
                has duels in progress, fewer than two players remain, or
                another caller opened the round first
        """
        async with storage_guard("generate_round"):
            async with self.db.transaction() as session:
                tournament = await self._load_tournament(tournament_id, session)
                if tournament.tournament_type != TournamentType.SWISS:
                    raise InvalidTransitionError(f"Tournament {tournament_id} is not a Swiss tournament")
                if tournament.status != TournamentStatus.ACTIVE:
                    raise InvalidTransitionError(
                        f"Tournament {tournament_id} is {tournament.status.value}, cannot pair a round"
                    )

                current = tournament.current_round
                next_round = current + 1
                if tournament.total_rounds is not None and next_round > tournament.total_rounds:
                    raise InvalidTransitionError(
                        f"Tournament {tournament_id} already played all {tournament.total_rounds} rounds"
                    )
                if await self.round_in_progress(tournament_id, current, session):
                    raise InvalidTransitionError(
                        f"Round {current} of tournament {tournament_id} still has duels in progress",
                        "❌ The current round is not finished yet."
                    )

                entrants = await self._standings(tournament_id, session)
                if len(entrants) < 2:
                    raise InvalidTransitionError(
                        f"Tournament {tournament_id} needs at least two players for a round"
                    )

                previous = await self._previous_matchups(tournament_id, session)
                had_bye = {e.user_id for e in entrants if e.byes > 0}
                pairs, bye_user_id = swiss_pairings([e.user_id for e in entrants], previous, had_bye)

                bump = await session.execute(
                    update(Tournament)
                    .where(Tournament.id == tournament_id, Tournament.current_round == current)
                    .values(current_round=next_round)
                    .execution_options(synchronize_session=False)
                )
                if bump.rowcount != 1:
                    raise InvalidTransitionError(
                        f"Round {next_round} of tournament {tournament_id} was already generated"
                    )

                by_user = {e.user_id: e for e in entrants}
                outcome = SwissRound(round_number=next_round, bye_user_id=bye_user_id)
                for challenger_id, opponent_id in pairs:
                    duel = await self._create_round_duel(
                        session, tournament_id, next_round, by_user[challenger_id], by_user[opponent_id]
                    )
                    outcome.duel_ids.append(duel.id)

                if bye_user_id is not None:
                    await session.execute(
                        update(Entrant)
                        .where(Entrant.id == by_user[bye_user_id].id)
                        .values(
                            score=Entrant.score + SwissConstants.BYE_POINTS,
                            byes=Entrant.byes + 1
                        )
                        .execution_options(synchronize_session=False)
                    )

        self.logger.info(
            f"Tournament {tournament_id} round {next_round}: {len(outcome.duel_ids)} duel(s), "
            f"bye {bye_user_id}"
        )
        return outcome

    async def _create_round_duel(
        self,
        session: AsyncSession,
        tournament_id: int,
        round_number: int,
        first: Entrant,
        second: Entrant
    ) -> Duel:
        claim = await session.execute(
            update(Entrant)
            .where(Entrant.id.in_([first.id, second.id]), Entrant.status == EntrantStatus.WAITING)
            .values(status=EntrantStatus.PAIRED)
            .execution_options(synchronize_session=False)
        )
        if claim.rowcount != 2:
            raise InvalidTransitionError(
                f"Entrants {first.user_id}/{second.user_id} left the pool before round {round_number}"
            )

        now = utc_now()
        duel = Duel(
            challenger_id=first.user_id,
            opponent_id=second.user_id,
            status=DuelStatus.ACTIVE,
            difficulty=self.difficulty,
            tournament_id=tournament_id,
            round_number=round_number,
            created_at=now,
            started_at=now
        )
        problem = await pick_problem(session, self.difficulty)
        if problem is not None:
            duel.problem_id = problem.id
            duel.difficulty = problem.difficulty
        session.add(duel)
        await session.flush()

        await session.execute(
            update(Entrant)
            .where(Entrant.id.in_([first.id, second.id]))
            .values(duel_id=duel.id)
            .execution_options(synchronize_session=False)
        )
        return duel

    async def record_swiss_result(
        self,
        session: AsyncSession,
        duel: Duel,
        winner_id: Optional[int],
        loser_ids: Sequence[int]
    ) -> bool:
        """
        Feed a completed Swiss duel back into its entrants.

        Both players return to the pool for the next round. Scores only
        change while the tournament is active.

        Returns:
            True if the result counted toward the tournament score
        """
        result = await session.execute(
            select(Tournament.status).where(Tournament.id == duel.tournament_id)
        )
        counts = result.scalar_one_or_none() == TournamentStatus.ACTIVE

        winner_values = {'status': EntrantStatus.WAITING}
        loser_values = {'status': EntrantStatus.WAITING}
        if counts:
            winner_values.update(
                score=Entrant.score + SwissConstants.WIN_POINTS,
                wins=Entrant.wins + 1,
                streak=Entrant.streak + 1
            )
            loser_values.update(losses=Entrant.losses + 1, streak=0)

        updates = [(loser_id, loser_values) for loser_id in loser_ids]
        if winner_id is not None:
            updates.append((winner_id, winner_values))

        for user_id, values in updates:
            await session.execute(
                update(Entrant)
                .where(
                    Entrant.tournament_id == duel.tournament_id,
                    Entrant.user_id == user_id,
                    Entrant.duel_id == duel.id,
                    Entrant.status == EntrantStatus.PAIRED
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )

        return counts

    async def round_in_progress(
        self,
        tournament_id: int,
        round_number: int,
        session: Optional[AsyncSession] = None
    ) -> bool:
        """Whether any duel of the given round is still active."""
        async def _check(session: AsyncSession) -> bool:
            result = await session.execute(
                select(func.count(Duel.id)).where(
                    Duel.tournament_id == tournament_id,
                    Duel.round_number == round_number,
                    Duel.status == DuelStatus.ACTIVE
                )
            )
            return result.scalar_one() > 0

        if session:
            return await _check(session)
        async with storage_guard("round_in_progress"):
            async with self.db.get_session() as db_session:
                return await _check(db_session)

    async def _standings(self, tournament_id: int, session: AsyncSession) -> List[Entrant]:
        result = await session.execute(
            select(Entrant)
            .where(
                Entrant.tournament_id == tournament_id,
                Entrant.status != EntrantStatus.ELIMINATED
            )
            .order_by(Entrant.score.desc(), Entrant.joined_at.asc(), Entrant.id.asc())
        )
        return list(result.scalars().all())

    async def _previous_matchups(self, tournament_id: int, session: AsyncSession):
        result = await session.execute(
            select(Duel.challenger_id, Duel.opponent_id).where(
                Duel.tournament_id == tournament_id,
                Duel.round_number.is_not(None)
            )
        )
        return {matchup(challenger, opponent) for challenger, opponent in result.all()}

    async def _load_tournament(self, tournament_id: int, session: AsyncSession) -> Tournament:
        result = await session.execute(select(Tournament).where(Tournament.id == tournament_id))
        tournament = result.scalar_one_or_none()
        if tournament is None:
            raise TournamentNotFoundError(tournament_id)
        return tournament

"""
Arena Pairing Operations

Turns the pool of waiting entrants in a tournament's current arena into
active duels, two at a time in join order. Pairing is triggered on a timer
and whenever someone enters the lobby, so the same arena is routinely swept
by several callers at once:

- each pair is claimed with a conditional UPDATE (status must still be
  'waiting') inside its own transaction, so an entrant can only ever be
  claimed by one sweep;
- a lost claim or a failed duel insert rolls back only that pair, leaving
  both entrants waiting for the next sweep;
- a sweep with nothing new to pair writes nothing.
"""

import asyncio
from typing import List, Optional, Sequence
from sqlalchemy import select, update, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from arena_bot.config import Config
from arena_bot.constants import ArenaConstants
from arena_bot.database.database import Database
from arena_bot.database.models import (
    Arena, Duel, DuelStatus, Entrant, EntrantStatus,
    Tournament, TournamentStatus, TournamentType
)
from arena_bot.operations.problem_operations import pick_problem
from arena_bot.utils.exceptions import storage_guard
from arena_bot.utils.logger import setup_logger
from arena_bot.utils.time_utils import utc_now

logger = setup_logger(__name__)


class ArenaOperations:
    """
    Service class for arena pairing and arena result bookkeeping.
    """

    def __init__(self, db: Database, timeout: float = None, difficulty: int = None):
        self.db = db
        self.timeout = Config.PAIRING_TIMEOUT_SECONDS if timeout is None else timeout
        self.difficulty = Config.DEFAULT_DIFFICULTY if difficulty is None else difficulty
        self.logger = setup_logger(f"{__name__}.ArenaOperations")

    async def pair_arena(self, tournament_id: int) -> int:
        """
        Pair the waiting entrants of a tournament's current arena.

        Args:
            tournament_id: Tournament whose current arena is swept

        Returns:
            Number of duels created by this call

        Raises:
            StorageFailureError: If the pool cannot be read or the sweep
                exceeds the pairing timeout
        """
        async with storage_guard("pair_arena"):
            return await asyncio.wait_for(self._pair_arena(tournament_id), timeout=self.timeout)

    async def _pair_arena(self, tournament_id: int) -> int:
        arena = await self.get_current_arena(tournament_id)
        if arena is None:
            self.logger.debug(f"Tournament {tournament_id} has no active arena, nothing to pair")
            return 0

        waiting = await self.get_waiting_entrants(arena.id)
        if len(waiting) < 2:
            self.logger.debug(f"Not enough players waiting in arena {arena.id}: {len(waiting)}")
            return 0

        created = 0
        failed = 0
        # Consecutive pairs in join order; an odd last entrant waits for the next sweep
        for first, second in zip(waiting[0::2], waiting[1::2]):
            try:
                duel = await self._create_pair_duel(arena, first, second)
            except SQLAlchemyError as e:
                failed += 1
                self.logger.error(
                    f"Failed to create arena duel for users {first.user_id} and {second.user_id}: {e}",
                    exc_info=True
                )
                continue

            if duel is not None:
                created += 1
                self.logger.info(
                    f"Created arena duel {duel.id} between {first.user_id} and {second.user_id} "
                    f"(tournament {tournament_id})"
                )

        if failed:
            self.logger.warning(f"Arena {arena.id}: {failed} pair(s) rolled back, will retry next sweep")
        return created

    async def _create_pair_duel(self, arena: Arena, first: Entrant, second: Entrant) -> Optional[Duel]:
        """Claim both entrants and create their duel in one transaction."""
        async with self.db.get_session() as session:
            claim = await session.execute(
                update(Entrant)
                .where(
                    Entrant.id.in_([first.id, second.id]),
                    Entrant.arena_id == arena.id,
                    Entrant.status == EntrantStatus.WAITING
                )
                .values(status=EntrantStatus.PAIRED)
                .execution_options(synchronize_session=False)
            )

            if claim.rowcount != 2:
                # Another sweep got at least one of them first
                await session.rollback()
                self.logger.debug(
                    f"Lost claim on entrants {first.id}/{second.id} in arena {arena.id}, skipping pair"
                )
                return None

            duel = self._new_arena_duel(arena, first, second)
            problem = await pick_problem(session, duel.difficulty)
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
            await session.commit()
            return duel

    def _new_arena_duel(self, arena: Arena, first: Entrant, second: Entrant) -> Duel:
        now = utc_now()
        return Duel(
            challenger_id=first.user_id,
            opponent_id=second.user_id,
            status=DuelStatus.ACTIVE,
            difficulty=self.difficulty,
            tournament_id=arena.tournament_id,
            arena_id=arena.id,
            created_at=now,
            started_at=now
        )

    async def get_current_arena(self, tournament_id: int, session: Optional[AsyncSession] = None) -> Optional[Arena]:
        """Latest arena round of an active arena tournament, if any."""
        async def _get(session: AsyncSession) -> Optional[Arena]:
            result = await session.execute(
                select(Arena)
                .join(Tournament, Arena.tournament_id == Tournament.id)
                .where(
                    Tournament.id == tournament_id,
                    Tournament.status == TournamentStatus.ACTIVE,
                    Tournament.tournament_type == TournamentType.ARENA
                )
                .order_by(Arena.round_number.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

        if session:
            return await _get(session)
        async with self.db.get_session() as db_session:
            return await _get(db_session)

    async def get_waiting_entrants(self, arena_id: int) -> List[Entrant]:
        """Waiting entrants of an arena, oldest first."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Entrant)
                .where(
                    Entrant.arena_id == arena_id,
                    Entrant.status == EntrantStatus.WAITING
                )
                .order_by(Entrant.joined_at.asc(), Entrant.id.asc())
            )
            return list(result.scalars().all())

    async def record_arena_result(
        self,
        session: AsyncSession,
        duel: Duel,
        winner_id: Optional[int],
        loser_ids: Sequence[int]
    ) -> bool:
        """
        Feed a completed arena duel back into its entrants.

        The winner re-enters the pool with a fresh join time and earns arena
        points (doubled while on fire); losers are eliminated, so a duel
        nobody solved eliminates both sides. Once the tournament has
        finished, entrant states still settle but scores no longer change.

        Returns:
            True if the result counted toward the tournament score
        """
        result = await session.execute(
            select(Tournament.status).where(Tournament.id == duel.tournament_id)
        )
        tournament_status = result.scalar_one_or_none()
        counts = tournament_status == TournamentStatus.ACTIVE

        winner_values = {
            'status': EntrantStatus.WAITING,
            'joined_at': utc_now(),
        }
        loser_values = {'status': EntrantStatus.ELIMINATED}

        if counts:
            win_points = ArenaConstants.ARENA_WIN_POINTS
            winner_values.update(
                score=Entrant.score + case(
                    (Entrant.streak >= ArenaConstants.ON_FIRE_STREAK,
                     win_points * ArenaConstants.ON_FIRE_MULTIPLIER),
                    else_=win_points
                ),
                wins=Entrant.wins + 1,
                streak=Entrant.streak + 1
            )
            loser_values.update(losses=Entrant.losses + 1, streak=0)
        else:
            self.logger.info(
                f"Duel {duel.id} finished after tournament {duel.tournament_id} ended - not counted"
            )

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

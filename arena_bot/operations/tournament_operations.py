"""
Tournament Operations Service

Tournament lifecycle (scheduled -> active -> finished) for arena and Swiss
tournaments, lobby entry and withdrawal, and the periodic tick that starts
and ends tournaments on schedule, sweeps arena pairing and opens the next
Swiss round once the previous one is done.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from arena_bot.config import Config
from arena_bot.database.database import Database, insert_if_absent
from arena_bot.database.models import (
    Arena, Entrant, EntrantStatus, Tournament, TournamentStatus, TournamentType
)
from arena_bot.operations.arena_operations import ArenaOperations
from arena_bot.operations.swiss_operations import SwissOperations
from arena_bot.utils.exceptions import (
    ArenaException, InvalidTransitionError, StorageFailureError,
    TournamentNotFoundError, require_actor, storage_guard
)
from arena_bot.utils.logger import setup_logger
from arena_bot.utils.time_utils import utc_now

logger = setup_logger(__name__)


@dataclass
class TickResult:
    """Summary of one scheduler tick"""
    started: List[int] = field(default_factory=list)
    ended: List[int] = field(default_factory=list)
    duels_created: int = 0
    pairing_failures: int = 0
    rounds_generated: int = 0


class TournamentOperations:
    """Service class for tournament lifecycle and lobby membership."""

    def __init__(
        self,
        db: Database,
        arena_ops: Optional[ArenaOperations] = None,
        swiss_ops: Optional[SwissOperations] = None
    ):
        self.db = db
        self.arena_ops = arena_ops or ArenaOperations(db)
        self.swiss_ops = swiss_ops or SwissOperations(db)
        self.logger = setup_logger(f"{__name__}.TournamentOperations")

    async def create_tournament(
        self,
        name: str,
        start_time: Optional[datetime],
        duration_minutes: int,
        actor_id: Optional[int],
        tournament_type: TournamentType = TournamentType.ARENA,
        total_rounds: Optional[int] = None
    ) -> Tournament:
        """
        Schedule a new tournament (start_time is naive UTC).

        Swiss tournaments play total_rounds rounds, Config.DEFAULT_SWISS_ROUNDS
        when omitted; arena tournaments ignore it.
        """
        require_actor(actor_id, "create_tournament")
        if duration_minutes <= 0:
            raise InvalidTransitionError("Tournament duration must be positive")
        if tournament_type == TournamentType.SWISS:
            if total_rounds is None:
                total_rounds = Config.DEFAULT_SWISS_ROUNDS
            if total_rounds < 1:
                raise InvalidTransitionError("A Swiss tournament needs at least one round")
        else:
            total_rounds = None

        async with storage_guard("create_tournament"):
            async with self.db.transaction() as session:
                tournament = Tournament(
                    name=name,
                    tournament_type=tournament_type,
                    status=TournamentStatus.SCHEDULED,
                    start_time=start_time or utc_now(),
                    duration_minutes=duration_minutes,
                    current_round=0,
                    total_rounds=total_rounds,
                    created_by=actor_id,
                    created_at=utc_now()
                )
                session.add(tournament)
                await session.flush()

        self.logger.info(
            f"Tournament {tournament.id} '{name}' ({tournament_type.value}) scheduled for {tournament.start_time}"
        )
        return tournament

    async def start_tournament(self, tournament_id: int) -> Tournament:
        """
        Move a scheduled tournament to active.

        Arena tournaments open arena round 1; Swiss rounds are generated
        separately.

        Raises:
            TournamentNotFoundError: If the tournament does not exist
            InvalidTransitionError: If it is not scheduled
        """
        async with storage_guard("start_tournament"):
            async with self.db.transaction() as session:
                result = await session.execute(
                    update(Tournament)
                    .where(
                        Tournament.id == tournament_id,
                        Tournament.status == TournamentStatus.SCHEDULED
                    )
                    .values(status=TournamentStatus.ACTIVE)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    tournament = await self._load_tournament(tournament_id, session)
                    raise InvalidTransitionError(
                        f"Tournament {tournament_id} is {tournament.status.value}, cannot start"
                    )

                tournament = await self._load_tournament(tournament_id, session, refresh=True)
                if tournament.tournament_type == TournamentType.ARENA:
                    session.add(Arena(tournament_id=tournament_id, round_number=1, opened_at=utc_now()))
                    await session.flush()

        self.logger.info(f"Tournament {tournament_id} started")
        return tournament

    async def end_tournament(self, tournament_id: int) -> Tournament:
        """
        Move an active tournament to finished.

        Duels already in progress may still complete; their results no
        longer change tournament scores.
        """
        async with storage_guard("end_tournament"):
            async with self.db.transaction() as session:
                result = await session.execute(
                    update(Tournament)
                    .where(
                        Tournament.id == tournament_id,
                        Tournament.status == TournamentStatus.ACTIVE
                    )
                    .values(status=TournamentStatus.FINISHED)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    tournament = await self._load_tournament(tournament_id, session)
                    raise InvalidTransitionError(
                        f"Tournament {tournament_id} is {tournament.status.value}, cannot end"
                    )
                tournament = await self._load_tournament(tournament_id, session, refresh=True)

        self.logger.info(f"Tournament {tournament_id} finished")
        return tournament

    async def join_tournament(
        self,
        tournament_id: int,
        user_id: Optional[int],
        pair_now: bool = True
    ) -> Entrant:
        """
        Enter a tournament.

        Arena tournaments are joined while active, straight into the current
        arena's lobby. Swiss tournaments can be joined while scheduled or
        active and pick the entrant up from the next round on. Joining twice
        returns the existing entrant. When pair_now is set, an arena pairing
        sweep runs right away; its failures are left for the next tick.

        Raises:
            TournamentNotFoundError: If the tournament does not exist
            InvalidTransitionError: If the tournament is not active or the
                user was already eliminated
        """
        require_actor(user_id, "join_tournament")

        async with storage_guard("join_tournament"):
            async with self.db.transaction() as session:
                tournament = await self._load_tournament(tournament_id, session)
                is_arena = tournament.tournament_type == TournamentType.ARENA
                arena_id = None
                if is_arena:
                    arena = await self.arena_ops.get_current_arena(tournament_id, session)
                    if arena is None:
                        raise InvalidTransitionError(
                            f"Tournament {tournament_id} is {tournament.status.value}, cannot join"
                        )
                    arena_id = arena.id
                elif tournament.status == TournamentStatus.FINISHED:
                    raise InvalidTransitionError(
                        f"Tournament {tournament_id} is finished, cannot join"
                    )

                created = await insert_if_absent(session, Entrant, {
                    'user_id': user_id,
                    'tournament_id': tournament_id,
                    'arena_id': arena_id,
                    'status': EntrantStatus.WAITING,
                    'joined_at': utc_now(),
                    'score': 0,
                    'wins': 0,
                    'losses': 0,
                    'streak': 0,
                    'byes': 0,
                })

                entrant = await self._load_entrant(tournament_id, user_id, session)
                if entrant.status == EntrantStatus.ELIMINATED:
                    raise InvalidTransitionError(
                        f"User {user_id} was eliminated from tournament {tournament_id}",
                        "❌ You have been eliminated from this tournament."
                    )

        if created:
            self.logger.info(f"User {user_id} joined tournament {tournament_id} (arena {entrant.arena_id})")

        if pair_now and is_arena:
            try:
                await self.arena_ops.pair_arena(tournament_id)
            except StorageFailureError as e:
                self.logger.warning(f"Immediate pairing for tournament {tournament_id} failed: {e}")
            entrant = await self.get_entrant(tournament_id, user_id)

        return entrant

    async def withdraw(self, tournament_id: int, user_id: Optional[int]) -> Entrant:
        """
        Leave the lobby; a waiting entrant is eliminated.

        Raises:
            InvalidTransitionError: If the user is not entered, is mid-duel
                or already eliminated
        """
        require_actor(user_id, "withdraw")

        async with storage_guard("withdraw"):
            async with self.db.transaction() as session:
                result = await session.execute(
                    update(Entrant)
                    .where(
                        Entrant.tournament_id == tournament_id,
                        Entrant.user_id == user_id,
                        Entrant.status == EntrantStatus.WAITING
                    )
                    .values(status=EntrantStatus.ELIMINATED)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    entrant = await self._load_entrant(tournament_id, user_id, session, required=False)
                    if entrant is None:
                        raise InvalidTransitionError(
                            f"User {user_id} has not joined tournament {tournament_id}"
                        )
                    if entrant.status == EntrantStatus.PAIRED:
                        raise InvalidTransitionError(
                            f"User {user_id} is mid-duel in tournament {tournament_id}",
                            "❌ Finish or forfeit your current duel before withdrawing."
                        )
                    raise InvalidTransitionError(
                        f"User {user_id} already left tournament {tournament_id}"
                    )

                entrant = await self._load_entrant(tournament_id, user_id, session, refresh=True)

        self.logger.info(f"User {user_id} withdrew from tournament {tournament_id}")
        return entrant

    async def tick(self, now: Optional[datetime] = None) -> TickResult:
        """
        Periodic scheduler pass.

        Starts due tournaments and ends expired ones. Arena tournaments in
        progress get a pairing sweep; Swiss tournaments get their next round
        once the previous one is done, and finish after the last round. One
        tournament's failure is logged and does not stop the rest of the pass.
        """
        now = now or utc_now()
        outcome = TickResult()

        async with storage_guard("tick"):
            async with self.db.get_session() as session:
                due = await session.execute(
                    select(Tournament.id).where(
                        Tournament.status == TournamentStatus.SCHEDULED,
                        Tournament.start_time <= now
                    )
                )
                due_ids = list(due.scalars().all())

        for tournament_id in due_ids:
            try:
                await self.start_tournament(tournament_id)
                outcome.started.append(tournament_id)
            except ArenaException as e:
                # Usually another tick started it first
                self.logger.debug(f"Auto-start of tournament {tournament_id} skipped: {e}")

        async with storage_guard("tick"):
            async with self.db.get_session() as session:
                active = await session.execute(
                    select(Tournament).where(Tournament.status == TournamentStatus.ACTIVE)
                )
                active_tournaments = list(active.scalars().all())

        for tournament in active_tournaments:
            end_time = tournament.start_time + timedelta(minutes=tournament.duration_minutes)
            if now >= end_time:
                try:
                    await self.end_tournament(tournament.id)
                    outcome.ended.append(tournament.id)
                except ArenaException as e:
                    self.logger.debug(f"Auto-end of tournament {tournament.id} skipped: {e}")
                continue

            if tournament.tournament_type == TournamentType.SWISS:
                await self._advance_swiss(tournament, outcome)
                continue

            try:
                outcome.duels_created += await self.arena_ops.pair_arena(tournament.id)
            except StorageFailureError as e:
                outcome.pairing_failures += 1
                self.logger.error(f"Pairing sweep failed for tournament {tournament.id}: {e}")

        return outcome

    async def _advance_swiss(self, tournament: Tournament, outcome: TickResult):
        try:
            if await self.swiss_ops.round_in_progress(tournament.id, tournament.current_round):
                return
            if tournament.total_rounds is not None and tournament.current_round >= tournament.total_rounds:
                await self.end_tournament(tournament.id)
                outcome.ended.append(tournament.id)
                return
            await self.swiss_ops.generate_round(tournament.id)
            outcome.rounds_generated += 1
        except StorageFailureError as e:
            outcome.pairing_failures += 1
            self.logger.error(f"Swiss round sweep failed for tournament {tournament.id}: {e}")
        except ArenaException as e:
            # Not enough players yet, or another tick got there first
            self.logger.debug(f"Swiss round for tournament {tournament.id} skipped: {e}")

    async def get_tournament(self, tournament_id: int) -> Tournament:
        async with storage_guard("get_tournament"):
            async with self.db.get_session() as session:
                return await self._load_tournament(tournament_id, session)

    async def get_entrant(self, tournament_id: int, user_id: int) -> Optional[Entrant]:
        async with storage_guard("get_entrant"):
            async with self.db.get_session() as session:
                return await self._load_entrant(tournament_id, user_id, session, required=False)

    async def list_entrants(self, tournament_id: int) -> List[Entrant]:
        """Entrants ordered by arena score, best first."""
        async with storage_guard("list_entrants"):
            async with self.db.get_session() as session:
                result = await session.execute(
                    select(Entrant)
                    .where(Entrant.tournament_id == tournament_id)
                    .order_by(Entrant.score.desc(), Entrant.wins.desc(), Entrant.id.asc())
                )
                return list(result.scalars().all())

    async def _load_tournament(
        self,
        tournament_id: int,
        session: AsyncSession,
        refresh: bool = False
    ) -> Tournament:
        query = select(Tournament).where(Tournament.id == tournament_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await session.execute(query)
        tournament = result.scalar_one_or_none()
        if tournament is None:
            raise TournamentNotFoundError(tournament_id)
        return tournament

    async def _load_entrant(
        self,
        tournament_id: int,
        user_id: int,
        session: AsyncSession,
        refresh: bool = False,
        required: bool = True
    ) -> Optional[Entrant]:
        query = select(Entrant).where(
            Entrant.tournament_id == tournament_id,
            Entrant.user_id == user_id
        )
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await session.execute(query)
        entrant = result.scalar_one_or_none()
        if entrant is None and required:
            raise InvalidTransitionError(f"User {user_id} has not joined tournament {tournament_id}")
        return entrant

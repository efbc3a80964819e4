"""
Duel Operations Service

State machine for 1v1 duels:

    waiting -> active -> completed
    waiting -> cancelled

Tournament duels are created directly in 'active' by arena pairing or Swiss
round generation. Both sides answer the duel's problem; answers are graded
on submission and the second answer settles the duel (the faster correct
answer wins). Every transition is a conditional UPDATE guarded on the
expected current status, so concurrent accept/cancel/answer calls resolve
to exactly one outcome and a completed duel can never apply ratings twice.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from arena_bot.config import Config
from arena_bot.database.database import Database
from arena_bot.database.models import Duel, DuelResult, DuelStatus, Problem, UserRating
from arena_bot.operations.arena_operations import ArenaOperations
from arena_bot.operations.problem_operations import pick_problem
from arena_bot.operations.rating_operations import RatingOperations
from arena_bot.operations.swiss_operations import SwissOperations
from arena_bot.utils.answers import check_answer
from arena_bot.utils.exceptions import (
    DuelNotFoundError, ForbiddenError, InvalidTransitionError, ProblemNotFoundError,
    require_actor, storage_guard
)
from arena_bot.utils.logger import setup_logger
from arena_bot.utils.rating import RatingCalculator
from arena_bot.utils.time_utils import utc_now

logger = setup_logger(__name__)


@dataclass
class DuelCompletion:
    """Result of completing a duel; winner_id is None when nobody solved it"""
    duel: Duel
    winner_id: Optional[int]
    deltas: Dict[int, int] = field(default_factory=dict)
    ratings: Dict[int, UserRating] = field(default_factory=dict)
    counted_for_tournament: bool = False

    @property
    def loser_id(self) -> Optional[int]:
        if self.winner_id is None:
            return None
        return self.duel.other_participant(self.winner_id)

    @property
    def winner_delta(self) -> Optional[int]:
        return self.deltas.get(self.winner_id)

    @property
    def loser_delta(self) -> Optional[int]:
        return self.deltas.get(self.loser_id)

    @property
    def winner_rating(self) -> Optional[UserRating]:
        return self.ratings.get(self.winner_id)

    @property
    def loser_rating(self) -> Optional[UserRating]:
        return self.ratings.get(self.loser_id)


@dataclass
class DuelAnswer:
    """Result of submitting one side's answer"""
    duel: Duel
    correct: bool
    time_seconds: float
    completion: Optional[DuelCompletion] = None


class DuelOperations:
    """
    Service class for duel lifecycle operations.

    Completion applies both participants' rating deltas inside the same
    transaction that flips the duel to 'completed'.
    """

    def __init__(
        self,
        db: Database,
        rating_ops: Optional[RatingOperations] = None,
        arena_ops: Optional[ArenaOperations] = None,
        swiss_ops: Optional[SwissOperations] = None
    ):
        self.db = db
        self.rating_ops = rating_ops or RatingOperations(db)
        self.arena_ops = arena_ops or ArenaOperations(db)
        self.swiss_ops = swiss_ops or SwissOperations(db)
        self.logger = setup_logger(f"{__name__}.DuelOperations")

    async def create_duel(
        self,
        challenger_id: Optional[int],
        difficulty: int = None,
        problem_id: Optional[int] = None
    ) -> Duel:
        """
        Open a standalone duel waiting for an opponent.

        Without a problem_id a random published problem of the requested
        difficulty is attached. The duel takes its difficulty from the
        problem when there is one.

        Args:
            challenger_id: Acting user opening the duel
            difficulty: Problem difficulty (clamped to 1-10)
            problem_id: Optional problem under contest

        Returns:
            The new Duel in 'waiting'

        Raises:
            ProblemNotFoundError: If problem_id does not name a published problem
        """
        require_actor(challenger_id, "create_duel")
        if difficulty is None:
            difficulty = Config.DEFAULT_DIFFICULTY

        async with storage_guard("create_duel"):
            async with self.db.transaction() as session:
                if problem_id is not None:
                    problem = await session.get(Problem, problem_id)
                    if problem is None or not problem.is_published:
                        raise ProblemNotFoundError(problem_id)
                else:
                    problem = await pick_problem(session, difficulty)

                duel = Duel(
                    challenger_id=challenger_id,
                    opponent_id=None,
                    status=DuelStatus.WAITING,
                    difficulty=RatingCalculator.clamp_difficulty(
                        problem.difficulty if problem is not None else difficulty
                    ),
                    problem_id=problem.id if problem is not None else None,
                    created_at=utc_now()
                )
                session.add(duel)
                await session.flush()

        self.logger.info(
            f"User {challenger_id} opened duel {duel.id} (difficulty {duel.difficulty}, "
            f"problem {duel.problem_id})"
        )
        return duel

    async def accept_duel(self, duel_id: int, opponent_id: Optional[int]) -> Duel:
        """
        Accept a waiting duel as its opponent.

        Raises:
            DuelNotFoundError: If the duel does not exist
            ForbiddenError: If the challenger tries to accept their own duel
            InvalidTransitionError: If the duel is no longer waiting
        """
        require_actor(opponent_id, "accept_duel")

        async with storage_guard("accept_duel"):
            async with self.db.transaction() as session:
                duel = await self._load_duel(duel_id, session)
                if duel.status != DuelStatus.WAITING:
                    raise InvalidTransitionError(
                        f"Duel {duel_id} is {duel.status.value}, cannot accept"
                    )
                if duel.challenger_id == opponent_id:
                    raise ForbiddenError("You cannot accept your own duel")

                result = await session.execute(
                    update(Duel)
                    .where(Duel.id == duel_id, Duel.status == DuelStatus.WAITING)
                    .values(
                        opponent_id=opponent_id,
                        status=DuelStatus.ACTIVE,
                        started_at=utc_now()
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise InvalidTransitionError(
                        f"Duel {duel_id} was taken or cancelled before it could be accepted"
                    )

                duel = await self._load_duel(duel_id, session, refresh=True)

        self.logger.info(f"User {opponent_id} accepted duel {duel_id} from {duel.challenger_id}")
        return duel

    async def cancel_duel(self, duel_id: int, actor_id: Optional[int]) -> Duel:
        """
        Withdraw a duel that nobody has accepted yet.

        The record is kept and marked 'cancelled'.

        Raises:
            DuelNotFoundError: If the duel does not exist
            InvalidTransitionError: If the duel is not waiting
            ForbiddenError: If the actor is not the challenger
        """
        require_actor(actor_id, "cancel_duel")

        async with storage_guard("cancel_duel"):
            async with self.db.transaction() as session:
                duel = await self._load_duel(duel_id, session)
                if duel.status != DuelStatus.WAITING:
                    raise InvalidTransitionError(
                        f"Duel {duel_id} is {duel.status.value}, cannot cancel"
                    )
                if duel.challenger_id != actor_id:
                    raise ForbiddenError("Only the challenger can cancel this duel")

                result = await session.execute(
                    update(Duel)
                    .where(
                        Duel.id == duel_id,
                        Duel.challenger_id == actor_id,
                        Duel.status == DuelStatus.WAITING
                    )
                    .values(status=DuelStatus.CANCELLED, cancelled_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise InvalidTransitionError(
                        f"Duel {duel_id} was accepted before it could be cancelled"
                    )

                duel = await self._load_duel(duel_id, session, refresh=True)

        self.logger.info(f"User {actor_id} cancelled duel {duel_id}")
        return duel

    async def submit_answer(
        self,
        duel_id: int,
        actor_id: Optional[int],
        answer: str,
        time_seconds: Optional[float] = None
    ) -> DuelAnswer:
        """
        Submit one side's answer to an active duel.

        The answer is graded against the duel's problem. Each side answers
        once; the second answer settles the duel in the same transaction:
        the faster correct answer wins (ties go to the challenger), a lone
        correct answer wins, and if neither is correct both lose.

        Args:
            duel_id: Duel being answered
            actor_id: Acting participant
            answer: Submitted answer text
            time_seconds: Solve time; measured from the duel start when omitted

        Returns:
            DuelAnswer, with the completion when this answer settled the duel

        Raises:
            DuelNotFoundError: If the duel does not exist
            InvalidTransitionError: If the duel is not active, has no problem
                or this side already answered
            ForbiddenError: If the actor is not a participant
        """
        require_actor(actor_id, "submit_answer")

        async with storage_guard("submit_answer"):
            async with self.db.transaction() as session:
                duel = await self._load_duel(duel_id, session)
                if duel.status != DuelStatus.ACTIVE:
                    raise InvalidTransitionError(
                        f"Duel {duel_id} is {duel.status.value}, cannot answer"
                    )
                side = duel.side_of(actor_id)
                if side is None:
                    raise ForbiddenError("Only duel participants can answer")
                if duel.problem_id is None:
                    raise InvalidTransitionError(
                        f"Duel {duel_id} has no problem attached",
                        "❌ This duel has no problem to answer; it can only be forfeited."
                    )

                problem = await session.get(Problem, duel.problem_id)
                correct = check_answer(answer, problem.answer, problem.answer_type)

                if time_seconds is None:
                    started = duel.started_at or utc_now()
                    time_seconds = (utc_now() - started).total_seconds()
                time_seconds = max(0.0, float(time_seconds))

                answer_column = getattr(Duel, f"{side}_answer")
                result = await session.execute(
                    update(Duel)
                    .where(
                        Duel.id == duel_id,
                        Duel.status == DuelStatus.ACTIVE,
                        answer_column.is_(None)
                    )
                    .values(**{
                        f"{side}_answer": answer.strip()[:200],
                        f"{side}_correct": correct,
                        f"{side}_time_seconds": time_seconds,
                    })
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise InvalidTransitionError(
                        f"User {actor_id} already answered duel {duel_id}",
                        "❌ You have already answered this duel."
                    )

                duel = await self._load_duel(duel_id, session, refresh=True)
                completion = None
                if duel.challenger_answer is not None and duel.opponent_answer is not None:
                    completion = await self._settle(session, duel, self._answer_winner(duel))
                    duel = completion.duel

        self.logger.info(
            f"User {actor_id} answered duel {duel_id}: {'correct' if correct else 'wrong'} "
            f"in {time_seconds:.1f}s"
        )
        if completion:
            self._finish(completion)
        return DuelAnswer(duel=duel, correct=correct, time_seconds=time_seconds, completion=completion)

    async def complete_duel(
        self,
        duel_id: int,
        winner_id: int,
        actor_id: Optional[int]
    ) -> DuelCompletion:
        """
        Record the winner of an active duel and apply both rating changes.

        Players settle duels by answering; this path is used for forfeits
        and by the scheduler.

        Args:
            duel_id: Duel to complete
            winner_id: Participant who won
            actor_id: Acting user; must be a participant

        Returns:
            DuelCompletion with the deltas and updated ratings

        Raises:
            DuelNotFoundError: If the duel does not exist
            InvalidTransitionError: If the duel is not active (including a
                second completion) or the winner is not a participant
            ForbiddenError: If the actor is not a participant
        """
        require_actor(actor_id, "complete_duel")

        async with storage_guard("complete_duel"):
            async with self.db.transaction() as session:
                duel = await self._load_duel(duel_id, session)
                if duel.status != DuelStatus.ACTIVE:
                    raise InvalidTransitionError(
                        f"Duel {duel_id} is {duel.status.value}, cannot complete"
                    )
                if actor_id not in duel.participants:
                    raise ForbiddenError("Only duel participants can report a result")
                if winner_id not in duel.participants:
                    raise InvalidTransitionError(
                        f"User {winner_id} is not a participant of duel {duel_id}"
                    )

                completion = await self._settle(session, duel, winner_id)

        self._finish(completion)
        return completion

    async def forfeit_duel(self, duel_id: int, actor_id: Optional[int]) -> DuelCompletion:
        """Give up an active duel; the other participant is recorded as winner."""
        require_actor(actor_id, "forfeit_duel")
        duel = await self.get_duel(duel_id)
        if duel.status != DuelStatus.ACTIVE:
            raise InvalidTransitionError(f"Duel {duel_id} is {duel.status.value}, cannot forfeit")
        if actor_id not in duel.participants:
            raise ForbiddenError("Only duel participants can forfeit")

        self.logger.info(f"User {actor_id} forfeited duel {duel_id}")
        return await self.complete_duel(duel_id, duel.other_participant(actor_id), actor_id)

    async def _settle(
        self,
        session: AsyncSession,
        duel: Duel,
        winner_id: Optional[int]
    ) -> DuelCompletion:
        """Flip an active duel to completed and apply ratings and tournament results."""
        if winner_id is None:
            outcome = DuelResult.NO_WINNER
        elif winner_id == duel.challenger_id:
            outcome = DuelResult.CHALLENGER_WIN
        else:
            outcome = DuelResult.OPPONENT_WIN

        result = await session.execute(
            update(Duel)
            .where(Duel.id == duel.id, Duel.status == DuelStatus.ACTIVE)
            .values(
                status=DuelStatus.COMPLETED,
                winner_id=winner_id,
                result=outcome,
                completed_at=utc_now()
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(f"Duel {duel.id} was already completed")

        win_delta, loss_delta = RatingCalculator.duel_deltas(duel.difficulty)
        loser_ids = [uid for uid in duel.participants if uid != winner_id]
        deltas: Dict[int, int] = {}
        ratings: Dict[int, UserRating] = {}

        if winner_id is not None:
            deltas[winner_id] = win_delta
            ratings[winner_id] = await self.rating_ops.apply_delta(
                winner_id, win_delta,
                points_delta=win_delta, solved_increment=1,
                session=session
            )
        for loser_id in loser_ids:
            deltas[loser_id] = loss_delta
            ratings[loser_id] = await self.rating_ops.apply_delta(
                loser_id, loss_delta,
                points_delta=0, solved_increment=0,
                session=session
            )

        counted = False
        if duel.arena_id is not None:
            counted = await self.arena_ops.record_arena_result(session, duel, winner_id, loser_ids)
        elif duel.tournament_id is not None and duel.round_number is not None:
            counted = await self.swiss_ops.record_swiss_result(session, duel, winner_id, loser_ids)

        duel = await self._load_duel(duel.id, session, refresh=True)
        return DuelCompletion(
            duel=duel,
            winner_id=winner_id,
            deltas=deltas,
            ratings=ratings,
            counted_for_tournament=counted
        )

    def _finish(self, completion: DuelCompletion):
        """Post-commit bookkeeping for a settled duel."""
        self.rating_ops.invalidate(completion.deltas.keys())
        summary = ", ".join(f"{uid} ({delta:+d})" for uid, delta in completion.deltas.items())
        if completion.winner_id is None:
            self.logger.info(f"Duel {completion.duel.id} completed with no winner: {summary}")
        else:
            self.logger.info(
                f"Duel {completion.duel.id} completed: winner {completion.winner_id}; {summary}"
            )

    @staticmethod
    def _answer_winner(duel: Duel) -> Optional[int]:
        challenger_ok = bool(duel.challenger_correct)
        opponent_ok = bool(duel.opponent_correct)
        if challenger_ok and opponent_ok:
            if duel.opponent_time_seconds < duel.challenger_time_seconds:
                return duel.opponent_id
            return duel.challenger_id
        if challenger_ok:
            return duel.challenger_id
        if opponent_ok:
            return duel.opponent_id
        return None

    async def get_duel(self, duel_id: int) -> Duel:
        async with storage_guard("get_duel"):
            async with self.db.get_session() as session:
                return await self._load_duel(duel_id, session)

    async def list_open_duels(self, exclude_user_id: Optional[int] = None, limit: int = 25) -> List[Duel]:
        """Standalone duels still waiting for an opponent, newest first."""
        async with storage_guard("list_open_duels"):
            async with self.db.get_session() as session:
                query = select(Duel).where(
                    Duel.status == DuelStatus.WAITING,
                    Duel.tournament_id.is_(None)
                )
                if exclude_user_id is not None:
                    query = query.where(Duel.challenger_id != exclude_user_id)
                query = query.order_by(Duel.created_at.desc(), Duel.id.desc()).limit(limit)

                result = await session.execute(query)
                return list(result.scalars().all())

    async def list_duels_for_user(self, user_id: int, limit: int = 25) -> List[Duel]:
        """All duels a user took part in, newest first."""
        async with storage_guard("list_duels_for_user"):
            async with self.db.get_session() as session:
                result = await session.execute(
                    select(Duel)
                    .where(or_(Duel.challenger_id == user_id, Duel.opponent_id == user_id))
                    .order_by(Duel.created_at.desc(), Duel.id.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())

    async def _load_duel(self, duel_id: int, session: AsyncSession, refresh: bool = False) -> Duel:
        query = select(Duel).where(Duel.id == duel_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await session.execute(query)
        duel = result.scalar_one_or_none()
        if duel is None:
            raise DuelNotFoundError(duel_id)
        return duel

"""
Problem Operations Service

Problem bank management and graded practice attempts. Answers are checked
against the stored answer key; players never grade themselves.
"""

from typing import List, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from arena_bot.database.database import Database, insert_if_absent
from arena_bot.database.models import AnswerType, Problem, ProblemAttempt
from arena_bot.operations.rating_operations import AttemptResult, RatingOperations
from arena_bot.utils.answers import check_answer
from arena_bot.utils.exceptions import (
    InvalidTransitionError, ProblemNotFoundError, require_actor, storage_guard
)
from arena_bot.utils.logger import setup_logger
from arena_bot.utils.rating import RatingCalculator
from arena_bot.utils.time_utils import utc_now

logger = setup_logger(__name__)


async def pick_problem(
    session: AsyncSession,
    difficulty: Optional[int] = None,
    category_id: Optional[int] = None
) -> Optional[Problem]:
    """
    Pick a random published problem.

    Prefers the requested difficulty; falls back to any published problem
    in the category when none matches. Returns None on an empty bank.
    """
    query = select(Problem).where(Problem.is_published.is_(True))
    if category_id is not None:
        query = query.where(Problem.category_id == category_id)

    if difficulty is not None:
        result = await session.execute(
            query.where(Problem.difficulty == RatingCalculator.clamp_difficulty(difficulty))
            .order_by(func.random())
            .limit(1)
        )
        problem = result.scalar_one_or_none()
        if problem is not None:
            return problem

    result = await session.execute(query.order_by(func.random()).limit(1))
    return result.scalar_one_or_none()


class ProblemOperations:
    """Service class for the problem bank and practice attempts."""

    def __init__(self, db: Database, rating_ops: Optional[RatingOperations] = None):
        self.db = db
        self.rating_ops = rating_ops or RatingOperations(db)
        self.logger = setup_logger(f"{__name__}.ProblemOperations")

    async def add_problem(
        self,
        actor_id: Optional[int],
        title: str,
        statement: str,
        answer: str,
        difficulty: int,
        category_id: Optional[int] = None,
        answer_type: AnswerType = AnswerType.EXACT
    ) -> Problem:
        """Add a published problem to the bank (difficulty clamped to 1-10)."""
        require_actor(actor_id, "add_problem")
        if not answer.strip():
            raise InvalidTransitionError("A problem needs a non-empty answer key")

        async with storage_guard("add_problem"):
            async with self.db.transaction() as session:
                problem = Problem(
                    title=title,
                    statement=statement,
                    answer=answer.strip(),
                    answer_type=answer_type,
                    difficulty=RatingCalculator.clamp_difficulty(difficulty),
                    category_id=category_id,
                    is_published=True,
                    created_by=actor_id,
                    created_at=utc_now()
                )
                session.add(problem)
                await session.flush()

        self.logger.info(f"User {actor_id} added problem {problem.id} (difficulty {problem.difficulty})")
        return problem

    async def get_problem(self, problem_id: int) -> Problem:
        async with storage_guard("get_problem"):
            async with self.db.get_session() as session:
                return await self._load_problem(problem_id, session)

    async def random_problem(
        self,
        difficulty: Optional[int] = None,
        category_id: Optional[int] = None
    ) -> Optional[Problem]:
        async with storage_guard("random_problem"):
            async with self.db.get_session() as session:
                return await pick_problem(session, difficulty, category_id)

    async def list_problems(self, category_id: Optional[int] = None, limit: int = 25) -> List[Problem]:
        async with storage_guard("list_problems"):
            async with self.db.get_session() as session:
                query = select(Problem).where(Problem.is_published.is_(True))
                if category_id is not None:
                    query = query.where(Problem.category_id == category_id)
                result = await session.execute(query.order_by(Problem.id).limit(limit))
                return list(result.scalars().all())

    async def submit_attempt(self, user_id: Optional[int], problem_id: int, answer: str) -> AttemptResult:
        """
        Grade a practice answer and apply its rating change.

        Each problem can be attempted once per user. The attempt record and
        the rating change commit together.

        Raises:
            UnauthenticatedError: If user_id is None
            ProblemNotFoundError: If the problem does not exist
            InvalidTransitionError: If the user already attempted it
        """
        require_actor(user_id, "submit_attempt")

        async with storage_guard("submit_attempt"):
            async with self.db.transaction() as session:
                problem = await self._load_problem(problem_id, session)
                correct = check_answer(answer, problem.answer, problem.answer_type)

                created = await insert_if_absent(session, ProblemAttempt, {
                    'user_id': user_id,
                    'problem_id': problem_id,
                    'correct': correct,
                    'created_at': utc_now(),
                })
                if not created:
                    raise InvalidTransitionError(
                        f"User {user_id} already attempted problem {problem_id}",
                        "❌ You have already attempted this problem."
                    )

                attempt = await self.rating_ops.record_attempt(
                    user_id, problem.difficulty, correct, session=session
                )

        self.rating_ops.invalidate([user_id])
        return attempt

    async def _load_problem(self, problem_id: int, session: AsyncSession) -> Problem:
        result = await session.execute(
            select(Problem).where(Problem.id == problem_id, Problem.is_published.is_(True))
        )
        problem = result.scalar_one_or_none()
        if problem is None:
            raise ProblemNotFoundError(problem_id)
        return problem

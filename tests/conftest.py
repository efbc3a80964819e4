"""
Shared fixtures: a fresh SQLite file database per test plus the
operations wired together the same way the bot wires them.
"""

from datetime import timedelta

import pytest
import pytest_asyncio

from arena_bot.database.database import Database
from arena_bot.database.models import AnswerType
from arena_bot.operations.arena_operations import ArenaOperations
from arena_bot.operations.duel_operations import DuelOperations
from arena_bot.operations.problem_operations import ProblemOperations
from arena_bot.operations.rating_operations import RatingOperations
from arena_bot.operations.skip_operations import SkipOperations
from arena_bot.operations.swiss_operations import SwissOperations
from arena_bot.operations.tournament_operations import TournamentOperations
from arena_bot.services.rating_cache import CachedRatingService
from arena_bot.utils.time_utils import utc_now


OWNER_ID = 900_000_000_000_000_001


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'arena_test.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def rating_cache(db):
    return CachedRatingService(db.session_factory, ttl=60)


@pytest.fixture
def rating_ops(db, rating_cache):
    return RatingOperations(db, cache=rating_cache)


@pytest.fixture
def skip_ops(db):
    return SkipOperations(db)


@pytest.fixture
def arena_ops(db):
    return ArenaOperations(db, timeout=10, difficulty=5)


@pytest.fixture
def problem_ops(db, rating_ops):
    return ProblemOperations(db, rating_ops=rating_ops)


@pytest.fixture
def swiss_ops(db):
    return SwissOperations(db, difficulty=5)


@pytest.fixture
def duel_ops(db, rating_ops, arena_ops, swiss_ops):
    return DuelOperations(db, rating_ops=rating_ops, arena_ops=arena_ops, swiss_ops=swiss_ops)


@pytest.fixture
def tournament_ops(db, arena_ops, swiss_ops):
    return TournamentOperations(db, arena_ops=arena_ops, swiss_ops=swiss_ops)


@pytest_asyncio.fixture
async def problem(problem_ops):
    """A published difficulty-5 problem with a numeric answer of 42."""
    return await problem_ops.add_problem(
        OWNER_ID,
        title="Meaning",
        statement="What is six times seven?",
        answer="42",
        difficulty=5,
        category_id=1,
        answer_type=AnswerType.NUMERIC
    )


@pytest_asyncio.fixture
async def active_tournament(tournament_ops):
    """An arena tournament that started a minute ago and runs for an hour."""
    tournament = await tournament_ops.create_tournament(
        name="Friday Arena",
        start_time=utc_now() - timedelta(minutes=1),
        duration_minutes=60,
        actor_id=OWNER_ID
    )
    return await tournament_ops.start_tournament(tournament.id)

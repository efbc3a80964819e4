"""
Exceptions for the matchmaking and rating core with user-friendly messages.

Every error carries a developer message (``str(exc)``) and a ``user_message``
that cogs can show directly in an ephemeral reply.
"""

import asyncio
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError


class ArenaException(Exception):
    """Base exception for arena, duel, rating and skip errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class UnauthenticatedError(ArenaException):
    """Raised when a mutating operation has no acting user."""
    def __init__(self, operation: str):
        super().__init__(
            f"No acting user for {operation}",
            "❌ You must be signed in to do that."
        )

class ForbiddenError(ArenaException):
    """Raised when the actor has no rights over the target."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message, user_message or f"❌ {message}")

class InvalidTransitionError(ArenaException):
    """Raised when a state-machine precondition is violated."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message, user_message or f"❌ {message}")

class DuelNotFoundError(InvalidTransitionError):
    """Raised when a duel id does not exist."""
    def __init__(self, duel_id: int):
        super().__init__(
            f"Duel {duel_id} not found",
            f"❌ Duel #{duel_id} does not exist."
        )
        self.duel_id = duel_id

class TournamentNotFoundError(InvalidTransitionError):
    """Raised when a tournament id does not exist."""
    def __init__(self, tournament_id: int):
        super().__init__(
            f"Tournament {tournament_id} not found",
            f"❌ Tournament #{tournament_id} does not exist."
        )
        self.tournament_id = tournament_id

class ProblemNotFoundError(InvalidTransitionError):
    """Raised when a problem id does not exist or is unpublished."""
    def __init__(self, problem_id: int):
        super().__init__(
            f"Problem {problem_id} not found",
            f"❌ Problem #{problem_id} does not exist."
        )
        self.problem_id = problem_id

class QuotaExceededError(ArenaException):
    """Raised when the daily skip cap is reached."""
    def __init__(self, category_id: int, limit: int):
        super().__init__(
            f"Skip quota of {limit} reached for category {category_id}",
            f"❌ You have used all {limit} skips for this category today."
        )
        self.category_id = category_id
        self.limit = limit

class StorageFailureError(ArenaException):
    """Raised when a read or write to the backing store fails or times out."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Storage failure during {operation}: {details}",
            "❌ Database error occurred. Please try again later."
        )
        self.operation = operation


@asynccontextmanager
async def storage_guard(operation: str):
    """Translate store and timeout errors into StorageFailureError.

    Domain errors raised inside the block pass through untouched. The
    session context managers roll back before the error reaches here.
    """
    try:
        yield
    except SQLAlchemyError as e:
        raise StorageFailureError(operation, str(e)) from e
    except asyncio.TimeoutError as e:
        raise StorageFailureError(operation, "timed out") from e


def require_actor(actor_id, operation: str) -> int:
    """Return the acting user id or raise UnauthenticatedError."""
    if actor_id is None:
        raise UnauthenticatedError(operation)
    return actor_id

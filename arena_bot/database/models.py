from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, DateTime, Date, BigInteger,
    ForeignKey, Enum as SQLEnum, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from enum import Enum

from arena_bot.constants import ArenaConstants

Base = declarative_base()

class TournamentType(Enum):
    ARENA = "arena"
    SWISS = "swiss"

class TournamentStatus(Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    FINISHED = "finished"

class EntrantStatus(Enum):
    WAITING = "waiting"
    PAIRED = "paired"
    ELIMINATED = "eliminated"

class DuelStatus(Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DuelStatus.COMPLETED, DuelStatus.CANCELLED)

class DuelResult(Enum):
    CHALLENGER_WIN = "challenger_win"
    OPPONENT_WIN = "opponent_win"
    NO_WINNER = "no_winner"  # neither answer was correct

class AnswerType(Enum):
    EXACT = "exact"
    NUMERIC = "numeric"
    FRACTION = "fraction"


class Tournament(Base):
    __tablename__ = 'tournaments'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    tournament_type = Column(SQLEnum(TournamentType), default=TournamentType.ARENA, nullable=False)
    status = Column(SQLEnum(TournamentStatus), default=TournamentStatus.SCHEDULED, nullable=False, index=True)

    # Schedule (naive UTC)
    start_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)

    # Swiss only: rounds played so far and rounds planned
    current_round = Column(Integer, nullable=False, default=0)
    total_rounds = Column(Integer, nullable=True)

    # Metadata
    created_by = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    arenas = relationship("Arena", back_populates="tournament", order_by="Arena.round_number")

    __table_args__ = (
        CheckConstraint('duration_minutes > 0', name='ck_tournament_duration_positive'),
        CheckConstraint('total_rounds IS NULL OR total_rounds > 0', name='ck_tournament_rounds_positive'),
    )

    def __repr__(self):
        return f"<Tournament(id={self.id}, name='{self.name}', status={self.status.value if self.status else None})>"


class Arena(Base):
    """A pairing round within a tournament"""
    __tablename__ = 'arenas'

    id = Column(Integer, primary_key=True)
    tournament_id = Column(Integer, ForeignKey('tournaments.id'), nullable=False)
    round_number = Column(Integer, nullable=False, default=1)
    opened_at = Column(DateTime, default=func.now())

    tournament = relationship("Tournament", back_populates="arenas")
    entrants = relationship("Entrant", back_populates="arena")

    __table_args__ = (UniqueConstraint('tournament_id', 'round_number'),)

    def __repr__(self):
        return f"<Arena(tournament_id={self.tournament_id}, round={self.round_number})>"


class Entrant(Base):
    __tablename__ = 'entrants'

    id = Column(Integer, primary_key=True)
    user_id = Column(BigInteger, nullable=False)
    tournament_id = Column(Integer, ForeignKey('tournaments.id'), nullable=False)
    arena_id = Column(Integer, ForeignKey('arenas.id'), nullable=True)  # NULL in swiss tournaments
    status = Column(SQLEnum(EntrantStatus), default=EntrantStatus.WAITING, nullable=False)

    # Pool ordering: refreshed every time the entrant re-enters the lobby
    joined_at = Column(DateTime, nullable=False, default=func.now())

    # Set while paired; points at the last duel afterwards
    duel_id = Column(Integer, ForeignKey('duels.id'), nullable=True)

    # Tournament scoring
    score = Column(Integer, default=0, nullable=False)
    wins = Column(Integer, default=0, nullable=False)
    losses = Column(Integer, default=0, nullable=False)
    streak = Column(Integer, default=0, nullable=False)
    byes = Column(Integer, default=0, nullable=False)

    arena = relationship("Arena", back_populates="entrants")
    duel = relationship("Duel", foreign_keys=[duel_id])

    __table_args__ = (
        UniqueConstraint('tournament_id', 'user_id', name='uq_entrant_tournament_user'),
        Index('ix_entrants_pool', 'arena_id', 'status', 'joined_at'),
    )

    @property
    def is_on_fire(self) -> bool:
        return self.streak >= ArenaConstants.ON_FIRE_STREAK

    def __repr__(self):
        return f"<Entrant(user_id={self.user_id}, tournament_id={self.tournament_id}, status={self.status.value if self.status else None})>"


class Duel(Base):
    __tablename__ = 'duels'

    id = Column(Integer, primary_key=True)
    challenger_id = Column(BigInteger, nullable=False, index=True)
    opponent_id = Column(BigInteger, nullable=True, index=True)  # NULL until accepted
    status = Column(SQLEnum(DuelStatus), default=DuelStatus.WAITING, nullable=False, index=True)

    # Problem under contest
    problem_id = Column(Integer, ForeignKey('problems.id'), nullable=True)
    difficulty = Column(Integer, nullable=False, default=5)

    # Submitted answers, graded on submission
    challenger_answer = Column(String(200), nullable=True)
    challenger_correct = Column(Boolean, nullable=True)
    challenger_time_seconds = Column(Float, nullable=True)
    opponent_answer = Column(String(200), nullable=True)
    opponent_correct = Column(Boolean, nullable=True)
    opponent_time_seconds = Column(Float, nullable=True)

    # Outcome
    winner_id = Column(BigInteger, nullable=True)
    result = Column(SQLEnum(DuelResult), nullable=True)

    # Tournament duels only; arena_id for arena duels, round_number for swiss
    tournament_id = Column(Integer, ForeignKey('tournaments.id'), nullable=True, index=True)
    arena_id = Column(Integer, ForeignKey('arenas.id'), nullable=True)
    round_number = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=func.now())
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint('difficulty BETWEEN 1 AND 10', name='ck_duel_difficulty_range'),
    )

    @property
    def participants(self):
        return [uid for uid in (self.challenger_id, self.opponent_id) if uid is not None]

    def other_participant(self, user_id: int):
        if user_id == self.challenger_id:
            return self.opponent_id
        if user_id == self.opponent_id:
            return self.challenger_id
        return None

    def side_of(self, user_id: int):
        """Column prefix for a participant: 'challenger' or 'opponent'"""
        if user_id == self.challenger_id:
            return 'challenger'
        if user_id == self.opponent_id:
            return 'opponent'
        return None

    def __repr__(self):
        return (f"<Duel(id={self.id}, challenger={self.challenger_id}, "
                f"opponent={self.opponent_id}, status={self.status.value if self.status else None})>")


class UserRating(Base):
    __tablename__ = 'user_ratings'

    user_id = Column(BigInteger, primary_key=True, autoincrement=False)
    rating = Column(Integer, nullable=False, default=1000)
    total_points = Column(Integer, nullable=False, default=0)
    problems_solved = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('rating >= 0', name='ck_rating_non_negative'),
        CheckConstraint('total_points >= 0', name='ck_points_non_negative'),
        Index('ix_user_ratings_rating', 'rating'),
    )

    def __repr__(self):
        return f"<UserRating(user_id={self.user_id}, rating={self.rating}, points={self.total_points})>"


class DailySkip(Base):
    __tablename__ = 'daily_skips'

    id = Column(Integer, primary_key=True)
    user_id = Column(BigInteger, nullable=False)
    category_id = Column(Integer, nullable=False)
    skip_date = Column(Date, nullable=False)
    skip_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint('user_id', 'category_id', 'skip_date', name='uq_daily_skip_key'),
        CheckConstraint('skip_count >= 0', name='ck_skip_count_non_negative'),
    )

    def __repr__(self):
        return f"<DailySkip(user_id={self.user_id}, category_id={self.category_id}, date={self.skip_date}, count={self.skip_count})>"


class Problem(Base):
    __tablename__ = 'problems'

    id = Column(Integer, primary_key=True)
    title = Column(String(200), nullable=False)
    statement = Column(Text, nullable=False)

    # Answer key; never shown to players before they attempt
    answer = Column(String(200), nullable=False)
    answer_type = Column(SQLEnum(AnswerType), default=AnswerType.EXACT, nullable=False)

    difficulty = Column(Integer, nullable=False, default=5)
    category_id = Column(Integer, nullable=True, index=True)
    is_published = Column(Boolean, nullable=False, default=True)

    created_by = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        CheckConstraint('difficulty BETWEEN 1 AND 10', name='ck_problem_difficulty_range'),
        Index('ix_problems_pick', 'is_published', 'difficulty'),
    )

    def __repr__(self):
        return f"<Problem(id={self.id}, title='{self.title}', difficulty={self.difficulty})>"


class ProblemAttempt(Base):
    """One graded practice attempt; a problem can be attempted once per user"""
    __tablename__ = 'problem_attempts'

    id = Column(Integer, primary_key=True)
    user_id = Column(BigInteger, nullable=False)
    problem_id = Column(Integer, ForeignKey('problems.id'), nullable=False)
    correct = Column(Boolean, nullable=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('user_id', 'problem_id', name='uq_attempt_user_problem'),
    )

    def __repr__(self):
        return f"<ProblemAttempt(user_id={self.user_id}, problem_id={self.problem_id}, correct={self.correct})>"

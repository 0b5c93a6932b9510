from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Float, Date, ForeignKey, UniqueConstraint,
    Index, text
)
from sqlalchemy.orm import relationship
from datetime import datetime

from recycleit.database import Base
from recycleit.constants import (
    GOAL_KIND_REDUCE, GOAL_STATUS_ACTUAL, SESSION_STATUS_OPEN, SESSION_STATUS_CLOSED,
    SESSION_STATUS_CLOSING,
    DEFAULT_PROJECT_COMPLETION_POINTS, DEFAULT_ARTICLE_FINISH_POINTS,
    DEFAULT_REUSE_POINTS_PER_ITEM, DEFAULT_REUSE_POINTS_CAP, DEFAULT_MAX_UPDATE_RETRIES,
    DEFAULT_RANKING_BATCH_SIZE, DEFAULT_LEAGUE_SESSION_LENGTH_DAYS
)


class Goal(Base):
    __tablename__ = "goals"
    __table_args__ = (
        # One ACTUAL and one NEXT goal per user and kind
        Index(
            "uq_goal_open_slot",
            "user_id",
            "kind",
            "status",
            unique=True,
            sqlite_where=text("status IN ('ACTUAL', 'NEXT')"),
            postgresql_where=text("status IN ('ACTUAL', 'NEXT')"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    kind = Column(String, nullable=False)  # recycle, reduce
    status = Column(String, nullable=False, default=GOAL_STATUS_ACTUAL)  # ACTUAL, NEXT, INACTIVE

    progress = Column(Float, default=0.0)
    difficulty = Column(String, nullable=False)  # EASY, MEDIUM, HARD
    frequency = Column(String, nullable=False)  # DAILY, WEEKLY, MONTHLY
    next_check = Column(Date, nullable=True)
    multiplier = Column(Float, default=1.0)

    # Recycle goals: projects counted toward the target
    finished_projects = Column(Integer, default=0)

    # Reduce goals: days the user may skip before the goal is evaluated
    skip_days_left = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.now)
    version = Column(Integer, nullable=False)

    items = relationship(
        "ReduceItem",
        back_populates="goal",
        order_by="ReduceItem.position",
        cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_reduce(self) -> bool:
        return self.kind == GOAL_KIND_REDUCE


class ReduceItem(Base):
    __tablename__ = "reduce_items"

    id = Column(Integer, primary_key=True, index=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0)
    material = Column(String, nullable=False)  # plastic, glass, paper, metal, textile
    target_quantity = Column(Integer, nullable=False, default=0)
    actual_quantity = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)

    goal = relationship("Goal", back_populates="items")

    __mapper_args__ = {"version_id_col": version}

    def increment(self, amount: int) -> int:
        """Add amount to the actual quantity and return the new value"""
        self.actual_quantity = (self.actual_quantity or 0) + amount
        return self.actual_quantity

    def decrement(self, amount: int) -> bool:
        """
        Subtract amount from the actual quantity, never going below zero.

        Returns:
            True when the result had to be clamped at zero
        """
        current = self.actual_quantity or 0
        if amount > current:
            self.actual_quantity = 0
            return True
        self.actual_quantity = current - amount
        return False

    @property
    def is_met(self) -> bool:
        return (self.actual_quantity or 0) >= (self.target_quantity or 0)

    def calculate_progress(self) -> float:
        """Fraction of the target reached, capped at 1.0"""
        if not self.target_quantity:
            return 1.0
        return min((self.actual_quantity or 0) / self.target_quantity, 1.0)


class PointCounters(Base):
    __tablename__ = "point_counters"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, unique=True, index=True)

    # Raw points per category
    reduce_points = Column(Integer, default=0)
    recycle_points = Column(Integer, default=0)
    reuse_points = Column(Integer, default=0)
    knowledge_points = Column(Integer, default=0)

    last_updated = Column(DateTime, default=datetime.now, onupdate=datetime.now)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def calculate_total(self) -> int:
        from recycleit.services.points_service import calculate_total
        return calculate_total(self)


class League(Base):
    __tablename__ = "leagues"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    tier = Column(Integer, nullable=False, unique=True, index=True)  # 1 = best league

    members_count = Column(Integer, nullable=False, default=30)
    promoted_count = Column(Integer, nullable=False, default=0)
    relegated_count = Column(Integer, nullable=False, default=0)

    promotion_enabled = Column(Boolean, default=True)
    relegation_enabled = Column(Boolean, default=True)

    sessions = relationship("LeagueSession", back_populates="league")


class LeagueSession(Base):
    __tablename__ = "league_sessions"

    id = Column(Integer, primary_key=True, index=True)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    is_finished = Column(Boolean, default=False)
    status = Column(String, nullable=False, default=SESSION_STATUS_OPEN)  # OPEN, CLOSING, CLOSED
    created_at = Column(DateTime, default=datetime.now)
    closed_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    league = relationship("League", back_populates="sessions")
    entries = relationship(
        "UserPunctuation",
        back_populates="session",
        foreign_keys="UserPunctuation.session_id",
        order_by="UserPunctuation.joined_at"
    )

    __mapper_args__ = {"version_id_col": version}

    def lifecycle_state(self, today) -> str:
        """OPEN while accepting scores, CLOSING once the window passed, CLOSED when frozen"""
        if self.is_finished or self.status == SESSION_STATUS_CLOSED:
            return SESSION_STATUS_CLOSED
        if self.status == SESSION_STATUS_CLOSING or self.end_date < today:
            return SESSION_STATUS_CLOSING
        return SESSION_STATUS_OPEN

    def covers(self, day) -> bool:
        return self.start_date <= day <= self.end_date


class UserPunctuation(Base):
    __tablename__ = "user_punctuations"
    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_user_punctuation_session_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("league_sessions.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    counters_id = Column(Integer, ForeignKey("point_counters.id"), nullable=True)

    total = Column(Integer, default=0)  # Weighted total cached on every scoring event
    joined_at = Column(DateTime, default=datetime.now)

    # Filled in when the session closes
    final_rank = Column(Integer, nullable=True)
    target_tier = Column(Integer, nullable=True)
    movement = Column(String, nullable=True)  # promoted, relegated, stayed
    carried_to_session_id = Column(Integer, ForeignKey("league_sessions.id"), nullable=True)

    version = Column(Integer, nullable=False)

    session = relationship("LeagueSession", back_populates="entries", foreign_keys=[session_id])
    counters = relationship("PointCounters")

    __mapper_args__ = {"version_id_col": version}

    def calculate_total(self) -> int:
        """
        Live weighted total from the user's counters while the session is
        OPEN, the frozen value afterwards.

        Closing a session recomputes total from the counters before ranking,
        so right after close both values are equal. Points earned later only
        move the counters.
        """
        if self.session is not None and self.session.status != SESSION_STATUS_OPEN:
            return self.total or 0
        if self.counters is None:
            return self.total or 0
        return self.counters.calculate_total()


class Settings(Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)

    # Scoring
    project_completion_points = Column(Integer, default=DEFAULT_PROJECT_COMPLETION_POINTS)
    article_finish_points = Column(Integer, default=DEFAULT_ARTICLE_FINISH_POINTS)
    reuse_points_per_item = Column(Integer, default=DEFAULT_REUSE_POINTS_PER_ITEM)
    reuse_points_cap = Column(Integer, default=DEFAULT_REUSE_POINTS_CAP)

    # Optimistic locking
    max_update_retries = Column(Integer, default=DEFAULT_MAX_UPDATE_RETRIES)

    # Leagues
    ranking_batch_size = Column(Integer, default=DEFAULT_RANKING_BATCH_SIZE)
    league_session_length_days = Column(Integer, default=DEFAULT_LEAGUE_SESSION_LENGTH_DAYS)

    # Scheduler
    auto_rollover_enabled = Column(Boolean, default=True)
    auto_league_rollover_enabled = Column(Boolean, default=True)

    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

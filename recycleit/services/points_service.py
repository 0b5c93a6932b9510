"""
Points aggregation service.
Folds category point deltas into a user's counters and derives the weighted total.
"""
import logging
from datetime import date
from typing import Optional
from sqlalchemy.orm import Session

from recycleit.models import PointCounters
from recycleit.database import run_atomic
from recycleit.exceptions import PointCountersNotFoundException, ValidationException
from recycleit.repositories.points_repository import PointCountersRepository
from recycleit.repositories.settings_repository import SettingsRepository
from recycleit.services.date_service import DateService
from recycleit.constants import (
    WEIGHT_RECYCLE, WEIGHT_REUSE, WEIGHT_KNOWLEDGE, WEIGHT_REDUCE, WEIGHT_SCALE,
    POINT_CATEGORIES
)

logger = logging.getLogger("recycleit.points")


def calculate_total(counters) -> int:
    """
    Weighted total of a set of point counters.

    Formula: round(recycle + reuse + knowledge * 0.85 + reduce * 0.15)

    Works on hundredths with integer arithmetic, so identical counters
    always give the same total. Missing or None counters count as zero and
    halves round up.
    """
    if counters is None:
        return 0
    hundredths = (
        (getattr(counters, "recycle_points", None) or 0) * WEIGHT_RECYCLE
        + (getattr(counters, "reuse_points", None) or 0) * WEIGHT_REUSE
        + (getattr(counters, "knowledge_points", None) or 0) * WEIGHT_KNOWLEDGE
        + (getattr(counters, "reduce_points", None) or 0) * WEIGHT_REDUCE
    )
    return (hundredths + WEIGHT_SCALE // 2) // WEIGHT_SCALE


class PointsService:
    """Service for point counters and the weighted total"""

    def __init__(self, db: Session):
        self.db = db
        self.counters_repo = PointCountersRepository()
        self.settings_repo = SettingsRepository()
        self.date_service = DateService()

    def fold_deltas(
        self,
        user_id: int,
        recycle: int = 0,
        reuse: int = 0,
        knowledge: int = 0,
        reduce: int = 0,
        today: Optional[date] = None
    ) -> PointCounters:
        """
        Add category deltas to the user's counters inside the current unit of
        work and push the new total into the user's open roster entry.

        Does not commit. Counters never drop below zero.
        """
        counters = self.counters_repo.get_or_create(self.db, user_id)
        counters.recycle_points = max(0, (counters.recycle_points or 0) + recycle)
        counters.reuse_points = max(0, (counters.reuse_points or 0) + reuse)
        counters.knowledge_points = max(0, (counters.knowledge_points or 0) + knowledge)
        counters.reduce_points = max(0, (counters.reduce_points or 0) + reduce)

        total = calculate_total(counters)

        from recycleit.services.league_service import LeagueService
        LeagueService(self.db).refresh_entry(
            user_id, total, self.date_service.get_today(today), counters=counters
        )
        return counters

    def apply_deltas(
        self,
        user_id: int,
        recycle: int = 0,
        reuse: int = 0,
        knowledge: int = 0,
        reduce: int = 0,
        today: Optional[date] = None
    ) -> PointCounters:
        """
        Atomically add category deltas to the user's counters.

        Retries with a fresh read when a concurrent event updated the same
        counters first.

        Raises:
            ConcurrentUpdateException: when retries are exhausted
        """
        settings = self.settings_repo.get(self.db)

        def unit():
            return self.fold_deltas(user_id, recycle, reuse, knowledge, reduce, today)

        counters = run_atomic(
            self.db, unit, f"point update for user {user_id}", settings.max_update_retries
        )
        logger.info(
            f"Points applied to user {user_id}: recycle={recycle} reuse={reuse} "
            f"knowledge={knowledge} reduce={reduce} -> total {calculate_total(counters)}"
        )
        return counters

    def set_counter(self, user_id: int, category: str, value: int) -> PointCounters:
        """Overwrite one category counter (administrative correction)"""
        if category not in POINT_CATEGORIES:
            raise ValidationException("category", f"unknown point category '{category}'")
        field = f"{category}_points"
        if value < 0:
            raise ValidationException(field, "must not be negative")

        self.get_counters(user_id)
        settings = self.settings_repo.get(self.db)

        def unit():
            counters = self.counters_repo.get_by_user(self.db, user_id)
            delta = value - (getattr(counters, field) or 0)
            return self.fold_deltas(user_id, **{category: delta})

        return run_atomic(
            self.db, unit, f"{field} correction for user {user_id}", settings.max_update_retries
        )

    def get_counters(self, user_id: int) -> PointCounters:
        """
        Get a user's counters.

        Raises:
            PointCountersNotFoundException: if the user never scored
        """
        counters = self.counters_repo.get_by_user(self.db, user_id)
        if not counters:
            raise PointCountersNotFoundException(user_id)
        return counters

    def get_current_total(self, user_id: int) -> int:
        """Get a user's current weighted total"""
        return calculate_total(self.get_counters(user_id))

    def get_summary(self, user_id: int) -> dict:
        """Get counters and total for display"""
        counters = self.get_counters(user_id)
        return {
            "user_id": counters.user_id,
            "reduce_points": counters.reduce_points or 0,
            "recycle_points": counters.recycle_points or 0,
            "reuse_points": counters.reuse_points or 0,
            "knowledge_points": counters.knowledge_points or 0,
            "total": calculate_total(counters),
            "last_updated": counters.last_updated
        }

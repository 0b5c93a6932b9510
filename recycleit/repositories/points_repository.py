"""
Points repository - Data access layer for PointCounters.
"""
from typing import Optional
from sqlalchemy.orm import Session

from recycleit.models import PointCounters


class PointCountersRepository:
    """Repository for PointCounters data access"""

    @staticmethod
    def get_by_user(db: Session, user_id: int) -> Optional[PointCounters]:
        """Get the live counters row of a user"""
        return db.query(PointCounters).filter(PointCounters.user_id == user_id).first()

    @staticmethod
    def get_or_create(db: Session, user_id: int) -> PointCounters:
        """
        Get the counters row of a user, staging an empty one if missing.

        The new row is flushed, not committed: the caller's unit of work
        decides when it becomes visible. A concurrent first event for the
        same user makes the flush raise IntegrityError on user_id.
        """
        counters = PointCountersRepository.get_by_user(db, user_id)
        if not counters:
            counters = PointCounters(
                user_id=user_id,
                reduce_points=0,
                recycle_points=0,
                reuse_points=0,
                knowledge_points=0
            )
            db.add(counters)
            db.flush()
        return counters

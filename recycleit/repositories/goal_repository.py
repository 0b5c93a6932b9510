"""
Goal repository - Data access layer for Goal and ReduceItem models.
"""
from datetime import date
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_

from recycleit.models import Goal, ReduceItem
from recycleit.constants import GOAL_STATUS_ACTUAL


class GoalRepository:
    """Repository for Goal data access"""

    @staticmethod
    def get_by_id(db: Session, goal_id: int) -> Optional[Goal]:
        """Get goal by ID"""
        return db.query(Goal).filter(Goal.id == goal_id).first()

    @staticmethod
    def get_by_status(db: Session, user_id: int, kind: str, status: str) -> List[Goal]:
        """Get a user's goals of one kind in one status, oldest first"""
        return db.query(Goal).filter(
            and_(
                Goal.user_id == user_id,
                Goal.kind == kind,
                Goal.status == status
            )
        ).order_by(Goal.id).all()

    @staticmethod
    def get_for_user(
        db: Session,
        user_id: int,
        status: Optional[str] = None,
        kind: Optional[str] = None
    ) -> List[Goal]:
        """Get a user's goals, optionally filtered"""
        query = db.query(Goal).filter(Goal.user_id == user_id)
        if status:
            query = query.filter(Goal.status == status)
        if kind:
            query = query.filter(Goal.kind == kind)
        return query.order_by(Goal.id).all()

    @staticmethod
    def get_due(db: Session, today: date, user_id: Optional[int] = None) -> List[Goal]:
        """Get ACTUAL goals whose next check date has been reached"""
        query = db.query(Goal).filter(
            and_(
                Goal.status == GOAL_STATUS_ACTUAL,
                Goal.next_check != None,
                Goal.next_check <= today
            )
        )
        if user_id is not None:
            query = query.filter(Goal.user_id == user_id)
        return query.order_by(Goal.user_id, Goal.id).all()

    @staticmethod
    def get_ids_checked_on(db: Session, user_id: int, target_date: date) -> List[int]:
        """Get IDs of a user's goals scheduled for a check on a date"""
        rows = db.query(Goal.id).filter(
            and_(
                Goal.user_id == user_id,
                Goal.next_check == target_date
            )
        ).order_by(Goal.id).all()
        return [row[0] for row in rows]

    @staticmethod
    def add(db: Session, goal: Goal) -> Goal:
        """Stage a new goal in the current unit of work"""
        db.add(goal)
        db.flush()
        return goal


class ReduceItemRepository:
    """Repository for ReduceItem data access"""

    @staticmethod
    def get_by_id(db: Session, item_id: int) -> Optional[ReduceItem]:
        """Get reduce item by ID"""
        return db.query(ReduceItem).filter(ReduceItem.id == item_id).first()

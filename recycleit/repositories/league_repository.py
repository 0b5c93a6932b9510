"""
League repository - Data access layer for League, LeagueSession and UserPunctuation.
"""
from datetime import date
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_

from recycleit.models import League, LeagueSession, UserPunctuation
from recycleit.constants import SESSION_STATUS_CLOSED, SESSION_STATUS_OPEN


class LeagueRepository:
    """Repository for League data access"""

    @staticmethod
    def get_by_id(db: Session, league_id: int) -> Optional[League]:
        """Get league by ID"""
        return db.query(League).filter(League.id == league_id).first()

    @staticmethod
    def get_by_tier(db: Session, tier: int) -> Optional[League]:
        """Get league by tier"""
        return db.query(League).filter(League.tier == tier).first()

    @staticmethod
    def get_all(db: Session) -> List[League]:
        """Get all leagues, best tier first"""
        return db.query(League).order_by(League.tier).all()

    @staticmethod
    def create(db: Session, league: League) -> League:
        """Create new league"""
        db.add(league)
        db.commit()
        db.refresh(league)
        return league

    @staticmethod
    def update(db: Session, league: League) -> League:
        """Update existing league"""
        db.commit()
        db.refresh(league)
        return league

    @staticmethod
    def delete(db: Session, league: League) -> None:
        """Delete a league"""
        db.delete(league)
        db.commit()


class LeagueSessionRepository:
    """Repository for LeagueSession data access"""

    @staticmethod
    def get_by_id(db: Session, session_id: int) -> Optional[LeagueSession]:
        """Get league session by ID"""
        return db.query(LeagueSession).filter(LeagueSession.id == session_id).first()

    @staticmethod
    def find_active_for_user(db: Session, user_id: int, today: date) -> List[LeagueSession]:
        """
        Get every unfinished session whose window covers today and whose
        roster contains the user. More than one row is an integrity problem
        the caller must report.
        """
        return db.query(LeagueSession).join(
            UserPunctuation, UserPunctuation.session_id == LeagueSession.id
        ).filter(
            and_(
                UserPunctuation.user_id == user_id,
                LeagueSession.start_date <= today,
                LeagueSession.end_date >= today,
                LeagueSession.is_finished == False
            )
        ).order_by(LeagueSession.end_date.desc()).all()

    @staticmethod
    def find_overlapping_for_user(
        db: Session,
        user_id: int,
        start_date: date,
        end_date: date
    ) -> List[LeagueSession]:
        """Get unfinished sessions of a user whose window intersects [start_date, end_date]"""
        return db.query(LeagueSession).join(
            UserPunctuation, UserPunctuation.session_id == LeagueSession.id
        ).filter(
            and_(
                UserPunctuation.user_id == user_id,
                LeagueSession.start_date <= end_date,
                LeagueSession.end_date >= start_date,
                LeagueSession.is_finished == False
            )
        ).all()

    @staticmethod
    def get_open_for_league(db: Session, league_id: int, day: date) -> Optional[LeagueSession]:
        """Get the open session of a league covering a day"""
        return db.query(LeagueSession).filter(
            and_(
                LeagueSession.league_id == league_id,
                LeagueSession.status == SESSION_STATUS_OPEN,
                LeagueSession.start_date <= day,
                LeagueSession.end_date >= day
            )
        ).first()

    @staticmethod
    def get_expired(db: Session, today: date) -> List[LeagueSession]:
        """Get unfinished sessions whose window ended before today"""
        return db.query(LeagueSession).filter(
            and_(
                LeagueSession.is_finished == False,
                LeagueSession.end_date < today
            )
        ).order_by(LeagueSession.end_date, LeagueSession.id).all()

    @staticmethod
    def get_for_user(db: Session, user_id: int) -> List[LeagueSession]:
        """Get all sessions a user took part in, most recent first"""
        return db.query(LeagueSession).join(
            UserPunctuation, UserPunctuation.session_id == LeagueSession.id
        ).filter(
            UserPunctuation.user_id == user_id
        ).order_by(LeagueSession.end_date.desc()).all()

    @staticmethod
    def add(db: Session, league_session: LeagueSession) -> LeagueSession:
        """Stage a new session in the current unit of work"""
        db.add(league_session)
        db.flush()
        return league_session


class UserPunctuationRepository:
    """Repository for UserPunctuation (roster entry) data access"""

    @staticmethod
    def get_entry(db: Session, session_id: int, user_id: int) -> Optional[UserPunctuation]:
        """Get a user's roster entry in a session"""
        return db.query(UserPunctuation).filter(
            and_(
                UserPunctuation.session_id == session_id,
                UserPunctuation.user_id == user_id
            )
        ).first()

    @staticmethod
    def count_roster(db: Session, session_id: int) -> int:
        """Count roster entries of a session"""
        return db.query(UserPunctuation).filter(
            UserPunctuation.session_id == session_id
        ).count()

    @staticmethod
    def get_roster(db: Session, session_id: int) -> List[UserPunctuation]:
        """Get a session roster in rank order"""
        return db.query(UserPunctuation).filter(
            UserPunctuation.session_id == session_id
        ).order_by(
            UserPunctuation.total.desc(),
            UserPunctuation.joined_at,
            UserPunctuation.id
        ).all()

    @staticmethod
    def get_page(db: Session, session_id: int, offset: int, limit: int) -> List[UserPunctuation]:
        """Get one page of a session roster in id order"""
        return db.query(UserPunctuation).filter(
            UserPunctuation.session_id == session_id
        ).order_by(UserPunctuation.id).offset(offset).limit(limit).all()

    @staticmethod
    def get_ranked_page(
        db: Session,
        session_id: int,
        offset: int,
        limit: int
    ) -> List[UserPunctuation]:
        """Get one page of a session roster in rank order"""
        return db.query(UserPunctuation).filter(
            UserPunctuation.session_id == session_id
        ).order_by(
            UserPunctuation.total.desc(),
            UserPunctuation.joined_at,
            UserPunctuation.id
        ).offset(offset).limit(limit).all()

    @staticmethod
    def get_pending_assignments(db: Session, tier: int) -> List[UserPunctuation]:
        """
        Get closed-session entries assigned to a tier that have not been
        placed in a new session yet, best previous rank first.
        """
        return db.query(UserPunctuation).join(
            LeagueSession, UserPunctuation.session_id == LeagueSession.id
        ).filter(
            and_(
                LeagueSession.status == SESSION_STATUS_CLOSED,
                UserPunctuation.target_tier == tier,
                UserPunctuation.carried_to_session_id == None
            )
        ).order_by(
            LeagueSession.end_date.desc(),
            UserPunctuation.final_rank,
            UserPunctuation.id
        ).all()

    @staticmethod
    def add(db: Session, entry: UserPunctuation) -> UserPunctuation:
        """Stage a new roster entry in the current unit of work"""
        db.add(entry)
        db.flush()
        return entry

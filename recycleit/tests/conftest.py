"""
Shared fixtures: in-memory database, default settings, fixed dates and
small factories for leagues, sessions and roster entries.
"""
import pytest
from datetime import date, datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from recycleit.database import Base
from recycleit.models import (
    Settings, League, LeagueSession, UserPunctuation, PointCounters
)
from recycleit.constants import SESSION_STATUS_OPEN


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed database so two sessions use two real connections"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'recycleit_test.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(file_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=file_engine)


@pytest.fixture
def default_settings(db_session):
    settings = Settings()
    db_session.add(settings)
    db_session.commit()
    db_session.refresh(settings)
    return settings


@pytest.fixture
def today():
    return date(2026, 3, 16)


@pytest.fixture
def yesterday(today):
    return today - timedelta(days=1)


def make_league(db, tier, members_count=30, promoted_count=0, relegated_count=0,
                promotion_enabled=True, relegation_enabled=True, name=None):
    league = League(
        name=name or f"Tier {tier}",
        tier=tier,
        members_count=members_count,
        promoted_count=promoted_count,
        relegated_count=relegated_count,
        promotion_enabled=promotion_enabled,
        relegation_enabled=relegation_enabled
    )
    db.add(league)
    db.commit()
    db.refresh(league)
    return league


def make_session(db, league, start_date, end_date, status=SESSION_STATUS_OPEN):
    league_session = LeagueSession(
        league_id=league.id,
        start_date=start_date,
        end_date=end_date,
        status=status,
        is_finished=False
    )
    db.add(league_session)
    db.commit()
    db.refresh(league_session)
    return league_session


def make_entry(db, league_session, user_id, total=0, joined_at=None):
    entry = UserPunctuation(
        session_id=league_session.id,
        user_id=user_id,
        total=total,
        joined_at=joined_at or datetime(2026, 3, 1, 12, 0, 0)
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def make_counters(db, user_id, recycle=0, reuse=0, knowledge=0, reduce=0):
    counters = PointCounters(
        user_id=user_id,
        recycle_points=recycle,
        reuse_points=reuse,
        knowledge_points=knowledge,
        reduce_points=reduce
    )
    db.add(counters)
    db.commit()
    db.refresh(counters)
    return counters

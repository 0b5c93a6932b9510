"""
League session service.

Resolves the session a user is playing in, keeps roster totals current and
drives the session lifecycle: OPEN while scoring, CLOSING once the window has
passed or a close started, CLOSED when totals are frozen and ranked.
"""
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional
from sqlalchemy.orm import Session

from recycleit.models import League, LeagueSession, UserPunctuation, PointCounters
from recycleit.schemas import (
    LeagueCreate, LeagueUpdate, SessionStartResult, SessionEndResult
)
from recycleit.database import run_atomic
from recycleit.exceptions import (
    LeagueNotFoundException, LeagueSessionNotFoundException,
    ActiveSessionNotFoundException, MultipleActiveSessionsException,
    SessionClosedException, RosterFullException, OverlappingSessionException,
    DuplicateTierException, InvalidStateException, ValidationException
)
from recycleit.repositories.league_repository import (
    LeagueRepository, LeagueSessionRepository, UserPunctuationRepository
)
from recycleit.repositories.points_repository import PointCountersRepository
from recycleit.repositories.settings_repository import SettingsRepository
from recycleit.services.date_service import DateService
from recycleit.services.points_service import calculate_total
from recycleit.services.promotion_service import PromotionService
from recycleit.constants import (
    SESSION_STATUS_OPEN, SESSION_STATUS_CLOSING, SESSION_STATUS_CLOSED
)

logger = logging.getLogger("recycleit.leagues")


class LeagueService:
    """Service for leagues, league sessions and their rosters"""

    def __init__(self, db: Session):
        self.db = db
        self.league_repo = LeagueRepository()
        self.session_repo = LeagueSessionRepository()
        self.entry_repo = UserPunctuationRepository()
        self.counters_repo = PointCountersRepository()
        self.settings_repo = SettingsRepository()
        self.date_service = DateService()

    # --- League configuration ---

    def create_league(self, league_data: LeagueCreate) -> League:
        """
        Create a league.

        Raises:
            DuplicateTierException: if another league already has the tier
        """
        if self.league_repo.get_by_tier(self.db, league_data.tier):
            raise DuplicateTierException(league_data.tier)
        league = League(**league_data.model_dump())
        league = self.league_repo.create(self.db, league)
        logger.info(f"League '{league.name}' created at tier {league.tier}")
        return league

    def update_league(self, league_id: int, league_data: LeagueUpdate) -> League:
        """Edit league configuration"""
        league = self.get_league(league_id)
        changes = league_data.model_dump(exclude_unset=True)

        new_tier = changes.get("tier")
        if new_tier is not None and new_tier != league.tier:
            if self.league_repo.get_by_tier(self.db, new_tier):
                raise DuplicateTierException(new_tier)

        for field, value in changes.items():
            setattr(league, field, value)
        return self.league_repo.update(self.db, league)

    def delete_league(self, league_id: int) -> None:
        """Delete a league that never hosted a session"""
        league = self.get_league(league_id)
        if league.sessions:
            raise InvalidStateException(
                f"League {league_id} has {len(league.sessions)} sessions and cannot be deleted"
            )
        self.league_repo.delete(self.db, league)
        logger.info(f"League {league_id} deleted")

    def get_league(self, league_id: int) -> League:
        league = self.league_repo.get_by_id(self.db, league_id)
        if not league:
            raise LeagueNotFoundException(league_id=league_id)
        return league

    def get_league_by_tier(self, tier: int) -> League:
        league = self.league_repo.get_by_tier(self.db, tier)
        if not league:
            raise LeagueNotFoundException(tier=tier)
        return league

    def list_leagues(self) -> List[League]:
        return self.league_repo.get_all(self.db)

    # --- Session queries ---

    def get_session(self, session_id: int) -> LeagueSession:
        """
        Get a league session.

        Raises:
            LeagueSessionNotFoundException: if the session does not exist
        """
        league_session = self.session_repo.get_by_id(self.db, session_id)
        if not league_session:
            raise LeagueSessionNotFoundException(session_id)
        return league_session

    def get_lifecycle_state(self, session_id: int, today: Optional[date] = None) -> str:
        today = self.date_service.get_today(today)
        return self.get_session(session_id).lifecycle_state(today)

    def get_active_session(self, user_id: int, today: Optional[date] = None) -> LeagueSession:
        """
        Resolve the one session a user is playing in on a date.

        Raises:
            ActiveSessionNotFoundException: if the user plays in no session
            MultipleActiveSessionsException: if several sessions match
        """
        today = self.date_service.get_today(today)
        sessions = self.session_repo.find_active_for_user(self.db, user_id, today)
        if not sessions:
            raise ActiveSessionNotFoundException(user_id, today)
        if len(sessions) > 1:
            session_ids = [s.id for s in sessions]
            logger.error(
                f"Integrity violation: user {user_id} is active in sessions {session_ids} on {today}"
            )
            raise MultipleActiveSessionsException(user_id, session_ids)
        return sessions[0]

    def get_active_entry(self, user_id: int, today: Optional[date] = None) -> UserPunctuation:
        """Get the user's roster entry in their active session"""
        league_session = self.get_active_session(user_id, today)
        return self.entry_repo.get_entry(self.db, league_session.id, user_id)

    def get_roster(self, session_id: int) -> List[UserPunctuation]:
        """Get a session roster, best total first"""
        self.get_session(session_id)
        return self.entry_repo.get_roster(self.db, session_id)

    def get_sessions_for_user(self, user_id: int) -> List[LeagueSession]:
        return self.session_repo.get_for_user(self.db, user_id)

    # --- Roster ---

    def refresh_entry(
        self,
        user_id: int,
        total: int,
        today: date,
        counters: Optional[PointCounters] = None
    ) -> Optional[UserPunctuation]:
        """
        Store a user's new total on their open roster entry.

        Runs inside the caller's unit of work and does not commit. Users
        between sessions, or in a session that is closing, keep the points
        in their counters only.

        Raises:
            MultipleActiveSessionsException: if several sessions match
        """
        sessions = self.session_repo.find_active_for_user(self.db, user_id, today)
        if not sessions:
            logger.debug(f"User {user_id} has no active session on {today}, roster not updated")
            return None
        if len(sessions) > 1:
            session_ids = [s.id for s in sessions]
            logger.error(
                f"Integrity violation: user {user_id} is active in sessions {session_ids} on {today}"
            )
            raise MultipleActiveSessionsException(user_id, session_ids)

        league_session = sessions[0]
        state = league_session.lifecycle_state(today)
        if state != SESSION_STATUS_OPEN:
            logger.info(
                f"Session {league_session.id} is {state}: total {total} of user {user_id} "
                f"kept in counters only"
            )
            return None

        entry = self.entry_repo.get_entry(self.db, league_session.id, user_id)
        entry.total = total
        if counters is not None and entry.counters_id is None:
            entry.counters_id = counters.id
        return entry

    def join_session(
        self,
        session_id: int,
        user_id: int,
        today: Optional[date] = None
    ) -> UserPunctuation:
        """
        Enrol a user in an open session. Joining twice returns the existing entry.

        Raises:
            SessionClosedException: if the session is not open
            OverlappingSessionException: if the user plays in an overlapping session
            RosterFullException: if the league capacity is reached
        """
        today = self.date_service.get_today(today)
        settings = self.settings_repo.get(self.db)

        def unit():
            league_session = self.get_session(session_id)
            state = league_session.lifecycle_state(today)
            if state != SESSION_STATUS_OPEN:
                raise SessionClosedException(session_id, state)

            existing = self.entry_repo.get_entry(self.db, session_id, user_id)
            if existing:
                return existing

            overlapping = self._find_overlap(user_id, league_session)
            if overlapping:
                raise OverlappingSessionException(user_id, session_id, overlapping.id)

            capacity = league_session.league.members_count
            if self.entry_repo.count_roster(self.db, session_id) >= capacity:
                raise RosterFullException(session_id, capacity)

            return self._add_entry(league_session, user_id)

        entry = run_atomic(
            self.db, unit, f"join of user {user_id} to session {session_id}",
            settings.max_update_retries
        )
        logger.info(f"User {user_id} joined session {session_id} with total {entry.total}")
        return entry

    # --- Lifecycle ---

    def start_session(
        self,
        league_id: int,
        start_date: date,
        end_date: date,
        initial_user_ids: Optional[List[int]] = None
    ) -> SessionStartResult:
        """
        Open a new session for a league.

        The roster is seeded with users the last ranking assigned to this
        league's tier, best previous rank first, then with initial_user_ids.
        Users playing in an overlapping session are skipped; users beyond the
        league capacity stay pending for a later session.

        Starting again while an open session of the league covers start_date
        returns that session unchanged.
        """
        if end_date < start_date:
            raise ValidationException("end_date", "must not be before start_date")
        league = self.get_league(league_id)
        settings = self.settings_repo.get(self.db)

        def unit():
            existing = self.session_repo.get_open_for_league(self.db, league.id, start_date)
            if existing:
                return SessionStartResult(
                    session_id=existing.id, league_id=league.id, already_started=True
                )

            league_session = LeagueSession(
                league_id=league.id,
                start_date=start_date,
                end_date=end_date,
                is_finished=False,
                status=SESSION_STATUS_OPEN
            )
            self.session_repo.add(self.db, league_session)
            result = SessionStartResult(session_id=league_session.id, league_id=league.id)

            for pending in self.entry_repo.get_pending_assignments(self.db, league.tier):
                if pending.user_id in result.seeded_user_ids:
                    # Older assignment of a user already seated
                    pending.carried_to_session_id = league_session.id
                    continue
                if self._seat(league_session, league, pending.user_id, result):
                    pending.carried_to_session_id = league_session.id

            for user_id in initial_user_ids or []:
                if user_id in result.seeded_user_ids:
                    continue
                self._seat(league_session, league, user_id, result)

            return result

        result = run_atomic(
            self.db, unit, f"start of a session for league {league.id}",
            settings.max_update_retries
        )
        if result.already_started:
            logger.info(f"League {league.id} already has open session {result.session_id}")
        else:
            logger.info(
                f"Session {result.session_id} started for league tier {league.tier} "
                f"({start_date} - {end_date}): {len(result.seeded_user_ids)} seeded, "
                f"{len(result.skipped_user_ids)} skipped, {len(result.waitlisted_user_ids)} waitlisted"
            )
        return result

    def end_session(self, session_id: int, today: Optional[date] = None) -> SessionEndResult:
        """
        Close a session: freeze totals, rank the roster and store next tiers.

        The CLOSING mark is committed before ranking so scoring events stop
        touching the roster. Ranking rewrites every roster row, so a scoring
        transaction racing the close loses its version check and retries
        against the closing session. Ending a closed session is a no-op.
        """
        today = self.date_service.get_today(today)
        settings = self.settings_repo.get(self.db)

        def mark_closing():
            league_session = self.get_session(session_id)
            if league_session.lifecycle_state(today) == SESSION_STATUS_CLOSED:
                return False
            if league_session.status == SESSION_STATUS_OPEN:
                league_session.status = SESSION_STATUS_CLOSING
            return True

        if not run_atomic(
            self.db, mark_closing, f"close of session {session_id}",
            settings.max_update_retries
        ):
            logger.info(f"Session {session_id} already closed")
            return SessionEndResult(session_id=session_id, already_closed=True)

        def rank_and_close():
            league_session = self.get_session(session_id)
            if league_session.status == SESSION_STATUS_CLOSED:
                return None
            promotion = PromotionService(self.db).rank_session(
                league_session, settings.ranking_batch_size
            )
            league_session.status = SESSION_STATUS_CLOSED
            league_session.is_finished = True
            league_session.closed_at = datetime.now()
            return promotion

        promotion = run_atomic(
            self.db, rank_and_close, f"ranking of session {session_id}",
            settings.max_update_retries
        )
        if promotion is None:
            logger.info(f"Session {session_id} was closed concurrently")
            return SessionEndResult(session_id=session_id, already_closed=True)

        logger.info(f"Session {session_id} closed")
        return SessionEndResult(session_id=session_id, promotion=promotion)

    def close_expired_sessions(self, today: Optional[date] = None) -> List[SessionEndResult]:
        """Close every unfinished session whose window ended before today"""
        today = self.date_service.get_today(today)
        results = []
        for league_session in self.session_repo.get_expired(self.db, today):
            results.append(self.end_session(league_session.id, today))
        return results

    def start_next_sessions(self, today: Optional[date] = None) -> List[SessionStartResult]:
        """
        Start a session today for every league without an open one that has
        users waiting to be placed in it.
        """
        today = self.date_service.get_today(today)
        settings = self.settings_repo.get(self.db)
        end_date = today + timedelta(days=settings.league_session_length_days - 1)

        results = []
        for league in self.league_repo.get_all(self.db):
            if self.session_repo.get_open_for_league(self.db, league.id, today):
                continue
            if not self.entry_repo.get_pending_assignments(self.db, league.tier):
                continue
            results.append(self.start_session(league.id, today, end_date))
        return results

    # --- Helpers ---

    def _find_overlap(self, user_id: int, league_session: LeagueSession) -> Optional[LeagueSession]:
        overlapping = self.session_repo.find_overlapping_for_user(
            self.db, user_id, league_session.start_date, league_session.end_date
        )
        for other in overlapping:
            if other.id != league_session.id:
                return other
        return None

    def _add_entry(self, league_session: LeagueSession, user_id: int) -> UserPunctuation:
        counters = self.counters_repo.get_by_user(self.db, user_id)
        entry = UserPunctuation(
            session_id=league_session.id,
            user_id=user_id,
            counters_id=counters.id if counters else None,
            total=calculate_total(counters)
        )
        return self.entry_repo.add(self.db, entry)

    def _seat(
        self,
        league_session: LeagueSession,
        league: League,
        user_id: int,
        result: SessionStartResult
    ) -> bool:
        """Try to put a user on a new roster, recording the outcome in result"""
        if self._find_overlap(user_id, league_session):
            if user_id not in result.skipped_user_ids:
                result.skipped_user_ids.append(user_id)
            return False
        if len(result.seeded_user_ids) >= league.members_count:
            if user_id not in result.waitlisted_user_ids:
                result.waitlisted_user_ids.append(user_id)
            return False
        self._add_entry(league_session, user_id)
        result.seeded_user_ids.append(user_id)
        return True

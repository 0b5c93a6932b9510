"""
Tests for LeagueService.

Tests cover:
1. League configuration
2. Active session resolution
3. Joining sessions
4. Session start and end, including idempotency
5. Seeding the next session from the last ranking
"""
import pytest
from datetime import timedelta

from recycleit.services.league_service import LeagueService
from recycleit.services.points_service import PointsService
from recycleit.schemas import LeagueCreate, LeagueUpdate
from recycleit.exceptions import (
    ActiveSessionNotFoundException, MultipleActiveSessionsException,
    DuplicateTierException, SessionClosedException, RosterFullException,
    OverlappingSessionException, LeagueSessionNotFoundException,
    InvalidStateException, ValidationException
)
from recycleit.constants import (
    SESSION_STATUS_OPEN, SESSION_STATUS_CLOSING, SESSION_STATUS_CLOSED
)
from conftest import make_league, make_session, make_entry, make_counters


class TestLeagueConfiguration:
    """Tests for league CRUD"""

    def test_create_league(self, db_session, default_settings):
        """Creates a league with its movement rules"""
        league = LeagueService(db_session).create_league(
            LeagueCreate(name="Gold", tier=1, members_count=20, promoted_count=0, relegated_count=3)
        )
        assert league.id is not None
        assert league.relegated_count == 3

    def test_duplicate_tier_rejected(self, db_session, default_settings):
        """Two leagues cannot share a tier"""
        make_league(db_session, tier=1)
        with pytest.raises(DuplicateTierException):
            LeagueService(db_session).create_league(LeagueCreate(name="Other", tier=1))

    def test_update_league(self, db_session, default_settings):
        """Only given fields change"""
        league = make_league(db_session, tier=2, promoted_count=1)
        updated = LeagueService(db_session).update_league(league.id, LeagueUpdate(promoted_count=4))

        assert updated.promoted_count == 4
        assert updated.tier == 2

    def test_delete_league_with_sessions_rejected(self, db_session, default_settings, today):
        """Leagues that hosted sessions are kept"""
        league = make_league(db_session, tier=1)
        make_session(db_session, league, today, today + timedelta(days=6))
        with pytest.raises(InvalidStateException):
            LeagueService(db_session).delete_league(league.id)

    def test_list_leagues_best_first(self, db_session, default_settings):
        """Leagues are listed by tier"""
        make_league(db_session, tier=3)
        make_league(db_session, tier=1)
        tiers = [league.tier for league in LeagueService(db_session).list_leagues()]
        assert tiers == [1, 3]


class TestActiveSession:
    """Tests for get_active_session"""

    def test_resolves_session_covering_today(self, db_session, default_settings, today):
        """Session window includes both start and end dates"""
        league = make_league(db_session, tier=1)
        league_session = make_session(db_session, league, today - timedelta(days=6), today)
        make_entry(db_session, league_session, user_id=1)

        found = LeagueService(db_session).get_active_session(1, today)
        assert found.id == league_session.id

    def test_no_session_raises_not_found(self, db_session, default_settings, today):
        """No default or empty session is returned"""
        with pytest.raises(ActiveSessionNotFoundException):
            LeagueService(db_session).get_active_session(1, today)

    def test_user_not_on_roster_raises_not_found(self, db_session, default_settings, today):
        """A session without the user is not active for them"""
        league = make_league(db_session, tier=1)
        make_session(db_session, league, today, today + timedelta(days=6))
        with pytest.raises(ActiveSessionNotFoundException):
            LeagueService(db_session).get_active_session(1, today)

    def test_finished_session_is_not_active(self, db_session, default_settings, today):
        """Closed sessions are archival only"""
        league = make_league(db_session, tier=1)
        league_session = make_session(db_session, league, today - timedelta(days=1), today + timedelta(days=5))
        make_entry(db_session, league_session, user_id=1)
        league_session.is_finished = True
        league_session.status = SESSION_STATUS_CLOSED
        db_session.commit()

        with pytest.raises(ActiveSessionNotFoundException):
            LeagueService(db_session).get_active_session(1, today)

    def test_overlapping_sessions_raise_integrity_violation(self, db_session, default_settings, today):
        """Two matching sessions are reported, never silently picked"""
        first = make_session(db_session, make_league(db_session, tier=1), today, today + timedelta(days=6))
        second = make_session(db_session, make_league(db_session, tier=2), today, today + timedelta(days=6))
        make_entry(db_session, first, user_id=1)
        make_entry(db_session, second, user_id=1)

        with pytest.raises(MultipleActiveSessionsException) as exc_info:
            LeagueService(db_session).get_active_session(1, today)
        assert sorted(exc_info.value.session_ids) == sorted([first.id, second.id])

    def test_lifecycle_state(self, db_session, default_settings, today, yesterday):
        """Session past its end date is closing until it is ended"""
        league = make_league(db_session, tier=1)
        league_session = make_session(db_session, league, today - timedelta(days=7), yesterday)
        service = LeagueService(db_session)

        assert service.get_lifecycle_state(league_session.id, yesterday) == SESSION_STATUS_OPEN
        assert service.get_lifecycle_state(league_session.id, today) == SESSION_STATUS_CLOSING


class TestJoinSession:
    """Tests for join_session"""

    def test_join_uses_current_total(self, db_session, default_settings, today):
        """New entry starts with the user's weighted total"""
        make_counters(db_session, 1, recycle=10, knowledge=10)
        league = make_league(db_session, tier=1)
        league_session = make_session(db_session, league, today, today + timedelta(days=6))

        entry = LeagueService(db_session).join_session(league_session.id, 1, today)
        assert entry.total == 19

    def test_join_twice_returns_same_entry(self, db_session, default_settings, today):
        """Joining is idempotent"""
        league = make_league(db_session, tier=1)
        league_session = make_session(db_session, league, today, today + timedelta(days=6))
        service = LeagueService(db_session)

        first = service.join_session(league_session.id, 1, today)
        second = service.join_session(league_session.id, 1, today)
        assert first.id == second.id

    def test_join_full_roster_rejected(self, db_session, default_settings, today):
        """Capacity comes from the league"""
        league = make_league(db_session, tier=1, members_count=1)
        league_session = make_session(db_session, league, today, today + timedelta(days=6))
        service = LeagueService(db_session)
        service.join_session(league_session.id, 1, today)

        with pytest.raises(RosterFullException):
            service.join_session(league_session.id, 2, today)

    def test_join_overlapping_rejected(self, db_session, default_settings, today):
        """A user plays in one session at a time"""
        first = make_session(db_session, make_league(db_session, tier=1), today, today + timedelta(days=6))
        second = make_session(db_session, make_league(db_session, tier=2), today + timedelta(days=3), today + timedelta(days=9))
        make_entry(db_session, first, user_id=1)

        with pytest.raises(OverlappingSessionException):
            LeagueService(db_session).join_session(second.id, 1, today)

    def test_join_closing_session_rejected(self, db_session, default_settings, today):
        """Closing sessions accept no new members"""
        league = make_league(db_session, tier=1)
        league_session = make_session(
            db_session, league, today, today + timedelta(days=6), status=SESSION_STATUS_CLOSING
        )
        with pytest.raises(SessionClosedException):
            LeagueService(db_session).join_session(league_session.id, 1, today)


class TestStartSession:
    """Tests for start_session"""

    def test_start_with_initial_users(self, db_session, default_settings, today):
        """Brand-new league is seeded from initial_user_ids"""
        league = make_league(db_session, tier=1)
        result = LeagueService(db_session).start_session(
            league.id, today, today + timedelta(days=6), [1, 2, 3]
        )

        assert result.already_started is False
        assert result.seeded_user_ids == [1, 2, 3]
        assert LeagueService(db_session).get_active_session(2, today).id == result.session_id

    def test_start_is_idempotent(self, db_session, default_settings, today):
        """Starting again returns the open session"""
        league = make_league(db_session, tier=1)
        service = LeagueService(db_session)
        first = service.start_session(league.id, today, today + timedelta(days=6), [1])
        second = service.start_session(league.id, today, today + timedelta(days=6), [1])

        assert second.already_started is True
        assert second.session_id == first.session_id
        assert len(service.get_roster(first.session_id)) == 1

    def test_start_reports_waitlisted_and_skipped(self, db_session, default_settings, today):
        """Overflow is waitlisted and users in other sessions are skipped"""
        other = make_session(db_session, make_league(db_session, tier=2), today, today + timedelta(days=6))
        make_entry(db_session, other, user_id=9)
        league = make_league(db_session, tier=1, members_count=2)

        result = LeagueService(db_session).start_session(
            league.id, today, today + timedelta(days=6), [9, 1, 2, 3]
        )

        assert result.skipped_user_ids == [9]
        assert result.seeded_user_ids == [1, 2]
        assert result.waitlisted_user_ids == [3]

    def test_end_before_start_rejected(self, db_session, default_settings, today):
        """Session window must not be inverted"""
        league = make_league(db_session, tier=1)
        with pytest.raises(ValidationException):
            LeagueService(db_session).start_session(league.id, today, today - timedelta(days=1))


class TestEndSession:
    """Tests for end_session and the season rollover"""

    def _play_season(self, db_session, today):
        gold = make_league(db_session, tier=1, promoted_count=0, relegated_count=1)
        silver = make_league(db_session, tier=2, promoted_count=1, relegated_count=0)
        start = today - timedelta(days=7)
        end = today - timedelta(days=1)
        service = LeagueService(db_session)
        gold_session = service.start_session(gold.id, start, end, [1, 2, 3]).session_id
        silver_session = service.start_session(silver.id, start, end, [4, 5, 6]).session_id

        points = PointsService(db_session)
        for user_id, recycle in {1: 30, 2: 20, 3: 10, 4: 5, 5: 50, 6: 15}.items():
            points.apply_deltas(user_id, recycle=recycle, today=start + timedelta(days=2))
        return gold, silver, gold_session, silver_session

    def test_end_ranks_and_freezes(self, db_session, default_settings, today):
        """Closing stores movement and marks the session finished"""
        gold, silver, gold_session, silver_session = self._play_season(db_session, today)
        service = LeagueService(db_session)

        result = service.end_session(gold_session, today)

        assert result.already_closed is False
        assert result.promotion.relegated == [3]
        assert result.promotion.assignments == {1: 1, 2: 1, 3: 2}
        league_session = service.get_session(gold_session)
        assert league_session.is_finished is True
        assert league_session.status == SESSION_STATUS_CLOSED
        assert league_session.closed_at is not None

    def test_end_twice_is_noop(self, db_session, default_settings, today):
        """Second call reports already closed without re-ranking"""
        _, _, gold_session, _ = self._play_season(db_session, today)
        service = LeagueService(db_session)
        service.end_session(gold_session, today)
        ranks = [entry.final_rank for entry in service.get_roster(gold_session)]

        again = service.end_session(gold_session, today)

        assert again.already_closed is True
        assert again.promotion is None
        assert [entry.final_rank for entry in service.get_roster(gold_session)] == ranks

    def test_end_unknown_session(self, db_session, default_settings, today):
        """Ending a missing session is NotFound"""
        with pytest.raises(LeagueSessionNotFoundException):
            LeagueService(db_session).end_session(999, today)

    def test_scores_after_close_stay_out_of_roster(self, db_session, default_settings, today):
        """Frozen totals do not change after close"""
        _, _, gold_session, _ = self._play_season(db_session, today)
        service = LeagueService(db_session)
        service.end_session(gold_session, today)

        PointsService(db_session).apply_deltas(1, recycle=100, today=today - timedelta(days=2))

        entry = [e for e in service.get_roster(gold_session) if e.user_id == 1][0]
        assert entry.total == 30

    def test_entry_total_is_live_until_close(self, db_session, default_settings, today):
        """calculate_total follows counters while open and is frozen after"""
        _, _, gold_session, _ = self._play_season(db_session, today)
        service = LeagueService(db_session)
        entry = [e for e in service.get_roster(gold_session) if e.user_id == 2][0]
        assert entry.calculate_total() == 20

        service.end_session(gold_session, today)
        PointsService(db_session).apply_deltas(2, recycle=40, today=today)

        db_session.refresh(entry)
        assert entry.calculate_total() == 20
        assert entry.counters.calculate_total() == 60

    def test_end_freezes_current_totals(self, db_session, default_settings, today):
        """Users seated before the start are ranked on their counters at close"""
        gold = make_league(db_session, tier=1)
        service = LeagueService(db_session)
        start = today + timedelta(days=1)
        end = start + timedelta(days=6)
        session_id = service.start_session(gold.id, start, end, [1, 2]).session_id

        points = PointsService(db_session)
        points.apply_deltas(1, recycle=100, today=today)
        points.apply_deltas(2, recycle=10, today=start + timedelta(days=2))

        service.end_session(session_id, end + timedelta(days=1))

        entries = {entry.user_id: entry for entry in service.get_roster(session_id)}
        assert entries[1].total == 100
        assert entries[2].total == 10
        assert entries[1].final_rank == 1
        assert entries[2].final_rank == 2
        assert entries[1].calculate_total() == entries[1].counters.calculate_total()

    def test_next_sessions_seed_moved_users(self, db_session, default_settings, today):
        """Promoted and relegated users start in their new leagues"""
        gold, silver, gold_session, silver_session = self._play_season(db_session, today)
        service = LeagueService(db_session)

        closed = service.close_expired_sessions(today)
        started = service.start_next_sessions(today)

        assert len(closed) == 2
        assert len(started) == 2
        by_league = {result.league_id: result for result in started}
        assert sorted(by_league[gold.id].seeded_user_ids) == [1, 2, 5]
        assert sorted(by_league[silver.id].seeded_user_ids) == [3, 4, 6]
        assert by_league[gold.id].seeded_user_ids[0] == 1

        new_session = service.get_active_session(5, today)
        assert new_session.league_id == gold.id
        assert new_session.end_date == today + timedelta(days=6)

    def test_start_next_sessions_is_idempotent(self, db_session, default_settings, today):
        """Users are carried into one new session only"""
        self._play_season(db_session, today)
        service = LeagueService(db_session)
        service.close_expired_sessions(today)
        service.start_next_sessions(today)

        assert service.start_next_sessions(today) == []

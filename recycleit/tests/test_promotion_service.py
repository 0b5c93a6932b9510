"""
Tests for promotion and relegation.

Tests cover:
1. Movement planning and capping for small rosters
2. Ranking with deterministic tie-breaks
3. Ranking stored rosters page by page
4. Freezing roster totals from counters
"""
import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace

from recycleit.services.promotion_service import (
    PromotionService, plan_movements, compute_assignments, rank_key
)
from recycleit.constants import MOVEMENT_PROMOTED, MOVEMENT_RELEGATED, MOVEMENT_STAYED
from conftest import make_league, make_session, make_entry, make_counters


def league_config(tier=2, promoted=3, relegated=2, promotion_enabled=True, relegation_enabled=True):
    return SimpleNamespace(
        tier=tier,
        promoted_count=promoted,
        relegated_count=relegated,
        promotion_enabled=promotion_enabled,
        relegation_enabled=relegation_enabled
    )


def roster(totals):
    """Entries for users 1..n with the given totals, joined one minute apart"""
    base = datetime(2026, 3, 1, 9, 0, 0)
    return [
        SimpleNamespace(id=index, user_id=index, total=total, joined_at=base + timedelta(minutes=index))
        for index, total in enumerate(totals, start=1)
    ]


class TestPlanMovements:
    """Tests for plan_movements function"""

    def test_uses_league_counts(self):
        """Large roster moves exactly the configured counts"""
        plan = plan_movements(10, league_config())
        assert (plan.promote, plan.relegate, plan.capped) == (3, 2, False)

    def test_disabled_flags_stop_movement(self):
        """Flags gate each direction"""
        plan = plan_movements(10, league_config(promotion_enabled=False, relegation_enabled=False))
        assert (plan.promote, plan.relegate) == (0, 0)

    def test_top_league_cannot_promote(self):
        """No better league means nobody is promoted"""
        plan = plan_movements(10, league_config(tier=1), can_promote=False)
        assert plan.promote == 0
        assert plan.relegate == 2
        assert any("promotion skipped" in note for note in plan.notes)

    def test_small_roster_is_capped(self):
        """At least one member stays, relegations are trimmed first"""
        plan = plan_movements(4, league_config(promoted=3, relegated=2))

        assert plan.capped is True
        assert plan.promote + plan.relegate == 3
        assert plan.promote == 3
        assert plan.relegate == 0
        assert plan.notes

    def test_cap_trims_promotions_after_relegations(self):
        """Promotions shrink once relegations are gone"""
        plan = plan_movements(2, league_config(promoted=3, relegated=1))
        assert (plan.promote, plan.relegate) == (1, 0)

    def test_single_member_never_moves(self):
        """A roster of one keeps its only member"""
        plan = plan_movements(1, league_config())
        assert (plan.promote, plan.relegate) == (0, 0)

    def test_empty_roster(self):
        """Nothing to move in an empty roster"""
        plan = plan_movements(0, league_config())
        assert (plan.promote, plan.relegate, plan.capped) == (0, 0, False)


class TestComputeAssignments:
    """Tests for compute_assignments function"""

    def test_ten_user_roster(self):
        """Top 3 promoted, bottom 2 relegated, rest stay"""
        entries = roster([50, 90, 10, 70, 30, 100, 20, 60, 40, 80])
        result = compute_assignments(entries, league_config(tier=2), better_tier=1, worse_tier=3)

        assert sorted(result.promoted) == [2, 6, 10]
        assert sorted(result.relegated) == [3, 7]
        assert result.assignments[6] == 1
        assert result.assignments[3] == 3
        assert result.assignments[1] == 2
        assert len(result.assignments) == 10

    def test_rerun_is_identical(self):
        """Same frozen roster yields the same result"""
        entries = roster([50, 90, 10, 70, 30, 100, 20, 60, 40, 80])
        first = compute_assignments(entries, league_config(), 1, 3)
        second = compute_assignments(list(reversed(entries)), league_config(), 1, 3)

        assert first.model_dump() == second.model_dump()

    def test_ties_broken_by_join_time(self):
        """Earlier joiner ranks higher on equal totals"""
        entries = roster([40, 40, 40, 40])
        result = compute_assignments(entries, league_config(promoted=1, relegated=1), 1, 3)

        assert result.promoted == [1]
        assert result.relegated == [4]

    def test_rank_key_orders_by_total_then_join(self):
        """rank_key sorts best total first"""
        entries = roster([10, 30, 30])
        ordered = sorted(entries, key=rank_key)
        assert [entry.user_id for entry in ordered] == [2, 3, 1]


class TestRankSession:
    """Tests for PromotionService.rank_session"""

    def test_stores_rank_and_movement(self, db_session, default_settings, today):
        """Every entry gets a rank, movement and target tier"""
        make_league(db_session, tier=1)
        league = make_league(db_session, tier=2, promoted_count=3, relegated_count=2)
        make_league(db_session, tier=3)
        league_session = make_session(db_session, league, today - timedelta(days=6), today)
        base = datetime(2026, 3, 10, 8, 0, 0)
        totals = [50, 90, 10, 70, 30, 100, 20, 60, 40, 80]
        for user_id, total in enumerate(totals, start=1):
            make_entry(db_session, league_session, user_id, total, base + timedelta(minutes=user_id))

        result = PromotionService(db_session).rank_session(league_session, batch_size=3)
        db_session.commit()

        entries = {entry.user_id: entry for entry in league_session.entries}
        assert entries[6].final_rank == 1
        assert entries[6].movement == MOVEMENT_PROMOTED
        assert entries[6].target_tier == 1
        assert entries[3].final_rank == 10
        assert entries[3].movement == MOVEMENT_RELEGATED
        assert entries[3].target_tier == 3
        assert entries[1].movement == MOVEMENT_STAYED
        assert entries[1].target_tier == 2
        assert sorted(entry.final_rank for entry in entries.values()) == list(range(1, 11))
        assert len(result.promoted) == 3
        assert len(result.relegated) == 2

    def test_bottom_league_does_not_relegate(self, db_session, default_settings, today):
        """Without a worse league everyone outside promotion stays"""
        make_league(db_session, tier=1)
        league = make_league(db_session, tier=2, promoted_count=1, relegated_count=1)
        league_session = make_session(db_session, league, today - timedelta(days=6), today)
        for user_id in range(1, 4):
            make_entry(db_session, league_session, user_id, total=user_id * 10)

        result = PromotionService(db_session).rank_session(league_session)

        assert result.promoted == [3]
        assert result.relegated == []
        assert result.plan.relegate == 0

    def test_freeze_totals_reads_counters(self, db_session, default_settings, today):
        """Stale cached totals are replaced, users without counters keep theirs"""
        league = make_league(db_session, tier=1)
        league_session = make_session(db_session, league, today - timedelta(days=6), today)
        stale = make_entry(db_session, league_session, 1, total=5)
        make_counters(db_session, 1, recycle=40, knowledge=20)
        untracked = make_entry(db_session, league_session, 2, total=12)

        changed = PromotionService(db_session).freeze_totals(league_session, batch_size=1)

        assert changed == 1
        assert stale.total == 57
        assert stale.counters_id is not None
        assert untracked.total == 12

    def test_ranking_uses_frozen_totals(self, db_session, default_settings, today):
        """A user whose cached total lags behind is ranked on the live one"""
        league = make_league(db_session, tier=2, promoted_count=1)
        make_league(db_session, tier=1)
        league_session = make_session(db_session, league, today - timedelta(days=6), today)
        make_entry(db_session, league_session, 1, total=0)
        make_counters(db_session, 1, recycle=100)
        make_entry(db_session, league_session, 2, total=10)

        result = PromotionService(db_session).rank_session(league_session)

        assert result.promoted == [1]

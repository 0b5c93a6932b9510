"""
Promotion and relegation service.

Ranks a closing session roster and decides which tier every member plays in
next. Tier 1 is the best league: promotion moves a user to tier - 1 and
relegation to tier + 1, only when a league with that tier exists.

Ranking order is total descending, then join time, then entry id, so the
same frozen roster always yields the same result.
"""
import logging
from typing import Iterable, Optional, Tuple
from sqlalchemy.orm import Session

from recycleit.models import League, LeagueSession
from recycleit.schemas import MovementPlan, PromotionResult
from recycleit.repositories.league_repository import (
    LeagueRepository, UserPunctuationRepository
)
from recycleit.repositories.points_repository import PointCountersRepository
from recycleit.services.points_service import calculate_total
from recycleit.constants import (
    MOVEMENT_PROMOTED, MOVEMENT_RELEGATED, MOVEMENT_STAYED,
    TIER_STEP_PROMOTION, TIER_STEP_RELEGATION, DEFAULT_RANKING_BATCH_SIZE
)

logger = logging.getLogger("recycleit.promotion")


def rank_key(entry) -> tuple:
    """Sort key placing the best entry first"""
    return (-(entry.total or 0), entry.joined_at, entry.id)


def plan_movements(
    roster_size: int,
    league: League,
    can_promote: bool = True,
    can_relegate: bool = True
) -> MovementPlan:
    """
    Decide how many roster slots move up and down.

    When promotions plus relegations would move every member, relegations
    are trimmed first, then promotions, until one member stays.
    """
    notes = []
    promote = league.promoted_count if league.promotion_enabled else 0
    relegate = league.relegated_count if league.relegation_enabled else 0

    if promote and not can_promote:
        notes.append(f"No league above tier {league.tier}: promotion skipped")
        promote = 0
    if relegate and not can_relegate:
        notes.append(f"No league below tier {league.tier}: relegation skipped")
        relegate = 0

    capped = False
    if roster_size > 0 and promote + relegate >= roster_size:
        allowed = roster_size - 1
        excess = promote + relegate - allowed
        trimmed = min(excess, relegate)
        relegate -= trimmed
        promote -= excess - trimmed
        capped = True
        notes.append(
            f"Movement capped to {promote} promoted and {relegate} relegated "
            f"so that at least one of {roster_size} members stays in tier {league.tier}"
        )
        logger.warning(
            f"League tier {league.tier}: configured movement "
            f"({league.promoted_count} up, {league.relegated_count} down) "
            f"covers a roster of {roster_size}, capped to {promote} up, {relegate} down"
        )
    elif roster_size == 0:
        promote = relegate = 0

    return MovementPlan(
        roster_size=roster_size,
        promote=promote,
        relegate=relegate,
        capped=capped,
        notes=notes
    )


def movement_for_rank(rank: int, plan: MovementPlan) -> str:
    """Movement of the member at a 1-based rank"""
    if rank <= plan.promote:
        return MOVEMENT_PROMOTED
    if rank > plan.roster_size - plan.relegate:
        return MOVEMENT_RELEGATED
    return MOVEMENT_STAYED


def target_tier_for(movement: str, tier: int) -> int:
    """Tier a member plays in next session"""
    if movement == MOVEMENT_PROMOTED:
        return tier + TIER_STEP_PROMOTION
    if movement == MOVEMENT_RELEGATED:
        return tier + TIER_STEP_RELEGATION
    return tier


def compute_assignments(
    entries: Iterable,
    league: League,
    better_tier: Optional[int],
    worse_tier: Optional[int]
) -> PromotionResult:
    """
    Rank roster entries and map every user to their next tier.

    Args:
        entries: Roster entries with user_id, total, joined_at and id
        league: League the roster played in
        better_tier: Tier above, or None when this is the top league
        worse_tier: Tier below, or None when this is the bottom league
    """
    ranked = sorted(entries, key=rank_key)
    plan = plan_movements(
        len(ranked), league,
        can_promote=better_tier is not None,
        can_relegate=worse_tier is not None
    )

    result = PromotionResult(plan=plan)
    for rank, entry in enumerate(ranked, start=1):
        movement = movement_for_rank(rank, plan)
        result.assignments[entry.user_id] = target_tier_for(movement, league.tier)
        if movement == MOVEMENT_PROMOTED:
            result.promoted.append(entry.user_id)
        elif movement == MOVEMENT_RELEGATED:
            result.relegated.append(entry.user_id)
    return result


class PromotionService:
    """Service ranking stored rosters at session close"""

    def __init__(self, db: Session):
        self.db = db
        self.league_repo = LeagueRepository()
        self.entry_repo = UserPunctuationRepository()
        self.counters_repo = PointCountersRepository()

    def freeze_totals(
        self,
        league_session: LeagueSession,
        batch_size: int = DEFAULT_RANKING_BATCH_SIZE
    ) -> int:
        """
        Recompute every roster total from the member's current counters.

        Members seated before the session started, or who scored while it
        was closing, would otherwise keep an older cached total. Entries of
        users without counters keep their stored total. Returns the number
        of totals that changed.
        """
        changed = 0
        offset = 0
        while True:
            page = self.entry_repo.get_page(self.db, league_session.id, offset, batch_size)
            if not page:
                break
            for entry in page:
                counters = entry.counters or self.counters_repo.get_by_user(self.db, entry.user_id)
                if counters is None:
                    continue
                if entry.counters is None:
                    entry.counters = counters
                total = calculate_total(counters)
                if entry.total != total:
                    entry.total = total
                    changed += 1
            self.db.flush()
            offset += len(page)
        return changed

    def neighbour_tiers(self, league: League) -> Tuple[Optional[int], Optional[int]]:
        """Tiers directly above and below a league, None where no league exists"""
        better = league.tier + TIER_STEP_PROMOTION
        worse = league.tier + TIER_STEP_RELEGATION
        better_league = self.league_repo.get_by_tier(self.db, better) if better >= 1 else None
        worse_league = self.league_repo.get_by_tier(self.db, worse)
        return (
            better_league.tier if better_league else None,
            worse_league.tier if worse_league else None
        )

    def rank_session(
        self,
        league_session: LeagueSession,
        batch_size: int = DEFAULT_RANKING_BATCH_SIZE
    ) -> PromotionResult:
        """
        Freeze the roster totals, then rank the roster page by page and
        store rank, movement and target tier on every entry.

        Runs inside the caller's unit of work and does not commit.
        """
        changed = self.freeze_totals(league_session, batch_size)
        if changed:
            logger.info(f"Session {league_session.id}: {changed} roster totals refreshed at close")

        league = league_session.league
        better_tier, worse_tier = self.neighbour_tiers(league)
        roster_size = self.entry_repo.count_roster(self.db, league_session.id)
        plan = plan_movements(
            roster_size, league,
            can_promote=better_tier is not None,
            can_relegate=worse_tier is not None
        )

        result = PromotionResult(plan=plan)
        rank = 0
        offset = 0
        while offset < roster_size:
            page = self.entry_repo.get_ranked_page(
                self.db, league_session.id, offset, batch_size
            )
            if not page:
                break
            for entry in page:
                rank += 1
                movement = movement_for_rank(rank, plan)
                entry.final_rank = rank
                entry.movement = movement
                entry.target_tier = target_tier_for(movement, league.tier)
                result.assignments[entry.user_id] = entry.target_tier
                if movement == MOVEMENT_PROMOTED:
                    result.promoted.append(entry.user_id)
                elif movement == MOVEMENT_RELEGATED:
                    result.relegated.append(entry.user_id)
            self.db.flush()
            offset += len(page)

        logger.info(
            f"Session {league_session.id} (tier {league.tier}) ranked: "
            f"{roster_size} members, {len(result.promoted)} promoted, "
            f"{len(result.relegated)} relegated"
        )
        return result

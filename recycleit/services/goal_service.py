"""
Goal tracking service.
Handles recycle and reduce goals, their ACTUAL/NEXT/INACTIVE lifecycle and
the completion events that turn into points.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional
from sqlalchemy.orm import Session

from recycleit.models import Goal, ReduceItem
from recycleit.schemas import (
    GoalCreationResult, GoalUpdate, ReduceItemUpdate, UserGoalsStatus, ItemAdjustmentResult,
    ProjectCompletion, ProjectCompletionResult, ArticleFinish, ArticleFinishResult,
    RolloverResult
)
from recycleit.database import run_atomic
from recycleit.exceptions import (
    GoalNotFoundException, ReduceItemNotFoundException, ValidationException,
    InvalidStateException
)
from recycleit.repositories.goal_repository import GoalRepository, ReduceItemRepository
from recycleit.repositories.settings_repository import SettingsRepository
from recycleit.services.date_service import DateService
from recycleit.services.points_service import PointsService, calculate_total
from recycleit.constants import (
    GOAL_KIND_RECYCLE, GOAL_KIND_REDUCE,
    GOAL_STATUS_ACTUAL, GOAL_STATUS_NEXT, GOAL_STATUS_INACTIVE,
    DIFFICULTIES, FREQUENCIES, MATERIALS,
    RECYCLE_TARGET_BY_DIFFICULTY, MULTIPLIER_BY_DIFFICULTY, GOAL_COMPLETION_THRESHOLD,
    GOAL_OUTCOME_ACTIVATED, GOAL_OUTCOME_QUEUED, GOAL_OUTCOME_QUEUED_UPDATED
)

logger = logging.getLogger("recycleit.goals")

OUTCOME_MESSAGES = {
    GOAL_OUTCOME_ACTIVATED: "Goal activated",
    GOAL_OUTCOME_QUEUED: "Goal queued as next goal",
    GOAL_OUTCOME_QUEUED_UPDATED: "Next goal updated",
}


class GoalService:
    """Service for managing user goals"""

    def __init__(self, db: Session):
        self.db = db
        self.goal_repo = GoalRepository()
        self.item_repo = ReduceItemRepository()
        self.settings_repo = SettingsRepository()
        self.points_service = PointsService(db)
        self.date_service = DateService()

    # --- Creation ---

    def create_reduce_goal(
        self,
        user_id: int,
        difficulty: str,
        frequency: str,
        items: Iterable,
        today: Optional[date] = None
    ) -> GoalCreationResult:
        """
        Create a reduce goal.

        Becomes the ACTUAL goal when the user has none, otherwise the NEXT
        goal. An existing NEXT goal is overwritten in place, so a user never
        holds two NEXT goals.

        Args:
            user_id: Owner of the goal
            difficulty: "EASY", "MEDIUM" or "HARD"
            frequency: "DAILY", "WEEKLY" or "MONTHLY"
            items: Objects with material and target_quantity

        Returns:
            GoalCreationResult with outcome activated, queued or queued_updated
        """
        items = list(items)
        if not items:
            raise ValidationException("items", "a reduce goal needs at least one item")
        for item in items:
            if item.material not in MATERIALS:
                raise ValidationException("material", f"unknown material '{item.material}'")
            if item.target_quantity < 1:
                raise ValidationException("target_quantity", "must be at least 1")
        return self._create_goal(user_id, GOAL_KIND_REDUCE, difficulty, frequency, items, today)

    def create_recycle_goal(
        self,
        user_id: int,
        difficulty: str,
        frequency: str,
        today: Optional[date] = None
    ) -> GoalCreationResult:
        """Create a recycle goal with the same ACTUAL/NEXT rules as reduce goals"""
        return self._create_goal(user_id, GOAL_KIND_RECYCLE, difficulty, frequency, [], today)

    def _create_goal(
        self,
        user_id: int,
        kind: str,
        difficulty: str,
        frequency: str,
        items: List,
        today: Optional[date]
    ) -> GoalCreationResult:
        self._validate_schedule(difficulty, frequency)
        today = self.date_service.get_today(today)
        settings = self.settings_repo.get(self.db)

        def unit():
            actual = self.goal_repo.get_by_status(self.db, user_id, kind, GOAL_STATUS_ACTUAL)
            if not actual:
                goal = Goal(user_id=user_id, kind=kind, status=GOAL_STATUS_ACTUAL)
                self._fill_goal(goal, difficulty, frequency, items, today)
                self.goal_repo.add(self.db, goal)
                return goal, GOAL_OUTCOME_ACTIVATED

            queued = self.goal_repo.get_by_status(self.db, user_id, kind, GOAL_STATUS_NEXT)
            if queued:
                goal = queued[0]
                self._fill_goal(goal, difficulty, frequency, items, today)
                return goal, GOAL_OUTCOME_QUEUED_UPDATED

            goal = Goal(user_id=user_id, kind=kind, status=GOAL_STATUS_NEXT)
            self._fill_goal(goal, difficulty, frequency, items, today)
            self.goal_repo.add(self.db, goal)
            return goal, GOAL_OUTCOME_QUEUED

        goal, outcome = run_atomic(
            self.db, unit, f"{kind} goal creation for user {user_id}",
            settings.max_update_retries
        )
        logger.info(f"{kind.capitalize()} goal {goal.id} of user {user_id}: {outcome}")
        return GoalCreationResult(
            goal_id=goal.id,
            kind=goal.kind,
            status=goal.status,
            outcome=outcome,
            message=OUTCOME_MESSAGES[outcome]
        )

    def _fill_goal(self, goal: Goal, difficulty: str, frequency: str, items: List, today: date):
        """Set every user-defined field of a goal and reset its progress"""
        goal.difficulty = difficulty
        goal.frequency = frequency
        goal.multiplier = MULTIPLIER_BY_DIFFICULTY[difficulty]
        goal.next_check = self.date_service.calculate_next_check(today, frequency)
        goal.progress = 0.0
        goal.finished_projects = 0
        if goal.skip_days_left is None:
            goal.skip_days_left = 0
        if goal.kind == GOAL_KIND_REDUCE:
            goal.items = [
                ReduceItem(
                    position=position,
                    material=item.material,
                    target_quantity=item.target_quantity,
                    actual_quantity=0
                )
                for position, item in enumerate(items)
            ]

    @staticmethod
    def _validate_schedule(difficulty: Optional[str], frequency: Optional[str]):
        if difficulty is not None and difficulty not in DIFFICULTIES:
            raise ValidationException("difficulty", f"unknown difficulty '{difficulty}'")
        if frequency is not None and frequency not in FREQUENCIES:
            raise ValidationException("frequency", f"unknown frequency '{frequency}'")

    def update_goal(
        self,
        goal_id: int,
        goal_update: GoalUpdate,
        today: Optional[date] = None
    ) -> Goal:
        """Change difficulty or frequency of a goal that is not inactive"""
        self._validate_schedule(goal_update.difficulty, goal_update.frequency)
        today = self.date_service.get_today(today)
        settings = self.settings_repo.get(self.db)

        def unit():
            goal = self.get_goal(goal_id)
            if goal.status == GOAL_STATUS_INACTIVE:
                raise InvalidStateException(f"Goal {goal_id} is inactive and cannot be edited")
            if goal_update.difficulty is not None:
                goal.difficulty = goal_update.difficulty
                goal.multiplier = MULTIPLIER_BY_DIFFICULTY[goal_update.difficulty]
                if goal.kind == GOAL_KIND_RECYCLE:
                    goal.progress = self._recycle_progress(goal)
            if goal_update.frequency is not None and goal_update.frequency != goal.frequency:
                goal.frequency = goal_update.frequency
                goal.next_check = self.date_service.calculate_next_check(today, goal.frequency)
            return goal

        return run_atomic(self.db, unit, f"update of goal {goal_id}", settings.max_update_retries)

    # --- Queries ---

    def get_goal(self, goal_id: int) -> Goal:
        """
        Get a goal by ID.

        Raises:
            GoalNotFoundException: if the goal does not exist
        """
        goal = self.goal_repo.get_by_id(self.db, goal_id)
        if not goal:
            raise GoalNotFoundException(goal_id)
        return goal

    def get_goals(
        self,
        user_id: int,
        status: Optional[str] = None,
        kind: Optional[str] = None
    ) -> List[Goal]:
        return self.goal_repo.get_for_user(self.db, user_id, status, kind)

    def get_user_goals_status(self, user_id: int) -> UserGoalsStatus:
        """Whether the user currently pursues a recycle and a reduce goal"""
        has_recycle = bool(
            self.goal_repo.get_by_status(self.db, user_id, GOAL_KIND_RECYCLE, GOAL_STATUS_ACTUAL)
        )
        has_reduce = bool(
            self.goal_repo.get_by_status(self.db, user_id, GOAL_KIND_REDUCE, GOAL_STATUS_ACTUAL)
        )
        return UserGoalsStatus(
            user_id=user_id,
            has_active_recycle_goal=has_recycle,
            has_active_reduce_goal=has_reduce,
            has_any_active_goal=has_recycle or has_reduce
        )

    def get_goals_due(self, user_id: int, today: Optional[date] = None) -> List[int]:
        """IDs of the user's goals checked today"""
        today = self.date_service.get_today(today)
        return self.goal_repo.get_ids_checked_on(self.db, user_id, today)

    # --- Completion events ---

    def process_project_completion(
        self,
        user_id: int,
        project: ProjectCompletion,
        today: Optional[date] = None
    ) -> ProjectCompletionResult:
        """
        Apply a finished project to the user's goals and points.

        The recycle goal counts one more finished project. Reduce items
        matching the project materials grow by the consumed quantity and
        every item that reaches its target grants reuse points. The user
        always earns the project completion points.

        Goals, items, counters and the roster entry change in one unit of
        work that is retried when a concurrent event wins the race.
        """
        today = self.date_service.get_today(today)
        settings = self.settings_repo.get(self.db)
        consumed: Dict[str, int] = {}
        for material in project.materials:
            consumed[material.material] = consumed.get(material.material, 0) + material.quantity

        def unit():
            recycle_progress = None
            recycle_goal = self._get_actual(user_id, GOAL_KIND_RECYCLE)
            if recycle_goal:
                recycle_goal.finished_projects = (recycle_goal.finished_projects or 0) + 1
                recycle_goal.progress = self._recycle_progress(recycle_goal)
                recycle_progress = recycle_goal.progress

            reuse_points = 0
            reduce_goal = self._get_actual(user_id, GOAL_KIND_REDUCE)
            if reduce_goal and consumed:
                for item in reduce_goal.items:
                    quantity = consumed.get(item.material)
                    if not quantity:
                        continue
                    item.increment(quantity)
                    if item.is_met:
                        reuse_points += settings.reuse_points_per_item
                reuse_points = min(reuse_points, settings.reuse_points_cap)
                reduce_goal.progress = self._reduce_progress(reduce_goal)

            baseline = settings.project_completion_points
            self.points_service.fold_deltas(
                user_id, recycle=baseline, reuse=reuse_points, today=today
            )
            return ProjectCompletionResult(
                user_id=user_id,
                project_id=project.project_id,
                recycle_progress=recycle_progress,
                reuse_points=reuse_points,
                total_points=baseline + reuse_points,
                processed_at=datetime.now()
            )

        result = run_atomic(
            self.db, unit, f"project {project.project_id} completion for user {user_id}",
            settings.max_update_retries
        )
        logger.info(
            f"Project {project.project_id} completed by user {user_id}: "
            f"recycle_progress={result.recycle_progress} reuse={result.reuse_points} "
            f"points={result.total_points}"
        )
        return result

    def process_article_finish(
        self,
        user_id: int,
        article: ArticleFinish,
        today: Optional[date] = None
    ) -> ArticleFinishResult:
        """Grant knowledge points for a finished article"""
        today = self.date_service.get_today(today)
        settings = self.settings_repo.get(self.db)
        knowledge = settings.article_finish_points

        def unit():
            return self.points_service.fold_deltas(user_id, knowledge=knowledge, today=today)

        counters = run_atomic(
            self.db, unit, f"article {article.article_id} finish for user {user_id}",
            settings.max_update_retries
        )
        logger.info(
            f"Article {article.article_id} finished by user {user_id}: "
            f"+{knowledge} knowledge points, total {calculate_total(counters)}"
        )
        return ArticleFinishResult(
            user_id=user_id,
            article_id=article.article_id,
            knowledge_points=knowledge,
            processed_at=datetime.now()
        )

    # --- Reduce items ---

    def get_item(self, item_id: int) -> ReduceItem:
        item = self.item_repo.get_by_id(self.db, item_id)
        if not item:
            raise ReduceItemNotFoundException(item_id)
        return item

    def update_item(self, item_id: int, item_update: ReduceItemUpdate) -> ReduceItem:
        """
        Change the material or target quantity of a reduce item.

        The goal's progress is recomputed against the new target. Items of
        inactive goals are frozen.

        Raises:
            ReduceItemNotFoundException: if the item does not exist
            ValidationException: on an unknown material or a target below 1
            InvalidStateException: if the item's goal is inactive
        """
        changes = item_update.model_dump(exclude_unset=True)
        material = changes.get("material")
        if material is not None and material not in MATERIALS:
            raise ValidationException("material", f"unknown material '{material}'")
        target = changes.get("target_quantity")
        if target is not None and target < 1:
            raise ValidationException("target_quantity", "must be at least 1")
        settings = self.settings_repo.get(self.db)

        def unit():
            item = self.get_item(item_id)
            if item.goal.status == GOAL_STATUS_INACTIVE:
                raise InvalidStateException(
                    f"Item {item_id} belongs to inactive goal {item.goal_id} and cannot be edited"
                )
            for field, value in changes.items():
                if value is not None:
                    setattr(item, field, value)
            item.goal.progress = self._reduce_progress(item.goal)
            return item

        item = run_atomic(self.db, unit, f"update of item {item_id}", settings.max_update_retries)
        logger.info(
            f"Item {item.id} of goal {item.goal_id} updated: "
            f"{item.material} target {item.target_quantity}"
        )
        return item

    def increment_item(self, item_id: int, amount: int) -> ItemAdjustmentResult:
        """Add to an item's actual quantity"""
        if amount < 0:
            raise ValidationException("amount", "must not be negative")
        settings = self.settings_repo.get(self.db)

        def unit():
            item = self.get_item(item_id)
            item.increment(amount)
            item.goal.progress = self._reduce_progress(item.goal)
            return ItemAdjustmentResult(item_id=item.id, actual_quantity=item.actual_quantity)

        return run_atomic(
            self.db, unit, f"increment of item {item_id}", settings.max_update_retries
        )

    def decrement_item(self, item_id: int, amount: int) -> ItemAdjustmentResult:
        """
        Subtract from an item's actual quantity.

        The quantity stops at zero; the result reports clamped=True when the
        requested amount was larger than what was left.
        """
        if amount < 0:
            raise ValidationException("amount", "must not be negative")
        settings = self.settings_repo.get(self.db)

        def unit():
            item = self.get_item(item_id)
            previous = item.actual_quantity or 0
            clamped = item.decrement(amount)
            if clamped:
                logger.warning(
                    f"Decrement of {amount} on item {item_id} clamped at 0 "
                    f"(actual quantity was {previous})"
                )
            item.goal.progress = self._reduce_progress(item.goal)
            return ItemAdjustmentResult(
                item_id=item.id, actual_quantity=item.actual_quantity, clamped=clamped
            )

        return run_atomic(
            self.db, unit, f"decrement of item {item_id}", settings.max_update_retries
        )

    # --- Skip days ---

    def edit_skip_days(self, goal_id: int, skip_days_left: int) -> Goal:
        """Set how many checks a reduce goal may skip"""
        if skip_days_left < 0:
            raise ValidationException("skip_days_left", "must not be negative")
        settings = self.settings_repo.get(self.db)

        def unit():
            goal = self._get_reduce_goal(goal_id)
            goal.skip_days_left = skip_days_left
            return goal

        return run_atomic(
            self.db, unit, f"skip days edit of goal {goal_id}", settings.max_update_retries
        )

    def decrement_skip_days(self, goal_id: int, amount: int = 1) -> Goal:
        """Use skip days of a reduce goal, stopping at zero"""
        if amount < 0:
            raise ValidationException("amount", "must not be negative")
        settings = self.settings_repo.get(self.db)

        def unit():
            goal = self._get_reduce_goal(goal_id)
            goal.skip_days_left = max(0, (goal.skip_days_left or 0) - amount)
            return goal

        return run_atomic(
            self.db, unit, f"skip days decrement of goal {goal_id}", settings.max_update_retries
        )

    # --- Rollover ---

    def rollover_goals(
        self,
        today: Optional[date] = None,
        user_id: Optional[int] = None
    ) -> RolloverResult:
        """
        Move every goal whose check date arrived to its next state.

        A reduce goal with skip days left uses one and is checked again the
        next day. Any other due goal becomes INACTIVE and the user's NEXT goal
        of the same kind becomes ACTUAL.
        """
        today = self.date_service.get_today(today)
        settings = self.settings_repo.get(self.db)
        result = RolloverResult()

        for due in self.goal_repo.get_due(self.db, today, user_id):
            goal_id = due.id

            def unit():
                goal = self.get_goal(goal_id)
                if goal.status != GOAL_STATUS_ACTUAL or goal.next_check > today:
                    return None
                if goal.is_reduce and (goal.skip_days_left or 0) > 0:
                    goal.skip_days_left -= 1
                    goal.next_check = goal.next_check + timedelta(days=1)
                    return "postponed", goal, None

                goal.status = GOAL_STATUS_INACTIVE
                # Free the ACTUAL slot before the NEXT goal takes it
                self.db.flush()
                queued = self.goal_repo.get_by_status(
                    self.db, goal.user_id, goal.kind, GOAL_STATUS_NEXT
                )
                promoted = None
                if queued:
                    promoted = queued[0]
                    promoted.status = GOAL_STATUS_ACTUAL
                    promoted.next_check = self.date_service.calculate_next_check(
                        today, promoted.frequency
                    )
                return "rolled", goal, promoted

            outcome = run_atomic(
                self.db, unit, f"rollover of goal {goal_id}", settings.max_update_retries
            )
            if outcome is None:
                continue
            action, goal, promoted = outcome
            if action == "postponed":
                result.postponed.append(goal.id)
                logger.info(
                    f"Goal {goal.id} used a skip day ({goal.skip_days_left} left), "
                    f"next check {goal.next_check}"
                )
                continue
            result.deactivated.append(goal.id)
            if promoted:
                result.activated.append(promoted.id)
            logger.info(
                f"Goal {goal.id} of user {goal.user_id} deactivated"
                + (f", goal {promoted.id} activated" if promoted else "")
            )

        return result

    # --- Helpers ---

    def _get_actual(self, user_id: int, kind: str) -> Optional[Goal]:
        goals = self.goal_repo.get_by_status(self.db, user_id, kind, GOAL_STATUS_ACTUAL)
        return goals[0] if goals else None

    def _get_reduce_goal(self, goal_id: int) -> Goal:
        goal = self.get_goal(goal_id)
        if not goal.is_reduce:
            raise InvalidStateException(f"Goal {goal_id} is not a reduce goal")
        return goal

    @staticmethod
    def _recycle_progress(goal: Goal) -> float:
        target = RECYCLE_TARGET_BY_DIFFICULTY[goal.difficulty]
        return min((goal.finished_projects or 0) / target, GOAL_COMPLETION_THRESHOLD)

    @staticmethod
    def _reduce_progress(goal: Goal) -> float:
        """Mean fraction of item targets reached"""
        if not goal.items:
            return 0.0
        return sum(item.calculate_progress() for item in goal.items) / len(goal.items)

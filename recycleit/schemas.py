from pydantic import BaseModel, Field
from datetime import datetime, date
from typing import Dict, List, Literal, Optional

Difficulty = Literal["EASY", "MEDIUM", "HARD"]
Frequency = Literal["DAILY", "WEEKLY", "MONTHLY"]
Material = Literal["plastic", "glass", "paper", "metal", "textile"]
GoalStatus = Literal["ACTUAL", "NEXT", "INACTIVE"]
GoalKind = Literal["recycle", "reduce"]


# Goal schemas
class ReduceItemCreate(BaseModel):
    material: Material
    target_quantity: int = Field(..., ge=1, le=10000)


class RecycleGoalCreate(BaseModel):
    difficulty: Difficulty = "EASY"
    frequency: Frequency = "WEEKLY"


class ReduceGoalCreate(BaseModel):
    difficulty: Difficulty = "EASY"
    frequency: Frequency = "WEEKLY"
    items: List[ReduceItemCreate] = Field(..., min_length=1)


class GoalUpdate(BaseModel):
    difficulty: Optional[Difficulty] = None
    frequency: Optional[Frequency] = None


class ReduceItemUpdate(BaseModel):
    material: Optional[Material] = None
    target_quantity: Optional[int] = Field(None, ge=1, le=10000)


class ReduceItemResponse(BaseModel):
    id: int
    material: str
    target_quantity: int
    actual_quantity: int

    class Config:
        from_attributes = True


class GoalResponse(BaseModel):
    id: int
    user_id: int
    kind: str
    status: str
    progress: float
    difficulty: str
    frequency: str
    next_check: Optional[date]
    multiplier: float
    finished_projects: int = 0
    skip_days_left: int = 0
    items: List[ReduceItemResponse] = []

    class Config:
        from_attributes = True


class GoalCreationResult(BaseModel):
    goal_id: int
    kind: str
    status: str
    outcome: str  # activated, queued, queued_updated
    message: str


class UserGoalsStatus(BaseModel):
    user_id: int
    has_active_recycle_goal: bool
    has_active_reduce_goal: bool
    has_any_active_goal: bool


class QuantityChange(BaseModel):
    amount: int = Field(..., ge=0)


class ItemAdjustmentResult(BaseModel):
    item_id: int
    actual_quantity: int
    clamped: bool = False


class SkipDaysUpdate(BaseModel):
    skip_days_left: int = Field(..., ge=0, le=365)


class RolloverResult(BaseModel):
    deactivated: List[int] = []
    activated: List[int] = []
    postponed: List[int] = []


# Completion events
class ProjectMaterialIn(BaseModel):
    material: Material
    quantity: int = Field(default=1, ge=1)


class ProjectCompletion(BaseModel):
    project_id: int
    materials: List[ProjectMaterialIn] = []


class ArticleFinish(BaseModel):
    article_id: int


class ProjectCompletionResult(BaseModel):
    user_id: int
    project_id: int
    recycle_progress: Optional[float]  # None when the user has no active recycle goal
    reuse_points: int
    total_points: int
    processed_at: datetime


class ArticleFinishResult(BaseModel):
    user_id: int
    article_id: int
    knowledge_points: int
    processed_at: datetime


# Points schemas
class PointCountersResponse(BaseModel):
    user_id: int
    reduce_points: int
    recycle_points: int
    reuse_points: int
    knowledge_points: int
    total: int
    last_updated: Optional[datetime]


class CounterUpdate(BaseModel):
    value: int = Field(..., ge=0)


# Settings schemas
class SettingsUpdate(BaseModel):
    project_completion_points: Optional[int] = Field(None, ge=0)
    article_finish_points: Optional[int] = Field(None, ge=0)
    reuse_points_per_item: Optional[int] = Field(None, ge=0)
    reuse_points_cap: Optional[int] = Field(None, ge=0)
    max_update_retries: Optional[int] = Field(None, ge=1, le=20)
    ranking_batch_size: Optional[int] = Field(None, ge=1)
    league_session_length_days: Optional[int] = Field(None, ge=1, le=365)
    auto_rollover_enabled: Optional[bool] = None
    auto_league_rollover_enabled: Optional[bool] = None


class SettingsResponse(BaseModel):
    project_completion_points: int
    article_finish_points: int
    reuse_points_per_item: int
    reuse_points_cap: int
    max_update_retries: int
    ranking_batch_size: int
    league_session_length_days: int
    auto_rollover_enabled: bool
    auto_league_rollover_enabled: bool
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# League schemas
class LeagueBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    tier: int = Field(..., ge=1)
    members_count: int = Field(default=30, ge=1)
    promoted_count: int = Field(default=0, ge=0)
    relegated_count: int = Field(default=0, ge=0)
    promotion_enabled: bool = True
    relegation_enabled: bool = True


class LeagueCreate(LeagueBase):
    pass


class LeagueUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    tier: Optional[int] = Field(None, ge=1)
    members_count: Optional[int] = Field(None, ge=1)
    promoted_count: Optional[int] = Field(None, ge=0)
    relegated_count: Optional[int] = Field(None, ge=0)
    promotion_enabled: Optional[bool] = None
    relegation_enabled: Optional[bool] = None


class LeagueResponse(LeagueBase):
    id: int

    class Config:
        from_attributes = True


class SessionStart(BaseModel):
    start_date: date
    end_date: date
    initial_user_ids: List[int] = []


class UserPunctuationResponse(BaseModel):
    id: int
    user_id: int
    session_id: int
    total: int
    joined_at: datetime
    final_rank: Optional[int] = None
    target_tier: Optional[int] = None
    movement: Optional[str] = None

    class Config:
        from_attributes = True


class LeagueSessionResponse(BaseModel):
    id: int
    league_id: int
    start_date: date
    end_date: date
    is_finished: bool
    status: str
    closed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SessionStartResult(BaseModel):
    session_id: int
    league_id: int
    already_started: bool = False
    seeded_user_ids: List[int] = []
    skipped_user_ids: List[int] = []  # enrolled in an overlapping session
    waitlisted_user_ids: List[int] = []  # roster capacity reached


# Promotion schemas
class MovementPlan(BaseModel):
    roster_size: int
    promote: int
    relegate: int
    capped: bool = False
    notes: List[str] = []


class PromotionResult(BaseModel):
    assignments: Dict[int, int] = {}  # user_id -> tier for the next session
    promoted: List[int] = []
    relegated: List[int] = []
    plan: MovementPlan


class SessionEndResult(BaseModel):
    session_id: int
    already_closed: bool = False
    promotion: Optional[PromotionResult] = None

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
import os
from pathlib import Path

from recycleit.database import engine, get_db, Base
from recycleit import models  # Import all models to register them with Base
from recycleit.schemas import (
    RecycleGoalCreate, ReduceGoalCreate, GoalUpdate, GoalResponse, GoalCreationResult,
    UserGoalsStatus, ReduceItemUpdate, ReduceItemResponse, QuantityChange, ItemAdjustmentResult,
    SkipDaysUpdate, RolloverResult,
    ProjectCompletion, ProjectCompletionResult, ArticleFinish, ArticleFinishResult,
    PointCountersResponse, CounterUpdate, SettingsUpdate, SettingsResponse,
    LeagueCreate, LeagueUpdate, LeagueResponse, SessionStart, SessionStartResult,
    LeagueSessionResponse, UserPunctuationResponse, SessionEndResult
)
from recycleit.auth import verify_api_key
from recycleit.exceptions import (
    RecycleItException, NotFoundException, InvalidStateException,
    IntegrityViolationException, ConcurrentUpdateException, ValidationException
)
from recycleit.repositories.settings_repository import SettingsRepository
from recycleit.services.goal_service import GoalService
from recycleit.services.points_service import PointsService
from recycleit.services.league_service import LeagueService
from recycleit.services.scheduler_service import start_scheduler, stop_scheduler
from recycleit.constants import (
    DEFAULT_LOG_DIRECTORY_PROD, DEFAULT_LOG_DIRECTORY_DEV, CORS_ALLOWED_ORIGINS,
    SCHEDULER_ENABLED
)

LOG_DIR = os.getenv("RECYCLEIT_LOG_DIR", DEFAULT_LOG_DIRECTORY_PROD)
LOG_FILE = os.getenv("RECYCLEIT_LOG_FILE", "app.log")

# Create log directory if it doesn't exist (for development)
try:
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE
except PermissionError:
    # Fallback to local directory if no permissions for /var/log
    LOG_DIR = DEFAULT_LOG_DIRECTORY_DEV
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(log_path),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger("recycleit")

Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="RecycleIt Scoring API",
    description="Recycling goals, weighted points and league sessions",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    logger.info(f"RecycleIt API started. Logging to: {log_path}")
    if SCHEDULER_ENABLED:
        start_scheduler()


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down RecycleIt API")
    stop_scheduler()


def _status_for(exc: RecycleItException) -> int:
    if isinstance(exc, NotFoundException):
        return 404
    if isinstance(exc, (InvalidStateException, ConcurrentUpdateException)):
        return 409
    if isinstance(exc, ValidationException):
        return 400
    return 500


@app.exception_handler(RecycleItException)
async def recycleit_exception_handler(request: Request, exc: RecycleItException):
    status_code = _status_for(exc)
    if isinstance(exc, IntegrityViolationException):
        logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# Health check (no auth required)
@app.get("/")
async def root():
    return {"message": "RecycleIt Scoring API", "status": "active"}


# --- Goals ---

@app.post("/api/users/{user_id}/goals/reduce", response_model=GoalCreationResult, dependencies=[Depends(verify_api_key)])
def create_reduce_goal(user_id: int, goal: ReduceGoalCreate, db: Session = Depends(get_db)):
    """Create a reduce goal (activated or queued as next)"""
    return GoalService(db).create_reduce_goal(user_id, goal.difficulty, goal.frequency, goal.items)


@app.post("/api/users/{user_id}/goals/recycle", response_model=GoalCreationResult, dependencies=[Depends(verify_api_key)])
def create_recycle_goal(user_id: int, goal: RecycleGoalCreate, db: Session = Depends(get_db)):
    """Create a recycle goal (activated or queued as next)"""
    return GoalService(db).create_recycle_goal(user_id, goal.difficulty, goal.frequency)


@app.get("/api/users/{user_id}/goals", response_model=List[GoalResponse], dependencies=[Depends(verify_api_key)])
def get_goals(
    user_id: int,
    status: Optional[str] = None,
    kind: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """Get a user's goals with optional filtering"""
    return GoalService(db).get_goals(user_id, status, kind)


@app.get("/api/users/{user_id}/goals/status", response_model=UserGoalsStatus, dependencies=[Depends(verify_api_key)])
def get_user_goals_status(user_id: int, db: Session = Depends(get_db)):
    return GoalService(db).get_user_goals_status(user_id)


@app.get("/api/users/{user_id}/goals/due", response_model=List[int], dependencies=[Depends(verify_api_key)])
def get_goals_due(user_id: int, db: Session = Depends(get_db)):
    """Get IDs of goals checked today"""
    return GoalService(db).get_goals_due(user_id)


@app.get("/api/goals/{goal_id}", response_model=GoalResponse, dependencies=[Depends(verify_api_key)])
def get_goal(goal_id: int, db: Session = Depends(get_db)):
    return GoalService(db).get_goal(goal_id)


@app.patch("/api/goals/{goal_id}", response_model=GoalResponse, dependencies=[Depends(verify_api_key)])
def update_goal(goal_id: int, goal_update: GoalUpdate, db: Session = Depends(get_db)):
    return GoalService(db).update_goal(goal_id, goal_update)


@app.put("/api/goals/{goal_id}/skip-days", response_model=GoalResponse, dependencies=[Depends(verify_api_key)])
def edit_skip_days(goal_id: int, update: SkipDaysUpdate, db: Session = Depends(get_db)):
    return GoalService(db).edit_skip_days(goal_id, update.skip_days_left)


@app.post("/api/goals/{goal_id}/skip-days/decrement", response_model=GoalResponse, dependencies=[Depends(verify_api_key)])
def decrement_skip_days(goal_id: int, change: QuantityChange, db: Session = Depends(get_db)):
    return GoalService(db).decrement_skip_days(goal_id, change.amount)


@app.patch("/api/items/{item_id}", response_model=ReduceItemResponse, dependencies=[Depends(verify_api_key)])
def update_item(item_id: int, item_update: ReduceItemUpdate, db: Session = Depends(get_db)):
    return GoalService(db).update_item(item_id, item_update)


@app.post("/api/items/{item_id}/increment", response_model=ItemAdjustmentResult, dependencies=[Depends(verify_api_key)])
def increment_item(item_id: int, change: QuantityChange, db: Session = Depends(get_db)):
    return GoalService(db).increment_item(item_id, change.amount)


@app.post("/api/items/{item_id}/decrement", response_model=ItemAdjustmentResult, dependencies=[Depends(verify_api_key)])
def decrement_item(item_id: int, change: QuantityChange, db: Session = Depends(get_db)):
    """Decrement an item; the result reports when it was clamped at zero"""
    return GoalService(db).decrement_item(item_id, change.amount)


@app.post("/api/goals/rollover", response_model=RolloverResult, dependencies=[Depends(verify_api_key)])
def rollover_goals(db: Session = Depends(get_db)):
    """Manually trigger goal rollover"""
    return GoalService(db).rollover_goals()


# --- Completion events ---

@app.post("/api/users/{user_id}/projects/completed", response_model=ProjectCompletionResult, dependencies=[Depends(verify_api_key)])
def complete_project(user_id: int, project: ProjectCompletion, db: Session = Depends(get_db)):
    return GoalService(db).process_project_completion(user_id, project)


@app.post("/api/users/{user_id}/articles/finished", response_model=ArticleFinishResult, dependencies=[Depends(verify_api_key)])
def finish_article(user_id: int, article: ArticleFinish, db: Session = Depends(get_db)):
    return GoalService(db).process_article_finish(user_id, article)


# --- Points ---

@app.get("/api/users/{user_id}/points", response_model=PointCountersResponse, dependencies=[Depends(verify_api_key)])
def get_points(user_id: int, db: Session = Depends(get_db)):
    """Get point counters and weighted total"""
    return PointsService(db).get_summary(user_id)


@app.put("/api/users/{user_id}/points/{category}", response_model=PointCountersResponse, dependencies=[Depends(verify_api_key)])
def set_points(user_id: int, category: str, update: CounterUpdate, db: Session = Depends(get_db)):
    """Correct one point category"""
    points_service = PointsService(db)
    points_service.set_counter(user_id, category, update.value)
    return points_service.get_summary(user_id)


# --- Settings ---

@app.get("/api/settings", response_model=SettingsResponse, dependencies=[Depends(verify_api_key)])
def get_settings(db: Session = Depends(get_db)):
    return SettingsRepository.get(db)


@app.put("/api/settings", response_model=SettingsResponse, dependencies=[Depends(verify_api_key)])
def update_settings(settings_update: SettingsUpdate, db: Session = Depends(get_db)):
    settings = SettingsRepository.get(db)
    for key, value in settings_update.model_dump(exclude_unset=True).items():
        setattr(settings, key, value)
    return SettingsRepository.update(db, settings)


# --- Leagues ---

@app.get("/api/leagues", response_model=List[LeagueResponse], dependencies=[Depends(verify_api_key)])
def list_leagues(db: Session = Depends(get_db)):
    return LeagueService(db).list_leagues()


@app.post("/api/leagues", response_model=LeagueResponse, dependencies=[Depends(verify_api_key)])
def create_league(league: LeagueCreate, db: Session = Depends(get_db)):
    return LeagueService(db).create_league(league)


@app.get("/api/leagues/{league_id}", response_model=LeagueResponse, dependencies=[Depends(verify_api_key)])
def get_league(league_id: int, db: Session = Depends(get_db)):
    return LeagueService(db).get_league(league_id)


@app.patch("/api/leagues/{league_id}", response_model=LeagueResponse, dependencies=[Depends(verify_api_key)])
def update_league(league_id: int, league: LeagueUpdate, db: Session = Depends(get_db)):
    return LeagueService(db).update_league(league_id, league)


@app.delete("/api/leagues/{league_id}", dependencies=[Depends(verify_api_key)])
def delete_league(league_id: int, db: Session = Depends(get_db)):
    LeagueService(db).delete_league(league_id)
    return {"message": "League deleted"}


@app.post("/api/leagues/{league_id}/sessions", response_model=SessionStartResult, dependencies=[Depends(verify_api_key)])
def start_session(league_id: int, session_start: SessionStart, db: Session = Depends(get_db)):
    """Start a league session seeded from the last ranking"""
    return LeagueService(db).start_session(
        league_id, session_start.start_date, session_start.end_date,
        session_start.initial_user_ids
    )


# --- Sessions ---

@app.get("/api/sessions/{session_id}", response_model=LeagueSessionResponse, dependencies=[Depends(verify_api_key)])
def get_session(session_id: int, db: Session = Depends(get_db)):
    return LeagueService(db).get_session(session_id)


@app.get("/api/sessions/{session_id}/roster", response_model=List[UserPunctuationResponse], dependencies=[Depends(verify_api_key)])
def get_roster(session_id: int, db: Session = Depends(get_db)):
    """Get the roster with totals, best first"""
    return LeagueService(db).get_roster(session_id)


@app.post("/api/sessions/{session_id}/members/{user_id}", response_model=UserPunctuationResponse, dependencies=[Depends(verify_api_key)])
def join_session(session_id: int, user_id: int, db: Session = Depends(get_db)):
    return LeagueService(db).join_session(session_id, user_id)


@app.post("/api/sessions/{session_id}/end", response_model=SessionEndResult, dependencies=[Depends(verify_api_key)])
def end_session(session_id: int, db: Session = Depends(get_db)):
    """Close a session and compute next tiers"""
    return LeagueService(db).end_session(session_id)


@app.post("/api/sessions/rollover", dependencies=[Depends(verify_api_key)])
def rollover_sessions(db: Session = Depends(get_db)):
    """Manually close expired sessions and start the next ones"""
    league_service = LeagueService(db)
    closed = league_service.close_expired_sessions()
    started = league_service.start_next_sessions()
    return {"closed": closed, "started": started}


@app.get("/api/users/{user_id}/session", response_model=LeagueSessionResponse, dependencies=[Depends(verify_api_key)])
def get_active_session(user_id: int, db: Session = Depends(get_db)):
    return LeagueService(db).get_active_session(user_id)


@app.get("/api/users/{user_id}/session/entry", response_model=UserPunctuationResponse, dependencies=[Depends(verify_api_key)])
def get_active_entry(user_id: int, db: Session = Depends(get_db)):
    return LeagueService(db).get_active_entry(user_id)


@app.get("/api/users/{user_id}/sessions", response_model=List[LeagueSessionResponse], dependencies=[Depends(verify_api_key)])
def get_sessions_for_user(user_id: int, db: Session = Depends(get_db)):
    return LeagueService(db).get_sessions_for_user(user_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("recycleit.main:app", host="0.0.0.0", port=8000, reload=False)

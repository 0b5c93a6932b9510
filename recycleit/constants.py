"""
Application constants and environment configuration.
"""
import os

# Environment
DATABASE_URL = os.getenv("RECYCLEIT_DATABASE_URL", "sqlite:///./recycleit.db")
API_KEY = os.getenv("RECYCLEIT_API_KEY", "your-secret-key-change-me")
SCHEDULER_ENABLED = os.getenv("RECYCLEIT_SCHEDULER_ENABLED", "true").lower() == "true"

DEFAULT_LOG_DIRECTORY_PROD = "/var/log/recycleit"
DEFAULT_LOG_DIRECTORY_DEV = "./logs"

CORS_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
]

# Goal kinds (discriminant of the goals table)
GOAL_KIND_RECYCLE = "recycle"
GOAL_KIND_REDUCE = "reduce"

# Goal lifecycle
GOAL_STATUS_ACTUAL = "ACTUAL"
GOAL_STATUS_NEXT = "NEXT"
GOAL_STATUS_INACTIVE = "INACTIVE"

DIFFICULTY_EASY = "EASY"
DIFFICULTY_MEDIUM = "MEDIUM"
DIFFICULTY_HARD = "HARD"
DIFFICULTIES = (DIFFICULTY_EASY, DIFFICULTY_MEDIUM, DIFFICULTY_HARD)

FREQUENCY_DAILY = "DAILY"
FREQUENCY_WEEKLY = "WEEKLY"
FREQUENCY_MONTHLY = "MONTHLY"
FREQUENCIES = (FREQUENCY_DAILY, FREQUENCY_WEEKLY, FREQUENCY_MONTHLY)

MATERIALS = ("plastic", "glass", "paper", "metal", "textile")

# Finished projects needed to complete a recycle goal
RECYCLE_TARGET_BY_DIFFICULTY = {
    DIFFICULTY_EASY: 1,
    DIFFICULTY_MEDIUM: 2,
    DIFFICULTY_HARD: 4,
}

# Reward scaling per difficulty
MULTIPLIER_BY_DIFFICULTY = {
    DIFFICULTY_EASY: 1.0,
    DIFFICULTY_MEDIUM: 1.5,
    DIFFICULTY_HARD: 2.0,
}

GOAL_COMPLETION_THRESHOLD = 1.0

# Creation outcomes
GOAL_OUTCOME_ACTIVATED = "activated"
GOAL_OUTCOME_QUEUED = "queued"
GOAL_OUTCOME_QUEUED_UPDATED = "queued_updated"

# Weighted total, in hundredths so the total is computed with integers only
WEIGHT_RECYCLE = 100
WEIGHT_REUSE = 100
WEIGHT_KNOWLEDGE = 85
WEIGHT_REDUCE = 15
WEIGHT_SCALE = 100

POINT_CATEGORIES = ("recycle", "reuse", "knowledge", "reduce")

# League sessions
SESSION_STATUS_OPEN = "OPEN"
SESSION_STATUS_CLOSING = "CLOSING"
SESSION_STATUS_CLOSED = "CLOSED"

MOVEMENT_PROMOTED = "promoted"
MOVEMENT_RELEGATED = "relegated"
MOVEMENT_STAYED = "stayed"

# Tier 1 is the best league; promotion moves towards lower tier numbers
TIER_STEP_PROMOTION = -1
TIER_STEP_RELEGATION = 1

# Settings defaults
DEFAULT_PROJECT_COMPLETION_POINTS = 5
DEFAULT_ARTICLE_FINISH_POINTS = 75
DEFAULT_REUSE_POINTS_PER_ITEM = 2
DEFAULT_REUSE_POINTS_CAP = 50
DEFAULT_MAX_UPDATE_RETRIES = 3
DEFAULT_RANKING_BATCH_SIZE = 500
DEFAULT_LEAGUE_SESSION_LENGTH_DAYS = 7

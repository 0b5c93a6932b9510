"""
Custom exceptions for the scoring and league engine.
Provides specific exception types so callers can tell a missing record from
an illegal transition or a broken invariant.
"""


class RecycleItException(Exception):
    """Base exception for the RecycleIt engine"""
    pass


# --- Not found ---

class NotFoundException(RecycleItException):
    """Raised when a referenced record does not exist"""
    pass


class GoalNotFoundException(NotFoundException):
    """Raised when a goal is not found"""
    def __init__(self, goal_id: int):
        self.goal_id = goal_id
        super().__init__(f"Goal with ID {goal_id} not found")


class ReduceItemNotFoundException(NotFoundException):
    """Raised when a reduce item is not found"""
    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Reduce item with ID {item_id} not found")


class LeagueNotFoundException(NotFoundException):
    """Raised when a league is not found"""
    def __init__(self, league_id: int = None, tier: int = None):
        self.league_id = league_id
        self.tier = tier
        if tier is not None:
            super().__init__(f"League with tier {tier} not found")
        else:
            super().__init__(f"League with ID {league_id} not found")


class LeagueSessionNotFoundException(NotFoundException):
    """Raised when a league session is not found"""
    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"League session with ID {session_id} not found")


class ActiveSessionNotFoundException(NotFoundException):
    """Raised when a user has no league session active on a date"""
    def __init__(self, user_id: int, on_date):
        self.user_id = user_id
        self.on_date = on_date
        super().__init__(f"No active league session for user {user_id} on {on_date}")


class PointCountersNotFoundException(NotFoundException):
    """Raised when a user has never scored any points"""
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"No point counters recorded for user {user_id}")


# --- Invalid state ---

class InvalidStateException(RecycleItException):
    """Raised when an operation is not allowed in the current state"""
    pass


class SessionClosedException(InvalidStateException):
    """Raised when modifying a league session that is no longer open"""
    def __init__(self, session_id: int, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(f"League session {session_id} is {status}")


class RosterFullException(InvalidStateException):
    """Raised when a league session roster reached the league capacity"""
    def __init__(self, session_id: int, capacity: int):
        self.session_id = session_id
        self.capacity = capacity
        super().__init__(f"League session {session_id} roster is full ({capacity} members)")


class OverlappingSessionException(InvalidStateException):
    """Raised when a user would be enrolled in two overlapping sessions"""
    def __init__(self, user_id: int, session_id: int, existing_session_id: int):
        self.user_id = user_id
        self.session_id = session_id
        self.existing_session_id = existing_session_id
        super().__init__(
            f"User {user_id} cannot join session {session_id}: "
            f"already enrolled in overlapping session {existing_session_id}"
        )


class DuplicateTierException(InvalidStateException):
    """Raised when two leagues would share the same tier"""
    def __init__(self, tier: int):
        self.tier = tier
        super().__init__(f"A league with tier {tier} already exists")


# --- Integrity ---

class IntegrityViolationException(RecycleItException):
    """Raised when stored data breaks an invariant that must always hold"""
    pass


class MultipleActiveSessionsException(IntegrityViolationException):
    """Raised when more than one session is active for a user"""
    def __init__(self, user_id: int, session_ids: list):
        self.user_id = user_id
        self.session_ids = session_ids
        super().__init__(
            f"User {user_id} has {len(session_ids)} active league sessions: {session_ids}"
        )


# --- Contention ---

class ConcurrentUpdateException(RecycleItException):
    """Raised when an optimistic update keeps losing to concurrent writers"""
    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} failed after {attempts} attempts due to concurrent updates"
        )


class ValidationException(RecycleItException):
    """Raised when data validation fails"""
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error for {field}: {message}")

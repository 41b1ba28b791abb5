# Core modules - Database, Config, Exceptions, Clock
from .database import get_supabase_client
from .config import settings
from .clock import Clock, SystemClock, FixedClock
from .exceptions import (
    EFilingException,
    NotFoundError,
    ForbiddenError,
    InvalidTransitionError,
    AlreadyResolvedError,
    ValidationError,
    DatabaseError,
)

__all__ = [
    "get_supabase_client",
    "settings",
    "Clock",
    "SystemClock",
    "FixedClock",
    "EFilingException",
    "NotFoundError",
    "ForbiddenError",
    "InvalidTransitionError",
    "AlreadyResolvedError",
    "ValidationError",
    "DatabaseError",
]

# Services - Business Logic Layer
"""
E-Filing Engine Services Module.

This module provides the core business logic for:
- Business-time calculation and file timers
- The file state machine and extension workflow
- The red-list sweep and incentive ledgers
- Notification fan-out
- Background job scheduling
"""

# Business Day Calculations
from .business_days import (
    is_business_day,
    is_weekend,
    is_holiday,
    add_business_days,
    business_days_before,
    get_business_days_between,
    business_seconds_between,
    clear_holiday_cache,
)

# Notification Services
from .notifications import (
    NotificationChannel,
    NotificationResult,
    NotificationEvent,
    NotificationService,
)

# Timing
from .timing import (
    TimingEngine,
    calculate_timer_percentage,
    display_percentage,
)

# Incentive Ledgers
from .incentives import (
    IncentiveLedger,
    PointsLedger,
    CoinLedger,
    build_ledgers,
)

# Desks
from .desks import DeskService

# File Lifecycle
from .file_workflow import (
    ACTION_TABLE,
    FileWorkflowService,
    parse_action,
)
from .extensions import ExtensionWorkflow
from .redlist import RedListSweeper, SweepResult

# Background Job Scheduler
from .scheduler import (
    EngineScheduler,
    get_scheduler,
)


__all__ = [
    # Business Days
    "is_business_day",
    "is_weekend",
    "is_holiday",
    "add_business_days",
    "business_days_before",
    "get_business_days_between",
    "business_seconds_between",
    "clear_holiday_cache",

    # Notifications
    "NotificationChannel",
    "NotificationResult",
    "NotificationEvent",
    "NotificationService",

    # Timing
    "TimingEngine",
    "calculate_timer_percentage",
    "display_percentage",

    # Incentives
    "IncentiveLedger",
    "PointsLedger",
    "CoinLedger",
    "build_ledgers",

    # Desks
    "DeskService",

    # File Lifecycle
    "ACTION_TABLE",
    "FileWorkflowService",
    "parse_action",
    "ExtensionWorkflow",
    "RedListSweeper",
    "SweepResult",

    # Scheduler
    "EngineScheduler",
    "get_scheduler",
]

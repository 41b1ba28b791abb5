"""
Enum types that match the PostgreSQL ENUM types in Supabase.
These must stay in sync with the database schema (see migrations/).
"""
from enum import Enum


class FileStatus(str, Enum):
    """
    File status values.
    Matches: create type file_status as enum
        ('PENDING', 'IN_PROGRESS', 'ON_HOLD', 'APPROVED', 'REJECTED', 'RETURNED', 'RECALLED');
    """
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RETURNED = "RETURNED"
    RECALLED = "RECALLED"


# Files the sweeper and the hourly timer refresh care about
OPEN_STATUSES = (FileStatus.PENDING, FileStatus.IN_PROGRESS)


class FilePriority(str, Enum):
    """Matches: create type file_priority as enum ('LOW', 'NORMAL', 'HIGH', 'URGENT');"""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class RoutingAction(str, Enum):
    """
    Action recorded on a routing entry.
    Matches: create type file_action as enum (...);
    """
    FORWARDED = "FORWARDED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RETURNED_TO_PREVIOUS = "RETURNED_TO_PREVIOUS"
    RETURNED_TO_HOST = "RETURNED_TO_HOST"
    ON_HOLD = "ON_HOLD"
    RELEASED_FROM_HOLD = "RELEASED_FROM_HOLD"
    RECALLED = "RECALLED"
    DISPATCH_PREPARED = "DISPATCH_PREPARED"
    DISPATCHED = "DISPATCHED"


class FileActionType(str, Enum):
    """Actions a holder (or admin) can perform on a file they hold."""
    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"
    RETURN_TO_PREVIOUS = "return_to_previous"
    RETURN_TO_HOST = "return_to_host"
    HOLD = "hold"
    RELEASE = "release"


class UserRole(str, Enum):
    """Matches: create type user_role as enum (...);"""
    SUPER_ADMIN = "SUPER_ADMIN"
    DEPT_ADMIN = "DEPT_ADMIN"
    DISPATCHER = "DISPATCHER"
    SECTION_OFFICER = "SECTION_OFFICER"
    APPROVAL_AUTHORITY = "APPROVAL_AUTHORITY"
    INWARD_DESK = "INWARD_DESK"
    USER = "USER"


ADMIN_ROLES = (UserRole.SUPER_ADMIN, UserRole.DEPT_ADMIN)


class ExtensionStatus(str, Enum):
    """Time extension request status."""
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class NotificationType(str, Enum):
    """Event types published to the notification channel."""
    FILE_RECEIVED = "file_received"
    EXTENSION_REQUEST = "extension_request"
    EXTENSION_APPROVED = "extension_approved"
    EXTENSION_DENIED = "extension_denied"
    FILE_REDLISTED = "file_redlisted"
    FILE_READY_DISPATCH = "file_ready_dispatch"
    FILE_DISPATCHED = "file_dispatched"
    ADMIN_FILE_REDLISTED = "admin_file_redlisted"
    ADMIN_EXTENSION_REQUESTED = "admin_extension_requested"
    ADMIN_EXTENSION_APPROVED = "admin_extension_approved"
    ADMIN_EXTENSION_DENIED = "admin_extension_denied"
    ADMIN_USER_WARNING_REDLIST = "admin_user_warning_redlist"
    ADMIN_USER_SEVERE_REDLIST = "admin_user_severe_redlist"
    LOW_COINS = "low_coins"
    RED_FLAG_THRESHOLD = "red_flag_threshold"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class PointsReason(str, Enum):
    """Reason recorded on a points transaction."""
    REDLIST_PENALTY = "redlist_penalty"
    MONTHLY_BONUS = "monthly_bonus"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class CoinTransactionType(str, Enum):
    """Type recorded on a coin transaction."""
    OPTIMUM_FILE = "optimum_file"
    EXCESS_FILES = "excess_files"
    RED_FLAG_DEDUCTION = "red_flag_deduction"
    REDLIST_PENALTY = "redlist_penalty"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class RedFlagSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class BadgeType(str, Enum):
    """Performance badges awarded by the coin ledger."""
    LOW_HOURS = "low_hours"
    EXTENDED_HOURS = "extended_hours"
    HIGH_VOLUME = "high_volume"
    HIGH_MOMENTUM = "high_momentum"

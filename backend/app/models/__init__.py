# Data models - Enums and Pydantic Schemas
from .enums import (
    FileStatus,
    FilePriority,
    FileActionType,
    RoutingAction,
    UserRole,
    ExtensionStatus,
    NotificationType,
)
from .schemas import (
    Actor,
    FileInDB,
    RoutingEntryInDB,
    ExtensionRequestInDB,
    FileCreateRequest,
    LedgerBalance,
    ReconciliationReport,
)

__all__ = [
    # Enums
    "FileStatus",
    "FilePriority",
    "FileActionType",
    "RoutingAction",
    "UserRole",
    "ExtensionStatus",
    "NotificationType",
    # Actor
    "Actor",
    # Stored rows
    "FileInDB",
    "RoutingEntryInDB",
    "ExtensionRequestInDB",
    # Requests
    "FileCreateRequest",
    # Ledger views
    "LedgerBalance",
    "ReconciliationReport",
]

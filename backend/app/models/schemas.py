"""
Pydantic schemas for data validation and serialization.
Covers the acting user, files, routing history, extension requests,
ledger records and the API request bodies.
"""
from datetime import date, datetime
from typing import Optional, Any

from pydantic import BaseModel, Field, model_validator

from .enums import (
    ADMIN_ROLES,
    ExtensionStatus,
    FileActionType,
    FilePriority,
    FileStatus,
    RedFlagSeverity,
    RoutingAction,
    UserRole,
)


# ==========================================
# ACTOR
# ==========================================

class Actor(BaseModel):
    """The user performing an operation, as resolved by the calling layer."""
    id: str = Field(..., min_length=1)
    roles: list[UserRole] = Field(default_factory=lambda: [UserRole.USER])
    department_id: Optional[str] = None
    name: Optional[str] = None

    def has_role(self, *roles: UserRole) -> bool:
        return any(role in self.roles for role in roles)

    @property
    def is_admin(self) -> bool:
        return self.has_role(*ADMIN_ROLES)

    @property
    def is_super_admin(self) -> bool:
        return self.has_role(UserRole.SUPER_ADMIN)


# ==========================================
# FILE SCHEMAS
# ==========================================

class TimestampMixin(BaseModel):
    """Mixin for created_at timestamp."""
    created_at: Optional[datetime] = None


class FileBase(BaseModel):
    """Base file fields."""
    subject: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    priority: FilePriority = FilePriority.NORMAL
    priority_category: Optional[str] = None
    department_id: str
    current_division_id: Optional[str] = None
    due_date: Optional[datetime] = None
    desk_due_date: Optional[datetime] = None
    allotted_time: Optional[int] = Field(None, ge=0)


class FileInDB(FileBase, TimestampMixin):
    """Schema for a file as stored in database."""
    id: str
    file_number: str
    status: FileStatus = FileStatus.PENDING
    created_by_id: str
    assigned_to_id: Optional[str] = None
    desk_id: Optional[str] = None
    time_remaining: Optional[int] = None
    timer_percentage: float = 0
    is_red_listed: bool = False
    red_listed_at: Optional[datetime] = None
    is_on_hold: bool = False
    hold_reason: Optional[str] = None
    is_closed: bool = False
    closed_at: Optional[datetime] = None


class RoutingEntryInDB(TimestampMixin):
    """Immutable record of a single file transition."""
    id: str
    file_id: str
    from_user_id: Optional[str] = None
    to_user_id: Optional[str] = None
    to_division_id: Optional[str] = None
    action: RoutingAction
    action_string: Optional[str] = None
    remarks: Optional[str] = None
    time_spent_seconds: Optional[int] = None


class ExtensionRequestInDB(TimestampMixin):
    id: str
    file_id: str
    requested_by_id: str
    approver_id: Optional[str] = None
    reason: str
    additional_time: int
    status: ExtensionStatus = ExtensionStatus.PENDING
    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_remarks: Optional[str] = None


# ==========================================
# API REQUEST BODIES
# ==========================================

class ActorPayload(BaseModel):
    """Actor identity passed by the (out of scope) auth layer."""
    actor: Actor


class FileCreateRequest(FileBase, ActorPayload):
    division_code: Optional[str] = Field(None, max_length=10)
    assigned_to_id: Optional[str] = None
    desk_id: Optional[str] = None

    @model_validator(mode='after')
    def validate_due_dates(self) -> 'FileCreateRequest':
        """A desk deadline can never be later than the file deadline."""
        if self.due_date and self.desk_due_date and self.desk_due_date > self.due_date:
            raise ValueError("desk_due_date cannot be after due_date")
        return self


class ForwardRequest(ActorPayload):
    to_user_id: str
    to_division_id: Optional[str] = None
    remarks: Optional[str] = None


class FileActionRequest(ActorPayload):
    # Kept as a plain string so unknown actions reach the engine and are
    # reported as InvalidTransitionError rather than a 422.
    action: str
    remarks: Optional[str] = None


class RecallRequest(ActorPayload):
    remarks: Optional[str] = None


class PrepareDispatchRequest(ActorPayload):
    remarks: Optional[str] = None


class DispatchRequest(ActorPayload):
    dispatch_method: str = Field(..., min_length=1, max_length=50)
    tracking_number: Optional[str] = None
    recipient_name: str = Field(..., min_length=1)
    recipient_address: Optional[str] = None
    recipient_email: Optional[str] = None
    proof_document_key: Optional[str] = None
    acknowledgement_key: Optional[str] = None
    remarks: Optional[str] = None


class ExtensionCreateRequest(ActorPayload):
    file_id: str
    additional_days: int = Field(..., ge=1, le=365)
    reason: str = Field(..., min_length=1)


class ExtensionResolveRequest(ActorPayload):
    approved: bool
    remarks: Optional[str] = None


class ManualPointsAdjustment(ActorPayload):
    user_id: str
    amount: int
    reason: str = Field(..., min_length=1)


class RedFlagCreateRequest(ActorPayload):
    user_id: str
    flag_type: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    severity: RedFlagSeverity = RedFlagSeverity.MEDIUM
    desk_id: Optional[str] = None
    file_id: Optional[str] = None


class RedFlagResolveRequest(ActorPayload):
    resolution_note: Optional[str] = None


class WorkingHoursLogRequest(ActorPayload):
    user_id: str
    hours: float = Field(..., ge=0, le=24)
    work_date: Optional[date] = None


class SettingUpdateRequest(ActorPayload):
    value: Any


class DeskAssignRequest(ActorPayload):
    desk_id: str


# ==========================================
# LEDGER VIEWS
# ==========================================

class LedgerBalance(BaseModel):
    user_id: str
    ledger: str
    balance: int
    counters: dict[str, Any] = Field(default_factory=dict)


class ReconciliationReport(BaseModel):
    user_id: str
    ledger: str
    stored_balance: int
    replayed_balance: int
    transaction_count: int
    is_consistent: bool


class HolidayCreate(BaseModel):
    """Request body for creating a holiday."""
    name: str = Field(..., description="Holiday name", min_length=1, max_length=100)
    holiday_date: date = Field(..., description="Date of the holiday")

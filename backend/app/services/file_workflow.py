"""
File State Machine.

Owns every status transition of a file: forward, the holder actions
(approve, reject, return, hold, release), recall, dispatch preparation and
dispatch. Each transition writes the file update, its routing entry and its
audit row inside one application-level transaction. Notifications and
incentive rewards run after the commit; their failures are logged and never
undo the transition.

States:
    PENDING -> IN_PROGRESS -> {APPROVED | REJECTED | RETURNED | ON_HOLD}
    ON_HOLD -> IN_PROGRESS (release)
    any open state -> RECALLED (super admin)
    terminal-eligible state -> APPROVED + closed (dispatch)
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from app.core.clock import Clock, SystemClock, ensure_utc, parse_timestamp, to_iso
from app.core.config import settings
from app.core.database import get_supabase_client
from app.core.exceptions import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from app.models.enums import (
    FileActionType,
    FilePriority,
    FileStatus,
    NotificationPriority,
    NotificationType,
    RoutingAction,
    UserRole,
)
from app.models.schemas import Actor
from app.services.desks import DeskService
from app.services.incentives import IncentiveLedger, build_ledgers
from app.services.notifications import NotificationEvent, NotificationService, action_button
from app.services.timing import TimingEngine, display_percentage


logger = logging.getLogger(__name__)


# ==========================================
# ACTION TABLE
# ==========================================

@dataclass(frozen=True)
class ActionRule:
    """What a holder action does to a file."""
    status: FileStatus
    routing_action: RoutingAction
    allowed_from: frozenset[FileStatus]
    set_hold: Optional[bool] = None  # True: put on hold, False: release, None: untouched
    rewards_holder: bool = False


_WORKING = frozenset({FileStatus.PENDING, FileStatus.IN_PROGRESS, FileStatus.RETURNED})
_ACTIVE = frozenset({FileStatus.PENDING, FileStatus.IN_PROGRESS})

ACTION_TABLE: dict[FileActionType, ActionRule] = {
    FileActionType.APPROVE: ActionRule(
        FileStatus.APPROVED, RoutingAction.APPROVED, _WORKING, rewards_holder=True
    ),
    FileActionType.REJECT: ActionRule(
        FileStatus.REJECTED, RoutingAction.REJECTED, _WORKING
    ),
    FileActionType.RETURN: ActionRule(
        FileStatus.RETURNED, RoutingAction.RETURNED_TO_PREVIOUS, _ACTIVE
    ),
    FileActionType.RETURN_TO_PREVIOUS: ActionRule(
        FileStatus.RETURNED, RoutingAction.RETURNED_TO_PREVIOUS, _ACTIVE
    ),
    FileActionType.RETURN_TO_HOST: ActionRule(
        FileStatus.RETURNED, RoutingAction.RETURNED_TO_HOST, _ACTIVE
    ),
    FileActionType.HOLD: ActionRule(
        FileStatus.ON_HOLD, RoutingAction.ON_HOLD, _WORKING, set_hold=True
    ),
    FileActionType.RELEASE: ActionRule(
        FileStatus.IN_PROGRESS, RoutingAction.RELEASED_FROM_HOLD,
        frozenset({FileStatus.ON_HOLD}), set_hold=False
    ),
}

_unmapped = set(FileActionType) - set(ACTION_TABLE)
if _unmapped:
    raise RuntimeError(f"File actions without a transition rule: {sorted(a.value for a in _unmapped)}")

# Statuses a file may not be dispatched from
NON_DISPATCHABLE = frozenset({FileStatus.ON_HOLD, FileStatus.REJECTED, FileStatus.RECALLED})

DISPATCH_PREPARE_ROLES = (UserRole.SUPER_ADMIN, UserRole.DEPT_ADMIN, UserRole.DISPATCHER)
DISPATCH_ROLES = (UserRole.DISPATCHER, UserRole.SUPER_ADMIN)


def parse_action(action: str) -> FileActionType:
    """Map an action string onto the closed action set."""
    try:
        return FileActionType(str(action).strip().lower())
    except ValueError:
        raise InvalidTransitionError(
            f"Unknown file action '{action}'",
            action=str(action),
            allowed=[a.value for a in FileActionType],
        ) from None


class FileWorkflowService:
    """Validates and applies file transitions."""

    def __init__(
        self,
        db=None,
        clock: Optional[Clock] = None,
        notifier: Optional[NotificationService] = None,
        timing: Optional[TimingEngine] = None,
        reward_ledgers: Optional[list[IncentiveLedger]] = None,
        desks: Optional[DeskService] = None
    ):
        self._db = db
        self.clock = clock or SystemClock()
        self.notifier = notifier or NotificationService(db=db)
        self.timing = timing or TimingEngine(db=db, clock=self.clock)
        self.reward_ledgers = (
            reward_ledgers
            if reward_ledgers is not None
            else build_ledgers(settings.reward_ledger_names, db=db, clock=self.clock, notifier=self.notifier)
        )
        self.desks = desks or DeskService(db=db, clock=self.clock)

    @property
    def db(self):
        return self._db or get_supabase_client()

    # ==========================================
    # QUERIES
    # ==========================================

    def get_file(self, file_id: str) -> dict[str, Any]:
        file = self.db.get_file(file_id)
        if not file:
            raise NotFoundError(f"File {file_id} not found", "file", file_id)
        return file

    def get_file_view(self, file_id: str) -> dict[str, Any]:
        """File row plus the clamped percentage used for display."""
        file = self.get_file(file_id)
        return {
            **file,
            "display_percentage": display_percentage(file.get("timer_percentage") or 0),
        }

    def get_routing_history(self, file_id: str) -> list[dict]:
        self.get_file(file_id)
        return self.db.get_routing_history(file_id)

    # ==========================================
    # CREATION
    # ==========================================

    def generate_file_number(
        self,
        department_id: str,
        division_id: Optional[str] = None,
        division_code: Optional[str] = None
    ) -> str:
        """DEPT-DIV-YEAR-NNNN, sequence counted per department per year."""
        department = self.db.get_department(department_id)
        if not department:
            raise NotFoundError(f"Department {department_id} not found", "department", department_id)

        if not division_code and division_id:
            division = self.db.get_division(division_id) or {}
            division_code = division.get("code")

        now = self.clock.now()
        year_start = now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
        sequence = self.db.count_department_files_since(department_id, to_iso(year_start)) + 1

        return f"{department['code']}-{(division_code or 'GEN').upper()}-{now.year}-{sequence:04d}"

    def create_file(
        self,
        actor: Actor,
        subject: str,
        department_id: str,
        description: Optional[str] = None,
        priority: FilePriority = FilePriority.NORMAL,
        priority_category: Optional[str] = None,
        current_division_id: Optional[str] = None,
        division_code: Optional[str] = None,
        assigned_to_id: Optional[str] = None,
        desk_id: Optional[str] = None,
        due_date: Optional[datetime] = None,
        desk_due_date: Optional[datetime] = None,
        allotted_time: Optional[int] = None
    ) -> dict[str, Any]:
        """Register a new file as PENDING and start its timer when it has a due date."""
        now = self.clock.now()
        due_date = ensure_utc(due_date) if due_date is not None else None
        desk_due_date = ensure_utc(desk_due_date) if desk_due_date is not None else None

        if due_date is not None and due_date <= now:
            raise ValidationError("due_date must be in the future", field="due_date", value=due_date)

        if desk_id:
            self.desks.ensure_capacity(desk_id)

        file_number = self.generate_file_number(department_id, current_division_id, division_code)

        file_data: dict[str, Any] = {
            "file_number": file_number,
            "subject": subject,
            "description": description,
            "status": FileStatus.PENDING.value,
            "priority": FilePriority(priority).value,
            "priority_category": priority_category,
            "created_by_id": actor.id,
            "assigned_to_id": assigned_to_id or actor.id,
            "current_division_id": current_division_id,
            "department_id": department_id,
            "desk_id": desk_id,
            "due_date": to_iso(due_date),
            "desk_due_date": to_iso(desk_due_date),
            "allotted_time": allotted_time,
            "time_remaining": None,
            "timer_percentage": 0,
            "is_red_listed": False,
            "is_on_hold": False,
            "is_closed": False,
            "created_at": to_iso(now),
        }

        if due_date is not None:
            if not allotted_time:
                file_data["allotted_time"] = self.timing.calculate_allotted_time(now, due_date)
            file_data.update(self.timing.compute(file_data, now))

        with self.db.transaction():
            file = self.db.insert_file(file_data)
            self.db.log_audit(
                entity_type="file",
                entity_id=file["id"],
                action="created",
                changed_by=actor.id,
                metadata={"file_number": file_number},
            )

        logger.info(f"Created file {file_number} ({file['id']})")
        return file

    # ==========================================
    # TRANSITIONS
    # ==========================================

    def forward(
        self,
        file_id: str,
        actor: Actor,
        to_user_id: str,
        to_division_id: Optional[str] = None,
        remarks: Optional[str] = None
    ) -> dict[str, Any]:
        """Hand the file to a new holder (and optionally a new division)."""
        file = self.get_file(file_id)
        self._ensure_movable(file, "forward")
        self._ensure_holder_or_admin(file, actor, allow_unassigned_creator=True)

        now = self.clock.now()
        update = {
            "assigned_to_id": to_user_id,
            "current_division_id": to_division_id or file.get("current_division_id"),
            "status": FileStatus.IN_PROGRESS.value,
        }

        updated = self._commit_transition(
            file, actor, update, RoutingAction.FORWARDED, now,
            remarks=remarks, to_user_id=to_user_id, to_division_id=to_division_id,
        )

        self._notify(NotificationEvent(
            user_id=to_user_id,
            type=NotificationType.FILE_RECEIVED,
            title="New file received",
            message=f"File {file['file_number']} - {file['subject']} was forwarded to you.",
            file_id=file_id,
            priority=self._priority_for(file),
            actions=[action_button("Request Extra Time", "request_extra_time", file_id=file_id)],
        ))
        self._reward_if_timely(file, actor, now)
        return updated

    def perform_action(
        self,
        file_id: str,
        actor: Actor,
        action: str,
        remarks: Optional[str] = None
    ) -> dict[str, Any]:
        """Apply one of the holder actions from ACTION_TABLE."""
        action_type = parse_action(action)
        rule = ACTION_TABLE[action_type]

        file = self.get_file(file_id)
        self._ensure_holder_or_admin(file, actor)

        current = FileStatus(file["status"])
        if file.get("is_closed") or current not in rule.allowed_from:
            raise InvalidTransitionError(
                f"Cannot {action_type.value} a file in status {current.value}",
                action=action_type.value,
                current_status=current.value,
                allowed=sorted(s.value for s in rule.allowed_from),
            )

        now = self.clock.now()
        update: dict[str, Any] = {"status": rule.status.value}
        if rule.set_hold is True:
            update["is_on_hold"] = True
            update["hold_reason"] = remarks
        elif rule.set_hold is False:
            update["is_on_hold"] = False
            update["hold_reason"] = None

        updated = self._commit_transition(
            file, actor, update, rule.routing_action, now,
            remarks=remarks, action_string=action_type.value,
        )

        if rule.rewards_holder:
            self._reward_if_timely(file, actor, now)
        return updated

    def recall(self, file_id: str, actor: Actor, remarks: Optional[str] = None) -> dict[str, Any]:
        """Pull a file back from its holder. Super admins only."""
        file = self.get_file(file_id)
        if not actor.is_super_admin:
            raise ForbiddenError(
                "Only a super admin can recall files",
                actor_id=actor.id,
                required=[UserRole.SUPER_ADMIN.value],
            )
        if file.get("is_closed"):
            raise InvalidTransitionError(
                "Cannot recall a closed file",
                action="recall",
                current_status=file["status"],
            )

        update = {"status": FileStatus.RECALLED.value, "assigned_to_id": None}
        return self._commit_transition(
            file, actor, update, RoutingAction.RECALLED, self.clock.now(),
            remarks=remarks or "File recalled by Super Admin",
        )

    def prepare_for_dispatch(
        self,
        file_id: str,
        actor: Actor,
        remarks: Optional[str] = None
    ) -> dict[str, Any]:
        """Mark a file ready for dispatch and alert the department's dispatchers."""
        file = self.get_file(file_id)
        if not actor.has_role(*DISPATCH_PREPARE_ROLES):
            raise ForbiddenError(
                "Only admins or dispatchers can prepare files for dispatch",
                actor_id=actor.id,
                required=[r.value for r in DISPATCH_PREPARE_ROLES],
            )
        self._ensure_dispatchable(file, "prepare_for_dispatch")

        updated = self._commit_transition(
            file, actor, {}, RoutingAction.DISPATCH_PREPARED, self.clock.now(), remarks=remarks,
        )

        dispatchers = self._user_ids_by_role(UserRole.DISPATCHER, file.get("department_id"))
        self._notify_many(dispatchers, lambda user_id: NotificationEvent(
            user_id=user_id,
            type=NotificationType.FILE_READY_DISPATCH,
            title="File ready for dispatch",
            message=f"File {file['file_number']} - {file['subject']} is ready for dispatch.",
            file_id=file_id,
            priority=NotificationPriority.HIGH,
        ))
        return updated

    def dispatch(
        self,
        file_id: str,
        actor: Actor,
        dispatch_method: str,
        recipient_name: str,
        tracking_number: Optional[str] = None,
        recipient_address: Optional[str] = None,
        recipient_email: Optional[str] = None,
        proof_document_key: Optional[str] = None,
        acknowledgement_key: Optional[str] = None,
        remarks: Optional[str] = None
    ) -> dict[str, Any]:
        """Close a prepared file and record the immutable dispatch proof."""
        file = self.get_file(file_id)
        if not actor.has_role(*DISPATCH_ROLES):
            raise ForbiddenError(
                "Only dispatchers can dispatch files",
                actor_id=actor.id,
                required=[r.value for r in DISPATCH_ROLES],
            )
        self._ensure_dispatchable(file, "dispatch")
        if not self.db.has_routing_action(file_id, RoutingAction.DISPATCH_PREPARED.value):
            raise InvalidTransitionError(
                "File has not been prepared for dispatch",
                action="dispatch",
                current_status=file["status"],
            )

        now = self.clock.now()
        update = {
            "status": FileStatus.APPROVED.value,
            "is_closed": True,
            "closed_at": to_iso(now),
            "assigned_to_id": None,
        }
        proof = {
            "file_id": file_id,
            "dispatched_by_id": actor.id,
            "dispatch_method": dispatch_method,
            "tracking_number": tracking_number,
            "recipient_name": recipient_name,
            "recipient_address": recipient_address,
            "recipient_email": recipient_email,
            "proof_document_key": proof_document_key,
            "acknowledgement_key": acknowledgement_key,
            "remarks": remarks,
            "dispatch_date": to_iso(now),
        }

        updated = self._commit_transition(
            file, actor, update, RoutingAction.DISPATCHED, now,
            remarks=remarks or f"Dispatched via {dispatch_method}",
            extra=lambda: self.db.insert_dispatch_proof(proof),
        )

        recipients = [file["created_by_id"]] + self._user_ids_by_role(
            UserRole.DEPT_ADMIN, file.get("department_id")
        )
        self._notify_many(recipients, lambda user_id: NotificationEvent(
            user_id=user_id,
            type=NotificationType.FILE_DISPATCHED,
            title="File dispatched",
            message=f"File {file['file_number']} has been dispatched via {dispatch_method}.",
            file_id=file_id,
            metadata={"tracking_number": tracking_number},
        ))
        self._reward_if_timely(file, actor, now)
        return updated

    # ==========================================
    # INTERNALS
    # ==========================================

    def _commit_transition(
        self,
        file: dict,
        actor: Actor,
        update: dict,
        routing_action: RoutingAction,
        now: datetime,
        remarks: Optional[str] = None,
        to_user_id: Optional[str] = None,
        to_division_id: Optional[str] = None,
        action_string: Optional[str] = None,
        extra: Optional[Callable[[], Any]] = None
    ) -> dict[str, Any]:
        """File update + routing entry + audit row, all or nothing."""
        with self.db.transaction():
            updated = self.db.update_file(file["id"], update, original=file) if update else dict(file)
            if extra:
                extra()
            self.db.insert_routing_entry({
                "file_id": file["id"],
                "from_user_id": actor.id,
                "to_user_id": to_user_id,
                "to_division_id": to_division_id,
                "action": routing_action.value,
                "action_string": action_string,
                "remarks": remarks,
                "time_spent_seconds": self._time_spent_at_desk(file, actor, now),
                "created_at": to_iso(now),
            })
            self.db.log_audit(
                entity_type="file",
                entity_id=file["id"],
                action=routing_action.value,
                changed_by=actor.id,
                reason=remarks,
                metadata={
                    "from_status": file.get("status"),
                    "to_status": update.get("status", file.get("status")),
                },
            )

        logger.info(f"File {file['id']}: {routing_action.value} by {actor.id}")
        return updated

    def _time_spent_at_desk(self, file: dict, actor: Actor, now: datetime) -> Optional[int]:
        received = self.db.get_latest_routing_to_user(file["id"], actor.id)
        started = parse_timestamp((received or {}).get("created_at") or file.get("created_at"))
        if started is None:
            return None
        return max(0, int((now - started).total_seconds()))

    def _ensure_holder_or_admin(
        self,
        file: dict,
        actor: Actor,
        allow_unassigned_creator: bool = False
    ) -> None:
        if actor.is_admin or file.get("assigned_to_id") == actor.id:
            return
        if (
            allow_unassigned_creator
            and not file.get("assigned_to_id")
            and file.get("created_by_id") == actor.id
        ):
            return
        raise ForbiddenError(
            "Only the current holder or an administrator can act on this file",
            actor_id=actor.id,
            rule="holder_or_admin",
        )

    def _ensure_movable(self, file: dict, action: str) -> None:
        if file.get("is_closed") or file.get("is_on_hold"):
            raise InvalidTransitionError(
                f"Cannot {action} a file that is {'closed' if file.get('is_closed') else 'on hold'}",
                action=action,
                current_status=file["status"],
            )

    def _ensure_dispatchable(self, file: dict, action: str) -> None:
        status = FileStatus(file["status"])
        if file.get("is_closed") or status in NON_DISPATCHABLE:
            raise InvalidTransitionError(
                f"Cannot {action} a file in status {status.value}",
                action=action,
                current_status=status.value,
            )

    def _priority_for(self, file: dict) -> NotificationPriority:
        if file.get("priority") == FilePriority.URGENT.value:
            return NotificationPriority.URGENT
        if file.get("priority") == FilePriority.HIGH.value:
            return NotificationPriority.HIGH
        return NotificationPriority.NORMAL

    def _reward_if_timely(self, file: dict, actor: Actor, now: datetime) -> None:
        """Reward the holder who moved a timed file on before its deadline."""
        due_date = parse_timestamp(file.get("due_date"))
        if (
            due_date is None
            or file.get("is_red_listed")
            or file.get("assigned_to_id") != actor.id
            or now > due_date
        ):
            return

        for ledger in self.reward_ledgers:
            try:
                ledger.reward_timely_completion(actor.id, file)
            except Exception as e:
                logger.error(
                    f"{ledger.name} reward failed for user {actor.id} on file {file['id']}: {e}",
                    exc_info=True,
                )

    def _user_ids_by_role(self, role: UserRole, department_id: Optional[str]) -> list[str]:
        try:
            return self.db.get_user_ids_by_role(role.value, department_id)
        except Exception as e:
            logger.error(f"Failed to look up {role.value} users for department {department_id}: {e}")
            return []

    def _notify(self, event: NotificationEvent) -> None:
        try:
            self.notifier.publish(event)
        except Exception as e:
            logger.error(f"Failed to publish {event.type.value} for file {event.file_id}: {e}")

    def _notify_many(self, user_ids: list[str], build: Callable[[str], NotificationEvent]) -> None:
        try:
            self.notifier.publish_many(user_ids, build)
        except Exception as e:
            logger.error(f"Failed to fan out notification: {e}")

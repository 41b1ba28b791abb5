"""
Extension Workflow.

The current holder of a file may ask for more time. The request goes to
whoever sent them the file (or the file's creator) and to the department
admins. Resolution is one-shot: the status flip from 'pending' is a
conditional update, so a second approval attempt can never extend the
file twice.
"""
import logging
from datetime import timedelta
from typing import Any, Optional

from app.core.clock import Clock, SystemClock, parse_timestamp, to_iso
from app.core.database import get_supabase_client
from app.core.exceptions import AlreadyResolvedError, ForbiddenError, NotFoundError, ValidationError
from app.models.enums import ExtensionStatus, NotificationPriority, NotificationType
from app.models.schemas import Actor
from app.services.business_days import SECONDS_PER_DAY
from app.services.notifications import NotificationEvent, NotificationService, action_button
from app.services.timing import TimingEngine


logger = logging.getLogger(__name__)


class ExtensionWorkflow:
    """Request and resolve extra time for a file."""

    def __init__(
        self,
        db=None,
        clock: Optional[Clock] = None,
        notifier: Optional[NotificationService] = None,
        timing: Optional[TimingEngine] = None
    ):
        self._db = db
        self.clock = clock or SystemClock()
        self.notifier = notifier or NotificationService(db=db)
        self.timing = timing or TimingEngine(db=db, clock=self.clock)

    @property
    def db(self):
        return self._db or get_supabase_client()

    def resolve_approver(self, file: dict, requester_id: str) -> str:
        """Sender of the latest hop addressed to the requester, else the creator."""
        latest = self.db.get_latest_routing_to_user(file["id"], requester_id)
        if latest and latest.get("from_user_id"):
            return latest["from_user_id"]
        return file["created_by_id"]

    def request_extra_time(
        self,
        file_id: str,
        requester: Actor,
        additional_days: int,
        reason: str
    ) -> dict[str, Any]:
        if additional_days <= 0:
            raise ValidationError(
                "additional_days must be a positive number of days",
                field="additional_days",
                value=additional_days,
            )

        file = self.db.get_file(file_id)
        if not file:
            raise NotFoundError(f"File {file_id} not found", "file", file_id)
        if file.get("assigned_to_id") != requester.id:
            raise ForbiddenError(
                "Only the current holder can request extra time",
                actor_id=requester.id,
                rule="holder_only",
            )

        approver_id = self.resolve_approver(file, requester.id)
        additional_time = additional_days * SECONDS_PER_DAY

        with self.db.transaction():
            request = self.db.insert_extension_request({
                "file_id": file_id,
                "requested_by_id": requester.id,
                "approver_id": approver_id,
                "reason": reason,
                "additional_time": additional_time,
                "status": ExtensionStatus.PENDING.value,
                "created_at": to_iso(self.clock.now()),
            })
            self.db.log_audit(
                entity_type="time_extension_request",
                entity_id=request["id"],
                action="requested",
                changed_by=requester.id,
                reason=reason,
                metadata={"file_id": file_id, "additional_time": additional_time},
            )

        logger.info(
            f"Extension of {additional_days}d requested on file {file_id} by {requester.id}, "
            f"approver {approver_id}"
        )

        self.notifier.publish(NotificationEvent(
            user_id=approver_id,
            type=NotificationType.EXTENSION_REQUEST,
            title="Extra time requested",
            message=(
                f"Extra {additional_days} day(s) requested for file {file['file_number']}: {reason}"
            ),
            file_id=file_id,
            priority=NotificationPriority.HIGH,
            actions=[
                action_button("Approve", "approve_extension", request_id=request["id"], approved=True),
                action_button("Deny", "approve_extension", request_id=request["id"], approved=False),
            ],
        ))
        self._notify_admins(
            file,
            NotificationType.ADMIN_EXTENSION_REQUESTED,
            "Extension requested",
            f"User {requester.id} requested {additional_days} extra day(s) on file {file['file_number']}.",
            exclude={approver_id, requester.id},
        )
        return request

    def approve_extension(
        self,
        request_id: str,
        actor: Actor,
        approved: bool,
        remarks: Optional[str] = None
    ) -> dict[str, Any]:
        request = self.db.get_extension_request(request_id)
        if not request:
            raise NotFoundError(f"Extension request {request_id} not found", "time_extension_request", request_id)
        if actor.id != request.get("approver_id") and not actor.is_admin:
            raise ForbiddenError(
                "Only the designated approver or an administrator can resolve this request",
                actor_id=actor.id,
                rule="approver_or_admin",
            )
        if request["status"] != ExtensionStatus.PENDING.value:
            raise AlreadyResolvedError(
                "Extension request has already been resolved",
                request_id=request_id,
                current_status=request["status"],
            )

        file = self.db.get_file(request["file_id"])
        if not file:
            raise NotFoundError(f"File {request['file_id']} not found", "file", request["file_id"])

        now = self.clock.now()
        status = ExtensionStatus.APPROVED if approved else ExtensionStatus.DENIED
        updated_file = file

        with self.db.transaction():
            resolved = self.db.resolve_extension_request(request_id, {
                "status": status.value,
                "approved_by_id": actor.id,
                "approved_at": to_iso(now),
                "approval_remarks": remarks,
            })
            if resolved is None:
                raise AlreadyResolvedError(
                    "Extension request was resolved concurrently",
                    request_id=request_id,
                )

            if approved:
                update = self._extended_fields(file, request["additional_time"], now)
                update.update(self.timing.compute({**file, **update}, now))
                if file.get("is_red_listed"):
                    update["timer_percentage"] = 0
                updated_file = self.db.update_file(file["id"], update, original=file)

            self.db.log_audit(
                entity_type="time_extension_request",
                entity_id=request_id,
                action=status.value,
                changed_by=actor.id,
                reason=remarks,
                metadata={"file_id": file["id"], "additional_time": request["additional_time"]},
            )

        logger.info(f"Extension request {request_id} {status.value} by {actor.id}")
        self._notify_resolution(request, file, actor, approved, remarks)

        return {"request": resolved, "file": updated_file}

    def _extended_fields(self, file: dict, additional_time: int, now) -> dict[str, Any]:
        delta = timedelta(seconds=additional_time)
        due_date = parse_timestamp(file.get("due_date"))
        desk_due_date = parse_timestamp(file.get("desk_due_date"))

        update: dict[str, Any] = {
            "due_date": to_iso((due_date or now) + delta),
            "allotted_time": (file.get("allotted_time") or 0) + additional_time,
        }
        if desk_due_date is not None:
            update["desk_due_date"] = to_iso(desk_due_date + delta)
        return update

    def _notify_resolution(
        self,
        request: dict,
        file: dict,
        actor: Actor,
        approved: bool,
        remarks: Optional[str]
    ) -> None:
        days = request["additional_time"] // SECONDS_PER_DAY
        verb = "approved" if approved else "denied"
        self.notifier.publish(NotificationEvent(
            user_id=request["requested_by_id"],
            type=NotificationType.EXTENSION_APPROVED if approved else NotificationType.EXTENSION_DENIED,
            title=f"Extension {verb}",
            message=(
                f"Your request for {days} extra day(s) on file {file['file_number']} was {verb}."
                + (f" Remarks: {remarks}" if remarks else "")
            ),
            file_id=file["id"],
            priority=NotificationPriority.HIGH,
        ))
        self._notify_admins(
            file,
            NotificationType.ADMIN_EXTENSION_APPROVED if approved else NotificationType.ADMIN_EXTENSION_DENIED,
            f"Extension {verb}",
            f"Extension of {days} day(s) on file {file['file_number']} was {verb} by {actor.id}.",
            exclude={actor.id},
        )

    def _notify_admins(
        self,
        file: dict,
        notification_type: NotificationType,
        title: str,
        message: str,
        exclude: Optional[set[str]] = None
    ) -> None:
        self.notifier.notify_admins(
            file.get("department_id"),
            lambda admin_id: NotificationEvent(
                user_id=admin_id,
                type=notification_type,
                title=title,
                message=message,
                file_id=file["id"],
            ),
            exclude=exclude,
        )

    # ==========================================
    # QUERIES
    # ==========================================

    def get_extension_requests(self, file_id: str) -> list[dict]:
        return self.db.list_extension_requests(file_id=file_id)

    def get_pending_extension_requests(self, actor: Actor) -> list[dict]:
        """Pending requests waiting on this actor."""
        return self.db.list_extension_requests(
            approver_id=actor.id,
            status=ExtensionStatus.PENDING.value,
        )

"""
Red-List Sweeper.

Periodically scans open files whose time budget is exhausted and moves
them onto the red list. The "mark red-listed" write is conditional on the
file still being eligible, so only the sweep that flips the flag from false
to true penalizes the holder and sends notifications. Re-running the sweep,
or two sweeps overlapping, cannot double-penalize a file.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from app.core.clock import Clock, SystemClock, to_iso
from app.core.config import settings
from app.core.database import get_supabase_client
from app.models.enums import NotificationPriority, NotificationType
from app.services.incentives import IncentiveLedger, build_ledgers
from app.services.notifications import NotificationEvent, NotificationService


logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of one sweep pass."""
    scanned: int = 0
    red_listed: int = 0
    penalized: int = 0
    skipped: int = 0
    failed: int = 0
    file_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "red_listed": self.red_listed,
            "penalized": self.penalized,
            "skipped": self.skipped,
            "failed": self.failed,
            "file_ids": self.file_ids,
        }


class RedListSweeper:
    """Escalates overdue open files onto the red list."""

    def __init__(
        self,
        db=None,
        clock: Optional[Clock] = None,
        notifier: Optional[NotificationService] = None,
        ledgers: Optional[list[IncentiveLedger]] = None,
        trust_due_date_only: Optional[bool] = None
    ):
        self._db = db
        self.clock = clock or SystemClock()
        self.notifier = notifier or NotificationService(db=db)
        self.ledgers = (
            ledgers
            if ledgers is not None
            else build_ledgers(settings.redlist_ledger_names, db=db, clock=self.clock, notifier=self.notifier)
        )
        self.trust_due_date_only = (
            settings.redlist_trust_due_date_only if trust_due_date_only is None else trust_due_date_only
        )

    @property
    def db(self):
        return self._db or get_supabase_client()

    def sweep(self) -> SweepResult:
        now = self.clock.now()
        now_iso = to_iso(now)
        result = SweepResult()

        candidates = self.db.find_redlist_candidates(now_iso, self.trust_due_date_only)
        result.scanned = len(candidates)

        for candidate in candidates:
            try:
                marked = self._mark(candidate, now_iso)
            except Exception as e:
                logger.error(f"Failed to red-list file {candidate.get('id')}: {e}", exc_info=True)
                result.failed += 1
                continue

            if marked is None:
                # Another sweep or a user transition got there first
                result.skipped += 1
                continue

            result.red_listed += 1
            result.file_ids.append(marked["id"])
            logger.warning(f"File {marked.get('file_number', marked['id'])} red-listed")

            holder_id = marked.get("assigned_to_id")
            if holder_id:
                if self._penalize(holder_id, marked):
                    result.penalized += 1
                self._notify_holder(holder_id, marked)
            self._notify_admins(marked)

        logger.info(
            f"Red-list sweep: {result.scanned} scanned, {result.red_listed} red-listed, "
            f"{result.penalized} penalized, {result.skipped} skipped, {result.failed} failed"
        )
        return result

    def _mark(self, candidate: dict, now_iso: str) -> Optional[dict]:
        """Gate the flip on the file still being eligible; audit it in the same transaction."""
        with self.db.transaction():
            marked = self.db.mark_file_red_listed(
                candidate["id"],
                {
                    "is_red_listed": True,
                    "red_listed_at": now_iso,
                    "timer_percentage": 0,
                },
                now_iso,
                self.trust_due_date_only,
                original=candidate,
            )
            if marked is None:
                return None

            self.db.log_audit(
                entity_type="file",
                entity_id=marked["id"],
                action="red_listed",
                changed_by="system:redlist_sweep",
                field_changed="is_red_listed",
                old_value="false",
                new_value="true",
                metadata={
                    "holder_id": marked.get("assigned_to_id"),
                    "due_date": marked.get("due_date"),
                    "desk_due_date": marked.get("desk_due_date"),
                    "time_remaining": marked.get("time_remaining"),
                },
            )
        return marked

    def _penalize(self, user_id: str, file: dict) -> bool:
        penalized = False
        for ledger in self.ledgers:
            try:
                ledger.deduct_for_red_list(user_id, file)
                penalized = True
            except Exception as e:
                logger.error(
                    f"{ledger.name} red-list deduction failed for user {user_id}, "
                    f"file {file['id']}: {e}",
                    exc_info=True
                )
        return penalized

    def _notify_holder(self, user_id: str, file: dict) -> None:
        self.notifier.publish(NotificationEvent(
            user_id=user_id,
            type=NotificationType.FILE_REDLISTED,
            title="File red-listed",
            message=f"File {file.get('file_number')} ({file.get('subject')}) has exceeded its time limit.",
            file_id=file["id"],
            priority=NotificationPriority.URGENT,
        ))

    def _notify_admins(self, file: dict) -> None:
        self.notifier.notify_admins(
            file.get("department_id"),
            lambda admin_id: NotificationEvent(
                user_id=admin_id,
                type=NotificationType.ADMIN_FILE_REDLISTED,
                title="File red-listed",
                message=(
                    f"File {file.get('file_number')} was red-listed"
                    + (f" while held by {file['assigned_to_id']}." if file.get("assigned_to_id") else ".")
                ),
                file_id=file["id"],
                priority=NotificationPriority.HIGH,
            ),
        )

    def get_red_list_files(self, department_id: Optional[str] = None) -> list[dict]:
        return self.db.get_red_listed_files(department_id)

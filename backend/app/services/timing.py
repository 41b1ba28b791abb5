"""
Timing Engine.

Computes how much business time a file has left and what share of its
allotted budget that represents. Remaining time is signed: an overdue file
reports its true deficit so escalation can see how late it is. Only the
display percentage is clamped.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from app.core.clock import Clock, SystemClock, parse_timestamp
from app.core.database import get_supabase_client
from app.core.exceptions import NotFoundError
from app.services.business_days import business_seconds_between, load_holidays


logger = logging.getLogger(__name__)


def calculate_timer_percentage(remaining: Optional[int], allotted: Optional[int]) -> float:
    """max(0, remaining / allotted * 100). Zero or missing budget gives 0."""
    if remaining is None or not allotted or allotted <= 0:
        return 0.0
    return max(0.0, remaining / allotted * 100)


def display_percentage(percentage: float) -> float:
    """Clamp a timer percentage to [0, 100] for presentation."""
    return min(100.0, max(0.0, percentage))


class TimingEngine:
    """Recomputes and persists file timers."""

    def __init__(self, db=None, clock: Optional[Clock] = None):
        self._db = db
        self.clock = clock or SystemClock()

    @property
    def db(self):
        return self._db or get_supabase_client()

    def _holidays(self):
        return load_holidays(self.db)

    def calculate_time_remaining(
        self,
        file: dict[str, Any],
        now: Optional[datetime] = None
    ) -> Optional[int]:
        """
        Signed business seconds between now and the file's due date.
        None for untimed files.
        """
        due_date = parse_timestamp(file.get("due_date"))
        if due_date is None:
            return None
        now = now or self.clock.now()
        return business_seconds_between(now, due_date, self._holidays())

    def calculate_allotted_time(self, start: datetime, due_date: datetime) -> int:
        """Business seconds of budget between creation and due date."""
        return max(0, business_seconds_between(start, due_date, self._holidays()))

    def compute(self, file: dict[str, Any], now: Optional[datetime] = None) -> dict[str, Any]:
        """The timer columns for a file as of `now`."""
        remaining = self.calculate_time_remaining(file, now)
        return {
            "time_remaining": remaining,
            "timer_percentage": round(
                calculate_timer_percentage(remaining, file.get("allotted_time")), 2
            ),
        }

    def update_time_remaining(self, file_id: str) -> dict[str, Any]:
        """Recompute and persist time_remaining / timer_percentage for one file."""
        file = self.db.get_file(file_id)
        if not file:
            raise NotFoundError(f"File {file_id} not found", "file", file_id)

        timer = self.compute(file)
        # A red-listed file keeps its zeroed percentage
        if file.get("is_red_listed"):
            timer["timer_percentage"] = 0

        self.db.update_file(file_id, timer)
        return {**file, **timer}

    def update_all_time_remaining(self) -> dict[str, int]:
        """
        Refresh timers for every open, non-held file with a due date.
        One failing file is logged and skipped.
        """
        now = self.clock.now()
        files = self.db.get_open_timed_files()
        updated = 0
        failed = 0

        for file in files:
            try:
                timer = self.compute(file, now)
                if file.get("is_red_listed"):
                    timer["timer_percentage"] = 0
                self.db.update_file(file["id"], timer)
                updated += 1
            except Exception as e:
                logger.error(f"Failed to refresh timer for file {file.get('id')}: {e}")
                failed += 1

        logger.info(f"Timer refresh: {updated} updated, {failed} failed")
        return {"updated": updated, "failed": failed}

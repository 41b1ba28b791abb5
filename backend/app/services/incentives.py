"""
Incentive Ledger.

Two independent economies share one interface:

- PointsLedger: the legacy balance. Starts at a base of 1000, loses a
  fixed penalty per red-listed file, earns a monthly bonus for a clean
  month and tracks a streak of clean months.
- CoinLedger: the performance economy. Coins for optimum and excess
  throughput, deductions for red flags, badges for hours, volume and
  momentum.

Both are append-only: the balance only moves through the storage RPCs,
which increment relatively and insert the transaction row in the same
statement. Threshold alerts compare the before/after values returned by
that single write, so each crossing fires exactly once.
"""
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from app.core.clock import Clock, SystemClock, to_iso
from app.core.database import get_supabase_client
from app.core.exceptions import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from app.models.enums import (
    BadgeType,
    CoinTransactionType,
    NotificationPriority,
    NotificationType,
    PointsReason,
    RedFlagSeverity,
)
from app.models.schemas import Actor, LedgerBalance, ReconciliationReport
from app.services.config_store import ConfigStore
from app.services.notifications import NotificationEvent, NotificationService


logger = logging.getLogger(__name__)


# ==========================================
# PERIOD HELPERS
# ==========================================

def month_period(moment: datetime) -> str:
    """'YYYY-MM' for the month containing `moment`."""
    return f"{moment.year:04d}-{moment.month:02d}"


def previous_period(moment: datetime) -> str:
    """'YYYY-MM' for the month before the one containing `moment`."""
    first_of_month = moment.replace(day=1)
    return month_period(first_of_month - timedelta(days=1))


def period_bounds(period: str) -> tuple[datetime, datetime]:
    """[start, end) of a 'YYYY-MM' period in UTC."""
    try:
        year, month = (int(part) for part in period.split("-"))
        start = datetime(year, month, 1, tzinfo=timezone.utc)
    except ValueError as e:
        raise ValidationError(f"Invalid period '{period}', expected YYYY-MM", field="period", value=period) from e
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


def crossed_upward(before: float, after: float, threshold: float) -> bool:
    return before < threshold <= after


def crossed_downward(before: float, after: float, threshold: float) -> bool:
    return before >= threshold > after


# ==========================================
# LEDGER INTERFACE
# ==========================================

class IncentiveLedger(ABC):
    """Common surface of the points and coin economies."""

    name: str = ""

    def __init__(
        self,
        db=None,
        clock: Optional[Clock] = None,
        notifier: Optional[NotificationService] = None,
        config: Optional[ConfigStore] = None
    ):
        self._db = db
        self.clock = clock or SystemClock()
        self.notifier = notifier or NotificationService(db=db)
        self.config = config or ConfigStore(db=db)

    @property
    def db(self):
        return self._db or get_supabase_client()

    @abstractmethod
    def get_balance(self, user_id: str) -> LedgerBalance:
        ...

    @abstractmethod
    def apply_transaction(
        self,
        user_id: str,
        amount: int,
        reason: str,
        file_id: Optional[str] = None,
        description: Optional[str] = None,
        created_by_id: Optional[str] = None
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    def get_history(self, user_id: str, limit: int = 50) -> list[dict]:
        ...

    @abstractmethod
    def reconcile(self, user_id: str) -> ReconciliationReport:
        ...

    @abstractmethod
    def deduct_for_red_list(self, user_id: str, file: dict) -> Optional[dict[str, Any]]:
        """Penalize the holder of a file that was just red-listed."""
        ...

    @abstractmethod
    def reward_timely_completion(self, user_id: str, file: dict) -> Optional[dict[str, Any]]:
        """Reward a holder who moved a file on before its deadline."""
        ...

    def _user_department(self, user_id: str, fallback: Optional[str] = None) -> Optional[str]:
        try:
            user = self.db.get_user(user_id)
        except Exception as e:
            logger.warning(f"Could not load user {user_id}: {e}")
            return fallback
        return (user or {}).get("department_id") or fallback


# ==========================================
# LEGACY POINTS
# ==========================================

class PointsLedger(IncentiveLedger):
    """Legacy points: base balance, red-list penalties, monthly bonus."""

    name = "points"

    def initialize_user_points(self, user_id: str) -> dict:
        existing = self.db.get_user_points(user_id)
        if existing:
            return existing

        base = self.config.get_int("base_points", 1000)
        self.db.insert_user_points({
            "user_id": user_id,
            "base_points": base,
            "current_points": base,
            "red_list_deductions": 0,
            "red_list_count": 0,
            "monthly_bonus": 0,
            "streak_months": 0,
        })
        return self.db.get_user_points(user_id) or {"user_id": user_id, "current_points": base}

    def get_balance(self, user_id: str) -> LedgerBalance:
        row = self.initialize_user_points(user_id)
        return LedgerBalance(
            user_id=user_id,
            ledger=self.name,
            balance=row.get("current_points", 0),
            counters={
                "base_points": row.get("base_points"),
                "red_list_deductions": row.get("red_list_deductions", 0),
                "red_list_count": row.get("red_list_count", 0),
                "monthly_bonus": row.get("monthly_bonus", 0),
                "streak_months": row.get("streak_months", 0),
                "last_bonus_period": row.get("last_bonus_period"),
            },
        )

    def apply_transaction(
        self,
        user_id: str,
        amount: int,
        reason: str,
        file_id: Optional[str] = None,
        description: Optional[str] = None,
        created_by_id: Optional[str] = None,
        red_list_increment: int = 0
    ) -> dict[str, Any]:
        return self.db.apply_points_transaction(
            user_id=user_id,
            amount=amount,
            reason=reason,
            file_id=file_id,
            description=description,
            created_by_id=created_by_id,
            red_list_increment=red_list_increment,
            base_points=self.config.get_int("base_points", 1000),
        )

    def get_history(self, user_id: str, limit: int = 50) -> list[dict]:
        return self.db.list_points_transactions(user_id, limit=limit)

    def reconcile(self, user_id: str) -> ReconciliationReport:
        row = self.db.get_user_points(user_id)
        if not row:
            raise NotFoundError(f"No points record for user {user_id}", "user_points", user_id)

        transactions = self.db.list_points_transactions(user_id)
        replayed = row.get("base_points", 0) + sum(t["amount"] for t in transactions)
        stored = row.get("current_points", 0)

        if stored != replayed:
            logger.error(
                f"Points ledger mismatch for user {user_id}: stored={stored}, replayed={replayed}"
            )

        return ReconciliationReport(
            user_id=user_id,
            ledger=self.name,
            stored_balance=stored,
            replayed_balance=replayed,
            transaction_count=len(transactions),
            is_consistent=stored == replayed,
        )

    def deduct_for_red_list(self, user_id: str, file: dict) -> Optional[dict[str, Any]]:
        cfg = self.config.points_config()
        penalty = cfg["redlist_penalty"]

        result = self.apply_transaction(
            user_id,
            -penalty,
            PointsReason.REDLIST_PENALTY.value,
            file_id=file.get("id"),
            description=f"File {file.get('file_number', file.get('id'))} was red-listed",
            red_list_increment=1,
        )

        logger.info(
            f"Deducted {penalty} points from user {user_id} for red-listed file {file.get('id')} "
            f"({result['balance_before']} -> {result['balance_after']})"
        )

        self._check_redlist_thresholds(
            user_id,
            before=result.get("red_list_count_before", 0),
            after=result.get("red_list_count_after", 0),
            department_id=self._user_department(user_id, file.get("department_id")),
            cfg=cfg,
        )
        return result

    def reward_timely_completion(self, user_id: str, file: dict) -> Optional[dict[str, Any]]:
        # The legacy economy only rewards through the monthly bonus.
        return None

    def _check_redlist_thresholds(
        self,
        user_id: str,
        before: int,
        after: int,
        department_id: Optional[str],
        cfg: dict[str, int]
    ) -> None:
        severe = cfg["severe_redlist_count"]
        warning = cfg["warning_redlist_count"]

        if crossed_upward(before, after, severe):
            notification_type = NotificationType.ADMIN_USER_SEVERE_REDLIST
            title = "Severe red-list count"
            priority = NotificationPriority.URGENT
        elif crossed_upward(before, after, warning):
            notification_type = NotificationType.ADMIN_USER_WARNING_REDLIST
            title = "Red-list warning"
            priority = NotificationPriority.HIGH
        else:
            return

        logger.warning(f"User {user_id} reached {after} red-listed files this month")
        self.notifier.notify_admins(
            department_id,
            lambda admin_id: NotificationEvent(
                user_id=admin_id,
                type=notification_type,
                title=title,
                message=f"User {user_id} has {after} red-listed files this month.",
                priority=priority,
                metadata={"subject_user_id": user_id, "red_list_count": after},
            ),
        )

    def manual_adjust_points(
        self,
        actor: Actor,
        user_id: str,
        amount: int,
        reason: str
    ) -> dict[str, Any]:
        """Admin correction of a user's points."""
        if not actor.is_admin:
            raise ForbiddenError(
                "Only administrators can adjust points",
                actor_id=actor.id,
                required=["SUPER_ADMIN", "DEPT_ADMIN"],
            )
        if amount == 0:
            raise ValidationError("Adjustment amount cannot be zero", field="amount", value=amount)

        self.initialize_user_points(user_id)
        result = self.apply_transaction(
            user_id,
            amount,
            PointsReason.MANUAL_ADJUSTMENT.value,
            description=reason,
            created_by_id=actor.id,
        )
        self.db.log_audit(
            entity_type="user_points",
            entity_id=user_id,
            action="manual_adjustment",
            changed_by=actor.id,
            reason=reason,
            metadata={"amount": amount, "balance_after": result.get("balance_after")},
        )
        return result

    def process_monthly_bonuses(self, period: Optional[str] = None) -> dict[str, Any]:
        """
        Pay the monthly bonus for `period` (default: the month that just ended).

        Each (user, period) pair is claimed and settled by one storage
        call, so a duplicated, retried or out-of-order run pays nobody
        twice, and a failed payment leaves the period unclaimed for the
        next run.
        """
        cfg = self.config.points_config()
        period = period or previous_period(self.clock.now())
        start, end = period_bounds(period)

        summary = {
            "period": period,
            "processed": 0,
            "bonuses_awarded": 0,
            "streaks_reset": 0,
            "already_processed": 0,
            "failed": 0,
        }

        for row in self.db.list_user_points():
            user_id = row["user_id"]
            try:
                penalties = self.db.list_points_transactions(
                    user_id,
                    reason=PointsReason.REDLIST_PENALTY.value,
                    since_iso=to_iso(start),
                    until_iso=to_iso(end),
                )
                qualifies = not penalties

                claim = self.db.claim_monthly_bonus(
                    user_id,
                    period,
                    qualifies=qualifies,
                    bonus_amount=cfg["monthly_bonus"] if qualifies else 0,
                    description=f"Monthly bonus for {period}",
                )
                if not claim.get("claimed"):
                    summary["already_processed"] += 1
                    continue

                summary["processed"] += 1
                if qualifies:
                    logger.debug(
                        f"Paid {period} bonus to user {user_id} "
                        f"(streak {claim.get('streak_months')}, balance {claim.get('balance_after')})"
                    )
                    summary["bonuses_awarded"] += 1
                else:
                    summary["streaks_reset"] += 1
            except Exception as e:
                logger.error(f"Monthly bonus failed for user {user_id}: {e}", exc_info=True)
                summary["failed"] += 1

        logger.info(
            f"Monthly bonus {period}: {summary['bonuses_awarded']} awarded, "
            f"{summary['streaks_reset']} streaks reset, {summary['already_processed']} skipped"
        )
        return summary


# ==========================================
# PERFORMANCE COINS
# ==========================================

class CoinLedger(IncentiveLedger):
    """Coin economy with red flags and performance badges."""

    name = "coins"

    def get_balance(self, user_id: str) -> LedgerBalance:
        row = self.db.get_user_coins(user_id) or {}
        return LedgerBalance(
            user_id=user_id,
            ledger=self.name,
            balance=row.get("balance", 0),
            counters={"unresolved_red_flags": self.db.count_unresolved_red_flags(user_id)},
        )

    def apply_transaction(
        self,
        user_id: str,
        amount: int,
        reason: str,
        file_id: Optional[str] = None,
        description: Optional[str] = None,
        created_by_id: Optional[str] = None
    ) -> dict[str, Any]:
        result = self.db.apply_coin_transaction(
            user_id=user_id,
            amount=amount,
            transaction_type=reason,
            file_id=file_id,
            description=description,
        )
        self._check_low_coins(user_id, result["balance_before"], result["balance_after"])
        return result

    def get_history(self, user_id: str, limit: int = 50) -> list[dict]:
        return self.db.list_coin_transactions(user_id, limit=limit)

    def reconcile(self, user_id: str) -> ReconciliationReport:
        row = self.db.get_user_coins(user_id) or {}
        transactions = self.db.list_coin_transactions(user_id)
        replayed = sum(t["amount"] for t in transactions)
        stored = row.get("balance", 0)

        if stored != replayed:
            logger.error(
                f"Coin ledger mismatch for user {user_id}: stored={stored}, replayed={replayed}"
            )

        return ReconciliationReport(
            user_id=user_id,
            ledger=self.name,
            stored_balance=stored,
            replayed_balance=replayed,
            transaction_count=len(transactions),
            is_consistent=stored == replayed,
        )

    def deduct_for_red_list(self, user_id: str, file: dict) -> Optional[dict[str, Any]]:
        penalty = int(self.config.get_float("coin_redlist_penalty", 20))
        return self.apply_transaction(
            user_id,
            -penalty,
            CoinTransactionType.REDLIST_PENALTY.value,
            file_id=file.get("id"),
            description=f"File {file.get('file_number', file.get('id'))} was red-listed",
        )

    def reward_timely_completion(self, user_id: str, file: dict) -> Optional[dict[str, Any]]:
        return self.award_coins_for_optimum_file(user_id, file.get("id"))

    def award_coins_for_optimum_file(self, user_id: str, file_id: Optional[str]) -> dict[str, Any]:
        amount = int(self.config.get_float("coin_per_optimum_file", 10))
        return self.apply_transaction(
            user_id,
            amount,
            CoinTransactionType.OPTIMUM_FILE.value,
            file_id=file_id,
            description="File processed within optimum time",
        )

    def award_coins_for_excess_files(self, user_id: str, files_processed: int) -> Optional[dict[str, Any]]:
        """Coins for every file processed beyond the daily optimum."""
        cfg = self.config.coin_config()
        excess = files_processed - int(cfg["files_per_day_optimum"])
        if excess <= 0:
            return None

        return self.apply_transaction(
            user_id,
            excess * int(cfg["coin_per_excess_file"]),
            CoinTransactionType.EXCESS_FILES.value,
            description=f"Processed {excess} files beyond the daily optimum",
        )

    def deduct_coins_for_red_flag(
        self,
        user_id: str,
        flag_type: str,
        file_id: Optional[str] = None
    ) -> dict[str, Any]:
        """Balance never goes below zero; the transaction records the amount actually taken."""
        amount = int(self.config.get_float("red_flag_deduction", 20))
        return self.apply_transaction(
            user_id,
            -amount,
            CoinTransactionType.RED_FLAG_DEDUCTION.value,
            file_id=file_id,
            description=f"Red flag: {flag_type}",
        )

    def _check_low_coins(self, user_id: str, before: int, after: int) -> None:
        threshold = self.config.get_float("coin_threshold_warning", 100)
        if not crossed_downward(before, after, threshold):
            return

        logger.warning(f"User {user_id} coin balance dropped below {threshold:g}")
        self.notifier.publish(NotificationEvent(
            user_id=user_id,
            type=NotificationType.LOW_COINS,
            title="Low coin balance",
            message=f"Your coin balance is {after}, below the warning level of {threshold:g}.",
            priority=NotificationPriority.HIGH,
            metadata={"balance": after, "threshold": threshold},
        ))

    # ------------------------------------------
    # Red flags
    # ------------------------------------------

    def create_red_flag(
        self,
        actor: Actor,
        user_id: str,
        flag_type: str,
        description: str,
        severity: RedFlagSeverity = RedFlagSeverity.MEDIUM,
        desk_id: Optional[str] = None,
        file_id: Optional[str] = None
    ) -> dict[str, Any]:
        """Record a red flag, deduct coins and alert on the threshold crossing."""
        if not actor.is_admin:
            raise ForbiddenError(
                "Only administrators can raise red flags",
                actor_id=actor.id,
                required=["SUPER_ADMIN", "DEPT_ADMIN"],
            )

        cfg = self.config.coin_config()

        raised = self.db.raise_red_flag(
            {
                "user_id": user_id,
                "desk_id": desk_id,
                "file_id": file_id,
                "flag_type": flag_type,
                "severity": RedFlagSeverity(severity).value,
                "description": description,
                "created_by_id": actor.id,
            },
            deduction=int(cfg["red_flag_deduction"]),
        )
        flag = self.db.get_red_flag(raised["red_flag_id"])
        self._check_low_coins(user_id, raised["balance_before"], raised["balance_after"])

        before = raised["unresolved_before"]
        after = raised["unresolved_after"]
        threshold = int(cfg["red_flag_threshold"])
        if crossed_upward(before, after, threshold):
            department_id = self._user_department(user_id)
            self.notifier.publish(NotificationEvent(
                user_id=user_id,
                type=NotificationType.RED_FLAG_THRESHOLD,
                title="Red flag threshold reached",
                message=f"You now have {after} unresolved red flags.",
                priority=NotificationPriority.URGENT,
                metadata={"red_flag_count": after, "threshold": threshold},
            ))
            self.notifier.notify_admins(
                department_id,
                lambda admin_id: NotificationEvent(
                    user_id=admin_id,
                    type=NotificationType.RED_FLAG_THRESHOLD,
                    title="User reached red flag threshold",
                    message=f"User {user_id} has {after} unresolved red flags.",
                    priority=NotificationPriority.HIGH,
                    metadata={"subject_user_id": user_id, "red_flag_count": after},
                ),
                exclude={actor.id},
            )

        coins = {
            key: raised[key]
            for key in ("balance_before", "balance_after", "applied_amount", "transaction_id")
        }
        return {"red_flag": flag, "coins": coins, "unresolved_count": after}

    def resolve_red_flag(self, flag_id: str, actor: Actor, resolution_note: Optional[str] = None) -> dict:
        if not actor.is_admin:
            raise ForbiddenError(
                "Only administrators can resolve red flags",
                actor_id=actor.id,
                required=["SUPER_ADMIN", "DEPT_ADMIN"],
            )

        flag = self.db.get_red_flag(flag_id)
        if not flag:
            raise NotFoundError(f"Red flag {flag_id} not found", "red_flag", flag_id)

        resolved = self.db.resolve_red_flag(flag_id, {
            "is_resolved": True,
            "resolved_at": to_iso(self.clock.now()),
            "resolved_by": actor.id,
            "resolution_note": resolution_note,
        })
        if not resolved:
            raise InvalidTransitionError(
                "Red flag is already resolved",
                action="resolve",
                current_status="resolved",
            )
        return resolved

    # ------------------------------------------
    # Badges
    # ------------------------------------------

    def _award_badge(
        self,
        user_id: str,
        badge_type: BadgeType,
        name: str,
        description: str,
        metric_value: float,
        threshold: float,
        desk_id: Optional[str] = None
    ) -> dict:
        badge = self.db.insert_badge({
            "user_id": user_id,
            "desk_id": desk_id,
            "badge_type": badge_type.value,
            "badge_name": name,
            "description": description,
            "metric_value": metric_value,
            "threshold": threshold,
            "awarded_at": to_iso(self.clock.now()),
        })
        logger.info(f"Awarded {badge_type.value} badge to user {user_id}")
        return badge

    def calculate_working_hours(self, user_id: str, since: Optional[datetime] = None) -> float:
        """Estimated hours from today's activity: 0.5h per processed file, 0.3h per created file."""
        since = since or self._start_of_day()
        processed = self.db.count_routing_entries_by_user_since(user_id, to_iso(since))
        created = self.db.count_files_created_by_since(user_id, to_iso(since))
        return round(processed * 0.5 + created * 0.3, 2)

    def check_hours_badges(self, user_id: str, hours_worked: float) -> Optional[dict]:
        optimum = self.config.get_float("optimum_hours_per_day", 8)
        if hours_worked < optimum * 0.5:
            return self._award_badge(
                user_id, BadgeType.LOW_HOURS, "Low Hours",
                f"Worked {hours_worked:g}h, under half of the {optimum:g}h optimum",
                hours_worked, optimum * 0.5,
            )
        if hours_worked > optimum * 1.5:
            return self._award_badge(
                user_id, BadgeType.EXTENDED_HOURS, "Extended Hours",
                f"Worked {hours_worked:g}h, over 150% of the {optimum:g}h optimum",
                hours_worked, optimum * 1.5,
            )
        return None

    def check_volume_badges(self, user_id: str, desk_id: str) -> Optional[dict]:
        """High volume: the user's desk carries more open files than the threshold."""
        threshold = self.config.get_float("high_volume_threshold", 10)
        open_files = self.db.count_open_files_for_desk(desk_id)
        if open_files > threshold:
            return self._award_badge(
                user_id, BadgeType.HIGH_VOLUME, "High Volume",
                f"Desk is carrying {open_files} open files",
                open_files, threshold, desk_id=desk_id,
            )
        return None

    def check_momentum_badges(self, user_id: str, processed_today: Optional[int] = None) -> Optional[dict]:
        threshold = self.config.get_float("high_momentum_threshold", 5)
        if processed_today is None:
            processed_today = self.db.count_routing_entries_by_user_since(
                user_id, to_iso(self._start_of_day())
            )
        if processed_today >= threshold:
            return self._award_badge(
                user_id, BadgeType.HIGH_MOMENTUM, "High Momentum",
                f"Processed {processed_today} files today",
                processed_today, threshold,
            )
        return None

    def log_working_hours(
        self,
        actor: Actor,
        user_id: str,
        hours: float,
        work_date: Optional[date] = None
    ) -> dict[str, Any]:
        """
        Record hours a user reports for a day and run the hours badge check.

        Users log their own hours; administrators may log for anyone. A
        second log for the same day replaces the first.
        """
        if actor.id != user_id and not actor.is_admin:
            raise ForbiddenError(
                "Users can only log their own working hours",
                actor_id=actor.id,
                rule="self_or_admin",
            )
        if not 0 <= hours <= 24:
            raise ValidationError("Hours must be between 0 and 24", field="hours", value=hours)

        work_date = work_date or self.clock.now().date()
        record = self.db.upsert_working_hours({
            "user_id": user_id,
            "work_date": work_date.isoformat(),
            "hours_worked": hours,
            "hours_logged": hours,
            "is_logged": True,
            "logged_by_id": actor.id,
        })
        logger.info(f"Logged {hours:g}h for user {user_id} on {work_date.isoformat()}")

        return {
            "working_hours": record,
            "badge": self.check_hours_badges(user_id, hours),
        }

    def evaluate_daily_performance(self, user_id: str, desk_id: Optional[str] = None) -> dict[str, Any]:
        """
        End-of-day pass: excess-file coins plus every badge check.

        Hours the user logged for today take precedence over the estimate
        from routing activity.
        """
        since = self._start_of_day()
        processed = self.db.count_routing_entries_by_user_since(user_id, to_iso(since))
        logged = self.db.get_working_hours(user_id, since.date().isoformat())
        if logged and logged.get("is_logged"):
            hours = float(logged["hours_logged"])
        else:
            hours = self.calculate_working_hours(user_id, since)

        badges = [
            self.check_hours_badges(user_id, hours),
            self.check_momentum_badges(user_id, processed),
        ]
        if desk_id:
            badges.append(self.check_volume_badges(user_id, desk_id))

        return {
            "user_id": user_id,
            "files_processed": processed,
            "hours_worked": hours,
            "excess_award": self.award_coins_for_excess_files(user_id, processed),
            "badges": [badge for badge in badges if badge],
        }

    def evaluate_all_daily_performance(self) -> dict[str, Any]:
        """Run the end-of-day pass for every active user; one failure does not stop the rest."""
        summary = {"evaluated": 0, "coins_awarded": 0, "badges_awarded": 0, "failed": 0}

        for user in self.db.list_active_users():
            user_id = user["id"]
            try:
                desk_ids = self.db.get_user_desk_ids(user_id)
                result = self.evaluate_daily_performance(user_id, desk_ids[0] if desk_ids else None)
            except Exception as e:
                logger.error(f"Daily performance failed for user {user_id}: {e}", exc_info=True)
                summary["failed"] += 1
                continue

            summary["evaluated"] += 1
            if result["excess_award"]:
                summary["coins_awarded"] += 1
            summary["badges_awarded"] += len(result["badges"])

        logger.info(
            f"Daily performance: {summary['evaluated']} users, {summary['coins_awarded']} coin awards, "
            f"{summary['badges_awarded']} badges, {summary['failed']} failed"
        )
        return summary

    def _start_of_day(self) -> datetime:
        now = self.clock.now()
        return now.replace(hour=0, minute=0, second=0, microsecond=0)


# ==========================================
# FACTORY
# ==========================================

LEDGER_TYPES: dict[str, type[IncentiveLedger]] = {
    PointsLedger.name: PointsLedger,
    CoinLedger.name: CoinLedger,
}


def build_ledgers(
    names: list[str],
    db=None,
    clock: Optional[Clock] = None,
    notifier: Optional[NotificationService] = None
) -> list[IncentiveLedger]:
    """Instantiate ledgers by name ('points', 'coins'); unknown names are skipped."""
    ledgers = []
    for name in names:
        ledger_type = LEDGER_TYPES.get(name)
        if ledger_type is None:
            logger.warning(f"Unknown incentive ledger '{name}' ignored")
            continue
        ledgers.append(ledger_type(db=db, clock=clock, notifier=notifier))
    return ledgers

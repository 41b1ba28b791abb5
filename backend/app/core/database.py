"""
Supabase database client management.
Provides the repository used by every engine service.

Features:
- Transaction management with rollback support
- Audit logging for every file transition
- Conditional ("gated") updates for sweep and extension idempotency
- Atomic ledger increments through Postgres functions
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Generator, Optional
from uuid import uuid4

from supabase import create_client, Client

from .config import settings
from .exceptions import DatabaseError


OPEN_STATUS_VALUES = ["PENDING", "IN_PROGRESS"]


def overdue_filter(now_iso: str, trust_due_date_only: bool = False) -> str:
    """PostgREST `or` expression matching files whose time budget is exhausted."""
    signals = [
        f'due_date.lte."{now_iso}"',
        f'desk_due_date.lte."{now_iso}"',
    ]
    if not trust_due_date_only:
        signals.insert(0, "time_remaining.lte.0")
    return ",".join(signals)


@dataclass
class TransactionContext:
    """
    Tracks operations within a transaction for potential rollback.

    Since Supabase REST API doesn't support native transactions,
    we implement application-level transaction management.
    """
    batch_id: str = field(default_factory=lambda: str(uuid4()))
    is_active: bool = True
    should_rollback: bool = False

    # (table, id) of every row inserted inside the transaction
    created: list[tuple[str, str]] = field(default_factory=list)

    # (table, id) -> row as it was before the first update
    originals: dict[tuple[str, str], dict] = field(default_factory=dict)

    def add_created(self, table: str, entity_id: str) -> None:
        """Track a created row for potential rollback."""
        self.created.append((table, entity_id))

    def store_original(self, table: str, entity_id: str, original: dict) -> None:
        """Store original values for rollback. Only the first snapshot is kept."""
        self.originals.setdefault((table, entity_id), dict(original))


class SupabaseClient:
    """
    Wrapper for the Supabase client.
    Provides repository methods for the e-filing tables.

    Features:
    - Transaction management with application-level rollback
    - Audit logging for all transitions
    - Relative balance increments via RPC (never read-modify-write)
    """

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            client = create_client(
                settings.supabase_url,
                settings.supabase_service_role_key or settings.supabase_anon_key
            )
        self._client = client
        self._transaction: Optional[TransactionContext] = None

    @property
    def client(self) -> Client:
        """Get the Supabase client instance."""
        if self._client is None:
            raise RuntimeError("Supabase client not initialized")
        return self._client

    # ==========================================
    # TRANSACTION MANAGEMENT
    # ==========================================

    @contextmanager
    def transaction(self) -> Generator[TransactionContext, None, None]:
        """
        Application-level transaction context manager.

        Usage:
            with db.transaction() as tx:
                # Operations here
                if error:
                    tx.should_rollback = True
        """
        self._transaction = TransactionContext()
        try:
            yield self._transaction

            if self._transaction.should_rollback:
                self._rollback_transaction()
        except Exception:
            self._rollback_transaction()
            raise
        finally:
            self._transaction = None

    def _rollback_transaction(self) -> None:
        """
        Rollback all operations in the current transaction.
        Deletes created rows (newest first) and restores original values.
        """
        if not self._transaction:
            return

        tx = self._transaction

        for table, entity_id in reversed(tx.created):
            self.client.table(table).delete().eq("id", entity_id).execute()

        for (table, entity_id), original in tx.originals.items():
            restore = {k: v for k, v in original.items() if k != "id"}
            self.client.table(table).update(restore).eq("id", entity_id).execute()

        tx.is_active = False

    def _track_insert(self, table: str, row: dict) -> None:
        if self._transaction and row.get("id"):
            self._transaction.add_created(table, row["id"])

    def _track_update(self, table: str, entity_id: str, original: Optional[dict]) -> None:
        if self._transaction and original is not None:
            self._transaction.store_original(table, entity_id, original)

    def _insert(self, table: str, data: dict) -> dict:
        response = self.client.table(table).insert(data).execute()
        row = response.data[0] if response.data else {}
        self._track_insert(table, row)
        return row

    # ==========================================
    # AUDIT LOGGING
    # ==========================================

    def log_audit(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        changed_by: str = "system",
        field_changed: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        reason: Optional[str] = None,
        metadata: Optional[dict] = None
    ) -> dict:
        """
        Log an audit entry.

        Args:
            entity_type: 'file', 'extension_request', 'user_points', ...
            entity_id: ID of the entity
            action: routing action or lifecycle verb ('created', 'FORWARDED', ...)
            changed_by: User ID or 'system:...'
            reason: Remarks supplied by the actor
            metadata: Additional context as JSON
        """
        audit_data = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "field_changed": field_changed,
            "old_value": old_value,
            "new_value": new_value,
            "changed_by": changed_by,
            "reason": reason,
            "metadata": metadata,
            "batch_id": self._transaction.batch_id if self._transaction else None,
        }
        # Remove None values
        audit_data = {k: v for k, v in audit_data.items() if v is not None}

        return self._insert("audit_logs", audit_data)

    # ==========================================
    # FILE OPERATIONS
    # ==========================================

    def get_file(self, file_id: str) -> Optional[dict]:
        response = self.client.table("files").select("*").eq("id", file_id).execute()
        return response.data[0] if response.data else None

    def insert_file(self, file_data: dict) -> dict:
        return self._insert("files", file_data)

    def update_file(
        self,
        file_id: str,
        update_data: dict,
        original: Optional[dict] = None
    ) -> dict:
        """
        Update a file row.

        Pass the row as read before the change as `original` so an open
        transaction can restore it on rollback.
        """
        self._track_update("files", file_id, original)
        response = self.client.table("files").update(update_data).eq("id", file_id).execute()
        return response.data[0] if response.data else {}

    def mark_file_red_listed(
        self,
        file_id: str,
        update_data: dict,
        now_iso: str,
        trust_due_date_only: bool = False,
        original: Optional[dict] = None
    ) -> Optional[dict]:
        """
        Flip a file onto the red list only if it is still eligible.

        The filters repeat the full sweep criteria, overdue test included,
        so that a concurrent sweep, a user transition or an approved
        extension that already moved the file makes this a no-op.
        Returns the updated row, or None when another writer won.
        """
        self._track_update("files", file_id, original)
        response = (
            self.client.table("files")
            .update(update_data)
            .eq("id", file_id)
            .eq("is_red_listed", False)
            .eq("is_on_hold", False)
            .in_("status", OPEN_STATUS_VALUES)
            .or_(overdue_filter(now_iso, trust_due_date_only))
            .execute()
        )
        return response.data[0] if response.data else None

    def find_redlist_candidates(
        self,
        now_iso: str,
        trust_due_date_only: bool = False
    ) -> list[dict]:
        """Open, non-held, not-yet-red-listed files whose budget is exhausted."""
        response = (
            self.client.table("files")
            .select("*")
            .in_("status", OPEN_STATUS_VALUES)
            .eq("is_on_hold", False)
            .eq("is_red_listed", False)
            .or_(overdue_filter(now_iso, trust_due_date_only))
            .execute()
        )
        return response.data or []

    def get_open_timed_files(self) -> list[dict]:
        """Files whose timers the hourly refresh keeps current."""
        response = (
            self.client.table("files")
            .select("*")
            .in_("status", OPEN_STATUS_VALUES)
            .eq("is_on_hold", False)
            .not_.is_("due_date", "null")
            .execute()
        )
        return response.data or []

    def get_red_listed_files(self, department_id: Optional[str] = None) -> list[dict]:
        query = (
            self.client.table("files")
            .select("*")
            .eq("is_red_listed", True)
            .in_("status", OPEN_STATUS_VALUES)
        )
        if department_id:
            query = query.eq("department_id", department_id)
        response = query.order("due_date").execute()
        return response.data or []

    def count_department_files_since(self, department_id: str, since_iso: str) -> int:
        response = (
            self.client.table("files")
            .select("id", count="exact")
            .eq("department_id", department_id)
            .gte("created_at", since_iso)
            .execute()
        )
        return response.count or 0

    def count_files_created_by_since(self, user_id: str, since_iso: str) -> int:
        response = (
            self.client.table("files")
            .select("id", count="exact")
            .eq("created_by_id", user_id)
            .gte("created_at", since_iso)
            .execute()
        )
        return response.count or 0

    def count_open_files_for_desk(self, desk_id: str) -> int:
        response = (
            self.client.table("files")
            .select("id", count="exact")
            .eq("desk_id", desk_id)
            .in_("status", OPEN_STATUS_VALUES)
            .execute()
        )
        return response.count or 0

    def get_department(self, department_id: str) -> Optional[dict]:
        response = self.client.table("departments").select("*").eq("id", department_id).execute()
        return response.data[0] if response.data else None

    def get_division(self, division_id: str) -> Optional[dict]:
        response = self.client.table("divisions").select("*").eq("id", division_id).execute()
        return response.data[0] if response.data else None

    # ==========================================
    # ROUTING HISTORY (append-only)
    # ==========================================

    def insert_routing_entry(self, entry: dict) -> dict:
        return self._insert("file_routings", entry)

    def get_routing_history(self, file_id: str) -> list[dict]:
        response = (
            self.client.table("file_routings")
            .select("*")
            .eq("file_id", file_id)
            .order("created_at")
            .execute()
        )
        return response.data or []

    def get_latest_routing_to_user(self, file_id: str, user_id: str) -> Optional[dict]:
        """Most recent routing entry addressed to a user for a file."""
        response = (
            self.client.table("file_routings")
            .select("*")
            .eq("file_id", file_id)
            .eq("to_user_id", user_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def has_routing_action(self, file_id: str, action: str) -> bool:
        response = (
            self.client.table("file_routings")
            .select("id")
            .eq("file_id", file_id)
            .eq("action", action)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    def count_routing_entries_by_user_since(self, user_id: str, since_iso: str) -> int:
        response = (
            self.client.table("file_routings")
            .select("id", count="exact")
            .eq("from_user_id", user_id)
            .gte("created_at", since_iso)
            .execute()
        )
        return response.count or 0

    def insert_dispatch_proof(self, proof: dict) -> dict:
        return self._insert("dispatch_proofs", proof)

    # ==========================================
    # TIME EXTENSION REQUESTS
    # ==========================================

    def insert_extension_request(self, request_data: dict) -> dict:
        return self._insert("time_extension_requests", request_data)

    def get_extension_request(self, request_id: str) -> Optional[dict]:
        response = (
            self.client.table("time_extension_requests")
            .select("*")
            .eq("id", request_id)
            .execute()
        )
        return response.data[0] if response.data else None

    def resolve_extension_request(self, request_id: str, update_data: dict) -> Optional[dict]:
        """
        Resolve a request only while it is still pending.
        Returns None when someone else resolved it first.
        """
        response = (
            self.client.table("time_extension_requests")
            .update(update_data)
            .eq("id", request_id)
            .eq("status", "pending")
            .execute()
        )
        row = response.data[0] if response.data else None
        if row:
            self._track_update(
                "time_extension_requests",
                request_id,
                {"status": "pending", "approved_by_id": None, "approved_at": None, "approval_remarks": None},
            )
        return row

    def list_extension_requests(
        self,
        file_id: Optional[str] = None,
        approver_id: Optional[str] = None,
        status: Optional[str] = None
    ) -> list[dict]:
        query = self.client.table("time_extension_requests").select("*")
        if file_id:
            query = query.eq("file_id", file_id)
        if approver_id:
            query = query.eq("approver_id", approver_id)
        if status:
            query = query.eq("status", status)
        response = query.order("created_at", desc=True).execute()
        return response.data or []

    # ==========================================
    # USERS
    # ==========================================

    def get_user(self, user_id: str) -> Optional[dict]:
        response = self.client.table("users").select("*").eq("id", user_id).execute()
        return response.data[0] if response.data else None

    def get_admin_ids(self, department_id: Optional[str] = None) -> list[str]:
        """Super admins plus the department admins of `department_id`."""
        response = (
            self.client.table("users")
            .select("id, role, department_id")
            .in_("role", ["SUPER_ADMIN", "DEPT_ADMIN"])
            .eq("is_active", True)
            .execute()
        )
        return [
            row["id"]
            for row in (response.data or [])
            if row["role"] == "SUPER_ADMIN"
            or (department_id and row.get("department_id") == department_id)
        ]

    def get_user_ids_by_role(self, role: str, department_id: Optional[str] = None) -> list[str]:
        query = (
            self.client.table("users")
            .select("id")
            .eq("role", role)
            .eq("is_active", True)
        )
        if department_id:
            query = query.eq("department_id", department_id)
        response = query.execute()
        return [row["id"] for row in (response.data or [])]

    def list_active_users(self) -> list[dict]:
        response = (
            self.client.table("users")
            .select("id, role, department_id")
            .eq("is_active", True)
            .execute()
        )
        return response.data or []

    def get_user_desk_ids(self, user_id: str) -> list[str]:
        """Desks carrying an open file currently held by the user."""
        response = (
            self.client.table("files")
            .select("desk_id")
            .eq("assigned_to_id", user_id)
            .in_("status", OPEN_STATUS_VALUES)
            .not_.is_("desk_id", "null")
            .execute()
        )
        return list(dict.fromkeys(row["desk_id"] for row in (response.data or [])))

    # ==========================================
    # POINTS LEDGER
    # ==========================================

    def get_user_points(self, user_id: str) -> Optional[dict]:
        response = self.client.table("user_points").select("*").eq("user_id", user_id).execute()
        return response.data[0] if response.data else None

    def insert_user_points(self, points_data: dict) -> dict:
        response = self.client.table("user_points").upsert(
            points_data,
            on_conflict="user_id",
            ignore_duplicates=True
        ).execute()
        return response.data[0] if response.data else points_data

    def list_user_points(self) -> list[dict]:
        response = self.client.table("user_points").select("*").execute()
        return response.data or []

    def apply_points_transaction(
        self,
        user_id: str,
        amount: int,
        reason: str,
        file_id: Optional[str] = None,
        description: Optional[str] = None,
        created_by_id: Optional[str] = None,
        red_list_increment: int = 0,
        base_points: int = 1000
    ) -> dict:
        """
        Increment a user's points and append the transaction in one statement.

        Returns {balance_before, balance_after, red_list_count_before,
        red_list_count_after, transaction_id}.
        """
        response = self.client.rpc(
            "apply_points_transaction",
            {
                "p_user_id": user_id,
                "p_amount": amount,
                "p_reason": reason,
                "p_file_id": file_id,
                "p_description": description,
                "p_created_by_id": created_by_id,
                "p_red_list_increment": red_list_increment,
                "p_base_points": base_points,
            }
        ).execute()
        return self._single_rpc_row(response, "apply_points_transaction")

    def list_points_transactions(
        self,
        user_id: str,
        reason: Optional[str] = None,
        since_iso: Optional[str] = None,
        until_iso: Optional[str] = None,
        limit: Optional[int] = None
    ) -> list[dict]:
        query = self.client.table("points_transactions").select("*").eq("user_id", user_id)
        if reason:
            query = query.eq("reason", reason)
        if since_iso:
            query = query.gte("created_at", since_iso)
        if until_iso:
            query = query.lt("created_at", until_iso)
        query = query.order("created_at", desc=True)
        if limit:
            query = query.limit(limit)
        response = query.execute()
        return response.data or []

    def claim_monthly_bonus(
        self,
        user_id: str,
        period: str,
        qualifies: bool,
        bonus_amount: int,
        description: Optional[str] = None
    ) -> dict:
        """
        Claim `period` for a user and settle it in one statement.

        The (user_id, period) row in bonus_periods is the claim: a period
        already claimed, in any order relative to other periods, returns
        claimed=false and changes nothing. A successful claim updates the
        streak, resets the monthly red-list count and, when the user
        qualifies, pays the bonus; none of it happens without the others.
        Returns {claimed, streak_months, balance_after, transaction_id}.
        """
        response = self.client.rpc(
            "claim_monthly_bonus",
            {
                "p_user_id": user_id,
                "p_period": period,
                "p_qualifies": qualifies,
                "p_amount": bonus_amount,
                "p_description": description,
            }
        ).execute()
        return self._single_rpc_row(response, "claim_monthly_bonus")

    # ==========================================
    # COIN LEDGER
    # ==========================================

    def get_user_coins(self, user_id: str) -> Optional[dict]:
        response = self.client.table("user_coins").select("*").eq("user_id", user_id).execute()
        return response.data[0] if response.data else None

    def apply_coin_transaction(
        self,
        user_id: str,
        amount: int,
        transaction_type: str,
        file_id: Optional[str] = None,
        description: Optional[str] = None
    ) -> dict:
        """
        Increment a user's coins, flooring the balance at zero.

        The recorded transaction carries the applied amount, which differs
        from `amount` when the floor clips a deduction.
        Returns {balance_before, balance_after, applied_amount, transaction_id}.
        """
        response = self.client.rpc(
            "apply_coin_transaction",
            {
                "p_user_id": user_id,
                "p_amount": amount,
                "p_transaction_type": transaction_type,
                "p_file_id": file_id,
                "p_description": description,
            }
        ).execute()
        return self._single_rpc_row(response, "apply_coin_transaction")

    def list_coin_transactions(self, user_id: str, limit: Optional[int] = None) -> list[dict]:
        query = (
            self.client.table("coin_transactions")
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
        )
        if limit:
            query = query.limit(limit)
        response = query.execute()
        return response.data or []

    def _single_rpc_row(self, response, function_name: str) -> dict:
        data = response.data
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise DatabaseError(
                f"{function_name} returned no row",
                operation="rpc",
                table=function_name
            )
        return data

    # ==========================================
    # RED FLAGS & BADGES
    # ==========================================

    def raise_red_flag(self, flag_data: dict, deduction: int) -> dict:
        """
        Insert a red flag and take its coin deduction in one statement.

        The function locks the user's coin row first, so concurrent flags
        for the same user are serialized and each sees the unresolved
        count left by the one before it.
        Returns {red_flag_id, unresolved_before, unresolved_after,
        balance_before, balance_after, applied_amount, transaction_id}.
        """
        response = self.client.rpc(
            "raise_red_flag",
            {
                "p_user_id": flag_data["user_id"],
                "p_flag_type": flag_data["flag_type"],
                "p_severity": flag_data["severity"],
                "p_description": flag_data["description"],
                "p_desk_id": flag_data.get("desk_id"),
                "p_file_id": flag_data.get("file_id"),
                "p_created_by_id": flag_data.get("created_by_id"),
                "p_deduction": deduction,
            }
        ).execute()
        return self._single_rpc_row(response, "raise_red_flag")

    def get_red_flag(self, flag_id: str) -> Optional[dict]:
        response = self.client.table("red_flags").select("*").eq("id", flag_id).execute()
        return response.data[0] if response.data else None

    def resolve_red_flag(self, flag_id: str, update_data: dict) -> Optional[dict]:
        response = (
            self.client.table("red_flags")
            .update(update_data)
            .eq("id", flag_id)
            .eq("is_resolved", False)
            .execute()
        )
        return response.data[0] if response.data else None

    def count_unresolved_red_flags(self, user_id: str) -> int:
        response = (
            self.client.table("red_flags")
            .select("id", count="exact")
            .eq("user_id", user_id)
            .eq("is_resolved", False)
            .execute()
        )
        return response.count or 0

    def list_red_flags(self, user_id: str, include_resolved: bool = False) -> list[dict]:
        query = self.client.table("red_flags").select("*").eq("user_id", user_id)
        if not include_resolved:
            query = query.eq("is_resolved", False)
        response = query.order("created_at", desc=True).execute()
        return response.data or []

    def insert_badge(self, badge_data: dict) -> dict:
        return self._insert("performance_badges", badge_data)

    def list_badges(self, user_id: str) -> list[dict]:
        response = (
            self.client.table("performance_badges")
            .select("*")
            .eq("user_id", user_id)
            .order("awarded_at", desc=True)
            .execute()
        )
        return response.data or []

    # ==========================================
    # DESKS
    # ==========================================

    def get_desk(self, desk_id: str) -> Optional[dict]:
        response = self.client.table("desks").select("*").eq("id", desk_id).execute()
        return response.data[0] if response.data else None

    def list_desks(
        self,
        department_id: Optional[str] = None,
        division_id: Optional[str] = None,
        active_only: bool = True
    ) -> list[dict]:
        query = self.client.table("desks").select("*")
        if department_id:
            query = query.eq("department_id", department_id)
        if division_id:
            query = query.eq("division_id", division_id)
        if active_only:
            query = query.eq("is_active", True)
        response = query.order("code").execute()
        return response.data or []

    def count_desks(self, department_id: str) -> int:
        response = (
            self.client.table("desks")
            .select("id", count="exact")
            .eq("department_id", department_id)
            .execute()
        )
        return response.count or 0

    def insert_desk(self, desk_data: dict) -> dict:
        return self._insert("desks", desk_data)

    # ==========================================
    # NOTIFICATIONS, SETTINGS, HOLIDAYS
    # ==========================================

    def insert_notification(self, notification: dict) -> dict:
        response = self.client.table("notifications").insert(notification).execute()
        return response.data[0] if response.data else {}

    def list_pending_webhooks(self, now_iso: str, limit: int = 100) -> list[dict]:
        """Notifications queued for webhook delivery whose next attempt is due."""
        response = (
            self.client.table("notifications")
            .select("*")
            .eq("webhook_status", "pending")
            .or_(f'webhook_next_attempt_at.is.null,webhook_next_attempt_at.lte."{now_iso}"')
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return response.data or []

    def update_notification(self, notification_id: str, update_data: dict) -> dict:
        response = (
            self.client.table("notifications")
            .update(update_data)
            .eq("id", notification_id)
            .execute()
        )
        return response.data[0] if response.data else {}

    def get_system_setting(self, key: str) -> Optional[Any]:
        response = self.client.table("system_settings").select("value").eq("key", key).execute()
        return response.data[0]["value"] if response.data else None

    def upsert_system_setting(self, setting: dict) -> dict:
        response = self.client.table("system_settings").upsert(setting, on_conflict="key").execute()
        return response.data[0] if response.data else {}

    # ==========================================
    # WORKING HOURS
    # ==========================================

    def get_working_hours(self, user_id: str, work_date: str) -> Optional[dict]:
        response = (
            self.client.table("working_hours")
            .select("*")
            .eq("user_id", user_id)
            .eq("work_date", work_date)
            .execute()
        )
        return response.data[0] if response.data else None

    def upsert_working_hours(self, record: dict) -> dict:
        """One row per (user_id, work_date); a second log for the day replaces the first."""
        response = (
            self.client.table("working_hours")
            .upsert(record, on_conflict="user_id,work_date")
            .execute()
        )
        return response.data[0] if response.data else {}

    def list_holidays(
        self,
        start_iso: Optional[str] = None,
        end_iso: Optional[str] = None
    ) -> list[dict]:
        query = self.client.table("holidays").select("*")
        if start_iso:
            query = query.gte("holiday_date", start_iso)
        if end_iso:
            query = query.lte("holiday_date", end_iso)
        response = query.order("holiday_date").execute()
        return response.data or []


@lru_cache
def get_supabase_client() -> SupabaseClient:
    """Get the shared Supabase client instance."""
    return SupabaseClient()

"""
Pytest fixtures and configuration for the E-Filing engine tests.

Provides:
- In-memory Supabase client emulating the PostgREST filters the
  repository uses, plus the ledger functions
- FixedClock-driven services
- Seeded organisation (department, users with each role)
- Test client with the per-route Supabase client patched
"""
import os

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import patch
from uuid import uuid4

from fastapi.testclient import TestClient
from freezegun import freeze_time

from app.core.clock import FixedClock, to_iso
from app.core.database import SupabaseClient
from app.main import app
from app.models.enums import UserRole
from app.models.schemas import Actor
from app.services.business_days import clear_holiday_cache
from app.services.notifications import NotificationService

from tests.helpers import DEPT_ID, DIVISION_ID, OTHER_DEPT_ID, actor_for


# Monday 14 April 2025, 09:00 UTC
MONDAY_9AM = datetime(2025, 4, 14, 9, 0, 0, tzinfo=timezone.utc)


# ==========================================
# MOCK SUPABASE RESPONSE & TABLE
# ==========================================

class MockSupabaseResponse:
    """Mock response from Supabase operations."""

    def __init__(self, data: list = None, error: dict = None, count: int = None):
        self.data = data or []
        self.error = error
        self.count = count if count is not None else len(self.data)

    def execute(self):
        return self


def _parse_literal(value: Any) -> Any:
    if isinstance(value, str) and len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _compare(row_value: Any, op: str, value: Any) -> bool:
    """Evaluate one PostgREST comparison the way Postgres would for our column types."""
    value = _parse_literal(value)

    if op == "is":
        if value in (None, "null"):
            return row_value is None
        return row_value is (value in (True, "true"))

    if row_value is None:
        return False

    if isinstance(row_value, bool):
        value = value if isinstance(value, bool) else str(value).lower() == "true"
    elif isinstance(row_value, (int, float)):
        value = float(value)
    else:
        row_value = str(row_value)
        value = str(value)

    if op == "eq":
        return row_value == value
    if op == "neq":
        return row_value != value
    if op == "lt":
        return row_value < value
    if op == "lte":
        return row_value <= value
    if op == "gt":
        return row_value > value
    if op == "gte":
        return row_value >= value
    raise ValueError(f"Unsupported operator {op}")


class MockNotFilter:
    """Helper class to handle negated filters like .not_.is_()."""

    def __init__(self, table: "MockSupabaseTable"):
        self._table = table

    def in_(self, column: str, values: list):
        self._table._filters.append(("not_in", column, values))
        return self._table

    def eq(self, column: str, value: Any):
        self._table._filters.append(("not_eq", column, value))
        return self._table

    def is_(self, column: str, value: Any):
        self._table._filters.append(("not_is", column, value))
        return self._table


class MockSupabaseTable:
    """Mock Supabase table operations."""

    def __init__(self, table_name: str, mock_data: Dict[str, list], now_fn: Callable[[], datetime]):
        self.table_name = table_name
        self.mock_data = mock_data
        self._now = now_fn
        self._filters = []
        self._or_filters: List[str] = []
        self._select_fields = "*"
        self._order_by = None
        self._order_desc = False
        self._limit = None
        self._range_start = 0
        self._range_end = None

    def select(self, fields: str = "*", count: str = None):
        self._select_fields = fields
        self._count_mode = count
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(("eq", column, value))
        return self

    def neq(self, column: str, value: Any):
        self._filters.append(("neq", column, value))
        return self

    def in_(self, column: str, values: list):
        self._filters.append(("in", column, values))
        return self

    def or_(self, filter_str: str):
        self._or_filters.append(filter_str)
        return self

    def gt(self, column: str, value: Any):
        self._filters.append(("gt", column, value))
        return self

    def gte(self, column: str, value: Any):
        self._filters.append(("gte", column, value))
        return self

    def lt(self, column: str, value: Any):
        self._filters.append(("lt", column, value))
        return self

    def lte(self, column: str, value: Any):
        self._filters.append(("lte", column, value))
        return self

    def is_(self, column: str, value: Any):
        self._filters.append(("is", column, value))
        return self

    @property
    def not_(self):
        return MockNotFilter(self)

    def order(self, column: str, desc: bool = False):
        self._order_by = column
        self._order_desc = desc
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def range(self, start: int, end: int):
        self._range_start = start
        self._range_end = end
        return self

    def _rows(self) -> list:
        return self.mock_data.setdefault(self.table_name, [])

    def insert(self, data: Any):
        items = data if isinstance(data, list) else [data]
        stored = []
        for item in items:
            row = dict(item)
            row.setdefault("id", str(uuid4()))
            row.setdefault("created_at", to_iso(self._now()))
            self._rows().append(row)
            stored.append(dict(row))
        return MockSupabaseResponse(stored)

    def upsert(self, data: Any, on_conflict: str = "id", ignore_duplicates: bool = False):
        items = data if isinstance(data, list) else [data]
        results = []
        keys = [k.strip() for k in on_conflict.split(",")]
        for item in items:
            existing = next(
                (r for r in self._rows() if all(r.get(k) == item.get(k) for k in keys)),
                None
            )
            if existing is None:
                results.extend(self.insert(item).data)
            elif not ignore_duplicates:
                existing.update(item)
                results.append(dict(existing))
        return MockSupabaseResponse(results)

    def update(self, data: dict):
        self._update_data = data
        return self

    def delete(self):
        self._delete = True
        return self

    def _matches_or(self, row: dict, filter_str: str) -> bool:
        for condition in filter_str.split(","):
            column, op, value = condition.split(".", 2)
            if _compare(row.get(column), op, value):
                return True
        return False

    def _apply_filters(self, results: list) -> list:
        for op, column, value in self._filters:
            if op == "in":
                results = [r for r in results if r.get(column) in value]
            elif op == "not_in":
                results = [r for r in results if r.get(column) not in value]
            elif op == "not_eq":
                results = [r for r in results if r.get(column) != value]
            elif op == "not_is":
                results = [r for r in results if not _compare(r.get(column), "is", value)]
            else:
                results = [r for r in results if _compare(r.get(column), op, value)]

        for filter_str in self._or_filters:
            results = [r for r in results if self._matches_or(r, filter_str)]

        return results

    def execute(self):
        table_data = self._rows()
        results = self._apply_filters(list(table_data))

        if hasattr(self, "_update_data"):
            for result in results:
                result.update(self._update_data)
            return MockSupabaseResponse([dict(r) for r in results], count=len(results))

        if hasattr(self, "_delete"):
            for result in results:
                table_data.remove(result)
            return MockSupabaseResponse([dict(r) for r in results], count=len(results))

        if self._order_by:
            position = {id(r): i for i, r in enumerate(table_data)}
            present = [r for r in results if r.get(self._order_by) is not None]
            missing = [r for r in results if r.get(self._order_by) is None]
            present.sort(
                key=lambda r: (r[self._order_by], position[id(r)]),
                reverse=self._order_desc
            )
            # Postgres puts NULLs last ascending, first descending
            results = missing + present if self._order_desc else present + missing

        total_count = len(results)

        if self._range_end is not None:
            results = results[self._range_start:self._range_end + 1]
        elif self._limit:
            results = results[:self._limit]

        return MockSupabaseResponse([dict(r) for r in results], count=total_count)


class MockSupabaseClientInner:
    """
    Mock inner Supabase client (the object with table() and rpc()).

    The functions mirror apply_points_transaction, apply_coin_transaction,
    claim_monthly_bonus and raise_red_flag from the SQL migration.
    """

    def __init__(self, mock_data: Dict[str, list], now_fn: Optional[Callable[[], datetime]] = None):
        self.mock_data = mock_data
        self.now_fn = now_fn or (lambda: datetime.now(timezone.utc))
        self.rpc_calls: List[tuple] = []

    def table(self, table_name: str) -> MockSupabaseTable:
        return MockSupabaseTable(table_name, self.mock_data, self.now_fn)

    def rpc(self, function_name: str, params: dict = None):
        params = params or {}
        self.rpc_calls.append((function_name, params))
        if function_name == "apply_points_transaction":
            return MockSupabaseResponse([self._apply_points(params)])
        if function_name == "apply_coin_transaction":
            return MockSupabaseResponse([self._apply_coins(params)])
        if function_name == "claim_monthly_bonus":
            return MockSupabaseResponse([self._claim_monthly_bonus(params)])
        if function_name == "raise_red_flag":
            return MockSupabaseResponse([self._raise_red_flag(params)])
        return MockSupabaseResponse([])

    def _claim_monthly_bonus(self, p: dict) -> dict:
        claims = self.mock_data.setdefault("bonus_periods", [])
        if any(c["user_id"] == p["p_user_id"] and c["period"] == p["p_period"] for c in claims):
            return {"claimed": False, "streak_months": None, "balance_after": None, "transaction_id": None}

        row = next((r for r in self.mock_data.get("user_points", []) if r["user_id"] == p["p_user_id"]), None)
        if row is None:
            raise RuntimeError(f"no user_points row for {p['p_user_id']}")

        # Settling an older period pays it but leaves the running counters alone
        if p["p_period"] > (row.get("last_bonus_period") or ""):
            row["streak_months"] = row["streak_months"] + 1 if p["p_qualifies"] else 0
            row["red_list_count"] = 0
            row["last_bonus_period"] = p["p_period"]

        transaction_id = None
        if p["p_qualifies"] and p["p_amount"] > 0:
            row["current_points"] += p["p_amount"]
            row["monthly_bonus"] += p["p_amount"]
            transaction_id = str(uuid4())
            self.mock_data.setdefault("points_transactions", []).append({
                "id": transaction_id,
                "user_id": p["p_user_id"],
                "amount": p["p_amount"],
                "reason": "monthly_bonus",
                "file_id": None,
                "description": p["p_description"],
                "created_by_id": None,
                "balance_after": row["current_points"],
                "created_at": to_iso(self.now_fn()),
            })

        claims.append({
            "id": str(uuid4()),
            "user_id": p["p_user_id"],
            "period": p["p_period"],
            "qualified": p["p_qualifies"],
            "transaction_id": transaction_id,
            "created_at": to_iso(self.now_fn()),
        })
        return {
            "claimed": True,
            "streak_months": row["streak_months"],
            "balance_after": row["current_points"],
            "transaction_id": transaction_id,
        }

    def _raise_red_flag(self, p: dict) -> dict:
        flags = self.mock_data.setdefault("red_flags", [])
        unresolved_before = sum(
            1 for f in flags if f["user_id"] == p["p_user_id"] and not f.get("is_resolved")
        )

        flag = {
            "id": str(uuid4()),
            "user_id": p["p_user_id"],
            "desk_id": p["p_desk_id"],
            "file_id": p["p_file_id"],
            "flag_type": p["p_flag_type"],
            "severity": p["p_severity"],
            "description": p["p_description"],
            "is_resolved": False,
            "created_by_id": p["p_created_by_id"],
            "created_at": to_iso(self.now_fn()),
        }
        flags.append(flag)

        coins = self._apply_coins({
            "p_user_id": p["p_user_id"],
            "p_amount": -p["p_deduction"],
            "p_transaction_type": "red_flag_deduction",
            "p_file_id": p["p_file_id"],
            "p_description": f"Red flag: {p['p_flag_type']}",
        })
        return {
            "red_flag_id": flag["id"],
            "unresolved_before": unresolved_before,
            "unresolved_after": unresolved_before + 1,
            **coins,
        }

    def _apply_points(self, p: dict) -> dict:
        rows = self.mock_data.setdefault("user_points", [])
        row = next((r for r in rows if r["user_id"] == p["p_user_id"]), None)
        if row is None:
            row = {
                "id": str(uuid4()),
                "user_id": p["p_user_id"],
                "base_points": p["p_base_points"],
                "current_points": p["p_base_points"],
                "red_list_deductions": 0,
                "red_list_count": 0,
                "monthly_bonus": 0,
                "streak_months": 0,
                "last_bonus_period": None,
            }
            rows.append(row)

        balance_before = row["current_points"]
        count_before = row["red_list_count"]
        row["current_points"] += p["p_amount"]
        row["red_list_count"] += p["p_red_list_increment"]
        if p["p_red_list_increment"] > 0:
            row["red_list_deductions"] += -p["p_amount"]
        if p["p_reason"] == "monthly_bonus":
            row["monthly_bonus"] += p["p_amount"]

        tx = {
            "id": str(uuid4()),
            "user_id": p["p_user_id"],
            "amount": p["p_amount"],
            "reason": p["p_reason"],
            "file_id": p["p_file_id"],
            "description": p["p_description"],
            "created_by_id": p["p_created_by_id"],
            "balance_after": row["current_points"],
            "created_at": to_iso(self.now_fn()),
        }
        self.mock_data.setdefault("points_transactions", []).append(tx)

        return {
            "balance_before": balance_before,
            "balance_after": row["current_points"],
            "red_list_count_before": count_before,
            "red_list_count_after": row["red_list_count"],
            "transaction_id": tx["id"],
        }

    def _apply_coins(self, p: dict) -> dict:
        rows = self.mock_data.setdefault("user_coins", [])
        row = next((r for r in rows if r["user_id"] == p["p_user_id"]), None)
        if row is None:
            row = {"id": str(uuid4()), "user_id": p["p_user_id"], "balance": 0}
            rows.append(row)

        before = row["balance"]
        applied = max(p["p_amount"], -before)
        row["balance"] = before + applied

        tx = {
            "id": str(uuid4()),
            "user_id": p["p_user_id"],
            "amount": applied,
            "transaction_type": p["p_transaction_type"],
            "file_id": p["p_file_id"],
            "description": p["p_description"],
            "balance_after": row["balance"],
            "created_at": to_iso(self.now_fn()),
        }
        self.mock_data.setdefault("coin_transactions", []).append(tx)

        return {
            "balance_before": before,
            "balance_after": row["balance"],
            "applied_amount": applied,
            "transaction_id": tx["id"],
        }


def empty_mock_data() -> Dict[str, list]:
    return {
        "departments": [],
        "divisions": [],
        "users": [],
        "desks": [],
        "files": [],
        "file_routings": [],
        "dispatch_proofs": [],
        "time_extension_requests": [],
        "user_points": [],
        "points_transactions": [],
        "user_coins": [],
        "coin_transactions": [],
        "red_flags": [],
        "performance_badges": [],
        "notifications": [],
        "audit_logs": [],
        "holidays": [],
        "system_settings": [],
        "bonus_periods": [],
        "working_hours": [],
    }


# ==========================================
# CORE FIXTURES
# ==========================================

@pytest.fixture
def clock() -> FixedClock:
    """Engine clock pinned to Monday 09:00 UTC."""
    return FixedClock(MONDAY_9AM)


@pytest.fixture
def mock_data() -> Dict[str, list]:
    """Access to the mock data store for direct manipulation."""
    return empty_mock_data()


@pytest.fixture
def inner_client(mock_data, clock) -> MockSupabaseClientInner:
    return MockSupabaseClientInner(mock_data, now_fn=clock.now)


@pytest.fixture
def db(inner_client) -> SupabaseClient:
    """The real repository wrapped around the in-memory client."""
    return SupabaseClient(client=inner_client)


@pytest.fixture
def notifier(db, clock) -> NotificationService:
    """In-app notifications only; nothing queued for the webhook."""
    return NotificationService(db=db, webhook_url="", clock=clock)


@pytest.fixture(autouse=True)
def isolated_holidays(db):
    """Holiday lookups hit the in-memory store and never a stale cache."""
    clear_holiday_cache()
    with patch("app.services.business_days.get_supabase_client", return_value=db):
        yield
    clear_holiday_cache()


# ==========================================
# ORGANISATION FIXTURES
# ==========================================

def _user(user_id: str, role: UserRole, department_id: Optional[str] = DEPT_ID) -> dict:
    return {
        "id": user_id,
        "name": user_id.replace("-", " ").title(),
        "email": f"{user_id}@example.gov",
        "role": role.value,
        "department_id": department_id,
        "is_active": True,
    }


@pytest.fixture
def org(mock_data) -> Dict[str, Any]:
    """One department with a division and a user for each role."""
    mock_data["departments"].extend([
        {"id": DEPT_ID, "name": "Finance", "code": "FIN"},
        {"id": OTHER_DEPT_ID, "name": "Human Resources", "code": "HR"},
    ])
    mock_data["divisions"].append({"id": DIVISION_ID, "department_id": DEPT_ID, "name": "Budget", "code": "BUD"})

    users = {
        "creator": _user("user-creator", UserRole.SECTION_OFFICER),
        "holder": _user("user-holder", UserRole.USER),
        "other": _user("user-other", UserRole.USER),
        "dept_admin": _user("admin-fin", UserRole.DEPT_ADMIN),
        "other_dept_admin": _user("admin-hr", UserRole.DEPT_ADMIN, OTHER_DEPT_ID),
        "super_admin": _user("admin-super", UserRole.SUPER_ADMIN, None),
        "dispatcher": _user("user-dispatch", UserRole.DISPATCHER),
    }
    mock_data["users"].extend(users.values())
    return users


@pytest.fixture
def actors(org) -> Dict[str, Actor]:
    return {key: actor_for(user) for key, user in org.items()}


@pytest.fixture
def make_file(mock_data, clock, org) -> Callable[..., dict]:
    """Factory inserting a file row directly into the store."""
    counter = {"n": 0}

    def _create(**overrides) -> dict:
        counter["n"] += 1
        now = clock.now()
        file = {
            "id": f"file-{counter['n']}",
            "file_number": f"FIN-BUD-2025-{counter['n']:04d}",
            "subject": f"Budget note {counter['n']}",
            "description": None,
            "status": "IN_PROGRESS",
            "priority": "NORMAL",
            "priority_category": None,
            "created_by_id": org["creator"]["id"],
            "assigned_to_id": org["holder"]["id"],
            "current_division_id": DIVISION_ID,
            "department_id": DEPT_ID,
            "desk_id": None,
            "due_date": to_iso(now + timedelta(days=1)),
            "desk_due_date": None,
            "allotted_time": 86400,
            "time_remaining": 86400,
            "timer_percentage": 100.0,
            "is_red_listed": False,
            "red_listed_at": None,
            "is_on_hold": False,
            "hold_reason": None,
            "is_closed": False,
            "closed_at": None,
            "created_at": to_iso(now - timedelta(hours=2)),
        }
        file.update(overrides)
        mock_data["files"].append(file)
        return dict(file)

    return _create


# ==========================================
# TIME FIXTURES
# ==========================================

@pytest.fixture
def frozen_monday():
    """Freeze system time at Monday 9:00 AM UTC, the same instant as `clock`."""
    with freeze_time(MONDAY_9AM, real_asyncio=True):
        yield MONDAY_9AM


# ==========================================
# TEST CLIENT
# ==========================================

@pytest.fixture
def client(db) -> Generator[TestClient, None, None]:
    """
    Create test client with mocked Supabase.

    Each test gets a fresh in-memory store.
    """
    with patch("app.api.routes.file_routes.get_supabase_client", return_value=db):
        with patch("app.api.routes.extension_routes.get_supabase_client", return_value=db):
            with patch("app.api.routes.incentive_routes.get_supabase_client", return_value=db):
                with patch("app.api.routes.holiday_routes.get_supabase_client", return_value=db):
                    with TestClient(app) as test_client:
                        yield test_client


# ==========================================
# MARKERS
# ==========================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (isolated, fast)")
    config.addinivalue_line("markers", "integration: Integration tests (service + mocked storage)")
    config.addinivalue_line("markers", "e2e: End-to-end tests (full workflow)")
    config.addinivalue_line("markers", "slow: Slow tests (>5 seconds)")

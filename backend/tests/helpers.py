"""
Test helper functions for the E-Filing engine.

Provides utility functions for common test operations.
"""
from typing import Any, Dict, List

from app.models.enums import UserRole
from app.models.schemas import Actor


DEPT_ID = "dept-fin"
OTHER_DEPT_ID = "dept-hr"
DIVISION_ID = "div-bud"


def actor_for(user: Dict[str, Any]) -> Actor:
    """Actor for a seeded user row."""
    return Actor(id=user["id"], roles=[UserRole(user["role"])], department_id=user.get("department_id"))


def actor_payload(actor: Actor) -> Dict[str, Any]:
    """JSON form of an actor for request bodies."""
    return actor.model_dump(mode="json")


def stored(mock_data: Dict[str, list], table: str, row_id: str) -> Dict[str, Any]:
    """Current stored row by id."""
    return next(r for r in mock_data[table] if r["id"] == row_id)


def rows_where(mock_data: Dict[str, list], table: str, **match) -> List[Dict[str, Any]]:
    """Stored rows whose columns equal every keyword given."""
    return [
        r for r in mock_data[table]
        if all(r.get(column) == value for column, value in match.items())
    ]


def notifications_of(mock_data: Dict[str, list], notification_type: str, **match) -> List[Dict[str, Any]]:
    return rows_where(mock_data, "notifications", type=notification_type, **match)


def assert_response_ok(response, expected_status: int = 200) -> Dict[str, Any]:
    """Assert response status and return JSON body."""
    assert response.status_code == expected_status, (
        f"Expected {expected_status}, got {response.status_code}: {response.text}"
    )
    return response.json()


def assert_response_error(response, expected_status: int = 400) -> Dict[str, Any]:
    """Assert error response and return JSON body."""
    assert response.status_code == expected_status, (
        f"Expected {expected_status}, got {response.status_code}: {response.text}"
    )
    return response.json()

"""
Desk capacity.

A desk is a capacity-bounded queue inside a division. Its load is the
number of open (PENDING / IN_PROGRESS) files pointing at it; assignment is
refused once that reaches max_files_per_day. When every desk of a
department is full a new one is created automatically.
"""
import logging
from typing import Any, Optional

from app.core.clock import Clock, SystemClock, to_iso
from app.core.database import get_supabase_client
from app.core.exceptions import ForbiddenError, NotFoundError
from app.models.schemas import Actor


logger = logging.getLogger(__name__)

DEFAULT_MAX_FILES_PER_DAY = 10


class DeskService:
    """Capacity checks, assignment and auto-creation of desks."""

    def __init__(self, db=None, clock: Optional[Clock] = None):
        self._db = db
        self.clock = clock or SystemClock()

    @property
    def db(self):
        return self._db or get_supabase_client()

    def get_desk(self, desk_id: str) -> dict:
        desk = self.db.get_desk(desk_id)
        if not desk:
            raise NotFoundError(f"Desk {desk_id} not found", "desk", desk_id)
        return desk

    def get_desks(
        self,
        department_id: Optional[str] = None,
        division_id: Optional[str] = None,
        include_inactive: bool = False
    ) -> list[dict]:
        return self.db.list_desks(department_id, division_id, active_only=not include_inactive)

    def get_desk_load(self, desk: dict) -> dict[str, Any]:
        current = self.db.count_open_files_for_desk(desk["id"])
        capacity = desk.get("max_files_per_day") or DEFAULT_MAX_FILES_PER_DAY
        return {
            "desk_id": desk["id"],
            "code": desk.get("code"),
            "name": desk.get("name"),
            "current_files": current,
            "max_files_per_day": capacity,
            "utilization": round(current / capacity * 100, 1) if capacity else 100.0,
            "is_full": current >= capacity,
            "is_auto_created": desk.get("is_auto_created", False),
        }

    def get_desk_workload_summary(
        self,
        department_id: str,
        division_id: Optional[str] = None
    ) -> dict[str, Any]:
        desks = [self.get_desk_load(d) for d in self.get_desks(department_id, division_id)]
        total_capacity = sum(d["max_files_per_day"] for d in desks)
        total_files = sum(d["current_files"] for d in desks)
        return {
            "department_id": department_id,
            "desks": desks,
            "total_desks": len(desks),
            "total_files": total_files,
            "total_capacity": total_capacity,
            "overall_utilization": round(total_files / total_capacity * 100, 1) if total_capacity else 0.0,
            "full_desks": sum(1 for d in desks if d["is_full"]),
        }

    def ensure_capacity(self, desk_id: str) -> dict[str, Any]:
        """Raise ForbiddenError when the desk cannot take another file."""
        desk = self.get_desk(desk_id)
        if not desk.get("is_active", True):
            raise ForbiddenError(f"Desk {desk.get('code', desk_id)} is inactive", rule="desk_inactive")

        load = self.get_desk_load(desk)
        if load["is_full"]:
            raise ForbiddenError(
                f"Desk {desk.get('code', desk_id)} is at capacity "
                f"({load['current_files']}/{load['max_files_per_day']})",
                rule="desk_capacity",
            )
        return load

    def assign_file_to_desk(self, file_id: str, desk_id: str, actor: Actor) -> dict:
        file = self.db.get_file(file_id)
        if not file:
            raise NotFoundError(f"File {file_id} not found", "file", file_id)
        if not actor.is_admin and file.get("assigned_to_id") != actor.id:
            raise ForbiddenError(
                "Only the current holder or an administrator can assign a desk",
                actor_id=actor.id,
                rule="holder_or_admin",
            )

        self.ensure_capacity(desk_id)

        with self.db.transaction():
            updated = self.db.update_file(file_id, {"desk_id": desk_id}, original=file)
            self.db.log_audit(
                entity_type="file",
                entity_id=file_id,
                action="desk_assigned",
                changed_by=actor.id,
                field_changed="desk_id",
                old_value=file.get("desk_id"),
                new_value=desk_id,
            )
        return updated

    def check_and_auto_create_desk(
        self,
        department_id: str,
        division_id: Optional[str] = None
    ) -> Optional[dict]:
        """Create a desk when the department has none below capacity."""
        desks = self.get_desks(department_id, division_id)
        if any(not self.get_desk_load(d)["is_full"] for d in desks):
            return None
        return self.auto_create_desk(department_id, division_id)

    def auto_create_desk(self, department_id: str, division_id: Optional[str] = None) -> dict:
        department = self.db.get_department(department_id)
        if not department:
            raise NotFoundError(f"Department {department_id} not found", "department", department_id)

        number = self.db.count_desks(department_id) + 1
        code = f"{department['code']}-DESK-{number}"
        desk = self.db.insert_desk({
            "name": f"{department.get('name', department['code'])} Desk {number}",
            "code": code,
            "department_id": department_id,
            "division_id": division_id,
            "max_files_per_day": DEFAULT_MAX_FILES_PER_DAY,
            "is_active": True,
            "is_auto_created": True,
            "created_at": to_iso(self.clock.now()),
        })
        logger.info(f"Auto-created desk {code} for department {department_id}")
        return desk

"""
File lifecycle API routes.

Thin HTTP layer over FileWorkflowService. The acting user is carried in
each request body; engine errors are rendered by the EFilingException
handler in app.main.

IMPORTANT: Route ordering matters in FastAPI!
Specific paths must be defined BEFORE parameterized paths like /{file_id}
"""
from typing import Optional

from fastapi import APIRouter, Path

from app.core.database import get_supabase_client
from app.models.schemas import (
    DeskAssignRequest,
    DispatchRequest,
    FileActionRequest,
    FileCreateRequest,
    ForwardRequest,
    PrepareDispatchRequest,
    RecallRequest,
)
from app.services.desks import DeskService
from app.services.file_workflow import FileWorkflowService


router = APIRouter(prefix="/api/files", tags=["Files"])


def _workflow() -> FileWorkflowService:
    return FileWorkflowService(db=get_supabase_client())


@router.post(
    "",
    summary="Create File",
    description="Register a new file and start its timer"
)
async def create_file(body: FileCreateRequest) -> dict:
    file = _workflow().create_file(
        actor=body.actor,
        subject=body.subject,
        department_id=body.department_id,
        description=body.description,
        priority=body.priority,
        priority_category=body.priority_category,
        current_division_id=body.current_division_id,
        division_code=body.division_code,
        assigned_to_id=body.assigned_to_id,
        desk_id=body.desk_id,
        due_date=body.due_date,
        desk_due_date=body.desk_due_date,
        allotted_time=body.allotted_time,
    )
    return {"success": True, "file": file}


@router.get(
    "/{file_id}",
    summary="Get File",
    description="Get a file with its display timer percentage"
)
async def get_file(file_id: str = Path(...)) -> dict:
    return _workflow().get_file_view(file_id)


@router.get(
    "/{file_id}/routing",
    summary="Routing History",
    description="Append-only routing trail of a file"
)
async def get_routing_history(file_id: str = Path(...)) -> dict:
    history = _workflow().get_routing_history(file_id)
    return {"file_id": file_id, "routing": history, "count": len(history)}


@router.post(
    "/{file_id}/forward",
    summary="Forward File",
    description="Hand the file to another user"
)
async def forward_file(body: ForwardRequest, file_id: str = Path(...)) -> dict:
    file = _workflow().forward(
        file_id,
        body.actor,
        to_user_id=body.to_user_id,
        to_division_id=body.to_division_id,
        remarks=body.remarks,
    )
    return {"success": True, "file": file}


@router.post(
    "/{file_id}/action",
    summary="Perform Action",
    description="approve, reject, return, return_to_previous, return_to_host, hold or release"
)
async def perform_action(body: FileActionRequest, file_id: str = Path(...)) -> dict:
    file = _workflow().perform_action(file_id, body.actor, body.action, body.remarks)
    return {"success": True, "file": file}


@router.post(
    "/{file_id}/recall",
    summary="Recall File",
    description="Super admin recall of a file from its holder"
)
async def recall_file(body: RecallRequest, file_id: str = Path(...)) -> dict:
    file = _workflow().recall(file_id, body.actor, body.remarks)
    return {"success": True, "file": file}


@router.post(
    "/{file_id}/prepare-dispatch",
    summary="Prepare For Dispatch",
    description="Mark a file ready for dispatch"
)
async def prepare_dispatch(body: PrepareDispatchRequest, file_id: str = Path(...)) -> dict:
    file = _workflow().prepare_for_dispatch(file_id, body.actor, body.remarks)
    return {"success": True, "file": file}


@router.post(
    "/{file_id}/dispatch",
    summary="Dispatch File",
    description="Close a prepared file and record dispatch proof"
)
async def dispatch_file(body: DispatchRequest, file_id: str = Path(...)) -> dict:
    file = _workflow().dispatch(
        file_id,
        body.actor,
        dispatch_method=body.dispatch_method,
        recipient_name=body.recipient_name,
        tracking_number=body.tracking_number,
        recipient_address=body.recipient_address,
        recipient_email=body.recipient_email,
        proof_document_key=body.proof_document_key,
        acknowledgement_key=body.acknowledgement_key,
        remarks=body.remarks,
    )
    return {"success": True, "file": file}


@router.post(
    "/{file_id}/desk",
    summary="Assign Desk",
    description="Place a file on a desk, subject to desk capacity"
)
async def assign_desk(body: DeskAssignRequest, file_id: str = Path(...)) -> dict:
    file = DeskService(db=get_supabase_client()).assign_file_to_desk(file_id, body.desk_id, body.actor)
    return {"success": True, "file": file}


# ==========================================
# DESKS
# ==========================================

desk_router = APIRouter(prefix="/api/desks", tags=["Desks"])


@desk_router.get(
    "",
    summary="List Desks",
    description="Desks of a department or division"
)
async def list_desks(
    department_id: Optional[str] = None,
    division_id: Optional[str] = None,
    include_inactive: bool = False
) -> dict:
    desks = DeskService(db=get_supabase_client()).get_desks(department_id, division_id, include_inactive)
    return {"desks": desks, "count": len(desks)}


@desk_router.get(
    "/workload",
    summary="Desk Workload",
    description="Open files per desk against capacity"
)
async def desk_workload(department_id: str, division_id: Optional[str] = None) -> dict:
    return DeskService(db=get_supabase_client()).get_desk_workload_summary(department_id, division_id)


@desk_router.post(
    "/auto-create",
    summary="Auto-create Desk",
    description="Create a new desk when every desk in the department is full"
)
async def auto_create_desk(department_id: str, division_id: Optional[str] = None) -> dict:
    desk = DeskService(db=get_supabase_client()).check_and_auto_create_desk(department_id, division_id)
    return {"created": desk is not None, "desk": desk}

"""
Time extension API routes.

Provides endpoints for:
- Requesting extra time on a held file
- Approving or denying a request (one-shot)
- Listing requests per file and pending requests per approver
"""
from fastapi import APIRouter, Path, Query

from app.core.database import get_supabase_client
from app.models.schemas import Actor, ExtensionCreateRequest, ExtensionResolveRequest
from app.services.extensions import ExtensionWorkflow


router = APIRouter(prefix="/api/extensions", tags=["Extensions"])


def _workflow() -> ExtensionWorkflow:
    return ExtensionWorkflow(db=get_supabase_client())


@router.post(
    "",
    summary="Request Extra Time",
    description="Ask the sender of a file for more days"
)
async def request_extra_time(body: ExtensionCreateRequest) -> dict:
    request = _workflow().request_extra_time(
        body.file_id,
        body.actor,
        body.additional_days,
        body.reason,
    )
    return {"success": True, "request": request}


@router.get(
    "/pending",
    summary="Pending Requests",
    description="Requests waiting on a given approver"
)
async def list_pending(user_id: str = Query(..., description="Approver user id")) -> dict:
    requests = _workflow().get_pending_extension_requests(Actor(id=user_id))
    return {"requests": requests, "count": len(requests)}


@router.get(
    "/file/{file_id}",
    summary="Requests For File",
    description="All extension requests raised on a file"
)
async def list_for_file(file_id: str = Path(...)) -> dict:
    requests = _workflow().get_extension_requests(file_id)
    return {"file_id": file_id, "requests": requests, "count": len(requests)}


@router.post(
    "/{request_id}/resolve",
    summary="Resolve Request",
    description="Approve or deny an extension request. A request resolves only once."
)
async def resolve_request(body: ExtensionResolveRequest, request_id: str = Path(...)) -> dict:
    result = _workflow().approve_extension(request_id, body.actor, body.approved, body.remarks)
    return {"success": True, **result}

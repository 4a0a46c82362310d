from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends

from app.core.roles import get_current_profile, require_action
from app.schemas.assignment import AutoAssignRequest, EditorAssignmentCreate, EditorAssignmentResponse
from app.services.editor_assignment_service import EditorAssignmentService

router = APIRouter(prefix="/editor-assignments", tags=["Editor Assignments"])


def get_assignment_service() -> EditorAssignmentService:
    return EditorAssignmentService()


@router.post("", status_code=201)
async def create_assignment(
    req: EditorAssignmentCreate,
    background_tasks: BackgroundTasks,
    profile: dict = Depends(require_action("assignment:create")),
    service: EditorAssignmentService = Depends(get_assignment_service),
):
    """
    指派负责编辑（3 天内答复，超时自动过期）
    """
    assignment = service.create_assignment(
        article_id=str(req.article_id),
        editor_id=str(req.editor_id),
        assigned_by=str(profile["id"]),
        reason=req.assignment_reason,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": assignment}


@router.post("/auto/{article_id}", status_code=201)
async def auto_assign(
    article_id: str,
    background_tasks: BackgroundTasks,
    req: Optional[AutoAssignRequest] = None,
    profile: dict = Depends(require_action("assignment:create")),
    service: EditorAssignmentService = Depends(get_assignment_service),
):
    assignment = service.auto_assign(
        article_id=article_id,
        assigned_by=str(profile["id"]),
        reason=req.assignment_reason if req else None,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": assignment}


@router.get("/{assignment_id}")
async def get_assignment(
    assignment_id: str,
    profile: dict = Depends(get_current_profile),
    service: EditorAssignmentService = Depends(get_assignment_service),
):
    """
    查看指派详情；pending 且已过 deadline 的记录在此处被标记为 expired
    """
    return {"success": True, "data": service.get_assignment(assignment_id, actor=profile)}


@router.post("/{assignment_id}/respond")
async def respond_to_assignment(
    assignment_id: str,
    req: EditorAssignmentResponse,
    background_tasks: BackgroundTasks,
    profile: dict = Depends(require_action("assignment:respond")),
    service: EditorAssignmentService = Depends(get_assignment_service),
):
    updated = service.respond(
        assignment_id=assignment_id,
        editor=profile,
        action=req.action,
        conflict_declared=req.conflict_declared,
        conflict_details=req.conflict_details,
        decline_reason=req.decline_reason,
        editor_comments=req.editor_comments,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": updated}

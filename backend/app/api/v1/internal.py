from fastapi import APIRouter, Depends

from app.core.scheduler import ReviewDeadlineManager
from app.core.security import require_admin_key
from app.services.editor_assignment_service import EditorAssignmentService

router = APIRouter(prefix="/internal", tags=["Internal"])


def get_deadline_manager() -> ReviewDeadlineManager:
    return ReviewDeadlineManager()


def get_assignment_service() -> EditorAssignmentService:
    return EditorAssignmentService()


@router.post("/cron/review-deadlines")
async def run_review_deadlines(
    _admin: None = Depends(require_admin_key),
    manager: ReviewDeadlineManager = Depends(get_deadline_manager),
):
    """
    审稿邀请提醒 + 自动撤回（定时任务入口）
    """
    return {"success": True, "data": manager.process_deadlines()}


@router.post("/cron/expire-assignments")
async def expire_assignments(
    _admin: None = Depends(require_admin_key),
    service: EditorAssignmentService = Depends(get_assignment_service),
):
    return {"success": True, "data": {"expired": service.expire_overdue()}}


@router.post("/cron/overdue-reviews")
async def mark_overdue_reviews(
    _admin: None = Depends(require_admin_key),
    manager: ReviewDeadlineManager = Depends(get_deadline_manager),
):
    return {"success": True, "data": manager.check_overdue_reviews()}

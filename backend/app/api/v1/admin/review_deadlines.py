from fastapi import APIRouter, Depends

from app.core.roles import require_action
from app.core.scheduler import ReviewDeadlineManager

router = APIRouter(prefix="/admin/review-deadlines", tags=["Admin Review Deadlines"])

# 与原有后台一致：admin 与 editor 可手动触发
deadline_operator = require_action("deadline:run")


def get_deadline_manager() -> ReviewDeadlineManager:
    return ReviewDeadlineManager()


@router.get("")
async def get_deadline_statistics(
    _profile: dict = Depends(deadline_operator),
    manager: ReviewDeadlineManager = Depends(get_deadline_manager),
):
    """
    待提醒 / 待撤回 / pending 总数统计
    """
    return {"success": True, "data": manager.deadline_statistics()}


@router.post("")
async def process_review_deadlines(
    _profile: dict = Depends(deadline_operator),
    manager: ReviewDeadlineManager = Depends(get_deadline_manager),
):
    results = manager.process_deadlines()
    return {"success": True, "message": "Deadline processing completed", "data": results}

from fastapi import APIRouter, Depends, Query

from app.core.auth_utils import get_current_user
from app.services.notification_service import NotificationService

router = APIRouter(tags=["Notifications"])


def get_notification_service() -> NotificationService:
    return NotificationService()


@router.get("/notifications")
async def list_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = False,
    current_user: dict = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    """
    获取当前用户的通知列表
    """
    rows = service.list_for_user(user_id=current_user["id"], limit=limit, unread_only=unread_only)
    return {"success": True, "data": rows}


@router.patch("/notifications/{id}/read")
async def mark_notification_read(
    id: str,
    current_user: dict = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    """
    将通知标记为已读（仅允许更新自己的记录，否则 404）
    """
    updated = service.mark_read(user_id=current_user["id"], notification_id=id)
    return {"success": True, "data": updated}

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from postgrest.exceptions import APIError

from app.lib.api_client import supabase_admin
from app.models.notification import NotificationType

logger = logging.getLogger("journaldesk.notifications")


class NotificationService:
    """
    通知服务：封装 notifications 表的读写

    中文注释:
    1) 读写统一使用 supabase_admin（service_role），按 user_id 过滤，避免越权。
    2) 创建通知属于“副作用”：失败只记录日志并返回 None，不影响主流程。
    """

    def __init__(self, client: Any = None) -> None:
        self.client = client or supabase_admin

    def create_notification(
        self,
        *,
        user_id: str,
        article_id: Optional[str],
        type: NotificationType,
        title: str,
        content: str,
    ) -> Optional[Dict[str, Any]]:
        if not user_id:
            return None
        payload = {
            "user_id": str(user_id),
            "article_id": str(article_id) if article_id else None,
            "type": type,
            "title": title,
            "content": content,
            "is_read": False,
        }
        try:
            res = self.client.table("notifications").insert(payload).execute()
            rows = getattr(res, "data", None) or []
            return rows[0] if rows else None
        except APIError as e:
            # 中文注释: notifications.user_id 外键指向 auth.users；展示用的 mock 账号会触发 23503，静默忽略。
            text = str(e).lower()
            code = str(getattr(e, "code", "") or "").lower()
            if "23503" in code or "23503" in text:
                return None
            logger.warning("Notification insert failed: %s", e)
            return None
        except Exception as e:
            logger.warning("Notification insert failed: %s", e)
            return None

    def list_for_user(self, *, user_id: str, limit: int = 20, unread_only: bool = False) -> List[Dict[str, Any]]:
        query = self.client.table("notifications").select("*").eq("user_id", str(user_id))
        if unread_only:
            query = query.eq("is_read", False)
        res = query.order("created_at", desc=True).limit(limit).execute()
        return getattr(res, "data", None) or []

    def mark_read(self, *, user_id: str, notification_id: str) -> Dict[str, Any]:
        res = (
            self.client.table("notifications")
            .update({"is_read": True})
            .eq("id", str(notification_id))
            .eq("user_id", str(user_id))
            .execute()
        )
        rows = getattr(res, "data", None) or []
        if not rows:
            raise HTTPException(status_code=404, detail="Notification not found")
        return rows[0]

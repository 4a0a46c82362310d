from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import HTTPException
from postgrest.exceptions import APIError

from app.core.config import WorkflowConfig, get_admin_notification_email, get_public_base_url
from app.core.mail import EmailService, email_service, enqueue_template_email
from app.core.role_matrix import ADMIN_ROLE, ASSIGNABLE_EDITOR_ROLES, normalize_roles
from app.lib.api_client import supabase_admin
from app.lib.timeutils import parse_iso_datetime
from app.models.editor_assignment import AssignmentStatus
from app.models.manuscript import ArticleStatus, normalize_status
from app.services.notification_service import NotificationService
from app.services.workflow_service import WorkflowService

logger = logging.getLogger("journaldesk.assignments")


def _is_unique_violation(err: Exception) -> bool:
    code = str(getattr(err, "code", "") or "")
    return code == "23505" or "23505" in str(err) or "duplicate key" in str(err).lower()


class EditorAssignmentService:
    """
    编辑指派：创建 / 答复（接受、拒绝、声明利益冲突）/ 过期。

    中文注释:
    - 同一稿件同一编辑最多一条 pending 记录：先查询再插入，唯一索引冲突映射为 409。
    - pending 且超过 deadline 的记录在读取与答复时就地标记为 expired。
    - 邮件/站内通知均为尽力而为，失败不影响指派本身。
    """

    def __init__(
        self,
        client: Any = None,
        *,
        workflow: WorkflowService | None = None,
        notifications: NotificationService | None = None,
        email: EmailService | None = None,
        config: WorkflowConfig | None = None,
    ) -> None:
        self.client = client or supabase_admin
        self.notifications = notifications or NotificationService(self.client)
        self.email = email or email_service
        self.workflow = workflow or WorkflowService(self.client, notifications=self.notifications, email=self.email)
        self.config = config or WorkflowConfig.from_env()

    def _get_one(self, table: str, row_id: Any, *, not_found: str) -> dict[str, Any]:
        try:
            resp = self.client.table(table).select("*").eq("id", str(row_id)).execute()
            rows = getattr(resp, "data", None) or []
        except Exception as e:
            logger.warning("%s lookup failed: %s", table, e)
            rows = []
        if not rows:
            raise HTTPException(status_code=404, detail=not_found)
        return rows[0]

    def _mark_expired(self, assignment: dict[str, Any], now: datetime) -> dict[str, Any]:
        self.client.table("editor_assignments").update(
            {"status": AssignmentStatus.EXPIRED.value, "updated_at": now.isoformat()}
        ).eq("id", assignment["id"]).execute()
        return {**assignment, "status": AssignmentStatus.EXPIRED.value}

    @staticmethod
    def _is_past_deadline(assignment: dict[str, Any], now: datetime) -> bool:
        deadline = parse_iso_datetime(assignment.get("deadline"))
        return deadline is not None and now > deadline

    # === 创建 ===
    def create_assignment(
        self,
        *,
        article_id: str,
        editor_id: str,
        assigned_by: Optional[str],
        reason: Optional[str] = None,
        system_generated: bool = False,
        now: Optional[datetime] = None,
        background_tasks: Any = None,
    ) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        article = self._get_one("articles", article_id, not_found="Article not found")
        editor = self._get_one("user_profiles", editor_id, not_found="Editor not found")

        if not normalize_roles(editor.get("roles")) & ASSIGNABLE_EDITOR_ROLES:
            raise HTTPException(status_code=400, detail="Selected user is not an editor")

        existing = (
            self.client.table("editor_assignments")
            .select("id")
            .eq("article_id", str(article_id))
            .eq("editor_id", str(editor_id))
            .eq("status", AssignmentStatus.PENDING.value)
            .execute()
        )
        if getattr(existing, "data", None):
            raise HTTPException(status_code=409, detail="A pending assignment already exists for this editor")

        deadline = now + timedelta(days=self.config.editor_assignment_days)
        row = {
            "article_id": str(article_id),
            "editor_id": str(editor_id),
            "assigned_by": str(assigned_by) if assigned_by else None,
            "assigned_at": now.isoformat(),
            "deadline": deadline.isoformat(),
            "status": AssignmentStatus.PENDING.value,
            "assignment_reason": reason,
            "system_generated": system_generated,
            "conflict_declared": False,
            "updated_at": now.isoformat(),
        }
        try:
            resp = self.client.table("editor_assignments").insert(row).execute()
        except APIError as e:
            if _is_unique_violation(e):
                raise HTTPException(
                    status_code=409, detail="A pending assignment already exists for this editor"
                ) from e
            raise
        assignment = (getattr(resp, "data", None) or [row])[0]

        title = article.get("title") or "Manuscript"
        self.notifications.create_notification(
            user_id=str(editor_id),
            article_id=str(article_id),
            type="editor_assignment",
            title="New editor assignment",
            content=f'You have been asked to handle "{title}". Please respond by {deadline.date().isoformat()}.',
        )
        try:
            enqueue_template_email(
                self.email,
                background_tasks,
                to_email=editor.get("email") or "",
                subject=f"Editor Assignment: {title}",
                template_name="editor_assignment.html",
                context={
                    "recipient_name": editor.get("name"),
                    "article_title": title,
                    "assignment_reason": reason,
                    "deadline": deadline.strftime("%A, %B %d, %Y"),
                    "assignment_url": f"{get_public_base_url()}/editor/assignments/{assignment.get('id')}",
                },
            )
        except Exception as e:
            logger.warning("Assignment email failed for %s: %s", assignment.get("id"), e)
        return assignment

    def auto_assign(
        self,
        *,
        article_id: str,
        assigned_by: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
        background_tasks: Any = None,
    ) -> dict[str, Any]:
        """
        自动指派：优先 expertise 与稿件栏目匹配的在岗编辑，否则取第一个在岗编辑。
        """
        article = self._get_one("articles", article_id, not_found="Article not found")
        resp = self.client.table("user_profiles").select("*").eq("is_active", True).execute()
        editors = [
            row
            for row in (getattr(resp, "data", None) or [])
            if normalize_roles(row.get("roles")) & ASSIGNABLE_EDITOR_ROLES
            and str(row.get("id")) != str(article.get("author_id") or "")
        ]
        if not editors:
            raise HTTPException(status_code=404, detail="No available editors found")

        category = str(article.get("category") or "").strip().lower()
        matching = [
            row for row in editors if category in {str(e).strip().lower() for e in (row.get("expertise") or [])}
        ]
        chosen = (matching or editors)[0]
        return self.create_assignment(
            article_id=str(article_id),
            editor_id=str(chosen.get("id")),
            assigned_by=assigned_by,
            reason=reason or "Automatically assigned based on expertise matching",
            system_generated=True,
            now=now,
            background_tasks=background_tasks,
        )

    # === 读取 ===
    def get_assignment(
        self,
        assignment_id: str,
        *,
        actor: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        assignment = self._get_one("editor_assignments", assignment_id, not_found="Assignment not found")
        if actor is not None:
            self._ensure_visible(assignment, actor)
        if assignment.get("status") == AssignmentStatus.PENDING.value and self._is_past_deadline(assignment, now):
            assignment = self._mark_expired(assignment, now)
        return assignment

    @staticmethod
    def _ensure_visible(assignment: dict[str, Any], actor: dict[str, Any]) -> None:
        roles = normalize_roles(actor.get("roles"))
        if str(assignment.get("editor_id")) == str(actor.get("id")):
            return
        if ADMIN_ROLE in roles or roles & {"managing_editor", "editor_in_chief", "editorial_assistant"}:
            return
        raise HTTPException(status_code=403, detail="Not allowed to view this assignment")

    # === 答复 ===
    def respond(
        self,
        *,
        assignment_id: str,
        editor: dict[str, Any],
        action: str,
        conflict_declared: bool = False,
        conflict_details: Optional[str] = None,
        decline_reason: Optional[str] = None,
        editor_comments: Optional[str] = None,
        now: Optional[datetime] = None,
        background_tasks: Any = None,
    ) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        assignment = self._get_one("editor_assignments", assignment_id, not_found="Assignment not found")

        roles = normalize_roles(editor.get("roles"))
        if str(assignment.get("editor_id")) != str(editor.get("id")) and ADMIN_ROLE not in roles:
            raise HTTPException(status_code=403, detail="Only the assigned editor can respond")

        if action not in {"accept", "decline"}:
            raise HTTPException(status_code=400, detail="Action must be accept or decline")
        if conflict_declared and action == "accept":
            raise HTTPException(
                status_code=400,
                detail="Cannot accept assignment when conflict of interest is declared",
            )
        if conflict_declared and not (conflict_details or "").strip():
            raise HTTPException(
                status_code=400,
                detail="Conflict details are required when declaring a conflict of interest",
            )
        if action == "decline" and not (decline_reason or "").strip() and not conflict_declared:
            raise HTTPException(
                status_code=400,
                detail="Decline reason is required when declining without conflict declaration",
            )

        if assignment.get("status") != AssignmentStatus.PENDING.value:
            raise HTTPException(status_code=400, detail="Assignment has already been responded to")
        if self._is_past_deadline(assignment, now):
            self._mark_expired(assignment, now)
            raise HTTPException(status_code=400, detail="Assignment deadline has passed")

        status = AssignmentStatus.ACCEPTED.value if action == "accept" else AssignmentStatus.DECLINED.value
        update: dict[str, Any] = {
            "status": status,
            "response_at": now.isoformat(),
            "conflict_declared": conflict_declared,
            "updated_at": now.isoformat(),
        }
        if conflict_details:
            update["conflict_details"] = conflict_details
        if decline_reason:
            update["decline_reason"] = decline_reason
        if editor_comments:
            update["editor_comments"] = editor_comments

        resp = self.client.table("editor_assignments").update(update).eq("id", assignment["id"]).execute()
        updated = (getattr(resp, "data", None) or [{**assignment, **update}])[0]

        article_id = str(assignment.get("article_id"))
        if action == "accept":
            self._apply_acceptance(article_id, str(assignment.get("editor_id")), background_tasks=background_tasks)

        self._notify_admin_team(updated, action=action, background_tasks=background_tasks)
        return updated

    def _apply_acceptance(self, article_id: str, editor_id: str, *, background_tasks: Any = None) -> None:
        """
        接受指派：写入 article.editor_id，并在状态表允许时推进到 under_review。
        """
        article = self.workflow.get_article(article_id)
        current = normalize_status(article.get("status"))
        target = ArticleStatus.UNDER_REVIEW.value
        if target in ArticleStatus.allowed_next(current):
            self.workflow.update_status(
                article_id=article_id,
                to_status=target,
                actor=None,
                comment="Editor accepted assignment",
                extra_updates={"editor_id": editor_id},
                background_tasks=background_tasks,
            )
            return
        self.client.table("articles").update(
            {"editor_id": editor_id, "updated_at": datetime.now(timezone.utc).isoformat()}
        ).eq("id", article_id).execute()

    def _notify_admin_team(self, assignment: dict[str, Any], *, action: str, background_tasks: Any = None) -> None:
        try:
            editor = self._get_one("user_profiles", assignment.get("editor_id"), not_found="Editor not found")
            article = self._get_one("articles", assignment.get("article_id"), not_found="Article not found")
            verb = "accepted" if action == "accept" else "declined"
            enqueue_template_email(
                self.email,
                background_tasks,
                to_email=get_admin_notification_email(),
                subject=f"Editor Assignment {verb.title()}: {article.get('title') or 'Manuscript'}",
                template_name="assignment_response.html",
                context={
                    "editor_name": editor.get("name") or editor.get("email") or "The editor",
                    "article_title": article.get("title") or "Manuscript",
                    "action": verb,
                    "conflict_declared": assignment.get("conflict_declared"),
                    "conflict_details": assignment.get("conflict_details"),
                    "decline_reason": assignment.get("decline_reason"),
                    "editor_comments": assignment.get("editor_comments"),
                },
            )
        except Exception as e:
            logger.warning("Failed to send assignment response email: %s", e)

    # === 过期清理 ===
    def expire_overdue(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        resp = (
            self.client.table("editor_assignments")
            .update({"status": AssignmentStatus.EXPIRED.value, "updated_at": now.isoformat()})
            .eq("status", AssignmentStatus.PENDING.value)
            .lt("deadline", now.isoformat())
            .execute()
        )
        count = len(getattr(resp, "data", None) or [])
        if count:
            logger.info("Expired %s overdue editor assignments", count)
        return count

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from fastapi import HTTPException

from app.core.config import get_public_base_url
from app.core.mail import EmailService, email_service, enqueue_template_email
from app.core.role_matrix import (
    ADMIN_ROLE,
    ASSIGNABLE_EDITOR_ROLES,
    HANDLING_EDITOR_ROLES,
    OFFICE_ROLES,
    can_transition,
    is_editorial,
    normalize_roles,
    transitions_for,
)
from app.lib.api_client import supabase_admin
from app.models.manuscript import ESTIMATED_COMPLETION, NEXT_STEPS, ArticleStatus, normalize_status
from app.schemas.article import ArticleSubmission, ScreeningRequest
from app.services.notification_service import NotificationService

logger = logging.getLogger("journaldesk.workflow")


@dataclass(frozen=True)
class StatusTransition:
    from_status: str | None
    to_status: str
    changed_by: str | None
    comment: str | None
    created_at: str
    system_generated: bool = False


def generate_manuscript_number(article_id: str, now: datetime | None = None) -> str:
    """JD-<year>-<id 后 8 位大写>"""
    year = (now or datetime.now(timezone.utc)).year
    tail = str(article_id).replace("-", "")[-8:].upper()
    return f"JD-{year}-{tail}"


class WorkflowService:
    """
    统一的稿件状态机与状态历史写入服务。

    中文注释:
    - 状态表在 ArticleStatus.allowed_next，角色门禁在 role_matrix.can_transition；
      路由层只负责鉴权与参数解析，所有流转都经过 update_status。
    - actor=None 表示系统动作（自动分配/审稿结论汇总），不做角色门禁但仍受状态表约束。
    - 历史记录、通知、邮件均为尽力而为：失败只写日志。
    """

    def __init__(
        self,
        client: Any = None,
        *,
        notifications: NotificationService | None = None,
        email: EmailService | None = None,
    ) -> None:
        self.client = client or supabase_admin
        self.notifications = notifications or NotificationService(self.client)
        self.email = email or email_service

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    # === 读取 ===
    def get_article(self, article_id: str) -> dict[str, Any]:
        try:
            resp = self.client.table("articles").select("*").eq("id", str(article_id)).single().execute()
            data = getattr(resp, "data", None) or None
        except Exception as e:
            # PostgREST single() 0 行会抛异常；这里统一转为 404
            raise HTTPException(status_code=404, detail="Article not found") from e
        if not data:
            raise HTTPException(status_code=404, detail="Article not found")
        return data

    def _get_profile(self, user_id: Any) -> dict[str, Any]:
        if not user_id:
            return {}
        try:
            resp = self.client.table("user_profiles").select("*").eq("id", str(user_id)).execute()
            rows = getattr(resp, "data", None) or []
            return rows[0] if rows else {}
        except Exception as e:
            logger.warning("Profile lookup failed for %s: %s", user_id, e)
            return {}

    def list_history(self, article_id: str) -> list[dict[str, Any]]:
        try:
            resp = (
                self.client.table("status_transition_logs")
                .select("*")
                .eq("article_id", str(article_id))
                .order("created_at", desc=False)
                .execute()
            )
            return getattr(resp, "data", None) or []
        except Exception as e:
            logger.warning("History lookup failed for %s: %s", article_id, e)
            return []

    # === 状态表 ===
    @staticmethod
    def validate_transition(current: str | None, target: str) -> None:
        allowed = ArticleStatus.allowed_next(current)
        if target not in allowed:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid transition: {current} -> {target}. Allowed: {sorted(allowed)}",
            )

    def _insert_transition_log(self, log: StatusTransition, article_id: str) -> None:
        try:
            self.client.table("status_transition_logs").insert(
                {
                    "article_id": str(article_id),
                    "from_status": log.from_status,
                    "to_status": log.to_status,
                    "comment": log.comment,
                    "changed_by": log.changed_by,
                    "system_generated": log.system_generated,
                    "created_at": log.created_at,
                }
            ).execute()
        except Exception as e:
            logger.warning("Transition log insert failed (ignored): %s", e)

    def update_status(
        self,
        *,
        article_id: str,
        to_status: str,
        actor: dict[str, Any] | None,
        comment: str | None = None,
        force: bool = False,
        extra_updates: dict[str, Any] | None = None,
        notify_author: bool = True,
        background_tasks: Any = None,
    ) -> dict[str, Any]:
        """
        更新稿件状态并写入状态历史。

        force 仅对 admin 生效：允许跳出状态表（历史中带 [forced] 标记）。
        """
        article = self.get_article(article_id)
        from_norm = normalize_status(article.get("status")) or ArticleStatus.SUBMITTED.value

        to_norm = normalize_status(to_status)
        if to_norm is None:
            raise HTTPException(status_code=422, detail="Invalid status")

        roles = normalize_roles((actor or {}).get("roles"))
        actor_id = str(actor.get("id")) if actor else None
        if actor is not None:
            allowed = can_transition(
                roles=roles,
                to_status=to_norm,
                is_owner=str(article.get("author_id") or "") == actor_id,
                is_assigned_editor=str(article.get("editor_id") or "") == actor_id,
            )
            if not allowed:
                raise HTTPException(status_code=403, detail=f"Not allowed to move article to {to_norm}")

        forced = bool(force and ADMIN_ROLE in roles)
        if not forced:
            self.validate_transition(from_norm, to_norm)
        elif to_norm not in ArticleStatus.allowed_next(from_norm):
            comment = f"[forced] {comment}" if comment else "[forced]"

        now = self._now()
        payload: dict[str, Any] = {"status": to_norm, "updated_at": now}
        if to_norm == ArticleStatus.PUBLISHED.value:
            payload["published_date"] = now
        if extra_updates:
            payload.update(extra_updates)

        try:
            upd = self.client.table("articles").update(payload).eq("id", str(article_id)).execute()
            rows = getattr(upd, "data", None) or []
            if not rows:
                raise HTTPException(status_code=404, detail="Article not found")
            updated = rows[0]
        except HTTPException:
            raise
        except Exception as e:
            logger.error("update_status failed for %s: %s", article_id, e)
            raise HTTPException(status_code=500, detail="Failed to update status") from e

        self._insert_transition_log(
            StatusTransition(
                from_status=from_norm,
                to_status=to_norm,
                changed_by=actor_id,
                comment=comment,
                created_at=now,
                system_generated=actor is None,
            ),
            article_id=str(article_id),
        )

        if notify_author:
            self._notify_author_status(updated, to_norm, comment, background_tasks=background_tasks)
        return updated

    def _notify_author_status(
        self,
        article: dict[str, Any],
        to_status: str,
        comment: str | None,
        *,
        background_tasks: Any = None,
    ) -> None:
        author_id = article.get("author_id")
        if not author_id:
            return
        title = article.get("title") or "Your manuscript"
        label = to_status.replace("_", " ")
        self.notifications.create_notification(
            user_id=str(author_id),
            article_id=str(article.get("id")),
            type="status_change",
            title="Manuscript status updated",
            content=f'"{title}" is now {label}.',
        )
        profile = self._get_profile(author_id)
        message = f'The status of your manuscript "{title}" changed to {label}.'
        if comment:
            message = f"{message} Notes: {comment}"
        try:
            enqueue_template_email(
                self.email,
                background_tasks,
                to_email=profile.get("email") or "",
                subject=f"Manuscript status update: {label}",
                template_name="workflow_notification.html",
                context={
                    "recipient_name": profile.get("name"),
                    "message": message,
                    "article_url": f"{get_public_base_url()}/articles/{article.get('id')}",
                },
            )
        except Exception as e:
            logger.warning("Status email failed for %s: %s", article.get("id"), e)

    # === 权限 ===
    @staticmethod
    def _can_view(article: dict[str, Any], actor: dict[str, Any], *, include_reviewers: bool = False) -> bool:
        actor_id = str(actor.get("id") or "")
        if str(article.get("author_id") or "") == actor_id:
            return True
        if is_editorial(actor.get("roles")):
            return True
        if include_reviewers:
            return actor_id in {str(r) for r in (article.get("reviewer_ids") or [])}
        return False

    def get_article_for(self, article_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        article = self.get_article(article_id)
        if not self._can_view(article, actor, include_reviewers=True):
            raise HTTPException(status_code=403, detail="Not allowed to view this article")
        return article

    def get_status(self, article_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        article = self.get_article(article_id)
        if not self._can_view(article, actor):
            raise HTTPException(status_code=403, detail="Not allowed to view this article")

        status = normalize_status(article.get("status")) or ArticleStatus.SUBMITTED.value
        actor_id = str(actor.get("id") or "")
        return {
            "article_id": str(article.get("id")),
            "title": article.get("title"),
            "manuscript_number": article.get("manuscript_number"),
            "status": status,
            "editor_id": article.get("editor_id"),
            "history": self.list_history(str(article_id)),
            "next_steps": NEXT_STEPS.get(status, []),
            "estimated_completion": ESTIMATED_COMPLETION.get(status, "Unknown"),
            "allowed_transitions": transitions_for(
                roles=actor.get("roles"),
                current_status=status,
                is_owner=str(article.get("author_id") or "") == actor_id,
                is_assigned_editor=str(article.get("editor_id") or "") == actor_id,
            ),
        }

    def list_articles(
        self,
        *,
        actor: dict[str, Any],
        status: Optional[str] = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """
        列表查询（可按状态过滤）。

        中文注释:
        - admin / 编辑部办公室角色：全部稿件；
        - 负责编辑：指派给自己的 + 尚未指派的；
        - 其他角色：仅自己投稿的稿件。
        """
        status_norm = None
        if status:
            status_norm = normalize_status(status)
            if status_norm is None:
                raise HTTPException(status_code=422, detail="Invalid status")

        def base():
            q = self.client.table("articles").select("*")
            if status_norm:
                q = q.eq("status", status_norm)
            return q

        roles = normalize_roles(actor.get("roles"))
        actor_id = str(actor.get("id") or "")

        if ADMIN_ROLE in roles or roles & OFFICE_ROLES:
            resp = base().order("created_at", desc=True).limit(limit).execute()
            return getattr(resp, "data", None) or []

        if roles & HANDLING_EDITOR_ROLES:
            assigned = getattr(base().eq("editor_id", actor_id).execute(), "data", None) or []
            unassigned = getattr(base().is_("editor_id", "null").execute(), "data", None) or []
            merged: dict[str, dict[str, Any]] = {}
            for row in [*assigned, *unassigned]:
                merged.setdefault(str(row.get("id")), row)
            rows = sorted(merged.values(), key=lambda r: str(r.get("created_at") or ""), reverse=True)
            return rows[:limit]

        resp = base().eq("author_id", actor_id).order("created_at", desc=True).limit(limit).execute()
        return getattr(resp, "data", None) or []

    # === 投稿 ===
    def find_suitable_editor(self, category: str | None) -> dict[str, Any] | None:
        """
        选择负责编辑：负责栏目匹配（或 general）优先，其次全部候选；按当前工作量升序。
        """
        try:
            resp = (
                self.client.table("user_profiles")
                .select("*")
                .eq("is_active", True)
                .eq("is_accepting_submissions", True)
                .execute()
            )
            rows = getattr(resp, "data", None) or []
        except Exception as e:
            logger.warning("Editor lookup failed: %s", e)
            return None

        candidates = []
        for row in rows:
            if not normalize_roles(row.get("roles")) & (ASSIGNABLE_EDITOR_ROLES | {ADMIN_ROLE}):
                continue
            workload = int(row.get("current_workload") or 0)
            max_workload = int(row.get("max_workload") or 0)
            if workload >= max_workload:
                continue
            candidates.append(row)
        if not candidates:
            return None

        wanted = str(category or "").strip().lower()
        matching = [
            row
            for row in candidates
            if {str(s).strip().lower() for s in (row.get("expertise") or [])} & {wanted, "general"}
        ]
        pool = matching or candidates
        pool.sort(key=lambda r: int(r.get("current_workload") or 0))
        return pool[0]

    def submit_article(
        self,
        payload: ArticleSubmission,
        author: dict[str, Any],
        *,
        background_tasks: Any = None,
    ) -> dict[str, Any]:
        if not payload.title or not payload.abstract or not payload.category:
            raise HTTPException(status_code=400, detail="Title, abstract and category are required")
        if not payload.authors:
            raise HTTPException(status_code=400, detail="At least one author is required")
        if not any(a.is_corresponding_author for a in payload.authors):
            raise HTTPException(status_code=400, detail="At least one corresponding author is required")
        for a in payload.authors:
            if not (a.first_name.strip() and a.last_name.strip() and a.affiliation.strip()):
                raise HTTPException(status_code=400, detail="All authors must have complete information")

        now_dt = datetime.now(timezone.utc)
        now = now_dt.isoformat()
        article_id = str(uuid4())
        author_id = str(author.get("id"))
        row = {
            "id": article_id,
            "title": payload.title,
            "abstract": payload.abstract,
            "content": payload.content,
            "keywords": payload.keywords,
            "category": payload.category,
            "status": ArticleStatus.SUBMITTED.value,
            "author_id": author_id,
            "editor_id": None,
            "reviewer_ids": [],
            "co_authors": [a.model_dump(mode="json") for a in payload.authors],
            "recommended_reviewers": [r.model_dump(mode="json") for r in payload.recommended_reviewers],
            "manuscript_number": generate_manuscript_number(article_id, now_dt),
            "submitted_date": now,
            "created_at": now,
            "updated_at": now,
        }
        try:
            resp = self.client.table("articles").insert(row).execute()
            article = (getattr(resp, "data", None) or [row])[0]
        except Exception as e:
            logger.error("Article insert failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to submit article") from e

        self._insert_transition_log(
            StatusTransition(
                from_status=None,
                to_status=ArticleStatus.SUBMITTED.value,
                changed_by=author_id,
                comment="Article submitted",
                created_at=now,
            ),
            article_id=article_id,
        )

        editor = self.find_suitable_editor(payload.category)
        if editor:
            article = self.update_status(
                article_id=article_id,
                to_status=ArticleStatus.EDITORIAL_ASSISTANT_REVIEW.value,
                actor=None,
                comment="Automatically assigned to editor",
                extra_updates={"editor_id": str(editor.get("id"))},
                notify_author=False,
            )
            self.notifications.create_notification(
                user_id=str(editor.get("id")),
                article_id=article_id,
                type="submission",
                title="New Editorial Assignment",
                content=f'New submission assigned: "{payload.title}"',
            )
            enqueue_template_email(
                self.email,
                background_tasks,
                to_email=editor.get("email") or "",
                subject="New Submission Assigned",
                template_name="workflow_notification.html",
                context={
                    "recipient_name": editor.get("name"),
                    "message": f'A new article "{payload.title}" has been assigned to you for editorial review.',
                    "article_url": f"{get_public_base_url()}/editor/articles/{article_id}",
                },
            )

        self.notifications.create_notification(
            user_id=author_id,
            article_id=article_id,
            type="submission",
            title="Submission Received",
            content=f'Your article "{payload.title}" has been successfully submitted',
        )
        enqueue_template_email(
            self.email,
            background_tasks,
            to_email=author.get("email") or "",
            subject="Submission Received",
            template_name="workflow_notification.html",
            context={
                "recipient_name": author.get("name"),
                "message": f'Your article "{payload.title}" has been successfully submitted and is now under review.',
                "article_url": f"{get_public_base_url()}/articles/{article_id}",
            },
        )
        return article

    def perform_screening(
        self,
        *,
        article_id: str,
        actor: dict[str, Any],
        checks: ScreeningRequest,
        background_tasks: Any = None,
    ) -> dict[str, Any]:
        """
        编辑助理初审：四项检查全部通过进入副主编指派，否则退回作者修改。
        """
        results = {
            "file_completeness": checks.file_completeness,
            "plagiarism_check": checks.plagiarism_check,
            "format_compliance": checks.format_compliance,
            "ethical_compliance": checks.ethical_compliance,
        }
        failed = [name for name, ok in results.items() if not ok]
        passed = not failed

        if passed:
            to_status = ArticleStatus.ASSOCIATE_EDITOR_ASSIGNMENT.value
            comment = checks.notes or "Initial screening passed"
        else:
            to_status = ArticleStatus.REVISION_REQUESTED.value
            comment = checks.notes or f"Screening failed: {', '.join(failed)}"

        article = self.update_status(
            article_id=article_id,
            to_status=to_status,
            actor=actor,
            comment=comment,
            background_tasks=background_tasks,
        )
        return {"article": article, "passed": passed, "failed_checks": failed}

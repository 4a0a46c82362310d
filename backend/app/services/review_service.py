from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional
from uuid import uuid4

from fastapi import HTTPException

from app.core.config import WorkflowConfig, get_admin_notification_email, get_public_base_url
from app.core.mail import EmailService, email_service, enqueue_template_email
from app.core.role_matrix import ADMIN_ROLE, is_editorial, normalize_roles
from app.core.scheduler import ReviewDeadlineManager
from app.lib.api_client import supabase_admin
from app.models.manuscript import ArticleStatus, normalize_status
from app.models.review import (
    INACTIVE_REVIEW_STATUSES,
    OPEN_INVITATION_STATUSES,
    SUBMITTABLE_REVIEW_STATUSES,
    InvitationStatus,
    Recommendation,
    ReviewStatus,
)
from app.services.conflict_service import ConflictService
from app.services.notification_service import NotificationService
from app.services.workflow_service import WorkflowService

logger = logging.getLogger("journaldesk.reviews")


def derive_article_status(recommendations: Iterable[str]) -> Optional[str]:
    """
    汇总审稿结论：
    - 全部 accept → accepted
    - 任一 reject → rejected
    - 任一 major/minor revision → revision_requested
    """
    recs = [str(r) for r in recommendations if r]
    if not recs:
        return None
    if all(r == Recommendation.ACCEPT.value for r in recs):
        return ArticleStatus.ACCEPTED.value
    if Recommendation.REJECT.value in recs:
        return ArticleStatus.REJECTED.value
    if {Recommendation.MAJOR_REVISION.value, Recommendation.MINOR_REVISION.value} & set(recs):
        return ArticleStatus.REVISION_REQUESTED.value
    return None


class ReviewService:
    """
    审稿邀请与审稿提交。

    中文注释:
    - 邀请时同时创建 reviews(pending) 与 review_invitations(pending)，两者状态同步推进。
    - 邀请链接 token 由 EmailService 签名（itsdangerous），同时落库用于比对。
    - 全部有效审稿完成后按 derive_article_status 推导稿件结论，以系统身份经状态机写入。
    """

    def __init__(
        self,
        client: Any = None,
        *,
        workflow: WorkflowService | None = None,
        conflicts: ConflictService | None = None,
        notifications: NotificationService | None = None,
        email: EmailService | None = None,
        config: WorkflowConfig | None = None,
    ) -> None:
        self.client = client or supabase_admin
        self.notifications = notifications or NotificationService(self.client)
        self.email = email or email_service
        self.workflow = workflow or WorkflowService(self.client, notifications=self.notifications, email=self.email)
        self.conflicts = conflicts or ConflictService(self.client)
        self.config = config or WorkflowConfig.from_env()
        self.deadlines = ReviewDeadlineManager(
            self.client, email=self.email, notifications=self.notifications, config=self.config
        )

    def _first(self, table: str, row_id: Any) -> dict[str, Any] | None:
        resp = self.client.table(table).select("*").eq("id", str(row_id)).execute()
        rows = getattr(resp, "data", None) or []
        return rows[0] if rows else None

    # === 邀请 ===
    def invite_reviewer(
        self,
        *,
        article_id: str,
        reviewer_id: str,
        invited_by: dict[str, Any],
        now: Optional[datetime] = None,
        background_tasks: Any = None,
    ) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        article = self.workflow.get_article(article_id)
        reviewer = self._first("user_profiles", reviewer_id)
        if not reviewer:
            raise HTTPException(status_code=404, detail="Reviewer not found")
        if "reviewer" not in normalize_roles(reviewer.get("roles")):
            raise HTTPException(status_code=400, detail="Selected user is not a reviewer")
        if str(article.get("author_id") or "") == str(reviewer_id):
            raise HTTPException(status_code=400, detail="Conflict of interest: reviewer is the article author")
        if self.conflicts.has_declared_conflict(user_id=str(reviewer_id), article_id=str(article_id), role="reviewer"):
            raise HTTPException(status_code=400, detail="Reviewer has declared a conflict of interest")

        existing = (
            self.client.table("review_invitations")
            .select("id,status")
            .eq("article_id", str(article_id))
            .eq("reviewer_id", str(reviewer_id))
            .in_("status", sorted(OPEN_INVITATION_STATUSES))
            .execute()
        )
        if getattr(existing, "data", None):
            raise HTTPException(status_code=409, detail="Reviewer already has an open invitation for this article")

        deadlines = self.deadlines.calculate_deadlines(now)
        review_resp = (
            self.client.table("reviews")
            .insert(
                {
                    "article_id": str(article_id),
                    "reviewer_id": str(reviewer_id),
                    "status": ReviewStatus.PENDING.value,
                    "review_deadline": deadlines["review_deadline"].isoformat(),
                    "created_at": now.isoformat(),
                }
            )
            .execute()
        )
        review = (getattr(review_resp, "data", None) or [{}])[0]

        invitation_id = str(uuid4())
        token = self.email.create_token({"invitation_id": invitation_id, "reviewer_id": str(reviewer_id)})
        inv_resp = (
            self.client.table("review_invitations")
            .insert(
                {
                    "id": invitation_id,
                    "article_id": str(article_id),
                    "reviewer_id": str(reviewer_id),
                    "review_id": review.get("id"),
                    "reviewer_email": reviewer.get("email"),
                    "reviewer_name": reviewer.get("name"),
                    "invited_by": str(invited_by.get("id")),
                    "invited_at": now.isoformat(),
                    "response_deadline": deadlines["response_deadline"].isoformat(),
                    "review_deadline": deadlines["review_deadline"].isoformat(),
                    "status": InvitationStatus.PENDING.value,
                    "invitation_token": token,
                    "updated_at": now.isoformat(),
                }
            )
            .execute()
        )
        invitation = (getattr(inv_resp, "data", None) or [{}])[0]

        reviewer_ids = [str(r) for r in (article.get("reviewer_ids") or [])]
        if str(reviewer_id) not in reviewer_ids:
            try:
                self.client.table("articles").update(
                    {"reviewer_ids": [*reviewer_ids, str(reviewer_id)], "updated_at": now.isoformat()}
                ).eq("id", str(article_id)).execute()
            except Exception as e:
                logger.warning("Failed to append reviewer to article %s: %s", article_id, e)

        title = article.get("title") or "Manuscript"
        self.notifications.create_notification(
            user_id=str(reviewer_id),
            article_id=str(article_id),
            type="review_invite",
            title="Review invitation",
            content=f'You have been invited to review "{title}".',
        )
        base = get_public_base_url()
        enqueue_template_email(
            self.email,
            background_tasks,
            to_email=reviewer.get("email") or "",
            subject=f"Invitation to Review: {title}",
            template_name="review_invitation.html",
            context={
                "recipient_name": reviewer.get("name"),
                "article_title": title,
                "article_abstract": article.get("abstract"),
                "response_deadline": deadlines["response_deadline"].strftime("%A, %B %d, %Y"),
                "review_deadline": deadlines["review_deadline"].strftime("%A, %B %d, %Y"),
                "accept_url": f"{base}/reviewer/invitations/{invitation_id}/accept?token={token}",
                "decline_url": f"{base}/reviewer/invitations/{invitation_id}/decline?token={token}",
            },
        )
        return invitation

    def get_invitation(self, invitation_id: str, actor: dict[str, Any]) -> dict[str, Any]:
        invitation = self._first("review_invitations", invitation_id)
        if not invitation:
            raise HTTPException(status_code=404, detail="Invitation not found")
        if str(invitation.get("reviewer_id")) != str(actor.get("id")) and not is_editorial(actor.get("roles")):
            raise HTTPException(status_code=403, detail="Not allowed to view this invitation")
        # 中文注释: token 只通过邮件下发，不在 API 中回显
        return {k: v for k, v in invitation.items() if k != "invitation_token"}

    def respond_to_invitation(
        self,
        *,
        invitation_id: str,
        action: str,
        reviewer: Optional[dict[str, Any]],
        decline_reason: Optional[str] = None,
        alternative_reviewers: Optional[str] = None,
        now: Optional[datetime] = None,
        background_tasks: Any = None,
    ) -> dict[str, Any]:
        """
        审稿人接受/拒绝邀请。reviewer=None 表示通过已验证的链接 token 答复。
        """
        now = now or datetime.now(timezone.utc)
        if action not in {"accept", "decline"}:
            raise HTTPException(status_code=400, detail="Action must be accept or decline")

        invitation = self._first("review_invitations", invitation_id)
        if not invitation:
            raise HTTPException(status_code=404, detail="Invitation not found")
        if reviewer is not None and str(invitation.get("reviewer_id")) != str(reviewer.get("id")):
            raise HTTPException(status_code=403, detail="Only the invited reviewer can respond")
        if invitation.get("status") != InvitationStatus.PENDING.value:
            raise HTTPException(status_code=400, detail="Invitation has already been responded to")

        article = self._first("articles", invitation.get("article_id")) or {}
        title = article.get("title") or "Manuscript"
        stamp = now.isoformat()

        if action == "accept":
            review_deadline = now + timedelta(days=self.config.review_days)
            update = {
                "status": InvitationStatus.ACCEPTED.value,
                "response_at": stamp,
                "review_deadline": review_deadline.isoformat(),
                "updated_at": stamp,
            }
            review_update = {"status": ReviewStatus.ACCEPTED.value, "review_deadline": review_deadline.isoformat()}
        else:
            update = {
                "status": InvitationStatus.DECLINED.value,
                "response_at": stamp,
                "decline_reason": decline_reason,
                "alternative_reviewers": alternative_reviewers,
                "updated_at": stamp,
            }
            review_update = {"status": ReviewStatus.DECLINED.value}

        resp = self.client.table("review_invitations").update(update).eq("id", str(invitation_id)).execute()
        updated = (getattr(resp, "data", None) or [{**invitation, **update}])[0]
        if invitation.get("review_id"):
            self.client.table("reviews").update(review_update).eq("id", invitation["review_id"]).execute()

        if action == "accept":
            enqueue_template_email(
                self.email,
                background_tasks,
                to_email=invitation.get("reviewer_email") or "",
                subject=f"Review Confirmed: {title}",
                template_name="review_acceptance.html",
                context={
                    "recipient_name": invitation.get("reviewer_name"),
                    "article_title": title,
                    "review_deadline": review_deadline.strftime("%A, %B %d, %Y"),
                    "review_url": f"{get_public_base_url()}/reviewer/reviews/{invitation.get('review_id')}",
                },
            )
        else:
            self._notify_editorial_decline(
                invitation, article, decline_reason, alternative_reviewers, background_tasks=background_tasks
            )

        return {k: v for k, v in updated.items() if k != "invitation_token"}

    def respond_with_token(
        self,
        *,
        token: str,
        action: str,
        decline_reason: Optional[str] = None,
        alternative_reviewers: Optional[str] = None,
        now: Optional[datetime] = None,
        background_tasks: Any = None,
    ) -> dict[str, Any]:
        payload = self.email.verify_token(token)
        if not isinstance(payload, dict) or not payload.get("invitation_id"):
            raise HTTPException(status_code=401, detail="Invalid or expired invitation token")

        invitation = self._first("review_invitations", payload["invitation_id"])
        if not invitation or invitation.get("invitation_token") != token:
            raise HTTPException(status_code=401, detail="Invalid or expired invitation token")
        if str(invitation.get("reviewer_id")) != str(payload.get("reviewer_id")):
            raise HTTPException(status_code=401, detail="Invalid or expired invitation token")

        return self.respond_to_invitation(
            invitation_id=str(invitation["id"]),
            action=action,
            reviewer=None,
            decline_reason=decline_reason,
            alternative_reviewers=alternative_reviewers,
            now=now,
            background_tasks=background_tasks,
        )

    def _notify_editorial_decline(
        self,
        invitation: dict[str, Any],
        article: dict[str, Any],
        decline_reason: Optional[str],
        alternative_reviewers: Optional[str],
        *,
        background_tasks: Any = None,
    ) -> None:
        title = article.get("title") or "Manuscript"
        reviewer_name = invitation.get("reviewer_name") or invitation.get("reviewer_email") or "A reviewer"
        editor_id = article.get("editor_id")
        if editor_id:
            self.notifications.create_notification(
                user_id=str(editor_id),
                article_id=str(article.get("id")),
                type="review_invite",
                title="Review invitation declined",
                content=f'{reviewer_name} declined to review "{title}".',
            )
        enqueue_template_email(
            self.email,
            background_tasks,
            to_email=get_admin_notification_email(),
            subject=f"Review Invitation Declined: {title}",
            template_name="review_declined.html",
            context={
                "reviewer_name": reviewer_name,
                "article_title": title,
                "decline_reason": decline_reason,
                "alternative_reviewers": alternative_reviewers,
            },
        )

    # === 审稿提交 ===
    def submit_review(
        self,
        *,
        review_id: str,
        reviewer: dict[str, Any],
        recommendation: str,
        comments: str,
        confidential_comments: str = "",
        rating: Optional[int] = None,
        now: Optional[datetime] = None,
        background_tasks: Any = None,
    ) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        resp = (
            self.client.table("reviews")
            .select("*")
            .eq("id", str(review_id))
            .eq("reviewer_id", str(reviewer.get("id")))
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise HTTPException(status_code=404, detail="Review not found")
        review = rows[0]

        status = review.get("status")
        if status == ReviewStatus.COMPLETED.value:
            raise HTTPException(status_code=400, detail="Review has already been submitted")
        if status in INACTIVE_REVIEW_STATUSES:
            raise HTTPException(status_code=400, detail="Review is no longer active")
        if status not in SUBMITTABLE_REVIEW_STATUSES:
            raise HTTPException(status_code=400, detail="Review invitation has not been accepted")

        update = {
            "status": ReviewStatus.COMPLETED.value,
            "recommendation": Recommendation(recommendation).value,
            "comments": comments,
            "confidential_comments": confidential_comments,
            "rating": rating,
            "submitted_at": now.isoformat(),
        }
        upd = self.client.table("reviews").update(update).eq("id", str(review_id)).execute()
        updated = (getattr(upd, "data", None) or [{**review, **update}])[0]

        article_id = str(review.get("article_id"))
        article = self.workflow.get_article(article_id)
        if article.get("editor_id"):
            self.notifications.create_notification(
                user_id=str(article["editor_id"]),
                article_id=article_id,
                type="review_submitted",
                title="Review submitted",
                content=f'A review was submitted for "{article.get("title") or "Manuscript"}".',
            )

        decided = self._apply_review_outcome(article, background_tasks=background_tasks)
        return {"review": updated, "article_status": decided}

    def _apply_review_outcome(self, article: dict[str, Any], *, background_tasks: Any = None) -> Optional[str]:
        """
        全部有效审稿完成时推导并写入稿件结论；否则返回 None。
        """
        article_id = str(article.get("id"))
        resp = self.client.table("reviews").select("*").eq("article_id", article_id).execute()
        active = [r for r in (getattr(resp, "data", None) or []) if r.get("status") not in INACTIVE_REVIEW_STATUSES]
        if not active or any(r.get("status") != ReviewStatus.COMPLETED.value for r in active):
            return None

        target = derive_article_status(r.get("recommendation") for r in active)
        if target is None:
            return None

        current = normalize_status(article.get("status"))
        if target not in ArticleStatus.allowed_next(current):
            logger.info("Review outcome %s not applicable from %s for article %s", target, current, article_id)
            return None

        self.workflow.update_status(
            article_id=article_id,
            to_status=target,
            actor=None,
            comment=f"All {len(active)} reviews completed",
            background_tasks=background_tasks,
        )
        if article.get("editor_id"):
            self.notifications.create_notification(
                user_id=str(article["editor_id"]),
                article_id=article_id,
                type="reviews_complete",
                title="All reviews completed",
                content=f'All reviews are in for "{article.get("title") or "Manuscript"}": {target.replace("_", " ")}.',
            )
        return target

    def list_reviews(self, *, article_id: str, actor: dict[str, Any]) -> list[dict[str, Any]]:
        article = self.workflow.get_article(article_id)
        resp = (
            self.client.table("reviews")
            .select("*")
            .eq("article_id", str(article_id))
            .order("created_at", desc=False)
            .execute()
        )
        reviews = getattr(resp, "data", None) or []

        roles = normalize_roles(actor.get("roles"))
        actor_id = str(actor.get("id") or "")
        if ADMIN_ROLE in roles or is_editorial(roles):
            return reviews
        if str(article.get("author_id") or "") == actor_id:
            hidden = {"confidential_comments", "reviewer_id"}
            return [
                {k: v for k, v in r.items() if k not in hidden}
                for r in reviews
                if r.get("status") == ReviewStatus.COMPLETED.value
            ]
        own = [r for r in reviews if str(r.get("reviewer_id")) == actor_id]
        if own:
            return own
        raise HTTPException(status_code=403, detail="Not allowed to view reviews for this article")

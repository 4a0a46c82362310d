from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from app.core.config import WorkflowConfig, get_public_base_url
from app.core.mail import EmailService, email_service
from app.lib.api_client import supabase_admin
from app.lib.timeutils import parse_iso_datetime
from app.models.review import InvitationStatus, ReviewStatus
from app.services.notification_service import NotificationService

logger = logging.getLogger("journaldesk.deadlines")


def _format_deadline(dt: datetime) -> str:
    return dt.strftime("%A, %B %d, %Y")


class ReviewDeadlineManager:
    """
    审稿邀请时限调度器（提醒 + 自动撤回）

    中文注释:
    1) 触发方式：/api/v1/internal/cron/review-deadlines（X-Admin-Key）或 /api/v1/admin/review-deadlines。
    2) 提醒：pending 且邀请超过 reminder_days、从未提醒过的邀请，发送提醒邮件后写入 first_reminder_sent。
    3) 撤回：pending 且邀请超过 withdrawal_days、已经提醒过的邀请，标记 withdrawn 并通知审稿人。
    4) 每一行独立处理：单行失败写入 errors 后继续；不保证处理顺序，也没有跨行事务。
    5) 同一次运行中刚刚被提醒的邀请不会在第二步被撤回。
    """

    def __init__(
        self,
        client: Any = None,
        *,
        email: Optional[EmailService] = None,
        notifications: Optional[NotificationService] = None,
        config: Optional[WorkflowConfig] = None,
    ):
        self.client = client or supabase_admin
        self._email = email or email_service
        self._notifications = notifications or NotificationService(self.client)
        self.config = config or WorkflowConfig.from_env()

    # === 时限计算 ===
    def calculate_deadlines(self, now: Optional[datetime] = None) -> Dict[str, datetime]:
        """
        新邀请的时限：回复截止 now + response_days；审稿截止再加 review_days。
        """
        now = now or datetime.now(timezone.utc)
        response_deadline = now + timedelta(days=self.config.response_days)
        review_deadline = response_deadline + timedelta(days=self.config.review_days)
        return {"response_deadline": response_deadline, "review_deadline": review_deadline}

    @staticmethod
    def days_until(deadline: Any, now: Optional[datetime] = None) -> int:
        """剩余天数（向上取整；已过期为 0 或负数）。"""
        due = parse_iso_datetime(deadline)
        if due is None:
            raise ValueError(f"Invalid deadline: {deadline!r}")
        now = now or datetime.now(timezone.utc)
        return math.ceil((due - now).total_seconds() / 86400)

    # === 主流程 ===
    def process_deadlines(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        logger.info("Processing review invitation deadlines at %s", now.isoformat())

        errors: List[str] = []
        reminded_ids: set[str] = set()

        reminders = self._process_reminders(now, errors, reminded_ids)
        withdrawals = self._process_withdrawals(now, errors, reminded_ids)

        logger.info(
            "Deadline processing completed: reminders=%s withdrawals=%s errors=%s",
            reminders,
            withdrawals,
            len(errors),
        )
        return {
            "reminders_processed": reminders,
            "withdrawals_processed": withdrawals,
            "errors": errors,
            "processed_at": now.isoformat(),
        }

    def _reminder_query(self, now: datetime, *, count: Optional[str] = None):
        cutoff = now - timedelta(days=self.config.reminder_days)
        return (
            self.client.table("review_invitations")
            .select("id" if count else "*", count=count)
            .eq("status", InvitationStatus.PENDING.value)
            .lt("invited_at", cutoff.isoformat())
            .is_("first_reminder_sent", "null")
        )

    def _withdrawal_query(self, now: datetime, *, count: Optional[str] = None):
        cutoff = now - timedelta(days=self.config.withdrawal_days)
        return (
            self.client.table("review_invitations")
            .select("id" if count else "*", count=count)
            .eq("status", InvitationStatus.PENDING.value)
            .lt("invited_at", cutoff.isoformat())
            .not_.is_("first_reminder_sent", "null")
        )

    def _process_reminders(self, now: datetime, errors: List[str], reminded_ids: set[str]) -> int:
        try:
            rows = getattr(self._reminder_query(now).execute(), "data", None) or []
        except Exception as e:
            logger.error("Reminder query failed: %s", e)
            errors.append(f"Error processing reminders: {e}")
            return 0

        articles = self._load_articles(rows)
        processed = 0
        for row in rows:
            try:
                self._send_reminder(row, articles.get(str(row.get("article_id"))) or {}, now)
                self.client.table("review_invitations").update(
                    {"first_reminder_sent": now.isoformat(), "updated_at": now.isoformat()}
                ).eq("id", row["id"]).execute()
                processed += 1
                reminded_ids.add(str(row["id"]))
            except Exception as e:
                msg = f"Failed to send reminder to {row.get('reviewer_email')}: {e}"
                logger.warning(msg)
                errors.append(msg)
        return processed

    def _process_withdrawals(self, now: datetime, errors: List[str], reminded_ids: set[str]) -> int:
        try:
            rows = getattr(self._withdrawal_query(now).execute(), "data", None) or []
        except Exception as e:
            logger.error("Withdrawal query failed: %s", e)
            errors.append(f"Error processing withdrawals: {e}")
            return 0

        articles = self._load_articles(rows)
        processed = 0
        for row in rows:
            if str(row.get("id")) in reminded_ids:
                continue
            try:
                self._withdraw(row, articles.get(str(row.get("article_id"))) or {}, now)
                processed += 1
            except Exception as e:
                msg = f"Failed to process withdrawal for {row.get('reviewer_email')}: {e}"
                logger.warning(msg)
                errors.append(msg)
        return processed

    def _load_articles(self, rows: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        ids = sorted({str(r.get("article_id")) for r in rows if r.get("article_id")})
        if not ids:
            return {}
        try:
            resp = (
                self.client.table("articles")
                .select("id, title, abstract, manuscript_number")
                .in_("id", ids)
                .execute()
            )
            return {str(a.get("id")): a for a in (getattr(resp, "data", None) or [])}
        except Exception as e:
            # 中文注释: 标题只影响邮件可读性，查询失败不阻断整批处理
            logger.warning("Article lookup for deadline emails failed: %s", e)
            return {}

    def _invitation_links(self, row: Dict[str, Any]) -> Dict[str, str]:
        base = get_public_base_url()
        token = row.get("invitation_token") or ""
        invitation_id = row.get("id")
        return {
            "accept_url": f"{base}/reviewer/invitations/{invitation_id}/accept?token={token}",
            "decline_url": f"{base}/reviewer/invitations/{invitation_id}/decline?token={token}",
        }

    def _send_reminder(self, row: Dict[str, Any], article: Dict[str, Any], now: datetime) -> None:
        to_email = (row.get("reviewer_email") or "").strip()
        if not to_email:
            raise ValueError("reviewer email missing")

        final_deadline = now + timedelta(days=self.config.withdrawal_days - self.config.reminder_days)
        subject = "Reminder: Review Invitation Awaiting Your Response"
        sent = self._email.send_template_email(
            to_email=to_email,
            subject=subject,
            template_name="review_reminder.html",
            context={
                "recipient_name": row.get("reviewer_name"),
                "article_title": article.get("title") or "Manuscript",
                "manuscript_number": article.get("manuscript_number") or "N/A",
                "final_deadline": _format_deadline(final_deadline),
                **self._invitation_links(row),
            },
        )
        # 中文注释: 未配置邮件服务时视为“跳过发送”，仍推进提醒标记；配置了但发送失败则计为错误，下次重试。
        if not sent and self._email.is_configured():
            raise RuntimeError("email delivery failed")

    def _withdraw(self, row: Dict[str, Any], article: Dict[str, Any], now: datetime) -> None:
        stamp = now.isoformat()
        self.client.table("review_invitations").update(
            {
                "status": InvitationStatus.WITHDRAWN.value,
                "withdrawn_at": stamp,
                "updated_at": stamp,
            }
        ).eq("id", row["id"]).execute()

        if row.get("review_id"):
            # 中文注释: 只撤回尚未接受的审稿，已完成/已接受的审稿保持不变
            self.client.table("reviews").update({"status": ReviewStatus.WITHDRAWN.value}).eq(
                "id", row["review_id"]
            ).eq("status", ReviewStatus.PENDING.value).execute()

        try:
            self._email.send_template_email(
                to_email=(row.get("reviewer_email") or "").strip(),
                subject="Review Invitation Withdrawn",
                template_name="review_withdrawal.html",
                context={
                    "recipient_name": row.get("reviewer_name"),
                    "article_title": article.get("title") or "Manuscript",
                    "manuscript_number": article.get("manuscript_number") or "N/A",
                },
            )
        except Exception as e:
            logger.warning("Withdrawal email for invitation %s failed: %s", row.get("id"), e)

    # === 统计与逾期 ===
    def deadline_statistics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)

        # 中文注释: 用 count="exact" 计数，不受 PostgREST max-rows 截断影响
        def count(query) -> int:
            return getattr(query.execute(), "count", None) or 0

        invitations = lambda: self.client.table("review_invitations").select("id", count="exact")  # noqa: E731
        return {
            "pending_reminders": count(self._reminder_query(now, count="exact")),
            "pending_withdrawals": count(self._withdrawal_query(now, count="exact")),
            "total_pending": count(invitations().eq("status", InvitationStatus.PENDING.value)),
            "total_withdrawn": count(invitations().eq("status", InvitationStatus.WITHDRAWN.value)),
            "reminder_days": self.config.reminder_days,
            "withdrawal_days": self.config.withdrawal_days,
            "last_check": now.isoformat(),
        }

    def check_overdue_reviews(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        审稿截止已过、仍未提交的审稿标记为 overdue，并站内通知审稿人。
        """
        now = now or datetime.now(timezone.utc)
        errors: List[str] = []
        try:
            resp = (
                self.client.table("reviews")
                .select("*")
                .in_("status", [ReviewStatus.PENDING.value, ReviewStatus.ACCEPTED.value])
                .lt("review_deadline", now.isoformat())
                .execute()
            )
            rows = getattr(resp, "data", None) or []
        except Exception as e:
            logger.error("Overdue review query failed: %s", e)
            return {
                "overdue_marked": 0,
                "errors": [f"Error checking overdue reviews: {e}"],
                "processed_at": now.isoformat(),
            }

        marked = 0
        for row in rows:
            try:
                self.client.table("reviews").update({"status": ReviewStatus.OVERDUE.value}).eq(
                    "id", row["id"]
                ).execute()
                marked += 1
            except Exception as e:
                errors.append(f"Failed to mark review {row.get('id')} overdue: {e}")
                continue
            self._notifications.create_notification(
                user_id=str(row.get("reviewer_id") or ""),
                article_id=row.get("article_id"),
                type="review_overdue",
                title="Review overdue",
                content="The deadline for your review has passed. Please submit it as soon as possible.",
            )
        return {"overdue_marked": marked, "errors": errors, "processed_at": now.isoformat()}

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import HTTPException
from postgrest.exceptions import APIError

from app.lib.api_client import supabase_admin
from app.schemas.conflict import QuestionnaireData

logger = logging.getLogger("journaldesk.conflicts")

# 问卷中的利益关系项（任一为 True 即视为存在冲突）
_INTEREST_FLAGS: dict[str, str] = {
    "has_affiliations": "Institutional affiliation with the authors",
    "has_collaborations": "Recent collaboration with the authors",
    "has_financial_interests": "Financial interest in the work",
    "has_personal_relationships": "Personal relationship with the authors",
    "has_institutional_conflicts": "Institutional conflict",
}


def detect_conflicts(data: QuestionnaireData) -> tuple[bool, list[str]]:
    details = [label for flag, label in _INTEREST_FLAGS.items() if getattr(data, flag)]
    if not data.can_review_objectively:
        details.append("Cannot review objectively")
    return bool(details), details


class ConflictService:
    """
    利益冲突问卷：每个用户对同一稿件、同一角色只能提交一次。
    """

    def __init__(self, client: Any = None) -> None:
        self.client = client or supabase_admin

    def submit_questionnaire(
        self,
        *,
        user_id: str,
        article_id: str,
        role: str,
        data: QuestionnaireData,
    ) -> dict[str, Any]:
        existing = (
            self.client.table("conflict_questionnaires")
            .select("id")
            .eq("user_id", str(user_id))
            .eq("article_id", str(article_id))
            .eq("role", role)
            .execute()
        )
        if getattr(existing, "data", None):
            raise HTTPException(status_code=409, detail="Questionnaire already submitted for this article")

        has_conflicts, details = detect_conflicts(data)
        if data.additional_details:
            details.append(data.additional_details)
        row = {
            "user_id": str(user_id),
            "article_id": str(article_id),
            "role": role,
            "questionnaire_data": data.model_dump(),
            "has_conflicts": has_conflicts,
            "conflict_details": "; ".join(details) if has_conflicts else None,
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            resp = self.client.table("conflict_questionnaires").insert(row).execute()
        except APIError as e:
            if "23505" in str(getattr(e, "code", "") or "") or "23505" in str(e):
                raise HTTPException(
                    status_code=409, detail="Questionnaire already submitted for this article"
                ) from e
            raise
        saved = (getattr(resp, "data", None) or [row])[0]
        if has_conflicts:
            logger.info("Conflict declared by %s on article %s (%s)", user_id, article_id, role)
        return saved

    def get_questionnaire(
        self,
        *,
        user_id: str,
        article_id: str,
        role: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        query = (
            self.client.table("conflict_questionnaires")
            .select("*")
            .eq("user_id", str(user_id))
            .eq("article_id", str(article_id))
        )
        if role:
            query = query.eq("role", role)
        return getattr(query.execute(), "data", None) or []

    def has_declared_conflict(self, *, user_id: str, article_id: str, role: str) -> bool:
        try:
            rows = self.get_questionnaire(user_id=user_id, article_id=article_id, role=role)
        except Exception as e:
            logger.warning("Conflict lookup failed for %s/%s: %s", user_id, article_id, e)
            return False
        return any(bool(r.get("has_conflicts")) for r in rows)

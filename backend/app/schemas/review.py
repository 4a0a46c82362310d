from __future__ import annotations

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.review import Recommendation


class ReviewInviteRequest(BaseModel):
    article_id: UUID
    reviewer_id: UUID


class InvitationDecision(BaseModel):
    decline_reason: Optional[str] = Field(None, max_length=1000)
    alternative_reviewers: Optional[str] = Field(None, max_length=1000)


class TokenInvitationDecision(InvitationDecision):
    token: str = Field(..., min_length=16)


class ReviewSubmission(BaseModel):
    recommendation: Recommendation
    comments: str = Field(..., min_length=1, max_length=20000)
    confidential_comments: str = Field(default="", max_length=20000)
    rating: Optional[int] = Field(None, ge=1, le=5)

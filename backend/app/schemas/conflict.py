from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class QuestionnaireData(BaseModel):
    has_affiliations: bool
    has_collaborations: bool
    has_financial_interests: bool
    has_personal_relationships: bool
    has_institutional_conflicts: bool
    can_review_objectively: bool
    additional_details: Optional[str] = Field(None, max_length=2000)


class ConflictQuestionnaireRequest(BaseModel):
    article_id: UUID
    role: Literal["associate_editor", "reviewer"]
    questionnaire_data: QuestionnaireData

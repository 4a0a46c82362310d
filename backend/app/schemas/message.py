from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ConversationCreate(BaseModel):
    subject: str = Field(..., min_length=1, max_length=300)
    type: Literal["review", "submission", "editorial", "system"] = "editorial"
    related_id: Optional[UUID] = None
    participant_ids: list[UUID] = Field(..., min_length=1, max_length=20)
    content: Optional[str] = Field(None, max_length=10000)


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class MarkReadRequest(BaseModel):
    message_ids: Optional[list[UUID]] = None

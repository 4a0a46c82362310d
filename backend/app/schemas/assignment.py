from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class EditorAssignmentCreate(BaseModel):
    article_id: UUID
    editor_id: UUID
    assignment_reason: Optional[str] = Field(None, max_length=1000)


class AutoAssignRequest(BaseModel):
    assignment_reason: Optional[str] = Field(None, max_length=1000)


class EditorAssignmentResponse(BaseModel):
    """
    编辑对指派的答复

    中文注释: 冲突/理由的组合规则在服务层校验（返回 400 业务错误），这里只做类型约束。
    """

    action: Literal["accept", "decline"]
    conflict_declared: bool = False
    conflict_details: Optional[str] = Field(None, max_length=2000)
    decline_reason: Optional[str] = Field(None, max_length=2000)
    editor_comments: Optional[str] = Field(None, max_length=2000)

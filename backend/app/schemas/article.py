from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class CoAuthor(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    affiliation: str = Field(..., min_length=1, max_length=300)
    is_corresponding_author: bool = False


class RecommendedReviewer(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    affiliation: str = Field(..., min_length=1, max_length=300)
    expertise: Optional[str] = Field(None, max_length=500)


class ArticleSubmission(BaseModel):
    """
    投稿请求体

    中文注释:
    - title/abstract/category 允许前端传带空白的字符串，这里统一 strip 后再校验非空。
    - 作者完整性（至少一位通讯作者）在服务层校验，以便返回业务错误文案而非 422。
    """

    title: str = Field(..., max_length=500)
    abstract: str = Field(..., max_length=10000)
    category: str = Field(..., max_length=100)
    content: str = Field(default="", max_length=200000)
    keywords: list[str] = Field(default_factory=list, max_length=20)
    authors: list[CoAuthor] = Field(default_factory=list)
    recommended_reviewers: list[RecommendedReviewer] = Field(default_factory=list, max_length=10)

    @field_validator("title", "abstract", "category", "content", mode="before")
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("keywords")
    @classmethod
    def clean_keywords(cls, v: list[str]) -> list[str]:
        return [k.strip() for k in v if k and k.strip()]


class StatusUpdateRequest(BaseModel):
    new_status: str = Field(..., min_length=1, max_length=50)
    notes: Optional[str] = Field(None, max_length=2000)
    # 仅 admin 生效：允许跳过状态表
    force: bool = False
    volume: Optional[str] = Field(None, max_length=20)
    issue: Optional[str] = Field(None, max_length=20)
    pages: Optional[str] = Field(None, max_length=20)


class ScreeningRequest(BaseModel):
    file_completeness: bool
    plagiarism_check: bool
    format_compliance: bool
    ethical_compliance: bool
    notes: Optional[str] = Field(None, max_length=2000)

from __future__ import annotations

from enum import Enum


class ArticleStatus(str, Enum):
    """
    统一稿件生命周期状态枚举。

    中文注释:
    - 状态流转表集中在 allowed_next 中，服务层统一校验，路由层不得自行判断。
    - 数据库存储为字符串；服务层会 normalize 后再写入。
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    TECHNICAL_CHECK = "technical_check"
    EDITORIAL_ASSISTANT_REVIEW = "editorial_assistant_review"
    ASSOCIATE_EDITOR_ASSIGNMENT = "associate_editor_assignment"
    ASSOCIATE_EDITOR_REVIEW = "associate_editor_review"
    REVIEWER_ASSIGNMENT = "reviewer_assignment"
    UNDER_REVIEW = "under_review"
    REVISION_REQUESTED = "revision_requested"
    REVISION_SUBMITTED = "revision_submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PUBLISHED = "published"
    WITHDRAWN = "withdrawn"

    @classmethod
    def allowed_next(cls, current: str | None) -> set[str]:
        c = normalize_status(current)
        if c is None:
            return set()
        return set(_TRANSITIONS.get(c, ()))

    @classmethod
    def is_terminal(cls, current: str | None) -> bool:
        c = normalize_status(current)
        return c is not None and not _TRANSITIONS.get(c)


S = ArticleStatus

_TRANSITIONS: dict[str, tuple[str, ...]] = {
    S.DRAFT.value: (S.SUBMITTED.value, S.WITHDRAWN.value),
    S.SUBMITTED.value: (
        S.TECHNICAL_CHECK.value,
        S.EDITORIAL_ASSISTANT_REVIEW.value,
        S.WITHDRAWN.value,
    ),
    S.TECHNICAL_CHECK.value: (
        S.EDITORIAL_ASSISTANT_REVIEW.value,
        S.ASSOCIATE_EDITOR_ASSIGNMENT.value,
        S.REVISION_REQUESTED.value,
        S.REJECTED.value,
        S.WITHDRAWN.value,
    ),
    S.EDITORIAL_ASSISTANT_REVIEW.value: (
        S.ASSOCIATE_EDITOR_ASSIGNMENT.value,
        S.REVISION_REQUESTED.value,
        S.WITHDRAWN.value,
    ),
    S.ASSOCIATE_EDITOR_ASSIGNMENT.value: (
        S.ASSOCIATE_EDITOR_REVIEW.value,
        S.REVISION_REQUESTED.value,
    ),
    S.ASSOCIATE_EDITOR_REVIEW.value: (
        S.REVIEWER_ASSIGNMENT.value,
        S.UNDER_REVIEW.value,
        S.REVISION_REQUESTED.value,
        S.REJECTED.value,
    ),
    S.REVIEWER_ASSIGNMENT.value: (S.UNDER_REVIEW.value, S.REVISION_REQUESTED.value),
    S.UNDER_REVIEW.value: (
        S.REVISION_REQUESTED.value,
        S.ACCEPTED.value,
        S.REJECTED.value,
    ),
    S.REVISION_REQUESTED.value: (S.REVISION_SUBMITTED.value, S.WITHDRAWN.value),
    S.REVISION_SUBMITTED.value: (
        S.TECHNICAL_CHECK.value,
        S.EDITORIAL_ASSISTANT_REVIEW.value,
        S.ASSOCIATE_EDITOR_REVIEW.value,
        S.UNDER_REVIEW.value,
        S.ACCEPTED.value,
        S.REJECTED.value,
    ),
    S.ACCEPTED.value: (S.PUBLISHED.value,),
    # 拒稿后允许作者撤回（申诉流程）
    S.REJECTED.value: (S.WITHDRAWN.value,),
    S.PUBLISHED.value: (),
    S.WITHDRAWN.value: (),
}

NEXT_STEPS: dict[str, list[str]] = {
    S.DRAFT.value: ["Submit for review"],
    S.SUBMITTED.value: ["Technical check", "Editor assignment"],
    S.TECHNICAL_CHECK.value: ["Editor assignment", "Reviewer selection"],
    S.EDITORIAL_ASSISTANT_REVIEW.value: ["Initial screening", "Associate editor assignment"],
    S.ASSOCIATE_EDITOR_ASSIGNMENT.value: ["Associate editor selection"],
    S.ASSOCIATE_EDITOR_REVIEW.value: ["Content review", "Reviewer selection"],
    S.REVIEWER_ASSIGNMENT.value: ["Reviewer invitations"],
    S.UNDER_REVIEW.value: ["Review completion", "Editorial decision"],
    S.REVISION_REQUESTED.value: ["Author revision", "Resubmission"],
    S.REVISION_SUBMITTED.value: ["Review of revision", "Final decision"],
    S.ACCEPTED.value: ["Production", "Publication"],
    S.REJECTED.value: ["Archive", "Author notification"],
    S.PUBLISHED.value: ["Archive", "Citation tracking"],
    S.WITHDRAWN.value: ["Archive", "Author notification"],
}

ESTIMATED_COMPLETION: dict[str, str] = {
    S.SUBMITTED.value: "3-5 business days",
    S.TECHNICAL_CHECK.value: "1-2 business days",
    S.EDITORIAL_ASSISTANT_REVIEW.value: "3-5 business days",
    S.ASSOCIATE_EDITOR_ASSIGNMENT.value: "3-5 business days",
    S.ASSOCIATE_EDITOR_REVIEW.value: "1-2 weeks",
    S.REVIEWER_ASSIGNMENT.value: "1-2 weeks",
    S.UNDER_REVIEW.value: "4-6 weeks",
    S.REVISION_REQUESTED.value: "Author dependent",
    S.REVISION_SUBMITTED.value: "2-3 weeks",
    S.ACCEPTED.value: "2-4 weeks",
    S.REJECTED.value: "Completed",
    S.PUBLISHED.value: "Completed",
    S.WITHDRAWN.value: "Completed",
}


def normalize_status(value: str | None) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower().replace("-", "_")
    if not v:
        return None
    # 兼容旧状态（迁移未跑/历史数据）
    legacy_map = {
        "pending": ArticleStatus.SUBMITTED.value,
        "screening": ArticleStatus.EDITORIAL_ASSISTANT_REVIEW.value,
        "revision": ArticleStatus.REVISION_REQUESTED.value,
        "resubmitted": ArticleStatus.REVISION_SUBMITTED.value,
    }
    v = legacy_map.get(v, v)

    try:
        return ArticleStatus(v).value
    except ValueError:
        return None

from __future__ import annotations

from enum import Enum


class ReviewStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    WITHDRAWN = "withdrawn"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    WITHDRAWN = "withdrawn"


class Recommendation(str, Enum):
    ACCEPT = "accept"
    MINOR_REVISION = "minor_revision"
    MAJOR_REVISION = "major_revision"
    REJECT = "reject"


# 不再参与稿件结论统计的审稿状态
INACTIVE_REVIEW_STATUSES = {
    ReviewStatus.DECLINED.value,
    ReviewStatus.WITHDRAWN.value,
}

# 仍占用审稿人名额的邀请状态（重复邀请判定）
OPEN_INVITATION_STATUSES = {
    InvitationStatus.PENDING.value,
    InvitationStatus.ACCEPTED.value,
}

# 可提交审稿意见的状态（须先接受邀请）
SUBMITTABLE_REVIEW_STATUSES = {
    ReviewStatus.ACCEPTED.value,
    ReviewStatus.OVERDUE.value,
}

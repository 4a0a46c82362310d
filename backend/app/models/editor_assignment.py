from __future__ import annotations

from enum import Enum


class AssignmentStatus(str, Enum):
    """
    编辑指派（editor_assignments.status）

    中文注释:
    - 同一稿件同一编辑最多一条 pending 记录（数据库部分唯一索引保证）。
    - pending 且超过 deadline 的记录在读取时被标记为 expired。
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"

from __future__ import annotations

from typing import Iterable

from app.models.manuscript import ArticleStatus

# 中文注释：
# - 这里集中定义“角色 -> 动作”与“角色 -> 可推进的目标状态”矩阵，避免权限逻辑散落在各路由。
# - 状态表本身（from -> to）在 ArticleStatus.allowed_next 中；这里只回答“谁可以推进到哪里”。
# - 历史数据中存在连字符写法（editor-in-chief），统一归一化为下划线。

ADMIN_ROLE = "admin"

ALL_ROLES: frozenset[str] = frozenset(
    {
        "author",
        "reviewer",
        "editor",
        "associate_editor",
        "section_editor",
        "editorial_assistant",
        "managing_editor",
        "editor_in_chief",
        "production_editor",
        ADMIN_ROLE,
    }
)

HANDLING_EDITOR_ROLES: frozenset[str] = frozenset({"editor", "associate_editor", "section_editor"})
CHIEF_ROLES: frozenset[str] = frozenset({"managing_editor", "editor_in_chief"})
EDITORIAL_ROLES: frozenset[str] = HANDLING_EDITOR_ROLES | CHIEF_ROLES | {"editorial_assistant", "production_editor"}
# 编辑部办公室角色：可查看全部稿件（负责编辑仅看到指派给自己的与未指派的）
OFFICE_ROLES: frozenset[str] = CHIEF_ROLES | {"editorial_assistant", "production_editor"}
# 可被指派为稿件负责编辑的角色
ASSIGNABLE_EDITOR_ROLES: frozenset[str] = HANDLING_EDITOR_ROLES | {"editor_in_chief"}

_EDITOR_TARGETS = {
    ArticleStatus.REVIEWER_ASSIGNMENT.value,
    ArticleStatus.UNDER_REVIEW.value,
    ArticleStatus.REVISION_REQUESTED.value,
    ArticleStatus.ACCEPTED.value,
    ArticleStatus.REJECTED.value,
}

ROLE_TRANSITIONS: dict[str, set[str]] = {
    "author": {
        ArticleStatus.SUBMITTED.value,
        ArticleStatus.REVISION_SUBMITTED.value,
        ArticleStatus.WITHDRAWN.value,
    },
    "reviewer": set(),
    "editorial_assistant": {
        ArticleStatus.TECHNICAL_CHECK.value,
        ArticleStatus.EDITORIAL_ASSISTANT_REVIEW.value,
        ArticleStatus.ASSOCIATE_EDITOR_ASSIGNMENT.value,
        ArticleStatus.REVISION_REQUESTED.value,
    },
    "editor": set(_EDITOR_TARGETS),
    "associate_editor": set(_EDITOR_TARGETS),
    "section_editor": set(_EDITOR_TARGETS),
    "managing_editor": _EDITOR_TARGETS
    | {
        ArticleStatus.TECHNICAL_CHECK.value,
        ArticleStatus.ASSOCIATE_EDITOR_ASSIGNMENT.value,
        ArticleStatus.ASSOCIATE_EDITOR_REVIEW.value,
    },
    "editor_in_chief": _EDITOR_TARGETS
    | {
        ArticleStatus.TECHNICAL_CHECK.value,
        ArticleStatus.ASSOCIATE_EDITOR_ASSIGNMENT.value,
        ArticleStatus.ASSOCIATE_EDITOR_REVIEW.value,
    },
    "production_editor": {ArticleStatus.PUBLISHED.value},
}

ROLE_ACTIONS: dict[str, set[str]] = {
    "author": {
        "article:submit",
        "article:view_own",
        "message:send",
    },
    "reviewer": {
        "review:respond_invitation",
        "review:submit",
        "conflict:declare",
        "message:send",
    },
    "editorial_assistant": {
        "article:view_all",
        "workflow:screening",
        "assignment:create",
        "message:send",
    },
    "editor": {
        "article:view_all",
        "review:invite",
        "assignment:respond",
        "conflict:declare",
        "deadline:run",
        "message:send",
    },
    "associate_editor": {
        "article:view_all",
        "review:invite",
        "assignment:respond",
        "conflict:declare",
        "message:send",
    },
    "section_editor": {
        "article:view_all",
        "review:invite",
        "assignment:respond",
        "conflict:declare",
        "message:send",
    },
    "managing_editor": {
        "article:view_all",
        "workflow:screening",
        "assignment:create",
        "assignment:view_all",
        "review:invite",
        "message:send",
    },
    "editor_in_chief": {
        "article:view_all",
        "workflow:screening",
        "assignment:create",
        "assignment:view_all",
        "assignment:respond",
        "review:invite",
        "conflict:declare",
        "message:send",
    },
    "production_editor": {
        "article:view_all",
        "message:send",
    },
    ADMIN_ROLE: {
        "*",
    },
}


def normalize_roles(roles: Iterable[str] | None) -> set[str]:
    """
    将输入角色归一化（小写、去空、连字符转下划线）。
    """
    out: set[str] = set()
    for raw in roles or []:
        role = str(raw or "").strip().lower().replace("-", "_")
        if not role:
            continue
        if role == "chief_editor":
            role = "editor_in_chief"
        out.add(role)
    return out


def can_perform_action(*, action: str, roles: Iterable[str] | None) -> bool:
    """
    判定角色集合是否可执行某动作。

    中文注释：
    - admin 拥有全局通配权限；
    - 其余角色按 ROLE_ACTIONS 显式授权。
    """
    normalized = normalize_roles(roles)
    if ADMIN_ROLE in normalized:
        return True

    for role in normalized:
        allowed = ROLE_ACTIONS.get(role) or set()
        if "*" in allowed or action in allowed:
            return True
    return False


def list_allowed_actions(roles: Iterable[str] | None) -> set[str]:
    """
    返回当前角色可执行动作集合（用于前端 capability 输出）。
    """
    normalized = normalize_roles(roles)
    if ADMIN_ROLE in normalized:
        return {"*"}

    actions: set[str] = set()
    for role in normalized:
        actions.update(ROLE_ACTIONS.get(role) or set())
    return actions


def can_transition(
    *,
    roles: Iterable[str] | None,
    to_status: str,
    is_owner: bool = False,
    is_assigned_editor: bool = False,
) -> bool:
    """
    判定角色集合是否可把稿件推进到 to_status（不检查 from -> to 是否合法）。

    规则:
    - admin: 任意目标状态。
    - author: 仅限自己的稿件。
    - 手稿负责编辑推进到 under_review 时必须是该稿件的指派编辑；
      managing_editor / editor_in_chief 不受此限制。
    """
    normalized = normalize_roles(roles)
    if ADMIN_ROLE in normalized:
        return True

    for role in normalized:
        targets = ROLE_TRANSITIONS.get(role) or set()
        if to_status not in targets:
            continue
        if role == "author" and not is_owner:
            continue
        if (
            role in HANDLING_EDITOR_ROLES
            and to_status == ArticleStatus.UNDER_REVIEW.value
            and not is_assigned_editor
        ):
            continue
        return True
    return False


def transitions_for(
    *,
    roles: Iterable[str] | None,
    current_status: str,
    is_owner: bool = False,
    is_assigned_editor: bool = False,
) -> list[str]:
    """
    当前角色在 current_status 下可推进到的状态（状态表 ∩ 角色矩阵）。
    """
    allowed = ArticleStatus.allowed_next(current_status)
    return sorted(
        s
        for s in allowed
        if can_transition(
            roles=roles,
            to_status=s,
            is_owner=is_owner,
            is_assigned_editor=is_assigned_editor,
        )
    )


def is_editorial(roles: Iterable[str] | None) -> bool:
    normalized = normalize_roles(roles)
    return ADMIN_ROLE in normalized or bool(normalized & EDITORIAL_ROLES)

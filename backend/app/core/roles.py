import logging
import os
from typing import Callable, Iterable, Optional, Set

from fastapi import Depends, HTTPException

from app.core.auth_utils import get_current_user
from app.core.role_matrix import can_perform_action, normalize_roles
from app.lib.api_client import supabase_admin

logger = logging.getLogger("journaldesk.auth")


def _parse_admin_emails() -> Set[str]:
    raw = os.environ.get("ADMIN_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


def _is_admin_email(email: Optional[str]) -> bool:
    if not email:
        return False
    return email.strip().lower() in _parse_admin_emails()


async def get_current_profile(current_user: dict = Depends(get_current_user)) -> dict:
    """
    获取当前用户的 profile（含 roles）。

    中文注释:
    1) 角色存储在 user_profiles.roles（应用层 RBAC，扁平枚举，无继承关系）。
    2) 首次访问时自动创建 user_profiles 记录，默认 roles=['author']。
    3) 若 email 在 ADMIN_EMAILS 中，则自动补齐 admin 权限，便于初始化部署。
    """
    user_id = current_user["id"]
    email = current_user.get("email")

    roles = ["author"]
    if _is_admin_email(email):
        roles = ["admin", "author"]

    try:
        resp = supabase_admin.table("user_profiles").select("*").eq("id", user_id).execute()
        existing = (resp.data or [None])[0]
        if existing:
            existing_roles = existing.get("roles") or []
            if _is_admin_email(email):
                merged = list(dict.fromkeys([*roles, *existing_roles]))
                if merged != existing_roles:
                    supabase_admin.table("user_profiles").update({"roles": merged}).eq("id", user_id).execute()
                    existing["roles"] = merged
            existing["roles"] = sorted(normalize_roles(existing.get("roles")))
            return existing

        inserted = (
            supabase_admin.table("user_profiles")
            .insert({"id": user_id, "email": email, "roles": roles})
            .execute()
        )
        return (inserted.data or [{"id": user_id, "email": email, "roles": roles}])[0]
    except Exception as e:
        logger.warning("Failed to fetch/create user profile: %s", e)
        # 最小化降级：至少把用户身份返回给上层（仅 author 权限）
        return {"id": user_id, "email": email, "roles": roles}


def require_any_role(required: Iterable[str]) -> Callable[..., dict]:
    required_set = normalize_roles(required)
    required_set.add("admin")

    async def _dep(profile: dict = Depends(get_current_profile)) -> dict:
        roles = normalize_roles(profile.get("roles"))
        if not roles.intersection(required_set):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return profile

    return _dep


def require_action(action: str) -> Callable[..., dict]:
    async def _dep(profile: dict = Depends(get_current_profile)) -> dict:
        if not can_perform_action(action=action, roles=profile.get("roles")):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return profile

    return _dep

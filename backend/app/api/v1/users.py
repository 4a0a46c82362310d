from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator

from app.core.role_matrix import list_allowed_actions, normalize_roles
from app.core.roles import get_current_profile
from app.lib.api_client import supabase_admin
from app.models.user import CurrentUser

router = APIRouter(prefix="/users", tags=["Users"])


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    affiliation: Optional[str] = Field(default=None, max_length=300)
    expertise: Optional[List[str]] = Field(default=None, max_length=30)
    is_accepting_submissions: Optional[bool] = None

    @model_validator(mode="after")
    def validate_any_field(self):
        if (
            self.name is None
            and self.affiliation is None
            and self.expertise is None
            and self.is_accepting_submissions is None
        ):
            raise ValueError("At least one field must be provided")
        return self


def _to_current_user(profile: dict) -> CurrentUser:
    roles = sorted(normalize_roles(profile.get("roles")) or {"author"})
    return CurrentUser(
        id=str(profile.get("id")),
        email=profile.get("email"),
        name=profile.get("name"),
        roles=roles,
        capabilities=sorted(list_allowed_actions(roles)),
    )


@router.get("/me")
async def get_me(profile: dict = Depends(get_current_profile)):
    """
    当前登录用户（含角色与可执行动作，供前端控制入口显隐）
    """
    return {"success": True, "data": _to_current_user(profile).model_dump()}


@router.put("/me")
async def update_me(
    profile: dict = Depends(get_current_profile),
    req: ProfileUpdateRequest = Body(...),
):
    """
    更新本人资料。

    中文注释: 角色不允许自助修改；id 由 JWT sub 锁定。
    """
    updates: dict = {"updated_at": datetime.now(timezone.utc).isoformat()}
    if req.name is not None:
        updates["name"] = req.name.strip()
    if req.affiliation is not None:
        updates["affiliation"] = req.affiliation.strip()
    if req.expertise is not None:
        updates["expertise"] = [e.strip() for e in req.expertise if e and e.strip()]
    if req.is_accepting_submissions is not None:
        updates["is_accepting_submissions"] = req.is_accepting_submissions

    resp = supabase_admin.table("user_profiles").update(updates).eq("id", str(profile["id"])).execute()
    rows = getattr(resp, "data", None) or []
    if not rows:
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"success": True, "data": _to_current_user({**profile, **rows[0]}).model_dump()}

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.core.roles import get_current_profile, require_action
from app.schemas.conflict import ConflictQuestionnaireRequest
from app.services.conflict_service import ConflictService

router = APIRouter(prefix="/conflicts", tags=["Conflicts of Interest"])


def get_conflict_service() -> ConflictService:
    return ConflictService()


@router.post("/questionnaire", status_code=201)
async def submit_questionnaire(
    req: ConflictQuestionnaireRequest,
    profile: dict = Depends(require_action("conflict:declare")),
    service: ConflictService = Depends(get_conflict_service),
):
    saved = service.submit_questionnaire(
        user_id=str(profile["id"]),
        article_id=str(req.article_id),
        role=req.role,
        data=req.questionnaire_data,
    )
    return {"success": True, "data": saved}


@router.get("/questionnaire")
async def get_questionnaire(
    article_id: str = Query(..., min_length=1),
    role: Optional[str] = Query(default=None),
    profile: dict = Depends(get_current_profile),
    service: ConflictService = Depends(get_conflict_service),
):
    """
    查询本人对某稿件提交过的问卷
    """
    rows = service.get_questionnaire(user_id=str(profile["id"]), article_id=article_id, role=role)
    return {"success": True, "data": rows}

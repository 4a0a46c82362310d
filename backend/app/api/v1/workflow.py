from fastapi import APIRouter, BackgroundTasks, Depends

from app.core.roles import get_current_profile, require_any_role
from app.models.manuscript import ArticleStatus
from app.schemas.article import ScreeningRequest, StatusUpdateRequest
from app.services.workflow_service import WorkflowService

router = APIRouter(prefix="/workflow", tags=["Workflow"])


def get_workflow_service() -> WorkflowService:
    return WorkflowService()


@router.put("/status/{article_id}")
async def update_article_status(
    article_id: str,
    req: StatusUpdateRequest,
    background_tasks: BackgroundTasks,
    profile: dict = Depends(get_current_profile),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    稿件状态流转（状态表 + 角色门禁均在服务层校验）
    """
    extra = {}
    if req.new_status == ArticleStatus.PUBLISHED.value:
        extra = {k: v for k, v in {"volume": req.volume, "issue": req.issue, "pages": req.pages}.items() if v}
    updated = service.update_status(
        article_id=article_id,
        to_status=req.new_status,
        actor=profile,
        comment=req.notes,
        force=req.force,
        extra_updates=extra or None,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": updated}


@router.get("/status/{article_id}")
async def get_article_status(
    article_id: str,
    profile: dict = Depends(get_current_profile),
    service: WorkflowService = Depends(get_workflow_service),
):
    return {"success": True, "data": service.get_status(article_id, profile)}


@router.post("/screening/{article_id}")
async def screen_article(
    article_id: str,
    req: ScreeningRequest,
    background_tasks: BackgroundTasks,
    profile: dict = Depends(require_any_role(["editorial_assistant", "managing_editor", "editor_in_chief"])),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    编辑助理初审（四项检查）
    """
    result = service.perform_screening(
        article_id=article_id, actor=profile, checks=req, background_tasks=background_tasks
    )
    return {"success": True, "data": result}


from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from app.core.roles import get_current_profile, require_action
from app.schemas.article import ArticleSubmission
from app.services.review_service import ReviewService
from app.services.workflow_service import WorkflowService

router = APIRouter(prefix="/articles", tags=["Articles"])


def get_workflow_service() -> WorkflowService:
    return WorkflowService()


def get_review_service() -> ReviewService:
    return ReviewService()


@router.post("", status_code=201)
async def submit_article(
    payload: ArticleSubmission,
    background_tasks: BackgroundTasks,
    profile: dict = Depends(require_action("article:submit")),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    作者投稿：创建 submitted 稿件并尝试自动分配负责编辑
    """
    article = service.submit_article(payload, profile, background_tasks=background_tasks)
    return {"success": True, "data": article}


@router.get("")
async def list_articles(
    status: Optional[str] = Query(default=None, max_length=50),
    limit: int = Query(default=50, ge=1, le=200),
    profile: dict = Depends(get_current_profile),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    稿件列表；status 过滤时只返回该状态的稿件。可见范围按角色收敛。
    """
    rows = service.list_articles(actor=profile, status=status, limit=limit)
    return {"success": True, "data": rows}


@router.get("/{article_id}")
async def get_article(
    article_id: str,
    profile: dict = Depends(get_current_profile),
    service: WorkflowService = Depends(get_workflow_service),
):
    return {"success": True, "data": service.get_article_for(article_id, profile)}


@router.get("/{article_id}/reviews")
async def list_article_reviews(
    article_id: str,
    profile: dict = Depends(get_current_profile),
    service: ReviewService = Depends(get_review_service),
):
    """
    审稿意见：编辑看全部；作者只看已完成且隐去保密意见；审稿人只看自己的。
    """
    return {"success": True, "data": service.list_reviews(article_id=article_id, actor=profile)}

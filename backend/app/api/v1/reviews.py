from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends

from app.core.roles import get_current_profile, require_action
from app.schemas.review import InvitationDecision, ReviewInviteRequest, ReviewSubmission, TokenInvitationDecision
from app.services.review_service import ReviewService

router = APIRouter(prefix="/reviews", tags=["Reviews"])


def get_review_service() -> ReviewService:
    return ReviewService()


@router.post("/invite", status_code=201)
async def invite_reviewer(
    req: ReviewInviteRequest,
    background_tasks: BackgroundTasks,
    profile: dict = Depends(require_action("review:invite")),
    service: ReviewService = Depends(get_review_service),
):
    invitation = service.invite_reviewer(
        article_id=str(req.article_id),
        reviewer_id=str(req.reviewer_id),
        invited_by=profile,
        background_tasks=background_tasks,
    )
    # 中文注释: token 只通过邮件下发
    invitation = {k: v for k, v in invitation.items() if k != "invitation_token"}
    return {"success": True, "data": invitation}


@router.post("/invitations/token/{action}")
async def respond_with_token(
    action: str,
    req: TokenInvitationDecision,
    background_tasks: BackgroundTasks,
    service: ReviewService = Depends(get_review_service),
):
    """
    邮件链接答复（无需登录，凭签名 token）
    """
    updated = service.respond_with_token(
        token=req.token,
        action=action,
        decline_reason=req.decline_reason,
        alternative_reviewers=req.alternative_reviewers,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": updated}


@router.get("/invitations/{invitation_id}")
async def get_invitation(
    invitation_id: str,
    profile: dict = Depends(get_current_profile),
    service: ReviewService = Depends(get_review_service),
):
    return {"success": True, "data": service.get_invitation(invitation_id, profile)}


@router.post("/invitations/{invitation_id}/{action}")
async def respond_to_invitation(
    invitation_id: str,
    action: str,
    background_tasks: BackgroundTasks,
    req: Optional[InvitationDecision] = None,
    profile: dict = Depends(require_action("review:respond_invitation")),
    service: ReviewService = Depends(get_review_service),
):
    req = req or InvitationDecision()
    updated = service.respond_to_invitation(
        invitation_id=invitation_id,
        action=action,
        reviewer=profile,
        decline_reason=req.decline_reason,
        alternative_reviewers=req.alternative_reviewers,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": updated}


@router.post("/{review_id}/submit")
async def submit_review(
    review_id: str,
    req: ReviewSubmission,
    background_tasks: BackgroundTasks,
    profile: dict = Depends(require_action("review:submit")),
    service: ReviewService = Depends(get_review_service),
):
    result = service.submit_review(
        review_id=review_id,
        reviewer=profile,
        recommendation=req.recommendation.value,
        comments=req.comments,
        confidential_comments=req.confidential_comments,
        rating=req.rating,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": result}

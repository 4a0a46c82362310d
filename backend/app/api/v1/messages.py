from typing import Optional

from fastapi import APIRouter, Depends

from app.core.roles import get_current_profile, require_action
from app.schemas.message import ConversationCreate, MarkReadRequest, MessageCreate
from app.services.messaging_service import MessagingService

router = APIRouter(prefix="/messages", tags=["Messages"])


def get_messaging_service() -> MessagingService:
    return MessagingService()


@router.get("/conversations")
async def list_conversations(
    profile: dict = Depends(get_current_profile),
    service: MessagingService = Depends(get_messaging_service),
):
    return {"success": True, "data": service.list_conversations(user_id=str(profile["id"]))}


@router.post("/conversations", status_code=201)
async def create_conversation(
    req: ConversationCreate,
    profile: dict = Depends(require_action("message:send")),
    service: MessagingService = Depends(get_messaging_service),
):
    conversation = service.create_conversation(creator_id=str(profile["id"]), payload=req)
    return {"success": True, "data": conversation}


@router.get("/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: str,
    profile: dict = Depends(get_current_profile),
    service: MessagingService = Depends(get_messaging_service),
):
    rows = service.list_messages(conversation_id=conversation_id, user_id=str(profile["id"]))
    return {"success": True, "data": rows}


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def post_message(
    conversation_id: str,
    req: MessageCreate,
    profile: dict = Depends(require_action("message:send")),
    service: MessagingService = Depends(get_messaging_service),
):
    message = service.post_message(
        conversation_id=conversation_id,
        sender_id=str(profile["id"]),
        content=req.content,
    )
    return {"success": True, "data": message}


@router.post("/conversations/{conversation_id}/read")
async def mark_conversation_read(
    conversation_id: str,
    req: Optional[MarkReadRequest] = None,
    profile: dict = Depends(get_current_profile),
    service: MessagingService = Depends(get_messaging_service),
):
    ids = [str(m) for m in (req.message_ids or [])] if req else None
    marked = service.mark_read(conversation_id=conversation_id, user_id=str(profile["id"]), message_ids=ids or None)
    return {"success": True, "data": {"marked": marked}}

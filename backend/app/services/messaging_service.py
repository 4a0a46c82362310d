from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import HTTPException

from app.lib.api_client import supabase_admin
from app.schemas.message import ConversationCreate
from app.services.notification_service import NotificationService

logger = logging.getLogger("journaldesk.messages")


class MessagingService:
    """
    站内消息：会话按参与者 id 列表授权，创建者总是参与者之一。
    """

    def __init__(self, client: Any = None, *, notifications: NotificationService | None = None) -> None:
        self.client = client or supabase_admin
        self.notifications = notifications or NotificationService(self.client)

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def create_conversation(self, *, creator_id: str, payload: ConversationCreate) -> dict[str, Any]:
        participants = list(dict.fromkeys([str(creator_id), *[str(p) for p in payload.participant_ids]]))
        now = self._now()
        resp = (
            self.client.table("conversations")
            .insert(
                {
                    "subject": payload.subject,
                    "type": payload.type,
                    "related_id": str(payload.related_id) if payload.related_id else None,
                    "participant_ids": participants,
                    "created_by": str(creator_id),
                    "last_activity": now,
                    "created_at": now,
                }
            )
            .execute()
        )
        conversation = (getattr(resp, "data", None) or [{}])[0]
        if payload.content:
            self.post_message(
                conversation_id=str(conversation.get("id")),
                sender_id=str(creator_id),
                content=payload.content,
            )
        return conversation

    def list_conversations(self, *, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        resp = (
            self.client.table("conversations")
            .select("*")
            .contains("participant_ids", [str(user_id)])
            .order("last_activity", desc=True)
            .limit(limit)
            .execute()
        )
        return getattr(resp, "data", None) or []

    def get_conversation(self, *, conversation_id: str, user_id: str) -> dict[str, Any]:
        resp = self.client.table("conversations").select("*").eq("id", str(conversation_id)).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise HTTPException(status_code=404, detail="Conversation not found")
        conversation = rows[0]
        if str(user_id) not in {str(p) for p in (conversation.get("participant_ids") or [])}:
            raise HTTPException(status_code=403, detail="Not a participant of this conversation")
        return conversation

    def list_messages(self, *, conversation_id: str, user_id: str, limit: int = 200) -> list[dict[str, Any]]:
        self.get_conversation(conversation_id=conversation_id, user_id=user_id)
        resp = (
            self.client.table("messages")
            .select("*")
            .eq("conversation_id", str(conversation_id))
            .order("created_at", desc=False)
            .limit(limit)
            .execute()
        )
        return getattr(resp, "data", None) or []

    def post_message(self, *, conversation_id: str, sender_id: str, content: str) -> dict[str, Any]:
        conversation = self.get_conversation(conversation_id=conversation_id, user_id=sender_id)
        now = self._now()
        resp = (
            self.client.table("messages")
            .insert(
                {
                    "conversation_id": str(conversation_id),
                    "sender_id": str(sender_id),
                    "content": content,
                    "read_by": [str(sender_id)],
                    "created_at": now,
                }
            )
            .execute()
        )
        message = (getattr(resp, "data", None) or [{}])[0]

        try:
            self.client.table("conversations").update({"last_activity": now}).eq(
                "id", str(conversation_id)
            ).execute()
        except Exception as e:
            logger.warning("Failed to bump last_activity for %s: %s", conversation_id, e)

        for participant in conversation.get("participant_ids") or []:
            if str(participant) == str(sender_id):
                continue
            self.notifications.create_notification(
                user_id=str(participant),
                article_id=None,
                type="message",
                title="New message",
                content=f'New message in "{conversation.get("subject") or "conversation"}"',
            )
        return message

    def mark_read(self, *, conversation_id: str, user_id: str, message_ids: Optional[list[str]] = None) -> int:
        messages = self.list_messages(conversation_id=conversation_id, user_id=user_id)
        wanted = {str(m) for m in message_ids} if message_ids else None
        marked = 0
        for msg in messages:
            if wanted is not None and str(msg.get("id")) not in wanted:
                continue
            read_by = [str(r) for r in (msg.get("read_by") or [])]
            if str(user_id) in read_by:
                continue
            self.client.table("messages").update({"read_by": [*read_by, str(user_id)]}).eq(
                "id", msg["id"]
            ).execute()
            marked += 1
        return marked

"""Chat endpoints; a conversation is addressed by the other participant's id."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from nearu.api.deps import get_services
from nearu.api.schemas import MessagePayload
from nearu.domain.chat.service import ChatLocked
from nearu.infra.auth import AuthenticatedUser, get_current_user
from nearu.services import Services

router = APIRouter()


@router.get("/chats")
async def list_conversations(
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return {"items": await services.chat.conversations(auth_user.id)}


@router.post("/chats/{other_user_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    other_user_id: str,
    payload: MessagePayload,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    message = await services.chat.send_message(auth_user.id, other_user_id, payload.text)
    return message.to_dict()


@router.get("/chats/{other_user_id}/messages")
async def list_messages(
    other_user_id: str,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    if not await services.chat.can_chat(auth_user.id, other_user_id):
        raise ChatLocked()
    messages = await services.chat.list_messages(auth_user.id, other_user_id)
    return {"items": [message.to_dict() for message in messages]}


@router.get("/notifications")
async def list_notifications(
    unread: bool = Query(default=False),
    auth_user: AuthenticatedUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    items = await services.chat.notifications(auth_user.id, unread_only=unread)
    return {"items": items}

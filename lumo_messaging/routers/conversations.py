# lumo_messaging/routers/conversations.py
from fastapi import APIRouter, Depends, Request
from typing import List
import logging

from ..middleware.rate_limit import OPEN_CONVERSATION_LIMIT, limiter
from ..schemas.conversation import ConversationCreate, ConversationOut, UnreadCountOut
from ..schemas.user import UserProfile
from ..security import get_current_user
from ..service import MessagingService, get_messaging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ConversationOut)
@limiter.limit(OPEN_CONVERSATION_LIMIT)
async def find_or_create_conversation(
    request: Request,
    payload: ConversationCreate,
    messaging: MessagingService = Depends(get_messaging),
    current: UserProfile = Depends(get_current_user),
):
    """Devuelve la conversación activa con el otro usuario o crea una nueva."""
    conversation_id = await messaging.directory.find_or_create(
        current.id,
        payload.other_user_id,
        related_item_id=payload.related_item_id,
        related_item_type=payload.related_item_type,
    )
    return await messaging.directory.get(conversation_id, current.id)


@router.get("", response_model=List[ConversationOut])
async def list_conversations(
    messaging: MessagingService = Depends(get_messaging),
    current: UserProfile = Depends(get_current_user),
):
    return await messaging.directory.list_for_user(current.id)


@router.get("/unread-count", response_model=UnreadCountOut)
async def unread_count(
    messaging: MessagingService = Depends(get_messaging),
    current: UserProfile = Depends(get_current_user),
):
    return {"total": await messaging.coordinator.total_unread(current.id)}


@router.get("/{conversation_id}", response_model=ConversationOut)
async def get_conversation(
    conversation_id: str,
    messaging: MessagingService = Depends(get_messaging),
    current: UserProfile = Depends(get_current_user),
):
    return await messaging.directory.get(conversation_id, current.id)


@router.post("/{conversation_id}/archive", response_model=ConversationOut)
async def archive_conversation(
    conversation_id: str,
    messaging: MessagingService = Depends(get_messaging),
    current: UserProfile = Depends(get_current_user),
):
    return await messaging.directory.archive(conversation_id, current.id)


@router.post("/{conversation_id}/read")
async def mark_conversation_read(
    conversation_id: str,
    messaging: MessagingService = Depends(get_messaging),
    current: UserProfile = Depends(get_current_user),
):
    updated = await messaging.coordinator.mark_read(conversation_id, current.id)
    return {"conversation_id": conversation_id, "updated": updated}

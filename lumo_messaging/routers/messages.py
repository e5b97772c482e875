# lumo_messaging/routers/messages.py
# Mensajes y adjuntos de una conversación (montado bajo /conversations)
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from typing import List, Optional
import logging

from ..middleware.rate_limit import SEND_LIMIT, limiter
from ..schemas.message import AttachmentOut, MessageCreate, MessageOut, MessageType
from ..schemas.user import UserProfile
from ..security import get_current_user
from ..service import MessagingService, get_messaging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{conversation_id}/messages", response_model=List[MessageOut])
async def list_messages(
    conversation_id: str,
    messaging: MessagingService = Depends(get_messaging),
    current: UserProfile = Depends(get_current_user),
):
    return await messaging.coordinator.list_messages(conversation_id, current.id)


@router.post("/{conversation_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
@limiter.limit(SEND_LIMIT)
async def send_message(
    request: Request,
    conversation_id: str,
    payload: MessageCreate,
    messaging: MessagingService = Depends(get_messaging),
    current: UserProfile = Depends(get_current_user),
):
    """El emisor es siempre el usuario del token; el receptor es el otro participante."""
    return await messaging.send_as(conversation_id, current.id, payload)


@router.post("/{conversation_id}/attachments", response_model=AttachmentOut, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    conversation_id: str,
    file: UploadFile = File(...),
    kind: MessageType = Form(MessageType.image),
    file_name: Optional[str] = Form(None),
    messaging: MessagingService = Depends(get_messaging),
    current: UserProfile = Depends(get_current_user),
):
    """Sube el fichero; el cliente envía después un mensaje con la URL devuelta."""
    await messaging.directory.get(conversation_id, current.id)
    payload = await file.read()
    return await messaging.uploader.upload(
        payload,
        file_name or file.filename,
        file.content_type,
        conversation_id,
        kind,
    )

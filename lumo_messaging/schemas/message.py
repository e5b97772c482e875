from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from enum import Enum
from typing import Optional

from .user import SenderDetails


class MessageType(str, Enum):
    text = "text"
    image = "image"
    document = "document"
    system = "system"


MEDIA_TYPES = {MessageType.image, MessageType.document}


class MessageInput(BaseModel):
    """Contenido de un mensaje nuevo. Se valida en el servidor, no solo en la app."""
    text: str = Field("", max_length=4000)
    message_type: MessageType = MessageType.text
    media_url: Optional[str] = Field(None, max_length=2048)
    file_name: Optional[str] = Field(None, max_length=255)
    file_size: Optional[int] = Field(None, ge=0)
    mime_type: Optional[str] = Field(None, max_length=127)

    @model_validator(mode="after")
    def validate_content(self):
        self.text = (self.text or "").strip()
        has_media = any(v is not None for v in (self.media_url, self.file_name, self.file_size, self.mime_type))
        if self.message_type in MEDIA_TYPES:
            if not self.media_url:
                raise ValueError(f"Los mensajes de tipo {self.message_type.value} requieren media_url")
        else:
            if not self.text:
                raise ValueError("El mensaje no puede estar vacío")
            if has_media:
                raise ValueError("Solo los mensajes image/document pueden llevar adjuntos")
        return self

    def display_text(self) -> str:
        """Texto guardado en el mensaje; los adjuntos sin texto llevan uno derivado."""
        if self.text:
            return self.text
        if self.message_type == MessageType.image:
            return "Sent an image"
        if self.file_name:
            return f"Sent {self.file_name}"
        return f"Sent {self.message_type.value}"


class MessageCreate(MessageInput):
    # opcional: si se envía debe coincidir con el otro participante
    receiver_id: Optional[str] = None


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    text: str
    message_type: MessageType
    media_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    is_read: bool = False
    created_at: datetime
    sender_details: SenderDetails


class AttachmentOut(BaseModel):
    url: str
    file_name: str
    file_size: int
    mime_type: str

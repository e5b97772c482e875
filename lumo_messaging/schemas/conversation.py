from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from .message import MessageType
from .user import ParticipantDetails, validate_user_id


class RelatedItemType(str, Enum):
    product = "product"
    service = "service"


class LastMessage(BaseModel):
    text: str = ""
    sender_id: str = ""
    timestamp: Optional[datetime] = None
    message_type: MessageType = MessageType.text


class ConversationCreate(BaseModel):
    other_user_id: str
    related_item_id: Optional[str] = Field(None, max_length=128)
    related_item_type: Optional[RelatedItemType] = None

    @field_validator("other_user_id")
    @classmethod
    def check_other(cls, v: str) -> str:
        return validate_user_id(v)

    @model_validator(mode="after")
    def related_item_pair(self):
        if (self.related_item_id is None) != (self.related_item_type is None):
            raise ValueError("related_item_id y related_item_type van juntos")
        return self


class ConversationOut(BaseModel):
    id: str
    participants: List[str]
    participant_details: Dict[str, ParticipantDetails] = {}
    related_item_id: Optional[str] = None
    related_item_type: Optional[RelatedItemType] = None
    last_message: LastMessage = LastMessage()
    unread_count: Dict[str, int] = {}
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    def other_participant(self, user_id: str) -> str:
        return next(p for p in self.participants if p != user_id)


class UnreadCountOut(BaseModel):
    total: int

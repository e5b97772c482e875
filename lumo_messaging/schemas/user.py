from pydantic import BaseModel, Field, field_validator
from typing import Optional
import re

# los ids se usan como claves de mapas (unread_count.<id>), sin puntos ni "$"
USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{1,128}$")


def validate_user_id(value: str) -> str:
    if not USER_ID_PATTERN.match(value or ""):
        raise ValueError("Id de usuario inválido (solo letras, números, '-' y '_')")
    return value


class UserProfile(BaseModel):
    """Perfil que expone el proveedor de identidad."""
    id: str
    name: str = Field(..., min_length=1, max_length=80)
    avatar_url: Optional[str] = None
    is_verified: bool = False

    @field_validator("id")
    @classmethod
    def check_id(cls, v: str) -> str:
        return validate_user_id(v)


class ProfileCreate(BaseModel):
    id: Optional[str] = Field(None, description="Si se omite se genera uno")
    name: str = Field(..., min_length=1, max_length=80)
    avatar_url: Optional[str] = None
    is_verified: bool = False

    @field_validator("id")
    @classmethod
    def check_id(cls, v: Optional[str]) -> Optional[str]:
        return validate_user_id(v) if v is not None else v


class ProfilePatch(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=80)
    avatar_url: Optional[str] = None
    is_verified: Optional[bool] = None


# Copias desnormalizadas que guardan conversaciones y mensajes
class ParticipantDetails(BaseModel):
    name: str
    avatar_url: Optional[str] = None
    is_verified: bool = False

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "ParticipantDetails":
        return cls(name=profile.name, avatar_url=profile.avatar_url, is_verified=profile.is_verified)


class SenderDetails(BaseModel):
    name: str
    avatar_url: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "SenderDetails":
        return cls(name=profile.name, avatar_url=profile.avatar_url)

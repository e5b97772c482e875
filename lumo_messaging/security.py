from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError

from .config import get_settings
from .schemas.user import UserProfile
from .service import MessagingService, get_messaging

settings = get_settings()
ALGO = "HS256"
# los tokens los emite el proveedor de identidad (o /dev/users en desarrollo)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/dev/users")


def create_access_token(user_id: str, expires_hours: Optional[int] = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=expires_hours or settings.jwt_expires_hours)
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGO)


def decode_user_id(token: str) -> Optional[str]:
    """Devuelve el ``sub`` del token o None si no es válido."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGO])
    except JWTError:
        return None
    sub = payload.get("sub")
    return str(sub) if sub else None


async def get_current_user_id(token: str = Depends(oauth2_scheme)) -> str:
    user_id = decode_user_id(token)
    if not user_id:
        raise HTTPException(status_code=401, detail="Token inválido")
    return user_id


async def get_current_user(
    messaging: MessagingService = Depends(get_messaging),
    user_id: str = Depends(get_current_user_id),
) -> UserProfile:
    profile = await messaging.identity.get_profile(user_id)
    if not profile:
        raise HTTPException(status_code=401, detail="Usuario no encontrado")
    return profile

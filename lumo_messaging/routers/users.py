# lumo_messaging/routers/users.py
from fastapi import APIRouter, Depends
import logging

from ..schemas.user import ProfilePatch, UserProfile
from ..security import get_current_user
from ..service import MessagingService, get_messaging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/me", response_model=UserProfile)
async def get_me(current: UserProfile = Depends(get_current_user)):
    return current


@router.patch("/me", response_model=UserProfile)
async def patch_me(
    body: ProfilePatch,
    messaging: MessagingService = Depends(get_messaging),
    current: UserProfile = Depends(get_current_user),
):
    """Actualiza el perfil y lo vuelve a copiar en las conversaciones del usuario."""
    if not body.model_dump(exclude_unset=True):
        return current
    profile = await messaging.identity.update_profile(current.id, body)
    refreshed = await messaging.directory.refresh_participant_details(current.id)
    logger.info(f"Perfil de {current.id} actualizado en {refreshed} conversaciones")
    return profile

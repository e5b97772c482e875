# lumo_messaging/routers/dev.py
# Endpoints de desarrollo: registrar perfiles, datos de prueba y limpieza
from fastapi import APIRouter, Depends, Query, status
from typing import Optional
import logging

from ..config import get_settings
from ..schemas.message import MessageInput
from ..schemas.user import ProfileCreate, UserProfile
from ..security import create_access_token
from ..service import MessagingService, get_messaging
from ..utils import new_id

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def register_user(payload: ProfileCreate, messaging: MessagingService = Depends(get_messaging)):
    """
    Registra (o actualiza) un perfil y devuelve un token para él.
    Sustituye al proveedor de identidad real en desarrollo.
    """
    profile = UserProfile(id=payload.id or new_id(), **payload.model_dump(exclude={"id"}))
    await messaging.identity.save_profile(profile)
    return {
        "user": profile.model_dump(),
        "access_token": create_access_token(profile.id),
        "token_type": "bearer",
    }


@router.post("/seed-data")
async def seed_data(messaging: MessagingService = Depends(get_messaging)):
    """
    Crea dos usuarios de prueba con una conversación y unos mensajes.
    Solo para desarrollo.
    """
    users = [
        UserProfile(id="demo-buyer", name="María García", is_verified=True),
        UserProfile(id="demo-seller", name="Juan Pérez"),
    ]
    for user in users:
        await messaging.identity.save_profile(user)

    buyer, seller = users
    conversation_id = await messaging.directory.find_or_create(buyer.id, seller.id)
    existing = await messaging.coordinator.load_messages(conversation_id)
    if not existing:
        await messaging.coordinator.send(
            conversation_id, buyer.id, seller.id, MessageInput(text="Hola, ¿sigue disponible?")
        )
        await messaging.coordinator.send(
            conversation_id, seller.id, buyer.id, MessageInput(text="¡Sí! ¿Cuándo te viene bien?")
        )

    return {
        "message": "Datos de prueba creados",
        "conversation_id": conversation_id,
        "tokens": {u.id: create_access_token(u.id) for u in users},
    }


@router.post("/cleanup")
async def cleanup(
    older_than_days: Optional[int] = Query(None, ge=0),
    messaging: MessagingService = Depends(get_messaging),
):
    """Borra conversaciones archivadas sin actividad desde hace ``older_than_days`` días."""
    days = settings.inactive_retention_days if older_than_days is None else older_than_days
    deleted = await messaging.directory.purge_inactive(days)
    return {"deleted": deleted, "older_than_days": days}

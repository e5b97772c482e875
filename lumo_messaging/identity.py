# lumo_messaging/identity.py
"""
Proveedor de identidad (colaborador externo).

El núcleo de mensajería solo necesita resolver un id de usuario a su perfil
(nombre, avatar y verificado) para desnormalizarlo en conversaciones y mensajes.
"""
from abc import ABC, abstractmethod
from typing import Optional

from .schemas.user import UserProfile, ProfilePatch
from .store.base import DocumentStore
from .errors import NotFound

USERS = "users"


class IdentityProvider(ABC):
    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        ...

    async def require_profile(self, user_id: str) -> UserProfile:
        profile = await self.get_profile(user_id)
        if profile is None:
            raise NotFound(f"Usuario {user_id} no encontrado")
        return profile


class StoreIdentityProvider(IdentityProvider):
    """Perfiles guardados en la colección ``users`` del mismo almacén."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        doc = await self.store.get(USERS, user_id)
        return UserProfile(**doc) if doc else None

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        doc = profile.model_dump(exclude={"id"})
        if await self.store.get(USERS, profile.id) is None:
            await self.store.insert(USERS, {"_id": profile.id, **doc})
        else:
            await self.store.batch().update(USERS, profile.id, set=doc).commit()
        return profile

    async def update_profile(self, user_id: str, patch: ProfilePatch) -> UserProfile:
        current = await self.require_profile(user_id)
        changes = patch.model_dump(exclude_unset=True)
        updated = current.model_copy(update=changes)
        return await self.save_profile(updated)

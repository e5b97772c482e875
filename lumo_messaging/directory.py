# lumo_messaging/directory.py
"""
Directorio de conversaciones: una conversación por par de usuarios.

La búsqueda recorre las conversaciones activas del usuario actual y se queda
con la primera que también incluye al otro usuario. Es un recorrido lineal
pensado para decenas o pocos cientos de conversaciones por usuario. La
creación está protegida por el índice único parcial sobre ``pair_key``: si dos
peticiones crean a la vez, la perdedora devuelve la conversación ganadora.
"""
from datetime import timedelta
from typing import List, Optional
import logging

from .errors import DuplicateDocument, InvalidRequest, NotFound, Unauthorized
from .feed import Publisher, noop_publish, user_topic
from .identity import IdentityProvider
from .schemas.conversation import ConversationOut, LastMessage, RelatedItemType
from .schemas.user import ParticipantDetails
from .store.base import DESCENDING, SERVER_TIMESTAMP, DocumentStore
from .utils import new_id, pair_key

logger = logging.getLogger(__name__)

CONVERSATIONS = "conversations"
MESSAGES = "messages"


class ConversationDirectory:
    def __init__(self, store: DocumentStore, identity: IdentityProvider, publish: Publisher = noop_publish):
        self.store = store
        self.identity = identity
        self.publish = publish

    async def _scan_for_pair(self, current_user_id: str, other_user_id: str) -> Optional[str]:
        docs = await self.store.find(CONVERSATIONS, {"participants": current_user_id, "is_active": True})
        for doc in docs:
            if other_user_id in doc.get("participants", []):
                return doc["id"]
        return None

    async def find_or_create(
        self,
        current_user_id: str,
        other_user_id: str,
        related_item_id: Optional[str] = None,
        related_item_type: Optional[RelatedItemType] = None,
    ) -> str:
        if current_user_id == other_user_id:
            raise InvalidRequest("No puedes abrir una conversación contigo mismo")

        existing = await self._scan_for_pair(current_user_id, other_user_id)
        if existing:
            return existing

        current = await self.identity.require_profile(current_user_id)
        other = await self.identity.require_profile(other_user_id)

        conversation_id = new_id()
        doc = {
            "_id": conversation_id,
            "participants": [current_user_id, other_user_id],
            "pair_key": pair_key(current_user_id, other_user_id),
            "participant_details": {
                current_user_id: ParticipantDetails.from_profile(current).model_dump(),
                other_user_id: ParticipantDetails.from_profile(other).model_dump(),
            },
            "related_item_id": related_item_id,
            "related_item_type": related_item_type.value if related_item_type else None,
            "last_message": LastMessage().model_dump(mode="json"),
            "unread_count": {current_user_id: 0, other_user_id: 0},
            "is_active": True,
            "created_at": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
        }
        try:
            await self.store.insert(CONVERSATIONS, doc)
        except DuplicateDocument:
            # otra petición creó la conversación del par entre el scan y el insert
            winner = await self._scan_for_pair(current_user_id, other_user_id)
            if winner is None:
                raise
            logger.info(f"Creación concurrente para {pair_key(current_user_id, other_user_id)}; se usa {winner}")
            return winner

        logger.info(f"Conversación {conversation_id} creada entre {current_user_id} y {other_user_id}")
        await self.publish(user_topic(current_user_id), user_topic(other_user_id))
        return conversation_id

    async def load(self, conversation_id: str) -> ConversationOut:
        doc = await self.store.get(CONVERSATIONS, conversation_id)
        if not doc:
            raise NotFound("Conversación no encontrada")
        return ConversationOut(**doc)

    async def get(self, conversation_id: str, user_id: str) -> ConversationOut:
        conversation = await self.load(conversation_id)
        if user_id not in conversation.participants:
            raise Unauthorized("No participas en esta conversación")
        return conversation

    async def list_for_user(self, user_id: str) -> List[ConversationOut]:
        docs = await self.store.find(
            CONVERSATIONS,
            {"participants": user_id},
            sort=[("updated_at", DESCENDING)],
        )
        return [ConversationOut(**d) for d in docs]

    async def archive(self, conversation_id: str, user_id: str) -> ConversationOut:
        conversation = await self.get(conversation_id, user_id)
        if conversation.is_active:
            await self.store.batch().update(
                CONVERSATIONS, conversation_id, set={"is_active": False, "updated_at": SERVER_TIMESTAMP}
            ).commit()
            await self.publish(*[user_topic(p) for p in conversation.participants])
            logger.info(f"Conversación {conversation_id} archivada por {user_id}")
        return await self.load(conversation_id)

    async def refresh_participant_details(self, user_id: str) -> int:
        """Vuelve a copiar el perfil del usuario en todas sus conversaciones."""
        profile = await self.identity.require_profile(user_id)
        details = ParticipantDetails.from_profile(profile).model_dump()
        docs = await self.store.find(CONVERSATIONS, {"participants": user_id})
        if not docs:
            return 0
        batch = self.store.batch()
        for doc in docs:
            batch.update(CONVERSATIONS, doc["id"], set={f"participant_details.{user_id}": details})
        await batch.commit()

        topics = {user_topic(p) for d in docs for p in d["participants"]}
        await self.publish(*sorted(topics))
        return len(docs)

    async def purge_inactive(self, older_than_days: int) -> int:
        """Borra conversaciones archivadas sin actividad y sus mensajes."""
        cutoff = self.store.clock.now() - timedelta(days=older_than_days)
        docs = await self.store.find(CONVERSATIONS, {"is_active": False, "updated_at": {"$lt": cutoff}})
        if not docs:
            return 0
        batch = self.store.batch()
        for doc in docs:
            batch.delete_many(MESSAGES, {"conversation_id": doc["id"]})
            batch.delete(CONVERSATIONS, doc["id"])
        await batch.commit()
        logger.info(f"Limpieza: {len(docs)} conversaciones inactivas eliminadas")
        return len(docs)

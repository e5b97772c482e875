# lumo_messaging/coordinator.py
"""
Entrega de mensajes y estado de lectura.

Invariante: ``unread_count[u]`` es el número de mensajes de la conversación
dirigidos a ``u`` con ``is_read=False``. Solo cambia dentro de los lotes de
``send`` (incremento atómico) y ``mark_read`` (puesta a cero junto con el
marcado de los mensajes), nunca con lectura-modificación-escritura.
"""
from typing import List
import logging

from .directory import CONVERSATIONS, MESSAGES, ConversationDirectory
from .errors import InvalidRequest, Unauthorized
from .feed import Publisher, conversation_topic, noop_publish, user_topic
from .identity import IdentityProvider
from .schemas.conversation import ConversationOut
from .schemas.message import MEDIA_TYPES, MessageInput, MessageOut
from .schemas.user import SenderDetails
from .store.base import ASCENDING, SERVER_TIMESTAMP, DocumentStore
from .utils import new_id

logger = logging.getLogger(__name__)


class DeliveryCoordinator:
    def __init__(
        self,
        store: DocumentStore,
        directory: ConversationDirectory,
        identity: IdentityProvider,
        publish: Publisher = noop_publish,
    ):
        self.store = store
        self.directory = directory
        self.identity = identity
        self.publish = publish

    def _check_parties(self, conversation: ConversationOut, sender_id: str, receiver_id: str) -> None:
        if sender_id == receiver_id:
            raise Unauthorized("Emisor y receptor deben ser distintos")
        if sender_id not in conversation.participants or receiver_id not in conversation.participants:
            raise Unauthorized("Emisor y receptor deben ser los participantes de la conversación")

    async def send(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        message_input: MessageInput,
    ) -> MessageOut:
        conversation = await self.directory.load(conversation_id)
        self._check_parties(conversation, sender_id, receiver_id)
        if not conversation.is_active:
            raise InvalidRequest("La conversación está archivada")

        sender = await self.identity.require_profile(sender_id)
        media = message_input.message_type in MEDIA_TYPES

        message_id = new_id()
        text = message_input.display_text()
        doc = {
            "_id": message_id,
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "text": text,
            "message_type": message_input.message_type.value,
            "media_url": message_input.media_url if media else None,
            "file_name": message_input.file_name if media else None,
            "file_size": message_input.file_size if media else None,
            "mime_type": message_input.mime_type if media else None,
            "is_read": False,
            "created_at": SERVER_TIMESTAMP,
            "sender_details": SenderDetails.from_profile(sender).model_dump(),
        }

        batch = self.store.batch()
        batch.insert(MESSAGES, doc)
        batch.update(
            CONVERSATIONS,
            conversation_id,
            set={
                "last_message": {
                    "text": text,
                    "sender_id": sender_id,
                    "timestamp": SERVER_TIMESTAMP,
                    "message_type": message_input.message_type.value,
                },
                "updated_at": SERVER_TIMESTAMP,
            },
            inc={f"unread_count.{receiver_id}": 1},
        )
        try:
            created_at = await batch.commit()
        except Exception as e:
            logger.error(f"Error enviando mensaje en {conversation_id}: {e}")
            raise

        logger.info(f"Mensaje {message_id} enviado en {conversation_id} ({message_input.message_type.value})")
        await self.publish(conversation_topic(conversation_id), user_topic(sender_id), user_topic(receiver_id))
        out = dict(doc)
        out["id"] = out.pop("_id")
        out["created_at"] = created_at
        return MessageOut(**out)

    async def mark_read(self, conversation_id: str, user_id: str) -> int:
        """
        Pone a cero el contador del usuario y marca como leídos sus mensajes pendientes.

        Devuelve cuántos mensajes cambiaron. Si no hay nada pendiente no escribe
        ni notifica, así que llamarlo dos veces seguidas no tiene efecto.
        """
        conversation = await self.directory.get(conversation_id, user_id)
        unread_filter = {"conversation_id": conversation_id, "receiver_id": user_id, "is_read": False}
        pending = await self.store.find(MESSAGES, unread_filter)
        if not pending and conversation.unread_count.get(user_id, 0) == 0:
            return 0

        batch = self.store.batch()
        batch.update(CONVERSATIONS, conversation_id, set={f"unread_count.{user_id}": 0})
        batch.update_many(MESSAGES, unread_filter, set={"is_read": True})
        await batch.commit()

        logger.debug(f"{len(pending)} mensajes marcados como leídos en {conversation_id} por {user_id}")
        await self.publish(conversation_topic(conversation_id), *[user_topic(p) for p in conversation.participants])
        return len(pending)

    async def list_messages(self, conversation_id: str, user_id: str) -> List[MessageOut]:
        await self.directory.get(conversation_id, user_id)
        return await self.load_messages(conversation_id)

    async def load_messages(self, conversation_id: str) -> List[MessageOut]:
        docs = await self.store.find(
            MESSAGES,
            {"conversation_id": conversation_id},
            sort=[("created_at", ASCENDING), ("_id", ASCENDING)],
        )
        return [MessageOut(**d) for d in docs]

    async def total_unread(self, user_id: str) -> int:
        conversations = await self.directory.list_for_user(user_id)
        return sum(c.unread_count.get(user_id, 0) for c in conversations)

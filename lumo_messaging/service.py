# lumo_messaging/service.py
"""
Ensambla el servicio de mensajería sobre un almacén y expone las consultas en vivo.
"""
from typing import Callable, List, Optional
import inspect
import logging

from .config import get_settings
from .coordinator import DeliveryCoordinator
from .db import get_store
from .directory import ConversationDirectory
from .errors import InvalidRequest, Unauthorized
from .feed import ErrorCallback, Subscription, SubscriptionFeed, conversation_topic, user_topic
from .identity import StoreIdentityProvider
from .schemas.conversation import ConversationOut
from .schemas.message import MessageCreate, MessageInput, MessageOut, MessageType
from .store.base import DocumentStore
from .uploader import AttachmentUploader, BlobStore, LocalBlobStore

logger = logging.getLogger(__name__)

settings = get_settings()


class MessagingService:
    def __init__(self, store: DocumentStore, blob_store: Optional[BlobStore] = None):
        self.store = store
        self.identity = StoreIdentityProvider(store)
        self.feed = SubscriptionFeed()
        self.directory = ConversationDirectory(store, self.identity, publish=self.feed.publish)
        self.coordinator = DeliveryCoordinator(store, self.directory, self.identity, publish=self.feed.publish)
        self.uploader = AttachmentUploader(
            blob_store or LocalBlobStore(settings.media_dir, settings.media_base_url),
            max_bytes=settings.max_upload_mb * 1024 * 1024,
        )

    async def send_as(self, conversation_id: str, sender_id: str, payload: MessageCreate) -> MessageOut:
        """
        Envío desde un cliente: el emisor es el usuario autenticado y el receptor
        el otro participante. Los mensajes de sistema no se aceptan del cliente.
        """
        if payload.message_type == MessageType.system:
            raise InvalidRequest("Los mensajes de sistema no se envían desde el cliente")
        conversation = await self.directory.get(conversation_id, sender_id)
        receiver_id = conversation.other_participant(sender_id)
        if payload.receiver_id is not None and payload.receiver_id != receiver_id:
            raise Unauthorized("El receptor no es el otro participante")
        message_input = MessageInput(**payload.model_dump(exclude={"receiver_id"}))
        return await self.coordinator.send(conversation_id, sender_id, receiver_id, message_input)

    # --------- consultas en vivo ---------

    async def subscribe_conversations(
        self,
        user_id: str,
        callback: Callable[[List[ConversationOut]], object],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Lista de conversaciones del usuario, más reciente primero."""
        return await self.feed.subscribe(
            user_topic(user_id),
            lambda: self.directory.list_for_user(user_id),
            callback,
            on_error,
        )

    async def subscribe_messages(
        self,
        conversation_id: str,
        user_id: str,
        callback: Callable[[List[MessageOut]], object],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Mensajes de la conversación en orden cronológico. Solo para participantes."""
        await self.directory.get(conversation_id, user_id)
        return await self.feed.subscribe(
            conversation_topic(conversation_id),
            lambda: self.coordinator.load_messages(conversation_id),
            callback,
            on_error,
        )

    async def subscribe_total_unread(
        self,
        user_id: str,
        callback: Callable[[int], object],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        return await self.feed.subscribe(
            user_topic(user_id),
            lambda: self.coordinator.total_unread(user_id),
            callback,
            on_error,
        )

    async def open_conversation(
        self,
        conversation_id: str,
        user_id: str,
        callback: Callable[[List[MessageOut]], object],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Vista de conversación con lectura al ver: tras cada snapshot entregado
        se marcan como leídos los mensajes pendientes del usuario. Como
        ``mark_read`` no notifica si no hay nada pendiente, el ciclo termina.
        """
        async def deliver(messages: List[MessageOut]) -> None:
            result = callback(messages)
            if inspect.isawaitable(result):
                await result
            if any(m.receiver_id == user_id and not m.is_read for m in messages):
                await self.coordinator.mark_read(conversation_id, user_id)

        return await self.subscribe_messages(conversation_id, user_id, deliver, on_error)

    async def close(self) -> None:
        await self.feed.close()


_service: MessagingService | None = None


async def get_messaging() -> MessagingService:
    """Dependencia de FastAPI; los tests la sustituyen con dependency_overrides."""
    global _service
    if _service is None:
        _service = MessagingService(await get_store())
    return _service


async def close_messaging() -> None:
    global _service
    if _service is not None:
        await _service.close()
        _service = None

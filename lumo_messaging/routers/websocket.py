# lumo_messaging/routers/websocket.py
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError
from typing import Any, Dict, Optional
import asyncio
import json
import logging

from ..errors import InvalidRequest, MessagingError
from ..feed import Subscription
from ..schemas.message import MessageCreate
from ..security import decode_user_id
from ..service import MessagingService, get_messaging
from ..utils import new_id

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionSession:
    """
    Estado de una conexión: sus suscripciones abiertas y un lock de envío
    para que los snapshots de varias suscripciones no se mezclen en el socket.
    """

    def __init__(self, websocket: WebSocket, user_id: str, messaging: MessagingService):
        self.websocket = websocket
        self.user_id = user_id
        self.messaging = messaging
        self.subscriptions: Dict[str, Subscription] = {}
        self._send_lock = asyncio.Lock()

    async def send(self, frame: Dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_json(jsonable_encoder(frame))

    async def send_error(self, code: str, message: str, retryable: bool = False, **extra) -> None:
        await self.send({"type": "error", "code": code, "message": message, "retryable": retryable, **extra})

    def _error_handler(self, subscription_id: str):
        async def on_error(exc: Exception) -> None:
            if isinstance(exc, MessagingError):
                await self.send_error(exc.code, exc.detail, exc.retryable, subscription_id=subscription_id)
            else:
                await self.send_error("internal_error", "Error actualizando la suscripción", subscription_id=subscription_id)
        return on_error

    async def subscribe(self, data: Dict[str, Any]) -> None:
        kind = data.get("type")
        subscription_id = new_id()
        on_error = self._error_handler(subscription_id)

        if kind == "subscribe_conversations":
            async def push_conversations(conversations):
                await self.send({"type": "conversations", "subscription_id": subscription_id, "conversations": conversations})
            sub = await self.messaging.subscribe_conversations(self.user_id, push_conversations, on_error)
            extra: Dict[str, Any] = {}

        elif kind == "subscribe_unread":
            async def push_unread(total):
                await self.send({"type": "unread_count", "subscription_id": subscription_id, "total": total})
            sub = await self.messaging.subscribe_total_unread(self.user_id, push_unread, on_error)
            extra = {}

        else:
            conversation_id = data.get("conversation_id")
            if not conversation_id:
                raise InvalidRequest("Falta conversation_id")

            async def push_messages(messages):
                await self.send({
                    "type": "messages",
                    "subscription_id": subscription_id,
                    "conversation_id": conversation_id,
                    "messages": messages,
                })
            # lectura al ver salvo que el cliente pida mark_read=false
            if data.get("mark_read", True):
                sub = await self.messaging.open_conversation(conversation_id, self.user_id, push_messages, on_error)
            else:
                sub = await self.messaging.subscribe_messages(conversation_id, self.user_id, push_messages, on_error)
            extra = {"conversation_id": conversation_id}

        # el primer snapshot ya se envió dentro de subscribe: llega antes que "subscribed"
        self.subscriptions[subscription_id] = sub
        await self.send({"type": "subscribed", "subscription_id": subscription_id, "topic": sub.topic, **extra})

    async def unsubscribe(self, subscription_id: Optional[str]) -> None:
        sub = self.subscriptions.pop(subscription_id or "", None)
        if sub is None:
            raise InvalidRequest("Suscripción desconocida")
        await sub.cancel()
        await self.send({"type": "unsubscribed", "subscription_id": subscription_id})

    async def handle(self, data: Dict[str, Any]) -> None:
        message_type = data.get("type")

        if message_type in ("subscribe_conversations", "subscribe_messages", "subscribe_unread"):
            await self.subscribe(data)

        elif message_type == "unsubscribe":
            await self.unsubscribe(data.get("subscription_id"))

        elif message_type == "send_message":
            conversation_id = data.get("conversation_id")
            if not conversation_id:
                raise InvalidRequest("Falta conversation_id")
            fields = {k: v for k, v in data.items() if k not in ("type", "conversation_id", "request_id")}
            payload = MessageCreate(**fields)
            message = await self.messaging.send_as(conversation_id, self.user_id, payload)
            await self.send({"type": "message_sent", "request_id": data.get("request_id"), "message": message})

        elif message_type == "mark_read":
            conversation_id = data.get("conversation_id")
            if not conversation_id:
                raise InvalidRequest("Falta conversation_id")
            updated = await self.messaging.coordinator.mark_read(conversation_id, self.user_id)
            await self.send({"type": "messages_read", "conversation_id": conversation_id, "updated": updated})

        elif message_type == "ping":
            await self.send({"type": "pong"})

        else:
            raise InvalidRequest(f"Tipo de mensaje desconocido: {message_type!r}")

    async def close(self) -> None:
        subs = list(self.subscriptions.values())
        self.subscriptions.clear()
        for sub in subs:
            await sub.cancel()


@router.websocket("/ws/{token}")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str,
    messaging: MessagingService = Depends(get_messaging),
):
    """
    Endpoint WebSocket para mensajería en tiempo real.
    El token se pasa como parámetro en la URL.
    """
    user_id = decode_user_id(token)
    if not user_id:
        await websocket.close(code=1008, reason="Invalid token")
        return

    if await messaging.identity.get_profile(user_id) is None:
        await websocket.close(code=1008, reason="Unknown user")
        return

    await websocket.accept()
    session = ConnectionSession(websocket, user_id, messaging)

    try:
        await session.send({"type": "connected", "message": "Conectado al chat", "user_id": user_id})

        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                data = None
            if not isinstance(data, dict):
                await session.send_error("invalid_request", "Se esperaba un objeto JSON")
                continue
            try:
                await session.handle(data)
            except MessagingError as e:
                await session.send_error(e.code, e.detail, e.retryable, request_type=data.get("type"))
            except ValidationError as e:
                await session.send_error("invalid_request", str(e), request_type=data.get("type"))

    except WebSocketDisconnect:
        logger.debug(f"WebSocket de {user_id} desconectado")
    except Exception as e:
        logger.error(f"Error en WebSocket: {e}", exc_info=True)
    finally:
        await session.close()


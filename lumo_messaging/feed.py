# lumo_messaging/feed.py
"""
Suscripciones en vivo con semántica de snapshot completo.

Cada suscripción escucha un topic (``user:<id>`` o ``conversation:<id>``).
Tras cada commit que afecta al topic, la suscripción vuelve a ejecutar su
consulta y entrega el resultado completo al callback. Por suscripción las
entregas nunca se solapan y siguen el orden de escritura; varias
notificaciones seguidas pueden agruparse en una sola entrega.
"""
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Optional, Set
import asyncio
import inspect
import logging

from .utils import new_id

logger = logging.getLogger(__name__)

Publisher = Callable[..., Awaitable[None]]
Loader = Callable[[], Awaitable[Any]]
Callback = Callable[[Any], Any]
ErrorCallback = Callable[[Exception], Any]


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_topic(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


async def noop_publish(*topics: str) -> None:
    return None


async def _call(fn: Callable[[Any], Any], arg: Any) -> None:
    result = fn(arg)
    if inspect.isawaitable(result):
        await result


class Subscription:
    def __init__(
        self,
        feed: "SubscriptionFeed",
        topic: str,
        loader: Loader,
        callback: Callback,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.id = new_id()
        self.topic = topic
        self._feed = feed
        self._loader = loader
        self._callback = callback
        self._on_error = on_error
        self._dirty = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    def notify(self) -> None:
        self._dirty.set()

    async def _deliver(self) -> None:
        snapshot = await self._loader()
        if self._cancelled:
            return
        await _call(self._callback, snapshot)

    async def _run(self) -> None:
        while not self._cancelled:
            await self._dirty.wait()
            self._dirty.clear()
            if self._cancelled:
                break
            try:
                await self._deliver()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Error refrescando suscripción {self.id} ({self.topic}): {e}")
                if self._on_error is not None and not self._cancelled:
                    try:
                        await _call(self._on_error, e)
                    except Exception:
                        logger.error(f"Error en on_error de la suscripción {self.id}", exc_info=True)

    async def cancel(self) -> None:
        """Cancela la suscripción. Al volver no se ejecuta ningún callback más."""
        if self._cancelled:
            return
        self._cancelled = True
        self._feed._remove(self)
        task = self._task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


class SubscriptionFeed:
    def __init__(self):
        self._topics: Dict[str, Set[Subscription]] = defaultdict(set)

    async def subscribe(
        self,
        topic: str,
        loader: Loader,
        callback: Callback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Registra la suscripción y entrega el primer snapshot antes de volver.
        Si esa primera carga falla, el error se propaga y no queda nada registrado.
        """
        sub = Subscription(self, topic, loader, callback, on_error)
        # se registra antes de cargar para no perder commits concurrentes
        self._topics[topic].add(sub)
        try:
            await sub._deliver()
        except BaseException:
            sub._cancelled = True
            self._remove(sub)
            raise
        sub._task = asyncio.create_task(sub._run())
        logger.debug(f"Suscripción {sub.id} abierta en {topic}")
        return sub

    async def publish(self, *topics: str) -> None:
        for topic in set(topics):
            for sub in list(self._topics.get(topic, ())):
                sub.notify()

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    def _remove(self, sub: Subscription) -> None:
        subs = self._topics.get(sub.topic)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._topics[sub.topic]

    async def close(self) -> None:
        subs = [s for subs in self._topics.values() for s in subs]
        for sub in subs:
            await sub.cancel()

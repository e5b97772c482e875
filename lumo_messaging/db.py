from motor.motor_asyncio import AsyncIOMotorClient
from .config import get_settings
from .store.base import DocumentStore, UniqueIndex
from .store.memory import InMemoryDocumentStore
from .store.mongo import MongoDocumentStore
import logging

logger = logging.getLogger(__name__)

_settings = get_settings()
_store: DocumentStore | None = None

# una sola conversación activa por par de usuarios
UNIQUE_INDEXES = [
    UniqueIndex("conversations", "pair_key", {"is_active": True}),
]


async def build_store(backend: str | None = None) -> DocumentStore:
    backend = (backend or _settings.store_backend).lower()
    if backend == "memory":
        logger.info("Usando almacén en memoria (los datos no persisten)")
        return InMemoryDocumentStore(timeout=_settings.store_timeout_seconds, unique_indexes=UNIQUE_INDEXES)
    if backend == "mongo":
        client = AsyncIOMotorClient(_settings.mongodb_uri, tz_aware=True)
        store = MongoDocumentStore(
            client,
            _settings.db_name,
            timeout=_settings.store_timeout_seconds,
            unique_indexes=UNIQUE_INDEXES,
        )
        await store.create_indexes()
        return store
    raise ValueError(f"STORE_BACKEND desconocido: {backend!r}")


async def get_store() -> DocumentStore:
    global _store
    if _store is None:
        _store = await build_store()
    return _store


async def close_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None

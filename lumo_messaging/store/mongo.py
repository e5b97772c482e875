# lumo_messaging/store/mongo.py
"""
Almacén sobre MongoDB con motor.

Los lotes se ejecutan dentro de una transacción multi-documento, por lo que
Mongo debe desplegarse como replica set (también vale uno de un solo nodo).
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo import ASCENDING as PY_ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..errors import DuplicateDocument, NotFound, TransientStoreFailure
from ..utils import to_id
from .base import DocumentStore, Sort, UniqueIndex, WriteBatch, WriteOp, resolve_timestamps

logger = logging.getLogger(__name__)


def _store_errors(what: str):
    """Traduce errores del driver al catálogo del servicio."""
    def decorator(fn):
        async def wrapper(self, *args, **kwargs):
            try:
                return await self.guarded(fn(self, *args, **kwargs), what)
            except DuplicateKeyError as e:
                raise DuplicateDocument(f"Documento duplicado: {e.details}")
            except PyMongoError as e:
                logger.error(f"Error de MongoDB en {what}: {e}", exc_info=True)
                raise TransientStoreFailure(f"Base de datos no disponible ({what})")
        wrapper.__name__ = fn.__name__
        wrapper.__doc__ = fn.__doc__
        return wrapper
    return decorator


class MongoWriteBatch(WriteBatch):
    def __init__(self, store: "MongoDocumentStore"):
        super().__init__()
        self._store = store

    async def commit(self) -> datetime:
        return await self._store._commit(self.ops)


class MongoDocumentStore(DocumentStore):
    def __init__(
        self,
        client: AsyncIOMotorClient,
        db_name: str,
        timeout: float = 10.0,
        unique_indexes: Optional[List[UniqueIndex]] = None,
    ):
        super().__init__(timeout=timeout, unique_indexes=unique_indexes)
        self.client = client
        self.db: AsyncIOMotorDatabase = client[db_name]

    @_store_errors("create_indexes")
    async def create_indexes(self) -> None:
        await self.db.conversations.create_index([("participants", 1), ("updated_at", -1)])
        await self.db.conversations.create_index([("is_active", 1), ("updated_at", 1)])
        await self.db.messages.create_index([("conversation_id", 1), ("created_at", 1)])
        await self.db.messages.create_index([("conversation_id", 1), ("receiver_id", 1), ("is_read", 1)])
        for index in self.unique_indexes:
            options: Dict[str, Any] = {"unique": True, "name": f"uniq_{index.key}"}
            if index.partial:
                options["partialFilterExpression"] = index.partial
            await self.db[index.collection].create_index([(index.key, PY_ASCENDING)], **options)

    @_store_errors("get")
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = await self.db[collection].find_one({"_id": doc_id})
        return to_id(doc) if doc else None

    @_store_errors("find")
    async def find(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        sort: Optional[Sort] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(filter or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return [to_id(doc) async for doc in cursor]

    async def insert(self, collection: str, doc: Dict[str, Any]) -> str:
        batch = self.batch().insert(collection, doc)
        await batch.commit()
        return batch.ops[0].doc_id

    def batch(self) -> MongoWriteBatch:
        return MongoWriteBatch(self)

    async def close(self) -> None:
        self.client.close()

    async def _apply_op(self, op: WriteOp, ts: datetime, session: AsyncIOMotorClientSession) -> None:
        coll = self.db[op.collection]
        if op.kind == "insert":
            await coll.insert_one(resolve_timestamps(op.doc, ts), session=session)
        elif op.kind == "update":
            update: Dict[str, Any] = {}
            if op.set:
                update["$set"] = resolve_timestamps(op.set, ts)
            if op.inc:
                update["$inc"] = dict(op.inc)
            res = await coll.update_one({"_id": op.doc_id}, update, session=session)
            if res.matched_count == 0:
                raise NotFound(f"Documento {op.collection}/{op.doc_id} no encontrado")
        elif op.kind == "update_many":
            await coll.update_many(op.filter, {"$set": resolve_timestamps(op.set, ts)}, session=session)
        elif op.kind == "delete":
            await coll.delete_one({"_id": op.doc_id}, session=session)
        elif op.kind == "delete_many":
            await coll.delete_many(op.filter, session=session)
        else:
            raise ValueError(f"Operación desconocida: {op.kind}")

    @_store_errors("commit")
    async def _commit(self, ops: List[WriteOp]) -> datetime:
        ts: Optional[datetime] = None

        # cada intento toma su propio timestamp: un reintento no adelanta a lo ya confirmado
        async def run(session: AsyncIOMotorClientSession):
            nonlocal ts
            ts = self.clock.now()
            for op in ops:
                await self._apply_op(op, ts, session)

        # with_transaction reintenta ante TransientTransactionError
        async with await self.client.start_session() as session:
            await session.with_transaction(run)
        return ts

# lumo_messaging/store/base.py
"""
Adaptador genérico de almacén de documentos.

Las operaciones de escritura que deben aplicarse juntas se agrupan en un
``WriteBatch``: o se aplican todas o ninguna. Los valores ``SERVER_TIMESTAMP``
se sustituyen en el commit por la hora del servidor, igual para todo el lote.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
import asyncio
import logging

from ..errors import TransientStoreFailure
from ..utils import new_id

logger = logging.getLogger(__name__)

ASCENDING = 1
DESCENDING = -1

Sort = List[Tuple[str, int]]


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    # centinela único, también tras copiar el documento
    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


SERVER_TIMESTAMP = _ServerTimestamp()


class ServerClock:
    """Reloj UTC con precisión de milisegundos y estrictamente creciente."""

    def __init__(self):
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        ts = datetime.now(timezone.utc)
        ts = ts.replace(microsecond=(ts.microsecond // 1000) * 1000)
        if self._last is not None and ts <= self._last:
            ts = self._last + timedelta(milliseconds=1)
        self._last = ts
        return ts


def resolve_timestamps(value: Any, ts: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return ts
    if isinstance(value, dict):
        return {k: resolve_timestamps(v, ts) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_timestamps(v, ts) for v in value]
    return value


@dataclass
class WriteOp:
    kind: str  # insert | update | update_many | delete | delete_many
    collection: str
    doc_id: Optional[str] = None
    doc: Dict[str, Any] = field(default_factory=dict)
    filter: Dict[str, Any] = field(default_factory=dict)
    set: Dict[str, Any] = field(default_factory=dict)
    inc: Dict[str, int] = field(default_factory=dict)


class WriteBatch(ABC):
    """Lote de escrituras atómico. Las claves con puntos apuntan a subcampos."""

    def __init__(self):
        self.ops: List[WriteOp] = []

    def insert(self, collection: str, doc: Dict[str, Any]) -> "WriteBatch":
        doc = dict(doc)
        doc.setdefault("_id", new_id())
        self.ops.append(WriteOp("insert", collection, doc_id=doc["_id"], doc=doc))
        return self

    def update(
        self,
        collection: str,
        doc_id: str,
        set: Optional[Dict[str, Any]] = None,
        inc: Optional[Dict[str, int]] = None,
    ) -> "WriteBatch":
        self.ops.append(WriteOp("update", collection, doc_id=doc_id, set=dict(set or {}), inc=dict(inc or {})))
        return self

    def update_many(self, collection: str, filter: Dict[str, Any], set: Dict[str, Any]) -> "WriteBatch":
        self.ops.append(WriteOp("update_many", collection, filter=dict(filter), set=dict(set)))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self.ops.append(WriteOp("delete", collection, doc_id=doc_id))
        return self

    def delete_many(self, collection: str, filter: Dict[str, Any]) -> "WriteBatch":
        self.ops.append(WriteOp("delete_many", collection, filter=dict(filter)))
        return self

    def __len__(self) -> int:
        return len(self.ops)

    @abstractmethod
    async def commit(self) -> datetime:
        """Aplica el lote completo y devuelve la marca de tiempo usada."""


@dataclass(frozen=True)
class UniqueIndex:
    """Índice único parcial: ``key`` no se repite entre documentos que cumplen ``partial``."""
    collection: str
    key: str
    partial: Dict[str, Any] = field(default_factory=dict)


class DocumentStore(ABC):
    def __init__(self, timeout: float = 10.0, unique_indexes: Optional[List[UniqueIndex]] = None):
        self.timeout = timeout
        self.unique_indexes = list(unique_indexes or [])
        self.clock = ServerClock()

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def find(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        sort: Optional[Sort] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def insert(self, collection: str, doc: Dict[str, Any]) -> str:
        """Inserta un documento; lanza DuplicateDocument si viola un índice único."""

    @abstractmethod
    def batch(self) -> WriteBatch:
        ...

    async def close(self) -> None:
        return None

    async def guarded(self, coro, what: str):
        """Ejecuta una operación con timeout; los fallos se convierten en TransientStoreFailure."""
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Timeout ({self.timeout}s) en operación de almacén: {what}")
            raise TransientStoreFailure(f"La base de datos no respondió a tiempo ({what})")

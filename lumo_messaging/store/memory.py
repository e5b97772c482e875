# lumo_messaging/store/memory.py
"""
Almacén en memoria con la misma semántica que el de Mongo.

Se usa con STORE_BACKEND=memory (desarrollo local y tests). Los lotes se
aplican sobre copias y solo se publican si todas las operaciones tuvieron
éxito, bajo un lock del event loop.
"""
from copy import deepcopy
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
import asyncio
import logging

from ..errors import DuplicateDocument, NotFound
from ..utils import to_id
from .base import DocumentStore, Sort, UniqueIndex, WriteBatch, WriteOp, resolve_timestamps

logger = logging.getLogger(__name__)

_MISSING = object()


def _get_path(doc: Dict[str, Any], path: str) -> Any:
    cur: Any = doc
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def _set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    cur = doc
    for part in parts[:-1]:
        nxt = cur.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[part] = nxt
        cur = nxt
    cur[parts[-1]] = value


def _inc_path(doc: Dict[str, Any], path: str, amount: int) -> None:
    current = _get_path(doc, path)
    base = current if isinstance(current, (int, float)) else 0
    _set_path(doc, path, base + amount)


def _equals(value: Any, expected: Any) -> bool:
    if value is _MISSING:
        return expected is None
    # igual que Mongo: un array "contiene" el valor buscado
    if isinstance(value, list) and not isinstance(expected, list):
        return expected in value
    return value == expected


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(value: Any, arg: Any) -> bool:
        if value is _MISSING or value is None:
            return False
        return op(value, arg)
    return check


_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "$ne": lambda value, arg: not _equals(value, arg),
    "$in": lambda value, arg: any(_equals(value, a) for a in arg),
    "$lt": _compare(lambda a, b: a < b),
    "$lte": _compare(lambda a, b: a <= b),
    "$gt": _compare(lambda a, b: a > b),
    "$gte": _compare(lambda a, b: a >= b),
}


def matches(doc: Dict[str, Any], filter: Optional[Dict[str, Any]]) -> bool:
    for key, cond in (filter or {}).items():
        value = _get_path(doc, key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            for op, arg in cond.items():
                if op not in _OPERATORS:
                    raise ValueError(f"Operador no soportado: {op}")
                if not _OPERATORS[op](value, arg):
                    return False
        elif not _equals(value, cond):
            return False
    return True


def sort_docs(docs: List[Dict[str, Any]], sort: Optional[Sort]) -> List[Dict[str, Any]]:
    out = list(docs)
    # ordenaciones estables aplicadas de la última clave a la primera
    for key, direction in reversed(sort or []):
        def sort_key(d: Dict[str, Any], key: str = key) -> Tuple[bool, Any]:
            v = _get_path(d, key)
            v = None if v is _MISSING else v
            return (v is not None, v)
        out.sort(key=sort_key, reverse=direction < 0)
    return out


class InMemoryWriteBatch(WriteBatch):
    def __init__(self, store: "InMemoryDocumentStore"):
        super().__init__()
        self._store = store

    async def commit(self) -> datetime:
        return await self._store.guarded(self._store._commit(self.ops), "commit")


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, timeout: float = 10.0, unique_indexes: Optional[List[UniqueIndex]] = None):
        super().__init__(timeout=timeout, unique_indexes=unique_indexes)
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _coll(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._coll(collection).get(doc_id)
        return to_id(deepcopy(doc)) if doc is not None else None

    async def find(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        sort: Optional[Sort] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        docs = [d for d in self._coll(collection).values() if matches(d, filter)]
        docs = sort_docs(docs, sort)
        if limit:
            docs = docs[:limit]
        return [to_id(deepcopy(d)) for d in docs]

    async def insert(self, collection: str, doc: Dict[str, Any]) -> str:
        batch = self.batch().insert(collection, doc)
        await batch.commit()
        return batch.ops[0].doc_id

    def batch(self) -> InMemoryWriteBatch:
        return InMemoryWriteBatch(self)

    # ---------- aplicación de lotes ----------

    def _view(self, staged: Dict[Tuple[str, str], Optional[Dict[str, Any]]], collection: str):
        """Documentos de la colección tal y como quedarían con los cambios en curso."""
        base = self._coll(collection)
        for doc_id, doc in base.items():
            current = staged.get((collection, doc_id), doc)
            if current is not None:
                yield doc_id, current
        for (coll, doc_id), doc in staged.items():
            if coll == collection and doc_id not in base and doc is not None:
                yield doc_id, doc

    def _check_unique(self, staged, collection: str, doc_id: str, doc: Dict[str, Any]) -> None:
        for index in self.unique_indexes:
            if index.collection != collection or not matches(doc, index.partial):
                continue
            value = _get_path(doc, index.key)
            for other_id, other in self._view(staged, collection):
                if other_id != doc_id and matches(other, index.partial) and _get_path(other, index.key) == value:
                    raise DuplicateDocument(f"Ya existe un documento con {index.key}={value!r} en {collection}")

    def _apply_op(self, staged, op: WriteOp, ts: datetime) -> None:
        coll = self._coll(op.collection)
        key = (op.collection, op.doc_id)

        if op.kind == "insert":
            exists = staged.get(key, coll.get(op.doc_id)) is not None
            if exists:
                raise DuplicateDocument(f"El documento {op.collection}/{op.doc_id} ya existe")
            doc = resolve_timestamps(deepcopy(op.doc), ts)
            self._check_unique(staged, op.collection, op.doc_id, doc)
            staged[key] = doc

        elif op.kind == "update":
            current = staged.get(key, coll.get(op.doc_id))
            if current is None:
                raise NotFound(f"Documento {op.collection}/{op.doc_id} no encontrado")
            doc = deepcopy(current)
            for path, value in op.set.items():
                _set_path(doc, path, resolve_timestamps(deepcopy(value), ts))
            for path, amount in op.inc.items():
                _inc_path(doc, path, amount)
            staged[key] = doc

        elif op.kind == "update_many":
            targets = [(i, d) for i, d in self._view(staged, op.collection) if matches(d, op.filter)]
            for doc_id, current in targets:
                doc = deepcopy(current)
                for path, value in op.set.items():
                    _set_path(doc, path, resolve_timestamps(deepcopy(value), ts))
                staged[(op.collection, doc_id)] = doc

        elif op.kind == "delete":
            staged[key] = None

        elif op.kind == "delete_many":
            targets = [i for i, d in self._view(staged, op.collection) if matches(d, op.filter)]
            for doc_id in targets:
                staged[(op.collection, doc_id)] = None

        else:
            raise ValueError(f"Operación desconocida: {op.kind}")

    async def _commit(self, ops: List[WriteOp]) -> datetime:
        async with self._lock:
            ts = self.clock.now()
            staged: Dict[Tuple[str, str], Optional[Dict[str, Any]]] = {}
            for op in ops:
                self._apply_op(staged, op, ts)
            for (collection, doc_id), doc in staged.items():
                coll = self._coll(collection)
                if doc is None:
                    coll.pop(doc_id, None)
                else:
                    coll[doc_id] = doc
            logger.debug(f"Lote aplicado: {len(ops)} operaciones, {len(staged)} documentos")
            return ts

from __future__ import annotations

import copy
import threading
import uuid
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple


Document = Dict[str, Any]


class RecordNotFoundError(KeyError):
    pass


class RecordStore(Protocol):
    """Document store contract the core is written against."""

    def get_by_id(self, collection: str, doc_id: str) -> Optional[Document]: ...

    def query_equals(self, collection: str, filters: Dict[str, Any]) -> List[Document]: ...

    def query_range(
        self,
        collection: str,
        order_field: str,
        start: Any,
        end: Any,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Document]: ...

    def add(self, collection: str, fields: Document) -> str: ...

    def upsert(self, collection: str, doc_id: str, fields: Document, *, merge: bool = True) -> None: ...

    def update(self, collection: str, doc_id: str, fields: Document) -> None: ...

    def write_batch(self, writes: Iterable[Tuple[str, str, Document]]) -> None: ...


def _matches(doc: Document, filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    return all(doc.get(field) == value for field, value in filters.items())


class InMemoryRecordStore:
    """Thread-safe in-process document store.

    Documents are plain dicts keyed by id within named collections. Reads hand
    out deep copies with the id under ``"id"``, so callers never alias stored
    state.
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._lock = threading.Lock()

    def _collection(self, name: str) -> Dict[str, Document]:
        return self._collections.setdefault(name, {})

    @staticmethod
    def _export(doc_id: str, doc: Document) -> Document:
        out = copy.deepcopy(doc)
        out["id"] = doc_id
        return out

    def get_by_id(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            return self._export(doc_id, doc) if doc is not None else None

    def query_equals(self, collection: str, filters: Dict[str, Any]) -> List[Document]:
        with self._lock:
            return [
                self._export(doc_id, doc)
                for doc_id, doc in self._collection(collection).items()
                if _matches(doc, filters)
            ]

    def query_range(
        self,
        collection: str,
        order_field: str,
        start: Any,
        end: Any,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Document]:
        """Documents with ``start <= doc[order_field] <= end``, ordered by that field."""
        with self._lock:
            hits = [
                (doc[order_field], doc_id, doc)
                for doc_id, doc in self._collection(collection).items()
                if doc.get(order_field) is not None
                and start <= doc[order_field] <= end
                and _matches(doc, filters)
            ]
            hits.sort(key=lambda item: (item[0], item[1]))
            return [self._export(doc_id, doc) for _, doc_id, doc in hits]

    def add(self, collection: str, fields: Document) -> str:
        doc_id = uuid.uuid4().hex
        self.upsert(collection, doc_id, fields, merge=False)
        return doc_id

    def upsert(self, collection: str, doc_id: str, fields: Document, *, merge: bool = True) -> None:
        payload = {k: copy.deepcopy(v) for k, v in fields.items() if k != "id"}
        with self._lock:
            docs = self._collection(collection)
            if merge and doc_id in docs:
                docs[doc_id].update(payload)
            else:
                docs[doc_id] = payload

    def update(self, collection: str, doc_id: str, fields: Document) -> None:
        payload = {k: copy.deepcopy(v) for k, v in fields.items() if k != "id"}
        with self._lock:
            docs = self._collection(collection)
            if doc_id not in docs:
                raise RecordNotFoundError(f"{collection}/{doc_id}")
            docs[doc_id].update(payload)

    def write_batch(self, writes: Iterable[Tuple[str, str, Document]]) -> None:
        """Apply merge-writes atomically with respect to other store calls."""
        staged = [(c, d, {k: copy.deepcopy(v) for k, v in f.items() if k != "id"}) for c, d, f in writes]
        with self._lock:
            for collection, doc_id, payload in staged:
                self._collection(collection).setdefault(doc_id, {}).update(payload)

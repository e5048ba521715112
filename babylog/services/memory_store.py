# babylog/services/memory_store.py
"""
프로세스 메모리 기반 원격 문서 저장소.

TestingConfig 와 테스트에서 Firestore 대신 사용합니다. 조회 규칙(필터, 정렬, limit)과
실시간 구독 동작을 Firestore 와 같게 맞추고, offline/deny 스위치로 원격 장애를 재현합니다.
"""
import copy
import logging
import uuid
from collections import Counter
from typing import Any, Dict, List, Optional, Set

from babylog.core.exceptions import NotFound, RemotePermissionDenied, RemoteUnavailable
from babylog.services.remote_store import (
    CollectionRef, DocumentRef, DocumentStore, FieldFilter, Query, WatchHandle,
    DESCENDING, OnChange, OnError,
)

logger = logging.getLogger(__name__)

_MISSING = object()


def _matches(doc: Dict[str, Any], flt: FieldFilter) -> bool:
    value = doc.get(flt.field, _MISSING)
    if value is _MISSING:
        return False
    try:
        if flt.op == '==':
            return value == flt.value
        if value is None or flt.value is None:
            return False
        if flt.op == '<':
            return value < flt.value
        if flt.op == '<=':
            return value <= flt.value
        if flt.op == '>':
            return value > flt.value
        if flt.op == '>=':
            return value >= flt.value
    except TypeError:
        return False
    return False


def _sort_key(value: Any):
    # None 은 항상 가장 앞 (Firestore 의 null 정렬 순서)
    return (value is not None, value)


class _MemoryWatch(WatchHandle):
    def __init__(self, collection: "MemoryCollection", query: Query, on_change: OnChange, on_error: OnError):
        self.collection = collection
        self.query = query
        self.on_change = on_change
        self.on_error = on_error
        self.closed = False

    def deliver(self) -> None:
        if self.closed:
            return
        try:
            self.on_change(self.collection.evaluate(self.query))
        except Exception as e:
            logger.error(f"Memory watch callback failed on {self.collection.name}: {e}", exc_info=True)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.collection.store.watches.discard(self)


class MemoryDocument(DocumentRef):
    collection: "MemoryCollection"

    async def get(self) -> Optional[Dict[str, Any]]:
        self.collection.check('get')
        doc = self.collection.docs.get(self.id)
        if doc is None:
            return None
        return dict(copy.deepcopy(doc), _id=self.id)

    async def update(self, data: Dict[str, Any]) -> None:
        self.collection.check('update')
        doc = self.collection.docs.get(self.id)
        if doc is None:
            raise NotFound(f"{self.collection.name}/{self.id} 문서를 찾을 수 없습니다.")
        doc.update(copy.deepcopy(data))
        self.collection.changed()

    async def set(self, data: Dict[str, Any]) -> None:
        self.collection.check('set')
        self.collection.docs[self.id] = copy.deepcopy(data)
        self.collection.changed()

    async def remove(self) -> None:
        self.collection.check('remove')
        if self.collection.docs.pop(self.id, None) is None:
            raise NotFound(f"{self.collection.name}/{self.id} 문서를 찾을 수 없습니다.")
        self.collection.changed()


class MemoryCollection(CollectionRef):
    def __init__(self, store: "MemoryDocumentStore", name: str):
        super().__init__(name)
        self.store = store
        self.docs: Dict[str, Dict[str, Any]] = {}

    def check(self, operation: str) -> None:
        self.store.calls[f"{self.name}.{operation}"] += 1
        if self.store.offline:
            raise RemoteUnavailable(f"원격 저장소에 연결할 수 없습니다 ({self.name}.{operation})")
        if self.name in self.store.denied:
            raise RemotePermissionDenied(f"'{self.name}' 컬렉션에 대한 권한이 없습니다.")

    def changed(self) -> None:
        for watch in list(self.store.watches):
            if watch.collection is self:
                watch.deliver()

    def evaluate(self, query: Query) -> List[Dict[str, Any]]:
        results = [
            dict(copy.deepcopy(doc), _id=doc_id)
            for doc_id, doc in self.docs.items()
            if all(_matches(doc, flt) for flt in query.filters)
        ]
        # 마지막 정렬 키부터 안정 정렬을 반복하여 다중 정렬을 구현합니다.
        for field, direction in reversed(query.orders):
            results.sort(key=lambda d: _sort_key(d.get(field)), reverse=(direction == DESCENDING))
        if query.limit_count is not None:
            results = results[:query.limit_count]
        return results

    async def add(self, data: Dict[str, Any]) -> str:
        self.check('add')
        doc_id = uuid.uuid4().hex
        self.docs[doc_id] = copy.deepcopy(data)
        self.changed()
        return doc_id

    def doc(self, doc_id: str) -> MemoryDocument:
        return MemoryDocument(self, doc_id)

    async def run_query(self, query: Query) -> List[Dict[str, Any]]:
        self.check('query')
        return self.evaluate(query)

    def watch_query(self, query: Query, on_change: OnChange, on_error: OnError) -> WatchHandle:
        self.check('watch')
        watch = _MemoryWatch(self, query, on_change, on_error)
        self.store.watches.add(watch)
        # Firestore on_snapshot 과 같이 구독 직후 현재 상태를 한 번 전달합니다.
        watch.deliver()
        return watch


class MemoryDocumentStore(DocumentStore):
    supports_watch = True

    def __init__(self):
        self.collections: Dict[str, MemoryCollection] = {}
        self.watches: Set[_MemoryWatch] = set()
        self.offline = False
        self.denied: Set[str] = set()
        self.calls: Counter = Counter()

    def collection(self, name: str) -> MemoryCollection:
        if name not in self.collections:
            self.collections[name] = MemoryCollection(self, name)
        return self.collections[name]

    def documents(self, name: str) -> Dict[str, Dict[str, Any]]:
        """테스트/디버깅용: 컬렉션의 원본 문서 사본."""
        return copy.deepcopy(self.collection(name).docs)

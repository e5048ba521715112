# babylog/services/firestore_store.py
"""
Firestore 기반 원격 문서 저장소.

firebase_admin 의 동기 클라이언트를 사용하고, 모든 호출은 asyncio.to_thread 로
이벤트 루프 밖에서 실행합니다. 실시간 구독(on_snapshot)은 백그라운드 스레드에서
호출되므로 call_soon_threadsafe 로 구독한 이벤트 루프에 전달합니다.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions

from babylog.core.exceptions import (
    BabyLogError, NotFound, RemoteError, RemotePermissionDenied, RemoteUnavailable,
)
from babylog.services.remote_store import (
    CollectionRef, DocumentRef, DocumentStore, Query, WatchHandle,
    DESCENDING, OnChange, OnError,
)

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.RetryError,
    google_exceptions.TooManyRequests,
    google_exceptions.InternalServerError,
    auth_exceptions.TransportError,
    ConnectionError,
    TimeoutError,
)
_PERMISSION_ERRORS = (
    google_exceptions.PermissionDenied,
    google_exceptions.Unauthenticated,
    auth_exceptions.RefreshError,
)


def translate_error(error: Exception, description: str) -> BabyLogError:
    """Google API 예외를 babylog 오류 분류로 변환합니다."""
    if isinstance(error, BabyLogError):
        return error
    if isinstance(error, google_exceptions.NotFound):
        return NotFound(f"{description}: 문서를 찾을 수 없습니다.")
    if isinstance(error, _PERMISSION_ERRORS):
        return RemotePermissionDenied(f"{description}: 권한이 없습니다. 로그인 상태와 보안 규칙을 확인해주세요.")
    if isinstance(error, _UNAVAILABLE_ERRORS):
        return RemoteUnavailable(f"{description}: 원격 저장소에 연결할 수 없습니다 ({error})")
    return RemoteError(f"{description}: {error}")


def _snapshot_to_dict(snapshot) -> Dict[str, Any]:
    data = snapshot.to_dict() or {}
    data['_id'] = snapshot.id
    return data


class _FirestoreWatch(WatchHandle):
    def __init__(self, watch):
        self._watch = watch

    def close(self) -> None:
        if self._watch is None:
            return
        try:
            self._watch.unsubscribe()
        finally:
            self._watch = None


class FirestoreDocument(DocumentRef):
    collection: "FirestoreCollection"

    def _ref(self):
        return self.collection.ref().document(self.id)

    async def get(self) -> Optional[Dict[str, Any]]:
        snapshot = await self.collection.store.call(f"{self.collection.name}/{self.id} get", lambda: self._ref().get())
        if not snapshot.exists:
            return None
        return _snapshot_to_dict(snapshot)

    async def update(self, data: Dict[str, Any]) -> None:
        await self.collection.store.call(f"{self.collection.name}/{self.id} update", lambda: self._ref().update(data))

    async def set(self, data: Dict[str, Any]) -> None:
        await self.collection.store.call(f"{self.collection.name}/{self.id} set", lambda: self._ref().set(data))

    async def remove(self) -> None:
        store = self.collection.store
        # exists=True 조건: 없는 문서를 지우면 NotFound 가 발생하도록 합니다.
        await store.call(
            f"{self.collection.name}/{self.id} remove",
            lambda: self._ref().delete(option=store.client().write_option(exists=True)),
        )


class FirestoreCollection(CollectionRef):
    def __init__(self, store: "FirestoreDocumentStore", name: str):
        super().__init__(name)
        self.store = store

    def ref(self):
        return self.store.client().collection(self.name)

    def _build(self, query: Query):
        fs_query = self.ref()
        for flt in query.filters:
            fs_query = fs_query.where(flt.field, flt.op, flt.value)
        for field, direction in query.orders:
            if direction == DESCENDING:
                fs_query = fs_query.order_by(field, direction=firestore.Query.DESCENDING)
            else:
                fs_query = fs_query.order_by(field)
        if query.limit_count is not None:
            fs_query = fs_query.limit(query.limit_count)
        return fs_query

    async def add(self, data: Dict[str, Any]) -> str:
        _, doc_ref = await self.store.call(f"{self.name} add", lambda: self.ref().add(data))
        return doc_ref.id

    def doc(self, doc_id: str) -> FirestoreDocument:
        return FirestoreDocument(self, doc_id)

    async def run_query(self, query: Query) -> List[Dict[str, Any]]:
        def _run():
            return [_snapshot_to_dict(doc) for doc in self._build(query).stream()]
        return await self.store.call(f"{self.name} query", _run)

    def watch_query(self, query: Query, on_change: OnChange, on_error: OnError) -> WatchHandle:
        loop = asyncio.get_running_loop()

        def _on_snapshot(docs, changes, read_time):
            payload = [_snapshot_to_dict(doc) for doc in docs]
            loop.call_soon_threadsafe(on_change, payload)

        try:
            watch = self._build(query).on_snapshot(_on_snapshot)
        except Exception as e:
            error = translate_error(e, f"{self.name} watch")
            on_error(error)
            raise error from e
        return _FirestoreWatch(watch)


class FirestoreDocumentStore(DocumentStore):
    """firebase_admin 이 초기화된 뒤 생성해야 합니다 (create_app 참고)."""
    supports_watch = True

    def __init__(self, client=None):
        self._client = client
        if self._client is None:
            try:
                self._client = firestore.client()
            except ValueError as e:
                # firebase_admin 미초기화: 모든 원격 호출이 RemoteUnavailable 로 실패하고 로컬 저장으로 전환됩니다.
                logger.error(f"Firestore client unavailable, running local-only: {e}")
        logger.info("FirestoreDocumentStore initialized.")

    def client(self):
        if self._client is None:
            raise RemoteUnavailable("Firestore 클라이언트가 초기화되지 않았습니다.")
        return self._client

    async def call(self, description: str, func: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(func)
        except Exception as e:
            error = translate_error(e, description)
            if error is e:
                raise
            logger.warning(f"Firestore call failed ({description}): {e}")
            raise error from e

    def collection(self, name: str) -> FirestoreCollection:
        return FirestoreCollection(self, name)

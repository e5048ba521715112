# babylog/services/remote_store.py
"""
원격 문서 저장소 인터페이스.

컬렉션/문서 단위의 생성·조회·수정·삭제, 필드 필터 조회, 실시간 변경 구독만을
정의합니다. 모든 원격 호출은 await 지점이며, 반환되는 문서 딕셔너리에는
문서 ID가 '_id' 키로 들어 있습니다.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

EVENTS = 'events'
BABIES = 'babies'
INVITATIONS = 'invitations'
JOIN_REQUESTS = 'join_requests'
GROWTH = 'growth'
MILESTONES = 'milestones'

ASCENDING = 'asc'
DESCENDING = 'desc'
VALID_OPERATORS = ('==', '<', '<=', '>', '>=')

OnChange = Callable[[List[Dict[str, Any]]], None]
OnError = Callable[[Exception], None]


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: str
    value: Any


class WatchHandle:
    """실시간 구독 핸들. close() 를 여러 번 호출해도 안전해야 합니다."""

    def close(self) -> None:
        raise NotImplementedError


class Query:
    """불변 조회 빌더. where/order_by/limit 는 새 Query 를 반환합니다."""

    def __init__(self, collection: "CollectionRef",
                 filters: Tuple[FieldFilter, ...] = (),
                 orders: Tuple[Tuple[str, str], ...] = (),
                 limit_count: Optional[int] = None):
        self.collection = collection
        self.filters = filters
        self.orders = orders
        self.limit_count = limit_count

    def where(self, field: str, op: str, value: Any) -> "Query":
        if op not in VALID_OPERATORS:
            raise ValueError(f"지원하지 않는 비교 연산자입니다: {op}")
        return Query(self.collection, self.filters + (FieldFilter(field, op, value),), self.orders, self.limit_count)

    def order_by(self, field: str, direction: str = ASCENDING) -> "Query":
        if direction not in (ASCENDING, DESCENDING):
            raise ValueError(f"정렬 방향은 'asc' 또는 'desc' 여야 합니다: {direction}")
        return Query(self.collection, self.filters, self.orders + ((field, direction),), self.limit_count)

    def limit(self, count: int) -> "Query":
        return Query(self.collection, self.filters, self.orders, count)

    async def get(self) -> List[Dict[str, Any]]:
        return await self.collection.run_query(self)

    def watch(self, on_change: OnChange, on_error: OnError) -> WatchHandle:
        return self.collection.watch_query(self, on_change, on_error)


class DocumentRef:
    def __init__(self, collection: "CollectionRef", doc_id: str):
        self.collection = collection
        self.id = doc_id

    async def get(self) -> Optional[Dict[str, Any]]:
        """문서를 조회합니다. 존재하지 않으면 None."""
        raise NotImplementedError

    async def update(self, data: Dict[str, Any]) -> None:
        """기존 문서의 필드를 갱신합니다. 문서가 없으면 NotFound."""
        raise NotImplementedError

    async def set(self, data: Dict[str, Any]) -> None:
        """문서를 통째로 덮어씁니다."""
        raise NotImplementedError

    async def remove(self) -> None:
        raise NotImplementedError


class CollectionRef:
    def __init__(self, name: str):
        self.name = name

    async def add(self, data: Dict[str, Any]) -> str:
        """새 문서를 만들고 저장소가 부여한 ID를 반환합니다."""
        raise NotImplementedError

    def doc(self, doc_id: str) -> DocumentRef:
        raise NotImplementedError

    def where(self, field: str, op: str, value: Any) -> Query:
        return Query(self).where(field, op, value)

    def order_by(self, field: str, direction: str = ASCENDING) -> Query:
        return Query(self).order_by(field, direction)

    async def run_query(self, query: Query) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def watch_query(self, query: Query, on_change: OnChange, on_error: OnError) -> WatchHandle:
        raise NotImplementedError


class DocumentStore:
    """원격 문서 저장소."""
    supports_watch = False

    def collection(self, name: str) -> CollectionRef:
        raise NotImplementedError

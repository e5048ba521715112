# babylog/services/change_bus.py
"""
아기(subject)별 기록 변경 구독과 알림 전파.

- subscribe 직후 query 한 번으로 현재 목록을 전달합니다.
- 이후 기록 추가/수정/삭제가 성공하거나 원격 실시간 구독이 변경을 알려오면
  새 목록을 전달합니다. 구독마다 마지막으로 전달한 목록을 기억하여 같은 변경이
  로컬 알림과 원격 푸시로 두 번 도착해도 한 번만 전달합니다.
- 같은 아기에 대한 알림은 변경이 완료된 순서대로 전달됩니다 (아기별 Lock).
  목록마다 조회를 시작한 시점의 번호를 붙이고, 이미 더 새 번호의 목록이
  전달되었다면 늦게 끝난 조회 결과는 버립니다. 원격 푸시는 Lock 밖에서 도착하므로
  번호로만 순서를 맞춥니다.
- 원격 실시간 구독은 아기당 하나만 열고 구독자 수로 관리합니다.

구독 레지스트리는 프로세스 수명 동안 유지되며 별도의 정리 작업은 없습니다.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from babylog.models.event import ActivityEvent
from babylog.services.remote_store import WatchHandle

logger = logging.getLogger(__name__)

Callback = Callable[[List[ActivityEvent]], Any]


def _signature(snapshot: List[ActivityEvent]) -> Tuple:
    return tuple(
        (e.identifier, e.kind.value, e.timestamp, e.quantity, e.duration_minutes, e.notes)
        for e in snapshot
    )


class _Subscription:
    def __init__(self, baby_id: str, callback: Callback):
        self.baby_id = baby_id
        self.callback = callback
        self.active = True
        self.last_signature: Optional[Tuple] = None


class _RemoteWatch:
    def __init__(self):
        self.handle: Optional[WatchHandle] = None
        self.ref_count = 0
        self.initial_skipped = False


class ChangeBus:
    def __init__(self):
        self._subscribers: Dict[str, List[_Subscription]] = {}
        self._remote_watches: Dict[str, _RemoteWatch] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._issued: Dict[str, int] = {}
        self._published: Dict[str, int] = {}
        self._source = None

    def attach_source(self, source) -> None:
        """
        목록 조회에 사용할 기록 저장소를 연결합니다.
        source 는 query(baby_id), remote_watch_query(baby_id),
        snapshot_from_remote(baby_id, docs) 를 제공해야 합니다.
        """
        self._source = source

    def subscriber_count(self, baby_id: str) -> int:
        return len(self._subscribers.get(baby_id, []))

    def has_remote_watch(self, baby_id: str) -> bool:
        watch = self._remote_watches.get(baby_id)
        return bool(watch and watch.handle)

    async def subscribe(self, baby_id: str, callback: Callback) -> Callable[[], None]:
        """구독을 등록하고 현재 목록을 한 번 전달합니다. 반환된 함수로 구독을 해제합니다."""
        if self._source is None:
            raise RuntimeError("ChangeBus 에 기록 저장소가 연결되지 않았습니다. attach_source 를 먼저 호출해주세요.")

        subscription = _Subscription(baby_id, callback)
        self._subscribers.setdefault(baby_id, []).append(subscription)
        self._retain_remote_watch(baby_id)

        def unsubscribe() -> None:
            if not subscription.active:
                return
            subscription.active = False
            remaining = [s for s in self._subscribers.get(baby_id, []) if s is not subscription]
            if remaining:
                self._subscribers[baby_id] = remaining
            else:
                self._subscribers.pop(baby_id, None)
            self._release_remote_watch(baby_id)

        version = self._next_version(baby_id)
        try:
            snapshot = await self._source.query(baby_id)
        except Exception:
            unsubscribe()
            raise
        # 조회 중 더 새 목록이 이미 전달되었으면 초기 목록은 보내지 않음
        if subscription.active and version >= self._published.get(baby_id, 0):
            self._deliver(subscription, snapshot, force=True)
        return unsubscribe

    async def notify(self, baby_id: str) -> None:
        """기록 변경 후 호출됩니다. 구독자가 있으면 목록을 한 번 조회해 모두에게 전달합니다."""
        if not self._subscribers.get(baby_id):
            return
        lock = self._locks.setdefault(baby_id, asyncio.Lock())
        async with lock:
            version = self._next_version(baby_id)
            try:
                snapshot = await self._source.query(baby_id)
            except Exception as e:
                logger.error(f"변경 알림용 목록 조회 실패 ({baby_id}): {e}", exc_info=True)
                return
            self._publish_version(baby_id, snapshot, version)

    def publish(self, baby_id: str, snapshot: List[ActivityEvent]) -> None:
        """해당 아기의 모든 구독자에게 목록을 전달합니다 (등록 순서)."""
        self._publish_version(baby_id, snapshot, self._next_version(baby_id))

    def _next_version(self, baby_id: str) -> int:
        version = self._issued.get(baby_id, 0) + 1
        self._issued[baby_id] = version
        return version

    def _publish_version(self, baby_id: str, snapshot: List[ActivityEvent], version: int) -> None:
        if version < self._published.get(baby_id, 0):
            logger.debug(f"더 새 목록이 이미 전달되어 오래된 목록을 버립니다 ({baby_id}, #{version})")
            return
        self._published[baby_id] = version
        for subscription in list(self._subscribers.get(baby_id, [])):
            if subscription.active:
                self._deliver(subscription, snapshot)

    def _deliver(self, subscription: _Subscription, snapshot: List[ActivityEvent], force: bool = False) -> None:
        signature = _signature(snapshot)
        if not force and signature == subscription.last_signature:
            return
        subscription.last_signature = signature
        try:
            result = subscription.callback(list(snapshot))
        except Exception as e:
            logger.error(f"구독 콜백 실행 실패 ({subscription.baby_id}): {e}", exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            task.add_done_callback(self._log_callback_failure)

    @staticmethod
    def _log_callback_failure(task: "asyncio.Future") -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"비동기 구독 콜백 실행 실패: {task.exception()}")

    # ------------------------------------------------------------------
    # 원격 실시간 구독
    # ------------------------------------------------------------------

    def _retain_remote_watch(self, baby_id: str) -> None:
        watch = self._remote_watches.get(baby_id)
        if watch is not None:
            watch.ref_count += 1
            return

        watch = _RemoteWatch()
        watch.ref_count = 1
        self._remote_watches[baby_id] = watch

        query = self._source.remote_watch_query(baby_id)
        if query is None:
            return

        def on_change(docs: List[dict]) -> None:
            if not watch.initial_skipped:
                # 구독 직후의 첫 스냅샷은 subscribe 의 초기 전달과 같은 내용입니다.
                watch.initial_skipped = True
                return
            self.publish(baby_id, self._source.snapshot_from_remote(baby_id, docs))

        def on_error(error: Exception) -> None:
            logger.warning(f"원격 실시간 구독 오류 ({baby_id}): {error}")

        try:
            watch.handle = query.watch(on_change, on_error)
        except Exception as e:
            logger.warning(f"원격 실시간 구독을 시작할 수 없어 로컬 알림만 사용합니다 ({baby_id}): {e}")
            watch.handle = None

    def _release_remote_watch(self, baby_id: str) -> None:
        watch = self._remote_watches.get(baby_id)
        if watch is None:
            return
        watch.ref_count -= 1
        if watch.ref_count > 0:
            return
        self._remote_watches.pop(baby_id, None)
        if watch.handle is not None:
            try:
                watch.handle.close()
            except Exception as e:
                logger.warning(f"원격 실시간 구독 해제 실패 ({baby_id}): {e}")

# babylog/api/records/services.py
import logging
import math
import random
import string
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from babylog.core.exceptions import (
    NotFound, RemoteError, RemotePermissionDenied, RemoteUnavailable, ValidationFailure,
)
from babylog.models.event import ActivityEvent, DailySummary, EventKind, coerce_number
from babylog.services.change_bus import ChangeBus
from babylog.services.local_store import LocalKeys, LocalStore
from babylog.services.remote_store import DocumentStore, Query, EVENTS, DESCENDING
from babylog.utils.datetime_utils import DateTimeUtils, MS_PER_MINUTE

logger = logging.getLogger(__name__)


def new_local_id(now: int) -> str:
    """원격 저장에 실패한 기록의 로컬 ID (<ms>_<random>)."""
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=10))
    return f"{now}_{suffix}"


class EventRecordService:
    """
    아기 행동 기록(events)의 생성·수정·삭제·조회를 전담하는 서비스 클래스.

    쓰기는 원격 저장소를 먼저 시도하고, 성공하면 원격 ID와 함께 로컬 목록 맨 앞에
    반영합니다. 원격 저장소에 연결할 수 없으면 로컬 ID를 만들어 로컬에만 저장합니다
    (오프라인 우선). 읽기는 원격 조회 실패 시 로컬 캐시로 대체합니다.

    같은 아기에 대한 append 를 동시에 여러 개 실행하면 원격 호출 지점에서 순서가
    섞일 수 있으며, 로컬 목록은 나중에 완료된 쓰기 순서를 따릅니다.
    """

    def __init__(self, remote_store: DocumentStore, local_store: LocalStore, local_keys: LocalKeys,
                 change_bus: ChangeBus, pairing_window_hours: int = 24):
        self.remote_store = remote_store
        self.events_ref = remote_store.collection(EVENTS)
        self.local_store = local_store
        self.local_keys = local_keys
        self.change_bus = change_bus
        self.pairing_window_ms = pairing_window_hours * 60 * MS_PER_MINUTE
        change_bus.attach_source(self)
        logger.info("EventRecordService initialized.")

    # ------------------------------------------------------------------
    # 로컬 캐시
    # ------------------------------------------------------------------

    def _load_local(self, baby_id: str) -> List[ActivityEvent]:
        return [ActivityEvent.from_dict(item) for item in self.local_store.get_list(self.local_keys.events(baby_id))
                if isinstance(item, dict)]

    def _save_local(self, baby_id: str, events: List[ActivityEvent]) -> None:
        self.local_store.set(self.local_keys.events(baby_id), [e.to_dict() for e in events])

    def find_local(self, baby_id: str, event_id: str) -> Optional[ActivityEvent]:
        """원격 ID 또는 로컬 ID로 로컬 캐시의 기록을 찾습니다."""
        return next((e for e in self._load_local(baby_id) if e.matches_id(event_id)), None)

    def _pending_local(self, baby_id: str, start_ts: Optional[int], end_ts: Optional[int]) -> List[ActivityEvent]:
        """원격에 저장되지 못한(로컬 ID만 있는) 기록."""
        return [e for e in self._filter_range(self._load_local(baby_id), start_ts, end_ts) if not e.remote_id]

    @staticmethod
    def _in_range(event: ActivityEvent, start_ts: Optional[int], end_ts: Optional[int]) -> bool:
        return (start_ts is None or event.timestamp >= start_ts) and (end_ts is None or event.timestamp <= end_ts)

    @classmethod
    def _filter_range(cls, events: List[ActivityEvent], start_ts: Optional[int], end_ts: Optional[int]) -> List[ActivityEvent]:
        return [e for e in events if cls._in_range(e, start_ts, end_ts)]

    @staticmethod
    def _sort_desc(events: List[ActivityEvent]) -> List[ActivityEvent]:
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    def _refresh_local_cache(self, baby_id: str, remote_events: List[ActivityEvent],
                             start_ts: Optional[int], end_ts: Optional[int]) -> None:
        """
        원격 조회 결과로 로컬 캐시의 해당 범위를 교체합니다.
        범위 밖의 기록과 아직 동기화되지 않은 로컬 기록은 유지합니다.
        """
        kept = [
            e for e in self._load_local(baby_id)
            if not e.remote_id or not self._in_range(e, start_ts, end_ts)
        ]
        kept_remote_ids = {e.remote_id for e in kept if e.remote_id}
        merged = kept + [e for e in remote_events if e.remote_id not in kept_remote_ids]
        self._save_local(baby_id, self._sort_desc(merged))

    # ------------------------------------------------------------------
    # 쓰기
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(event: ActivityEvent) -> None:
        if not event.baby_id:
            raise ValidationFailure("아기 ID(baby_id)가 필요합니다.")
        if event.kind is EventKind.UNKNOWN:
            raise ValidationFailure("알 수 없는 기록 유형입니다.")
        if isinstance(event.timestamp, bool) or not isinstance(event.timestamp, int) or event.timestamp <= 0:
            raise ValidationFailure("기록 시각(timestamp)은 양의 정수(ms)여야 합니다.")
        if event.quantity is not None and coerce_number(event.quantity) < 0:
            raise ValidationFailure("수량은 0 이상이어야 합니다.")
        if event.duration_minutes is not None and coerce_number(event.duration_minutes) < 0:
            raise ValidationFailure("지속 시간은 0 이상이어야 합니다.")

    async def append(self, event: ActivityEvent) -> ActivityEvent:
        """
        새 기록을 저장합니다.

        Returns:
            remote_id(원격 저장 성공) 또는 local_id(로컬 전용 저장)가 채워진 기록
        """
        self._validate(event)
        now = DateTimeUtils.now_ms()
        to_save = replace(event, remote_id=None, local_id=None, extra=dict(event.extra))
        if not to_save.kind.has_quantity:
            to_save.quantity = None
        if not to_save.kind.has_duration:
            to_save.duration_minutes = None
        to_save.extra.update({'createdAt': now, 'updatedAt': now})

        try:
            to_save.remote_id = await self.events_ref.add(to_save.to_remote_dict())
            logger.info(f"Event saved remotely for baby {to_save.baby_id} (type: {to_save.kind.value}, id: {to_save.remote_id})")
        except RemoteUnavailable as e:
            to_save.local_id = new_local_id(now)
            logger.warning(f"원격 저장 실패, 로컬에만 저장합니다 (baby: {to_save.baby_id}, id: {to_save.local_id}): {e}")

        # 같은 원격 ID가 이미 캐시에 있으면 교체합니다.
        local_events = [e for e in self._load_local(to_save.baby_id)
                        if not (to_save.remote_id and e.remote_id == to_save.remote_id)]
        local_events.insert(0, to_save)
        self._save_local(to_save.baby_id, local_events)

        await self.change_bus.notify(to_save.baby_id)

        if to_save.kind is EventKind.SLEEP_END:
            try:
                await self.pair_sleep_wake(to_save)
            except RemoteError as e:
                logger.warning(f"수면 기록 연결 실패 (baby: {to_save.baby_id}): {e}")
        return to_save

    def _merge_local(self, event: ActivityEvent) -> Optional[ActivityEvent]:
        local_events = self._load_local(event.baby_id)
        for index, existing in enumerate(local_events):
            if (event.remote_id and existing.remote_id == event.remote_id) or \
                    (event.local_id and existing.local_id == event.local_id):
                # 입력에 없는 값은 기존 값을 남기지 않고 비웁니다.
                merged = replace(
                    existing,
                    kind=event.kind,
                    timestamp=event.timestamp,
                    quantity=event.quantity if event.kind.has_quantity else None,
                    duration_minutes=event.duration_minutes if event.kind.has_duration else None,
                    notes=event.notes,
                )
                local_events[index] = merged
                self._save_local(event.baby_id, local_events)
                return merged
        return None

    async def update(self, event: ActivityEvent) -> ActivityEvent:
        """
        기존 기록의 유형/시각/수량/지속 시간/메모를 수정합니다.
        remote_id 가 있으면 원격을 먼저 수정하고, 로컬 캐시 항목은 필드 단위로 교체합니다.
        """
        if not event.identifier:
            raise ValidationFailure("수정할 기록의 ID가 필요합니다.")
        self._validate(event)

        if event.remote_id:
            try:
                await self.events_ref.doc(event.remote_id).update({
                    'type': event.kind.value,
                    'timestamp': event.timestamp,
                    'quantity': event.quantity if event.kind.has_quantity else None,
                    'durationMinutes': event.duration_minutes if event.kind.has_duration else None,
                    'notes': event.notes,
                    'updatedAt': DateTimeUtils.now_ms(),
                })
            except RemoteUnavailable as e:
                logger.warning(f"원격 수정 실패, 로컬에만 반영합니다 (id: {event.remote_id}): {e}")

        merged = self._merge_local(event)
        await self.change_bus.notify(event.baby_id)
        return merged or event

    async def remove(self, baby_id: str, event_id: str) -> bool:
        """
        기록을 삭제합니다. 원격 ID/로컬 ID 어느 쪽이든 받을 수 있습니다.

        Returns:
            실제로 삭제된 기록이 있었는지 여부
        """
        if not event_id:
            raise ValidationFailure("삭제할 기록의 ID가 필요합니다.")

        local_events = self._load_local(baby_id)
        local_match = next((e for e in local_events if e.matches_id(event_id)), None)
        removed = False

        if local_match is None or local_match.remote_id:
            try:
                await self.events_ref.doc(event_id).remove()
                removed = True
            except NotFound:
                logger.info(f"원격에 없는 기록입니다 (id: {event_id})")
            except RemoteUnavailable as e:
                logger.warning(f"원격 삭제 실패 (id: {event_id}): {e}")

        filtered = [e for e in local_events if not e.matches_id(event_id)]
        if len(filtered) != len(local_events):
            self._save_local(baby_id, filtered)
            removed = True

        if removed:
            logger.info(f"Event {event_id} removed for baby {baby_id}")
            await self.change_bus.notify(baby_id)
        return removed

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    async def query(self, baby_id: str, start_ts: Optional[int] = None, end_ts: Optional[int] = None) -> List[ActivityEvent]:
        """
        기간(양 끝 포함) 내 기록을 발생 시각 내림차순으로 조회합니다.
        원격 조회에 실패하면 같은 조건으로 로컬 캐시를 조회합니다.
        """
        query = self.events_ref.where('babyId', '==', baby_id)
        if start_ts is not None:
            query = query.where('timestamp', '>=', start_ts)
        if end_ts is not None:
            query = query.where('timestamp', '<=', end_ts)
        query = query.order_by('timestamp', DESCENDING)

        try:
            docs = await query.get()
        except RemotePermissionDenied:
            raise
        except RemoteError as e:
            logger.warning(f"원격 조회 실패, 로컬 캐시를 사용합니다 (baby: {baby_id}): {e}")
            return self._sort_desc(self._filter_range(self._load_local(baby_id), start_ts, end_ts))

        remote_events = [ActivityEvent.from_dict(doc) for doc in docs]
        self._refresh_local_cache(baby_id, remote_events, start_ts, end_ts)
        return self._sort_desc(remote_events + self._pending_local(baby_id, start_ts, end_ts))

    def remote_watch_query(self, baby_id: str) -> Optional[Query]:
        if not self.remote_store.supports_watch:
            return None
        return self.events_ref.where('babyId', '==', baby_id).order_by('timestamp', DESCENDING)

    def snapshot_from_remote(self, baby_id: str, docs: List[dict]) -> List[ActivityEvent]:
        """원격 실시간 구독이 전달한 문서 목록을 기록 목록으로 변환합니다."""
        remote_events = [ActivityEvent.from_dict(doc) for doc in docs]
        self._refresh_local_cache(baby_id, remote_events, None, None)
        return self._sort_desc(remote_events + self._pending_local(baby_id, None, None))

    async def watch(self, baby_id: str, callback: Callable[[List[ActivityEvent]], None]) -> Callable[[], None]:
        """기록 목록 변경을 구독합니다. 반환된 함수를 호출하면 구독이 해제됩니다."""
        return await self.change_bus.subscribe(baby_id, callback)

    # ------------------------------------------------------------------
    # 통계
    # ------------------------------------------------------------------

    @staticmethod
    def aggregate_daily(events: List[ActivityEvent], date_key: str) -> DailySummary:
        """
        기록 목록을 유형별 횟수/합계로 집계합니다.
        수면은 잠든 기록(sleep) 수를 세션 수로, durationMinutes 를 합산하며 wake 는 집계하지 않습니다.
        """
        summary = DailySummary(date_key=date_key)
        for event in events:
            if event.kind is EventKind.FEED:
                summary.feed_count += 1
                summary.feed_ml += coerce_number(event.quantity)
            elif event.kind is EventKind.DRINK:
                summary.drink_count += 1
                summary.drink_ml += coerce_number(event.quantity)
            elif event.kind is EventKind.URINATE:
                summary.pee_count += 1
            elif event.kind is EventKind.DEFECATE:
                summary.poop_count += 1
            elif event.kind is EventKind.SLEEP_START:
                summary.sleep_sessions += 1
                summary.sleep_minutes += coerce_number(event.duration_minutes)
        return summary

    async def daily_summary(self, baby_id: str, date_key: str) -> DailySummary:
        start_ts, end_ts = DateTimeUtils.day_range_ms(date_key)
        events = await self.query(baby_id, start_ts, end_ts)
        return self.aggregate_daily(events, date_key)

    async def weekly_summary(self, baby_id: str, today_key: Optional[str] = None, days: int = 7) -> List[DailySummary]:
        """최근 days 일의 일별 요약을 최신 날짜부터 반환합니다. 원격 조회는 한 번만 수행합니다."""
        if days < 1:
            raise ValidationFailure("days 는 1 이상이어야 합니다.")
        today_key = today_key or DateTimeUtils.format_date_key(DateTimeUtils.now_ms())
        first_key = DateTimeUtils.shift_date_key(today_key, -(days - 1))
        start_ts, _ = DateTimeUtils.day_range_ms(first_key)
        _, end_ts = DateTimeUtils.day_range_ms(today_key)
        events = await self.query(baby_id, start_ts, end_ts)

        by_date: Dict[str, List[ActivityEvent]] = {}
        for event in events:
            by_date.setdefault(DateTimeUtils.format_date_key(event.timestamp), []).append(event)

        keys = [DateTimeUtils.shift_date_key(today_key, -offset) for offset in range(days)]
        return [self.aggregate_daily(by_date.get(key, []), key) for key in keys]

    # ------------------------------------------------------------------
    # 수면 연결
    # ------------------------------------------------------------------

    async def pair_sleep_wake(self, wake_event: ActivityEvent) -> Optional[ActivityEvent]:
        """
        깨어남 기록에 대응하는 가장 최근의 미완료 수면 기록을 찾아 지속 시간을 채웁니다.
        이미 지속 시간이 입력된 수면 기록은 사용자 입력으로 보고 건드리지 않습니다.

        Returns:
            지속 시간이 채워진 수면 기록, 대상이 없으면 None
        """
        window_start = wake_event.timestamp - self.pairing_window_ms
        query = self.events_ref \
            .where('babyId', '==', wake_event.baby_id) \
            .where('type', '==', EventKind.SLEEP_START.value) \
            .where('timestamp', '>=', window_start) \
            .where('timestamp', '<=', wake_event.timestamp) \
            .order_by('timestamp', DESCENDING)

        try:
            docs = await query.get()
            candidates = [ActivityEvent.from_dict(doc) for doc in docs]
            candidates += self._pending_local(wake_event.baby_id, window_start, wake_event.timestamp)
        except RemoteError as e:
            logger.warning(f"수면 기록 원격 조회 실패, 로컬 캐시에서 찾습니다 (baby: {wake_event.baby_id}): {e}")
            candidates = self._filter_range(self._load_local(wake_event.baby_id), window_start, wake_event.timestamp)

        sleep_event = next(
            (
                e for e in self._sort_desc(candidates)
                if e.kind is EventKind.SLEEP_START
                and e.timestamp < wake_event.timestamp
                and not coerce_number(e.duration_minutes)
            ),
            None,
        )
        if sleep_event is None:
            logger.info(f"연결할 수면 기록이 없습니다 (baby: {wake_event.baby_id})")
            return None

        elapsed_minutes = (wake_event.timestamp - sleep_event.timestamp) / MS_PER_MINUTE
        sleep_event.duration_minutes = int(math.floor(elapsed_minutes + 0.5))
        logger.info(f"수면 기록 연결: {sleep_event.identifier} -> {sleep_event.duration_minutes}분")
        return await self.update(sleep_event)

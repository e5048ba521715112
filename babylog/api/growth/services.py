# babylog/api/growth/services.py
import logging
from dataclasses import replace
from typing import Generic, List, Optional, Type, TypeVar

from babylog.api.records.services import new_local_id
from babylog.core.exceptions import NotFound, RemoteError, RemotePermissionDenied, RemoteUnavailable, ValidationFailure
from babylog.models.growth import GrowthRecord, MilestoneRecord
from babylog.services.local_store import LocalKeys, LocalStore
from babylog.services.remote_store import DocumentStore, DESCENDING, GROWTH, MILESTONES
from babylog.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

RecordT = TypeVar('RecordT', GrowthRecord, MilestoneRecord)


class _LedgerService(Generic[RecordT]):
    """
    아기별 날짜 기록 장부의 공통 동작.
    쓰기는 원격 우선(실패 시 로컬 ID로 로컬에만 저장), 읽기는 원격 우선(실패 시 로컬 캐시)이며
    결과는 항상 date 문자열 내림차순입니다.
    """
    record_cls: Type[RecordT]
    collection_name: str

    def __init__(self, remote_store: DocumentStore, local_store: LocalStore, local_keys: LocalKeys):
        self.ref = remote_store.collection(self.collection_name)
        self.local_store = local_store
        self.local_keys = local_keys

    def _local_key(self, baby_id: str) -> str:
        raise NotImplementedError

    def _validate(self, record: RecordT) -> None:
        if not record.baby_id:
            raise ValidationFailure("아기 ID(baby_id)가 필요합니다.")
        if not DateTimeUtils.is_date_key(record.date):
            raise ValidationFailure(f"날짜는 YYYY-MM-DD 형식이어야 합니다: {record.date!r}")

    def _load_local(self, baby_id: str) -> List[RecordT]:
        return [self.record_cls.from_dict(item) for item in self.local_store.get_list(self._local_key(baby_id))
                if isinstance(item, dict)]

    def _save_local(self, baby_id: str, records: List[RecordT]) -> None:
        self.local_store.set(self._local_key(baby_id), [r.to_dict() for r in records])

    @staticmethod
    def _sort(records: List[RecordT]) -> List[RecordT]:
        return sorted(records, key=lambda r: r.date, reverse=True)

    async def add(self, record: RecordT) -> RecordT:
        try:
            # '2024-1-5' 같은 값도 문자열 정렬이 가능한 키로 바꿔 저장합니다.
            record = replace(record, date=DateTimeUtils.normalize_date_key(record.date))
        except ValueError:
            raise ValidationFailure(f"날짜 형식이 올바르지 않습니다: {record.date!r}")
        self._validate(record)
        to_save = replace(record, remote_id=None, local_id=None)
        data = to_save.to_dict()
        data['createdAt'] = DateTimeUtils.now_ms()
        try:
            to_save.remote_id = await self.ref.add(data)
        except RemoteUnavailable as e:
            to_save.local_id = new_local_id(DateTimeUtils.now_ms())
            logger.warning(f"{self.collection_name} 원격 저장 실패, 로컬에만 저장합니다 ({to_save.local_id}): {e}")

        records = self._load_local(to_save.baby_id)
        records.insert(0, to_save)
        self._save_local(to_save.baby_id, self._sort(records))
        return to_save

    async def list(self, baby_id: str) -> List[RecordT]:
        try:
            docs = await self.ref.where('babyId', '==', baby_id).order_by('date', DESCENDING).get()
        except RemotePermissionDenied:
            raise
        except RemoteError as e:
            logger.warning(f"{self.collection_name} 원격 조회 실패, 로컬 캐시를 사용합니다 ({baby_id}): {e}")
            return self._sort(self._load_local(baby_id))

        remote_records = [self.record_cls.from_dict(doc) for doc in docs]
        pending = [r for r in self._load_local(baby_id) if not r.remote_id]
        merged = self._sort(remote_records + pending)
        self._save_local(baby_id, merged)
        return merged

    async def remove(self, baby_id: str, record_id: str) -> bool:
        records = self._load_local(baby_id)
        local_match = next((r for r in records if record_id in (r.remote_id, r.local_id)), None)
        removed = False
        if local_match is None or local_match.remote_id:
            try:
                await self.ref.doc(record_id).remove()
                removed = True
            except NotFound:
                logger.info(f"{self.collection_name} 원격에 없는 기록입니다 ({record_id})")
            except RemoteUnavailable as e:
                logger.warning(f"{self.collection_name} 원격 삭제 실패 ({record_id}): {e}")

        remaining = [r for r in records if record_id not in (r.remote_id, r.local_id)]
        if len(remaining) != len(records):
            self._save_local(baby_id, remaining)
            removed = True
        return removed


class GrowthService(_LedgerService[GrowthRecord]):
    """키·몸무게 기록."""
    record_cls = GrowthRecord
    collection_name = GROWTH

    def _local_key(self, baby_id: str) -> str:
        return self.local_keys.growth(baby_id)

    def _validate(self, record: GrowthRecord) -> None:
        super()._validate(record)
        if record.height is None and record.weight is None:
            raise ValidationFailure("키 또는 몸무게 중 하나는 입력해야 합니다.")
        for value in (record.height, record.weight):
            if value is not None and value <= 0:
                raise ValidationFailure("키와 몸무게는 0보다 커야 합니다.")

    async def latest(self, baby_id: str) -> Optional[GrowthRecord]:
        records = await self.list(baby_id)
        return records[0] if records else None


class MilestoneService(_LedgerService[MilestoneRecord]):
    """성장 이정표(첫 뒤집기, 첫 걸음 등) 기록."""
    record_cls = MilestoneRecord
    collection_name = MILESTONES

    def _local_key(self, baby_id: str) -> str:
        return self.local_keys.milestones(baby_id)

    def _validate(self, record: MilestoneRecord) -> None:
        super()._validate(record)
        if not (record.title or '').strip():
            raise ValidationFailure("이정표 제목을 입력해주세요.")

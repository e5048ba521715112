# babylog/models/event.py
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """기록 가능한 행동 유형. 값은 로컬/원격 문서에 저장되는 문자열입니다."""
    FEED = "feed"
    DRINK = "drink"
    URINATE = "pee"
    DEFECATE = "poop"
    SLEEP_START = "sleep"
    SLEEP_END = "wake"
    UNKNOWN = "unknown"

    @classmethod
    def decode(cls, value: Any) -> "EventKind":
        """
        저장소에서 읽은 type 값을 EventKind 로 변환합니다.
        인식할 수 없는 값(중첩 객체 등 손상된 데이터 포함)은 UNKNOWN 으로 처리합니다.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip()
            member = _KIND_ALIASES.get(normalized) or _KIND_ALIASES.get(normalized.lower())
            if member is not None:
                return member
        logger.warning(f"Unrecognized event kind {value!r}; decoding as UNKNOWN")
        return cls.UNKNOWN

    @property
    def has_quantity(self) -> bool:
        return self in (EventKind.FEED, EventKind.DRINK)

    @property
    def has_duration(self) -> bool:
        return self is EventKind.SLEEP_START


_KIND_ALIASES = {kind.value: kind for kind in EventKind if kind is not EventKind.UNKNOWN}
_KIND_ALIASES.update({
    'urinate': EventKind.URINATE,
    'defecate': EventKind.DEFECATE,
    'sleepStart': EventKind.SLEEP_START,
    'sleepstart': EventKind.SLEEP_START,
    'sleepEnd': EventKind.SLEEP_END,
    'sleepend': EventKind.SLEEP_END,
})


def coerce_number(value: Any) -> float:
    """수량/시간 값을 숫자로 변환합니다. 누락되었거나 해석할 수 없으면 0 (NaN 없음)."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number):
        return 0
    return int(number) if number.is_integer() else number


def _optional_number(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    return coerce_number(value)


@dataclass
class ActivityEvent:
    """
    'events' 컬렉션 / 로컬 'events_<babyId>' 목록의 기록 한 건.
    원격 저장에 성공하면 remote_id(_id), 원격 저장에 실패하면 local_id(id)가 부여됩니다.
    """
    baby_id: str
    kind: EventKind
    timestamp: int  # 발생 시각, Unix timestamp(ms)
    quantity: Optional[float] = None  # feed/drink 의 양(ml)
    duration_minutes: Optional[int] = None  # sleep 의 지속 시간(분)
    notes: Optional[str] = None
    remote_id: Optional[str] = None
    local_id: Optional[str] = None
    created_by: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def identifier(self) -> Optional[str]:
        return self.remote_id or self.local_id

    @property
    def is_synced(self) -> bool:
        return bool(self.remote_id)

    def matches_id(self, event_id: str) -> bool:
        return bool(event_id) and event_id in (self.remote_id, self.local_id)

    def same_content(self, other: "ActivityEvent") -> bool:
        """ID를 제외한 기록 내용이 같은지 비교합니다."""
        return (
            self.baby_id == other.baby_id
            and self.kind == other.kind
            and self.timestamp == other.timestamp
            and self.quantity == other.quantity
            and self.duration_minutes == other.duration_minutes
            and self.notes == other.notes
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityEvent":
        """
        로컬 캐시 또는 원격 문서 딕셔너리로부터 ActivityEvent 를 생성합니다.
        type 값은 EventKind.decode 를 거치며, 유형에 맞지 않는 수량/시간 필드는 버립니다.
        """
        processed = dict(data)
        kind = EventKind.decode(processed.pop('type', None))
        timestamp = processed.pop('timestamp', 0)
        quantity = _optional_number(processed.pop('quantity', None))
        duration = _optional_number(processed.pop('durationMinutes', None))
        event = cls(
            baby_id=str(processed.pop('babyId', '') or ''),
            kind=kind,
            timestamp=int(coerce_number(timestamp)),
            quantity=quantity if kind.has_quantity else None,
            duration_minutes=int(round(duration)) if duration is not None and kind.has_duration else None,
            notes=processed.pop('notes', None),
            remote_id=processed.pop('_id', None) or None,
            local_id=processed.pop('id', None) or None,
            created_by=processed.pop('createdBy', None),
        )
        # createdAt/updatedAt 등 모르는 필드는 그대로 보존합니다.
        event.extra = processed
        return event

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data.update({
            'babyId': self.baby_id,
            'type': self.kind.value,
            'timestamp': self.timestamp,
            'notes': self.notes,
        })
        if self.kind.has_quantity:
            data['quantity'] = self.quantity
        if self.kind.has_duration:
            data['durationMinutes'] = self.duration_minutes
        if self.remote_id:
            data['_id'] = self.remote_id
        if self.local_id:
            data['id'] = self.local_id
        if self.created_by:
            data['createdBy'] = self.created_by
        return data

    def to_remote_dict(self) -> Dict[str, Any]:
        """원격 저장용 딕셔너리. 문서 ID는 저장소가 관리하므로 제외합니다."""
        data = self.to_dict()
        data.pop('_id', None)
        data.pop('id', None)
        return data


@dataclass
class DailySummary:
    """하루 동안의 유형별 횟수/합계. 저장되지 않는 파생 데이터입니다."""
    date_key: str
    feed_count: int = 0
    feed_ml: float = 0
    drink_count: int = 0
    drink_ml: float = 0
    pee_count: int = 0
    poop_count: int = 0
    sleep_sessions: int = 0
    sleep_minutes: float = 0

    def merge(self, other: "DailySummary") -> "DailySummary":
        """같은 날짜의 두 요약을 항목별로 더합니다."""
        if other.date_key != self.date_key:
            raise ValueError(f"서로 다른 날짜의 요약은 합칠 수 없습니다: {self.date_key} != {other.date_key}")
        return DailySummary(
            date_key=self.date_key,
            feed_count=self.feed_count + other.feed_count,
            feed_ml=self.feed_ml + other.feed_ml,
            drink_count=self.drink_count + other.drink_count,
            drink_ml=self.drink_ml + other.drink_ml,
            pee_count=self.pee_count + other.pee_count,
            poop_count=self.poop_count + other.poop_count,
            sleep_sessions=self.sleep_sessions + other.sleep_sessions,
            sleep_minutes=self.sleep_minutes + other.sleep_minutes,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dateKey': self.date_key,
            'feedCount': self.feed_count,
            'feedMl': self.feed_ml,
            'drinkCount': self.drink_count,
            'drinkMl': self.drink_ml,
            'peeCount': self.pee_count,
            'poopCount': self.poop_count,
            'sleepSessions': self.sleep_sessions,
            'sleepMinutes': self.sleep_minutes,
        }

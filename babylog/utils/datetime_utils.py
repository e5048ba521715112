"""
프로젝트 전체에서 일관된 시간/날짜 처리를 위한 중앙화된 유틸리티 모듈

이 모듈의 목적:
1. 모든 기록 시각을 Unix timestamp(ms) 정수로 통일
2. 통계/성장 기록에 쓰이는 날짜 키(YYYY-MM-DD) 생성 규칙 통일
3. 기기 현지 시간대 기준의 하루 범위 계산
"""

import logging
import re
from datetime import datetime, date, timedelta, timezone, time, tzinfo
from typing import Optional, Tuple, Union
from dateutil import parser as dateutil_parser
from dateutil import tz as dateutil_tz

logger = logging.getLogger(__name__)

DATE_KEY_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
MS_PER_MINUTE = 60 * 1000
MS_PER_DAY = 24 * 60 * MS_PER_MINUTE

# 날짜 키 계산에 쓰는 시간대. None 이면 기기 현지 시간대를 사용합니다.
_display_tz: Optional[tzinfo] = None


class DateTimeUtils:
    """시간/날짜 처리를 위한 중앙화된 유틸리티 클래스"""

    @staticmethod
    def set_display_timezone(name: Optional[str]) -> None:
        """날짜 키 계산에 사용할 시간대를 설정합니다. 빈 값이면 기기 현지 시간대."""
        global _display_tz
        if not name:
            _display_tz = None
            return
        zone = dateutil_tz.gettz(name)
        if zone is None:
            raise ValueError(f"알 수 없는 시간대입니다: {name}")
        _display_tz = zone

    @staticmethod
    def display_timezone() -> tzinfo:
        return _display_tz or dateutil_tz.tzlocal()

    @staticmethod
    def now() -> datetime:
        """현재 시간을 UTC timezone-aware datetime으로 반환"""
        return datetime.now(timezone.utc)

    @staticmethod
    def now_ms() -> int:
        """현재 시간을 Unix timestamp(ms)로 반환"""
        return DateTimeUtils.to_timestamp_ms(DateTimeUtils.now())

    @staticmethod
    def from_timestamp_ms(timestamp_ms: Union[int, float]) -> datetime:
        """
        Unix timestamp (밀리초)를 UTC datetime 객체로 변환

        Args:
            timestamp_ms: Unix timestamp in milliseconds

        Returns:
            UTC timezone-aware datetime 객체
        """
        if isinstance(timestamp_ms, bool) or not isinstance(timestamp_ms, (int, float)):
            raise ValueError(f"잘못된 timestamp 형식입니다: {timestamp_ms}")
        try:
            return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            logger.error(f"timestamp_ms 변환 실패: {timestamp_ms} - {e}")
            raise ValueError(f"잘못된 timestamp 형식입니다: {timestamp_ms}")

    @staticmethod
    def to_timestamp_ms(dt: datetime) -> int:
        """
        datetime 객체(또는 Firestore timestamp)를 Unix timestamp (밀리초)로 변환
        timezone-naive 값은 UTC로 간주합니다.
        """
        if isinstance(dt, datetime) and dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        if not hasattr(dt, 'timestamp'):
            raise ValueError(f"datetime 객체 또는 Firestore timestamp여야 합니다: {type(dt)}")
        return int(round(dt.timestamp() * 1000))

    @staticmethod
    def format_date_key(timestamp_ms: Union[int, float], zone: Optional[tzinfo] = None) -> str:
        """기록 시각(ms)을 표시 시간대 기준 날짜 키(YYYY-MM-DD)로 변환"""
        zone = zone or DateTimeUtils.display_timezone()
        local_dt = DateTimeUtils.from_timestamp_ms(timestamp_ms).astimezone(zone)
        return local_dt.strftime('%Y-%m-%d')

    @staticmethod
    def day_range_ms(date_key: str, zone: Optional[tzinfo] = None) -> Tuple[int, int]:
        """
        날짜 키에 해당하는 하루의 시작/끝 timestamp(ms)를 반환합니다.
        끝 값은 다음 날 0시 직전(1ms 전)이며 범위 조회에서 양 끝 모두 포함됩니다.
        """
        d = DateTimeUtils.parse_date_key(date_key)
        zone = zone or DateTimeUtils.display_timezone()
        start = datetime.combine(d, time.min).replace(tzinfo=zone)
        end = datetime.combine(d + timedelta(days=1), time.min).replace(tzinfo=zone)
        start_ms = DateTimeUtils.to_timestamp_ms(start)
        return start_ms, DateTimeUtils.to_timestamp_ms(end) - 1

    @staticmethod
    def shift_date_key(date_key: str, days: int) -> str:
        """날짜 키를 days 만큼 이동한 날짜 키를 반환"""
        d = DateTimeUtils.parse_date_key(date_key)
        return DateTimeUtils.to_date_string(d + timedelta(days=days))

    @staticmethod
    def parse_date_key(date_key: str) -> date:
        """엄격한 YYYY-MM-DD 형식의 날짜 키를 date 객체로 변환"""
        if not isinstance(date_key, str) or not DATE_KEY_PATTERN.match(date_key):
            raise ValueError(f"날짜는 YYYY-MM-DD 형식이어야 합니다: {date_key}")
        try:
            return datetime.strptime(date_key, '%Y-%m-%d').date()
        except ValueError:
            raise ValueError(f"존재하지 않는 날짜입니다: {date_key}")

    @staticmethod
    def is_date_key(value: object) -> bool:
        try:
            DateTimeUtils.parse_date_key(value)
            return True
        except ValueError:
            return False

    @staticmethod
    def parse_date_string(date_string: str) -> date:
        """
        날짜 문자열을 date 객체로 파싱

        지원 포맷:
        - 2024-01-15
        - 2024/01/15
        - 01-15-2024
        """
        try:
            if not date_string:
                raise ValueError("빈 문자열은 파싱할 수 없습니다")
            return dateutil_parser.parse(date_string).date()
        except (ValueError, OverflowError, TypeError) as e:
            logger.error(f"날짜 문자열 파싱 실패: {date_string} - {e}")
            raise ValueError(f"잘못된 날짜 형식입니다: {date_string}")

    @staticmethod
    def to_date_string(d: date) -> str:
        """date 객체를 YYYY-MM-DD 형식 문자열로 변환"""
        return d.strftime('%Y-%m-%d')

    @staticmethod
    def normalize_date_key(value: Union[str, date, datetime]) -> str:
        """
        성장/마일스톤 기록의 날짜를 zero-padded YYYY-MM-DD 키로 정규화합니다.
        문자열 비교로 정렬하므로 '2024-1-5' 같은 값은 '2024-01-05'로 바뀌어야 합니다.
        """
        if isinstance(value, datetime):
            return DateTimeUtils.to_date_string(value.date())
        if isinstance(value, date):
            return DateTimeUtils.to_date_string(value)
        if isinstance(value, str) and DATE_KEY_PATTERN.match(value):
            return DateTimeUtils.to_date_string(DateTimeUtils.parse_date_key(value))
        return DateTimeUtils.to_date_string(DateTimeUtils.parse_date_string(value))


# 편의를 위한 글로벌 함수들
def now_ms() -> int:
    """현재 시각(ms) 반환"""
    return DateTimeUtils.now_ms()

def format_date_key(timestamp_ms: Union[int, float], zone: Optional[tzinfo] = None) -> str:
    """기록 시각(ms)을 날짜 키로 변환"""
    return DateTimeUtils.format_date_key(timestamp_ms, zone)

def day_range_ms(date_key: str, zone: Optional[tzinfo] = None) -> Tuple[int, int]:
    """날짜 키의 하루 범위(ms) 반환"""
    return DateTimeUtils.day_range_ms(date_key, zone)

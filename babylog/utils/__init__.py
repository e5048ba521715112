"""
유틸리티 모듈 패키지

이 패키지는 프로젝트 전체에서 공통으로 사용되는 유틸리티 함수들을 포함합니다.
"""

from .datetime_utils import (
    DateTimeUtils,
    now_ms, format_date_key, day_range_ms,
)

__all__ = [
    'DateTimeUtils',
    'now_ms', 'format_date_key', 'day_range_ms',
]

# babylog/core/exceptions.py
"""
원격 저장소/공유 프로토콜에서 발생하는 오류 분류.

각 오류는 기존 코드가 이미 처리하고 있는 내장 예외를 함께 상속하므로
`except PermissionError`, `except FileNotFoundError` 같은 처리가 그대로 동작합니다.
초대 코드 만료/무효는 예외가 아니라 RedeemResult 로 반환됩니다.
"""


class BabyLogError(Exception):
    """babylog 오류의 공통 기반 클래스."""
    error_code = "BABYLOG_ERROR"


class RemoteError(BabyLogError):
    """원격 저장소 호출 실패 (분류되지 않은 원격 오류 포함)."""
    error_code = "REMOTE_ERROR"


class RemoteUnavailable(RemoteError, ConnectionError):
    """원격 저장소 연결/초기화 실패. 대체 경로가 있으면 로컬 저장으로 전환됩니다."""
    error_code = "REMOTE_UNAVAILABLE"


class RemotePermissionDenied(RemoteError, PermissionError):
    """원격 저장소가 요청을 거부함. 자동 재시도하지 않고 호출자에게 그대로 전달합니다."""
    error_code = "PERMISSION_DENIED"


class NotFound(BabyLogError, FileNotFoundError):
    """대상 문서가 존재하지 않음. 동기화 과정에서는 삭제 신호로 취급됩니다."""
    error_code = "NOT_FOUND"


class ValidationFailure(BabyLogError, ValueError):
    """쓰기 전에 거부되는 입력 오류 (빈 공유 코드, 중복 ID 등)."""
    error_code = "VALIDATION_FAILURE"

# babylog/core/config.py

import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """모든 환경 설정의 기반이 되는 공통 설정 클래스입니다."""
    # JWT 토큰 서명 키. 토큰의 identity 가 원격 사용자 ID(CallerIdentity.user_id)가 됩니다.
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY')

    # 원격 저장소 종류: 'firestore' 또는 'memory'
    REMOTE_BACKEND = os.getenv('REMOTE_BACKEND', 'firestore')
    FIREBASE_CREDENTIALS_PATH = os.getenv('FIREBASE_CREDENTIALS_PATH')
    FIREBASE_STORAGE_BUCKET = os.getenv('FIREBASE_STORAGE_BUCKET')

    # 기기 로컬 캐시(JSON 파일). 비어 있으면 메모리 저장소를 사용합니다.
    LOCAL_STORE_PATH = os.getenv('LOCAL_STORE_PATH')
    LOCAL_KEY_PREFIX = os.getenv('LOCAL_KEY_PREFIX', 'baby_tracker_')

    INVITATION_TTL_MINUTES = int(os.getenv('INVITATION_TTL_MINUTES', 30))
    SLEEP_PAIRING_WINDOW_HOURS = int(os.getenv('SLEEP_PAIRING_WINDOW_HOURS', 24))
    # True 이면 초대 코드로 가입해도 소유자 승인 전까지 pending 상태로 남습니다.
    JOIN_REQUIRES_APPROVAL = _env_bool('JOIN_REQUIRES_APPROVAL', False)

    AVATAR_URL_BATCH_SIZE = int(os.getenv('AVATAR_URL_BATCH_SIZE', 50))
    AVATAR_URL_TTL_MINUTES = int(os.getenv('AVATAR_URL_TTL_MINUTES', 60))

    # 날짜 키(YYYY-MM-DD) 계산 시간대. 비어 있으면 기기 현지 시간대.
    DISPLAY_TIMEZONE = os.getenv('DISPLAY_TIMEZONE', '')


class DevelopmentConfig(Config):
    """개발 환경을 위한 설정 클래스입니다."""
    DEBUG = True
    FIREBASE_CREDENTIALS_PATH = os.getenv('DEV_FIREBASE_CREDENTIALS_PATH', Config.FIREBASE_CREDENTIALS_PATH)


class TestingConfig(Config):
    """테스트 환경을 위한 설정 클래스입니다. Firebase 대신 메모리 저장소를 사용합니다."""
    TESTING = True
    DEBUG = False
    JWT_SECRET_KEY = os.getenv('TEST_JWT_SECRET_KEY', 'babylog-testing-secret-key-0123456789')
    REMOTE_BACKEND = 'memory'
    LOCAL_STORE_PATH = None
    DISPLAY_TIMEZONE = 'UTC'


# config_by_name: FLASK_ENV 값에 따라 create_app 에서 설정 클래스를 선택하는 데 사용됩니다.
config_by_name = dict(
    development=DevelopmentConfig,
    testing=TestingConfig
)

# babylog/__init__.py

# =====================================================================================
# 1. 환경 변수 로드 (가장 먼저 실행)
# =====================================================================================
from dotenv import load_dotenv
load_dotenv()

# =====================================================================================
# 2. 모듈 임포트 (Module Imports)
# =====================================================================================
import os
import logging
import threading
from collections.abc import Mapping
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from marshmallow import ValidationError
from flask_jwt_extended import JWTManager
from werkzeug.exceptions import HTTPException
import firebase_admin
from firebase_admin import credentials

# - 설정 및 오류 분류
from babylog.core.config import config_by_name
from babylog.core.exceptions import (
    NotFound, RemoteError, RemotePermissionDenied, RemoteUnavailable, ValidationFailure,
)

# - API 블루프린트
from babylog.api.babies.routes import babies_bp
from babylog.api.records.routes import records_bp
from babylog.api.sharing.routes import sharing_bp
from babylog.api.growth.routes import growth_bp

# - 서비스 모듈
from babylog.services.change_bus import ChangeBus
from babylog.services.local_store import JsonFileLocalStore, LocalKeys, LocalStore, MemoryLocalStore
from babylog.services.remote_store import DocumentStore
from babylog.services.memory_store import MemoryDocumentStore
from babylog.services.firestore_store import FirestoreDocumentStore
from babylog.services.storage_service import StorageService
from babylog.services.avatar_service import AvatarService
from babylog.api.records.services import EventRecordService
from babylog.api.records.quick_actions import QuickActionService
from babylog.api.babies.services import BabyProfileService
from babylog.api.sharing.services import SharingService
from babylog.api.growth.services import GrowthService, MilestoneService
from babylog.utils.datetime_utils import DateTimeUtils


def _setting(config: Any, key: str, default: Any = None) -> Any:
    """설정 클래스와 Flask app.config(딕셔너리) 모두에서 값을 읽습니다."""
    if isinstance(config, Mapping):
        return config.get(key, default)
    return getattr(config, key, default)


def _default_remote_store(config: Any) -> DocumentStore:
    if _setting(config, 'REMOTE_BACKEND', 'firestore') == 'memory':
        return MemoryDocumentStore()
    return FirestoreDocumentStore()


def _default_local_store(config: Any) -> LocalStore:
    local_path = _setting(config, 'LOCAL_STORE_PATH')
    return JsonFileLocalStore(local_path) if local_path else MemoryLocalStore()


def build_services(config: Any,
                   remote_store: Optional[DocumentStore] = None,
                   local_store: Optional[LocalStore] = None,
                   storage_service: Optional[StorageService] = None,
                   key_prefix: Optional[str] = None) -> Dict[str, Any]:
    """
    서비스 객체 그래프를 만듭니다. Flask 없이 라이브러리로 사용할 때와 테스트에서도 사용합니다.

    원격 저장소와 ChangeBus 는 여기서 한 번 만들어져 각 서비스에 주입되며,
    같은 그래프 안의 서비스들은 같은 인스턴스를 공유합니다.
    key_prefix 를 주면 설정의 LOCAL_KEY_PREFIX 대신 로컬 캐시 키 접두어로 사용합니다.
    """
    DateTimeUtils.set_display_timezone(_setting(config, 'DISPLAY_TIMEZONE') or None)

    if remote_store is None:
        remote_store = _default_remote_store(config)
    if local_store is None:
        local_store = _default_local_store(config)
    local_keys = LocalKeys(key_prefix or _setting(config, 'LOCAL_KEY_PREFIX', 'baby_tracker_'))

    services: Dict[str, Any] = {
        'remote_store': remote_store,
        'local_store': local_store,
        'storage': storage_service,
    }

    # 1. 다른 서비스의 기반이 되는 공용 서비스
    services['change_bus'] = ChangeBus()
    services['avatars'] = AvatarService(
        storage_service,
        batch_size=_setting(config, 'AVATAR_URL_BATCH_SIZE', 50),
        url_ttl_minutes=_setting(config, 'AVATAR_URL_TTL_MINUTES', 60),
    )

    # 2. 기록/장부 도메인
    services['records'] = EventRecordService(
        remote_store, local_store, local_keys,
        change_bus=services['change_bus'],
        pairing_window_hours=_setting(config, 'SLEEP_PAIRING_WINDOW_HOURS', 24),
    )
    services['quick_actions'] = QuickActionService(local_store, local_keys)
    services['growth'] = GrowthService(remote_store, local_store, local_keys)
    services['milestones'] = MilestoneService(remote_store, local_store, local_keys)

    # 3. 프로필/공유 도메인
    services['babies'] = BabyProfileService(remote_store, local_store, local_keys)
    services['sharing'] = SharingService(
        remote_store,
        baby_service=services['babies'],
        avatar_service=services['avatars'],
        invitation_ttl_minutes=_setting(config, 'INVITATION_TTL_MINUTES', 30),
        join_requires_approval=_setting(config, 'JOIN_REQUIRES_APPROVAL', False),
    )
    return services


class CallerServices:
    """
    요청 사용자(JWT identity)별 서비스 그래프.

    아기 목록, 현재 아기, 역할, 기록 캐시는 한 사용자의 기기 상태이므로 서버에서는
    사용자 ID 를 로컬 캐시 키 접두어에 붙여 사용자마다 따로 둡니다.
    원격 저장소와 로컬 저장소 객체는 모든 그래프가 공유합니다.
    """

    def __init__(self, config: Any,
                 remote_store: Optional[DocumentStore] = None,
                 local_store: Optional[LocalStore] = None,
                 storage_service: Optional[StorageService] = None):
        self.config = config
        self.remote_store = remote_store if remote_store is not None else _default_remote_store(config)
        self.local_store = local_store if local_store is not None else _default_local_store(config)
        self.storage_service = storage_service
        self.key_prefix = _setting(config, 'LOCAL_KEY_PREFIX', 'baby_tracker_')
        self._graphs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def for_user(self, user_id: str) -> Dict[str, Any]:
        if not user_id:
            raise PermissionError("사용자 식별 정보가 없는 요청입니다.")
        with self._lock:
            graph = self._graphs.get(user_id)
            if graph is None:
                graph = build_services(
                    self.config, self.remote_store, self.local_store, self.storage_service,
                    key_prefix=f"{self.key_prefix}{user_id}_",
                )
                self._graphs[user_id] = graph
                logging.info(f"Service graph created for user {user_id}")
        return graph


def create_app(config_name: Optional[str] = None,
               remote_store: Optional[DocumentStore] = None,
               local_store: Optional[LocalStore] = None,
               storage_service: Optional[StorageService] = None) -> Flask:
    """
    Flask 애플리케이션 팩토리 함수.
    """
    # =====================================================================================
    # 3. Flask 앱 생성 및 기본 설정
    # =====================================================================================
    config_name = config_name or os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    app.json.ensure_ascii = False

    # =====================================================================================
    # 4. 확장 기능 및 외부 서비스 초기화
    # =====================================================================================
    JWTManager(app)

    if remote_store is None and app.config['REMOTE_BACKEND'] == 'firestore':
        if not firebase_admin._apps:
            cred_path = app.config['FIREBASE_CREDENTIALS_PATH']
            if not cred_path or not os.path.exists(cred_path):
                raise FileNotFoundError(f"Firebase 인증 파일을 찾을 수 없습니다: {cred_path}")
            cred = credentials.Certificate(cred_path)
            firebase_admin.initialize_app(cred, {
                'storageBucket': app.config['FIREBASE_STORAGE_BUCKET']
            })

        if storage_service is None:
            try:
                storage_service = StorageService()
                storage_service.init_app(app)
                logging.info("Storage service initialized successfully")
            except Exception as e:
                logging.error(f"Failed to initialize storage service: {e}")
                raise

    # =====================================================================================
    # 5. 사용자별 서비스 그래프를 'app.caller_services'에 저장 (의존성 주입)
    # =====================================================================================
    app.caller_services = CallerServices(app.config, remote_store, local_store, storage_service)
    logging.info("Babylog services initialized successfully")

    # =====================================================================================
    # 6. 블루프린트 등록
    # =====================================================================================
    app.register_blueprint(babies_bp, url_prefix='/api/babies')
    app.register_blueprint(records_bp, url_prefix='/api/babies')
    app.register_blueprint(growth_bp, url_prefix='/api/babies')
    app.register_blueprint(sharing_bp, url_prefix='/api')

    # =====================================================================================
    # 7. 전역 에러 핸들러 설정
    # =====================================================================================
    @app.errorhandler(ValidationError)
    def handle_marshmallow_validation(err):
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    @app.errorhandler(ValidationFailure)
    def handle_validation_failure(err):
        return jsonify({"error_code": "VALIDATION_ERROR", "message": str(err)}), 400

    @app.errorhandler(RemotePermissionDenied)
    @app.errorhandler(PermissionError)
    def handle_permission_error(err):
        logging.warning(f"Permission denied: {err}")
        return jsonify({"error_code": "FORBIDDEN", "message": str(err)}), 403

    @app.errorhandler(NotFound)
    def handle_not_found(err):
        return jsonify({"error_code": "NOT_FOUND", "message": str(err)}), 404

    @app.errorhandler(RemoteUnavailable)
    def handle_remote_unavailable(err):
        logging.warning(f"Remote store unavailable: {err}")
        return jsonify({"error_code": "REMOTE_UNAVAILABLE", "message": "원격 저장소에 연결할 수 없습니다. 잠시 후 다시 시도해주세요."}), 503

    @app.errorhandler(RemoteError)
    def handle_remote_error(err):
        logging.error(f"Remote store error: {err}", exc_info=True)
        return jsonify({"error_code": "REMOTE_ERROR", "message": "원격 저장소 처리 중 오류가 발생했습니다."}), 502

    @app.errorhandler(HTTPException)
    def handle_http_exception(err):
        return jsonify({"error_code": err.name.upper().replace(' ', '_'), "message": err.description}), err.code

    @app.errorhandler(Exception)
    def handle_generic_exception(err):
        # 다른 핸들러에서 처리되지 않은 모든 예외를 여기서 처리
        logging.error(f"An unhandled exception occurred: {err}", exc_info=True)
        response = {"error_code": "INTERNAL_SERVER_ERROR", "message": "서버 내부에서 예상치 못한 오류가 발생했습니다."}
        return jsonify(response), 500

    # =====================================================================================
    # 8. 로깅 및 앱 반환
    # =====================================================================================
    if not app.debug:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]')

    logging.info(f"Flask app created for '{config_name}' environment.")

    return app

# babylog/conftest.py
"""
공용 pytest 픽스처.

모든 테스트는 Firebase 대신 MemoryDocumentStore(원격)와 MemoryLocalStore(기기 로컬)를 사용합니다.
원격 장애는 remote.offline = True (RemoteUnavailable) 또는
remote.denied.add('<collection>') (RemotePermissionDenied) 로 재현합니다.
"""
import pytest

from babylog import build_services, create_app
from babylog.core.config import TestingConfig
from babylog.core.security import create_caller_token
from babylog.models.sharing import CallerIdentity
from babylog.services.avatar_service import clear_avatar_cache
from babylog.services.local_store import MemoryLocalStore
from babylog.services.memory_store import MemoryDocumentStore
from babylog.utils.datetime_utils import DateTimeUtils


@pytest.fixture(autouse=True)
def utc_date_keys():
    DateTimeUtils.set_display_timezone('UTC')
    yield
    DateTimeUtils.set_display_timezone(None)


@pytest.fixture(autouse=True)
def empty_avatar_cache():
    clear_avatar_cache()
    yield
    clear_avatar_cache()


@pytest.fixture
def remote():
    return MemoryDocumentStore()


@pytest.fixture
def local():
    return MemoryLocalStore()


@pytest.fixture
def services(remote, local):
    """첫 번째 사용자(소유자) 기기의 서비스 그래프."""
    return build_services(TestingConfig, remote_store=remote, local_store=local)


@pytest.fixture
def member_local():
    return MemoryLocalStore()


@pytest.fixture
def member_services(remote, member_local):
    """같은 원격 저장소를 공유하는 두 번째 사용자 기기의 서비스 그래프."""
    return build_services(TestingConfig, remote_store=remote, local_store=member_local)


@pytest.fixture
def owner():
    return CallerIdentity(user_id='user-owner', nickname='엄마', avatar_url='')


@pytest.fixture
def member():
    return CallerIdentity(user_id='user-member', nickname='아빠', avatar_url='')


@pytest.fixture
def app(remote, local):
    return create_app('testing', remote_store=remote, local_store=local)


@pytest.fixture
def member_app(remote, member_local):
    return create_app('testing', remote_store=remote, local_store=member_local)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def member_client(member_app):
    return member_app.test_client()


@pytest.fixture
def auth_headers(app, owner):
    with app.app_context():
        token = create_caller_token(owner)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def member_headers(member_app, member):
    with member_app.app_context():
        token = create_caller_token(member)
    return {'Authorization': f'Bearer {token}'}

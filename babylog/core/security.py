# babylog/core/security.py
from datetime import timedelta
from typing import Any, Dict, Optional

from flask import current_app
from flask_jwt_extended import create_access_token, get_jwt, get_jwt_identity

from babylog.core.exceptions import NotFound
from babylog.models.baby import BabyProfile
from babylog.models.sharing import CallerIdentity


def current_caller() -> CallerIdentity:
    """
    현재 요청의 JWT 에서 CallerIdentity 를 만듭니다.
    identity 는 원격 사용자 ID, 'nickname'/'avatarUrl' 추가 클레임은 가족 구성원 표시 정보입니다.
    jwt_required 가 적용된 뷰 안에서만 호출해야 합니다.
    """
    claims = get_jwt()
    return CallerIdentity(
        user_id=get_jwt_identity(),
        nickname=claims.get('nickname'),
        avatar_url=claims.get('avatarUrl'),
    )


def caller_services() -> Dict[str, Any]:
    """현재 요청 사용자의 서비스 그래프. 다른 사용자의 로컬 캐시에는 접근하지 않습니다."""
    return current_app.caller_services.for_user(get_jwt_identity())


def require_local_baby(baby_id: str) -> BabyProfile:
    """
    요청 사용자의 아기 목록에 있는 아기만 다룰 수 있습니다 (소유자 또는 구성원).
    목록에 없으면 다른 가족의 아기인지 알 수 없도록 NotFound 로 응답합니다.
    """
    baby = caller_services()['babies'].get_baby(baby_id)
    if baby is None:
        raise NotFound(f"아기를 찾을 수 없습니다: {baby_id}")
    return baby


def create_caller_token(caller: CallerIdentity, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token(
        identity=caller.user_id,
        additional_claims={'nickname': caller.nickname or '', 'avatarUrl': caller.avatar_url or ''},
        expires_delta=expires_delta if expires_delta is not None else timedelta(hours=1),
    )

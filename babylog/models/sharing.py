# babylog/models/sharing.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from babylog.models.baby import BabyProfile


class InvitationStatus(Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class JoinStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CallerIdentity:
    """원격 저장소 필터와 기록에 사용되는 현재 사용자 정보."""
    user_id: str
    nickname: Optional[str] = None
    avatar_url: Optional[str] = None

    def user_info(self) -> Dict[str, Any]:
        return {
            'userId': self.user_id,
            'nickname': self.nickname or '',
            'avatarUrl': self.avatar_url or '',
        }


@dataclass
class Invitation:
    """
    Firestore 'invitations' 컬렉션 문서 구조.
    expires_at 이 지나면 별도의 정리 작업 없이 조회 시점에 무효로 취급됩니다.
    """
    code: str
    baby_id: str
    expires_at: int  # Unix timestamp(ms)
    status: InvitationStatus = InvitationStatus.ACTIVE
    created_at: Optional[int] = None
    created_by: Optional[str] = None
    invitation_id: Optional[str] = None

    def is_redeemable(self, now_ms: int) -> bool:
        return self.status is InvitationStatus.ACTIVE and now_ms < self.expires_at

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Invitation":
        status_value = data.get('status')
        try:
            status = InvitationStatus(status_value)
        except ValueError:
            logging.warning(f"Invalid invitation status '{status_value}' for code {data.get('code')}. Treating as expired.")
            status = InvitationStatus.EXPIRED
        return cls(
            code=str(data.get('code', '')),
            baby_id=data.get('babyId', ''),
            expires_at=int(data.get('expiresAt') or 0),
            status=status,
            created_at=data.get('createdAt'),
            created_by=data.get('createdBy'),
            invitation_id=data.get('_id'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'babyId': self.baby_id,
            'expiresAt': self.expires_at,
            'status': self.status.value,
            'createdAt': self.created_at,
            'createdBy': self.created_by,
        }


@dataclass
class JoinRecord:
    """Firestore 'join_requests' 컬렉션 문서 구조. (babyId, userId) 한 쌍의 가족 구성원 상태."""
    baby_id: str
    user_id: str
    status: JoinStatus
    user_info: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    record_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JoinRecord":
        status_value = data.get('status')
        try:
            status = JoinStatus(status_value)
        except ValueError:
            logging.warning(f"Invalid join status '{status_value}' for record {data.get('_id')}. Treating as pending.")
            status = JoinStatus.PENDING
        user_info = data.get('userInfo')
        return cls(
            baby_id=data.get('babyId', ''),
            user_id=data.get('userId', ''),
            status=status,
            user_info=dict(user_info) if isinstance(user_info, dict) else {},
            created_at=data.get('createdAt'),
            updated_at=data.get('updatedAt'),
            record_id=data.get('_id'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'babyId': self.baby_id,
            'userId': self.user_id,
            'status': self.status.value,
            'userInfo': dict(self.user_info),
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }


@dataclass
class RedeemResult:
    """초대 코드 사용 결과. 만료/무효 코드는 예외 대신 success=False 로 반환됩니다."""
    success: bool
    baby: Optional[BabyProfile] = None
    reason: Optional[str] = None  # INVALID_INVITATION, BABY_NOT_FOUND
    already_joined: bool = False
    pending: bool = False


@dataclass
class WriteResult:
    """
    낙관적 로컬 쓰기 + 원격 동기화 결과.
    local_ok 는 항상 True 이며, remote_ok 가 False 이면 '저장됨, 아직 동기화 안 됨' 상태입니다.
    """
    local_ok: bool = True
    remote_ok: bool = False
    remote_error: Optional[Exception] = None

    @property
    def synced(self) -> bool:
        return self.local_ok and self.remote_ok


@dataclass
class ReconcileReport:
    """동기화 한 번의 결과 요약."""
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    added: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'updated': list(self.updated),
            'removed': list(self.removed),
            'added': list(self.added),
            'failed': list(self.failed),
        }


@dataclass
class AvatarResolution:
    """아기 ID → 표시용 아바타 URL. limited=True 면 일부 이미지를 불러오지 못한 상태입니다."""
    urls: Dict[str, str] = field(default_factory=dict)
    limited: bool = False

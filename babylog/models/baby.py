# babylog/models/baby.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any
import logging

DEFAULT_BABY_NAME = "이름 없는 아기"


class BabyRole(Enum):
    OWNER = "owner"
    MEMBER = "member"


@dataclass
class BabyProfile:
    """
    로컬 'babies' 목록 / 원격 'babies' 컬렉션 문서 구조.
    id 는 가족 공유에 쓰이는 공유 코드이기도 하며 대소문자를 구분합니다.
    role 은 로컬에서 계산되는 값으로, 원격 데이터가 임의로 덮어쓰지 않습니다.
    """
    id: str
    name: str = DEFAULT_BABY_NAME
    avatar_url: str = ""
    gender: Optional[str] = None
    birthday: Optional[str] = None  # YYYY-MM-DD
    role: Optional[BabyRole] = None
    creator_info: Dict[str, Any] = field(default_factory=dict)
    owner_id: Optional[str] = None
    deleted: bool = False  # 원격 전용 소프트 삭제 플래그
    synced: bool = False   # 마지막 원격 쓰기 성공 여부 (로컬 기록용)

    @property
    def is_owner(self) -> bool:
        return self.role is BabyRole.OWNER

    @property
    def is_member(self) -> bool:
        return self.role is BabyRole.MEMBER

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BabyProfile":
        """
        로컬 캐시 또는 원격 문서로부터 BabyProfile 을 생성합니다.
        누락된 표시 필드는 기본값으로 채우고, 잘못된 role 값은 None 으로 처리합니다.
        """
        processed = data or {}
        role_value = processed.get('role')
        role = None
        if isinstance(role_value, BabyRole):
            role = role_value
        elif role_value:
            try:
                role = BabyRole(role_value)
            except ValueError:
                logging.warning(f"Invalid BabyRole value '{role_value}' for baby {processed.get('id')}. Ignoring.")

        creator_info = processed.get('creatorInfo')
        return cls(
            id=str(processed.get('id') or processed.get('_id') or '').strip(),
            name=processed.get('name') or DEFAULT_BABY_NAME,
            avatar_url=processed.get('avatarUrl') or "",
            gender=processed.get('gender') or None,
            birthday=processed.get('birthday') or None,
            role=role,
            creator_info=dict(creator_info) if isinstance(creator_info, dict) else {},
            owner_id=processed.get('ownerId') or None,
            deleted=bool(processed.get('deleted', False)),
            synced=bool(processed.get('synced', False)),
        )

    def to_local_dict(self) -> Dict[str, Any]:
        """로컬 캐시에 저장하는 형태. deleted 플래그는 원격 전용이므로 저장하지 않습니다."""
        return {
            'id': self.id,
            'name': self.name,
            'avatarUrl': self.avatar_url,
            'gender': self.gender,
            'birthday': self.birthday,
            'role': self.role.value if self.role else None,
            'creatorInfo': dict(self.creator_info),
            'ownerId': self.owner_id,
            'synced': self.synced,
        }

    def profile_fields(self) -> Dict[str, Any]:
        """원격 문서에 쓰는 표시용 필드."""
        return {
            'name': self.name,
            'avatarUrl': self.avatar_url,
            'gender': self.gender,
            'birthday': self.birthday,
        }

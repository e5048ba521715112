# babylog/models/growth.py
from dataclasses import dataclass
from typing import Any, Dict, Optional

from babylog.models.event import coerce_number


@dataclass
class GrowthRecord:
    """
    'growth' 컬렉션 / 로컬 'growth_<babyId>' 목록의 키·몸무게 기록.
    date 는 문자열 비교로 정렬되므로 zero-padded YYYY-MM-DD 여야 합니다.
    """
    baby_id: str
    date: str
    height: Optional[float] = None  # cm
    weight: Optional[float] = None  # kg
    remote_id: Optional[str] = None
    local_id: Optional[str] = None

    @property
    def identifier(self) -> Optional[str]:
        return self.remote_id or self.local_id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GrowthRecord":
        height = data.get('height')
        weight = data.get('weight')
        return cls(
            baby_id=data.get('babyId', ''),
            date=str(data.get('date', '')),
            height=coerce_number(height) if height not in (None, '') else None,
            weight=coerce_number(weight) if weight not in (None, '') else None,
            remote_id=data.get('_id') or None,
            local_id=data.get('id') or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'babyId': self.baby_id,
            'date': self.date,
            'height': self.height,
            'weight': self.weight,
        }
        if self.remote_id:
            data['_id'] = self.remote_id
        if self.local_id:
            data['id'] = self.local_id
        return data


@dataclass
class MilestoneRecord:
    """'milestones' 컬렉션 / 로컬 'milestones_<babyId>' 목록의 성장 이정표 기록."""
    baby_id: str
    date: str
    title: str
    description: str = ""
    photo_local_path: Optional[str] = None
    photo_file_id: Optional[str] = None
    remote_id: Optional[str] = None
    local_id: Optional[str] = None

    @property
    def identifier(self) -> Optional[str]:
        return self.remote_id or self.local_id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MilestoneRecord":
        return cls(
            baby_id=data.get('babyId', ''),
            date=str(data.get('date', '')),
            title=data.get('title') or '',
            description=data.get('description') or '',
            photo_local_path=data.get('photoLocalPath'),
            photo_file_id=data.get('photoFileId'),
            remote_id=data.get('_id') or None,
            local_id=data.get('id') or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'babyId': self.baby_id,
            'date': self.date,
            'title': self.title,
            'description': self.description,
            'photoLocalPath': self.photo_local_path,
            'photoFileId': self.photo_file_id,
        }
        if self.remote_id:
            data['_id'] = self.remote_id
        if self.local_id:
            data['id'] = self.local_id
        return data

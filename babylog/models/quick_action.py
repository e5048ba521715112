# babylog/models/quick_action.py
from dataclasses import dataclass
from typing import Any, Dict, List

from babylog.models.event import EventKind


@dataclass
class QuickAction:
    """빠른 기록 버튼 하나. 목록 순서가 곧 화면 표시 순서입니다."""
    kind: EventKind
    label: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuickAction":
        kind = EventKind.decode(data.get('type'))
        return cls(kind=kind, label=data.get('label') or kind.value)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.kind.value, 'label': self.label}


def default_quick_actions() -> List[QuickAction]:
    return [
        QuickAction(EventKind.FEED, '수유'),
        QuickAction(EventKind.DRINK, '물'),
        QuickAction(EventKind.URINATE, '소변'),
        QuickAction(EventKind.DEFECATE, '대변'),
        QuickAction(EventKind.SLEEP_START, '잠들기'),
        QuickAction(EventKind.SLEEP_END, '깨기'),
    ]

# babylog/api/records/quick_actions.py
import logging
from typing import List

from babylog.core.exceptions import ValidationFailure
from babylog.models.event import EventKind
from babylog.models.quick_action import QuickAction, default_quick_actions
from babylog.services.local_store import LocalKeys, LocalStore

logger = logging.getLogger(__name__)


class QuickActionService:
    """
    아기별 빠른 기록 버튼 구성을 로컬에 저장/관리하는 서비스 클래스.
    저장된 목록의 순서가 화면 표시 순서이며, 읽을 때마다 같은 순서를 유지합니다.
    """

    def __init__(self, local_store: LocalStore, local_keys: LocalKeys):
        self.local_store = local_store
        self.local_keys = local_keys

    def get(self, baby_id: str) -> List[QuickAction]:
        """저장된 구성을 반환합니다. 처음 읽을 때는 기본 구성을 저장한 뒤 반환합니다."""
        key = self.local_keys.quick_actions(baby_id)
        stored = self.local_store.get(key)
        if stored is None:
            actions = default_quick_actions()
            self._save(baby_id, actions)
            logger.info(f"Default quick actions stored for baby {baby_id}")
            return actions

        actions = []
        for item in self.local_store.get_list(key):
            if not isinstance(item, dict):
                continue
            action = QuickAction.from_dict(item)
            if action.kind is not EventKind.UNKNOWN:
                actions.append(action)
        return actions

    def _save(self, baby_id: str, actions: List[QuickAction]) -> None:
        self.local_store.set(self.local_keys.quick_actions(baby_id), [a.to_dict() for a in actions])

    def set(self, baby_id: str, actions: List[QuickAction]) -> List[QuickAction]:
        kinds = [a.kind for a in actions]
        if EventKind.UNKNOWN in kinds:
            raise ValidationFailure("알 수 없는 기록 유형은 빠른 기록에 추가할 수 없습니다.")
        if len(set(kinds)) != len(kinds):
            raise ValidationFailure("같은 기록 유형을 두 번 추가할 수 없습니다.")
        self._save(baby_id, actions)
        return list(actions)

    def add(self, baby_id: str, kind: EventKind, label: str = None) -> List[QuickAction]:
        actions = self.get(baby_id)
        if any(a.kind is kind for a in actions):
            raise ValidationFailure(f"이미 추가된 기록 유형입니다: {kind.value}")
        actions.append(QuickAction(kind=kind, label=label or kind.value))
        return self.set(baby_id, actions)

    def remove(self, baby_id: str, kind: EventKind) -> List[QuickAction]:
        actions = self.get(baby_id)
        remaining = [a for a in actions if a.kind is not kind]
        if len(remaining) == len(actions):
            logger.info(f"Quick action {kind.value} not configured for baby {baby_id}")
            return actions
        self._save(baby_id, remaining)
        return remaining

    def reorder(self, baby_id: str, kinds: List[EventKind]) -> List[QuickAction]:
        """kinds 순서대로 재배열합니다. kinds 는 현재 구성의 순열이어야 합니다."""
        actions = self.get(baby_id)
        by_kind = {a.kind: a for a in actions}
        if len(kinds) != len(actions) or set(kinds) != set(by_kind):
            raise ValidationFailure("순서 변경 목록이 현재 빠른 기록 구성과 일치하지 않습니다.")
        reordered = [by_kind[kind] for kind in kinds]
        self._save(baby_id, reordered)
        return reordered

    def move(self, baby_id: str, from_index: int, to_index: int) -> List[QuickAction]:
        actions = self.get(baby_id)
        if not (0 <= from_index < len(actions)) or not (0 <= to_index < len(actions)):
            raise ValidationFailure(f"잘못된 위치입니다: {from_index} -> {to_index}")
        action = actions.pop(from_index)
        actions.insert(to_index, action)
        self._save(baby_id, actions)
        return actions

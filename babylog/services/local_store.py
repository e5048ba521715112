# babylog/services/local_store.py
"""
기기 로컬 키-값 저장소.

읽기/쓰기는 동기 방식이며 await 지점이 아닙니다. 값은 JSON 으로 표현 가능한
dict/list/str/number 만 저장합니다.
"""
import copy
import json
import logging
import os
import tempfile
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class LocalKeys:
    """로컬 저장 키 규칙. 기존 기기에 저장된 키와 호환되어야 하므로 형식을 바꾸지 않습니다."""

    def __init__(self, prefix: str = 'baby_tracker_'):
        self.prefix = prefix

    def current_baby(self) -> str:
        return f"{self.prefix}current_baby"

    def babies(self) -> str:
        return f"{self.prefix}babies"

    def events(self, baby_id: str) -> str:
        return f"{self.prefix}events_{baby_id}"

    def growth(self, baby_id: str) -> str:
        return f"{self.prefix}growth_{baby_id}"

    def milestones(self, baby_id: str) -> str:
        return f"{self.prefix}milestones_{baby_id}"

    def quick_actions(self, baby_id: str) -> str:
        return f"{self.prefix}quick_actions_{baby_id}"


class LocalStore:
    """로컬 키-값 저장소 인터페이스."""

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def get_list(self, key: str) -> list:
        """목록 값을 읽습니다. 저장된 값이 목록이 아니면 빈 목록을 반환합니다."""
        value = self.get(key)
        if isinstance(value, list):
            return value
        if value is not None:
            logger.warning(f"Local key {key} holds {type(value).__name__}, expected list; ignoring")
        return []


class MemoryLocalStore(LocalStore):
    """프로세스 메모리 저장소. 테스트 및 LOCAL_STORE_PATH 미설정 시 사용합니다."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())


class JsonFileLocalStore(LocalStore):
    """
    JSON 파일 하나에 모든 키를 저장하는 영구 저장소.
    쓰기는 임시 파일에 기록한 뒤 os.replace 로 교체하여 중간 상태가 남지 않게 합니다.
    """

    def __init__(self, path: str):
        self.path = path
        self._data: Dict[str, Any] = self._load()
        logger.info(f"JsonFileLocalStore initialized at {path} ({len(self._data)} keys)")

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"로컬 저장소 파일을 읽을 수 없습니다 ({self.path}): {e}", exc_info=True)
            raise
        if not isinstance(data, dict):
            raise ValueError(f"로컬 저장소 파일 형식이 올바르지 않습니다: {self.path}")
        return data

    def _flush(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix='.babylog-', suffix='.json', dir=directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self._data, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self._flush()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

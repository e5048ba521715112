# babylog/services/test_local_store.py
"""
로컬 저장소 테스트

사용법: python -m pytest babylog/services/test_local_store.py -v
"""
import json

import pytest

from babylog.services.local_store import JsonFileLocalStore, LocalKeys, MemoryLocalStore


def test_local_keys_keep_existing_format():
    """기존 기기 데이터와 호환되는 키 형식"""
    keys = LocalKeys()
    assert keys.babies() == 'baby_tracker_babies'
    assert keys.current_baby() == 'baby_tracker_current_baby'
    assert keys.events('b1') == 'baby_tracker_events_b1'
    assert keys.quick_actions('b1') == 'baby_tracker_quick_actions_b1'


def test_memory_store_returns_copies():
    store = MemoryLocalStore()
    store.set('k', [{'a': 1}])
    value = store.get('k')
    value[0]['a'] = 2
    assert store.get('k') == [{'a': 1}]


def test_get_list_ignores_non_list_values():
    store = MemoryLocalStore({'k': {'not': 'a list'}})
    assert store.get_list('k') == []
    assert store.get_list('missing') == []


def test_json_file_store_persists_across_instances(tmp_path):
    path = tmp_path / 'local.json'
    store = JsonFileLocalStore(str(path))
    store.set('baby_tracker_babies', [{'id': 'b1', 'name': '아기'}])

    reopened = JsonFileLocalStore(str(path))
    assert reopened.get('baby_tracker_babies') == [{'id': 'b1', 'name': '아기'}]
    assert json.loads(path.read_text(encoding='utf-8'))['baby_tracker_babies'][0]['name'] == '아기'

    reopened.remove('baby_tracker_babies')
    assert JsonFileLocalStore(str(path)).get('baby_tracker_babies') is None


def test_json_file_store_rejects_corrupt_file(tmp_path):
    path = tmp_path / 'local.json'
    path.write_text('[1, 2, 3]', encoding='utf-8')
    with pytest.raises(ValueError):
        JsonFileLocalStore(str(path))

# babylog/services/test_change_bus.py
"""
기록 변경 구독(ChangeBus) 테스트

사용법: python -m pytest babylog/services/test_change_bus.py -v
"""
import asyncio

import pytest

from babylog import build_services
from babylog.core.config import TestingConfig
from babylog.models.event import ActivityEvent, EventKind
from babylog.services.change_bus import ChangeBus
from babylog.services.local_store import MemoryLocalStore

T0 = 1710061200000  # 2024-03-10 09:00:00 UTC


def _feed(quantity=120, ts=T0):
    return ActivityEvent(baby_id='b1', kind=EventKind.FEED, timestamp=ts, quantity=quantity)


@pytest.mark.asyncio
async def test_subscribe_pushes_current_list_immediately(services):
    await services['records'].append(_feed())
    snapshots = []
    unsubscribe = await services['records'].watch('b1', snapshots.append)

    assert len(snapshots) == 1
    assert [e.quantity for e in snapshots[0]] == [120]
    unsubscribe()


@pytest.mark.asyncio
async def test_each_change_is_delivered_once(services):
    """로컬 알림과 원격 푸시가 같은 변경을 두 번 알려도 한 번만 전달"""
    records = services['records']
    snapshots = []
    unsubscribe = await records.watch('b1', snapshots.append)

    await records.append(_feed())
    assert len(snapshots) == 2

    await services['change_bus'].notify('b1')
    assert len(snapshots) == 2
    unsubscribe()


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent_and_closes_remote_watch(services, remote):
    records = services['records']
    bus = services['change_bus']
    first = await records.watch('b1', lambda snapshot: None)
    second = await records.watch('b1', lambda snapshot: None)
    assert bus.subscriber_count('b1') == 2
    assert len(remote.watches) == 1

    first()
    first()
    assert bus.subscriber_count('b1') == 1
    assert bus.has_remote_watch('b1')

    second()
    assert bus.subscriber_count('b1') == 0
    assert not bus.has_remote_watch('b1')
    assert not remote.watches


@pytest.mark.asyncio
async def test_no_delivery_after_unsubscribe(services):
    records = services['records']
    snapshots = []
    unsubscribe = await records.watch('b1', snapshots.append)
    unsubscribe()

    await records.append(_feed())
    assert len(snapshots) == 1


@pytest.mark.asyncio
async def test_failing_callback_does_not_block_other_subscribers(services):
    records = services['records']
    received = []

    def broken(snapshot):
        raise RuntimeError("화면 갱신 실패")

    unsubscribe_broken = await records.watch('b1', broken)
    unsubscribe_ok = await records.watch('b1', received.append)

    await records.append(_feed())
    assert len(received) == 2
    unsubscribe_broken()
    unsubscribe_ok()


@pytest.mark.asyncio
async def test_async_callback_is_scheduled(services):
    records = services['records']
    received = []

    async def on_change(snapshot):
        received.append(len(snapshot))

    unsubscribe = await records.watch('b1', on_change)
    await records.append(_feed())
    await asyncio.sleep(0)
    assert received == [0, 1]
    unsubscribe()


@pytest.mark.asyncio
async def test_change_from_another_device_is_pushed(services, remote):
    """같은 원격 저장소를 쓰는 다른 기기의 기록도 실시간 구독으로 전달"""
    other_device = build_services(TestingConfig, remote_store=remote, local_store=MemoryLocalStore())
    snapshots = []
    unsubscribe = await services['records'].watch('b1', snapshots.append)

    await other_device['records'].append(_feed(quantity=90))

    assert [e.quantity for e in snapshots[-1]] == [90]
    # 원격 푸시로 받은 목록은 이 기기의 로컬 캐시에도 반영됨
    assert services['records'].find_local('b1', snapshots[-1][0].remote_id) is not None
    unsubscribe()


@pytest.mark.asyncio
async def test_offline_subscribe_uses_local_cache(services, remote):
    records = services['records']
    remote.offline = True
    await records.append(_feed())
    snapshots = []
    unsubscribe = await records.watch('b1', snapshots.append)

    assert len(snapshots) == 1
    assert snapshots[0][0].local_id
    assert not services['change_bus'].has_remote_watch('b1')
    unsubscribe()


class GatedSource:
    """query 가 gate 가 열릴 때까지 기다리는 기록 저장소 대역 (원격 조회 지연 재현)."""

    def __init__(self):
        self.snapshot = []
        self.gate = asyncio.Event()
        self.gate.set()
        self.started = asyncio.Event()

    async def query(self, baby_id):
        result = list(self.snapshot)
        self.started.set()
        await self.gate.wait()
        return result

    def remote_watch_query(self, baby_id):
        return None

    def snapshot_from_remote(self, baby_id, docs):
        return docs


@pytest.mark.asyncio
async def test_slow_notify_does_not_overwrite_newer_push():
    """조회가 끝나기 전에 원격 푸시로 더 새 목록이 오면 늦은 조회 결과는 버림"""
    source = GatedSource()
    bus = ChangeBus()
    bus.attach_source(source)
    snapshots = []
    unsubscribe = await bus.subscribe('b1', snapshots.append)

    first, second = _feed(quantity=120), _feed(quantity=90, ts=T0 + 60_000)
    first.remote_id, second.remote_id = 'e1', 'e2'

    source.snapshot = [first]
    source.gate.clear()
    source.started.clear()
    pending = asyncio.ensure_future(bus.notify('b1'))
    await source.started.wait()

    bus.publish('b1', [second, first])
    source.gate.set()
    await pending

    assert [[e.quantity for e in s] for s in snapshots] == [[], [90, 120]]
    unsubscribe()


@pytest.mark.asyncio
async def test_initial_list_is_skipped_when_push_arrives_during_subscribe():
    source = GatedSource()
    bus = ChangeBus()
    bus.attach_source(source)
    newer = _feed()
    newer.remote_id = 'e1'

    source.gate.clear()
    snapshots = []
    pending = asyncio.ensure_future(bus.subscribe('b1', snapshots.append))
    await source.started.wait()

    bus.publish('b1', [newer])
    source.gate.set()
    unsubscribe = await pending

    assert [[e.quantity for e in s] for s in snapshots] == [[120]]
    unsubscribe()

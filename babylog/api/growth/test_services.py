# babylog/api/growth/test_services.py
"""
성장/이정표 기록 테스트

사용법: python -m pytest babylog/api/growth/test_services.py -v
"""
import pytest

from babylog.core.exceptions import RemotePermissionDenied, ValidationFailure
from babylog.models.growth import GrowthRecord, MilestoneRecord


@pytest.mark.asyncio
async def test_dates_are_normalized_and_sorted(services):
    growth = services['growth']
    await growth.add(GrowthRecord(baby_id='b1', date='2024-1-5', height=55.0))
    await growth.add(GrowthRecord(baby_id='b1', date='2024-01-20', weight=4.2))
    await growth.add(GrowthRecord(baby_id='b1', date='2023-12-31', weight=3.8))

    records = await growth.list('b1')
    assert [r.date for r in records] == ['2024-01-20', '2024-01-05', '2023-12-31']
    assert (await growth.latest('b1')).weight == 4.2


@pytest.mark.asyncio
@pytest.mark.parametrize('record', [
    GrowthRecord(baby_id='b1', date='2024-01-05'),
    GrowthRecord(baby_id='b1', date='2024-01-05', height=0),
    GrowthRecord(baby_id='b1', date='not a date', height=50),
    GrowthRecord(baby_id='', date='2024-01-05', height=50),
])
async def test_invalid_growth_records_are_rejected(services, remote, record):
    with pytest.raises(ValidationFailure):
        await services['growth'].add(record)
    assert remote.calls['growth.add'] == 0


@pytest.mark.asyncio
async def test_offline_growth_is_kept_until_synced(services, remote):
    growth = services['growth']
    remote.offline = True
    offline_record = await growth.add(GrowthRecord(baby_id='b1', date='2024-01-05', height=55.0))
    assert offline_record.local_id and not offline_record.remote_id
    assert [r.local_id for r in await growth.list('b1')] == [offline_record.local_id]

    remote.offline = False
    await growth.add(GrowthRecord(baby_id='b1', date='2024-02-05', height=58.0))
    records = await growth.list('b1')
    assert [r.date for r in records] == ['2024-02-05', '2024-01-05']
    assert records[1].local_id == offline_record.local_id


@pytest.mark.asyncio
async def test_permission_denied_propagates(services, remote):
    remote.denied.add('growth')
    with pytest.raises(RemotePermissionDenied):
        await services['growth'].list('b1')


@pytest.mark.asyncio
async def test_remove_growth_record(services):
    growth = services['growth']
    saved = await growth.add(GrowthRecord(baby_id='b1', date='2024-01-05', height=55.0))

    assert await growth.remove('b1', saved.remote_id) is True
    assert await growth.list('b1') == []
    assert await growth.remove('b1', saved.remote_id) is False


@pytest.mark.asyncio
async def test_milestones_require_title(services):
    milestones = services['milestones']
    with pytest.raises(ValidationFailure):
        await milestones.add(MilestoneRecord(baby_id='b1', date='2024-03-01', title='  '))

    saved = await milestones.add(MilestoneRecord(baby_id='b1', date='2024-3-1', title='첫 뒤집기'))
    assert saved.date == '2024-03-01'
    assert [m.title for m in await milestones.list('b1')] == ['첫 뒤집기']

# babylog/api/sharing/test_end_to_end.py
"""
두 기기 시나리오: 엄마가 아기를 만들고 초대 → 아빠가 참여 → 엄마의 기록이 아빠 화면에 전달

사용법: python -m pytest babylog/api/sharing/test_end_to_end.py -v
"""
import pytest

from babylog.models.baby import BabyProfile, BabyRole
from babylog.models.event import ActivityEvent, EventKind

T0 = 1710061200000  # 2024-03-10 09:00:00 UTC


@pytest.mark.asyncio
async def test_shared_family_sees_each_others_records(services, member_services, owner, member):
    # 1. 엄마 기기: 아기 생성 및 초대 코드 발급
    created = await services['babies'].create_baby(BabyProfile(id='123456', name='하늘'), owner)
    assert created.synced
    invitation = await services['sharing'].issue_invitation('123456', owner)

    # 2. 아빠 기기: 초대 코드로 참여
    joined = await member_services['sharing'].redeem_invitation(invitation.code, member)
    assert joined.success
    assert member_services['babies'].get_baby('123456').role is BabyRole.MEMBER

    # 3. 아빠 기기에서 기록 구독
    snapshots = []
    unsubscribe = await member_services['records'].watch('123456', snapshots.append)
    assert snapshots == [[]]

    # 4. 엄마 기기에서 수유 기록
    await services['records'].append(
        ActivityEvent(baby_id='123456', kind=EventKind.FEED, timestamp=T0, quantity=120, created_by=owner.user_id)
    )

    latest = snapshots[-1]
    assert len(snapshots) == 2
    assert [(e.kind, e.quantity, e.created_by) for e in latest] == [(EventKind.FEED, 120, owner.user_id)]

    # 5. 아빠 기기의 통계에도 반영
    summary = await member_services['records'].daily_summary('123456', '2024-03-10')
    assert summary.feed_count == 1
    assert summary.feed_ml == 120

    # 6. 아빠가 가족에서 나가면 로컬에서 사라지고 엄마 쪽 구성원 목록에서도 빠짐
    unsubscribe()
    assert await member_services['babies'].exit_family('123456', member) == 1
    assert member_services['babies'].list_babies() == []
    assert await services['sharing'].list_members('123456', owner) == []

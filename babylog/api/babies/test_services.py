# babylog/api/babies/test_services.py
"""
아기 프로필 서비스 테스트

사용법: python -m pytest babylog/api/babies/test_services.py -v
"""
import pytest

from babylog.core.exceptions import NotFound, RemoteUnavailable, ValidationFailure
from babylog.models.baby import BabyProfile, BabyRole


def _set_local_babies(services, items):
    babies = services['babies']
    services['local_store'].set(babies.local_keys.babies(), items)


def test_list_babies_drops_duplicates_and_empty_ids(services):
    _set_local_babies(services, [
        {'id': 'b1', 'name': '첫째'},
        {'id': 'b1', 'name': '중복'},
        {'id': '', 'name': 'ID 없음'},
        'corrupt',
        {'id': 'b2'},
    ])
    babies = services['babies'].list_babies()
    assert [b.id for b in babies] == ['b1', 'b2']
    assert babies[0].name == '첫째'


def test_empty_list_does_not_create_placeholder(services):
    babies = services['babies']
    assert babies.list_babies() == []
    assert babies.get_current_id() == ''
    assert babies.list_babies() == []


def test_stale_current_pointer_falls_back_to_first(services):
    babies = services['babies']
    _set_local_babies(services, [{'id': 'b1'}, {'id': 'b2'}])
    services['local_store'].set(babies.local_keys.current_baby(), 'gone')

    assert babies.get_current_id() == 'b1'
    assert services['local_store'].get(babies.local_keys.current_baby()) == 'b1'


def test_set_current_requires_local_baby(services):
    babies = services['babies']
    _set_local_babies(services, [{'id': 'b1'}, {'id': 'b2'}])
    assert babies.set_current_id('b2') == 'b2'
    assert babies.get_current_id() == 'b2'
    with pytest.raises(NotFound):
        babies.set_current_id('b3')


@pytest.mark.asyncio
async def test_entries_without_role_are_read_as_owned(services, owner):
    """역할을 저장하지 않던 이전 형식의 목록은 소유자 아기로 취급"""
    babies = services['babies']
    _set_local_babies(services, [{'id': 'legacy', 'name': '하늘'}])

    assert babies.get_baby('legacy').role is BabyRole.OWNER
    with pytest.raises(PermissionError):
        await babies.exit_family('legacy', owner)

    await babies.soft_delete('legacy', owner)
    assert babies.list_babies() == []


@pytest.mark.asyncio
async def test_create_baby_writes_owner_document(services, remote, owner):
    result = await services['babies'].create_baby(BabyProfile(id='123456', name='하늘'), owner)

    assert result.synced
    doc = remote.documents('babies')['123456']
    assert doc['ownerId'] == owner.user_id
    assert doc['creatorInfo']['nickname'] == '엄마'
    assert doc['deleted'] is False
    stored = services['babies'].get_baby('123456')
    assert stored.role is BabyRole.OWNER
    assert stored.synced
    assert services['babies'].get_current_id() == '123456'


@pytest.mark.asyncio
async def test_create_baby_validates_before_any_write(services, remote, owner, member):
    babies = services['babies']
    with pytest.raises(ValidationFailure):
        await babies.create_baby(BabyProfile(id='   '), owner)
    assert remote.calls['babies.get'] == 0

    await babies.create_baby(BabyProfile(id='b1'), owner)
    with pytest.raises(ValidationFailure):
        await babies.create_baby(BabyProfile(id='b1'), owner)

    # 다른 가족이 사용 중인 ID
    await remote.collection('babies').doc('taken').set({'ownerId': member.user_id, 'deleted': False})
    with pytest.raises(ValidationFailure):
        await babies.create_baby(BabyProfile(id='taken'), owner)
    assert babies.get_baby('taken') is None


@pytest.mark.asyncio
async def test_create_baby_offline_is_saved_locally(services, remote, owner):
    remote.offline = True
    result = await services['babies'].create_baby(BabyProfile(id='b1'), owner)

    assert result.local_ok
    assert not result.remote_ok
    assert isinstance(result.remote_error, RemoteUnavailable)
    assert not services['babies'].get_baby('b1').synced


@pytest.mark.asyncio
async def test_upsert_round_trip(services, owner):
    babies = services['babies']
    await babies.create_baby(BabyProfile(id='b1', name='하늘'), owner)
    await babies.upsert(BabyProfile(id='b1', name='바다', birthday='2024-01-05', gender='female'), owner)

    stored = babies.get_baby('b1')
    assert (stored.name, stored.birthday, stored.gender) == ('바다', '2024-01-05', 'female')
    assert stored.owner_id == owner.user_id


@pytest.mark.asyncio
async def test_local_role_wins_unless_forced(services, owner):
    babies = services['babies']
    await babies.upsert(BabyProfile(id='b1', role=BabyRole.MEMBER), sync_remote=False)

    await babies.upsert(BabyProfile(id='b1', role=BabyRole.OWNER), sync_remote=False)
    assert babies.get_baby('b1').role is BabyRole.MEMBER

    await babies.upsert(BabyProfile(id='b1', role=BabyRole.OWNER), sync_remote=False, force_role=True)
    assert babies.get_baby('b1').role is BabyRole.OWNER


@pytest.mark.asyncio
async def test_member_upsert_updates_profile_fields_only(services, member_services, remote, owner, member):
    await services['babies'].create_baby(BabyProfile(id='b1', name='하늘'), owner)
    result = await member_services['babies'].upsert(
        BabyProfile(id='b1', role=BabyRole.MEMBER, name='하늘이'), member, force_role=True,
    )

    assert result.synced
    doc = remote.documents('babies')['b1']
    assert doc['name'] == '하늘이'
    assert doc['ownerId'] == owner.user_id


@pytest.mark.asyncio
async def test_soft_delete_marks_remote_and_removes_local(services, remote, owner):
    babies = services['babies']
    await babies.create_baby(BabyProfile(id='b1'), owner)
    await babies.create_baby(BabyProfile(id='b2'), owner)

    await babies.soft_delete('b1', owner)

    doc = remote.documents('babies')['b1']
    assert doc['deleted'] is True
    assert doc['deletedBy'] == owner.user_id
    assert babies.get_baby('b1') is None
    assert babies.get_current_id() == 'b2'


@pytest.mark.asyncio
async def test_soft_delete_and_exit_are_role_restricted(services, owner):
    babies = services['babies']
    await babies.create_baby(BabyProfile(id='b1'), owner)
    await babies.upsert(BabyProfile(id='b2', role=BabyRole.MEMBER), sync_remote=False)

    with pytest.raises(PermissionError):
        await babies.exit_family('b1', owner)
    with pytest.raises(PermissionError):
        await babies.soft_delete('b2', owner)
    with pytest.raises(NotFound):
        await babies.soft_delete('missing', owner)


@pytest.mark.asyncio
async def test_exit_family_removes_join_records(services, remote, member):
    babies = services['babies']
    await babies.upsert(BabyProfile(id='b1', role=BabyRole.MEMBER), sync_remote=False)
    join_requests = remote.collection('join_requests')
    await join_requests.add({'babyId': 'b1', 'userId': member.user_id, 'status': 'approved'})
    await join_requests.add({'babyId': 'b1', 'userId': 'someone-else', 'status': 'approved'})

    assert await babies.exit_family('b1', member) == 1
    assert babies.get_baby('b1') is None
    assert [d['userId'] for d in remote.documents('join_requests').values()] == ['someone-else']

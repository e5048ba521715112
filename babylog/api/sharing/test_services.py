# babylog/api/sharing/test_services.py
"""
가족 공유(초대 코드, 참여 요청, 동기화) 테스트

사용법: python -m pytest babylog/api/sharing/test_services.py -v
"""
import pytest

from babylog import build_services
from babylog.api.sharing.services import BABY_NOT_FOUND, INVALID_INVITATION
from babylog.core.config import TestingConfig
from babylog.core.exceptions import NotFound, RemoteUnavailable, ValidationFailure
from babylog.models.baby import BabyProfile, BabyRole
from babylog.models.sharing import CallerIdentity, JoinStatus
from babylog.services.local_store import MemoryLocalStore

T0 = 1710061200000  # 2024-03-10 09:00:00 UTC
TTL_MS = 30 * 60 * 1000


class ApprovalConfig(TestingConfig):
    JOIN_REQUIRES_APPROVAL = True


async def _family(services, owner, baby_id='123456'):
    await services['babies'].create_baby(BabyProfile(id=baby_id, name='하늘'), owner)
    return await services['sharing'].issue_invitation(baby_id, owner, now=T0)


@pytest.mark.asyncio
async def test_issue_invitation_code_and_expiry(services, remote, owner):
    invitation = await _family(services, owner)

    assert len(invitation.code) == 6 and invitation.code.isdigit()
    assert invitation.expires_at == T0 + TTL_MS
    doc = remote.documents('invitations')[invitation.invitation_id]
    assert doc['status'] == 'active'
    assert doc['createdBy'] == owner.user_id


@pytest.mark.asyncio
async def test_issue_invitation_requires_owner_and_connection(services, member_services, remote, owner, member):
    await _family(services, owner)
    await member_services['babies'].upsert(BabyProfile(id='123456', role=BabyRole.MEMBER), sync_remote=False)

    with pytest.raises(PermissionError):
        await member_services['sharing'].issue_invitation('123456', member)
    with pytest.raises(NotFound):
        await services['sharing'].issue_invitation('unknown', owner)

    remote.offline = True
    with pytest.raises(RemoteUnavailable):
        await services['sharing'].issue_invitation('123456', owner)


@pytest.mark.asyncio
async def test_issue_invitation_redraws_code_in_use(services, owner, monkeypatch):
    await services['babies'].create_baby(BabyProfile(id='b1'), owner)
    await services['babies'].create_baby(BabyProfile(id='b2'), owner)
    draws = iter(['111111', '111111', '222222'])
    monkeypatch.setattr('babylog.api.sharing.services.draw_invitation_code', lambda: next(draws))

    first = await services['sharing'].issue_invitation('b1', owner, now=T0)
    second = await services['sharing'].issue_invitation('b2', owner, now=T0)
    assert (first.code, second.code) == ('111111', '222222')

    # 만료된 코드는 다시 사용할 수 있음
    monkeypatch.setattr('babylog.api.sharing.services.draw_invitation_code', lambda: '111111')
    reused = await services['sharing'].issue_invitation('b2', owner, now=T0 + TTL_MS)
    assert reused.code == '111111'


@pytest.mark.asyncio
async def test_redeem_just_before_expiry_succeeds(services, member_services, remote, owner, member):
    invitation = await _family(services, owner)

    result = await member_services['sharing'].redeem_invitation(invitation.code, member, now=invitation.expires_at - 1)

    assert result.success
    assert not result.already_joined
    assert result.baby.id == '123456'
    assert result.baby.role is BabyRole.MEMBER
    assert result.baby.name == '하늘'
    records = list(remote.documents('join_requests').values())
    assert [(r['userId'], r['status']) for r in records] == [(member.user_id, 'approved')]


@pytest.mark.asyncio
async def test_redeem_after_expiry_is_rejected(services, member_services, owner, member):
    invitation = await _family(services, owner)

    result = await member_services['sharing'].redeem_invitation(invitation.code, member, now=invitation.expires_at + 1)

    assert not result.success
    assert result.reason == INVALID_INVITATION
    assert member_services['babies'].list_babies() == []


@pytest.mark.asyncio
@pytest.mark.parametrize('code', ['', '   ', '12345', '1234567', 'abcdef'])
async def test_redeem_rejects_malformed_codes(member_services, remote, member, code):
    with pytest.raises(ValidationFailure):
        await member_services['sharing'].redeem_invitation(code, member)
    assert remote.calls['invitations.query'] == 0


@pytest.mark.asyncio
async def test_redeem_unknown_code(member_services, member):
    result = await member_services['sharing'].redeem_invitation('000000', member, now=T0)
    assert not result.success
    assert result.reason == INVALID_INVITATION


@pytest.mark.asyncio
async def test_redeem_is_idempotent(services, member_services, remote, owner, member):
    invitation = await _family(services, owner)
    sharing = member_services['sharing']

    await sharing.redeem_invitation(invitation.code, member, now=T0 + 1)
    again = await sharing.redeem_invitation(invitation.code, member, now=T0 + 2)

    assert again.success
    assert again.already_joined
    assert len(remote.documents('join_requests')) == 1
    assert [b.id for b in member_services['babies'].list_babies()] == ['123456']


@pytest.mark.asyncio
async def test_owner_redeeming_own_code_keeps_owner_role(services, owner):
    invitation = await _family(services, owner)
    result = await services['sharing'].redeem_invitation(invitation.code, owner, now=T0 + 1)

    assert result.success and result.already_joined
    assert result.baby.role is BabyRole.OWNER


@pytest.mark.asyncio
async def test_redeem_for_deleted_baby(services, member_services, owner, member):
    invitation = await _family(services, owner)
    await services['babies'].soft_delete('123456', owner)

    result = await member_services['sharing'].redeem_invitation(invitation.code, member, now=T0 + 1)
    assert not result.success
    assert result.reason == BABY_NOT_FOUND


@pytest.mark.asyncio
async def test_join_requires_approval_variant(services, remote, member_local, owner, member):
    invitation = await _family(services, owner)
    member_services = build_services(ApprovalConfig, remote_store=remote, local_store=member_local)

    pending = await member_services['sharing'].redeem_invitation(invitation.code, member, now=T0 + 1)
    assert pending.success and pending.pending
    assert member_services['babies'].list_babies() == []

    requests = await services['sharing'].list_join_requests('123456', owner, JoinStatus.PENDING)
    assert [r.user_id for r in requests] == [member.user_id]

    # 대기 중 재사용은 같은 요청을 가리킴
    again = await member_services['sharing'].redeem_invitation(invitation.code, member, now=T0 + 2)
    assert again.pending and again.already_joined
    assert len(remote.documents('join_requests')) == 1

    await services['sharing'].review_join_request(requests[0].record_id, True, owner)
    report = await member_services['sharing'].reconcile(member)
    assert report.added == ['123456']
    assert member_services['babies'].get_baby('123456').role is BabyRole.MEMBER


@pytest.mark.asyncio
async def test_rejected_request_is_reused_on_next_redeem(services, remote, member_local, owner, member):
    invitation = await _family(services, owner)
    member_services = build_services(ApprovalConfig, remote_store=remote, local_store=member_local)
    await member_services['sharing'].redeem_invitation(invitation.code, member, now=T0 + 1)
    record_id = next(iter(remote.documents('join_requests')))
    await services['sharing'].review_join_request(record_id, False, owner)

    result = await member_services['sharing'].redeem_invitation(invitation.code, member, now=T0 + 2)

    assert result.pending
    docs = remote.documents('join_requests')
    assert list(docs) == [record_id]
    assert docs[record_id]['status'] == 'pending'


@pytest.mark.asyncio
async def test_members_and_member_removal(services, member_services, owner, member):
    invitation = await _family(services, owner)
    await member_services['sharing'].redeem_invitation(invitation.code, member, now=T0 + 1)

    members = await services['sharing'].list_members('123456', owner)
    assert [m.user_info['nickname'] for m in members] == ['아빠']

    with pytest.raises(ValidationFailure):
        await services['sharing'].remove_member('123456', owner.user_id, owner)
    assert await services['sharing'].remove_member('123456', member.user_id, owner) == 1

    # 다음 동기화 때 구성원 기기에서도 제거됨
    report = await member_services['sharing'].reconcile(member)
    assert report.removed == ['123456']
    assert member_services['babies'].list_babies() == []


@pytest.mark.asyncio
async def test_reconcile_keeps_member_role(services, member_services, owner, member):
    """원격 문서가 바뀌어도 구성원 기기의 역할은 구성원으로 유지"""
    invitation = await _family(services, owner)
    await member_services['sharing'].redeem_invitation(invitation.code, member, now=T0 + 1)
    await services['babies'].upsert(BabyProfile(id='123456', name='하늘이'), owner)

    report = await member_services['sharing'].reconcile(member)

    assert report.updated == ['123456']
    baby = member_services['babies'].get_baby('123456')
    assert baby.role is BabyRole.MEMBER
    assert baby.name == '하늘이'


@pytest.mark.asyncio
async def test_reconcile_removes_deleted_family(services, member_services, owner, member):
    invitation = await _family(services, owner)
    await member_services['sharing'].redeem_invitation(invitation.code, member, now=T0 + 1)
    await services['babies'].soft_delete('123456', owner)

    report = await member_services['sharing'].reconcile(member)
    assert report.removed == ['123456']
    assert member_services['babies'].get_current_id() == ''


@pytest.mark.asyncio
async def test_reconcile_restores_owned_babies_on_new_device(services, remote, owner):
    await services['babies'].create_baby(BabyProfile(id='b1', name='하늘'), owner)
    new_device = build_services(TestingConfig, remote_store=remote, local_store=MemoryLocalStore())

    report = await new_device['sharing'].reconcile(owner)

    assert report.added == ['b1']
    restored = new_device['babies'].get_baby('b1')
    assert restored.role is BabyRole.OWNER
    assert restored.name == '하늘'


@pytest.mark.asyncio
async def test_reconcile_keeps_never_synced_owned_baby(services, remote, owner):
    remote.offline = True
    await services['babies'].create_baby(BabyProfile(id='offline-baby'), owner)
    remote.offline = False

    report = await services['sharing'].reconcile(owner)
    assert 'offline-baby' not in report.removed
    assert services['babies'].get_baby('offline-baby') is not None


@pytest.mark.asyncio
async def test_reconcile_partial_failure_keeps_going(services, member_services, remote, owner, member):
    invitation = await _family(services, owner)
    await member_services['sharing'].redeem_invitation(invitation.code, member, now=T0 + 1)
    await member_services['babies'].create_baby(BabyProfile(id='own-baby'), member)
    remote.denied.add('join_requests')

    report = await member_services['sharing'].reconcile(member)

    assert report.failed == ['123456']
    assert report.updated == ['own-baby']
    assert member_services['babies'].get_baby('123456') is not None


@pytest.mark.asyncio
async def test_reconcile_offline_reports_all_failed(services, owner):
    await services['babies'].create_baby(BabyProfile(id='b1'), owner)
    services['remote_store'].offline = True

    report = await services['sharing'].reconcile(owner)
    assert report.failed == ['b1']
    assert services['babies'].get_baby('b1') is not None


@pytest.mark.asyncio
async def test_review_requires_local_owned_baby(services, remote, member_local, owner, member):
    invitation = await _family(services, owner)
    approval = build_services(ApprovalConfig, remote_store=remote, local_store=member_local)
    await approval['sharing'].redeem_invitation(invitation.code, member, now=T0 + 1)
    record_id = next(iter(remote.documents('join_requests')))

    outsider = CallerIdentity(user_id='user-outsider')
    outsider_services = build_services(TestingConfig, remote_store=remote, local_store=MemoryLocalStore())
    with pytest.raises(NotFound):
        await outsider_services['sharing'].review_join_request(record_id, True, outsider)
    with pytest.raises(NotFound):
        await services['sharing'].review_join_request('missing', True, owner)

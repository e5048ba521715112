# babylog/api/sharing/services.py
"""
가족 공유 프로토콜.

한 사용자 입장에서 아기별 상태는 다음과 같이 바뀝니다.
    (참여 안 함) --생성--> 소유자
    (참여 안 함) --유효한 초대 코드--> 구성원 (승인 필요 설정 시 승인 후)
    소유자/구성원 --삭제/나가기--> (참여 안 함)

초대 코드 만료는 조회 시점에 expiresAt 으로만 판단하며, 별도의 만료 처리 작업은 없습니다.
"""
import logging
import re
import secrets
from dataclasses import replace
from typing import Dict, List, Optional

from babylog.api.babies.services import BabyProfileService
from babylog.core.exceptions import NotFound, RemoteError, ValidationFailure
from babylog.models.baby import BabyProfile, BabyRole
from babylog.models.sharing import (
    AvatarResolution, CallerIdentity, Invitation, InvitationStatus, JoinRecord, JoinStatus,
    ReconcileReport, RedeemResult,
)
from babylog.services.avatar_service import AvatarService
from babylog.services.remote_store import DocumentStore, BABIES, INVITATIONS, JOIN_REQUESTS
from babylog.utils.datetime_utils import DateTimeUtils, MS_PER_MINUTE

logger = logging.getLogger(__name__)

INVALID_INVITATION = "INVALID_INVITATION"
BABY_NOT_FOUND = "BABY_NOT_FOUND"

_CODE_PATTERN = re.compile(r'^\d{6}$')
_MAX_CODE_DRAWS = 10


def draw_invitation_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


class SharingService:
    def __init__(self, remote_store: DocumentStore, baby_service: BabyProfileService,
                 avatar_service: AvatarService, invitation_ttl_minutes: int = 30,
                 join_requires_approval: bool = False):
        self.invitations_ref = remote_store.collection(INVITATIONS)
        self.join_requests_ref = remote_store.collection(JOIN_REQUESTS)
        self.babies_ref = remote_store.collection(BABIES)
        self.baby_service = baby_service
        self.avatar_service = avatar_service
        self.invitation_ttl_ms = invitation_ttl_minutes * MS_PER_MINUTE
        self.join_requires_approval = join_requires_approval
        logger.info(f"SharingService initialized (join approval: {join_requires_approval}).")

    def _require_local(self, baby_id: str) -> BabyProfile:
        baby = self.baby_service.get_baby(baby_id)
        if not baby:
            raise NotFound(f"아기를 찾을 수 없습니다: {baby_id}")
        return baby

    def _require_owner(self, baby_id: str) -> BabyProfile:
        baby = self._require_local(baby_id)
        if not baby.is_owner:
            raise PermissionError("가족 관리는 아기 프로필 소유자만 할 수 있습니다.")
        return baby

    async def _active_invitations(self, code: str, now: int) -> List[dict]:
        return await self.invitations_ref \
            .where('code', '==', code) \
            .where('status', '==', InvitationStatus.ACTIVE.value) \
            .where('expiresAt', '>', now) \
            .limit(1) \
            .get()

    async def _draw_unused_code(self, now: int) -> str:
        """사용 중인(활성, 미만료) 초대 코드와 겹치지 않는 코드를 뽑습니다."""
        for _ in range(_MAX_CODE_DRAWS):
            code = draw_invitation_code()
            if not await self._active_invitations(code, now):
                return code
            logger.info("Invitation code collision, drawing again")
        raise RemoteError("사용 가능한 초대 코드를 찾지 못했습니다. 잠시 후 다시 시도해주세요.")

    async def _join_records(self, baby_id: str, user_id: str) -> List[JoinRecord]:
        docs = await self.join_requests_ref \
            .where('babyId', '==', baby_id) \
            .where('userId', '==', user_id) \
            .get()
        return [JoinRecord.from_dict(doc) for doc in docs]

    async def _store_as_member(self, remote_baby: BabyProfile) -> BabyProfile:
        """원격에서 받은 프로필을 구성원 역할로 로컬에 저장합니다. 원격에는 쓰지 않습니다."""
        await self.baby_service.upsert(
            replace(remote_baby, role=BabyRole.MEMBER, synced=True),
            force_role=True,
            sync_remote=False,
        )
        return self.baby_service.get_baby(remote_baby.id)

    # ------------------------------------------------------------------
    # 초대
    # ------------------------------------------------------------------

    async def issue_invitation(self, baby_id: str, caller: CallerIdentity, now: Optional[int] = None) -> Invitation:
        """
        [소유자 전용] 6자리 초대 코드를 발급합니다. 원격 저장소 연결이 필요하며,
        연결할 수 없으면 RemoteUnavailable 이 그대로 전달됩니다.
        """
        self._require_owner(baby_id)
        now = DateTimeUtils.now_ms() if now is None else now
        invitation = Invitation(
            code=await self._draw_unused_code(now),
            baby_id=baby_id,
            expires_at=now + self.invitation_ttl_ms,
            status=InvitationStatus.ACTIVE,
            created_at=now,
            created_by=caller.user_id,
        )
        invitation.invitation_id = await self.invitations_ref.add(invitation.to_dict())
        logger.info(f"Invitation issued for baby {baby_id} by {caller.user_id} (expires at {invitation.expires_at})")
        return invitation

    async def redeem_invitation(self, code: str, caller: CallerIdentity, now: Optional[int] = None) -> RedeemResult:
        """
        초대 코드로 가족에 참여합니다.
        만료/무효 코드와 삭제된 아기는 예외가 아니라 success=False 결과로 반환됩니다.
        """
        code = (code or '').strip()
        if not code:
            raise ValidationFailure("초대 코드를 입력해주세요.")
        if not _CODE_PATTERN.match(code):
            raise ValidationFailure("초대 코드는 6자리 숫자입니다.")
        now = DateTimeUtils.now_ms() if now is None else now

        docs = await self._active_invitations(code, now)
        invitation = Invitation.from_dict(docs[0]) if docs else None
        if invitation is None or not invitation.is_redeemable(now):
            logger.info(f"Invalid or expired invitation code used by {caller.user_id}")
            return RedeemResult(success=False, reason=INVALID_INVITATION)

        baby_doc = await self.babies_ref.doc(invitation.baby_id).get()
        if not baby_doc or baby_doc.get('deleted'):
            return RedeemResult(success=False, reason=BABY_NOT_FOUND)
        remote_baby = BabyProfile.from_dict({**baby_doc, 'id': invitation.baby_id, 'role': None})

        if remote_baby.owner_id == caller.user_id:
            await self.baby_service.upsert(
                replace(remote_baby, role=BabyRole.OWNER, synced=True), caller, sync_remote=False,
            )
            return RedeemResult(success=True, baby=self.baby_service.get_baby(remote_baby.id), already_joined=True)

        status = JoinStatus.PENDING if self.join_requires_approval else JoinStatus.APPROVED
        records = await self._join_records(invitation.baby_id, caller.user_id)
        active = next((r for r in records if r.status is not JoinStatus.REJECTED), None)

        if active is not None:
            if active.status is JoinStatus.PENDING:
                return RedeemResult(success=True, already_joined=True, pending=True)
            return RedeemResult(success=True, baby=await self._store_as_member(remote_baby), already_joined=True)

        if records:
            # 거절되었던 요청은 새로 만들지 않고 상태만 되돌립니다.
            await self.join_requests_ref.doc(records[0].record_id).update({
                'status': status.value,
                'userInfo': caller.user_info(),
                'updatedAt': now,
            })
        else:
            record = JoinRecord(
                baby_id=invitation.baby_id,
                user_id=caller.user_id,
                status=status,
                user_info=caller.user_info(),
                created_at=now,
                updated_at=now,
            )
            await self.join_requests_ref.add(record.to_dict())
        logger.info(f"User {caller.user_id} joined baby {invitation.baby_id} (status: {status.value})")

        if status is JoinStatus.PENDING:
            return RedeemResult(success=True, pending=True)
        return RedeemResult(success=True, baby=await self._store_as_member(remote_baby))

    # ------------------------------------------------------------------
    # 참여 요청/구성원 관리
    # ------------------------------------------------------------------

    async def list_join_requests(self, baby_id: str, caller: CallerIdentity,
                                 status: Optional[JoinStatus] = None) -> List[JoinRecord]:
        self._require_owner(baby_id)
        query = self.join_requests_ref.where('babyId', '==', baby_id)
        if status is not None:
            query = query.where('status', '==', status.value)
        records = [JoinRecord.from_dict(doc) for doc in await query.get()]
        return sorted(records, key=lambda r: r.created_at or 0, reverse=True)

    async def review_join_request(self, record_id: str, approve: bool, caller: CallerIdentity) -> JoinRecord:
        """[소유자 전용] 대기 중인 참여 요청을 승인하거나 거절합니다."""
        doc = await self.join_requests_ref.doc(record_id).get()
        if doc is None:
            raise NotFound(f"참여 요청을 찾을 수 없습니다: {record_id}")
        record = JoinRecord.from_dict(doc)
        self._require_owner(record.baby_id)

        record.status = JoinStatus.APPROVED if approve else JoinStatus.REJECTED
        record.updated_at = DateTimeUtils.now_ms()
        await self.join_requests_ref.doc(record_id).update({
            'status': record.status.value,
            'updatedAt': record.updated_at,
            'reviewedBy': caller.user_id,
        })
        logger.info(f"Join request {record_id} {record.status.value} by {caller.user_id}")
        return record

    async def list_members(self, baby_id: str, caller: CallerIdentity) -> List[JoinRecord]:
        """승인된 구성원 목록. 소유자와 구성원 모두 조회할 수 있습니다."""
        self._require_local(baby_id)
        docs = await self.join_requests_ref \
            .where('babyId', '==', baby_id) \
            .where('status', '==', JoinStatus.APPROVED.value) \
            .get()
        return [JoinRecord.from_dict(doc) for doc in docs]

    async def remove_member(self, baby_id: str, user_id: str, caller: CallerIdentity) -> int:
        """[소유자 전용] 구성원의 참여 기록을 삭제합니다. 해당 구성원은 다음 동기화 때 로컬에서도 제거됩니다."""
        self._require_owner(baby_id)
        if user_id == caller.user_id:
            raise ValidationFailure("소유자는 자신을 구성원에서 제거할 수 없습니다.")
        records = await self._join_records(baby_id, user_id)
        if not records:
            raise NotFound(f"구성원을 찾을 수 없습니다: {user_id}")
        for record in records:
            await self.join_requests_ref.doc(record.record_id).remove()
        logger.info(f"Member {user_id} removed from baby {baby_id} by {caller.user_id}")
        return len(records)

    # ------------------------------------------------------------------
    # 동기화
    # ------------------------------------------------------------------

    async def reconcile(self, caller: CallerIdentity) -> ReconcileReport:
        """
        로컬 아기 목록을 원격 상태와 맞춥니다.

        - 소유자 아기: ownerId 가 caller 인 원격 문서를 다시 조회해 반영하고,
          원격에서 삭제 표시되었거나 사라진(이전에 동기화된 적 있는) 아기는 로컬에서 삭제
        - 구성원 아기: 아기별로 원격 문서와 참여 기록을 확인하고, 없거나 삭제되었거나
          참여가 취소되었으면 로컬에서 삭제. 로컬의 구성원 역할은 유지
        - 승인된 참여 기록 중 아직 로컬에 없는 아기를 구성원으로 추가

        아기별 오류는 경고 로그만 남기고 다음 아기를 계속 처리합니다.
        NotFound 는 삭제 신호로 취급합니다.
        """
        report = ReconcileReport()
        local_babies = self.baby_service.list_babies()

        await self._reconcile_owned(caller, local_babies, report)
        for baby in local_babies:
            if baby.is_member:
                await self._reconcile_member(caller, baby, report)
        await self._discover_memberships(caller, report)

        logger.info(
            f"Reconcile for {caller.user_id}: updated={len(report.updated)}, removed={len(report.removed)}, "
            f"added={len(report.added)}, failed={len(report.failed)}"
        )
        return report

    async def _reconcile_owned(self, caller: CallerIdentity, local_babies: List[BabyProfile],
                               report: ReconcileReport) -> None:
        owned = [b for b in local_babies if b.is_owner]
        try:
            docs = await self.babies_ref.where('ownerId', '==', caller.user_id).get()
        except RemoteError as e:
            logger.warning(f"소유 아기 목록 동기화 실패 ({caller.user_id}): {e}")
            report.failed.extend(b.id for b in owned)
            return

        remote_by_id: Dict[str, dict] = {doc['_id']: doc for doc in docs}
        local_by_id = {b.id: b for b in local_babies}

        for baby in owned:
            doc = remote_by_id.get(baby.id)
            if doc is None and not baby.synced:
                # 아직 원격에 올라간 적 없는 로컬 전용 프로필
                continue
            if doc is None or doc.get('deleted'):
                if self.baby_service.delete_local(baby.id):
                    report.removed.append(baby.id)

        for baby_id, doc in remote_by_id.items():
            if doc.get('deleted'):
                continue
            remote_baby = BabyProfile.from_dict({**doc, 'id': baby_id, 'role': BabyRole.OWNER.value, 'synced': True})
            await self.baby_service.upsert(remote_baby, caller, sync_remote=False)
            if baby_id in local_by_id:
                report.updated.append(baby_id)
            else:
                report.added.append(baby_id)

    async def _reconcile_member(self, caller: CallerIdentity, baby: BabyProfile, report: ReconcileReport) -> None:
        try:
            doc = await self.babies_ref.doc(baby.id).get()
            if doc is None or doc.get('deleted'):
                raise NotFound(f"원격 아기 프로필이 없거나 삭제되었습니다: {baby.id}")
            if doc.get('ownerId') != caller.user_id:
                records = await self._join_records(baby.id, caller.user_id)
                if not any(r.status is JoinStatus.APPROVED for r in records):
                    raise NotFound(f"가족 참여 기록이 없습니다: {baby.id}")
        except NotFound as e:
            logger.info(f"{e} -> 로컬에서 삭제합니다.")
            if self.baby_service.delete_local(baby.id):
                report.removed.append(baby.id)
            return
        except RemoteError as e:
            logger.warning(f"구성원 아기 동기화 실패 ({baby.id}): {e}")
            report.failed.append(baby.id)
            return

        remote_baby = BabyProfile.from_dict({**doc, 'id': baby.id, 'role': BabyRole.MEMBER.value, 'synced': True})
        await self.baby_service.upsert(remote_baby, sync_remote=False)
        report.updated.append(baby.id)

    async def _discover_memberships(self, caller: CallerIdentity, report: ReconcileReport) -> None:
        try:
            docs = await self.join_requests_ref \
                .where('userId', '==', caller.user_id) \
                .where('status', '==', JoinStatus.APPROVED.value) \
                .get()
        except RemoteError as e:
            logger.warning(f"참여 기록 조회 실패 ({caller.user_id}): {e}")
            return

        for record in (JoinRecord.from_dict(doc) for doc in docs):
            if not record.baby_id or self.baby_service.get_baby(record.baby_id):
                continue
            try:
                baby_doc = await self.babies_ref.doc(record.baby_id).get()
            except RemoteError as e:
                logger.warning(f"참여 아기 조회 실패 ({record.baby_id}): {e}")
                report.failed.append(record.baby_id)
                continue
            if baby_doc is None or baby_doc.get('deleted'):
                continue
            remote_baby = BabyProfile.from_dict({**baby_doc, 'id': record.baby_id, 'role': None})
            await self._store_as_member(remote_baby)
            report.added.append(record.baby_id)

    # ------------------------------------------------------------------
    # 아바타
    # ------------------------------------------------------------------

    async def resolve_avatars(self, babies: Optional[List[BabyProfile]] = None) -> AvatarResolution:
        if babies is None:
            babies = self.baby_service.list_babies()
        return await self.avatar_service.resolve_avatars(babies)

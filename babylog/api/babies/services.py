# babylog/api/babies/services.py
import logging
from dataclasses import replace
from typing import List, Optional

from babylog.core.exceptions import (
    NotFound, RemoteError, RemoteUnavailable, ValidationFailure,
)
from babylog.models.baby import BabyProfile, BabyRole
from babylog.models.sharing import CallerIdentity, WriteResult
from babylog.services.local_store import LocalKeys, LocalStore
from babylog.services.remote_store import DocumentStore, BABIES, JOIN_REQUESTS
from babylog.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)


class BabyProfileService:
    """
    아기 프로필 목록(로컬)과 현재 선택된 아기 포인터를 관리하는 서비스 클래스.

    로컬 쓰기는 항상 먼저 적용되며(낙관적 쓰기), 원격 동기화 결과는 WriteResult 로
    호출자에게 알립니다. 원격 쓰기가 실패해도 로컬 변경은 되돌리지 않습니다.
    """

    def __init__(self, remote_store: DocumentStore, local_store: LocalStore, local_keys: LocalKeys):
        self.babies_ref = remote_store.collection(BABIES)
        self.join_requests_ref = remote_store.collection(JOIN_REQUESTS)
        self.local_store = local_store
        self.local_keys = local_keys
        logger.info("BabyProfileService initialized.")

    # ------------------------------------------------------------------
    # 로컬 목록
    # ------------------------------------------------------------------

    def list_babies(self) -> List[BabyProfile]:
        """
        로컬에 저장된 아기 목록을 반환합니다.
        ID가 비어 있거나 중복된 항목은 제외하며(먼저 나온 항목 유지), 목록이 비어 있어도
        기본 아기를 만들지 않습니다. 역할 없이 저장된 이전 형식의 항목은 소유자로 읽습니다.
        """
        seen = set()
        babies = []
        for item in self.local_store.get_list(self.local_keys.babies()):
            if not isinstance(item, dict):
                continue
            baby = BabyProfile.from_dict(item)
            if not baby.id or baby.id in seen:
                continue
            if baby.role is None:
                baby.role = BabyRole.OWNER
            seen.add(baby.id)
            babies.append(baby)
        return babies

    def save_babies(self, babies: List[BabyProfile]) -> None:
        self.local_store.set(self.local_keys.babies(), [b.to_local_dict() for b in babies])

    def get_baby(self, baby_id: str) -> Optional[BabyProfile]:
        return next((b for b in self.list_babies() if b.id == baby_id), None)

    def get_current_id(self) -> str:
        """
        현재 선택된 아기 ID. 저장된 값이 없거나 목록에 없는 아기를 가리키면
        첫 번째 아기로 바꿔 저장하고, 목록이 비어 있으면 빈 문자열을 반환합니다.
        """
        stored = self.local_store.get(self.local_keys.current_baby()) or ""
        babies = self.list_babies()
        if stored and any(b.id == stored for b in babies):
            return stored
        fallback = babies[0].id if babies else ""
        if fallback != stored:
            self.local_store.set(self.local_keys.current_baby(), fallback)
        return fallback

    def set_current_id(self, baby_id: str) -> str:
        if not self.get_baby(baby_id):
            raise NotFound(f"아기를 찾을 수 없습니다: {baby_id}")
        self.local_store.set(self.local_keys.current_baby(), baby_id)
        return baby_id

    def _advance_current(self, removed_id: str) -> None:
        if self.local_store.get(self.local_keys.current_baby()) != removed_id:
            return
        babies = self.list_babies()
        self.local_store.set(self.local_keys.current_baby(), babies[0].id if babies else "")

    # ------------------------------------------------------------------
    # 생성/수정
    # ------------------------------------------------------------------

    def _merge_local(self, baby: BabyProfile, caller: Optional[CallerIdentity], force_role: bool,
                     synced: bool) -> BabyProfile:
        babies = self.list_babies()
        index = next((i for i, b in enumerate(babies) if b.id == baby.id), None)

        if index is None:
            stored = replace(baby, role=baby.role or BabyRole.OWNER, deleted=False, synced=synced)
            if stored.is_owner and caller:
                stored.owner_id = stored.owner_id or caller.user_id
                stored.creator_info = stored.creator_info or caller.user_info()
            babies.append(stored)
        else:
            existing = babies[index]
            if force_role and baby.role:
                role = baby.role
            else:
                # 로컬에 저장된 역할이 원격 데이터보다 우선합니다.
                role = existing.role or baby.role or BabyRole.OWNER
            stored = replace(
                baby,
                role=role,
                creator_info=baby.creator_info or existing.creator_info,
                owner_id=baby.owner_id or existing.owner_id,
                deleted=False,
                synced=synced,
            )
            babies[index] = stored

        self.save_babies(babies)
        return stored

    def _mark_synced(self, baby_id: str) -> None:
        babies = self.list_babies()
        for baby in babies:
            if baby.id == baby_id:
                baby.synced = True
        self.save_babies(babies)

    async def upsert(self, baby: BabyProfile, caller: Optional[CallerIdentity] = None,
                     force_role: bool = False, sync_remote: bool = True) -> WriteResult:
        """
        아기 프로필을 로컬에 저장하고 원격에 동기화합니다.

        Args:
            baby: 저장할 프로필 (role 이 없으면 새 아기는 owner)
            caller: 원격 문서의 ownerId/creatorInfo 에 기록할 사용자
            force_role: True 면 로컬에 저장된 역할 대신 baby.role 을 사용 (가족 참여 시)
            sync_remote: False 면 로컬에만 저장 (원격에서 받아온 데이터를 반영할 때)

        Returns:
            WriteResult: local_ok 는 항상 True, remote_ok 는 원격 쓰기 성공 여부
        """
        baby = replace(baby, id=(baby.id or '').strip())
        if not baby.id:
            raise ValidationFailure("아기 ID가 필요합니다.")

        stored = self._merge_local(baby, caller, force_role, synced=baby.synced if not sync_remote else False)
        if not sync_remote:
            return WriteResult(local_ok=True, remote_ok=False)

        doc_ref = self.babies_ref.doc(stored.id)
        now = DateTimeUtils.now_ms()
        try:
            if stored.is_owner:
                owner_id = stored.owner_id or (caller.user_id if caller else None)
                if not owner_id:
                    raise ValidationFailure("원격 저장에는 소유자 정보가 필요합니다.")
                await doc_ref.set({
                    **stored.profile_fields(),
                    'ownerId': owner_id,
                    'creatorInfo': stored.creator_info or (caller.user_info() if caller else {}),
                    'deleted': False,
                    'updatedAt': now,
                })
            else:
                await doc_ref.update({**stored.profile_fields(), 'updatedAt': now})
        except (RemoteError, NotFound, ValidationFailure) as e:
            logger.warning(f"아기 프로필 원격 동기화 실패, 로컬에만 저장되었습니다 ({stored.id}): {e}")
            return WriteResult(local_ok=True, remote_ok=False, remote_error=e)

        self._mark_synced(stored.id)
        logger.info(f"Baby profile {stored.id} saved (role: {stored.role.value})")
        return WriteResult(local_ok=True, remote_ok=True)

    async def create_baby(self, baby: BabyProfile, caller: CallerIdentity) -> WriteResult:
        """
        새 아기를 소유자로 등록합니다. ID 검증은 모든 쓰기보다 먼저 수행됩니다.
        원격에 다른 사용자가 소유한 활성 프로필이 같은 ID로 있으면 거부하며,
        원격에 연결할 수 없으면 이 확인은 건너뜁니다.
        """
        baby_id = (baby.id or '').strip()
        if not baby_id:
            raise ValidationFailure("공유 코드로 사용할 아기 ID를 입력해주세요.")
        if self.get_baby(baby_id):
            raise ValidationFailure(f"이미 등록된 아기 ID입니다: {baby_id}")

        try:
            remote_doc = await self.babies_ref.doc(baby_id).get()
        except RemoteUnavailable as e:
            logger.warning(f"원격 ID 중복 확인을 건너뜁니다 ({baby_id}): {e}")
            remote_doc = None
        if remote_doc and not remote_doc.get('deleted') and remote_doc.get('ownerId') != caller.user_id:
            raise ValidationFailure(f"이미 다른 가족이 사용 중인 아기 ID입니다: {baby_id}")

        to_create = replace(
            baby,
            id=baby_id,
            role=BabyRole.OWNER,
            owner_id=caller.user_id,
            creator_info=baby.creator_info or caller.user_info(),
        )
        result = await self.upsert(to_create, caller, force_role=True)
        if not self.local_store.get(self.local_keys.current_baby()):
            self.local_store.set(self.local_keys.current_baby(), baby_id)
        return result

    # ------------------------------------------------------------------
    # 삭제
    # ------------------------------------------------------------------

    def delete_local(self, baby_id: str) -> bool:
        """로컬 목록에서만 삭제합니다. 현재 선택된 아기였다면 다음 아기로 포인터를 옮깁니다."""
        babies = self.list_babies()
        remaining = [b for b in babies if b.id != baby_id]
        if len(remaining) == len(babies):
            return False
        self.save_babies(remaining)
        self._advance_current(baby_id)
        logger.info(f"Baby {baby_id} removed from local list")
        return True

    async def soft_delete(self, baby_id: str, caller: CallerIdentity) -> None:
        """[소유자 전용] 원격 문서에 삭제 표시를 하고 로컬에서 삭제합니다."""
        baby = self.get_baby(baby_id)
        if not baby:
            raise NotFound(f"아기를 찾을 수 없습니다: {baby_id}")
        if not baby.is_owner:
            raise PermissionError("아기 프로필 삭제는 소유자만 할 수 있습니다. 가족 구성원은 가족 나가기를 사용해주세요.")

        try:
            await self.babies_ref.doc(baby_id).update({
                'deleted': True,
                'updatedAt': DateTimeUtils.now_ms(),
                'deletedBy': caller.user_id,
            })
        except NotFound:
            logger.info(f"원격에 없는 아기 프로필입니다. 로컬에서만 삭제합니다 ({baby_id})")
        self.delete_local(baby_id)

    async def exit_family(self, baby_id: str, caller: CallerIdentity) -> int:
        """
        [구성원 전용] 이 사용자의 참여 기록을 원격에서 삭제하고 로컬에서 삭제합니다.

        Returns:
            삭제된 참여 기록 수
        """
        baby = self.get_baby(baby_id)
        if not baby:
            raise NotFound(f"아기를 찾을 수 없습니다: {baby_id}")
        if baby.is_owner:
            raise PermissionError("소유자는 가족에서 나갈 수 없습니다. 아기 프로필 삭제를 사용해주세요.")

        docs = await self.join_requests_ref \
            .where('babyId', '==', baby_id) \
            .where('userId', '==', caller.user_id) \
            .get()
        removed = 0
        for doc in docs:
            try:
                await self.join_requests_ref.doc(doc['_id']).remove()
                removed += 1
            except NotFound:
                logger.info(f"이미 삭제된 참여 기록입니다 ({doc['_id']})")

        self.delete_local(baby_id)
        logger.info(f"User {caller.user_id} exited family of baby {baby_id} ({removed} join records removed)")
        return removed

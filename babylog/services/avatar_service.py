# babylog/services/avatar_service.py
"""
아기 프로필 사진 참조를 표시용 URL 로 변환합니다.

변환에 성공한 URL 은 파일 참조를 키로 프로세스 전체에서 캐시합니다. 캐시된 URL 은
서명 URL 이므로 유효 시간이 끝나기 refresh_margin 전부터는 다시 서명합니다.
변환 실패는 목록 표시를 막지 않고 AvatarResolution.limited 로만 알립니다.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from babylog.models.baby import BabyProfile
from babylog.models.sharing import AvatarResolution
from babylog.services.storage_service import StorageService, is_blob_reference
from babylog.utils.datetime_utils import DateTimeUtils, MS_PER_MINUTE

logger = logging.getLogger(__name__)

# 파일 참조 -> (서명 URL, 만료 시각 ms)
_resolved_urls: Dict[str, Tuple[str, int]] = {}


def clear_avatar_cache() -> None:
    _resolved_urls.clear()


class AvatarService:
    def __init__(self, storage_service: Optional[StorageService], batch_size: int = 50,
                 url_ttl_minutes: int = 60, refresh_margin_minutes: int = 5):
        self.storage_service = storage_service
        self.batch_size = max(1, batch_size)
        self.url_ttl_ms = url_ttl_minutes * MS_PER_MINUTE
        # 유효 시간보다 여유가 크면 매번 다시 서명하게 되므로 상한을 둠
        self.refresh_margin_ms = min(refresh_margin_minutes * MS_PER_MINUTE, self.url_ttl_ms // 2)

    async def _resolve_one(self, ref: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self.storage_service.generate_download_url, ref)
        except Exception as e:
            logger.warning(f"아바타 URL 변환 실패 ({ref}): {e}")
            return None

    def _cached(self, ref: str, now: int) -> Optional[str]:
        entry = _resolved_urls.get(ref)
        if entry is None:
            return None
        url, expires_at = entry
        if now >= expires_at - self.refresh_margin_ms:
            return None
        return url

    async def resolve_refs(self, refs: Iterable[str], now: Optional[int] = None) -> Dict[str, Optional[str]]:
        """
        파일 참조 목록을 배치 단위로 변환합니다.
        만료가 가깝지 않은 캐시 URL 은 다시 요청하지 않으며, 실패한 참조는 None 으로 반환됩니다.
        """
        now = DateTimeUtils.now_ms() if now is None else now
        results: Dict[str, Optional[str]] = {}
        pending: List[str] = []
        for ref in refs:
            if ref in results or ref in pending:
                continue
            cached = self._cached(ref, now)
            if cached:
                results[ref] = cached
            else:
                pending.append(ref)

        if pending and self.storage_service is None:
            logger.warning(f"StorageService 없음: 아바타 {len(pending)}개를 변환할 수 없습니다.")
            results.update({ref: None for ref in pending})
            return results

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            urls = await asyncio.gather(*(self._resolve_one(ref) for ref in batch))
            for ref, url in zip(batch, urls):
                results[ref] = url
                if url:
                    _resolved_urls[ref] = (url, now + self.url_ttl_ms)
        return results

    async def resolve_avatars(self, babies: Iterable[BabyProfile], now: Optional[int] = None) -> AvatarResolution:
        """아기 목록의 표시용 아바타 URL 을 계산합니다. 로컬 경로/일반 URL 은 그대로 사용합니다."""
        babies = list(babies)
        resolution = AvatarResolution()
        refs = [b.avatar_url for b in babies if is_blob_reference(b.avatar_url)]
        resolved = await self.resolve_refs(refs, now) if refs else {}

        for baby in babies:
            if not baby.avatar_url:
                resolution.urls[baby.id] = ""
            elif is_blob_reference(baby.avatar_url):
                url = resolved.get(baby.avatar_url)
                if url:
                    resolution.urls[baby.id] = url
                else:
                    resolution.urls[baby.id] = ""
                    resolution.limited = True
            else:
                resolution.urls[baby.id] = baby.avatar_url
        return resolution

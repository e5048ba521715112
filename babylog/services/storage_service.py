# babylog/services/storage_service.py
import logging
from datetime import timedelta
from typing import Optional
from flask import Flask
from firebase_admin import storage

BLOB_REF_PREFIXES = ('gs://', 'cloud://')


def is_blob_reference(ref: Optional[str]) -> bool:
    """원격 저장소 파일 참조인지 확인합니다. 로컬 경로나 http URL 은 그대로 표시에 사용합니다."""
    return bool(ref) and ref.startswith(BLOB_REF_PREFIXES)


class StorageService:
    """
    Firebase Storage 관련 로직을 담당하는 서비스 클래스입니다.
    아기 프로필 사진/마일스톤 사진 참조를 표시용 다운로드 URL 로 변환합니다.
    """

    def __init__(self, url_ttl_minutes: int = 60):
        # 버킷은 init_app 에서 연결됨. 테스트에서는 None 으로 남겨 둠
        self.bucket = None
        self.url_ttl = timedelta(minutes=url_ttl_minutes)

    def init_app(self, app: Flask):
        """
        앱 설정의 버킷 이름으로 아바타 버킷을 연결하고 서명 URL 유효 시간을 읽습니다.
        """
        bucket_name = app.config.get('FIREBASE_STORAGE_BUCKET')
        if not bucket_name:
            raise ValueError("아바타 URL 서명에는 FIREBASE_STORAGE_BUCKET 설정이 필요합니다.")

        self.bucket = storage.bucket(bucket_name)
        self.url_ttl = timedelta(minutes=app.config.get('AVATAR_URL_TTL_MINUTES', 60))
        logging.info("StorageService: 아바타 버킷 %s 연결 (URL 유효 %s)", bucket_name, self.url_ttl)

    @staticmethod
    def blob_path(ref: str) -> str:
        """
        'gs://<bucket>/<path>' 또는 'cloud://<env>/<path>' 참조에서 버킷 내부 경로를 추출합니다.
        """
        if not is_blob_reference(ref):
            return ref
        without_scheme = ref.split('://', 1)[1]
        if '/' not in without_scheme:
            raise ValueError(f"파일 경로가 없는 참조입니다: {ref}")
        return without_scheme.split('/', 1)[1]

    def generate_download_url(self, ref: str) -> str:
        """
        지정된 파일에 대해 일정 시간 동안 유효한 다운로드(GET) URL을 생성합니다.

        :param ref: 원격 파일 참조 (gs://..., cloud://...) 또는 버킷 내부 경로
        :return: 서명된 다운로드 URL
        """
        if not self.bucket:
            raise RuntimeError("아바타 버킷이 연결되지 않아 다운로드 URL 을 서명할 수 없습니다.")

        blob = self.bucket.blob(self.blob_path(ref))
        if not blob.exists():
            raise FileNotFoundError(f"파일을 찾을 수 없습니다: {ref}")

        return blob.generate_signed_url(
            version="v4",
            expiration=self.url_ttl,
            method="GET",
        )

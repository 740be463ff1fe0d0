"""添付ファイル置き場（Google Cloud Storage）

ノートに付ける画像・音声・文書を attachments/{firebase_uid}/{unique_filename}
に置き、クライアントがそのまま開ける URL をノートの Attachment に記録する。
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from google.api_core import exceptions as gcp_exceptions
from google.cloud import storage

from notekeep.domain.ports import BlobStorage

logger = logging.getLogger(__name__)

_PUBLIC_BASE_URL = "https://storage.googleapis.com"

# unique_filename は再利用されないので中身も変わらない
_ATTACHMENT_CACHE_CONTROL = "public, max-age=31536000, immutable"


class GCSBlobStorage(BlobStorage):
    """
    添付ファイルを1つのバケットで管理する BlobStorage。

    make_public=False の場合はバケット側の IAM で読み取りを許可する前提で、
    URL の形式は変わらない。
    """

    def __init__(
        self,
        bucket_name: str,
        client: storage.Client | None = None,
        make_public: bool = True,
    ) -> None:
        self._client = client or storage.Client()
        self._bucket_name = bucket_name
        self._bucket = self._client.bucket(bucket_name)
        self._make_public = make_public

    def _url_for(self, blob_path: str) -> str:
        return f"{_PUBLIC_BASE_URL}/{self._bucket_name}/{quote(blob_path)}"

    def upload(self, blob_path: str, content: bytes, content_type: str) -> str:
        """添付ファイルを保存して URL を返す"""
        blob = self._bucket.blob(blob_path)
        blob.cache_control = _ATTACHMENT_CACHE_CONTROL
        blob.upload_from_string(content, content_type=content_type)
        if self._make_public:
            blob.make_public()
        logger.info(
            "Attachment stored: path=%s, type=%s, size=%d bytes",
            blob_path,
            content_type,
            len(content),
        )
        return self._url_for(blob_path)

    def delete(self, blob_path: str) -> None:
        """添付ファイルを削除する（既に無い場合は警告のみ）"""
        try:
            self._bucket.blob(blob_path).delete()
        except gcp_exceptions.NotFound:
            logger.warning("Attachment already gone: path=%s", blob_path)
            return
        logger.info("Attachment removed: path=%s", blob_path)

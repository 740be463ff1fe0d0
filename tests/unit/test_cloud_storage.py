"""GCSBlobStorage のユニットテスト"""

import logging
from unittest.mock import MagicMock

from google.api_core import exceptions as gcp_exceptions

from notekeep.adapters.cloud_storage import GCSBlobStorage


def _make_storage(make_public: bool = True) -> tuple[GCSBlobStorage, MagicMock]:
    client = MagicMock()
    blob = client.bucket.return_value.blob.return_value
    return GCSBlobStorage("notekeep-uploads", client=client, make_public=make_public), blob


class TestUpload:
    """upload() の保存内容と返す URL"""

    def test_upload_returns_public_url(self):
        # Arrange
        storage, blob = _make_storage()

        # Act
        url = storage.upload("attachments/u1/photo.png", b"data", "image/png")

        # Assert
        assert url == "https://storage.googleapis.com/notekeep-uploads/attachments/u1/photo.png"
        blob.upload_from_string.assert_called_once_with(b"data", content_type="image/png")
        blob.make_public.assert_called_once()
        assert "immutable" in blob.cache_control

    def test_url_is_quoted(self):
        storage, _ = _make_storage()

        url = storage.upload("attachments/u1/my photo_1_ab.png", b"data", "image/png")

        assert url.endswith("/attachments/u1/my%20photo_1_ab.png")

    def test_private_upload(self):
        storage, blob = _make_storage(make_public=False)

        url = storage.upload("attachments/u1/photo.png", b"data", "image/png")

        blob.make_public.assert_not_called()
        assert url.startswith("https://storage.googleapis.com/notekeep-uploads/")


class TestDelete:
    """delete() は存在しないファイルを無視する"""

    def test_delete(self):
        storage, blob = _make_storage()

        storage.delete("attachments/u1/photo.png")

        blob.delete.assert_called_once()

    def test_missing_blob_is_ignored(self, caplog):
        caplog.set_level(logging.WARNING, logger="notekeep.adapters.cloud_storage")
        storage, blob = _make_storage()
        blob.delete.side_effect = gcp_exceptions.NotFound("gone")

        storage.delete("attachments/u1/photo.png")

        assert "Attachment already gone" in caplog.text

"""添付ファイル API のユニットテスト"""

from dataclasses import replace

from notekeep.domain.models import Attachment, AttachmentType

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class TestUploadAttachments:
    """POST /api/notes/{id}/attachments"""

    def test_upload_multiple_files(
        self, api_client, auth_headers, mock_storage, mock_note_repo
    ):
        # Arrange
        files = [
            ("files", ("photo.png", PNG, "image/png")),
            ("files", ("memo.txt", b"hello", "text/plain")),
        ]

        # Act
        response = api_client.post(
            "/api/notes/note-1/attachments", files=files, headers=auth_headers
        )

        # Assert
        assert response.status_code == 201
        body = response.json()
        assert [a["original_name"] for a in body["attachments"]] == [
            "photo.png",
            "memo.txt",
        ]
        assert [a["file_type"] for a in body["attachments"]] == ["image", "document"]
        assert body["attachments"][1]["size"] == 5
        assert len(body["note"]["attachments"]) == 2

        path = mock_storage.upload.call_args_list[0].args[0]
        assert path.startswith("attachments/firebase-uid-1/photo_")
        assert path.endswith(".png")
        assert body["attachments"][0]["url"] == f"https://storage.example.com/{path}"
        mock_note_repo.save.assert_called_once()

    def test_rejected_type(self, api_client, auth_headers, mock_storage):
        files = [("files", ("archive.zip", b"PK", "application/zip"))]

        response = api_client.post(
            "/api/notes/note-1/attachments", files=files, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FILE_TYPE"
        mock_storage.upload.assert_not_called()

    def test_too_many_files(self, api_client, auth_headers):
        files = [("files", (f"p{i}.png", PNG, "image/png")) for i in range(6)]

        response = api_client.post(
            "/api/notes/note-1/attachments", files=files, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "TOO_MANY_FILES"

    def test_unexpected_field(self, api_client, auth_headers):
        files = [("upload", ("photo.png", PNG, "image/png"))]

        response = api_client.post(
            "/api/notes/note-1/attachments", files=files, headers=auth_headers
        )

        assert response.json()["code"] == "UNEXPECTED_FILE"

    def test_no_file(self, api_client, auth_headers):
        response = api_client.post(
            "/api/notes/note-1/attachments", data={"title": "x"}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "NO_FILE"

    def test_storage_failure(self, api_client, auth_headers, mock_storage, mock_note_repo):
        mock_storage.upload.side_effect = RuntimeError("bucket unavailable")
        files = [("files", ("photo.png", PNG, "image/png"))]

        response = api_client.post(
            "/api/notes/note-1/attachments", files=files, headers=auth_headers
        )

        assert response.status_code == 500
        assert response.json()["message"] == "File upload failed"
        mock_note_repo.save.assert_not_called()

    def test_failed_second_upload_discards_first_file(
        self, api_client, auth_headers, mock_storage, mock_note_repo
    ):
        # Arrange: 2件目のアップロードだけ失敗させる
        def upload(path, content, content_type):
            if mock_storage.upload.call_count == 2:
                raise RuntimeError("bucket unavailable")
            return f"https://storage.example.com/{path}"

        mock_storage.upload.side_effect = upload
        files = [
            ("files", ("a.png", PNG, "image/png")),
            ("files", ("b.png", PNG, "image/png")),
        ]

        # Act
        response = api_client.post(
            "/api/notes/note-1/attachments", files=files, headers=auth_headers
        )

        # Assert
        assert response.status_code == 500
        first_path = mock_storage.upload.call_args_list[0].args[0]
        assert first_path.startswith("attachments/firebase-uid-1/a_")
        mock_storage.delete.assert_called_once_with(first_path)
        mock_note_repo.save.assert_not_called()

    def test_failed_note_save_discards_all_files(
        self, api_client, auth_headers, mock_storage, mock_note_repo
    ):
        # Arrange
        mock_note_repo.save.side_effect = RuntimeError("firestore unavailable")
        files = [
            ("files", ("a.png", PNG, "image/png")),
            ("files", ("b.png", PNG, "image/png")),
        ]

        # Act
        response = api_client.post(
            "/api/notes/note-1/attachments", files=files, headers=auth_headers
        )

        # Assert
        assert response.status_code == 500
        assert response.json()["message"] == "File upload failed"
        uploaded = [c.args[0] for c in mock_storage.upload.call_args_list]
        deleted = [c.args[0] for c in mock_storage.delete.call_args_list]
        assert len(uploaded) == 2
        assert deleted == uploaded

    def test_cleanup_failure_keeps_original_error(
        self, api_client, auth_headers, mock_storage, mock_note_repo
    ):
        mock_note_repo.save.side_effect = RuntimeError("firestore unavailable")
        mock_storage.delete.side_effect = RuntimeError("delete failed")
        files = [("files", ("a.png", PNG, "image/png"))]

        response = api_client.post(
            "/api/notes/note-1/attachments", files=files, headers=auth_headers
        )

        assert response.status_code == 500
        assert response.json()["message"] == "File upload failed"
        mock_storage.delete.assert_called_once()


    def test_other_users_note(
        self, api_client, auth_headers, mock_note_repo, mock_storage, sample_note
    ):
        mock_note_repo.get.return_value = replace(
            sample_note, user_id="user-2", firebase_uid="firebase-uid-2"
        )
        files = [("files", ("photo.png", PNG, "image/png"))]

        response = api_client.post(
            "/api/notes/note-1/attachments", files=files, headers=auth_headers
        )

        assert response.status_code == 403
        mock_storage.upload.assert_not_called()


class TestTypedEndpoints:
    """images / audio / documents エンドポイント"""

    def test_images(self, api_client, auth_headers):
        files = [("images", (f"p{i}.png", PNG, "image/png")) for i in range(2)]

        response = api_client.post(
            "/api/notes/note-1/images", files=files, headers=auth_headers
        )

        assert response.status_code == 201
        assert len(response.json()["attachments"]) == 2

    def test_images_rejects_pdf(self, api_client, auth_headers):
        files = [("images", ("doc.pdf", b"%PDF", "application/pdf"))]

        response = api_client.post(
            "/api/notes/note-1/images", files=files, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FILE_TYPE_FOR_ENDPOINT"

    def test_audio_single_file(self, api_client, auth_headers):
        files = [("audio", ("memo.mp3", b"ID3", "audio/mpeg"))]

        response = api_client.post(
            "/api/notes/note-1/audio", files=files, headers=auth_headers
        )

        assert response.status_code == 201
        assert response.json()["attachments"][0]["file_type"] == "audio"

    def test_audio_rejects_two_files(self, api_client, auth_headers):
        files = [("audio", (f"m{i}.mp3", b"ID3", "audio/mpeg")) for i in range(2)]

        response = api_client.post(
            "/api/notes/note-1/audio", files=files, headers=auth_headers
        )

        assert response.json()["code"] == "UNEXPECTED_FILE"

    def test_document(self, api_client, auth_headers):
        files = [("document", ("report.pdf", b"%PDF", "application/pdf"))]

        response = api_client.post(
            "/api/notes/note-1/documents", files=files, headers=auth_headers
        )

        assert response.status_code == 201
        assert response.json()["attachments"][0]["mime_type"] == "application/pdf"


class TestDeleteAttachment:
    """DELETE /api/notes/{id}/attachments/{attachment_id}"""

    def test_delete(
        self, api_client, auth_headers, mock_note_repo, mock_storage, sample_note
    ):
        # Arrange
        attachment = Attachment(
            id="att-1",
            file_name="photo_1_abc.png",
            original_name="photo.png",
            file_type=AttachmentType.IMAGE,
            mime_type="image/png",
            size=10,
            url="https://storage.example.com/attachments/firebase-uid-1/photo_1_abc.png",
        )
        mock_note_repo.get.return_value = replace(sample_note, attachments=[attachment])

        # Act
        response = api_client.delete(
            "/api/notes/note-1/attachments/att-1", headers=auth_headers
        )

        # Assert
        assert response.status_code == 200
        assert response.json()["note"]["attachments"] == []
        mock_storage.delete.assert_called_once_with(
            "attachments/firebase-uid-1/photo_1_abc.png"
        )

    def test_delete_missing(self, api_client, auth_headers, mock_storage):
        response = api_client.delete(
            "/api/notes/note-1/attachments/missing", headers=auth_headers
        )

        assert response.status_code == 404
        assert response.json()["message"] == "Attachment not found"
        mock_storage.delete.assert_not_called()

"""ノート API のユニットテスト

リポジトリはモック、認証チェーンは FakeVerifier 経由で本物を通す。
"""

from dataclasses import replace

from notekeep.domain.models import ListItem, NoteCategory


class TestListNotes:
    """GET /api/notes"""

    def test_requires_auth(self, api_client):
        response = api_client.get("/api/notes")

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_lists_user_notes(self, api_client, auth_headers, mock_note_repo):
        # Act
        response = api_client.get("/api/notes", headers=auth_headers)

        # Assert
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["count"] == 1
        assert body["notes"][0]["id"] == "note-1"
        assert body["notes"][0]["word_count"] == 3
        mock_note_repo.find_by_user.assert_called_once_with(
            "user-1", include_archived=False, include_deleted=False
        )

    def test_include_archived(self, api_client, auth_headers, mock_note_repo):
        api_client.get("/api/notes?include_archived=true", headers=auth_headers)

        mock_note_repo.find_by_user.assert_called_once_with(
            "user-1", include_archived=True, include_deleted=False
        )

    def test_filter_by_category(self, api_client, auth_headers, mock_note_repo):
        mock_note_repo.find_by_category.return_value = []

        response = api_client.get("/api/notes?category=work", headers=auth_headers)

        assert response.json()["count"] == 0
        mock_note_repo.find_by_category.assert_called_once_with(
            "user-1", NoteCategory.WORK
        )

    def test_filter_by_label(self, api_client, auth_headers, mock_note_repo, sample_note):
        mock_note_repo.find_by_label.return_value = [sample_note]

        response = api_client.get("/api/notes?label=home", headers=auth_headers)

        assert response.json()["count"] == 1
        mock_note_repo.find_by_label.assert_called_once_with("user-1", "home")

    def test_unknown_category_is_validation_error(self, api_client, auth_headers):
        response = api_client.get("/api/notes?category=travel", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestSearchNotes:
    """GET /api/notes/search"""

    def test_search(self, api_client, auth_headers, mock_note_repo, sample_note):
        mock_note_repo.search.return_value = [sample_note]

        response = api_client.get("/api/notes/search?q=milk", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["notes"][0]["title"] == "Shopping"
        mock_note_repo.search.assert_called_once_with(
            "user-1", "milk", include_archived=False
        )

    def test_query_required(self, api_client, auth_headers):
        response = api_client.get("/api/notes/search", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "q"


class TestCreateNote:
    """POST /api/notes"""

    def test_create(self, api_client, auth_headers, mock_note_repo):
        # Arrange
        payload = {
            "title": "Groceries",
            "content": "weekly list",
            "type": "list",
            "labels": ["home", "home", " weekly "],
            "list_items": ["Milk", "Eggs"],
            "is_pinned": True,
        }

        # Act
        response = api_client.post("/api/notes", json=payload, headers=auth_headers)

        # Assert
        assert response.status_code == 201
        note = response.json()["note"]
        assert note["title"] == "Groceries"
        assert note["labels"] == ["home", "weekly"]
        assert [item["text"] for item in note["list_items"]] == ["Milk", "Eggs"]
        assert note["completion_percentage"] == 0
        assert note["is_pinned"] is True

        saved = mock_note_repo.save.call_args.args[0]
        assert saved.user_id == "user-1"
        assert saved.firebase_uid == "firebase-uid-1"
        assert saved.searchable_text == "groceries weekly list home weekly milk eggs"
        assert saved.last_modified is not None

    def test_invalid_color(self, api_client, auth_headers, mock_note_repo):
        response = api_client.post(
            "/api/notes", json={"title": "x", "color": "blue"}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_COLOR"
        mock_note_repo.save.assert_not_called()

    def test_title_too_long(self, api_client, auth_headers):
        response = api_client.post(
            "/api/notes", json={"title": "x" * 501}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "title"

    def test_inactive_user_rejected(
        self, api_client, auth_headers, mock_user_repo, sample_user
    ):
        mock_user_repo.find_by_subject_id.return_value = replace(
            sample_user, is_active=False
        )

        response = api_client.post("/api/notes", json={}, headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["code"] == "ACCOUNT_INACTIVE"


class TestSingleNote:
    """GET / PATCH / DELETE /api/notes/{id}"""

    def test_get(self, api_client, auth_headers):
        response = api_client.get("/api/notes/note-1", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["note"]["content"] == "milk and eggs"

    def test_get_missing(self, api_client, auth_headers, mock_note_repo):
        mock_note_repo.get.return_value = None

        response = api_client.get("/api/notes/missing", headers=auth_headers)

        assert response.status_code == 404

    def test_get_other_users_note(
        self, api_client, auth_headers, mock_note_repo, sample_note
    ):
        mock_note_repo.get.return_value = replace(
            sample_note, user_id="user-2", firebase_uid="firebase-uid-2"
        )

        response = api_client.get("/api/notes/note-1", headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["code"] == "ACCESS_DENIED"

    def test_patch_replaces_labels(self, api_client, auth_headers):
        response = api_client.patch(
            "/api/notes/note-1",
            json={"content": "bread", "labels": ["errands"], "color": "#abc"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        note = response.json()["note"]
        assert note["content"] == "bread"
        assert note["labels"] == ["errands"]
        assert note["color"] == "#abc"
        assert note["title"] == "Shopping"

    def test_patch_archive_unpins(
        self, api_client, auth_headers, mock_note_repo, sample_note
    ):
        mock_note_repo.get.return_value = replace(sample_note, is_pinned=True)

        response = api_client.patch(
            "/api/notes/note-1", json={"is_archived": True}, headers=auth_headers
        )

        note = response.json()["note"]
        assert note["is_archived"] is True
        assert note["is_pinned"] is False

    def test_delete_is_soft(self, api_client, auth_headers, mock_note_repo):
        # Act
        response = api_client.delete("/api/notes/note-1", headers=auth_headers)

        # Assert
        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Note deleted"}
        saved = mock_note_repo.save.call_args.args[0]
        assert saved.is_deleted is True
        assert saved.deleted_at is not None

    def test_restore_reads_deleted_notes(
        self, api_client, auth_headers, mock_note_repo, sample_note, now
    ):
        mock_note_repo.get.return_value = replace(
            sample_note, is_deleted=True, deleted_at=now
        )

        response = api_client.post("/api/notes/note-1/restore", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["note"]["is_deleted"] is False
        mock_note_repo.get.assert_called_once_with("note-1", include_deleted=True)


class TestToggles:
    """POST /api/notes/{id}/pin|archive|favorite"""

    def test_pin(self, api_client, auth_headers):
        response = api_client.post("/api/notes/note-1/pin", headers=auth_headers)
        assert response.json()["note"]["is_pinned"] is True

    def test_pin_archived_note(
        self, api_client, auth_headers, mock_note_repo, sample_note
    ):
        mock_note_repo.get.return_value = replace(sample_note, is_archived=True)

        response = api_client.post("/api/notes/note-1/pin", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "NOTE_NOT_PINNABLE"

    def test_archive(self, api_client, auth_headers):
        response = api_client.post("/api/notes/note-1/archive", headers=auth_headers)
        assert response.json()["note"]["is_archived"] is True

    def test_favorite(self, api_client, auth_headers):
        response = api_client.post("/api/notes/note-1/favorite", headers=auth_headers)
        assert response.json()["note"]["is_favorite"] is True


class TestLabelsAndItems:
    """ラベルとリスト項目"""

    def test_add_label(self, api_client, auth_headers):
        response = api_client.post(
            "/api/notes/note-1/labels", json={"label": "urgent"}, headers=auth_headers
        )
        assert response.json()["note"]["labels"] == ["home", "urgent"]

    def test_remove_label(self, api_client, auth_headers):
        response = api_client.delete("/api/notes/note-1/labels/home", headers=auth_headers)
        assert response.json()["note"]["labels"] == []

    def test_add_empty_label(self, api_client, auth_headers):
        response = api_client.post(
            "/api/notes/note-1/labels", json={"label": " "}, headers=auth_headers
        )
        assert response.status_code == 400

    def test_add_item(self, api_client, auth_headers):
        response = api_client.post(
            "/api/notes/note-1/items", json={"text": "Butter"}, headers=auth_headers
        )

        assert response.status_code == 201
        assert response.json()["note"]["list_items"][0]["text"] == "Butter"

    def test_toggle_item(self, api_client, auth_headers, mock_note_repo, sample_note):
        mock_note_repo.get.return_value = replace(
            sample_note, list_items=[ListItem(id="i1", text="Milk")]
        )

        response = api_client.post(
            "/api/notes/note-1/items/i1/toggle", headers=auth_headers
        )

        assert response.json()["note"]["list_items"][0]["completed"] is True

    def test_toggle_unknown_item(self, api_client, auth_headers):
        response = api_client.post(
            "/api/notes/note-1/items/missing/toggle", headers=auth_headers
        )

        assert response.status_code == 404
        assert response.json()["message"] == "List item not found"

    def test_remove_item(self, api_client, auth_headers, mock_note_repo, sample_note):
        mock_note_repo.get.return_value = replace(
            sample_note, list_items=[ListItem(id="i1", text="Milk")]
        )

        response = api_client.delete("/api/notes/note-1/items/i1", headers=auth_headers)

        assert response.json()["note"]["list_items"] == []

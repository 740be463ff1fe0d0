"""共通テストフィクスチャ

全テストから利用可能なモックオブジェクトとサンプルデータを提供。

モックの作成:
- MagicMock(spec=ABC) でABCのメソッドシグネチャを保持
- IdentityVerifier はトークン文字列ごとに結果を決められる FakeVerifier を使う
"""

from __future__ import annotations

import datetime
from dataclasses import replace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from notekeep.domain.errors import IdentityVerificationError
from notekeep.domain.models import (
    IdentityClaims,
    Note,
    RecurrencePattern,
    Reminder,
    User,
)
from notekeep.domain.ports import (
    BlobStorage,
    IdentityVerifier,
    NoteRepository,
    ReminderRepository,
    UserRepository,
)

NOW = datetime.datetime(2026, 3, 15, 9, 0, tzinfo=datetime.UTC)

VALID_TOKEN = "valid-token"
EXPIRED_TOKEN = "expired-token"
INVALID_TOKEN = "invalid-token"


class FakeVerifier(IdentityVerifier):
    """トークン → クレームの対応表で検証結果を返す IdentityVerifier"""

    def __init__(self, claims: IdentityClaims) -> None:
        self.claims = claims
        self.calls: list[str] = []

    def verify(self, token: str) -> IdentityClaims:
        self.calls.append(token)
        if token == VALID_TOKEN:
            return self.claims
        if token == EXPIRED_TOKEN:
            raise IdentityVerificationError(IdentityVerificationError.EXPIRED)
        if token == INVALID_TOKEN:
            raise IdentityVerificationError(IdentityVerificationError.INVALID)
        raise RuntimeError("identity provider unavailable")


@pytest.fixture(autouse=True)
def _disable_rate_limit(monkeypatch):
    """レート制限は専用テスト以外では無効化する"""
    monkeypatch.setenv("DISABLE_RATE_LIMIT", "true")


# ========== サンプルデータ ==========


@pytest.fixture
def now() -> datetime.datetime:
    return NOW


@pytest.fixture
def sample_claims() -> IdentityClaims:
    """サンプルクレーム（メール確認済み）"""
    return IdentityClaims(
        subject_id="firebase-uid-1",
        email="taro@example.com",
        display_name="Taro Yamada",
        email_verified=True,
    )


@pytest.fixture
def sample_user() -> User:
    """サンプルユーザー"""
    return User(
        id="user-1",
        firebase_uid="firebase-uid-1",
        email="taro@example.com",
        display_name="Taro Yamada",
        email_verified=True,
        created_at=NOW - datetime.timedelta(days=30),
    )


@pytest.fixture
def sample_note() -> Note:
    """サンプルノート"""
    return Note(
        id="note-1",
        user_id="user-1",
        firebase_uid="firebase-uid-1",
        title="Shopping",
        content="milk and eggs",
        labels=["home"],
        created_at=NOW - datetime.timedelta(days=1),
        last_modified=NOW - datetime.timedelta(hours=1),
    )


@pytest.fixture
def sample_reminder() -> Reminder:
    """サンプルリマインダー（単発・1時間後）"""
    return Reminder(
        id="reminder-1",
        user_id="user-1",
        firebase_uid="firebase-uid-1",
        note_id="note-1",
        title="Buy milk",
        reminder_date_time=NOW + datetime.timedelta(hours=1),
    )


@pytest.fixture
def recurring_reminder(sample_reminder) -> Reminder:
    """サンプルリマインダー（毎日繰り返し）"""
    return replace(
        sample_reminder,
        is_recurring=True,
        recurrence_pattern=RecurrencePattern(),
    )


# ========== モック ==========


@pytest.fixture
def fake_verifier(sample_claims) -> FakeVerifier:
    return FakeVerifier(sample_claims)


@pytest.fixture
def mock_user_repo(sample_user) -> MagicMock:
    """既存ユーザーを返す UserRepository のモック"""
    repo = MagicMock(spec=UserRepository)
    repo.find_by_subject_id.return_value = sample_user
    repo.update_last_login.side_effect = lambda user, now: replace(
        user, last_login=now
    )
    return repo


@pytest.fixture
def mock_note_repo(sample_note) -> MagicMock:
    """保存したノートをそのまま返す NoteRepository のモック"""
    repo = MagicMock(spec=NoteRepository)
    repo.get.return_value = sample_note
    repo.find_by_user.return_value = [sample_note]
    repo.save.side_effect = lambda note: note
    return repo


@pytest.fixture
def mock_reminder_repo(sample_reminder) -> MagicMock:
    """保存したリマインダーをそのまま返す ReminderRepository のモック"""
    repo = MagicMock(spec=ReminderRepository)
    repo.get.return_value = sample_reminder
    repo.find_by_user.return_value = [sample_reminder]
    repo.save.side_effect = lambda reminder: reminder
    return repo


@pytest.fixture
def mock_storage() -> MagicMock:
    storage = MagicMock(spec=BlobStorage)
    storage.upload.side_effect = (
        lambda path, content, content_type: f"https://storage.example.com/{path}"
    )
    return storage


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {VALID_TOKEN}"}


@pytest.fixture
def api_client(
    fake_verifier, mock_user_repo, mock_note_repo, mock_reminder_repo, mock_storage
):
    """モックを差し込んだ FastAPI テストクライアント（認証チェーンは本物）"""
    from notekeep.entrypoints.api.app import app
    from notekeep.entrypoints.api.deps import (
        get_blob_storage,
        get_identity_verifier,
        get_note_repo,
        get_reminder_repo,
        get_user_repo,
    )

    app.dependency_overrides[get_identity_verifier] = lambda: fake_verifier
    app.dependency_overrides[get_user_repo] = lambda: mock_user_repo
    app.dependency_overrides[get_note_repo] = lambda: mock_note_repo
    app.dependency_overrides[get_reminder_repo] = lambda: mock_reminder_repo
    app.dependency_overrides[get_blob_storage] = lambda: mock_storage

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()

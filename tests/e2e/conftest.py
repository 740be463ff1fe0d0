"""E2E テスト用フィクスチャ

Firestore Emulator に接続し、実際の Repository を使ってテストする。
Firebase Auth はトークン → クレームの対応表を持つ Verifier で差し替える。

前提: FIRESTORE_EMULATOR_HOST 環境変数が設定されていること
  例: FIRESTORE_EMULATOR_HOST=localhost:8080 pytest tests/e2e/ -m e2e -v
未設定の場合は全テストをスキップする。
"""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from google.cloud import firestore

from notekeep.domain.errors import IdentityVerificationError
from notekeep.domain.models import IdentityClaims
from notekeep.domain.ports import IdentityVerifier

USER_1_TOKEN = "e2e-token-1"
USER_2_TOKEN = "e2e-token-2"

_COLLECTIONS = ["users", "user_identities", "user_emails", "notes", "reminders"]


class TokenTableVerifier(IdentityVerifier):
    """固定トークンごとに別ユーザーのクレームを返す"""

    CLAIMS = {
        USER_1_TOKEN: IdentityClaims(
            subject_id="e2e-uid-1",
            email="e2e-1@example.com",
            display_name="E2E User One",
            email_verified=True,
        ),
        USER_2_TOKEN: IdentityClaims(
            subject_id="e2e-uid-2",
            email="e2e-2@example.com",
            display_name="",
            email_verified=False,
        ),
    }

    def verify(self, token: str) -> IdentityClaims:
        try:
            return self.CLAIMS[token]
        except KeyError as e:
            raise IdentityVerificationError(IdentityVerificationError.INVALID) from e


@pytest.fixture(scope="session")
def firestore_client():
    """Firestore Emulator に接続するクライアント（セッション共有）"""
    if not os.environ.get("FIRESTORE_EMULATOR_HOST"):
        pytest.skip("FIRESTORE_EMULATOR_HOST is not set")
    return firestore.Client(project="notekeep-test")


@pytest.fixture(autouse=True)
def _cleanup_firestore(firestore_client):
    """各テスト後に Emulator のデータをクリーンアップ"""
    yield
    for collection_name in _COLLECTIONS:
        for doc in firestore_client.collection(collection_name).stream():
            doc.reference.delete()


@pytest.fixture
def e2e_client(firestore_client):
    """実 Firestore + 差し替え Verifier の TestClient

    - get_identity_verifier: TokenTableVerifier
    - get_blob_storage: MagicMock（GCS を使わない）
    - Firestore: Emulator に接続した実 Client を使用
    """
    from notekeep.entrypoints.api import deps
    from notekeep.entrypoints.api.app import app

    deps._firestore_client = firestore_client

    mock_blob = MagicMock()
    mock_blob.upload.side_effect = (
        lambda path, content, content_type: f"https://storage.example.com/{path}"
    )

    app.dependency_overrides[deps.get_identity_verifier] = TokenTableVerifier
    app.dependency_overrides[deps.get_blob_storage] = lambda: mock_blob

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
    deps._firestore_client = None


@pytest.fixture
def user_1() -> dict[str, str]:
    return {"Authorization": f"Bearer {USER_1_TOKEN}"}


@pytest.fixture
def user_2() -> dict[str, str]:
    return {"Authorization": f"Bearer {USER_2_TOKEN}"}

"""Firebase Auth Adapter

IdentityVerifier ABC の Firebase Admin SDK 実装。
ID トークンを検証し、失敗理由を "expired" / "invalid" に分類する。
"""

from __future__ import annotations

import logging

import firebase_admin
import firebase_admin.auth as fb_auth
from firebase_admin import credentials as fb_creds

from notekeep.config import AppConfig
from notekeep.domain.errors import IdentityVerificationError
from notekeep.domain.models import IdentityClaims
from notekeep.domain.ports import IdentityVerifier

logger = logging.getLogger(__name__)


def get_firebase_app(config: AppConfig) -> firebase_admin.App:
    """Firebase Admin を初期化する（プロセス内で1回のみ）"""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    if config.service_account is not None:
        cred = fb_creds.Certificate(config.service_account.to_dict())
    else:
        cred = fb_creds.ApplicationDefault()

    options: dict = {}
    if config.project_id:
        options["projectId"] = config.project_id
    if config.storage_bucket:
        options["storageBucket"] = config.storage_bucket

    app = firebase_admin.initialize_app(cred, options=options)
    logger.info("Firebase Admin initialized project=%s", config.project_id)
    return app


class FirebaseIdentityVerifier(IdentityVerifier):
    """Firebase Auth の ID トークンを検証する"""

    def __init__(self, config: AppConfig, check_revoked: bool = False) -> None:
        """
        Args:
            config: Firebase 初期化に使うアプリ設定（初回 verify 時に初期化する）
            check_revoked: 失効済みトークンも拒否する場合は True
        """
        self._config = config
        self._check_revoked = check_revoked

    def verify(self, token: str) -> IdentityClaims:
        app = get_firebase_app(self._config)
        try:
            decoded = fb_auth.verify_id_token(
                token, app=app, check_revoked=self._check_revoked
            )
        except fb_auth.ExpiredIdTokenError as e:
            raise IdentityVerificationError(IdentityVerificationError.EXPIRED, str(e)) from e
        except (fb_auth.InvalidIdTokenError, ValueError) as e:
            # RevokedIdTokenError も InvalidIdTokenError のサブクラス
            raise IdentityVerificationError(IdentityVerificationError.INVALID, str(e)) from e

        return IdentityClaims(
            subject_id=decoded["uid"],
            email=decoded.get("email", ""),
            display_name=decoded.get("name", ""),
            photo_url=decoded.get("picture"),
            email_verified=bool(decoded.get("email_verified", False)),
        )

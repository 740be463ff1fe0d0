"""ドメイン固有の例外クラス

NoteKeepError 系は HTTP ステータスとエラーコードを持ち、
app のハンドラーで共通エンベロープ {success: false, message, code?, ...} に変換される。
"""

from __future__ import annotations


class NoteKeepError(Exception):
    """NoteKeep の基底例外"""

    status_code: int = 500
    code: str | None = None

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        extra: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.extra = extra or {}

    def to_payload(self) -> dict:
        """エラーエンベロープを返す"""
        payload: dict = {"success": False, "message": self.message}
        if self.code:
            payload["code"] = self.code
        payload.update(self.extra)
        return payload


class AuthError(NoteKeepError):
    """認証エラー（トークンなし・期限切れ・不正）"""

    status_code = 401
    code = "AUTH_FAILED"


class AuthorizationError(NoteKeepError):
    """認可エラー（無効アカウント・メール未確認・権限不足・所有者不一致）"""

    status_code = 403


class RateLimitError(NoteKeepError):
    """レート制限超過"""

    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message, extra={"retryAfter": retry_after})
        self.retry_after = retry_after


class ValidationError(NoteKeepError):
    """入力値エラー"""

    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidPriority(ValidationError):
    """優先度が列挙値の範囲外"""

    code = "INVALID_PRIORITY"


class InvalidTransition(ValidationError):
    """リマインダーの状態遷移が許可されていない"""

    code = "INVALID_TRANSITION"


class DuplicateUserError(ValidationError):
    """メールアドレスが別アカウントで登録済み"""

    status_code = 409
    code = "DUPLICATE_USER"


class NotFoundError(NoteKeepError):
    """リソースが存在しない"""

    status_code = 404
    code = "NOT_FOUND"


class InternalError(NoteKeepError):
    """永続化・ストレージの想定外エラー"""

    status_code = 500
    code = "INTERNAL_ERROR"


class IdentityVerificationError(Exception):
    """ID プロバイダーによるトークン検証の失敗

    reason は "expired" | "invalid" のいずれか。
    """

    EXPIRED = "expired"
    INVALID = "invalid"

    def __init__(self, reason: str, message: str = "") -> None:
        super().__init__(message or reason)
        self.reason = reason

"""FastAPI 依存性注入

認証・認可チェーンとリポジトリの初期化を担当する。
各ルートは Depends() でこのモジュールの関数を呼び出して AuthContext と
リポジトリインスタンスを受け取る。

認証チェーン:
  require_auth           → トークン検証 + ユーザー解決（初回は自動作成）
  optional_auth          → require_auth と同じだが失敗時は None（匿名扱い）
  require_active_user    → is_active でなければ 403
  require_verified_email → メール未確認なら 403
  require_role(...)      → ロール不足なら 403
  require_ownership(...) → パスパラメータのリソースが本人のものでなければ 403
  UserRateLimit(...)     → ユーザー単位のレート制限（429）
  log_user_activity(...) → 操作ログ
"""

from __future__ import annotations

import datetime
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from google.cloud import firestore

from notekeep.adapters.cloud_storage import GCSBlobStorage
from notekeep.adapters.firebase_auth import FirebaseIdentityVerifier
from notekeep.adapters.firestore_repository import (
    FirestoreNoteRepository,
    FirestoreReminderRepository,
    FirestoreUserRepository,
)
from notekeep.config import AppConfig
from notekeep.domain.errors import (
    AuthError,
    AuthorizationError,
    IdentityVerificationError,
    InternalError,
    NoteKeepError,
    NotFoundError,
    RateLimitError,
)
from notekeep.domain.models import IdentityClaims, User
from notekeep.domain.ports import (
    BlobStorage,
    IdentityVerifier,
    NoteRepository,
    ReminderRepository,
    UserRepository,
)
from notekeep.logging_config import bind_request_context
from notekeep.services.rate_limiter import SlidingWindowRateLimiter
from notekeep.services.user_directory import resolve_user

logger = logging.getLogger(__name__)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


# ── 設定・外部クライアント（シングルトン） ────────────────────────────────────

_config: AppConfig | None = None
_firestore_client: firestore.Client | None = None
_identity_verifier: IdentityVerifier | None = None
_blob_storage: BlobStorage | None = None


def get_config() -> AppConfig:
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def _get_firestore_client() -> firestore.Client:
    global _firestore_client
    if _firestore_client is None:
        project_id = get_config().project_id
        _firestore_client = firestore.Client(project=project_id or None)
        logger.info("Firestore client initialized project=%s", project_id)
    return _firestore_client


def get_identity_verifier() -> IdentityVerifier:
    """IdentityVerifier を返す依存関数（Firebase Admin は初回検証時に初期化）"""
    global _identity_verifier
    if _identity_verifier is None:
        _identity_verifier = FirebaseIdentityVerifier(get_config())
    return _identity_verifier


def get_user_repo() -> UserRepository:
    return FirestoreUserRepository(_get_firestore_client())


def get_note_repo() -> NoteRepository:
    return FirestoreNoteRepository(_get_firestore_client())


def get_reminder_repo() -> ReminderRepository:
    return FirestoreReminderRepository(_get_firestore_client())


def get_blob_storage() -> BlobStorage:
    global _blob_storage
    if _blob_storage is None:
        _blob_storage = GCSBlobStorage(bucket_name=get_config().storage_bucket)
    return _blob_storage


# ── 認証 ──────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuthContext:
    """検証済みクレームと解決済みローカルユーザー"""

    claims: IdentityClaims
    user: User


_bearer = HTTPBearer(auto_error=False)


def _authenticate(
    request: Request,
    creds: HTTPAuthorizationCredentials | None,
    verifier: IdentityVerifier,
    user_repo: UserRepository,
) -> AuthContext:
    """
    トークン検証とユーザー解決。結果は request.state に保存し、
    同じリクエスト内の後続ステージでは再検証しない。
    """
    cached = getattr(request.state, "auth_context", None)
    if cached is not None:
        return cached

    if creds is None or not creds.credentials:
        raise AuthError("Access token required")

    try:
        claims = verifier.verify(creds.credentials)
    except IdentityVerificationError as e:
        if e.reason == IdentityVerificationError.EXPIRED:
            raise AuthError("Token expired", code="TOKEN_EXPIRED") from e
        raise AuthError("Invalid token", code="INVALID_TOKEN") from e
    except Exception as e:
        logger.warning("Token verification failed: %s", e)
        raise AuthError("Authentication failed") from e

    try:
        user = resolve_user(user_repo, claims, utcnow())
    except NoteKeepError:
        raise
    except Exception as e:
        # 内部エラーの詳細はログにのみ残す
        logger.error(
            "User resolution failed: uid=%s - %s", claims.subject_id, e, exc_info=True
        )
        raise AuthError("Authentication failed") from e

    ctx = AuthContext(claims=claims, user=user)
    request.state.auth_context = ctx
    bind_request_context(user_id=user.id)
    return ctx


async def require_auth(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    user_repo: UserRepository = Depends(get_user_repo),
) -> AuthContext:
    """
    Authorization: Bearer <id_token> ヘッダーを検証して AuthContext を返す。

    Raises:
        AuthError(401): トークンなし（AUTH_FAILED）・期限切れ（TOKEN_EXPIRED）・
            不正（INVALID_TOKEN）・ユーザー解決の失敗（AUTH_FAILED）
    """
    return _authenticate(request, creds, verifier, user_repo)


async def optional_auth(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    user_repo: UserRepository = Depends(get_user_repo),
) -> AuthContext | None:
    """認証できれば AuthContext、できなければ None（匿名として続行）"""
    if creds is None:
        return None
    try:
        ctx = _authenticate(request, creds, verifier, user_repo)
    except Exception as e:
        logger.debug("Optional auth skipped: %s", e)
        return None
    if not ctx.user.is_active:
        return None
    return ctx


async def require_active_user(
    ctx: AuthContext = Depends(require_auth),
) -> AuthContext:
    if not ctx.user.is_active:
        raise AuthorizationError("Account is deactivated", code="ACCOUNT_INACTIVE")
    return ctx


async def require_verified_email(
    ctx: AuthContext = Depends(require_active_user),
) -> AuthContext:
    if not ctx.claims.email_verified:
        raise AuthorizationError(
            "Email verification required", code="EMAIL_NOT_VERIFIED"
        )
    return ctx


def require_role(*roles: str) -> Callable[..., Any]:
    """
    指定ロールのいずれかを要求する依存関数を返す。

    Raises:
        AuthError(401): 未認証
        AuthorizationError(403): ロール不足（required / current を付与）
    """

    async def _check_role(
        request: Request,
        _ctx: AuthContext | None = Depends(optional_auth),
    ) -> AuthContext:
        # 非アクティブユーザーは optional_auth では None になるため state から読む
        ctx: AuthContext | None = getattr(request.state, "auth_context", None)
        if ctx is None:
            raise AuthError("Authentication required")
        if ctx.user.role not in roles:
            logger.warning(
                "Insufficient role: user_id=%s, role=%s, required=%s",
                ctx.user.id,
                ctx.user.role,
                roles,
            )
            raise AuthorizationError(
                "Insufficient permissions",
                extra={"required": list(roles), "current": ctx.user.role},
            )
        return ctx

    return _check_role


def require_ownership(
    get_repo: Callable[[], Any], param_name: str, **lookup: Any
) -> Callable[..., Any]:
    """
    パスパラメータ param_name で指すリソースの所有者チェックを行う依存関数を返す。

    Args:
        get_repo: リポジトリを返す依存関数（get(resource_id, **lookup) を持つこと）
        param_name: リソース ID を持つパスパラメータ名
        lookup: repo.get() に渡す追加引数（例: include_deleted=True）

    Raises:
        NotFoundError(404): リソースが存在しない
        AuthorizationError(403): 本人のリソースでない（ACCESS_DENIED）
        InternalError(500): 読み込み時の想定外エラー
    """

    async def _check_ownership(
        request: Request,
        ctx: AuthContext = Depends(require_active_user),
        repo: Any = Depends(get_repo),
    ) -> Any:
        resource_id = request.path_params.get(param_name)
        try:
            resource = repo.get(resource_id, **lookup) if resource_id else None
        except Exception as e:
            logger.error(
                "Ownership lookup failed: %s=%s - %s",
                param_name,
                resource_id,
                e,
                exc_info=True,
            )
            raise InternalError("Authorization check failed") from e

        if resource is None:
            raise NotFoundError("Resource not found")
        if (
            resource.user_id != ctx.user.id
            and resource.firebase_uid != ctx.claims.subject_id
        ):
            logger.warning(
                "Access denied: user_id=%s, %s=%s", ctx.user.id, param_name, resource_id
            )
            raise AuthorizationError("Access denied", code="ACCESS_DENIED")

        request.state.resource = resource
        return resource

    return _check_ownership


# ── レート制限・操作ログ ──────────────────────────────────────────────────────


class UserRateLimit:
    """
    ユーザー単位のレート制限（依存関数として使う）。

    未認証リクエストは対象外。DISABLE_RATE_LIMIT が設定されていればスキップする
    （呼び出しのたびに環境変数を読む）。追跡ユーザー数の上限は max_keys 省略時
    RATE_LIMIT_MAX_TRACKED_USERS を使い、リミッターは初回呼び出し時に作る。

    使用例:
        upload_limit = UserRateLimit(window_seconds=60, max_requests=10)

        @router.post("/x", dependencies=[Depends(upload_limit)])
    """

    def __init__(
        self,
        window_seconds: float = 15 * 60,
        max_requests: int = 100,
        message: str = "Too many requests, please try again later",
        max_keys: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.message = message
        self._max_keys = max_keys
        self._clock = clock
        self._limiter: SlidingWindowRateLimiter | None = None

    @property
    def limiter(self) -> SlidingWindowRateLimiter:
        if self._limiter is None:
            max_keys = self._max_keys or get_config().rate_limit_max_tracked_keys
            self._limiter = SlidingWindowRateLimiter(
                self.window_seconds,
                self.max_requests,
                max_keys=max_keys,
                clock=self._clock,
            )
        return self._limiter

    async def __call__(
        self, ctx: AuthContext | None = Depends(optional_auth)
    ) -> None:
        if os.environ.get("DISABLE_RATE_LIMIT"):
            return
        if ctx is None:
            return
        decision = self.limiter.hit(ctx.user.id)
        if not decision.allowed:
            logger.warning(
                "User rate limit exceeded: user_id=%s, retry_after=%d",
                ctx.user.id,
                decision.retry_after,
            )
            raise RateLimitError(self.message, decision.retry_after)


def log_user_activity(action: str) -> Callable[..., Any]:
    """認証済みユーザーの操作を INFO ログに残す依存関数を返す"""

    async def _log_activity(
        ctx: AuthContext | None = Depends(optional_auth),
    ) -> None:
        if ctx is not None:
            logger.info(
                "User activity: %s - %s - %s",
                ctx.user.email,
                action,
                utcnow().isoformat(),
            )

    return _log_activity


# ── 所有者チェック済みリソース ────────────────────────────────────────────────

owned_note = require_ownership(get_note_repo, "note_id")
owned_note_including_deleted = require_ownership(
    get_note_repo, "note_id", include_deleted=True
)
owned_reminder = require_ownership(get_reminder_repo, "reminder_id")

"""FastAPI アプリケーション

NoteKeep バックエンド API。
Cloud Run Service として動作し、Firebase Auth で認証する。

エンドポイント一覧:
  GET    /api/health                              ← 認証不要
  GET    /api/users/me
  PATCH  /api/users/me/preferences
  GET    /api/users/me/stats
  POST   /api/users/me/deactivate
  GET    /api/notes
  GET    /api/notes/search?q=
  POST   /api/notes
  GET    /api/notes/{id}
  PATCH  /api/notes/{id}
  DELETE /api/notes/{id}
  POST   /api/notes/{id}/pin | archive | favorite | restore
  POST   /api/notes/{id}/labels
  DELETE /api/notes/{id}/labels/{label}
  POST   /api/notes/{id}/items
  POST   /api/notes/{id}/items/{item_id}/toggle
  DELETE /api/notes/{id}/items/{item_id}
  POST   /api/notes/{id}/attachments | images | audio | documents
  DELETE /api/notes/{id}/attachments/{attachment_id}
  GET    /api/reminders
  GET    /api/reminders/overdue
  GET    /api/reminders/upcoming
  POST   /api/reminders
  GET    /api/reminders/{id}
  PATCH  /api/reminders/{id}
  DELETE /api/reminders/{id}
  POST   /api/reminders/{id}/complete | snooze | dismiss
  PATCH  /api/reminders/{id}/priority
  POST   /api/reminders/{id}/tags
  DELETE /api/reminders/{id}/tags/{tag}
  GET    /api/admin/reminders/due                  ← admin ロールのみ
  POST   /api/admin/reminders/{id}/notified        ← admin ロールのみ
"""

from __future__ import annotations

import logging
import os
import traceback
import uuid
from collections.abc import Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from notekeep.domain.errors import NoteKeepError, RateLimitError
from notekeep.entrypoints.api.deps import get_config, utcnow
from notekeep.entrypoints.api.routes import admin, attachments, notes, reminders, users
from notekeep.logging_config import request_context, setup_logging
from notekeep.services.rate_limiter import SlidingWindowRateLimiter

# ── ロギング初期化 ───────────────────────────────────────────────────────────
setup_logging()
logger = logging.getLogger(__name__)

_config = get_config()

# ── FastAPI アプリ ───────────────────────────────────────────────────────────
app = FastAPI(
    title="NoteKeep API",
    description="ノート・リマインダー・添付ファイルを管理するバックエンド API",
    version="1.0.0",
)


# ── 例外ハンドラー（共通エンベロープ {success: false, message, code?}） ──────


@app.exception_handler(NoteKeepError)
async def _handle_app_error(request: Request, exc: NoteKeepError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed: %s %s - %s",
            request.method,
            request.url.path,
            exc.message,
            exc_info=exc,
        )
    else:
        logger.info(
            "Request rejected: %s %s - %d %s",
            request.method,
            request.url.path,
            exc.status_code,
            exc.code or exc.message,
        )
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code, content=exc.to_payload(), headers=headers
    )


@app.exception_handler(StarletteHTTPException)
async def _handle_http_error(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    message = "Route not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def _handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            # loc の先頭は "body" / "query" / "path"
            "field": ".".join(str(p) for p in err.get("loc", ())[1:]),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation failed",
            "code": "VALIDATION_ERROR",
            "errors": errors,
        },
    )


# ── グローバル例外ミドルウェア ──────────────────────────────────────────────────
# 【登録順の注意】
#   add_middleware は後から登録したものが外側になる。
#   このミドルウェアを CORSMiddleware より先に登録して内側に置き、
#   500 レスポンスにも CORS ヘッダーが付くようにする。
#
# スタック: ServerErrorMiddleware → CORSMiddleware → リクエスト ID → IP レート制限
#          → このMW → Routes


@app.middleware("http")
async def _catch_unhandled_exceptions(
    request: Request, call_next: Callable[[Request], Response]
) -> Response:
    try:
        return await call_next(request)
    except Exception as exc:
        logger.error(
            "Unhandled exception: %s %s - %s",
            request.method,
            request.url.path,
            exc,
            exc_info=True,
        )
        content: dict = {"success": False, "message": "Internal server error"}
        if not _config.is_production:
            content["error"] = str(exc)
            content["stack"] = traceback.format_exc()
        return JSONResponse(status_code=500, content=content)


# ── IP 単位のレート制限（/api 配下） ──────────────────────────────────────────

_ip_limiter = SlidingWindowRateLimiter(
    window_seconds=_config.rate_limit_window_seconds,
    max_requests=_config.rate_limit_max_requests,
    max_keys=_config.rate_limit_max_tracked_keys,
)


@app.middleware("http")
async def _limit_by_client_ip(
    request: Request, call_next: Callable[[Request], Response]
) -> Response:
    if os.environ.get("DISABLE_RATE_LIMIT") or not request.url.path.startswith(
        "/api/"
    ):
        return await call_next(request)

    client_ip = request.client.host if request.client else "unknown"
    decision = _ip_limiter.hit(client_ip)
    if not decision.allowed:
        logger.warning(
            "IP rate limit exceeded: ip=%s, retry_after=%d",
            client_ip,
            decision.retry_after,
        )
        exc = RateLimitError(
            "Too many requests from this IP, please try again later.",
            decision.retry_after,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_payload(),
            headers={"Retry-After": str(exc.retry_after)},
        )
    return await call_next(request)


# ── リクエスト ID ─────────────────────────────────────────────────────────────
# カスタムミドルウェアの最後に登録して一番外側に置き、IP レート制限のログと
# 429 レスポンスにも request_id が付くようにする。


@app.middleware("http")
async def _bind_request_id(
    request: Request, call_next: Callable[[Request], Response]
) -> Response:
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    token = request_context.set({"request_id": request_id})
    try:
        response = await call_next(request)
    finally:
        request_context.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


# ── CORS ────────────────────────────────────────────────────────────────────
# 【後から登録 = 外側】全レスポンスに CORS ヘッダーを付与する
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(_config.cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

# ── ルーター登録 ─────────────────────────────────────────────────────────────
_PREFIX = "/api"

app.include_router(users.router, prefix=_PREFIX)
app.include_router(notes.router, prefix=_PREFIX)
app.include_router(attachments.router, prefix=_PREFIX)
app.include_router(reminders.router, prefix=_PREFIX)
app.include_router(admin.router, prefix=_PREFIX)


@app.get("/api/health")
async def health() -> dict:
    """ヘルスチェックエンドポイント（Cloud Run の起動確認用）"""
    return {
        "status": "OK",
        "message": "NoteKeep API is running",
        "timestamp": utcnow().isoformat(),
    }


logger.info("NoteKeep API started env=%s", _config.app_env)

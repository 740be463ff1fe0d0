"""ロギング設定モジュール

Cloud Run / Cloud Logging 環境ではJSON形式、ローカルではテキスト形式でログを出力する。
リクエスト単位のコンテキスト（request_id, user_id）は ContextVar に保持し、
JSON ではトップレベルのフィールド、テキストでは行頭の [request_id] として出力する。

使い方:
    from notekeep.logging_config import setup_logging
    setup_logging()

環境変数:
    LOG_LEVEL: ログレベル (DEBUG, INFO, WARNING, ERROR, CRITICAL) デフォルト: INFO
    K_SERVICE / CLOUD_RUN_JOB: Cloud Run 環境判定（自動設定される）
"""

from __future__ import annotations

import contextvars
import json
import logging
import os

# app のミドルウェアが request_id を、認証 Depends が user_id を設定する
request_context: contextvars.ContextVar[dict | None] = contextvars.ContextVar(
    "request_context", default=None
)

# INFO だと 1 リクエストごとに数行出るライブラリ
_NOISY_LOGGERS = ("urllib3", "google.auth", "google.api_core", "multipart")

_SEVERITY = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARNING",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "CRITICAL",
}


def bind_request_context(**fields: str) -> None:
    """現在のリクエストコンテキストにフィールドを追加する"""
    current = request_context.get() or {}
    request_context.set({**current, **fields})


class RequestContextFilter(logging.Filter):
    """LogRecord に request_id / user_id 属性を付ける（リクエスト外では "-"）"""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = request_context.get() or {}
        record.request_id = ctx.get("request_id", "-")
        record.user_id = ctx.get("user_id", "-")
        return True


class CloudLoggingFormatter(logging.Formatter):
    """Cloud Logging互換のJSONフォーマッタ

    `severity` フィールドでログレベルを Cloud Logging に渡す。
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "severity": _SEVERITY.get(record.levelno, "DEFAULT"),
            "message": record.getMessage(),
            "logger": record.name,
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)
        ctx = request_context.get()
        if ctx:
            log_entry.update(ctx)
        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)
        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging() -> None:
    """ログ設定を初期化する（既存のルートハンドラーは置き換える）"""
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    on_cloud_run = bool(os.getenv("K_SERVICE") or os.getenv("CLOUD_RUN_JOB"))

    handler = logging.StreamHandler()
    handler.addFilter(RequestContextFilter())
    if on_cloud_run:
        handler.setFormatter(CloudLoggingFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] [%(request_id)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

"""設定管理 - 環境変数の型安全な読み込み"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

_DEFAULT_CORS_ORIGINS = ("http://localhost:3000", "http://localhost:19006")


@dataclass(frozen=True)
class FirebaseServiceAccount:
    """サービスアカウント JSON を環境変数から組み立てるための値"""

    project_id: str
    private_key: str
    private_key_id: str = ""
    client_email: str = ""
    client_id: str = ""

    def to_dict(self) -> dict:
        """firebase_admin.credentials.Certificate に渡せる dict を返す"""
        return {
            "type": "service_account",
            "project_id": self.project_id,
            "private_key_id": self.private_key_id,
            # .env では改行が "\n" リテラルで保存される
            "private_key": self.private_key.replace("\\n", "\n"),
            "client_email": self.client_email,
            "client_id": self.client_id,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "auth_provider_x509_cert_url": "https://www.googleapis.com/oauth2/v1/certs",
            "client_x509_cert_url": (
                "https://www.googleapis.com/robot/v1/metadata/x509/"
                f"{self.client_email}"
            ),
        }


@dataclass(frozen=True)
class AppConfig:
    """アプリケーション設定"""

    project_id: str = ""
    storage_bucket: str = ""
    app_env: str = "development"
    cors_origins: tuple[str, ...] = _DEFAULT_CORS_ORIGINS
    rate_limit_window_seconds: float = 15 * 60
    rate_limit_max_requests: int = 100
    rate_limit_max_tracked_keys: int = 10_000
    service_account: FirebaseServiceAccount | None = field(default=None, repr=False)

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """環境変数から設定を読み込む"""
        load_dotenv()

        project_id = os.getenv("PROJECT_ID") or os.getenv("FIREBASE_PROJECT_ID", "")

        storage_bucket = os.getenv("GCS_BUCKET_NAME", "")
        if not storage_bucket and project_id:
            storage_bucket = f"{project_id}.appspot.com"

        origins = tuple(
            o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()
        )

        service_account = None
        private_key = os.getenv("FIREBASE_PRIVATE_KEY")
        if private_key:
            service_account = FirebaseServiceAccount(
                project_id=os.getenv("FIREBASE_PROJECT_ID", project_id),
                private_key=private_key,
                private_key_id=os.getenv("FIREBASE_PRIVATE_KEY_ID", ""),
                client_email=os.getenv("FIREBASE_CLIENT_EMAIL", ""),
                client_id=os.getenv("FIREBASE_CLIENT_ID", ""),
            )

        try:
            window = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "900"))
            max_requests = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100"))
            max_tracked = int(os.getenv("RATE_LIMIT_MAX_TRACKED_USERS", "10000"))
        except ValueError as e:
            raise ValueError(f"Invalid rate limit setting: {e}") from e

        return cls(
            project_id=project_id,
            storage_bucket=storage_bucket,
            app_env=os.getenv("APP_ENV", "development"),
            cors_origins=origins or _DEFAULT_CORS_ORIGINS,
            rate_limit_window_seconds=window,
            rate_limit_max_requests=max_requests,
            rate_limit_max_tracked_keys=max_tracked,
            service_account=service_account,
        )

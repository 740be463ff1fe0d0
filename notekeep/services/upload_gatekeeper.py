"""Upload Gatekeeper - アップロードファイルの検証

ストレージに渡す前に MIME タイプ・サイズ・件数・フィールド名を検証し、
合格したファイルに一意なファイル名とアップロード者情報を付与する。

エラーコード（全て 400）:
    INVALID_FILE_TYPE               許可リストにない MIME タイプ
    INVALID_FILE_TYPE_FOR_ENDPOINT  エンドポイント固有のリストにない MIME タイプ
    FILE_TOO_LARGE                  1ファイル 10MiB 超
    TOO_MANY_FILES                  1リクエスト 5ファイル超
    UNEXPECTED_FILE                 想定外のフィールド名 / フィールドの件数超過
    NO_FILE                         必須ファイルなし
"""

from __future__ import annotations

import datetime
import os
import uuid
from dataclasses import dataclass

from notekeep.domain.errors import ValidationError
from notekeep.domain.models import AttachmentType, User

MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024
MAX_FILES_PER_REQUEST = 5

ALLOWED_TYPES: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "text/plain": ".txt",
    "audio/mpeg": ".mp3",
    "audio/wav": ".wav",
    "audio/mp4": ".m4a",
    "audio/webm": ".webm",
}

IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp")
AUDIO_TYPES = ("audio/mpeg", "audio/wav", "audio/mp4", "audio/webm")
DOCUMENT_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
)


@dataclass(frozen=True)
class IncomingFile:
    """
    multipart から取り出した未検証のファイル。

    size はパーサーが数えたバイト数。content は検証を通ったあとに読み込む。
    """

    field_name: str
    filename: str
    content_type: str
    size: int
    content: bytes = b""


@dataclass(frozen=True)
class UploadRule:
    """エンドポイントごとの受け入れ条件"""

    field_name: str
    max_count: int = 1
    allowed_types: tuple[str, ...] | None = None  # None は全体の許可リストのみ
    required: bool = True


ANY_FILES = UploadRule(field_name="files", max_count=MAX_FILES_PER_REQUEST)
IMAGES_ONLY = UploadRule(
    field_name="images", max_count=MAX_FILES_PER_REQUEST, allowed_types=IMAGE_TYPES
)
AUDIO_ONLY = UploadRule(field_name="audio", allowed_types=AUDIO_TYPES)
DOCUMENT_ONLY = UploadRule(field_name="document", allowed_types=DOCUMENT_TYPES)


@dataclass(frozen=True)
class AcceptedUpload:
    """検証済みでストレージに渡せるファイル"""

    original_name: str
    unique_filename: str
    mime_type: str
    content: bytes
    attachment_type: AttachmentType
    upload_timestamp: datetime.datetime
    user_id: str | None
    user_email: str | None

    @property
    def size(self) -> int:
        return len(self.content)


def attachment_type_for(mime_type: str) -> AttachmentType:
    if mime_type.startswith("image/"):
        return AttachmentType.IMAGE
    if mime_type.startswith("audio/"):
        return AttachmentType.AUDIO
    return AttachmentType.DOCUMENT


def generate_unique_filename(
    original_name: str, now: datetime.datetime, token: str | None = None
) -> str:
    """
    衝突しにくいファイル名を生成する。

    形式: {元のファイル名の stem}_{エポックミリ秒}_{ランダム12桁}{元の拡張子}
    例: "photo.png" → "photo_1718000000000_3f9a1c0b7d2e.png"
    """
    base = os.path.basename(original_name.replace("\\", "/"))
    stem, ext = os.path.splitext(base)
    timestamp = int(now.timestamp() * 1000)
    token = token or uuid.uuid4().hex[:12]
    return f"{stem or 'file'}_{timestamp}_{token}{ext}"


def check_file_size(size: int, max_file_size: int = MAX_FILE_SIZE_BYTES) -> None:
    if size > max_file_size:
        raise ValidationError(
            f"File size too large. Maximum size is {max_file_size // (1024 * 1024)}MB.",
            code="FILE_TOO_LARGE",
        )


def validate_uploads(
    files: list[IncomingFile],
    rule: UploadRule,
    *,
    max_file_size: int = MAX_FILE_SIZE_BYTES,
    max_files: int = MAX_FILES_PER_REQUEST,
) -> list[IncomingFile]:
    """
    リクエスト内のファイルを検証し、rule.field_name のファイルを返す。

    Raises:
        ValidationError: 検証に失敗した場合（code はモジュール docstring 参照）
    """
    if len(files) > max_files:
        raise ValidationError(
            f"Too many files. Maximum {max_files} files allowed.",
            code="TOO_MANY_FILES",
        )

    matched: list[IncomingFile] = []
    for f in files:
        if f.field_name != rule.field_name:
            raise ValidationError("Unexpected file field.", code="UNEXPECTED_FILE")
        matched.append(f)
        if len(matched) > rule.max_count:
            raise ValidationError("Unexpected file field.", code="UNEXPECTED_FILE")

        if f.content_type not in ALLOWED_TYPES:
            raise ValidationError(
                f"File type {f.content_type} is not allowed. "
                f"Allowed types: {', '.join(ALLOWED_TYPES)}",
                code="INVALID_FILE_TYPE",
            )
        check_file_size(f.size, max_file_size)

    if not matched:
        if rule.required:
            raise ValidationError(
                f"No file provided in field '{rule.field_name}'", code="NO_FILE"
            )
        return matched

    if rule.allowed_types is not None:
        for f in matched:
            if f.content_type not in rule.allowed_types:
                raise ValidationError(
                    f"File type {f.content_type} not allowed for this endpoint",
                    code="INVALID_FILE_TYPE_FOR_ENDPOINT",
                    extra={"allowed": list(rule.allowed_types)},
                )
    return matched


def accept_uploads(
    files: list[IncomingFile], user: User | None, now: datetime.datetime
) -> list[AcceptedUpload]:
    """検証済みファイルに一意なファイル名とアップロード者情報を付与する"""
    return [
        AcceptedUpload(
            original_name=f.filename,
            unique_filename=generate_unique_filename(f.filename, now),
            mime_type=f.content_type,
            content=f.content,
            attachment_type=attachment_type_for(f.content_type),
            upload_timestamp=now,
            user_id=user.id if user else None,
            user_email=user.email if user else None,
        )
        for f in files
    ]

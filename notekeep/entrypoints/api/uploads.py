"""multipart アップロードの受け口

リクエストのフォームからファイルを取り出し、Upload Gatekeeper で検証して
AcceptedUpload のリストとしてルートに渡す依存関数を提供する。

件数・フィールド名・MIME タイプ・サイズはパーサーが記録したメタデータで先に
検証し、通ったファイルだけを上限 + 1 バイトまで読み込む。
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from fastapi import Depends, Request
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException

from notekeep.domain.errors import InternalError, NoteKeepError
from notekeep.entrypoints.api.deps import AuthContext, require_active_user, utcnow
from notekeep.services.upload_gatekeeper import (
    MAX_FILE_SIZE_BYTES,
    AcceptedUpload,
    IncomingFile,
    UploadRule,
    accept_uploads,
    check_file_size,
    validate_uploads,
)

logger = logging.getLogger(__name__)


def _part_size(part: UploadFile) -> int:
    """パーサーが数えたサイズ。未設定ならスプールファイルの末尾位置"""
    if part.size is not None:
        return part.size
    position = part.file.tell()
    part.file.seek(0, os.SEEK_END)
    size = part.file.tell()
    part.file.seek(position)
    return size


async def read_uploads(
    parts: list[tuple[str, UploadFile]],
    rule: UploadRule,
    max_file_size: int = MAX_FILE_SIZE_BYTES,
) -> list[IncomingFile]:
    """
    メタデータで検証してから中身を読み込む。

    Args:
        parts: (フィールド名, UploadFile) のリスト（フォーム内の順）
        rule: エンドポイントの受け入れ条件
        max_file_size: 1ファイルの上限バイト数

    Raises:
        ValidationError(400): 検証エラー（code は upload_gatekeeper 参照）
    """
    files = [
        IncomingFile(
            field_name=field_name,
            filename=part.filename or "",
            content_type=part.content_type or "application/octet-stream",
            size=_part_size(part),
        )
        for field_name, part in parts
    ]
    # 別フィールドのファイルがあれば例外になるので matched と parts は同順
    matched = validate_uploads(files, rule, max_file_size=max_file_size)

    loaded: list[IncomingFile] = []
    for f, (_, part) in zip(matched, parts):
        content = await part.read(max_file_size + 1)
        check_file_size(len(content), max_file_size)
        loaded.append(replace(f, size=len(content), content=content))
    return loaded


def accepted_files(rule: UploadRule) -> Callable[..., Any]:
    """
    rule に従ってアップロードを検証する依存関数を返す。

    Raises:
        ValidationError(400): 検証エラー（code は upload_gatekeeper 参照）
        InternalError(500): フォームの読み込みに失敗した場合
    """

    async def _accept(
        request: Request,
        ctx: AuthContext = Depends(require_active_user),
    ) -> list[AcceptedUpload]:
        try:
            form = await request.form()
            parts = [
                (field_name, value)
                for field_name, value in form.multi_items()
                if isinstance(value, UploadFile)
            ]
            files = await read_uploads(parts, rule)
        except (HTTPException, NoteKeepError):
            # 不正な multipart は Starlette が 400 として送出する
            raise
        except Exception as e:
            logger.error("Failed to read upload: %s", e, exc_info=True)
            raise InternalError("File upload failed") from e

        accepted = accept_uploads(files, ctx.user, utcnow())
        logger.info(
            "Upload accepted: user_id=%s, field=%s, count=%d",
            ctx.user.id,
            rule.field_name,
            len(accepted),
        )
        return accepted

    return _accept

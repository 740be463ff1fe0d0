"""添付ファイル API ルート

POST   /api/notes/{id}/attachments   → 201 フィールド "files"（最大5件・許可リスト全体）
POST   /api/notes/{id}/images        → 201 フィールド "images"（最大5件・画像のみ）
POST   /api/notes/{id}/audio         → 201 フィールド "audio"（1件・音声のみ）
POST   /api/notes/{id}/documents     → 201 フィールド "document"（1件・文書のみ）
DELETE /api/notes/{id}/attachments/{attachment_id} → 200 { success, note }

ファイルは GCS の attachments/{firebase_uid}/{unique_filename} に保存し、
ノートに Attachment として埋め込む。
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from notekeep.domain.errors import InternalError, NoteKeepError
from notekeep.domain.models import Attachment, Note
from notekeep.domain.ports import BlobStorage, NoteRepository
from notekeep.entrypoints.api.deps import (
    UserRateLimit,
    get_blob_storage,
    get_note_repo,
    log_user_activity,
    owned_note,
    utcnow,
)
from notekeep.entrypoints.api.routes.notes import (
    AttachmentBody,
    NoteBody,
    NoteResponse,
    note_body,
)
from notekeep.entrypoints.api.uploads import accepted_files
from notekeep.services import notes as note_rules
from notekeep.services.upload_gatekeeper import (
    ANY_FILES,
    AUDIO_ONLY,
    DOCUMENT_ONLY,
    IMAGES_ONLY,
    AcceptedUpload,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notes", tags=["attachments"])

_upload_limit = UserRateLimit(
    window_seconds=15 * 60,
    max_requests=50,
    message="Too many uploads, please try again later",
)

_UPLOAD_DEPENDENCIES = [
    Depends(_upload_limit),
    Depends(log_user_activity("upload attachment")),
]


class AttachmentUploadResponse(BaseModel):
    success: bool = True
    attachments: list[AttachmentBody]
    note: NoteBody


def _blob_path(note: Note, file_name: str) -> str:
    return f"attachments/{note.firebase_uid}/{file_name}"


def _discard_blobs(storage: BlobStorage, paths: list[str]) -> None:
    """ノートに紐づけられなかった保存済みファイルを削除する"""
    for path in paths:
        try:
            storage.delete(path)
        except Exception:
            logger.warning("Failed to discard orphaned blob: %s", path, exc_info=True)


def _attach(
    note: Note,
    uploads: list[AcceptedUpload],
    storage: BlobStorage,
    repo: NoteRepository,
) -> AttachmentUploadResponse:
    """
    アップロードを GCS に保存してノートに追加する。

    途中のアップロードかノートの保存に失敗した場合は、それまでに保存した
    ファイルを削除してから例外を送出する。
    """
    attachments: list[Attachment] = []
    stored: list[str] = []
    try:
        for upload in uploads:
            path = _blob_path(note, upload.unique_filename)
            url = storage.upload(path, upload.content, upload.mime_type)
            stored.append(path)
            attachments.append(
                Attachment(
                    id=uuid.uuid4().hex,
                    file_name=upload.unique_filename,
                    original_name=upload.original_name,
                    file_type=upload.attachment_type,
                    mime_type=upload.mime_type,
                    size=upload.size,
                    url=url,
                    uploaded_at=upload.upload_timestamp,
                )
            )
        note = note_rules.add_attachments(note, attachments)
        saved = repo.save(note_rules.prepare_for_save(note, utcnow()))
    except NoteKeepError:
        _discard_blobs(storage, stored)
        raise
    except Exception as e:
        logger.error(
            "Attachment upload failed: note_id=%s, stored=%d - %s",
            note.id,
            len(stored),
            e,
            exc_info=True,
        )
        _discard_blobs(storage, stored)
        raise InternalError("File upload failed") from e

    logger.info("Attachments added: note_id=%s, count=%d", note.id, len(attachments))
    body = note_body(saved)
    return AttachmentUploadResponse(
        attachments=body.attachments[-len(attachments) :], note=body
    )


@router.post(
    "/{note_id}/attachments",
    status_code=status.HTTP_201_CREATED,
    response_model=AttachmentUploadResponse,
    dependencies=_UPLOAD_DEPENDENCIES,
)
async def upload_files(
    note: Note = Depends(owned_note),
    uploads: list[AcceptedUpload] = Depends(accepted_files(ANY_FILES)),
    storage: BlobStorage = Depends(get_blob_storage),
    repo: NoteRepository = Depends(get_note_repo),
) -> AttachmentUploadResponse:
    return _attach(note, uploads, storage, repo)


@router.post(
    "/{note_id}/images",
    status_code=status.HTTP_201_CREATED,
    response_model=AttachmentUploadResponse,
    dependencies=_UPLOAD_DEPENDENCIES,
)
async def upload_images(
    note: Note = Depends(owned_note),
    uploads: list[AcceptedUpload] = Depends(accepted_files(IMAGES_ONLY)),
    storage: BlobStorage = Depends(get_blob_storage),
    repo: NoteRepository = Depends(get_note_repo),
) -> AttachmentUploadResponse:
    return _attach(note, uploads, storage, repo)


@router.post(
    "/{note_id}/audio",
    status_code=status.HTTP_201_CREATED,
    response_model=AttachmentUploadResponse,
    dependencies=_UPLOAD_DEPENDENCIES,
)
async def upload_audio(
    note: Note = Depends(owned_note),
    uploads: list[AcceptedUpload] = Depends(accepted_files(AUDIO_ONLY)),
    storage: BlobStorage = Depends(get_blob_storage),
    repo: NoteRepository = Depends(get_note_repo),
) -> AttachmentUploadResponse:
    return _attach(note, uploads, storage, repo)


@router.post(
    "/{note_id}/documents",
    status_code=status.HTTP_201_CREATED,
    response_model=AttachmentUploadResponse,
    dependencies=_UPLOAD_DEPENDENCIES,
)
async def upload_document(
    note: Note = Depends(owned_note),
    uploads: list[AcceptedUpload] = Depends(accepted_files(DOCUMENT_ONLY)),
    storage: BlobStorage = Depends(get_blob_storage),
    repo: NoteRepository = Depends(get_note_repo),
) -> AttachmentUploadResponse:
    return _attach(note, uploads, storage, repo)


@router.delete("/{note_id}/attachments/{attachment_id}", response_model=NoteResponse)
async def delete_attachment(
    attachment_id: str,
    note: Note = Depends(owned_note),
    storage: BlobStorage = Depends(get_blob_storage),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    """添付ファイルをノートから外し、GCS からも削除する"""
    note, removed = note_rules.remove_attachment(note, attachment_id)
    storage.delete(_blob_path(note, removed.file_name))
    saved = repo.save(note_rules.prepare_for_save(note, utcnow()))
    logger.info("Attachment deleted: note_id=%s, attachment_id=%s", note.id, attachment_id)
    return NoteResponse(note=note_body(saved))

"""ノート API ルート

GET    /api/notes                             → 200 { success, notes, count }
GET    /api/notes/search?q=                   → 200 { success, notes, count }
POST   /api/notes                             → 201 { success, note }
GET    /api/notes/{id}                        → 200 { success, note }
PATCH  /api/notes/{id}                        → 200 { success, note }
DELETE /api/notes/{id}                        → 200 { success, message }（ソフトデリート）
POST   /api/notes/{id}/pin|archive|favorite   → 200 { success, note }（トグル）
POST   /api/notes/{id}/restore                → 200 { success, note }
POST   /api/notes/{id}/labels                 → 200 { success, note }
DELETE /api/notes/{id}/labels/{label}         → 200 { success, note }
POST   /api/notes/{id}/items                  → 201 { success, note }
POST   /api/notes/{id}/items/{item_id}/toggle → 200 { success, note }
DELETE /api/notes/{id}/items/{item_id}        → 200 { success, note }

全ての書き込みは note_rules.prepare_for_save() を通してから保存する。
"""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import replace

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from notekeep.domain.models import (
    AttachmentType,
    Note,
    NoteCategory,
    NoteType,
)
from notekeep.domain.ports import NoteRepository
from notekeep.entrypoints.api.deps import (
    AuthContext,
    UserRateLimit,
    get_note_repo,
    log_user_activity,
    owned_note,
    owned_note_including_deleted,
    require_active_user,
    utcnow,
)
from notekeep.services import notes as note_rules

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notes", tags=["notes"])

_create_limit = UserRateLimit(
    window_seconds=60,
    max_requests=30,
    message="Too many notes created, please slow down",
)


class ListItemBody(BaseModel):
    id: str
    text: str
    completed: bool
    order: int


class AttachmentBody(BaseModel):
    id: str
    file_name: str
    original_name: str
    file_type: AttachmentType
    mime_type: str
    size: int
    url: str
    uploaded_at: datetime.datetime | None


class NoteBody(BaseModel):
    id: str
    title: str
    content: str
    color: str
    type: NoteType
    list_items: list[ListItemBody]
    attachments: list[AttachmentBody]
    labels: list[str]
    category: NoteCategory
    is_pinned: bool
    is_archived: bool
    is_deleted: bool
    is_favorite: bool
    reminder_id: str | None
    word_count: int
    character_count: int
    completion_percentage: int | None
    last_modified: datetime.datetime | None
    deleted_at: datetime.datetime | None
    created_at: datetime.datetime | None


class NoteResponse(BaseModel):
    success: bool = True
    note: NoteBody


class NoteListResponse(BaseModel):
    success: bool = True
    notes: list[NoteBody]
    count: int


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class NoteCreateRequest(BaseModel):
    title: str = Field(default="", max_length=500)
    content: str = Field(default="", max_length=10000)
    color: str = "#ffffff"
    type: NoteType = NoteType.NOTE
    category: NoteCategory = NoteCategory.PERSONAL
    labels: list[str] = []
    list_items: list[str] = []
    is_pinned: bool = False
    is_favorite: bool = False


class NoteUpdateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=500)
    content: str | None = Field(default=None, max_length=10000)
    color: str | None = None
    type: NoteType | None = None
    category: NoteCategory | None = None
    labels: list[str] | None = None
    is_pinned: bool | None = None
    is_archived: bool | None = None
    is_favorite: bool | None = None


class LabelRequest(BaseModel):
    label: str


class ListItemRequest(BaseModel):
    text: str


def note_body(note: Note) -> NoteBody:
    return NoteBody(
        id=note.id,
        title=note.title,
        content=note.content,
        color=note.color,
        type=note.type,
        list_items=[
            ListItemBody(
                id=item.id, text=item.text, completed=item.completed, order=item.order
            )
            for item in note.list_items
        ],
        attachments=[
            AttachmentBody(
                id=a.id,
                file_name=a.file_name,
                original_name=a.original_name,
                file_type=a.file_type,
                mime_type=a.mime_type,
                size=a.size,
                url=a.url,
                uploaded_at=a.uploaded_at,
            )
            for a in note.attachments
        ],
        labels=list(note.labels),
        category=note.category,
        is_pinned=note.is_pinned,
        is_archived=note.is_archived,
        is_deleted=note.is_deleted,
        is_favorite=note.is_favorite,
        reminder_id=note.reminder_id,
        word_count=note.word_count,
        character_count=note.character_count,
        completion_percentage=note.completion_percentage,
        last_modified=note.last_modified,
        deleted_at=note.deleted_at,
        created_at=note.created_at,
    )


def _save(repo: NoteRepository, note: Note) -> NoteResponse:
    saved = repo.save(note_rules.prepare_for_save(note, utcnow()))
    return NoteResponse(note=note_body(saved))


# ── 一覧・検索 ────────────────────────────────────────────────────────────────


@router.get("", response_model=NoteListResponse)
async def list_notes(
    include_archived: bool = False,
    category: NoteCategory | None = None,
    label: str | None = None,
    ctx: AuthContext = Depends(require_active_user),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteListResponse:
    """ノート一覧（ピン留め優先・更新日時の新しい順、削除済みは含まない）"""
    if category is not None:
        notes = repo.find_by_category(ctx.user.id, category)
    elif label is not None:
        notes = repo.find_by_label(ctx.user.id, label)
    else:
        notes = repo.find_by_user(
            ctx.user.id, include_archived=include_archived, include_deleted=False
        )
    return NoteListResponse(notes=[note_body(n) for n in notes], count=len(notes))


@router.get("/search", response_model=NoteListResponse)
async def search_notes(
    q: str = Query(min_length=1, max_length=200),
    include_archived: bool = False,
    ctx: AuthContext = Depends(require_active_user),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteListResponse:
    """タイトル・本文・ラベル・リスト項目のキーワード検索"""
    notes = repo.search(ctx.user.id, q, include_archived=include_archived)
    return NoteListResponse(notes=[note_body(n) for n in notes], count=len(notes))


# ── 作成・取得・更新・削除 ─────────────────────────────────────────────────────


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=NoteResponse,
    dependencies=[Depends(_create_limit), Depends(log_user_activity("create note"))],
)
async def create_note(
    body: NoteCreateRequest,
    ctx: AuthContext = Depends(require_active_user),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    now = utcnow()
    note = Note(
        id=str(uuid.uuid4()),
        user_id=ctx.user.id,
        firebase_uid=ctx.claims.subject_id,
        title=body.title,
        content=body.content,
        color=body.color,
        type=body.type,
        category=body.category,
        is_pinned=body.is_pinned,
        is_favorite=body.is_favorite,
        created_at=now,
    )
    for label in body.labels:
        note = note_rules.add_label(note, label)
    for text in body.list_items:
        note = note_rules.add_list_item(note, text)

    response = _save(repo, note)
    logger.info("Note created: user_id=%s, note_id=%s", ctx.user.id, note.id)
    return response


@router.get("/{note_id}", response_model=NoteResponse)
async def get_note(note: Note = Depends(owned_note)) -> NoteResponse:
    return NoteResponse(note=note_body(note))


@router.patch("/{note_id}", response_model=NoteResponse)
async def update_note(
    body: NoteUpdateRequest,
    note: Note = Depends(owned_note),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    """ノートを部分更新する（ラベルは指定した集合で置き換え）"""
    changes = body.model_dump(exclude_none=True)
    labels = changes.pop("labels", None)
    note = replace(note, **changes)
    if labels is not None:
        note = replace(note, labels=[])
        for label in labels:
            note = note_rules.add_label(note, label)
    return _save(repo, note)


@router.delete(
    "/{note_id}",
    response_model=MessageResponse,
    dependencies=[Depends(log_user_activity("delete note"))],
)
async def delete_note(
    note: Note = Depends(owned_note),
    repo: NoteRepository = Depends(get_note_repo),
) -> MessageResponse:
    """ソフトデリート（restore で復元できる）"""
    now = utcnow()
    repo.save(note_rules.prepare_for_save(note_rules.soft_delete(note, now), now))
    logger.info("Note deleted: note_id=%s", note.id)
    return MessageResponse(message="Note deleted")


# ── フラグ ────────────────────────────────────────────────────────────────────


@router.post("/{note_id}/pin", response_model=NoteResponse)
async def toggle_pin(
    note: Note = Depends(owned_note),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    return _save(repo, note_rules.toggle_pin(note))


@router.post("/{note_id}/archive", response_model=NoteResponse)
async def toggle_archive(
    note: Note = Depends(owned_note),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    return _save(repo, note_rules.toggle_archive(note))


@router.post("/{note_id}/favorite", response_model=NoteResponse)
async def toggle_favorite(
    note: Note = Depends(owned_note),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    return _save(repo, note_rules.toggle_favorite(note))


@router.post("/{note_id}/restore", response_model=NoteResponse)
async def restore_note(
    note: Note = Depends(owned_note_including_deleted),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    """ソフトデリートしたノートを復元する"""
    response = _save(repo, note_rules.restore(note))
    logger.info("Note restored: note_id=%s", note.id)
    return response


# ── ラベル ────────────────────────────────────────────────────────────────────


@router.post("/{note_id}/labels", response_model=NoteResponse)
async def add_label(
    body: LabelRequest,
    note: Note = Depends(owned_note),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    return _save(repo, note_rules.add_label(note, body.label))


@router.delete("/{note_id}/labels/{label}", response_model=NoteResponse)
async def remove_label(
    label: str,
    note: Note = Depends(owned_note),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    return _save(repo, note_rules.remove_label(note, label))


# ── リスト項目 ────────────────────────────────────────────────────────────────


@router.post(
    "/{note_id}/items",
    status_code=status.HTTP_201_CREATED,
    response_model=NoteResponse,
)
async def add_list_item(
    body: ListItemRequest,
    note: Note = Depends(owned_note),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    return _save(repo, note_rules.add_list_item(note, body.text))


@router.post("/{note_id}/items/{item_id}/toggle", response_model=NoteResponse)
async def toggle_list_item(
    item_id: str,
    note: Note = Depends(owned_note),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    return _save(repo, note_rules.toggle_list_item(note, item_id))


@router.delete("/{note_id}/items/{item_id}", response_model=NoteResponse)
async def remove_list_item(
    item_id: str,
    note: Note = Depends(owned_note),
    repo: NoteRepository = Depends(get_note_repo),
) -> NoteResponse:
    return _save(repo, note_rules.remove_list_item(note, item_id))

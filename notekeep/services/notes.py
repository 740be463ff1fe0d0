"""ノートの更新ルール（純粋関数）

- アーカイブ済み・削除済みのノートはピン留めできない
- 削除はソフトデリート（is_deleted + deleted_at）
- searchable_text は保存のたびに再計算する
"""

from __future__ import annotations

import datetime
import re
import uuid
from dataclasses import replace

from notekeep.domain.errors import NotFoundError, ValidationError
from notekeep.domain.models import Attachment, ListItem, Note

MAX_LABEL_LENGTH = 50
MAX_LIST_ITEM_LENGTH = 1000

_HEX_COLOR = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")


def is_valid_color(value: str) -> bool:
    return bool(_HEX_COLOR.match(value))


def compute_searchable_text(note: Note) -> str:
    return " ".join(
        [
            note.title,
            note.content,
            " ".join(note.labels),
            " ".join(item.text for item in note.list_items),
        ]
    ).lower()


def prepare_for_save(note: Note, now: datetime.datetime) -> Note:
    """
    永続化前の正規化。

    色の検証、ピン留め不変条件の強制、searchable_text と last_modified の更新を行う。

    Raises:
        ValidationError: 色が16進表記でない場合
    """
    if not is_valid_color(note.color):
        raise ValidationError(
            "Invalid color format. Use hex format (#ffffff)", code="INVALID_COLOR"
        )
    pinned = note.is_pinned and not (note.is_archived or note.is_deleted)
    note = replace(note, is_pinned=pinned)
    return replace(
        note,
        searchable_text=compute_searchable_text(note),
        last_modified=now,
    )


# ── フラグ ────────────────────────────────────────────────────────────────────


def toggle_pin(note: Note) -> Note:
    if not note.is_pinned and (note.is_archived or note.is_deleted):
        raise ValidationError(
            "Archived or deleted notes cannot be pinned", code="NOTE_NOT_PINNABLE"
        )
    return replace(note, is_pinned=not note.is_pinned)


def toggle_archive(note: Note) -> Note:
    archived = not note.is_archived
    return replace(
        note,
        is_archived=archived,
        is_pinned=note.is_pinned and not archived,
    )


def toggle_favorite(note: Note) -> Note:
    return replace(note, is_favorite=not note.is_favorite)


def soft_delete(note: Note, now: datetime.datetime) -> Note:
    return replace(note, is_deleted=True, deleted_at=now, is_pinned=False)


def restore(note: Note) -> Note:
    return replace(note, is_deleted=False, deleted_at=None)


# ── ラベル ────────────────────────────────────────────────────────────────────


def add_label(note: Note, label: str) -> Note:
    """ラベルを追加（既にあれば何もしない）"""
    label = label.strip()
    if not label:
        raise ValidationError("Label must not be empty")
    if len(label) > MAX_LABEL_LENGTH:
        raise ValidationError(f"Label must be at most {MAX_LABEL_LENGTH} characters")
    if label in note.labels:
        return note
    return replace(note, labels=[*note.labels, label])


def remove_label(note: Note, label: str) -> Note:
    if label not in note.labels:
        return note
    return replace(note, labels=[lb for lb in note.labels if lb != label])


# ── リスト項目 ────────────────────────────────────────────────────────────────


def add_list_item(note: Note, text: str) -> Note:
    text = text.strip()
    if not text:
        raise ValidationError("List item text must not be empty")
    if len(text) > MAX_LIST_ITEM_LENGTH:
        raise ValidationError(
            f"List item must be at most {MAX_LIST_ITEM_LENGTH} characters"
        )
    item = ListItem(id=uuid.uuid4().hex, text=text, order=len(note.list_items))
    return replace(note, list_items=[*note.list_items, item])


def toggle_list_item(note: Note, item_id: str) -> Note:
    """
    Raises:
        NotFoundError: item_id が存在しない場合
    """
    if not any(item.id == item_id for item in note.list_items):
        raise NotFoundError("List item not found")
    return replace(
        note,
        list_items=[
            replace(item, completed=not item.completed) if item.id == item_id else item
            for item in note.list_items
        ],
    )


def remove_list_item(note: Note, item_id: str) -> Note:
    return replace(
        note, list_items=[item for item in note.list_items if item.id != item_id]
    )


# ── 添付ファイル ──────────────────────────────────────────────────────────────


def add_attachments(note: Note, attachments: list[Attachment]) -> Note:
    return replace(note, attachments=[*note.attachments, *attachments])


def remove_attachment(note: Note, attachment_id: str) -> tuple[Note, Attachment]:
    """
    添付ファイルを取り除き、(更新後のノート, 取り除いた添付) を返す。

    Raises:
        NotFoundError: attachment_id が存在しない場合
    """
    for attachment in note.attachments:
        if attachment.id == attachment_id:
            remaining = [a for a in note.attachments if a.id != attachment_id]
            return replace(note, attachments=remaining), attachment
    raise NotFoundError("Attachment not found")


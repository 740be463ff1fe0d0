"""ドメインモデル - 外部依存なしのデータ構造

エンティティは全て frozen dataclass。更新は services 層の純粋関数が
dataclasses.replace で新しいインスタンスを返す形で行う。
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum


# ── 列挙型 ────────────────────────────────────────────────────────────────────


class Role(Enum):
    USER = "user"
    ADMIN = "admin"


class Theme(Enum):
    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


class ListView(Enum):
    GRID = "grid"
    LIST = "list"


class NoteType(Enum):
    NOTE = "note"
    LIST = "list"
    DRAWING = "drawing"


class NoteCategory(Enum):
    PERSONAL = "personal"
    WORK = "work"
    SHOPPING = "shopping"
    IDEAS = "ideas"
    ARCHIVE = "archive"


class AttachmentType(Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"


class SharePermission(Enum):
    VIEW = "view"
    EDIT = "edit"


class Periodicity(Enum):
    """繰り返しの周期"""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ReminderCategory(Enum):
    PERSONAL = "personal"
    WORK = "work"
    HEALTH = "health"
    FINANCE = "finance"
    SHOPPING = "shopping"
    OTHER = "other"


class NotificationMethod(Enum):
    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"


class ReminderState(Enum):
    """リマインダーの状態

    PENDING   → 通知待ち（アクティブ・未完了）
    SNOOZED   → スヌーズ中（snooze_until まで通知しない）
    COMPLETED → 完了（単発リマインダーのみ到達する終端）
    DISMISSED → 却下（単発リマインダーの終端）
    INACTIVE  → 繰り返し終了（end_date / occurrence_count 到達）
    """

    PENDING = "pending"
    SNOOZED = "snoozed"
    COMPLETED = "completed"
    DISMISSED = "dismissed"
    INACTIVE = "inactive"


# ── 認証 ──────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IdentityClaims:
    """ID プロバイダーが検証済みのトークンクレーム"""

    subject_id: str  # Firebase Auth uid
    email: str
    display_name: str = ""
    photo_url: str | None = None
    email_verified: bool = False

    @property
    def resolved_display_name(self) -> str:
        """表示名がなければメールアドレスのローカル部、それもなければ uid"""
        if self.display_name:
            return self.display_name
        if self.email:
            return self.email.split("@")[0]
        return self.subject_id


# ── ユーザー ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class UserPreferences:
    theme: Theme = Theme.SYSTEM
    default_note_color: str = "#ffffff"
    list_view: ListView = ListView.GRID
    reminder_notifications: bool = True


@dataclass(frozen=True)
class UserStats:
    total_notes: int = 0
    total_reminders: int = 0
    notes_created_this_month: int = 0


@dataclass(frozen=True)
class User:
    """ローカルユーザーレコード（初回認証時に自動作成）"""

    id: str
    firebase_uid: str
    email: str
    display_name: str
    photo_url: str | None = None
    email_verified: bool = False
    is_active: bool = True
    last_login: datetime.datetime | None = None
    role: str = Role.USER.value
    preferences: UserPreferences = field(default_factory=UserPreferences)
    backup_email: str | None = None
    stats: UserStats = field(default_factory=UserStats)
    created_at: datetime.datetime | None = None

    @property
    def initials(self) -> str:
        names = self.display_name.strip().split()
        if not names:
            return "U"
        if len(names) == 1:
            return names[0][0].upper()
        return (names[0][0] + names[-1][0]).upper()


# ── ノート ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ListItem:
    id: str
    text: str
    completed: bool = False
    order: int = 0


@dataclass(frozen=True)
class Attachment:
    """ノートに埋め込まれる添付ファイル（親ノートと運命を共にする）"""

    id: str
    file_name: str  # ストレージ上の一意なファイル名
    original_name: str
    file_type: AttachmentType
    mime_type: str
    size: int
    url: str
    uploaded_at: datetime.datetime | None = None


@dataclass(frozen=True)
class SharedWith:
    """共有設定（保存のみで未使用）"""

    user_id: str | None = None
    email: str = ""
    permission: SharePermission = SharePermission.VIEW
    shared_at: datetime.datetime | None = None


@dataclass(frozen=True)
class Note:
    id: str
    user_id: str
    firebase_uid: str
    title: str = ""
    content: str = ""
    color: str = "#ffffff"
    type: NoteType = NoteType.NOTE
    list_items: list[ListItem] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    category: NoteCategory = NoteCategory.PERSONAL
    is_pinned: bool = False
    is_archived: bool = False
    is_deleted: bool = False
    is_favorite: bool = False
    shared_with: list[SharedWith] = field(default_factory=list)
    reminder_id: str | None = None
    last_modified: datetime.datetime | None = None
    deleted_at: datetime.datetime | None = None
    searchable_text: str = ""
    created_at: datetime.datetime | None = None

    @property
    def word_count(self) -> int:
        return len(self.content.split())

    @property
    def character_count(self) -> int:
        return len(self.content)

    @property
    def completion_percentage(self) -> int | None:
        """リストノートの完了率（%）。リスト以外・空リストは None"""
        if self.type is not NoteType.LIST or not self.list_items:
            return None
        done = sum(1 for item in self.list_items if item.completed)
        return round(done / len(self.list_items) * 100)


# ── リマインダー ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RecurrencePattern:
    periodicity: Periodicity = Periodicity.DAILY
    interval: int = 1
    days_of_week: list[int] = field(default_factory=list)  # 0 = 日曜, 6 = 土曜
    day_of_month: int | None = None
    end_date: datetime.datetime | None = None
    occurrence_count: int | None = None


@dataclass(frozen=True)
class Occurrence:
    """繰り返しリマインダーの1回分の履歴"""

    scheduled_for: datetime.datetime
    completed_at: datetime.datetime | None = None
    was_skipped: bool = False
    notes: str = ""


@dataclass(frozen=True)
class GeoFence:
    name: str = ""
    address: str = ""
    latitude: float | None = None
    longitude: float | None = None
    radius: float = 100  # meters


@dataclass(frozen=True)
class Reminder:
    id: str
    user_id: str
    firebase_uid: str
    note_id: str
    title: str
    reminder_date_time: datetime.datetime
    description: str = ""
    timezone: str = "UTC"
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern = field(default_factory=RecurrencePattern)
    state: ReminderState = ReminderState.PENDING
    completed_at: datetime.datetime | None = None
    snooze_until: datetime.datetime | None = None
    notification_sent: bool = False
    notification_methods: list[NotificationMethod] = field(
        default_factory=lambda: [NotificationMethod.PUSH]
    )
    priority: Priority = Priority.MEDIUM
    category: ReminderCategory = ReminderCategory.PERSONAL
    tags: list[str] = field(default_factory=list)
    location: GeoFence | None = None
    occurrences: list[Occurrence] = field(default_factory=list)
    last_triggered: datetime.datetime | None = None
    next_trigger: datetime.datetime | None = None
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None

    # 旧来のフラグは state から導出する（不正な組み合わせを作れない）
    @property
    def is_completed(self) -> bool:
        return self.state is ReminderState.COMPLETED

    @property
    def is_active(self) -> bool:
        return self.state not in (ReminderState.DISMISSED, ReminderState.INACTIVE)

    @property
    def is_snoozed(self) -> bool:
        return self.state is ReminderState.SNOOZED

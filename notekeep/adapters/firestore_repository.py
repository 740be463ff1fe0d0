"""Firestore Repository Adapter

UserRepository / NoteRepository / ReminderRepository の Firestore 実装。

Firestore コレクション構造:
  users/{userId}                    ← ローカルユーザー
  user_identities/{firebaseUid}     ← 外部 ID の一意性インデックス
  user_emails/{email}               ← メールアドレスの一意性インデックス
  notes/{noteId}                    ← ノート（リスト項目・添付は埋め込み）
  reminders/{reminderId}            ← リマインダー（履歴は埋め込み）

複合インデックスを増やさないよう、クエリは user_id の等値条件のみで絞り込み、
残りのフィルタと並び替えは Python 側で行う。
"""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import replace
from enum import Enum
from typing import Any

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from notekeep.domain.errors import DuplicateUserError
from notekeep.domain.models import (
    Attachment,
    AttachmentType,
    GeoFence,
    IdentityClaims,
    ListItem,
    ListView,
    Note,
    NoteCategory,
    NoteType,
    NotificationMethod,
    Occurrence,
    Periodicity,
    Priority,
    RecurrencePattern,
    Reminder,
    ReminderCategory,
    ReminderState,
    SharedWith,
    SharePermission,
    Theme,
    User,
    UserPreferences,
    UserStats,
)
from notekeep.domain.ports import NoteRepository, ReminderRepository, UserRepository

logger = logging.getLogger(__name__)

_USERS = "users"
_USER_IDENTITIES = "user_identities"
_USER_EMAILS = "user_emails"
_NOTES = "notes"
_REMINDERS = "reminders"

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.UTC)


def _as_utc(value: Any) -> datetime.datetime | None:
    """Firestore から読んだ日時を tz-aware（UTC）に揃える"""
    if not isinstance(value, datetime.datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value


def _enum(enum_cls: type[Enum], value: Any, default: Enum) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _email_key(email: str) -> str:
    # ドキュメント ID に "/" は使えない
    return email.strip().lower().replace("/", "%2F")


# ── ユーザー ──────────────────────────────────────────────────────────────────


class FirestoreUserRepository(UserRepository):
    """
    Firestore を使った UserRepository 実装。

    作成時は user_identities / user_emails / users をバッチの create() で
    まとめて書き込み、同一 uid・同一メールの二重作成を防ぐ。
    """

    def __init__(self, db: firestore.Client) -> None:
        """
        Args:
            db: 初期化済みの Firestore クライアント
        """
        self._db = db

    def get(self, user_id: str) -> User | None:
        snap = self._db.collection(_USERS).document(user_id).get()
        if not snap.exists:
            return None
        return self._dict_to_user(snap.id, snap.to_dict() or {})

    def find_by_subject_id(self, subject_id: str) -> User | None:
        snaps = (
            self._db.collection(_USERS)
            .where("firebase_uid", "==", subject_id)
            .limit(1)
            .stream()
        )
        for snap in snaps:
            return self._dict_to_user(snap.id, snap.to_dict() or {})
        return None

    def create_from_identity(
        self, claims: IdentityClaims, now: datetime.datetime
    ) -> User:
        """
        クレームからユーザーを作成。

        同時リクエストで先に作成されていた場合はそのユーザーを返す。

        Raises:
            DuplicateUserError: メールアドレスが別の uid で登録済みの場合
        """
        user = User(
            id=str(uuid.uuid4()),
            firebase_uid=claims.subject_id,
            email=claims.email.strip().lower(),
            display_name=claims.resolved_display_name,
            photo_url=claims.photo_url,
            email_verified=claims.email_verified,
            last_login=now,
            created_at=now,
        )

        batch = self._db.batch()
        batch.create(
            self._db.collection(_USER_IDENTITIES).document(claims.subject_id),
            {"user_id": user.id, "created_at": now},
        )
        if user.email:
            batch.create(
                self._db.collection(_USER_EMAILS).document(_email_key(user.email)),
                {"user_id": user.id, "created_at": now},
            )
        batch.create(
            self._db.collection(_USERS).document(user.id), self._user_to_dict(user)
        )

        try:
            batch.commit()
        except gcp_exceptions.AlreadyExists as e:
            existing = self.find_by_subject_id(claims.subject_id)
            if existing is not None:
                logger.info(
                    "User created concurrently: uid=%s, user_id=%s",
                    claims.subject_id,
                    existing.id,
                )
                return existing
            logger.warning("Email already registered: email=%s", user.email)
            raise DuplicateUserError(
                "An account with this email already exists"
            ) from e

        logger.info("Created user: uid=%s, user_id=%s", claims.subject_id, user.id)
        return user

    def update_last_login(self, user: User, now: datetime.datetime) -> User:
        self._db.collection(_USERS).document(user.id).update({"last_login": now})
        return replace(user, last_login=now)

    def update_preferences(self, user_id: str, preferences: UserPreferences) -> None:
        self._db.collection(_USERS).document(user_id).update(
            {
                "preferences": self._preferences_to_dict(preferences),
                "updated_at": firestore.SERVER_TIMESTAMP,
            }
        )
        logger.info("Updated preferences: user_id=%s", user_id)

    def update_stats(self, user_id: str, stats: UserStats) -> None:
        self._db.collection(_USERS).document(user_id).update(
            {
                "stats": {
                    "total_notes": stats.total_notes,
                    "total_reminders": stats.total_reminders,
                    "notes_created_this_month": stats.notes_created_this_month,
                },
                "updated_at": firestore.SERVER_TIMESTAMP,
            }
        )

    def set_active(self, user_id: str, is_active: bool) -> None:
        self._db.collection(_USERS).document(user_id).update(
            {"is_active": is_active, "updated_at": firestore.SERVER_TIMESTAMP}
        )
        logger.info("Set user active: user_id=%s, is_active=%s", user_id, is_active)

    def set_role(self, user_id: str, role: str) -> None:
        self._db.collection(_USERS).document(user_id).update(
            {"role": role, "updated_at": firestore.SERVER_TIMESTAMP}
        )
        logger.info("Set user role: user_id=%s, role=%s", user_id, role)

    # ── 変換ヘルパー ─────────────────────────────────────────────────────────

    @staticmethod
    def _preferences_to_dict(preferences: UserPreferences) -> dict[str, Any]:
        return {
            "theme": preferences.theme.value,
            "default_note_color": preferences.default_note_color,
            "list_view": preferences.list_view.value,
            "reminder_notifications": preferences.reminder_notifications,
        }

    @classmethod
    def _user_to_dict(cls, user: User) -> dict[str, Any]:
        return {
            "firebase_uid": user.firebase_uid,
            "email": user.email,
            "display_name": user.display_name,
            "photo_url": user.photo_url,
            "email_verified": user.email_verified,
            "is_active": user.is_active,
            "last_login": user.last_login,
            "role": user.role,
            "preferences": cls._preferences_to_dict(user.preferences),
            "backup_email": user.backup_email,
            "stats": {
                "total_notes": user.stats.total_notes,
                "total_reminders": user.stats.total_reminders,
                "notes_created_this_month": user.stats.notes_created_this_month,
            },
            "created_at": user.created_at or firestore.SERVER_TIMESTAMP,
            "updated_at": firestore.SERVER_TIMESTAMP,
        }

    @staticmethod
    def _dict_to_user(user_id: str, data: dict[str, Any]) -> User:
        prefs = data.get("preferences") or {}
        stats = data.get("stats") or {}
        return User(
            id=user_id,
            firebase_uid=data.get("firebase_uid") or "",
            email=data.get("email") or "",
            display_name=data.get("display_name") or "",
            photo_url=data.get("photo_url"),
            email_verified=bool(data.get("email_verified", False)),
            is_active=bool(data.get("is_active", True)),
            last_login=_as_utc(data.get("last_login")),
            role=data.get("role") or "user",
            preferences=UserPreferences(
                theme=_enum(Theme, prefs.get("theme"), Theme.SYSTEM),
                default_note_color=prefs.get("default_note_color") or "#ffffff",
                list_view=_enum(ListView, prefs.get("list_view"), ListView.GRID),
                reminder_notifications=bool(
                    prefs.get("reminder_notifications", True)
                ),
            ),
            backup_email=data.get("backup_email"),
            stats=UserStats(
                total_notes=int(stats.get("total_notes") or 0),
                total_reminders=int(stats.get("total_reminders") or 0),
                notes_created_this_month=int(
                    stats.get("notes_created_this_month") or 0
                ),
            ),
            created_at=_as_utc(data.get("created_at")),
        )


# ── ノート ────────────────────────────────────────────────────────────────────


def _sort_notes(notes: list[Note]) -> list[Note]:
    """ピン留め優先、次に last_modified の新しい順"""
    notes = sorted(notes, key=lambda n: n.last_modified or _EPOCH, reverse=True)
    return sorted(notes, key=lambda n: not n.is_pinned)


def _keyword_score(note: Note, term: str) -> int:
    """searchable_text に含まれる検索語の数（タイトル一致は加点）"""
    words = [w for w in term.lower().split() if w]
    if not words:
        return 0
    text = note.searchable_text or ""
    score = sum(1 for w in words if w in text)
    if score and any(w in note.title.lower() for w in words):
        score += 1
    return score


class FirestoreNoteRepository(NoteRepository):
    """Firestore を使った NoteRepository 実装"""

    def __init__(self, db: firestore.Client) -> None:
        self._db = db

    def get(self, note_id: str, *, include_deleted: bool = False) -> Note | None:
        snap = self._db.collection(_NOTES).document(note_id).get()
        if not snap.exists:
            return None
        note = self._dict_to_note(snap.id, snap.to_dict() or {})
        if note.is_deleted and not include_deleted:
            return None
        return note

    def find_by_user(
        self,
        user_id: str,
        *,
        include_archived: bool = False,
        include_deleted: bool = False,
    ) -> list[Note]:
        snaps = self._db.collection(_NOTES).where("user_id", "==", user_id).stream()
        notes = [self._dict_to_note(snap.id, snap.to_dict() or {}) for snap in snaps]
        notes = [
            n
            for n in notes
            if (include_deleted or not n.is_deleted)
            and (include_archived or not n.is_archived)
        ]
        return _sort_notes(notes)

    def search(
        self, user_id: str, term: str, *, include_archived: bool = False
    ) -> list[Note]:
        candidates = self.find_by_user(user_id, include_archived=include_archived)
        scored = [(_keyword_score(n, term), n) for n in candidates]
        # 安定ソートなので同点はピン留め・更新日時順のまま
        hits = sorted((s for s in scored if s[0] > 0), key=lambda s: -s[0])
        return [n for _, n in hits]

    def find_by_category(self, user_id: str, category: NoteCategory) -> list[Note]:
        return [
            n for n in self.find_by_user(user_id) if n.category is category
        ]

    def find_by_label(self, user_id: str, label: str) -> list[Note]:
        return [n for n in self.find_by_user(user_id) if label in n.labels]

    def save(self, note: Note) -> Note:
        self._db.collection(_NOTES).document(note.id).set(self._note_to_dict(note))
        logger.info("Saved note: note_id=%s, user_id=%s", note.id, note.user_id)
        return note

    def count_by_user(self, user_id: str) -> int:
        return len(self.find_by_user(user_id, include_archived=True))

    # ── 変換ヘルパー ─────────────────────────────────────────────────────────

    @staticmethod
    def _note_to_dict(note: Note) -> dict[str, Any]:
        return {
            "user_id": note.user_id,
            "firebase_uid": note.firebase_uid,
            "title": note.title,
            "content": note.content,
            "color": note.color,
            "type": note.type.value,
            "list_items": [
                {
                    "id": item.id,
                    "text": item.text,
                    "completed": item.completed,
                    "order": item.order,
                }
                for item in note.list_items
            ],
            "attachments": [
                {
                    "id": a.id,
                    "file_name": a.file_name,
                    "original_name": a.original_name,
                    "file_type": a.file_type.value,
                    "mime_type": a.mime_type,
                    "size": a.size,
                    "url": a.url,
                    "uploaded_at": a.uploaded_at,
                }
                for a in note.attachments
            ],
            "labels": list(note.labels),
            "category": note.category.value,
            "is_pinned": note.is_pinned,
            "is_archived": note.is_archived,
            "is_deleted": note.is_deleted,
            "is_favorite": note.is_favorite,
            "shared_with": [
                {
                    "user_id": s.user_id,
                    "email": s.email,
                    "permission": s.permission.value,
                    "shared_at": s.shared_at,
                }
                for s in note.shared_with
            ],
            "reminder_id": note.reminder_id,
            "last_modified": note.last_modified,
            "deleted_at": note.deleted_at,
            "searchable_text": note.searchable_text,
            "created_at": note.created_at or firestore.SERVER_TIMESTAMP,
            "updated_at": firestore.SERVER_TIMESTAMP,
        }

    @staticmethod
    def _dict_to_note(note_id: str, data: dict[str, Any]) -> Note:
        return Note(
            id=note_id,
            user_id=data.get("user_id") or "",
            firebase_uid=data.get("firebase_uid") or "",
            title=data.get("title") or "",
            content=data.get("content") or "",
            color=data.get("color") or "#ffffff",
            type=_enum(NoteType, data.get("type"), NoteType.NOTE),
            list_items=[
                ListItem(
                    id=item.get("id") or "",
                    text=item.get("text") or "",
                    completed=bool(item.get("completed", False)),
                    order=int(item.get("order") or 0),
                )
                for item in data.get("list_items") or []
            ],
            attachments=[
                Attachment(
                    id=a.get("id") or "",
                    file_name=a.get("file_name") or "",
                    original_name=a.get("original_name") or "",
                    file_type=_enum(
                        AttachmentType, a.get("file_type"), AttachmentType.DOCUMENT
                    ),
                    mime_type=a.get("mime_type") or "",
                    size=int(a.get("size") or 0),
                    url=a.get("url") or "",
                    uploaded_at=_as_utc(a.get("uploaded_at")),
                )
                for a in data.get("attachments") or []
            ],
            labels=list(data.get("labels") or []),
            category=_enum(
                NoteCategory, data.get("category"), NoteCategory.PERSONAL
            ),
            is_pinned=bool(data.get("is_pinned", False)),
            is_archived=bool(data.get("is_archived", False)),
            is_deleted=bool(data.get("is_deleted", False)),
            is_favorite=bool(data.get("is_favorite", False)),
            shared_with=[
                SharedWith(
                    user_id=s.get("user_id"),
                    email=s.get("email") or "",
                    permission=_enum(
                        SharePermission, s.get("permission"), SharePermission.VIEW
                    ),
                    shared_at=_as_utc(s.get("shared_at")),
                )
                for s in data.get("shared_with") or []
            ],
            reminder_id=data.get("reminder_id"),
            last_modified=_as_utc(data.get("last_modified")),
            deleted_at=_as_utc(data.get("deleted_at")),
            searchable_text=data.get("searchable_text") or "",
            created_at=_as_utc(data.get("created_at")),
        )


# ── リマインダー ──────────────────────────────────────────────────────────────


def _is_open(reminder: Reminder) -> bool:
    return reminder.is_active and not reminder.is_completed


class FirestoreReminderRepository(ReminderRepository):
    """
    Firestore を使った ReminderRepository 実装。

    導出フラグ（is_active / is_completed / is_snoozed）も state と一緒に保存し、
    コンソールや他クライアントから参照できるようにする。
    """

    def __init__(self, db: firestore.Client) -> None:
        self._db = db

    def get(self, reminder_id: str) -> Reminder | None:
        snap = self._db.collection(_REMINDERS).document(reminder_id).get()
        if not snap.exists:
            return None
        return self._dict_to_reminder(snap.id, snap.to_dict() or {})

    def _stream_user(self, user_id: str) -> list[Reminder]:
        snaps = (
            self._db.collection(_REMINDERS).where("user_id", "==", user_id).stream()
        )
        reminders = [
            self._dict_to_reminder(snap.id, snap.to_dict() or {}) for snap in snaps
        ]
        return sorted(reminders, key=lambda r: r.reminder_date_time)

    def find_by_user(
        self,
        user_id: str,
        *,
        active_only: bool = True,
        completed_only: bool = False,
        incomplete_only: bool = False,
    ) -> list[Reminder]:
        reminders = self._stream_user(user_id)
        if active_only:
            reminders = [r for r in reminders if r.is_active]
        if completed_only:
            reminders = [r for r in reminders if r.is_completed]
        elif incomplete_only:
            reminders = [r for r in reminders if not r.is_completed]
        return reminders

    def find_overdue(self, user_id: str, now: datetime.datetime) -> list[Reminder]:
        return [
            r
            for r in self._stream_user(user_id)
            if _is_open(r) and r.reminder_date_time < now
        ]

    def find_upcoming(
        self, user_id: str, now: datetime.datetime, hours: int = 24
    ) -> list[Reminder]:
        until = now + datetime.timedelta(hours=hours)
        return [
            r
            for r in self._stream_user(user_id)
            if _is_open(r) and now <= r.reminder_date_time <= until
        ]

    def find_by_priority(self, user_id: str, priority: Priority) -> list[Reminder]:
        return [
            r
            for r in self._stream_user(user_id)
            if _is_open(r) and r.priority is priority
        ]

    def find_by_category(
        self, user_id: str, category: ReminderCategory
    ) -> list[Reminder]:
        return [
            r
            for r in self._stream_user(user_id)
            if r.is_active and r.category is category
        ]

    def find_due_for_notification(self, now: datetime.datetime) -> list[Reminder]:
        """
        全ユーザー横断で通知対象を取得する。

        Note:
            state(in) + notification_sent(==) + reminder_date_time(<=) の
            複合インデックスが必要。スヌーズの期限判定は Python 側で行う。
        """
        snaps = (
            self._db.collection(_REMINDERS)
            .where(
                "state",
                "in",
                [ReminderState.PENDING.value, ReminderState.SNOOZED.value],
            )
            .where("notification_sent", "==", False)
            .where("reminder_date_time", "<=", now)
            .stream()
        )
        due = []
        for snap in snaps:
            r = self._dict_to_reminder(snap.id, snap.to_dict() or {})
            if r.state is ReminderState.SNOOZED and (
                r.snooze_until is not None and r.snooze_until > now
            ):
                continue
            due.append(r)
        return sorted(due, key=lambda r: r.reminder_date_time)

    def save(self, reminder: Reminder) -> Reminder:
        self._db.collection(_REMINDERS).document(reminder.id).set(
            self._reminder_to_dict(reminder)
        )
        logger.info(
            "Saved reminder: reminder_id=%s, state=%s",
            reminder.id,
            reminder.state.value,
        )
        return reminder

    def delete(self, reminder_id: str) -> None:
        self._db.collection(_REMINDERS).document(reminder_id).delete()
        logger.info("Deleted reminder: reminder_id=%s", reminder_id)

    def count_by_user(self, user_id: str) -> int:
        return len(self.find_by_user(user_id, active_only=True))

    # ── 変換ヘルパー ─────────────────────────────────────────────────────────

    @staticmethod
    def _reminder_to_dict(r: Reminder) -> dict[str, Any]:
        pattern = r.recurrence_pattern
        location = None
        if r.location is not None:
            location = {
                "name": r.location.name,
                "address": r.location.address,
                "latitude": r.location.latitude,
                "longitude": r.location.longitude,
                "radius": r.location.radius,
            }
        return {
            "user_id": r.user_id,
            "firebase_uid": r.firebase_uid,
            "note_id": r.note_id,
            "title": r.title,
            "description": r.description,
            "reminder_date_time": r.reminder_date_time,
            "timezone": r.timezone,
            "is_recurring": r.is_recurring,
            "recurrence_pattern": {
                "periodicity": pattern.periodicity.value,
                "interval": pattern.interval,
                "days_of_week": list(pattern.days_of_week),
                "day_of_month": pattern.day_of_month,
                "end_date": pattern.end_date,
                "occurrence_count": pattern.occurrence_count,
            },
            "state": r.state.value,
            "is_active": r.is_active,
            "is_completed": r.is_completed,
            "is_snoozed": r.is_snoozed,
            "completed_at": r.completed_at,
            "snooze_until": r.snooze_until,
            "notification_sent": r.notification_sent,
            "notification_methods": [m.value for m in r.notification_methods],
            "priority": r.priority.value,
            "category": r.category.value,
            "tags": list(r.tags),
            "location": location,
            "occurrences": [
                {
                    "scheduled_for": o.scheduled_for,
                    "completed_at": o.completed_at,
                    "was_skipped": o.was_skipped,
                    "notes": o.notes,
                }
                for o in r.occurrences
            ],
            "last_triggered": r.last_triggered,
            "next_trigger": r.next_trigger,
            "created_at": r.created_at or firestore.SERVER_TIMESTAMP,
            "updated_at": firestore.SERVER_TIMESTAMP,
        }

    @staticmethod
    def _dict_to_reminder(reminder_id: str, data: dict[str, Any]) -> Reminder:
        pattern = data.get("recurrence_pattern") or {}
        location = data.get("location")
        return Reminder(
            id=reminder_id,
            user_id=data.get("user_id") or "",
            firebase_uid=data.get("firebase_uid") or "",
            note_id=data.get("note_id") or "",
            title=data.get("title") or "",
            description=data.get("description") or "",
            reminder_date_time=_as_utc(data.get("reminder_date_time")) or _EPOCH,
            timezone=data.get("timezone") or "UTC",
            is_recurring=bool(data.get("is_recurring", False)),
            recurrence_pattern=RecurrencePattern(
                periodicity=_enum(
                    Periodicity, pattern.get("periodicity"), Periodicity.DAILY
                ),
                interval=int(pattern.get("interval") or 1),
                days_of_week=list(pattern.get("days_of_week") or []),
                day_of_month=pattern.get("day_of_month"),
                end_date=_as_utc(pattern.get("end_date")),
                occurrence_count=pattern.get("occurrence_count"),
            ),
            state=_enum(ReminderState, data.get("state"), ReminderState.PENDING),
            completed_at=_as_utc(data.get("completed_at")),
            snooze_until=_as_utc(data.get("snooze_until")),
            notification_sent=bool(data.get("notification_sent", False)),
            notification_methods=[
                _enum(NotificationMethod, m, NotificationMethod.PUSH)
                for m in data.get("notification_methods") or ["push"]
            ],
            priority=_enum(Priority, data.get("priority"), Priority.MEDIUM),
            category=_enum(
                ReminderCategory, data.get("category"), ReminderCategory.PERSONAL
            ),
            tags=list(data.get("tags") or []),
            location=(
                GeoFence(
                    name=location.get("name") or "",
                    address=location.get("address") or "",
                    latitude=location.get("latitude"),
                    longitude=location.get("longitude"),
                    radius=location.get("radius") or 100,
                )
                if location
                else None
            ),
            occurrences=[
                Occurrence(
                    scheduled_for=_as_utc(o.get("scheduled_for")) or _EPOCH,
                    completed_at=_as_utc(o.get("completed_at")),
                    was_skipped=bool(o.get("was_skipped", False)),
                    notes=o.get("notes") or "",
                )
                for o in data.get("occurrences") or []
            ],
            last_triggered=_as_utc(data.get("last_triggered")),
            next_trigger=_as_utc(data.get("next_trigger")),
            created_at=_as_utc(data.get("created_at")),
            updated_at=_as_utc(data.get("updated_at")),
        )

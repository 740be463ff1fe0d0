"""リマインダー API ルート

GET    /api/reminders                      → 200 { success, reminders, count }
GET    /api/reminders/overdue              → 200 { success, reminders, count }
GET    /api/reminders/upcoming?hours=24    → 200 { success, reminders, count }
POST   /api/reminders                      → 201 { success, reminder }
GET    /api/reminders/{id}                 → 200 { success, reminder }
PATCH  /api/reminders/{id}                 → 200 { success, reminder }
DELETE /api/reminders/{id}                 → 200 { success, message }
POST   /api/reminders/{id}/complete        → 200 { success, reminder }
POST   /api/reminders/{id}/snooze          → 200 { success, reminder }
POST   /api/reminders/{id}/dismiss         → 200 { success, reminder }
PATCH  /api/reminders/{id}/priority        → 200 { success, reminder }
POST   /api/reminders/{id}/tags            → 200 { success, reminder }
DELETE /api/reminders/{id}/tags/{tag}      → 200 { success, reminder }

状態遷移は scheduler の純粋関数で行い、保存前に必ず prepare_for_save() を通す。
"""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import replace
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from notekeep.domain.errors import AuthorizationError, NotFoundError
from notekeep.domain.models import (
    GeoFence,
    NotificationMethod,
    Periodicity,
    Priority,
    RecurrencePattern,
    Reminder,
    ReminderCategory,
    ReminderState,
)
from notekeep.domain.ports import NoteRepository, ReminderRepository
from notekeep.entrypoints.api.deps import (
    AuthContext,
    get_note_repo,
    get_reminder_repo,
    log_user_activity,
    owned_reminder,
    require_active_user,
    utcnow,
)
from notekeep.services import notes as note_rules
from notekeep.services import scheduler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/reminders", tags=["reminders"])


# ── リクエスト / レスポンスモデル ─────────────────────────────────────────────


class RecurrencePatternBody(BaseModel):
    periodicity: Periodicity = Periodicity.DAILY
    interval: int = Field(default=1, ge=1)
    days_of_week: list[Annotated[int, Field(ge=0, le=6)]] = []
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    end_date: datetime.datetime | None = None
    occurrence_count: int | None = Field(default=None, ge=1)


class GeoFenceBody(BaseModel):
    name: str = ""
    address: str = ""
    latitude: float | None = None
    longitude: float | None = None
    radius: float = 100


class OccurrenceBody(BaseModel):
    scheduled_for: datetime.datetime
    completed_at: datetime.datetime | None
    was_skipped: bool
    notes: str


class ReminderBody(BaseModel):
    id: str
    note_id: str
    title: str
    description: str
    reminder_date_time: datetime.datetime
    timezone: str
    is_recurring: bool
    recurrence_pattern: RecurrencePatternBody | None
    state: ReminderState
    is_completed: bool
    is_active: bool
    is_snoozed: bool
    is_overdue: bool
    seconds_until: int | None
    completed_at: datetime.datetime | None
    snooze_until: datetime.datetime | None
    notification_sent: bool
    notification_methods: list[NotificationMethod]
    priority: Priority
    category: ReminderCategory
    tags: list[str]
    location: GeoFenceBody | None
    occurrences: list[OccurrenceBody]
    last_triggered: datetime.datetime | None
    next_trigger: datetime.datetime | None
    created_at: datetime.datetime | None
    updated_at: datetime.datetime | None


class ReminderResponse(BaseModel):
    success: bool = True
    reminder: ReminderBody


class ReminderListResponse(BaseModel):
    success: bool = True
    reminders: list[ReminderBody]
    count: int


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class ReminderCreateRequest(BaseModel):
    note_id: str
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=500)
    reminder_date_time: datetime.datetime
    timezone: str = "UTC"
    is_recurring: bool = False
    recurrence_pattern: RecurrencePatternBody | None = None
    notification_methods: list[NotificationMethod] = [NotificationMethod.PUSH]
    priority: Priority = Priority.MEDIUM
    category: ReminderCategory = ReminderCategory.PERSONAL
    tags: list[str] = []
    location: GeoFenceBody | None = None


class ReminderUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=500)
    reminder_date_time: datetime.datetime | None = None
    timezone: str | None = None
    is_recurring: bool | None = None
    recurrence_pattern: RecurrencePatternBody | None = None
    notification_methods: list[NotificationMethod] | None = None
    category: ReminderCategory | None = None
    location: GeoFenceBody | None = None


class SnoozeRequest(BaseModel):
    minutes: int = Field(default=scheduler.DEFAULT_SNOOZE_MINUTES, ge=1)


class PriorityRequest(BaseModel):
    # 列挙値外は INVALID_PRIORITY として返すため文字列で受ける
    priority: str


class TagRequest(BaseModel):
    tag: str


# ── 変換ヘルパー ─────────────────────────────────────────────────────────────


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value


def _to_pattern(body: RecurrencePatternBody | None) -> RecurrencePattern:
    if body is None:
        return RecurrencePattern()
    return RecurrencePattern(
        periodicity=body.periodicity,
        interval=body.interval,
        days_of_week=list(body.days_of_week),
        day_of_month=body.day_of_month,
        end_date=_as_utc(body.end_date) if body.end_date else None,
        occurrence_count=body.occurrence_count,
    )


def _to_geofence(body: GeoFenceBody | None) -> GeoFence | None:
    if body is None:
        return None
    return GeoFence(
        name=body.name,
        address=body.address,
        latitude=body.latitude,
        longitude=body.longitude,
        radius=body.radius,
    )


def reminder_body(reminder: Reminder, now: datetime.datetime) -> ReminderBody:
    r = scheduler.clear_expired_snooze(reminder, now)
    remaining = scheduler.time_until(r, now)
    pattern = r.recurrence_pattern
    return ReminderBody(
        id=r.id,
        note_id=r.note_id,
        title=r.title,
        description=r.description,
        reminder_date_time=r.reminder_date_time,
        timezone=r.timezone,
        is_recurring=r.is_recurring,
        recurrence_pattern=(
            RecurrencePatternBody(
                periodicity=pattern.periodicity,
                interval=pattern.interval,
                days_of_week=list(pattern.days_of_week),
                day_of_month=pattern.day_of_month,
                end_date=pattern.end_date,
                occurrence_count=pattern.occurrence_count,
            )
            if r.is_recurring
            else None
        ),
        state=r.state,
        is_completed=r.is_completed,
        is_active=r.is_active,
        is_snoozed=r.is_snoozed,
        is_overdue=scheduler.is_overdue(r, now),
        seconds_until=int(remaining.total_seconds()) if remaining is not None else None,
        completed_at=r.completed_at,
        snooze_until=r.snooze_until,
        notification_sent=r.notification_sent,
        notification_methods=list(r.notification_methods),
        priority=r.priority,
        category=r.category,
        tags=list(r.tags),
        location=(
            GeoFenceBody(
                name=r.location.name,
                address=r.location.address,
                latitude=r.location.latitude,
                longitude=r.location.longitude,
                radius=r.location.radius,
            )
            if r.location
            else None
        ),
        occurrences=[
            OccurrenceBody(
                scheduled_for=o.scheduled_for,
                completed_at=o.completed_at,
                was_skipped=o.was_skipped,
                notes=o.notes,
            )
            for o in r.occurrences
        ],
        last_triggered=r.last_triggered,
        next_trigger=r.next_trigger,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def _list_response(reminders: list[Reminder]) -> ReminderListResponse:
    now = utcnow()
    return ReminderListResponse(
        reminders=[reminder_body(r, now) for r in reminders], count=len(reminders)
    )


def _save(repo: ReminderRepository, reminder: Reminder) -> ReminderResponse:
    now = utcnow()
    saved = repo.save(scheduler.prepare_for_save(reminder, now))
    return ReminderResponse(reminder=reminder_body(saved, now))


# ── 一覧 ──────────────────────────────────────────────────────────────────────


@router.get("", response_model=ReminderListResponse)
async def list_reminders(
    active_only: bool = True,
    completion: Literal["completed", "incomplete"] | None = None,
    priority: Priority | None = None,
    category: ReminderCategory | None = None,
    ctx: AuthContext = Depends(require_active_user),
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderListResponse:
    """リマインダー一覧（reminder_date_time の昇順）"""
    if priority is not None:
        reminders = repo.find_by_priority(ctx.user.id, priority)
    elif category is not None:
        reminders = repo.find_by_category(ctx.user.id, category)
    else:
        reminders = repo.find_by_user(
            ctx.user.id,
            active_only=active_only,
            completed_only=completion == "completed",
            incomplete_only=completion == "incomplete",
        )
    return _list_response(reminders)


@router.get("/overdue", response_model=ReminderListResponse)
async def list_overdue(
    ctx: AuthContext = Depends(require_active_user),
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderListResponse:
    return _list_response(repo.find_overdue(ctx.user.id, utcnow()))


@router.get("/upcoming", response_model=ReminderListResponse)
async def list_upcoming(
    hours: int = Query(default=24, ge=1, le=24 * 30),
    ctx: AuthContext = Depends(require_active_user),
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderListResponse:
    return _list_response(repo.find_upcoming(ctx.user.id, utcnow(), hours=hours))


# ── 作成・取得・更新・削除 ─────────────────────────────────────────────────────


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=ReminderResponse,
    dependencies=[Depends(log_user_activity("create reminder"))],
)
async def create_reminder(
    body: ReminderCreateRequest,
    ctx: AuthContext = Depends(require_active_user),
    repo: ReminderRepository = Depends(get_reminder_repo),
    note_repo: NoteRepository = Depends(get_note_repo),
) -> ReminderResponse:
    """
    リマインダーを作成し、対象ノートに紐付ける。

    Raises:
        NotFoundError(404): ノートが存在しない（削除済みを含む）
        AuthorizationError(403): 他人のノート
    """
    note = note_repo.get(body.note_id, include_deleted=False)
    if note is None:
        raise NotFoundError("Note not found")
    if note.user_id != ctx.user.id and note.firebase_uid != ctx.claims.subject_id:
        raise AuthorizationError("Access denied", code="ACCESS_DENIED")

    now = utcnow()
    reminder = Reminder(
        id=str(uuid.uuid4()),
        user_id=ctx.user.id,
        firebase_uid=ctx.claims.subject_id,
        note_id=note.id,
        title=body.title,
        description=body.description,
        reminder_date_time=_as_utc(body.reminder_date_time),
        timezone=body.timezone,
        is_recurring=body.is_recurring,
        recurrence_pattern=_to_pattern(body.recurrence_pattern),
        notification_methods=list(body.notification_methods),
        priority=body.priority,
        category=body.category,
        location=_to_geofence(body.location),
        created_at=now,
    )
    for tag in body.tags:
        reminder = scheduler.add_tag(reminder, tag)

    response = _save(repo, reminder)
    linked = replace(note, reminder_id=reminder.id)
    note_repo.save(note_rules.prepare_for_save(linked, now))
    logger.info(
        "Reminder created: user_id=%s, reminder_id=%s, note_id=%s",
        ctx.user.id,
        reminder.id,
        note.id,
    )
    return response


@router.get("/{reminder_id}", response_model=ReminderResponse)
async def get_reminder(
    reminder: Reminder = Depends(owned_reminder),
) -> ReminderResponse:
    return ReminderResponse(reminder=reminder_body(reminder, utcnow()))


@router.patch("/{reminder_id}", response_model=ReminderResponse)
async def update_reminder(
    body: ReminderUpdateRequest,
    reminder: Reminder = Depends(owned_reminder),
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderResponse:
    """リマインダーを部分更新する。日時を変えた場合は通知済みフラグを戻す"""
    changes: dict = {}
    for name in ("title", "description", "timezone", "is_recurring", "category"):
        value = getattr(body, name)
        if value is not None:
            changes[name] = value
    if body.reminder_date_time is not None:
        changes["reminder_date_time"] = _as_utc(body.reminder_date_time)
        changes["notification_sent"] = False
    if body.recurrence_pattern is not None:
        changes["recurrence_pattern"] = _to_pattern(body.recurrence_pattern)
    if body.notification_methods is not None:
        changes["notification_methods"] = list(body.notification_methods)
    if body.location is not None:
        changes["location"] = _to_geofence(body.location)
    return _save(repo, replace(reminder, **changes))


@router.delete(
    "/{reminder_id}",
    response_model=MessageResponse,
    dependencies=[Depends(log_user_activity("delete reminder"))],
)
async def delete_reminder(
    reminder: Reminder = Depends(owned_reminder),
    repo: ReminderRepository = Depends(get_reminder_repo),
    note_repo: NoteRepository = Depends(get_note_repo),
) -> MessageResponse:
    """リマインダーを削除し、ノートとの紐付けを外す"""
    repo.delete(reminder.id)
    note = note_repo.get(reminder.note_id, include_deleted=True)
    if note is not None and note.reminder_id == reminder.id:
        unlinked = replace(note, reminder_id=None)
        note_repo.save(note_rules.prepare_for_save(unlinked, utcnow()))
    logger.info("Reminder deleted: reminder_id=%s", reminder.id)
    return MessageResponse(message="Reminder deleted")


# ── 状態遷移 ──────────────────────────────────────────────────────────────────


@router.post("/{reminder_id}/complete", response_model=ReminderResponse)
async def complete_reminder(
    reminder: Reminder = Depends(owned_reminder),
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderResponse:
    """完了にする（繰り返しリマインダーは次回をスケジュール）"""
    return _save(repo, scheduler.mark_completed(reminder, utcnow()))


@router.post("/{reminder_id}/snooze", response_model=ReminderResponse)
async def snooze_reminder(
    body: SnoozeRequest | None = None,
    reminder: Reminder = Depends(owned_reminder),
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderResponse:
    minutes = body.minutes if body is not None else scheduler.DEFAULT_SNOOZE_MINUTES
    return _save(repo, scheduler.snooze(reminder, utcnow(), minutes))


@router.post("/{reminder_id}/dismiss", response_model=ReminderResponse)
async def dismiss_reminder(
    reminder: Reminder = Depends(owned_reminder),
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderResponse:
    """却下する（繰り返しリマインダーは今回をスキップ）"""
    return _save(repo, scheduler.dismiss(reminder, utcnow()))


# ── 属性 ──────────────────────────────────────────────────────────────────────


@router.patch("/{reminder_id}/priority", response_model=ReminderResponse)
async def update_priority(
    body: PriorityRequest,
    reminder: Reminder = Depends(owned_reminder),
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderResponse:
    return _save(repo, scheduler.update_priority(reminder, body.priority))


@router.post("/{reminder_id}/tags", response_model=ReminderResponse)
async def add_tag(
    body: TagRequest,
    reminder: Reminder = Depends(owned_reminder),
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderResponse:
    return _save(repo, scheduler.add_tag(reminder, body.tag))


@router.delete("/{reminder_id}/tags/{tag}", response_model=ReminderResponse)
async def remove_tag(
    tag: str,
    reminder: Reminder = Depends(owned_reminder),
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderResponse:
    return _save(repo, scheduler.remove_tag(reminder, tag))

"""管理者 API ルート（admin ロールのみ）

GET  /api/admin/reminders/due              → 200 { success, reminders, count }
POST /api/admin/reminders/{id}/notified    → 200 { success, reminder }

外部の通知配信ワーカーが期限到来リマインダーを取得し、
配信後に通知済みとして記録するためのフック。
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from notekeep.domain.errors import NotFoundError
from notekeep.domain.ports import ReminderRepository
from notekeep.entrypoints.api.deps import (
    get_reminder_repo,
    require_active_user,
    require_role,
    utcnow,
)
from notekeep.entrypoints.api.routes.reminders import (
    ReminderListResponse,
    ReminderResponse,
    reminder_body,
)
from notekeep.services import scheduler

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_active_user), Depends(require_role("admin"))],
)


@router.get("/reminders/due", response_model=ReminderListResponse)
async def list_due_reminders(
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderListResponse:
    """全ユーザー横断で通知対象のリマインダーを返す"""
    now = utcnow()
    due = [
        r
        for r in repo.find_due_for_notification(now)
        if scheduler.is_due_for_notification(r, now)
    ]
    return ReminderListResponse(
        reminders=[reminder_body(r, now) for r in due], count=len(due)
    )


@router.post("/reminders/{reminder_id}/notified", response_model=ReminderResponse)
async def mark_notified(
    reminder_id: str,
    repo: ReminderRepository = Depends(get_reminder_repo),
) -> ReminderResponse:
    """通知済みとして記録する"""
    reminder = repo.get(reminder_id)
    if reminder is None:
        raise NotFoundError("Reminder not found")
    now = utcnow()
    updated = scheduler.mark_notification_sent(reminder, now)
    saved = repo.save(scheduler.prepare_for_save(updated, now))
    logger.info("Reminder marked notified: reminder_id=%s", reminder_id)
    return ReminderResponse(reminder=reminder_body(saved, now))

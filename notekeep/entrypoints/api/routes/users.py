"""ユーザー API ルート

GET   /api/users/me              → 200 { success, user }
PATCH /api/users/me/preferences  → 200 { success, user }
GET   /api/users/me/stats        → 200 { success, stats }
POST  /api/users/me/deactivate   → 200 { success, message }
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import replace

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from notekeep.domain.errors import ValidationError
from notekeep.domain.models import ListView, Theme, User, UserStats
from notekeep.domain.ports import NoteRepository, ReminderRepository, UserRepository
from notekeep.entrypoints.api.deps import (
    AuthContext,
    get_note_repo,
    get_reminder_repo,
    get_user_repo,
    log_user_activity,
    require_active_user,
    utcnow,
)
from notekeep.services.notes import is_valid_color

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["users"])


class PreferencesBody(BaseModel):
    theme: Theme
    default_note_color: str
    list_view: ListView
    reminder_notifications: bool


class UserBody(BaseModel):
    id: str
    email: str
    display_name: str
    initials: str
    photo_url: str | None
    email_verified: bool
    is_active: bool
    role: str
    preferences: PreferencesBody
    last_login: datetime.datetime | None
    created_at: datetime.datetime | None


class UserResponse(BaseModel):
    success: bool = True
    user: UserBody


class StatsBody(BaseModel):
    total_notes: int
    total_reminders: int
    notes_created_this_month: int


class StatsResponse(BaseModel):
    success: bool = True
    stats: StatsBody


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class PreferencesUpdateRequest(BaseModel):
    theme: Theme | None = None
    default_note_color: str | None = None
    list_view: ListView | None = None
    reminder_notifications: bool | None = None


def _to_response(user: User) -> UserResponse:
    # backup_email は公開しない
    prefs = user.preferences
    return UserResponse(
        user=UserBody(
            id=user.id,
            email=user.email,
            display_name=user.display_name,
            initials=user.initials,
            photo_url=user.photo_url,
            email_verified=user.email_verified,
            is_active=user.is_active,
            role=user.role,
            preferences=PreferencesBody(
                theme=prefs.theme,
                default_note_color=prefs.default_note_color,
                list_view=prefs.list_view,
                reminder_notifications=prefs.reminder_notifications,
            ),
            last_login=user.last_login,
            created_at=user.created_at,
        )
    )


@router.get("/me", response_model=UserResponse)
async def get_me(ctx: AuthContext = Depends(require_active_user)) -> UserResponse:
    """ログイン中のユーザー情報を返す"""
    return _to_response(ctx.user)


@router.patch(
    "/me/preferences",
    response_model=UserResponse,
    dependencies=[Depends(log_user_activity("update preferences"))],
)
async def update_preferences(
    body: PreferencesUpdateRequest,
    ctx: AuthContext = Depends(require_active_user),
    user_repo: UserRepository = Depends(get_user_repo),
) -> UserResponse:
    """表示設定を部分更新する"""
    if body.default_note_color is not None and not is_valid_color(
        body.default_note_color
    ):
        raise ValidationError(
            "Invalid color format. Use hex format (#ffffff)", code="INVALID_COLOR"
        )
    changes = body.model_dump(exclude_none=True)
    preferences = replace(ctx.user.preferences, **changes)
    user_repo.update_preferences(ctx.user.id, preferences)
    logger.info(
        "Preferences updated: user_id=%s, fields=%s", ctx.user.id, sorted(changes)
    )
    return _to_response(replace(ctx.user, preferences=preferences))


@router.get("/me/stats", response_model=StatsResponse)
async def get_stats(
    ctx: AuthContext = Depends(require_active_user),
    user_repo: UserRepository = Depends(get_user_repo),
    note_repo: NoteRepository = Depends(get_note_repo),
    reminder_repo: ReminderRepository = Depends(get_reminder_repo),
) -> StatsResponse:
    """ノート数・リマインダー数・今月作成したノート数を集計して保存し、返す"""
    now = utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    notes = note_repo.find_by_user(ctx.user.id, include_archived=True)
    stats = UserStats(
        total_notes=len(notes),
        total_reminders=reminder_repo.count_by_user(ctx.user.id),
        notes_created_this_month=sum(
            1 for n in notes if n.created_at is not None and n.created_at >= month_start
        ),
    )
    user_repo.update_stats(ctx.user.id, stats)
    return StatsResponse(
        stats=StatsBody(
            total_notes=stats.total_notes,
            total_reminders=stats.total_reminders,
            notes_created_this_month=stats.notes_created_this_month,
        )
    )


@router.post(
    "/me/deactivate",
    response_model=MessageResponse,
    dependencies=[Depends(log_user_activity("deactivate account"))],
)
async def deactivate(
    ctx: AuthContext = Depends(require_active_user),
    user_repo: UserRepository = Depends(get_user_repo),
) -> MessageResponse:
    """アカウントを無効化する（データは削除しない）"""
    user_repo.set_active(ctx.user.id, False)
    logger.info("User deactivated: user_id=%s", ctx.user.id)
    return MessageResponse(message="Account deactivated")

"""Reminder Scheduler - 繰り返しリマインダーの状態遷移

全ての関数は純粋関数で、Reminder と現在時刻を受け取り新しい Reminder を返す。
永続化の直前には必ず prepare_for_save() を呼ぶこと（next_trigger の整合と
期限切れスヌーズの解除を行う）。

状態遷移:
    PENDING ──snooze──▶ SNOOZED ──(snooze_until 経過)──▶ PENDING
    PENDING/SNOOZED ──mark_completed──▶ COMPLETED            （単発）
    PENDING/SNOOZED ──mark_completed──▶ PENDING | INACTIVE   （繰り返し）
    PENDING/SNOOZED ──dismiss──▶ DISMISSED                   （単発）
    PENDING/SNOOZED ──dismiss──▶ PENDING | INACTIVE          （繰り返し）

月末の繰り越し:
    存在しない日付は対象月の末日に丸める（1/31 + 1ヶ月 → 2/28 or 2/29）。
"""

from __future__ import annotations

import calendar
import datetime
import logging
from dataclasses import replace

from notekeep.domain.errors import InvalidPriority, InvalidTransition, ValidationError
from notekeep.domain.models import (
    Occurrence,
    Periodicity,
    Priority,
    RecurrencePattern,
    Reminder,
    ReminderState,
)

logger = logging.getLogger(__name__)

DEFAULT_SNOOZE_MINUTES = 10
MAX_TAG_LENGTH = 30

_OPEN_STATES = (ReminderState.PENDING, ReminderState.SNOOZED)


# ── 次回日時の計算 ────────────────────────────────────────────────────────────


def _add_months(value: datetime.datetime, months: int) -> datetime.datetime:
    total = value.month - 1 + months
    year = value.year + total // 12
    month = total % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def compute_next_trigger(
    pattern: RecurrencePattern, from_dt: datetime.datetime
) -> datetime.datetime:
    """
    繰り返しパターンに従って from_dt の次の発火日時を返す。

    - daily:   +interval 日
    - weekly:  +interval * 7 日
    - monthly: +interval ヶ月（末日に丸める）
    - yearly:  +interval 年（2/29 → 2/28）
    - その他（custom 等）: +1 日
    """
    interval = max(pattern.interval, 1)
    periodicity = pattern.periodicity

    if periodicity is Periodicity.DAILY:
        return from_dt + datetime.timedelta(days=interval)
    if periodicity is Periodicity.WEEKLY:
        return from_dt + datetime.timedelta(days=7 * interval)
    if periodicity is Periodicity.MONTHLY:
        return _add_months(from_dt, interval)
    if periodicity is Periodicity.YEARLY:
        return _add_months(from_dt, 12 * interval)
    return from_dt + datetime.timedelta(days=1)


# ── 状態 ──────────────────────────────────────────────────────────────────────


def clear_expired_snooze(reminder: Reminder, now: datetime.datetime) -> Reminder:
    """snooze_until を過ぎたスヌーズを解除する"""
    if reminder.state is not ReminderState.SNOOZED:
        return reminder
    if reminder.snooze_until is not None and reminder.snooze_until > now:
        return reminder
    return replace(reminder, state=ReminderState.PENDING, snooze_until=None)


def reminder_state(reminder: Reminder, now: datetime.datetime) -> ReminderState:
    """期限切れスヌーズを考慮した実効状態"""
    return clear_expired_snooze(reminder, now).state


def is_overdue(reminder: Reminder, now: datetime.datetime) -> bool:
    if reminder.is_completed or not reminder.is_active:
        return False
    return now > reminder.reminder_date_time


def time_until(
    reminder: Reminder, now: datetime.datetime
) -> datetime.timedelta | None:
    """次の通知までの残り時間（完了・非アクティブは None、期限切れは負の値）"""
    if reminder.is_completed or not reminder.is_active:
        return None
    return reminder.reminder_date_time - now


def is_due_for_notification(reminder: Reminder, now: datetime.datetime) -> bool:
    """通知対象かどうか（アクティブ・未完了・未通知・期限到来・スヌーズ切れ）"""
    if reminder.notification_sent:
        return False
    if reminder_state(reminder, now) is not ReminderState.PENDING:
        return False
    return reminder.reminder_date_time <= now


# ── 遷移 ──────────────────────────────────────────────────────────────────────


def schedule_next_occurrence(reminder: Reminder, now: datetime.datetime) -> Reminder:
    """
    次回の発火をスケジュールする。

    終了条件（end_date 経過 / 履歴件数が occurrence_count に到達）を満たす場合は
    INACTIVE にして返す。
    """
    if not reminder.is_recurring:
        return reminder

    pattern = reminder.recurrence_pattern
    if pattern.end_date is not None and now > pattern.end_date:
        logger.info("Recurrence ended by end_date: reminder_id=%s", reminder.id)
        return replace(reminder, state=ReminderState.INACTIVE, snooze_until=None)

    if pattern.occurrence_count and len(reminder.occurrences) >= pattern.occurrence_count:
        logger.info(
            "Recurrence ended by occurrence_count: reminder_id=%s, count=%d",
            reminder.id,
            len(reminder.occurrences),
        )
        return replace(reminder, state=ReminderState.INACTIVE, snooze_until=None)

    next_dt = compute_next_trigger(pattern, reminder.reminder_date_time)
    return replace(
        reminder,
        reminder_date_time=next_dt,
        next_trigger=compute_next_trigger(pattern, next_dt),
        state=ReminderState.PENDING,
        completed_at=None,
        snooze_until=None,
        notification_sent=False,
    )


def mark_completed(reminder: Reminder, now: datetime.datetime) -> Reminder:
    """
    完了にする。

    繰り返しリマインダーは履歴に記録したうえで次回をスケジュールする。
    既に完了・却下・非アクティブの場合は何もしない。
    """
    reminder = clear_expired_snooze(reminder, now)
    if reminder.state not in _OPEN_STATES:
        logger.debug(
            "mark_completed ignored: reminder_id=%s, state=%s",
            reminder.id,
            reminder.state.value,
        )
        return reminder

    completed = replace(
        reminder,
        state=ReminderState.COMPLETED,
        completed_at=now,
        snooze_until=None,
    )
    if not reminder.is_recurring:
        return completed

    history = [
        *reminder.occurrences,
        Occurrence(scheduled_for=reminder.reminder_date_time, completed_at=now),
    ]
    return schedule_next_occurrence(replace(completed, occurrences=history), now)


def snooze(
    reminder: Reminder,
    now: datetime.datetime,
    minutes: int = DEFAULT_SNOOZE_MINUTES,
) -> Reminder:
    """minutes 分後までスヌーズする"""
    if minutes < 1:
        raise ValidationError("Snooze minutes must be at least 1")
    reminder = clear_expired_snooze(reminder, now)
    if reminder.state not in _OPEN_STATES:
        raise InvalidTransition(
            f"Cannot snooze a reminder in state '{reminder.state.value}'"
        )
    return replace(
        reminder,
        state=ReminderState.SNOOZED,
        snooze_until=now + datetime.timedelta(minutes=minutes),
    )


def dismiss(reminder: Reminder, now: datetime.datetime) -> Reminder:
    """
    却下する。

    繰り返しリマインダーはスキップとして履歴に記録し次回をスケジュール、
    単発リマインダーは恒久的に DISMISSED にする。
    """
    reminder = clear_expired_snooze(reminder, now)
    if reminder.state not in _OPEN_STATES:
        return reminder

    if not reminder.is_recurring:
        return replace(reminder, state=ReminderState.DISMISSED, snooze_until=None)

    history = [
        *reminder.occurrences,
        Occurrence(scheduled_for=reminder.reminder_date_time, was_skipped=True),
    ]
    return schedule_next_occurrence(replace(reminder, occurrences=history), now)


def mark_notification_sent(reminder: Reminder, now: datetime.datetime) -> Reminder:
    return replace(reminder, notification_sent=True, last_triggered=now)


def prepare_for_save(reminder: Reminder, now: datetime.datetime) -> Reminder:
    """
    永続化前の正規化。

    1. 期限切れスヌーズを解除
    2. 単発: next_trigger = reminder_date_time
    3. 繰り返し・未完了: next_trigger をパターンから再計算
    """
    reminder = clear_expired_snooze(reminder, now)
    if not reminder.is_recurring:
        return replace(reminder, next_trigger=reminder.reminder_date_time)
    if reminder.state in _OPEN_STATES:
        return replace(
            reminder,
            next_trigger=compute_next_trigger(
                reminder.recurrence_pattern, reminder.reminder_date_time
            ),
        )
    return reminder


# ── 属性の更新 ────────────────────────────────────────────────────────────────


def update_priority(reminder: Reminder, value: str | Priority) -> Reminder:
    try:
        priority = value if isinstance(value, Priority) else Priority(value)
    except ValueError as e:
        raise InvalidPriority(
            "Invalid priority level",
            extra={"allowed": [p.value for p in Priority]},
        ) from e
    return replace(reminder, priority=priority)


def add_tag(reminder: Reminder, tag: str) -> Reminder:
    """タグを追加（既にあれば何もしない）"""
    tag = tag.strip()
    if not tag:
        raise ValidationError("Tag must not be empty")
    if len(tag) > MAX_TAG_LENGTH:
        raise ValidationError(f"Tag must be at most {MAX_TAG_LENGTH} characters")
    if tag in reminder.tags:
        return reminder
    return replace(reminder, tags=[*reminder.tags, tag])


def remove_tag(reminder: Reminder, tag: str) -> Reminder:
    """タグを削除（なければ何もしない）"""
    if tag not in reminder.tags:
        return reminder
    return replace(reminder, tags=[t for t in reminder.tags if t != tag])

#!/usr/bin/env python3
"""CLI Entrypoint - 運用コマンド

使い方:
    # 通知対象のリマインダーを通知済みにする（外部通知ワーカーの代替・Cloud Run Job 用）
    python -m notekeep.entrypoints.cli sweep-due
    python -m notekeep.entrypoints.cli sweep-due --dry-run

    # ロールを変更する（Firebase uid で指定）
    python -m notekeep.entrypoints.cli set-role --uid <firebase_uid> --role admin

環境変数:
    PROJECT_ID: Firestore のプロジェクト ID
    LOG_LEVEL: ログレベル (DEBUG, INFO, WARNING, ERROR) デフォルト: INFO
    K_SERVICE / CLOUD_RUN_JOB: Cloud Run 環境では自動設定されJSON形式ログに切替
"""

from __future__ import annotations

import argparse
import datetime
import logging
import sys

from google.cloud import firestore

from notekeep.adapters.firestore_repository import (
    FirestoreReminderRepository,
    FirestoreUserRepository,
)
from notekeep.config import AppConfig
from notekeep.domain.models import Role
from notekeep.domain.ports import ReminderRepository, UserRepository
from notekeep.logging_config import setup_logging
from notekeep.services import scheduler

logger = logging.getLogger(__name__)


def sweep_due_reminders(
    repo: ReminderRepository, now: datetime.datetime, dry_run: bool = False
) -> int:
    """
    通知対象のリマインダーを通知済みとして記録する。

    Returns:
        対象件数（dry_run の場合は記録予定の件数）
    """
    count = 0
    for reminder in repo.find_due_for_notification(now):
        if not scheduler.is_due_for_notification(reminder, now):
            continue
        logger.info(
            "DUE reminder_id=%s, user_id=%s, at=%s (dry_run=%s)",
            reminder.id,
            reminder.user_id,
            reminder.reminder_date_time.isoformat(),
            dry_run,
        )
        if not dry_run:
            updated = scheduler.mark_notification_sent(reminder, now)
            repo.save(scheduler.prepare_for_save(updated, now))
        count += 1
    return count


def set_role(repo: UserRepository, firebase_uid: str, role: str) -> bool:
    """
    Returns:
        True: 変更した場合
        False: ユーザーが存在しない場合
    """
    user = repo.find_by_subject_id(firebase_uid)
    if user is None:
        logger.error("User not found: uid=%s", firebase_uid)
        return False
    repo.set_role(user.id, role)
    return True


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="NoteKeep operations")
    sub = parser.add_subparsers(dest="command", required=True)

    sweep = sub.add_parser("sweep-due", help="Mark due reminders as notified")
    sweep.add_argument(
        "--dry-run",
        action="store_true",
        help="Run without making any changes (preview only)",
    )

    role = sub.add_parser("set-role", help="Change a user's role")
    role.add_argument("--uid", required=True, help="Firebase Auth uid")
    role.add_argument(
        "--role", required=True, choices=[r.value for r in Role], help="New role"
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """メインエントリーポイント"""
    setup_logging()
    args = _build_parser().parse_args(argv)

    try:
        config = AppConfig.from_env()
        db = firestore.Client(project=config.project_id or None)
        logger.info("Firestore client initialized project=%s", config.project_id)

        if args.command == "sweep-due":
            now = datetime.datetime.now(datetime.UTC)
            count = sweep_due_reminders(
                FirestoreReminderRepository(db), now, dry_run=args.dry_run
            )
            logger.info("Done: due=%d", count)
            if args.dry_run:
                logger.info("DRY RUN: No changes were made")
        elif args.command == "set-role":
            if not set_role(FirestoreUserRepository(db), args.uid, args.role):
                sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)

    except Exception:
        logger.exception("Fatal error")
        sys.exit(1)


if __name__ == "__main__":
    main()

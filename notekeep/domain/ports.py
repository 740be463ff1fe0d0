"""Ports - 外部サービスのインターフェース定義（ABC）

各Port（抽象基底クラス）は外部サービスとの契約を定義します。
実装クラス（Adapter）はこれらのABCを継承し、全ての抽象メソッドを実装する必要があります。
"""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod

from notekeep.domain.models import (
    IdentityClaims,
    Note,
    NoteCategory,
    Priority,
    Reminder,
    ReminderCategory,
    User,
    UserPreferences,
    UserStats,
)


class IdentityVerifier(ABC):
    """ID トークンの検証（Firebase Auth 等）"""

    @abstractmethod
    def verify(self, token: str) -> IdentityClaims:
        """
        トークンを検証してクレームを返す。

        Raises:
            IdentityVerificationError: reason="expired" | "invalid"
        """
        pass


class UserRepository(ABC):
    """ユーザーディレクトリ（外部 ID → ローカルユーザー）"""

    @abstractmethod
    def get(self, user_id: str) -> User | None:
        """内部IDでユーザーを取得"""
        pass

    @abstractmethod
    def find_by_subject_id(self, subject_id: str) -> User | None:
        """外部 ID（Firebase uid）でユーザーを取得"""
        pass

    @abstractmethod
    def create_from_identity(
        self, claims: IdentityClaims, now: datetime.datetime
    ) -> User:
        """クレームからユーザーを作成。同一 subject_id で既に存在すればそれを返す"""
        pass

    @abstractmethod
    def update_last_login(self, user: User, now: datetime.datetime) -> User:
        """最終ログイン日時を更新した User を返す"""
        pass

    @abstractmethod
    def update_preferences(self, user_id: str, preferences: UserPreferences) -> None:
        """表示設定を更新"""
        pass

    @abstractmethod
    def update_stats(self, user_id: str, stats: UserStats) -> None:
        """統計値を更新"""
        pass

    @abstractmethod
    def set_active(self, user_id: str, is_active: bool) -> None:
        """アカウントの有効/無効を切り替える（ソフト無効化）"""
        pass

    @abstractmethod
    def set_role(self, user_id: str, role: str) -> None:
        """ロールを変更（"user" | "admin"）"""
        pass


class NoteRepository(ABC):
    """ノートの永続化

    全ての読み取りはソフト削除済みノートの扱いを引数で明示する（既定は除外）。
    """

    @abstractmethod
    def get(self, note_id: str, *, include_deleted: bool = False) -> Note | None:
        pass

    @abstractmethod
    def find_by_user(
        self,
        user_id: str,
        *,
        include_archived: bool = False,
        include_deleted: bool = False,
    ) -> list[Note]:
        """ピン留め優先・更新日時の新しい順"""
        pass

    @abstractmethod
    def search(
        self, user_id: str, term: str, *, include_archived: bool = False
    ) -> list[Note]:
        """searchable_text に対するキーワード一致検索（削除済みは常に除外）"""
        pass

    @abstractmethod
    def find_by_category(self, user_id: str, category: NoteCategory) -> list[Note]:
        pass

    @abstractmethod
    def find_by_label(self, user_id: str, label: str) -> list[Note]:
        pass

    @abstractmethod
    def save(self, note: Note) -> Note:
        """ノートを丸ごと書き込む（正規化は呼び出し側で済ませておくこと）"""
        pass

    @abstractmethod
    def count_by_user(self, user_id: str) -> int:
        """削除済みを除くノート数"""
        pass


class ReminderRepository(ABC):
    """リマインダーの永続化"""

    @abstractmethod
    def get(self, reminder_id: str) -> Reminder | None:
        pass

    @abstractmethod
    def find_by_user(
        self,
        user_id: str,
        *,
        active_only: bool = True,
        completed_only: bool = False,
        incomplete_only: bool = False,
    ) -> list[Reminder]:
        """reminder_date_time の昇順"""
        pass

    @abstractmethod
    def find_overdue(self, user_id: str, now: datetime.datetime) -> list[Reminder]:
        pass

    @abstractmethod
    def find_upcoming(
        self, user_id: str, now: datetime.datetime, hours: int = 24
    ) -> list[Reminder]:
        pass

    @abstractmethod
    def find_by_priority(self, user_id: str, priority: Priority) -> list[Reminder]:
        pass

    @abstractmethod
    def find_by_category(
        self, user_id: str, category: ReminderCategory
    ) -> list[Reminder]:
        pass

    @abstractmethod
    def find_due_for_notification(self, now: datetime.datetime) -> list[Reminder]:
        """通知対象（アクティブ・未完了・未通知・期限到来・スヌーズ切れ）"""
        pass

    @abstractmethod
    def save(self, reminder: Reminder) -> Reminder:
        pass

    @abstractmethod
    def delete(self, reminder_id: str) -> None:
        pass

    @abstractmethod
    def count_by_user(self, user_id: str) -> int:
        pass


class BlobStorage(ABC):
    """バイナリファイルのアップロード・削除（GCS等）"""

    @abstractmethod
    def upload(self, blob_path: str, content: bytes, content_type: str) -> str:
        """ファイルをアップロード。公開 URL を返す"""
        pass

    @abstractmethod
    def delete(self, blob_path: str) -> None:
        """ファイルを削除"""
        pass

"""User Directory - 外部 ID からローカルユーザーを解決する"""

from __future__ import annotations

import datetime
import logging

from notekeep.domain.models import IdentityClaims, User
from notekeep.domain.ports import UserRepository

logger = logging.getLogger(__name__)


def resolve_user(
    repo: UserRepository, claims: IdentityClaims, now: datetime.datetime
) -> User:
    """
    検証済みクレームに対応するユーザーを返す。

    - 未登録: 作成する（subject_id 単位で冪等。同時アクセスでも1件のみ）
    - 登録済み: last_login を更新する
    """
    user = repo.find_by_subject_id(claims.subject_id)
    if user is None:
        user = repo.create_from_identity(claims, now)
        logger.info("New user created: user_id=%s, email=%s", user.id, user.email)
        return user
    return repo.update_last_login(user, now)


"""resolve_user のユニットテスト"""

from unittest.mock import MagicMock

import pytest

from notekeep.domain.errors import DuplicateUserError
from notekeep.domain.ports import UserRepository
from notekeep.services.user_directory import resolve_user


class TestResolveUser:
    """既存ユーザーの解決と初回作成"""

    def test_existing_user_updates_last_login(
        self, mock_user_repo, sample_claims, now
    ):
        # Act
        user = resolve_user(mock_user_repo, sample_claims, now)

        # Assert
        assert user.id == "user-1"
        assert user.last_login == now
        mock_user_repo.find_by_subject_id.assert_called_once_with("firebase-uid-1")
        mock_user_repo.create_from_identity.assert_not_called()

    def test_new_user_is_created(self, sample_claims, sample_user, now):
        # Arrange
        repo = MagicMock(spec=UserRepository)
        repo.find_by_subject_id.return_value = None
        repo.create_from_identity.return_value = sample_user

        # Act
        user = resolve_user(repo, sample_claims, now)

        # Assert
        assert user is sample_user
        repo.create_from_identity.assert_called_once_with(sample_claims, now)
        repo.update_last_login.assert_not_called()

    def test_duplicate_email_propagates(self, sample_claims, now):
        repo = MagicMock(spec=UserRepository)
        repo.find_by_subject_id.return_value = None
        repo.create_from_identity.side_effect = DuplicateUserError(
            "User already exists"
        )

        with pytest.raises(DuplicateUserError):
            resolve_user(repo, sample_claims, now)

"""Domain layer - 外部依存なしのドメインモデルとインターフェース定義"""

from notekeep.domain.errors import (
    AuthError,
    AuthorizationError,
    DuplicateUserError,
    IdentityVerificationError,
    InternalError,
    InvalidPriority,
    InvalidTransition,
    NoteKeepError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from notekeep.domain.models import (
    Attachment,
    AttachmentType,
    GeoFence,
    IdentityClaims,
    ListItem,
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
    Role,
    User,
    UserPreferences,
    UserStats,
)
from notekeep.domain.ports import (
    BlobStorage,
    IdentityVerifier,
    NoteRepository,
    ReminderRepository,
    UserRepository,
)

__all__ = [
    # Models
    "Attachment",
    "AttachmentType",
    "GeoFence",
    "IdentityClaims",
    "ListItem",
    "Note",
    "NoteCategory",
    "NoteType",
    "NotificationMethod",
    "Occurrence",
    "Periodicity",
    "Priority",
    "RecurrencePattern",
    "Reminder",
    "ReminderCategory",
    "ReminderState",
    "Role",
    "User",
    "UserPreferences",
    "UserStats",
    # Errors
    "NoteKeepError",
    "AuthError",
    "AuthorizationError",
    "RateLimitError",
    "ValidationError",
    "InvalidPriority",
    "InvalidTransition",
    "DuplicateUserError",
    "NotFoundError",
    "InternalError",
    "IdentityVerificationError",
    # Ports
    "IdentityVerifier",
    "UserRepository",
    "NoteRepository",
    "ReminderRepository",
    "BlobStorage",
]

"""User directory used by the engine to check performer eligibility.

The engine never looks users up ambiently; callers hand it a ``UserDirectory``
so it can be exercised without the account subsystem.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy.orm import Session

from djq.models.users import User, UserStatus
from djq.services.errors import PerformerIneligibleError

BLOCKED_STATUSES = frozenset({UserStatus.INACTIVE.value, UserStatus.BANNED.value})


@dataclass(frozen=True)
class UserRecord:
    id: str
    username: str | None
    display_name: str | None
    status: str | None

    @property
    def is_active(self) -> bool:
        # NULL status is treated as active
        return self.status not in BLOCKED_STATUSES

    @property
    def label(self) -> str:
        return self.display_name or self.username or "Unknown"


class UserDirectory(ABC):
    """Interface for user lookups."""

    @abstractmethod
    def get_user(self, user_id: str) -> UserRecord | None:
        """Return a user by ID, or None if not found."""
        ...


class SqlUserDirectory(UserDirectory):
    """User directory backed by the ``users`` table."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def get_user(self, user_id: str) -> UserRecord | None:
        user = self._db.get(User, user_id)
        if user is None:
            return None
        return UserRecord(
            id=user.id,
            username=user.username,
            display_name=user.display_name,
            status=user.status,
        )


def ensure_eligible(users: UserDirectory, user_id: str) -> UserRecord:
    """Return the user, or raise PerformerIneligibleError if they may not perform."""
    user = users.get_user(user_id)
    if user is None:
        raise PerformerIneligibleError(user_id, "Performer not found")
    if not user.is_active:
        raise PerformerIneligibleError(user_id, f"Performer account is {user.status}")
    return user

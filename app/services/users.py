"""
User directory backed by a repository.

The real user service owns profiles; the lending core only reads credit
score and borrowing history through get_user(). Profiles are registered
through POST /v1/lending/users.
"""
from __future__ import annotations

from typing import Optional

import structlog

from app.core.errors import NotFoundError, ValidationError
from app.models.repository import InMemoryRepository, Repository
from app.schemas.lending import User

logger = structlog.get_logger()


class RepositoryUserDirectory:
    def __init__(self, users: Optional[Repository[User]] = None):
        self._users = users if users is not None else InMemoryRepository[User]("User")

    def register(self, user: User) -> User:
        """Add a profile. Raises StateConflictError if the id is taken."""
        if not user.id.strip():
            raise ValidationError("id", "must not be empty")
        if user.credit_score < 0:
            raise ValidationError("credit_score", "must not be negative")
        user = self._users.add(user)
        logger.info("user_registered", user_id=user.id, role=user.role.value)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def require_user(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

from typing import Any, Optional, Union
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bookshare.core.logging import get_logger
from bookshare.models.user import User
from bookshare.repositories.base import BaseRepository
from bookshare.repositories.follow import FollowGraph


class UserRepository:
    """Repository for User entities using composition pattern.

    Standard CRUD operations are delegated to BaseRepository[User]; follow
    edges are delegated to FollowGraph.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize UserRepository with a database session.

        Args:
            session: Async SQLAlchemy session
        """
        self._session = session
        self._base_repo = BaseRepository(session, User)
        self._follows = FollowGraph(session)
        self._logger = get_logger(f"{__name__}.UserRepository")

    # ========================================================================
    # DELEGATED CRUD METHODS
    # ========================================================================

    async def create(self, **kwargs: Any) -> User:
        """Create and commit a new user.

        Args:
            **kwargs: User attributes (username, email, bio, image)

        Returns:
            Created User instance with auto-generated ID

        Raises:
            ConflictError: If username or email is already taken
            StorageError: For other database errors
        """
        async with self._base_repo.transaction():
            user = await self._base_repo.create(**kwargs)
        return user

    async def get(self, user_id: Union[uuid.UUID, str]) -> Optional[User]:
        """Get user by ID, or None."""
        return await self._base_repo.get(user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        """Get user by exact email, or None."""
        return await self._base_repo.get_by(email=email)

    async def get_by_username(self, username: str) -> Optional[User]:
        """Get user by exact username with follower edges loaded, or None."""
        return await self._base_repo.get_by(
            (selectinload(User.followers),),
            username=username,
        )

    async def update(self, user_id: Union[uuid.UUID, str], **kwargs: Any) -> Optional[User]:
        """Update and commit user fields.

        Returns:
            Updated User instance or None if not found

        Raises:
            ConflictError: If a new username or email is already taken
            StorageError: For other database errors
        """
        async with self._base_repo.transaction():
            user = await self._base_repo.update(user_id, **kwargs)
        return user

    # ========================================================================
    # FOLLOW GRAPH
    # ========================================================================

    async def add_follower(self, user: User, follower_id: uuid.UUID) -> None:
        """Make ``follower_id`` follow ``user``. Raises ConflictError if already following."""
        await self._follows.add_follower(user, follower_id)

    async def remove_follower(self, user: User, follower_id: uuid.UUID) -> None:
        """Stop ``follower_id`` following ``user``. No-op if not following."""
        await self._follows.remove_follower(user, follower_id)

    async def is_follower(self, user_id: uuid.UUID, follower_id: uuid.UUID) -> bool:
        return await self._follows.is_follower(user_id, follower_id)

    async def list_following(self, user_id: uuid.UUID) -> set[uuid.UUID]:
        return await self._follows.list_following(user_id)

    async def list_followers(self, user_id: uuid.UUID) -> set[uuid.UUID]:
        return await self._follows.list_followers(user_id)

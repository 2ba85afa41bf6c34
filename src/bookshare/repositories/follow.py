import uuid

from sqlalchemy import delete, exists, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bookshare.core.logging import get_logger
from bookshare.core.tracing import trace_database
from bookshare.models.user import Follow, User
from bookshare.repositories.base import BaseRepository, ConflictError, translate_error


class FollowGraph:
    """Directed follow edges stored in the ``follows`` join table.

    Both directions are answered from the same table: ``following_id``
    selects who follows a user, ``follower_id`` selects whom a user follows.
    Mutations commit on success and roll back on failure.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._base_repo = BaseRepository(session, Follow)
        self._logger = get_logger(f"{__name__}.FollowGraph")

    @trace_database()
    async def add_follower(self, followee: User, follower_id: uuid.UUID) -> None:
        """Record that ``follower_id`` follows ``followee``.

        Raises:
            ConflictError: If the edge already exists or the user would
                follow themselves
            StorageError: For other database errors
        """
        followee_id = followee.id
        if follower_id == followee_id:
            raise ConflictError(f"User {followee_id} cannot follow themselves")

        async with self._base_repo.transaction():
            if await self.is_follower(followee_id, follower_id):
                raise ConflictError(
                    f"User {follower_id} already follows user {followee_id}"
                )
            try:
                await self._session.execute(
                    insert(Follow).values(
                        follower_id=follower_id,
                        following_id=followee_id,
                    )
                )
            except SQLAlchemyError as e:
                self._logger.error(
                    "Failed to add follower",
                    followee_id=followee_id,
                    follower_id=follower_id,
                    error=str(e)
                )
                raise translate_error(e, "Failed to add follower") from e

        self._logger.info(
            "Follower added",
            followee_id=followee_id,
            follower_id=follower_id
        )

    @trace_database()
    async def remove_follower(self, followee: User, follower_id: uuid.UUID) -> None:
        """Delete the edge if present. Removing a missing edge is a no-op.

        Raises:
            StorageError: For database errors
        """
        followee_id = followee.id
        async with self._base_repo.transaction():
            try:
                result = await self._session.execute(
                    delete(Follow).where(
                        Follow.follower_id == follower_id,
                        Follow.following_id == followee_id,
                    )
                )
            except SQLAlchemyError as e:
                self._logger.error(
                    "Failed to remove follower",
                    followee_id=followee_id,
                    follower_id=follower_id,
                    error=str(e)
                )
                raise translate_error(e, "Failed to remove follower") from e

        self._logger.info(
            "Follower removed",
            followee_id=followee_id,
            follower_id=follower_id,
            removed=getattr(result, "rowcount", 0)
        )

    @trace_database()
    async def is_follower(self, followee_id: uuid.UUID, follower_id: uuid.UUID) -> bool:
        """Check whether ``follower_id`` follows ``followee_id``."""
        try:
            query = select(
                exists().where(
                    Follow.following_id == followee_id,
                    Follow.follower_id == follower_id,
                )
            )
            result = await self._session.execute(query)
            return bool(result.scalar())
        except SQLAlchemyError as e:
            self._logger.error(
                "Failed to check follower",
                followee_id=followee_id,
                follower_id=follower_id,
                error=str(e)
            )
            raise translate_error(e, "Failed to check follower") from e

    @trace_database()
    async def list_following(self, user_id: uuid.UUID) -> set[uuid.UUID]:
        """IDs of every user that ``user_id`` follows."""
        return await self._select_ids(
            select(Follow.following_id).where(Follow.follower_id == user_id),
            "Failed to list following",
        )

    @trace_database()
    async def list_followers(self, user_id: uuid.UUID) -> set[uuid.UUID]:
        """IDs of every user following ``user_id``."""
        return await self._select_ids(
            select(Follow.follower_id).where(Follow.following_id == user_id),
            "Failed to list followers",
        )

    async def _select_ids(self, query, message: str) -> set[uuid.UUID]:
        try:
            result = await self._session.execute(query)
            return set(result.scalars().all())
        except SQLAlchemyError as e:
            self._logger.error(message, error=str(e))
            raise translate_error(e, message) from e

import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bookshare.core.logging import get_logger
from bookshare.core.tracing import trace_database
from bookshare.models.book import Book
from bookshare.models.user import User
from bookshare.repositories.base import (
    BaseRepository,
    PaginatedResult,
    PaginationParams,
)
from bookshare.repositories.follow import FollowGraph

BOOK_PRELOADS = (selectinload(Book.tags), selectinload(Book.owner))


class FeedComposer:
    """Builds a user's feed: books owned by everyone they follow."""

    def __init__(self, session: AsyncSession) -> None:
        self._users = BaseRepository(session, User)
        self._books = BaseRepository(session, Book)
        self._follows = FollowGraph(session)
        self._logger = get_logger(f"{__name__}.FeedComposer")

    @trace_database()
    async def list_feed(
        self,
        user_id: uuid.UUID,
        pagination: Optional[PaginationParams] = None
    ) -> PaginatedResult[Book]:
        """Books owned by followed users, newest first.

        The total counts feed-eligible books only. Following nobody yields an
        empty page with a zero total.

        Raises:
            NotFoundError: If the user does not exist
            StorageError: For database errors
        """
        pagination = pagination or PaginationParams()

        await self._users.get_or_404(user_id)

        following = await self._follows.list_following(user_id)
        if not following:
            self._logger.debug("Feed empty, user follows nobody", user_id=user_id)
            return PaginatedResult.empty(pagination)

        return await self._books.list(
            pagination,
            where=(Book.owner_id.in_(following),),
            options=BOOK_PRELOADS,
        )

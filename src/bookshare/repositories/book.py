from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Optional, Union
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bookshare.core.logging import get_logger
from bookshare.core.tracing import trace_database
from bookshare.models.book import Book, book_tags
from bookshare.models.review import Review
from bookshare.models.tag import Tag
from bookshare.models.user import User
from bookshare.repositories.base import (
    BaseRepository,
    NotFoundError,
    PaginatedResult,
    PaginationParams,
    RepositoryError,
    StorageError,
    translate_error,
)
from bookshare.repositories.feed import BOOK_PRELOADS, FeedComposer
from bookshare.repositories.tag import TagAssociationManager

logger = get_logger(__name__)


class BookRepository:
    """Repository for Book entities, their tags and their reviews.

    Generic CRUD is delegated to BaseRepository[Book] and
    BaseRepository[Review]; tag binding goes through TagAssociationManager and
    the personalised feed through FeedComposer.

    Every book returned by this class has ``tags`` (alphabetical) and
    ``owner`` loaded. Single-book lookups return None when nothing matches;
    list queries scoped to a tag or author raise NotFoundError when that tag
    or author does not exist.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._base_repo = BaseRepository(session, Book)
        self._reviews = BaseRepository(session, Review)
        self._users = BaseRepository(session, User)
        self._tags = TagAssociationManager(session)
        self._feed = FeedComposer(session)
        self._logger = get_logger(f"{__name__}.BookRepository")

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    async def get(self, book_id: Union[uuid.UUID, str]) -> Optional[Book]:
        """Get a book by ID with tags and owner loaded."""
        return await self._base_repo.get(book_id, options=BOOK_PRELOADS)

    async def get_by_slug(self, slug: str) -> Optional[Book]:
        """Get a book by exact slug, or None.

        Raises:
            StorageError: For database errors
        """
        return await self._base_repo.get_by(BOOK_PRELOADS, slug=slug)

    async def get_by_owner_and_slug(
        self,
        owner_id: uuid.UUID,
        slug: str
    ) -> Optional[Book]:
        """Get a book by slug only if ``owner_id`` uploaded it.

        Used to authorise owner-only mutations.
        """
        return await self._base_repo.get_by(BOOK_PRELOADS, slug=slug, owner_id=owner_id)

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    @trace_database()
    async def create(self, tags: Sequence[str] = (), **kwargs: Any) -> Book:
        """Create a book and bind its tags in one transaction.

        The book row is inserted first, then each tag is resolved and
        attached, then the book is re-read. Nothing is visible to other
        sessions unless every step succeeds.

        Args:
            tags: Tag names; existing tags are reused, missing ones created
            **kwargs: Book attributes (slug, title, owner_id, description, ...)

        Returns:
            The persisted book with tags sorted by name and owner loaded

        Raises:
            ConflictError: If slug or title is already taken
            StorageError: For other database errors (e.g. unknown owner)
        """
        async with self._base_repo.transaction():
            # Built with an empty, loaded tag collection so attach() never lazy-loads.
            book = Book(tags=[], **kwargs)
            try:
                self._session.add(book)
                await self._session.flush()
            except SQLAlchemyError as e:
                self._logger.error("Failed to create book", slug=kwargs.get("slug"), error=str(e))
                raise translate_error(e, "Failed to create book") from e
            await self._tags.attach(book, tags)
            book = await self._reload(book.id)

        self._logger.info("Book created", book_id=book.id, slug=book.slug, tags=len(book.tags))
        return book

    @trace_database()
    async def update(self, book: Book, tags: Sequence[str], **kwargs: Any) -> Book:
        """Apply field changes and replace the tag set in one transaction.

        Args:
            book: Book to update
            tags: The complete new tag set
            **kwargs: Attributes to change (title, description, ...)

        Returns:
            The persisted book with tags sorted by name and owner loaded

        Raises:
            NotFoundError: If the book no longer exists
            ConflictError: If a new slug or title is already taken
            StorageError: For other database errors
        """
        book_id = book.id
        try:
            async with self._base_repo.transaction():
                current = await self._reload(book_id)
                try:
                    for field, value in kwargs.items():
                        setattr(current, field, value)
                    await self._session.flush()
                except SQLAlchemyError as e:
                    self._logger.error("Failed to update book", book_id=book_id, error=str(e))
                    raise translate_error(e, "Failed to update book") from e
                await self._tags.replace(current, tags)
                current = await self._reload(book_id)
        except RepositoryError:
            # The savepoint rollback expired the caller's instance.
            await self._base_repo.get(book_id, options=BOOK_PRELOADS)
            raise

        self._logger.info("Book updated", book_id=current.id, fields=list(kwargs.keys()))
        return current

    @trace_database()
    async def delete(self, book: Book) -> None:
        """Delete a book together with its reviews and tag associations.

        Tags themselves are kept.

        Raises:
            StorageError: For database errors
        """
        async with self._base_repo.transaction():
            await self._base_repo.delete(book)

    async def _reload(self, book_id: uuid.UUID) -> Book:
        return await self._base_repo.get_or_404(book_id, options=BOOK_PRELOADS)

    # ========================================================================
    # LISTINGS
    # ========================================================================

    async def list(
        self,
        pagination: Optional[PaginationParams] = None
    ) -> PaginatedResult[Book]:
        """Every book, newest first. The total ignores offset and limit."""
        return await self._base_repo.list(pagination, options=BOOK_PRELOADS)

    @trace_database()
    async def list_by_tag(
        self,
        tag_name: str,
        pagination: Optional[PaginationParams] = None
    ) -> PaginatedResult[Book]:
        """Books carrying the tag, newest first.

        The total is counted from the tag's associations. A tag without books
        gives an empty page with a zero total.

        Raises:
            NotFoundError: If no tag has this name
            StorageError: For database errors
        """
        tag = await self._tags.get_by_name(tag_name)
        if tag is None:
            raise NotFoundError(f"Tag {tag_name!r} not found")

        query = select(Book).join(book_tags, book_tags.c.book_id == Book.id).where(
            book_tags.c.tag_id == tag.id
        )
        count_query = select(func.count()).select_from(book_tags).where(
            book_tags.c.tag_id == tag.id
        )
        return await self._base_repo.paginate(query, count_query, pagination, options=BOOK_PRELOADS)

    @trace_database()
    async def list_by_author(
        self,
        username: str,
        pagination: Optional[PaginationParams] = None
    ) -> PaginatedResult[Book]:
        """Books uploaded by the user, newest first.

        Raises:
            NotFoundError: If no user has this username
            StorageError: For database errors
        """
        owner = await self._users.get_by(username=username)
        if owner is None:
            raise NotFoundError(f"User {username!r} not found")

        return await self._base_repo.list(
            pagination,
            where=(Book.owner_id == owner.id,),
            options=BOOK_PRELOADS,
        )

    async def list_feed(
        self,
        user_id: uuid.UUID,
        pagination: Optional[PaginationParams] = None
    ) -> PaginatedResult[Book]:
        """Books owned by the users ``user_id`` follows. See FeedComposer."""
        return await self._feed.list_feed(user_id, pagination)

    async def list_tags(self) -> list[Tag]:
        """Every tag ordered by name; an empty catalog gives []."""
        return await self._tags.list_tags()

    # ========================================================================
    # REVIEWS
    # ========================================================================

    @trace_database()
    async def add_comment(self, book: Book, **kwargs: Any) -> Review:
        """Add a review to the book.

        Args:
            book: Reviewed book
            **kwargs: Review attributes (user_id, title, body, score)

        Returns:
            The stored review with its user loaded

        Raises:
            StorageError: If the user does not exist or the insert fails
        """
        async with self._reviews.transaction():
            review = await self._reviews.create(book_id=book.id, **kwargs)

        stored = await self._reviews.get(review.id, options=(selectinload(Review.user),))
        if stored is None:
            raise StorageError(f"Review {review.id} vanished after commit")

        self._logger.info("Review added", book_id=book.id, review_id=stored.id)
        return stored

    @trace_database()
    async def get_comments_by_slug(self, slug: str) -> Optional[list[Review]]:
        """Reviews of the book with this slug, oldest first, users loaded.

        Returns:
            None if no book has this slug, otherwise the (possibly empty) list
        """
        book = await self._base_repo.get_by(slug=slug)
        if book is None:
            return None

        try:
            query = (
                select(Review)
                .where(Review.book_id == book.id)
                .order_by(Review.created_at)
                .options(selectinload(Review.user))
            )
            result = await self._session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._logger.error("Failed to get comments", slug=slug, error=str(e))
            raise translate_error(e, "Failed to get comments") from e

    async def get_comment_by_id(self, review_id: Union[uuid.UUID, str]) -> Optional[Review]:
        """Get a review by ID, or None."""
        return await self._reviews.get(review_id)

    @trace_database()
    async def delete_comment(self, review: Review) -> None:
        """Delete a single review."""
        async with self._reviews.transaction():
            await self._reviews.delete(review)

from collections.abc import Iterable
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bookshare.core.logging import get_logger
from bookshare.core.tracing import trace_database
from bookshare.models.book import Book
from bookshare.models.tag import Tag
from bookshare.repositories.base import BaseRepository, translate_error


def unique_names(names: Iterable[str]) -> list[str]:
    """Drop repeated tag names, keeping the first occurrence's position."""
    return list(dict.fromkeys(names))


class TagAssociationManager:
    """Resolves tag names to Tag rows and binds them to books.

    Missing tags are never inserted on lookup. They become pending rows that
    reach the database only when the book's flush writes the association, so
    they share the book's transaction and vanish with it on rollback.

    Both attach() and replace() expect ``book.tags`` to be loaded already
    (a freshly constructed Book, or one read with selectinload(Book.tags)).
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._base_repo = BaseRepository(session, Tag)
        self._logger = get_logger(f"{__name__}.TagAssociationManager")

    async def get_by_name(self, name: str) -> Optional[Tag]:
        """Get a tag by exact name, or None."""
        return await self._base_repo.get_by(name=name)

    @trace_database()
    async def resolve(self, names: Iterable[str]) -> list[Tag]:
        """Map names to existing Tag rows, building new ones for the rest.

        Raises:
            StorageError: If a lookup fails for any reason other than absence
        """
        tags: list[Tag] = []
        for name in unique_names(names):
            tag = await self.get_by_name(name)
            if tag is None:
                self._logger.debug("Tag not found, creating with book", name=name)
                tag = Tag(name=name)
            tags.append(tag)
        return tags

    @trace_database()
    async def attach(self, book: Book, names: Iterable[str]) -> list[Tag]:
        """Add the named tags to the book's tag set.

        Returns:
            The resolved tags, in the order the names were given

        Raises:
            ConflictError: If a concurrently created tag claimed the same name
            StorageError: For other database errors
        """
        book_id = book.id
        tags = await self.resolve(names)
        try:
            for tag in tags:
                if tag not in book.tags:
                    book.tags.append(tag)
            await self._session.flush()
        except SQLAlchemyError as e:
            self._logger.error("Failed to attach tags", book_id=book_id, error=str(e))
            raise translate_error(e, "Failed to attach tags") from e

        self._logger.debug("Tags attached", book_id=book_id, count=len(tags))
        return tags

    @trace_database()
    async def replace(self, book: Book, names: Iterable[str]) -> list[Tag]:
        """Make the book's tag set exactly the named tags.

        Tags dropped from the book stay in the catalog.

        Raises:
            ConflictError: If a concurrently created tag claimed the same name
            StorageError: For other database errors
        """
        book_id = book.id
        tags = await self.resolve(names)
        try:
            book.tags = tags
            await self._session.flush()
        except SQLAlchemyError as e:
            self._logger.error("Failed to replace tags", book_id=book_id, error=str(e))
            raise translate_error(e, "Failed to replace tags") from e

        self._logger.debug("Tags replaced", book_id=book_id, count=len(tags))
        return tags

    @trace_database()
    async def list_tags(self) -> list[Tag]:
        """Every tag in the catalog ordered by name. Empty catalog gives []."""
        try:
            result = await self._session.execute(select(Tag).order_by(Tag.name))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._logger.error("Failed to list tags", error=str(e))
            raise translate_error(e, "Failed to list tags") from e

"""Base repository class with generic CRUD operations.

This module implements a composition-based repository pattern that provides
reusable database access operations (CRUD) for any SQLAlchemy model.

Key Concepts:
- COMPOSITION PATTERN: BaseRepository is injected as a dependency, not inherited
- GENERIC TYPE SAFETY: Uses TypeVar[ModelType] for compile-time type checking
- PAGINATION: Built-in offset/limit with total count and has_next/has_prev flags
- TRANSACTIONS: transaction() runs a multi-step unit of work in a savepoint and
  commits it, or rolls the savepoint back entirely
- ERROR TRANSLATION: driver errors surface as NotFoundError, ConflictError or
  StorageError, never as raw SQLAlchemy exceptions
- TRACING: @trace_database decorators integrate with OpenTelemetry

Usage Example:
    from sqlalchemy.ext.asyncio import AsyncSession
    from bookshare.models.user import User

    session: AsyncSession
    repo = BaseRepository(session, User)
    user = await repo.get(user_id)
    users = await repo.list(pagination=PaginationParams(offset=0, limit=50))
    async with repo.transaction():
        new_user = await repo.create(username="ada", email="ada@example.com")

See bookshare/repositories/user.py for an example of composition pattern usage.
"""

import uuid
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar, Union

from sqlalchemy import ColumnElement, Select, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm.interfaces import ORMOption

from bookshare.core.logging import get_logger
from bookshare.core.tracing import trace_database

# ============================================================================
# GENERIC TYPE DEFINITION
# ============================================================================
ModelType = TypeVar("ModelType", bound=DeclarativeBase)

EntityId = Union[uuid.UUID, str, int]

logger = get_logger(__name__)


# ============================================================================
# CUSTOM EXCEPTION HIERARCHY
# ============================================================================
# Callers catch these to implement appropriate error responses; raw
# SQLAlchemy exceptions never leave the repository layer.


class RepositoryError(Exception):
    """Base exception for all repository operations.

    Other exceptions (NotFoundError, ConflictError, StorageError) inherit from
    this for more specific error handling.

    Example:
        try:
            book = await books.create(slug="dune", title="Dune", owner_id=uid)
        except RepositoryError as e:
            logger.error(f"Database operation failed: {e}")
    """
    pass


class NotFoundError(RepositoryError):
    """Raised when a requested entity is not found.

    Single-entity lookups return None instead; this is raised by
    get_or_404() and by list queries scoped to a tag, author or feed owner
    that does not exist.

    Example:
        try:
            page = await books.list_by_tag("scifi")
        except NotFoundError:
            raise HTTPException(status_code=404, detail="Tag not found")
    """
    pass


class ConflictError(RepositoryError):
    """Raised when an operation conflicts with existing data.

    Indicates a unique or primary-key violation: duplicate slug, title, tag
    name, username, email, or follow edge.

    Example:
        try:
            await users.add_follower(author, reader.id)
        except ConflictError:
            raise HTTPException(status_code=409, detail="Already following")
    """
    pass


class StorageError(RepositoryError):
    """Raised for any other storage-engine failure.

    Connection loss, timeouts, and constraint violations that are not a
    uniqueness conflict. Never retried internally.
    """
    pass


def translate_error(error: SQLAlchemyError, message: str) -> RepositoryError:
    """Map a SQLAlchemy exception onto the repository error taxonomy.

    Args:
        error: Exception raised by SQLAlchemy or the driver
        message: Operation description used as the error message prefix

    Returns:
        ConflictError for unique or primary-key violations, StorageError
        otherwise. The caller raises it ``from error``.
    """
    # Only the driver's message; str(error) also carries the statement and parameters.
    text = str(getattr(error, "orig", None) or error).lower()
    if isinstance(error, IntegrityError) and (
        "unique" in text or "duplicate" in text or "primary key" in text
    ):
        return ConflictError(f"{message}: conflicts with existing data: {error}")
    return StorageError(f"{message}: {error}")


# ============================================================================
# PAGINATION SUPPORT
# ============================================================================


class PaginationParams:
    """Pagination parameters for list operations.

    Implements offset/limit pagination with validation to ensure reasonable
    values. Limit is capped at 1000.

    Attributes:
        offset: Number of records to skip (default: 0, must be >= 0)
        limit: Number of records to return (default: 50, must be 1-1000)

    Example:
        # Get books 100-150
        pagination = PaginationParams(offset=100, limit=50)
        result = await books.list(pagination=pagination)
        print(f"Page has {len(result.items)} items, total: {result.total}")

    Raises:
        ValueError: If offset is negative or limit is out of range
    """

    def __init__(self, offset: int = 0, limit: int = 50) -> None:
        if offset < 0:
            raise ValueError("Offset must be non-negative")
        if limit <= 0 or limit > 1000:
            raise ValueError("Limit must be between 1 and 1000")

        self.offset = offset
        self.limit = limit


class PaginatedResult(Generic[ModelType]):
    """Paginated result container with metadata.

    Attributes:
        items: List of entities in this page
        total: Total count of all matching entities (across all pages)
        offset: Current page offset
        limit: Current page limit
        has_next: Boolean indicating if more pages exist after this one
        has_prev: Boolean indicating if previous pages exist before this one
    """

    def __init__(
        self,
        items: list[ModelType],
        total: int,
        offset: int,
        limit: int
    ) -> None:
        self.items = items
        self.total = total
        self.offset = offset
        self.limit = limit
        self.has_next = offset + limit < total
        self.has_prev = offset > 0

    @classmethod
    def empty(cls, pagination: PaginationParams) -> "PaginatedResult[ModelType]":
        """Build a page with no items and a zero total."""
        return cls(items=[], total=0, offset=pagination.offset, limit=pagination.limit)


# ============================================================================
# BASE REPOSITORY - MAIN CRUD IMPLEMENTATION
# ============================================================================


class BaseRepository(Generic[ModelType]):
    """Generic repository class providing CRUD operations for any SQLAlchemy model.

    Entity repositories inject BaseRepository as a dependency (composition)
    instead of inheriting from it.

    Key Features:
    - GENERIC TYPE SAFETY: Works with any SQLAlchemy model via TypeVar
    - EAGER LOADING: Lookups and listings accept loader options (selectinload)
    - PAGINATION: Built-in offset/limit with total count and navigation flags
    - TRANSACTIONS: transaction() wraps multi-step mutations
    - TRACING: OpenTelemetry integration via @trace_database decorators
    - STRUCTURED LOGGING: All operations logged with contextual information

    Args:
        session: AsyncSession for database communication
        model: SQLAlchemy model class (e.g., Book, User)

    Example (Composition Pattern):
        class UserRepository:
            def __init__(self, session: AsyncSession) -> None:
                self._base_repo = BaseRepository(session, User)

            async def get(self, user_id: uuid.UUID) -> Optional[User]:
                return await self._base_repo.get(user_id)
    """

    def __init__(self, session: AsyncSession, model: type[ModelType]) -> None:
        self._session = session
        self._model = model
        self._logger = get_logger(f"{__name__}.{model.__name__}Repository")

    @property
    def session(self) -> AsyncSession:
        return self._session

    # ========================================================================
    # CREATE OPERATION
    # ========================================================================

    @trace_database()
    async def create(self, **kwargs: Any) -> ModelType:
        """Create a new entity and return it.

        Instantiates a new model with the provided attributes, adds it to
        the session, and flushes to get the auto-generated fields without
        committing the transaction.

        Args:
            **kwargs: Model attributes (e.g., username="ada", email="ada@example.com")

        Returns:
            Created entity instance with auto-generated fields populated

        Raises:
            ConflictError: If creation conflicts with a unique constraint
            StorageError: For other database errors
        """
        try:
            self._logger.debug("Creating new entity", model=self._model.__name__)

            entity = self._model(**kwargs)

            self._session.add(entity)
            await self._session.flush()
            await self._session.refresh(entity)

            self._logger.info(
                "Entity created successfully",
                model=self._model.__name__,
                entity_id=getattr(entity, 'id', None)
            )

            return entity

        except SQLAlchemyError as e:
            self._logger.error(
                "Failed to create entity",
                model=self._model.__name__,
                error=str(e)
            )
            raise translate_error(e, "Failed to create entity") from e

    # ========================================================================
    # READ OPERATIONS (GET)
    # ========================================================================

    @trace_database()
    async def get(
        self,
        entity_id: EntityId,
        options: Sequence[ORMOption] = ()
    ) -> Optional[ModelType]:
        """Get entity by ID.

        Args:
            entity_id: Entity identifier (UUID, string, or integer)
            options: Loader options such as selectinload(Book.tags); loaded
                relationships overwrite whatever the identity map holds

        Returns:
            Entity instance if found, None if not found

        Raises:
            StorageError: For database errors
        """
        return await self.get_by(options, id=entity_id)

    @trace_database()
    async def get_by(
        self,
        options: Sequence[ORMOption] = (),
        **filters: Any
    ) -> Optional[ModelType]:
        """Get the first entity whose columns equal the given values.

        Args:
            options: Loader options for eager loading
            **filters: Column equality filters (e.g., slug="dune")

        Returns:
            Entity instance if found, None if not found

        Raises:
            StorageError: For database errors
        """
        try:
            self._logger.debug(
                "Getting entity",
                model=self._model.__name__,
                filters=filters
            )

            query = select(self._model).filter_by(**filters).limit(1)
            if options:
                query = query.options(*options).execution_options(populate_existing=True)

            result = await self._session.execute(query)
            entity = result.scalar_one_or_none()

            if entity:
                self._logger.debug(
                    "Entity found",
                    model=self._model.__name__,
                    filters=filters
                )
            else:
                self._logger.debug(
                    "Entity not found",
                    model=self._model.__name__,
                    filters=filters
                )

            return entity

        except SQLAlchemyError as e:
            self._logger.error(
                "Failed to get entity",
                model=self._model.__name__,
                filters=filters,
                error=str(e)
            )
            raise translate_error(e, "Failed to get entity") from e

    @trace_database()
    async def get_or_404(
        self,
        entity_id: EntityId,
        options: Sequence[ORMOption] = ()
    ) -> ModelType:
        """Get entity by ID, raising NotFoundError if not found.

        Args:
            entity_id: Entity identifier
            options: Loader options for eager loading

        Returns:
            Entity instance

        Raises:
            NotFoundError: If entity not found (includes model name and ID in message)
            StorageError: For other database errors
        """
        entity = await self.get(entity_id, options=options)
        if entity is None:
            raise NotFoundError(f"{self._model.__name__} with id {entity_id} not found")
        return entity

    # ========================================================================
    # UPDATE OPERATION
    # ========================================================================

    @trace_database()
    async def update(
        self,
        entity_id: EntityId,
        **kwargs: Any
    ) -> Optional[ModelType]:
        """Update entity by ID.

        Performs an UPDATE query on the entity. Automatically adds updated_at
        timestamp if the model has that field. Returns the updated entity with
        all new values populated.

        Args:
            entity_id: Entity identifier
            **kwargs: Attributes to update (e.g., bio="New bio")

        Returns:
            Updated entity instance or None if entity not found

        Raises:
            ConflictError: If update conflicts with a unique constraint
            StorageError: For other database errors
        """
        try:
            self._logger.debug(
                "Updating entity",
                model=self._model.__name__,
                entity_id=entity_id,
                fields=list(kwargs.keys())
            )

            if hasattr(self._model, 'updated_at'):
                kwargs['updated_at'] = datetime.now(timezone.utc)

            query = (
                update(self._model)
                .where(getattr(self._model, 'id') == entity_id)
                .values(**kwargs)
                .returning(self._model)
            )

            result = await self._session.execute(query)
            entity = result.scalar_one_or_none()

            if entity:
                self._logger.info(
                    "Entity updated successfully",
                    model=self._model.__name__,
                    entity_id=entity_id
                )
            else:
                self._logger.debug(
                    "Entity not found for update",
                    model=self._model.__name__,
                    entity_id=entity_id
                )

            return entity

        except SQLAlchemyError as e:
            self._logger.error(
                "Failed to update entity",
                model=self._model.__name__,
                entity_id=entity_id,
                error=str(e)
            )
            raise translate_error(e, "Failed to update entity") from e

    # ========================================================================
    # DELETE OPERATION
    # ========================================================================

    @trace_database()
    async def delete(self, entity: ModelType) -> None:
        """Delete an entity, applying its ORM cascades.

        Relationships configured with ``cascade="all, delete-orphan"`` (for
        example Book.reviews) and many-to-many association rows are removed
        in the same flush.

        Args:
            entity: Persistent entity to remove

        Raises:
            StorageError: For database errors
        """
        entity_id = getattr(entity, 'id', None)
        try:
            self._logger.debug(
                "Deleting entity",
                model=self._model.__name__,
                entity_id=entity_id
            )

            await self._session.delete(entity)
            await self._session.flush()

            self._logger.info(
                "Entity deleted successfully",
                model=self._model.__name__,
                entity_id=entity_id
            )

        except SQLAlchemyError as e:
            self._logger.error(
                "Failed to delete entity",
                model=self._model.__name__,
                entity_id=entity_id,
                error=str(e)
            )
            raise translate_error(e, "Failed to delete entity") from e

    # ========================================================================
    # LIST OPERATIONS (WITH PAGINATION)
    # ========================================================================

    @trace_database()
    async def list(
        self,
        pagination: Optional[PaginationParams] = None,
        where: Iterable[ColumnElement[bool]] = (),
        options: Sequence[ORMOption] = ()
    ) -> PaginatedResult[ModelType]:
        """List entities with offset/limit pagination.

        Ordering: Results are ordered by created_at (descending) if available,
        otherwise by ID. The total counts every row matching ``where``,
        independent of offset and limit.

        Args:
            pagination: PaginationParams with offset/limit (default: 0, 50)
            where: Filter criteria applied to both the page and the count
            options: Loader options for eager loading

        Returns:
            PaginatedResult with items, total, offset, limit, has_next, has_prev

        Raises:
            StorageError: For database errors
        """
        criteria = list(where)
        query = select(self._model).where(*criteria)
        count_query = select(func.count()).select_from(self._model).where(*criteria)
        return await self.paginate(query, count_query, pagination, options=options)

    async def paginate(
        self,
        query: Select[Any],
        count_query: Select[Any],
        pagination: Optional[PaginationParams] = None,
        options: Sequence[ORMOption] = ()
    ) -> PaginatedResult[ModelType]:
        """Run a page query and its count query.

        Args:
            query: SELECT of the model, already filtered
            count_query: SELECT COUNT matching the same rows
            pagination: PaginationParams with offset/limit (default: 0, 50)
            options: Loader options for eager loading

        Returns:
            PaginatedResult for the requested page

        Raises:
            StorageError: For database errors
        """
        try:
            if pagination is None:
                pagination = PaginationParams()

            self._logger.debug(
                "Listing entities",
                model=self._model.__name__,
                offset=pagination.offset,
                limit=pagination.limit
            )

            if hasattr(self._model, 'created_at'):
                query = query.order_by(getattr(self._model, 'created_at').desc())
            else:
                query = query.order_by(getattr(self._model, 'id'))

            query = query.offset(pagination.offset).limit(pagination.limit)
            if options:
                query = query.options(*options).execution_options(populate_existing=True)

            items_result = await self._session.execute(query)
            items = list(items_result.scalars().all())

            total_result = await self._session.execute(count_query)
            total = total_result.scalar() or 0

            self._logger.debug(
                "Listed entities successfully",
                model=self._model.__name__,
                count=len(items),
                total=total
            )

            return PaginatedResult(
                items=items,
                total=total,
                offset=pagination.offset,
                limit=pagination.limit
            )

        except SQLAlchemyError as e:
            self._logger.error(
                "Failed to list entities",
                model=self._model.__name__,
                error=str(e)
            )
            raise translate_error(e, "Failed to list entities") from e

    # ========================================================================
    # TRANSACTION MANAGEMENT
    # ========================================================================

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Run a multi-step unit of work atomically.

        The block runs inside a SAVEPOINT. When it exits cleanly the savepoint
        is released and, unless this call is itself nested in another
        transaction(), the session commits. On any exception only the
        savepoint is rolled back, so only objects changed inside the block
        are expired. The outermost call then closes the outer transaction
        and re-raises the first failure: repository errors unchanged,
        SQLAlchemy errors translated.

        Example:
            async with repo.transaction():
                book = await repo.create(slug="dune", title="Dune", owner_id=uid)
                await tags.attach(book, ["scifi"])
        """
        outermost = not self._session.in_nested_transaction()
        try:
            async with self._session.begin_nested():
                yield self._session
        except BaseException as e:
            self._logger.debug(
                "Savepoint rolled back",
                model=self._model.__name__,
                error=type(e).__name__
            )
            if outermost and isinstance(e, Exception):
                # The block's writes are gone; this only releases the outer transaction.
                try:
                    await self._finish()
                except RepositoryError as finish_error:
                    self._logger.error(
                        "Failed to close transaction after rollback",
                        model=self._model.__name__,
                        error=str(finish_error)
                    )
            if isinstance(e, SQLAlchemyError):
                raise translate_error(e, "Transaction failed") from e
            raise

        if outermost:
            await self._finish()

    async def _finish(self) -> None:
        try:
            await self.commit()
        except RepositoryError:
            await self.rollback()
            raise

    async def commit(self) -> None:
        """Commit the current transaction.

        Raises:
            ConflictError: If a deferred unique constraint fails on commit
            StorageError: If commit fails
        """
        try:
            await self._session.commit()
            self._logger.debug("Transaction committed", model=self._model.__name__)
        except SQLAlchemyError as e:
            self._logger.error(
                "Failed to commit transaction",
                model=self._model.__name__,
                error=str(e)
            )
            raise translate_error(e, "Failed to commit transaction") from e

    async def rollback(self) -> None:
        """Rollback the current transaction.

        Discards all pending changes since the last commit.

        Raises:
            StorageError: If rollback fails
        """
        try:
            await self._session.rollback()
            self._logger.debug("Transaction rolled back", model=self._model.__name__)
        except SQLAlchemyError as e:
            self._logger.error(
                "Failed to rollback transaction",
                model=self._model.__name__,
                error=str(e)
            )
            raise translate_error(e, "Failed to rollback transaction") from e

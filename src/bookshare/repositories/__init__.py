"""Repository layer for database operations.

Repositories encapsulate database operations behind typed, async methods.
Each one wraps an AsyncSession; multi-step mutations commit or roll back as
a unit.
"""

from bookshare.repositories.base import (
    BaseRepository,
    ConflictError,
    NotFoundError,
    PaginatedResult,
    PaginationParams,
    RepositoryError,
    StorageError,
)
from bookshare.repositories.book import BookRepository
from bookshare.repositories.feed import FeedComposer
from bookshare.repositories.follow import FollowGraph
from bookshare.repositories.tag import TagAssociationManager
from bookshare.repositories.user import UserRepository

__all__ = [
    "BaseRepository",
    "BookRepository",
    "ConflictError",
    "FeedComposer",
    "FollowGraph",
    "NotFoundError",
    "PaginatedResult",
    "PaginationParams",
    "RepositoryError",
    "StorageError",
    "TagAssociationManager",
    "UserRepository",
]

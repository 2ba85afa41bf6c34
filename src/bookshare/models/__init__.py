"""Database models."""

from bookshare.models.base import Base, TimestampMixin, UUIDMixin
from bookshare.models.book import Book, book_tags
from bookshare.models.review import Review
from bookshare.models.tag import Tag
from bookshare.models.user import Follow, User

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "Book",
    "Follow",
    "Review",
    "Tag",
    "User",
    "book_tags",
]

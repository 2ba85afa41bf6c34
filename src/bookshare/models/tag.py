"""Tag model shared across books."""

from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookshare.models.base import Base, TimestampMixin, UUIDMixin, generate_repr
from bookshare.models.book import book_tags

if TYPE_CHECKING:
    from bookshare.models.book import Book


class Tag(Base, UUIDMixin, TimestampMixin):
    """A tag name shared by every book that references it.

    Tag rows are never deleted when books stop referencing them.
    """

    __tablename__ = "tags"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    # Relationships
    books: Mapped[list["Book"]] = relationship(
        "Book",
        secondary=book_tags,
        back_populates="tags",
    )

    __repr__ = generate_repr("id", "name")

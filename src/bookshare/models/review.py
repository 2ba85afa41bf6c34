"""Review model for user comments on books."""

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookshare.models.base import Base, TimestampMixin, UUIDMixin, generate_repr

if TYPE_CHECKING:
    from bookshare.models.book import Book
    from bookshare.models.user import User


class Review(Base, UUIDMixin, TimestampMixin):
    """A review left by a user on a book.

    Attributes:
        id: Primary key UUID
        book_id: Foreign key to books table
        user_id: Foreign key to users table
        title: Review headline
        body: Review text
        score: Numeric rating
        book: Reviewed book
        user: Reviewing user
    """

    __tablename__ = "reviews"

    book_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("books.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    book: Mapped["Book"] = relationship(
        "Book",
        back_populates="reviews",
    )
    user: Mapped["User"] = relationship("User")

    # Indexes
    __table_args__ = (Index("idx_reviews_book_id", "book_id"),)

    __repr__ = generate_repr("id", "book_id", "user_id", "score")

"""Book model and its many-to-many tag association table."""

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookshare.models.base import Base, TimestampMixin, UUIDMixin, generate_repr

if TYPE_CHECKING:
    from bookshare.models.review import Review
    from bookshare.models.tag import Tag
    from bookshare.models.user import User


book_tags = Table(
    "book_tags",
    Base.metadata,
    Column("book_id", ForeignKey("books.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    Index("idx_book_tags_tag_id", "tag_id"),
)


class Book(Base, UUIDMixin, TimestampMixin):
    """A book uploaded by a user.

    Attributes:
        id: Primary key UUID
        slug: Unique URL-safe identifier
        title: Unique title
        description: Optional free-text description
        image: Optional cover image path
        file: Optional book file path
        download_count: Number of downloads
        owner_id: Foreign key to the uploading user
        created_at: Record creation timestamp
        updated_at: Record last update timestamp
        owner: The uploading user
        reviews: Reviews left on this book
        tags: Tags bound to this book, ordered by name
    """

    __tablename__ = "books"

    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image: Mapped[str | None] = mapped_column(String(500), nullable=True)
    file: Mapped[str | None] = mapped_column(String(500), nullable=True)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Relationships
    owner: Mapped["User"] = relationship(
        "User",
        back_populates="books",
    )
    reviews: Mapped[list["Review"]] = relationship(
        "Review",
        back_populates="book",
        cascade="all, delete-orphan",
        order_by="Review.created_at",
    )
    tags: Mapped[list["Tag"]] = relationship(
        "Tag",
        secondary=book_tags,
        back_populates="books",
        order_by="Tag.name",
    )

    # Indexes
    __table_args__ = (
        Index("idx_books_owner_id", "owner_id"),
        Index("idx_books_created_at", "created_at"),
    )

    __repr__ = generate_repr("id", "slug", "title")

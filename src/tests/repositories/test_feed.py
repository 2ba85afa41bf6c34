"""Test FeedComposer functionality."""

import uuid
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from bookshare.repositories.base import NotFoundError, PaginationParams
from bookshare.repositories.book import BookRepository
from bookshare.repositories.feed import FeedComposer
from bookshare.repositories.follow import FollowGraph
from tests.factories import create_book, create_user, minutes_ago


class TestListFeed:
    """Test list_feed() method."""

    @pytest.mark.asyncio
    async def test_feed_for_user_following_nobody_is_empty(
        self, db_session: AsyncSession
    ) -> None:
        """Test following nobody is a valid empty page with zero total."""
        reader = await create_user(db_session)
        await create_book(db_session)

        page = await FeedComposer(db_session).list_feed(reader.id)

        assert page.items == []
        assert page.total == 0

    @pytest.mark.asyncio
    async def test_feed_contains_followed_author_books_newest_first(
        self, db_session: AsyncSession
    ) -> None:
        """Test following one author with 3 books gives exactly those, newest first."""
        reader = await create_user(db_session)
        author = await create_user(db_session)
        for age, slug in ((30, "first"), (20, "second"), (10, "third")):
            await create_book(db_session, owner=author, slug=slug, created_at=minutes_ago(age))
        await create_book(db_session, slug="unfollowed")
        await FollowGraph(db_session).add_follower(author, reader.id)

        page = await FeedComposer(db_session).list_feed(reader.id)

        assert [book.slug for book in page.items] == ["third", "second", "first"]
        assert page.total == 3

    @pytest.mark.asyncio
    async def test_feed_total_counts_feed_books_not_own_books(
        self, db_session: AsyncSession
    ) -> None:
        """Test the total ignores the reader's own uploads."""
        reader = await create_user(db_session)
        author = await create_user(db_session)
        for i in range(2):
            await create_book(db_session, owner=reader, slug=f"own-{i}")
        await create_book(db_session, owner=author, slug="followed")
        await FollowGraph(db_session).add_follower(author, reader.id)

        page = await FeedComposer(db_session).list_feed(reader.id)

        assert [book.slug for book in page.items] == ["followed"]
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_feed_spans_several_followed_authors_and_paginates(
        self, db_session: AsyncSession
    ) -> None:
        """Test books from every followed author are merged and paged."""
        reader = await create_user(db_session)
        graph = FollowGraph(db_session)
        age = 60
        for _ in range(2):
            author = await create_user(db_session)
            for _ in range(2):
                age -= 5
                await create_book(db_session, owner=author, created_at=minutes_ago(age))
            await graph.add_follower(author, reader.id)

        page = await FeedComposer(db_session).list_feed(
            reader.id, PaginationParams(offset=1, limit=2)
        )

        assert len(page.items) == 2
        assert page.total == 4
        assert page.has_next is True

    @pytest.mark.asyncio
    async def test_feed_preloads_tags_and_owner(self, db_session: AsyncSession) -> None:
        """Test feed books carry alphabetical tags and their owner."""
        reader = await create_user(db_session)
        author = await create_user(db_session, username="tolkien")
        await create_book(db_session, owner=author, tags=["fantasy", "epic"])
        await FollowGraph(db_session).add_follower(author, reader.id)

        page = await FeedComposer(db_session).list_feed(reader.id)

        assert [tag.name for tag in page.items[0].tags] == ["epic", "fantasy"]
        assert page.items[0].owner.username == "tolkien"

    @pytest.mark.asyncio
    async def test_feed_after_unfollow_is_empty(self, db_session: AsyncSession) -> None:
        """Test removing the edge removes the author's books from the feed."""
        reader = await create_user(db_session)
        author = await create_user(db_session)
        await create_book(db_session, owner=author)
        graph = FollowGraph(db_session)
        await graph.add_follower(author, reader.id)
        await graph.remove_follower(author, reader.id)

        page = await FeedComposer(db_session).list_feed(reader.id)

        assert page.total == 0

    @pytest.mark.asyncio
    async def test_feed_unknown_user_raises_not_found(self, db_session: AsyncSession) -> None:
        """Test the requesting user must exist."""
        with pytest.raises(NotFoundError):
            await FeedComposer(db_session).list_feed(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_book_repository_delegates_feed(self, db_session: AsyncSession) -> None:
        """Test BookRepository.list_feed passes through to the composer."""
        reader = await create_user(db_session)
        author = await create_user(db_session)
        await create_book(db_session, owner=author, slug="followed")
        await FollowGraph(db_session).add_follower(author, reader.id)

        page = await BookRepository(db_session).list_feed(reader.id)

        assert [book.slug for book in page.items] == ["followed"]
        assert page.total == 1

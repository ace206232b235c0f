"""Item sources the batch scan coordinator reads from and stamps."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Sequence

import structlog
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError

from postscan.core.scanner.exceptions import SourceUnavailableError
from postscan.core.scanner.models import Category
from postscan.db.database import get_db_session
from postscan.db.models import Post, PostMeta, PostStatus, PostType
from postscan.utils.constants import SCAN

logger = structlog.get_logger(__name__)


class ItemSource(ABC):
    """
    Collection scanned by the coordinator.

    ``page`` must return identifiers in the same order on every call for an
    unchanged collection, otherwise offset pagination skips or repeats items.
    """

    @abstractmethod
    async def count(self, categories: Sequence[str], active_only: bool = True) -> int:
        """Number of items in the given categories."""

    @abstractmethod
    async def page(
        self,
        categories: Sequence[str],
        active_only: bool,
        offset: int,
        limit: int,
    ) -> List[int]:
        """Up to ``limit`` item ids starting at ``offset``."""

    @abstractmethod
    async def mark_processed(self, item_id: int, timestamp: datetime) -> bool:
        """Stamp an item as processed. Stamping twice keeps the later timestamp."""

    @abstractmethod
    async def list_categories(self) -> List[Category]:
        """Categories a scan may be filtered by."""


class PostItemSource(ItemSource):
    """Published posts stored in the posts table."""

    def __init__(
        self,
        session_factory=get_db_session,
        meta_key: str = SCAN.PROCESSED_META_KEY,
        active_status: str = SCAN.ACTIVE_STATUS,
    ):
        self._session_factory = session_factory
        self.meta_key = meta_key
        self.active_status = PostStatus(active_status)

    def _filtered(self, query, categories: Sequence[str], active_only: bool):
        query = query.where(Post.post_type.in_(list(categories)))
        if active_only:
            query = query.where(Post.status == self.active_status)
        return query

    async def count(self, categories: Sequence[str], active_only: bool = True) -> int:
        if not categories:
            return 0
        try:
            async with self._session_factory() as db:
                query = self._filtered(select(func.count(Post.id)), categories, active_only)
                return await db.scalar(query) or 0
        except SQLAlchemyError as e:
            logger.error("Post count failed", categories=list(categories), error=str(e))
            raise SourceUnavailableError(f"Could not count posts: {e}") from e

    async def page(
        self,
        categories: Sequence[str],
        active_only: bool,
        offset: int,
        limit: int,
    ) -> List[int]:
        if not categories or limit <= 0:
            return []
        try:
            async with self._session_factory() as db:
                query = (
                    self._filtered(select(Post.id), categories, active_only)
                    .order_by(Post.created_at.asc(), Post.id.asc())
                    .offset(offset)
                    .limit(limit)
                )
                return list(await db.scalars(query))
        except SQLAlchemyError as e:
            logger.error("Post page query failed", offset=offset, limit=limit, error=str(e))
            raise SourceUnavailableError(f"Could not fetch posts: {e}") from e

    async def mark_processed(self, item_id: int, timestamp: datetime) -> bool:
        return await self.mark_many_processed([item_id], timestamp) == 1

    async def mark_many_processed(self, item_ids: Sequence[int], timestamp: datetime) -> int:
        """Stamp several posts in one transaction. Returns how many posts exist and were stamped."""
        if not item_ids:
            return 0
        value = timestamp.isoformat()
        try:
            async with self._session_factory() as db:
                existing_posts = set(await db.scalars(select(Post.id).where(Post.id.in_(item_ids))))
                rows = await db.scalars(
                    select(PostMeta).where(
                        PostMeta.post_id.in_(existing_posts),
                        PostMeta.meta_key == self.meta_key,
                    )
                )
                by_post = {row.post_id: row for row in rows}

                for post_id in existing_posts:
                    row = by_post.get(post_id)
                    if row is None:
                        db.add(PostMeta(post_id=post_id, meta_key=self.meta_key, meta_value=value))
                    else:
                        row.meta_value = value

                await db.commit()
                return len(existing_posts)
        except SQLAlchemyError as e:
            logger.error("Marking posts processed failed", count=len(item_ids), error=str(e))
            raise SourceUnavailableError(f"Could not stamp posts: {e}") from e

    async def get_processed_at(self, item_id: int) -> str:
        """Stored processed marker for a post, empty when never scanned."""
        async with self._session_factory() as db:
            value = await db.scalar(
                select(PostMeta.meta_value).where(
                    PostMeta.post_id == item_id,
                    PostMeta.meta_key == self.meta_key,
                )
            )
            return value or ""

    async def list_categories(self) -> List[Category]:
        try:
            async with self._session_factory() as db:
                rows = await db.scalars(
                    select(PostType).where(PostType.public.is_(True)).order_by(PostType.slug)
                )
                return [Category(slug=row.slug, label=row.label) for row in rows]
        except SQLAlchemyError as e:
            logger.error("Listing post types failed", error=str(e))
            raise SourceUnavailableError(f"Could not list post types: {e}") from e

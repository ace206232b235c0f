"""Database seeding helpers shared by the test modules."""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select

from postscan.core.scanner import PostItemSource, QueueTrigger, ScanCoordinator
from postscan.db.database import get_db_session
from postscan.db.models import Post, PostMeta, PostStatus, PostType
from postscan.utils.constants import SCAN


async def seed_posts(counts: Dict[str, int], status: PostStatus = PostStatus.PUBLISH) -> List[int]:
    """Insert ``counts[post_type]`` posts per type, oldest first. Returns their ids."""
    base = datetime(2024, 1, 1)
    posts = []
    for post_type, count in counts.items():
        for _ in range(count):
            n = len(posts)
            posts.append(Post(
                title=f"{post_type} {n}",
                post_type=post_type,
                status=status,
                created_at=base + timedelta(minutes=n),
            ))

    async with get_db_session() as db:
        db.add_all(posts)
        await db.commit()
        return [p.id for p in posts]


async def add_post_type(slug: str, label: str, public: bool = True) -> None:
    async with get_db_session() as db:
        db.add(PostType(slug=slug, label=label, public=public))
        await db.commit()


async def processed_markers(meta_key: Optional[str] = None) -> Dict[int, str]:
    """Map of post id to its stored processed marker."""
    async with get_db_session() as db:
        rows = await db.scalars(
            select(PostMeta).where(PostMeta.meta_key == (meta_key or SCAN.PROCESSED_META_KEY))
        )
        return {row.post_id: row.meta_value for row in rows}


def make_coordinator(config, trigger=None, source=None):
    """Coordinator over the posts table driven by an in-process queue."""
    return ScanCoordinator(source or PostItemSource(), trigger or QueueTrigger(), config=config)

"""
postscan Database Models
SQLAlchemy models for content items, scan options and the activity log
"""

from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON,
    ForeignKey, Enum as SQLEnum, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, DeclarativeBase
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class PostStatus(str, Enum):
    """Publication status of a post."""
    PUBLISH = "publish"
    DRAFT = "draft"
    PENDING = "pending"
    PRIVATE = "private"
    TRASH = "trash"


class ActionType(str, Enum):
    """Types of actions that can be logged."""
    SCAN_STARTED = "scan_started"
    SCAN_COMPLETED = "scan_completed"
    SCAN_CANCELLED = "scan_cancelled"
    BATCH_FAILED = "batch_failed"
    SETTINGS_CHANGED = "settings_changed"


# =============================================================================
# Content Models
# =============================================================================

class PostType(Base):
    """Content type a post belongs to (post, page, product...)."""
    __tablename__ = "post_types"

    slug = Column(String(50), primary_key=True)
    label = Column(String(200), nullable=False)
    public = Column(Boolean, default=True, nullable=False)


class Post(Base):
    """Content item scanned by the posts maintenance job."""
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True)
    title = Column(String(500), nullable=False, default="")
    post_type = Column(String(50), ForeignKey("post_types.slug"), nullable=False)
    status = Column(SQLEnum(PostStatus), default=PostStatus.DRAFT, nullable=False)

    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    meta = relationship("PostMeta", back_populates="post", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_posts_type_status_date", "post_type", "status", "created_at"),
    )


class PostMeta(Base):
    """Key/value metadata attached to a post."""
    __tablename__ = "post_meta"

    id = Column(Integer, primary_key=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    meta_key = Column(String(255), nullable=False)
    meta_value = Column(Text)

    post = relationship("Post", back_populates="meta")

    __table_args__ = (
        UniqueConstraint("post_id", "meta_key", name="uq_post_meta_key"),
    )


# =============================================================================
# Scan State Models
# =============================================================================

class ScanOption(Base):
    """Durable key/value record; version guards read-modify-write updates."""
    __tablename__ = "scan_options"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(191), unique=True, nullable=False, index=True)
    value = Column(Text)
    version = Column(Integer, default=0, nullable=False)

    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<ScanOption(key={self.key}, version={self.version})>"


class Activity(Base):
    """Activity log for scan lifecycle events."""
    __tablename__ = "activity"

    id = Column(Integer, primary_key=True)

    action_type = Column(SQLEnum(ActionType), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    details = Column(JSON)  # Additional structured data

    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        Index("idx_activity_type_date", "action_type", "created_at"),
    )

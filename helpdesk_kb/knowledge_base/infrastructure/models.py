"""
Knowledge Base Infrastructure Models
====================================

SQLAlchemy ORM models for the knowledge-base module.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk_kb.config import ArticleStatus
from helpdesk_kb.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArticleModel(Base):
    """
    Database model for Article entity.

    Embedding vectors live on the article row itself, so a single UPDATE
    writes both vectors and clears both in-progress flags.
    """
    __tablename__ = "kb_articles"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Content
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ArticleStatus.DRAFT,
        index=True
    )

    # Embeddings (title + description, and content)
    metadata_embedding: Mapped[Optional[List[float]]] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    content_embedding: Mapped[Optional[List[float]]] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    is_metadata_embedding_in_progress: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    is_content_embedding_in_progress: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    # Engagement
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    helpful_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    not_helpful_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Editors
    author_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_updated_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )


class TagModel(Base):
    """Database model for Tag entity."""
    __tablename__ = "kb_tags"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False, unique=True, index=True)
    color: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )


class ArticleTagModel(Base):
    """Association between an article and a tag."""
    __tablename__ = "kb_article_tags"

    article_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("kb_articles.id", ondelete="CASCADE"),
        primary_key=True
    )
    tag_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("kb_tags.id", ondelete="CASCADE"),
        primary_key=True,
        index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )


class ArticleFeedbackModel(Base):
    """
    Database model for article feedback.

    One row per submission; the article keeps running counters.
    """
    __tablename__ = "kb_article_feedback"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    article_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("kb_articles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_helpful: Mapped[bool] = mapped_column(Boolean, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )

"""
Knowledge Base Infrastructure Repositories
==========================================

Concrete implementations of repository interfaces using SQLAlchemy.

Article and tag repositories work inside the request's session (one unit of
work per request). The vector store opens a short session per operation,
since embedding jobs run outside any request.
"""

import functools
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID, uuid4

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk_kb.config import ArticleStatus, DEFAULT_TAG_COLOR, EmbeddingField
from helpdesk_kb.core import RepositoryException, ValidationException
from helpdesk_kb.infrastructure.database import get_session_context
from helpdesk_kb.knowledge_base.application import (
    IArticleRepository,
    ITagRepository,
    IVectorStore,
)
from helpdesk_kb.knowledge_base.domain import (
    Article,
    EmbeddingSource,
    EmbeddingState,
    SearchCandidate,
    Tag,
)
from helpdesk_kb.knowledge_base.infrastructure.models import (
    ArticleFeedbackModel,
    ArticleModel,
    ArticleTagModel,
    TagModel,
)
from helpdesk_kb.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _to_uuid(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _wrap_db_errors(method: Callable) -> Callable:
    """Translate SQLAlchemy errors into RepositoryException."""
    @functools.wraps(method)
    async def wrapper(*args, **kwargs):
        try:
            return await method(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(
                "Database operation failed",
                extra={"operation": method.__qualname__, "error": str(e)}
            )
            raise RepositoryException(f"Database operation failed: {method.__name__}") from e
    return wrapper


def tag_slug(name: str) -> str:
    """Lowercased name with whitespace runs replaced by '-'."""
    return re.sub(r"\s+", "-", name.strip().lower())


def _tag_to_domain(model: TagModel) -> Tag:
    return Tag(
        id=str(model.id),
        name=model.name,
        slug=model.slug,
        color=model.color,
        description=model.description
    )


def _article_to_domain(model: ArticleModel, tags: Optional[List[Tag]] = None) -> Article:
    return Article(
        id=str(model.id),
        title=model.title,
        slug=model.slug,
        content=model.content,
        status=model.status,
        description=model.description,
        view_count=model.view_count,
        helpful_count=model.helpful_count,
        not_helpful_count=model.not_helpful_count,
        author_id=model.author_id,
        last_updated_by=model.last_updated_by,
        created_at=model.created_at,
        updated_at=model.updated_at,
        tags=tags or []
    )


class SQLAlchemyArticleRepository(IArticleRepository):
    """
    SQLAlchemy implementation of article repository.

    Never touches embedding columns; those belong to the vector store.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _tags_by_article(self, article_ids: List[UUID]) -> Dict[UUID, List[Tag]]:
        if not article_ids:
            return {}
        stmt = (
            select(ArticleTagModel.article_id, TagModel)
            .join(TagModel, TagModel.id == ArticleTagModel.tag_id)
            .where(ArticleTagModel.article_id.in_(article_ids))
            .order_by(TagModel.name)
        )
        result = await self._session.execute(stmt)
        tags: Dict[UUID, List[Tag]] = {}
        for article_id, tag in result.all():
            tags.setdefault(article_id, []).append(_tag_to_domain(tag))
        return tags

    @_wrap_db_errors
    async def get(self, article_id: str) -> Optional[Article]:
        """Get article by ID, with its tags."""
        article_uuid = _to_uuid(article_id)
        if article_uuid is None:
            return None

        model = await self._session.get(ArticleModel, article_uuid, populate_existing=True)
        if model is None:
            return None
        tags = await self._tags_by_article([model.id])
        return _article_to_domain(model, tags.get(model.id))

    @_wrap_db_errors
    async def list(
        self,
        page: int,
        limit: int,
        published_only: bool
    ) -> Tuple[List[Article], int]:
        """Page of articles, newest first."""
        filters = []
        if published_only:
            filters.append(ArticleModel.status == ArticleStatus.PUBLISHED)

        count_stmt = select(func.count()).select_from(ArticleModel).where(*filters)
        total = (await self._session.execute(count_stmt)).scalar_one()

        stmt = (
            select(ArticleModel)
            .where(*filters)
            .order_by(ArticleModel.created_at.desc(), ArticleModel.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        models = (await self._session.execute(stmt)).scalars().all()
        tags = await self._tags_by_article([m.id for m in models])
        return [_article_to_domain(m, tags.get(m.id)) for m in models], total

    @_wrap_db_errors
    async def create(self, data: dict, author_id: Optional[str]) -> Article:
        """Create new article."""
        now = datetime.now(timezone.utc)
        model = ArticleModel(
            id=uuid4(),
            title=data["title"],
            slug=data["slug"],
            description=data.get("description"),
            content=data["content"],
            status=data.get("status") or ArticleStatus.DRAFT,
            author_id=author_id,
            last_updated_by=author_id,
            created_at=now,
            updated_at=now
        )
        self._session.add(model)
        await self._session.flush()
        return _article_to_domain(model)

    @_wrap_db_errors
    async def update(self, article_id: str, changes: dict, editor_id: Optional[str]) -> Optional[Article]:
        """Apply changes to the editable article fields."""
        article_uuid = _to_uuid(article_id)
        if article_uuid is None:
            return None

        model = await self._session.get(ArticleModel, article_uuid)
        if model is None:
            return None

        for field in ("title", "slug", "description", "content", "status"):
            if field in changes:
                setattr(model, field, changes[field])
        model.last_updated_by = editor_id
        model.updated_at = datetime.now(timezone.utc)

        await self._session.flush()
        return _article_to_domain(model)

    @_wrap_db_errors
    async def delete(self, article_id: str) -> bool:
        """Delete article with its tag associations and feedback."""
        article_uuid = _to_uuid(article_id)
        if article_uuid is None:
            return False

        await self._session.execute(
            delete(ArticleTagModel).where(ArticleTagModel.article_id == article_uuid)
        )
        await self._session.execute(
            delete(ArticleFeedbackModel).where(ArticleFeedbackModel.article_id == article_uuid)
        )
        result = await self._session.execute(
            delete(ArticleModel).where(ArticleModel.id == article_uuid)
        )
        return result.rowcount > 0

    @_wrap_db_errors
    async def replace_tags(self, article_id: str, tag_ids: List[str]) -> None:
        """Replace all tag associations of an article."""
        article_uuid = _to_uuid(article_id)
        await self._session.execute(
            delete(ArticleTagModel).where(ArticleTagModel.article_id == article_uuid)
        )
        for tag_id in dict.fromkeys(tag_ids):
            self._session.add(ArticleTagModel(article_id=article_uuid, tag_id=_to_uuid(tag_id)))
        await self._session.flush()

    @_wrap_db_errors
    async def increment_view_count(self, article_id: str) -> None:
        await self._session.execute(
            update(ArticleModel)
            .where(ArticleModel.id == _to_uuid(article_id))
            .values(view_count=ArticleModel.view_count + 1)
        )

    @_wrap_db_errors
    async def add_feedback(
        self,
        article_id: str,
        is_helpful: bool,
        comment: Optional[str],
        user_id: Optional[str]
    ) -> None:
        """Store a feedback row and bump the matching counter."""
        article_uuid = _to_uuid(article_id)
        self._session.add(ArticleFeedbackModel(
            id=uuid4(),
            article_id=article_uuid,
            user_id=user_id,
            is_helpful=is_helpful,
            comment=comment
        ))
        if is_helpful:
            values = {"helpful_count": ArticleModel.helpful_count + 1}
        else:
            values = {"not_helpful_count": ArticleModel.not_helpful_count + 1}
        await self._session.execute(
            update(ArticleModel).where(ArticleModel.id == article_uuid).values(**values)
        )
        await self._session.flush()


class SQLAlchemyTagRepository(ITagRepository):
    """SQLAlchemy implementation of tag repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @_wrap_db_errors
    async def list(self) -> List[Tag]:
        result = await self._session.execute(select(TagModel).order_by(TagModel.name))
        return [_tag_to_domain(m) for m in result.scalars().all()]

    @_wrap_db_errors
    async def create(self, name: str, color: Optional[str], description: Optional[str]) -> Tag:
        """
        Create a tag; the slug is derived from the name.

        Raises:
            ValidationException: If a tag with the same slug exists
        """
        slug = tag_slug(name)
        existing = await self._session.execute(select(TagModel.id).where(TagModel.slug == slug))
        if existing.scalar_one_or_none() is not None:
            raise ValidationException(f"Tag '{name}' already exists")
        return _tag_to_domain(await self._insert(name, slug, color, description))

    async def _insert(
        self,
        name: str,
        slug: str,
        color: Optional[str] = None,
        description: Optional[str] = None
    ) -> TagModel:
        now = datetime.now(timezone.utc)
        model = TagModel(
            id=uuid4(),
            name=name,
            slug=slug,
            color=color or DEFAULT_TAG_COLOR,
            description=description,
            created_at=now,
            updated_at=now
        )
        self._session.add(model)
        await self._session.flush()
        return model

    @_wrap_db_errors
    async def resolve(self, refs: List[str]) -> List[str]:
        """Map tag ids or names to ids, creating tags for unknown names."""
        resolved: List[str] = []
        for ref in refs:
            if not isinstance(ref, str) or not ref.strip():
                raise ValidationException("Tag references must be non-empty strings")

            ref_uuid = _to_uuid(ref)
            if ref_uuid is not None:
                found = await self._session.get(TagModel, ref_uuid)
                if found is not None:
                    resolved.append(str(found.id))
                    continue

            name = ref.strip()
            slug = tag_slug(name)
            result = await self._session.execute(
                select(TagModel).where(or_(TagModel.slug == slug, TagModel.name == name))
            )
            model = result.scalars().first()
            if model is None:
                model = await self._insert(name, slug)
                logger.info("Tag created implicitly", extra={"tag_id": str(model.id), "slug": slug})
            resolved.append(str(model.id))
        return list(dict.fromkeys(resolved))

    @_wrap_db_errors
    async def existing_ids(self, tag_ids: List[str]) -> Set[str]:
        uuids = [u for u in (_to_uuid(t) for t in tag_ids) if u is not None]
        if not uuids:
            return set()
        result = await self._session.execute(select(TagModel.id).where(TagModel.id.in_(uuids)))
        return {str(tag_id) for tag_id in result.scalars().all()}

    @_wrap_db_errors
    async def get_used_tag_ids(self) -> Set[str]:
        result = await self._session.execute(select(ArticleTagModel.tag_id).distinct())
        return {str(tag_id) for tag_id in result.scalars().all()}

    @_wrap_db_errors
    async def get_tag_ids_excluding(self, used_tag_ids: Set[str]) -> List[str]:
        stmt = select(TagModel.id).order_by(TagModel.id)
        used = [_to_uuid(t) for t in used_tag_ids]
        if used:
            stmt = stmt.where(TagModel.id.not_in(used))
        result = await self._session.execute(stmt)
        return [str(tag_id) for tag_id in result.scalars().all()]

    @_wrap_db_errors
    async def delete_many(self, tag_ids: List[str]) -> int:
        if not tag_ids:
            return 0
        result = await self._session.execute(
            delete(TagModel).where(TagModel.id.in_([_to_uuid(t) for t in tag_ids]))
        )
        return result.rowcount


class SQLAlchemyVectorStore(IVectorStore):
    """
    Vector store backed by the embedding columns of ``kb_articles``.

    Each method runs in its own short transaction.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @_wrap_db_errors
    async def get_embedding_source(self, article_id: str) -> Optional[EmbeddingSource]:
        article_uuid = _to_uuid(article_id)
        if article_uuid is None:
            return None

        async with get_session_context(self._session_maker) as session:
            result = await session.execute(
                select(ArticleModel.title, ArticleModel.content, ArticleModel.description)
                .where(ArticleModel.id == article_uuid)
            )
            row = result.one_or_none()

        if row is None:
            return None
        return EmbeddingSource(
            article_id=str(article_uuid),
            title=row.title,
            content=row.content,
            description=row.description
        )

    @_wrap_db_errors
    async def get_embedding_state(self, article_id: str) -> Optional[EmbeddingState]:
        article_uuid = _to_uuid(article_id)
        if article_uuid is None:
            return None

        async with get_session_context(self._session_maker) as session:
            result = await session.execute(
                select(
                    ArticleModel.metadata_embedding,
                    ArticleModel.content_embedding,
                    ArticleModel.is_metadata_embedding_in_progress,
                    ArticleModel.is_content_embedding_in_progress,
                ).where(ArticleModel.id == article_uuid)
            )
            row = result.one_or_none()

        if row is None:
            return None
        return EmbeddingState(
            article_id=str(article_uuid),
            metadata_embedding=row.metadata_embedding,
            content_embedding=row.content_embedding,
            is_metadata_embedding_in_progress=row.is_metadata_embedding_in_progress,
            is_content_embedding_in_progress=row.is_content_embedding_in_progress
        )

    async def _update(self, article_id: str, **values: Any) -> bool:
        article_uuid = _to_uuid(article_id)
        if article_uuid is None:
            return False
        async with get_session_context(self._session_maker) as session:
            result = await session.execute(
                update(ArticleModel).where(ArticleModel.id == article_uuid).values(**values)
            )
        return result.rowcount > 0

    @_wrap_db_errors
    async def set_in_progress(self, article_id: str, in_progress: bool) -> bool:
        return await self._update(
            article_id,
            is_metadata_embedding_in_progress=in_progress,
            is_content_embedding_in_progress=in_progress
        )

    @_wrap_db_errors
    async def save_embeddings(
        self,
        article_id: str,
        metadata_embedding: List[float],
        content_embedding: List[float]
    ) -> bool:
        return await self._update(
            article_id,
            metadata_embedding=list(metadata_embedding),
            content_embedding=list(content_embedding),
            is_metadata_embedding_in_progress=False,
            is_content_embedding_in_progress=False
        )

    @_wrap_db_errors
    async def list_candidates(
        self,
        field: str,
        include_unpublished: bool = False
    ) -> List[SearchCandidate]:
        column = (
            ArticleModel.metadata_embedding
            if field == EmbeddingField.METADATA
            else ArticleModel.content_embedding
        )
        stmt = select(ArticleModel.id, ArticleModel.title, ArticleModel.content, column).where(
            column.is_not(None)
        )
        if not include_unpublished:
            stmt = stmt.where(ArticleModel.status == ArticleStatus.PUBLISHED)

        async with get_session_context(self._session_maker) as session:
            rows = (await session.execute(stmt)).all()

        return [
            SearchCandidate(
                article_id=str(article_id),
                title=title,
                content=content,
                embedding=embedding
            )
            for article_id, title, content, embedding in rows
            if embedding
        ]

    @_wrap_db_errors
    async def list_in_progress(self) -> List[str]:
        stmt = select(ArticleModel.id).where(
            or_(
                ArticleModel.is_metadata_embedding_in_progress.is_(True),
                ArticleModel.is_content_embedding_in_progress.is_(True),
            )
        )
        async with get_session_context(self._session_maker) as session:
            result = await session.execute(stmt)
            return [str(article_id) for article_id in result.scalars().all()]

    @_wrap_db_errors
    async def clear_in_progress(self, article_ids: Iterable[str]) -> int:
        uuids = [u for u in (_to_uuid(a) for a in article_ids) if u is not None]
        if not uuids:
            return 0
        async with get_session_context(self._session_maker) as session:
            result = await session.execute(
                update(ArticleModel)
                .where(ArticleModel.id.in_(uuids))
                .values(is_metadata_embedding_in_progress=False, is_content_embedding_in_progress=False)
            )
        return result.rowcount

"""
Knowledge Base Dispatcher
=========================

Routes ``(method, path, params, body)`` requests to the knowledge-base
services and repositories.

One dispatcher is built per request around that request's unit of work.
Writes that change an article's text are committed before embedding
generation is scheduled, so the background job always sees the saved row.
"""

import math
import secrets
import string
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from helpdesk_kb.config import EmbeddingField
from helpdesk_kb.core import (
    NotFoundException,
    ResourceNotFoundException,
    UnauthorizedException,
    ValidationException,
)
from helpdesk_kb.knowledge_base.application.dto import (
    ArticleCreateRequest,
    ArticleListResponse,
    ArticleResponse,
    ArticleUpdateRequest,
    DispatchResult,
    PaginationInfo,
    SearchResultResponse,
    TagCreateRequest,
    TagReplaceRequest,
    TagResponse,
)
from helpdesk_kb.knowledge_base.application.services import (
    EmbeddingGenerator,
    IArticleRepository,
    ITagRepository,
    SimilaritySearchEngine,
    TagSweeper,
)
from helpdesk_kb.knowledge_base.domain import Article
from helpdesk_kb.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Fields whose change makes the stored embeddings stale
EMBEDDED_FIELDS = ("title", "description", "content")

MAX_PAGE_SIZE = 100
SLUG_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class Caller:
    """Identity of whoever sent the request, as resolved by the editor directory."""
    user_id: Optional[str] = None
    is_editor: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


ANONYMOUS = Caller()


def unique_slug(slug: str) -> str:
    """Append a random 6 character base-36 suffix."""
    suffix = "".join(secrets.choice(SLUG_SUFFIX_ALPHABET) for _ in range(6))
    return f"{slug}-{suffix}"


def _parse(model: type, body: Optional[Dict[str, Any]]) -> Any:
    """Validate a request body, turning pydantic errors into ValidationException."""
    try:
        return model.model_validate(body or {})
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")
        raise ValidationException(message, details={"errors": e.errors(include_url=False)})


def _int_param(params: Dict[str, Any], name: str, default: int) -> int:
    value = params.get(name, default)
    if isinstance(value, bool):
        raise ValidationException(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationException(f"{name} must be an integer")


def _dump(model: BaseModel) -> Any:
    return model.model_dump(mode="json")


class KnowledgeBaseDispatcher:
    """
    Dispatch façade over the knowledge base.

    Path grammar is ``<resource>[/<id>][/<sub>]``; anything that matches no
    route raises NotFound("Not found").
    """

    def __init__(
        self,
        articles: IArticleRepository,
        tags: ITagRepository,
        generator: EmbeddingGenerator,
        search_engine: SimilaritySearchEngine,
        commit: Callable[[], Awaitable[None]],
        default_limit: int = 10,
        default_threshold: float = 0.5
    ):
        self._articles = articles
        self._tags = tags
        self._generator = generator
        self._search = search_engine
        self._sweeper = TagSweeper(tags)
        self._commit = commit
        self._default_limit = default_limit
        self._default_threshold = default_threshold

    async def dispatch(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        caller: Caller = ANONYMOUS
    ) -> DispatchResult:
        """
        Route one request.

        Raises:
            ValidationException: Malformed input (400)
            UnauthorizedException: Write without editor privilege (401/403)
            NotFoundException: Unknown route or missing article (404)
            ProviderUnavailableException: Search could not embed the query (503)
            RepositoryException: Persistence failure (500)
        """
        params = params or {}
        method = method.upper()
        resource, resource_id, sub = self._split_path(path)

        logger.debug(
            "Dispatching knowledge-base request",
            extra={"method": method, "resource": resource, "sub": sub, "is_editor": caller.is_editor}
        )

        if resource == "articles":
            if resource_id is None:
                if method == "GET":
                    return await self.list_articles(params, caller)
                if method == "POST":
                    return await self.create_article(body, caller)
            elif sub is None:
                if method == "GET":
                    return await self.get_article(resource_id, caller)
                if method == "PUT":
                    return await self.update_article(resource_id, body, caller)
                if method == "DELETE":
                    return await self.delete_article(resource_id, caller)
            elif sub == "tags" and method == "PUT":
                return await self.replace_article_tags(resource_id, body, caller)
            elif sub == "feedback" and method == "POST":
                return await self.submit_feedback(resource_id, body, caller)

        elif resource == "tags" and resource_id is None:
            if method == "GET":
                return await self.list_tags()
            if method == "POST":
                return await self.create_tag(body, caller)

        elif resource == "search" and resource_id is None and method == "POST":
            return await self.search(body, caller)

        raise NotFoundException()

    # ========== Articles ==========

    async def list_articles(self, params: Dict[str, Any], caller: Caller) -> DispatchResult:
        page = max(_int_param(params, "page", 1), 1)
        limit = min(max(_int_param(params, "limit", 10), 1), MAX_PAGE_SIZE)

        articles, total = await self._articles.list(page, limit, published_only=not caller.is_editor)
        response = ArticleListResponse(
            data=[ArticleResponse.from_domain(a) for a in articles],
            pagination=PaginationInfo(
                total=total,
                total_pages=math.ceil(total / limit),
                page=page,
                page_size=limit
            )
        )
        return DispatchResult(payload=_dump(response))

    async def get_article(self, article_id: str, caller: Caller) -> DispatchResult:
        article = await self._get_visible(article_id, caller)
        if not caller.is_editor:
            await self._articles.increment_view_count(article_id)
            article.view_count += 1
        return DispatchResult(payload=_dump(ArticleResponse.from_domain(article)))

    async def create_article(self, body: Optional[Dict[str, Any]], caller: Caller) -> DispatchResult:
        self._require_editor(caller)
        body = body or {}
        if not all(body.get(key) for key in ("title", "content", "slug")):
            raise ValidationException("Title, content, and slug are required")
        request = _parse(ArticleCreateRequest, body)

        data = request.model_dump(exclude={"tags"})
        data["slug"] = unique_slug(request.slug)
        article = await self._articles.create(data, author_id=caller.user_id)

        if request.tags:
            tag_ids = await self._tags.resolve(request.tags)
            await self._articles.replace_tags(article.id, tag_ids)

        created = await self._load(article.id)
        await self._commit()

        logger.info("Article created", extra={"article_id": article.id, "editor_id": caller.user_id})
        self._generator.generate(article.id)
        return DispatchResult(status_code=201, payload=_dump(ArticleResponse.from_domain(created)))

    async def update_article(
        self,
        article_id: str,
        body: Optional[Dict[str, Any]],
        caller: Caller
    ) -> DispatchResult:
        self._require_editor(caller)
        existing = await self._load(article_id)
        request = _parse(ArticleUpdateRequest, body)

        changes = request.model_dump(exclude_unset=True, exclude={"tags"})
        if "slug" in changes:
            if changes["slug"] == existing.slug:
                del changes["slug"]
            else:
                changes["slug"] = unique_slug(changes["slug"])
        text_changed = any(
            field in changes and changes[field] != getattr(existing, field)
            for field in EMBEDDED_FIELDS
        )

        if changes:
            await self._articles.update(article_id, changes, editor_id=caller.user_id)
        if request.tags is not None:
            tag_ids = await self._tags.resolve(request.tags)
            await self._articles.replace_tags(article_id, tag_ids)
            await self._sweeper.sweep()

        updated = await self._load(article_id)
        await self._commit()

        logger.info(
            "Article updated",
            extra={"article_id": article_id, "fields": sorted(changes), "reembed": text_changed}
        )
        if text_changed:
            self._generator.generate(article_id)
        return DispatchResult(payload=_dump(ArticleResponse.from_domain(updated)))

    async def replace_article_tags(
        self,
        article_id: str,
        body: Optional[Dict[str, Any]],
        caller: Caller
    ) -> DispatchResult:
        self._require_editor(caller)
        await self._load(article_id)
        request = _parse(TagReplaceRequest, body)

        tag_ids = list(dict.fromkeys(request.tag_ids))
        known = await self._tags.existing_ids(tag_ids)
        unknown = [t for t in tag_ids if t not in known]
        if unknown:
            raise ValidationException(f"Unknown tag ids: {', '.join(unknown)}")

        await self._articles.replace_tags(article_id, tag_ids)
        removed = await self._sweeper.sweep()
        updated = await self._load(article_id)
        await self._commit()

        logger.info(
            "Article tags replaced",
            extra={"article_id": article_id, "tag_count": len(tag_ids), "tags_removed": len(removed)}
        )
        return DispatchResult(payload=_dump(ArticleResponse.from_domain(updated)))

    async def delete_article(self, article_id: str, caller: Caller) -> DispatchResult:
        self._require_editor(caller)
        if not await self._articles.delete(article_id):
            raise ResourceNotFoundException("Article", article_id)
        removed = await self._sweeper.sweep()
        await self._commit()

        logger.info("Article deleted", extra={"article_id": article_id, "tags_removed": len(removed)})
        return DispatchResult(status_code=204)

    async def submit_feedback(
        self,
        article_id: str,
        body: Optional[Dict[str, Any]],
        caller: Caller
    ) -> DispatchResult:
        body = body or {}
        is_helpful = body.get("isHelpful")
        if not isinstance(is_helpful, bool):
            raise ValidationException("isHelpful must be a boolean")
        comment = body.get("comment")
        if comment is not None and not isinstance(comment, str):
            raise ValidationException("comment must be a string")

        await self._get_visible(article_id, caller)
        await self._articles.add_feedback(article_id, is_helpful, comment, caller.user_id)
        article = await self._load(article_id)
        await self._commit()

        return DispatchResult(
            status_code=201,
            payload={
                "id": article.id,
                "helpful_count": article.helpful_count,
                "not_helpful_count": article.not_helpful_count,
            }
        )

    # ========== Tags ==========

    async def list_tags(self) -> DispatchResult:
        tags = await self._tags.list()
        return DispatchResult(payload=[_dump(TagResponse.from_domain(t)) for t in tags])

    async def create_tag(self, body: Optional[Dict[str, Any]], caller: Caller) -> DispatchResult:
        self._require_editor(caller)
        body = body or {}
        if not isinstance(body.get("name"), str) or not body["name"].strip():
            raise ValidationException("Tag name is required")
        request = _parse(TagCreateRequest, body)

        tag = await self._tags.create(request.name, request.color, request.description)
        await self._commit()

        logger.info("Tag created", extra={"tag_id": tag.id, "slug": tag.slug})
        return DispatchResult(status_code=201, payload=_dump(TagResponse.from_domain(tag)))

    # ========== Search ==========

    async def search(self, body: Optional[Dict[str, Any]], caller: Caller) -> DispatchResult:
        body = body or {}
        results = await self._search.search(
            body.get("query"),
            limit=body.get("limit", self._default_limit),
            similarity_threshold=body.get("similarityThreshold", self._default_threshold),
            field=body.get("field") or EmbeddingField.CONTENT,
            include_unpublished=caller.is_editor
        )
        return DispatchResult(payload=[_dump(SearchResultResponse.from_domain(r)) for r in results])

    # ========== Helpers ==========

    @staticmethod
    def _split_path(path: str) -> Tuple[str, Optional[str], Optional[str]]:
        parts: List[Optional[str]] = [p for p in (path or "").strip("/").split("/") if p]
        if len(parts) > 3:
            raise NotFoundException()
        parts += [None] * (3 - len(parts))
        return parts[0] or "", parts[1], parts[2]

    @staticmethod
    def _require_editor(caller: Caller) -> None:
        if not caller.is_authenticated:
            raise UnauthorizedException("Unauthorized", status_code=401)
        if not caller.is_editor:
            raise UnauthorizedException("Only agents can modify articles", status_code=403)

    async def _load(self, article_id: str) -> Article:
        article = await self._articles.get(article_id)
        if article is None:
            raise ResourceNotFoundException("Article", article_id)
        return article

    async def _get_visible(self, article_id: str, caller: Caller) -> Article:
        article = await self._load(article_id)
        if not caller.is_editor and not article.is_published:
            raise ResourceNotFoundException("Article", article_id)
        return article

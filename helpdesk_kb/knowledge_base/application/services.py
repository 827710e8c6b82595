"""
Knowledge Base Application Services
===================================

Application services for the embedding pipeline and semantic search.

Orchestrates business logic between domain entities, the vector store and
the embedding provider. Every collaborator is passed in through the
constructor so each service can be exercised with fakes.
"""

import asyncio
import math
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Set, Tuple

from helpdesk_kb.config import EmbeddingField, VALID_EMBEDDING_FIELDS
from helpdesk_kb.core import (
    ProviderUnavailableException,
    RepositoryException,
    ValidationException,
)
from helpdesk_kb.infrastructure.tasks import JobQueue
from helpdesk_kb.knowledge_base.domain import (
    Article,
    EmbeddingSource,
    EmbeddingState,
    FirstReplyDraft,
    GenerationAck,
    SearchCandidate,
    SearchResult,
    Tag,
    rank_candidates,
)
from helpdesk_kb.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)


# ========== Collaborator Interfaces ==========

class IEmbeddingProvider(ABC):
    """Maps text to a fixed-length float vector."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Return the embedding of ``text``."""


class IChatClient(ABC):
    """Interface for chat completion used to draft first replies."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float,
        max_tokens: int,
        operation: str = "chat_completion"
    ) -> Any:
        """Generate chat completion; the result exposes ``content``."""


class IVectorStore(ABC):
    """
    Per-article embedding vectors and in-progress flags.

    Every write is a single UPDATE of whole fields, so concurrent writers
    never interleave partial state: the last write wins.
    """

    @abstractmethod
    async def get_embedding_source(self, article_id: str) -> Optional[EmbeddingSource]:
        """Load the texts to embed, or None if the article does not exist."""

    @abstractmethod
    async def get_embedding_state(self, article_id: str) -> Optional[EmbeddingState]:
        """Load stored vectors and flags."""

    @abstractmethod
    async def set_in_progress(self, article_id: str, in_progress: bool) -> bool:
        """Set both in-progress flags. Returns False if the article is gone."""

    @abstractmethod
    async def save_embeddings(
        self,
        article_id: str,
        metadata_embedding: List[float],
        content_embedding: List[float]
    ) -> bool:
        """Write both vectors and clear both flags in one update."""

    @abstractmethod
    async def list_candidates(
        self,
        field: str,
        include_unpublished: bool = False
    ) -> List[SearchCandidate]:
        """Articles with a non-null embedding on ``field``."""

    @abstractmethod
    async def list_in_progress(self) -> List[str]:
        """Ids of articles with at least one in-progress flag set."""

    @abstractmethod
    async def clear_in_progress(self, article_ids: Iterable[str]) -> int:
        """Clear both flags for the given articles."""


class IArticleRepository(ABC):
    """Interface for article data access within one unit of work."""

    @abstractmethod
    async def get(self, article_id: str) -> Optional[Article]:
        """Get article (with tags) by id."""

    @abstractmethod
    async def list(
        self,
        page: int,
        limit: int,
        published_only: bool
    ) -> Tuple[List[Article], int]:
        """Page of articles, newest first, plus the total count."""

    @abstractmethod
    async def create(self, data: dict, author_id: Optional[str]) -> Article:
        """Insert a new article."""

    @abstractmethod
    async def update(self, article_id: str, changes: dict, editor_id: Optional[str]) -> Optional[Article]:
        """Apply field changes; None if the article does not exist."""

    @abstractmethod
    async def delete(self, article_id: str) -> bool:
        """Delete the article and its tag associations."""

    @abstractmethod
    async def replace_tags(self, article_id: str, tag_ids: List[str]) -> None:
        """Replace the article's tag associations wholesale."""

    @abstractmethod
    async def increment_view_count(self, article_id: str) -> None:
        """Count one view."""

    @abstractmethod
    async def add_feedback(
        self,
        article_id: str,
        is_helpful: bool,
        comment: Optional[str],
        user_id: Optional[str]
    ) -> None:
        """Store feedback and bump the helpful / not-helpful counter."""


class ITagRepository(ABC):
    """Interface for tag data access within one unit of work."""

    @abstractmethod
    async def list(self) -> List[Tag]:
        """All tags ordered by name."""

    @abstractmethod
    async def create(self, name: str, color: Optional[str], description: Optional[str]) -> Tag:
        """Insert a tag."""

    @abstractmethod
    async def resolve(self, refs: List[str]) -> List[str]:
        """
        Turn tag references into tag ids.

        A reference is an existing tag id or, failing that, a tag name; names
        that match no tag create one.
        """

    @abstractmethod
    async def existing_ids(self, tag_ids: List[str]) -> Set[str]:
        """Subset of ``tag_ids`` that exist."""

    @abstractmethod
    async def get_used_tag_ids(self) -> Set[str]:
        """Ids of tags with at least one article association."""

    @abstractmethod
    async def get_tag_ids_excluding(self, used_tag_ids: Set[str]) -> List[str]:
        """Ids of all tags not in ``used_tag_ids``."""

    @abstractmethod
    async def delete_many(self, tag_ids: List[str]) -> int:
        """Delete the given tags."""


# ========== Helpers ==========

async def embed_with_timeout(
    provider: IEmbeddingProvider,
    text: str,
    timeout: float
) -> List[float]:
    """
    Call the provider with a deadline.

    Raises:
        ProviderUnavailableException: On provider error or timeout
    """
    try:
        return await asyncio.wait_for(provider.embed(text), timeout=timeout)
    except asyncio.TimeoutError:
        raise ProviderUnavailableException(f"Embedding request timed out after {timeout}s")
    except ProviderUnavailableException:
        raise
    except Exception as e:
        raise ProviderUnavailableException(f"Embedding request failed: {e}")


async def embed_all(
    provider: IEmbeddingProvider,
    texts: List[str],
    timeout: float
) -> List[List[float]]:
    """
    Embed several texts concurrently. The first failure cancels the other
    requests still in flight and is re-raised.
    """
    tasks = [asyncio.create_task(embed_with_timeout(provider, text, timeout)) for text in texts]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


# ========== Application Services ==========

class EmbeddingGenerator:
    """
    Computes and persists both embeddings of an article.

    ``generate`` only schedules a job on the queue and returns at once;
    ``run`` is the job body executed by a queue worker.

    Flag discipline: once ``run`` has set the in-progress flags, every exit
    path clears them again - success (in the same write as the vectors),
    failure, and cancellation at shutdown.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        store: IVectorStore,
        jobs: JobQueue,
        timeout: float = 30.0
    ):
        self._provider = provider
        self._store = store
        self._jobs = jobs
        self._timeout = timeout

    def generate(self, article_id: str) -> GenerationAck:
        """Schedule embedding generation for an article (fire-and-forget)."""
        scheduled = self._jobs.submit(article_id)
        if scheduled:
            logger.info("Embedding generation scheduled", extra={"article_id": article_id})
        else:
            logger.warning("Embedding generation not scheduled", extra={"article_id": article_id})
        return GenerationAck(article_id=article_id, scheduled=scheduled)

    async def run(self, article_id: str) -> bool:
        """
        Generate and store both embeddings for one article.

        Returns:
            True if new vectors were stored
        """
        try:
            source = await self._store.get_embedding_source(article_id)
        except RepositoryException as e:
            logger.error("Failed to load article for embedding", extra={"article_id": article_id, "error": str(e)})
            return False

        if source is None:
            logger.warning("Article not found, embedding job skipped", extra={"article_id": article_id})
            return False

        # Without the flags set we do not call the provider at all
        try:
            if not await self._store.set_in_progress(article_id, True):
                logger.warning("Article vanished before embedding started", extra={"article_id": article_id})
                return False
        except RepositoryException as e:
            logger.error(
                "Failed to mark article as in progress, job aborted",
                extra={"article_id": article_id, "error": str(e)}
            )
            return False

        try:
            with log_latency(logger, "embedding_generation", article_id=article_id):
                metadata_embedding, content_embedding = await embed_all(
                    self._provider,
                    [source.metadata_text, source.content_text],
                    self._timeout
                )
            saved = await self._store.save_embeddings(article_id, metadata_embedding, content_embedding)
        except asyncio.CancelledError:
            logger.warning("Embedding job cancelled, resetting flags", extra={"article_id": article_id})
            await asyncio.shield(self.release(article_id))
            raise
        except Exception as e:
            logger.error(
                "Embedding generation failed",
                extra={"article_id": article_id, "error_type": type(e).__name__, "error": str(e)}
            )
            await self.release(article_id)
            return False

        if saved:
            logger.info(
                "Embeddings saved",
                extra={"article_id": article_id, "dimension": len(content_embedding)}
            )
        else:
            logger.warning("Article deleted while embedding was in progress", extra={"article_id": article_id})
        return saved

    async def release(self, article_id: str) -> None:
        """Best-effort reset of both in-progress flags; never raises."""
        try:
            await self._store.set_in_progress(article_id, False)
        except Exception as e:
            logger.error(
                "Failed to reset in-progress flags",
                extra={"article_id": article_id, "error": str(e)}
            )


class SimilaritySearchEngine:
    """
    Ranks stored articles against a free-text query.

    The query is embedded once; candidates are scored with cosine
    similarity, filtered by threshold, ordered and truncated.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        store: IVectorStore,
        timeout: float = 30.0,
        max_limit: int = 100
    ):
        self._provider = provider
        self._store = store
        self._timeout = timeout
        self._max_limit = max_limit

    async def search(
        self,
        query_text: str,
        limit: int = 10,
        similarity_threshold: float = 0.5,
        field: str = EmbeddingField.CONTENT,
        include_unpublished: bool = False
    ) -> List[SearchResult]:
        """
        Search articles by semantic similarity.

        Args:
            query_text: Free-text query, must not be blank
            limit: Maximum number of results
            similarity_threshold: Minimum cosine similarity to keep a hit
            field: ``content`` or ``metadata`` embedding to compare against
            include_unpublished: Also rank drafts and archived articles

        Returns:
            Results ordered by similarity descending (empty if none qualify)

        Raises:
            ValidationException: On blank query or malformed limit/threshold
            ProviderUnavailableException: If the query cannot be embedded
        """
        self._validate(query_text, limit, similarity_threshold, field)
        limit = min(limit, self._max_limit)

        query_embedding = await embed_with_timeout(self._provider, query_text, self._timeout)
        candidates = await self._store.list_candidates(field, include_unpublished=include_unpublished)

        comparable = []
        for candidate in candidates:
            if len(candidate.embedding) != len(query_embedding):
                logger.warning(
                    "Skipping article with mismatched embedding dimension",
                    extra={"article_id": candidate.article_id, "dimension": len(candidate.embedding)}
                )
                continue
            comparable.append(candidate)

        results = rank_candidates(query_embedding, comparable, limit, similarity_threshold)

        logger.info(
            "Search completed",
            extra={
                "field": field,
                "candidates": len(comparable),
                "results": len(results),
                "limit": limit,
                "similarity_threshold": similarity_threshold
            }
        )
        return results

    @staticmethod
    def _validate(query_text: Any, limit: Any, similarity_threshold: Any, field: Any) -> None:
        if not isinstance(query_text, str) or not query_text.strip():
            raise ValidationException("Search query is required")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationException("Search limit must be a positive integer")
        if (
            isinstance(similarity_threshold, bool)
            or not isinstance(similarity_threshold, (int, float))
            or math.isnan(similarity_threshold)
        ):
            raise ValidationException("Similarity threshold must be a number")
        if field not in VALID_EMBEDDING_FIELDS:
            raise ValidationException(f"Search field must be one of {VALID_EMBEDDING_FIELDS}")


class TagSweeper:
    """
    Deletes tags that no article references any more.

    Runs inside the caller's unit of work so the sweep commits together
    with the mutation that made tags unused.
    """

    def __init__(self, tag_repository: ITagRepository):
        self._tags = tag_repository

    async def sweep(self) -> List[str]:
        """
        Delete every tag with zero associations.

        When no tag is used at all, every tag is eligible. Only the ids read
        here are deleted; a tag attached concurrently after the read may be
        removed or retained, both of which are acceptable for tags.

        Returns:
            Ids of the deleted tags
        """
        used = await self._tags.get_used_tag_ids()
        unused = await self._tags.get_tag_ids_excluding(used)
        if not unused:
            return []

        await self._tags.delete_many(unused)
        logger.info("Unused tags removed", extra={"count": len(unused), "tag_ids": unused})
        return unused


class StuckFlagReaper:
    """
    Clears in-progress flags that no queued or running job accounts for.

    Run once at startup (when nothing can be running, so every set flag is
    a leftover from a crash) and periodically afterwards.

    Only jobs in this process's queue count as pending, so the service must
    run as a single process. Under several uvicorn workers a sibling's
    running job would have its flags cleared.
    """

    def __init__(self, store: IVectorStore, jobs: Optional[JobQueue] = None):
        self._store = store
        self._jobs = jobs

    async def reap(self) -> List[str]:
        """
        Returns:
            Ids of the articles whose flags were cleared
        """
        flagged = await self._store.list_in_progress()
        orphaned = [
            article_id for article_id in flagged
            if self._jobs is None or not self._jobs.is_pending(article_id)
        ]
        if orphaned:
            await self._store.clear_in_progress(orphaned)
            logger.warning("Cleared orphaned in-progress flags", extra={"article_ids": orphaned})
        return orphaned


DEFAULT_FIRST_REPLY = (
    "Thank you for your message. I'll look into this and get back to you as soon as possible."
)


class FirstReplyDrafter:
    """
    Drafts the automatic first reply to a new ticket.

    Searches the knowledge base with the ticket title and message, then asks
    the chat model to compose a reply grounded in the matching articles.
    """

    SYSTEM_PROMPT = (
        "You are a helpful customer service agent. Using the provided knowledge base articles, "
        "generate a helpful response to the customer's ticket. If the articles don't fully address "
        "their issue, acknowledge this and assure them an agent will follow up. "
        "Be concise but friendly."
    )

    def __init__(
        self,
        search_engine: SimilaritySearchEngine,
        chat_client: IChatClient,
        temperature: float = 0.7,
        max_tokens: int = 500
    ):
        self._search = search_engine
        self._chat = chat_client
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def draft(
        self,
        ticket_title: str,
        ticket_message: str,
        similarity_threshold: float = 0.0,
        max_articles: int = 3
    ) -> FirstReplyDraft:
        """
        Draft a reply for a ticket.

        Raises:
            ProviderUnavailableException: If the knowledge base cannot be searched
            LLMException: If the chat model call fails
        """
        articles = await self._search.search(
            f"{ticket_title}\n{ticket_message}",
            limit=max_articles,
            similarity_threshold=similarity_threshold
        )

        if not articles:
            return FirstReplyDraft(message=DEFAULT_FIRST_REPLY, relevant_articles=[])

        messages = [
            {"role": "system", "content": self.SYSTEM_PROMPT},
            {"role": "user", "content": self._build_prompt(ticket_title, ticket_message, articles)}
        ]
        response = await self._chat.chat_completion(
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            operation="first_reply"
        )

        message = (response.content or "").strip() or DEFAULT_FIRST_REPLY
        return FirstReplyDraft(message=message, relevant_articles=articles)

    @staticmethod
    def _build_prompt(ticket_title: str, ticket_message: str, articles: List[SearchResult]) -> str:
        articles_context = "\n\n".join(
            f"Article {i}:\nTitle: {article.title}\nContent: {article.content}"
            for i, article in enumerate(articles, 1)
        )
        return f"""Customer Ticket:
Subject: {ticket_title}
Message: {ticket_message}

Knowledge Base Articles:
{articles_context}

Generate a helpful response to the customer."""

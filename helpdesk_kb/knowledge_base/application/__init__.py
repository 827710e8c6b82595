"""
Knowledge Base Application Layer
================================

Application layer for the knowledge-base module.

Contains:
- Services: embedding generation, similarity search, tag sweeping,
  stuck flag reaping and first reply drafting
- Dispatcher: the ``(method, path, params, body)`` façade
- DTOs: Data transfer objects for API serialization
"""

from helpdesk_kb.knowledge_base.application.dto import (
    DispatchRequest,
    DispatchResult,
    ArticleCreateRequest,
    ArticleUpdateRequest,
    TagReplaceRequest,
    TagCreateRequest,
    ArticleResponse,
    ArticleListResponse,
    TagResponse,
    PaginationInfo,
    SearchResultResponse,
)
from helpdesk_kb.knowledge_base.application.services import (
    IEmbeddingProvider,
    IChatClient,
    IVectorStore,
    IArticleRepository,
    ITagRepository,
    EmbeddingGenerator,
    SimilaritySearchEngine,
    TagSweeper,
    StuckFlagReaper,
    FirstReplyDrafter,
    DEFAULT_FIRST_REPLY,
    embed_all,
    embed_with_timeout,
)
from helpdesk_kb.knowledge_base.application.dispatcher import (
    ANONYMOUS,
    Caller,
    KnowledgeBaseDispatcher,
    unique_slug,
)

__all__ = [
    # DTOs
    "DispatchRequest",
    "DispatchResult",
    "ArticleCreateRequest",
    "ArticleUpdateRequest",
    "TagReplaceRequest",
    "TagCreateRequest",
    "ArticleResponse",
    "ArticleListResponse",
    "TagResponse",
    "PaginationInfo",
    "SearchResultResponse",
    # Interfaces
    "IEmbeddingProvider",
    "IChatClient",
    "IVectorStore",
    "IArticleRepository",
    "ITagRepository",
    # Services
    "EmbeddingGenerator",
    "SimilaritySearchEngine",
    "TagSweeper",
    "StuckFlagReaper",
    "FirstReplyDrafter",
    "DEFAULT_FIRST_REPLY",
    "embed_all",
    "embed_with_timeout",
    # Dispatcher
    "ANONYMOUS",
    "Caller",
    "KnowledgeBaseDispatcher",
    "unique_slug",
]

"""
Knowledge Base Infrastructure Layer
===================================

Infrastructure implementations for the knowledge-base module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: Data access implementations and the vector store
- External: External service adapters (embeddings, chat, editor directory, scheduler)
"""

from helpdesk_kb.knowledge_base.infrastructure.models import (
    ArticleModel,
    TagModel,
    ArticleTagModel,
    ArticleFeedbackModel,
)
from helpdesk_kb.knowledge_base.infrastructure.repositories import (
    SQLAlchemyArticleRepository,
    SQLAlchemyTagRepository,
    SQLAlchemyVectorStore,
    tag_slug,
)
from helpdesk_kb.knowledge_base.infrastructure.external import (
    EmbeddingProviderAdapter,
    LLMClientAdapter,
    SettingsEditorDirectory,
    FlagReaperScheduler,
)

__all__ = [
    "ArticleModel",
    "TagModel",
    "ArticleTagModel",
    "ArticleFeedbackModel",
    "SQLAlchemyArticleRepository",
    "SQLAlchemyTagRepository",
    "SQLAlchemyVectorStore",
    "tag_slug",
    "EmbeddingProviderAdapter",
    "LLMClientAdapter",
    "SettingsEditorDirectory",
    "FlagReaperScheduler",
]

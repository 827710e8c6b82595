"""
Knowledge Base Domain Layer
===========================

Domain layer for the knowledge-base module.

Contains:
- Entities: Article, Tag, embedding state, search results, reply drafts
- Similarity: cosine similarity and ranking

This layer is framework-agnostic and contains pure business logic.
"""

from helpdesk_kb.knowledge_base.domain.entities import (
    Article,
    Tag,
    EmbeddingSource,
    EmbeddingState,
    SearchCandidate,
    SearchResult,
    GenerationAck,
    FirstReplyDraft,
)
from helpdesk_kb.knowledge_base.domain.similarity import cosine_similarity, rank_candidates

__all__ = [
    "Article",
    "Tag",
    "EmbeddingSource",
    "EmbeddingState",
    "SearchCandidate",
    "SearchResult",
    "GenerationAck",
    "FirstReplyDraft",
    "cosine_similarity",
    "rank_candidates",
]

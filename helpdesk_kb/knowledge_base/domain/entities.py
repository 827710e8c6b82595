"""
Knowledge Base Domain Entities
==============================

Domain entities for the knowledge-base module.

Contains pure Python business objects for articles, tags, embeddings and
search results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List

from helpdesk_kb.config import ArticleStatus


@dataclass
class Tag:
    """Label attached to articles. Deleted once no article references it."""
    id: str
    name: str
    slug: str
    color: str
    description: Optional[str] = None


@dataclass
class Article:
    """
    Knowledge-base article as seen by the dispatch façade.

    Embedding vectors are deliberately absent: they are owned by the vector
    store and only ever read by the search engine.
    """
    id: str
    title: str
    slug: str
    content: str
    status: str = ArticleStatus.DRAFT
    description: Optional[str] = None
    view_count: int = 0
    helpful_count: int = 0
    not_helpful_count: int = 0
    author_id: Optional[str] = None
    last_updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    tags: List[Tag] = field(default_factory=list)

    @property
    def is_published(self) -> bool:
        return self.status == ArticleStatus.PUBLISHED


@dataclass
class EmbeddingSource:
    """
    The text fields an embedding job reads from one article.
    """
    article_id: str
    title: str
    content: str
    description: Optional[str] = None

    @property
    def metadata_text(self) -> str:
        """Title and description joined by a newline."""
        return f"{self.title}\n{self.description or ''}"

    @property
    def content_text(self) -> str:
        return self.content


@dataclass
class EmbeddingState:
    """Stored embedding vectors and in-progress flags for one article."""
    article_id: str
    metadata_embedding: Optional[List[float]]
    content_embedding: Optional[List[float]]
    is_metadata_embedding_in_progress: bool
    is_content_embedding_in_progress: bool

    @property
    def is_authoritative(self) -> bool:
        """Both vectors present and no job marked as running."""
        return (
            self.metadata_embedding is not None
            and self.content_embedding is not None
            and not self.is_metadata_embedding_in_progress
            and not self.is_content_embedding_in_progress
        )


@dataclass
class SearchCandidate:
    """A searchable article with the embedding of the field being searched."""
    article_id: str
    title: str
    content: str
    embedding: List[float]


@dataclass
class SearchResult:
    """One ranked search hit."""
    article_id: str
    title: str
    content: str
    similarity: float

    def to_dict(self) -> dict:
        return {
            "id": self.article_id,
            "title": self.title,
            "content": self.content,
            "similarity": self.similarity,
        }


@dataclass
class GenerationAck:
    """Acknowledgement returned by ``EmbeddingGenerator.generate``."""
    article_id: str
    scheduled: bool


@dataclass
class FirstReplyDraft:
    """
    Automatic first reply for a new ticket.

    Contains the drafted message along with the articles it was based on.
    """
    message: str
    relevant_articles: List[SearchResult]
    drafted_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def has_articles(self) -> bool:
        return len(self.relevant_articles) > 0

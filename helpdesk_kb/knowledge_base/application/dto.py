"""
Knowledge Base Application DTOs
===============================

Data Transfer Objects for the dispatch façade.

Pydantic models for request/response validation.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Optional, Dict, Any, Literal
from datetime import datetime

from helpdesk_kb.knowledge_base.domain import Article, SearchResult, Tag


# ========== Type Aliases for Literals ==========
ArticleStatusStr = Literal["draft", "published", "archived"]
DispatchMethodStr = Literal["GET", "POST", "PUT", "DELETE"]


# ========== Request DTOs ==========

class DispatchRequest(BaseModel):
    """Envelope of the knowledge-base RPC endpoint."""
    method: DispatchMethodStr = Field(..., description="Operation verb")
    path: str = Field(default="", description="<resource>[/<id>][/<sub>]")
    params: Dict[str, Any] = Field(default_factory=dict, description="Query-style parameters")
    body: Optional[Dict[str, Any]] = Field(default=None, description="Operation payload")

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        """Accept lowercase verbs."""
        return v.upper() if isinstance(v, str) else v


class ArticleCreateRequest(BaseModel):
    """Payload for POST articles."""
    model_config = ConfigDict(extra="ignore")

    title: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: ArticleStatusStr = "draft"
    tags: List[str] = Field(default_factory=list, description="Tag ids or names of new tags")


class ArticleUpdateRequest(BaseModel):
    """Payload for PUT articles/<id>. Only fields that are present are applied."""
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(default=None, min_length=1)
    slug: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[ArticleStatusStr] = None
    tags: Optional[List[str]] = None

    @model_validator(mode="after")
    def reject_null_required_fields(self) -> "ArticleUpdateRequest":
        """title, slug, content and status may be omitted but not cleared."""
        for name in ("title", "slug", "content", "status"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class TagReplaceRequest(BaseModel):
    """Payload for PUT articles/<id>/tags."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tag_ids: List[str] = Field(..., alias="tagIds")


class TagCreateRequest(BaseModel):
    """Payload for POST tags."""
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=20)
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Tag name is required")
        return v


# ========== Response DTOs ==========

class TagResponse(BaseModel):
    """Tag as returned by the API."""
    id: str
    name: str
    slug: str
    color: str
    description: Optional[str] = None

    @classmethod
    def from_domain(cls, tag: Tag) -> "TagResponse":
        return cls(
            id=tag.id,
            name=tag.name,
            slug=tag.slug,
            color=tag.color,
            description=tag.description
        )


class ArticleResponse(BaseModel):
    """Article as returned by the API."""
    id: str
    title: str
    slug: str
    description: Optional[str]
    content: str
    status: ArticleStatusStr
    view_count: int
    helpful_count: int
    not_helpful_count: int
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    tags: List[TagResponse]

    @classmethod
    def from_domain(cls, article: Article) -> "ArticleResponse":
        return cls(
            id=article.id,
            title=article.title,
            slug=article.slug,
            description=article.description,
            content=article.content,
            status=article.status,
            view_count=article.view_count,
            helpful_count=article.helpful_count,
            not_helpful_count=article.not_helpful_count,
            created_at=article.created_at,
            updated_at=article.updated_at,
            tags=[TagResponse.from_domain(t) for t in article.tags]
        )


class PaginationInfo(BaseModel):
    """Pagination block of a list response."""
    total: int
    total_pages: int
    page: int
    page_size: int


class ArticleListResponse(BaseModel):
    """Response for GET articles."""
    data: List[ArticleResponse]
    pagination: PaginationInfo


class SearchResultResponse(BaseModel):
    """One search hit."""
    id: str
    title: str
    content: str
    similarity: float

    @classmethod
    def from_domain(cls, result: SearchResult) -> "SearchResultResponse":
        return cls(
            id=result.article_id,
            title=result.title,
            content=result.content,
            similarity=result.similarity
        )


class DispatchResult(BaseModel):
    """What the dispatcher hands back to the HTTP layer."""
    status_code: int = 200
    payload: Any = None

"""Shared test fixtures for the knowledge-base tests."""

import asyncio
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from httpx import AsyncClient, ASGITransport

from helpdesk_kb.core import ApplicationException
from helpdesk_kb.infrastructure.database import (
    close_database,
    create_session_maker,
    create_tables,
    get_session_context,
    init_database,
)
from helpdesk_kb.infrastructure.llm import ChatCompletionResult, MockLLMClient
from helpdesk_kb.infrastructure.tasks import JobQueue
from helpdesk_kb.knowledge_base.application import (
    EmbeddingGenerator,
    IChatClient,
    IEmbeddingProvider,
    SimilaritySearchEngine,
)
from helpdesk_kb.knowledge_base.infrastructure import (
    ArticleModel,
    SQLAlchemyArticleRepository,
    SQLAlchemyTagRepository,
    SQLAlchemyVectorStore,
    SettingsEditorDirectory,
)
from helpdesk_kb.knowledge_base.interfaces import knowledge_base_router
from helpdesk_kb.shared.api.middleware import (
    application_exception_handler,
    request_validation_exception_handler,
)

EDITOR_TOKEN = "editor-token"
VIEWER_TOKEN = "viewer-token"
EMBEDDING_DIMENSION = 1536


class FakeEmbeddingProvider(IEmbeddingProvider):
    """
    Deterministic provider backed by the mock bag-of-words embeddings.

    Records every text it is asked to embed. ``fail_with`` makes every call
    raise; ``gate`` blocks calls until the event is set.
    """

    def __init__(self, dimension: int = EMBEDDING_DIMENSION):
        self._client = MockLLMClient(dimension=dimension)
        self.calls: List[str] = []
        self.fail_with: Optional[BaseException] = None
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return (await self._client.generate_embedding(text)).embedding


class FakeChatClient(IChatClient):
    def __init__(self, content: str = "Here is how to fix it."):
        self.content = content
        self.calls: List[Dict[str, Any]] = []

    async def chat_completion(self, messages, temperature, max_tokens, operation="chat_completion"):
        self.calls.append({
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "operation": operation,
        })
        return ChatCompletionResult(
            content=self.content,
            model="fake",
            prompt_tokens=0,
            completion_tokens=0,
            latency_ms=0
        )


# ========== Database ==========

@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database file per test."""
    engine = init_database(f"sqlite+aiosqlite:///{tmp_path / 'kb.db'}")
    await create_tables(engine)
    yield engine
    await close_database(engine)


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest.fixture
def vector_store(session_maker):
    return SQLAlchemyVectorStore(session_maker)


# ========== Services ==========

@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def chat_client():
    return FakeChatClient()


@pytest_asyncio.fixture
async def jobs(engine):
    queue = JobQueue(name="test-embeddings", max_size=100, workers=2)
    yield queue
    await queue.stop(timeout=1.0)


@pytest_asyncio.fixture
async def generator(provider, vector_store, jobs):
    """Embedding generator with its job queue started."""
    generator = EmbeddingGenerator(provider, vector_store, jobs, timeout=5.0)
    await jobs.start(generator.run)
    return generator


@pytest.fixture
def search_engine(provider, vector_store):
    return SimilaritySearchEngine(provider, vector_store, timeout=5.0, max_limit=100)


# ========== Seeding ==========

@pytest.fixture
def seed_article(session_maker):
    """
    Insert an article directly, optionally with embeddings already stored.

    Returns the new article id.
    """
    embedder = MockLLMClient(dimension=EMBEDDING_DIMENSION)

    async def _seed(
        title: str,
        content: str,
        description: Optional[str] = None,
        status: str = "published",
        embed: bool = True,
        tags: Optional[List[str]] = None,
        in_progress: bool = False
    ) -> str:
        model = ArticleModel(
            id=uuid4(),
            title=title,
            slug=f"{title.lower().replace(' ', '-')}-{uuid4().hex[:6]}",
            description=description,
            content=content,
            status=status,
            is_metadata_embedding_in_progress=in_progress,
            is_content_embedding_in_progress=in_progress
        )
        if embed:
            metadata = await embedder.generate_embedding(f"{title}\n{description or ''}")
            body = await embedder.generate_embedding(content)
            model.metadata_embedding = metadata.embedding
            model.content_embedding = body.embedding

        async with get_session_context(session_maker) as session:
            session.add(model)
            await session.flush()
            if tags:
                tag_ids = await SQLAlchemyTagRepository(session).resolve(tags)
                await SQLAlchemyArticleRepository(session).replace_tags(str(model.id), tag_ids)
        return str(model.id)

    return _seed


@pytest.fixture
def list_tags(session_maker):
    async def _list():
        async with get_session_context(session_maker) as session:
            return await SQLAlchemyTagRepository(session).list()
    return _list


# ========== HTTP ==========

@pytest.fixture
def app(session_maker, generator, search_engine):
    """Minimal application exposing the knowledge-base router."""
    app = FastAPI()
    app.include_router(knowledge_base_router)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

    app.state.session_maker = session_maker
    app.state.embedding_generator = generator
    app.state.search_engine = search_engine
    app.state.editor_directory = SettingsEditorDirectory(
        editor_tokens={EDITOR_TOKEN: "agent-1"},
        viewer_tokens={VIEWER_TOKEN: "customer-1"}
    )
    return app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def kb(client):
    """Send one request through the knowledge-base endpoint."""

    async def _call(
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        payload: Dict[str, Any] = {"method": method, "path": path}
        if params is not None:
            payload["params"] = params
        if body is not None:
            payload["body"] = body
        return await client.post("/knowledge-base", json=payload, headers=headers)

    return _call

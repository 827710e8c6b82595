"""
Helpdesk Knowledge Base - Main Application
==========================================

Knowledge-base core of the customer-support ticketing system.

Modules:
- Knowledge Base: articles, background embedding generation, semantic
  search, tag consistency and first reply drafting

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services, dispatcher and DTOs
- Domain: Entities and similarity ranking
- Infrastructure: Database, LLM clients, job queue, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from helpdesk_kb.config import settings
from helpdesk_kb.core import ApplicationException

# Infrastructure
from helpdesk_kb.infrastructure.database import (
    init_database, create_session_maker, close_database, create_tables
)
from helpdesk_kb.infrastructure.llm import create_llm_client
from helpdesk_kb.infrastructure.tasks import JobQueue

# Knowledge Base Module
from helpdesk_kb.knowledge_base.application import (
    EmbeddingGenerator,
    SimilaritySearchEngine,
    StuckFlagReaper,
    FirstReplyDrafter,
)
from helpdesk_kb.knowledge_base.infrastructure import (
    SQLAlchemyVectorStore,
    EmbeddingProviderAdapter,
    LLMClientAdapter,
    SettingsEditorDirectory,
    FlagReaperScheduler,
)
from helpdesk_kb.knowledge_base.interfaces import knowledge_base_router

# Shared API
from helpdesk_kb.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    request_validation_exception_handler,
    global_exception_handler
)

# Logging
from helpdesk_kb.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Initialize LLM client (embedding provider + chat)
    4. Build vector store, job queue and services
    5. Clear flags left behind by a previous crash
    6. Start embedding workers and the flag reaper scheduler

    SHUTDOWN:
    1. Stop the flag reaper scheduler
    2. Drain the embedding queue, then cancel what is left
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Knowledge Base Service", extra={
        "version": settings.app_version,
        "environment": settings.environment,
        "embedding_provider": settings.embedding_provider
    })

    # Initialize database
    logger.info("Initializing database")
    engine = init_database(settings.database_url)
    session_maker = create_session_maker(engine)

    # Create tables (for development - use migrations in production)
    logger.info("Creating database tables")
    await create_tables(engine)

    # Initialize LLM client
    logger.info("Initializing LLM client", extra={"provider": settings.embedding_provider})
    llm_client = create_llm_client(settings.embedding_provider)
    provider = EmbeddingProviderAdapter(llm_client)

    # Services
    vector_store = SQLAlchemyVectorStore(session_maker)
    jobs = JobQueue(
        name="embeddings",
        max_size=settings.embedding_queue_size,
        workers=settings.embedding_workers
    )
    generator = EmbeddingGenerator(
        provider,
        vector_store,
        jobs,
        timeout=settings.embedding_timeout_seconds
    )
    search_engine = SimilaritySearchEngine(
        provider,
        vector_store,
        timeout=settings.embedding_timeout_seconds,
        max_limit=settings.search_max_limit
    )
    reaper = StuckFlagReaper(vector_store, jobs)
    first_reply_drafter = FirstReplyDrafter(
        search_engine,
        LLMClientAdapter(llm_client),
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens
    )

    # Nothing is running yet, so every set flag is a leftover.
    # Assumes a single process: never start uvicorn with workers > 1.
    cleared = await reaper.reap()
    if cleared:
        logger.warning("Reset stale embedding flags at startup", extra={"count": len(cleared)})

    await jobs.start(generator.run)

    async def flag_reaper_job():
        """Background stuck flag reaper job."""
        try:
            await reaper.reap()
        except ApplicationException as e:
            logger.error("Flag reaper run failed", extra={"error": e.message})

    reaper_scheduler = FlagReaperScheduler(interval_seconds=settings.flag_reaper_interval_seconds)
    await reaper_scheduler.start(flag_reaper_job)

    # Store services in app state for dependency injection
    app.state.engine = engine
    app.state.session_maker = session_maker
    app.state.llm_client = llm_client
    app.state.vector_store = vector_store
    app.state.embedding_jobs = jobs
    app.state.embedding_generator = generator
    app.state.search_engine = search_engine
    app.state.flag_reaper = reaper
    app.state.flag_reaper_scheduler = reaper_scheduler
    app.state.first_reply_drafter = first_reply_drafter
    app.state.editor_directory = SettingsEditorDirectory(
        settings.editor_tokens, settings.viewer_tokens
    )

    logger.info("Knowledge Base Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Knowledge Base Service")

    await reaper_scheduler.stop()

    abandoned = await jobs.stop(timeout=settings.embedding_drain_timeout_seconds)
    if abandoned:
        logger.warning("Embedding jobs abandoned at shutdown", extra={"count": abandoned})

    await close_database(engine)

    logger.info("Knowledge Base Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk Knowledge Base API",
    description="""
    ## Knowledge Base for Customer Support

    Articles with background embedding generation and semantic search.

    ---

    ### 📚 Knowledge Base Module

    **Endpoint:** `POST /knowledge-base` with `{method, path, params, body}`

    | Method | Path | Description |
    |--------|------|-------------|
    | GET | `articles` | Paginated article list |
    | GET | `articles/<id>` | Article with tags |
    | POST | `articles` | Create article (editor) |
    | PUT | `articles/<id>` | Update article (editor) |
    | PUT | `articles/<id>/tags` | Replace tags (editor) |
    | DELETE | `articles/<id>` | Delete article (editor) |
    | POST | `articles/<id>/feedback` | Helpful / not helpful |
    | GET | `tags` | List tags |
    | POST | `tags` | Create tag (editor) |
    | POST | `search` | Semantic search |

    **Features:**
    - Metadata and content embeddings generated off the request path
    - Cosine similarity ranking with threshold and limit
    - Unused tags removed automatically
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(knowledge_base_router)

# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "embedding_provider": "openai",
                        "embedding_workers": "running (0 pending)",
                        "flag_reaper": "running"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Database initialization
    - Embedding provider
    - Embedding worker state
    - Flag reaper scheduler state
    """
    state = request.app.state
    jobs = getattr(state, "embedding_jobs", None)
    scheduler = getattr(state, "flag_reaper_scheduler", None)

    checks = {
        "database": "connected" if getattr(state, "session_maker", None) else "not_initialized",
        "embedding_provider": settings.embedding_provider,
        "embedding_workers": (
            f"running ({len(jobs.pending_keys)} pending)" if jobs and jobs.is_running else "stopped"
        ),
        "flag_reaper": "running" if scheduler and scheduler.is_running else "stopped"
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Knowledge Base Service",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "knowledge_base": {
                "endpoints": [
                    "POST /knowledge-base - Dispatch {method, path, params, body}"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk_kb.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )

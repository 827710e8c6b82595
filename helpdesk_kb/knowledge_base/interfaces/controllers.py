"""
Knowledge Base Controllers (API Routes)
=======================================

FastAPI route for the knowledge-base RPC endpoint.

A single ``POST /knowledge-base`` carries ``{method, path, params, body}``;
the controller resolves the caller and delegates to the dispatcher.
"""

import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_kb.infrastructure.database import get_session
from helpdesk_kb.knowledge_base.application import (
    Caller,
    DispatchRequest,
    EmbeddingGenerator,
    KnowledgeBaseDispatcher,
    SimilaritySearchEngine,
)
from helpdesk_kb.knowledge_base.infrastructure import (
    SQLAlchemyArticleRepository,
    SQLAlchemyTagRepository,
    SettingsEditorDirectory,
)
from helpdesk_kb.shared.infrastructure.logging import get_logger
from helpdesk_kb.config import settings

logger = get_logger(__name__)
router = APIRouter(tags=["Knowledge Base"])

bearer_scheme = HTTPBearer(auto_error=False)


# ========== Example payloads for Swagger ==========

SEARCH_REQUEST_EXAMPLE = {
    "method": "POST",
    "path": "search",
    "body": {
        "query": "I forgot my password",
        "limit": 5,
        "similarityThreshold": 0.1
    }
}

SEARCH_RESPONSE_EXAMPLE = [
    {
        "id": "123e4567-e89b-12d3-a456-426614174000",
        "title": "Reset Password",
        "content": "Click forgot password on the login page.",
        "similarity": 0.62
    }
]


# ========== Dependencies ==========

def _state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized"
        )
    return service


async def get_caller(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Caller:
    """Resolve the bearer token (if any) through the editor directory."""
    directory = getattr(request.app.state, "editor_directory", None)
    if directory is None:
        directory = SettingsEditorDirectory(settings.editor_tokens, settings.viewer_tokens)
    token = credentials.credentials if credentials else None
    return directory.resolve(token)


async def get_dispatcher(
    request: Request,
    db: AsyncSession = Depends(get_session)
) -> KnowledgeBaseDispatcher:
    """Build a dispatcher around this request's session."""
    generator: EmbeddingGenerator = _state(request, "embedding_generator")
    search_engine: SimilaritySearchEngine = _state(request, "search_engine")

    return KnowledgeBaseDispatcher(
        articles=SQLAlchemyArticleRepository(db),
        tags=SQLAlchemyTagRepository(db),
        generator=generator,
        search_engine=search_engine,
        commit=db.commit,
        default_limit=settings.search_default_limit,
        default_threshold=settings.search_default_threshold
    )


# ========== Route Handlers ==========

@router.post(
    "/knowledge-base",
    summary="Knowledge-base RPC endpoint",
    description="""
    Routes `{method, path, params, body}` to the knowledge base.

    **Paths**:
    - `GET articles`, `POST articles`
    - `GET|PUT|DELETE articles/<id>`
    - `PUT articles/<id>/tags`, `POST articles/<id>/feedback`
    - `GET tags`, `POST tags`
    - `POST search`

    Writes require an editor bearer token. Errors are returned as
    `{"error": "<message>"}`.
    """,
    responses={
        200: {
            "description": "Operation result",
            "content": {"application/json": {"example": SEARCH_RESPONSE_EXAMPLE}}
        },
        400: {"description": "Invalid argument"},
        401: {"description": "Missing or unknown token on a write"},
        403: {"description": "Caller is not an editor"},
        404: {"description": "Unknown route or article"},
        503: {"description": "Embedding provider unavailable"}
    }
)
async def knowledge_base(
    request: Request,
    payload: DispatchRequest,
    caller: Caller = Depends(get_caller),
    dispatcher: KnowledgeBaseDispatcher = Depends(get_dispatcher)
):
    start_time = time.perf_counter()
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    result = await dispatcher.dispatch(
        payload.method,
        payload.path,
        params=payload.params,
        body=payload.body,
        caller=caller
    )

    logger.info(
        "Knowledge-base request handled",
        extra={
            "correlation_id": correlation_id,
            "method": payload.method,
            "path": payload.path,
            "status_code": result.status_code,
            "is_editor": caller.is_editor,
            "processing_time_ms": int((time.perf_counter() - start_time) * 1000)
        }
    )

    if result.status_code == status.HTTP_204_NO_CONTENT:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return JSONResponse(status_code=result.status_code, content=result.payload)

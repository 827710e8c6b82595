"""
Knowledge Base External Service Adapters
========================================

Adapters for external services used by the knowledge-base module:
- Embedding provider and chat client (wrapping the shared LLM clients)
- Editor directory (bearer token -> caller identity)
- APScheduler job for the stuck flag reaper
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from helpdesk_kb.infrastructure.llm import ILLMClient
from helpdesk_kb.knowledge_base.application import (
    ANONYMOUS,
    Caller,
    IChatClient,
    IEmbeddingProvider,
)
from helpdesk_kb.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class EmbeddingProviderAdapter(IEmbeddingProvider):
    """
    Adapter that wraps the infrastructure LLM client.

    Implements the application layer IEmbeddingProvider interface using
    whichever ILLMClient the factory configured (OpenAI, Z.AI or mock).
    """

    def __init__(self, client: ILLMClient):
        self._client = client

    async def embed(self, text: str) -> List[float]:
        result = await self._client.generate_embedding(text)
        return result.embedding


class LLMClientAdapter(IChatClient):
    """Chat completion for first reply drafting."""

    def __init__(self, client: ILLMClient):
        self._client = client

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.7,
        max_tokens: int = 500,
        operation: str = "chat_completion"
    ) -> Any:
        """Generate chat completion."""
        return await self._client.chat_completion(messages, temperature, max_tokens, operation)


class SettingsEditorDirectory:
    """
    Editor directory backed by static token maps from settings.

    A token in ``editor_tokens`` identifies an agent allowed to modify
    articles; a token in ``viewer_tokens`` an authenticated user who may
    only read. Missing and unknown tokens resolve to the anonymous caller.
    """

    def __init__(
        self,
        editor_tokens: Optional[Dict[str, str]] = None,
        viewer_tokens: Optional[Dict[str, str]] = None
    ):
        self._editors = dict(editor_tokens or {})
        self._viewers = dict(viewer_tokens or {})

    def resolve(self, token: Optional[str]) -> Caller:
        if not token:
            return ANONYMOUS
        if token in self._editors:
            return Caller(user_id=self._editors[token], is_editor=True)
        if token in self._viewers:
            return Caller(user_id=self._viewers[token], is_editor=False)

        logger.warning("Unknown bearer token presented")
        return ANONYMOUS


class FlagReaperScheduler:
    """
    Wrapper for APScheduler running the stuck flag reaper.

    Manages the lifecycle of the scheduler and its single job.
    """

    def __init__(self, interval_seconds: int = 300):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("Flag reaper scheduler already running")
            return
        if self.interval_seconds <= 0:
            logger.info("Flag reaper scheduler disabled")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="stuck_flag_reaper",
            name="Stuck Embedding Flag Reaper",
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Flag reaper scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Flag reaper scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

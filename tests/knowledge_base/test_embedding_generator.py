"""Tests for background embedding generation."""

import asyncio

import pytest

from helpdesk_kb.core import ProviderUnavailableException, RepositoryException
from helpdesk_kb.infrastructure.tasks import JobQueue
from helpdesk_kb.knowledge_base.application import EmbeddingGenerator, IEmbeddingProvider, embed_all


async def test_run_stores_both_vectors_and_clears_flags(generator, vector_store, seed_article, provider):
    article_id = await seed_article("Reset Password", "Click forgot password.", description="Login help", embed=False)

    assert await generator.run(article_id) is True

    state = await vector_store.get_embedding_state(article_id)
    assert state.metadata_embedding is not None
    assert state.content_embedding is not None
    assert state.is_metadata_embedding_in_progress is False
    assert state.is_content_embedding_in_progress is False
    assert state.is_authoritative


async def test_run_embeds_metadata_and_content_texts(generator, seed_article, provider):
    article_id = await seed_article("Billing", "Invoices go out monthly.", description=None, embed=False)

    await generator.run(article_id)

    assert sorted(provider.calls) == sorted(["Billing\n", "Invoices go out monthly."])


async def test_failed_generation_keeps_previous_vectors(generator, vector_store, seed_article, provider):
    article_id = await seed_article("Shipping", "We ship worldwide.")
    before = await vector_store.get_embedding_state(article_id)

    provider.fail_with = RuntimeError("provider down")
    assert await generator.run(article_id) is False

    after = await vector_store.get_embedding_state(article_id)
    assert after.content_embedding == before.content_embedding
    assert after.metadata_embedding == before.metadata_embedding
    assert after.is_metadata_embedding_in_progress is False
    assert after.is_content_embedding_in_progress is False


async def test_provider_timeout_resets_flags(provider, vector_store, jobs, seed_article):
    article_id = await seed_article("Slow", "Slow provider.", embed=False)
    provider.gate = asyncio.Event()
    generator = EmbeddingGenerator(provider, vector_store, jobs, timeout=0.05)

    assert await generator.run(article_id) is False

    state = await vector_store.get_embedding_state(article_id)
    assert state.content_embedding is None
    assert not state.is_metadata_embedding_in_progress
    assert not state.is_content_embedding_in_progress


async def test_missing_article_is_skipped(generator, provider):
    assert await generator.run("00000000-0000-0000-0000-000000000000") is False
    assert await generator.run("not-a-uuid") is False
    assert provider.calls == []


async def test_flag_write_failure_aborts_before_provider(provider, vector_store, jobs, seed_article):
    article_id = await seed_article("Flags", "Flag write fails.", embed=False)

    async def broken_set_in_progress(article_id, in_progress):
        raise RepositoryException("write failed")

    vector_store.set_in_progress = broken_set_in_progress
    generator = EmbeddingGenerator(provider, vector_store, jobs)

    assert await generator.run(article_id) is False
    assert provider.calls == []


async def test_generate_schedules_and_job_completes(generator, jobs, vector_store, seed_article):
    article_id = await seed_article("Queued", "Queued article.", embed=False)

    ack = generator.generate(article_id)
    assert ack.scheduled is True
    assert ack.article_id == article_id

    await jobs.join()
    state = await vector_store.get_embedding_state(article_id)
    assert state.is_authoritative


async def test_generate_on_stopped_queue_is_not_scheduled(provider, vector_store):
    generator = EmbeddingGenerator(provider, vector_store, JobQueue(name="idle"))

    ack = generator.generate("any-id")

    assert ack.scheduled is False


async def test_repeated_runs_are_idempotent(generator, vector_store, seed_article):
    article_id = await seed_article("Twice", "Same content twice.", embed=False)

    await generator.run(article_id)
    first = await vector_store.get_embedding_state(article_id)
    await generator.run(article_id)
    second = await vector_store.get_embedding_state(article_id)

    assert first.content_embedding == second.content_embedding
    assert second.is_authoritative


async def test_cancellation_at_shutdown_resets_flags(generator, jobs, vector_store, seed_article, provider):
    article_id = await seed_article("Cancelled", "Never finishes.", embed=False)
    provider.gate = asyncio.Event()

    generator.generate(article_id)
    await asyncio.wait_for(provider.started.wait(), timeout=2)

    state = await vector_store.get_embedding_state(article_id)
    assert state.is_metadata_embedding_in_progress
    assert state.is_content_embedding_in_progress

    abandoned = await jobs.stop(timeout=0.05)

    assert abandoned == 1
    state = await vector_store.get_embedding_state(article_id)
    assert state.content_embedding is None
    assert not state.is_metadata_embedding_in_progress
    assert not state.is_content_embedding_in_progress


async def test_provider_unavailable_resets_flags(provider, vector_store, jobs, seed_article):
    provider.fail_with = ProviderUnavailableException("503 from upstream")
    article_id = await seed_article("Wrapped", "Provider says no.", embed=False)
    generator = EmbeddingGenerator(provider, vector_store, jobs)

    assert await generator.run(article_id) is False
    state = await vector_store.get_embedding_state(article_id)
    assert not state.is_content_embedding_in_progress


class _OneFailsOneHangs(IEmbeddingProvider):
    def __init__(self):
        self.cancelled = asyncio.Event()

    async def embed(self, text):
        if text == "fail":
            await asyncio.sleep(0)
            raise RuntimeError("upstream error")
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled.set()
            raise


async def test_first_failure_cancels_sibling_request():
    provider = _OneFailsOneHangs()

    with pytest.raises(ProviderUnavailableException):
        await embed_all(provider, ["hang", "fail"], timeout=30.0)

    assert provider.cancelled.is_set()


async def test_embed_all_keeps_input_order(provider):
    first, second = await embed_all(provider, ["alpha", "beta"], timeout=5.0)

    assert first == await provider.embed("alpha")
    assert second == await provider.embed("beta")

"""Tests for the stuck in-progress flag reaper and its scheduler."""

import asyncio

from helpdesk_kb.knowledge_base.application import StuckFlagReaper
from helpdesk_kb.knowledge_base.infrastructure import FlagReaperScheduler


async def test_startup_reap_clears_every_flag(vector_store, seed_article):
    stuck = await seed_article("Crashed", "Left behind by a crash.", in_progress=True)
    clean = await seed_article("Clean", "Never embedded.", embed=False)

    cleared = await StuckFlagReaper(vector_store).reap()

    assert cleared == [stuck]
    state = await vector_store.get_embedding_state(stuck)
    assert not state.is_metadata_embedding_in_progress
    assert not state.is_content_embedding_in_progress
    assert state.content_embedding is not None
    assert (await vector_store.get_embedding_state(clean)).is_content_embedding_in_progress is False


async def test_reaper_skips_articles_with_pending_jobs(generator, jobs, vector_store, seed_article, provider):
    orphaned = await seed_article("Orphaned", "Flag without a job.", in_progress=True)
    running = await seed_article("Running", "Job still running.", embed=False)
    provider.gate = asyncio.Event()

    generator.generate(running)
    await asyncio.wait_for(provider.started.wait(), timeout=2)

    cleared = await StuckFlagReaper(vector_store, jobs).reap()

    assert cleared == [orphaned]
    assert (await vector_store.get_embedding_state(running)).is_content_embedding_in_progress

    provider.gate.set()
    await jobs.join()
    assert (await vector_store.get_embedding_state(running)).is_authoritative


async def test_reaper_noop_when_nothing_flagged(vector_store, seed_article):
    await seed_article("Fine", "All good.")

    assert await StuckFlagReaper(vector_store).reap() == []


async def test_scheduler_lifecycle():
    calls = []

    async def job():
        calls.append(1)

    scheduler = FlagReaperScheduler(interval_seconds=3600)
    await scheduler.start(job)
    assert scheduler.is_running

    await scheduler.stop()
    assert not scheduler.is_running


async def test_scheduler_disabled_with_zero_interval():
    scheduler = FlagReaperScheduler(interval_seconds=0)

    async def job():
        pass

    await scheduler.start(job)

    assert not scheduler.is_running
    await scheduler.stop()

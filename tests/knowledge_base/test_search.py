"""Tests for the similarity search engine."""

from uuid import UUID

import pytest
from sqlalchemy import update

from helpdesk_kb.core import ProviderUnavailableException, ValidationException
from helpdesk_kb.infrastructure.database import get_session_context
from helpdesk_kb.knowledge_base.infrastructure import ArticleModel


async def _seed_help_center(seed_article):
    return {
        "reset": await seed_article("Reset Password", "Click forgot password on the login page."),
        "billing": await seed_article("Billing Cycle", "Invoices are issued monthly on the first day."),
        "shipping": await seed_article("Shipping Times", "Orders arrive within five business days."),
    }


async def test_article_found_by_its_own_content(search_engine, seed_article):
    article_id = await seed_article("Refunds", "Refunds are processed within ten days.")

    results = await search_engine.search("Refunds are processed within ten days.", similarity_threshold=0)

    assert results[0].article_id == article_id
    assert results[0].similarity == pytest.approx(1.0)


async def test_results_sorted_by_similarity(search_engine, seed_article):
    await _seed_help_center(seed_article)

    results = await search_engine.search("password login page orders", limit=10, similarity_threshold=0)

    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)


async def test_forgot_password_ranks_reset_article_first(search_engine, seed_article):
    ids = await _seed_help_center(seed_article)

    results = await search_engine.search("I forgot my password", similarity_threshold=0.1)

    assert results
    assert results[0].article_id == ids["reset"]
    assert results[0].title == "Reset Password"


async def test_unreachable_threshold_returns_empty(search_engine, seed_article):
    await _seed_help_center(seed_article)

    assert await search_engine.search("zzqxnonexistent000", similarity_threshold=1.1) == []


@pytest.mark.parametrize("query", ["", "   ", "\n\t", None, 42])
async def test_blank_query_rejected(search_engine, provider, query):
    with pytest.raises(ValidationException, match="Search query is required"):
        await search_engine.search(query)
    assert provider.calls == []


@pytest.mark.parametrize("limit", [0, -1, 2.5, "10", True])
async def test_invalid_limit_rejected(search_engine, limit):
    with pytest.raises(ValidationException):
        await search_engine.search("password", limit=limit)


@pytest.mark.parametrize("threshold", ["0.5", True, None, float("nan")])
async def test_invalid_threshold_rejected(search_engine, threshold):
    with pytest.raises(ValidationException):
        await search_engine.search("password", similarity_threshold=threshold)


async def test_invalid_field_rejected(search_engine):
    with pytest.raises(ValidationException):
        await search_engine.search("password", field="title")


async def test_limit_truncates(search_engine, seed_article):
    for i in range(5):
        await seed_article(f"Account {i}", f"account settings page {i}")

    results = await search_engine.search("account settings page", limit=3, similarity_threshold=0)

    assert len(results) == 3


async def test_unpublished_articles_excluded_by_default(search_engine, seed_article):
    draft_id = await seed_article("Draft Policy", "Secret draft policy text.", status="draft")
    archived_id = await seed_article("Old Policy", "Secret draft policy text.", status="archived")

    public = await search_engine.search("Secret draft policy text.", similarity_threshold=0)
    internal = await search_engine.search(
        "Secret draft policy text.", similarity_threshold=0, include_unpublished=True
    )

    assert public == []
    assert {r.article_id for r in internal} == {draft_id, archived_id}


async def test_articles_without_embeddings_skipped(search_engine, seed_article):
    await seed_article("Pending", "Embeddings not generated yet.", embed=False)

    assert await search_engine.search("Embeddings not generated yet.", similarity_threshold=0) == []


async def test_metadata_field_searches_title_and_description(search_engine, seed_article):
    article_id = await seed_article(
        "Two Factor Authentication",
        "Unrelated body text.",
        description="Enable an authenticator app"
    )

    results = await search_engine.search(
        "authenticator app", field="metadata", similarity_threshold=0.1
    )
    by_content = await search_engine.search(
        "authenticator app", field="content", similarity_threshold=0.1
    )

    assert [r.article_id for r in results] == [article_id]
    assert by_content == []


async def test_provider_failure_surfaces(search_engine, seed_article, provider):
    await seed_article("Anything", "Some content.")
    provider.fail_with = RuntimeError("connection reset")

    with pytest.raises(ProviderUnavailableException):
        await search_engine.search("content")


async def test_mismatched_dimension_is_skipped(search_engine, seed_article, session_maker):
    good_id = await seed_article("Good", "matching dimension text")
    bad_id = await seed_article("Bad", "matching dimension text")

    async with get_session_context(session_maker) as session:
        await session.execute(
            update(ArticleModel)
            .where(ArticleModel.id == UUID(bad_id))
            .values(content_embedding=[1.0, 0.0, 0.0])
        )

    results = await search_engine.search("matching dimension text", similarity_threshold=0)

    assert [r.article_id for r in results] == [good_id]

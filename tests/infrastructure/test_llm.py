"""Tests for the LLM client factory and the offline mock client."""

import math

import pytest

from helpdesk_kb.core import ConfigurationException
from helpdesk_kb.infrastructure.llm import MockLLMClient, create_llm_client


async def test_mock_embedding_is_deterministic_and_normalised():
    client = MockLLMClient(dimension=64)

    first = await client.generate_embedding("Reset your password")
    second = await client.generate_embedding("reset YOUR password!")

    assert first.embedding == second.embedding
    assert len(first.embedding) == 64
    assert math.sqrt(sum(v * v for v in first.embedding)) == pytest.approx(1.0)


async def test_mock_embedding_of_empty_text_is_zero_vector():
    result = await MockLLMClient(dimension=16).generate_embedding("")

    assert result.embedding == [0.0] * 16


async def test_mock_chat_without_articles():
    result = await MockLLMClient(dimension=8).chat_completion([{"role": "user", "content": "hello"}])

    assert result.content


def test_factory_builds_mock_client():
    assert isinstance(create_llm_client("mock"), MockLLMClient)


def test_factory_rejects_unknown_provider():
    with pytest.raises(ConfigurationException):
        create_llm_client("word2vec")

"""Similarity computation and ranking."""

import math
from typing import Iterable, List

from helpdesk_kb.knowledge_base.domain.entities import SearchCandidate, SearchResult


def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """
    Compute cosine similarity between two vectors.

    Returns a score in [-1, 1]; 0.0 when either vector has zero norm.

    Raises:
        ValueError: If the vectors have different dimensions
    """
    if len(vec1) != len(vec2):
        raise ValueError(f"Dimension mismatch: {len(vec1)} != {len(vec2)}")

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    norm1 = math.sqrt(sum(a * a for a in vec1))
    norm2 = math.sqrt(sum(b * b for b in vec2))
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return dot_product / (norm1 * norm2)


def rank_candidates(
    query_embedding: List[float],
    candidates: Iterable[SearchCandidate],
    limit: int,
    similarity_threshold: float
) -> List[SearchResult]:
    """
    Score, filter and order candidates against a query vector.

    Candidates scoring below ``similarity_threshold`` are dropped. The rest
    are sorted by similarity descending, ties broken by article id, and the
    first ``limit`` are returned.
    """
    results = []
    for candidate in candidates:
        similarity = cosine_similarity(query_embedding, candidate.embedding)
        if similarity < similarity_threshold:
            continue
        results.append(SearchResult(
            article_id=candidate.article_id,
            title=candidate.title,
            content=candidate.content,
            similarity=similarity
        ))

    results.sort(key=lambda r: (-r.similarity, r.article_id))
    return results[:limit]

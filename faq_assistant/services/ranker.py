"""
Similarity Ranker: exact cosine top-K over the whole corpus.

=== WHY BRUTE FORCE? ===

N is a few thousand FAQ items and D is a few hundred dimensions, so scoring
every entry is O(N*D), about a million multiply-adds. That is a few ms in
numpy, which makes an approximate index pure overhead at this scale.

=== NUMERIC POLICY ===

- Accumulation is float64, even though vectors are stored as float32 on disk.
  Normalized high-dimensional vectors produce many small products, and
  float32 sums can drift enough to reorder near-ties.
- Cosine with a zero-magnitude vector is defined as 0.0, not an error.
- Scores are clipped to [-1, 1]; rounding can otherwise yield 1.0000000002
  for a vector against itself.

=== ORDERING ===

Results are sorted by score descending with a STABLE sort, so equal scores keep
corpus order. That makes output deterministic and makes top_k(k) a prefix of
top_k(k + 1).
"""

import asyncio
from typing import List, Optional, Sequence

import numpy as np

from faq_assistant.models.faq import CorpusEntry, RankedResult


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity between two vectors of equal dimension (0.0 if either is zero)."""
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.shape != vec_b.shape:
        raise ValueError(f"Vector dimensions don't match: {vec_a.shape[0]} vs {vec_b.shape[0]}")

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.clip(np.dot(vec_a, vec_b) / (norm_a * norm_b), -1.0, 1.0))


def cosine_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity between the query and every row of matrix.

    Args:
        query: 1-D vector of shape (D,)
        matrix: 2-D array of shape (N, D)

    Returns:
        float64 array of shape (N,), zero rows (or a zero query) score 0.0
    """
    q = np.asarray(query, dtype=np.float64)
    m = np.asarray(matrix, dtype=np.float64)
    if m.ndim != 2 or m.shape[1] != q.shape[0]:
        raise ValueError(
            f"Vector dimensions don't match: query has {q.shape[0]}, corpus has "
            f"{m.shape[1] if m.ndim == 2 else 'invalid shape'}"
        )

    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(m, axis=1)
    denom = row_norms * q_norm

    scores = np.zeros(m.shape[0], dtype=np.float64)
    nonzero = denom > 0
    scores[nonzero] = (m[nonzero] @ q) / denom[nonzero]
    return np.clip(scores, -1.0, 1.0)


def _rank(scores: np.ndarray, corpus: Sequence[CorpusEntry], k: int) -> List[RankedResult]:
    # Negating keeps the sort ascending; "stable" keeps ties in corpus order
    order = np.argsort(-scores, kind="stable")[:k]
    return [
        RankedResult(entry=corpus[i], score=float(scores[i]), rank=rank)
        for rank, i in enumerate(order)
    ]


def _as_matrix(corpus: Sequence[CorpusEntry], matrix: Optional[np.ndarray]) -> np.ndarray:
    if matrix is not None:
        if len(matrix) != len(corpus):
            raise ValueError(
                f"Length mismatch: {len(corpus)} entries vs {len(matrix)} matrix rows"
            )
        return matrix
    return np.asarray([e.vector for e in corpus], dtype=np.float64)


def top_k(
    query: Sequence[float],
    corpus: Sequence[CorpusEntry],
    k: int,
    matrix: Optional[np.ndarray] = None,
) -> List[RankedResult]:
    """
    Return the k corpus entries most similar to the query, best first.

    Args:
        query: Query vector, same dimension as the corpus
        corpus: Entries to rank
        k: Number of results; 0 returns [], k > len(corpus) returns everything
        matrix: Optional precomputed (N, D) matrix of corpus vectors
            (EmbeddingStore.matrix()), saves rebuilding it per query
    """
    if k < 0:
        raise ValueError(f"k must be >= 0, got {k}")
    if k == 0 or not corpus:
        return []

    scores = cosine_scores(query, _as_matrix(corpus, matrix))
    return _rank(scores, corpus, k)


async def top_k_async(
    query: Sequence[float],
    corpus: Sequence[CorpusEntry],
    k: int,
    matrix: Optional[np.ndarray] = None,
    chunk_size: int = 2048,
) -> List[RankedResult]:
    """
    Same result as top_k(), scored in row chunks with a yield to the event
    loop between chunks so a large corpus never stalls other tasks.
    """
    if k < 0:
        raise ValueError(f"k must be >= 0, got {k}")
    if k == 0 or not corpus:
        return []

    m = _as_matrix(corpus, matrix)
    parts = []
    for start in range(0, len(m), chunk_size):
        parts.append(cosine_scores(query, m[start:start + chunk_size]))
        await asyncio.sleep(0)

    return _rank(np.concatenate(parts), corpus, k)

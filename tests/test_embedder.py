import asyncio

import numpy as np
import pytest

from faq_assistant.core.errors import EmbeddingError
from faq_assistant.services.embedder import TextEmbedder
from tests.conftest import CountingFactory


async def test_embed_returns_unit_vector():
    embedder = TextEmbedder("fake", model_factory=CountingFactory())
    vector = await embedder.embed("Как оплатить коммунальные услуги?")

    assert vector.dtype == np.float64
    assert vector.shape == (8,)
    assert np.linalg.norm(vector) == pytest.approx(1.0)


async def test_model_loaded_lazily_and_once():
    factory = CountingFactory()
    embedder = TextEmbedder("fake", model_factory=factory)
    assert not embedder.is_loaded
    assert factory.calls == 0

    await embedder.embed("a")
    await embedder.embed("b")

    assert factory.calls == 1
    assert embedder.is_loaded


async def test_concurrent_first_calls_share_one_load():
    factory = CountingFactory()
    embedder = TextEmbedder("fake", model_factory=factory)

    vectors = await asyncio.gather(*(embedder.embed(f"text {i}") for i in range(10)))

    assert factory.calls == 1
    assert len(vectors) == 10


async def test_empty_text_stays_zero():
    embedder = TextEmbedder("fake", model_factory=CountingFactory())
    vector = await embedder.embed("")
    assert np.all(vector == 0.0)


async def test_query_prefix_is_prepended():
    factory = CountingFactory()
    plain = await TextEmbedder("fake", model_factory=factory).embed("abc")
    prefixed = await TextEmbedder("fake", model_factory=factory, query_prefix="query: ").embed("abc")
    assert not np.allclose(plain, prefixed)


async def test_load_failure_raises_embedding_error():
    def broken(name):
        raise OSError("no such model")

    embedder = TextEmbedder("missing", model_factory=broken)
    with pytest.raises(EmbeddingError, match="missing"):
        await embedder.embed("text")


async def test_preload_reports_failure_without_raising():
    def broken(name):
        raise RuntimeError("boom")

    assert await TextEmbedder("x", model_factory=broken).preload() is False
    assert await TextEmbedder("x", model_factory=CountingFactory()).preload() is True


def test_embed_batch_shape():
    embedder = TextEmbedder("fake", model_factory=CountingFactory())
    vectors = embedder.embed_batch(["один", "два", "три"])

    assert vectors.shape == (3, 8)
    assert np.allclose(np.linalg.norm(vectors, axis=1), 1.0)


async def test_reset_drops_model():
    factory = CountingFactory()
    embedder = TextEmbedder("fake", model_factory=factory)
    await embedder.embed("a")
    embedder.reset()
    await embedder.embed("a")

    assert factory.calls == 2

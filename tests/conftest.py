"""Shared fixtures: deterministic embedders, temporary stores and a wired engine"""

from datetime import datetime, timedelta
import hashlib
import math

import pytest

from knowledge_search.config import Config
from knowledge_search.embeddings.base import EmbeddingProvider
from knowledge_search.engine import KnowledgeSearchEngine
from knowledge_search.retrieval.lexical_search import tokenize


class HashingEmbedder(EmbeddingProvider):
    """
    Bag-of-words embedder: each token hashes to one dimension.

    Texts sharing words get a higher cosine similarity, which is enough to
    make vector search results predictable in tests.
    """

    def __init__(
        self,
        name="ollama",
        model="hash-embed",
        dimensions=64,
        is_paid=False,
        fail_times=0,
        fail_with=None,
        **kwargs,
    ):
        kwargs.setdefault("sleep", lambda seconds: None)
        super().__init__(model=model, dimensions=dimensions, **kwargs)
        self.name = name
        self.is_paid = is_paid
        self.fail_times = fail_times
        self.fail_with = fail_with
        self.calls = []

    def _embed_batch(self, batch, input_type):
        self.calls.append((list(batch), input_type))
        if self.fail_with is not None and self.fail_times != 0:
            self.fail_times -= 1
            raise self.fail_with
        return [self._vector(text) for text in batch], None

    def _vector(self, text):
        vector = [0.0] * self.dimensions
        for token in tokenize(text):
            index = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % (self.dimensions - 1)
            vector[index] += 1.0
        # Constant component keeps every vector non-zero
        vector[-1] = 0.1
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector]


class FakeClock:
    """Controllable UTC clock for budget periods"""

    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 15, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Config(
        database_url=f"sqlite:///{tmp_path / 'knowledge.db'}",
        chroma_path=tmp_path / "chroma",
        chunk_collection_prefix="test-chunks",
        chunk_size=800,
        chunk_overlap=150,
        search_mode="vector",
        default_top_k=5,
        enable_trust_scoring=False,
        monthly_budget_usd=10.0,
        fallback_on_provider_error=True,
        embedding_backoff_base=0.0,
        search_timeout=10.0,
    )


@pytest.fixture
def providers():
    return {
        "ollama": HashingEmbedder(name="ollama", model="hash-ollama", dimensions=64),
        "openai": HashingEmbedder(name="openai", model="hash-openai", dimensions=48, is_paid=True),
        "voyage": HashingEmbedder(name="voyage", model="hash-voyage", dimensions=32, is_paid=True),
    }


@pytest.fixture
def engine(settings, providers, clock):
    engine = KnowledgeSearchEngine(settings, clock=clock)
    for provider in providers.values():
        engine.registry.register(provider)
    yield engine
    engine.close()


@pytest.fixture
def collection(engine):
    return engine.create_collection("docs", description="Framework documentation")


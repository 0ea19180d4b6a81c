"""Tests for lexical, vector and hybrid search through the engine"""

from unittest.mock import MagicMock
import threading
import time

import pytest

from knowledge_search.exceptions import (
    CollectionNotFound,
    DocumentNotFound,
    InvalidRequest,
    ProviderError,
    ProviderUnavailable,
    SearchTimeout,
    ValidationError,
)
from knowledge_search.retrieval.lexical_search import query_terms, tokenize

STATE_PARAGRAPH = " ".join(
    f"State management note {i}: widgets rebuild when their state object changes and "
    f"providers expose shared state to descendants."
    for i in range(9)
)
NAVIGATION_PARAGRAPH = " ".join(
    f"Navigation note {i}: routes are pushed onto the navigator stack and popped when "
    f"the user goes back to the previous screen."
    for i in range(9)
)


@pytest.fixture
def two_topic_document(engine, collection):
    """A ~2000 character document with one paragraph per topic"""
    text = STATE_PARAGRAPH + "\n\n" + NAVIGATION_PARAGRAPH
    doc = engine.add_document(collection["id"], "Flutter guide", text=text)
    engine.ingest(doc["id"])
    return doc


@pytest.fixture
def small_docs(engine, collection):
    texts = {
        "cache": "Cache eviction policy removes the least recently used entries first.",
        "routes": "Navigation routes map names to screens in the application.",
        "drawer": "The navigation drawer slides in from the side and lists destinations.",
        "migrations": "Database migrations change the schema one version at a time.",
    }
    ids = {}
    for name, text in texts.items():
        doc = engine.add_document(collection["id"], name.title(), text=text)
        engine.ingest(doc["id"])
        ids[name] = doc["id"]
    return ids


class TestQueryTerms:
    """Test query tokenization"""

    def test_stopwords_removed(self):
        assert query_terms("How do I open the navigation drawer?") == ["open", "navigation", "drawer"]

    def test_stopword_only_query_keeps_tokens(self):
        assert query_terms("the") == ["the"]

    def test_empty_query_rejected(self):
        with pytest.raises(ValidationError):
            query_terms("   ")

    def test_punctuation_only_query_rejected(self):
        with pytest.raises(ValidationError):
            query_terms("?!")

    def test_tokenize_keeps_contractions(self):
        assert tokenize("Don't PANIC") == ["don't", "panic"]


class TestLexicalSearch:
    """Test BM25 ranking over stored chunks"""

    def test_only_matching_chunks_are_returned(self, engine, collection, small_docs):
        results = engine.lexical_search.search("navigation drawer", collection["id"], top_k=10)

        assert [r.document_id for r in results] == [small_docs["drawer"], small_docs["routes"]]
        assert results[0].score > results[1].score

    def test_results_carry_document_context(self, engine, collection, small_docs):
        result = engine.lexical_search.search("migrations", collection["id"], top_k=1)[0]
        assert result.metadata["document_title"] == "Migrations"
        assert result.text.startswith("Database migrations")

    def test_unindexed_documents_are_invisible(self, engine, collection):
        engine.add_document(collection["id"], "Draft", text="Navigation drawer draft.")
        assert engine.lexical_search.search("drawer", collection["id"], top_k=5) == []


class TestVectorMode:
    """Test vector-only search"""

    def test_returns_similarity_scores(self, engine, collection, two_topic_document):
        response = engine.search("navigator routes stack", collection["id"], mode="vector", top_k=2)

        assert response.mode == "vector"
        assert not response.degraded
        assert len(response.results) == 2
        top = response.results[0]
        assert "navigator" in top.text
        assert top.raw_vector_score == top.score
        assert top.raw_lexical_score is None
        assert -1.0 <= top.score <= 1.0
        assert response.results[0].score >= response.results[1].score

    def test_empty_collection(self, engine, collection):
        assert engine.search("anything", collection["id"]).results == []

    def test_provider_failure_is_provider_unavailable(
        self, engine, collection, two_topic_document, providers
    ):
        providers["ollama"].fail_with = ProviderError("ollama", "connection refused")
        providers["ollama"].fail_times = -1

        with pytest.raises(ProviderUnavailable) as exc_info:
            engine.search("routes", collection["id"], mode="vector")

        assert exc_info.value.provider == "ollama"
        assert "connection refused" in exc_info.value.message

    def test_timeout_fails_query(self, engine, collection, two_topic_document):
        engine.search_facade.timeout = 0.5

        def slow_vector(*args):
            time.sleep(1.5)
            return []

        engine.vector_search.search = slow_vector

        with pytest.raises(SearchTimeout):
            engine.search("routes", collection["id"], mode="vector")


class TestHybridMode:
    """Test concurrent vector + BM25 search fused with RRF"""

    def test_end_to_end(self, engine, collection, two_topic_document):
        response = engine.search("navigator routes", collection["id"], mode="hybrid", top_k=3)

        assert response.mode == "hybrid"
        assert not response.degraded
        assert not response.trust_scoring_applied
        assert 1 <= len(response.results) <= 3
        top = response.results[0]
        assert "navigator" in top.text
        assert top.document_title == "Flutter guide"
        assert top.raw_vector_score is not None
        assert top.raw_lexical_score is not None
        # Weighted RRF scores never exceed (0.7 + 0.3) / (60 + 1)
        assert all(0 < r.score <= 1.0 / 61 + 1e-12 for r in response.results)
        scores = [r.score for r in response.results]
        assert scores == sorted(scores, reverse=True)

    def test_top_k_is_respected(self, engine, collection, small_docs):
        response = engine.search("navigation", collection["id"], mode="hybrid", top_k=1)
        assert len(response.results) == 1

    def test_channels_run_concurrently(self, engine, collection, two_topic_document):
        barrier = threading.Barrier(2, timeout=5)
        vector_search = engine.vector_search.search
        lexical_search = engine.lexical_search.search

        def vector_after_barrier(*args):
            barrier.wait()
            return vector_search(*args)

        def lexical_after_barrier(*args):
            barrier.wait()
            return lexical_search(*args)

        engine.vector_search.search = vector_after_barrier
        engine.lexical_search.search = lexical_after_barrier

        response = engine.search("routes", collection["id"], mode="hybrid")
        assert not response.degraded
        assert response.results

    def test_lexical_failure_degrades_to_vector(self, engine, collection, two_topic_document):
        engine.lexical_search.search = MagicMock(side_effect=RuntimeError("index corrupted"))

        response = engine.search("navigator routes", collection["id"], mode="hybrid", top_k=2)

        assert response.degraded
        assert response.mode == "hybrid"
        assert all(r.score == r.raw_vector_score for r in response.results)
        assert all(r.raw_lexical_score is None for r in response.results)

    def test_query_without_lexical_terms_is_not_degraded(
        self, engine, collection, two_topic_document
    ):
        response = engine.search("?!", collection["id"], mode="hybrid", top_k=2)

        assert not response.degraded
        assert response.results
        assert all(r.raw_lexical_score is None for r in response.results)

    def test_first_paragraph_keyword_ranks_no_lower_than_vector(
        self, engine, collection, two_topic_document
    ):
        query = "state management widgets rebuild descendants"

        def state_rank(mode):
            response = engine.search(query, collection["id"], mode=mode, top_k=10)
            return next(
                i for i, r in enumerate(response.results) if "State management" in r.text
            )

        assert state_rank("hybrid") <= state_rank("vector")

    def test_lexical_timeout_degrades_to_vector(self, engine, collection, two_topic_document):
        engine.search_facade.timeout = 1.0

        def slow_lexical(*args):
            time.sleep(3.0)
            return []

        engine.lexical_search.search = slow_lexical

        response = engine.search("routes", collection["id"], mode="hybrid")
        assert response.degraded
        assert response.results

    def test_vector_timeout_fails_query(self, engine, collection, two_topic_document):
        engine.search_facade.timeout = 0.5

        def slow_vector(*args):
            time.sleep(1.5)
            return []

        engine.vector_search.search = slow_vector

        with pytest.raises(SearchTimeout):
            engine.search("routes", collection["id"], mode="hybrid")

    def test_vector_failure_fails_query(self, engine, collection, two_topic_document, providers):
        providers["ollama"].fail_with = ProviderError("ollama", "model not loaded")
        providers["ollama"].fail_times = -1

        with pytest.raises(ProviderUnavailable):
            engine.search("routes", collection["id"], mode="hybrid")

    def test_trust_scoring_prefers_official_sources(self, engine, collection):
        text = "Hot reload injects updated source code into the running application."
        community = engine.add_document(
            collection["id"],
            "Forum answer",
            text=text,
            metadata={"source_url": "https://forum.example.org/t/1", "last_verified": "2022-01-01"},
        )
        official = engine.add_document(
            collection["id"],
            "Official docs",
            text=text,
            metadata={"source_url": "https://docs.flutter.dev/tools/hot-reload",
                      "last_verified": "2026-02-20T00:00:00Z"},
        )
        engine.ingest_many([community["id"], official["id"]], max_workers=1)

        response = engine.search(
            "hot reload", collection["id"], mode="hybrid", apply_trust_scoring=True
        )

        assert response.trust_scoring_applied
        assert response.results[0].document_id == official["id"]
        assert response.results[0].metadata.source_quality == "official"
        assert response.results[1].metadata.source_quality == "community"


class TestTwoTopicDocument:
    """Test chunking and embedding of the ~2000 character guide"""

    def test_chunks_fit_limit_with_default_provider(
        self, engine, two_topic_document, providers
    ):
        doc_id = two_topic_document["id"]
        dimensions = providers["ollama"].dimensions

        stored = engine.chunk_store.get_chunks([doc_id])

        assert len(stored) >= 2
        assert all(len(c["text"]) <= 800 for c in stored)
        assert {c["metadata"]["embedding_provider"] for c in stored} == {"ollama"}
        assert {c["metadata"]["embedding_dimensions"] for c in stored} == {dimensions}
        assert engine.document_status(doc_id)["metadata"]["embedding_dimensions"] == dimensions


class TestSearchRequests:
    """Test request validation and the JSON interface"""

    def test_json_round_trip(self, engine, collection, two_topic_document):
        response = engine.handle_search_request({
            "query": "navigator routes",
            "collectionId": collection["id"],
            "mode": "hybrid",
            "topK": 2,
            "weights": {"vector": 0.5, "lexical": 0.5},
        })

        assert response["mode"] == "hybrid"
        assert response["trustScoringApplied"] is False
        assert response["degraded"] is False
        assert len(response["results"]) == 2
        first = response["results"][0]
        assert set(first) >= {"chunkId", "documentId", "documentTitle", "text", "score", "metadata"}

    @pytest.mark.parametrize("payload", [
        {"query": "", "collectionId": "c"},
        {"query": "routes"},
        {"query": "routes", "collectionId": "c", "topK": 0},
        {"query": "routes", "collectionId": "c", "mode": "keyword"},
        {"query": "routes", "collectionId": "c", "weights": {"vector": 0, "lexical": 0}},
        {"query": "routes", "collectionId": "c", "unexpected": True},
    ])
    def test_invalid_payloads(self, engine, payload):
        with pytest.raises(InvalidRequest):
            engine.handle_search_request(payload)

    def test_blank_query(self, engine, collection):
        with pytest.raises(InvalidRequest):
            engine.search("   ", collection["id"])

    def test_unknown_collection(self, engine):
        with pytest.raises(CollectionNotFound):
            engine.search("routes", "missing-collection")


class TestCollectionLifecycle:
    """Test collection creation and cascading deletion"""

    def test_duplicate_name_rejected(self, engine, collection):
        with pytest.raises(ValidationError):
            engine.create_collection("docs")

    def test_list_collections(self, engine, collection):
        assert [c["name"] for c in engine.list_collections()] == ["docs"]

    def test_delete_cascades_to_documents_and_chunks(self, engine, collection, two_topic_document):
        doc_id = two_topic_document["id"]
        assert engine.chunk_store.get_chunks([doc_id])

        engine.delete_collection(collection["id"])

        assert engine.chunk_store.get_chunks([doc_id]) == []
        with pytest.raises(DocumentNotFound):
            engine.document_status(doc_id)
        with pytest.raises(CollectionNotFound):
            engine.search("routes", collection["id"])

    def test_add_document_to_missing_collection(self, engine):
        with pytest.raises(CollectionNotFound):
            engine.add_document("missing-collection", "Orphan", text="text")

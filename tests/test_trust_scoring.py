"""Tests for trust and recency re-weighting"""

from datetime import date, datetime

import pytest

from knowledge_search.models.search import SearchHit
from knowledge_search.retrieval.trust_scoring import (
    TrustRecencyScorer,
    months_before,
    parse_timestamp,
    recency_weight,
    trust_weight,
)

NOW = datetime(2026, 3, 15, 12, 0, 0)


def hit(chunk_id, score, **metadata):
    return SearchHit(chunk_id=chunk_id, document_id="doc", text=chunk_id, score=score, metadata=metadata)


class TestWeights:
    """Test the individual weight functions"""

    def test_trust_is_monotone(self):
        assert trust_weight("official") > trust_weight("verified") > trust_weight("community")
        assert trust_weight("community") > trust_weight(None)
        assert trust_weight("OFFICIAL") == 1.0
        assert trust_weight("rumour") == trust_weight(None)

    def test_recency_buckets(self):
        assert recency_weight("2026-01-01", NOW) == 1.0
        assert recency_weight("2025-06-01", NOW) == 0.9
        assert recency_weight("2024-01-01", NOW) == 0.7

    def test_recency_is_monotone(self):
        dates = ["2026-03-01", "2025-10-01", "2025-05-01", "2023-01-01"]
        weights = [recency_weight(value, NOW) for value in dates]
        assert weights == sorted(weights, reverse=True)

    def test_missing_or_invalid_date_is_stale(self):
        assert recency_weight(None, NOW) == 0.7
        assert recency_weight("last spring", NOW) == 0.7

    def test_bucket_boundaries(self):
        assert recency_weight("2025-09-16", NOW) == 1.0
        assert recency_weight("2025-09-15", NOW) == 0.9
        assert recency_weight("2025-03-15", NOW) == 0.9
        assert recency_weight("2025-03-14", NOW) == 0.7
        assert recency_weight("2025-02-20", NOW) == 0.7
        assert recency_weight("2025-02-15", NOW) == 0.7


class TestParseTimestamp:
    """Test ISO-8601 parsing"""

    def test_trailing_z_is_utc(self):
        assert parse_timestamp("2026-01-10T08:00:00Z") == datetime(2026, 1, 10, 8, 0, 0)

    def test_offset_is_normalized_to_utc(self):
        assert parse_timestamp("2026-01-10T10:00:00+02:00") == datetime(2026, 1, 10, 8, 0, 0)

    def test_date_values(self):
        assert parse_timestamp(date(2025, 12, 1)) == datetime(2025, 12, 1)
        assert parse_timestamp("2025-12-01") == datetime(2025, 12, 1)

    def test_empty_values(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None

    def test_months_before(self):
        assert months_before(NOW, 6) == date(2025, 9, 15)
        assert months_before(NOW, 12) == date(2025, 3, 15)
        assert months_before(datetime(2026, 5, 31), 3) == date(2026, 2, 28)
        assert months_before(datetime(2026, 1, 10), 1) == date(2025, 12, 10)


class TestTrustRecencyScorer:
    """Test re-ranking of fused hits"""

    @pytest.fixture
    def scorer(self):
        return TrustRecencyScorer()

    def test_official_recent_source_moves_up(self, scorer):
        hits = [
            hit("forum", 0.0165, source_quality="community", last_verified="2023-06-01"),
            hit("docs", 0.0160, source_quality="official", last_verified="2026-02-01T00:00:00Z"),
        ]

        reranked = scorer.apply(hits, now=NOW)

        assert [h.chunk_id for h in reranked] == ["docs", "forum"]
        assert reranked[0].score == pytest.approx(0.0160)
        assert reranked[1].score == pytest.approx(0.0165 * 0.6 * 0.7)
        assert reranked[0].metadata["trust_weight"] == 1.0
        assert reranked[1].metadata["recency_weight"] == 0.7

    def test_equal_scores_keep_input_order(self, scorer):
        hits = [
            hit("first", 0.5, source_quality="verified", last_verified="2026-01-01"),
            hit("second", 0.5, source_quality="verified", last_verified="2026-01-01"),
        ]
        assert [h.chunk_id for h in scorer.apply(hits, now=NOW)] == ["first", "second"]

    def test_input_hits_are_not_mutated(self, scorer):
        original = hit("a", 1.0, source_quality="community")
        scorer.apply([original], now=NOW)
        assert original.score == 1.0
        assert "trust_weight" not in original.metadata

"""Reciprocal Rank Fusion (RRF) for combining the vector and lexical rankings"""

from collections import defaultdict
from typing import Dict, List, NamedTuple, Optional, Sequence

from ..exceptions import ValidationError
from ..models.search import ScoredChunk
from ..utils.logger import setup_logger

logger = setup_logger(__name__)


class FusedResult(NamedTuple):
    """Result from RRF fusion: the chunk, its fused score and per-system details"""

    chunk_id: str
    rrf_score: float
    contributions: Dict[str, float]
    raw_scores: Dict[str, float]
    chunk: ScoredChunk

    @property
    def max_contribution(self) -> float:
        return max(self.contributions.values(), default=0.0)


def validate_weights(weights: Dict[str, float]) -> None:
    """
    Raises:
        ValidationError: If a weight is negative or all weights are zero
    """
    for name, weight in weights.items():
        if weight < 0:
            raise ValidationError(f"Fusion weight for '{name}' must be non-negative", field="weights")
    if weights and all(weight == 0 for weight in weights.values()):
        raise ValidationError("At least one fusion weight must be positive", field="weights")


class ReciprocalRankFusion:
    """
    Reciprocal Rank Fusion (RRF) algorithm for combining ranked lists.

    RRF formula: score = sum(weight_i / (k + rank_i + 1)) for each ranking system
    where:
    - weight_i: weight for ranking system i
    - k: smoothing parameter (typically 60)
    - rank_i: 0-based position in system i; a chunk absent from a list contributes 0

    Ties are broken by the larger single weighted contribution, then by chunk id,
    so the output is a pure function of the inputs.
    """

    def __init__(
        self,
        k_parameter: int = 60,
        weights: Optional[Dict[str, float]] = None,
    ):
        """
        Args:
            k_parameter: Smoothing parameter; higher values flatten rank differences
            weights: Weight per ranking system, e.g. {"vector": 0.7, "lexical": 0.3}.
                     Systems without a weight get 1.0
        """
        if k_parameter < 0:
            raise ValidationError("RRF k must be non-negative", field="rrf_k")
        self.k_parameter = k_parameter
        self.weights = dict(weights or {})
        validate_weights(self.weights)
        logger.debug(f"RRF initialized: k={k_parameter}, weights={self.weights}")

    def fuse(
        self,
        result_sets: Dict[str, Sequence[ScoredChunk]],
        top_k: int = 10,
        weights: Optional[Dict[str, float]] = None,
    ) -> List[FusedResult]:
        """
        Fuse ranked result lists.

        Args:
            result_sets: System name -> chunks in rank order (best first)
            top_k: Number of fused results to return
            weights: Per-call weights overriding the instance weights

        Returns:
            FusedResult list sorted by fused score (highest first)
        """
        if weights is not None:
            validate_weights(weights)
            weights = {**self.weights, **weights}
        else:
            weights = self.weights

        if not result_sets:
            logger.warning("No result sets provided for RRF fusion")
            return []

        rrf_scores: Dict[str, float] = defaultdict(float)
        contributions: Dict[str, Dict[str, float]] = defaultdict(dict)
        raw_scores: Dict[str, Dict[str, float]] = defaultdict(dict)
        chunks: Dict[str, ScoredChunk] = {}

        for system_name, results in result_sets.items():
            weight = weights.get(system_name, 1.0)
            seen = set()
            for rank, chunk in enumerate(results):
                # A chunk counts once per list, at its best rank
                if chunk.chunk_id in seen:
                    continue
                seen.add(chunk.chunk_id)
                contribution = weight / (self.k_parameter + rank + 1)
                rrf_scores[chunk.chunk_id] += contribution
                contributions[chunk.chunk_id][system_name] = contribution
                raw_scores[chunk.chunk_id][system_name] = chunk.score
                chunks.setdefault(chunk.chunk_id, chunk)

        fused_results = [
            FusedResult(
                chunk_id=chunk_id,
                rrf_score=score,
                contributions=contributions[chunk_id],
                raw_scores=raw_scores[chunk_id],
                chunk=chunks[chunk_id],
            )
            for chunk_id, score in rrf_scores.items()
        ]
        fused_results.sort(key=lambda r: (-r.rrf_score, -r.max_contribution, r.chunk_id))
        top_results = fused_results[:top_k]

        top_score_str = f"{top_results[0].rrf_score:.6f}" if top_results else "N/A"
        logger.debug(
            f"RRF fusion complete: combined {len(result_sets)} systems, "
            f"{len(fused_results)} unique chunks, returned {len(top_results)} results, "
            f"top score: {top_score_str}"
        )

        return top_results

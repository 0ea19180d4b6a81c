"""Single entry point for search: vector-only or hybrid (vector + BM25 fused with RRF)"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict, List, Optional
import time

import pydantic

from .lexical_search import LexicalSearchService
from .rrf_fusion import ReciprocalRankFusion
from .trust_scoring import TrustRecencyScorer
from .vector_search import VectorSearchService
from ..exceptions import (
    InvalidRequest,
    ProviderError,
    ProviderUnavailable,
    SearchTimeout,
    ValidationError,
)
from ..models.search import (
    CitationMetadata,
    ScoredChunk,
    SearchHit,
    SearchOptions,
    SearchRequest,
    SearchResponse,
    SearchResultItem,
)
from ..storage.repositories import CollectionRepository
from ..utils.logger import setup_logger

logger = setup_logger(__name__)


class HybridSearchFacade:
    """
    Runs a query against a collection.

    In ``vector`` mode only semantic search runs and its similarity scores
    are returned unchanged. In ``hybrid`` mode semantic and BM25 search run
    concurrently, each retrieving ``top_k * candidate_multiplier`` chunks;
    the two rankings are fused with RRF, optionally re-weighted by source
    trust and recency, and truncated to ``top_k``.

    If BM25 fails or times out the vector results are returned with
    ``degraded=True``. If vector search fails the query fails.
    """

    def __init__(
        self,
        collections: CollectionRepository,
        vector_search: VectorSearchService,
        lexical_search: LexicalSearchService,
        scorer: Optional[TrustRecencyScorer] = None,
        candidate_multiplier: int = 3,
        timeout: float = 30.0,
        max_workers: int = 4,
    ):
        self.collections = collections
        self.vector_search = vector_search
        self.lexical_search = lexical_search
        self.scorer = scorer or TrustRecencyScorer()
        self.candidate_multiplier = max(1, candidate_multiplier)
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max(2, max_workers), thread_name_prefix="hybrid-search"
        )

    def search(
        self,
        query: str,
        collection_id: str,
        options: Optional[SearchOptions] = None,
    ) -> SearchResponse:
        """
        Args:
            query: Natural-language query
            collection_id: Collection to search
            options: Mode, top_k, trust scoring and fusion settings (config defaults if None)

        Raises:
            InvalidRequest: If the query is empty
            CollectionNotFound: If the collection does not exist
            ProviderUnavailable: If the query cannot be embedded
            SearchTimeout: If vector search does not finish in time
        """
        if not query or not query.strip():
            raise InvalidRequest("Query must not be empty", field="query")
        options = options or SearchOptions()
        self.collections.require(collection_id)

        started = time.monotonic()
        if options.mode == "vector":
            response = self._vector_only(query, collection_id, options)
        else:
            response = self._hybrid(query, collection_id, options)

        logger.info(
            f"Search [{response.mode}] '{query[:60]}' in {collection_id}: "
            f"{len(response.results)} results in {time.monotonic() - started:.2f}s"
            + (" (degraded)" if response.degraded else "")
        )
        return response

    def handle_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a JSON search request and return the JSON response.

        Raises:
            InvalidRequest: If the payload does not match the request schema
        """
        try:
            request = SearchRequest.model_validate(payload)
        except pydantic.ValidationError as e:
            errors = [
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise InvalidRequest(
                "Invalid search request", details={"errors": errors}
            ) from e
        return self.search(request.query, request.collection_id, request.options()).to_json_dict()

    def _vector_only(
        self, query: str, collection_id: str, options: SearchOptions
    ) -> SearchResponse:
        future = self._executor.submit(
            self.vector_search.search, query, collection_id, options.top_k
        )
        try:
            chunks = future.result(timeout=self.timeout)
        except FutureTimeout as e:
            raise SearchTimeout(
                f"Vector search exceeded {self.timeout}s", {"collection_id": collection_id}
            ) from e
        except ProviderError as e:
            raise ProviderUnavailable(e.provider, e.reason, retryable=e.retryable) from e

        hits = [_vector_hit(chunk) for chunk in chunks]
        return _response(query, hits, "vector", trust_applied=False, degraded=False)

    def _hybrid(self, query: str, collection_id: str, options: SearchOptions) -> SearchResponse:
        candidates = options.top_k * self.candidate_multiplier
        deadline = time.monotonic() + self.timeout

        vector_future = self._executor.submit(
            self.vector_search.search, query, collection_id, candidates
        )
        lexical_future = self._executor.submit(
            self.lexical_search.search, query, collection_id, candidates
        )

        try:
            vector_results = vector_future.result(timeout=self.timeout)
        except FutureTimeout as e:
            lexical_future.cancel()
            raise SearchTimeout(
                f"Vector search exceeded {self.timeout}s", {"collection_id": collection_id}
            ) from e
        except ProviderError as e:
            lexical_future.cancel()
            raise ProviderUnavailable(e.provider, e.reason, retryable=e.retryable) from e

        degraded = False
        try:
            lexical_results = lexical_future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FutureTimeout:
            logger.warning("Lexical search timed out; returning vector-only results")
            lexical_results, degraded = [], True
        except ValidationError:
            logger.debug(f"No lexical terms in '{query[:60]}'; fusing vector results alone")
            lexical_results = []
        except Exception as e:
            logger.warning(f"Lexical search failed ({e}); returning vector-only results")
            lexical_results, degraded = [], True

        if degraded:
            hits = [_vector_hit(chunk) for chunk in vector_results]
        else:
            fusion = ReciprocalRankFusion(options.rrf_k, options.weights.as_dict())
            fused = fusion.fuse(
                {"vector": vector_results, "lexical": lexical_results}, top_k=candidates
            )
            hits = [
                SearchHit(
                    chunk_id=result.chunk_id,
                    document_id=result.chunk.document_id,
                    text=result.chunk.text,
                    score=result.rrf_score,
                    raw_vector_score=result.raw_scores.get("vector"),
                    raw_lexical_score=result.raw_scores.get("lexical"),
                    metadata=result.chunk.metadata,
                )
                for result in fused
            ]

        if options.apply_trust_scoring:
            hits = self.scorer.apply(hits)

        return _response(
            query,
            hits[:options.top_k],
            "hybrid",
            trust_applied=options.apply_trust_scoring,
            degraded=degraded,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)


def _vector_hit(chunk: ScoredChunk) -> SearchHit:
    return SearchHit(
        chunk_id=chunk.chunk_id,
        document_id=chunk.document_id,
        text=chunk.text,
        score=chunk.score,
        raw_vector_score=chunk.score,
        metadata=chunk.metadata,
    )


def _response(
    query: str, hits: List[SearchHit], mode: str, trust_applied: bool, degraded: bool
) -> SearchResponse:
    return SearchResponse(
        query=query,
        results=[
            SearchResultItem(
                chunk_id=hit.chunk_id,
                document_id=hit.document_id,
                document_title=hit.metadata.get("document_title", ""),
                text=hit.text,
                score=hit.score,
                raw_vector_score=hit.raw_vector_score,
                raw_lexical_score=hit.raw_lexical_score,
                metadata=CitationMetadata(
                    page=hit.metadata.get("page"),
                    section=hit.metadata.get("section"),
                    source_quality=hit.metadata.get("source_quality"),
                    last_verified=_as_text(hit.metadata.get("last_verified")),
                ),
            )
            for hit in hits
        ],
        mode=mode,
        trust_scoring_applied=trust_applied,
        degraded=degraded,
    )


def _as_text(value) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)

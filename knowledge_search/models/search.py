"""Search request/response models and internal result types"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..config import config

SearchMode = Literal["vector", "hybrid"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FusionWeights(_CamelModel):
    """Per-channel weights for reciprocal rank fusion"""

    vector: float = Field(default_factory=lambda: config.rrf_vector_weight, ge=0)
    lexical: float = Field(default_factory=lambda: config.rrf_lexical_weight, ge=0)

    @model_validator(mode="after")
    def _not_all_zero(self):
        if self.vector == 0 and self.lexical == 0:
            raise ValueError("at least one fusion weight must be positive")
        return self

    def as_dict(self) -> Dict[str, float]:
        return {"vector": self.vector, "lexical": self.lexical}


class SearchOptions(_CamelModel):
    mode: SearchMode = Field(default_factory=lambda: config.search_mode)
    top_k: int = Field(default_factory=lambda: config.default_top_k, ge=1, le=50)
    apply_trust_scoring: bool = Field(default_factory=lambda: config.enable_trust_scoring)
    weights: FusionWeights = Field(default_factory=FusionWeights)
    rrf_k: int = Field(default_factory=lambda: config.rrf_k_parameter, ge=0)


class SearchRequest(SearchOptions):
    """JSON search request: ``{query, collectionId, mode, topK, applyTrustScoring, weights}``"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    query: str
    collection_id: str

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be empty")
        return value

    def options(self) -> SearchOptions:
        return SearchOptions(
            mode=self.mode,
            top_k=self.top_k,
            apply_trust_scoring=self.apply_trust_scoring,
            weights=self.weights,
            rrf_k=self.rrf_k,
        )


class CitationMetadata(_CamelModel):
    page: Optional[int] = None
    section: Optional[str] = None
    source_quality: Optional[str] = None
    last_verified: Optional[str] = None


class SearchResultItem(_CamelModel):
    chunk_id: str
    document_id: str
    document_title: str
    text: str
    score: float
    raw_vector_score: Optional[float] = None
    raw_lexical_score: Optional[float] = None
    metadata: CitationMetadata = Field(default_factory=CitationMetadata)


class SearchResponse(_CamelModel):
    query: str
    results: List[SearchResultItem]
    mode: SearchMode
    trust_scoring_applied: bool = False
    degraded: bool = False

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class ScoredChunk:
    """One chunk returned by a single search channel"""

    chunk_id: str
    document_id: str
    text: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    document_created_at: Optional[datetime] = None


@dataclass
class SearchHit:
    """A fused (or vector-only) result before it is rendered to the response"""

    chunk_id: str
    document_id: str
    text: str
    score: float
    raw_vector_score: Optional[float] = None
    raw_lexical_score: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

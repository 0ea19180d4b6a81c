"""Semantic search over chunk vectors"""

from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Tuple

from ..embeddings.registry import ProviderRegistry
from ..exceptions import ValidationError
from ..indexing.chroma_client import ChunkStore
from ..models.search import ScoredChunk
from ..storage.repositories import DocumentRepository
from ..storage.tables import DocumentRecord, DocumentStatus
from ..utils.logger import setup_logger

logger = setup_logger(__name__)


def searchable_documents(
    documents: DocumentRepository, collection_id: str
) -> Dict[str, DocumentRecord]:
    """Documents of a collection that finished ingestion, keyed by id"""
    return {
        doc.id: doc
        for doc in documents.list_by_collection(collection_id, status=DocumentStatus.COMPLETE)
    }


def document_context(document: DocumentRecord) -> Dict[str, Any]:
    """Document-level fields attached to every chunk result for citation"""
    metadata = document.doc_metadata or {}
    return {
        "document_title": document.title,
        "source_quality": metadata.get("source_quality"),
        "last_verified": metadata.get("last_verified"),
        "source_url": metadata.get("source_url"),
    }


def recency_key(created_at: datetime) -> float:
    return created_at.timestamp() if created_at else 0.0


class VectorSearchService:
    """
    Nearest-neighbour search over a collection's chunks.

    The query is embedded with the same provider and model that embedded
    each document. A collection whose documents span several embedding
    spaces is searched once per space and the results are merged by
    similarity.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        chunk_store: ChunkStore,
        registry: ProviderRegistry,
    ):
        self.documents = documents
        self.chunk_store = chunk_store
        self.registry = registry

    def search(self, query: str, collection_id: str, top_k: int) -> List[ScoredChunk]:
        """
        Args:
            query: Natural-language query
            collection_id: Collection to search
            top_k: Maximum number of chunks to return

        Returns:
            Chunks ordered by cosine similarity (desc), then document recency
            (newer first), then chunk id

        Raises:
            ValidationError: If the query is empty
            ProviderError: If the query cannot be embedded
        """
        if not query or not query.strip():
            raise ValidationError("Query must not be empty", field="query")

        docs = searchable_documents(self.documents, collection_id)
        if not docs:
            return []

        spaces: Dict[Tuple[str, str, int], List[str]] = defaultdict(list)
        for doc in docs.values():
            metadata = doc.doc_metadata or {}
            provider = metadata.get("embedding_provider")
            model = metadata.get("embedding_model")
            dimensions = metadata.get("embedding_dimensions")
            if provider and model and dimensions:
                spaces[(provider, model, int(dimensions))].append(doc.id)

        results: List[ScoredChunk] = []
        for (provider, model, dimensions), document_ids in sorted(spaces.items()):
            selection = replace(
                self.registry.selection_for(provider),
                model=model,
                dimensions=dimensions,
                reason="stored_embedding_space",
            )
            embedded = self.registry.embed_query(selection, query, collection_id)
            hits = self.chunk_store.query(selection, embedded.vectors[0], document_ids, top_k)
            logger.debug(f"Vector search on {provider}/{model}: {len(hits)} hits")

            for hit in hits:
                doc = docs[hit["document_id"]]
                results.append(
                    ScoredChunk(
                        chunk_id=hit["chunk_id"],
                        document_id=hit["document_id"],
                        text=hit["text"],
                        score=hit["similarity"],
                        metadata={**hit["metadata"], **document_context(doc)},
                        document_created_at=doc.created_at,
                    )
                )

        results.sort(
            key=lambda chunk: (-chunk.score, -recency_key(chunk.document_created_at), chunk.chunk_id)
        )
        return results[:top_k]

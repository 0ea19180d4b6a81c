"""Composition root wiring storage, embeddings, budget, ingestion and search"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from .budget.budget_guard import BudgetGuard
from .budget.cost_tracker import CostTracker
from .budget.pricing import PriceTable
from .config import Config, config as default_config
from .embeddings.registry import ProviderRegistry
from .embeddings.router import EmbeddingRouter
from .indexing.chroma_client import ChunkStore
from .indexing.chunker import ParagraphChunker
from .indexing.orchestrator import IngestionOrchestrator, IngestionResult
from .models.search import SearchOptions, SearchResponse
from .retrieval.hybrid_search import HybridSearchFacade
from .retrieval.lexical_search import LexicalSearchService
from .retrieval.trust_scoring import TrustRecencyScorer
from .retrieval.vector_search import VectorSearchService
from .storage.database import create_db_engine, create_session_factory, init_db, utc_now
from .storage.repositories import (
    AlertRepository,
    CollectionRepository,
    DocumentRepository,
    UsageRepository,
)
from .utils.logger import setup_logger

logger = setup_logger(__name__)


class KnowledgeSearchEngine:
    """
    Knowledge base of collections and documents with hybrid retrieval.

    Example:
        engine = KnowledgeSearchEngine()
        collection = engine.create_collection("flutter-docs")
        doc = engine.add_document(collection["id"], "State management", text=extracted)
        engine.ingest(doc["id"])
        response = engine.search("how do I rebuild a widget", collection["id"])
    """

    def __init__(
        self,
        settings: Optional[Config] = None,
        chroma_client=None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            settings: Configuration (module-level config if None)
            chroma_client: Existing Chroma client; a PersistentClient at
                           settings.chroma_path is created if None
            clock: Source of the current UTC time for budget periods
        """
        self.settings = settings or default_config
        self.settings.validate_settings()

        self.db_engine = create_db_engine(self.settings.database_url)
        init_db(self.db_engine)
        session_factory = create_session_factory(self.db_engine)

        self.collections = CollectionRepository(session_factory)
        self.documents = DocumentRepository(session_factory)
        self.usage = UsageRepository(session_factory)
        self.alerts = AlertRepository(session_factory)

        self.budget_guard = BudgetGuard(
            self.usage,
            self.alerts,
            monthly_budget=self.settings.monthly_budget_usd,
            warning_ratio=self.settings.budget_warning_ratio,
            enable_alerts=self.settings.enable_cost_alerts,
            clock=clock,
        )
        self.cost_tracker = CostTracker(
            self.usage,
            self.alerts,
            self.budget_guard,
            PriceTable(self.settings.price_table),
            clock=clock,
        )

        self.registry = ProviderRegistry(self.settings, cost_tracker=self.cost_tracker)
        self.router = EmbeddingRouter(self.registry, self.settings, budget_guard=self.budget_guard)

        self.chunk_store = ChunkStore(
            chroma_path=self.settings.chroma_path,
            prefix=self.settings.chunk_collection_prefix,
            client=chroma_client,
        )
        self.orchestrator = IngestionOrchestrator(
            documents=self.documents,
            collections=self.collections,
            chunk_store=self.chunk_store,
            router=self.router,
            registry=self.registry,
            chunker=ParagraphChunker(self.settings.chunk_size, self.settings.chunk_overlap),
            official_domains=self.settings.official_source_domains,
            fallback_on_provider_error=self.settings.fallback_on_provider_error,
        )

        self.vector_search = VectorSearchService(self.documents, self.chunk_store, self.registry)
        self.lexical_search = LexicalSearchService(self.documents, self.chunk_store)
        self.search_facade = HybridSearchFacade(
            self.collections,
            self.vector_search,
            self.lexical_search,
            scorer=TrustRecencyScorer(),
            candidate_multiplier=self.settings.candidate_multiplier,
            timeout=self.settings.search_timeout,
            max_workers=self.settings.search_max_workers,
        )
        logger.info("Knowledge search engine ready")

    # Collections

    def create_collection(
        self, name: str, description: Optional[str] = None, is_personal: bool = False
    ) -> Dict[str, Any]:
        record = self.collections.create(name, description, is_personal)
        logger.info(f"Created collection '{name}' ({record.id})")
        return _collection_dict(record)

    def list_collections(self) -> List[Dict[str, Any]]:
        return [_collection_dict(record) for record in self.collections.list_all()]

    def delete_collection(self, collection_id: str) -> None:
        """Delete a collection with all its documents and chunks"""
        self.collections.require(collection_id)
        self.chunk_store.delete_collection_chunks(collection_id)
        self.collections.delete(collection_id)
        logger.info(f"Deleted collection {collection_id}")

    # Documents

    def add_document(
        self,
        collection_id: str,
        title: str,
        text: Optional[str] = None,
        content_type: str = "text/plain",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Register a document; ``text`` is the extracted plain text, if already available"""
        record = self.documents.create(collection_id, title, text, content_type, metadata)
        return _document_dict(record)

    def set_extracted_text(self, document_id: str, text: str) -> None:
        self.documents.set_extracted_text(document_id, text)

    def document_status(self, document_id: str) -> Dict[str, Any]:
        return _document_dict(self.documents.require(document_id))

    def ingest(self, document_id: str) -> IngestionResult:
        return self.orchestrator.ingest(document_id)

    def ingest_many(self, document_ids: Sequence[str], max_workers: int = 4):
        return self.orchestrator.ingest_many(document_ids, max_workers=max_workers)

    # Search

    def search(
        self,
        query: str,
        collection_id: str,
        options: Optional[SearchOptions] = None,
        **option_overrides,
    ) -> SearchResponse:
        """
        Search a collection.

        Keyword overrides (mode, top_k, apply_trust_scoring, weights, rrf_k)
        are applied on top of ``options``.
        """
        if option_overrides:
            base = options.model_dump() if options is not None else {}
            options = SearchOptions.model_validate({**base, **option_overrides})
        return self.search_facade.search(query, collection_id, options)

    def handle_search_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.search_facade.handle_request(payload)

    # Costs

    def cost_summary(self, period: str = "month") -> Dict[str, Any]:
        return self.cost_tracker.summary(period)

    def recent_alerts(self, limit: int = 10) -> List[Dict[str, Any]]:
        return self.cost_tracker.recent_alerts(limit)

    def acknowledge_alert(self, alert_id: int) -> bool:
        return self.cost_tracker.acknowledge_alert(alert_id)

    def close(self) -> None:
        self.search_facade.close()
        self.cost_tracker.close()
        self.db_engine.dispose()


def _collection_dict(record) -> Dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "description": record.description,
        "is_personal": record.is_personal,
        "created_at": record.created_at.isoformat(),
    }


def _document_dict(record) -> Dict[str, Any]:
    return {
        "id": record.id,
        "collection_id": record.collection_id,
        "title": record.title,
        "content_type": record.content_type,
        "status": record.status,
        "error_message": record.error_message,
        "metadata": dict(record.doc_metadata or {}),
        "created_at": record.created_at.isoformat(),
        "updated_at": record.updated_at.isoformat(),
    }

"""Document ingestion pipeline: extracted text -> chunks -> vectors -> chunk store"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .chroma_client import ChunkStore
from .chunker import ParagraphChunker, TextChunk
from .metadata import build_document_metadata
from ..embeddings.base import EmbeddingSelection
from ..embeddings.registry import ProviderRegistry
from ..embeddings.router import EmbeddingRouter, hints_from_metadata, routing_metadata
from ..exceptions import (
    BackingStoreError,
    DocumentNotFound,
    IngestionError,
    ProviderError,
)
from ..storage.repositories import CollectionRepository, DocumentRepository
from ..storage.tables import DocumentStatus
from ..utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class IngestionResult:
    """Outcome of ingesting one document"""

    document_id: str
    status: str
    chunk_count: int
    provider: Optional[str] = None
    model: Optional[str] = None
    dimensions: Optional[int] = None
    routing_reason: Optional[str] = None
    fallback_used: bool = False


class IngestionOrchestrator:
    """
    Drives a document through extracting -> chunking -> embedding -> complete.

    Every chunk of a document is embedded by the same provider: routing
    happens once per document. Re-ingestion replaces all previous chunks.
    Any failure leaves the document in ``error`` with the failure message.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        collections: CollectionRepository,
        chunk_store: ChunkStore,
        router: EmbeddingRouter,
        registry: ProviderRegistry,
        chunker: ParagraphChunker,
        official_domains: Sequence[str] = (),
        fallback_on_provider_error: bool = True,
    ):
        self.documents = documents
        self.collections = collections
        self.chunk_store = chunk_store
        self.router = router
        self.registry = registry
        self.chunker = chunker
        self.official_domains = list(official_domains)
        self.fallback_on_provider_error = fallback_on_provider_error

    def ingest(self, document_id: str) -> IngestionResult:
        """
        Ingest one document whose extracted text is already stored.

        Raises:
            DocumentNotFound: If the document does not exist
            IngestionError: If any stage fails (the document is marked 'error')
        """
        document = self.documents.require(document_id)
        stage = DocumentStatus.EXTRACTING

        try:
            self.documents.update_status(document_id, DocumentStatus.EXTRACTING)
            text = document.extracted_text
            if text is None:
                raise ValueError("document has no extracted text")

            stage = DocumentStatus.CHUNKING
            self.documents.update_status(document_id, DocumentStatus.CHUNKING)
            chunks = self.chunker.chunk_text(text)
            logger.info(f"Document {document_id}: {len(chunks)} chunks")

            collection = self.collections.require(document.collection_id)
            metadata = build_document_metadata(
                document.doc_metadata, document.content_type, self.official_domains
            )

            if not chunks:
                self.chunk_store.delete_document_chunks(document_id)
                self.documents.update_metadata(document_id, {**metadata, "chunk_count": 0})
                self.documents.update_status(document_id, DocumentStatus.COMPLETE)
                return IngestionResult(document_id, DocumentStatus.COMPLETE, 0)

            stage = DocumentStatus.EMBEDDING
            self.documents.update_status(document_id, DocumentStatus.EMBEDDING)
            hints = hints_from_metadata(metadata, collection.is_personal)
            selection = self.router.select_provider(text, hints)
            selection, vectors, fallback_used = self._embed_chunks(
                selection, chunks, document.collection_id
            )

            stored = self.chunk_store.replace_document_chunks(
                selection, document_id, document.collection_id, chunks, vectors
            )
            self.documents.update_metadata(
                document_id,
                {**metadata, **routing_metadata(selection), "chunk_count": stored},
            )
            self.documents.update_status(document_id, DocumentStatus.COMPLETE)

        except Exception as e:
            logger.error(f"Ingestion of {document_id} failed during {stage}: {e}")
            self._mark_error(document_id, str(e))
            raise IngestionError(document_id, stage, str(e)) from e

        logger.info(
            f"Document {document_id} complete: {stored} chunks embedded with "
            f"{selection.provider}/{selection.model} ({selection.reason})"
        )
        return IngestionResult(
            document_id=document_id,
            status=DocumentStatus.COMPLETE,
            chunk_count=stored,
            provider=selection.provider,
            model=selection.model,
            dimensions=selection.dimensions,
            routing_reason=selection.reason,
            fallback_used=fallback_used,
        )

    def _embed_chunks(
        self,
        selection: EmbeddingSelection,
        chunks: List[TextChunk],
        collection_id: str,
    ) -> Tuple[EmbeddingSelection, List[List[float]], bool]:
        texts = [chunk.text for chunk in chunks]
        try:
            result = self.registry.embed_documents(selection, texts, collection_id)
            return selection, result.vectors, False
        except ProviderError as e:
            fallback = self.router.fallback_selection()
            if not self.fallback_on_provider_error or fallback.provider == selection.provider:
                raise
            logger.warning(
                f"{selection.provider} failed ({e.message}); "
                f"re-embedding with {fallback.provider}"
            )
            result = self.registry.embed_documents(fallback, texts, collection_id)
            return fallback, result.vectors, True

    def _mark_error(self, document_id: str, message: str) -> None:
        try:
            self.documents.update_status(document_id, DocumentStatus.ERROR, message)
        except (BackingStoreError, DocumentNotFound) as e:
            logger.error(f"Could not record error status for {document_id}: {e}")

    def ingest_many(
        self, document_ids: Sequence[str], max_workers: int = 4
    ) -> Dict[str, Union[IngestionResult, Exception]]:
        """
        Ingest several documents concurrently.

        Returns:
            Mapping of document id to its IngestionResult or the raised exception
        """
        outcomes: Dict[str, Union[IngestionResult, Exception]] = {}
        if not document_ids:
            return outcomes

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ingest") as executor:
            futures = {
                document_id: executor.submit(self.ingest, document_id)
                for document_id in document_ids
            }
            for document_id, future in futures.items():
                try:
                    outcomes[document_id] = future.result()
                except (IngestionError, DocumentNotFound) as e:
                    outcomes[document_id] = e

        failed = sum(1 for outcome in outcomes.values() if isinstance(outcome, Exception))
        logger.info(f"Batch ingestion finished: {len(outcomes) - failed} complete, {failed} failed")
        return outcomes

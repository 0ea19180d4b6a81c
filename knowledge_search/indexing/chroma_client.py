"""Chroma DB storage for embedded chunks, one collection per embedding space"""

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence
import re
import threading

import chromadb
from chromadb.config import Settings

from .chunker import TextChunk
from ..embeddings.base import EmbeddingSelection
from ..exceptions import BackingStoreError
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

ADD_BATCH_SIZE = 1000
_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def chunk_id_for(document_id: str, position: int) -> str:
    return f"{document_id}-{position:04d}"


class ChunkStore:
    """
    Persists chunk text, vectors and metadata in Chroma.

    Vectors of different providers/models cannot share an index, so each
    embedding space (provider + model) gets its own cosine-distance
    collection named ``{prefix}-{provider}-{model}``.
    """

    def __init__(
        self,
        chroma_path: Optional[Path | str] = None,
        prefix: str = "chunks",
        client=None,
    ):
        """
        Args:
            chroma_path: Directory for the persistent Chroma database
            prefix: Collection name prefix
            client: Existing Chroma client (takes precedence over chroma_path)
        """
        self.prefix = prefix
        self._collections: Dict[str, Any] = {}
        self._lock = threading.Lock()

        if client is not None:
            self.client = client
        else:
            if chroma_path is None:
                raise ValueError("Either chroma_path or client is required")
            self.chroma_path = Path(chroma_path)
            self.chroma_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Initializing Chroma PersistentClient at {self.chroma_path}")
            self.client = self._initialize_client()

    def _initialize_client(self):
        try:
            client = chromadb.PersistentClient(
                path=str(self.chroma_path),
                settings=Settings(
                    anonymized_telemetry=False,
                    allow_reset=True,
                    is_persistent=True,
                ),
            )
            logger.info("Chroma PersistentClient initialized successfully")
            return client
        except Exception as e:
            logger.error(f"Failed to initialize Chroma PersistentClient: {e}")
            raise BackingStoreError(f"Failed to initialize Chroma: {e}") from e

    def collection_name(self, provider: str, model: str) -> str:
        raw = f"{self.prefix}-{provider}-{model}"
        name = _INVALID_NAME_CHARS.sub("-", raw).strip("-._")
        return name[:512]

    def list_spaces(self) -> List[str]:
        """Names of all chunk collections"""
        names = []
        for item in self.client.list_collections():
            # chromadb returns names in some releases and Collection objects in others
            name = item if isinstance(item, str) else item.name
            if name.startswith(f"{self.prefix}-"):
                names.append(name)
        return sorted(names)

    def _space(self, selection: EmbeddingSelection, create: bool):
        name = self.collection_name(selection.provider, selection.model)
        with self._lock:
            collection = self._collections.get(name)
            if collection is not None:
                return collection
            if not create and name not in self.list_spaces():
                return None
            collection = self.client.get_or_create_collection(
                name=name,
                metadata={
                    "hnsw:space": "cosine",
                    "embedding_provider": selection.provider,
                    "embedding_model": selection.model,
                    "embedding_dimensions": selection.dimensions,
                },
                embedding_function=None,
            )
            self._collections[name] = collection
            return collection

    def _all_spaces(self) -> Iterator[Any]:
        for name in self.list_spaces():
            with self._lock:
                collection = self._collections.get(name)
                if collection is None:
                    collection = self.client.get_collection(name=name, embedding_function=None)
                    self._collections[name] = collection
            yield collection

    def replace_document_chunks(
        self,
        selection: EmbeddingSelection,
        document_id: str,
        collection_id: str,
        chunks: Sequence[TextChunk],
        vectors: Sequence[Sequence[float]],
    ) -> int:
        """
        Replace every stored chunk of a document.

        Old chunks are removed from all embedding spaces, so a document that
        changes provider on re-ingestion leaves nothing behind.

        Returns:
            Number of chunks stored
        """
        if len(chunks) != len(vectors):
            raise ValueError(f"{len(chunks)} chunks but {len(vectors)} vectors")

        try:
            self.delete_document_chunks(document_id)
            if not chunks:
                return 0

            collection = self._space(selection, create=True)
            ids = [chunk_id_for(document_id, chunk.chunk_num) for chunk in chunks]
            metadatas = [
                self._chunk_metadata(selection, document_id, collection_id, chunk)
                for chunk in chunks
            ]
            documents = [chunk.text for chunk in chunks]
            embeddings = [list(vector) for vector in vectors]

            for i in range(0, len(ids), ADD_BATCH_SIZE):
                collection.add(
                    ids=ids[i:i + ADD_BATCH_SIZE],
                    embeddings=embeddings[i:i + ADD_BATCH_SIZE],
                    documents=documents[i:i + ADD_BATCH_SIZE],
                    metadatas=metadatas[i:i + ADD_BATCH_SIZE],
                )
        except BackingStoreError:
            raise
        except Exception as e:
            logger.error(f"Failed to store chunks for document {document_id}: {e}")
            raise BackingStoreError(f"Failed to store chunks for {document_id}: {e}") from e

        logger.info(
            f"Stored {len(ids)} chunks for document {document_id} "
            f"in {collection.name}"
        )
        return len(ids)

    @staticmethod
    def _chunk_metadata(
        selection: EmbeddingSelection,
        document_id: str,
        collection_id: str,
        chunk: TextChunk,
    ) -> Dict[str, Any]:
        metadata = {
            "document_id": document_id,
            "collection_id": collection_id,
            "position": chunk.chunk_num,
            "start_offset": chunk.start_offset,
            "end_offset": chunk.end_offset,
            "section": chunk.section,
            "page": chunk.page,
            "embedding_provider": selection.provider,
            "embedding_model": selection.model,
            "embedding_dimensions": selection.dimensions,
        }
        # Chroma rejects None metadata values
        return {key: value for key, value in metadata.items() if value is not None}

    def delete_document_chunks(self, document_id: str) -> None:
        self._delete_where({"document_id": document_id})

    def delete_collection_chunks(self, collection_id: str) -> None:
        self._delete_where({"collection_id": collection_id})

    def _delete_where(self, where: Dict[str, Any]) -> None:
        try:
            for collection in self._all_spaces():
                collection.delete(where=where)
        except Exception as e:
            logger.error(f"Failed to delete chunks where {where}: {e}")
            raise BackingStoreError(f"Failed to delete chunks: {e}") from e

    def query(
        self,
        selection: EmbeddingSelection,
        vector: Sequence[float],
        document_ids: Sequence[str],
        top_k: int,
    ) -> List[Dict[str, Any]]:
        """
        Nearest-neighbour search restricted to the given documents.

        Returns:
            Dicts with chunk_id, document_id, text, similarity (1 - cosine distance)
            and metadata, nearest first
        """
        if not document_ids or top_k <= 0:
            return []

        try:
            collection = self._space(selection, create=False)
            if collection is None:
                return []

            where = {"document_id": {"$in": list(document_ids)}}
            # n_results larger than the filtered set is an error in some releases
            available = len(collection.get(where=where, include=["metadatas"])["ids"])
            n_results = min(top_k, available)
            if n_results == 0:
                return []

            results = collection.query(
                query_embeddings=[list(vector)],
                n_results=n_results,
                where=where,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            logger.error(f"Vector query failed on {selection.provider}/{selection.model}: {e}")
            raise BackingStoreError(f"Vector query failed: {e}") from e

        hits = []
        for chunk_id, text, metadata, distance in zip(
            results["ids"][0],
            results["documents"][0],
            results["metadatas"][0],
            results["distances"][0],
        ):
            hits.append({
                "chunk_id": chunk_id,
                "document_id": metadata["document_id"],
                "text": text,
                "similarity": 1.0 - float(distance),
                "metadata": dict(metadata),
            })
        return hits

    def get_chunks(self, document_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """All stored chunks of the given documents, across embedding spaces"""
        if not document_ids:
            return []

        chunks = []
        try:
            for collection in self._all_spaces():
                results = collection.get(
                    where={"document_id": {"$in": list(document_ids)}},
                    include=["documents", "metadatas"],
                )
                for chunk_id, text, metadata in zip(
                    results["ids"], results["documents"], results["metadatas"]
                ):
                    chunks.append({
                        "chunk_id": chunk_id,
                        "document_id": metadata["document_id"],
                        "text": text,
                        "metadata": dict(metadata),
                    })
        except Exception as e:
            logger.error(f"Failed to load chunks: {e}")
            raise BackingStoreError(f"Failed to load chunks: {e}") from e

        chunks.sort(key=lambda chunk: chunk["chunk_id"])
        return chunks

    def count(self) -> int:
        return sum(collection.count() for collection in self._all_spaces())

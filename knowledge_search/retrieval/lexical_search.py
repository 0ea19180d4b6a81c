"""Keyword search over chunk text with BM25"""

from typing import List
import re

import numpy as np
from rank_bm25 import BM25Okapi

from .vector_search import document_context, searchable_documents
from ..exceptions import ValidationError
from ..indexing.chroma_client import ChunkStore
from ..models.search import ScoredChunk
from ..storage.repositories import DocumentRepository
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

TOKEN_PATTERN = re.compile(r"\w+(?:['’]\w+)*")

STOPWORDS = frozenset("""
a about above after again against all am an and any are as at be because been
before being below between both but by can could did do does doing down during
each few for from further had has have having he her here hers herself him
himself his how i if in into is it its itself just me more most my myself no nor
not now of off on once only or other our ours ourselves out over own same she
should so some such than that the their theirs them themselves then there these
they this those through to too under until up very was we were what when where
which while who whom why will with would you your yours yourself yourselves
""".split())


def tokenize(text: str) -> List[str]:
    return TOKEN_PATTERN.findall(text.lower())


def query_terms(query: str) -> List[str]:
    """
    Tokenize a query and drop stopwords.

    A query made only of stopwords keeps all its tokens.

    Raises:
        ValidationError: If the query has no searchable tokens
    """
    if not query or not query.strip():
        raise ValidationError("Query must not be empty", field="query")
    tokens = tokenize(query)
    if not tokens:
        raise ValidationError(
            "Query must contain alphanumeric characters", field="query"
        )
    terms = [token for token in tokens if token not in STOPWORDS]
    return terms or tokens


class LexicalSearchService:
    """
    BM25 (Okapi) ranking over the chunks of a collection's complete documents.

    The index is built from the chunk store on every query, so it always
    reflects the current state of the collection.
    """

    def __init__(self, documents: DocumentRepository, chunk_store: ChunkStore):
        self.documents = documents
        self.chunk_store = chunk_store

    def search(self, query: str, collection_id: str, top_k: int) -> List[ScoredChunk]:
        """
        Returns:
            Chunks containing at least one query term, by BM25 score (desc) then chunk id

        Raises:
            ValidationError: If the query is empty or has no tokens
        """
        terms = query_terms(query)

        docs = searchable_documents(self.documents, collection_id)
        if not docs:
            return []

        chunks = self.chunk_store.get_chunks(list(docs))
        corpus = [tokenize(chunk["text"]) for chunk in chunks]
        if not any(corpus):
            return []

        bm25 = BM25Okapi(corpus)
        scores = np.asarray(bm25.get_scores(terms), dtype=float)

        term_set = set(terms)
        results = []
        for chunk, tokens, score in zip(chunks, corpus, scores):
            if term_set.isdisjoint(tokens):
                continue
            doc = docs[chunk["document_id"]]
            results.append(
                ScoredChunk(
                    chunk_id=chunk["chunk_id"],
                    document_id=chunk["document_id"],
                    text=chunk["text"],
                    score=float(score),
                    metadata={**chunk["metadata"], **document_context(doc)},
                    document_created_at=doc.created_at,
                )
            )

        results.sort(key=lambda chunk: (-chunk.score, chunk.chunk_id))
        logger.debug(
            f"BM25 over {len(chunks)} chunks for terms {terms}: {len(results)} matches"
        )
        return results[:top_k]

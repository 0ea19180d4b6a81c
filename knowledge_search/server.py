"""Knowledge Search MCP Server - Main entry point"""

import sys
from typing import Dict, Optional

from fastmcp import FastMCP

from .config import config
from .engine import KnowledgeSearchEngine
from .exceptions import KnowledgeSearchError
from .utils.logger import setup_logger

# Setup logging
logger = setup_logger(__name__)

# Initialize FastMCP
mcp = FastMCP(
    name="Knowledge Search",
    instructions="""
    Search a personal knowledge base of documentation, code and notes.

    Documents are chunked, embedded with a provider chosen per document
    (code, personal writing or general docs), and searched with vector
    similarity or hybrid vector + BM25 ranking.

    Available operations:
    - create_collection / delete_collection: Manage collections
    - add_document: Register a document with its extracted text
    - ingest_document: Chunk and embed a document
    - document_status: Check ingestion progress
    - search: Vector or hybrid search with citations
    - cost_summary / budget_alerts / acknowledge_alert: Embedding spend tracking
    """,
)

# Global engine instance
engine: Optional[KnowledgeSearchEngine] = None


def initialize_server() -> None:
    """Initialize the MCP server and knowledge search engine"""
    global engine

    try:
        logger.info("Initializing Knowledge Search MCP Server")
        engine = KnowledgeSearchEngine(config)
        logger.info("Server initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize server: {e}")
        raise


def _error(e: Exception) -> Dict:
    return {"error": str(e), "type": type(e).__name__}


@mcp.tool()
def create_collection(name: str, description: Optional[str] = None, is_personal: bool = False) -> Dict:
    """
    Create a new collection.

    Args:
        name: Unique collection name
        description: Optional description
        is_personal: Route documents to the personal-writing embedding provider
    """
    if not engine:
        return {"error": "Engine not initialized"}
    try:
        return engine.create_collection(name, description, is_personal)
    except KnowledgeSearchError as e:
        logger.warning(f"create_collection failed: {e}")
        return _error(e)


@mcp.tool()
def delete_collection(collection_id: str) -> Dict:
    """Delete a collection with all of its documents and chunks"""
    if not engine:
        return {"error": "Engine not initialized"}
    try:
        engine.delete_collection(collection_id)
        return {"deleted": collection_id}
    except KnowledgeSearchError as e:
        logger.warning(f"delete_collection failed: {e}")
        return _error(e)


@mcp.tool()
def add_document(
    collection_id: str,
    title: str,
    text: str,
    content_type: str = "text/plain",
    source_url: Optional[str] = None,
    file_path: Optional[str] = None,
    doc_type: Optional[str] = None,
    last_verified: Optional[str] = None,
    ingest: bool = True,
) -> Dict:
    """
    Add a document's extracted text to a collection.

    Args:
        collection_id: Target collection
        title: Document title
        text: Extracted plain text
        content_type: MIME type of the original document
        source_url: Where the document came from (drives source quality)
        file_path: Original file path (drives language detection)
        doc_type: e.g. "code_sample", "build_plan", "personal_writing"
        last_verified: ISO date the content was last checked
        ingest: Chunk and embed immediately (default: True)
    """
    if not engine:
        return {"error": "Engine not initialized"}
    try:
        metadata = {
            key: value
            for key, value in {
                "source_url": source_url,
                "file_path": file_path,
                "doc_type": doc_type,
                "last_verified": last_verified,
            }.items()
            if value is not None
        }
        document = engine.add_document(collection_id, title, text, content_type, metadata)
        if ingest:
            engine.ingest(document["id"])
            document = engine.document_status(document["id"])
        return document
    except KnowledgeSearchError as e:
        logger.warning(f"add_document failed: {e}")
        return _error(e)


@mcp.tool()
def ingest_document(document_id: str) -> Dict:
    """(Re-)ingest a document: chunk, embed and replace its stored chunks"""
    if not engine:
        return {"error": "Engine not initialized"}
    try:
        result = engine.ingest(document_id)
        return {
            "document_id": result.document_id,
            "status": result.status,
            "chunk_count": result.chunk_count,
            "embedding_provider": result.provider,
            "embedding_model": result.model,
            "routing_reason": result.routing_reason,
            "fallback_used": result.fallback_used,
        }
    except KnowledgeSearchError as e:
        logger.warning(f"ingest_document failed: {e}")
        return _error(e)


@mcp.tool()
def document_status(document_id: str) -> Dict:
    """Get a document's ingestion status and metadata"""
    if not engine:
        return {"error": "Engine not initialized"}
    try:
        return engine.document_status(document_id)
    except KnowledgeSearchError as e:
        return _error(e)


@mcp.tool()
def search(
    query: str,
    collection_id: str,
    mode: str = config.search_mode,
    top_k: int = config.default_top_k,
    apply_trust_scoring: bool = config.enable_trust_scoring,
    vector_weight: float = config.rrf_vector_weight,
    lexical_weight: float = config.rrf_lexical_weight,
) -> Dict:
    """
    Search a collection.

    Args:
        query: Natural-language query
        collection_id: Collection to search
        mode: "vector" (semantic only) or "hybrid" (semantic + BM25 with RRF)
        top_k: Number of results (1-50)
        apply_trust_scoring: Re-weight hybrid results by source trust and recency
        vector_weight: RRF weight of the semantic ranking
        lexical_weight: RRF weight of the keyword ranking

    Returns:
        {query, results: [{chunkId, documentId, documentTitle, text, score, metadata}],
         mode, trustScoringApplied, degraded}
    """
    if not engine:
        return {"error": "Engine not initialized"}
    try:
        return engine.handle_search_request({
            "query": query,
            "collectionId": collection_id,
            "mode": mode,
            "topK": top_k,
            "applyTrustScoring": apply_trust_scoring,
            "weights": {"vector": vector_weight, "lexical": lexical_weight},
        })
    except KnowledgeSearchError as e:
        logger.error(f"Search error: {e}")
        return _error(e)


@mcp.tool()
def cost_summary(period: str = "month") -> Dict:
    """Spend against the monthly budget ("month" or "day"), broken down by provider"""
    if not engine:
        return {"error": "Engine not initialized"}
    try:
        return engine.cost_summary(period)
    except (KnowledgeSearchError, ValueError) as e:
        return _error(e)


@mcp.tool()
def budget_alerts(limit: int = 10) -> Dict:
    """Most recent budget alerts"""
    if not engine:
        return {"error": "Engine not initialized"}
    try:
        return {"alerts": engine.recent_alerts(limit)}
    except KnowledgeSearchError as e:
        return _error(e)


@mcp.tool()
def acknowledge_alert(alert_id: int) -> Dict:
    """Mark a budget alert as acknowledged"""
    if not engine:
        return {"error": "Engine not initialized"}
    try:
        return {"alert_id": alert_id, "acknowledged": engine.acknowledge_alert(alert_id)}
    except KnowledgeSearchError as e:
        return _error(e)


def main():
    """Main entry point for the MCP server"""
    try:
        initialize_server()

        # Run MCP server (STDIO transport)
        logger.info("Starting MCP server...")
        mcp.run()

    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

"""
Exception hierarchy for the Knowledge Search engine.

Every error raised across a public boundary derives from
KnowledgeSearchError and carries an optional details dictionary.
"""

from typing import Any, Dict, Optional


class KnowledgeSearchError(Exception):
    """Base exception for all Knowledge Search errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(KnowledgeSearchError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details)


class InvalidRequest(ValidationError):
    """Raised when a search request payload is malformed."""


class CollectionNotFound(KnowledgeSearchError):
    """Raised when a collection id does not exist."""

    def __init__(self, collection_id: str) -> None:
        self.collection_id = collection_id
        super().__init__(
            f"Collection not found: {collection_id}", {"collection_id": collection_id}
        )


class DocumentNotFound(KnowledgeSearchError):
    """Raised when a document id does not exist."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(
            f"Document not found: {document_id}", {"document_id": document_id}
        )


class ProviderError(KnowledgeSearchError):
    """
    Raised when an embedding provider call fails.

    Attributes:
        provider: Provider name (e.g. "openai")
        retryable: Whether the failure was transient (rate limit, timeout, 5xx)
    """

    def __init__(
        self,
        provider: str,
        message: str,
        retryable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.provider = provider
        self.reason = message
        self.retryable = retryable
        details = details or {}
        details["provider"] = provider
        details["retryable"] = retryable
        super().__init__(f"[{provider}] {message}", details)


class ProviderUnavailable(ProviderError):
    """Raised to callers of search when the vector channel cannot embed the query."""


class BudgetExceeded(KnowledgeSearchError):
    """Raised by the budget guard when a paid provider class is in forced fallback."""

    def __init__(self, provider_class: str, current_spend: float, budget: float) -> None:
        self.provider_class = provider_class
        self.current_spend = current_spend
        self.budget = budget
        super().__init__(
            f"Monthly budget exhausted for {provider_class}: "
            f"${current_spend:.4f} of ${budget:.2f}",
            {"provider_class": provider_class},
        )


class BackingStoreError(KnowledgeSearchError):
    """Raised when the relational store or the vector store fails."""


class SearchTimeout(KnowledgeSearchError):
    """Raised when the vector search channel does not finish in time."""


class IngestionError(KnowledgeSearchError):
    """Raised when a document cannot be ingested; the document is left in 'error' status."""

    def __init__(self, document_id: str, stage: str, message: str) -> None:
        self.document_id = document_id
        self.stage = stage
        super().__init__(
            f"Ingestion of {document_id} failed during {stage}: {message}",
            {"document_id": document_id, "stage": stage},
        )

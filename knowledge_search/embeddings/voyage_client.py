"""Voyage AI embeddings client (paid), used for source code"""

from typing import List, Optional, Tuple

import voyageai
from voyageai import error as voyage_error

from .base import EmbeddingProvider
from ..exceptions import ProviderError
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

# Transient SDK errors; resolved by name since the set differs across voyageai releases
_RETRYABLE_ERROR_NAMES = (
    "RateLimitError",
    "ServiceUnavailableError",
    "ServerError",
    "Timeout",
    "APIConnectionError",
    "TryAgain",
)
RETRYABLE_VOYAGE_ERRORS = tuple(
    getattr(voyage_error, name)
    for name in _RETRYABLE_ERROR_NAMES
    if hasattr(voyage_error, name)
)


class VoyageEmbeddingClient(EmbeddingProvider):
    """Wrapper around ``voyageai.Client.embed`` with asymmetric document/query input types"""

    name = "voyage"
    is_paid = True

    def __init__(
        self,
        api_key: str,
        model: str = "voyage-code-2",
        dimensions: int = 1024,
        **kwargs,
    ):
        super().__init__(model=model, dimensions=dimensions, **kwargs)
        if not api_key:
            raise ProviderError(self.name, "VOYAGE_API_KEY is not configured")

        # Retries are handled by EmbeddingProvider so backoff is uniform across providers
        self.client = voyageai.Client(api_key=api_key, max_retries=0, timeout=self.timeout)

        logger.info(f"Voyage AI client initialized (model: {self.model})")

    def _embed_batch(
        self, batch: List[str], input_type: str
    ) -> Tuple[List[List[float]], Optional[int]]:
        result = self.client.embed(
            batch,
            model=self.model,
            input_type=input_type,
            truncation=True,
        )
        return [list(vector) for vector in result.embeddings], result.total_tokens

    def _is_retryable(self, error: Exception) -> bool:
        if RETRYABLE_VOYAGE_ERRORS and isinstance(error, RETRYABLE_VOYAGE_ERRORS):
            return True
        return super()._is_retryable(error)

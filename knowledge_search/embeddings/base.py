"""Common interface for embedding provider clients"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple
import time

import numpy as np
import requests
from tqdm import tqdm

from ..exceptions import ProviderError
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

RETRYABLE_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504}

# Rough words-to-tokens ratio used when a provider does not report usage
TOKENS_PER_WORD = 1.3


def estimate_tokens(texts: List[str]) -> int:
    """Estimate token usage from word counts"""
    return int(sum(len(text.split()) for text in texts) * TOKENS_PER_WORD)


@dataclass(frozen=True)
class EmbeddingSelection:
    """Which provider/model embeds a piece of content, and why"""

    provider: str
    model: str
    dimensions: int
    is_paid: bool
    reason: str = "default"


@dataclass
class EmbeddingResult:
    """Vectors returned by a provider plus the token usage of the call"""

    vectors: List[List[float]]
    tokens: int = 0
    provider: str = ""
    model: str = ""
    dimensions: int = 0

    def __len__(self) -> int:
        return len(self.vectors)


class EmbeddingProvider(ABC):
    """
    Base class for embedding providers.

    Subclasses implement ``_embed_batch``; this class handles batching,
    retry with exponential backoff, and validation of vector shape.
    """

    name: str = ""
    is_paid: bool = False

    def __init__(
        self,
        model: str,
        dimensions: int,
        batch_size: int = 32,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        timeout: float = 60.0,
        show_progress_bar: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.model = model
        self.dimensions = dimensions
        self.batch_size = max(1, batch_size)
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.timeout = timeout
        self.show_progress_bar = show_progress_bar
        self._sleep = sleep

    @property
    def selection(self) -> EmbeddingSelection:
        return EmbeddingSelection(
            provider=self.name,
            model=self.model,
            dimensions=self.dimensions,
            is_paid=self.is_paid,
        )

    def embed(self, texts: List[str], input_type: str = "document") -> EmbeddingResult:
        """
        Embed texts in provider-sized batches.

        Args:
            texts: Texts to embed, in order
            input_type: "document" for indexing, "query" for search

        Returns:
            EmbeddingResult with one vector per input text

        Raises:
            ProviderError: If a batch fails after all retries or the response is malformed
        """
        if not texts:
            return EmbeddingResult(
                vectors=[], provider=self.name, model=self.model, dimensions=self.dimensions
            )

        all_vectors: List[List[float]] = []
        total_tokens = 0

        iterator = range(0, len(texts), self.batch_size)
        if self.show_progress_bar and len(texts) > self.batch_size:
            iterator = tqdm(
                iterator,
                desc=f"Embedding with {self.name}",
                total=(len(texts) + self.batch_size - 1) // self.batch_size,
                unit="batch",
            )

        for i in iterator:
            batch = texts[i:i + self.batch_size]
            vectors, tokens = self._embed_batch_with_retry(batch, input_type)
            self._validate(batch, vectors)
            all_vectors.extend(vectors)
            total_tokens += tokens if tokens is not None else estimate_tokens(batch)

        return EmbeddingResult(
            vectors=all_vectors,
            tokens=total_tokens,
            provider=self.name,
            model=self.model,
            dimensions=self.dimensions,
        )

    def embed_query(self, text: str) -> EmbeddingResult:
        """Embed a single search query"""
        return self.embed([text], input_type="query")

    def _embed_batch_with_retry(
        self, batch: List[str], input_type: str
    ) -> Tuple[List[List[float]], Optional[int]]:
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                return self._embed_batch(batch, input_type)

            except ProviderError:
                raise

            except Exception as e:
                if not self._is_retryable(e):
                    logger.error(f"{self.name} embedding failed (not retryable): {e}")
                    raise ProviderError(self.name, str(e), retryable=False) from e

                last_exception = e
                wait_time = self.backoff_base * (2 ** attempt)  # 1s, 2s, 4s
                logger.warning(
                    f"{self.name} request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                    f"Retrying in {wait_time}s..."
                )
                if attempt < self.max_retries - 1:
                    self._sleep(wait_time)

        error_msg = f"Failed to embed batch after {self.max_retries} attempts: {last_exception}"
        logger.error(f"{self.name}: {error_msg}")
        raise ProviderError(self.name, error_msg, retryable=True) from last_exception

    def _is_retryable(self, error: Exception) -> bool:
        """Transient transport failures are retried; client errors are not"""
        if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
            return True
        if isinstance(error, requests.exceptions.HTTPError):
            response = error.response
            return response is None or response.status_code in RETRYABLE_STATUS_CODES
        return isinstance(error, (TimeoutError, ConnectionError))

    def _validate(self, batch: List[str], vectors: List[List[float]]) -> None:
        if len(vectors) != len(batch):
            raise ProviderError(
                self.name,
                f"Expected {len(batch)} embeddings, got {len(vectors)}",
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise ProviderError(
                    self.name,
                    f"Expected {self.dimensions}-dimensional vectors from {self.model}, "
                    f"got {len(vector)}",
                )

    @abstractmethod
    def _embed_batch(
        self, batch: List[str], input_type: str
    ) -> Tuple[List[List[float]], Optional[int]]:
        """
        Embed one API-sized batch.

        Returns:
            (vectors, tokens) where tokens is None if the provider does not report usage
        """


def to_float_lists(vectors) -> List[List[float]]:
    """Normalize numpy arrays or nested sequences into plain float lists"""
    return np.asarray(vectors, dtype=np.float32).tolist()

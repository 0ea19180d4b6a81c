"""In-process sentence-transformers embeddings (free)"""

from typing import List, Optional, Tuple
import threading

from .base import EmbeddingProvider, to_float_lists
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

# nomic-embed models are trained with task prefixes
NOMIC_PREFIXES = {
    "document": "search_document: ",
    "query": "search_query: ",
}


class LocalEmbeddingClient(EmbeddingProvider):
    """SentenceTransformer model loaded lazily on first use"""

    name = "local"
    is_paid = False

    def __init__(
        self,
        model: str = "nomic-ai/nomic-embed-text-v1.5",
        dimensions: int = 768,
        device: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(model=model, dimensions=dimensions, **kwargs)
        self.device = device
        self._model = None
        self._load_lock = threading.Lock()

    @property
    def encoder(self):
        if self._model is None:
            with self._load_lock:
                if self._model is None:
                    from sentence_transformers import SentenceTransformer

                    logger.info(f"Loading local embedding model: {self.model}")
                    self._model = SentenceTransformer(
                        self.model,
                        device=self.device,
                        trust_remote_code=True,
                    )
                    logger.info(f"Local embedding model loaded (dims: {self.dimensions})")
        return self._model

    def _embed_batch(
        self, batch: List[str], input_type: str
    ) -> Tuple[List[List[float]], Optional[int]]:
        if "nomic" in self.model:
            prefix = NOMIC_PREFIXES.get(input_type, "")
            batch = [prefix + text for text in batch]

        embeddings = self.encoder.encode(
            batch,
            batch_size=self.batch_size,
            show_progress_bar=False,
            normalize_embeddings=True,
            convert_to_numpy=True,
        )
        return to_float_lists(embeddings), None

    def _is_retryable(self, error: Exception) -> bool:
        # Local inference failures are deterministic
        return False

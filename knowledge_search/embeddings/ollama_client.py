"""Ollama embeddings client (free, self-hosted)"""

from typing import List, Optional, Tuple

import requests

from .base import EmbeddingProvider
from ..utils.logger import setup_logger

logger = setup_logger(__name__)


class OllamaEmbeddingClient(EmbeddingProvider):
    """Client for a local Ollama server's /api/embed endpoint"""

    name = "ollama"
    is_paid = False

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        dimensions: int = 768,
        **kwargs,
    ):
        super().__init__(model=model, dimensions=dimensions, **kwargs)
        self.api_url = f"{host.rstrip('/')}/api/embed"
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

        logger.info(f"Ollama embedding client initialized (model: {self.model}, url: {self.api_url})")

    def _embed_batch(
        self, batch: List[str], input_type: str
    ) -> Tuple[List[List[float]], Optional[int]]:
        payload = {
            "model": self.model,
            "input": batch,
        }

        response = self.session.post(self.api_url, json=payload, timeout=self.timeout)
        response.raise_for_status()

        data = response.json()
        return data["embeddings"], data.get("prompt_eval_count")

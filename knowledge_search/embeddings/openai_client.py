"""OpenAI embeddings API client (paid)"""

from typing import List, Optional, Tuple

import requests

from .base import EmbeddingProvider
from ..exceptions import ProviderError
from ..utils.logger import setup_logger

logger = setup_logger(__name__)


class OpenAIEmbeddingClient(EmbeddingProvider):
    """
    Client for OpenAI's /v1/embeddings endpoint.

    text-embedding-3 models accept a ``dimensions`` parameter, so vectors are
    requested at the configured size rather than the model's native 3072.
    """

    name = "openai"
    is_paid = True

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-large",
        dimensions: int = 1536,
        api_url: str = "https://api.openai.com/v1/embeddings",
        **kwargs,
    ):
        super().__init__(model=model, dimensions=dimensions, **kwargs)
        if not api_key:
            raise ProviderError(self.name, "OPENAI_API_KEY is not configured")
        self.api_url = api_url

        # Session for connection pooling
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

        logger.info(f"OpenAI embedding client initialized (model: {self.model}, dims: {self.dimensions})")

    def _embed_batch(
        self, batch: List[str], input_type: str
    ) -> Tuple[List[List[float]], Optional[int]]:
        payload = {
            "model": self.model,
            "input": batch,
            "dimensions": self.dimensions,
            "encoding_format": "float",
        }

        response = self.session.post(self.api_url, json=payload, timeout=self.timeout)
        response.raise_for_status()

        data = response.json()
        # Response items carry their input index; do not rely on order
        items = sorted(data["data"], key=lambda item: item["index"])
        usage = data.get("usage") or {}
        return [item["embedding"] for item in items], usage.get("total_tokens")

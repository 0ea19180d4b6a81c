"""Registry of embedding providers with usage reporting for paid calls"""

from typing import Callable, Dict, Optional
import threading

from .base import EmbeddingProvider, EmbeddingResult, EmbeddingSelection
from ..exceptions import ProviderError
from ..utils.logger import setup_logger

logger = setup_logger(__name__)


class ProviderRegistry:
    """
    Maps provider names to clients.

    Clients are built on first use so that a missing API key for a provider
    that is never selected does not prevent startup. Static selections
    (model, dimensions, paid flag) come from configuration and are available
    without building a client.
    """

    def __init__(self, settings, cost_tracker=None):
        self.settings = settings
        self.cost_tracker = cost_tracker
        self._providers: Dict[str, EmbeddingProvider] = {}
        self._lock = threading.Lock()

        self._specs: Dict[str, EmbeddingSelection] = {
            "ollama": EmbeddingSelection(
                "ollama", settings.ollama_model, settings.ollama_dimensions, False
            ),
            "local": EmbeddingSelection(
                "local", settings.local_embedding_model, settings.local_embedding_dimensions, False
            ),
            "openai": EmbeddingSelection(
                "openai", settings.openai_embedding_model, settings.openai_embedding_dimensions, True
            ),
            "voyage": EmbeddingSelection(
                "voyage", settings.voyage_code_model, settings.voyage_dimensions, True
            ),
        }
        self._builders: Dict[str, Callable[[], EmbeddingProvider]] = {
            "ollama": self._build_ollama,
            "local": self._build_local,
            "openai": self._build_openai,
            "voyage": self._build_voyage,
        }

    def register(self, provider: EmbeddingProvider) -> None:
        """Register (or replace) a provider instance under its ``name``"""
        with self._lock:
            self._providers[provider.name] = provider
            self._specs[provider.name] = provider.selection
        logger.info(
            f"Registered embedding provider '{provider.name}' "
            f"(model: {provider.model}, dims: {provider.dimensions}, paid: {provider.is_paid})"
        )

    def selection_for(self, name: str) -> EmbeddingSelection:
        try:
            return self._specs[name]
        except KeyError:
            raise ProviderError(name, f"Unknown embedding provider: {name}") from None

    def get(self, name: str) -> EmbeddingProvider:
        with self._lock:
            provider = self._providers.get(name)
            if provider is None:
                builder = self._builders.get(name)
                if builder is None:
                    raise ProviderError(name, f"Unknown embedding provider: {name}")
                provider = builder()
                self._providers[name] = provider
            return provider

    def embed_documents(
        self,
        selection: EmbeddingSelection,
        texts,
        collection_id: Optional[str] = None,
    ) -> EmbeddingResult:
        provider = self._provider_for(selection)
        result = provider.embed(list(texts), input_type="document")
        self._report_usage(provider, result, collection_id)
        return result

    def embed_query(
        self,
        selection: EmbeddingSelection,
        text: str,
        collection_id: Optional[str] = None,
    ) -> EmbeddingResult:
        provider = self._provider_for(selection)
        result = provider.embed_query(text)
        self._report_usage(provider, result, collection_id)
        return result

    def _provider_for(self, selection: EmbeddingSelection) -> EmbeddingProvider:
        provider = self.get(selection.provider)
        if provider.model != selection.model or provider.dimensions != selection.dimensions:
            raise ProviderError(
                selection.provider,
                f"Configured model {provider.model} ({provider.dimensions}d) does not match "
                f"requested {selection.model} ({selection.dimensions}d)",
            )
        return provider

    def _report_usage(
        self, provider: EmbeddingProvider, result: EmbeddingResult, collection_id: Optional[str]
    ) -> None:
        if provider.is_paid and self.cost_tracker is not None:
            self.cost_tracker.record_usage(
                provider=provider.name,
                operation="embed",
                units=result.tokens,
                model=provider.model,
                collection_id=collection_id,
            )

    def _common_kwargs(self) -> dict:
        return {
            "batch_size": self.settings.embedding_batch_size,
            "max_retries": self.settings.embedding_max_retries,
            "backoff_base": self.settings.embedding_backoff_base,
            "timeout": self.settings.embedding_timeout,
            "show_progress_bar": self.settings.show_progress_bar,
        }

    def _build_ollama(self) -> EmbeddingProvider:
        from .ollama_client import OllamaEmbeddingClient

        return OllamaEmbeddingClient(
            host=self.settings.ollama_host,
            model=self.settings.ollama_model,
            dimensions=self.settings.ollama_dimensions,
            **self._common_kwargs(),
        )

    def _build_local(self) -> EmbeddingProvider:
        from .local_client import LocalEmbeddingClient

        return LocalEmbeddingClient(
            model=self.settings.local_embedding_model,
            dimensions=self.settings.local_embedding_dimensions,
            **self._common_kwargs(),
        )

    def _build_openai(self) -> EmbeddingProvider:
        from .openai_client import OpenAIEmbeddingClient

        return OpenAIEmbeddingClient(
            api_key=self.settings.openai_api_key,
            model=self.settings.openai_embedding_model,
            dimensions=self.settings.openai_embedding_dimensions,
            api_url=self.settings.openai_api_url,
            **self._common_kwargs(),
        )

    def _build_voyage(self) -> EmbeddingProvider:
        from .voyage_client import VoyageEmbeddingClient

        return VoyageEmbeddingClient(
            api_key=self.settings.voyage_api_key,
            model=self.settings.voyage_code_model,
            dimensions=self.settings.voyage_dimensions,
            **self._common_kwargs(),
        )

"""Configuration module for the Knowledge Search engine"""

import os
from pathlib import Path
from typing import Dict, List
from pydantic_settings import BaseSettings
from pydantic import ConfigDict

# Load .env file and set environment variables BEFORE defining Config class
from dotenv import dotenv_values

# Find and load .env file from project root
env_file = Path(__file__).parent.parent / ".env"
if env_file.exists():
    env_values = dotenv_values(env_file)
    for key, value in env_values.items():
        if value is not None and key not in os.environ:
            os.environ[key] = str(value)


class Config(BaseSettings):
    """Application configuration loaded from environment variables"""

    # Storage
    database_url: str = "sqlite:///data/knowledge_search.db"
    chroma_path: Path = Path("data/chroma")
    chunk_collection_prefix: str = "chunks"  # One Chroma collection per embedding space

    # Chunking settings (characters, not tokens)
    chunk_size: int = 800
    chunk_overlap: int = 150

    # Search settings
    search_mode: str = "vector"  # "vector" or "hybrid"
    default_top_k: int = 5
    candidate_multiplier: int = 3  # Each channel retrieves top_k * multiplier before fusion
    search_timeout: float = 30.0  # Seconds to wait for each search channel
    search_max_workers: int = 4

    # RRF (Reciprocal Rank Fusion) settings
    rrf_k_parameter: int = 60
    rrf_vector_weight: float = 0.7
    rrf_lexical_weight: float = 0.3

    # Trust / recency re-weighting (hybrid mode only)
    enable_trust_scoring: bool = False

    # Embedding routing
    doc_embedding_provider: str = "ollama"
    code_embedding_provider: str = "voyage"
    writing_embedding_provider: str = "openai"
    fallback_embedding_provider: str = "ollama"  # Free provider used when budget is exhausted
    code_keyword_density: float = 0.15  # Share of code-like tokens that marks a text as code
    code_min_tokens: int = 12

    # Embedding client behaviour
    embedding_batch_size: int = 32
    embedding_max_retries: int = 3
    embedding_backoff_base: float = 1.0  # Seconds; doubled on every retry
    embedding_timeout: float = 60.0
    fallback_on_provider_error: bool = True
    show_progress_bar: bool = False

    # Ollama (free, local server)
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "nomic-embed-text"
    ollama_dimensions: int = 768

    # sentence-transformers (free, in-process)
    local_embedding_model: str = "nomic-ai/nomic-embed-text-v1.5"
    local_embedding_dimensions: int = 768

    # OpenAI (paid)
    openai_api_key: str = ""
    openai_api_url: str = "https://api.openai.com/v1/embeddings"
    openai_embedding_model: str = "text-embedding-3-large"
    openai_embedding_dimensions: int = 1536

    # Voyage AI (paid)
    voyage_api_key: str = ""
    voyage_code_model: str = "voyage-code-2"
    voyage_dimensions: int = 1024

    # Cost tracking & budget
    monthly_budget_usd: float = 10.0
    budget_warning_ratio: float = 0.8
    enable_cost_alerts: bool = True
    # USD per 1K units (embed/completion) or per request (rerank)
    price_table: Dict[str, Dict[str, float]] = {
        "openai": {"embed": 0.00013},
        "voyage": {"embed": 0.00012},
        "cohere": {"rerank": 0.001},
        "anthropic": {"completion": 0.00025},
    }
    official_source_domains: List[str] = [
        "docs.python.org",
        "developer.mozilla.org",
        "docs.flutter.dev",
        "dart.dev",
        "kotlinlang.org",
        "developer.android.com",
        "learn.microsoft.com",
        "docs.oracle.com",
    ]

    # Logging
    log_level: str = "INFO"
    log_dir: Path = Path("logs")  # Created on first setup_logger call

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def validate_settings(self) -> None:
        """Validate cross-field constraints that pydantic cannot express per field"""
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size), got {self.chunk_overlap}"
            )
        if self.search_mode not in ("vector", "hybrid"):
            raise ValueError(
                f"search_mode must be 'vector' or 'hybrid', got {self.search_mode!r}"
            )
        if self.rrf_vector_weight < 0 or self.rrf_lexical_weight < 0:
            raise ValueError("RRF weights must be non-negative")
        if not 0 < self.budget_warning_ratio <= 1:
            raise ValueError(
                f"budget_warning_ratio must be in (0, 1], got {self.budget_warning_ratio}"
            )


# Global config instance
config = Config()

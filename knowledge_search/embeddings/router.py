"""Per-document choice of embedding provider"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional
import re

from .base import EmbeddingSelection
from .registry import ProviderRegistry
from ..exceptions import BudgetExceeded
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

CODE_DOC_TYPES = {"code", "code_sample", "build_plan"}
PERSONAL_DOC_TYPES = {"personal_writing"}
CODE_LANGUAGES = {
    "dart", "ts", "typescript", "js", "javascript", "c", "cpp", "c++",
    "python", "py", "java", "kotlin", "go", "rust", "swift",
}

CODE_PATTERNS = [
    re.compile(r"^\s*(import|export)\s+[\w{*'\"]", re.MULTILINE),
    re.compile(r"^\s*from\s+[\w.]+\s+import\s+\w", re.MULTILINE),
    re.compile(
        r"^\s*((public|private|protected|abstract|final|sealed|data)\s+)*"
        r"(class|interface|enum)\s+\w+(\s+(extends|implements|with)\s+\w|\s*[({:<])",
        re.MULTILINE,
    ),
    re.compile(r"^\s*(async\s+)?(def|function|fun|func|fn)\s+\w+\s*\(", re.MULTILINE),
    re.compile(r"^\s*(const|let|var|final)\s+\w+\s*=", re.MULTILINE),
    re.compile(r"^\s*//", re.MULTILINE),
    re.compile(r"#include\s*<"),
]

CODE_KEYWORDS = {
    "def", "elif", "lambda", "func", "fn", "fun", "const", "let", "var", "void",
    "static", "public", "private", "protected", "async", "await", "return",
    "null", "None", "nil", "true", "false", "self", "this", "=>", "->", "{", "}",
    "==", "!=", "&&", "||",
}
CODE_TOKEN = re.compile(r"[{};]$|\w\(|\)[:{]?$|^[\w.]+\s*=$")


@dataclass(frozen=True)
class EmbeddingHints:
    """Caller-supplied facts about a document that influence routing"""

    doc_type: Optional[str] = None
    language: Optional[str] = None
    is_personal_collection: bool = False


def hints_from_metadata(
    metadata: Optional[Mapping[str, Any]], is_personal_collection: bool = False
) -> EmbeddingHints:
    """
    Derive routing hints from stored document metadata.

    A ``framework`` value marks code content; ``personal_writing`` marks
    personal content.
    """
    metadata = metadata or {}
    doc_type = metadata.get("doc_type")
    if doc_type is None and metadata.get("framework"):
        doc_type = "code"
    return EmbeddingHints(
        doc_type=doc_type,
        language=metadata.get("language"),
        is_personal_collection=is_personal_collection or doc_type in PERSONAL_DOC_TYPES,
    )


def looks_like_code(text: str, keyword_density: float = 0.15, min_tokens: int = 12) -> bool:
    """Heuristic code detection from syntax patterns and code-token density"""
    if any(pattern.search(text) for pattern in CODE_PATTERNS):
        return True
    tokens = text.split()
    if len(tokens) < min_tokens:
        return False
    code_tokens = sum(
        1 for token in tokens if token in CODE_KEYWORDS or CODE_TOKEN.search(token)
    )
    return code_tokens / len(tokens) >= keyword_density


class EmbeddingRouter:
    """
    Picks one embedding provider for a piece of content.

    Rules, first match wins:
        1. the candidate is paid and the budget guard forces fallback -> free provider
        2. code doc type, programming-language hint or code-like text -> code provider
        3. personal writing or personal collection -> writing provider
        4. otherwise -> documentation provider

    The router reads the budget guard but never changes it.
    """

    def __init__(self, registry: ProviderRegistry, settings, budget_guard=None):
        self.registry = registry
        self.settings = settings
        self.budget_guard = budget_guard

    def select_provider(
        self, text: str, hints: Optional[EmbeddingHints] = None
    ) -> EmbeddingSelection:
        """
        Select provider, model and dimensionality for ``text``.

        Args:
            text: Document text (or a representative sample of it)
            hints: Optional doc type, language and collection facts

        Returns:
            EmbeddingSelection with a reason describing which rule matched
        """
        hints = hints or EmbeddingHints()
        provider, reason = self._candidate(text, hints)
        selection = replace(self.registry.selection_for(provider), reason=reason)

        if selection.is_paid and self.budget_guard is not None:
            try:
                self.budget_guard.ensure_within_budget("embedding")
            except BudgetExceeded as e:
                fallback = self.fallback_selection(reason="budget_fallback")
                logger.info(
                    f"Budget fallback: {selection.provider} -> {fallback.provider} ({e.message})"
                )
                return fallback

        logger.debug(f"Routed to {selection.provider}/{selection.model} ({reason})")
        return selection

    def fallback_selection(self, reason: str = "provider_fallback") -> EmbeddingSelection:
        """The designated free provider"""
        return replace(
            self.registry.selection_for(self.settings.fallback_embedding_provider),
            reason=reason,
        )

    def _candidate(self, text: str, hints: EmbeddingHints):
        doc_type = (hints.doc_type or "").lower()
        language = (hints.language or "").lower()

        if doc_type in CODE_DOC_TYPES:
            return self.settings.code_embedding_provider, "code_doc_type"
        if language in CODE_LANGUAGES:
            return self.settings.code_embedding_provider, "code_language"
        if looks_like_code(
            text,
            keyword_density=self.settings.code_keyword_density,
            min_tokens=self.settings.code_min_tokens,
        ):
            return self.settings.code_embedding_provider, "code_heuristics"
        if doc_type in PERSONAL_DOC_TYPES or hints.is_personal_collection:
            return self.settings.writing_embedding_provider, "personal_writing"
        return self.settings.doc_embedding_provider, "default"


def routing_metadata(selection: EmbeddingSelection) -> Dict[str, Any]:
    """Document metadata fields recording which embedding space was used"""
    return {
        "embedding_provider": selection.provider,
        "embedding_model": selection.model,
        "embedding_dimensions": selection.dimensions,
    }

"""Tests for embedding provider routing"""

from unittest.mock import MagicMock

import pytest

from knowledge_search.budget.budget_guard import BudgetGuard
from knowledge_search.embeddings.registry import ProviderRegistry
from knowledge_search.embeddings.router import (
    EmbeddingHints,
    EmbeddingRouter,
    hints_from_metadata,
    looks_like_code,
)
from knowledge_search.exceptions import BudgetExceeded

PROSE = (
    "Widgets describe what their view should look like given their current "
    "configuration and state. When state changes the framework rebuilds the "
    "description and compares it with the previous one."
)

PYTHON_CODE = """from pathlib import Path

def load_settings(path):
    with open(path) as handle:
        return handle.read()
"""

DART_CODE = """class CounterWidget extends StatelessWidget {
  const CounterWidget({super.key});
}
"""


@pytest.fixture
def registry(settings, providers):
    registry = ProviderRegistry(settings)
    for provider in providers.values():
        registry.register(provider)
    return registry


@pytest.fixture
def guard():
    guard = MagicMock(spec=BudgetGuard)
    guard.ensure_within_budget.return_value = None
    return guard


@pytest.fixture
def router(registry, settings, guard):
    return EmbeddingRouter(registry, settings, budget_guard=guard)


class TestCodeDetection:
    """Test the code heuristics"""

    def test_python_source_is_code(self):
        assert looks_like_code(PYTHON_CODE)

    def test_dart_class_is_code(self):
        assert looks_like_code(DART_CODE)

    def test_include_directive_is_code(self):
        assert looks_like_code("#include <stdio.h>\nint main(void) { return 0; }")

    def test_prose_is_not_code(self):
        assert not looks_like_code(PROSE)

    def test_symbol_dense_snippet_is_code(self):
        snippet = "x = compute(a, b); if (x != y) { total += x; } else { total -= y; } return total;"
        assert looks_like_code(snippet, keyword_density=0.15, min_tokens=12)


class TestEmbeddingRouter:
    """Test routing priority"""

    def test_prose_goes_to_documentation_provider(self, router):
        selection = router.select_provider(PROSE)
        assert selection.provider == "ollama"
        assert selection.model == "hash-ollama"
        assert selection.dimensions == 64
        assert selection.reason == "default"
        assert not selection.is_paid

    def test_code_text_goes_to_code_provider(self, router):
        selection = router.select_provider(PYTHON_CODE)
        assert selection.provider == "voyage"
        assert selection.reason == "code_heuristics"
        assert selection.is_paid

    def test_code_doc_type_hint(self, router):
        selection = router.select_provider(PROSE, EmbeddingHints(doc_type="build_plan"))
        assert selection.provider == "voyage"
        assert selection.reason == "code_doc_type"

    def test_language_hint(self, router):
        selection = router.select_provider(PROSE, EmbeddingHints(language="kotlin"))
        assert selection.provider == "voyage"
        assert selection.reason == "code_language"

    def test_personal_collection_goes_to_writing_provider(self, router):
        selection = router.select_provider(PROSE, EmbeddingHints(is_personal_collection=True))
        assert selection.provider == "openai"
        assert selection.reason == "personal_writing"

    def test_code_beats_personal(self, router):
        hints = EmbeddingHints(doc_type="code_sample", is_personal_collection=True)
        assert router.select_provider(PROSE, hints).provider == "voyage"

    def test_routing_is_deterministic(self, router):
        hints = EmbeddingHints(doc_type="personal_writing")
        first = router.select_provider(PROSE, hints)
        assert all(router.select_provider(PROSE, hints) == first for _ in range(5))

    def test_budget_limit_substitutes_free_provider(self, router, guard):
        guard.ensure_within_budget.side_effect = BudgetExceeded("embedding", 10.5, 10.0)
        selection = router.select_provider(PYTHON_CODE)
        assert selection.provider == "ollama"
        assert selection.reason == "budget_fallback"
        assert not selection.is_paid

    def test_budget_limit_leaves_free_routes_untouched(self, router, guard):
        guard.ensure_within_budget.side_effect = BudgetExceeded("embedding", 10.5, 10.0)
        selection = router.select_provider(PROSE)
        assert selection.provider == "ollama"
        assert selection.reason == "default"
        guard.ensure_within_budget.assert_not_called()

    def test_router_never_writes_budget_state(self, router, guard):
        router.select_provider(PYTHON_CODE)
        guard.record_spend.assert_not_called()
        guard.check_thresholds.assert_not_called()


class TestHintsFromMetadata:
    """Test hint derivation from stored metadata"""

    def test_framework_marks_code(self):
        assert hints_from_metadata({"framework": "flutter"}).doc_type == "code"

    def test_personal_writing_marks_personal(self):
        hints = hints_from_metadata({"doc_type": "personal_writing"})
        assert hints.is_personal_collection

    def test_empty_metadata(self):
        assert hints_from_metadata(None) == EmbeddingHints()

"""Unit tests for the intent template catalog."""

import pytest

from src.core.domain.functions import ANALYZE_HIGHLIGHTS, GET_CURRENT_ORDER, GET_HIGHLIGHT_MAP
from src.core.domain.intents import (
    IntentKind,
    IntentName,
    SectionMarker,
    StructuredExecutionInput,
    StructuredExecutionOutput,
)
from src.core.exceptions import UnknownIntentError
from src.core.workflow.templates import (
    ANALYZE_TEMPLATE,
    REORDER_TEMPLATE,
    IntentTemplateCatalog,
)


class TestIntentTemplateCatalog:
    """Test cases for IntentTemplateCatalog."""

    def setup_method(self):
        """Set up test fixtures."""
        self.catalog = IntentTemplateCatalog()

    def test_default_intents(self):
        """Test that every intent has a template."""
        assert set(self.catalog.intents()) == set(IntentName)
        assert len(self.catalog) == 4

    def test_lookup_by_name(self):
        """Test lookups by enum and by string."""
        assert self.catalog.get(IntentName.REORDER) is REORDER_TEMPLATE
        assert self.catalog.get("analyze") is ANALYZE_TEMPLATE

    def test_unknown_intent(self):
        """Test that unknown intents raise UnknownIntentError."""
        with pytest.raises(UnknownIntentError) as exc_info:
            self.catalog.get("summarize")

        assert str(exc_info.value) == "Unknown intent: summarize"

    def test_missing_template(self):
        """Test a catalog without a template for a valid intent."""
        catalog = IntentTemplateCatalog([REORDER_TEMPLATE])

        assert IntentName.ANALYZE not in catalog
        with pytest.raises(UnknownIntentError):
            catalog.get(IntentName.ANALYZE)

    def test_duplicate_templates_rejected(self):
        """Test that one intent cannot have two templates."""
        with pytest.raises(ValueError):
            IntentTemplateCatalog([REORDER_TEMPLATE, REORDER_TEMPLATE])

    def test_only_analyze_is_analysis(self):
        """Test intent kinds."""
        kinds = {intent: self.catalog.get(intent).kind for intent in IntentName}
        assert [i for i, kind in kinds.items() if kind == IntentKind.ANALYSIS] == [IntentName.ANALYZE]


class TestIntentTemplate:
    """Test cases for IntentTemplate rendering."""

    def test_functions_for_fresh_start(self):
        """Test that a fresh reorder only needs the highlight map."""
        required, optional = REORDER_TEMPLATE.functions_for(use_current_order=False)

        assert required == (GET_HIGHLIGHT_MAP,)
        assert optional == ()

    def test_functions_for_current_order(self):
        """Test that building on the current order fetches it."""
        required, optional = REORDER_TEMPLATE.functions_for(use_current_order=True)

        assert required == (GET_HIGHLIGHT_MAP,)
        assert optional == (GET_CURRENT_ORDER,)

    def test_analysis_requires_everything(self):
        """Test the analysis function set."""
        required, optional = ANALYZE_TEMPLATE.functions_for(use_current_order=True)

        assert required == (GET_HIGHLIGHT_MAP, GET_CURRENT_ORDER, ANALYZE_HIGHLIGHTS)
        assert optional == ()

    def test_render_prompt(self):
        """Test the execution prompt layout."""
        execution_input = StructuredExecutionInput(
            intent=IntentName.REORDER,
            highlight_map={"h1": "First", "h2": "Second"},
            current_order=[SectionMarker(title="Intro"), "h2", "h1"],
            use_current_order=True,
            goals=["engagement"],
            specific_requests=["stronger opening"],
            user_context="tutorial",
        )

        prompt = REORDER_TEMPLATE.render_prompt(execution_input)

        assert prompt.startswith("You are a YouTube content optimization specialist.")
        assert '"highlightMap"' in prompt
        assert '- h1: "First"' in prompt
        assert "Total highlights: 2 (ALL must be included in new order)" in prompt
        assert "1. [SECTION] Intro" in prompt
        assert "2. h2" in prompt
        assert "USER OPTIMIZATION GOALS: engagement" in prompt
        assert "SPECIFIC USER REQUESTS: stronger opening" in prompt
        assert "USER CONTEXT: tutorial" in prompt
        assert "CRITICAL REQUIREMENTS:" in prompt
        assert prompt.endswith("EXECUTE THE TASK NOW:")

    def test_render_prompt_fresh_start(self):
        """Test the prompt when the user starts fresh."""
        execution_input = StructuredExecutionInput(intent=IntentName.REORDER, highlight_map={"h1": "First"})

        prompt = REORDER_TEMPLATE.render_prompt(execution_input)

        assert "User prefers to start fresh" in prompt

    def test_render_success(self):
        """Test the success message."""
        output = StructuredExecutionOutput(
            success=True,
            new_order=["h1"],
            reasoning="Better flow",
            section_count=2,
            changes=["Strong hook", "Grouped concepts"],
        )

        message = REORDER_TEMPLATE.render_success(output)

        assert message.startswith("✅ **Success!** Reorganized your highlights into 2 sections")
        assert "**Key Changes:** Strong hook, Grouped concepts" in message
        assert message.endswith("**Reasoning:** Better flow")

    def test_render_analysis(self):
        """Test the analysis message."""
        output = StructuredExecutionOutput(success=True, reasoning="Solid structure")

        message = ANALYZE_TEMPLATE.render_success(output)

        assert message.startswith("✅ **Analysis Complete!**")
        assert "Solid structure" in message

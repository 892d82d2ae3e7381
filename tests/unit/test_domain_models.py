"""Unit tests for domain models."""

import pytest
from pydantic import ValidationError

from src.core.domain.chat import ChatRequest, ChatResponse, Message, MessageRole, ModelSelection, Session
from src.core.domain.functions import Highlight, snapshot_from_context
from src.core.domain.intents import (
    IntentName,
    IntentSummary,
    SectionMarker,
    StructuredExecutionInput,
    StructuredExecutionOutput,
    count_item_references,
)
from src.core.domain.state import TurnState


class TestChatModels:
    """Test cases for session and message models."""

    def test_request_aliases(self):
        """Test camelCase and legacy field names."""
        request = ChatRequest.model_validate({
            "projectId": 3,
            "endpointId": "highlight_ordering",
            "message": "Hi",
            "enableFunctionCalls": False,
        })

        assert request.project_id == 3
        assert request.topic_id == "highlight_ordering"
        assert request.enable_function_calls is False

    def test_response_serializes_camel_case(self):
        """Test the caller-facing response shape."""
        response = ChatResponse(session_id="s", message_id="m", message="ok", has_actions=True)

        data = response.model_dump(by_alias=True, exclude_none=True)

        assert data == {"sessionId": "s", "messageId": "m", "message": "ok", "success": True, "hasActions": True}

    def test_hidden_data(self):
        """Test decoding of hidden context."""
        assert Message(role=MessageRole.USER, content="x").hidden_data() == {}
        assert Message(role=MessageRole.USER, content="x", hidden_context="not json").hidden_data() == {}
        assert Message(role=MessageRole.USER, content="x", hidden_context="[1]").hidden_data() == {}

        message = Message(role=MessageRole.ASSISTANT, content="x", hidden_context='{"phase": "listening"}')
        assert message.hidden_data() == {"phase": "listening"}
        assert message.public_copy().hidden_context is None

    def test_session_requires_project(self):
        """Test session validation."""
        with pytest.raises(ValidationError):
            Session(session_id="s", project_id=0, topic_id="t")

    def test_model_selection_strips_name(self):
        """Test model name normalization."""
        selection = ModelSelection(project_id=1, topic_id="t", model="  openai/gpt-4o ")
        assert selection.model == "openai/gpt-4o"


class TestIntentModels:
    """Test cases for intent and execution models."""

    def test_summary_coercion(self):
        """Test lenient parsing of model-written summaries."""
        summary = IntentSummary.model_validate({
            "intent": "improve_hook",
            "userWantsCurrentOrder": True,
            "optimizationGoals": "engagement",
            "specificRequests": None,
            "userContext": None,
        })

        assert summary.intent == IntentName.IMPROVE_HOOK
        assert summary.use_current_order is True
        assert summary.optimization_goals == ["engagement"]
        assert summary.specific_requests == []
        assert summary.user_context == ""
        assert summary.confirmed is False

    def test_summary_drops_non_string_entries(self):
        """Test that non-string list entries are dropped."""
        summary = IntentSummary.model_validate({
            "intent": "reorder",
            "optimizationGoals": [1, None, "engagement"],
            "specificRequests": {"first": "h2"},
        })

        assert summary.optimization_goals == ["engagement"]
        assert summary.specific_requests == []

    def test_output_null_fields(self):
        """Test that null fields fall back to defaults."""
        output = StructuredExecutionOutput.model_validate({
            "success": True,
            "newOrder": None,
            "reasoning": None,
            "sectionCount": None,
            "changes": None,
        })

        assert output.new_order == []
        assert output.reasoning == ""
        assert output.section_count == 0

    def test_order_items(self):
        """Test section markers inside an ordering."""
        order = [SectionMarker(title="Intro"), "h1", SectionMarker(), "h2"]

        assert count_item_references(order) == 2
        assert order[0].render() == "[SECTION] Intro"
        assert order[2].render() == "[SECTION]"

    def test_input_item_count(self):
        """Test that the item count follows the highlight map."""
        execution_input = StructuredExecutionInput(intent=IntentName.REORDER, highlight_map={"a": "x", "b": "y"})
        assert execution_input.item_count == 2


class TestTurnState:
    """Test cases for TurnState."""

    def test_defaults(self):
        """Test a fresh turn."""
        state = TurnState(project_id=1, topic_id="t", session_id="s", model="m", user_message="hi")

        assert state.confirmed is False
        assert state.actions_enabled is True
        assert state.function_results == []

    def test_confirmed(self):
        """Test the confirmed flag."""
        state = TurnState(
            project_id=1,
            topic_id="t",
            session_id="s",
            model="m",
            user_message="yes",
            intent_summary=IntentSummary(intent=IntentName.REORDER, confirmed=True),
        )
        assert state.confirmed is True


class TestProjectSnapshot:
    """Test cases for reading caller project data from context data."""

    def test_highlight_list(self):
        """Test highlights given as a list with an explicit order."""
        highlights, order = snapshot_from_context({
            "highlights": [{"id": "h1", "text": "First"}, {"id": "h2"}, {"text": "no id"}, "h3"],
            "order": ["h2", {"type": "N", "title": "End"}, "h1", 7],
        })

        assert highlights == [Highlight(id="h1", text="First"), Highlight(id="h2", text="")]
        assert order == ["h2", SectionMarker(title="End"), "h1"]

    def test_highlight_map(self):
        """Test the highlightMap and currentOrder shape."""
        highlights, order = snapshot_from_context({
            "highlights": {
                "highlightMap": {"a": "Alpha", "b": "Beta"},
                "currentOrder": [{"type": "N"}, "b", "a"],
            }
        })

        assert [h.id for h in highlights] == ["a", "b"]
        assert order == [SectionMarker(), "b", "a"]

    def test_nothing_usable(self):
        """Test context data without highlights."""
        assert snapshot_from_context(None) == ([], None)
        assert snapshot_from_context({"highlights": "h1,h2"}) == ([], None)
        assert snapshot_from_context({"highlights": [{"id": "h1", "text": "x"}]})[1] is None

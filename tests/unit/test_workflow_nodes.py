"""Unit tests for workflow node implementations."""

import json
from unittest.mock import AsyncMock

import pytest
from langgraph.graph import END

from src.action_plane.functions import build_default_registry
from src.core.config import Settings
from src.core.domain.chat import Message, MessageRole
from src.core.domain.intents import (
    ConversationPhase,
    IntentKind,
    IntentName,
    IntentSummary,
    SectionMarker,
    StructuredExecutionInput,
    StructuredExecutionOutput,
)
from src.core.domain.state import TurnStage, TurnState
from src.core.exceptions import (
    ChangeApplyError,
    FunctionCallError,
    LLMCallError,
    OutputMismatchError,
    ParseError,
    PersistenceError,
    UnknownIntentError,
)
from src.core.topics import TopicCatalog
from src.core.utils.tokens import TokenBudgeter
from src.core.workflow.nodes import (
    ApplyNode,
    BuildContextNode,
    ConversationConditional,
    ConversationNode,
    ConversationPromptBuilder,
    ExecutionNode,
    OutputValidator,
    PreparationNode,
    ValidationConditional,
    ValidationNode,
)
from src.core.workflow.nodes.conversation import (
    asks_for_confirmation,
    last_conversation_phase,
    parse_intent_summary,
)
from src.core.workflow.nodes.execution import parse_execution_output
from src.core.workflow.templates import IntentTemplateCatalog
from src.memory import InMemorySessionStore
from src.memory.context import ContextWindowBuilder
from tests.fakes import (
    ORDERING_TOPIC,
    PROJECT_ID,
    ScriptedCompletionService,
    confirmed_summary,
    execution_reply,
    seeded_repository,
)


def turn_state(**overrides) -> TurnState:
    values = {
        "project_id": PROJECT_ID,
        "topic_id": ORDERING_TOPIC,
        "session_id": "session_test",
        "model": "anthropic/claude-sonnet-4",
        "user_message": "Reorder my highlights",
    }
    values.update(overrides)
    return TurnState(**values)


def with_window(state: TurnState) -> TurnState:
    builder = ContextWindowBuilder(TokenBudgeter())
    window = builder.build([], state.user_message, state.model, "system prompt")
    return state.model_copy(update={"context_window": window})


class TestConversationParsing:
    """Test cases for conversation reply parsing."""

    def test_fenced_summary(self):
        """Test a confirmed summary in a json block."""
        summary = parse_intent_summary(confirmed_summary("improve_hook", use_current_order=True))

        assert summary.intent == IntentName.IMPROVE_HOOK
        assert summary.use_current_order is True
        assert summary.optimization_goals == ["engagement"]
        assert summary.confirmed is True

    def test_bare_summary(self):
        """Test a bare JSON summary without the wrapper key."""
        summary = parse_intent_summary('{"intent": "analyze", "confirmed": true}')

        assert summary.intent == IntentName.ANALYZE

    def test_summary_with_non_string_goals(self):
        """Test that a summary with stray list entries still confirms."""
        reply = '{"conversation_summary": {"intent": "reorder", "optimizationGoals": [1, "pacing"], "confirmed": true}}'

        summary = parse_intent_summary(reply)

        assert summary is not None
        assert summary.confirmed is True
        assert summary.optimization_goals == ["pacing"]

    def test_plain_text_is_not_a_summary(self):
        """Test that conversation text yields no summary."""
        assert parse_intent_summary("Do you want to keep your current order?") is None

    def test_unknown_intent_in_confirmed_summary(self):
        """Test that unknown confirmed intents are rejected."""
        with pytest.raises(UnknownIntentError):
            parse_intent_summary('{"conversation_summary": {"intent": "translate", "confirmed": true}}')

    def test_unconfirmed_unknown_intent_ignored(self):
        """Test that unconfirmed drafts are not errors."""
        assert parse_intent_summary('{"intent": "translate", "confirmed": false}') is None

    def test_confirmation_question(self):
        """Test detection of the confirmation question."""
        assert asks_for_confirmation("I'll reorder into 3 sections. Should I proceed?")
        assert not asks_for_confirmation("What is the video about?")

    def test_last_conversation_phase(self):
        """Test reading the phase back from history."""
        awaiting = Message(
            role=MessageRole.ASSISTANT,
            content="Should I proceed?",
            hidden_context=json.dumps({"phase": "awaiting_confirmation"}),
        )
        error = Message(role=MessageRole.ERROR, content="failed")

        assert last_conversation_phase([]) == ConversationPhase.LISTENING
        assert last_conversation_phase([awaiting]) == ConversationPhase.AWAITING_CONFIRMATION
        assert last_conversation_phase([awaiting, Message(role=MessageRole.USER, content="yes")]) == (
            ConversationPhase.AWAITING_CONFIRMATION
        )
        assert last_conversation_phase([awaiting, error]) == ConversationPhase.LISTENING


class TestConversationPromptBuilder:
    """Test cases for ConversationPromptBuilder."""

    def setup_method(self):
        """Set up test fixtures."""
        self.topics = TopicCatalog()
        self.builder = ConversationPromptBuilder(IntentTemplateCatalog(), build_default_registry().describe())

    def test_action_prompt(self):
        """Test the prompt of an action topic."""
        prompt = self.builder.build(self.topics.get(ORDERING_TOPIC), ConversationPhase.LISTENING, True)

        assert "(intent: reorder)" in prompt
        assert "(intent: analyze)" in prompt
        assert "get_highlight_map" in prompt
        assert "Should I proceed?" in prompt
        assert "conversation_summary" in prompt
        assert "Gathering context" in prompt

    def test_awaiting_confirmation_prompt(self):
        """Test the phase note after a confirmation question."""
        prompt = self.builder.build(self.topics.get(ORDERING_TOPIC), ConversationPhase.AWAITING_CONFIRMATION, True)

        assert "You asked the user to confirm your plan" in prompt

    def test_plain_prompt_with_context_data(self):
        """Test the regular chat prompt with caller highlights."""
        topic = self.topics.get("content_analysis")
        context_data = {"highlights": [{"id": "h1", "text": "Hello"}, {"id": "h2"}]}

        prompt = self.builder.build(topic, ConversationPhase.LISTENING, False, context_data)

        assert prompt.startswith(topic.system_prompt)
        assert '- h1: "Hello"' in prompt
        assert "h2" not in prompt
        assert "conversation_summary" not in prompt


@pytest.mark.asyncio
class TestBuildContextNode:
    """Test cases for BuildContextNode."""

    async def test_builds_window_and_phase(self):
        """Test that history and phase are loaded from the store."""
        store = InMemorySessionStore()
        session = await store.find_or_create_session(PROJECT_ID, ORDERING_TOPIC)
        await store.append_message(session.session_id, Message(role=MessageRole.USER, content="Reorder please"))
        await store.append_message(session.session_id, Message(
            role=MessageRole.ASSISTANT,
            content="I'll start fresh. Should I proceed?",
            hidden_context=json.dumps({"phase": "awaiting_confirmation"}),
        ))
        current = await store.append_message(session.session_id, Message(role=MessageRole.USER, content="yes"))
        node = BuildContextNode(
            store,
            ContextWindowBuilder(TokenBudgeter()),
            TopicCatalog(),
            ConversationPromptBuilder(IntentTemplateCatalog()),
        )

        result = await node(turn_state(
            session_id=session.session_id,
            user_message="yes",
            user_message_id=current.message_id,
        ))

        window = result["context_window"]
        assert node.name == TurnStage.BUILD_CONTEXT.value
        assert result["phase"] == ConversationPhase.AWAITING_CONFIRMATION
        assert [m.content for m in window.history] == ["Reorder please", "I'll start fresh. Should I proceed?"]
        assert window.new_message.content == "yes"

    async def test_history_failure_is_not_fatal(self):
        """Test that a store failure yields an empty history."""
        store = AsyncMock()
        store.list_messages.side_effect = PersistenceError("down")
        node = BuildContextNode(
            store,
            ContextWindowBuilder(TokenBudgeter()),
            TopicCatalog(),
            ConversationPromptBuilder(IntentTemplateCatalog()),
        )

        result = await node(turn_state())

        assert result["context_window"].history == []
        assert result["phase"] == ConversationPhase.LISTENING


@pytest.mark.asyncio
class TestConversationNode:
    """Test cases for ConversationNode."""

    async def test_reply(self):
        """Test a clarifying question."""
        completion = ScriptedCompletionService(["Should we build on your current order?"])
        node = ConversationNode(completion, Settings())

        result = await node(with_window(turn_state()))

        assert result == {"reply": "Should we build on your current order?", "phase": ConversationPhase.LISTENING}
        assert completion.calls[0]["temperature"] == 0.7
        assert completion.calls[0]["max_tokens"] == 2000

    async def test_confirmation_question(self):
        """Test that asking for confirmation changes the phase."""
        completion = ScriptedCompletionService(["I'll reorder into sections. Should I proceed?"])

        result = await ConversationNode(completion, Settings())(with_window(turn_state()))

        assert result["phase"] == ConversationPhase.AWAITING_CONFIRMATION

    async def test_confirmed_summary(self):
        """Test that a confirmed summary ends the conversation stage."""
        completion = ScriptedCompletionService([confirmed_summary()])

        result = await ConversationNode(completion, Settings())(with_window(turn_state()))

        assert result["phase"] == ConversationPhase.CONFIRMED
        assert result["intent_summary"].intent == IntentName.REORDER
        assert result["reply"] is None

    async def test_summary_ignored_without_actions(self):
        """Test the regular chat path."""
        completion = ScriptedCompletionService([confirmed_summary()])

        result = await ConversationNode(completion, Settings())(
            with_window(turn_state(actions_enabled=False))
        )

        assert result["phase"] == ConversationPhase.LISTENING
        assert "conversation_summary" in result["reply"]

    async def test_empty_reply(self):
        """Test that an empty completion is an error."""
        completion = ScriptedCompletionService(["   "])

        with pytest.raises(LLMCallError):
            await ConversationNode(completion, Settings())(with_window(turn_state()))


class TestConversationConditional:
    """Test cases for ConversationConditional."""

    def test_routes_confirmed_to_preparation(self):
        """Test routing after confirmation."""
        state = turn_state(intent_summary=IntentSummary(intent=IntentName.REORDER, confirmed=True))
        assert ConversationConditional()(state) == TurnStage.PREPARE.value

    def test_ends_otherwise(self):
        """Test routing of conversational replies."""
        assert ConversationConditional()(turn_state(reply="Hi")) == END


@pytest.mark.asyncio
class TestPreparationNode:
    """Test cases for PreparationNode."""

    def setup_method(self):
        """Set up test fixtures."""
        self.repository = seeded_repository()
        self.node = PreparationNode(IntentTemplateCatalog(), build_default_registry(), self.repository)

    async def test_fresh_reorder(self):
        """Test preparing a reorder that starts fresh."""
        state = turn_state(intent_summary=IntentSummary(intent=IntentName.REORDER, confirmed=True))

        result = await self.node(state)

        execution_input = result["execution_input"]
        assert execution_input.item_count == 5
        assert execution_input.current_order == []
        assert execution_input.use_current_order is False
        assert [r.function_name for r in result["function_results"]] == ["get_highlight_map"]
        assert "Total highlights: 5" in result["execution_prompt"]

    async def test_reorder_from_current_order(self):
        """Test that the current order is fetched when wanted."""
        state = turn_state(intent_summary=IntentSummary(
            intent=IntentName.REORDER, use_current_order=True, confirmed=True
        ))

        result = await self.node(state)

        assert result["execution_input"].current_order == ["h1", "h2", "h3", "h4", "h5"]
        assert result["execution_input"].use_current_order is True

    async def test_analysis_input(self):
        """Test that analysis gets the order and statistics."""
        state = turn_state(intent_summary=IntentSummary(intent=IntentName.ANALYZE, confirmed=True))

        result = await self.node(state)

        execution_input = result["execution_input"]
        assert execution_input.current_order == ["h1", "h2", "h3", "h4", "h5"]
        assert execution_input.additional_context["total_highlights"] == 5
        assert len(result["function_results"]) == 3

    async def test_optional_order_failure_continues(self):
        """Test that a failing optional function falls back to a fresh start."""
        self.repository.get_order = AsyncMock(side_effect=RuntimeError("order store down"))
        state = turn_state(intent_summary=IntentSummary(
            intent=IntentName.REORDER, use_current_order=True, confirmed=True
        ))

        result = await self.node(state)

        assert result["execution_input"].use_current_order is False
        assert result["function_results"][1].success is False

    async def test_required_failure_raises(self):
        """Test that a failing required function fails preparation."""
        self.repository.get_highlights = AsyncMock(side_effect=RuntimeError("highlight store down"))
        state = turn_state(intent_summary=IntentSummary(intent=IntentName.REORDER, confirmed=True))

        with pytest.raises(FunctionCallError) as exc_info:
            await self.node(state)

        assert exc_info.value.function_name == "get_highlight_map"

    async def test_missing_template(self):
        """Test that an intent without a template is unknown."""
        node = PreparationNode(IntentTemplateCatalog([]), build_default_registry(), self.repository)
        state = turn_state(intent_summary=IntentSummary(intent=IntentName.REORDER, confirmed=True))

        with pytest.raises(UnknownIntentError):
            await node(state)


class TestParseExecutionOutput:
    """Test cases for execution output parsing."""

    def test_json_with_surrounding_text(self):
        """Test extraction from the first brace to the last."""
        output = parse_execution_output("Here you go:\n" + execution_reply(["h1"], 1) + "\nDone.")

        assert output.success is True
        assert output.new_order == ["h1"]
        assert output.section_count == 1

    def test_section_markers(self):
        """Test that section objects are parsed."""
        output = parse_execution_output(execution_reply([{"type": "N", "title": "Hook"}, "h1"]))

        assert output.new_order == [SectionMarker(title="Hook"), "h1"]

    def test_truncated_json(self):
        """Test truncated output."""
        with pytest.raises(ParseError):
            parse_execution_output('{"success": true, "newOrder": ["h1", "h2"')

    def test_no_json(self):
        """Test plain text output."""
        with pytest.raises(ParseError):
            parse_execution_output("I could not do that.")

    def test_wrong_shape(self):
        """Test JSON missing required fields."""
        with pytest.raises(ParseError):
            parse_execution_output('{"newOrder": []}')


@pytest.mark.asyncio
class TestExecutionNode:
    """Test cases for ExecutionNode."""

    def setup_method(self):
        """Set up test fixtures."""
        self.settings = Settings(execution_retry_wait_seconds=0)
        self.state = turn_state(execution_prompt="EXECUTE THE TASK NOW:")

    async def test_success_first_attempt(self):
        """Test a single successful attempt."""
        completion = ScriptedCompletionService([execution_reply(["h1"])])

        result = await ExecutionNode(completion, self.settings)(self.state)

        assert result["execution_attempts"] == 1
        assert result["execution_output"].new_order == ["h1"]
        assert completion.calls[0]["temperature"] == 0.3
        assert completion.calls[0]["max_tokens"] == 4000

    async def test_retry_after_parse_error(self):
        """Test that one retry carries the parse error."""
        completion = ScriptedCompletionService(['{"success": true, "newOrder": [', execution_reply(["h1"])])

        result = await ExecutionNode(completion, self.settings)(self.state)

        assert result["execution_attempts"] == 2
        assert "PREVIOUS ATTEMPT FAILED" not in completion.calls[0]["user_prompt"]
        assert "PREVIOUS ATTEMPT FAILED" in completion.calls[1]["user_prompt"]

    async def test_retry_after_llm_error(self):
        """Test that completion failures are retried."""
        completion = ScriptedCompletionService([LLMCallError("timeout"), execution_reply(["h1"])])

        result = await ExecutionNode(completion, self.settings)(self.state)

        assert result["execution_attempts"] == 2

    async def test_gives_up_after_two_attempts(self):
        """Test the bounded retry."""
        completion = ScriptedCompletionService(["not json", "still not json", execution_reply(["h1"])])

        with pytest.raises(ParseError):
            await ExecutionNode(completion, self.settings)(self.state)

        assert len(completion.calls) == 2

    async def test_execution_model_override(self):
        """Test the configured execution model."""
        completion = ScriptedCompletionService([execution_reply(["h1"])])
        settings = Settings(execution_retry_wait_seconds=0, execution_model="openai/gpt-4o")

        await ExecutionNode(completion, settings)(self.state)

        assert completion.calls[0]["model"] == "openai/gpt-4o"


class TestOutputValidator:
    """Test cases for OutputValidator."""

    def setup_method(self):
        """Set up test fixtures."""
        self.validator = OutputValidator()

    def test_complete_order_passes(self):
        """Test an order with every highlight and sections."""
        output = StructuredExecutionOutput(
            success=True,
            new_order=[SectionMarker(title="Hook"), "h1", "h2", SectionMarker(title="End"), "h3"],
        )

        self.validator.validate(output, 3, known_ids=["h1", "h2", "h3"])

    def test_failure_propagates_error(self):
        """Test that model-reported failures are surfaced."""
        with pytest.raises(OutputMismatchError, match="not enough highlights"):
            self.validator.validate(StructuredExecutionOutput(success=False, error="not enough highlights"), 3)

    def test_failure_without_error(self):
        """Test the generic failure message."""
        with pytest.raises(OutputMismatchError, match="execution failed with no error message"):
            self.validator.validate(StructuredExecutionOutput(success=False), 3)

    def test_empty_order(self):
        """Test that an empty order fails."""
        with pytest.raises(OutputMismatchError, match="new order is empty"):
            self.validator.validate(StructuredExecutionOutput(success=True), 3)

    def test_empty_order_for_empty_project(self):
        """Test that an empty project may produce an empty order."""
        self.validator.validate(StructuredExecutionOutput(success=True), 0)

    def test_count_mismatch(self):
        """Test the diagnostic counts."""
        output = StructuredExecutionOutput(success=True, new_order=["h1", "h2"])

        with pytest.raises(OutputMismatchError, match="expected 3 highlights, got 2") as exc_info:
            self.validator.validate(output, 3)

        assert exc_info.value.expected_count == 3
        assert exc_info.value.actual_count == 2

    def test_duplicates_and_unknown_ids(self):
        """Test identity checks with known ids."""
        output = StructuredExecutionOutput(success=True, new_order=["h1", "h1", "zz"])

        with pytest.raises(OutputMismatchError) as exc_info:
            self.validator.validate(output, 3, known_ids=["h1", "h2", "h3"])

        message = str(exc_info.value)
        assert "duplicate highlights: h1" in message
        assert "unknown highlights: zz" in message
        assert "missing highlights: h2, h3" in message

    def test_analysis_must_keep_order(self):
        """Test that analysis output equals the input order."""
        current = [SectionMarker(title="Intro"), "h1", "h2"]

        self.validator.validate(
            StructuredExecutionOutput(success=True, new_order=list(current)),
            2,
            intent_kind=IntentKind.ANALYSIS,
            current_order=current,
        )
        with pytest.raises(OutputMismatchError, match="analysis must not change the order"):
            self.validator.validate(
                StructuredExecutionOutput(success=True, new_order=["h2", "h1"]),
                2,
                intent_kind=IntentKind.ANALYSIS,
                current_order=current,
            )


@pytest.mark.asyncio
class TestValidationNode:
    """Test cases for ValidationNode and its routing."""

    def setup_method(self):
        """Set up test fixtures."""
        self.catalog = IntentTemplateCatalog()

    def _state(self, intent: IntentName, new_order: list) -> TurnState:
        return turn_state(
            execution_input=StructuredExecutionInput(
                intent=intent,
                highlight_map={"h1": "a", "h2": "b"},
                current_order=["h1", "h2"] if intent == IntentName.ANALYZE else [],
            ),
            execution_output=StructuredExecutionOutput(success=True, new_order=new_order),
        )

    async def test_valid_reorder_routes_to_apply(self):
        """Test that valid orderings are applied."""
        state = self._state(IntentName.REORDER, ["h2", "h1"])

        result = await ValidationNode(self.catalog)(state)

        assert result == {"validated": True}
        assert ValidationConditional(self.catalog)(state) == TurnStage.APPLY.value

    async def test_analysis_ends_turn(self):
        """Test that analysis results are never applied."""
        state = self._state(IntentName.ANALYZE, ["h1", "h2"])

        await ValidationNode(self.catalog)(state)

        assert ValidationConditional(self.catalog)(state) == END

    async def test_invalid_output_raises(self):
        """Test that invalid orderings stop the turn."""
        with pytest.raises(OutputMismatchError):
            await ValidationNode(self.catalog)(self._state(IntentName.REORDER, ["h1"]))


@pytest.mark.asyncio
class TestApplyNode:
    """Test cases for ApplyNode."""

    async def test_applies_validated_order(self):
        """Test committing a validated order."""
        repository = seeded_repository()
        output = StructuredExecutionOutput(success=True, new_order=["h5", "h4", "h3", "h2", "h1"])

        result = await ApplyNode(repository, repository)(turn_state(execution_output=output, validated=True))

        assert result == {"applied": True}
        assert await repository.get_order(PROJECT_ID) == ["h5", "h4", "h3", "h2", "h1"]

    async def test_refuses_unvalidated_output(self):
        """Test that unvalidated output is never applied."""
        repository = seeded_repository()
        output = StructuredExecutionOutput(success=True, new_order=["h1"])

        with pytest.raises(ChangeApplyError):
            await ApplyNode(repository, repository)(turn_state(execution_output=output))

    async def test_wraps_applier_failures(self):
        """Test that applier errors become ChangeApplyError."""
        repository = seeded_repository()
        output = StructuredExecutionOutput(success=True, new_order=["h1"])

        with pytest.raises(ChangeApplyError):
            await ApplyNode(repository, repository)(
                turn_state(project_id=999, execution_output=output, validated=True)
            )

    async def test_commit_hook_runs_before_apply(self):
        """Test that the commit hook sees the project still unchanged."""
        repository = seeded_repository()
        output = StructuredExecutionOutput(success=True, new_order=["h5", "h4", "h3", "h2", "h1"])
        seen_orders = []

        def on_commit(state: TurnState) -> None:
            seen_orders.append(list(repository._orders[state.project_id]))

        node = ApplyNode(repository, repository, on_commit=on_commit)
        await node(turn_state(execution_output=output, validated=True))

        assert seen_orders == [["h1", "h2", "h3", "h4", "h5"]]

    async def test_commit_hook_skipped_for_unvalidated_output(self):
        """Test that refusing to apply never starts a commit."""
        repository = seeded_repository()
        calls = []
        node = ApplyNode(repository, repository, on_commit=calls.append)

        with pytest.raises(ChangeApplyError):
            await node(turn_state(execution_output=StructuredExecutionOutput(success=True, new_order=["h1"])))

        assert calls == []

"""Conversation node implementation.

The conversation node talks with the user until the request is understood
and confirmed, then hands a structured intent summary to preparation.
"""

import logging
from collections.abc import Sequence
from typing import Any

from langgraph.graph import END
from pydantic import ValidationError as PydanticValidationError

from ...config import Settings, settings as default_settings
from ...domain.chat import Message, MessageRole
from ...domain.functions import snapshot_from_context
from ...domain.intents import ConversationPhase, IntentName, IntentSummary
from ...domain.state import TurnStage, TurnState
from ...exceptions import LLMCallError, UnknownIntentError
from ...llm.client import CompletionService
from ...topics import TopicConfig
from ...utils.parsing import extract_fenced_json
from ..base import ConditionalFunction, NodeFunction
from ..templates import IntentTemplateCatalog

logger = logging.getLogger(__name__)

CONFIRMATION_QUESTION = "Should I proceed?"
SUMMARY_KEY = "conversation_summary"

# Friendly capability lines per intent
INTENT_CAPABILITIES = {
    IntentName.REORDER: "📝 **Reorder highlights** - rearrange your highlights into sections for better flow and engagement",
    IntentName.IMPROVE_HOOK: "🎣 **Improve the hook** - make the opening grab attention in the first seconds",
    IntentName.IMPROVE_CONCLUSION: "🏁 **Improve the conclusion** - finish on a stronger, more memorable note",
    IntentName.ANALYZE: "🔍 **Analyze content** - review themes, structure and improvement opportunities without changing anything",
}

CONVERSATION_RULES = """INTERACTION APPROACH:
1. Understand what the user actually wants from the whole message, not from keywords
2. Ask ONE clarifying question at a time and wait for the answer
3. For reorder-type requests, first find out whether to build on the current order or start fresh
4. Once you have enough context, explain your plan and ask for confirmation
5. Analysis-only requests change nothing and need no confirmation

FINAL CONFIRMATION FORMAT:
"I'll [specific plan based on the gathered context]. This will modify your highlight order. Should I proceed?"

ONLY AFTER THE USER CONFIRMS (or right away for analysis-only requests), answer with nothing but this JSON block:
```json
{
  "conversation_summary": {
    "intent": "<one of the intents listed above>",
    "userWantsCurrentOrder": true,
    "optimizationGoals": ["engagement", "flow"],
    "specificRequests": ["any specific user requests"],
    "userContext": "important context from the conversation",
    "confirmed": true
  }
}
```

If the user declines or changes the request, go back to clarifying questions.
Never output the JSON before the user has confirmed a change."""

PHASE_NOTES = {
    ConversationPhase.LISTENING: "CURRENT STATE: Gathering context. Ask the most important missing question.",
    ConversationPhase.AWAITING_CONFIRMATION: (
        "CURRENT STATE: You asked the user to confirm your plan. If their reply confirms it, "
        "answer with the JSON summary. If they decline or ask for something different, "
        "return to clarifying questions."
    ),
}


class ConversationPromptBuilder:
    """Builds the system prompt of the conversation stage."""

    def __init__(self, catalog: IntentTemplateCatalog, function_descriptions: str = "") -> None:
        self.catalog = catalog
        self.function_descriptions = function_descriptions

    def capabilities(self, topic: TopicConfig) -> str:
        """Describe what the assistant can do for a topic."""
        lines = []
        for intent in topic.intents:
            if intent not in self.catalog:
                continue
            template = self.catalog.get(intent)
            line = INTENT_CAPABILITIES.get(intent, f"⚡ **{intent.value}** - {template.description}")
            lines.append(f"{line} (intent: {intent.value})")
        if not lines:
            return "I can help you with your video editing needs."
        return "Here's what I can help you with:\n\n" + "\n".join(lines)

    def build(
        self,
        topic: TopicConfig,
        phase: ConversationPhase,
        actions_enabled: bool,
        context_data: dict[str, Any] | None = None,
    ) -> str:
        if not actions_enabled:
            return _with_context_data(topic.system_prompt, context_data)

        sections = [topic.system_prompt, self.capabilities(topic)]
        if self.function_descriptions:
            sections.append(
                "DATA I CAN LOOK UP WHEN EXECUTING (never call these yourself):\n"
                + self.function_descriptions
            )
        sections.append(CONVERSATION_RULES)
        sections.append(PHASE_NOTES.get(phase, PHASE_NOTES[ConversationPhase.LISTENING]))
        return "\n\n".join(sections)


def _with_context_data(system_prompt: str, context_data: dict[str, Any] | None) -> str:
    """Append caller-provided highlights to a plain chat prompt."""
    highlights, _ = snapshot_from_context(context_data)
    lines = [f"- {highlight.id}: \"{highlight.text}\"" for highlight in highlights if highlight.text]
    if not lines:
        return system_prompt
    return f"{system_prompt}\n\nAvailable highlights:\n" + "\n".join(lines)


def last_conversation_phase(history: Sequence[Message]) -> ConversationPhase:
    """Phase recorded on the latest assistant or error message."""
    for message in reversed(history):
        if message.role == MessageRole.ERROR:
            return ConversationPhase.LISTENING
        if message.role == MessageRole.ASSISTANT:
            phase = message.hidden_data().get("phase")
            if phase == ConversationPhase.AWAITING_CONFIRMATION.value:
                return ConversationPhase.AWAITING_CONFIRMATION
            return ConversationPhase.LISTENING
    return ConversationPhase.LISTENING


def parse_intent_summary(text: str) -> IntentSummary | None:
    """Extract a structured intent summary from a model reply.

    Returns:
        The summary, or None if the reply is plain conversation

    Raises:
        UnknownIntentError: If a confirmed summary names an unsupported intent
    """
    data = extract_fenced_json(text)
    if data is None:
        return None

    payload = data.get(SUMMARY_KEY, data)
    if not isinstance(payload, dict) or "intent" not in payload:
        return None

    intent = payload.get("intent")
    if payload.get("confirmed") is True and intent not in IntentName.values():
        raise UnknownIntentError(str(intent))

    try:
        return IntentSummary.model_validate(payload)
    except PydanticValidationError as e:
        logger.warning(f"Ignoring malformed intent summary: {e}")
        return None


def asks_for_confirmation(text: str) -> bool:
    return CONFIRMATION_QUESTION.lower() in text.lower()


class ConversationNode(NodeFunction):
    """Node that continues the dialogue or emits a confirmed intent summary."""

    def __init__(self, completion: CompletionService, settings: Settings | None = None) -> None:
        self.completion = completion
        self.settings = settings or default_settings

    @property
    def name(self) -> str:
        """Get the node name."""
        return TurnStage.CONVERSE.value

    async def __call__(self, state: TurnState) -> dict[str, Any]:
        """Run the conversation stage.

        Args:
            state: Turn state with a built context window

        Returns:
            Either a reply with its phase or a confirmed intent summary
        """
        window = state.context_window
        if window is None:
            raise RuntimeError("Context window must be built before the conversation stage")

        result = await self.completion.complete(
            system_prompt=window.system_prompt,
            user_prompt=window.new_message.content,
            model=state.model,
            max_tokens=self.settings.conversation_max_tokens,
            temperature=self.settings.conversation_temperature,
            history=window.history,
        )
        text = result.text.strip()
        if not text:
            raise LLMCallError("Completion service returned an empty reply")

        if state.actions_enabled:
            summary = parse_intent_summary(text)
            if summary is not None and summary.confirmed:
                logger.info(f"✅ Intent confirmed for session {state.session_id}: {summary.intent.value}")
                return {
                    "intent_summary": summary,
                    "phase": ConversationPhase.CONFIRMED,
                    "reply": None,
                }

        phase = ConversationPhase.LISTENING
        if state.actions_enabled and asks_for_confirmation(text):
            phase = ConversationPhase.AWAITING_CONFIRMATION
        logger.debug(f"Conversation reply for session {state.session_id} (phase: {phase.value})")
        return {"reply": text, "phase": phase}


class ConversationConditional(ConditionalFunction):
    """Route confirmed intents to preparation, end the turn otherwise."""

    @property
    def name(self) -> str:
        """Get the conditional name."""
        return "conversation_conditional"

    def __call__(self, state: TurnState) -> str:
        if state.confirmed:
            return TurnStage.PREPARE.value
        return END

"""Intent template catalog for structured execution.

Each template tells the execution model what to do for one intent, which
registry functions must run to gather its input, and how to phrase the
result for the user.
"""

import logging
from collections.abc import Iterable
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict

from ..domain.functions import ANALYZE_HIGHLIGHTS, GET_CURRENT_ORDER, GET_HIGHLIGHT_MAP
from ..domain.intents import IntentKind, IntentName, StructuredExecutionInput, StructuredExecutionOutput
from ..exceptions import UnknownIntentError

logger = logging.getLogger(__name__)

PROMPT_ROLE = (
    "You are a YouTube content optimization specialist. You will receive structured "
    "input and must return structured JSON output."
)

CRITICAL_REQUIREMENTS = """1. Return ONLY the JSON object - no additional text
2. Include ALL highlight IDs from the input highlightMap exactly once
3. Use only highlight IDs that appear in the input
4. Ensure the JSON is valid and parseable
5. Follow the exact output format specified above"""


class IntentTemplate(BaseModel):
    """Prompt template and execution requirements of one intent."""

    model_config = ConfigDict(frozen=True)

    intent: IntentName
    kind: IntentKind
    description: str
    instructions: str
    output_format: str
    examples: str
    required_functions: tuple[str, ...] = (GET_HIGHLIGHT_MAP,)
    optional_functions: tuple[str, ...] = ()
    progress_message: str = "Processing your request..."
    success_message: str

    def functions_for(self, use_current_order: bool) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """Return (required, optional) function names for one request.

        When the user wants to build on the current order it is fetched as an
        optional function; if it cannot be loaded the request continues from
        scratch.
        """
        required = self.required_functions
        optional = tuple(name for name in self.optional_functions if name not in required)
        if use_current_order and GET_CURRENT_ORDER not in required + optional:
            optional += (GET_CURRENT_ORDER,)
        return required, optional

    def render_prompt(self, execution_input: StructuredExecutionInput) -> str:
        """Render the complete, self-contained execution prompt."""
        input_json = execution_input.model_dump_json(by_alias=True, indent=2)
        sections = [
            PROMPT_ROLE,
            f"TASK: {self.description}\n{self.intent.value}",
            f"INPUT DATA:\n{input_json}",
            _render_highlights(execution_input),
            _render_current_order(execution_input),
            _render_user_request(execution_input),
            f"INSTRUCTIONS:\n{self.instructions}",
            f"REQUIRED OUTPUT FORMAT:\n{self.output_format}",
            f"EXAMPLES:\n{self.examples}",
            f"CRITICAL REQUIREMENTS:\n{CRITICAL_REQUIREMENTS}",
            "EXECUTE THE TASK NOW:",
        ]
        return "\n\n".join(section for section in sections if section)

    def render_success(self, output: StructuredExecutionOutput) -> str:
        """Human readable summary of a validated result."""
        parts = [self.success_message.format(section_count=output.section_count)]
        if output.changes:
            parts.append(f"**Key Changes:** {', '.join(output.changes)}")
        if output.reasoning:
            parts.append(f"**Reasoning:** {output.reasoning}")
        return "\n\n".join(parts)


def _render_highlights(execution_input: StructuredExecutionInput) -> str:
    lines = ["AVAILABLE HIGHLIGHTS:"]
    lines.extend(f'- {highlight_id}: "{text}"' for highlight_id, text in execution_input.highlight_map.items())
    lines.append(f"\nTotal highlights: {execution_input.item_count} (ALL must be included in new order)")
    return "\n".join(lines)


def _render_current_order(execution_input: StructuredExecutionInput) -> str:
    if not execution_input.current_order:
        if execution_input.use_current_order:
            return "CURRENT ORDER: (empty)"
        return "CURRENT ORDER: User prefers to start fresh (not using current order)"

    lines = ["CURRENT ORDER (use as starting point):"]
    for position, item in enumerate(execution_input.current_order, start=1):
        label = item if isinstance(item, str) else item.render()
        lines.append(f"{position}. {label}")
    return "\n".join(lines)


def _render_user_request(execution_input: StructuredExecutionInput) -> str:
    lines = []
    if execution_input.goals:
        lines.append(f"USER OPTIMIZATION GOALS: {', '.join(execution_input.goals)}")
    if execution_input.specific_requests:
        lines.append(f"SPECIFIC USER REQUESTS: {', '.join(execution_input.specific_requests)}")
    if execution_input.user_context:
        lines.append(f"USER CONTEXT: {execution_input.user_context}")
    return "\n".join(lines)


REORDER_TEMPLATE = IntentTemplate(
    intent=IntentName.REORDER,
    kind=IntentKind.ORDERING,
    description="Reorder highlights for optimal engagement and narrative flow",
    instructions="""REORDER INSTRUCTIONS:
- You can move ANY highlight to ANY position
- Organize into logical sections with engaging titles
- Section flow: Hook/Intro -> Content Sections -> Conclusion
- Group related highlights within sections
- Optimize for YouTube viewer retention
- Use section objects: {"type": "N", "title": "Section Title"}
- Include ALL highlight IDs, a missing ID breaks the project""",
    output_format="""Return a JSON object with this EXACT structure:
{
  "success": true,
  "newOrder": [
    {"type": "N", "title": "Hook: Grab Attention"},
    "highlight_id_1",
    "highlight_id_2",
    {"type": "N", "title": "Main Content"},
    "highlight_id_3"
  ],
  "reasoning": "Why this order improves engagement",
  "sectionCount": 2,
  "changes": ["Created engaging hook section", "Grouped related concepts"]
}""",
    examples="""EXAMPLE INPUT: 3 highlights about learning
EXAMPLE OUTPUT:
{
  "success": true,
  "newOrder": [
    {"type": "N", "title": "Hook: The Learning Problem"},
    "highlight_123",
    {"type": "N", "title": "The Solution"},
    "highlight_456",
    "highlight_789"
  ],
  "reasoning": "Opened with the problem to hook viewers, then delivered the solution with its evidence.",
  "sectionCount": 2,
  "changes": ["Problem-solution structure", "Strong hook"]
}""",
    progress_message="Optimizing highlight arrangement...",
    success_message=(
        "✅ **Success!** Reorganized your highlights into {section_count} sections "
        "for better engagement and flow."
    ),
)

IMPROVE_HOOK_TEMPLATE = IntentTemplate(
    intent=IntentName.IMPROVE_HOOK,
    kind=IntentKind.ORDERING,
    description="Improve the opening section to create a stronger hook",
    instructions="""HOOK IMPROVEMENT INSTRUCTIONS:
- Focus on the first 1-3 highlights to create maximum impact
- Put the most attention-grabbing content first
- Create curiosity, urgency, or emotional connection
- You can reorder any highlights to create the best hook
- Include ALL highlight IDs in the output""",
    output_format="""Return a JSON object with this EXACT structure:
{
  "success": true,
  "newOrder": [complete reordered list with improved hook],
  "reasoning": "Why the new opening grabs attention better",
  "sectionCount": number,
  "changes": ["Moved strongest statement to start", "Created curiosity gap"]
}""",
    examples="Focus on the strongest possible opening while keeping the overall flow.",
    progress_message="Strengthening your opening hook...",
    success_message=(
        "✅ **Success!** Improved your opening section for a stronger hook "
        "and better viewer retention."
    ),
)

IMPROVE_CONCLUSION_TEMPLATE = IntentTemplate(
    intent=IntentName.IMPROVE_CONCLUSION,
    kind=IntentKind.ORDERING,
    description="Improve the ending section for a stronger finish",
    instructions="""CONCLUSION IMPROVEMENT INSTRUCTIONS:
- Focus on the last 1-3 highlights for maximum impact
- Use the most powerful, memorable content for the finish
- Create a strong call to action or emotional payoff
- You can reorder any highlights to create the best conclusion
- Include ALL highlight IDs in the output""",
    output_format="""Return a JSON object with this EXACT structure:
{
  "success": true,
  "newOrder": [complete reordered list with improved conclusion],
  "reasoning": "Why the new ending is stronger",
  "sectionCount": number,
  "changes": ["Moved most powerful statement to end", "Created satisfying payoff"]
}""",
    examples="Focus on the strongest possible ending while keeping the overall flow.",
    progress_message="Strengthening your conclusion...",
    success_message=(
        "✅ **Success!** Enhanced your conclusion for a more powerful ending "
        "and better viewer satisfaction."
    ),
)

ANALYZE_TEMPLATE = IntentTemplate(
    intent=IntentName.ANALYZE,
    kind=IntentKind.ANALYSIS,
    description="Analyze content structure and provide insights without reordering",
    instructions="""ANALYSIS INSTRUCTIONS:
- Analyze the current structure and content themes
- Identify strengths and weaknesses in the current flow
- Suggest improvements without making changes
- Do NOT reorder highlights, this is analysis only
- newOrder must repeat the current order exactly, section objects included""",
    output_format="""Return a JSON object with this EXACT structure:
{
  "success": true,
  "newOrder": [exact same order as currentOrder - DO NOT CHANGE],
  "reasoning": "Analysis of structure, themes, flow and possible improvements",
  "sectionCount": 0,
  "changes": ["Analysis only - no changes made"]
}""",
    examples="Provide insights and suggestions while keeping everything in the same order.",
    required_functions=(GET_HIGHLIGHT_MAP, GET_CURRENT_ORDER, ANALYZE_HIGHLIGHTS),
    progress_message="Analyzing content structure and themes...",
    success_message="✅ **Analysis Complete!** Here is what I found in your content structure.",
)

DEFAULT_TEMPLATES: tuple[IntentTemplate, ...] = (
    REORDER_TEMPLATE,
    IMPROVE_HOOK_TEMPLATE,
    IMPROVE_CONCLUSION_TEMPLATE,
    ANALYZE_TEMPLATE,
)


class IntentTemplateCatalog:
    """Immutable mapping from intent to its template."""

    def __init__(self, templates: Iterable[IntentTemplate] = DEFAULT_TEMPLATES) -> None:
        table: dict[IntentName, IntentTemplate] = {}
        for template in templates:
            if template.intent in table:
                raise ValueError(f"Intent '{template.intent.value}' has two templates")
            table[template.intent] = template
        self._templates = MappingProxyType(table)
        logger.debug(f"Intent catalog ready with {len(table)} templates")

    def get(self, intent: IntentName | str) -> IntentTemplate:
        """Look up the template for an intent.

        Raises:
            UnknownIntentError: If no template is registered for the intent
        """
        try:
            key = IntentName(intent)
        except ValueError:
            raise UnknownIntentError(str(intent)) from None
        template = self._templates.get(key)
        if template is None:
            raise UnknownIntentError(key.value)
        return template

    def intents(self) -> list[IntentName]:
        return list(self._templates)

    def __contains__(self, intent: object) -> bool:
        return intent in self._templates

    def __len__(self) -> int:
        return len(self._templates)

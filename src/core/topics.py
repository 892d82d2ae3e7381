"""Topic (endpoint) catalog.

Each chat topic has its own persona and decides whether confirmed intents
may be executed. The catalog is built once and passed to the orchestrator.
"""

import logging
from collections.abc import Iterable
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from .domain.intents import IntentName

logger = logging.getLogger(__name__)

GENERIC_TOPIC_ID = "general"


class TopicConfig(BaseModel):
    """Configuration of one chat topic."""

    model_config = ConfigDict(frozen=True)

    topic_id: str = Field(..., min_length=1)
    name: str
    description: str
    system_prompt: str
    supports_actions: bool = False
    intents: tuple[IntentName, ...] = ()
    default_model: str | None = None


HIGHLIGHT_ORDERING_PERSONA = """You are an expert YouTube creator and video editing assistant. You work with HIGHLIGHTS: selected text excerpts from a video script, not video clips.

CONTEXT ABOUT HIGHLIGHTS:
- Any highlight can be moved to any position
- The goal is to arrange them into logical SECTIONS with descriptive titles
- A strong video opens with a hook, moves through content sections and closes with a conclusion

CORE YOUTUBE PRINCIPLES:
- Grab attention in the first seconds
- Group related highlights together
- Build tension and engagement from section to section
- Finish on a high note"""


DEFAULT_TOPICS: tuple[TopicConfig, ...] = (
    TopicConfig(
        topic_id="highlight_ordering",
        name="Highlight Ordering Assistant",
        description="Help with organizing and reordering highlights for better flow",
        system_prompt=HIGHLIGHT_ORDERING_PERSONA,
        supports_actions=True,
        intents=tuple(IntentName),
        default_model="anthropic/claude-sonnet-4",
    ),
    TopicConfig(
        topic_id="highlight_suggestions",
        name="Highlight Suggestions Assistant",
        description="Get AI suggestions for creating engaging highlights",
        system_prompt=(
            "You are an expert at identifying compelling moments in video content. "
            "Help suggest highlights that will engage viewers."
        ),
    ),
    TopicConfig(
        topic_id="content_analysis",
        name="Content Analysis Assistant",
        description="Analyze video content for insights and recommendations",
        system_prompt=(
            "You are a content analysis expert. Help analyze video content for themes, "
            "key messages, and audience engagement opportunities."
        ),
    ),
    TopicConfig(
        topic_id="export_optimization",
        name="Export Optimization Assistant",
        description="Optimize export settings and final video production",
        system_prompt=(
            "You are a video production expert. Help optimize export settings and final "
            "video production for different platforms and audiences."
        ),
    ),
)

GENERIC_TOPIC = TopicConfig(
    topic_id=GENERIC_TOPIC_ID,
    name="Video Editing Assistant",
    description="General help with video editing tasks",
    system_prompt="You are a helpful assistant for video editing and content creation.",
)


class TopicCatalog:
    """Immutable lookup of topic configurations by topic id."""

    def __init__(self, topics: Iterable[TopicConfig] = DEFAULT_TOPICS, fallback: TopicConfig = GENERIC_TOPIC) -> None:
        table: dict[str, TopicConfig] = {}
        for topic in topics:
            if topic.topic_id in table:
                raise ValueError(f"Topic '{topic.topic_id}' is registered twice")
            table[topic.topic_id] = topic
            logger.debug(f"Registered topic: {topic.topic_id} (actions: {topic.supports_actions})")
        self._topics = MappingProxyType(table)
        self._fallback = fallback

    def get(self, topic_id: str) -> TopicConfig:
        """Return a topic's configuration, or the generic one for unknown ids."""
        topic = self._topics.get(topic_id)
        if topic is None:
            logger.debug(f"Unknown topic '{topic_id}', using generic configuration")
            return self._fallback
        return topic

    def __contains__(self, topic_id: object) -> bool:
        return topic_id in self._topics

    def topic_ids(self) -> list[str]:
        return list(self._topics)

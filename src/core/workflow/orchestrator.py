"""Flow orchestrator for chat turns.

The orchestrator owns everything around the turn graph: request
validation, the per-session lock, the turn deadline, session resolution
and the order in which messages are persisted. Stage errors never escape
it; they are recorded in the session history and answered with
``success: false``.

The deadline may cancel a turn until a change starts being applied. From
that point the turn runs to completion so the new order and the reply
describing it are recorded together.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field

from ...action_plane.function_registry import FunctionRegistry
from ...action_plane.functions.change_applier import ChangeApplier
from ...memory.base import SessionStore
from ...memory.context.window_builder import ContextWindowBuilder
from ...memory.locks import SessionLockManager, session_lock_key
from ..config import Settings, settings as default_settings
from ..domain.chat import (
    ChatHistory,
    ChatRequest,
    ChatResponse,
    HistoryMessage,
    Message,
    MessageRole,
    Session,
    new_message_id,
    new_session_id,
)
from ..domain.functions import FunctionDefinition, ProjectDataSource, snapshot_from_context
from ..domain.intents import ConversationPhase, IntentKind, count_item_references
from ..domain.state import TurnState
from ..exceptions import OrchestrationError, PersistenceError, ValidationError
from ..llm.client import CompletionService
from ..topics import TopicCatalog, TopicConfig
from ..utils.tokens import TokenBudgeter, build_token_budgeter
from .nodes import (
    ApplyNode,
    BuildContextNode,
    ConversationNode,
    ConversationPromptBuilder,
    ExecutionNode,
    OutputValidator,
    PreparationNode,
    ValidationConditional,
    ValidationNode,
)
from .templates import IntentTemplateCatalog
from .turn_workflow import TurnWorkflow

logger = logging.getLogger(__name__)

SESSION_INIT_ERROR = "Failed to initialize chat session"
TURN_CANCELLED_ERROR = "Turn cancelled: the request took too long to complete"
FAILURE_PREFIX = "I couldn't complete that request:"


@dataclass
class _TurnProgress:
    """What a turn has established so far, readable after cancellation."""

    session_id: str
    message_id: str = field(default_factory=new_message_id)
    # Set once a change is being applied; the turn then runs to completion
    committing: bool = False


class FlowOrchestrator:
    """Runs chat turns and owns their persistence order."""

    def __init__(
        self,
        store: SessionStore,
        completion: CompletionService,
        registry: FunctionRegistry,
        data_source: ProjectDataSource,
        change_applier: ChangeApplier,
        catalog: IntentTemplateCatalog | None = None,
        topics: TopicCatalog | None = None,
        budgeter: TokenBudgeter | None = None,
        lock_manager: SessionLockManager | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Wire the orchestrator and its turn graph.

        Args:
            store: Session store for sessions and message history
            completion: Completion service used by conversation and execution
            registry: Read-only project data functions
            data_source: Project data the registry functions read from
            change_applier: Commits validated orderings
            catalog: Intent templates, defaults to the built-in catalog
            topics: Topic configurations, defaults to the built-in catalog
            budgeter: Token budgeter, built from settings when omitted
            lock_manager: Per-session locks, process-local when omitted
            settings: Settings, defaults to the global settings
        """
        self.settings = settings or default_settings
        self.store = store
        self.registry = registry
        self.data_source = data_source
        self.catalog = catalog or IntentTemplateCatalog()
        self.topics = topics or TopicCatalog()
        self.budgeter = budgeter or build_token_budgeter(
            self.settings.token_estimator, self.settings.tiktoken_encoding
        )
        self.lock_manager = lock_manager or SessionLockManager()
        self._active_turns: dict[str, _TurnProgress] = {}
        self._detached_turns: set[asyncio.Task] = set()

        window_builder = ContextWindowBuilder(
            self.budgeter,
            reserved_tokens=self.settings.response_reserve_tokens,
            summary_max_tokens=self.settings.summary_max_tokens,
        )
        prompts = ConversationPromptBuilder(self.catalog, registry.describe())
        self.workflow = TurnWorkflow(
            build_context_node=BuildContextNode(store, window_builder, self.topics, prompts),
            conversation_node=ConversationNode(completion, self.settings),
            preparation_node=PreparationNode(self.catalog, registry, data_source),
            execution_node=ExecutionNode(completion, self.settings),
            validation_node=ValidationNode(self.catalog, OutputValidator()),
            apply_node=ApplyNode(change_applier, data_source, on_commit=self._begin_commit),
            validation_conditional=ValidationConditional(self.catalog),
        )
        self.workflow.compile()

    async def send_message(self, request: ChatRequest, deadline: float | None = None) -> ChatResponse:
        """Process one chat turn.

        Args:
            request: The caller's message
            deadline: Seconds the whole turn may take, defaults to the
                configured turn timeout

        Returns:
            The assistant's answer, or ``success: false`` with the error
        """
        try:
            self._validate_request(request)
        except ValidationError as e:
            logger.warning(f"Rejected chat request: {e}")
            return ChatResponse(
                session_id=request.session_id or "",
                message_id="",
                message="",
                success=False,
                error=str(e),
            )

        progress = _TurnProgress(session_id=request.session_id or "")
        timeout = deadline if deadline is not None else self.settings.turn_timeout_seconds
        turn = asyncio.ensure_future(self._locked_turn(request, progress))

        try:
            done, _ = await asyncio.wait({turn}, timeout=timeout)
            if not done and progress.committing:
                # Applying and recording the reply belong together
                logger.warning(
                    f"⏰ Turn for project {request.project_id}/{request.topic_id} passed its "
                    f"{timeout}s deadline while committing, finishing it"
                )
                await asyncio.wait({turn})
            elif not done:
                turn.cancel()
                await asyncio.wait({turn})
        except asyncio.CancelledError:
            self._detach(turn, progress)
            raise

        if turn.cancelled():
            logger.warning(
                f"⏰ Turn for project {request.project_id}/{request.topic_id} cancelled after {timeout}s"
            )
            return self._error_response(progress, TURN_CANCELLED_ERROR)

        try:
            return turn.result()
        except OrchestrationError as e:
            # Lock backend failures surface before the turn starts
            logger.error(f"Chat turn could not start: {e}")
            return self._error_response(progress, str(e))
        except Exception as e:
            logger.error(
                f"Unexpected error in chat turn for project {request.project_id}/{request.topic_id}: {e}",
                exc_info=True,
            )
            return self._error_response(progress, str(e))

    @staticmethod
    def _error_response(progress: _TurnProgress, error: str) -> ChatResponse:
        return ChatResponse(
            session_id=progress.session_id,
            message_id=progress.message_id,
            message="",
            success=False,
            error=error,
        )

    def _detach(self, turn: asyncio.Task, progress: _TurnProgress) -> None:
        """Handle a caller that went away: a committing turn still finishes."""
        if not progress.committing:
            turn.cancel()
            return
        self._detached_turns.add(turn)
        turn.add_done_callback(self._detached_turns.discard)

    def _begin_commit(self, state: TurnState) -> None:
        progress = self._active_turns.get(session_lock_key(state.project_id, state.topic_id))
        if progress is not None:
            progress.committing = True

    async def _locked_turn(self, request: ChatRequest, progress: _TurnProgress) -> ChatResponse:
        key = session_lock_key(request.project_id, request.topic_id)
        async with self.lock_manager.acquire(key):
            # One turn per key while the lock is held
            self._active_turns[key] = progress
            try:
                return await self._run_turn(request, progress)
            finally:
                self._active_turns.pop(key, None)

    async def _run_turn(self, request: ChatRequest, progress: _TurnProgress) -> ChatResponse:
        topic = self.topics.get(request.topic_id)

        try:
            session = await self.store.find_or_create_session(
                request.project_id, request.topic_id, request.session_id
            )
        except PersistenceError as e:
            logger.error(f"Failed to resolve session for project {request.project_id}: {e}")
            return self._error_response(progress, SESSION_INIT_ERROR)
        progress.session_id = session.session_id

        model = await self._resolve_model(session, topic, request.model)
        user_message = await self._persist(
            Message(session_id=session.session_id, role=MessageRole.USER, content=request.message)
        )

        actions_enabled = self._actions_enabled(request, topic)
        if actions_enabled:
            try:
                await self._load_snapshot(request)
            except Exception as e:
                logger.error(f"Failed to load caller project data for {request.project_id}: {e}", exc_info=True)
                return await self._fail(progress, model, f"Failed to load project data: {e}")

        state = TurnState(
            project_id=request.project_id,
            topic_id=request.topic_id,
            session_id=session.session_id,
            model=model,
            user_message=request.message,
            user_message_id=user_message.message_id if user_message else None,
            actions_enabled=actions_enabled,
            context_data=request.context_data,
        )

        try:
            final_state = await self.workflow.aexecute(state)
        except OrchestrationError as e:
            logger.warning(f"Turn failed for session {session.session_id}: {e}")
            return await self._fail(progress, model, str(e))
        except Exception as e:
            logger.error(f"Unexpected error in turn for session {session.session_id}: {e}", exc_info=True)
            return await self._fail(progress, model, str(e))

        if final_state.confirmed:
            return await self._complete_action(progress, model, topic, final_state)
        return await self._reply(progress, model, topic, final_state)

    async def _load_snapshot(self, request: ChatRequest) -> None:
        """Hand highlights sent in ``contextData`` to the data source."""
        highlights, order = snapshot_from_context(request.context_data)
        if not highlights:
            return
        await self.data_source.load_snapshot(request.project_id, highlights, order)
        logger.info(f"📥 Loaded {len(highlights)} caller highlights for project {request.project_id}")

    async def _reply(
        self,
        progress: _TurnProgress,
        model: str,
        topic: TopicConfig,
        state: TurnState,
    ) -> ChatResponse:
        reply = state.reply or ""
        await self._persist(
            Message(
                message_id=progress.message_id,
                session_id=progress.session_id,
                role=MessageRole.ASSISTANT,
                content=reply,
                hidden_context=json.dumps({"phase": state.phase.value}),
                model=model,
            )
        )
        return ChatResponse(
            session_id=progress.session_id,
            message_id=progress.message_id,
            message=reply,
            model=model,
            actions_available=self._available_intents(topic) if state.actions_enabled else None,
        )

    async def _complete_action(
        self,
        progress: _TurnProgress,
        model: str,
        topic: TopicConfig,
        state: TurnState,
    ) -> ChatResponse:
        output = state.execution_output
        execution_input = state.execution_input
        if output is None or execution_input is None:
            return await self._fail(progress, model, "execution produced no result")

        template = self.catalog.get(execution_input.intent)
        message = template.render_success(output)
        note = (
            f"Completed {execution_input.intent.value}: {count_item_references(output.new_order)} "
            f"highlights in {output.section_count} sections"
        )
        if template.kind == IntentKind.ANALYSIS:
            note = f"Completed {execution_input.intent.value}: order unchanged"

        await self._persist(
            Message(
                message_id=progress.message_id,
                session_id=progress.session_id,
                role=MessageRole.ASSISTANT,
                content=message,
                hidden_context=json.dumps({"phase": ConversationPhase.LISTENING.value, "note": note}),
                model=model,
            )
        )

        logger.info(f"🎉 {note} (session {progress.session_id})")
        reordered = template.kind != IntentKind.ANALYSIS
        return ChatResponse(
            session_id=progress.session_id,
            message_id=progress.message_id,
            message=message,
            model=model,
            function_results=state.function_results,
            actions_available=self._available_intents(topic),
            actions_performed=[result.function_name for result in state.function_results if result.success],
            action_summary=output.reasoning or None,
            has_actions=reordered,
            new_order=output.new_order if reordered else None,
        )

    async def _fail(self, progress: _TurnProgress, model: str, error: str) -> ChatResponse:
        content = f"{FAILURE_PREFIX} {error}"
        await self._persist(
            Message(
                message_id=progress.message_id,
                session_id=progress.session_id,
                role=MessageRole.ERROR,
                content=content,
                model=model,
            )
        )
        return ChatResponse(
            session_id=progress.session_id,
            message_id=progress.message_id,
            message=content,
            model=model,
            success=False,
            error=error,
        )

    async def _persist(self, message: Message) -> Message | None:
        """Store a message; failures are logged and never fail the turn."""
        try:
            return await self.store.append_message(message.session_id, message)
        except PersistenceError as e:
            logger.error(f"Failed to persist {message.role.value} message in {message.session_id}: {e}")
            return None

    async def _resolve_model(self, session: Session, topic: TopicConfig, requested: str | None) -> str:
        if requested and requested != session.selected_model:
            try:
                await self.store.update_selected_model(session.session_id, requested)
            except PersistenceError as e:
                logger.error(f"Failed to remember model {requested} for {session.session_id}: {e}")
        return requested or session.selected_model or topic.default_model or self.settings.default_model

    def _actions_enabled(self, request: ChatRequest, topic: TopicConfig) -> bool:
        return topic.supports_actions and request.enable_function_calls and request.mode != "chat"

    def _available_intents(self, topic: TopicConfig) -> list[str]:
        if not topic.supports_actions:
            return []
        return [intent.value for intent in topic.intents if intent in self.catalog]

    @staticmethod
    def _validate_request(request: ChatRequest) -> None:
        if request.project_id <= 0:
            raise ValidationError("projectId is required")
        if not request.topic_id.strip():
            raise ValidationError("topicId is required")
        if not request.message.strip():
            raise ValidationError("message is required")

    async def get_history(self, project_id: int, topic_id: str, limit: int | None = None) -> ChatHistory:
        """Return the visible history of a conversation.

        A conversation without a session yields an empty history with a
        fresh session id; nothing is persisted.
        """
        session = await self.store.get_session(project_id, topic_id)
        if session is None:
            return ChatHistory(session_id=new_session_id(project_id, topic_id))

        if limit is None:
            model = session.selected_model or self.topics.get(topic_id).default_model or self.settings.default_model
            limit = self.budgeter.optimal_history_limit(model)

        messages = await self.store.list_messages(session.session_id, limit=limit)
        return ChatHistory(
            session_id=session.session_id,
            messages=[HistoryMessage.from_message(message) for message in messages],
            selected_model=session.selected_model,
        )

    async def clear_history(self, project_id: int, topic_id: str) -> int:
        """Delete a conversation's messages. Idempotent."""
        async with self.lock_manager.acquire(session_lock_key(project_id, topic_id)):
            deleted = await self.store.clear_messages(project_id, topic_id)
        logger.info(f"🧹 Cleared {deleted} messages for project {project_id}/{topic_id}")
        return deleted

    async def select_model(self, project_id: int, topic_id: str, model: str) -> Session:
        """Remember the model preference of a conversation."""
        async with self.lock_manager.acquire(session_lock_key(project_id, topic_id)):
            session = await self.store.find_or_create_session(project_id, topic_id)
            await self.store.update_selected_model(session.session_id, model)
        logger.info(f"Model for project {project_id}/{topic_id} set to {model}")
        return session.model_copy(update={"selected_model": model})

    def list_functions(self, topic_id: str) -> list[FunctionDefinition]:
        """Data functions available to a topic's action flow."""
        if not self.topics.get(topic_id).supports_actions:
            return []
        return self.registry.definitions()

    def available_actions(self, topic_id: str) -> list[str]:
        """Intents a topic can execute."""
        return self._available_intents(self.topics.get(topic_id))

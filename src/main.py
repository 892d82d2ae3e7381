"""Main application entry point for the Highlight Assistant chat service."""

import logging
from collections.abc import AsyncGenerator
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from src.action_plane.functions import ChangeApplier, InMemoryProjectRepository, build_default_registry
from src.core.config import Settings, settings
from src.core.domain.chat import ChatHistory, ChatRequest, ChatResponse, ModelSelection
from src.core.domain.functions import ProjectDataSource
from src.core.exceptions import PersistenceError
from src.core.llm import OpenRouterCompletionClient
from src.core.workflow import FlowOrchestrator
from src.memory import InMemorySessionStore, SessionStore, build_lock_manager

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def build_session_store(config: Settings) -> SessionStore:
    """Session store for the configured backend."""
    if config.session_store == "postgres":
        from src.memory.postgres import PostgresSessionStore

        return PostgresSessionStore(config)
    return InMemorySessionStore()


@asynccontextmanager
async def default_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the orchestrator and its collaborators for the app's lifetime."""
    config: Settings = app.state.settings
    startup_time = datetime.now(timezone.utc)

    logger.info("🚀 ===== HIGHLIGHT ASSISTANT STARTUP =====")
    logger.info(f"⚙️  Environment: {config.environment}")
    logger.info(f"📊 Log level: {config.log_level}")
    logger.info(f"🗄️  Session store: {config.session_store}")
    logger.info(f"🔒 Lock backend: {config.lock_backend}")
    logger.info(f"🤖 Default model: {config.default_model}")

    async with AsyncExitStack() as stack:
        try:
            store = build_session_store(config)
            await store.initialize()
            stack.push_async_callback(store.cleanup)

            lock_manager = build_lock_manager(config)
            await lock_manager.connect()
            stack.push_async_callback(lock_manager.disconnect)

            completion = OpenRouterCompletionClient(config)
            stack.push_async_callback(completion.aclose)

            # Without host hooks, projects arrive with each request's contextData
            repository = InMemoryProjectRepository()
            data_source: ProjectDataSource = app.state.data_source or repository
            change_applier: ChangeApplier = app.state.change_applier or repository
            logger.info(f"🗂️  Project data: {type(data_source).__name__} / {type(change_applier).__name__}")

            app.state.orchestrator = FlowOrchestrator(
                store=store,
                completion=completion,
                registry=build_default_registry(),
                data_source=data_source,
                change_applier=change_applier,
                lock_manager=lock_manager,
                settings=config,
            )
            app.state.store = store
        except Exception as e:
            logger.error(f"❌ Startup failed: {e}")
            logger.exception("🔍 Startup failure details:")
            raise

        startup_duration = (datetime.now(timezone.utc) - startup_time).total_seconds()
        logger.info(f"✨ Startup completed in {startup_duration:.3f}s")

        yield

        logger.info("🛑 Shutting down Highlight Assistant...")
    logger.info("✅ Shutdown completed")


@asynccontextmanager
async def _no_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    yield


def get_orchestrator(request: Request) -> FlowOrchestrator:
    """Orchestrator of the running application."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Chat service is not ready")
    return orchestrator


def create_app(
    orchestrator: FlowOrchestrator | None = None,
    app_settings: Settings | None = None,
    data_source: ProjectDataSource | None = None,
    change_applier: ChangeApplier | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        orchestrator: Ready orchestrator to serve; when omitted one is built
            from settings at startup
        app_settings: Settings, defaults to the global settings
        data_source: Host project data used by the orchestrator built at
            startup; requests then need not carry highlights
        change_applier: Host commit path for validated orderings

    Returns:
        Configured FastAPI application
    """
    config = app_settings or settings
    app = FastAPI(
        title="Highlight Assistant",
        description="Conversational orchestration of highlight ordering for video projects",
        version=VERSION,
        debug=config.debug,
        lifespan=default_lifespan if orchestrator is None else _no_lifespan,
    )
    app.state.settings = config
    app.state.data_source = data_source
    app.state.change_applier = change_applier
    if orchestrator is not None:
        app.state.orchestrator = orchestrator
        app.state.store = orchestrator.store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if config.is_development() else config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/api/chat/messages", response_model=ChatResponse)
    async def send_message(
        chat_request: ChatRequest,
        orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    ) -> ChatResponse:
        """Process one chat turn."""
        logger.info(
            f"💬 Chat message for project {chat_request.project_id}/{chat_request.topic_id} "
            f"({len(chat_request.message)} chars)"
        )
        return await orchestrator.send_message(chat_request)

    @app.get("/api/chat/history", response_model=ChatHistory)
    async def get_history(
        project_id: int = Query(..., alias="projectId", gt=0),
        topic_id: str = Query(..., alias="topicId", min_length=1),
        limit: int | None = Query(None, gt=0),
        orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    ) -> ChatHistory:
        """Return the visible history of a conversation."""
        try:
            return await orchestrator.get_history(project_id, topic_id, limit)
        except PersistenceError as e:
            logger.error(f"Failed to load history for {project_id}/{topic_id}: {e}")
            raise HTTPException(status_code=503, detail="Chat history is unavailable") from e

    @app.delete("/api/chat/history")
    async def clear_history(
        project_id: int = Query(..., alias="projectId", gt=0),
        topic_id: str = Query(..., alias="topicId", min_length=1),
        orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Delete the history of a conversation."""
        try:
            deleted = await orchestrator.clear_history(project_id, topic_id)
        except PersistenceError as e:
            logger.error(f"Failed to clear history for {project_id}/{topic_id}: {e}")
            raise HTTPException(status_code=503, detail="Chat history is unavailable") from e
        return {"success": True, "deleted": deleted}

    @app.put("/api/chat/model")
    async def select_model(
        selection: ModelSelection,
        orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Remember the model preference of a conversation."""
        try:
            session = await orchestrator.select_model(selection.project_id, selection.topic_id, selection.model)
        except PersistenceError as e:
            logger.error(f"Failed to select model for {selection.project_id}/{selection.topic_id}: {e}")
            raise HTTPException(status_code=503, detail="Chat session is unavailable") from e
        return {"success": True, "sessionId": session.session_id, "model": session.selected_model}

    @app.get("/api/chat/functions/{topic_id}")
    async def list_functions(
        topic_id: str,
        orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Data functions and actions available to a topic."""
        return {
            "topicId": topic_id,
            "functions": [definition.model_dump() for definition in orchestrator.list_functions(topic_id)],
            "actions": orchestrator.available_actions(topic_id),
        }

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, Any]:
        """Health check with session store diagnostics."""
        store: SessionStore | None = getattr(request.app.state, "store", None)
        store_healthy = await store.health_check() if store is not None else False
        return {
            "status": "healthy" if store_healthy else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": config.environment,
            "version": VERSION,
            "components": {
                "session_store": "ready" if store_healthy else "unavailable",
                "orchestrator": "ready" if getattr(request.app.state, "orchestrator", None) else "unavailable",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.fastapi_host,
        port=settings.fastapi_port,
        reload=settings.fastapi_reload and settings.is_development(),
        log_level=settings.log_level.lower(),
    )

"""FastAPI application for the repository agent."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import settings
from src.agent import ConversationManager, load_system_prompt
from src.api.routes import router
from src.llm import LiteLLMBackend
from src.repo import create_repo_manager
from src.storage import ConversationStore, create_store
from src.tools import CommandPolicy, CommandValidator, build_registry

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


async def _cleanup_loop(store: ConversationStore) -> None:
    """Periodically drop conversations idle past the configured TTL."""
    ttl = timedelta(hours=settings.conversation_ttl_hours)
    while True:
        await asyncio.sleep(settings.cleanup_interval_seconds)
        try:
            await store.cleanup(ttl)
        except Exception as e:
            logger.warning(f"Conversation cleanup failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    # Startup
    logger.info("Starting Repo Agent API")

    repo = create_repo_manager(settings)
    repo_path = await repo.ensure_ready()
    logger.info(f"Repository ready ({repo.mode}): {repo_path}")

    validator = CommandValidator(CommandPolicy.from_yaml(settings.command_policy_path))
    registry = build_registry(
        repo_path,
        validator,
        github_token=settings.github_token,
        guidelines_file=settings.guidelines_file,
    )
    store = create_store(settings.store_backend, settings.redis_url, settings.redis_namespace)

    app.state.validator = validator
    app.state.registry = registry
    app.state.store = store
    app.state.manager = ConversationManager(
        backend=LiteLLMBackend(),
        registry=registry,
        store=store,
        system_prompt=load_system_prompt(repo_path),
    )

    cleanup_task = asyncio.create_task(_cleanup_loop(store))

    yield

    # Shutdown
    logger.info("Shutting down Repo Agent API")
    cleanup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await cleanup_task
    await store.close()


app = FastAPI(
    title="Repo Agent API",
    description="Tool-using coding agent working inside a git repository",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routes
app.include_router(router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Repo Agent API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "repo_mode": settings.repo_mode,
        "model": settings.model,
    }

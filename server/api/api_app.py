"""FastAPI application entry point for the knowledge API."""

import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from server.api.routers.ChatRouter import chat_router
from server.api.routers.ClassificationRouter import classification_router
from server.api.routers.EventRouter import event_router
from server.api.routers.SyncRouter import sync_router
from server.api.services.ClassificationService import ClassificationService
from server.api.services.ConversationStore import ConversationStore
from server.api.services.RetrievalService import RetrievalService
from services.knowledge_sync.IndexingWorker import IndexingWorker
from services.knowledge_sync.SyncCoordinator import SyncCoordinator
from services.knowledge_sync.worker_runner import prepare_collection
from shared.clients.cache.CacheClientRedis import CacheClientRedis
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.queue.IndexingQueue import IndexingQueue
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.tracker.IndexTracker import IndexTracker
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.exceptions import EntryNotFoundError, RetrievalError

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown."""
    app.state.logging = setup_logging()
    app.state.config = HelperConfig(logger=app.state.logging)
    config = app.state.config

    # Initialise clients
    embed_client = EmbedClientManager(helper_config=config).get_client()
    llm_client = LLMClientManager(helper_config=config).get_client()
    rag_client = RAGClientManager(helper_config=config).get_client()
    cache = CacheClientRedis(helper_config=config)
    queue = IndexingQueue(helper_config=config)
    tracker = IndexTracker(helper_config=config)
    await embed_client.boot()
    await llm_client.boot()
    await rag_client.boot()
    await cache.boot()
    await queue.boot()
    await tracker.boot()

    # Health checks
    await embed_client.do_healthcheck()
    await rag_client.do_healthcheck()

    # Probe the embedding dimension and ensure the matching collection exists
    collection = await prepare_collection(embed_client, rag_client)
    app.state.logging.info("Using collection %r (dimension %d).", collection.name, collection.dimension)

    # Wire up services
    app.state.rag_client = rag_client
    app.state.queue = queue
    app.state.tracker = tracker
    app.state.collection = collection
    app.state.retrieval_service = RetrievalService(
        helper_config=config,
        embed_client=embed_client,
        rag_client=rag_client,
        llm_client=llm_client,
        conversation_store=ConversationStore(helper_config=config, cache=cache),
        collection=collection,
    )
    app.state.classification_service = ClassificationService(
        helper_config=config,
        llm_client=llm_client,
        find_similar=app.state.retrieval_service.do_find_similar,
    )
    app.state.sync_coordinator = SyncCoordinator(helper_config=config, queue=queue, tracker=tracker)

    background: list[asyncio.Task] = [asyncio.create_task(app.state.sync_coordinator.run_dispatcher())]
    stop_event = asyncio.Event()
    if config.get_bool_val("WORKER_EMBEDDED", default=False):
        worker = IndexingWorker(
            helper_config=config,
            queue=queue,
            embed_client=embed_client,
            rag_client=rag_client,
            tracker=tracker,
            collection=collection,
        )
        background.append(asyncio.create_task(worker.run(stop_event)))
        app.state.logging.info("Embedded indexing worker started.")

    app.state.logging.info("Knowledge API ready.")
    yield

    # Shutdown
    handled = await app.state.sync_coordinator.drain()
    if handled:
        app.state.logging.info("Dispatched %d pending event(s) before shutdown.", handled)
    stop_event.set()
    for task in background:
        task.cancel()
    await asyncio.gather(*background, return_exceptions=True)

    await embed_client.close()
    await llm_client.close()
    await rag_client.close()
    await cache.close()
    await queue.close()
    await tracker.close()
    app.state.logging.info("Knowledge API shut down.")


async def handle_retrieval_error(request: Request, exc: RetrievalError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"detail": str(exc), "state": exc.state})


async def handle_entry_not_found(request: Request, exc: EntryNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def create_app(with_lifespan: bool = True) -> FastAPI:
    """Build the FastAPI application.

    Args:
        with_lifespan (bool): Boot all backends on startup. Disabled in tests,
            which populate app.state themselves.

    Returns:
        FastAPI: The configured application.
    """
    application = FastAPI(
        title="Facility Knowledge API",
        description="Knowledge indexing and retrieval for facility management.",
        version=app_version,
        lifespan=lifespan if with_lifespan else None,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(RetrievalError, handle_retrieval_error)
    application.add_exception_handler(EntryNotFoundError, handle_entry_not_found)

    application.include_router(chat_router)
    application.include_router(event_router)
    application.include_router(sync_router)
    application.include_router(classification_router)
    return application


app = create_app()


# Server Start
if __name__ == "__main__":
    # start server
    import uvicorn
    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    logging.info(f"Starting Knowledge API Server v{app_version} from root dir: {os.getenv('ROOT_DIR', '.')} on port {port}...")
    uvicorn.run(app, host=host, port=port)

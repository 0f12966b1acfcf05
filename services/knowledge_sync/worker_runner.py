"""Indexing worker entry point.

Boots the embedding, vector store, queue and tracker clients, probes the
embedding dimension, ensures the matching collection exists and consumes the
indexing queue until SIGINT/SIGTERM.

Usage:
    python -m services.knowledge_sync.worker_runner
"""

import asyncio
import signal

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.queue.IndexingQueue import IndexingQueue
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.rag.models.CollectionConfig import CollectionConfig
from shared.clients.tracker.IndexTracker import IndexTracker
from services.knowledge_sync.IndexingWorker import IndexingWorker
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging


async def prepare_collection(embed_client: EmbedClientInterface, rag_client: RAGClientInterface) -> CollectionConfig:
    """Probe the embedding dimension and make sure the matching collection exists.

    Returns:
        CollectionConfig: The immutable collection config every operation uses.
    """
    dimension, distance = await embed_client.do_fetch_embedding_vector_size()
    collection = rag_client.resolve_collection_config(dimension, distance)
    await rag_client.do_ensure_collection(collection)
    return collection


async def main() -> None:
    """Run the indexing worker until interrupted."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)

    embed_client = EmbedClientManager(helper_config=config).get_client()
    rag_client = RAGClientManager(helper_config=config).get_client()
    queue = IndexingQueue(helper_config=config)
    tracker = IndexTracker(helper_config=config)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # no signal handlers on this platform, rely on KeyboardInterrupt
            pass

    try:
        # every backend is required, the worker cannot do anything useful without one of them
        try:
            await embed_client.boot()
            await embed_client.do_healthcheck()
            await rag_client.boot()
            await rag_client.do_healthcheck()
            await queue.boot()
            await tracker.boot()
        except Exception as e:
            logger.error(f"Error booting worker backends: {e}. Aborting.")
            return

        try:
            collection = await prepare_collection(embed_client, rag_client)
        except Exception as e:
            logger.error(f"Could not prepare vector collection: {e}. Aborting.")
            return

        worker = IndexingWorker(
            helper_config=config,
            queue=queue,
            embed_client=embed_client,
            rag_client=rag_client,
            tracker=tracker,
            collection=collection,
        )
        await worker.run(stop_event)
    finally:
        await embed_client.close()
        await rag_client.close()
        await queue.close()
        await tracker.close()


if __name__ == "__main__":
    asyncio.run(main())

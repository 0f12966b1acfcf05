import logging
import os
import tempfile

import fakeredis
import pytest
from mongomock_motor import AsyncMongoMockClient

# importing the API module configures file logging under ROOT_DIR
os.environ.setdefault("ROOT_DIR", tempfile.mkdtemp(prefix="knowledge-tests-"))

from server.api.services.ConversationStore import ConversationStore
from services.knowledge_sync.IndexingWorker import IndexingWorker
from services.knowledge_sync.SyncCoordinator import SyncCoordinator
from shared.clients.cache.CacheClientRedis import CacheClientRedis
from shared.clients.queue.IndexingQueue import IndexingQueue
from shared.clients.rag.qdrant.RAGClientQdrant import RAGClientQdrant
from shared.clients.tracker.IndexTracker import IndexTracker
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from tests.fakes import FakeEmbedClient, FakeLLMClient, FakeQdrant

TEST_ENV = {
    "APP_API_KEY": "test-key",
    "TIMEZONE": "Asia/Ho_Chi_Minh",
    "EMBED_ENGINE": "ollama",
    "EMBED_OLLAMA_BASE_URL": "http://ollama.test",
    "LLM_ENGINE": "ollama",
    "LLM_OLLAMA_BASE_URL": "http://ollama.test",
    "RAG_QDRANT_BASE_URL": "http://qdrant.test",
    "RAG_QDRANT_COLLECTION": "knowledge",
    "QUEUE_NAME": "test-indexing",
    "QUEUE_ATTEMPTS": "3",
    "QUEUE_BACKOFF_DELAY_MS": "0",
    "QUEUE_POLL_INTERVAL": "0.01",
    "SYNC_BATCH_SIZE": "50",
}


@pytest.fixture(autouse=True)
def env(monkeypatch):
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    return monkeypatch


@pytest.fixture
def helper_config(env) -> HelperConfig:
    return HelperConfig(logger=ColorLogger(logging.getLogger("knowledge.tests")))


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
async def cache(helper_config, redis_client) -> CacheClientRedis:
    client = CacheClientRedis(helper_config, client=redis_client)
    await client.boot()
    return client


@pytest.fixture
async def queue(helper_config, redis_client) -> IndexingQueue:
    client = IndexingQueue(helper_config, client=redis_client)
    await client.boot()
    return client


@pytest.fixture
async def tracker(helper_config) -> IndexTracker:
    client = IndexTracker(helper_config, client=AsyncMongoMockClient())
    await client.boot()
    return client


@pytest.fixture
def fake_qdrant() -> FakeQdrant:
    return FakeQdrant()


@pytest.fixture
async def rag_client(helper_config, fake_qdrant):
    client = RAGClientQdrant(helper_config)
    await client.boot(transport=fake_qdrant.transport())
    yield client
    await client.close()


@pytest.fixture
async def collection(rag_client, embed_client):
    dimension, distance = await embed_client.do_fetch_embedding_vector_size()
    config = rag_client.resolve_collection_config(dimension, distance)
    await rag_client.do_ensure_collection(config)
    return config


@pytest.fixture
def embed_client() -> FakeEmbedClient:
    return FakeEmbedClient()


@pytest.fixture
def llm_client() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def coordinator(helper_config, queue, tracker) -> SyncCoordinator:
    return SyncCoordinator(helper_config, queue=queue, tracker=tracker)


@pytest.fixture
def worker(helper_config, queue, embed_client, rag_client, tracker, collection) -> IndexingWorker:
    return IndexingWorker(
        helper_config,
        queue=queue,
        embed_client=embed_client,
        rag_client=rag_client,
        tracker=tracker,
        collection=collection,
    )


@pytest.fixture
def conversation_store(helper_config, cache) -> ConversationStore:
    return ConversationStore(helper_config, cache=cache)

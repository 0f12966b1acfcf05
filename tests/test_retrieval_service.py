import asyncio

import pytest

from server.api.services.RetrievalService import NO_CONTEXT_MARKER, QueryState, RetrievalService
from shared.clients.rag.models.SearchHit import SearchHit
from shared.clients.rag.models.VectorPoint import PointRecord
from shared.helper.vector_ids import make_vector_id
from shared.models.conversation import MessageRole
from shared.models.entities import SourceType
from shared.models.exceptions import RetrievalError
from shared.models.search import QueryOptions
from tests.factories import make_knowledge, make_report


@pytest.fixture
def retrieval(helper_config, embed_client, rag_client, llm_client, conversation_store, collection) -> RetrievalService:
    return RetrievalService(helper_config, embed_client, rag_client, llm_client, conversation_store, collection)


async def index(coordinator, worker, *entities):
    for entity in entities:
        await coordinator.on_created(entity)
    await worker.run_until_empty()


def prompt_of(llm_client) -> str:
    return llm_client.calls[-1][-1].content


class TestScenarios:
    async def test_deleted_report_is_no_longer_found(self, retrieval, coordinator, worker, tracker, llm_client):
        await index(coordinator, worker, make_report())
        result = await retrieval.do_query("mất điện")
        assert [s.id for s in result.sources] == [make_vector_id("r-1")]
        assert result.sources[0].metadata["source_type"] == "report"

        await coordinator.on_deleted("r-1", SourceType.REPORT)
        await worker.run_until_empty()
        assert not (await tracker.get_by_vector_id(make_vector_id("r-1"))).is_active

        result = await retrieval.do_query("mất điện")
        assert result.sources == []
        assert NO_CONTEXT_MARKER in prompt_of(llm_client)

    async def test_conversation_only_with_user_id(self, retrieval, coordinator, worker, redis_client, conversation_store, llm_client):
        await index(coordinator, worker, make_report())

        await retrieval.do_query("mất điện")
        assert await redis_client.keys("conversation:*") == []

        await retrieval.do_query("mất điện", QueryOptions(user_id="u-1"))
        history = await conversation_store.get("u-1")
        assert [(m.role, m.content) for m in history.messages] == [
            (MessageRole.USER, "mất điện"),
            (MessageRole.ASSISTANT, llm_client.answer),
        ]

        await retrieval.do_query("còn ở tầng 2?", QueryOptions(user_id="u-1"))
        assert len((await conversation_store.get("u-1")).messages) == 4
        roles = [m.role for m in llm_client.calls[-1]]
        assert roles == ["system", "user", "assistant", "user"]
        assert llm_client.calls[-1][1].content == "mất điện"


class TestRanking:
    async def test_low_scores_never_reach_sources(self, retrieval, rag_client, collection, llm_client):
        await rag_client.do_upsert_points(collection, [
            PointRecord(id="strong", vector=[1.0, 0.0, 0.0, 0.0], payload={"source_type": "faq", "source_id": "k-1", "title": "Mất điện", "content": "Gọi 1234"}),
            PointRecord(id="weak", vector=[0.2, 0.98, 0.0, 0.0], payload={"source_type": "faq", "source_id": "k-2", "title": "Mất nước", "content": "Gọi 5678"}),
        ])
        result = await retrieval.do_query("mất điện")
        assert [s.id for s in result.sources] == ["strong"]
        assert "content" not in result.sources[0].metadata
        assert result.sources[0].content == "Gọi 1234"
        assert "Gọi 5678" not in prompt_of(llm_client)

    async def test_per_call_min_score(self, retrieval, rag_client, collection):
        await rag_client.do_upsert_points(collection, [
            PointRecord(id="weak", vector=[0.2, 0.98, 0.0, 0.0], payload={"source_type": "faq", "source_id": "k-2"}),
        ])
        result = await retrieval.do_query("mất điện", QueryOptions(min_score=0.1))
        assert [s.id for s in result.sources] == ["weak"]

    async def test_recent_report_ranks_first(self, retrieval, coordinator, worker):
        from datetime import timedelta

        old = make_report("r-old", created_at=make_report().created_at - timedelta(days=2))
        new = make_report("r-new", description="Mất điện")
        await index(coordinator, worker, old, new)
        result = await retrieval.search_similar_reports("mất điện")
        assert [s.id for s in result.sources] == [make_vector_id("r-new"), make_vector_id("r-old")]


class TestPresets:
    async def test_chat_faq_only_searches_faq(self, retrieval, coordinator, worker):
        await index(coordinator, worker, make_report(description="wifi chập chờn"), make_knowledge())
        result = await retrieval.chat_faq("wifi")
        assert [s.metadata["source_type"] for s in result.sources] == ["faq"]

    async def test_find_similar_defaults_to_reports(self, retrieval, coordinator, worker):
        await index(coordinator, worker, make_report(description="wifi chập chờn"), make_knowledge())
        similar = await retrieval.do_find_similar("wifi")
        assert [s.id for s in similar] == [make_vector_id("r-1")]


class TestContext:
    def test_numbered_context(self):
        hits = [
            SearchHit(id="a", score=0.91, payload={"title": "Mất điện", "source_type": "report", "content": "Phòng A1"}),
            SearchHit(id="b", score=0.5, payload={"source_type": "faq", "content": "Gọi 1234"}),
        ]
        assert RetrievalService.build_context(hits) == (
            "[1] Mất điện (report, score: 0.91)\nPhòng A1\n\n---\n[2] Không có tiêu đề (faq, score: 0.50)\nGọi 1234\n"
        )

    def test_empty_context_marker(self):
        assert RetrievalService.build_context([]) == NO_CONTEXT_MARKER

    async def test_usage_is_returned(self, retrieval):
        result = await retrieval.do_query("xin chào")
        assert (result.usage.prompt_tokens, result.usage.completion_tokens) == (42, 7)


class TestFailures:
    async def test_embedding_failure(self, retrieval, embed_client, llm_client):
        embed_client.failures_left = 1
        with pytest.raises(RetrievalError) as excinfo:
            await retrieval.do_query("mất điện")
        assert excinfo.value.state == QueryState.EMBEDDING.value
        assert llm_client.calls == []

    async def test_search_failure(self, retrieval, fake_qdrant):
        fake_qdrant.collections.clear()
        with pytest.raises(RetrievalError) as excinfo:
            await retrieval.do_query("mất điện")
        assert excinfo.value.state == QueryState.SEARCHING.value

    async def test_generation_failure(self, retrieval, llm_client, redis_client):
        llm_client.error = RuntimeError("quota exceeded")
        with pytest.raises(RetrievalError) as excinfo:
            await retrieval.do_query("mất điện", QueryOptions(user_id="u-1"))
        assert excinfo.value.state == QueryState.GENERATING.value
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert await redis_client.keys("conversation:*") == []

    async def test_generation_timeout(self, retrieval, llm_client, monkeypatch):
        async def slow_chat(messages, temperature=0.3, max_tokens=1024):
            await asyncio.sleep(1)

        monkeypatch.setattr(llm_client, "do_chat", slow_chat)
        with pytest.raises(RetrievalError) as excinfo:
            await retrieval.do_query("mất điện", QueryOptions(call_timeout=0.05))
        assert excinfo.value.state == QueryState.GENERATING.value

    async def test_history_write_failure_keeps_answer(self, retrieval, conversation_store, llm_client, monkeypatch):
        async def broken_append_many(user_id, turns):
            raise ConnectionError("redis down")

        monkeypatch.setattr(conversation_store, "append_many", broken_append_many)
        result = await retrieval.do_query("mất điện", QueryOptions(user_id="u-1"))
        assert result.answer == llm_client.answer

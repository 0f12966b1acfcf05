"""Retrieval service.

Answers natural language questions from the knowledge collection:
embed the query, search the vector store, rank by score and recency, build a
numbered context, add the user's recent conversation turns and ask the
generative model. Any failure aborts the whole query with a RetrievalError;
only a failure to persist the conversation is tolerated.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.models.ChatCompletion import ChatMessage
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.CollectionConfig import CollectionConfig
from shared.clients.rag.models.SearchHit import SearchHit
from shared.helper.HelperConfig import HelperConfig
from shared.models.conversation import ConversationHistory, MessageRole
from shared.models.exceptions import RetrievalError
from shared.models.search import QueryOptions, QueryResult, SourceItem
from server.api.services.ConversationStore import ConversationStore
from server.api.services.ranking import rank_hits

NO_CONTEXT_MARKER = "Không tìm thấy thông tin liên quan trong cơ sở dữ liệu."
CONTEXT_SEPARATOR = "\n---\n"
GENERATION_TEMPERATURE = 0.3
GENERATION_MAX_TOKENS = 1024

SYSTEM_PROMPT = """Bạn là trợ lý AI của hệ thống quản lý cơ sở vật chất, hỗ trợ giải đáp thắc mắc về tài sản, sự cố và quy trình.

NHIỆM VỤ:
- Trả lời câu hỏi dựa trên thông tin trong CONTEXT được cung cấp
- Trả lời ngắn gọn, đúng trọng tâm, bằng tiếng Việt
- Nếu CONTEXT không đủ thông tin, hãy nói rõ và đề xuất liên hệ bộ phận hỗ trợ
- Không bịa đặt thông tin không có trong CONTEXT
- Không trích dẫn nguồn dạng "Theo tài liệu [1]", trả lời trực tiếp"""

# entry point presets, same pipeline with different filters
QUERY_PRESETS: dict[str, QueryOptions] = {
    "chat_faq": QueryOptions(source_types=["faq"], top_k=5, min_score=0.3),
    "search_facilities": QueryOptions(source_types=["facilities", "facility", "asset"], top_k=10, min_score=0.3),
    "search_sops": QueryOptions(source_types=["sop", "policy"], top_k=8, min_score=0.3),
    "search_similar_reports": QueryOptions(source_types=["report"], top_k=10, min_score=0.3),
}


class QueryState(str, Enum):
    EMBEDDING = "EMBEDDING"
    SEARCHING = "SEARCHING"
    RANKING = "RANKING"
    CONTEXT_ASSEMBLY = "CONTEXT_ASSEMBLY"
    GENERATING = "GENERATING"
    PERSISTING_HISTORY = "PERSISTING_HISTORY"
    DONE = "DONE"


class RetrievalService:
    """Query-time orchestrator over embedding, vector search, memory and generation."""

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
        llm_client: LLMClientInterface,
        conversation_store: ConversationStore,
        collection: CollectionConfig,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._embed = embed_client
        self._rag = rag_client
        self._llm = llm_client
        self._conversations = conversation_store
        self._collection = collection

        self.default_top_k = helper_config.get_int_val("RETRIEVAL_TOP_K", default=8, minimum=1)
        self.default_min_score = helper_config.get_float_val("RETRIEVAL_MIN_SCORE", default=0.3)
        self.default_recency_window = helper_config.get_float_val("RETRIEVAL_RECENCY_WINDOW_MINUTES", default=60)
        self.default_call_timeout = helper_config.get_float_val("RETRIEVAL_CALL_TIMEOUT", default=30)

    ##########################################
    ################ HELPER ##################
    ##########################################

    @staticmethod
    async def _bounded(awaitable: Awaitable, timeout: float | None) -> Any:
        if timeout is None or timeout <= 0:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)

    def _resolve(self, options: QueryOptions | None) -> QueryOptions:
        options = options or QueryOptions()
        return QueryOptions(
            source_types=options.source_types,
            top_k=options.top_k or self.default_top_k,
            min_score=options.min_score if options.min_score is not None else self.default_min_score,
            user_id=options.user_id,
            recency_window_minutes=(
                options.recency_window_minutes
                if options.recency_window_minutes is not None
                else self.default_recency_window
            ),
            call_timeout=options.call_timeout if options.call_timeout is not None else self.default_call_timeout,
        )

    @staticmethod
    def build_context(hits: list[SearchHit]) -> str:
        """Numbered context block, or the no-information marker when hits is empty."""
        if not hits:
            return NO_CONTEXT_MARKER
        parts = []
        for index, hit in enumerate(hits, start=1):
            title = hit.payload.get("title") or "Không có tiêu đề"
            source_type = hit.payload.get("source_type", "unknown")
            content = hit.payload.get("content", "")
            parts.append(f"[{index}] {title} ({source_type}, score: {hit.score:.2f})\n{content}\n")
        return CONTEXT_SEPARATOR.join(parts)

    @staticmethod
    def build_messages(query: str, context: str, history: ConversationHistory | None) -> list[ChatMessage]:
        messages = [ChatMessage(role="system", content=SYSTEM_PROMPT)]
        if history:
            messages.extend(ChatMessage(role=m.role.value, content=m.content) for m in history.messages)
        messages.append(ChatMessage(role="user", content=f"CONTEXT:\n{context}\n\nQUESTION:\n{query}\n\nANSWER:"))
        return messages

    @staticmethod
    def _to_source(hit: SearchHit) -> SourceItem:
        metadata = {key: value for key, value in hit.payload.items() if key != "content"}
        return SourceItem(id=hit.id, score=hit.score, content=hit.payload.get("content", ""), metadata=metadata)

    async def _search(self, query: str, opts: QueryOptions) -> list[SearchHit]:
        """Embed, search and rank. Raises RetrievalError tagged with the failing state."""
        state = QueryState.EMBEDDING
        try:
            vector = await self._bounded(self._embed.do_embed_text(query), opts.call_timeout)
            state = QueryState.SEARCHING
            query_filter = self._rag.build_source_type_filter(opts.source_types) if opts.source_types else None
            hits: list[SearchHit] = await self._bounded(
                self._rag.do_search(self._collection, vector, limit=opts.top_k, score_threshold=None, query_filter=query_filter),
                opts.call_timeout,
            )
        except Exception as exc:
            self.logging.error("Query failed during %s: %s", state.value, exc)
            raise RetrievalError(state.value, str(exc) or type(exc).__name__) from exc

        if hits:
            scores = [hit.score for hit in hits]
            self.logging.debug("Search returned %d hits, scores %.3f to %.3f.", len(hits), min(scores), max(scores))
        else:
            self.logging.debug("Search returned no hits.")

        ranked = rank_hits(hits, opts.min_score, opts.recency_window_minutes)
        self.logging.info("%d of %d hits passed min score %.2f.", len(ranked), len(hits), opts.min_score)
        return ranked

    ##########################################
    ################ CORE ####################
    ##########################################

    async def do_query(self, query: str, options: QueryOptions | None = None) -> QueryResult:
        """Run the full retrieval pipeline for one question.

        Args:
            query (str): The user's question.
            options (QueryOptions | None): Per-call overrides; user_id enables memory.

        Returns:
            QueryResult: The answer, the ranked sources that formed the context and token usage.

        Raises:
            RetrievalError: If any step before persisting the conversation fails.
        """
        opts = self._resolve(options)
        self.logging.info("Query received: %r (user=%s, types=%s)", query[:80], opts.user_id, opts.source_types)

        ranked = await self._search(query, opts)

        state = QueryState.CONTEXT_ASSEMBLY
        try:
            context = self.build_context(ranked)
            history = None
            if opts.user_id:
                try:
                    history = await self._bounded(self._conversations.get(opts.user_id), opts.call_timeout)
                except asyncio.TimeoutError:
                    self.logging.warning("Loading conversation of user %s timed out, continuing without memory.", opts.user_id)
            messages = self.build_messages(query, context, history)

            state = QueryState.GENERATING
            completion = await self._bounded(
                self._llm.do_chat(messages, temperature=GENERATION_TEMPERATURE, max_tokens=GENERATION_MAX_TOKENS),
                opts.call_timeout,
            )
        except Exception as exc:
            self.logging.error("Query failed during %s: %s", state.value, exc)
            raise RetrievalError(state.value, str(exc) or type(exc).__name__) from exc

        if opts.user_id:
            try:
                await self._bounded(
                    self._conversations.append_many(
                        opts.user_id,
                        [(MessageRole.USER, query), (MessageRole.ASSISTANT, completion.content)],
                    ),
                    opts.call_timeout,
                )
            except Exception as exc:
                self.logging.warning("Could not persist conversation of user %s: %s", opts.user_id, exc)

        self.logging.debug("Query done with %d source(s).", len(ranked))
        return QueryResult(
            answer=completion.content,
            sources=[self._to_source(hit) for hit in ranked],
            usage=completion.usage,
        )

    async def do_find_similar(self, text: str, top_k: int = 5, source_types: list[str] | None = None) -> list[SourceItem]:
        """Ranked search without generation, e.g. similar past reports for classification.

        Raises:
            RetrievalError: If embedding or search fails.
        """
        opts = self._resolve(QueryOptions(source_types=source_types or ["report"], top_k=top_k))
        ranked = await self._search(text, opts)
        return [self._to_source(hit) for hit in ranked]

    ############ PRESETS ##############
    async def _do_preset(self, preset: str, query: str, user_id: str | None) -> QueryResult:
        options = QUERY_PRESETS[preset].model_copy(update={"user_id": user_id})
        return await self.do_query(query, options)

    async def chat_faq(self, query: str, user_id: str | None = None) -> QueryResult:
        return await self._do_preset("chat_faq", query, user_id)

    async def search_facilities(self, query: str, user_id: str | None = None) -> QueryResult:
        return await self._do_preset("search_facilities", query, user_id)

    async def search_sops(self, query: str, user_id: str | None = None) -> QueryResult:
        return await self._do_preset("search_sops", query, user_id)

    async def search_similar_reports(self, query: str, user_id: str | None = None) -> QueryResult:
        return await self._do_preset("search_similar_reports", query, user_id)

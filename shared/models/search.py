"""Pydantic models for retrieval queries and their results."""

from typing import Any

from pydantic import BaseModel, Field

from shared.clients.llm.models.ChatCompletion import TokenUsage


class QueryOptions(BaseModel):
    """Per-call overrides for a retrieval query. Unset fields fall back to configuration.

    Attributes:
        source_types:   Restrict the search to these source types (None = all).
        top_k:          Number of candidates fetched from the vector store.
        min_score:      Minimum similarity a candidate needs to reach the context.
        user_id:        Enables conversation memory when set.
        recency_window_minutes: Timestamps closer than this are ranked by score.
        call_timeout:   Upper bound in seconds for each external call of the query.
    """

    source_types: list[str] | None = None
    top_k: int | None = Field(default=None, ge=1)
    min_score: float | None = None
    user_id: str | None = None
    recency_window_minutes: float | None = None
    call_timeout: float | None = None


class SourceItem(BaseModel):
    """A ranked search result that made it into the context."""

    id: str
    score: float
    content: str
    metadata: dict[str, Any] = {}


class QueryResult(BaseModel):
    answer: str
    sources: list[SourceItem]
    usage: TokenUsage


class ChatRequest(BaseModel):
    """Incoming natural language question from a chat frontend."""

    query: str = Field(min_length=3, max_length=500)
    user_id: str | None = None
    conversation_id: str | None = None
    source_types: list[str] | None = None

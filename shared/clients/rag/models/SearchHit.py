from typing import Any

from pydantic import BaseModel


class SearchHit(BaseModel):
    """One raw similarity search result as returned by the vector store."""

    id: str
    score: float
    payload: dict[str, Any] = {}

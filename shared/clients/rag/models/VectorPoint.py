"""VectorPoint model, the payload stored alongside each vector in the knowledge collection."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class VectorPoint(BaseModel):
    """Payload stored alongside each vector in the knowledge collection.

    Entity metadata (title, category, tags, location, status, created_at, ...)
    is flattened into the payload next to the fixed fields, which is why extra
    keys are allowed.

    Attributes:
        source_type:  Origin of the indexed text (report, faq, sop, ...).
        source_id:    Id of the origin record.
        content:      Preview of the indexed text, bounded by CONTENT_PREVIEW_CHARS.
        indexed_at:   ISO-8601 timestamp of the indexing run.
    """

    model_config = ConfigDict(extra="allow")

    source_type: str
    source_id: str
    content: str = ""
    indexed_at: str | None = None


class PointRecord(BaseModel):
    """A full vector store entry: id, vector and payload."""

    id: str
    vector: list[float]
    payload: dict[str, Any] = {}

"""Domain entities handed to the sync layer by the facility-management features.

Only the fields the indexing pipeline reads are modelled. Both entities accept
the document database's ``_id`` as well as a plain ``id``.
"""

from datetime import datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class SourceType(str, Enum):
    """Origin of an indexed item. Everything except REPORT is a knowledge-base subtype."""

    REPORT = "report"
    FAQ = "faq"
    SOP = "sop"
    FACILITIES = "facilities"
    POLICY = "policy"


class AssetRef(BaseModel):
    """Populated asset reference of a report."""

    name: str
    code: str | None = None
    zone: str | None = None
    area: str | None = None


class ReportEntity(BaseModel):
    """Incident report raised against an asset."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    type: str
    status: str
    description: str
    priority: str | None = None
    asset: AssetRef | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def get_source_type(self) -> SourceType:
        return SourceType.REPORT


class KnowledgeEntity(BaseModel):
    """Knowledge-base article (FAQ, SOP, facility description, policy)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    title: str
    content: str
    type: SourceType
    category: str | None = None
    tags: list[str] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
        if value == SourceType.REPORT:
            raise ValueError("knowledge entries cannot use the 'report' source type")
        return value

    def get_source_type(self) -> SourceType:
        return self.type


Entity = ReportEntity | KnowledgeEntity

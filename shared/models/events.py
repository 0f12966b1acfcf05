"""Domain lifecycle events handed from the facility-management features to the sync layer."""

from typing import Literal

from pydantic import BaseModel, model_validator

from shared.models.entities import KnowledgeEntity, ReportEntity, SourceType


class LifecycleEvent(BaseModel):
    """Created/updated events carry the full entity, deleted events only its id and type."""

    action: Literal["created", "updated", "deleted"]
    entity: ReportEntity | KnowledgeEntity | None = None
    entity_id: str | None = None
    source_type: SourceType | None = None

    @model_validator(mode="after")
    def _check_shape(self):
        if self.action == "deleted":
            if self.entity is not None:
                self.entity_id = self.entity_id or self.entity.id
                self.source_type = self.source_type or self.entity.get_source_type()
            if not self.entity_id or self.source_type is None:
                raise ValueError("deleted events need entity_id and source_type")
        elif self.entity is None:
            raise ValueError(f"{self.action} events need the entity")
        return self


class BulkSyncRequest(BaseModel):
    entities: list[ReportEntity | KnowledgeEntity]

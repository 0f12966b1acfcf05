"""Pydantic models for indexing jobs, queue bookkeeping and the index ledger."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from shared.models.entities import SourceType


class JobName(str, Enum):
    """Job kinds consumed by the IndexingWorker."""

    INDEX_DOCUMENT = "index-document"
    BATCH_INDEX = "batch-index"
    UPDATE_METADATA = "update-metadata"
    DELETE_DOCUMENT = "delete-document"


##########################################
############## QUEUE OPTIONS #############
##########################################

class BackoffOptions(BaseModel):
    """Retry delay policy. ``delay`` is the base delay in milliseconds."""

    type: Literal["exponential", "fixed"] = "exponential"
    delay: int = Field(default=2000, ge=0)

    def get_delay_ms(self, attempts_made: int) -> int:
        """Delay before the next attempt, given how many attempts already failed (>= 1)."""
        if self.type == "fixed":
            return self.delay
        return self.delay * (2 ** max(attempts_made - 1, 0))


class JobOptions(BaseModel):
    attempts: int = Field(default=3, ge=1)
    backoff: BackoffOptions = BackoffOptions()


class QueueJob(BaseModel):
    """A job as stored in the queue backend."""

    id: str
    name: str
    data: dict[str, Any]
    opts: JobOptions = JobOptions()
    attempts_made: int = 0
    progress: int = 0
    enqueued_at: int
    failed_reason: str | None = None


class QueueCounts(BaseModel):
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0


##########################################
############## JOB PAYLOADS ##############
##########################################

class IndexDocumentJob(BaseModel):
    """Payload of an ``index-document`` job; also one element of a batch job.

    Attributes:
        vector_id:   Deterministic vector-store id derived from source_id.
        source_type: Origin of the text (report or knowledge subtype).
        source_id:   Id of the origin record.
        text:        Full text to embed and store in the ledger.
        metadata:    Open key/value map copied into the vector payload.
        issued_at:   Epoch milliseconds at which the sync layer issued the job.
                     Used to discard jobs overtaken by a newer write or a delete.
    """

    vector_id: str = Field(min_length=1)
    source_type: SourceType
    source_id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    metadata: dict[str, Any] = {}
    issued_at: int = 0


class BatchIndexJob(BaseModel):
    documents: list[IndexDocumentJob] = Field(min_length=1)


class UpdateMetadataJob(BaseModel):
    vector_id: str = Field(min_length=1)
    source_type: SourceType
    source_id: str = Field(min_length=1)
    metadata: dict[str, Any]
    issued_at: int = 0


class DeleteDocumentJob(BaseModel):
    vector_id: str = Field(min_length=1)
    source_type: SourceType | None = None
    source_id: str | None = None
    issued_at: int = 0


##########################################
################ LEDGER ##################
##########################################

class IndexEntry(BaseModel):
    """Ledger record of one indexed item, independent of the vector store's state.

    ``sync_version`` is the issued_at of the last applied index job,
    ``metadata_version`` the issued_at of the newest metadata applied by an index
    or metadata job, and ``tombstone_version`` the issued_at of the delete that
    deactivated the entry.
    """

    vector_id: str
    source_type: SourceType
    source_id: str
    content: str = ""
    metadata: dict[str, Any] = {}
    embedding_dimension: int = 0
    last_synced_at: datetime | None = None
    is_active: bool = True
    sync_version: int = 0
    metadata_version: int = 0
    tombstone_version: int | None = None

    def supersedes(self, issued_at: int) -> bool:
        """Whether this entry already reflects a write issued after ``issued_at``."""
        if self.tombstone_version is not None and issued_at <= self.tombstone_version:
            return True
        return issued_at < self.sync_version

    def metadata_superseded(self, issued_at: int) -> bool:
        """Whether a metadata update issued at ``issued_at`` is older than what the entry holds."""
        return self.supersedes(issued_at) or issued_at <= self.metadata_version


##########################################
################ RESULTS #################
##########################################

class BulkSyncResult(BaseModel):
    queued: int = 0
    failed: int = 0


class ReconcileResult(BaseModel):
    orphans_queued: int = 0
    missing_queued: int = 0
    failed: int = 0

"""Indexing worker.

Consumes jobs from the IndexingQueue and drives the embedding client, the
vector store and the index tracker. It is the only writer of vector store
entries. Any failure is handed back to the queue, which retries with
exponential backoff until the attempt limit is reached.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable

from pydantic import BaseModel, ValidationError

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.queue.IndexingQueue import IndexingQueue
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.CollectionConfig import CollectionConfig
from shared.clients.rag.models.VectorPoint import PointRecord, VectorPoint
from shared.clients.tracker.IndexTracker import IndexTracker
from shared.helper.HelperConfig import HelperConfig
from shared.models.exceptions import BackendRequestError, DimensionMismatchError, UnrecoverableJobError
from shared.models.indexing import (
    BatchIndexJob,
    DeleteDocumentJob,
    IndexDocumentJob,
    IndexEntry,
    JobName,
    QueueJob,
    UpdateMetadataJob,
)

# progress milestones: embedding done, vector store done, tracker done
PROGRESS_EMBEDDED = 30
PROGRESS_STORED = 60
PROGRESS_TRACKED = 90
PROGRESS_DONE = 100


class IndexingWorker:
    """Executes indexing jobs against the configured collection."""

    def __init__(
        self,
        helper_config: HelperConfig,
        queue: IndexingQueue,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
        tracker: IndexTracker,
        collection: CollectionConfig,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._queue = queue
        self._embed_client = embed_client
        self._rag_client = rag_client
        self._tracker = tracker
        self._collection = collection
        self.preview_chars = helper_config.get_int_val("CONTENT_PREVIEW_CHARS", default=500, minimum=0)
        self.concurrency = helper_config.get_int_val("WORKER_CONCURRENCY", default=2, minimum=1)
        self.poll_interval = helper_config.get_float_val("QUEUE_POLL_INTERVAL", default=0.5)

        self._handlers: dict[str, Callable[[QueueJob], Awaitable[None]]] = {
            JobName.INDEX_DOCUMENT.value: self._handle_index_document,
            JobName.BATCH_INDEX.value: self._handle_batch_index,
            JobName.UPDATE_METADATA.value: self._handle_update_metadata,
            JobName.DELETE_DOCUMENT.value: self._handle_delete_document,
        }
        self.processed = 0
        self.failed = 0

    ##########################################
    ################ HELPER ##################
    ##########################################

    @staticmethod
    def _parse(model: type[BaseModel], job: QueueJob):
        try:
            return model.model_validate(job.data)
        except ValidationError as exc:
            raise UnrecoverableJobError(f"Malformed payload for job {job.id} ({job.name}): {exc}") from exc

    def _build_point(self, doc: IndexDocumentJob, vector: list[float]) -> PointRecord:
        payload = {
            **doc.metadata,
            "source_type": doc.source_type.value,
            "source_id": doc.source_id,
            "content": doc.text[:self.preview_chars],
            "indexed_at": datetime.now(timezone.utc).isoformat(),
        }
        return PointRecord(id=doc.vector_id, vector=vector, payload=VectorPoint.model_validate(payload).model_dump())

    def _build_entry(self, doc: IndexDocumentJob, vector: list[float]) -> IndexEntry:
        return IndexEntry(
            vector_id=doc.vector_id,
            source_type=doc.source_type,
            source_id=doc.source_id,
            content=doc.text,
            metadata=doc.metadata,
            embedding_dimension=len(vector),
            last_synced_at=datetime.now(timezone.utc),
            is_active=True,
            sync_version=doc.issued_at,
            metadata_version=doc.issued_at,
        )

    ##########################################
    ############### HANDLERS #################
    ##########################################

    async def _handle_index_document(self, job: QueueJob) -> None:
        doc: IndexDocumentJob = self._parse(IndexDocumentJob, job)
        existing = await self._tracker.get_by_vector_id(doc.vector_id)
        if existing is not None and existing.supersedes(doc.issued_at):
            self.logging.info("Skipping job %s: %s was overtaken by a newer write or a delete.", job.id, doc.vector_id)
            return

        vector = await self._embed_client.do_embed_text(doc.text)
        await self._queue.report_progress(job, PROGRESS_EMBEDDED)

        await self._rag_client.do_upsert_points(self._collection, [self._build_point(doc, vector)])
        await self._queue.report_progress(job, PROGRESS_STORED)

        await self._tracker.upsert_entry(self._build_entry(doc, vector))
        await self._queue.report_progress(job, PROGRESS_TRACKED)

        self.logging.info("Indexed %s %s as %s.", doc.source_type.value, doc.source_id, doc.vector_id, color="green")
        await self._queue.report_progress(job, PROGRESS_DONE)

    async def _handle_batch_index(self, job: QueueJob) -> None:
        batch: BatchIndexJob = self._parse(BatchIndexJob, job)
        existing = await self._tracker.get_many([doc.vector_id for doc in batch.documents])
        docs = [
            doc for doc in batch.documents
            if doc.vector_id not in existing or not existing[doc.vector_id].supersedes(doc.issued_at)
        ]
        if len(docs) < len(batch.documents):
            self.logging.info("Batch job %s: skipping %d overtaken document(s).", job.id, len(batch.documents) - len(docs))
        if not docs:
            await self._queue.report_progress(job, PROGRESS_DONE)
            return

        vectors = await self._embed_client.do_embed_batch([doc.text for doc in docs])
        await self._queue.report_progress(job, PROGRESS_EMBEDDED)

        points = [self._build_point(doc, vector) for doc, vector in zip(docs, vectors)]
        await self._rag_client.do_batch_upsert(self._collection, points)
        await self._queue.report_progress(job, PROGRESS_STORED)

        await self._tracker.bulk_upsert([self._build_entry(doc, vector) for doc, vector in zip(docs, vectors)])
        await self._queue.report_progress(job, PROGRESS_TRACKED)

        self.logging.info("Batch job %s indexed %d document(s).", job.id, len(docs), color="green")
        await self._queue.report_progress(job, PROGRESS_DONE)

    async def _handle_update_metadata(self, job: QueueJob) -> None:
        update: UpdateMetadataJob = self._parse(UpdateMetadataJob, job)
        entry = await self._tracker.get_by_vector_id(update.vector_id)
        if entry is None or not entry.is_active or entry.metadata_superseded(update.issued_at):
            self.logging.info("Skipping metadata update job %s: %s is not active or was overtaken.", job.id, update.vector_id)
            return

        # the ledger decides which update wins, the store follows it
        if not await self._tracker.patch_metadata(update.vector_id, update.metadata, update.issued_at):
            self.logging.info("Skipping metadata update job %s: a newer update of %s was applied.", job.id, update.vector_id)
            return
        await self._queue.report_progress(job, PROGRESS_TRACKED)

        await self._rag_client.do_update_payload(self._collection, [update.vector_id], update.metadata)
        current = await self._tracker.get_by_vector_id(update.vector_id)
        if current is not None and current.metadata_version > update.issued_at:
            # a newer update landed while this one wrote the store
            await self._rag_client.do_update_payload(
                self._collection,
                [update.vector_id],
                {key: current.metadata[key] for key in update.metadata if key in current.metadata},
            )
        self.logging.info("Updated metadata of %s %s.", update.source_type.value, update.source_id)
        await self._queue.report_progress(job, PROGRESS_DONE)

    async def _handle_delete_document(self, job: QueueJob) -> None:
        delete: DeleteDocumentJob = self._parse(DeleteDocumentJob, job)
        entry = await self._tracker.get_by_vector_id(delete.vector_id)
        if entry is not None and entry.supersedes(delete.issued_at):
            self.logging.info("Skipping delete job %s: %s was re-indexed after the delete was issued.", job.id, delete.vector_id)
            return

        await self._rag_client.do_delete_points(self._collection, [delete.vector_id])
        await self._queue.report_progress(job, PROGRESS_STORED)

        await self._tracker.mark_inactive(delete.vector_id, delete.issued_at, delete.source_type, delete.source_id)
        self.logging.info("Removed %s from the index.", delete.vector_id, color="magenta")
        await self._queue.report_progress(job, PROGRESS_DONE)

    ##########################################
    ############## CONSUMPTION ###############
    ##########################################

    async def process(self, job: QueueJob) -> None:
        """Run the handler for a job. Raises on failure.

        Raises:
            UnrecoverableJobError: If the job name is unknown or its payload is malformed.
        """
        handler = self._handlers.get(job.name)
        if handler is None:
            raise UnrecoverableJobError(f"Unknown job name '{job.name}' for job {job.id}.")
        self.logging.debug("Processing job %s (%s), attempt %d.", job.id, job.name, job.attempts_made + 1)
        await handler(job)

    async def run_once(self, block_for: float = 0) -> bool:
        """Reserve and execute one job, then ack or nack it.

        Returns:
            bool: False if no job was available.
        """
        job = await self._queue.reserve(block_for=block_for)
        if job is None:
            return False
        try:
            await self.process(job)
        except asyncio.CancelledError:
            # interrupted jobs go back to the wait list at once
            await asyncio.shield(self._queue.release(job))
            raise
        except (UnrecoverableJobError, DimensionMismatchError) as exc:
            self.failed += 1
            await self._queue.nack(job, exc, retryable=False)
        except BackendRequestError as exc:
            self.failed += 1
            await self._queue.nack(job, exc, retryable=exc.retryable)
        except Exception as exc:
            self.failed += 1
            await self._queue.nack(job, exc)
        else:
            self.processed += 1
            await self._queue.ack(job)
        return True

    async def run_until_empty(self) -> int:
        """Process ready jobs until the wait list is empty. Returns the number of jobs run."""
        count = 0
        while await self.run_once():
            count += 1
        return count

    async def _consume(self, slot: int, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.run_once(block_for=self.poll_interval)
            except Exception as exc:
                # queue backend unreachable, keep the worker alive
                self.logging.error("Worker slot %d could not talk to the queue: %s", slot, exc)
                await asyncio.sleep(max(self.poll_interval, 1.0))

    async def run(self, stop_event: asyncio.Event) -> None:
        """Consume the queue with WORKER_CONCURRENCY parallel slots until stop_event is set."""
        self.logging.info(
            "Indexing worker started: %d slot(s), collection '%s'.", self.concurrency, self._collection.name,
        )
        await self._queue.recover_stalled()
        await asyncio.gather(*[self._consume(slot, stop_event) for slot in range(self.concurrency)])
        self.logging.info("Indexing worker stopped: %d processed, %d failed attempts.", self.processed, self.failed)

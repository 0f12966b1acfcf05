"""Sync coordinator.

Translates domain lifecycle events (created, updated, deleted) into
deterministic vector ids and indexing jobs. This is the only component the
domain features call. It never writes the vector store itself and never lets
an indexing problem fail the caller.
"""

import asyncio

from shared.clients.queue.IndexingQueue import IndexingQueue, now_ms
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.CollectionConfig import CollectionConfig
from shared.clients.tracker.IndexTracker import IndexTracker
from shared.helper.HelperConfig import HelperConfig
from shared.helper.vector_ids import make_vector_id
from shared.models.entities import Entity, SourceType
from shared.models.events import LifecycleEvent
from shared.models.exceptions import EntryNotFoundError
from shared.models.indexing import (
    BatchIndexJob,
    BulkSyncResult,
    DeleteDocumentJob,
    IndexDocumentJob,
    JobName,
    ReconcileResult,
    UpdateMetadataJob,
)
from services.knowledge_sync.TextFormatter import TextFormatter


class SyncCoordinator:
    """Turns entity lifecycle transitions into queue jobs."""

    def __init__(
        self,
        helper_config: HelperConfig,
        queue: IndexingQueue,
        tracker: IndexTracker,
        formatter: TextFormatter | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._queue = queue
        self._tracker = tracker
        self._formatter = formatter or TextFormatter(helper_config.get_timezone_name())
        self.batch_size = helper_config.get_int_val("SYNC_BATCH_SIZE", default=50, minimum=1)

        self._events: asyncio.Queue[LifecycleEvent] = asyncio.Queue()
        self._last_issued_at = 0

    ##########################################
    ################ HELPER ##################
    ##########################################

    def _next_issued_at(self) -> int:
        """Epoch ms, strictly increasing within this process."""
        self._last_issued_at = max(now_ms(), self._last_issued_at + 1)
        return self._last_issued_at

    def build_index_job(self, entity: Entity, issued_at: int | None = None) -> IndexDocumentJob:
        return IndexDocumentJob(
            vector_id=make_vector_id(entity.id),
            source_type=entity.get_source_type(),
            source_id=entity.id,
            text=self._formatter.format_text(entity),
            metadata=self._formatter.extract_metadata(entity),
            issued_at=issued_at if issued_at is not None else self._next_issued_at(),
        )

    async def _enqueue_best_effort(self, name: JobName, data: dict, description: str) -> str | None:
        """Enqueue a job; failures are logged and swallowed."""
        try:
            job_id = await self._queue.enqueue(name.value, data)
        except Exception as exc:
            self.logging.error("Failed to queue %s: %s", description, exc)
            return None
        self.logging.info("Queued %s as job %s (%s).", description, job_id, name.value)
        return job_id

    ##########################################
    ############ LIFECYCLE HOOKS #############
    ##########################################

    async def on_created(self, entity: Entity) -> str | None:
        """Queue a full indexing job for a new entity.

        Returns:
            str | None: The job id, or None if the job could not be queued.
        """
        try:
            job = self.build_index_job(entity)
        except Exception as exc:
            self.logging.error("Could not build indexing job for %s %s: %s", entity.get_source_type().value, entity.id, exc)
            return None
        self.logging.debug("Mapped %s id %s to vector id %s", job.source_type.value, job.source_id, job.vector_id)
        return await self._enqueue_best_effort(
            JobName.INDEX_DOCUMENT, job.model_dump(mode="json"), f"{job.source_type.value} {job.source_id}",
        )

    async def on_updated(self, entity: Entity) -> str | None:
        """Queue a metadata-only update when the indexed text is unchanged, a full re-index otherwise.

        Returns:
            str | None: The job id, or None if the job could not be queued.
        """
        try:
            job = self.build_index_job(entity)
        except Exception as exc:
            self.logging.error("Could not build indexing job for %s %s: %s", entity.get_source_type().value, entity.id, exc)
            return None

        try:
            entry = await self._tracker.get_by_vector_id(job.vector_id)
        except Exception as exc:
            self.logging.warning("Tracker lookup failed for %s, falling back to full re-index: %s", job.vector_id, exc)
            entry = None

        if entry is not None and entry.is_active and entry.metadata.get("content_hash") == job.metadata["content_hash"]:
            update = UpdateMetadataJob(
                vector_id=job.vector_id,
                source_type=job.source_type,
                source_id=job.source_id,
                metadata=job.metadata,
                issued_at=job.issued_at,
            )
            return await self._enqueue_best_effort(
                JobName.UPDATE_METADATA, update.model_dump(mode="json"), f"metadata update of {job.source_type.value} {job.source_id}",
            )

        return await self._enqueue_best_effort(
            JobName.INDEX_DOCUMENT, job.model_dump(mode="json"), f"re-index of {job.source_type.value} {job.source_id}",
        )

    async def on_deleted(self, entity_id: str, source_type: SourceType) -> str | None:
        """Queue removal of an entity from the index.

        Returns:
            str | None: The job id, or None if the job could not be queued.
        """
        job = DeleteDocumentJob(
            vector_id=make_vector_id(entity_id),
            source_type=source_type,
            source_id=entity_id,
            issued_at=self._next_issued_at(),
        )
        return await self._enqueue_best_effort(
            JobName.DELETE_DOCUMENT, job.model_dump(mode="json"), f"delete of {SourceType(source_type).value} {entity_id}",
        )

    ##########################################
    ################# BULK ###################
    ##########################################

    async def bulk_sync(self, entities: list[Entity]) -> BulkSyncResult:
        """Queue one batch job per SYNC_BATCH_SIZE entities without waiting for processing.

        Returns:
            BulkSyncResult: Number of entities queued and not queued.
        """
        result = BulkSyncResult()
        self.logging.info("Bulk sync of %d entities in batches of %d.", len(entities), self.batch_size)
        for start in range(0, len(entities), self.batch_size):
            chunk = entities[start:start + self.batch_size]
            try:
                batch = BatchIndexJob(documents=[self.build_index_job(entity) for entity in chunk])
                job_id = await self._queue.enqueue(JobName.BATCH_INDEX.value, batch.model_dump(mode="json"))
            except Exception as exc:
                result.failed += len(chunk)
                self.logging.error("Failed to queue batch of %d entities starting at %d: %s", len(chunk), start, exc)
                continue
            result.queued += len(chunk)
            self.logging.debug("Queued batch job %s with %d entities.", job_id, len(chunk))
        self.logging.info("Bulk sync queued %d, failed %d.", result.queued, result.failed)
        return result

    async def reindex_document(self, vector_id: str) -> str:
        """Queue a re-index of an active entry from the content stored in the tracker.

        Returns:
            str: The job id.

        Raises:
            EntryNotFoundError: If no active entry with content exists for vector_id.
        """
        entry = await self._tracker.get_by_vector_id(vector_id)
        if entry is None or not entry.is_active or not entry.content:
            raise EntryNotFoundError(f"No active index entry for vector id '{vector_id}'.")
        job = IndexDocumentJob(
            vector_id=entry.vector_id,
            source_type=entry.source_type,
            source_id=entry.source_id,
            text=entry.content,
            metadata=entry.metadata,
            issued_at=self._next_issued_at(),
        )
        job_id = await self._queue.enqueue(JobName.INDEX_DOCUMENT.value, job.model_dump(mode="json"))
        self.logging.info("Queued re-index of %s as job %s.", vector_id, job_id)
        return job_id

    async def reconcile(self, rag_client: RAGClientInterface, collection: CollectionConfig) -> ReconcileResult:
        """Compare the vector store with the tracker and queue jobs to close the gap.

        Points without an active tracker entry are deleted, active entries
        without a point are re-indexed.
        """
        scroll = await rag_client.do_scroll_all(collection, with_payload=["source_type", "source_id"])
        store_points = {str(point["id"]): point.get("payload") or {} for point in scroll.result}
        active_ids = await self._tracker.list_active_vector_ids()

        orphans = sorted(set(store_points) - active_ids)
        missing = sorted(active_ids - set(store_points))
        self.logging.info(
            "Reconcile '%s': %d points, %d active entries, %d orphans, %d missing.",
            collection.name, len(store_points), len(active_ids), len(orphans), len(missing),
        )

        result = ReconcileResult()
        if orphans:
            jobs = []
            for vector_id in orphans:
                payload = store_points[vector_id]
                source_type = payload.get("source_type")
                jobs.append((
                    JobName.DELETE_DOCUMENT.value,
                    DeleteDocumentJob(
                        vector_id=vector_id,
                        source_type=source_type if source_type in {t.value for t in SourceType} else None,
                        source_id=payload.get("source_id"),
                        issued_at=self._next_issued_at(),
                    ).model_dump(mode="json"),
                ))
            try:
                await self._queue.enqueue_bulk(jobs)
                result.orphans_queued = len(jobs)
            except Exception as exc:
                result.failed += len(jobs)
                self.logging.error("Failed to queue %d orphan deletes: %s", len(jobs), exc)

        for vector_id in missing:
            try:
                await self.reindex_document(vector_id)
                result.missing_queued += 1
            except Exception as exc:
                result.failed += 1
                self.logging.error("Failed to queue re-index of missing point %s: %s", vector_id, exc)
        return result

    ##########################################
    ########### ASYNC HAND-OFF ###############
    ##########################################

    def submit(self, event: LifecycleEvent) -> None:
        """Hand an event to the background dispatcher. Never blocks, never raises on queue errors."""
        self._events.put_nowait(event)

    async def dispatch(self, event: LifecycleEvent) -> str | None:
        if event.action == "created":
            return await self.on_created(event.entity)
        if event.action == "updated":
            return await self.on_updated(event.entity)
        return await self.on_deleted(event.entity_id, event.source_type)

    async def _dispatch_safely(self, event: LifecycleEvent) -> None:
        try:
            await self.dispatch(event)
        except Exception as exc:
            self.logging.error("Dispatching %s event failed: %s", event.action, exc)
        finally:
            self._events.task_done()

    async def run_dispatcher(self) -> None:
        """Consume submitted events until cancelled."""
        while True:
            event = await self._events.get()
            await self._dispatch_safely(event)

    async def drain(self) -> int:
        """Dispatch every pending event now. Returns the number of events handled."""
        handled = 0
        while not self._events.empty():
            event = self._events.get_nowait()
            await self._dispatch_safely(event)
            handled += 1
        return handled

    def pending_events(self) -> int:
        return self._events.qsize()

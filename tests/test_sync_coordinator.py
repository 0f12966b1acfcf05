import pytest
from pydantic import ValidationError

from shared.helper.vector_ids import make_vector_id
from shared.models.entities import SourceType
from shared.models.events import LifecycleEvent
from shared.models.exceptions import EntryNotFoundError
from shared.models.indexing import IndexEntry, JobName
from tests.factories import make_knowledge, make_report


class FailingQueue:
    async def enqueue(self, name, data, opts=None):
        raise ConnectionError("redis down")


async def reserve_all(queue):
    jobs = []
    while (job := await queue.reserve()) is not None:
        jobs.append(job)
    return jobs


class TestLifecycleHooks:
    async def test_on_created_enqueues_index_job(self, coordinator, queue):
        job_id = await coordinator.on_created(make_report())
        job = await queue.reserve()
        assert job.id == job_id
        assert job.name == JobName.INDEX_DOCUMENT.value
        assert job.data["vector_id"] == make_vector_id("r-1")
        assert job.data["source_type"] == "report"
        assert job.data["source_id"] == "r-1"
        assert "Mô tả: Mất điện phòng A1.01" in job.data["text"]
        assert job.data["metadata"]["status"] == "PENDING"
        assert job.data["issued_at"] > 0

    async def test_issued_at_strictly_increases(self, coordinator, queue):
        for _ in range(5):
            await coordinator.on_created(make_report())
        issued = [job.data["issued_at"] for job in await reserve_all(queue)]
        assert issued == sorted(set(issued))

    async def test_enqueue_failure_is_swallowed(self, helper_config, tracker):
        from services.knowledge_sync.SyncCoordinator import SyncCoordinator

        coordinator = SyncCoordinator(helper_config, queue=FailingQueue(), tracker=tracker)
        assert await coordinator.on_created(make_report()) is None
        assert await coordinator.on_deleted("r-1", SourceType.REPORT) is None

    async def test_status_change_is_metadata_only(self, coordinator, queue, tracker):
        job = coordinator.build_index_job(make_report())
        await tracker.upsert_entry(IndexEntry(
            vector_id=job.vector_id, source_type=job.source_type, source_id=job.source_id,
            content=job.text, metadata=job.metadata, sync_version=job.issued_at,
        ))

        await coordinator.on_updated(make_report(status="RESOLVED"))
        update = await queue.reserve()
        assert update.name == JobName.UPDATE_METADATA.value
        assert update.data["metadata"]["status"] == "RESOLVED"
        assert update.data["issued_at"] > job.issued_at

    async def test_content_change_is_full_reindex(self, coordinator, queue, tracker):
        job = coordinator.build_index_job(make_report())
        await tracker.upsert_entry(IndexEntry(
            vector_id=job.vector_id, source_type=job.source_type, source_id=job.source_id,
            content=job.text, metadata=job.metadata,
        ))
        await coordinator.on_updated(make_report(description="Mất điện toàn bộ tầng 3"))
        assert (await queue.reserve()).name == JobName.INDEX_DOCUMENT.value

    async def test_update_of_unindexed_entity_is_full_reindex(self, coordinator, queue):
        await coordinator.on_updated(make_report(status="RESOLVED"))
        assert (await queue.reserve()).name == JobName.INDEX_DOCUMENT.value

    async def test_on_deleted(self, coordinator, queue):
        await coordinator.on_deleted("k-1", SourceType.FAQ)
        job = await queue.reserve()
        assert job.name == JobName.DELETE_DOCUMENT.value
        assert job.data["vector_id"] == make_vector_id("k-1")
        assert job.data["source_type"] == "faq"


class TestBulkSync:
    async def test_batches_of_configured_size(self, coordinator, queue):
        entities = [make_report(f"r-{i}") for i in range(120)]
        result = await coordinator.bulk_sync(entities)
        assert (result.queued, result.failed) == (120, 0)
        jobs = await reserve_all(queue)
        assert [job.name for job in jobs] == [JobName.BATCH_INDEX.value] * 3
        assert [len(job.data["documents"]) for job in jobs] == [50, 50, 20]

    async def test_counts_failed_batches(self, coordinator, queue, monkeypatch):
        original = queue.enqueue
        calls = {"n": 0}

        async def flaky_enqueue(name, data, opts=None):
            calls["n"] += 1
            if calls["n"] == 2:
                raise ConnectionError("redis down")
            return await original(name, data, opts)

        monkeypatch.setattr(queue, "enqueue", flaky_enqueue)
        result = await coordinator.bulk_sync([make_knowledge(f"k-{i}") for i in range(110)])
        assert (result.queued, result.failed) == (60, 50)

    async def test_empty(self, coordinator):
        result = await coordinator.bulk_sync([])
        assert (result.queued, result.failed) == (0, 0)


class TestReindexAndReconcile:
    async def test_reindex_unknown_vector_id(self, coordinator):
        with pytest.raises(EntryNotFoundError):
            await coordinator.reindex_document("missing")

    async def test_reindex_from_tracker_content(self, coordinator, queue, tracker):
        await tracker.upsert_entry(IndexEntry(
            vector_id="v-1", source_type=SourceType.SOP, source_id="k-9", content="Quy trình báo cháy", metadata={"title": "PCCC"},
        ))
        await coordinator.reindex_document("v-1")
        job = await queue.reserve()
        assert (job.name, job.data["text"], job.data["source_type"]) == (JobName.INDEX_DOCUMENT.value, "Quy trình báo cháy", "sop")

    async def test_reconcile_queues_orphans_and_missing(self, coordinator, queue, tracker, rag_client, collection):
        from shared.clients.rag.models.VectorPoint import PointRecord

        await rag_client.do_upsert_points(collection, [
            PointRecord(id="kept", vector=[1.0, 0.0, 0.0, 0.0], payload={"source_type": "faq", "source_id": "k-1"}),
            PointRecord(id="orphan", vector=[1.0, 0.0, 0.0, 0.0], payload={"source_type": "report", "source_id": "r-9"}),
        ])
        await tracker.bulk_upsert([
            IndexEntry(vector_id="kept", source_type=SourceType.FAQ, source_id="k-1", content="a"),
            IndexEntry(vector_id="missing", source_type=SourceType.FAQ, source_id="k-2", content="b"),
        ])

        result = await coordinator.reconcile(rag_client, collection)
        assert (result.orphans_queued, result.missing_queued, result.failed) == (1, 1, 0)
        jobs = {job.name: job.data for job in await reserve_all(queue)}
        assert jobs[JobName.DELETE_DOCUMENT.value]["vector_id"] == "orphan"
        assert jobs[JobName.DELETE_DOCUMENT.value]["source_id"] == "r-9"
        assert jobs[JobName.INDEX_DOCUMENT.value]["vector_id"] == "missing"


class TestEventHandOff:
    async def test_submit_does_not_enqueue_until_dispatched(self, coordinator, queue):
        coordinator.submit(LifecycleEvent(action="created", entity=make_report()))
        coordinator.submit(LifecycleEvent(action="deleted", entity_id="r-2", source_type="report"))
        assert coordinator.pending_events() == 2
        assert (await queue.get_counts()).waiting == 0

        assert await coordinator.drain() == 2
        assert coordinator.pending_events() == 0
        names = [job.name for job in await reserve_all(queue)]
        assert names == [JobName.INDEX_DOCUMENT.value, JobName.DELETE_DOCUMENT.value]

    async def test_dispatch_failure_does_not_stop_draining(self, coordinator, queue, monkeypatch):
        async def broken_on_created(entity):
            raise RuntimeError("formatter exploded")

        monkeypatch.setattr(coordinator, "on_created", broken_on_created)
        coordinator.submit(LifecycleEvent(action="created", entity=make_report()))
        coordinator.submit(LifecycleEvent(action="deleted", entity_id="r-2", source_type="report"))
        assert await coordinator.drain() == 2
        assert (await queue.get_counts()).waiting == 1


class TestLifecycleEvent:
    def test_deleted_event_derives_id_from_entity(self):
        event = LifecycleEvent(action="deleted", entity=make_knowledge())
        assert (event.entity_id, event.source_type) == ("k-1", SourceType.FAQ)

    def test_deleted_event_needs_id(self):
        with pytest.raises(ValidationError):
            LifecycleEvent(action="deleted", source_type="report")

    def test_created_event_needs_entity(self):
        with pytest.raises(ValidationError):
            LifecycleEvent(action="created", entity_id="r-1")

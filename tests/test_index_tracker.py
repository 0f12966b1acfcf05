from shared.models.entities import SourceType
from shared.models.indexing import IndexEntry


def entry(vector_id: str = "v-1", **overrides) -> IndexEntry:
    data = {
        "vector_id": vector_id,
        "source_type": SourceType.REPORT,
        "source_id": f"src-{vector_id}",
        "content": "Mô tả: Mất điện",
        "metadata": {"status": "PENDING", "title": "Báo cáo DIEN"},
        "embedding_dimension": 4,
        "sync_version": 100,
    }
    data.update(overrides)
    return IndexEntry(**data)


class TestSupersedes:
    def test_older_index_job_is_superseded(self):
        assert entry(sync_version=100).supersedes(99)
        assert not entry(sync_version=100).supersedes(100)
        assert not entry(sync_version=100).supersedes(101)

    def test_tombstone_supersedes_jobs_issued_before_it(self):
        tombstoned = entry(sync_version=0, tombstone_version=200)
        assert tombstoned.supersedes(150)
        assert tombstoned.supersedes(200)
        assert not tombstoned.supersedes(201)

    def test_metadata_update_needs_newer_version(self):
        current = entry(sync_version=100, metadata_version=200)
        assert current.metadata_superseded(150)
        assert current.metadata_superseded(200)
        assert not current.metadata_superseded(201)
        assert entry(sync_version=100, tombstone_version=300).metadata_superseded(250)


class TestIndexTracker:
    async def test_upsert_is_idempotent(self, tracker):
        await tracker.upsert_entry(entry(content="first"))
        await tracker.upsert_entry(entry(content="second", sync_version=200))
        assert await tracker.get_collection().count_documents({}) == 1
        stored = await tracker.get_by_vector_id("v-1")
        assert stored.content == "second"
        assert stored.sync_version == 200
        assert stored.is_active
        assert stored.last_synced_at is not None

    async def test_bulk_upsert_and_get_many(self, tracker):
        assert await tracker.bulk_upsert([entry(f"v-{i}") for i in range(3)]) == 3
        assert await tracker.bulk_upsert([]) == 0
        found = await tracker.get_many(["v-0", "v-2", "v-9"])
        assert sorted(found) == ["v-0", "v-2"]

    async def test_get_by_source(self, tracker):
        await tracker.upsert_entry(entry())
        assert (await tracker.get_by_source(SourceType.REPORT, "src-v-1")).vector_id == "v-1"
        assert await tracker.get_by_source(SourceType.FAQ, "src-v-1") is None

    async def test_patch_metadata_merges(self, tracker):
        await tracker.upsert_entry(entry(metadata_version=100))
        assert await tracker.patch_metadata("v-1", {"status": "RESOLVED"}, issued_at=200)
        stored = await tracker.get_by_vector_id("v-1")
        assert stored.metadata == {"status": "RESOLVED", "title": "Báo cáo DIEN"}
        assert stored.metadata_version == 200
        assert not await tracker.patch_metadata("unknown", {"status": "RESOLVED"}, issued_at=300)

    async def test_patch_metadata_rejects_older_update(self, tracker):
        await tracker.upsert_entry(entry(metadata_version=100))
        assert await tracker.patch_metadata("v-1", {"status": "RESOLVED"}, issued_at=300)
        assert not await tracker.patch_metadata("v-1", {"status": "IN_PROGRESS"}, issued_at=200)
        assert not await tracker.patch_metadata("v-1", {"status": "IN_PROGRESS"}, issued_at=300)
        stored = await tracker.get_by_vector_id("v-1")
        assert stored.metadata["status"] == "RESOLVED"
        assert stored.metadata_version == 300

    async def test_patch_metadata_skips_inactive_entry(self, tracker):
        await tracker.upsert_entry(entry())
        await tracker.mark_inactive("v-1", issued_at=150)
        assert not await tracker.patch_metadata("v-1", {"status": "RESOLVED"}, issued_at=200)

    async def test_upsert_keeps_newest_metadata_version(self, tracker):
        await tracker.upsert_entry(entry(metadata_version=100))
        await tracker.patch_metadata("v-1", {"status": "RESOLVED"}, issued_at=300)
        await tracker.upsert_entry(entry(sync_version=250, metadata_version=250))
        assert (await tracker.get_by_vector_id("v-1")).metadata_version == 300

    async def test_mark_inactive_keeps_highest_tombstone(self, tracker):
        await tracker.upsert_entry(entry())
        assert await tracker.mark_inactive("v-1", issued_at=300)
        await tracker.mark_inactive("v-1", issued_at=250)
        stored = await tracker.get_by_vector_id("v-1")
        assert not stored.is_active
        assert stored.tombstone_version == 300
        assert stored.content == "Mô tả: Mất điện"

    async def test_mark_inactive_creates_tombstone_for_unindexed_source(self, tracker):
        assert await tracker.mark_inactive("v-2", issued_at=500, source_type=SourceType.REPORT, source_id="r-2")
        stored = await tracker.get_by_vector_id("v-2")
        assert stored.source_id == "r-2"
        assert not stored.is_active
        assert stored.tombstone_version == 500

    async def test_mark_inactive_without_source_ignores_unknown(self, tracker):
        assert not await tracker.mark_inactive("v-3", issued_at=500)
        assert await tracker.get_by_vector_id("v-3") is None

    async def test_reindex_keeps_tombstone(self, tracker):
        await tracker.mark_inactive("v-1", issued_at=300, source_type=SourceType.REPORT, source_id="src-v-1")
        await tracker.upsert_entry(entry(sync_version=400))
        stored = await tracker.get_by_vector_id("v-1")
        assert stored.is_active
        assert stored.tombstone_version == 300

    async def test_active_ids_and_counts(self, tracker):
        await tracker.bulk_upsert([entry(f"v-{i}") for i in range(3)])
        await tracker.mark_inactive("v-1", issued_at=999)
        assert await tracker.list_active_vector_ids() == {"v-0", "v-2"}
        assert await tracker.get_counts() == {"active": 2, "inactive": 1}

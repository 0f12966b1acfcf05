from datetime import datetime, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ASCENDING, UpdateOne

from shared.helper.HelperConfig import HelperConfig
from shared.models.entities import SourceType
from shared.models.indexing import IndexEntry


class IndexTracker:
    """
    Ledger of indexed items on MongoDB, the record of what is searchable.

    Entries are never deleted. A delete deactivates the entry and stores the
    issue time of the delete as tombstone_version.
    """

    def __init__(self, helper_config: HelperConfig, client: AsyncIOMotorClient | None = None):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.mongo_uri = helper_config.get_string_val("MONGO_URI", default="mongodb://localhost:27017")
        self.db_name = helper_config.get_string_val("MONGO_DB_NAME", default="facility_management")
        self.collection_name = helper_config.get_string_val("TRACKER_COLLECTION", default="knowledge_index_entries")

        self._client: AsyncIOMotorClient | None = client
        self._owns_client = client is None
        self._collection: AsyncIOMotorCollection | None = None

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self) -> None:
        """Connect and make sure the ledger indexes exist."""
        if self._client is None:
            self._client = AsyncIOMotorClient(self.mongo_uri)
        self._collection = self._client[self.db_name][self.collection_name]
        await self._collection.create_index([("vector_id", ASCENDING)], unique=True)
        await self._collection.create_index([("source_type", ASCENDING), ("source_id", ASCENDING)])
        await self._collection.create_index([("is_active", ASCENDING), ("source_type", ASCENDING)])
        self.logging.info("Index tracker ready on %s.%s", self.db_name, self.collection_name)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
        self._client = None
        self._collection = None

    def get_collection(self) -> AsyncIOMotorCollection:
        if self._collection is None:
            raise RuntimeError("Index tracker not booted. Call boot() before making requests.")
        return self._collection

    async def is_healthy(self) -> bool:
        try:
            await self._client.admin.command("ping")
            return True
        except Exception as exc:
            self.logging.error("MongoDB health check failed: %s", exc)
            return False

    ##########################################
    ################ HELPER ##################
    ##########################################

    @staticmethod
    def _to_update(entry: IndexEntry) -> dict[str, Any]:
        doc = entry.model_dump(exclude={"tombstone_version", "metadata_version"})
        doc["source_type"] = entry.source_type.value
        doc["last_synced_at"] = entry.last_synced_at or datetime.now(timezone.utc)
        return {"$set": doc, "$max": {"metadata_version": entry.metadata_version}}

    ##########################################
    ############### WRITES ###################
    ##########################################

    async def upsert_entry(self, entry: IndexEntry) -> None:
        """Create or replace the ledger entry of entry.vector_id."""
        await self.get_collection().update_one({"vector_id": entry.vector_id}, self._to_update(entry), upsert=True)

    async def bulk_upsert(self, entries: list[IndexEntry]) -> int:
        """Create or replace many entries in one bulk write.

        Returns:
            int: Number of entries written.
        """
        if not entries:
            return 0
        operations = [UpdateOne({"vector_id": e.vector_id}, self._to_update(e), upsert=True) for e in entries]
        await self.get_collection().bulk_write(operations, ordered=False)
        return len(entries)

    async def patch_metadata(self, vector_id: str, metadata: dict[str, Any], issued_at: int) -> bool:
        """Merge metadata keys into an active entry unless a newer update was already applied.

        The version check and the write happen in one conditional update, so of
        two concurrent updates only the newer one sticks.

        Returns:
            bool: False if no active entry exists or its metadata_version is not older than issued_at.
        """
        update: dict[str, Any] = {f"metadata.{key}": value for key, value in metadata.items()}
        update["last_synced_at"] = datetime.now(timezone.utc)
        update["metadata_version"] = issued_at
        result = await self.get_collection().update_one(
            {
                "vector_id": vector_id,
                "is_active": True,
                "$or": [{"metadata_version": {"$lt": issued_at}}, {"metadata_version": {"$exists": False}}],
            },
            {"$set": update},
        )
        return result.matched_count > 0

    async def mark_inactive(self, vector_id: str, issued_at: int, source_type: SourceType | None = None, source_id: str | None = None) -> bool:
        """Deactivate an entry and record the delete's issue time.

        When source_type and source_id are given, a tombstone is created even if
        the entry was never indexed, so a create job still in flight is discarded.

        Returns:
            bool: True if an entry was updated or a tombstone created.
        """
        update: dict[str, Any] = {
            "$set": {"is_active": False, "last_synced_at": datetime.now(timezone.utc)},
            "$max": {"tombstone_version": issued_at},
        }
        upsert = source_type is not None and source_id is not None
        if upsert:
            update["$setOnInsert"] = {
                "source_type": SourceType(source_type).value,
                "source_id": source_id,
                "content": "",
                "metadata": {},
                "embedding_dimension": 0,
                "sync_version": 0,
                "metadata_version": 0,
            }
        result = await self.get_collection().update_one({"vector_id": vector_id}, update, upsert=upsert)
        return result.matched_count > 0 or result.upserted_id is not None

    ##########################################
    ################ READS ###################
    ##########################################

    async def get_by_vector_id(self, vector_id: str) -> IndexEntry | None:
        doc = await self.get_collection().find_one({"vector_id": vector_id})
        return IndexEntry.model_validate(doc) if doc else None

    async def get_many(self, vector_ids: list[str]) -> dict[str, IndexEntry]:
        """Entries of the given vector ids in one query, keyed by vector id."""
        cursor = self.get_collection().find({"vector_id": {"$in": list(vector_ids)}})
        return {doc["vector_id"]: IndexEntry.model_validate(doc) async for doc in cursor}

    async def get_by_source(self, source_type: SourceType, source_id: str) -> IndexEntry | None:
        doc = await self.get_collection().find_one({"source_type": SourceType(source_type).value, "source_id": source_id})
        return IndexEntry.model_validate(doc) if doc else None

    async def list_active_vector_ids(self) -> set[str]:
        cursor = self.get_collection().find({"is_active": True}, {"vector_id": 1})
        return {doc["vector_id"] async for doc in cursor}

    async def get_counts(self) -> dict[str, int]:
        collection = self.get_collection()
        return {
            "active": await collection.count_documents({"is_active": True}),
            "inactive": await collection.count_documents({"is_active": False}),
        }

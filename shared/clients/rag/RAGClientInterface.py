from abc import abstractmethod
from typing import Any

import httpx
from shared.clients.ClientInterface import ClientInterface
from shared.clients.rag.models.CollectionConfig import CollectionConfig
from shared.clients.rag.models.Scroll import ScrollResult
from shared.clients.rag.models.SearchHit import SearchHit
from shared.clients.rag.models.VectorPoint import PointRecord
from shared.helper.HelperConfig import HelperConfig
from shared.models.exceptions import DimensionMismatchError


class RAGClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.upsert_batch_size = helper_config.get_int_val("RAG_UPSERT_BATCH_SIZE", default=100, minimum=1)

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_vector(self, config: CollectionConfig, vector: list[float], point_id: str | None = None) -> None:
        """Check that a vector matches the collection's dimension.

        Raises:
            DimensionMismatchError: If the vector length differs from config.dimension.
        """
        if len(vector) != config.dimension:
            raise DimensionMismatchError(
                expected=config.dimension,
                actual=len(vector),
                collection=config.name,
                point_id=point_id,
            )

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    @abstractmethod
    def get_base_collection_name(self) -> str:
        """
        Returns the configured collection name before the dimension suffix is added.
        """
        pass

    def resolve_collection_config(self, dimension: int, distance: str = "Cosine") -> CollectionConfig:
        """
        Build the immutable collection config for a given embedding dimension.

        The dimension is encoded in the name so that switching to a provider with
        a different vector size never writes into the previous collection.

        Args:
            dimension (int): The vector size produced by the active embedding provider.
            distance (str): The distance metric.

        Returns:
            CollectionConfig: e.g. name "knowledge_768", dimension 768.
        """
        return CollectionConfig(
            name=f"{self.get_base_collection_name()}_{dimension}",
            dimension=dimension,
            distance=distance,
        )

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_collection(self, collection: str) -> str:
        """
        Returns the endpoint path for create/info requests on a collection.

        Returns:
            str: The endpoint path (e.g. "/collections/knowledge_768")
        """
        pass

    @abstractmethod
    def _get_endpoint_check_collection_existence(self, collection: str) -> str:
        """
        Returns the endpoint path for collection existence check requests.
        """
        pass

    @abstractmethod
    def _get_endpoint_points(self, collection: str) -> str:
        """
        Returns the endpoint path for points upsert requests.
        """
        pass

    @abstractmethod
    def _get_endpoint_search(self, collection: str) -> str:
        """
        Returns the endpoint path for similarity search requests.
        """
        pass

    @abstractmethod
    def _get_endpoint_delete_points(self, collection: str) -> str:
        """
        Returns the endpoint path for deleting points by id.
        """
        pass

    @abstractmethod
    def _get_endpoint_payload(self, collection: str) -> str:
        """
        Returns the endpoint path for payload-only updates.
        """
        pass

    @abstractmethod
    def _get_endpoint_scroll(self, collection: str) -> str:
        """
        Returns the endpoint path for scroll requests.
        """
        pass

    @abstractmethod
    def _get_endpoint_count(self, collection: str) -> str:
        """
        Returns the endpoint path for counting points matching a filter.
        """
        pass

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    @abstractmethod
    def get_create_collection_payload(self, config: CollectionConfig) -> dict:
        """Builds the backend-specific request payload for creating a collection."""
        pass

    @abstractmethod
    def get_upsert_payload(self, points: list[PointRecord]) -> dict:
        """Builds the backend-specific request payload for a points upsert."""
        pass

    @abstractmethod
    def get_search_payload(self, vector: list[float], limit: int, score_threshold: float | None = None, query_filter: dict | None = None) -> dict:
        """
        Builds the backend-specific request payload for a similarity search.

        Args:
            vector (list[float]): The query vector.
            limit (int): Maximum number of hits.
            score_threshold (float | None): Minimum similarity, None for no threshold.
            query_filter (dict | None): Backend filter, see build_source_type_filter().

        Returns:
            dict: The payload for the search request.
        """
        pass

    @abstractmethod
    def get_delete_payload(self, ids: list[str]) -> dict:
        """Builds the backend-specific request payload for deleting points by id."""
        pass

    @abstractmethod
    def get_update_payload_payload(self, ids: list[str], payload: dict[str, Any]) -> dict:
        """Builds the backend-specific request payload for a payload-only update."""
        pass

    @abstractmethod
    def get_scroll_payload(self, filters: list[dict], with_payload: bool | list | dict, with_vector: bool | list, limit: int | None = None, offset: str | int | None = None) -> dict:
        """
        Returns the payload for scroll requests to the RAG backend.

        Args:
            filters (list[dict]): The filter conditions, all of which must match.
            with_payload (bool | list | dict): Whether to include the payload, or which payload fields.
            with_vector (bool | list): Whether to include the vector.
            limit (int | None): The maximum number of results to return.
            offset (str | int | None): Pagination cursor returned by the previous page.
        """
        pass

    @abstractmethod
    def get_count_payload(self, filters: list[dict]) -> dict:
        """Builds the backend-specific request payload for a point count."""
        pass

    @abstractmethod
    def build_source_type_filter(self, source_types: list[str]) -> dict:
        """
        Builds a backend filter restricting results to the given source types.

        Args:
            source_types (list[str]): Allowed values of the payload field "source_type".

        Returns:
            dict: The backend filter.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        """Extracts the hits of a similarity search response."""
        pass

    @abstractmethod
    def extract_collection_dimension(self, raw_response: dict) -> int | None:
        """Extracts the vector size from a collection info response."""
        pass

    @abstractmethod
    def extract_scroll_content(self, raw_response: dict) -> list[dict]:
        """Extracts the points of a raw scroll response."""
        pass

    @abstractmethod
    def extract_next_page_offset(self, raw_response: dict) -> str | int | None:
        """
        Extracts the pagination cursor for the next scroll page from a raw response.
        Return None when the backend signals that no further pages exist.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    ############ COLLECTIONS ##############
    async def do_existence_check(self, config: CollectionConfig) -> bool:
        """Check if a collection exists in the rag backend.

        Returns:
            bool: True if the collection exists, False otherwise.
        """
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_check_collection_existence(config.name),
            raise_on_error=True,
        )
        return bool(resp.json().get("result", {}).get("exists"))

    async def do_create_collection(self, config: CollectionConfig) -> httpx.Response:
        """Create a collection in the rag backend with the config's dimension and distance."""
        return await self.do_request(
            method="PUT",
            json=self.get_create_collection_payload(config),
            endpoint=self._get_endpoint_collection(config.name),
            raise_on_error=True,
        )

    async def do_fetch_collection_info(self, config: CollectionConfig) -> dict[str, Any]:
        """Fetch introspection data of the collection.

        Returns:
            dict: {"name", "dimension", "points_count", "status"}
        """
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_collection(config.name),
            raise_on_error=True,
        )
        raw = resp.json()
        result = raw.get("result", {})
        return {
            "name": config.name,
            "dimension": self.extract_collection_dimension(raw),
            "points_count": result.get("points_count"),
            "status": result.get("status"),
        }

    async def do_ensure_collection(self, config: CollectionConfig) -> bool:
        """Create the collection if it is missing. Idempotent.

        An existing collection with a different dimension is left untouched and
        reported with a warning; its data is never deleted.

        Returns:
            bool: True if the collection was created by this call.
        """
        if await self.do_existence_check(config):
            info = await self.do_fetch_collection_info(config)
            existing = info.get("dimension")
            if existing is not None and existing != config.dimension:
                self.logging.warning(
                    "Collection '%s' exists with dimension %s but the active embedding provider produces %d. "
                    "Existing data is kept; writes to this collection will be rejected.",
                    config.name, existing, config.dimension,
                )
            else:
                self.logging.info("Collection '%s' already exists (dimension %d).", config.name, config.dimension)
            return False
        await self.do_create_collection(config)
        self.logging.info("Created collection '%s' (dimension %d, %s).", config.name, config.dimension, config.distance)
        return True

    ############ POINTS ##############
    async def do_search(self, config: CollectionConfig, vector: list[float], limit: int, score_threshold: float | None = None, query_filter: dict | None = None) -> list[SearchHit]:
        """Similarity search against the collection.

        Args:
            config (CollectionConfig): The collection to search.
            vector (list[float]): The query vector.
            limit (int): Maximum number of hits.
            score_threshold (float | None): Minimum similarity, None to fetch all top hits.
            query_filter (dict | None): Optional backend filter.

        Returns:
            list[SearchHit]: Hits ordered by similarity, best first.

        Raises:
            DimensionMismatchError: If the query vector has the wrong length.
        """
        self.validate_vector(config, vector)
        resp = await self.do_request(
            method="POST",
            json=self.get_search_payload(vector, limit, score_threshold, query_filter),
            endpoint=self._get_endpoint_search(config.name),
            raise_on_error=True,
        )
        return self.extract_search_hits(resp.json())

    async def do_upsert_points(self, config: CollectionConfig, points: list[PointRecord]) -> httpx.Response | None:
        """Upsert points into the collection in a single request.
        Inserts new points or replaces existing ones if a point with the same ID already exists.

        Raises:
            DimensionMismatchError: If any vector has the wrong length. Nothing is written.
        """
        if not points:
            return None
        for point in points:
            self.validate_vector(config, point.vector, point_id=point.id)
        return await self.do_request(
            method="PUT",
            json=self.get_upsert_payload(points),
            params={"wait": "true"},
            endpoint=self._get_endpoint_points(config.name),
            raise_on_error=True,
        )

    async def do_batch_upsert(self, config: CollectionConfig, points: list[PointRecord]) -> int:
        """Upsert any number of points, chunked by RAG_UPSERT_BATCH_SIZE.

        All vectors are validated before the first chunk is sent.

        Returns:
            int: Number of upserted points.
        """
        for point in points:
            self.validate_vector(config, point.vector, point_id=point.id)
        for start in range(0, len(points), self.upsert_batch_size):
            await self.do_upsert_points(config, points[start:start + self.upsert_batch_size])
        return len(points)

    async def do_delete_points(self, config: CollectionConfig, ids: list[str]) -> None:
        """Delete points by id. Unknown ids are ignored by the backend."""
        if not ids:
            return
        await self.do_request(
            method="POST",
            json=self.get_delete_payload(ids),
            params={"wait": "true"},
            endpoint=self._get_endpoint_delete_points(config.name),
            raise_on_error=True,
        )

    async def do_update_payload(self, config: CollectionConfig, ids: list[str], payload: dict[str, Any]) -> None:
        """Merge payload keys into existing points without touching their vectors."""
        if not ids:
            return
        await self.do_request(
            method="POST",
            json=self.get_update_payload_payload(ids, payload),
            params={"wait": "true"},
            endpoint=self._get_endpoint_payload(config.name),
            raise_on_error=True,
        )

    async def do_scroll(self, config: CollectionConfig, filters: list[dict], with_payload: bool | list | dict, with_vector: bool | list, limit: int | None = None, offset: str | int | None = None) -> ScrollResult:
        """Scroll a single page from the collection.

        To retrieve all matching points across an arbitrary number of pages use
        do_scroll_all() instead.
        """
        resp = await self.do_request(
            method="POST",
            json=self.get_scroll_payload(filters, with_payload, with_vector, limit, offset),
            endpoint=self._get_endpoint_scroll(config.name),
            raise_on_error=True,
        )
        raw_response = resp.json()
        return ScrollResult(
            result=self.extract_scroll_content(raw_response),
            next_page_offset=self.extract_next_page_offset(raw_response),
        )

    async def do_count(self, config: CollectionConfig, filters: list[dict] | None = None) -> int:
        """Count the points matching the given filters (all points if None)."""
        resp = await self.do_request(
            method="POST",
            json=self.get_count_payload(filters or []),
            endpoint=self._get_endpoint_count(config.name),
            raise_on_error=True,
        )
        return resp.json().get("result", {}).get("count", 0)

    async def do_scroll_all(self, config: CollectionConfig, filters: list[dict] | None = None, with_payload: bool | list | dict = False, with_vector: bool | list = False, page_size: int = 1000) -> ScrollResult:
        """Scroll through ALL points matching the filter, paginating automatically.

        Runs a loop driven by next_page_offset until the backend signals there
        are no more pages.

        Returns:
            ScrollResult: All matching points collected across all pages.
        """
        all_points: list[dict] = []
        offset: str | int | None = None
        page = 1
        while True:
            page_result = await self.do_scroll(
                config,
                filters=filters or [],
                with_payload=with_payload,
                with_vector=with_vector,
                limit=page_size,
                offset=offset,
            )
            all_points.extend(page_result.result)
            self.logging.debug(
                "Fetched points page %d from %s collection '%s', total points so far: %d",
                page, self.get_engine_name(), config.name, len(all_points),
            )
            offset = page_result.next_page_offset
            if offset is None:
                break
            page += 1
        return ScrollResult(result=all_points)

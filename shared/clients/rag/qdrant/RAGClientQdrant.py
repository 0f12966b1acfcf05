from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.CollectionConfig import CollectionConfig
from shared.clients.rag.models.SearchHit import SearchHit
from shared.clients.rag.models.VectorPoint import PointRecord
from shared.models.config import EnvConfig


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default="knowledge", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    def get_base_collection_name(self) -> str:
        return self._collection_name

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION", val_type="string", default="knowledge")
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_collection(self, collection: str) -> str:
        return f"/collections/{collection}"

    def _get_endpoint_check_collection_existence(self, collection: str) -> str:
        return f"/collections/{collection}/exists"

    def _get_endpoint_points(self, collection: str) -> str:
        return f"/collections/{collection}/points"

    def _get_endpoint_search(self, collection: str) -> str:
        return f"/collections/{collection}/points/search"

    def _get_endpoint_delete_points(self, collection: str) -> str:
        return f"/collections/{collection}/points/delete"

    def _get_endpoint_payload(self, collection: str) -> str:
        return f"/collections/{collection}/points/payload"

    def _get_endpoint_scroll(self, collection: str) -> str:
        return f"/collections/{collection}/points/scroll"

    def _get_endpoint_count(self, collection: str) -> str:
        return f"/collections/{collection}/points/count"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_create_collection_payload(self, config: CollectionConfig) -> dict:
        return {"vectors": {"size": config.dimension, "distance": config.distance}}

    def get_upsert_payload(self, points: list[PointRecord]) -> dict:
        return {"points": [point.model_dump() for point in points]}

    def get_search_payload(self, vector: list[float], limit: int, score_threshold: float | None = None, query_filter: dict | None = None) -> dict:
        payload: dict[str, Any] = {"vector": vector, "limit": limit, "with_payload": True}
        if score_threshold is not None:
            payload["score_threshold"] = score_threshold
        if query_filter:
            payload["filter"] = query_filter
        return payload

    def get_delete_payload(self, ids: list[str]) -> dict:
        return {"points": ids}

    def get_update_payload_payload(self, ids: list[str], payload: dict[str, Any]) -> dict:
        return {"payload": payload, "points": ids}

    def get_scroll_payload(self, filters: list[dict], with_payload: bool | list | dict, with_vector: bool | list, limit: int | None = None, offset: str | int | None = None) -> dict:
        payload: dict[str, Any] = {
            "limit": limit,
            "with_payload": with_payload,
            "with_vector": with_vector,
        }
        if filters:
            payload["filter"] = {"must": filters}
        if offset is not None:
            payload["offset"] = offset
        return payload

    def get_count_payload(self, filters: list[dict]) -> dict:
        payload: dict[str, Any] = {"exact": True}
        if filters:
            payload["filter"] = {"must": filters}
        return payload

    def build_source_type_filter(self, source_types: list[str]) -> dict:
        return {"must": [{"key": "source_type", "match": {"any": list(source_types)}}]}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        return [
            SearchHit(id=str(hit["id"]), score=float(hit.get("score", 0.0)), payload=hit.get("payload") or {})
            for hit in raw_response.get("result", [])
        ]

    def extract_collection_dimension(self, raw_response: dict) -> int | None:
        vectors = raw_response.get("result", {}).get("config", {}).get("params", {}).get("vectors", {})
        size = vectors.get("size") if isinstance(vectors, dict) else None
        return int(size) if size is not None else None

    def extract_scroll_content(self, raw_response: dict) -> list[dict]:
        return raw_response.get("result", {}).get("points", [])

    def extract_next_page_offset(self, raw_response: dict) -> str | int | None:
        return raw_response.get("result", {}).get("next_page_offset")

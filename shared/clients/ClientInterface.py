from abc import ABC, abstractmethod
from typing import Any

import httpx
from httpx._types import QueryParamTypes

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.exceptions import BackendRequestError


class ClientInterface(ABC):
    """Base for every HTTP backend client (embedding, generative, vector store).

    Configuration keys are namespaced as ``{TYPE}_{ENGINE}_{KEY}``, e.g.
    ``EMBED_OLLAMA_BASE_URL``. The request timeout is read from ``{TYPE}_TIMEOUT``.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_float_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0)
        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """Read every required key once so a misconfigured engine fails at construction.

        Raises:
            ValueError: If a required key is missing or has the wrong type.
        """
        for config in self._get_required_config():
            self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_client_type(self) -> str:
        """Lowercase client family, e.g. "embed"."""
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        pass

    def get_engine_name(self) -> str:
        """Lowercase backend name, e.g. "ollama"."""
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        pass

    def describe(self) -> str:
        return f"{self.get_client_type().upper()} client '{self.get_engine_name()}'"

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """
        Returns:
            list[EnvConfig]: The engine specific keys, without the type/engine prefix.
        """
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        return f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Reads an engine specific configuration value.

        Args:
            raw_key (str): Key without prefix, e.g. "BASE_URL"
            default (Any): Value used when the key is unset. None makes the key mandatory.
            val_type (str): One of "string", "number", "bool", "list"
        """
        getters = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
            "bool": self._helper_config.get_bool_val,
            "list": self._helper_config.get_list_val,
        }
        if val_type not in getters:
            raise ValueError(f"Unsupported config value type '{val_type}' for env key '{raw_key}' in {self.describe()}.")
        return getters[val_type](self._get_config_key_name(raw_key), default=default)

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """Headers authenticating against the backend. Empty when no API key is set."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        """Probe the backend once.

        Raises:
            BackendRequestError: If the backend answers with a non-2xx status.
            httpx.TransportError: If the backend is unreachable.
        """
        response = await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck(), raise_on_error=True)
        self.logging.info("%s is healthy.", self.describe())
        return response

    async def is_healthy(self) -> bool:
        try:
            await self.do_healthcheck()
            return True
        except Exception as exc:
            self.logging.error("%s health check failed: %s", self.describe(), exc)
            return False

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Open the HTTP connection pool.

        Args:
            transport: Optional custom transport, e.g. ``httpx.MockTransport`` in tests.
        """
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_request(
        self,
        method: str = "GET",
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send a request to ``{base_url}/{endpoint}`` with the auth headers applied.

        Args:
            method: HTTP method.
            json: JSON body.
            params: URL query parameters.
            endpoint: Path below the base URL, leading slash optional.
            additional_headers: Extra headers overriding the defaults.
            raise_on_error: Raise BackendRequestError on any status >= 300.

        Returns:
            httpx.Response: The raw response.

        Raises:
            RuntimeError: If boot() has not been called.
            BackendRequestError: On a non-2xx status while raise_on_error is True.
        """
        if self._client is None:
            raise RuntimeError(f"{self.describe()} is not booted. Call boot() before making requests.")

        endpoint = endpoint.strip().lstrip("/")
        url = self._get_base_url().rstrip("/") + (f"/{endpoint}" if endpoint else "")
        headers = {**self._get_auth_header(), **(additional_headers or {})}

        response = await self._client.request(method, url, json=json, params=params, headers=headers, timeout=self.timeout)

        if raise_on_error and response.status_code >= 300:
            self.logging.error("Request to %s failed with status %d: %s", url, response.status_code, response.text[:500])
            raise BackendRequestError(url=url, status_code=response.status_code, body=response.text[:500])
        return response

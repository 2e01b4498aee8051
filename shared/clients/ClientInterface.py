import time
from abc import ABC, abstractmethod
from typing import Any

import httpx
from httpx._types import QueryParamTypes, RequestContent

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig

# val_type -> HelperConfig reader
_CONFIG_READERS: dict[str, str] = {
    "string": "get_string_val",
    "number": "get_number_val",
    "bool": "get_bool_val",
    "list": "get_list_val",
}


class ClientInterface(ABC):
    """
    Base class of every HTTP client of the bridge (embedding providers and
    vector backends).

    Configuration keys are namespaced as ``<CLIENT TYPE>_<ENGINE>_<KEY>``, so an
    Ollama embedding client reads EMBED_OLLAMA_BASE_URL. The request timeout is
    read from ``<CLIENT TYPE>_TIMEOUT`` and may be overridden by subclasses
    before boot().
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0)
        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """
        Reads every configuration value the client declares, so that missing or
        malformed values fail at construction instead of on first use.

        Raises:
            ConfigError: If a required value is missing or cannot be parsed.
        """
        for config in self._get_required_config():
            self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    def is_booted(self) -> bool:
        return self._client is not None

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        """Lowercase client family, e.g. "embed" or "vector"."""
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        pass

    def get_engine_name(self) -> str:
        """Lowercase engine name, e.g. "ollama" or "payloadindexedstore"."""
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        pass

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """
        Returns:
            list[EnvConfig]: The engine specific keys (without prefix) read at construction.
        """
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        return f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Reads an engine specific configuration value.

        Args:
            raw_key (str): Key without the client and engine prefix, e.g. "BASE_URL".
            default (Any): Returned when the key is unset. None makes the key required.
            val_type (str): One of "string", "number", "bool", "list".

        Raises:
            ValueError: If val_type is unknown.
            ConfigError: If the value is missing or malformed.
        """
        reader_name = _CONFIG_READERS.get(val_type)
        if reader_name is None:
            raise ValueError(
                f"Unsupported config value type '{val_type}' for key '{raw_key}' "
                f"of {self.get_client_type()} client '{self.get_engine_name()}'."
            )
        reader = getattr(self._helper_config, reader_name)
        return reader(self._get_config_key_name(raw_key), default=default)

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """
        Returns:
            dict: Headers authenticating against the server, empty if no key is configured.
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        pass

    def _build_url(self, endpoint: str) -> str:
        path = endpoint.strip().lstrip("/")
        base_url = self._get_base_url().rstrip("/")
        return f"{base_url}/{path}" if path else base_url

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck())

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """(Re)creates the HTTP client.

        Args:
            transport: Replaces the network transport, tests pass an httpx.MockTransport.
        """
        await self.close()
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def do_request(
        self,
        method: str = "GET",
        content: RequestContent | None = None,
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Sends a request relative to the base URL.

        Args:
            method: HTTP verb.
            content: Raw body. Takes precedence over json.
            json: JSON body.
            params: Query parameters.
            endpoint: Path below the base URL, the leading slash is optional.
            additional_headers: Merged over the auth header.
            raise_on_error: Raise httpx.HTTPStatusError for status codes >= 300.

        Raises:
            RuntimeError: If boot() was not called.
            httpx.HTTPError: On transport failures, or on bad status with raise_on_error.
        """
        if self._client is None:
            raise RuntimeError(f"{self.get_client_type()} client '{self.get_engine_name()}' is not booted.")

        url = self._build_url(endpoint)
        headers = {**self._get_auth_header(), **(additional_headers or {})}
        body: dict = {}
        if content is not None:
            body["content"] = content
        elif json is not None:
            body["json"] = json

        started = time.monotonic()
        response = await self._client.request(method, url, headers=headers, params=params, timeout=self.timeout, **body)
        self.logging.debug("%s %s -> %d (%.0f ms)", method, url, response.status_code, (time.monotonic() - started) * 1000)

        if raise_on_error and response.status_code >= 300:
            self.logging.error("%s %s failed with status %d: %s", method, url, response.status_code, response.text[:500])
            response.raise_for_status()
        return response

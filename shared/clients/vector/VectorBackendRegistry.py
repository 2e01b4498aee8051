import httpx
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.vector.VectorBackendInterface import VectorBackendInterface
from shared.exceptions import BackendUnavailableError, ConfigError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import BackendConfig

# lowercase engine name -> class name suffix
SUPPORTED_ENGINES: dict[str, str] = {
    "passthrough": "Passthrough",
    "filteredstore": "FilteredStore",
    "payloadindexedstore": "PayloadIndexedStore",
}


class VectorBackendRegistry:
    """
    Owns the single active vector backend of the process.

    Lifecycle: construct -> activate() -> serve calls -> optional swap via
    activate() -> teardown(). Callers receive the registry by reference and
    ask it for the active backend on every call.
    """

    def __init__(self, helper_config: HelperConfig, embed_client: EmbedClientInterface, transport: httpx.AsyncBaseTransport | None = None):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.embed_client = embed_client
        self._transport = transport
        self._active: VectorBackendInterface | None = None
        self._active_engine: str | None = None

    def _normalize_engine(self, engine: str) -> str:
        """
        Returns the lowercase engine key.

        Raises:
            ConfigError: If the engine is not supported.
        """
        key = (engine or "").strip().lower()
        if key not in SUPPORTED_ENGINES:
            raise ConfigError(f"Unsupported vector engine specified: '{engine}'. Supported: {', '.join(SUPPORTED_ENGINES)}")
        return key

    def _create_backend(self, key: str) -> VectorBackendInterface:
        className = f"VectorBackend{SUPPORTED_ENGINES[key]}"
        try:
            module = __import__(
                f"shared.clients.vector.{key}.{className}",
                fromlist=[className],
            )
            backend_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ConfigError(f"Vector engine '{key}' could not be loaded. Error: {e}")
        self.logging.debug("Instantiated vector backend for engine: %s", key)
        return backend_class(helper_config=self.helper_config, embed_client=self.embed_client, transport=self._transport)

    def get_engine_from_env(self) -> str:
        return self.helper_config.get_string_val("VECTOR_ENGINE", default="passthrough")

    async def activate(self, engine: str | None = None, config: BackendConfig | None = None) -> VectorBackendInterface:
        """Makes the given engine the active backend.

        Args:
            engine (str | None): Engine name, case-insensitive. Defaults to VECTOR_ENGINE.
            config (BackendConfig | None): Connection parameters. Defaults to VECTOR_<ENGINE>_* variables.

        Returns:
            VectorBackendInterface: The active backend.

        Raises:
            ConfigError: If the engine or its connection parameters are invalid.
            BackendUnavailableError: If the new backend fails its health check.
                The previously active backend stays active.
        """
        key = self._normalize_engine(engine or self.get_engine_from_env())
        if config is None:
            config = BackendConfig.from_helper_config(self.helper_config, key)

        if self._active is not None and self._active_engine == key and self._active.is_initialized_with(config):
            self.logging.debug("Vector backend %s already active with the same config.", key)
            return self._active

        candidate = self._create_backend(key)
        try:
            await candidate.initialize(config)
        except ConfigError:
            await candidate.close()
            raise
        if not await candidate.health_check():
            await candidate.close()
            raise BackendUnavailableError(
                f"Vector backend '{key}' at {config.base_url} failed its health check; keeping {self._active_engine or 'no backend'} active.",
                operation="activate",
            )

        previous, previous_engine = self._active, self._active_engine
        self._active, self._active_engine = candidate, key
        if previous is not None:
            # remote data of the previous backend is kept
            await previous.close()
            self.logging.info("Switched vector backend from %s to %s", previous_engine, key)
        else:
            self.logging.info("Activated vector backend %s", key)
        return candidate

    def get_active(self) -> VectorBackendInterface:
        """
        Raises:
            BackendUnavailableError: If no backend has been activated.
        """
        if self._active is None:
            raise BackendUnavailableError("No vector backend is active.")
        return self._active

    def get_active_engine(self) -> str | None:
        return self._active_engine

    async def teardown(self) -> None:
        if self._active is not None:
            await self._active.close()
        self._active = None
        self._active_engine = None

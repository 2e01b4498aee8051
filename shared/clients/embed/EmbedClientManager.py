from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.exceptions import ConfigError
from shared.helper.HelperConfig import HelperConfig

# EMBED_ENGINE value -> class name suffix, the module lives in shared.clients.embed.<key>
SUPPORTED_EMBED_ENGINES: dict[str, str] = {
    "ollama": "Ollama",
    "openai": "Openai",
}


class EmbedClientManager:
    """
    Builds the embedding client selected by EMBED_ENGINE.

    The client is constructed, not booted. Callers own boot() and close().
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Returns:
            str: The normalized engine key, e.g. "ollama".

        Raises:
            ConfigError: If the engine is not one of SUPPORTED_EMBED_ENGINES.
        """
        engine = self.helper_config.get_string_val("EMBED_ENGINE", default="ollama").lower()
        if engine not in SUPPORTED_EMBED_ENGINES:
            raise ConfigError(
                f"Unsupported embedding engine '{engine}'. Supported: {', '.join(sorted(SUPPORTED_EMBED_ENGINES))}.",
                operation="config",
            )
        return engine

    def _initialize_client(self) -> EmbedClientInterface:
        engine = self._get_engine_from_env()
        className = f"EmbedClient{SUPPORTED_EMBED_ENGINES[engine]}"
        module = __import__(f"shared.clients.embed.{engine}.{className}", fromlist=[className])
        client = getattr(module, className)(helper_config=self.helper_config)
        self.logging.debug("Created embedding client %s (source %s)", className, client.get_embedding_source())
        return client

    def get_client(self) -> EmbedClientInterface:
        return self.client

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.exceptions import EmbeddingError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientOllama(EmbedClientInterface):
    """Embeddings from a local Ollama server via POST /api/embed (batch input)."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._keep_alive = self.get_config_val("KEEP_ALIVE", default="", val_type="string")
        self._truncate = self.get_config_val("TRUNCATE", default=True, val_type="bool")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Ollama"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="KEEP_ALIVE", val_type="string", default=""),
            EnvConfig(env_key="TRUNCATE", val_type="bool", default=True),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        # plain ollama has no auth, reverse proxies in front of it may
        return {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        # answers "Ollama is running"
        return ""

    def get_endpoint_embedding(self) -> str:
        return "/api/embed"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        payload = {"model": self.embed_model, "input": texts, "truncate": self._truncate}
        if self._keep_alive:
            payload["keep_alive"] = self._keep_alive
        return payload

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        embeddings = response_data.get("embeddings")
        if not isinstance(embeddings, list) or not embeddings or not embeddings[0]:
            raise EmbeddingError(
                f"Ollama returned no embeddings for model '{self.embed_model}'. "
                f"Response keys: {list(response_data.keys())}",
                operation="embed",
            )
        return embeddings

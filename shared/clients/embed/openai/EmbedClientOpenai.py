from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.exceptions import EmbeddingError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientOpenai(EmbedClientInterface):
    """Embedding client for OpenAI-compatible /v1/embeddings servers."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://api.openai.com", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Openai"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://api.openai.com"),
            EnvConfig(env_key="API_KEY", val_type="string", default="")
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/v1/models"

    def get_endpoint_embedding(self) -> str:
        return "/v1/embeddings"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        return {"model": self.embed_model, "input": texts}

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract vectors from {"data": [{"embedding": [...], "index": 0}, ...]}.

        Entries are sorted by their index because the API does not guarantee order.
        """
        data = response_data.get("data")
        if not isinstance(data, list) or not data:
            raise EmbeddingError(
                "OpenAI-compatible response does not contain embedding data. "
                f"Response keys: {list(response_data.keys())}",
                operation="embed",
            )
        ordered = sorted(data, key=lambda entry: entry.get("index", 0))
        embeddings = [entry.get("embedding") for entry in ordered]
        if any(not vector for vector in embeddings):
            raise EmbeddingError("OpenAI-compatible response contains an empty embedding.", operation="embed")
        return embeddings

from abc import abstractmethod

import httpx
from shared.clients.ClientInterface import ClientInterface
from shared.exceptions import EmbeddingError

from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model config
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default="")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        return "embed"

    def get_embedding_source(self) -> str:
        """Identifier stored as embeddingSource with every chunk, e.g. "ollama/nomic-embed-text"."""
        if self.embed_model:
            return f"{self.get_engine_name()}/{self.embed_model}"
        return self.get_engine_name()

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Provider request body embedding all texts in one call."""
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """
        Returns the vectors of a provider response in input order. Ollama
        answers in order, OpenAI-compatible servers tag each vector with its
        input index.

        Raises:
            EmbeddingError: If the response holds no usable vectors.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Embeds one text or a batch of texts with a single provider request.

        Args:
            texts (list[str] | str): Texts to embed. An empty list returns [] without a request.

        Returns:
            list[list[float]]: One vector per input text, in input order.

        Raises:
            EmbeddingError: If the request fails, the number of vectors
                differs from the number of texts, or the vectors differ in
                dimension.
        """
        texts = [texts] if isinstance(texts, str) else texts
        if not texts:
            return []
        body = self.get_embed_payload(texts)
        try:
            response = await self.do_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body)
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Embedding request to {self.get_engine_name()} failed: {e}", operation="embed")
        if response.status_code != 200:
            self.logging.error(
                "Embedding request failed: status %d, body: %s",
                response.status_code,
                response.text[:200],
            )
            raise EmbeddingError(
                "Embedding request failed with status %d." % response.status_code,
                operation="embed",
                status_code=response.status_code,
            )
        try:
            response_data = response.json()
        except ValueError as e:
            raise EmbeddingError(f"Embedding response of {self.get_engine_name()} is not JSON: {e}", operation="embed")
        vectors = self.extract_embeddings_from_response(response_data)
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, got {len(vectors)}.",
                operation="embed",
            )
        dimensions = {len(vector) for vector in vectors}
        if len(dimensions) > 1:
            raise EmbeddingError(f"Embeddings of one batch differ in dimension: {sorted(dimensions)}.", operation="embed")
        return vectors

    async def embed_text(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmbeddingError: See do_embed().
        """
        vectors = await self.do_embed([text])
        return vectors[0]

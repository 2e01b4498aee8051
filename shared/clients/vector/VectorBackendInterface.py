from abc import abstractmethod

import httpx
from shared.clients.ClientInterface import ClientInterface
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.exceptions import (
    BackendUnavailableError,
    EmbeddingError,
    InsertError,
    QueryError,
    VectorMemoryError,
)
from shared.helper.HelperConfig import HelperConfig
from shared.helper.collection_id import encode_collection_id
from shared.models.config import BackendConfig, EnvConfig
from shared.models.memory import Chunk, RetrievalResult, TenantKey, TenantMetadata


class VectorBackendInterface(ClientInterface):
    """
    Capability set shared by every vector backend.

    Connection parameters are not read from the environment at construction
    time; they arrive through initialize() so the registry can swap backends
    at runtime. Texts are embedded here, backends only ever send vectors.
    """

    def __init__(self, helper_config: HelperConfig, embed_client: EmbedClientInterface, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(helper_config=helper_config)
        self.embed_client = embed_client
        self._transport = transport
        self._config: BackendConfig | None = None
        self._reset_state()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def _requires_collection(self) -> bool:
        """
        Returns True for backends that route every tenant through one shared collection.
        """
        return False

    def is_initialized_with(self, config: BackendConfig) -> bool:
        return self.is_booted() and self._config == config

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "vector"
        """
        return "vector"

    def get_config(self) -> BackendConfig | None:
        return self._config

    def get_tenant_metadata(self, tenant: TenantKey) -> TenantMetadata:
        """
        Returns the tenant tag attached to every chunk written for this tenant.
        """
        return TenantMetadata(
            type=tenant.type.value,
            source_id=tenant.source_id,
            embedding_source=self.embed_client.get_embedding_source(),
        )

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        # connection parameters come from initialize()
        return []

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._config and self._config.api_key:
            return {"Authorization": f"Bearer {self._config.api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        if self._config is None:
            raise BackendUnavailableError(f"Backend '{self.get_engine_name()}' is not initialized.")
        return self._config.base_url

    def _get_collection(self) -> str:
        """
        Returns the shared physical collection name.

        Raises:
            BackendUnavailableError: If the backend is not initialized.
        """
        if self._config is None:
            raise BackendUnavailableError(f"Backend '{self.get_engine_name()}' is not initialized.")
        return self._config.collection

    ##########################################
    ################ HOOKS ###################
    ##########################################

    def _reset_state(self) -> None:
        """
        Drops in-memory state tied to the previous connection. Remote data is untouched.
        """
        pass

    def _is_healthy_response(self, response: httpx.Response) -> bool:
        """
        Interprets the healthcheck response. Default: {"healthy": true}.
        """
        if response.status_code != 200:
            return False
        return response.json().get("healthy") is True

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def initialize(self, config: BackendConfig) -> None:
        """Validates the connection parameters and opens the HTTP client.

        Calling it again with an identical config is a no-op.

        Args:
            config (BackendConfig): Connection parameters.

        Raises:
            ConfigError: If the connection parameters are malformed.
        """
        if self.is_initialized_with(config):
            self.logging.debug("Backend %s already initialized, skipping.", self.get_engine_name())
            return
        config.validate_connection(require_collection=self._requires_collection())
        self._config = config
        self.timeout = config.timeout
        self._reset_state()
        await self.boot(transport=self._transport)
        self.logging.info("Initialized vector backend %s at %s", self.get_engine_name(), config.base_url)

    async def health_check(self) -> bool:
        """Checks the backend. Never raises.

        Returns:
            bool: True if the backend answered its healthcheck positively.
        """
        if not self.is_booted():
            return False
        try:
            response = await self.do_healthcheck()
            healthy = self._is_healthy_response(response)
        except (httpx.HTTPError, ValueError, VectorMemoryError) as e:
            self.logging.warning("Health check of %s failed: %s", self.get_engine_name(), e)
            return False
        if not healthy:
            self.logging.warning("Health check of %s reported unhealthy (status %d).", self.get_engine_name(), response.status_code)
        return healthy

    async def close(self) -> None:
        await super().close()
        self._reset_state()

    async def _send(self, operation: str, error_cls: type[VectorMemoryError], tenant: TenantKey | None, method: str, endpoint: str, json: dict | None = None, params: dict | None = None) -> dict:
        """Sends one backend request and converts every failure into error_cls.

        Returns:
            dict: The parsed JSON body, {} for empty bodies.
        """
        tenant_name = str(tenant) if tenant else None
        if not self.is_booted():
            raise BackendUnavailableError(
                f"Backend '{self.get_engine_name()}' is not initialized.",
                tenant=tenant_name,
                operation=operation,
            )
        try:
            response = await self.do_request(method=method, endpoint=endpoint, json=json, params=params, raise_on_error=True)
            return response.json() if response.content else {}
        except (httpx.HTTPError, ValueError) as e:
            raise error_cls(f"{operation} request to {endpoint} failed: {e}", tenant=tenant_name, operation=operation) from e

    async def _embed_chunks(self, tenant: TenantKey, chunks: list[Chunk]) -> list[list[float]]:
        """Embeds chunk texts for insertion.

        Raises:
            InsertError: If the provider fails or returns a different number of vectors.
        """
        try:
            vectors = await self.embed_client.do_embed([chunk.text for chunk in chunks])
        except EmbeddingError as e:
            raise InsertError(f"Embedding chunks failed: {e}", tenant=str(tenant), operation="insert") from e
        if len(vectors) != len(chunks):
            raise InsertError(
                f"Embedding count mismatch: {len(chunks)} chunks, {len(vectors)} vectors.",
                tenant=str(tenant),
                operation="insert",
            )
        return vectors

    async def _resolve_query_vector(self, query_vector: list[float] | None, query_text: str | None) -> list[float]:
        if query_vector is not None:
            return query_vector
        if not query_text:
            raise QueryError("Either query_vector or query_text is required.", operation="query")
        return await self.embed_client.embed_text(query_text)

    def _parse_hits(self, tenant: TenantKey, raw_hits: list, parse=None) -> list[RetrievalResult]:
        """Converts the raw hits of one tenant into results.

        Raises:
            QueryError: If any hit is malformed (no hash, metadata out of range, ...).
        """
        parse = parse or RetrievalResult.from_wire
        collection_id = encode_collection_id(tenant)
        try:
            return [parse(hit, collection_id) for hit in raw_hits]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise QueryError(f"Malformed hit from {collection_id}: {e}", tenant=str(tenant), operation="query") from e

    ##########################################
    ############## OPERATIONS ################
    ##########################################

    @abstractmethod
    async def get_saved_hashes(self, tenant: TenantKey) -> set[int]:
        """
        Returns every hash stored for the tenant.

        Raises:
            QueryError: If the backend call fails.
        """
        pass

    @abstractmethod
    async def insert_items(self, tenant: TenantKey, chunks: list[Chunk]) -> None:
        """
        Embeds and stores the chunks in one backend request.

        Inserting a chunk that is already stored replaces it.

        Raises:
            InsertError: If embedding or the backend call fails.
            DimensionMismatchError: If the vector size differs from the collection's.
        """
        pass

    @abstractmethod
    async def delete_items(self, tenant: TenantKey, hashes: list[int]) -> None:
        """
        Deletes every chunk of the given hashes. Unknown hashes are ignored.

        Raises:
            DeleteError: If the backend call fails.
        """
        pass

    @abstractmethod
    async def _query_vector(self, tenant: TenantKey, vector: list[float], top_k: int) -> list[RetrievalResult]:
        pass

    async def query(self, tenant: TenantKey, query_vector: list[float] | None = None, query_text: str | None = None, top_k: int = 10) -> list[RetrievalResult]:
        """Similarity query for one tenant.

        Args:
            tenant (TenantKey): The tenant to search.
            query_vector (list[float] | None): Precomputed vector, takes precedence.
            query_text (str | None): Text to embed when no vector is given.
            top_k (int): Maximum number of results.

        Returns:
            list[RetrievalResult]: Hits ordered by descending similarity.

        Raises:
            QueryError: If the backend call fails.
            EmbeddingError: If the query text cannot be embedded.
        """
        vector = await self._resolve_query_vector(query_vector, query_text)
        results = await self._query_vector(tenant, vector, top_k)
        return sorted(results, key=lambda r: r.score, reverse=True)

    async def query_many(self, tenants: list[TenantKey], query_text: str, top_k: int, score_threshold: float = 0.0) -> dict[str, list[RetrievalResult]]:
        """Queries several tenants with one embedding.

        A failing tenant gets an empty list; the failure is logged.

        Returns:
            dict[str, list[RetrievalResult]]: Hits per collection id, below-threshold hits dropped.

        Raises:
            EmbeddingError: If the query text cannot be embedded.
        """
        vector = await self.embed_client.embed_text(query_text)
        results: dict[str, list[RetrievalResult]] = {}
        for tenant in tenants:
            collection_id = encode_collection_id(tenant)
            try:
                hits = await self.query(tenant, query_vector=vector, top_k=top_k)
            except VectorMemoryError as e:
                self.logging.error("Query of %s failed: %s", collection_id, e.describe())
                hits = []
            results[collection_id] = [hit for hit in hits if hit.score >= score_threshold]
        return results

    @abstractmethod
    async def purge(self, tenant: TenantKey) -> None:
        """
        Deletes every chunk of the tenant.

        Raises:
            DeleteError: If the backend call fails.
        """
        pass

    @abstractmethod
    async def _purge_all(self) -> None:
        pass

    async def purge_all(self, confirm: bool = False) -> None:
        """Destroys every tenant of this backend.

        Args:
            confirm (bool): Must be True, the call is refused otherwise.

        Raises:
            ValueError: If confirm is not True.
            DeleteError: If the backend call fails.
        """
        if confirm is not True:
            raise ValueError("purge_all destroys every tenant and requires confirm=True.")
        self.logging.warning("Purging ALL collections of backend %s", self.get_engine_name())
        await self._purge_all()

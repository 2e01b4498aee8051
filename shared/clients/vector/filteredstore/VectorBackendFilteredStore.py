from shared.clients.vector.VectorBackendInterface import VectorBackendInterface
from shared.exceptions import DeleteError, DimensionMismatchError, InsertError, QueryError
from shared.models.memory import Chunk, RetrievalResult, TenantKey


class VectorBackendFilteredStore(VectorBackendInterface):
    """
    Routes every tenant through one shared collection on a vector store server.

    Each chunk is written with its TenantMetadata and every read, delete and
    purge carries a matching filter, so tenants never see each other's data.
    """

    def _reset_state(self) -> None:
        # dimension of the shared collection, fixed at first write
        self._dimension: int | None = None
        self._store_ready = False

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def _requires_collection(self) -> bool:
        return True

    def _check_dimension(self, tenant: TenantKey, vectors: list[list[float]]) -> None:
        """
        Raises:
            DimensionMismatchError: If any vector differs from the collection's dimension.
        """
        for vector in vectors:
            if self._dimension is not None and len(vector) != self._dimension:
                raise DimensionMismatchError(expected=self._dimension, actual=len(vector), tenant=str(tenant))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "FilteredStore"

    def get_dimension(self) -> int | None:
        return self._dimension

    ################ ENDPOINTS ##################
    def _get_endpoint_healthcheck(self) -> str:
        return "/store/health"

    def _get_endpoint_store(self, verb: str) -> str:
        return f"/store/{verb}"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def _get_read_filters(self, tenant: TenantKey) -> dict:
        return self.get_tenant_metadata(tenant).to_wire()

    def _get_write_filters(self, tenant: TenantKey) -> dict:
        # deletes and purges ignore the embedding source so a model switch can still clean up
        return {"type": tenant.type.value, "sourceId": tenant.source_id}

    def _get_base_payload(self, filters: dict) -> dict:
        return {"collectionId": self._get_collection(), "filters": filters}

    ##########################################
    ############## OPERATIONS ################
    ##########################################

    async def _ensure_store(self, tenant: TenantKey, dimension: int) -> None:
        """Creates the shared collection on first write and learns its dimension.

        Raises:
            InsertError: If the store cannot be initialized.
        """
        if self._store_ready:
            return
        data = await self._send(
            "init",
            InsertError,
            tenant,
            "POST",
            self._get_endpoint_store("init"),
            json={"collectionId": self._get_collection(), "dimension": dimension},
        )
        existing = data.get("dimension")
        self._dimension = int(existing) if existing else dimension
        self._store_ready = True
        self.logging.debug("Shared collection %s ready, dimension %d", self._get_collection(), self._dimension)

    async def get_saved_hashes(self, tenant: TenantKey) -> set[int]:
        data = await self._send("list", QueryError, tenant, "POST", self._get_endpoint_store("list"), json=self._get_base_payload(self._get_read_filters(tenant)))
        return {int(h) for h in data.get("hashes", [])}

    async def insert_items(self, tenant: TenantKey, chunks: list[Chunk]) -> None:
        if not chunks:
            return
        vectors = await self._embed_chunks(tenant, chunks)
        await self._ensure_store(tenant, len(vectors[0]))
        self._check_dimension(tenant, vectors)

        tenant_metadata = self.get_tenant_metadata(tenant)
        payload = {
            "collectionId": self._get_collection(),
            "tenantMetadata": tenant_metadata.to_wire(),
            "items": [
                {
                    "hash": chunk.hash,
                    "text": chunk.text,
                    "vector": vector,
                    "metadata": chunk.metadata.to_wire(),
                }
                for chunk, vector in zip(chunks, vectors)
            ],
        }
        await self._send("insert", InsertError, tenant, "POST", self._get_endpoint_store("insert"), json=payload)
        self.logging.info(
            "Inserted %d chunks into %s (type: %s, sourceId: %s)",
            len(chunks), self._get_collection(), tenant.type.value, tenant.source_id,
        )

    async def delete_items(self, tenant: TenantKey, hashes: list[int]) -> None:
        if not hashes:
            return
        payload = self._get_base_payload(self._get_write_filters(tenant))
        payload["hashes"] = list(hashes)
        await self._send("delete", DeleteError, tenant, "POST", self._get_endpoint_store("delete"), json=payload)

    async def _query_vector(self, tenant: TenantKey, vector: list[float], top_k: int) -> list[RetrievalResult]:
        if self._dimension is not None and len(vector) != self._dimension:
            raise QueryError(
                f"Query vector dimension {len(vector)} does not match collection dimension {self._dimension}.",
                tenant=str(tenant),
                operation="query",
            )
        payload = self._get_base_payload(self._get_read_filters(tenant))
        payload.update({"queryVector": vector, "topK": top_k})
        data = await self._send("query", QueryError, tenant, "POST", self._get_endpoint_store("query"), json=payload)
        return self._parse_hits(tenant, data.get("results", []))

    async def purge(self, tenant: TenantKey) -> None:
        await self._send("purge", DeleteError, tenant, "POST", self._get_endpoint_store("purge"), json=self._get_base_payload(self._get_write_filters(tenant)))
        self.logging.info("Purged %s from %s", tenant, self._get_collection())

    async def _purge_all(self) -> None:
        await self._send("purge-all", DeleteError, None, "POST", self._get_endpoint_store("purge-all"), json={"collectionId": self._get_collection()})
        self._reset_state()

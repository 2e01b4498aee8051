from shared.clients.vector.VectorBackendInterface import VectorBackendInterface
from shared.exceptions import DeleteError, InsertError, QueryError, VectorMemoryError
from shared.helper.collection_id import encode_collection_id
from shared.models.memory import Chunk, RetrievalResult, TenantKey


class VectorBackendPassthrough(VectorBackendInterface):
    """
    Forwards every call 1:1 to a vector store server whose storage is keyed
    directly by collection id. Each tenant already has its own physical
    storage, so no filters are sent.
    """

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Passthrough"

    ################ ENDPOINTS ##################
    def _get_endpoint_healthcheck(self) -> str:
        return "/health"

    def _get_endpoint_chunks(self, verb: str) -> str:
        return f"/chunks/{verb}"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def _get_base_payload(self, tenant: TenantKey) -> dict:
        return {
            "collectionId": encode_collection_id(tenant),
            "source": self.embed_client.get_embedding_source(),
        }

    def _get_insert_payload(self, tenant: TenantKey, chunks: list[Chunk], vectors: list[list[float]]) -> dict:
        payload = self._get_base_payload(tenant)
        payload["items"] = [
            {
                "hash": chunk.hash,
                "text": chunk.text,
                "index": chunk.metadata.chunk_index,
                "vector": vector,
                "metadata": chunk.metadata.to_wire(),
            }
            for chunk, vector in zip(chunks, vectors)
        ]
        return payload

    ##########################################
    ############## OPERATIONS ################
    ##########################################

    async def get_saved_hashes(self, tenant: TenantKey) -> set[int]:
        data = await self._send("list", QueryError, tenant, "POST", self._get_endpoint_chunks("list"), json=self._get_base_payload(tenant))
        return {int(item["hash"]) for item in data.get("items", [])}

    async def insert_items(self, tenant: TenantKey, chunks: list[Chunk]) -> None:
        if not chunks:
            return
        vectors = await self._embed_chunks(tenant, chunks)
        await self._send("insert", InsertError, tenant, "POST", self._get_endpoint_chunks("insert"), json=self._get_insert_payload(tenant, chunks, vectors))
        self.logging.info("Inserted %d chunks into %s", len(chunks), encode_collection_id(tenant))

    async def delete_items(self, tenant: TenantKey, hashes: list[int]) -> None:
        if not hashes:
            return
        payload = self._get_base_payload(tenant)
        payload["hashes"] = list(hashes)
        await self._send("delete", DeleteError, tenant, "POST", self._get_endpoint_chunks("delete"), json=payload)

    async def _query_vector(self, tenant: TenantKey, vector: list[float], top_k: int) -> list[RetrievalResult]:
        payload = self._get_base_payload(tenant)
        payload.update({"vector": vector, "topK": top_k, "threshold": 0.0})
        data = await self._send("query", QueryError, tenant, "POST", self._get_endpoint_chunks("query"), json=payload)
        return self._parse_hits(tenant, data.get("results", []))

    async def query_many(self, tenants: list[TenantKey], query_text: str, top_k: int, score_threshold: float = 0.0) -> dict[str, list[RetrievalResult]]:
        """Queries all tenants in one query-multi request.

        Falls back to one request per tenant when the server rejects query-multi.
        """
        vector = await self.embed_client.embed_text(query_text)
        collection_ids = [encode_collection_id(tenant) for tenant in tenants]
        payload = {
            "collectionIds": collection_ids,
            "source": self.embed_client.get_embedding_source(),
            "vector": vector,
            "topK": top_k,
            "threshold": score_threshold,
        }
        try:
            data = await self._send("query-multi", QueryError, None, "POST", self._get_endpoint_chunks("query-multi"), json=payload)
        except VectorMemoryError as e:
            self.logging.warning("query-multi failed, querying %d collections one by one: %s", len(tenants), e)
            return await super().query_many(tenants, query_text, top_k, score_threshold)

        raw_results = data.get("results", {})
        results: dict[str, list[RetrievalResult]] = {}
        for tenant, collection_id in zip(tenants, collection_ids):
            try:
                hits = self._parse_hits(tenant, raw_results.get(collection_id, []))
            except QueryError as e:
                self.logging.error("Query of %s failed: %s", collection_id, e.describe())
                hits = []
            hits.sort(key=lambda r: r.score, reverse=True)
            results[collection_id] = [hit for hit in hits if hit.score >= score_threshold]
        return results

    async def purge(self, tenant: TenantKey) -> None:
        await self._send("purge", DeleteError, tenant, "POST", self._get_endpoint_chunks("purge"), json=self._get_base_payload(tenant))
        self.logging.info("Purged %s", encode_collection_id(tenant))

    async def purge_file(self, tenant: TenantKey) -> None:
        """
        Removes the on-disk index of a file-backed tenant (documents attached to a chat).
        """
        await self._send("purge-file", DeleteError, tenant, "POST", self._get_endpoint_chunks("purge-file"), json=self._get_base_payload(tenant))

    async def _purge_all(self) -> None:
        await self._send("purge-all", DeleteError, None, "POST", self._get_endpoint_chunks("purge-all"), json={})

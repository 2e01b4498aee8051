import uuid

import httpx
from shared.clients.vector.VectorBackendInterface import VectorBackendInterface
from shared.exceptions import DeleteError, DimensionMismatchError, InsertError, QueryError, VectorMemoryError
from shared.helper.collection_id import encode_collection_id
from shared.models.memory import Chunk, CollectionType, KeywordWeight, RetrievalResult, TenantKey

# payload fields that get a secondary index, with their Qdrant schema
PAYLOAD_INDEXES: dict[str, str] = {
    "type": "keyword",
    "sourceId": "keyword",
    "embeddingSource": "keyword",
    "hash": "integer",
    "timestamp": "float",
    "importance": "integer",
    "keywords": "keyword",
    "characterName": "keyword",
    "chatId": "keyword",
}


class VectorBackendPayloadIndexedStore(VectorBackendInterface):
    """
    Qdrant REST backend with one shared collection for every tenant.

    Tenant isolation uses payload filters on indexed fields. The collection is
    created at first write with that write's vector size; later writes with a
    different size are rejected.
    """

    def _reset_state(self) -> None:
        self._dimension: int | None = None
        self._collection_ready = False

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def _requires_collection(self) -> bool:
        return True

    def _is_healthy_response(self, response: httpx.Response) -> bool:
        # qdrant answers /healthz with plain text
        return response.status_code == 200

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "PayloadIndexedStore"

    def get_dimension(self) -> int | None:
        return self._dimension

    def get_point_id(self, tenant: TenantKey, chunk: Chunk) -> str:
        """
        Deterministic point id, so re-inserting a chunk overwrites it.
        """
        key = f"{encode_collection_id(tenant)}:{chunk.hash}:{chunk.metadata.chunk_index}"
        return str(uuid.uuid5(uuid.NAMESPACE_URL, key))

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._config and self._config.api_key:
            return {"api-key": f"{self._config.api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_collection(self) -> str:
        return f"/collections/{self._get_collection()}"

    def _get_endpoint_check_collection_existence(self) -> str:
        return f"/collections/{self._get_collection()}/exists"

    def _get_endpoint_index(self) -> str:
        return f"/collections/{self._get_collection()}/index"

    def _get_endpoint_points(self) -> str:
        return f"/collections/{self._get_collection()}/points"

    def _get_endpoint_scroll(self) -> str:
        return f"/collections/{self._get_collection()}/points/scroll"

    def _get_endpoint_delete_points(self) -> str:
        return f"/collections/{self._get_collection()}/points/delete"

    def _get_endpoint_search(self) -> str:
        return f"/collections/{self._get_collection()}/points/search"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def _get_tenant_filter(self, tenant: TenantKey, with_embedding_source: bool) -> list[dict]:
        conditions = [
            {"key": "type", "match": {"value": tenant.type.value}},
            {"key": "sourceId", "match": {"value": tenant.source_id}},
        ]
        if with_embedding_source:
            conditions.append({"key": "embeddingSource", "match": {"value": self.embed_client.get_embedding_source()}})
        return conditions

    def _get_point_payload(self, tenant: TenantKey, chunk: Chunk) -> dict:
        metadata = chunk.metadata
        payload = self.get_tenant_metadata(tenant).to_wire()
        payload.update({
            "hash": chunk.hash,
            "text": chunk.text,
            "importance": metadata.importance,
            "keywords": [kw.text if isinstance(kw, KeywordWeight) else kw for kw in metadata.keywords],
            "metadata": metadata.to_wire(),
        })
        if metadata.timestamp is not None:
            payload["timestamp"] = metadata.timestamp
        if tenant.type == CollectionType.CHAT:
            payload["chatId"] = tenant.source_id
        character_name = (metadata.model_extra or {}).get("characterName")
        if character_name:
            payload["characterName"] = character_name
        return payload

    def get_scroll_payload(self, filters: list[dict], limit: int, offset: str | int | None = None) -> dict:
        payload = {
            "filter": {"must": filters},
            "limit": limit,
            "with_payload": ["hash"],
            "with_vector": False,
        }
        if offset is not None:
            payload["offset"] = offset
        return payload

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def _extract_dimension(self, raw_response: dict) -> int | None:
        vectors = raw_response.get("result", {}).get("config", {}).get("params", {}).get("vectors", {})
        size = vectors.get("size") if isinstance(vectors, dict) else None
        return int(size) if size else None

    def _extract_result(self, hit: dict, collection_id: str) -> RetrievalResult:
        payload = hit.get("payload") or {}
        return RetrievalResult.from_wire(
            {
                "hash": payload.get("hash"),
                "text": payload.get("text"),
                "score": hit.get("score", 0.0),
                "metadata": payload.get("metadata") or {},
            },
            collection_id,
        )

    ##########################################
    ############### COLLECTION ###############
    ##########################################

    async def _collection_exists(self, tenant: TenantKey | None, operation: str, error_cls: type[VectorMemoryError]) -> bool:
        if self._collection_ready:
            return True
        data = await self._send(operation, error_cls, tenant, "GET", self._get_endpoint_check_collection_existence())
        return bool(data.get("result", {}).get("exists"))

    async def _ensure_collection(self, tenant: TenantKey, dimension: int) -> None:
        """Creates the shared collection if needed and (re)declares the payload indexes.

        Raises:
            InsertError: If the collection or an index cannot be created.
        """
        if self._collection_ready:
            return
        if await self._collection_exists(tenant, "insert", InsertError):
            info = await self._send("insert", InsertError, tenant, "GET", self._get_endpoint_collection())
            self._dimension = self._extract_dimension(info)
        else:
            self.logging.info("Creating collection %s with dimension %d", self._get_collection(), dimension)
            await self._send(
                "insert",
                InsertError,
                tenant,
                "PUT",
                self._get_endpoint_collection(),
                json={"vectors": {"size": dimension, "distance": "Cosine"}},
            )
            self._dimension = dimension
        await self._ensure_payload_indexes(tenant)
        self._collection_ready = True

    async def _ensure_payload_indexes(self, tenant: TenantKey) -> None:
        for field_name, field_schema in PAYLOAD_INDEXES.items():
            try:
                response = await self.do_request(
                    method="PUT",
                    endpoint=self._get_endpoint_index(),
                    json={"field_name": field_name, "field_schema": field_schema},
                )
            except httpx.HTTPError as e:
                raise InsertError(f"Creating payload index '{field_name}' failed: {e}", tenant=str(tenant), operation="insert") from e
            if response.status_code < 300:
                continue
            if "already exists" in response.text.lower():
                self.logging.debug("Payload index %s already exists", field_name)
                continue
            raise InsertError(
                f"Creating payload index '{field_name}' failed with status {response.status_code}: {response.text[:200]}",
                tenant=str(tenant),
                operation="insert",
            )

    ##########################################
    ############## OPERATIONS ################
    ##########################################

    async def get_saved_hashes(self, tenant: TenantKey) -> set[int]:
        """Scrolls through every point of the tenant, paginating automatically."""
        if not await self._collection_exists(tenant, "list", QueryError):
            return set()
        hashes: set[int] = set()
        offset = None
        page = 1
        while True:
            data = await self._send(
                "list",
                QueryError,
                tenant,
                "POST",
                self._get_endpoint_scroll(),
                json=self.get_scroll_payload(self._get_tenant_filter(tenant, True), limit=1000, offset=offset),
            )
            result = data.get("result", {})
            for point in result.get("points", []):
                value = (point.get("payload") or {}).get("hash")
                if value is not None:
                    hashes.add(int(value))
            offset = result.get("next_page_offset")
            self.logging.debug("Fetched hash page %d of %s, %d hashes so far", page, tenant, len(hashes))
            if not offset:
                break
            page += 1
        return hashes

    async def insert_items(self, tenant: TenantKey, chunks: list[Chunk]) -> None:
        if not chunks:
            return
        vectors = await self._embed_chunks(tenant, chunks)
        await self._ensure_collection(tenant, len(vectors[0]))
        for vector in vectors:
            if self._dimension is not None and len(vector) != self._dimension:
                raise DimensionMismatchError(expected=self._dimension, actual=len(vector), tenant=str(tenant))

        points = [
            {
                "id": self.get_point_id(tenant, chunk),
                "vector": vector,
                "payload": self._get_point_payload(tenant, chunk),
            }
            for chunk, vector in zip(chunks, vectors)
        ]
        await self._send("insert", InsertError, tenant, "PUT", self._get_endpoint_points(), json={"points": points}, params={"wait": "true"})
        self.logging.info(
            "Inserted %d points into %s (type: %s, sourceId: %s)",
            len(points), self._get_collection(), tenant.type.value, tenant.source_id,
        )

    async def delete_items(self, tenant: TenantKey, hashes: list[int]) -> None:
        if not hashes or not await self._collection_exists(tenant, "delete", DeleteError):
            return
        must = self._get_tenant_filter(tenant, False)
        must.append({"key": "hash", "match": {"any": list(hashes)}})
        await self._send("delete", DeleteError, tenant, "POST", self._get_endpoint_delete_points(), json={"filter": {"must": must}}, params={"wait": "true"})

    async def _query_vector(self, tenant: TenantKey, vector: list[float], top_k: int) -> list[RetrievalResult]:
        if not await self._collection_exists(tenant, "query", QueryError):
            return []
        payload = {
            "vector": vector,
            "limit": top_k,
            "filter": {"must": self._get_tenant_filter(tenant, True)},
            "with_payload": True,
        }
        data = await self._send("query", QueryError, tenant, "POST", self._get_endpoint_search(), json=payload)
        return self._parse_hits(tenant, data.get("result", []), parse=self._extract_result)

    async def purge(self, tenant: TenantKey) -> None:
        if not await self._collection_exists(tenant, "purge", DeleteError):
            return
        payload = {"filter": {"must": self._get_tenant_filter(tenant, False)}}
        await self._send("purge", DeleteError, tenant, "POST", self._get_endpoint_delete_points(), json=payload, params={"wait": "true"})
        self.logging.info("Purged %s from %s", tenant, self._get_collection())

    async def _purge_all(self) -> None:
        if await self._collection_exists(None, "purge-all", DeleteError):
            await self._send("purge-all", DeleteError, None, "DELETE", self._get_endpoint_collection())
        self._reset_state()

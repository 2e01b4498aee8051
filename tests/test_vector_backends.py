"""Contract tests run against every vector backend, plus backend-specific behaviour."""

import httpx
import pytest

from fakes import MockEmbedClient
from shared.clients.vector.filteredstore.VectorBackendFilteredStore import VectorBackendFilteredStore
from shared.clients.vector.passthrough.VectorBackendPassthrough import VectorBackendPassthrough
from shared.clients.vector.payloadindexedstore.VectorBackendPayloadIndexedStore import (
    PAYLOAD_INDEXES,
    VectorBackendPayloadIndexedStore,
)
from shared.exceptions import (
    BackendUnavailableError,
    ConfigError,
    DimensionMismatchError,
    InsertError,
    QueryError,
)
from shared.helper.collection_id import chat_tenant, encode_collection_id
from shared.helper.hashing import get_string_hash
from shared.models.config import BackendConfig
from shared.models.memory import Chunk, ChunkMetadata, CollectionType, TenantKey

ENGINES = {
    "passthrough": VectorBackendPassthrough,
    "filteredstore": VectorBackendFilteredStore,
    "payloadindexedstore": VectorBackendPayloadIndexedStore,
}

TENANT_A = chat_tenant("chatA")
TENANT_B = chat_tenant("chatB")


def _chunks(texts: list[str]) -> list[Chunk]:
    return [Chunk(text=t, hash=get_string_hash(t), metadata=ChunkMetadata(message_id=i)) for i, t in enumerate(texts)]


async def _make_backend(engine, helper_config, embed_client, transport, backend_configs):
    backend = ENGINES[engine](helper_config=helper_config, embed_client=embed_client, transport=transport)
    await backend.initialize(backend_configs[engine])
    return backend


@pytest.fixture(params=list(ENGINES))
def engine(request):
    return request.param


class TestBackendContract:

    @pytest.mark.asyncio
    async def test_insert_then_list(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        chunks = _chunks(["the knight rides north", "the dragon sleeps"])
        await backend.insert_items(TENANT_A, chunks)
        assert await backend.get_saved_hashes(TENANT_A) == {c.hash for c in chunks}
        await backend.close()

    @pytest.mark.asyncio
    async def test_empty_tenant(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        assert await backend.get_saved_hashes(TENANT_A) == set()
        assert await backend.query(TENANT_A, query_text="anything") == []

    @pytest.mark.asyncio
    async def test_tenants_are_isolated(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        a = _chunks(["apples grow in the orchard"])
        b = _chunks(["apples are sold at the market"])
        await backend.insert_items(TENANT_A, a)
        await backend.insert_items(TENANT_B, b)

        assert await backend.get_saved_hashes(TENANT_A) == {a[0].hash}
        results = await backend.query(TENANT_A, query_text="apples", top_k=10)
        assert [r.hash for r in results] == [a[0].hash]
        assert results[0].collection_id == "vh_chat_chatA"

        await backend.purge(TENANT_A)
        assert await backend.get_saved_hashes(TENANT_A) == set()
        assert await backend.get_saved_hashes(TENANT_B) == {b[0].hash}

    @pytest.mark.asyncio
    async def test_same_source_id_different_type_is_isolated(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        lorebook = TenantKey(type=CollectionType.LOREBOOK, source_id="chatA")
        await backend.insert_items(TENANT_A, _chunks(["chat text"]))
        await backend.insert_items(lorebook, _chunks(["lore text"]))
        assert await backend.get_saved_hashes(lorebook) == {get_string_hash("lore text")}

    @pytest.mark.asyncio
    async def test_insert_is_idempotent(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        chunks = _chunks(["a castle on a hill", "a river in the valley"])
        await backend.insert_items(TENANT_A, chunks)
        await backend.insert_items(TENANT_A, chunks)
        assert await backend.get_saved_hashes(TENANT_A) == {c.hash for c in chunks}
        assert len(await backend.query(TENANT_A, query_text="castle", top_k=10)) == 2

    @pytest.mark.asyncio
    async def test_query_orders_by_score(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        await backend.insert_items(TENANT_A, _chunks(["red fox jumps", "blue whale swims", "red fox sleeps"]))
        results = await backend.query(TENANT_A, query_text="red fox jumps", top_k=2)
        assert len(results) == 2
        assert results[0].score == pytest.approx(1.0)
        assert results[0].score >= results[1].score
        assert "red fox jumps" in [r.text for r in results]
        assert results[0].original_score == results[0].score

    @pytest.mark.asyncio
    async def test_delete_items(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        chunks = _chunks(["one", "two", "three"])
        await backend.insert_items(TENANT_A, chunks)
        await backend.delete_items(TENANT_A, [chunks[0].hash, 12345])
        assert await backend.get_saved_hashes(TENANT_A) == {chunks[1].hash, chunks[2].hash}

    @pytest.mark.asyncio
    async def test_delete_removes_every_chunk_of_a_hash(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        h = get_string_hash("long message")
        chunks = [Chunk(text=f"part {i}", hash=h, metadata=ChunkMetadata(chunk_index=i, total_chunks=3)) for i in range(3)]
        await backend.insert_items(TENANT_A, chunks)
        assert len(await backend.query(TENANT_A, query_text="part", top_k=10)) == 3
        await backend.delete_items(TENANT_A, [h])
        assert await backend.query(TENANT_A, query_text="part", top_k=10) == []

    @pytest.mark.asyncio
    async def test_metadata_round_trips(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        chunk = Chunk(text="the oath", hash=get_string_hash("the oath"), metadata=ChunkMetadata(message_id=4, importance=150, keywords=["oath"]))
        await backend.insert_items(TENANT_A, [chunk])
        result = (await backend.query(TENANT_A, query_text="the oath"))[0]
        assert result.metadata.message_id == 4
        assert result.metadata.importance == 150
        assert result.metadata.keywords == ["oath"]

    @pytest.mark.asyncio
    async def test_purge_all_requires_confirm(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        await backend.insert_items(TENANT_A, _chunks(["keep me"]))
        with pytest.raises(ValueError):
            await backend.purge_all()
        assert await backend.get_saved_hashes(TENANT_A) == {get_string_hash("keep me")}
        await backend.purge_all(confirm=True)
        assert await backend.get_saved_hashes(TENANT_A) == set()

    @pytest.mark.asyncio
    async def test_embedding_failure_raises_insert_error(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        embed_client.fail = True
        with pytest.raises(InsertError):
            await backend.insert_items(TENANT_A, _chunks(["x"]))

    @pytest.mark.asyncio
    async def test_embedding_count_mismatch_raises_insert_error(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        embed_client.drop_last = True
        with pytest.raises(InsertError):
            await backend.insert_items(TENANT_A, _chunks(["x", "y"]))

    @pytest.mark.asyncio
    async def test_not_initialized(self, engine, helper_config, embed_client, transport):
        backend = ENGINES[engine](helper_config=helper_config, embed_client=embed_client, transport=transport)
        assert not await backend.health_check()
        with pytest.raises(BackendUnavailableError):
            await backend.get_saved_hashes(TENANT_A)

    @pytest.mark.asyncio
    async def test_reinitialize_same_config_is_noop(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        client = backend._client
        await backend.initialize(backend_configs[engine])
        assert backend._client is client

    @pytest.mark.asyncio
    async def test_invalid_url_raises_config_error(self, engine, helper_config, embed_client, transport):
        backend = ENGINES[engine](helper_config=helper_config, embed_client=embed_client, transport=transport)
        with pytest.raises(ConfigError):
            await backend.initialize(BackendConfig(base_url="not a url"))
        assert not backend.is_booted()

    @pytest.mark.asyncio
    async def test_health_check(self, engine, helper_config, embed_client, transport, backend_configs, network):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        assert await backend.health_check()
        host = httpx.URL(backend_configs[engine].base_url).host
        network.servers[host].healthy = False
        assert not await backend.health_check()

    @pytest.mark.asyncio
    async def test_health_check_never_raises_on_network_error(self, engine, helper_config, embed_client, transport):
        backend = ENGINES[engine](helper_config=helper_config, embed_client=embed_client, transport=transport)
        await backend.initialize(BackendConfig(base_url="http://unreachable.test", collection="vh_shared"))
        assert not await backend.health_check()

    @pytest.mark.asyncio
    async def test_query_many(self, engine, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        lorebook = TenantKey(type=CollectionType.LOREBOOK, source_id="world")
        await backend.insert_items(TENANT_A, _chunks(["the tavern is loud"]))
        await backend.insert_items(lorebook, _chunks(["the tavern keeper is named Bram"]))
        calls_before = embed_client.embed_calls

        results = await backend.query_many([TENANT_A, lorebook], "tavern", top_k=5)
        assert embed_client.embed_calls == calls_before + 1
        assert set(results) == {"vh_chat_chatA", "vh_lorebook_world"}
        assert results["vh_lorebook_world"][0].collection_id == "vh_lorebook_world"

        filtered = await backend.query_many([TENANT_A, lorebook], "tavern", top_k=5, score_threshold=1.01)
        assert filtered == {"vh_chat_chatA": [], "vh_lorebook_world": []}

    @pytest.mark.asyncio
    async def test_malformed_hits_only_empty_their_tenant(self, engine, helper_config, embed_client, transport, backend_configs, passthrough_server, filtered_server, qdrant_server):
        backend = await _make_backend(engine, helper_config, embed_client, transport, backend_configs)
        await backend.insert_items(TENANT_A, _chunks(["the tavern is loud"]))
        await backend.insert_items(TENANT_B, _chunks(["the tavern is quiet"]))
        stored_metadata = {
            "passthrough": lambda: [item["metadata"] for item in passthrough_server.collections["vh_chat_chatB"].values()],
            "filteredstore": lambda: [r["metadata"] for r in filtered_server.records if r["tenantMetadata"]["sourceId"] == "chatB"],
            "payloadindexedstore": lambda: [
                p["payload"]["metadata"] for p in qdrant_server.collections["vh_shared"]["points"].values()
                if p["payload"]["sourceId"] == "chatB"
            ],
        }[engine]()
        for metadata in stored_metadata:
            metadata["importance"] = 250

        results = await backend.query_many([TENANT_A, TENANT_B], "tavern", top_k=5)
        assert [r.text for r in results["vh_chat_chatA"]] == ["the tavern is loud"]
        assert results["vh_chat_chatB"] == []
        with pytest.raises(QueryError):
            await backend.query(TENANT_B, query_text="tavern")


class TestPassthrough:

    @pytest.mark.asyncio
    async def test_collection_id_is_sent(self, helper_config, embed_client, transport, backend_configs, passthrough_server):
        backend = await _make_backend("passthrough", helper_config, embed_client, transport, backend_configs)
        await backend.insert_items(TENANT_A, _chunks(["hi"]))
        verb, body = passthrough_server.requests[-1]
        assert verb == "insert"
        assert body["collectionId"] == "vh_chat_chatA"
        assert body["source"] == "mock/words"
        assert "filters" not in body

    @pytest.mark.asyncio
    async def test_query_many_uses_query_multi(self, helper_config, embed_client, transport, backend_configs, passthrough_server):
        backend = await _make_backend("passthrough", helper_config, embed_client, transport, backend_configs)
        await backend.query_many([TENANT_A, TENANT_B], "hello", top_k=3)
        verbs = [verb for verb, _ in passthrough_server.requests]
        assert verbs == ["query-multi"]

    @pytest.mark.asyncio
    async def test_query_many_falls_back_per_collection(self, helper_config, embed_client, transport, backend_configs, passthrough_server):
        backend = await _make_backend("passthrough", helper_config, embed_client, transport, backend_configs)
        await backend.insert_items(TENANT_A, _chunks(["hello there"]))
        passthrough_server.fail_multi = True
        passthrough_server.fail_collections = {"vh_chat_chatB"}

        results = await backend.query_many([TENANT_A, TENANT_B], "hello", top_k=3)
        assert [r.text for r in results["vh_chat_chatA"]] == ["hello there"]
        assert results["vh_chat_chatB"] == []

    @pytest.mark.asyncio
    async def test_purge_file(self, helper_config, embed_client, transport, backend_configs, passthrough_server):
        backend = await _make_backend("passthrough", helper_config, embed_client, transport, backend_configs)
        document = TenantKey(type=CollectionType.DOCUMENT, source_id="notes_pdf")
        await backend.insert_items(document, _chunks(["page one"]))
        await backend.purge_file(document)
        assert "vh_document_notes_pdf" not in passthrough_server.collections


class TestFilteredStore:

    @pytest.mark.asyncio
    async def test_writes_carry_tenant_metadata(self, helper_config, embed_client, transport, backend_configs, filtered_server):
        backend = await _make_backend("filteredstore", helper_config, embed_client, transport, backend_configs)
        await backend.insert_items(TENANT_A, _chunks(["hi"]))
        verb, body = filtered_server.requests[-1]
        assert verb == "insert"
        assert body["collectionId"] == "vh_shared"
        assert body["tenantMetadata"] == {"type": "chat", "sourceId": "chatA", "embeddingSource": "mock/words"}

    @pytest.mark.asyncio
    async def test_dimension_fixed_at_first_write(self, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend("filteredstore", helper_config, embed_client, transport, backend_configs)
        await backend.insert_items(TENANT_A, _chunks(["first"]))
        assert backend.get_dimension() == 16

        embed_client.dimension = 8
        with pytest.raises(DimensionMismatchError) as exc_info:
            await backend.insert_items(TENANT_B, _chunks(["second"]))
        assert exc_info.value.expected == 16
        assert exc_info.value.actual == 8

    @pytest.mark.asyncio
    async def test_existing_store_dimension_is_adopted(self, helper_config, transport, backend_configs, filtered_server):
        filtered_server.dimension = 32
        backend = await _make_backend("filteredstore", helper_config, MockEmbedClient(dimension=16), transport, backend_configs)
        with pytest.raises(DimensionMismatchError):
            await backend.insert_items(TENANT_A, _chunks(["x"]))
        assert filtered_server.records == []

    @pytest.mark.asyncio
    async def test_query_dimension_mismatch_is_isolated_in_query_many(self, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend("filteredstore", helper_config, embed_client, transport, backend_configs)
        await backend.insert_items(TENANT_A, _chunks(["first"]))
        embed_client.dimension = 8
        assert await backend.query_many([TENANT_A], "first", top_k=3) == {"vh_chat_chatA": []}

    @pytest.mark.asyncio
    async def test_embedding_source_switch(self, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend("filteredstore", helper_config, embed_client, transport, backend_configs)
        chunks = _chunks(["old model text"])
        await backend.insert_items(TENANT_A, chunks)

        embed_client.source = "mock/other"
        # reads only see chunks of the current embedding source
        assert await backend.get_saved_hashes(TENANT_A) == set()
        # deletes still reach them
        await backend.delete_items(TENANT_A, [chunks[0].hash])
        embed_client.source = "mock/words"
        assert await backend.get_saved_hashes(TENANT_A) == set()

    @pytest.mark.asyncio
    async def test_requires_collection(self, helper_config, embed_client, transport):
        backend = VectorBackendFilteredStore(helper_config=helper_config, embed_client=embed_client, transport=transport)
        with pytest.raises(ConfigError):
            await backend.initialize(BackendConfig(base_url="http://filtered.test", collection=" "))


class TestPayloadIndexedStore:

    @pytest.mark.asyncio
    async def test_collection_created_lazily_with_indexes(self, helper_config, embed_client, transport, backend_configs, qdrant_server):
        backend = await _make_backend("payloadindexedstore", helper_config, embed_client, transport, backend_configs)
        assert await backend.get_saved_hashes(TENANT_A) == set()
        assert "vh_shared" not in qdrant_server.collections

        await backend.insert_items(TENANT_A, _chunks(["hello"]))
        collection = qdrant_server.collections["vh_shared"]
        assert collection["size"] == 16
        assert collection["indexes"] == PAYLOAD_INDEXES

    @pytest.mark.asyncio
    async def test_point_payload(self, helper_config, embed_client, transport, backend_configs, qdrant_server):
        backend = await _make_backend("payloadindexedstore", helper_config, embed_client, transport, backend_configs)
        chunk = Chunk(
            text="hello",
            hash=get_string_hash("hello"),
            metadata=ChunkMetadata(message_id=2, timestamp=1700000000.0, importance=120, characterName="Seraphina"),
        )
        await backend.insert_items(TENANT_A, [chunk])
        point_id = backend.get_point_id(TENANT_A, chunk)
        payload = qdrant_server.collections["vh_shared"]["points"][point_id]["payload"]
        assert payload["type"] == "chat"
        assert payload["sourceId"] == "chatA"
        assert payload["embeddingSource"] == "mock/words"
        assert payload["chatId"] == "chatA"
        assert payload["characterName"] == "Seraphina"
        assert payload["hash"] == chunk.hash
        assert payload["importance"] == 120
        assert payload["timestamp"] == 1700000000.0

    def test_point_ids_are_deterministic(self, helper_config, embed_client, transport):
        backend = VectorBackendPayloadIndexedStore(helper_config=helper_config, embed_client=embed_client, transport=transport)
        chunk = _chunks(["x"])[0]
        assert backend.get_point_id(TENANT_A, chunk) == backend.get_point_id(TENANT_A, chunk)
        assert backend.get_point_id(TENANT_A, chunk) != backend.get_point_id(TENANT_B, chunk)

    @pytest.mark.asyncio
    async def test_existing_index_is_ignored(self, helper_config, embed_client, transport, backend_configs, qdrant_server):
        qdrant_server.index_responses["hash"] = httpx.Response(400, json={"status": {"error": "Index already exists"}})
        backend = await _make_backend("payloadindexedstore", helper_config, embed_client, transport, backend_configs)
        await backend.insert_items(TENANT_A, _chunks(["hello"]))
        assert await backend.get_saved_hashes(TENANT_A) == {get_string_hash("hello")}

    @pytest.mark.asyncio
    async def test_index_failure_raises_insert_error(self, helper_config, embed_client, transport, backend_configs, qdrant_server):
        qdrant_server.index_responses["hash"] = httpx.Response(500, json={"status": {"error": "disk full"}})
        backend = await _make_backend("payloadindexedstore", helper_config, embed_client, transport, backend_configs)
        with pytest.raises(InsertError):
            await backend.insert_items(TENANT_A, _chunks(["hello"]))

    @pytest.mark.asyncio
    async def test_dimension_mismatch_against_existing_collection(self, helper_config, transport, backend_configs, qdrant_server):
        first = await _make_backend("payloadindexedstore", helper_config, MockEmbedClient(dimension=16), transport, backend_configs)
        await first.insert_items(TENANT_A, _chunks(["hello"]))

        second = await _make_backend("payloadindexedstore", helper_config, MockEmbedClient(dimension=8), transport, backend_configs)
        with pytest.raises(DimensionMismatchError):
            await second.insert_items(TENANT_B, _chunks(["other"]))
        assert second.get_dimension() == 16
        assert len(qdrant_server.collections["vh_shared"]["points"]) == 1

    @pytest.mark.asyncio
    async def test_scroll_paginates(self, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend("payloadindexedstore", helper_config, embed_client, transport, backend_configs)
        chunks = _chunks([f"message number {i}" for i in range(1005)])
        await backend.insert_items(TENANT_A, chunks)
        assert len(await backend.get_saved_hashes(TENANT_A)) == 1005

    @pytest.mark.asyncio
    async def test_purge_all_drops_collection(self, helper_config, embed_client, transport, backend_configs, qdrant_server):
        backend = await _make_backend("payloadindexedstore", helper_config, embed_client, transport, backend_configs)
        await backend.insert_items(TENANT_A, _chunks(["hello"]))
        await backend.purge_all(confirm=True)
        assert "vh_shared" not in qdrant_server.collections
        assert backend.get_dimension() is None

    @pytest.mark.asyncio
    async def test_collection_id_of_results(self, helper_config, embed_client, transport, backend_configs):
        backend = await _make_backend("payloadindexedstore", helper_config, embed_client, transport, backend_configs)
        lorebook = TenantKey(type=CollectionType.LOREBOOK, source_id="world_01")
        await backend.insert_items(lorebook, _chunks(["ancient ruins"]))
        results = await backend.query(lorebook, query_text="ruins")
        assert results[0].collection_id == encode_collection_id(lorebook)

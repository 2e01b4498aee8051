"""
Shared pytest fixtures for chat memory tests.

Every HTTP dependency is served by an in-process fake (see fakes.py), so no
vector store or embedding server is needed.
"""

import logging

import pytest

from fakes import (
    FakeFilteredStoreServer,
    FakeNetwork,
    FakeOllamaServer,
    FakePassthroughServer,
    FakeQdrantServer,
    MockEmbedClient,
)
from shared.clients.host.memory.HostSessionMemory import HostSessionMemory
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import BackendConfig
from shared.models.memory import ChatMessage

PASSTHROUGH_URL = "http://passthrough.test"
FILTERED_URL = "http://filtered.test"
QDRANT_URL = "http://qdrant.test"
EMBED_URL = "http://embed.test"


@pytest.fixture
def logger():
    return logging.getLogger("chat_memory")


@pytest.fixture
def helper_config(logger):
    return HelperConfig(logger=logger, environ={})


@pytest.fixture
def embed_client():
    return MockEmbedClient()


@pytest.fixture
def passthrough_server():
    return FakePassthroughServer()


@pytest.fixture
def filtered_server():
    return FakeFilteredStoreServer()


@pytest.fixture
def qdrant_server():
    return FakeQdrantServer()


@pytest.fixture
def ollama_server():
    return FakeOllamaServer()


@pytest.fixture
def network(passthrough_server, filtered_server, qdrant_server, ollama_server):
    return FakeNetwork({
        "passthrough.test": passthrough_server,
        "filtered.test": filtered_server,
        "qdrant.test": qdrant_server,
        "embed.test": ollama_server,
    })


@pytest.fixture
def transport(network):
    return network.transport()


@pytest.fixture
def backend_configs():
    return {
        "passthrough": BackendConfig(base_url=PASSTHROUGH_URL),
        "filteredstore": BackendConfig(base_url=FILTERED_URL, collection="vh_shared"),
        "payloadindexedstore": BackendConfig(base_url=QDRANT_URL, collection="vh_shared"),
    }


@pytest.fixture
def make_messages():
    """Builds a chat alternating user and character messages."""

    def _make(texts: list[str]) -> list[ChatMessage]:
        return [ChatMessage(text=text, is_user=(i % 2 == 0), index=i) for i, text in enumerate(texts)]

    return _make


@pytest.fixture
def host(make_messages):
    return HostSessionMemory(chat_id="chat1", messages=make_messages(["one", "two", "three"]))

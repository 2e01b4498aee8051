from fastapi import Request

from services.chat_memory.RetrievalService import RetrievalService
from services.chat_memory.SyncService import SyncService
from shared.clients.host.memory.HostSessionMemory import HostSessionMemory
from shared.models.memory import ChatMessage


def _load_host(chat_id: str, messages: list[ChatMessage]) -> HostSessionMemory:
    # one host per request, concurrent requests never see each other's chat
    return HostSessionMemory(chat_id=chat_id, messages=messages)


def build_sync_service(request: Request, chat_id: str, messages: list[ChatMessage]) -> SyncService:
    """SyncService for the chat of one request, sharing the process wide sync guard."""
    state = request.app.state
    return SyncService(
        helper_config=state.helper_config,
        registry=state.registry,
        host=_load_host(chat_id, messages),
        settings=state.settings,
        guard=state.sync_guard,
    )


def build_retrieval_service(request: Request, chat_id: str, messages: list[ChatMessage]) -> RetrievalService:
    state = request.app.state
    return RetrievalService(
        helper_config=state.helper_config,
        registry=state.registry,
        host=_load_host(chat_id, messages),
        settings=state.settings,
    )

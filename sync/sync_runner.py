"""Sync runner entry point.

Vectorizes a whole chat in one go, batch by batch, the same way the API's
POST /sync/all does. The chat is read from a JSON file holding a list of
messages ({"text" or "mes", "is_user", "is_system", "name"}).

Usage:
    SYNC_CHAT_FILE=/path/chat.json SYNC_CHAT_ID=my-chat python -m sync.sync_runner
"""

import asyncio
import json
from pathlib import Path

from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.host.memory.HostSessionMemory import HostSessionMemory
from shared.clients.vector.VectorBackendRegistry import VectorBackendRegistry
from shared.exceptions import ConfigError
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.config import MemorySettings
from shared.models.memory import ChatMessage
from services.chat_memory.SyncService import SyncService


def load_chat_file(path: str) -> list[ChatMessage]:
    """Reads the messages of a chat export.

    Raises:
        ConfigError: If the file is missing or not a JSON list of messages.
    """
    file = Path(path)
    if not file.is_file():
        raise ConfigError(f"Chat file '{path}' does not exist.")
    try:
        raw = json.loads(file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Chat file '{path}' is not valid JSON: {e}")
    if not isinstance(raw, list):
        raise ConfigError(f"Chat file '{path}' must contain a list of messages.")
    return [
        ChatMessage(
            text=str(entry.get("text", entry.get("mes", ""))),
            is_user=bool(entry.get("is_user", False)),
            is_system=bool(entry.get("is_system", False)),
            name=entry.get("name"),
            index=position,
        )
        for position, entry in enumerate(raw)
    ]


async def main() -> None:
    """Vectorize the configured chat file."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    settings = MemorySettings.from_helper_config(config)

    messages = load_chat_file(config.get_string_val("SYNC_CHAT_FILE"))
    chat_id = config.get_string_val("SYNC_CHAT_ID")

    embed_client = EmbedClientManager(helper_config=config).get_client()
    registry = VectorBackendRegistry(config, embed_client)
    try:
        await embed_client.boot()
        await registry.activate()

        host = HostSessionMemory(chat_id=chat_id, messages=messages)
        sync_service = SyncService(helper_config=config, registry=registry, host=host, settings=settings)
        report = await sync_service.vectorize_all()
        if report.completed:
            logger.info(
                "Chat %s vectorized: %d items, %d chunks in %d batches.",
                chat_id, report.messages_processed, report.chunks_created, report.iterations, color="green",
            )
        else:
            logger.error("Vectorizing chat %s stopped early: %s", chat_id, report.reason)
    finally:
        await registry.teardown()
        await embed_client.close()


if __name__ == "__main__":
    asyncio.run(main())

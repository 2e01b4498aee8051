"""Synchronization service.

Keeps the vector index of the current chat in step with the host's live
message sequence: hashes every non-system message, diffs the hashes against
the backend's stored hash set, chunks and inserts a bounded batch of new
items and deletes every hash that is gone from the chat.
"""

import time
from enum import Enum

from shared.clients.host.HostSessionInterface import HostSessionInterface
from shared.clients.vector.VectorBackendRegistry import VectorBackendRegistry
from shared.exceptions import BlockedError, VectorMemoryError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.collection_id import chat_tenant, encode_collection_id
from shared.helper.hashing import get_string_hash
from shared.helper.text_splitter import DEFAULT_DELIMITERS, split_recursive
from shared.models.config import MemorySettings
from shared.models.memory import Chunk, ChunkMetadata, Item, SyncResult, TenantKey, VectorizeReport
from services.chat_memory.SyncGuard import SyncGuard


class SyncState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    DIFFING = "diffing"
    CHUNKING = "chunking"
    INSERTING = "inserting"
    DELETING = "deleting"


def _label(is_user: bool) -> str:
    return "User" if is_user else "Character"


def group_items(items: list[Item], strategy: str, batch_size: int = 4) -> list[Item]:
    """Groups per-message items according to the chunking strategy.

    Grouped items hash their combined labelled text, so identical groups
    deduplicate. The ids and hashes of the member messages are kept in the
    metadata for injection lookup.

    Args:
        items (list[Item]): One item per message, in chat order.
        strategy (str): per_message, conversation_turns or message_batch.
        batch_size (int): Messages per group for message_batch.

    Returns:
        list[Item]: The grouped items, in chat order.
    """
    if strategy == "per_message":
        return [
            item.model_copy(update={"metadata": {
                "strategy": "per_message",
                "message_id": item.index,
                "message_hashes": [item.hash],
            }})
            for item in items
        ]

    size = 2 if strategy == "conversation_turns" else max(1, batch_size)
    grouped: list[Item] = []
    for start in range(0, len(items), size):
        group = items[start:start + size]
        combined = "\n\n".join(f"[{_label(m.is_user)}]: {m.text}" for m in group)
        grouped.append(Item(
            text=combined,
            hash=get_string_hash(combined),
            index=group[0].index,
            is_user=group[0].is_user,
            metadata={
                "strategy": strategy,
                "message_id": group[0].index,
                "message_ids": [m.index for m in group],
                "message_hashes": [m.hash for m in group],
            },
        ))
    return grouped


def split_item(item: Item, chunk_size: int) -> list[Chunk]:
    """Splits an item into chunks. Every chunk inherits the item's hash.

    Args:
        item (Item): The item to split.
        chunk_size (int): Max characters per chunk, 0 disables splitting.

    Returns:
        list[Chunk]: Chunks in text order, distinguished by chunk_index.
    """
    pieces = split_recursive(item.text, chunk_size, DEFAULT_DELIMITERS)
    timestamp = time.time()
    chunks = []
    for i, piece in enumerate(pieces):
        metadata = ChunkMetadata(
            source="chat",
            chunk_index=i,
            total_chunks=len(pieces),
            timestamp=timestamp,
            original_message_hash=item.hash,
            **{"message_id": item.index, **item.metadata},
        )
        chunks.append(Chunk(text=piece, hash=item.hash, metadata=metadata))
    return chunks


class SyncService:
    """Incremental synchronization of the current chat into the active backend."""

    def __init__(
        self,
        helper_config: HelperConfig,
        registry: VectorBackendRegistry,
        host: HostSessionInterface,
        settings: MemorySettings,
        guard: SyncGuard | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self.registry = registry
        self.host = host
        self.settings = settings
        # services bound to different hosts share one guard per process
        self.guard = guard or SyncGuard(
            helper_config,
            is_generating=host.is_generating,
            timeout=settings.sync_timeout,
            poll_interval=settings.sync_poll_interval,
        )
        self.state = SyncState.IDLE

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_chat_tenant(self) -> TenantKey | None:
        chat_id = self.host.get_chat_id()
        return chat_tenant(chat_id) if chat_id else None

    def build_items(self) -> list[Item]:
        """Hashes every non-system message of the live sequence and groups them.

        Returns:
            list[Item]: Items in chat order, oldest first.
        """
        items = []
        for message in self.host.get_messages():
            if message.is_system:
                continue
            text = self.host.substitute(message.text).strip()
            if not text:
                continue
            items.append(Item(text=text, hash=get_string_hash(text), index=message.index, is_user=message.is_user))
        return group_items(items, self.settings.chunking_strategy, self.settings.strategy_batch_size)

    ##########################################
    ############### CORE SYNC ################
    ##########################################

    async def synchronize(self, batch_size: int | None = None) -> SyncResult:
        """Runs one synchronization call for the current chat.

        Inserts at most batch_size new items and deletes every stale hash.
        Never raises: every failure is logged and reported in the result.

        Args:
            batch_size (int | None): Items to insert, defaults to the configured batch size.

        Returns:
            SyncResult: remaining > 0 asks the caller to call again.
        """
        if not self.settings.enabled:
            return SyncResult(status="disabled", remaining=-1)

        tenant = self.get_chat_tenant()
        if tenant is None:
            self.logging.debug("No chat selected, skipping synchronization.")
            return SyncResult(status="no_chat", remaining=-1)

        batch_size = batch_size or self.settings.batch_size
        self.state = SyncState.ACQUIRING
        try:
            async with self.guard.hold():
                return await self._synchronize_tenant(tenant, batch_size)
        except BlockedError as e:
            self.logging.info("Synchronization of %s blocked: %s", tenant, e)
            return SyncResult(status="blocked", remaining=-1, error=str(e))
        except VectorMemoryError as e:
            self.logging.error("Synchronization of %s failed in state %s: %s", tenant, self.state.value, e.describe())
            return SyncResult(status="error", remaining=-1, error=str(e))
        except Exception as e:
            self.logging.error("Synchronization of %s failed in state %s: %s", tenant, self.state.value, e, exc_info=True)
            return SyncResult(status="error", remaining=-1, error=str(e))
        finally:
            self.state = SyncState.IDLE

    async def _synchronize_tenant(self, tenant: TenantKey, batch_size: int) -> SyncResult:
        # the host may have switched chats while this call waited for the guard
        if self.host.get_chat_id() != tenant.source_id:
            self.logging.warning("Chat changed from %s while waiting to synchronize, skipping.", tenant.source_id)
            return SyncResult(status="chat_changed", remaining=-1)
        items = self.build_items()

        backend = self.registry.get_active()
        collection_id = encode_collection_id(tenant)

        self.state = SyncState.DIFFING
        stored = await backend.get_saved_hashes(tenant)
        live = {item.hash for item in items}
        new_items = [item for item in items if item.hash not in stored]
        deleted_hashes = sorted(stored - live)
        self.logging.debug(
            "Diff for %s: %d live, %d stored, %d new, %d deleted",
            collection_id, len(live), len(stored), len(new_items), len(deleted_hashes),
        )

        self.state = SyncState.CHUNKING
        batch = new_items[:batch_size]
        chunks: list[Chunk] = []
        for item in batch:
            chunks.extend(split_item(item, self.settings.chunk_size))

        self.state = SyncState.INSERTING
        if chunks:
            await backend.insert_items(tenant, chunks)
            self.logging.info("Vectorized %d items (%d chunks) into %s", len(batch), len(chunks), collection_id)

        self.state = SyncState.DELETING
        deleted = 0
        if deleted_hashes:
            try:
                await backend.delete_items(tenant, deleted_hashes)
                deleted = len(deleted_hashes)
                self.logging.info("Deleted %d stale hashes from %s", deleted, collection_id)
            except VectorMemoryError as e:
                self.logging.error("Deleting stale hashes from %s failed: %s", collection_id, e.describe())

        return SyncResult(
            status="ok",
            remaining=len(new_items) - batch_size,
            messages_processed=len(batch),
            chunks_created=len(chunks),
            deleted=deleted,
        )

    async def vectorize_all(self, batch_size: int | None = None, max_iterations: int = 10000) -> VectorizeReport:
        """Calls synchronize() until the whole chat is vectorized.

        Aborts after a batch if the chat changed or a generation started.

        Returns:
            VectorizeReport: Totals and, when not completed, the reason.
        """
        chat_id = self.host.get_chat_id()
        if not chat_id:
            return VectorizeReport(completed=False, reason="no_chat")

        report = VectorizeReport(completed=False)
        while report.iterations < max_iterations:
            result = await self.synchronize(batch_size)
            report.iterations += 1
            report.messages_processed += result.messages_processed
            report.chunks_created += result.chunks_created

            if result.status != "ok":
                report.reason = result.status
                return report
            if result.remaining <= 0:
                report.completed = True
                self.logging.info(
                    "Vectorized chat %s: %d items, %d chunks in %d batches",
                    chat_id, report.messages_processed, report.chunks_created, report.iterations,
                )
                return report
            if self.host.get_chat_id() != chat_id:
                self.logging.warning("Chat changed from %s during vectorization, aborting.", chat_id)
                report.reason = "chat_changed"
                return report
            if self.host.is_generating():
                self.logging.info("Generation started during vectorization of %s, aborting.", chat_id)
                report.reason = "generation_started"
                return report

        report.reason = "max_iterations"
        return report

    async def purge_chat_index(self) -> bool:
        """Deletes every chunk of the current chat.

        Returns:
            bool: True if the chat index was purged.
        """
        tenant = self.get_chat_tenant()
        if tenant is None:
            return False
        try:
            await self.registry.get_active().purge(tenant)
        except VectorMemoryError as e:
            self.logging.error("Purging %s failed: %s", tenant, e.describe())
            return False
        self.logging.info("Purged vector index of %s", tenant)
        return True

"""Retrieval service.

Before a generation, queries the vector index with the most recent messages,
reranks the hits and moves the selected memories into the extension prompt
slot of the host.
"""

import random

from shared.clients.host.HostSessionInterface import EXTENSION_PROMPT_TAG, HostSessionInterface
from shared.clients.vector.VectorBackendRegistry import VectorBackendRegistry
from shared.exceptions import VectorMemoryError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.collection_id import chat_tenant, decode_collection_id, encode_collection_id
from shared.models.config import MemorySettings
from shared.models.memory import ChatMessage, RetrievalOutcome, RetrievalResult, TenantKey
from shared.models.trace import InjectionDetails, SearchTrace
from services.chat_memory.conditions import build_search_context, filter_by_conditions
from services.chat_memory.groups import (
    apply_exclusive_groups,
    apply_group_boost,
    enforce_required_groups,
    expand_summary_chunks,
)
from services.chat_memory.scoring import (
    apply_importance,
    apply_keyword_boost,
    apply_temporal_decay,
    rank_by_tiers,
)


class RetrievalService:
    """Similarity query, ranking and injection of past messages."""

    def __init__(
        self,
        helper_config: HelperConfig,
        registry: VectorBackendRegistry,
        host: HostSessionInterface,
        settings: MemorySettings,
        rng: random.Random | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self.registry = registry
        self.host = host
        self.settings = settings
        self._rng = rng or random.Random()
        self.last_trace: SearchTrace | None = None

    ##########################################
    ################ HELPERS #################
    ##########################################

    def build_query_text(self, messages: list[ChatMessage]) -> str:
        """Joins the most recent non-system messages, newest first."""
        recent = [m for m in messages if not m.is_system][-self.settings.query:]
        texts = [self.host.substitute(m.text).strip() for m in reversed(recent)]
        return "\n".join(t for t in texts if t).strip()

    def get_query_tenants(self, chat_id: str) -> list[TenantKey]:
        tenants = [chat_tenant(chat_id)]
        for collection_id in self.settings.extra_collections:
            tenant = decode_collection_id(collection_id)
            if tenant not in tenants:
                tenants.append(tenant)
        return tenants

    def _filter_threshold(self, results: list[RetrievalResult], trace: SearchTrace, stage: str) -> list[RetrievalResult]:
        kept = [r for r in results if r.score >= self.settings.score_threshold]
        trace.mark([r.hash for r in results if r.score < self.settings.score_threshold], f"below_threshold:{stage}")
        return kept

    @staticmethod
    def _source_message_ids(result: RetrievalResult) -> list[int]:
        if result.metadata.message_ids:
            return list(result.metadata.message_ids)
        if result.metadata.message_id is not None:
            return [result.metadata.message_id]
        return []

    ##########################################
    ############### RANKING ##################
    ##########################################

    def rank(self, results: list[RetrievalResult], query_text: str, chat_collection_id: str, current_index: int, trace: SearchTrace) -> list[RetrievalResult]:
        """Applies keyword and group boosts, threshold, decay and importance, then sorts, dedupes and cuts.

        After the cut, required groups missing from the selection get their
        best hit appended, and summary chunks bring their parent chunk along.

        Args:
            results (list[RetrievalResult]): Merged hits of every queried collection.
            query_text (str): The query text, used for keyword matching.
            chat_collection_id (str): Collection id of the current chat; only its hits decay.
            current_index (int): Index of the newest message in the live sequence.
            trace (SearchTrace): Receives a snapshot after every stage.

        Returns:
            list[RetrievalResult]: `insert` results in final order, plus forced group members and summary parents.
        """
        for result in results:
            apply_keyword_boost(result, query_text)
        trace.snapshot("keyword_boost", results)

        triggered = apply_group_boost(results, query_text, self.settings.group_boost)
        if triggered:
            trace.record("group_boost", "Boosted triggered groups", groups=sorted(triggered), multiplier=self.settings.group_boost)
        trace.snapshot("group_boost", results)
        candidates = list(results)

        results = self._filter_threshold(results, trace, "initial")
        trace.snapshot("threshold", results)

        decay = self.settings.temporal_decay
        for result in results:
            message_id = result.metadata.message_id
            if decay.enabled and result.collection_id == chat_collection_id and result.metadata.source == "chat" and message_id is not None:
                age = max(0, current_index - message_id)
                result.score = apply_temporal_decay(result.score, age, decay)
                result.message_age = age
                result.decay_applied = True
            if result.metadata.importance != 100:
                result.score = apply_importance(result.score, result.metadata.importance)
                result.importance_applied = True
        trace.snapshot("decay_importance", results)

        results = self._filter_threshold(results, trace, "adjusted")

        if self.settings.importance_tiers:
            ordered = rank_by_tiers(results)
        else:
            ordered = sorted(results, key=lambda r: r.score, reverse=True)

        seen: set[int] = set()
        unique: list[RetrievalResult] = []
        for result in ordered:
            if result.hash in seen:
                trace.mark([result.hash], "duplicate")
                continue
            seen.add(result.hash)
            unique.append(result)

        unique, excluded = apply_exclusive_groups(unique)
        trace.mark(excluded, "group_excluded")
        trace.mark([r.hash for r in unique[self.settings.insert:]], "over_limit")
        ranked = unique[:self.settings.insert]

        forced = enforce_required_groups(ranked, [c for c in candidates if c.hash not in excluded])
        if forced:
            self.logging.debug("Forced %d required group member(s) into the results.", len(forced))
            trace.mark([r.hash for r in forced], "group_required")
            ranked = ranked + forced

        ranked, parents = expand_summary_chunks(ranked, candidates)
        trace.mark(parents, "summary_parent")
        trace.snapshot("ranked", ranked)
        return ranked

    ##########################################
    ############### PIPELINE #################
    ##########################################

    async def rearrange_chat(self, messages: list[ChatMessage] | None = None, generation_type: str = "normal") -> RetrievalOutcome:
        """Retrieves memories for the next generation and injects them.

        Never raises: backend and embedding failures are logged and result in
        no injection.

        Args:
            messages (list[ChatMessage] | None): Live sequence, defaults to the host's.
            generation_type (str): "quiet" generations are skipped.

        Returns:
            RetrievalOutcome: Injected text, selected results, and the message
                list with moved messages removed.
        """
        messages = list(messages) if messages is not None else self.host.get_messages()
        outcome = RetrievalOutcome(messages=messages)

        if generation_type == "quiet":
            self.logging.debug("Skipping retrieval for quiet generation.")
            return outcome

        self.host.clear_extension_prompt(EXTENSION_PROMPT_TAG)

        chat_id = self.host.get_chat_id()
        if not self.settings.enabled or not chat_id:
            return outcome

        if len(messages) < self.settings.protect:
            self.logging.debug("Not enough messages for retrieval (%d < %d).", len(messages), self.settings.protect)
            return outcome

        query_text = self.build_query_text(messages)
        if not query_text:
            return outcome

        trace = SearchTrace(query=query_text)
        self.last_trace = trace
        try:
            return await self._retrieve_and_inject(messages, chat_id, query_text, generation_type, trace, outcome)
        except VectorMemoryError as e:
            self.logging.error("Retrieval for chat %s failed: %s", chat_id, e.describe())
            trace.record("error", str(e), type=type(e).__name__)
        except Exception as e:
            self.logging.error("Retrieval for chat %s failed: %s", chat_id, e, exc_info=True)
            trace.record("error", str(e), type=type(e).__name__)
        finally:
            trace.finish()
        return RetrievalOutcome(messages=messages)

    async def _retrieve_and_inject(self, messages: list[ChatMessage], chat_id: str, query_text: str, generation_type: str, trace: SearchTrace, outcome: RetrievalOutcome) -> RetrievalOutcome:
        backend = self.registry.get_active()
        tenants = self.get_query_tenants(chat_id)
        chat_collection_id = encode_collection_id(tenants[0])
        trace.collections = [encode_collection_id(t) for t in tenants]

        by_collection = await backend.query_many(tenants, query_text, top_k=self.settings.insert, score_threshold=0.0)
        merged = [hit for collection_id in trace.collections for hit in by_collection.get(collection_id, [])]
        trace.snapshot("retrieved", merged)
        trace.stats["retrieved"] = len(merged)

        current_index = messages[-1].index if messages else 0
        ranked = self.rank(merged, query_text, chat_collection_id, current_index, trace)

        context = build_search_context(
            messages,
            active_hashes=[r.hash for r in ranked],
            generation_type=generation_type,
            is_group_chat=self.host.is_group_chat(),
        )
        active = filter_by_conditions(ranked, context, self.logging, self._rng)
        active_hashes = {r.hash for r in active}
        trace.mark([r.hash for r in ranked if r.hash not in active_hashes], "conditions_not_met")
        trace.snapshot("conditions", active)

        protected = {m.index for m in messages[-self.settings.protect:]} if self.settings.protect > 0 else set()
        selected = []
        for result in active:
            if result.collection_id == chat_collection_id and protected.intersection(self._source_message_ids(result)):
                trace.mark([result.hash], "protected")
                continue
            selected.append(result)
        trace.snapshot("protected", selected)

        blocks, removed = self._build_injection(selected, messages, chat_collection_id)
        trace.mark([r.hash for r in selected], "injected")
        trace.stats["injected"] = len(selected)
        if not blocks:
            return outcome

        text = self.settings.template.replace("{{text}}", "\n\n".join(blocks))
        self.host.set_extension_prompt(EXTENSION_PROMPT_TAG, text, self.settings.position, self.settings.depth)
        trace.injection = InjectionDetails(
            tag=EXTENSION_PROMPT_TAG,
            position=self.settings.position,
            depth=self.settings.depth,
            injected_count=len(blocks),
            removed_indices=sorted(removed),
            text_length=len(text),
        )
        self.logging.info("Injected %d memories into chat %s", len(blocks), chat_id)
        return RetrievalOutcome(
            injected_text=text,
            results=selected,
            messages=[m for m in messages if m.index not in removed],
            removed_indices=sorted(removed),
        )

    def _build_injection(self, selected: list[RetrievalResult], messages: list[ChatMessage], chat_collection_id: str) -> tuple[list[str], set[int]]:
        """Collects the texts to inject, in relevance order.

        Chat hits whose source messages are still live move those messages
        out of the sequence; every other hit is injected from its stored text.

        Returns:
            tuple[list[str], set[int]]: Text blocks and the indices of moved messages.
        """
        live = {m.index: m for m in messages}
        blocks: list[str] = []
        removed: set[int] = set()
        for result in selected:
            ids = self._source_message_ids(result)
            if result.collection_id == chat_collection_id and ids and all(i in live for i in ids):
                fresh = [i for i in ids if i not in removed]
                if not fresh:
                    continue
                removed.update(fresh)
                blocks.append("\n".join(self.host.substitute(live[i].text) for i in fresh))
            elif result.text:
                blocks.append(result.text)
        return blocks, removed

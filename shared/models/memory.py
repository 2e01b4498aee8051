"""Pydantic models for chat memory data.

Hierarchy:
  TenantKey: (type, sourceId), one independently purgeable collection.
  ChatMessage: a message as supplied by the host session.
  Item: a unit of source content with its stable hash.
  Chunk: a fragment of an Item's text, the unit of insert/delete/query.
  TenantMetadata: tenant tag attached to every chunk in shared stores.
  RetrievalResult: one matched chunk flowing through the ranking pipeline.

All models serialise with camelCase aliases (sourceId, messageId, ...) because
that is the JSON wire format of every backend.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CollectionType(str, Enum):
    """Kinds of tenants that can be stored."""

    CHAT = "chat"
    LOREBOOK = "lorebook"
    CHARACTER = "character"
    DOCUMENT = "document"
    WIKI = "wiki"


class WireModel(BaseModel):
    """Base model using camelCase aliases on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class TenantKey(WireModel):
    """Identifies one logical collection. Hashable, usable as a dict key."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: CollectionType
    source_id: str

    def __str__(self) -> str:
        return f"{self.type.value}:{self.source_id}"


class ChatMessage(BaseModel):
    """A message of the host's live sequence.

    Attributes:
        text:      Raw message text.
        is_system: System messages are never vectorized.
        is_user:   Whether the user wrote the message.
        name:      Speaker name, if known.
        index:     Stable position in the host sequence.
    """

    text: str
    is_system: bool = False
    is_user: bool = False
    name: str | None = None
    index: int = 0


class Item(BaseModel):
    """A unit of source content. Immutable once hashed; an edit is a new Item."""

    model_config = ConfigDict(frozen=True)

    text: str
    hash: int
    index: int
    is_user: bool = False
    metadata: dict[str, Any] = {}


class KeywordWeight(WireModel):
    """A keyword with an explicit boost weight."""

    text: str
    weight: float = 1.5


class ConditionRule(WireModel):
    """A single activation rule, e.g. {"type": "keyword", "settings": {"values": ["dragon"]}}."""

    type: str
    negate: bool = False
    value: Any = None
    settings: dict[str, Any] = {}


class ChunkConditions(WireModel):
    """Activation conditions attached to a chunk."""

    enabled: bool = False
    logic: Literal["AND", "OR"] = "AND"
    rules: list[ConditionRule] = []


class ChunkGroup(WireModel):
    """Group membership of a chunk.

    Keywords found in the query boost every member of the group. An exclusive
    group lets only its best member through, a required group always has at
    least one member in the results.
    """

    name: str
    keywords: list[str] = Field(default=[], validation_alias=AliasChoices("keywords", "groupKeywords"))
    exclusive: bool = False
    required: bool = Field(default=False, validation_alias=AliasChoices("required", "requiresGroupMember", "mandatory"))

    @model_validator(mode="before")
    @classmethod
    def _from_name(cls, value: Any) -> Any:
        # older chunks carry only the group name
        if isinstance(value, str):
            return {"name": value}
        return value


class ChunkMetadata(WireModel):
    """Metadata stored alongside each chunk.

    Unknown fields sent by a backend are preserved.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    source: str = "chat"
    message_id: int | None = None
    chunk_index: int = 0
    total_chunks: int = 1
    timestamp: float | None = None

    # importance weighting
    importance: int = Field(default=100, ge=0, le=200)

    # keyword boosting
    keywords: list[str | KeywordWeight] = []
    custom_weights: dict[str, float] = {}
    disabled_keywords: list[str] = []

    # grouping, activation and dual-vector linking
    chunk_group: ChunkGroup | None = None
    conditions: ChunkConditions | None = None
    summary: str | None = None
    is_summary_chunk: bool = False
    parent_hash: int | None = None

    # provenance of grouped items
    strategy: str | None = None
    message_ids: list[int] = []
    message_hashes: list[int] = []
    original_message_hash: int | None = None


class Chunk(BaseModel):
    """A stored, embedded fragment of source text."""

    text: str
    hash: int
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)


class TenantMetadata(WireModel):
    """Tenant tag used purely for query-time isolation in shared stores."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: str
    source_id: str
    embedding_source: str


class RetrievalResult(BaseModel):
    """A matched chunk. `score` is adjusted in place; `original_score` keeps the similarity."""

    hash: int
    text: str
    score: float
    original_score: float
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)
    collection_id: str | None = None

    # observability
    message_age: int | None = None
    decay_applied: bool = False
    importance_applied: bool = False
    keyword_boost: float = 1.0
    matched_keywords: list[str] = []

    @classmethod
    def from_wire(cls, raw: dict, collection_id: str | None = None) -> "RetrievalResult":
        """Builds a result from a backend hit {"hash", "text", "score", "metadata"}."""
        score = float(raw.get("score", 0.0))
        metadata = ChunkMetadata.model_validate(raw.get("metadata") or {})
        return cls(
            hash=int(raw["hash"]),
            text=raw.get("text") or "",
            score=score,
            original_score=score,
            metadata=metadata,
            collection_id=collection_id,
        )


class SyncResult(BaseModel):
    """Outcome of one synchronization call.

    remaining > 0 asks the caller to re-invoke, <= 0 means done, -1 means
    the call did nothing (see status).
    """

    status: Literal["ok", "disabled", "blocked", "no_chat", "chat_changed", "error"] = "ok"
    remaining: int = 0
    messages_processed: int = 0
    chunks_created: int = 0
    deleted: int = 0
    error: str | None = None


class VectorizeReport(BaseModel):
    """Outcome of a full "vectorize everything" loop."""

    completed: bool
    iterations: int = 0
    messages_processed: int = 0
    chunks_created: int = 0
    reason: str | None = None


class RetrievalOutcome(BaseModel):
    """What the retrieval pipeline hands back to the host."""

    injected_text: str = ""
    results: list[RetrievalResult] = []
    messages: list[ChatMessage] = []
    removed_indices: list[int] = []

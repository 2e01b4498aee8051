"""Pydantic models for configuration.

EnvConfig: a single environment variable required by a client.
BackendConfig: connection parameters of a vector backend.
TemporalDecayConfig: score attenuation by message age.
MemorySettings: every option that gates synchronization and retrieval.
"""

from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator

from shared.exceptions import ConfigError
from shared.helper.HelperConfig import HelperConfig


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required for a env setting.

    Attributes:
        env_key (str): The key/name of the environment variable to read.
        val_type (str): The expected type of the value ("string", "number", "bool", "list").
        default: Optional default value. None means the variable is required.
    """

    env_key: str
    val_type: str
    default: str | int | float | bool | list | None = None


class BackendConfig(BaseModel):
    """Connection parameters of a vector backend.

    Two configs compare equal when every field is equal; the registry and the
    backends rely on this to make re-initialization with the same config a no-op.

    Attributes:
        base_url:   Root URL of the vector store server (e.g. "http://localhost:6333").
        api_key:    Optional API key sent with every request.
        collection: Shared physical collection name (shared-store backends only).
        timeout:    Request timeout in seconds.
    """

    model_config = {"frozen": True}

    base_url: str
    api_key: str = ""
    collection: str = "vh_main"
    timeout: float = 30.0

    def validate_connection(self, require_collection: bool = False) -> None:
        """Validates the connection parameters.

        Raises:
            ConfigError: If the URL is not http(s), the timeout is not positive,
                or a required collection name is empty.
        """
        parsed = urlparse(self.base_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(f"Invalid backend base URL: '{self.base_url}'.", operation="initialize")
        if self.timeout <= 0:
            raise ConfigError(f"Backend timeout must be positive, got {self.timeout}.", operation="initialize")
        if require_collection and not self.collection.strip():
            raise ConfigError("Shared-store backends require a collection name.", operation="initialize")

    @classmethod
    def from_helper_config(cls, helper_config: HelperConfig, engine: str) -> "BackendConfig":
        """Reads VECTOR_<ENGINE>_BASE_URL, _API_KEY, _COLLECTION and _TIMEOUT."""
        prefix = f"VECTOR_{engine.upper()}"
        return cls(
            base_url=helper_config.get_string_val(f"{prefix}_BASE_URL"),
            api_key=helper_config.get_string_val(f"{prefix}_API_KEY", default=""),
            collection=helper_config.get_string_val(f"{prefix}_COLLECTION", default="vh_main"),
            timeout=float(helper_config.get_number_val(f"{prefix}_TIMEOUT", default=30.0)),
        )


class TemporalDecayConfig(BaseModel):
    """Temporal decay options. Disabled by default."""

    enabled: bool = False
    mode: Literal["exponential", "linear"] = "exponential"
    half_life: float = Field(default=50.0, gt=0)
    linear_rate: float = Field(default=0.01, gt=0, le=1)
    min_relevance: float = Field(default=0.0, ge=0, le=1)


class MemorySettings(BaseModel):
    """All options of the synchronization engine and the retrieval pipeline.

    Attributes:
        enabled:            Gates all synchronization and retrieval.
        chunk_size:         Max characters per chunk, 0 disables splitting.
        score_threshold:    Minimum similarity kept by retrieval.
        insert:             How many results to retrieve and inject.
        query:              How many recent messages build the query text.
        protect:            Tail window of messages never evicted into memory.
        batch_size:         Items vectorized per synchronization call.
        chunking_strategy:  per_message, conversation_turns or message_batch.
        strategy_batch_size: Messages per group for message_batch.
        template:           Injection template, "{{text}}" is replaced.
        position / depth:   Extension prompt placement forwarded to the host.
        importance_tiers:   Rank by importance tier before score.
        group_boost:        Score multiplier for members of a group whose keywords are in the query.
        extra_collections:  Additional collection ids queried with the chat.
        sync_timeout:       Seconds to wait for the sync guard.
        sync_poll_interval: Seconds between guard polls.
        temporal_decay:     Decay options.
    """

    enabled: bool = True
    chunk_size: int = Field(default=0, ge=0)
    score_threshold: float = Field(default=0.25, ge=0, le=1)
    insert: int = Field(default=3, ge=1)
    query: int = Field(default=2, ge=1)
    protect: int = Field(default=5, ge=0)
    batch_size: int = Field(default=5, ge=1)
    chunking_strategy: Literal["per_message", "conversation_turns", "message_batch"] = "per_message"
    strategy_batch_size: int = Field(default=4, ge=1)
    template: str = "Past events:\n{{text}}"
    position: int = 0
    depth: int = 2
    importance_tiers: bool = False
    group_boost: float = Field(default=1.3, ge=1)
    extra_collections: list[str] = []
    sync_timeout: float = Field(default=1.0, gt=0)
    sync_poll_interval: float = Field(default=0.1, gt=0)
    temporal_decay: TemporalDecayConfig = Field(default_factory=TemporalDecayConfig)

    @field_validator("template")
    @classmethod
    def _template_has_placeholder(cls, value: str) -> str:
        if "{{text}}" not in value:
            raise ValueError("template must contain the {{text}} placeholder")
        return value

    @classmethod
    def from_helper_config(cls, helper_config: HelperConfig) -> "MemorySettings":
        """Builds the settings from MEMORY_* environment variables.

        Raises:
            ConfigError: If any value is missing, unparsable or out of range.
        """
        h = helper_config
        try:
            return cls(
                enabled=h.get_bool_val("MEMORY_ENABLED", default=True),
                chunk_size=h.get_number_val("MEMORY_CHUNK_SIZE", default=0),
                score_threshold=h.get_number_val("MEMORY_SCORE_THRESHOLD", default=0.25),
                insert=h.get_number_val("MEMORY_INSERT", default=3),
                query=h.get_number_val("MEMORY_QUERY", default=2),
                protect=h.get_number_val("MEMORY_PROTECT", default=5),
                batch_size=h.get_number_val("MEMORY_BATCH_SIZE", default=5),
                chunking_strategy=h.get_string_val("MEMORY_CHUNKING_STRATEGY", default="per_message"),
                strategy_batch_size=h.get_number_val("MEMORY_STRATEGY_BATCH_SIZE", default=4),
                template=h.get_string_val("MEMORY_TEMPLATE", default="Past events:\n{{text}}"),
                position=h.get_number_val("MEMORY_POSITION", default=0),
                depth=h.get_number_val("MEMORY_DEPTH", default=2),
                importance_tiers=h.get_bool_val("MEMORY_IMPORTANCE_TIERS", default=False),
                group_boost=h.get_number_val("MEMORY_GROUP_BOOST", default=1.3),
                extra_collections=h.get_list_val("MEMORY_EXTRA_COLLECTIONS", default=[]),
                sync_timeout=h.get_number_val("MEMORY_SYNC_TIMEOUT", default=1.0),
                sync_poll_interval=h.get_number_val("MEMORY_SYNC_POLL_INTERVAL", default=0.1),
                temporal_decay=TemporalDecayConfig(
                    enabled=h.get_bool_val("MEMORY_DECAY_ENABLED", default=False),
                    mode=h.get_string_val("MEMORY_DECAY_MODE", default="exponential"),
                    half_life=h.get_number_val("MEMORY_DECAY_HALF_LIFE", default=50),
                    linear_rate=h.get_number_val("MEMORY_DECAY_LINEAR_RATE", default=0.01),
                    min_relevance=h.get_number_val("MEMORY_DECAY_MIN_RELEVANCE", default=0.0),
                ),
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid memory settings: {e}")

"""Side-channel trace of one retrieval run, kept for inspection."""

import time
from typing import Any

from pydantic import BaseModel, Field


class StageSnapshot(BaseModel):
    """Results left after one pipeline stage."""

    stage: str
    count: int
    hashes: list[int] = []
    scores: list[float] = []


class TraceEntry(BaseModel):
    stage: str
    message: str
    data: dict[str, Any] = {}


class InjectionDetails(BaseModel):
    tag: str
    position: int
    depth: int
    injected_count: int = 0
    removed_indices: list[int] = []
    text_length: int = 0


class SearchTrace(BaseModel):
    """What happened to every chunk during one retrieval run.

    Attributes:
        query:        The query text sent to the backend.
        collections:  Collection ids that were queried.
        stages:       Snapshot after each stage, in pipeline order.
        entries:      Free-form log of notable decisions.
        chunk_fates:  Final fate per hash ("injected", "below_threshold", "duplicate", ...).
        stats:        Counters, e.g. {"retrieved": 6, "injected": 3}.
        injection:    Where and how much text was injected, None if nothing was.
    """

    query: str = ""
    collections: list[str] = []
    started_at: float = Field(default_factory=time.time)
    duration_ms: float = 0.0
    stages: list[StageSnapshot] = []
    entries: list[TraceEntry] = []
    chunk_fates: dict[int, str] = {}
    stats: dict[str, int] = {}
    injection: InjectionDetails | None = None

    def snapshot(self, stage: str, results: list) -> None:
        self.stages.append(StageSnapshot(
            stage=stage,
            count=len(results),
            hashes=[r.hash for r in results],
            scores=[round(r.score, 6) for r in results],
        ))

    def record(self, stage: str, message: str, **data: Any) -> None:
        self.entries.append(TraceEntry(stage=stage, message=message, data=data))

    def mark(self, hashes: list[int], fate: str) -> None:
        for h in hashes:
            self.chunk_fates[h] = fate

    def finish(self) -> None:
        self.duration_ms = (time.time() - self.started_at) * 1000

from pydantic import BaseModel

from shared.models.memory import RetrievalResult


class HealthResponse(BaseModel):
    status: str
    backend: str | None
    backend_healthy: bool


class RetrieveResponse(BaseModel):
    injected_text: str
    removed_indices: list[int]
    results: list[RetrievalResult]
    total: int


class PurgeResponse(BaseModel):
    chat_id: str
    purged: bool


class BackendResponse(BaseModel):
    engine: str
    active: bool

from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.dependencies.session import build_retrieval_service
from server.models.requests import RetrieveRequest
from server.models.responses import RetrieveResponse
from shared.models.trace import SearchTrace

router = APIRouter(prefix="/retrieve", tags=["retrieve"])


@router.post("")
async def retrieve_memories(
    request: Request,
    body: RetrieveRequest,
    _: None = Depends(verify_api_key),
) -> RetrieveResponse:
    """Select past messages to inject before the next generation.

    Args:
        request (Request): FastAPI request (provides the registry and the settings).
        body (RetrieveRequest): JSON body with chat_id, messages and generation_type.
        _ (None): Auth dependency result (unused).

    Returns:
        RetrieveResponse: The rendered injection text, the indices of the
            messages moved into it, and the selected results.
    """
    retrieval_service = build_retrieval_service(request, body.chat_id, body.to_messages())
    outcome = await retrieval_service.rearrange_chat(generation_type=body.generation_type)
    if retrieval_service.last_trace is not None:
        request.app.state.last_trace = retrieval_service.last_trace
    return RetrieveResponse(
        injected_text=outcome.injected_text,
        removed_indices=outcome.removed_indices,
        results=outcome.results,
        total=len(outcome.results),
    )


@router.get("/trace")
async def last_trace(
    request: Request,
    _: None = Depends(verify_api_key),
) -> SearchTrace | None:
    """Return the trace of the most recent retrieval run, if any."""
    return request.app.state.last_trace

from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.dependencies.session import build_sync_service
from server.models.requests import SyncRequest
from server.models.responses import PurgeResponse
from shared.models.memory import SyncResult, VectorizeReport

router = APIRouter(tags=["sync"])


@router.post("/sync")
async def sync_chat(
    request: Request,
    body: SyncRequest,
    _: None = Depends(verify_api_key),
) -> SyncResult:
    """Run one synchronization batch for the given chat.

    The caller re-invokes while the returned remaining count is > 0.

    Args:
        request (Request): FastAPI request (provides the registry and the sync guard).
        body (SyncRequest): JSON body with chat_id, messages and an optional batch_size.
        _ (None): Auth dependency result (unused).

    Returns:
        SyncResult: Status, remaining count and batch totals.
    """
    sync_service = build_sync_service(request, body.chat_id, body.to_messages())
    return await sync_service.synchronize(body.batch_size)


@router.post("/sync/all")
async def sync_chat_all(
    request: Request,
    body: SyncRequest,
    _: None = Depends(verify_api_key),
) -> VectorizeReport:
    """Vectorize the whole chat in consecutive batches."""
    sync_service = build_sync_service(request, body.chat_id, body.to_messages())
    return await sync_service.vectorize_all(body.batch_size)


@router.delete("/index/{chat_id}")
async def purge_chat_index(
    request: Request,
    chat_id: str,
    _: None = Depends(verify_api_key),
) -> PurgeResponse:
    """Delete every stored chunk of a chat."""
    purged = await build_sync_service(request, chat_id, []).purge_chat_index()
    return PurgeResponse(chat_id=chat_id, purged=purged)

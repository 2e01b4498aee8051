from fastapi import APIRouter, Depends, HTTPException, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import BackendRequest
from server.models.responses import BackendResponse, HealthResponse
from shared.exceptions import BackendUnavailableError, ConfigError
from shared.models.config import BackendConfig

router = APIRouter(tags=["backend"])


@router.get("/health")
async def health(request: Request) -> HealthResponse:
    """Report whether the active vector backend answers its health check."""
    registry = request.app.state.registry
    try:
        healthy = await registry.get_active().health_check()
    except BackendUnavailableError:
        healthy = False
    return HealthResponse(
        status="ok" if healthy else "degraded",
        backend=registry.get_active_engine(),
        backend_healthy=healthy,
    )


@router.put("/backend")
async def switch_backend(
    request: Request,
    body: BackendRequest,
    _: None = Depends(verify_api_key),
) -> BackendResponse:
    """Switch the active vector backend.

    The previous backend stays active if the new one is misconfigured (400)
    or fails its health check (503).
    """
    config = BackendConfig(
        base_url=body.base_url,
        api_key=body.api_key,
        collection=body.collection,
        timeout=body.timeout,
    )
    try:
        await request.app.state.registry.activate(body.engine, config)
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except BackendUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return BackendResponse(engine=request.app.state.registry.get_active_engine(), active=True)

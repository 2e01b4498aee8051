"""FastAPI application entry point for the chat memory bridge."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.vector.VectorBackendRegistry import VectorBackendRegistry
from shared.models.config import MemorySettings
from services.chat_memory.SyncGuard import SyncGuard
from server.routers.BackendRouter import router as backend_router
from server.routers.RetrieveRouter import router as retrieve_router
from server.routers.SyncRouter import router as sync_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


def create_app(environ: dict[str, str] | None = None, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    """Build the API application.

    Args:
        environ (dict[str, str] | None): Configuration source, defaults to os.environ.
        transport (httpx.AsyncBaseTransport | None): Transport for every outgoing
            HTTP client, e.g. httpx.MockTransport in tests.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # when the app starts
        app.state.logging = logging
        app.state.helper_config = HelperConfig(logger=logging, environ=environ)
        settings = MemorySettings.from_helper_config(app.state.helper_config)

        embed_client = EmbedClientManager(helper_config=app.state.helper_config).get_client()
        await embed_client.boot(transport=transport)

        registry = VectorBackendRegistry(app.state.helper_config, embed_client, transport=transport)
        # config and health failures stop the startup
        await registry.activate()

        app.state.settings = settings
        app.state.embed_client = embed_client
        app.state.registry = registry
        # every request carries its own chat, only the guard and the last trace are shared
        app.state.sync_guard = SyncGuard(
            app.state.helper_config,
            timeout=settings.sync_timeout,
            poll_interval=settings.sync_poll_interval,
        )
        app.state.last_trace = None
        logging.info("Chat memory API ready, vector backend: %s", registry.get_active_engine(), color="green")

        # while the app is running...
        yield

        # when the app shuts down, close all client connections
        logging.info("Shutting down, closing all clients...")
        await registry.teardown()
        await embed_client.close()
        logging.info("All clients closed.", color="cyan")

    app = FastAPI(
        title="chat_memory_bridge",
        description=(
            "Incremental vector memory for chat sessions. "
            "POST /sync keeps the vector index of a chat up to date, "
            "POST /retrieve selects past messages to inject before a generation."
        ),
        version=app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(backend_router)
    app.include_router(sync_router)
    app.include_router(retrieve_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting chat memory API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)

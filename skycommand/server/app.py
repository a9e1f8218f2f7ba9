"""
FastAPI application for the SkyCommand ATC server.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from skycommand import __version__
from skycommand.atc.gateway import ModelGateway
from skycommand.atc.logsink import LogSink, create_log_sink
from skycommand.atc.session import ATCSession
from skycommand.config import get_config
from skycommand.server.schemas import HealthResponse

logger = logging.getLogger(__name__)

# Shared between all sessions of this process
_gateway: ModelGateway | None = None
_log_sink: LogSink | None = None
_sessions: dict[str, ATCSession] = {}


def get_gateway() -> ModelGateway:
    """Get the global model gateway."""
    global _gateway
    if _gateway is None:
        _gateway = ModelGateway(get_config().model)
    return _gateway


def get_log_sink() -> LogSink:
    """Get the global flight log sink."""
    global _log_sink
    if _log_sink is None:
        _log_sink = create_log_sink(get_config().log_sink)
    return _log_sink


def register_session(session: ATCSession) -> None:
    _sessions[session.session_id] = session


def unregister_session(session: ATCSession) -> None:
    _sessions.pop(session.session_id, None)


def active_sessions() -> int:
    return len(_sessions)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global _gateway, _log_sink

    logger.info("SkyCommand ATC %s starting", __version__)
    yield

    # Shutdown
    for session in list(_sessions.values()):
        await session.close()
    _sessions.clear()

    if _gateway is not None:
        await _gateway.close()
        _gateway = None
    if _log_sink is not None:
        await _log_sink.close()
        _log_sink = None


def create_app(cors_origins: list[str] | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        cors_origins: CORS allowed origins (default: from config)

    Returns:
        FastAPI application
    """
    config = get_config()

    app = FastAPI(
        title="SkyCommand ATC API",
        description="AI air traffic controller for screen-shared flight sims",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    origins = cors_origins or config.server.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    from skycommand.server.routes_routing import router as routing_router
    from skycommand.server.websocket import router as ws_router

    app.include_router(routing_router, tags=["Routing"])
    app.include_router(ws_router, tags=["WebSocket"])

    # Health check endpoint
    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="ok", version=__version__, active_sessions=active_sessions())

    return app


def run_server(
    host: str | None = None,
    port: int | None = None,
    reload: bool = False,
) -> None:
    """
    Run the server.

    Args:
        host: Host to bind to
        port: Port to bind to
        reload: Enable auto-reload (development)
    """
    import uvicorn

    config = get_config()

    uvicorn.run(
        "skycommand.server.app:create_app",
        factory=True,
        host=host or config.server.host,
        port=port or config.server.port,
        reload=reload,
    )

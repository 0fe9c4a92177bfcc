"""
Relay Server

Design Decision: Server Framework
=================================

Options Considered:
1. FastAPI - async, WebSocket endpoints, same app serves health/stats
2. websockets.serve - WebSocket only, health check needs a second server
3. Raw asyncio TCP - custom framing, no browser peers

Decision: FastAPI on uvicorn
- /ws carries the protocol, /ping and /stats are plain HTTP on the same port
- Browsers and Python peers connect the same way

Endpoints:
- GET /       basic info
- GET /ping   liveness ("pong")
- GET /stats  room, connection and relay counters
- WS  /ws     protocol frames (binary messages only)

Each WebSocket gets a connection id, an outbox, and a writer task that
drains the outbox to the socket. The receive loop feeds frames to the
router; when it ends the connection is removed from every room.
"""

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.responses import PlainTextResponse
from starlette.websockets import WebSocketState

from .. import __version__
from ..config import Config
from ..relay import ConnectionManager, PeerOutbox, RelayRouter, RoomRegistry

logger = logging.getLogger(__name__)

# Close code sent to a peer whose outbox overflowed
CLOSE_TRY_AGAIN_LATER = 1013


def new_connection_id() -> str:
    return secrets.token_urlsafe(9)


def create_app(config: Optional[Config] = None) -> FastAPI:
    """
    Create the relay application.

    Args:
        config: relay settings (uses defaults if not provided)

    Returns:
        FastAPI application; the relay objects are on app.state
    """
    config = config or Config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        logger.info("Relay server starting...")
        yield
        logger.info(
            f"Relay server stopping. Relayed {app.state.router.frames_forwarded} frames, "
            f"{app.state.router.bytes_relayed:,} bytes"
        )

    app = FastAPI(
        title="roomdrop relay",
        description="Forwards file transfer frames between members of a room",
        version=__version__,
        lifespan=lifespan,
    )

    connections = ConnectionManager(RoomRegistry())
    router = RelayRouter(connections, max_frame_bytes=config.max_frame_bytes)
    app.state.config = config
    app.state.connections = connections
    app.state.router = router

    # === Endpoints ===

    @app.get("/", tags=["General"])
    async def root():
        """API root - basic info."""
        return {
            "name": "roomdrop relay",
            "version": __version__,
            "status": "running",
        }

    @app.get("/ping", response_class=PlainTextResponse, tags=["General"])
    async def ping():
        """Liveness check."""
        return "pong"

    @app.get("/stats", tags=["Relay"])
    async def get_stats():
        """Get relay statistics."""
        return {
            **connections.get_stats(),
            **router.get_stats(),
        }

    @app.websocket("/ws")
    async def relay_socket(websocket: WebSocket):
        await websocket.accept()
        connection_id = new_connection_id()
        outbox = PeerOutbox(connection_id, max_pending=config.max_pending_frames)
        connections.connect(connection_id, outbox)
        writer = asyncio.create_task(_pump(websocket, outbox))

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                frame = message.get("bytes")
                if frame is None:
                    # text frames are not part of the protocol
                    continue
                await router.route(connection_id, frame)
        except Exception as e:
            logger.error(f"Error handling connection {connection_id}: {e}", exc_info=True)
        finally:
            await connections.disconnect(connection_id)
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass

    return app


async def _pump(websocket: WebSocket, outbox: PeerOutbox):
    """Write queued frames to the socket until the outbox closes."""
    try:
        while True:
            frame = await outbox.get()
            if frame is None:
                break
            await websocket.send_bytes(frame)
    except Exception as e:
        logger.warning(f"Send to {outbox.connection_id} failed: {e}")
        outbox.close()

    if outbox.overflowed and websocket.client_state == WebSocketState.CONNECTED:
        try:
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
        except Exception as e:
            logger.debug(f"Closing {outbox.connection_id} after overflow failed: {e}")


async def run_relay_server(config: Optional[Config] = None):
    """
    Run the relay server.

    Args:
        config: relay settings (host, port, limits)
    """
    import uvicorn

    config = config or Config()
    app = create_app(config)

    server_config = uvicorn.Config(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        ws_max_size=config.max_frame_bytes,
    )
    server = uvicorn.Server(server_config)
    await server.serve()

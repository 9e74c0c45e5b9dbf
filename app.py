from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from datetime import datetime
import asyncio
import json
import os

from backend import RedisBackend, redis_backend
from constants import APP_ENV, JWT_ALGORITHM, JWT_SECRET, STATS_INTERVAL_SECONDS
from logging_config import get_logger, setup_logging
from realtime_core.auth import JWTTokenVerifier, extract_bearer
from realtime_core.errors import AuthError
from realtime_core.hub import ChatHub
from realtime_core.transports import TRANSPORTS, TransportKind
from routers.messages import messages_router

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

# Close code for rejected credentials (policy violation)
WS_POLICY_VIOLATION = 1008


async def log_stats(hub: ChatHub, interval: int):
    """Periodically log registry statistics."""
    while True:
        await asyncio.sleep(interval)
        stats = hub.stats()
        logger.info(
            f"Realtime stats: connections={stats['connections']}, "
            f"users={stats['authenticated_users']}, conversations={stats['active_conversations']}"
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = app.state.store
    if isinstance(store, RedisBackend):
        await store.ping()
    stats_task = asyncio.create_task(log_stats(app.state.hub, STATS_INTERVAL_SECONDS))
    logger.info("Realtime server is ready")
    try:
        yield
    finally:
        stats_task.cancel()
        try:
            await stats_task
        except asyncio.CancelledError:
            pass
        if isinstance(store, RedisBackend):
            await store.close()


async def serve_connection(websocket: WebSocket, kind: TransportKind, token: str = None):
    """Run one live connection until the client goes away, then evict it."""
    hub: ChatHub = websocket.app.state.hub
    transport = TRANSPORTS[kind](websocket)

    await websocket.accept()
    connection_id = await hub.connect(transport)
    logger.info(f"WebSocket connection accepted: {connection_id} ({kind.value})")

    try:
        credential = token or extract_bearer(websocket.headers.get("authorization"))
        if credential:
            error = await hub.dispatch(connection_id, "authenticate", credential)
            if isinstance(error, AuthError):
                await transport.close(code=WS_POLICY_VIOLATION, reason=error.message)
                return

        message_count = 0
        while True:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected normally for connection {connection_id}")
                break
            message_count += 1
            logger.debug(f"Received frame #{message_count} from connection {connection_id}")

            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                logger.debug(f"Ignoring non-JSON frame from connection {connection_id}")
                continue

            operation, payload = transport.decode(frame)
            if operation is None:
                logger.debug(f"Ignoring unknown frame from connection {connection_id}: {frame}")
                continue

            error = await hub.dispatch(connection_id, operation, payload)
            # A failed re-authentication keeps the connection bound to its user
            if (
                operation == "authenticate"
                and isinstance(error, AuthError)
                and hub.registry.resolve_user(connection_id) is None
            ):
                await transport.close(code=WS_POLICY_VIOLATION, reason=error.message)
                break
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        await hub.disconnect(connection_id)
        await transport.close()


def create_app(store, directory, verifier) -> FastAPI:
    app = FastAPI(lifespan=lifespan)

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = store
    app.state.hub = ChatHub(store, directory, verifier)
    app.include_router(messages_router)

    @app.get("/")
    async def root():
        return {"message": "Welcome to the realtime messaging API"}

    @app.get("/health")
    async def health():
        return {
            "status": "OK",
            "timestamp": datetime.now().isoformat(),
            "realtime": "Ready",
            "environment": APP_ENV,
            **app.state.hub.stats(),
        }

    @app.websocket("/ws")
    async def event_socket(websocket: WebSocket, token: str = None):
        """Named-event channel. Query parameters:
        - token: optional bearer token to authenticate during the handshake
        """
        await serve_connection(websocket, TransportKind.EVENT, token)

    @app.websocket("/ws/raw")
    async def raw_socket(websocket: WebSocket, token: str = None):
        await serve_connection(websocket, TransportKind.RAW, token)

    logger.info("FastAPI application initialized")
    return app


app = create_app(redis_backend, redis_backend, JWTTokenVerifier(JWT_SECRET, JWT_ALGORITHM))

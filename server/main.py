"""FastAPI WebSocket server for the Uno card game."""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from errors import GameError
from game import TurnResult
from handlers import HANDLERS, ConnectionContext, announce_turn_result, send_game_state
from logging_config import connection_id_var, setup_logging
from room import Room, RoomManager
from routers.health import mark_shutting_down, router as health_router, set_health_dependencies
from services import ConnectionSupervisor

# Initialize Sentry if configured
if config.SENTRY_DSN:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.starlette import StarletteIntegration

        sentry_sdk.init(
            dsn=config.SENTRY_DSN,
            environment=config.ENVIRONMENT,
            traces_sample_rate=0.1 if config.ENVIRONMENT == "production" else 1.0,
            integrations=[
                StarletteIntegration(transaction_style="endpoint"),
                FastApiIntegration(transaction_style="endpoint"),
            ],
        )
        logging.getLogger(__name__).info("Sentry error tracking initialized")
    except ImportError:
        logging.getLogger(__name__).warning("sentry-sdk not installed, error tracking disabled")

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


room_manager = RoomManager(code_length=config.ROOM_CODE_LENGTH)


async def broadcast_game_state(room: Room, message_type: str = "game_state"):
    await send_game_state(room, supervisor, message_type)


async def publish_turn_result(room: Room, result: TurnResult):
    await announce_turn_result(room, result, broadcast_game_state=broadcast_game_state)


supervisor = ConnectionSupervisor(
    room_manager,
    broadcast_game_state=broadcast_game_state,
    publish_turn_result=publish_turn_result,
    turn_skip_seconds=config.timers.TURN_SKIP_GRACE_SECONDS,
    forfeit_seconds=config.timers.FORFEIT_GRACE_SECONDS,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    set_health_dependencies(room_manager=room_manager)
    logger.info(f"Uno server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    mark_shutting_down()
    await supervisor.shutdown()
    await _close_all_websockets()
    logger.info("Shutdown complete")


async def _close_all_websockets():
    """Close all active WebSocket connections gracefully."""
    for room in list(room_manager.rooms.values()):
        for player in room.players.values():
            if player.websocket:
                try:
                    await player.websocket.close(code=1001, reason="Server shutting down")
                except Exception as e:
                    logger.debug(f"Close failed for {player.name} in room {room.code}: {e}")
    logger.info("All WebSocket connections closed")


app = FastAPI(
    title="Uno Card Game",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health_router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    connection_id = str(uuid.uuid4())
    connection_id_var.set(connection_id)
    logger.debug(f"WebSocket connected as {connection_id}")

    ctx = ConnectionContext(websocket=websocket, connection_id=connection_id)

    # Shared dependencies passed to every handler
    handler_deps = dict(
        room_manager=room_manager,
        supervisor=supervisor,
        broadcast_game_state=broadcast_game_state,
        hand_size=config.HAND_SIZE,
    )

    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                await websocket.send_json({"type": "error", "code": "BAD_MESSAGE", "message": "Expected a JSON object"})
                continue

            handler = HANDLERS.get(data.get("type"))
            if handler is None:
                await websocket.send_json({
                    "type": "error",
                    "code": "UNKNOWN_MESSAGE",
                    "message": f"Unknown message type: {data.get('type')!r}",
                })
                continue

            try:
                await handler(data, ctx, **handler_deps)
            except GameError as e:
                logger.debug(f"Rejected {data.get('type')}: {e}")
                await websocket.send_json(e.to_message())
    except WebSocketDisconnect:
        pass
    finally:
        if ctx.current_room and ctx.player_name:
            await supervisor.handle_disconnect(ctx.current_room, ctx.player_name, connection_id)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Uno server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()

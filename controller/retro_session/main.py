"""FastAPI entry-point for the retro session controller."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Set

from fastapi import Body, FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import Settings, get_settings
from .logging_config import configure_logging
from .session_controller import SessionController
from .state import ControllerEvent
from .tasks import cancel_task

logger = logging.getLogger(__name__)

settings: Settings = get_settings()
configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
app = FastAPI(title="retro-session-controller", version="0.1.0")
controller = SessionController(settings=settings)

_background_tasks: Set[asyncio.Task[Any]] = set()


def _spawn(coro: Any, name: str) -> asyncio.Task[Any]:
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
    """Catch-all exception handler to prevent application crashes."""
    logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
    return PlainTextResponse(
        f"Internal server error: {str(exc)}",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors gracefully."""
    logger.warning("Validation error in %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup() -> None:
    # start() waits for a token; the server must come up regardless
    _spawn(controller.start(), name="session-start")
    logger.info("Application started")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    try:
        for task in list(_background_tasks):
            await cancel_task(task)
        await controller.dispose()
        logger.info("Application shutdown complete")
    except Exception as e:
        logger.exception("Error during shutdown: %s", e)


@app.get("/healthz")
async def healthcheck() -> JSONResponse:
    return JSONResponse(
        {
            "status": "ok",
            "termination": controller.state.value,
            "connection": controller.monitor.state.value,
        }
    )


@app.post("/host/message")
async def host_message(payload: dict[str, Any] | None = Body(default=None)) -> JSONResponse:
    """Cross-frame message relayed from the hosting page ({jwt} or {action})."""
    await controller.handle_host_message(payload or {})
    return JSONResponse({"status": "ok", "termination": controller.state.value})


async def _pump_events(ws: WebSocket, queue: asyncio.Queue[ControllerEvent]) -> None:
    while True:
        event = await queue.get()
        try:
            await ws.send_json(event.to_payload())
        except Exception as e:
            logger.debug("WebSocket send failed (client disconnected): %s", e)
            return


@app.websocket("/ws/ui")
async def ui_socket(ws: WebSocket) -> None:
    await ws.accept()
    queue = controller.ui.register_ui()
    await ws.send_json(
        ControllerEvent(
            type="state",
            data={"game_id": controller.identity.game_id, "loaded": controller.loaded},
            state=controller.state,
        ).to_payload()
    )
    sender = asyncio.create_task(_pump_events(ws, queue), name="ui-sender")
    try:
        while True:
            raw = await ws.receive_text()
            try:
                payload = json.loads(raw)
            except ValueError:
                logger.warning("Invalid JSON from UI: %r", raw)
                continue
            # handled off the receive loop: get_state replies arrive on this socket
            _spawn(controller.handle_ui_message(payload), name="ui-message")
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass  # Clean shutdown
    except Exception as e:
        logger.error("Unexpected error in UI websocket: %s", e)
    finally:
        await cancel_task(sender)
        controller.ui.unregister_ui(queue)
        try:
            await ws.close()
        except Exception:
            pass

"""Backend WebSocket connection with health checks and reconnects."""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlencode, urlparse

import websockets

from ..config import Settings
from ..state import REASON_CONNECTION_ERROR, REASON_CONNECTION_LOST, ConnectionState
from ..tasks import cancel_task

logger = logging.getLogger(__name__)

ExhaustionHandler = Callable[[str], Awaitable[None]]

MESSAGE_VERSION = "1"
HEALTH_CHECK = "health_status_check"
HEALTH_CHECK_RESPONSE = "health_status_check_response"


def build_message(msg_type: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    message: dict[str, Any] = {
        "msgver": MESSAGE_VERSION,
        "type": msg_type,
        "ts": datetime.now(timezone.utc).isoformat(),
        "status": 200,
    }
    if payload is not None:
        message["payload"] = payload
    return message


class ConnectionMonitor:
    """
    Owns the single backend socket for a session.

    Failures are counted only after the game has loaded; a health-check
    response resets the count. Reaching ``max_failures`` hands the session to
    ``on_exhausted`` and stops reconnecting. Otherwise an active session gets
    one reconnect attempt after a fixed delay.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        is_loaded: Callable[[], bool],
        is_active: Callable[[], bool],
        on_exhausted: Optional[ExhaustionHandler] = None,
    ) -> None:
        self.settings = settings
        self._is_loaded = is_loaded
        self._is_active = is_active
        self._on_exhausted = on_exhausted
        self._conn: Optional[Any] = None
        self._token: Optional[str] = None
        self._state = ConnectionState.CLOSED
        self._failures = 0
        self._closing = False
        self._listener_task: Optional[asyncio.Task[None]] = None
        self._health_task: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def is_down(self) -> bool:
        return self._state in {ConnectionState.CLOSED, ConnectionState.RECONNECTING}

    def resolve_ws_url(self, token: str) -> str:
        host_cfg = self.settings.hosting
        page = urlparse(host_cfg.page_url)
        server_host = None
        for candidate in (host_cfg.host_origin, host_cfg.referrer):
            if candidate:
                server_host = urlparse(candidate).netloc or None
                if server_host:
                    break
        if not server_host:
            server_host = f"{page.hostname or 'localhost'}:{self.settings.connection.default_port}"
        scheme = "wss" if page.scheme == "https" else "ws"
        query = urlencode({"token": token})
        return f"{scheme}://{server_host}{self.settings.connection.path}?{query}"

    async def connect(self, token: str) -> None:
        if not token:
            logger.error("No game token available - not connecting")
            return
        if self._state == ConnectionState.FAILED:
            logger.info("Connection already failed for this session; not reconnecting")
            return
        reconnect, self._reconnect_task = self._reconnect_task, None
        await cancel_task(reconnect)
        await self._close_socket()
        self._closing = False
        self._token = token
        self._state = ConnectionState.CONNECTING
        uri = self.resolve_ws_url(token)
        logger.info("Connecting to backend websocket %s", uri.split("?", 1)[0])
        try:
            conn = await websockets.connect(uri, ping_interval=None, ping_timeout=None)
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            logger.error("Failed to connect to backend websocket: %s", e)
            await self._on_disconnect(REASON_CONNECTION_ERROR)
            return

        self._conn = conn
        self._state = ConnectionState.OPEN
        logger.info("🔌 Backend websocket open")
        self._listener_task = asyncio.create_task(self._listen(conn), name="backend-ws-listener")
        self._health_task = asyncio.create_task(self._health_loop(), name="backend-health-check")

    async def close(self) -> None:
        self._closing = True
        reconnect, self._reconnect_task = self._reconnect_task, None
        await cancel_task(reconnect)
        await self._close_socket()
        if self._state != ConnectionState.FAILED:
            self._state = ConnectionState.CLOSED

    async def send(self, msg_type: str, payload: Optional[dict[str, Any]] = None) -> bool:
        if not self._conn or self._state != ConnectionState.OPEN:
            logger.debug("Cannot send %s - backend websocket not open", msg_type)
            return False
        try:
            await self._conn.send(json.dumps(build_message(msg_type, payload)))
            return True
        except websockets.ConnectionClosed:
            logger.warning("Cannot send %s - websocket connection closed", msg_type)
        except Exception as e:
            logger.error("Failed to send websocket message: %s", e)
        return False

    async def handle_message(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Invalid JSON from backend: %r", raw)
            return
        if not isinstance(message, dict):
            return

        msg_type = message.get("type")
        if msg_type == HEALTH_CHECK_RESPONSE:
            if self._is_loaded() and self._failures:
                logger.info("Health check answered - clearing %d failure(s)", self._failures)
            if self._is_loaded():
                self._failures = 0
            return
        logger.debug("Ignoring backend message type %r", msg_type)

    async def _listen(self, conn: Any) -> None:
        reason = REASON_CONNECTION_LOST
        try:
            async for message in conn:
                await self.handle_message(message)
        except asyncio.CancelledError:  # cooperative cancel
            raise
        except websockets.ConnectionClosedOK:
            logger.info("Backend websocket closed cleanly")
        except websockets.ConnectionClosedError as exc:
            logger.warning("Backend websocket closed: %s", exc)
            reason = REASON_CONNECTION_ERROR
        except Exception:
            logger.exception("Backend websocket listener crashed")
            reason = REASON_CONNECTION_ERROR

        if conn is self._conn and not self._closing:
            self._conn = None
            await self._on_disconnect(reason)

    async def _on_disconnect(self, reason: str) -> None:
        health, self._health_task = self._health_task, None
        await cancel_task(health)

        if self._is_loaded():
            self._failures += 1
            logger.warning(
                "⚠️ Backend connection failure %d/%d (%s)",
                self._failures,
                self.settings.connection.max_failures,
                reason,
            )
            if self._failures >= self.settings.connection.max_failures:
                self._state = ConnectionState.FAILED
                logger.error("❌ Backend connection unrecoverable - ending session")
                if self._on_exhausted:
                    await self._on_exhausted(reason)
                return

        if self._is_active() and not self._closing:
            self._schedule_reconnect()
        else:
            self._state = ConnectionState.CLOSED

    def _schedule_reconnect(self) -> None:
        self._state = ConnectionState.RECONNECTING
        pending = self._reconnect_task
        if pending and not pending.done() and pending is not asyncio.current_task():
            logger.debug("Reconnect already scheduled")
            return
        delay = self.settings.connection.reconnect_delay
        logger.info("Reconnecting to backend in %.1fs", delay)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay), name="backend-ws-reconnect")

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._reconnect_task is asyncio.current_task():
            self._reconnect_task = None
        if self._closing or not self._is_active() or not self._token:
            self._state = ConnectionState.CLOSED
            return
        await self.connect(self._token)

    async def _health_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.settings.connection.health_check_interval)
                if self._is_active():
                    await self.send(HEALTH_CHECK, {})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Health check loop crashed: %s", e)

    async def _close_socket(self) -> None:
        health, self._health_task = self._health_task, None
        await cancel_task(health)
        listener, self._listener_task = self._listener_task, None
        conn, self._conn = self._conn, None
        await cancel_task(listener)
        if conn is not None:
            try:
                await conn.close()
            except Exception as e:
                logger.warning("Error closing websocket connection: %s", e)


__all__ = ["ConnectionMonitor", "build_message", "HEALTH_CHECK", "HEALTH_CHECK_RESPONSE"]

"""Adapter around the emulation engine running in the player page."""
from __future__ import annotations

import asyncio
import base64
import binascii
import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

Publisher = Callable[[str, Dict[str, Any]], Awaitable[None]]


class EmulatorError(RuntimeError):
    """Raised when the emulator cannot be reached or returns an unusable answer."""


class EmulatorAdapter(Protocol):
    async def pause(self) -> None: ...

    async def play(self) -> None: ...

    async def get_state(self) -> bytes: ...

    async def load_state(self, blob: bytes) -> None: ...


class RemoteEmulator:
    """
    Drives the in-page emulator over the UI feed.

    Commands go out as ``emulator`` events. ``get_state`` waits for the page
    to answer with a ``state_snapshot`` carrying the same ``request_id``.
    """

    def __init__(self, publish: Publisher, *, reply_timeout: float = 5.0) -> None:
        self._publish = publish
        self._reply_timeout = reply_timeout
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future[bytes]] = {}

    async def pause(self) -> None:
        await self._publish("emulator", {"command": "pause"})

    async def play(self) -> None:
        await self._publish("emulator", {"command": "play"})

    async def load_state(self, blob: bytes) -> None:
        await self._publish(
            "emulator",
            {"command": "load_state", "data": base64.b64encode(blob).decode("ascii")},
        )

    async def get_state(self) -> bytes:
        request_id = next(self._ids)
        future: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._publish("emulator", {"command": "get_state", "request_id": request_id})
            return await asyncio.wait_for(future, timeout=self._reply_timeout)
        except asyncio.TimeoutError as exc:
            raise EmulatorError(f"emulator did not return state within {self._reply_timeout}s") from exc
        finally:
            self._pending.pop(request_id, None)

    def resolve_snapshot(self, request_id: Any, data: Optional[str]) -> bool:
        """Complete a pending ``get_state``; returns False for unknown or stale ids."""
        try:
            future = self._pending.get(int(request_id))
        except (TypeError, ValueError):
            future = None
        if future is None or future.done():
            logger.debug("Ignoring state snapshot for unknown request %r", request_id)
            return False
        try:
            blob = base64.b64decode(data or "", validate=True)
        except (binascii.Error, ValueError) as e:
            future.set_exception(EmulatorError(f"invalid state snapshot encoding: {e}"))
            return True
        future.set_result(blob)
        return True

    def cancel_pending(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()


__all__ = ["EmulatorAdapter", "EmulatorError", "RemoteEmulator"]

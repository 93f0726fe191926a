"""Countdown timer bounding a play session."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional

from .config import TimerSettings
from .tasks import cancel_task

logger = logging.getLogger(__name__)


@dataclass
class TimerDisplay:
    """What the overlay should render after a tick."""

    visible: bool
    text: str = ""
    warning: bool = False


ExpiryHandler = Callable[[], Awaitable[None]]
DisplayHandler = Callable[[TimerDisplay], Awaitable[None]]


def format_remaining(seconds: int) -> str:
    minutes, secs = divmod(max(int(seconds), 0), 60)
    return f"{minutes}:{secs:02d}"


class SessionTimer:
    """
    Soft time limit for a session.

    ``limit_seconds=None`` means no limit: every operation is a no-op and the
    display stays hidden. At most one countdown task exists at a time, and the
    expiry handler fires once per armed countdown.
    """

    def __init__(
        self,
        settings: TimerSettings,
        *,
        on_expired: Optional[ExpiryHandler] = None,
        on_display: Optional[DisplayHandler] = None,
    ) -> None:
        self.settings = settings
        self._duration: Optional[int] = settings.limit_seconds
        self._remaining: Optional[int] = self._duration
        self._running = False
        self._warning = False
        self._expired = False
        self._task: Optional[asyncio.Task[None]] = None
        self._on_expired = on_expired
        self._on_display = on_display

    @property
    def enabled(self) -> bool:
        return self._duration is not None

    @property
    def remaining_seconds(self) -> Optional[int]:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._running

    @property
    def warning(self) -> bool:
        return self._warning

    @property
    def expired(self) -> bool:
        """True once the countdown hit zero, until the next reset."""
        return self._expired

    async def start(self) -> None:
        if not self.enabled:
            await self._render()
            return
        if self._running:
            logger.debug("Timer already running; ignoring start")
            return
        self._running = True
        self._expired = False
        logger.info("⏱️ Session timer armed (%ss)", self._remaining)
        self._task = asyncio.create_task(self._run(), name="session-timer")

    async def reset(self) -> None:
        """Restore the full duration and rearm; used when a session is extended."""
        if not self.enabled:
            return
        await self.stop()
        self._remaining = self._duration
        self._warning = False
        self._expired = False
        logger.info("⏱️ Session timer reset to %ss", self._duration)
        await self._render()
        await self.start()

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        await cancel_task(task)

    async def tick(self) -> None:
        """Advance the countdown by one step."""
        if not self._running or self._remaining is None:
            return
        self._remaining = max(self._remaining - 1, 0)
        if self._remaining <= self.settings.warning_threshold:
            self._warning = True
        await self._render()

        if self._remaining <= 0:
            self._running = False
            task, self._task = self._task, None
            if task is not None and task is not asyncio.current_task():
                task.cancel()
            if not self._expired:
                self._expired = True
                logger.info("⌛ Session time expired")
                if self._on_expired:
                    await self._on_expired()

    async def _run(self) -> None:
        try:
            # a reset from inside the expiry handler arms a new task; this one must retire
            while self._running and self._task is asyncio.current_task():
                await asyncio.sleep(self.settings.tick_seconds)
                await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Session timer crashed")
            self._running = False

    async def _render(self) -> None:
        if not self._on_display:
            return
        if not self.enabled:
            display = TimerDisplay(visible=False)
        else:
            display = TimerDisplay(
                visible=True,
                text=f"Time Remaining: {format_remaining(self._remaining or 0)}",
                warning=self._warning,
            )
        try:
            await self._on_display(display)
        except Exception as e:
            logger.warning("Failed to render timer display: %s", e)


__all__ = ["SessionTimer", "TimerDisplay", "format_remaining"]

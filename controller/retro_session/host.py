"""Outbound messages to whatever hosts the player page."""
from __future__ import annotations

import logging
from typing import Any, Dict

from .emulator import Publisher
from .state import HostContext

logger = logging.getLogger(__name__)


class HostBridge:
    """Routes session-control messages according to the hosting context."""

    def __init__(self, publish: Publisher, context: HostContext, exit_url: str) -> None:
        self._publish = publish
        self.context = context
        self.exit_url = exit_url

    @property
    def embedded(self) -> bool:
        return self.context == HostContext.EMBEDDED

    async def post_message(self, payload: Dict[str, Any]) -> None:
        """Cross-frame message to the hosting page; dropped when not embedded."""
        if not self.embedded:
            logger.debug("Not embedded - dropping host message %s", payload.get("type"))
            return
        await self._publish("host_message", payload)

    async def request_options(self) -> None:
        await self.post_message({"type": "session_options"})

    async def route_exit(self, reason: str) -> None:
        """Send the user away from the finished session."""
        if self.context == HostContext.EMBEDDED:
            await self.post_message({"type": "session_end", "reason": reason})
        elif self.context == HostContext.MANAGED_SHELL:
            await self._publish("host_return", {"reason": reason})
        else:
            await self._publish("navigate", {"url": self.exit_url, "reason": reason})
        logger.info("🚪 Session exit routed via %s (%s)", self.context.value, reason)


__all__ = ["HostBridge"]

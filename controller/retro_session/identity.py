"""Session identity: which game is being played and by whom."""
from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_UUID_RE = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def sanitize_game_name(name: str) -> str:
    return _NON_ALNUM_RE.sub("-", name.strip().lower()).strip("-")


def resolve_game_id(explicit: Optional[str], page_url: Optional[str], display_name: Optional[str]) -> str:
    """Explicit identifier, then a UUID in the page path, then the sanitized display name."""
    if explicit and explicit.strip():
        return explicit.strip()
    if page_url:
        match = _UUID_RE.search(urlparse(page_url).path)
        if match:
            return match.group(0).lower()
    sanitized = sanitize_game_name(display_name or "")
    if not sanitized:
        raise ValueError("Cannot resolve a game id: no identifier, path UUID or display name")
    return sanitized


class SessionIdentity:
    """Game id fixed at construction; token accepted once, refreshed only on request."""

    def __init__(self, game_id: str, display_name: str, token: Optional[str] = None) -> None:
        self._game_id = game_id
        self.display_name = display_name
        self._token: Optional[str] = token or None
        self._token_event = asyncio.Event()
        if self._token:
            self._token_event.set()

    @property
    def game_id(self) -> str:
        return self._game_id

    @property
    def token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str], *, allow_refresh: bool = False) -> bool:
        """Store ``token``; returns False when it was ignored."""
        if not token:
            return False
        if self._token and not allow_refresh:
            logger.debug("Token already set; ignoring new token")
            return False
        if self._token == token:
            return False
        refreshed = self._token is not None
        self._token = token
        self._token_event.set()
        logger.info("🔑 Auth token %s (%s...)", "refreshed" if refreshed else "received", token[:8])
        return True

    async def wait_for_token(self, max_wait: float, poll_interval: float = 0.1) -> Optional[str]:
        """Poll for a token up to ``max_wait`` seconds; returns None instead of blocking forever."""
        deadline = time.monotonic() + max_wait
        while not self._token:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("No auth token after %.1fs - continuing without one", max_wait)
                return None
            try:
                await asyncio.wait_for(self._token_event.wait(), timeout=min(poll_interval, remaining))
            except asyncio.TimeoutError:
                continue
        return self._token


__all__ = ["SessionIdentity", "resolve_game_id", "sanitize_game_name"]

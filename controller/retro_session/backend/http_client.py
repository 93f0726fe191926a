"""HTTP client for the backend game-state REST endpoints."""
from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)

SAVE_PATH = "/api/v1/game-state/save"
LOAD_PATH = "/api/v1/game-state/load"


class SaveStateError(RuntimeError):
    """Raised when a save request fails in transport or on the server."""


class LoadStateError(RuntimeError):
    """Raised when the backend answers a load with anything but success or 404."""


def encode_state(blob: bytes) -> str:
    """Wrap raw emulator state into the data-URL form the save endpoint expects."""
    return "data:application/octet-stream;base64," + base64.b64encode(blob).decode("ascii")


def page_origin(page_url: str) -> str:
    parsed = urlparse(page_url)
    return f"{parsed.scheme or 'http'}://{parsed.netloc}"


class GameStateHttpClient:
    """Thin wrapper around the game-state REST API and the local fallback files."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._origin = page_origin(settings.hosting.page_url)
        base_url = settings.backend_api_url or self._origin
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=settings.save.request_timeout,
            transport=transport,
        )

    @staticmethod
    def _auth_headers(token: Optional[str]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def save_state(self, game_id: str, token: str, blob: bytes) -> Dict[str, Any]:
        body = {"stateData": encode_state(blob), "compression": "none"}
        try:
            response = await self._client.post(
                SAVE_PATH,
                params={"gameID": game_id},
                json=body,
                headers=self._auth_headers(token),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SaveStateError(f"save rejected: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise SaveStateError(f"save request failed: {e}") from e
        try:
            return response.json()
        except ValueError:
            logger.warning("game_state.save: non-JSON success body for %s", game_id)
            return {}

    async def load_state(self, game_id: str, token: Optional[str]) -> Optional[bytes]:
        """Return the stored blob, or None when the backend reports no saved state (404)."""
        try:
            response = await self._client.get(
                LOAD_PATH,
                params={"gameID": game_id},
                headers=self._auth_headers(token),
            )
        except httpx.HTTPError as e:
            raise LoadStateError(f"load request failed: {e}") from e
        if response.status_code == 404:
            logger.info("game_state.load: no saved state on backend for %s", game_id)
            return None
        if not response.is_success:
            raise LoadStateError(f"load failed: HTTP {response.status_code}")
        return response.content

    async def load_fallback(self, display_name: str) -> Optional[bytes]:
        """Fetch the same-origin static save for ``display_name``; None when it is absent."""
        path = self.settings.save.fallback_path_template.format(name=quote(display_name))
        url = self._origin + path
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.warning("game_state.fallback: request failed - %s", e)
            return None
        if not response.is_success:
            logger.info("game_state.fallback: HTTP %d for %s", response.status_code, path)
            return None
        return response.content or None

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)

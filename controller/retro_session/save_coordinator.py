"""Save state persistence against the backend, with a local-file fallback on load."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .backend.http_client import GameStateHttpClient
from .config import SaveSettings
from .emulator import EmulatorAdapter
from .identity import SessionIdentity
from .tasks import cancel_task

logger = logging.getLogger(__name__)


class SaveCoordinator:
    """Moves emulator state to and from the backend; one save in flight at most."""

    def __init__(
        self,
        settings: SaveSettings,
        identity: SessionIdentity,
        http_client: GameStateHttpClient,
        *,
        emulator: Optional[EmulatorAdapter] = None,
    ) -> None:
        self.settings = settings
        self.identity = identity
        self._http = http_client
        self._emulator = emulator
        self._save_in_progress = False
        self._save_idle = asyncio.Event()
        self._save_idle.set()
        self._auto_save_task: Optional[asyncio.Task[None]] = None

    @property
    def save_in_progress(self) -> bool:
        return self._save_in_progress

    @property
    def auto_save_running(self) -> bool:
        return self._auto_save_task is not None and not self._auto_save_task.done()

    def bind_emulator(self, emulator: Optional[EmulatorAdapter]) -> None:
        self._emulator = emulator

    async def save(self, force: bool = False) -> bool:
        """
        Persist the current emulator state.

        Returns True when a write reached the backend. Gated on auto-save
        (unless ``force``), the in-flight flag, identity and emulator binding;
        an empty state is skipped. Transport and server failures raise
        ``SaveStateError``.
        """
        if not (self.settings.auto_save_enabled or force):
            return False
        if self._save_in_progress:
            logger.debug("Save already in progress - dropping request")
            return False
        token = self.identity.token
        if not token or not self.identity.game_id:
            logger.info("Save skipped - no auth token yet")
            return False
        if self._emulator is None:
            logger.info("Save skipped - emulator not bound")
            return False

        self._save_in_progress = True
        self._save_idle.clear()
        try:
            blob = await self._emulator.get_state()
            if not blob:
                logger.info("Save skipped - emulator returned an empty state")
                return False
            await self._http.save_state(self.identity.game_id, token, blob)
            logger.info("💾 Saved %d bytes of state for %s", len(blob), self.identity.game_id)
            return True
        finally:
            self._save_in_progress = False
            self._save_idle.set()

    async def load(self) -> Optional[bytes]:
        """
        Fetch saved state; backend first, then the static file for the display name.

        Returns None when neither has anything. ``LoadStateError`` on any
        other backend failure.
        """
        game_id = self.identity.game_id
        if not game_id:
            return None
        blob = await self._http.load_state(game_id, self.identity.token)
        if blob:
            logger.info("📥 Loaded %d bytes of saved state from backend", len(blob))
            return blob
        if blob is not None:
            # an empty success body counts as nothing saved
            return None

        blob = await self._http.load_fallback(self.identity.display_name)
        if blob:
            logger.info("📥 Loaded %d bytes of state from local fallback", len(blob))
        return blob

    async def restore(self, blob: Optional[bytes]) -> bool:
        if not blob or self._emulator is None:
            return False
        try:
            await self._emulator.load_state(blob)
            return True
        except Exception as e:
            logger.warning("Failed to restore saved state into emulator: %s", e)
            return False

    def start_auto_save(self) -> None:
        if not self.settings.auto_save_enabled:
            return
        if self.auto_save_running:
            return
        self._auto_save_task = asyncio.create_task(self._auto_save_loop(), name="auto-save")
        logger.info("Auto-save every %.0fs", self.settings.auto_save_interval)

    async def wait_for_save(self) -> None:
        """Block until no save is in flight."""
        await self._save_idle.wait()

    async def stop_auto_save(self) -> None:
        """Stop the loop; a write already in flight is allowed to finish first."""
        task, self._auto_save_task = self._auto_save_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            await self.wait_for_save()
        await cancel_task(task)

    async def _auto_save_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.settings.auto_save_interval)
                try:
                    await self.save()
                except Exception as e:
                    logger.warning("Auto-save failed: %s", e)
        except asyncio.CancelledError:
            raise


__all__ = ["SaveCoordinator"]

"""Session lifecycle orchestration for the retro game player."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

from .backend.http_client import GameStateHttpClient, LoadStateError
from .backend.ws_client import ConnectionMonitor
from .config import Settings, get_settings
from .emulator import EmulatorAdapter, RemoteEmulator
from .host import HostBridge
from .identity import SessionIdentity, resolve_game_id
from .save_coordinator import SaveCoordinator
from .state import (
    LEGAL_TRANSITIONS,
    REASON_TIME_EXPIRED,
    REASON_USER_ENDED,
    ConnectionState,
    ControllerEvent,
    EndTrigger,
    PromptChoice,
    PromptState,
    TerminationState,
)
from .tasks import cancel_task
from .timer import SessionTimer, TimerDisplay
from .ui import UiChannel

logger = logging.getLogger(__name__)

_NAVIGATION_TRIGGERS: Dict[str, EndTrigger] = {
    "back": EndTrigger.BACK_NAVIGATION,
    "escape": EndTrigger.ESCAPE_KEY,
    "unload": EndTrigger.PAGE_UNLOAD,
}


class SessionController:
    """
    Owns one play session: timer, backend connection, saves and the end-of-session flow.

    Every trigger that may end the session (timer expiry, host ``end``,
    back/Escape, page unload) funnels into ``request_end``. With the prompt
    enabled the emulator is paused and the user gets a bounded countdown to
    pick save, discard or cancel; running out counts as discard. Connection
    exhaustion skips the prompt and ends straight away.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        ui: Optional[UiChannel] = None,
        emulator: Optional[EmulatorAdapter] = None,
        http_client: Optional[GameStateHttpClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.ui = ui or UiChannel(self.settings.ui_event_queue_size)
        self._state = TerminationState.ACTIVE
        self._active = True
        self._loaded = False
        self._disposed = False
        self._prompt = PromptState()
        self._prompt_task: Optional[asyncio.Task[None]] = None
        self._pending_blob: Optional[bytes] = None
        self.end_reason: Optional[str] = None

        game_id = resolve_game_id(self.settings.game_id, self.settings.hosting.page_url, self.settings.game_name)
        self.identity = SessionIdentity(game_id, self.settings.game_name, self.settings.token)

        self.emulator: EmulatorAdapter = emulator or RemoteEmulator(
            self._publish, reply_timeout=self.settings.emulator_reply_timeout
        )
        self.host = HostBridge(self._publish, self.settings.hosting.context, self.settings.hosting.exit_url)
        self._http_client = http_client or GameStateHttpClient(self.settings)
        self.saves = SaveCoordinator(self.settings.save, self.identity, self._http_client)
        self.timer = SessionTimer(
            self.settings.timer,
            on_expired=self._handle_timer_expired,
            on_display=self._render_timer,
        )
        self.monitor = ConnectionMonitor(
            self.settings,
            is_loaded=lambda: self._loaded,
            is_active=lambda: self._active,
            on_exhausted=self.end_session,
        )

    @property
    def state(self) -> TerminationState:
        return self._state

    @property
    def active(self) -> bool:
        return self._active

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def prompt(self) -> PromptState:
        return self._prompt

    # ============================================================
    # STARTUP
    # ============================================================

    async def start(self) -> None:
        """Connect once a token is known, then fetch saved state; neither step can block the game."""
        logger.info("🎮 Starting session for %s", self.identity.game_id)
        if self.identity.token:
            await self.monitor.connect(self.identity.token)

        token = await self.identity.wait_for_token(
            self.settings.save.token_wait_seconds, self.settings.save.token_poll_interval
        )
        if token and self._active and self.monitor.state == ConnectionState.CLOSED:
            await self.monitor.connect(token)

        try:
            blob = await self.saves.load()
        except LoadStateError as e:
            logger.warning("Could not load saved state - starting fresh: %s", e)
            blob = None
        except Exception as e:
            logger.exception("Unexpected error loading saved state: %s", e)
            blob = None

        if not blob:
            return
        if self._loaded:
            # game came up while we were still fetching
            await self.saves.restore(blob)
        else:
            self._pending_blob = blob

    async def on_game_start(self, emulator: Optional[EmulatorAdapter] = None) -> None:
        """Emulator reports game start (or a state load); arms the session once."""
        if self._state == TerminationState.ENDED:
            return
        if emulator is not None:
            self.emulator = emulator
        self.saves.bind_emulator(self.emulator)
        if self._loaded:
            logger.debug("Game start already handled")
            return
        self._loaded = True
        logger.info("▶️ Game loaded")

        blob, self._pending_blob = self._pending_blob, None
        if blob:
            await self.saves.restore(blob)
        await self.timer.start()
        self.saves.start_auto_save()

    # ============================================================
    # END-OF-SESSION FLOW
    # ============================================================

    async def request_end(self, trigger: EndTrigger) -> bool:
        """Ask to end the session; shows the save prompt unless it is disabled."""
        if self._state == TerminationState.ENDED:
            return False
        if not self.settings.prompt.enabled:
            reason = REASON_TIME_EXPIRED if trigger == EndTrigger.TIMER_EXPIRED else REASON_USER_ENDED
            await self.end_session(reason)
            return True
        if self._state != TerminationState.ACTIVE:
            logger.info("Save prompt already shown - ignoring %s", trigger.value)
            return False
        if not self._transition(TerminationState.PROMPT_PENDING):
            return False

        logger.info("💬 Save prompt shown (%s)", trigger.value)
        await self._pause()
        self._prompt = PromptState(visible=True, countdown=self.settings.prompt.countdown_seconds)
        await self._render_prompt()
        self._prompt_task = asyncio.create_task(self._prompt_countdown(), name="save-prompt-countdown")
        return True

    async def choose(self, choice: PromptChoice | str) -> bool:
        choice = PromptChoice(choice)
        if self._state != TerminationState.PROMPT_PENDING:
            logger.warning("Prompt choice %s ignored in state %s", choice.value, self._state.value)
            return False
        await self._dismiss_prompt()

        if choice == PromptChoice.SAVE:
            self._transition(TerminationState.SAVING)
            try:
                await self.saves.wait_for_save()
                await self.saves.save(force=True)
            except Exception as e:
                logger.warning("Final save failed - ending session anyway: %s", e)
            await self.end_session(REASON_USER_ENDED)
        elif choice == PromptChoice.DISCARD:
            self._transition(TerminationState.DISCARDING)
            await self.end_session(REASON_USER_ENDED)
        else:
            self._transition(TerminationState.ACTIVE)
            if self.timer.expired:
                # only continue or restart may hand out more time
                logger.info("Save prompt cancelled after time ran out - prompting again")
                await self.request_end(EndTrigger.TIMER_EXPIRED)
                return True
            logger.info("Save prompt cancelled - resuming")
            await self._resume()
        return True

    async def end_session(self, reason: str) -> None:
        if self._state == TerminationState.ENDED:
            logger.debug("Session already ended - ignoring %r", reason)
            return
        self._transition(TerminationState.ENDED)
        self._active = False
        self.end_reason = reason
        logger.info("🏁 Ending session: %s", reason)

        await self.timer.stop()
        await self._dismiss_prompt()
        await self.saves.stop_auto_save()
        await self.monitor.close()
        try:
            await self.host.route_exit(reason)
        except Exception as e:
            logger.warning("Failed to route session exit: %s", e)
        await self.dispose()

    async def continue_session(self) -> bool:
        """Extension granted out of band: drop any prompt, restart the clock, resume play."""
        if self._state == TerminationState.PROMPT_PENDING:
            await self._dismiss_prompt()
            self._transition(TerminationState.ACTIVE)
        elif self._state != TerminationState.ACTIVE:
            logger.warning("Continue ignored in state %s", self._state.value)
            return False
        logger.info("⏩ Session continued")
        await self.timer.reset()
        await self._resume()
        return True

    async def restart_session(self) -> bool:
        """Reload persisted state into the emulator and start the clock over."""
        if self._state == TerminationState.PROMPT_PENDING:
            await self._dismiss_prompt()
            self._transition(TerminationState.ACTIVE)
        elif self._state != TerminationState.ACTIVE:
            logger.warning("Restart ignored in state %s", self._state.value)
            return False
        logger.info("🔄 Restarting session")
        try:
            blob = await self.saves.load()
        except LoadStateError as e:
            logger.warning("Restart could not load saved state: %s", e)
            blob = None
        if self._loaded:
            await self.saves.restore(blob)
            await self.timer.reset()
        else:
            self._pending_blob = blob
        await self._resume()
        return True

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._active = False
        await self._dismiss_prompt()
        await self.timer.stop()
        await self.saves.stop_auto_save()
        await self.monitor.close()
        if isinstance(self.emulator, RemoteEmulator):
            self.emulator.cancel_pending()
        await self._http_client.aclose()
        self.ui.clear()
        logger.info("Session controller disposed")

    # ============================================================
    # INBOUND MESSAGES
    # ============================================================

    async def handle_host_message(self, payload: Any) -> None:
        """Messages from the hosting frame: ``{jwt}`` or ``{action: end|continue|restart}``."""
        if not isinstance(payload, dict) or not payload:
            return

        jwt = payload.get("jwt")
        if jwt:
            accepted = self.identity.set_token(jwt, allow_refresh=self.monitor.is_down)
            if self._active and (accepted or self.monitor.state == ConnectionState.CLOSED):
                await self.monitor.connect(self.identity.token)
            return

        action = payload.get("action")
        if action == "end":
            await self.request_end(EndTrigger.HOST_END)
        elif action == "continue":
            await self.continue_session()
        elif action == "restart":
            await self.restart_session()
        elif action:
            logger.debug("Ignoring unknown host action %r", action)

    async def handle_navigation(self, kind: Optional[str]) -> bool:
        trigger = _NAVIGATION_TRIGGERS.get((kind or "").lower())
        if trigger is None:
            logger.debug("Ignoring navigation event %r", kind)
            return False
        return await self.request_end(trigger)

    async def handle_ui_message(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            return
        msg_type = payload.get("type")
        if msg_type in {"game_start", "load_state"}:
            await self.on_game_start()
        elif msg_type == "navigation":
            await self.handle_navigation(payload.get("kind"))
        elif msg_type == "prompt_choice":
            try:
                await self.choose(payload.get("choice"))
            except ValueError:
                logger.warning("Invalid prompt choice %r", payload.get("choice"))
        elif msg_type == "host_message":
            await self.handle_host_message(payload.get("data"))
        elif msg_type == "state_snapshot":
            if isinstance(self.emulator, RemoteEmulator):
                self.emulator.resolve_snapshot(payload.get("request_id"), payload.get("data"))
        else:
            logger.debug("Ignoring UI message type %r", msg_type)

    # ============================================================
    # INTERNALS
    # ============================================================

    def _transition(self, target: TerminationState) -> bool:
        if target not in LEGAL_TRANSITIONS[self._state]:
            logger.warning("Illegal session transition %s → %s ignored", self._state.value, target.value)
            return False
        logger.debug("Session state %s → %s", self._state.value, target.value)
        self._state = target
        return True

    async def _handle_timer_expired(self) -> None:
        await self.host.request_options()
        await self.request_end(EndTrigger.TIMER_EXPIRED)

    async def _prompt_countdown(self) -> None:
        try:
            while self._prompt.countdown > 0:
                await asyncio.sleep(self.settings.prompt.tick_seconds)
                if self._prompt_task is not asyncio.current_task():
                    return
                self._prompt.countdown -= 1
                await self._render_prompt()
            self._prompt_task = None
            logger.info("Save prompt timed out - ending without saving")
            await self.choose(PromptChoice.DISCARD)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Save prompt countdown crashed")

    async def _dismiss_prompt(self) -> None:
        task, self._prompt_task = self._prompt_task, None
        await cancel_task(task)
        if self._prompt.visible:
            self._prompt = PromptState()
            await self._render_prompt()

    async def _pause(self) -> None:
        try:
            await self.emulator.pause()
        except Exception as e:
            logger.warning("Failed to pause emulator: %s", e)

    async def _resume(self) -> None:
        try:
            await self.emulator.play()
        except Exception as e:
            logger.warning("Failed to resume emulator: %s", e)

    async def _publish(self, event_type: str, data: Dict[str, Any]) -> None:
        await self.ui.broadcast(ControllerEvent(type=event_type, data=data, state=self._state))

    async def _render_timer(self, display: TimerDisplay) -> None:
        await self._publish("timer", asdict(display))

    async def _render_prompt(self) -> None:
        await self._publish("prompt", {"visible": self._prompt.visible, "countdown": self._prompt.countdown})


__all__ = ["SessionController"]

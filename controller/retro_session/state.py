"""Shared controller state definitions for the retro session player."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional


class TerminationState(str, enum.Enum):
    """
    Session termination states:

    1. ACTIVE          - Game is playing
    2. PROMPT_PENDING  - Emulator paused, save prompt counting down
    3. SAVING          - User chose save, final forced save in flight
    4. DISCARDING      - Countdown ran out or user chose discard
    5. ENDED           - Session torn down, user routed away
    """
    ACTIVE = "active"
    PROMPT_PENDING = "prompt_pending"
    SAVING = "saving"
    DISCARDING = "discarding"
    ENDED = "ended"


LEGAL_TRANSITIONS: Dict[TerminationState, FrozenSet[TerminationState]] = {
    TerminationState.ACTIVE: frozenset({TerminationState.PROMPT_PENDING, TerminationState.ENDED}),
    TerminationState.PROMPT_PENDING: frozenset(
        {
            TerminationState.SAVING,
            TerminationState.DISCARDING,
            TerminationState.ACTIVE,
            TerminationState.ENDED,
        }
    ),
    TerminationState.SAVING: frozenset({TerminationState.ENDED}),
    TerminationState.DISCARDING: frozenset({TerminationState.ENDED}),
    TerminationState.ENDED: frozenset(),
}


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
    FAILED = "failed"


class PromptChoice(str, enum.Enum):
    SAVE = "save"
    DISCARD = "discard"
    CANCEL = "cancel"


class EndTrigger(str, enum.Enum):
    """What asked for the session to end."""
    TIMER_EXPIRED = "timer_expired"
    HOST_END = "host_end"
    BACK_NAVIGATION = "back"
    ESCAPE_KEY = "escape"
    PAGE_UNLOAD = "unload"


class HostContext(str, enum.Enum):
    """How the player page is hosted; decides where a finished session goes."""
    EMBEDDED = "embedded"
    MANAGED_SHELL = "managed_shell"
    STANDALONE = "standalone"


REASON_USER_ENDED = "User ended session"
REASON_TIME_EXPIRED = "Session time expired"
REASON_CONNECTION_LOST = "Connection lost"
REASON_CONNECTION_ERROR = "Connection error"


@dataclass
class PromptState:
    visible: bool = False
    countdown: int = 0


@dataclass
class ControllerEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    state: TerminationState
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type, "state": self.state.value, "data": self.data}
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = [
    "TerminationState",
    "LEGAL_TRANSITIONS",
    "ConnectionState",
    "PromptChoice",
    "EndTrigger",
    "HostContext",
    "PromptState",
    "ControllerEvent",
    "REASON_USER_ENDED",
    "REASON_TIME_EXPIRED",
    "REASON_CONNECTION_LOST",
    "REASON_CONNECTION_ERROR",
]

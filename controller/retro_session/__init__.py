"""Session lifecycle controller for a kiosk-style emulated-game player."""
from .session_controller import SessionController
from .state import ConnectionState, EndTrigger, HostContext, PromptChoice, TerminationState

__all__ = [
    "SessionController",
    "ConnectionState",
    "EndTrigger",
    "HostContext",
    "PromptChoice",
    "TerminationState",
]

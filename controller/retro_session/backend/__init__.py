"""Backend clients: game-state REST API and the health-checked websocket."""
from .http_client import GameStateHttpClient, LoadStateError, SaveStateError
from .ws_client import ConnectionMonitor

__all__ = ["GameStateHttpClient", "LoadStateError", "SaveStateError", "ConnectionMonitor"]

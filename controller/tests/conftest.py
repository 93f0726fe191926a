"""Shared fixtures for the retro session controller tests."""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock

import pytest

from retro_session.backend.http_client import GameStateHttpClient
from retro_session.config import (
    ConnectionSettings,
    HostSettings,
    PromptSettings,
    SaveSettings,
    Settings,
    TimerSettings,
)


def make_settings(
    *,
    timer: Optional[dict[str, Any]] = None,
    connection: Optional[dict[str, Any]] = None,
    save: Optional[dict[str, Any]] = None,
    prompt: Optional[dict[str, Any]] = None,
    host: Optional[dict[str, Any]] = None,
    **overrides: Any,
) -> Settings:
    """Settings isolated from the environment with fast, test-friendly defaults."""
    fields: dict[str, Any] = {
        "token": "tok-123",
        "game_name": "Super Test Bros",
        "ui_event_queue_size": 200,
        "timer": TimerSettings(**{"limit_seconds": 5, "tick_seconds": 100.0, **(timer or {})}),
        "connection": ConnectionSettings(**{"reconnect_delay": 100.0, "health_check_interval": 100.0, **(connection or {})}),
        "save": SaveSettings(**{"token_wait_seconds": 0.05, "token_poll_interval": 0.01, **(save or {})}),
        "prompt": PromptSettings(**{"tick_seconds": 100.0, **(prompt or {})}),
        "hosting": HostSettings(**{"page_url": "https://player.example/play/", **(host or {})}),
    }
    fields.update(overrides)
    return Settings(_env_file=None, **fields)


class FakeEmulator:
    """Stand-in for the in-page emulator."""

    def __init__(self, state: bytes = b"\x01\x02\x03\x04") -> None:
        self.pause = AsyncMock()
        self.play = AsyncMock()
        self.load_state = AsyncMock()
        self.get_state = AsyncMock(return_value=state)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


def drain(queue: asyncio.Queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def emulator() -> FakeEmulator:
    return FakeEmulator()


@pytest.fixture
def http_client() -> AsyncMock:
    client = AsyncMock(spec=GameStateHttpClient)
    client.load_state.return_value = None
    client.load_fallback.return_value = None
    client.save_state.return_value = {"ok": True}
    return client

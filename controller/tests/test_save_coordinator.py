"""Unit tests for SaveCoordinator gating, single-flight saves, fallback loads and auto-save."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import FakeEmulator, wait_until
from retro_session.backend.http_client import LoadStateError, SaveStateError
from retro_session.config import SaveSettings
from retro_session.identity import SessionIdentity
from retro_session.save_coordinator import SaveCoordinator


def _coordinator(http_client, *, emulator=None, token="tok", auto_save=False, interval=30.0):
    identity = SessionIdentity("game-1", "Super Test Bros", token=token)
    return SaveCoordinator(
        SaveSettings(auto_save_enabled=auto_save, auto_save_interval=interval),
        identity,
        http_client,
        emulator=emulator,
    )


class TestSaveGating:

    @pytest.mark.asyncio
    async def test_unforced_save_needs_auto_save(self, http_client, emulator):
        saves = _coordinator(http_client, emulator=emulator)
        assert await saves.save() is False
        emulator.get_state.assert_not_awaited()
        http_client.save_state.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_forced_save_writes_state(self, http_client, emulator):
        saves = _coordinator(http_client, emulator=emulator)
        assert await saves.save(force=True) is True
        http_client.save_state.assert_awaited_once_with("game-1", "tok", b"\x01\x02\x03\x04")

    @pytest.mark.asyncio
    async def test_no_token_skips(self, http_client, emulator):
        saves = _coordinator(http_client, emulator=emulator, token=None)
        assert await saves.save(force=True) is False
        http_client.save_state.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unbound_emulator_skips(self, http_client):
        saves = _coordinator(http_client)
        assert await saves.save(force=True) is False
        http_client.save_state.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_state_is_not_persisted(self, http_client):
        saves = _coordinator(http_client, emulator=FakeEmulator(state=b""))
        assert await saves.save(force=True) is False
        http_client.save_state.assert_not_awaited()


class TestSingleFlight:

    @pytest.mark.asyncio
    async def test_concurrent_saves_issue_one_write(self, http_client, emulator):
        release = asyncio.Event()

        async def slow_state():
            await release.wait()
            return b"state"

        emulator.get_state = AsyncMock(side_effect=slow_state)
        saves = _coordinator(http_client, emulator=emulator)

        first = asyncio.create_task(saves.save(force=True))
        await asyncio.sleep(0)
        assert saves.save_in_progress
        assert await saves.save(force=True) is False

        release.set()
        assert await first is True
        http_client.save_state.assert_awaited_once()
        assert not saves.save_in_progress

    @pytest.mark.asyncio
    async def test_failure_propagates_and_clears_flag(self, http_client, emulator):
        http_client.save_state.side_effect = SaveStateError("save rejected: HTTP 500")
        saves = _coordinator(http_client, emulator=emulator)

        with pytest.raises(SaveStateError):
            await saves.save(force=True)
        assert not saves.save_in_progress

        http_client.save_state.side_effect = None
        assert await saves.save(force=True) is True


class TestLoad:

    @pytest.mark.asyncio
    async def test_backend_state_wins(self, http_client):
        http_client.load_state.return_value = b"remote"
        saves = _coordinator(http_client)
        assert await saves.load() == b"remote"
        http_client.load_state.assert_awaited_once_with("game-1", "tok")
        http_client.load_fallback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_found_falls_back_once(self, http_client):
        http_client.load_fallback.return_value = b"local"
        saves = _coordinator(http_client)
        assert await saves.load() == b"local"
        http_client.load_fallback.assert_awaited_once_with("Super Test Bros")

    @pytest.mark.asyncio
    async def test_nothing_anywhere_is_none(self, http_client):
        saves = _coordinator(http_client)
        assert await saves.load() is None
        http_client.load_fallback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hard_failure_propagates(self, http_client):
        http_client.load_state.side_effect = LoadStateError("load failed: HTTP 500")
        saves = _coordinator(http_client)
        with pytest.raises(LoadStateError):
            await saves.load()
        http_client.load_fallback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_restore_pushes_blob_into_emulator(self, http_client, emulator):
        saves = _coordinator(http_client, emulator=emulator)
        assert await saves.restore(b"blob")
        emulator.load_state.assert_awaited_once_with(b"blob")
        assert not await saves.restore(None)

    @pytest.mark.asyncio
    async def test_restore_failure_is_logged_not_raised(self, http_client, emulator):
        emulator.load_state.side_effect = RuntimeError("engine busy")
        saves = _coordinator(http_client, emulator=emulator)
        assert not await saves.restore(b"blob")


class TestAutoSave:

    @pytest.mark.asyncio
    async def test_periodic_saves_and_idempotent_stop(self, http_client, emulator):
        saves = _coordinator(http_client, emulator=emulator, auto_save=True, interval=0.01)
        saves.start_auto_save()
        saves.start_auto_save()
        assert saves.auto_save_running

        await wait_until(lambda: http_client.save_state.await_count >= 2)
        await saves.stop_auto_save()
        await saves.stop_auto_save()
        assert not saves.auto_save_running

    @pytest.mark.asyncio
    async def test_loop_survives_failures(self, http_client, emulator):
        http_client.save_state.side_effect = SaveStateError("down")
        saves = _coordinator(http_client, emulator=emulator, auto_save=True, interval=0.01)
        saves.start_auto_save()
        await wait_until(lambda: http_client.save_state.await_count >= 2)
        assert saves.auto_save_running
        await saves.stop_auto_save()

    @pytest.mark.asyncio
    async def test_disabled_auto_save_never_starts(self, http_client, emulator):
        saves = _coordinator(http_client, emulator=emulator)
        saves.start_auto_save()
        assert not saves.auto_save_running
        await saves.stop_auto_save()

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_write_finish(self, http_client, emulator):
        release = asyncio.Event()
        finished = []

        async def slow_save(game_id, token, blob):
            await release.wait()
            finished.append(blob)
            return {}

        http_client.save_state.side_effect = slow_save
        saves = _coordinator(http_client, emulator=emulator, auto_save=True, interval=0.01)
        saves.start_auto_save()
        await wait_until(lambda: saves.save_in_progress)

        stopping = asyncio.create_task(saves.stop_auto_save())
        await asyncio.sleep(0.02)
        assert not stopping.done()

        release.set()
        await stopping
        assert finished == [b"\x01\x02\x03\x04"]
        assert not saves.auto_save_running

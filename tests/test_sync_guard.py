"""Tests for the in-progress guard."""

from __future__ import annotations

import pytest

from src.orgsync.sync.guard import SyncGuard, SyncInProgressError


class TestSyncGuard:
    def test_starts_idle(self):
        guard = SyncGuard()

        assert not guard.running
        assert guard.current is None

    def test_try_acquire_only_from_idle(self):
        guard = SyncGuard()

        assert guard.try_acquire("full") is True
        assert guard.try_acquire("delta") is False
        assert guard.current == "full"

    def test_acquire_raises_with_running_label(self):
        guard = SyncGuard()
        guard.acquire("full")

        with pytest.raises(SyncInProgressError) as exc_info:
            guard.acquire("delta")

        assert exc_info.value.running == "full"
        assert "full" in str(exc_info.value)

    def test_release_returns_to_idle(self):
        guard = SyncGuard()
        guard.acquire("full")

        guard.release()

        assert not guard.running
        assert guard.try_acquire("delta") is True

    def test_hold_releases_on_exception(self):
        guard = SyncGuard()

        with pytest.raises(ValueError):
            with guard.hold("tickets"):
                assert guard.running
                raise ValueError("boom")

        assert not guard.running

    def test_hold_rejects_nested_run(self):
        guard = SyncGuard()

        with guard.hold("full"):
            with pytest.raises(SyncInProgressError):
                with guard.hold("organizations"):
                    pass
            assert guard.current == "full"

"""Tests for per-position write locks."""

import importlib
import threading

import pytest

from org_assignments.services.position_lock import (
    PositionLockError,
    holds_position_lock,
    position_lock,
    position_locks,
)

# The services package re-exports the position_lock function under the module's name
position_lock_module = importlib.import_module("org_assignments.services.position_lock")


class TestPositionLock:
    """Test the process-local lock used on SQLite."""

    def test_held_inside_block(self, app_context):
        assert not holds_position_lock(101)
        with position_lock(101):
            assert holds_position_lock(101)
        assert not holds_position_lock(101)

    def test_reentrant_per_thread(self, app_context):
        with position_lock(102):
            with position_lock(102, timeout=0.1):
                assert holds_position_lock(102)
            # Inner exit must not release the outer hold
            assert holds_position_lock(102)

    def test_timeout_when_held_elsewhere(self, app, app_context):
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with app.app_context():
                with position_lock(103):
                    acquired.set()
                    release.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert acquired.wait(timeout=5)
            with pytest.raises(PositionLockError, match="103"):
                with position_lock(103, timeout=0.1):
                    pass
        finally:
            release.set()
            thread.join(timeout=5)

        with position_lock(103, timeout=1):
            assert holds_position_lock(103)

    def test_released_on_exception(self, app_context):
        with pytest.raises(RuntimeError):
            with position_lock(104):
                raise RuntimeError("boom")
        assert not holds_position_lock(104)

    def test_multiple_positions(self, app_context):
        with position_locks([106, 105, 106]):
            assert holds_position_lock(105)
            assert holds_position_lock(106)
        assert not holds_position_lock(105)
        assert not holds_position_lock(106)


class TestLocalLockRegistry:
    """Process-local locks are dropped once no thread holds or waits for them."""

    def _key(self, position_id):
        return (int(position_lock_module.LockNamespace.POSITION), position_id)

    def test_lock_dropped_after_release(self, app_context):
        with position_lock(201):
            assert self._key(201) in position_lock_module._local_locks
        assert self._key(201) not in position_lock_module._local_locks

    def test_timed_out_waiter_does_not_leak(self, app, app_context):
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with app.app_context():
                with position_lock(202):
                    acquired.set()
                    release.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert acquired.wait(timeout=5)
            with pytest.raises(PositionLockError):
                with position_lock(202, timeout=0.05):
                    pass
            # Still registered for the holder
            assert position_lock_module._local_locks[self._key(202)][1] == 1
        finally:
            release.set()
            thread.join(timeout=5)

        assert self._key(202) not in position_lock_module._local_locks

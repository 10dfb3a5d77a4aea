"""Tests for advisory key locks."""

import threading

import pytest

from bulkgate.domain.errors import ConflictError
from bulkgate.domain.locks import KeyLockRegistry


def test_hold_releases_on_exit():
    registry = KeyLockRegistry()

    with registry.hold(["item:A", "organization:1"]):
        assert registry.is_locked("item:A")
        assert registry.is_locked("organization:1")

    assert not registry.is_locked("item:A")
    assert not registry.is_locked("organization:1")


def test_overlapping_keys_time_out():
    registry = KeyLockRegistry()
    held = threading.Event()
    release = threading.Event()

    def other_batch():
        with registry.hold(["item:A"]):
            held.set()
            release.wait(5)

    thread = threading.Thread(target=other_batch)
    thread.start()
    held.wait(5)
    try:
        with pytest.raises(ConflictError) as excinfo:
            with registry.hold(["item:B", "item:A"], timeout=0.05):
                pass
    finally:
        release.set()
        thread.join()

    assert excinfo.value.code == "KEY_LOCKED"
    assert excinfo.value.details["keys"] == ["item:A", "item:B"]
    # Partially acquired keys are released again
    assert not registry.is_locked("item:B")


def test_disjoint_keys_do_not_block():
    registry = KeyLockRegistry()

    with registry.hold(["item:A"]):
        with registry.hold(["item:B"], timeout=0.05):
            assert registry.is_locked("item:B")


def test_lock_released_when_block_raises():
    registry = KeyLockRegistry()

    with pytest.raises(RuntimeError):
        with registry.hold(["item:A"]):
            raise RuntimeError("boom")

    assert not registry.is_locked("item:A")

"""Tests for the per-item reorder guard."""

from rankshare.rankings.reorder import ReorderGuard


def test_acquire_and_release():
    guard = ReorderGuard()
    assert guard.try_acquire("a", "b") is True
    assert guard.is_locked("a") and guard.is_locked("b")
    guard.release("a", "b")
    assert not guard.is_locked("a")


def test_acquire_is_all_or_nothing():
    guard = ReorderGuard()
    guard.try_acquire("b")
    assert guard.try_acquire("a", "b") is False
    assert not guard.is_locked("a")


def test_hold_releases_on_exit():
    guard = ReorderGuard()
    with guard.hold("a", "b") as acquired:
        assert acquired is True
        with guard.hold("b", "c") as nested:
            assert nested is False
        assert guard.is_locked("b")
    assert not guard.is_locked("a")
    assert not guard.is_locked("b")
    assert not guard.is_locked("c")


def test_hold_releases_on_error():
    guard = ReorderGuard()
    try:
        with guard.hold("a"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert not guard.is_locked("a")

"""Tests for the store connection manager's reconnect discipline."""

import random
import threading
from unittest.mock import Mock

import pytest

from ipgate.adapters.counter_store.connection import (
    DEFAULT_RETRY,
    ConnectionManager,
    ConnectionState,
)
from ipgate.core.errors import ConfigurationAppError, ConnectionCancelledError


class FlakyOpener:
    """Fails the first ``failures`` opens, then hands out handles."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def __call__(self, target: str) -> Mock:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"unreachable: attempt {self.calls}")
        return Mock(name=f"handle-{self.calls}")


def _manager(opener, *, probe=None, closer=None, retry=1, rng=None, **kwargs) -> ConnectionManager:
    return ConnectionManager(
        target="postgresql://gate@db/gate",
        opener=opener,
        probe=probe or Mock(),
        closer=closer or Mock(),
        retry=retry,
        rng=rng or random.Random(7),
        **kwargs,
    )


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Record sleeps instead of performing them."""
    recorded: list[float] = []
    monkeypatch.setattr(ConnectionManager, "_sleep", lambda self, seconds: recorded.append(seconds))
    return recorded


def test_connects_lazily_and_reuses_handle(sleeps: list[float]) -> None:
    opener = FlakyOpener(failures=0)
    manager = _manager(opener)

    assert manager.state is ConnectionState.DISCONNECTED
    assert opener.calls == 0

    first = manager.ensure_connected()
    second = manager.ensure_connected()

    assert first is second
    assert opener.calls == 1
    assert manager.state is ConnectionState.CONNECTED
    assert sleeps == []


def test_retry_one_recovers_after_two_failures_with_backoff(sleeps: list[float]) -> None:
    opener = FlakyOpener(failures=2)
    rng = Mock(spec=random.Random)
    rng.randint.return_value = 4
    manager = _manager(opener, retry=1, rng=rng, retry_interval=1.0, backoff_unit=1.0)

    handle = manager.ensure_connected()

    assert handle is not None
    assert opener.calls == 3
    # Each burst: one failed attempt, its interval sleep, then the backoff.
    assert sleeps == [1.0, 4.0, 1.0, 4.0]
    rng.randint.assert_called_with(0, 9)


def test_backoff_is_proportional_to_burst_size(sleeps: list[float]) -> None:
    opener = FlakyOpener(failures=3)
    rng = Mock(spec=random.Random)
    rng.randint.return_value = 2
    manager = _manager(opener, retry=3, rng=rng, retry_interval=0.5, backoff_unit=1.0)

    manager.ensure_connected()

    assert opener.calls == 4
    assert sleeps == [0.5, 0.5, 0.5, 6.0]


def test_backoff_is_bounded(sleeps: list[float]) -> None:
    opener = FlakyOpener(failures=20)
    manager = _manager(opener, retry=2, rng=random.Random(1), retry_interval=0.0)

    manager.ensure_connected()

    backoffs = [s for s in sleeps if s != 0.0]
    assert backoffs
    assert all(0 <= s <= 2 * 9 for s in backoffs)


def test_failed_probe_counts_as_failed_attempt(sleeps: list[float]) -> None:
    opener = FlakyOpener(failures=0)
    probe = Mock(side_effect=[RuntimeError("not serving"), None])
    closer = Mock()
    manager = ConnectionManager(
        target="postgresql://gate@db/gate",
        opener=opener,
        probe=probe,
        closer=closer,
        retry=2,
    )

    handle = manager.ensure_connected()

    assert opener.calls == 2
    assert probe.call_count == 2
    # The half-open first handle was discarded.
    closer.assert_called_once()
    assert closer.call_args.args[0] is not handle


def test_zero_retry_is_corrected_to_default() -> None:
    manager = _manager(FlakyOpener(failures=0), retry=0)

    assert manager.retry == DEFAULT_RETRY


def test_negative_retry_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationAppError):
        _manager(FlakyOpener(failures=0), retry=-1)


@pytest.mark.parametrize("target", [None, ""])
def test_missing_target_is_fatal_and_not_retried(target) -> None:
    opener = Mock()

    with pytest.raises(ConfigurationAppError) as exc_info:
        ConnectionManager(target=target, opener=opener, probe=Mock())

    assert exc_info.value.code == "store_target_missing"
    opener.assert_not_called()


def test_invalidate_forces_reconnect(sleeps: list[float]) -> None:
    opener = FlakyOpener(failures=0)
    manager = _manager(opener)

    first = manager.ensure_connected()
    manager.invalidate(first)
    second = manager.ensure_connected()

    assert first is not second
    assert opener.calls == 2


def test_invalidate_ignores_stale_handle(sleeps: list[float]) -> None:
    opener = FlakyOpener(failures=0)
    manager = _manager(opener)

    current = manager.ensure_connected()
    manager.invalidate(Mock(name="stale"))

    assert manager.ensure_connected() is current
    assert opener.calls == 1


def test_shutdown_cancels_further_connects() -> None:
    manager = _manager(FlakyOpener(failures=0))
    manager.shutdown()

    with pytest.raises(ConnectionCancelledError):
        manager.ensure_connected()
    assert manager.stopped is True


def test_shutdown_interrupts_backoff_sleep() -> None:
    opener = FlakyOpener(failures=10_000)
    manager = _manager(opener, retry=1, retry_interval=30.0)
    errors: list[Exception] = []

    def _connect() -> None:
        try:
            manager.ensure_connected()
        except ConnectionCancelledError as exc:
            errors.append(exc)

    thread = threading.Thread(target=_connect)
    thread.start()
    manager.shutdown()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert len(errors) == 1
    assert manager.state is ConnectionState.DISCONNECTED


def test_shutdown_during_connect_closes_late_handle() -> None:
    opening = threading.Event()
    release = threading.Event()
    late_handle = Mock(name="late-handle")

    def _slow_opener(target: str) -> Mock:
        opening.set()
        release.wait(timeout=5)
        return late_handle

    closer = Mock()
    manager = _manager(_slow_opener, closer=closer)
    outcome: list[object] = []

    def _connect() -> None:
        try:
            outcome.append(manager.ensure_connected())
        except ConnectionCancelledError as exc:
            outcome.append(exc)

    thread = threading.Thread(target=_connect)
    thread.start()
    assert opening.wait(timeout=5)
    manager.shutdown()
    release.set()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert len(outcome) == 1
    assert isinstance(outcome[0], ConnectionCancelledError)
    closer.assert_called_once_with(late_handle)
    assert manager.state is ConnectionState.DISCONNECTED


def test_concurrent_callers_share_one_connect(sleeps: list[float]) -> None:
    opener = FlakyOpener(failures=0)
    manager = _manager(opener)
    handles: list[object] = []

    threads = [
        threading.Thread(target=lambda: handles.append(manager.ensure_connected()))
        for _ in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert opener.calls == 1
    assert len({id(h) for h in handles}) == 1

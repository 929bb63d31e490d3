"""Unit tests for the gate facade and its construction from settings."""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from ipgate.adapters.counter_store.base import AbstractCounterStore, WindowCount
from ipgate.adapters.counter_store.in_memory import InMemoryCounterStore
from ipgate.core.config import GateSettings, Settings, StoreSettings
from ipgate.core.errors import ConfigurationAppError
from ipgate.services.decision_engine import Policy
from ipgate.services.gate import Gate, create_gate

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)
MINUTE = timedelta(seconds=60)


class CountOnlyStore(AbstractCounterStore):
    """Implements only the required capabilities."""

    def count_since(self, identity: str, window_start: datetime) -> WindowCount:
        return WindowCount(count=0, reference_time=None)

    def append(self, identity: str, timestamp: datetime) -> None:
        pass


class TestGateConstruction:
    """Configuration is validated once, eagerly."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"store": None, "limit": 3, "timespan": MINUTE},
            {"limit": None, "timespan": MINUTE},
            {"limit": 3, "timespan": None},
        ],
    )
    def test_missing_fields_are_rejected(self, kwargs: dict) -> None:
        kwargs.setdefault("store", InMemoryCounterStore())

        with pytest.raises(ConfigurationAppError) as exc_info:
            Gate(**kwargs)

        assert exc_info.value.code == "gate_config_missing"

    @pytest.mark.parametrize("limit", [0, -1, 1.5, True, "3"])
    def test_non_positive_integer_limit_is_rejected(self, limit) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            Gate(InMemoryCounterStore(), limit, MINUTE)

        assert exc_info.value.code == "gate_limit_invalid"

    @pytest.mark.parametrize("timespan", [timedelta(0), timedelta(seconds=-1), 60])
    def test_non_positive_timespan_is_rejected(self, timespan) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            Gate(InMemoryCounterStore(), 3, timespan)

        assert exc_info.value.code == "gate_timespan_invalid"

    def test_atomic_mode_requires_store_support(self) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            Gate(CountOnlyStore(), 3, MINUTE, atomic=True)

        assert exc_info.value.code == "gate_atomic_unsupported"
        assert exc_info.value.details == {"field": "gate.atomic"}

    def test_atomic_mode_accepted_when_store_supports_it(self) -> None:
        gate = Gate(InMemoryCounterStore(), 1, MINUTE, atomic=True)

        assert gate.check("10.0.0.1").rejected is False
        assert gate.check("10.0.0.1").rejected is True

    def test_count_only_store_works_without_atomic_mode(self) -> None:
        assert Gate(CountOnlyStore(), 3, MINUTE).check("10.0.0.1").rejected is False

    def test_exposes_policy(self) -> None:
        gate = Gate(InMemoryCounterStore(), 3, MINUTE)

        assert gate.policy == Policy(limit=3, timespan=MINUTE)


class TestGateCheck:
    def test_check_admits_then_rejects(self) -> None:
        clock = Mock(return_value=EPOCH)
        gate = Gate(InMemoryCounterStore(clock=clock), 2, MINUTE)

        assert gate.check("10.0.0.1").rejected is False
        assert gate.check("10.0.0.1").rejected is False
        verdict = gate.check("10.0.0.1")

        assert verdict.rejected is True
        assert verdict.wait_hint == MINUTE

    def test_unknown_identity_is_always_admitted(self) -> None:
        gate = Gate(InMemoryCounterStore(), 1, MINUTE)
        gate.check("10.0.0.1")

        assert gate.check("10.0.0.2").rejected is False

    def test_close_releases_store(self) -> None:
        store = Mock(spec=AbstractCounterStore)
        gate = Gate(store, 1, MINUTE)

        gate.close()

        store.close.assert_called_once_with()


class TestCreateGate:
    def test_builds_gate_from_settings(self) -> None:
        app_settings = Settings(
            gate=GateSettings(limit=5, timespan=timedelta(seconds=30)),
            store=StoreSettings(backend="memory"),
        )

        gate = create_gate(app_settings)

        assert gate.policy == Policy(limit=5, timespan=timedelta(seconds=30))
        assert gate.check("10.0.0.1").rejected is False

    def test_postgres_without_uri_fails_at_startup(self) -> None:
        app_settings = Settings(
            gate=GateSettings(),
            store=StoreSettings(backend="postgres", uri=None),
        )

        with pytest.raises(ConfigurationAppError) as exc_info:
            create_gate(app_settings)

        assert exc_info.value.code == "store_target_missing"

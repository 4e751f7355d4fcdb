"""Shared fixtures for the factory monitor tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from factory_monitor.alerts import AlertEngine
from factory_monitor.models import Device, DeviceStatus, Settings
from factory_monitor.repos.redis_repo import RedisRepo
from factory_monitor.simulator import TelemetrySimulator
from factory_monitor.store import DeviceStore


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 3.0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FixedDeltas:
    """Delta source returning a preset step per metric, recording every call."""

    def __init__(self, **steps: float) -> None:
        self.steps = steps
        self.calls = []

    def __call__(self, metric, low, high):
        self.calls.append((metric, low, high))
        return self.steps.get(metric.value, 0.0)


def make_device(**overrides) -> Device:
    fields = dict(
        id=1,
        name="Press 1",
        location="Hall 1",
        temperature=45.0,
        vibration=1.2,
        energy=100.0,
        status=DeviceStatus.ONLINE,
        last_update=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return Device(**fields)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def redis_client():
    """MagicMock standing in for redis.Redis, backed by a dict of bytes."""
    data = {}
    client = MagicMock()
    client.get.side_effect = lambda key: data.get(key)

    def _set(key, value, **kwargs):
        data[key] = value.encode() if isinstance(value, str) else value
        return True

    client.set.side_effect = _set
    client.data = data
    return client


@pytest.fixture
def repo(redis_client) -> RedisRepo:
    return RedisRepo(redis_client, "factoryDevices", "factorySettings")


@pytest.fixture
def still_simulator() -> TelemetrySimulator:
    """Simulator whose readings never move."""
    return TelemetrySimulator(FixedDeltas())


@pytest.fixture
def store(repo, clock, still_simulator) -> DeviceStore:
    """Store with two online devices, no alerts, default settings."""
    s = DeviceStore(repo=repo, engine=AlertEngine(), simulator=still_simulator, clock=clock)
    repo.save_devices([
        make_device(id=1, name="Press 1", temperature=45.0, vibration=1.0),
        make_device(id=2, name="Lathe 2", temperature=50.0, vibration=2.0),
    ])
    repo.save_settings(Settings())
    s.load()
    return s

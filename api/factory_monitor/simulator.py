"""
Synthetic telemetry for the simulated fleet.

Every tick each online device takes one bounded random-walk step:
temperature and vibration wander and are clamped to their physical range,
energy only ever accumulates. Offline devices are passed through untouched.
"""
import random
from datetime import datetime
from typing import Callable, List, Optional

from .models import Device, MetricType

TEMPERATURE_RANGE = (30.0, 80.0)
VIBRATION_RANGE = (0.0, 5.0)

# (low, high) bounds of the per-tick delta for each metric
STEP_BOUNDS = {
    MetricType.TEMPERATURE: (-5.0, 5.0),
    MetricType.VIBRATION: (-0.5, 0.5),
    MetricType.ENERGY: (0.0, 5.0),
}

DeltaSource = Callable[[MetricType, float, float], float]


def random_delta(metric: MetricType, low: float, high: float) -> float:
    return random.uniform(low, high)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class TelemetrySimulator:
    def __init__(self, delta_source: Optional[DeltaSource] = None) -> None:
        # the only source of randomness; tests pass a fixed one
        self._delta = delta_source or random_delta

    def _step(self, metric: MetricType) -> float:
        low, high = STEP_BOUNDS[metric]
        return self._delta(metric, low, high)

    def advance(self, device: Device, now: datetime) -> Device:
        if not device.is_online:
            return device
        return device.model_copy(update={
            "temperature": clamp(device.temperature + self._step(MetricType.TEMPERATURE), *TEMPERATURE_RANGE),
            "vibration": clamp(device.vibration + self._step(MetricType.VIBRATION), *VIBRATION_RANGE),
            "energy": device.energy + max(0.0, self._step(MetricType.ENERGY)),
            "last_update": now,
        })

    def simulate(self, devices: List[Device], now: datetime) -> List[Device]:
        return [self.advance(d, now) for d in devices]

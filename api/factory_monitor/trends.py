
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional

from .models import Alert, CamelModel, Device, Severity


class FleetPoint(CamelModel):
    time: str
    temperature: float
    vibration: float
    energy: float  # total energy / 10 so it shares a chart scale


class DevicePoint(CamelModel):
    time: str
    temperature: float
    vibration: float
    energy: float


class FleetSummary(CamelModel):
    online_devices: int
    total_devices: int
    avg_temperature: float
    avg_vibration: float
    total_energy: float
    active_alerts: int
    critical_alerts: int
    warning_alerts: int


def summarize(devices: List[Device], alerts: List[Alert]) -> FleetSummary:
    count = len(devices)
    active = [a for a in alerts if a.active]
    return FleetSummary(
        online_devices=sum(1 for d in devices if d.is_online),
        total_devices=count,
        avg_temperature=sum(d.temperature for d in devices) / count if count else 0.0,
        avg_vibration=sum(d.vibration for d in devices) / count if count else 0.0,
        total_energy=sum(d.energy for d in devices),
        active_alerts=len(active),
        critical_alerts=sum(1 for a in active if a.severity is Severity.CRITICAL),
        warning_alerts=sum(1 for a in active if a.severity is Severity.WARNING),
    )


class TrendRecorder:
    """Rolling chart series for the whole fleet and for each device."""

    def __init__(
        self,
        fleet_points: int = 20,
        device_points: int = 15,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.device_points = device_points
        # chart labels are wall-clock time where the process runs
        self.clock = clock or (lambda: datetime.now().astimezone())
        self._fleet: Deque[FleetPoint] = deque(maxlen=fleet_points)
        self._devices: Dict[int, Deque[DevicePoint]] = {}

    def record(self, devices: List[Device], alerts: List[Alert], now: datetime) -> None:
        label = now.strftime("%H:%M:%S")
        summary = summarize(devices, alerts)
        self._fleet.append(FleetPoint(
            time=label,
            temperature=summary.avg_temperature,
            vibration=summary.avg_vibration,
            energy=summary.total_energy / 10,
        ))
        known = set()
        for d in devices:
            known.add(d.id)
            series = self._devices.setdefault(d.id, deque(maxlen=self.device_points))
            series.append(DevicePoint(time=label, temperature=d.temperature, vibration=d.vibration, energy=d.energy))
        # deleted devices lose their history
        for device_id in list(self._devices):
            if device_id not in known:
                del self._devices[device_id]

    def observe(self, snapshot) -> None:
        """Store observer hook; only ticks and the initial load add points."""
        if snapshot.reason in ("load", "tick"):
            self.record(list(snapshot.devices), list(snapshot.alerts), self.clock())

    def fleet(self) -> List[FleetPoint]:
        return list(self._fleet)

    def device(self, device_id: int) -> List[DevicePoint]:
        return list(self._devices.get(device_id, ()))

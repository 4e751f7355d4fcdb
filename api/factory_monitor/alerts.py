
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .models import Alert, Device, MetricType, Settings, Severity, alert_id

# how far above the threshold a reading must be before it is critical
CRITICAL_MARGIN = {
    MetricType.TEMPERATURE: 10.0,
    MetricType.VIBRATION: 1.0,
}


def format_threshold(value: float) -> str:
    # 60.0 -> "60", 3.5 -> "3.5"
    return str(int(value)) if float(value).is_integer() else str(value)


def _reading(device: Device, metric: MetricType) -> float:
    if metric is MetricType.TEMPERATURE:
        return device.temperature
    if metric is MetricType.VIBRATION:
        return device.vibration
    if metric is MetricType.ENERGY:
        return device.energy
    raise ValueError(f"unknown metric {metric!r}")


def _threshold(settings: Settings, metric: MetricType) -> float:
    if metric is MetricType.TEMPERATURE:
        return settings.temperature_threshold
    if metric is MetricType.VIBRATION:
        return settings.vibration_threshold
    if metric is MetricType.ENERGY:
        return settings.energy_threshold
    raise ValueError(f"unknown metric {metric!r}")


def _severity(metric: MetricType, value: float, threshold: float) -> Severity:
    if metric is MetricType.ENERGY:
        return Severity.INFO
    if metric in CRITICAL_MARGIN:
        return Severity.CRITICAL if value > threshold + CRITICAL_MARGIN[metric] else Severity.WARNING
    raise ValueError(f"unknown metric {metric!r}")


def _message(metric: MetricType, value: float, threshold: float) -> str:
    limit = format_threshold(threshold)
    if metric is MetricType.TEMPERATURE:
        return f"Temperature at {value:.1f}°C exceeds threshold of {limit}°C"
    if metric is MetricType.VIBRATION:
        return f"Vibration at {value:.2f} m/s² exceeds threshold of {limit} m/s²"
    if metric is MetricType.ENERGY:
        return f"Energy consumption at {value:.1f} kWh exceeds threshold of {limit} kWh"
    raise ValueError(f"unknown metric {metric!r}")


class AlertEngine:
    """Maps a device reading and the current thresholds to candidate alerts.

    Only temperature and vibration are evaluated unless ``evaluate_energy``
    is set; the energy threshold is otherwise carried in settings unused.
    """

    def __init__(self, evaluate_energy: bool = False) -> None:
        self.evaluate_energy = evaluate_energy

    @property
    def metrics(self) -> Tuple[MetricType, ...]:
        if self.evaluate_energy:
            return (MetricType.TEMPERATURE, MetricType.VIBRATION, MetricType.ENERGY)
        return (MetricType.TEMPERATURE, MetricType.VIBRATION)

    def evaluate(self, device: Device, settings: Settings, now: Optional[datetime] = None) -> List[Alert]:
        if not device.is_online:
            return []
        now = now or datetime.now(timezone.utc)
        candidates = []
        for metric in self.metrics:
            value = _reading(device, metric)
            threshold = _threshold(settings, metric)
            if value > threshold:
                candidates.append(Alert(
                    id=alert_id(metric, device.id),
                    device_id=device.id,
                    device_name=device.name,
                    type=metric,
                    severity=_severity(metric, value, threshold),
                    message=_message(metric, value, threshold),
                    timestamp=now,
                    active=True,
                ))
        return candidates


def reconcile(existing: List[Alert], device_id: int, candidates: List[Alert]) -> List[Alert]:
    """Replace every alert of ``device_id`` with ``candidates``.

    A candidate whose key matched an existing alert inherits that alert's
    trigger timestamp; everything else about it is taken fresh. Alerts of
    other devices are kept in their original order, followed by the
    candidates.
    """
    previous: Dict[Tuple[MetricType, int], Alert] = {
        a.key: a for a in existing if a.device_id == device_id
    }
    kept = [a for a in existing if a.device_id != device_id]
    merged = []
    for candidate in candidates:
        prior = previous.get(candidate.key)
        if prior is not None:
            candidate = candidate.model_copy(update={"timestamp": prior.timestamp})
        merged.append(candidate)
    return kept + merged

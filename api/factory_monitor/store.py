"""
The single owner of device, alert and settings state.

Everything that changes state goes through ``DeviceStore``: the periodic
``tick()`` and the CRUD operations used by the HTTP layer. Each operation
runs to completion on the event loop thread, writes the post-mutation
snapshot through to Redis and then notifies subscribers. Nothing else holds
a mutable reference to the state; observers receive immutable snapshots.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import redis
import structlog

from .alerts import AlertEngine, reconcile
from .models import Alert, Device, DeviceStatus, Settings
from .repos.redis_repo import RedisRepo
from .simulator import TelemetrySimulator

logger = structlog.get_logger()

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def seed_devices(now: datetime) -> List[Device]:
    rows = [
        (1, "Production Line A", 45, 1.2, 120, DeviceStatus.ONLINE, "Building A"),
        (2, "Assembly Unit B", 52, 2.1, 95, DeviceStatus.ONLINE, "Building A"),
        (3, "Packaging Machine C", 38, 0.8, 75, DeviceStatus.ONLINE, "Building B"),
        (4, "Quality Control D", 42, 1.5, 60, DeviceStatus.ONLINE, "Building B"),
        (5, "Storage Unit E", 35, 0.5, 45, DeviceStatus.OFFLINE, "Building C"),
    ]
    return [
        Device(id=i, name=name, temperature=t, vibration=v, energy=e, status=s, location=loc, last_update=now)
        for i, name, t, v, e, s, loc in rows
    ]


@dataclass(frozen=True)
class StoreSnapshot:
    devices: Tuple[Device, ...]
    alerts: Tuple[Alert, ...]
    settings: Settings
    # what produced this snapshot: "load", "tick", "settings", "device", "alert"
    reason: str
    durability_warning: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "devices": [d.model_dump(mode="json", by_alias=True) for d in self.devices],
            "alerts": [a.model_dump(mode="json", by_alias=True) for a in self.alerts],
            "settings": self.settings.model_dump(mode="json", by_alias=True),
            "durabilityWarning": self.durability_warning,
        }


Observer = Callable[[StoreSnapshot], None]

# failures at the write-through boundary that must not take the session down
PERSISTENCE_ERRORS = (redis.RedisError, TypeError, ValueError)


class DeviceStore:
    def __init__(
        self,
        repo: Optional[RedisRepo] = None,
        engine: Optional[AlertEngine] = None,
        simulator: Optional[TelemetrySimulator] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.repo = repo
        self.engine = engine or AlertEngine()
        self.simulator = simulator or TelemetrySimulator()
        self.clock = clock
        self._devices: List[Device] = []
        self._alerts: List[Alert] = []
        self._settings = Settings()
        self._observers: List[Observer] = []
        # record name -> last write error, cleared by the next good write
        self._write_failures: Dict[str, str] = {}

    # --- lifecycle / queries

    def load(self) -> None:
        """Initialise from persistence, falling back to seed defaults."""
        now = self.clock()
        devices = settings = None
        if self.repo is not None:
            try:
                devices = self.repo.load_devices()
            except PERSISTENCE_ERRORS as e:
                logger.warning("Could not load devices, using seed data", error=str(e))
            try:
                settings = self.repo.load_settings()
            except PERSISTENCE_ERRORS as e:
                logger.warning("Could not load settings, using defaults", error=str(e))
        self._devices = devices if devices is not None else seed_devices(now)
        self._settings = settings if settings is not None else Settings()
        self._alerts = []
        self._reevaluate_all(now)
        logger.info("Store loaded", devices=len(self._devices), alerts=len(self._alerts))
        self._publish("load")

    @property
    def devices(self) -> List[Device]:
        return list(self._devices)

    @property
    def alerts(self) -> List[Alert]:
        return list(self._alerts)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def durability_warning(self) -> Optional[str]:
        if not self._write_failures:
            return None
        return "; ".join(
            f"Changes to {record} could not be saved: {error}" for record, error in sorted(self._write_failures.items())
        )

    def get_device(self, device_id: int) -> Optional[Device]:
        return next((d for d in self._devices if d.id == device_id), None)

    def snapshot(self, reason: str = "query") -> StoreSnapshot:
        return StoreSnapshot(
            devices=tuple(self._devices),
            alerts=tuple(self._alerts),
            settings=self._settings,
            reason=reason,
            durability_warning=self.durability_warning,
        )

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # --- simulation

    def tick(self) -> StoreSnapshot:
        """One simulate -> evaluate -> reconcile -> publish pass."""
        now = self.clock()
        self._devices = self.simulator.simulate(self._devices, now)
        self._reevaluate_all(now)
        return self._publish("tick")

    # --- mutations

    def add_device(self, fields: dict) -> Device:
        now = self.clock()
        fields = {k: v for k, v in fields.items() if k not in ("id", "last_update")}
        device = Device(
            **fields,
            id=max((d.id for d in self._devices), default=0) + 1,
            last_update=now,
        )
        self._devices.append(device)
        self._reevaluate(device, now)
        self._persist_devices()
        logger.info("Device added", device_id=device.id, name=device.name)
        self._publish("device")
        return device

    def update_device(self, device_id: int, **fields) -> Optional[Device]:
        current = self.get_device(device_id)
        if current is None:
            return None
        now = self.clock()
        fields.pop("id", None)
        updated = Device.model_validate({**current.model_dump(), **fields, "last_update": now})
        self._replace(updated)
        self._reevaluate(updated, now)
        self._persist_devices()
        self._publish("device")
        return updated

    def delete_device(self, device_id: int) -> bool:
        if self.get_device(device_id) is None:
            return False
        self._devices = [d for d in self._devices if d.id != device_id]
        self._alerts = reconcile(self._alerts, device_id, [])
        self._persist_devices()
        logger.info("Device deleted", device_id=device_id)
        self._publish("device")
        return True

    def toggle_device_status(self, device_id: int) -> Optional[Device]:
        """Flip online/offline and reconcile that device's alerts right away.

        Going offline clears the device's alerts before observers see the new
        status; coming back online evaluates its frozen readings immediately.
        ``last_update`` is left alone, status is not a reading.
        """
        current = self.get_device(device_id)
        if current is None:
            return None
        status = DeviceStatus.OFFLINE if current.is_online else DeviceStatus.ONLINE
        updated = current.model_copy(update={"status": status})
        self._replace(updated)
        self._reevaluate(updated, self.clock())
        self._persist_devices()
        logger.info("Device status toggled", device_id=device_id, status=status.value)
        self._publish("device")
        return updated

    def update_settings(self, settings: Settings) -> Settings:
        self._settings = settings
        self._persist_settings()
        self._reevaluate_all(self.clock())
        logger.info("Settings updated", **settings.model_dump(mode="json"))
        self._publish("settings")
        return settings

    def clear_alert(self, alert_id: str) -> bool:
        remaining = [a for a in self._alerts if a.id != alert_id]
        if len(remaining) == len(self._alerts):
            return False
        self._alerts = remaining
        self._publish("alert")
        return True

    # --- internals

    def _replace(self, device: Device) -> None:
        self._devices = [device if d.id == device.id else d for d in self._devices]

    def _reevaluate(self, device: Device, now: datetime) -> None:
        candidates = self.engine.evaluate(device, self._settings, now) if device.is_online else []
        self._alerts = reconcile(self._alerts, device.id, candidates)

    def _reevaluate_all(self, now: datetime) -> None:
        for device in self._devices:
            self._reevaluate(device, now)

    def _persist_devices(self) -> None:
        if self.repo is None:
            return
        try:
            self.repo.save_devices(self._devices)
        except PERSISTENCE_ERRORS as e:
            self._durability_failed("devices", e)
        else:
            self._write_failures.pop("devices", None)

    def _persist_settings(self) -> None:
        if self.repo is None:
            return
        try:
            self.repo.save_settings(self._settings)
        except PERSISTENCE_ERRORS as e:
            self._durability_failed("settings", e)
        else:
            self._write_failures.pop("settings", None)

    def _durability_failed(self, record: str, error: Exception) -> None:
        # in-memory state stays authoritative for the rest of the session
        logger.warning("Persisting state failed", record=record, error=str(error))
        self._write_failures[record] = str(error)

    def _publish(self, reason: str) -> StoreSnapshot:
        snap = self.snapshot(reason)
        for observer in list(self._observers):
            try:
                observer(snap)
            except Exception as e:
                logger.error("Store observer failed", reason=reason, error=str(e))
        return snap

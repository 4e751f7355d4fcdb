from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DeviceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class MetricType(str, Enum):
    TEMPERATURE = "temperature"
    VIBRATION = "vibration"
    ENERGY = "energy"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class SoundProfile(str, Enum):
    BEEP = "beep"
    CHIME = "chime"
    SIREN = "siren"


# short tags used in the deterministic alert id
ALERT_ID_TAGS = {
    MetricType.TEMPERATURE: "temp",
    MetricType.VIBRATION: "vib",
    MetricType.ENERGY: "energy",
}


class CamelModel(BaseModel):
    # camelCase on disk and on the wire, snake_case in code; instances are
    # shared with observers, so changes go through model_copy
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Device(CamelModel):
    id: int
    name: str
    location: str
    temperature: float
    vibration: float
    energy: float
    status: DeviceStatus = DeviceStatus.ONLINE
    last_update: datetime

    @property
    def is_online(self) -> bool:
        return self.status is DeviceStatus.ONLINE


class Alert(CamelModel):
    id: str
    device_id: int
    device_name: str
    type: MetricType
    severity: Severity
    message: str
    timestamp: datetime
    active: bool = True

    @property
    def key(self) -> Tuple[MetricType, int]:
        return (self.type, self.device_id)


def alert_id(metric: MetricType, device_id: int) -> str:
    return f"alert-{ALERT_ID_TAGS[metric]}-{device_id}"


class Settings(CamelModel):
    temperature_threshold: float = 60
    vibration_threshold: float = 3.0
    energy_threshold: float = 200
    warning_sound: SoundProfile = SoundProfile.BEEP
    critical_sound: SoundProfile = SoundProfile.SIREN


# --- request bodies (validated before anything reaches the store)

class SettingsIn(Settings):
    model_config = ConfigDict(allow_inf_nan=False)

    def to_settings(self) -> Settings:
        return Settings.model_validate(self.model_dump())


class DeviceCreate(CamelModel):
    model_config = ConfigDict(allow_inf_nan=False)

    name: str = Field(min_length=1)
    location: str = ""
    temperature: float = 45
    vibration: float = 1.2
    energy: float = 100
    status: DeviceStatus = DeviceStatus.ONLINE


class DeviceUpdate(CamelModel):
    model_config = ConfigDict(allow_inf_nan=False)

    name: Optional[str] = Field(default=None, min_length=1)
    location: Optional[str] = None
    temperature: Optional[float] = None
    vibration: Optional[float] = None
    energy: Optional[float] = None
    status: Optional[DeviceStatus] = None

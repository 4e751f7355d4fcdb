
import json
from typing import List, Optional

import redis

from ..models import Device, Settings


class RedisRepo:
    """Durable key-value storage for the device list and the settings record.

    Both records are stored as JSON strings without expiry so they survive
    restarts. Alerts are never written here; they are recomputed.
    """

    def __init__(self, client: redis.Redis, devices_key: str, settings_key: str) -> None:
        self.client = client
        self.devices_key = devices_key
        self.settings_key = settings_key

    @classmethod
    def from_url(cls, url: str, devices_key: str, settings_key: str) -> "RedisRepo":
        return cls(redis.Redis.from_url(url), devices_key, settings_key)

    def save_devices(self, devices: List[Device]) -> None:
        payload = [d.model_dump(mode="json", by_alias=True) for d in devices]
        self.client.set(self.devices_key, json.dumps(payload))

    def load_devices(self) -> Optional[List[Device]]:
        # None means "never written", callers fall back to seed data
        raw = self.client.get(self.devices_key)
        if raw is None:
            return None
        return [Device.model_validate(d) for d in json.loads(raw)]

    def save_settings(self, settings: Settings) -> None:
        self.client.set(self.settings_key, settings.model_dump_json(by_alias=True))

    def load_settings(self) -> Optional[Settings]:
        raw = self.client.get(self.settings_key)
        if raw is None:
            return None
        return Settings.model_validate_json(raw)

import os

from dotenv import load_dotenv

load_dotenv()

# --- persistence
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
DEVICES_KEY = os.getenv("DEVICES_KEY", "factoryDevices")
SETTINGS_KEY = os.getenv("SETTINGS_KEY", "factorySettings")

# --- logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# --- alerting
# energy threshold is only evaluated when explicitly switched on
ENERGY_ALERTS = os.getenv("ENERGY_ALERTS", "false").lower() == "true"

# --- trends
FLEET_TREND_POINTS = int(os.getenv("FLEET_TREND_POINTS", "20"))
DEVICE_TREND_POINTS = int(os.getenv("DEVICE_TREND_POINTS", "15"))

# fixed simulation cadence, not configurable at runtime
TICK_INTERVAL_SECONDS = 3.0

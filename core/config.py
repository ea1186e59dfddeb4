import os

from dotenv import load_dotenv

# Load environment variables from .env file, if it exists
load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


# CORS origins
DEV_DOMAIN = os.getenv("DEV_DOMAIN", "http://localhost:5173")
PRODUCTION_DOMAIN = os.getenv("PRODUCTION_DOMAIN", "https://shiftguard.app")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Seconds a clocked-in worker may stay outside every zone before auto clock-out
AUTO_CLOCKOUT_GRACE_SECONDS = _env_float("AUTO_CLOCKOUT_GRACE_SECONDS", 60.0)
AUTO_CLOCKOUT_TICK_SECONDS = _env_float("AUTO_CLOCKOUT_TICK_SECONDS", 1.0)
AUTO_CLOCKOUT_NOTES = "Auto clock-out due to leaving work zone"

# Samples reporting worse accuracy are flagged, never rejected
LOW_ACCURACY_THRESHOLD_M = _env_float("LOW_ACCURACY_THRESHOLD_M", 100.0)

TRACKING_EVENT_BUFFER_SIZE = int(os.getenv("TRACKING_EVENT_BUFFER_SIZE", "500"))

# Location samples a session may hold unprocessed before streaming gets 429
TRACKING_MAX_PENDING_SAMPLES = int(os.getenv("TRACKING_MAX_PENDING_SAMPLES", "100"))

ANALYTICS_TIMEZONE = os.getenv("ANALYTICS_TIMEZONE", "UTC")

"""
Config - Global Configuration
=============================

Feed endpoints, service intervals and paths, plus the runtime Settings
read from the environment. Notification thresholds are NOT here: they live
in the key-value store under CONFIG_THRESHOLDS (see notify.thresholds).

Environment:
    AURORA_DB_PATH          SQLite key-value store path
    AURORA_ADMIN_SECRET     Shared secret for /status, triggers, /broadcast-batch
    VAPID_PRIVATE_KEY       base64url raw P-256 private scalar (32 bytes)
    VAPID_PUBLIC_KEY        base64url uncompressed P-256 point (65 bytes)
    VAPID_CONTACT           'mailto:...' subject for VAPID
    AURORA_FORECAST_URL     Forecast endpoint (opaque score source)
    AURORA_IPS_URL          Interplanetary shock list
    AURORA_GROUND_MAG_URL   Ground magnetometer time-series API
    AURORA_GROUND_MAG_IS_RATE  Set to 1 when that series is already dB/dt (nT/min)
    AURORA_SCHEDULE_SEC     Scheduled evaluation interval
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# --- NOAA SWPC feeds ---
NOAA_PLASMA_URL = "https://services.swpc.noaa.gov/products/solar-wind/plasma-1-day.json"
NOAA_MAG_URL = "https://services.swpc.noaa.gov/products/solar-wind/mag-1-day.json"
GOES_PRIMARY_MAG_URL = "https://services.swpc.noaa.gov/json/goes/primary/magnetometers-1-day.json"
GOES_SECONDARY_MAG_URL = "https://services.swpc.noaa.gov/json/goes/secondary/magnetometers-1-day.json"
GOES_XRAY_URL = "https://services.swpc.noaa.gov/json/goes/primary/xrays-1-day.json"

# --- Dashboard backends ---
FORECAST_URL = "https://spottheaurora.thenamesrock.workers.dev/"
IPS_URL = "https://spottheaurora.thenamesrock.workers.dev/ips"
# Vendor time-series API ({data: [{ts, val}]}); no public default
GROUND_MAG_URL = None

API_TIMEOUT_SEC = 15
USER_AGENT = 'AuroraSentinel/1.0'

# --- Service loop ---
REFRESH_INTERVAL_SEC = 60        # Client-side polling
SCHEDULE_INTERVAL_SEC = 60       # Server-side evaluator
HEALTH_THRESHOLD_MS = 10 * 60 * 1000

# --- Push delivery ---
PUSH_TTL_SEC = 3600
VAPID_EXPIRY_SEC = 12 * 3600
BATCH_SIZE = 50
MAX_CHAIN = 10                   # Hard ceiling on batch continuations

DEFAULT_DB_PATH = Path("results/aurora_sentinel/kv.db")


@dataclass
class Settings:
    db_path: Path = DEFAULT_DB_PATH
    admin_secret: Optional[str] = None
    vapid_private_key: Optional[str] = None
    vapid_public_key: Optional[str] = None
    vapid_contact: str = 'mailto:admin@example.com'
    forecast_url: str = FORECAST_URL
    ips_url: str = IPS_URL
    ground_mag_url: Optional[str] = GROUND_MAG_URL
    ground_mag_is_rate: bool = False
    schedule_interval_sec: int = SCHEDULE_INTERVAL_SEC

    @property
    def push_enabled(self) -> bool:
        return bool(self.vapid_private_key and self.vapid_public_key)

    def check_secret(self, secret: Optional[str]) -> bool:
        """Admin endpoints are closed when no secret is configured."""
        return bool(self.admin_secret) and secret == self.admin_secret


def load_settings(env: Optional[dict] = None) -> Settings:
    """Build Settings from environment variables (or a given mapping)."""
    env = os.environ if env is None else env
    return Settings(
        db_path=Path(env.get('AURORA_DB_PATH', str(DEFAULT_DB_PATH))),
        admin_secret=env.get('AURORA_ADMIN_SECRET') or None,
        vapid_private_key=env.get('VAPID_PRIVATE_KEY') or None,
        vapid_public_key=env.get('VAPID_PUBLIC_KEY') or None,
        vapid_contact=env.get('VAPID_CONTACT', 'mailto:admin@example.com'),
        forecast_url=env.get('AURORA_FORECAST_URL', FORECAST_URL),
        ips_url=env.get('AURORA_IPS_URL', IPS_URL),
        ground_mag_url=env.get('AURORA_GROUND_MAG_URL') or GROUND_MAG_URL,
        ground_mag_is_rate=env.get('AURORA_GROUND_MAG_IS_RATE', '').lower() in ('1', 'true', 'yes'),
        schedule_interval_sec=int(env.get('AURORA_SCHEDULE_SEC', SCHEDULE_INTERVAL_SEC)),
    )

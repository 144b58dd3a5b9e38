"""
Runtime settings read from the environment (after ``load_env``).
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_BASE_URL = "https://api.hubapi.com"
BRAND_OBJECT = "2-26628489"
PARTNERSHIP_OBJECT = "2-27025032"


def _get_float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_bool_env(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    portal_id: Optional[str] = None
    brand_object: str = BRAND_OBJECT
    partnership_object: str = PARTNERSHIP_OBJECT
    rate_capacity: float = 10
    rate_per_sec: float = 10.0
    timeout: float = 15.0
    store_path: Path = Path("data/brandsync.db")
    log_level: str = "INFO"
    debug: bool = False
    app_id: Optional[str] = None
    webhook_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_key=os.getenv("HUBSPOT_API_KEY"),
            base_url=os.getenv("HUBSPOT_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            portal_id=os.getenv("HUBSPOT_PORTAL_ID"),
            brand_object=os.getenv("HUBSPOT_BRAND_OBJECT", BRAND_OBJECT),
            partnership_object=os.getenv("HUBSPOT_PARTNERSHIP_OBJECT", PARTNERSHIP_OBJECT),
            rate_capacity=_get_float_env("BRANDSYNC_RATE_CAPACITY", 10),
            rate_per_sec=_get_float_env("BRANDSYNC_RATE_PER_SEC", 10.0),
            timeout=_get_float_env("BRANDSYNC_TIMEOUT", 15.0),
            store_path=Path(os.getenv("BRANDSYNC_STORE", "data/brandsync.db")),
            log_level=os.getenv("BRANDSYNC_LOG_LEVEL", "INFO"),
            debug=_get_bool_env("BRANDSYNC_DEBUG"),
            app_id=os.getenv("HUBSPOT_APP_ID"),
            webhook_url=os.getenv("WEBHOOK_URL"),
        )

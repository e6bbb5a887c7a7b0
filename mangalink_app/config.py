"""
================================================================================
MangaLink v1.0 - Runtime Settings
================================================================================
All tunables are read from the environment (a local .env is loaded by the app
factory through python-dotenv before this module is consulted).

VARIABLES:
    MANGALINK_DATABASE_URL    SQLAlchemy URL (falls back to DATABASE_URL)
    MANGALINK_AUTO_TTL        Seconds a positive auto mapping stays valid
    MANGALINK_NEGATIVE_TTL    Seconds a "nothing found" mapping stays valid
    MANGALINK_METRICS_TTL     Seconds cached unit counts stay valid
    MANGALINK_FLUSH_INTERVAL  Seconds between expiry sweeps
    MANGALINK_REQUEST_TIMEOUT Per-attempt network timeout
    MANGALINK_MAX_ATTEMPTS    Network attempts before giving up
    MANGALINK_BACKOFF_BASE    First backoff delay (doubles per attempt)
    MANGALINK_BACKOFF_MAX     Backoff ceiling
    MANGALINK_PLATFORMS       Comma separated platform ids (default: all)
    MANGALINK_LOG_DIR         Directory for rotating log files
================================================================================
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

ONE_HOUR = 60 * 60


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass
class Settings:
    """Resolved configuration for one application instance."""
    database_url: Optional[str] = None
    auto_mapping_ttl: float = ONE_HOUR
    negative_mapping_ttl: float = ONE_HOUR
    metrics_ttl: float = ONE_HOUR
    flush_interval: float = ONE_HOUR
    request_timeout: float = 10.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 10.0
    platforms: List[str] = field(default_factory=list)
    log_dir: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 5000

    @classmethod
    def from_env(cls) -> "Settings":
        platforms = os.environ.get("MANGALINK_PLATFORMS", "")
        return cls(
            database_url=os.environ.get("MANGALINK_DATABASE_URL") or os.environ.get("DATABASE_URL"),
            auto_mapping_ttl=_env_float("MANGALINK_AUTO_TTL", ONE_HOUR),
            negative_mapping_ttl=_env_float("MANGALINK_NEGATIVE_TTL", ONE_HOUR),
            metrics_ttl=_env_float("MANGALINK_METRICS_TTL", ONE_HOUR),
            flush_interval=_env_float("MANGALINK_FLUSH_INTERVAL", ONE_HOUR),
            request_timeout=_env_float("MANGALINK_REQUEST_TIMEOUT", 10.0),
            max_attempts=_env_int("MANGALINK_MAX_ATTEMPTS", 3),
            backoff_base=_env_float("MANGALINK_BACKOFF_BASE", 1.0),
            backoff_max=_env_float("MANGALINK_BACKOFF_MAX", 10.0),
            platforms=[p.strip() for p in platforms.split(",") if p.strip()],
            log_dir=os.environ.get("MANGALINK_LOG_DIR"),
            host=os.environ.get("HOST", "127.0.0.1"),
            port=_env_int("PORT", 5000),
        )

    def validate(self) -> None:
        """Reject settings the engine cannot run with."""
        for name in ("auto_mapping_ttl", "negative_mapping_ttl", "metrics_ttl", "flush_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True, slots=True)
class Settings:
    redis_url: str
    room_ttl_seconds: int
    inactive_threshold_seconds: int
    keepalive_interval_seconds: float
    log_level: str

    @property
    def inactive_threshold_ms(self) -> int:
        return self.inactive_threshold_seconds * 1000


def _load_dotenv() -> None:
    # Real environment variables always win over the repo .env file.
    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_dotenv()
    return Settings(
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
        room_ttl_seconds=int(os.environ.get("ROOM_TTL_SECONDS", 8 * 60 * 60)),
        inactive_threshold_seconds=int(os.environ.get("INACTIVE_THRESHOLD_SECONDS", 5 * 60)),
        keepalive_interval_seconds=float(os.environ.get("KEEPALIVE_INTERVAL_SECONDS", 30)),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )

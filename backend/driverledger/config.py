"""Runtime settings, read from environment variables (and a .env file)."""

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from driverledger.models import DEFAULT_MAX_POINTS

_ENV_PREFIX = "DRIVERLEDGER_"


class Settings(BaseModel):
    db_path: str = "driverledger.db"
    event_log_path: str = "events.db"
    genesis_block: int = Field(0, ge=0)
    max_points: int = Field(DEFAULT_MAX_POINTS, ge=1)

    # Seconds between self-healing backfill passes.
    backfill_interval: float = Field(30.0, gt=0)
    # Upper bound for any single event-log query or store write.
    operation_timeout: float = Field(10.0, gt=0)
    resubscribe_delay: float = Field(5.0, ge=0)
    poll_interval: float = Field(1.0, gt=0)
    live_queue_size: int = Field(1000, ge=1)

    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from DRIVERLEDGER_* variables; unset ones keep defaults."""
        if environ is None:
            load_dotenv(Path(__file__).resolve().parent.parent / ".env")
            environ = os.environ

        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = environ.get(f"{_ENV_PREFIX}{name.upper()}")
            if raw is None or raw == "":
                continue
            if name == "cors_origins":
                values[name] = [o.strip() for o in raw.split(",") if o.strip()]
            else:
                values[name] = raw
        if environ.get("LOG_LEVEL"):
            values["log_level"] = environ["LOG_LEVEL"]
        return cls.model_validate(values)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

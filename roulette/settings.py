from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_origins(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return tuple(o.strip() for o in raw.split(",") if o.strip())


@dataclass(frozen=True, slots=True)
class Settings:
    # Window after an unexpected disconnect during which a participant may reconnect.
    grace_period_seconds: float = 30.0
    # Pause between `roulette_start` and the draw so clients can start the wheel together.
    spin_delay_seconds: float = 0.5
    room_max_age_seconds: float = 24 * 60 * 60
    janitor_interval_seconds: float = 60 * 60
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = ("*",)
    port: int = 5000


def load_settings(*, env_file: Path | None = None) -> Settings:
    """Build settings from `ROULETTE_*` environment variables.

    A `.env` file in the working directory (or `env_file`) is loaded first, without
    overriding variables that are already set.
    """

    env_path = env_file or Path.cwd() / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)

    return Settings(
        grace_period_seconds=_env_float("ROULETTE_GRACE_PERIOD_SECONDS", 30.0),
        spin_delay_seconds=_env_float("ROULETTE_SPIN_DELAY_SECONDS", 0.5),
        room_max_age_seconds=_env_float("ROULETTE_ROOM_MAX_AGE_SECONDS", 24 * 60 * 60),
        janitor_interval_seconds=_env_float("ROULETTE_JANITOR_INTERVAL_SECONDS", 60 * 60),
        log_level=os.environ.get("ROULETTE_LOG_LEVEL", "INFO").upper(),
        cors_origins=_env_origins("ROULETTE_CORS_ORIGINS", ("*",)),
        port=int(os.environ.get("PORT", "5000")),
    )

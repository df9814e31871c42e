from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


ENV_PREFIX = "TICTACTOE_"


@dataclass(frozen=True, slots=True)
class Settings:
    heartbeat_interval_s: float = 15.0
    lock_timeout_s: float = 5.0
    renderer: str = "html"
    player_cookie: str = "pid"
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000


def _env(name: str) -> str | None:
    return os.environ.get(f"{ENV_PREFIX}{name}")


def _positive_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{ENV_PREFIX}{name} must be > 0, got {raw!r}")
    return value


def load_dotenv_file(*, project_root: Path | None = None) -> None:
    """Load the repo `.env` if present. Already-exported variables win."""

    root = project_root or Path(__file__).resolve().parents[1]
    env_path = root / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


def settings_from_env() -> Settings:
    defaults = Settings()
    port_raw = _env("PORT")
    try:
        port = int(port_raw) if port_raw else defaults.port
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}PORT must be an integer, got {port_raw!r}") from e

    return Settings(
        heartbeat_interval_s=_positive_float("HEARTBEAT_INTERVAL_S", defaults.heartbeat_interval_s),
        lock_timeout_s=_positive_float("LOCK_TIMEOUT_S", defaults.lock_timeout_s),
        renderer=_env("RENDERER") or defaults.renderer,
        player_cookie=_env("PLAYER_COOKIE") or defaults.player_cookie,
        log_level=(_env("LOG_LEVEL") or defaults.log_level).upper(),
        host=_env("HOST") or defaults.host,
        port=port,
    )

"""
Relay configuration from environment variables
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _read_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class RelayConfig:
    host: str = "0.0.0.0"
    port: int = 3000
    static_dir: Path = Path("./public")
    # Idle reaper: sweep period and inactivity threshold, seconds
    reap_interval: float = 60.0
    idle_timeout: float = 300.0
    outbox_size: int = 256
    ws_heartbeat: Optional[float] = 30.0
    rate_limit: int = 100

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RelayConfig":
        """Build a config from ``os.environ`` (or the given mapping)"""
        env = os.environ if env is None else env
        heartbeat = _read_float(env, "POSESYNC_WS_HEARTBEAT", 30.0)
        return cls(
            host=env.get("SERVER_HOST", "0.0.0.0"),
            port=_read_int(env, "PORT", 3000),
            static_dir=Path(env.get("POSESYNC_STATIC_DIR", "./public")),
            reap_interval=_read_float(env, "POSESYNC_REAP_INTERVAL", 60.0),
            idle_timeout=_read_float(env, "POSESYNC_IDLE_TIMEOUT", 300.0),
            outbox_size=_read_int(env, "POSESYNC_OUTBOX_SIZE", 256),
            # 0 disables the websocket ping
            ws_heartbeat=heartbeat or None,
            rate_limit=_read_int(env, "POSESYNC_RATE_LIMIT", 100),
        )

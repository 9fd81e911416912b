from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

DEFAULT_API_HOST = "https://api.steampowered.com"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_APP_ID = 282440  # Quake Live
DEFAULT_SIZE_WORKERS = 4


@dataclass(frozen=True)
class Config:
    api_host: str = DEFAULT_API_HOST
    timeout_s: float = DEFAULT_TIMEOUT_S
    steam_path: str | None = None  # explicit Steam install root; skips discovery
    app_id: int = DEFAULT_APP_ID
    size_workers: int = DEFAULT_SIZE_WORKERS


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("WORKSHOPKEEPER_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("workshopkeeper") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config()

    allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    return Config(**filtered)  # type: ignore[arg-type]


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)
    return path


def apply_env(base: Config) -> Config:
    # Environment overrides the config file; CLI flags are applied on top by the caller.
    api_host = os.getenv("WORKSHOPKEEPER_API_HOST") or base.api_host
    steam_path = os.getenv("WORKSHOPKEEPER_STEAM_PATH") or base.steam_path

    app_id = base.app_id
    if env_app := os.getenv("WORKSHOPKEEPER_APP_ID"):
        try:
            app_id = int(env_app)
        except ValueError:
            pass

    timeout_s = base.timeout_s
    if env_timeout := os.getenv("WORKSHOPKEEPER_TIMEOUT_S"):
        try:
            timeout_s = float(env_timeout)
        except ValueError:
            pass

    return Config(
        api_host=api_host,
        timeout_s=timeout_s,
        steam_path=steam_path,
        app_id=app_id,
        size_workers=base.size_workers,
    )

from __future__ import annotations

import logging

import psutil

from .errors import SteamRunningError

logger = logging.getLogger(__name__)

# Process base names (without ".exe") mapped to the label shown to the user.
STEAM_PROCESSES = {
    "steam": "Steam",
    "steamcmd": "SteamCMD",
}


def _base_name(name: str) -> str:
    name = name.lower()
    if name.endswith(".exe"):
        name = name[: -len(".exe")]
    return name


def running_steam_processes() -> list[str]:
    """Labels of the Steam clients currently running, in a stable order."""
    found: set[str] = set()
    for proc in psutil.process_iter(["name"]):
        name = proc.info.get("name")
        if not name:
            continue
        label = STEAM_PROCESSES.get(_base_name(name))
        if label is not None:
            found.add(label)
    return [label for label in STEAM_PROCESSES.values() if label in found]


def ensure_steam_not_running(*, force: bool = False) -> None:
    """Raise SteamRunningError while a Steam client is running, unless forced."""
    running = running_steam_processes()
    if not running:
        return
    if force:
        logger.warning("Continuing while %s is running (--force)", ", ".join(running))
        return
    raise SteamRunningError(running)

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Iterable

from .cancel import CancelToken, check
from .errors import AppNotInstalledError, ManifestNotFoundError, ParseError, SteamNotFoundError
from .kv import KVDocument, load

logger = logging.getLogger(__name__)

LIBRARY_FOLDERS_FILENAME = "libraryfolders.vdf"

_REGISTRY_KEYS = (
    ("HKEY_LOCAL_MACHINE", r"Software\Wow6432Node\Valve\Steam", "InstallPath"),
    ("HKEY_LOCAL_MACHINE", r"Software\Valve\Steam", "InstallPath"),
    ("HKEY_CURRENT_USER", r"Software\Valve\Steam", "SteamPath"),
)


def _registry_candidates() -> list[Path]:
    if sys.platform != "win32":
        return []
    import winreg

    out: list[Path] = []
    for hive_name, subkey, value_name in _REGISTRY_KEYS:
        hive = getattr(winreg, hive_name)
        try:
            with winreg.OpenKey(hive, subkey) as key:
                value = winreg.QueryValueEx(key, value_name)[0]
        except OSError:
            continue
        if isinstance(value, str) and value:
            out.append(Path(value))
    return out


def _well_known_candidates() -> list[Path]:
    out: list[Path] = []
    if os.name == "nt":
        for root_var in ("ProgramFiles(x86)", "ProgramFiles"):
            root = os.environ.get(root_var)
            if root:
                out.append(Path(root) / "Steam")
        return out
    home = Path.home()
    if sys.platform == "darwin":
        out.append(home / "Library/Application Support/Steam")
    out.append(home / ".steam/steam")
    out.append(home / ".local/share/Steam")
    return out


def locate_install_root(override: str | Path | None = None) -> Path:
    """
    Return the Steam install root.

    An explicit override wins and must exist. Otherwise the registry (Windows) and
    well-known directories are tried in order; the first existing directory is used.
    """
    if override:
        path = Path(override).expanduser()
        if not path.is_dir():
            raise SteamNotFoundError(f"Configured Steam path does not exist: {path}")
        return path

    for candidate in [*_registry_candidates(), *_well_known_candidates()]:
        if candidate.is_dir():
            logger.info("Using Steam install root %s", candidate)
            return candidate

    raise SteamNotFoundError(
        "Steam is not installed, or its installation path could not be found. "
        "Set it with `workshopkeeper config set --steam-path ...`."
    )


def library_folders_path(install_root: Path) -> Path:
    return install_root / "steamapps" / LIBRARY_FOLDERS_FILENAME


def _load_library_folders(install_root: Path) -> KVDocument:
    path = library_folders_path(install_root)
    if not path.is_file():
        raise ManifestNotFoundError(f"Expected to find '{LIBRARY_FOLDERS_FILENAME}' at: {path}")
    return load(path)


def _has_app_manifest(library_root: Path, app_id: int) -> bool:
    return (library_root / "steamapps" / f"appmanifest_{app_id}.acf").is_file()


def library_roots(install_root: Path, index: KVDocument | None = None) -> list[tuple[Path, set[str] | None]]:
    """
    List (library root, app ids) pairs from the cross-library index.

    The id set is None for legacy entries, which carry no apps table and must be
    probed on disk instead.
    """
    if index is None:
        index = _load_library_folders(install_root)
    source = library_folders_path(install_root)

    entry = index.root
    if entry is None or not entry[1].is_object:
        raise ParseError("Library index has no root object.", source=source)
    _, folders = entry

    out: list[tuple[Path, set[str] | None]] = []
    for key, library in folders.items():
        if not key.isdigit():
            # contentstatsid, TimeNextStatsReport, ...
            continue
        if library.is_scalar:
            out.append((Path(library.value or ""), None))
            continue

        path = library.text("path")
        if not path:
            raise ParseError(f"Library entry {key!r} has no path.", source=source)
        apps = library.get("apps")
        if apps is None:
            out.append((Path(path), None))
            continue
        if not apps.is_object:
            raise ParseError(f"Library entry {key!r} has a malformed apps table.", source=source)
        app_ids: set[str] = set()
        for app_key, app in apps.items():
            if not app_key.strip() or not app.is_scalar:
                raise ParseError(f"Library entry {key!r} has a null app entry.", source=source)
            app_ids.add(app_key.strip())
        out.append((Path(path), app_ids))
    return out


def find_library_root(install_root: Path, app_id: int, *, cancel: CancelToken | None = None) -> Path:
    check(cancel)
    libraries = library_roots(install_root)
    check(cancel)

    wanted = str(app_id)
    legacy: list[Path] = []
    for root, app_ids in libraries:
        if app_ids is None:
            legacy.append(root)
            continue
        if wanted in app_ids:
            logger.info("App %s found in library %s", app_id, root)
            return root

    # Legacy indexes do not list the install root itself.
    for root in _dedupe([*legacy, install_root] if legacy else []):
        if _has_app_manifest(root, app_id):
            logger.info("App %s found in library %s (probed)", app_id, root)
            return root

    raise AppNotInstalledError(app_id)


def _dedupe(paths: Iterable[Path]) -> list[Path]:
    seen: set[str] = set()
    out: list[Path] = []
    for p in paths:
        key = os.path.normcase(str(p))
        if key in seen:
            continue
        seen.add(key)
        out.append(p)
    return out

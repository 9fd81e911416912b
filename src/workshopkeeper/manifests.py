from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .cancel import CancelToken, check
from .errors import ManifestMismatchError, ManifestNotFoundError, ParseError
from .kv import KVDocument, load
from .locator import find_library_root, locate_install_root

logger = logging.getLogger(__name__)

INSTALLED_ITEMS_KEY = "WorkshopItemsInstalled"
ITEM_DETAILS_KEY = "WorkshopItemDetails"


@dataclass(frozen=True)
class InstalledItem:
    size: int
    time_updated: datetime
    manifest: str | None = None


@dataclass(frozen=True)
class CachedItemDetails:
    latest_time_updated: datetime | None = None
    latest_manifest: str | None = None


@dataclass(frozen=True)
class AppState:
    app_id: int
    library_root: Path
    app_manifest: KVDocument
    workshop_manifest: KVDocument | None

    @property
    def name(self) -> str | None:
        return _root_node(self.app_manifest).text("name")

    @property
    def install_dir(self) -> str | None:
        return _root_node(self.app_manifest).text("installdir")

    @property
    def workshop_manifest_path(self) -> Path:
        return workshop_manifest_path(self.library_root, self.app_id)


def app_manifest_path(library_root: Path, app_id: int) -> Path:
    return Path(library_root) / "steamapps" / f"appmanifest_{app_id}.acf"


def workshop_manifest_path(library_root: Path, app_id: int) -> Path:
    return Path(library_root) / "steamapps" / "workshop" / f"appworkshop_{app_id}.acf"


def workshop_content_path(library_root: Path, app_id: int, item_id: str | None = None) -> Path:
    base = Path(library_root) / "steamapps" / "workshop" / "content" / str(app_id)
    if not item_id:
        return base
    return base / item_id


def _root_node(doc: KVDocument) -> KVDocument:
    entry = doc.root
    if entry is None or not entry[1].is_object:
        return KVDocument.object()
    return entry[1]


def load_app_manifest(library_root: Path, app_id: int) -> KVDocument:
    path = app_manifest_path(library_root, app_id)
    if not path.is_file():
        raise ManifestNotFoundError(f"App manifest not found at: {path}")
    logger.debug("Loading app manifest %s", path)
    return load(path)


def load_workshop_manifest(library_root: Path, app_id: int) -> KVDocument | None:
    """
    Load the add-on (workshop) manifest, or None when the app has no workshop content.

    A manifest recorded for a different app raises ManifestMismatchError rather than
    being returned.
    """
    path = workshop_manifest_path(library_root, app_id)
    if not path.is_file():
        return None
    logger.debug("Loading workshop manifest %s", path)
    doc = load(path)

    recorded = _root_node(doc).text("appid")
    if recorded is None or recorded.strip() != str(app_id):
        raise ManifestMismatchError(
            f"Workshop manifest appid ({recorded}) does not match target appid ({app_id}): {path}"
        )
    return doc


def installed_item_ids(workshop_manifest: KVDocument | None) -> list[str]:
    if workshop_manifest is None:
        return []
    items = _root_node(workshop_manifest).get(INSTALLED_ITEMS_KEY)
    if items is None:
        return []
    return items.keys()


def installed_items_table(workshop_manifest: KVDocument) -> KVDocument | None:
    return _root_node(workshop_manifest).get(INSTALLED_ITEMS_KEY)


def item_details_table(workshop_manifest: KVDocument) -> KVDocument | None:
    return _root_node(workshop_manifest).get(ITEM_DETAILS_KEY)


def _parse_int(node: KVDocument, field: str, *, item_id: str, required: bool) -> int | None:
    raw = node.text(field)
    if raw is None:
        if required:
            raise ParseError(f"Workshop item {item_id} is missing {field!r}.")
        return None
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ParseError(f"Workshop item {item_id} has a non-numeric {field!r}: {raw!r}") from e


def from_epoch(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _parse_time(node: KVDocument, field: str, *, item_id: str, required: bool) -> datetime | None:
    seconds = _parse_int(node, field, item_id=item_id, required=required)
    if seconds is None:
        return None
    try:
        return from_epoch(seconds)
    except (OverflowError, OSError, ValueError) as e:
        raise ParseError(f"Workshop item {item_id} has an out-of-range {field!r}: {seconds}") from e


def read_installed_items(workshop_manifest: KVDocument | None) -> dict[str, InstalledItem]:
    if workshop_manifest is None:
        return {}
    table = installed_items_table(workshop_manifest)
    if table is None:
        return {}

    out: dict[str, InstalledItem] = {}
    for item_id, node in table.items():
        if not node.is_object:
            raise ParseError(f"Workshop item {item_id} is not an object in {INSTALLED_ITEMS_KEY}.")
        size = _parse_int(node, "size", item_id=item_id, required=True)
        updated = _parse_time(node, "timeupdated", item_id=item_id, required=True)
        out[item_id] = InstalledItem(
            size=size or 0,
            time_updated=updated or from_epoch(0),
            manifest=node.text("manifest"),
        )
    return out


def read_item_details(workshop_manifest: KVDocument | None) -> dict[str, CachedItemDetails]:
    if workshop_manifest is None:
        return {}
    table = item_details_table(workshop_manifest)
    if table is None:
        return {}

    out: dict[str, CachedItemDetails] = {}
    for item_id, node in table.items():
        if not node.is_object:
            raise ParseError(f"Workshop item {item_id} is not an object in {ITEM_DETAILS_KEY}.")
        out[item_id] = CachedItemDetails(
            latest_time_updated=_parse_time(node, "latest_timeupdated", item_id=item_id, required=False),
            latest_manifest=node.text("latest_manifest"),
        )
    return out


def load_state(
    app_id: int,
    *,
    steam_path: str | Path | None = None,
    cancel: CancelToken | None = None,
) -> AppState:
    install_root = locate_install_root(steam_path)
    library_root = find_library_root(install_root, app_id, cancel=cancel)
    check(cancel)
    app_manifest = load_app_manifest(library_root, app_id)
    check(cancel)
    workshop_manifest = load_workshop_manifest(library_root, app_id)
    return AppState(
        app_id=app_id,
        library_root=library_root,
        app_manifest=app_manifest,
        workshop_manifest=workshop_manifest,
    )

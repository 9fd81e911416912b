from ._version import __version__
from .catalog import AppMetadata, CatalogClient, ItemFreshness
from .cancel import CancelToken, OperationCancelledError
from .errors import (
    AppNotInstalledError,
    BackupError,
    CatalogHTTPError,
    CatalogUnavailableError,
    ManifestIOError,
    ManifestMismatchError,
    ManifestNotFoundError,
    NotFoundError,
    ParseError,
    SteamNotFoundError,
    SteamRunningError,
    WorkshopError,
)
from .kv import KVDocument, parse
from .locator import find_library_root, locate_install_root
from .maintenance import delete_items, reset_workshop_data
from .manifests import AppState, installed_item_ids, load_app_manifest, load_state, load_workshop_manifest, workshop_content_path
from .processes import ensure_steam_not_running, running_steam_processes
from .reconcile import ItemRecord, find_missing_data, reconcile
from .writer import remove_items

__all__ = [
    "__version__",
    "AppMetadata",
    "AppNotInstalledError",
    "AppState",
    "BackupError",
    "CancelToken",
    "CatalogClient",
    "CatalogHTTPError",
    "CatalogUnavailableError",
    "ItemFreshness",
    "ItemRecord",
    "KVDocument",
    "ManifestIOError",
    "ManifestMismatchError",
    "ManifestNotFoundError",
    "NotFoundError",
    "OperationCancelledError",
    "ParseError",
    "SteamNotFoundError",
    "SteamRunningError",
    "WorkshopError",
    "delete_items",
    "ensure_steam_not_running",
    "find_library_root",
    "find_missing_data",
    "installed_item_ids",
    "load_app_manifest",
    "load_state",
    "load_workshop_manifest",
    "locate_install_root",
    "parse",
    "reconcile",
    "remove_items",
    "reset_workshop_data",
    "running_steam_processes",
    "workshop_content_path",
]

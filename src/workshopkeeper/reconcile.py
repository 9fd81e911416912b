from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Mapping, Protocol

from .cancel import CancelToken, check
from .catalog import ItemFreshness
from .errors import CatalogUnavailableError, ManifestIOError
from .kv import KVDocument
from .manifests import from_epoch, read_installed_items, read_item_details

logger = logging.getLogger(__name__)

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


class Catalog(Protocol):
    def fetch_titles(self, item_ids: Iterable[str], *, cancel: CancelToken | None = None) -> dict[str, str]:
        ...

    def fetch_freshness(
        self, item_ids: Iterable[str], *, cancel: CancelToken | None = None
    ) -> dict[str, ItemFreshness]:
        ...


@dataclass(frozen=True)
class ItemRecord:
    id: str
    title: str
    size: int
    locally_updated_at: datetime
    local_version_tag: str | None = None
    remote_updated_at: datetime | None = None
    remote_version_tag: str | None = None

    @property
    def has_update(self) -> bool:
        return self.remote_updated_at is not None and self.remote_updated_at > self.locally_updated_at


def placeholder_title(item_id: str) -> str:
    return f"Workshop item {item_id}"


class ItemRecordBuilder:
    """Accumulates fields from each source before producing an immutable ItemRecord."""

    def __init__(self, item_id: str) -> None:
        self.id = item_id
        self.title: str | None = None
        self.fallback_title: str | None = None
        self.size = 0
        self.locally_updated_at = from_epoch(0)
        self.local_version_tag: str | None = None
        self.remote_updated_at: datetime | None = None
        self.remote_version_tag: str | None = None

    def offer_remote(self, updated_at: datetime, version_tag: str | None = None) -> bool:
        # The freshest known remote time wins regardless of source.
        if self.remote_updated_at is not None and updated_at <= self.remote_updated_at:
            return False
        self.remote_updated_at = updated_at
        self.remote_version_tag = version_tag
        return True

    def build(self) -> ItemRecord:
        return ItemRecord(
            id=self.id,
            title=self.title or self.fallback_title or placeholder_title(self.id),
            size=self.size,
            locally_updated_at=self.locally_updated_at,
            local_version_tag=self.local_version_tag,
            remote_updated_at=self.remote_updated_at,
            remote_version_tag=self.remote_version_tag,
        )


def reconcile(
    installed_ids: Iterable[str],
    workshop_manifest: KVDocument | None,
    catalog: Catalog,
    *,
    cancel: CancelToken | None = None,
) -> dict[str, ItemRecord]:
    """
    Merge the workshop manifest with live catalog data into one record per installed id.

    Catalog failures degrade titles and freshness but never drop an item: ids the
    catalog does not know still get a record with a placeholder title.
    """
    ids = list(dict.fromkeys(installed_ids))
    installed = read_installed_items(workshop_manifest)
    cached = read_item_details(workshop_manifest)

    builders: dict[str, ItemRecordBuilder] = {}
    for item_id in ids:
        b = ItemRecordBuilder(item_id)
        local = installed.get(item_id)
        if local is not None:
            b.size = local.size
            b.locally_updated_at = local.time_updated
            b.local_version_tag = local.manifest
        details = cached.get(item_id)
        if details is not None:
            if details.latest_time_updated is not None:
                b.remote_updated_at = details.latest_time_updated
            b.remote_version_tag = details.latest_manifest
        builders[item_id] = b

    check(cancel)
    try:
        titles = catalog.fetch_titles(ids, cancel=cancel)
    except CatalogUnavailableError as e:
        logger.warning("Workshop titles unavailable: %s", e)
        titles = {}
    for item_id, title in titles.items():
        if item_id in builders:
            builders[item_id].title = title

    check(cancel)
    try:
        freshness = catalog.fetch_freshness(ids, cancel=cancel)
    except CatalogUnavailableError as e:
        logger.warning("Workshop update times unavailable: %s", e)
        freshness = {}
    for item_id, fresh in freshness.items():
        b = builders.get(item_id)
        if b is None:
            continue
        if fresh.title:
            b.fallback_title = fresh.title
        b.offer_remote(fresh.time_updated)

    check(cancel)
    return {item_id: b.build() for item_id, b in builders.items()}


def has_data(path: Path) -> bool:
    try:
        with os.scandir(path) as it:
            return next(it, None) is not None
    except (FileNotFoundError, NotADirectoryError):
        return False
    except OSError as e:
        raise ManifestIOError(f"Could not inspect workshop content {path}: {e}") from e


def find_missing_data(
    installed_ids: Iterable[str],
    path_for: Callable[[str], Path],
    *,
    cancel: CancelToken | None = None,
) -> set[str]:
    """Ids whose content directory is absent or has no entries at all."""
    missing: set[str] = set()
    for item_id in installed_ids:
        check(cancel)
        if not has_data(path_for(item_id)):
            missing.add(item_id)
    return missing


def directory_size(path: Path, *, cancel: CancelToken | None = None) -> int:
    total = 0

    def _on_error(err: OSError) -> None:
        logger.info("Skipping unreadable path while sizing %s: %s", path, err)

    for dirpath, _, filenames in os.walk(path, onerror=_on_error):
        check(cancel)
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError as e:
                _on_error(e)
    return total


def compute_item_sizes(
    paths: Mapping[str, Path],
    *,
    max_workers: int = 4,
    cancel: CancelToken | None = None,
) -> dict[str, int]:
    # Each item's tree is disjoint, so the scans share nothing and can fan out.
    if not paths:
        return {}
    pool = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="size-scan")
    try:
        futures = {item_id: pool.submit(directory_size, path, cancel=cancel) for item_id, path in paths.items()}
        return {item_id: fut.result() for item_id, fut in futures.items()}
    finally:
        pool.shutdown(wait=True, cancel_futures=True)


def format_size(num_bytes: int) -> str:
    size = float(num_bytes)
    order = 0
    while size >= 1024 and order < len(_SIZE_UNITS) - 1:
        order += 1
        size /= 1024
    text = f"{size:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[order]}"

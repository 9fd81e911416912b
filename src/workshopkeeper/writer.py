from __future__ import annotations

import filecmp
import logging
import shutil
from pathlib import Path
from typing import Iterable

from .cancel import CancelToken, check
from .errors import BackupError, ManifestIOError, ManifestNotFoundError
from .kv import parse, read_text
from .manifests import installed_items_table, item_details_table

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"


def backup_path_for(manifest_path: Path) -> Path:
    return manifest_path.with_name(manifest_path.name + BACKUP_SUFFIX)


def _make_backup(manifest_path: Path, backup: Path) -> None:
    try:
        shutil.copyfile(manifest_path, backup)
        verified = filecmp.cmp(manifest_path, backup, shallow=False)
    except OSError as e:
        backup.unlink(missing_ok=True)
        raise BackupError(f"Could not back up {manifest_path} to {backup}: {e}") from e
    if not verified:
        backup.unlink(missing_ok=True)
        raise BackupError(f"Backup {backup} does not match {manifest_path}.")
    logger.info("Backed up %s to %s", manifest_path, backup)


def _write_atomic(path: Path, text: str) -> None:
    tmp = path.with_name(path.name + ".tmp")
    try:
        with tmp.open("w", encoding="utf-8", newline="") as f:
            f.write(text)
        tmp.replace(path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise ManifestIOError(f"Could not write {path}: {e}") from e


def _uses_crlf(text: str) -> bool:
    end = text.find("\n")
    return end > 0 and text[end - 1] == "\r"


def _rewrite_without(manifest_path: Path, ids: set[str], cancel: CancelToken | None) -> list[str]:
    text = read_text(manifest_path)
    doc = parse(text, source=manifest_path)
    check(cancel)

    removed: list[str] = []
    installed = installed_items_table(doc)
    details = item_details_table(doc)
    # Removal is driven by the requested ids and applied identically to both tables.
    for item_id in sorted(ids):
        hit_installed = installed.remove(item_id) if installed is not None else False
        hit_details = details.remove(item_id) if details is not None else False
        if hit_installed or hit_details:
            removed.append(item_id)

    if not removed:
        return removed

    updated = doc.serialize()
    if _uses_crlf(text):
        updated = updated.replace("\n", "\r\n")
    check(cancel)
    _write_atomic(manifest_path, updated)
    return removed


def remove_items(manifest_path: Path, ids: Iterable[str], *, cancel: CancelToken | None = None) -> list[str]:
    """
    Remove workshop item ids from both tables of a workshop manifest, crash-safely.

    The manifest is copied to ``<manifest>.backup`` first. Any failure (including
    cancellation) after that point restores the original bytes before re-raising.
    The backup is removed on success. Returns the ids that were actually present.

    Callers must not run this concurrently for the same path, and Steam itself must
    not be writing the file.
    """
    manifest_path = Path(manifest_path)
    wanted = {i for i in ids if i}
    if not manifest_path.is_file():
        raise ManifestNotFoundError(f"Workshop manifest not found at: {manifest_path}")

    check(cancel)
    backup = backup_path_for(manifest_path)
    _make_backup(manifest_path, backup)

    try:
        removed = _rewrite_without(manifest_path, wanted, cancel)
    except BaseException:
        logger.warning("Restoring %s from backup after a failed rewrite", manifest_path)
        backup.replace(manifest_path)
        raise

    backup.unlink(missing_ok=True)
    if removed:
        logger.info("Removed %d item(s) from %s", len(removed), manifest_path)
    return removed

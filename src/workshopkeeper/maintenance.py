from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .cancel import CancelToken, check
from .errors import ManifestIOError
from .manifests import workshop_content_path, workshop_manifest_path
from .writer import remove_items

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResetResult:
    manifest_deleted: bool
    content_deleted: bool


def delete_items(
    library_root: Path,
    app_id: int,
    ids: Iterable[str],
    *,
    cancel: CancelToken | None = None,
) -> list[str]:
    """Delete the content directories of the given items, then drop them from the manifest."""
    wanted = list(dict.fromkeys(i for i in ids if i))
    for item_id in wanted:
        check(cancel)
        path = workshop_content_path(library_root, app_id, item_id)
        if not path.exists():
            continue
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise ManifestIOError(f"Could not delete workshop content {path}: {e}") from e
        logger.info("Deleted workshop content %s", path)

    manifest = workshop_manifest_path(library_root, app_id)
    if not manifest.is_file():
        return []
    return remove_items(manifest, wanted, cancel=cancel)


def reset_workshop_data(library_root: Path, app_id: int) -> ResetResult:
    """Delete the workshop manifest and every downloaded item for one app."""
    manifest = workshop_manifest_path(library_root, app_id)
    content = workshop_content_path(library_root, app_id)
    manifest_exists = manifest.is_file()
    content_exists = content.is_dir()

    try:
        if manifest_exists:
            manifest.unlink()
        if content_exists:
            shutil.rmtree(content)
    except OSError as e:
        raise ManifestIOError(f"Could not reset workshop data for app {app_id}: {e}") from e

    logger.info("Reset workshop data for app %s (manifest=%s, content=%s)", app_id, manifest_exists, content_exists)
    return ResetResult(manifest_deleted=manifest_exists, content_deleted=content_exists)

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from dataclasses import asdict
from typing import Any

from ._version import __version__
from .catalog import CatalogClient
from .config import Config, apply_env, config_path, load_config, save_config
from .errors import CatalogHTTPError, CatalogUnavailableError, WorkshopError
from .maintenance import delete_items, reset_workshop_data
from .manifests import AppState, installed_item_ids, load_state, workshop_content_path
from .processes import ensure_steam_not_running
from .reconcile import ItemRecord, compute_item_sizes, find_missing_data, format_size, reconcile
from .writer import remove_items

STATUS_UPDATE = "Update Available"
STATUS_CURRENT = "Up to Date"
STATUS_MISSING = "Data Not Present"


def _merge_cfg(base: Config, args: argparse.Namespace) -> Config:
    # Env overrides config; CLI overrides both.
    cfg = apply_env(base)
    app_id = getattr(args, "app_id", None)
    timeout_s = getattr(args, "timeout_s", None)
    return Config(
        api_host=getattr(args, "api_host", None) or cfg.api_host,
        timeout_s=timeout_s if timeout_s is not None else cfg.timeout_s,
        steam_path=getattr(args, "steam_path", None) or cfg.steam_path,
        app_id=app_id if app_id is not None else cfg.app_id,
        size_workers=cfg.size_workers,
    )


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def _warn(message: str) -> None:
    print(f"warning: {message}", file=sys.stderr)


def _configure_logging(verbosity: int) -> None:
    if verbosity <= 0:
        return
    level = logging.DEBUG if verbosity > 1 else logging.INFO
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="workshopkeeper",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Inspect and repair Steam Workshop install state for one game.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              WORKSHOPKEEPER_API_HOST, WORKSHOPKEEPER_STEAM_PATH, WORKSHOPKEEPER_APP_ID,
              WORKSHOPKEEPER_TIMEOUT_S, WORKSHOPKEEPER_CONFIG_PATH
            """
        ),
    )

    def _add_runtime_overrides(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--app-id", type=int, help="Steam app id (overrides config/env)")
        parser.add_argument("--steam-path", help="Steam install root (skips discovery)")
        parser.add_argument("--api-host", help="Steam Web API host")
        parser.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")

    p.add_argument("--version", action="version", version=f"workshopkeeper {__version__}")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Log progress to stderr (-vv for debug)")

    sub = p.add_subparsers(dest="cmd", required=True)

    # config
    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config")

    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    cfg_set.add_argument("--api-host")
    cfg_set.add_argument("--steam-path")
    cfg_set.add_argument("--app-id", type=int)
    cfg_set.add_argument("--timeout-s", type=float)
    cfg_set.add_argument("--size-workers", type=int, help="Parallel directory size scans")

    info = sub.add_parser("info", help="Show the game, its library folder and manifest paths")
    _add_runtime_overrides(info)
    info.add_argument("--json", action="store_true", help="Output JSON")

    ls = sub.add_parser("list", aliases=["ls"], help="List installed workshop items with update status")
    _add_runtime_overrides(ls)
    ls.add_argument("--updates-only", action="store_true", help="Only show items with updates available")
    ls.add_argument("--no-sizes", action="store_true", help="Skip scanning content folders for sizes")
    ls.add_argument("--json", action="store_true", help="Output JSON")

    repair = sub.add_parser("repair", help="Remove manifest entries whose content is missing on disk")
    _add_runtime_overrides(repair)
    repair.add_argument("--dry-run", action="store_true", help="Only report what would be removed")
    repair.add_argument("--json", action="store_true", help="Output JSON")
    repair.add_argument("--force", action="store_true", help="Proceed even if Steam is running")

    remove = sub.add_parser("remove", aliases=["rm"], help="Remove workshop items from the manifest")
    _add_runtime_overrides(remove)
    remove.add_argument("item_ids", nargs="+", help="Workshop item ids")
    remove.add_argument("--delete-content", action="store_true", help="Also delete the items' content folders")
    remove.add_argument("--json", action="store_true", help="Output JSON")
    remove.add_argument("--force", action="store_true", help="Proceed even if Steam is running")

    reset = sub.add_parser("reset", help="Delete the workshop manifest and all workshop content for the game")
    _add_runtime_overrides(reset)
    reset.add_argument("--yes", action="store_true", help="Confirm the reset")
    reset.add_argument("--force", action="store_true", help="Proceed even if Steam is running")

    return p


def _runtime(args: argparse.Namespace) -> Config:
    return _merge_cfg(load_config(), args)


def _catalog_from_cfg(cfg: Config) -> CatalogClient:
    return CatalogClient(api_host=cfg.api_host, timeout_s=cfg.timeout_s)


def _missing_ids(state: AppState, ids: list[str]) -> set[str]:
    return find_missing_data(ids, lambda item_id: workshop_content_path(state.library_root, state.app_id, item_id))


def _record_payload(record: ItemRecord, *, status: str, size_on_disk: int | None, path: str | None) -> dict[str, Any]:
    return {
        "id": record.id,
        "title": record.title,
        "size": record.size,
        "size_on_disk": size_on_disk,
        "path": path,
        "time_updated": record.locally_updated_at.isoformat(),
        "latest_time_updated": record.remote_updated_at.isoformat() if record.remote_updated_at else None,
        "has_update": record.has_update,
        "status": status,
    }


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        print(json.dumps(asdict(load_config()), indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        cfg = load_config()
        new_cfg = Config(
            api_host=args.api_host or cfg.api_host,
            timeout_s=args.timeout_s if args.timeout_s is not None else cfg.timeout_s,
            steam_path=args.steam_path if args.steam_path is not None else cfg.steam_path,
            app_id=args.app_id if args.app_id is not None else cfg.app_id,
            size_workers=args.size_workers if args.size_workers is not None else cfg.size_workers,
        )
        path = save_config(new_cfg)
        print(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def cmd_info(args: argparse.Namespace) -> int:
    cfg = _runtime(args)
    state = load_state(cfg.app_id, steam_path=cfg.steam_path)

    name = state.name
    catalog = _catalog_from_cfg(cfg)
    try:
        name = catalog.fetch_app_metadata(cfg.app_id).name
    except CatalogUnavailableError as e:
        _warn(f"could not fetch app details: {e}")
    finally:
        catalog.close()

    payload = {
        "app_id": cfg.app_id,
        "name": name,
        "install_dir": state.install_dir,
        "library_root": str(state.library_root),
        "workshop_manifest": str(state.workshop_manifest_path) if state.workshop_manifest is not None else None,
        "workshop_content": str(workshop_content_path(state.library_root, cfg.app_id)),
        "installed_items": len(installed_item_ids(state.workshop_manifest)),
    }
    if args.json:
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0
    for key, value in payload.items():
        print(f"{key}: {value if value is not None else '-'}")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    cfg = _runtime(args)
    state = load_state(cfg.app_id, steam_path=cfg.steam_path)
    ids = installed_item_ids(state.workshop_manifest)

    if state.workshop_manifest is None or not ids:
        if args.json:
            print(json.dumps([], indent=2))
        elif state.workshop_manifest is None:
            print(f"No workshop items detected for {state.name or f'app {cfg.app_id}'}")
        else:
            print("No workshop items installed")
        return 0

    catalog = _catalog_from_cfg(cfg)
    try:
        records = reconcile(ids, state.workshop_manifest, catalog)
    finally:
        catalog.close()

    missing = _missing_ids(state, ids)
    sizes: dict[str, int] = {}
    if not args.no_sizes:
        present = {
            item_id: workshop_content_path(state.library_root, cfg.app_id, item_id)
            for item_id in ids
            if item_id not in missing
        }
        sizes = compute_item_sizes(present, max_workers=cfg.size_workers)

    payload: list[dict[str, Any]] = []
    rows: list[list[str]] = [["ID", "TITLE", "SIZE", "UPDATED", "STATUS"]]
    for item_id, record in records.items():
        if args.updates_only and not record.has_update:
            continue
        if record.has_update:
            status = STATUS_UPDATE
        elif item_id in missing:
            status = STATUS_MISSING
        else:
            status = STATUS_CURRENT
        path = None if item_id in missing else str(workshop_content_path(state.library_root, cfg.app_id, item_id))
        payload.append(_record_payload(record, status=status, size_on_disk=sizes.get(item_id), path=path))
        size = format_size(sizes[item_id]) if item_id in sizes else ""
        rows.append([item_id, record.title, size, record.locally_updated_at.strftime("%Y-%m-%d %H:%M"), status])

    if args.json:
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        _print_table(rows)
    if missing:
        _warn(f"{len(missing)} item(s) are registered but have no data on disk; run `workshopkeeper repair`.")
    return 0


def cmd_repair(args: argparse.Namespace) -> int:
    cfg = _runtime(args)
    state = load_state(cfg.app_id, steam_path=cfg.steam_path)
    ids = installed_item_ids(state.workshop_manifest)
    missing = sorted(_missing_ids(state, ids), key=ids.index)

    removed: list[str] = []
    if missing and not args.dry_run:
        ensure_steam_not_running(force=args.force)
        removed = remove_items(state.workshop_manifest_path, missing)

    if args.json:
        print(json.dumps({"missing": missing, "removed": removed, "dry_run": bool(args.dry_run)}, indent=2, sort_keys=True))
        return 0

    if not missing:
        print("No inconsistencies found. All workshop items have their data files present.")
        return 0
    for item_id in missing:
        print(f"{'missing' if args.dry_run else 'removed'}: {item_id}")
    if not args.dry_run:
        print(f"Removed {len(removed)} orphaned workshop item(s) from {state.workshop_manifest_path}")
        print("You may need to restart Steam for the changes to be fully reflected.")
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    cfg = _runtime(args)
    state = load_state(cfg.app_id, steam_path=cfg.steam_path)
    ids = [i.strip() for i in args.item_ids if i.strip()]
    ensure_steam_not_running(force=args.force)

    if args.delete_content:
        removed = delete_items(state.library_root, cfg.app_id, ids)
    else:
        removed = remove_items(state.workshop_manifest_path, ids)

    skipped = [i for i in ids if i not in removed]
    if args.json:
        print(json.dumps({"removed": removed, "not_found": skipped}, indent=2, sort_keys=True))
        return 0
    for item_id in removed:
        print(f"removed: {item_id}")
    for item_id in skipped:
        _warn(f"{item_id} is not in the workshop manifest")
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    if not args.yes:
        raise WorkshopError("Refusing to reset workshop data without --yes.")
    cfg = _runtime(args)
    state = load_state(cfg.app_id, steam_path=cfg.steam_path)
    ensure_steam_not_running(force=args.force)
    result = reset_workshop_data(state.library_root, cfg.app_id)

    if not result.manifest_deleted and not result.content_deleted:
        print(f"No workshop data found for {state.name or f'app {cfg.app_id}'}.")
        return 0
    if result.manifest_deleted:
        print("deleted: workshop manifest")
    if result.content_deleted:
        print("deleted: workshop content")
    print("Steam may need to be restarted to fully recognise these changes.")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        if args.cmd == "config":
            return cmd_config(args)
        if args.cmd == "info":
            return cmd_info(args)
        if args.cmd in ("list", "ls"):
            return cmd_list(args)
        if args.cmd == "repair":
            return cmd_repair(args)
        if args.cmd in ("remove", "rm"):
            return cmd_remove(args)
        if args.cmd == "reset":
            return cmd_reset(args)
        raise AssertionError("unreachable")
    except CatalogHTTPError as e:
        print(f"error: catalog returned HTTP {e.status_code}", file=sys.stderr)
        return 1
    except WorkshopError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("error: interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

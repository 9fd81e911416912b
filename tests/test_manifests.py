import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from workshopkeeper.errors import ManifestMismatchError, ManifestNotFoundError, ParseError
from workshopkeeper.kv import parse
from workshopkeeper.manifests import (
    app_manifest_path,
    installed_item_ids,
    load_app_manifest,
    load_state,
    load_workshop_manifest,
    read_installed_items,
    read_item_details,
    workshop_content_path,
    workshop_manifest_path,
)

APP_ACF = '"AppState" { "appid" "282440" "name" "Quake Live" "installdir" "Quake Live" }'

WORKSHOP_ACF = """
"AppWorkshop"
{
    "appid"     "282440"
    "WorkshopItemsInstalled"
    {
        "100" { "size" "1024" "timeupdated" "1704067200" "manifest" "m100" }
        "200" { "size" "2048" "timeupdated" "1704067200" "manifest" "m200" }
    }
    "WorkshopItemDetails"
    {
        "100" { "manifest" "m100" "timeupdated" "1704067200" "latest_timeupdated" "1704153600" "latest_manifest" "m100b" }
        "300" { "manifest" "m300" "timeupdated" "1704067200" }
    }
}
"""


def _library(td: str, *, workshop: str | None = WORKSHOP_ACF) -> Path:
    root = Path(td)
    app_manifest_path(root, 282440).parent.mkdir(parents=True, exist_ok=True)
    app_manifest_path(root, 282440).write_text(APP_ACF, encoding="utf-8")
    if workshop is not None:
        path = workshop_manifest_path(root, 282440)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(workshop, encoding="utf-8")
    return root


class TestPaths(unittest.TestCase):
    def test_conventional_paths(self) -> None:
        root = Path("/games")
        self.assertEqual(app_manifest_path(root, 10), root / "steamapps" / "appmanifest_10.acf")
        self.assertEqual(workshop_manifest_path(root, 10), root / "steamapps" / "workshop" / "appworkshop_10.acf")
        self.assertEqual(workshop_content_path(root, 10), root / "steamapps" / "workshop" / "content" / "10")
        self.assertEqual(
            workshop_content_path(root, 10, "55"),
            root / "steamapps" / "workshop" / "content" / "10" / "55",
        )


class TestLoading(unittest.TestCase):
    def test_missing_app_manifest(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(ManifestNotFoundError):
                load_app_manifest(Path(td), 282440)

    def test_absent_workshop_manifest_is_none(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = _library(td, workshop=None)
            self.assertIsNone(load_workshop_manifest(root, 282440))
            self.assertEqual(installed_item_ids(None), [])

    def test_workshop_manifest_for_another_app_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = _library(td, workshop='"AppWorkshop" { "appid" "440" }')
            with self.assertRaises(ManifestMismatchError):
                load_workshop_manifest(root, 282440)

    def test_malformed_workshop_manifest_propagates(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = _library(td, workshop='"AppWorkshop" { "appid" "282440"')
            with self.assertRaises(ParseError):
                load_workshop_manifest(root, 282440)

    def test_invalid_utf8_is_a_parse_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = _library(td)
            workshop_manifest_path(root, 282440).write_bytes(b'"AppWorkshop" { "appid" "282440" "x" "\xff" }')
            with self.assertRaises(ParseError) as ctx:
                load_workshop_manifest(root, 282440)
        self.assertIn("appworkshop_282440.acf", str(ctx.exception))

    def test_load_state(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            library = _library(td)
            install_root = Path(td) / "Steam"
            (install_root / "steamapps").mkdir(parents=True)
            lib = str(library).replace("\\", "\\\\")
            (install_root / "steamapps" / "libraryfolders.vdf").write_text(
                f'"libraryfolders" {{ "0" {{ "path" "{lib}" "apps" {{ "282440" "1" }} }} }}',
                encoding="utf-8",
            )

            state = load_state(282440, steam_path=install_root)

        self.assertEqual(state.library_root, library)
        self.assertEqual(state.name, "Quake Live")
        self.assertEqual(state.install_dir, "Quake Live")
        self.assertEqual(installed_item_ids(state.workshop_manifest), ["100", "200"])


class TestAccessors(unittest.TestCase):
    def test_installed_ids_empty_when_table_absent(self) -> None:
        self.assertEqual(installed_item_ids(parse('"AppWorkshop" { "appid" "1" }')), [])
        self.assertEqual(installed_item_ids(parse('"AppWorkshop" { "WorkshopItemsInstalled" { } }')), [])

    def test_read_installed_items(self) -> None:
        items = read_installed_items(parse(WORKSHOP_ACF))

        self.assertEqual(list(items), ["100", "200"])
        self.assertEqual(items["100"].size, 1024)
        self.assertEqual(items["100"].time_updated, datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(items["200"].manifest, "m200")

    def test_read_item_details(self) -> None:
        details = read_item_details(parse(WORKSHOP_ACF))

        self.assertEqual(details["100"].latest_time_updated, datetime(2024, 1, 2, tzinfo=timezone.utc))
        self.assertEqual(details["100"].latest_manifest, "m100b")
        self.assertIsNone(details["300"].latest_time_updated)

    def test_out_of_range_timestamps_are_parse_errors(self) -> None:
        installed = parse(
            '"AppWorkshop" { "WorkshopItemsInstalled" { "1" { "size" "1" "timeupdated" "99999999999999999" } } }'
        )
        with self.assertRaises(ParseError):
            read_installed_items(installed)

        details = parse('"AppWorkshop" { "WorkshopItemDetails" { "1" { "latest_timeupdated" "99999999999999999" } } }')
        with self.assertRaises(ParseError):
            read_item_details(details)

    def test_scalar_detail_entry_is_a_parse_error(self) -> None:
        doc = parse('"AppWorkshop" { "WorkshopItemDetails" { "1" "oops" } }')
        with self.assertRaises(ParseError):
            read_item_details(doc)

    def test_non_numeric_size_is_a_parse_error(self) -> None:
        doc = parse('"AppWorkshop" { "WorkshopItemsInstalled" { "1" { "size" "big" "timeupdated" "0" } } }')
        with self.assertRaises(ParseError):
            read_installed_items(doc)


if __name__ == "__main__":
    unittest.main()

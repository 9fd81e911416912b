import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from workshopkeeper.config import DEFAULT_API_HOST, DEFAULT_APP_ID, Config, apply_env, config_path, load_config, save_config


class TestConfigFile(unittest.TestCase):
    def test_missing_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = load_config(Path(td) / "config.json")
        self.assertEqual(cfg, Config())
        self.assertEqual(cfg.api_host, DEFAULT_API_HOST)
        self.assertEqual(cfg.app_id, DEFAULT_APP_ID)

    def test_save_then_load(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "nested" / "config.json"
            cfg = Config(steam_path="/opt/steam", app_id=440, size_workers=8)

            self.assertEqual(save_config(cfg, path), path)
            self.assertEqual(load_config(path), cfg)
            self.assertFalse(path.with_suffix(".json.tmp").exists())

    def test_unknown_keys_are_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text(json.dumps({"app_id": 10, "token": "legacy"}), encoding="utf-8")
            self.assertEqual(load_config(path), Config(app_id=10))

    def test_path_from_environment(self) -> None:
        with patch.dict(os.environ, {"WORKSHOPKEEPER_CONFIG_PATH": "/tmp/wk/config.json"}):
            self.assertEqual(config_path(), Path("/tmp/wk/config.json"))


class TestApplyEnv(unittest.TestCase):
    def test_environment_overrides_file_values(self) -> None:
        env = {
            "WORKSHOPKEEPER_API_HOST": "http://localhost:8080",
            "WORKSHOPKEEPER_STEAM_PATH": "/srv/steam",
            "WORKSHOPKEEPER_APP_ID": "440",
            "WORKSHOPKEEPER_TIMEOUT_S": "5",
        }
        with patch.dict(os.environ, env):
            cfg = apply_env(Config(size_workers=2))

        self.assertEqual(cfg.api_host, "http://localhost:8080")
        self.assertEqual(cfg.steam_path, "/srv/steam")
        self.assertEqual(cfg.app_id, 440)
        self.assertEqual(cfg.timeout_s, 5.0)
        self.assertEqual(cfg.size_workers, 2)

    def test_malformed_numbers_keep_base(self) -> None:
        with patch.dict(os.environ, {"WORKSHOPKEEPER_APP_ID": "quake", "WORKSHOPKEEPER_TIMEOUT_S": "soon"}):
            cfg = apply_env(Config(app_id=7, timeout_s=3.0))
        self.assertEqual(cfg.app_id, 7)
        self.assertEqual(cfg.timeout_s, 3.0)


if __name__ == "__main__":
    unittest.main()

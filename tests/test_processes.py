import unittest
from types import SimpleNamespace
from unittest.mock import patch

from workshopkeeper.errors import SteamRunningError
from workshopkeeper.processes import ensure_steam_not_running, running_steam_processes


def _procs(*names):
    return [SimpleNamespace(info={"name": name}) for name in names]


class TestRunningSteamProcesses(unittest.TestCase):
    def test_matches_steam_clients_by_base_name(self) -> None:
        with patch(
            "workshopkeeper.processes.psutil.process_iter",
            return_value=_procs("python3", "steamcmd", None, "Steam.exe", "steamwebhelper", "steam"),
        ):
            self.assertEqual(running_steam_processes(), ["Steam", "SteamCMD"])

    def test_nothing_running(self) -> None:
        with patch("workshopkeeper.processes.psutil.process_iter", return_value=_procs("bash", "quakelive_steam")):
            self.assertEqual(running_steam_processes(), [])


class TestEnsureSteamNotRunning(unittest.TestCase):
    def test_raises_with_running_names(self) -> None:
        with patch("workshopkeeper.processes.running_steam_processes", return_value=["Steam"]):
            with self.assertRaises(SteamRunningError) as ctx:
                ensure_steam_not_running()
        self.assertEqual(ctx.exception.names, ["Steam"])
        self.assertIn("--force", str(ctx.exception))

    def test_force_logs_and_continues(self) -> None:
        with patch("workshopkeeper.processes.running_steam_processes", return_value=["SteamCMD"]):
            with self.assertLogs("workshopkeeper.processes", level="WARNING"):
                ensure_steam_not_running(force=True)

    def test_passes_when_steam_is_closed(self) -> None:
        with patch("workshopkeeper.processes.running_steam_processes", return_value=[]):
            ensure_steam_not_running()


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


class WorkshopError(RuntimeError):
    pass


class NotFoundError(WorkshopError):
    pass


class SteamNotFoundError(NotFoundError):
    pass


class ManifestNotFoundError(NotFoundError):
    pass


class ParseError(WorkshopError):
    def __init__(self, message: str, *, line: int | None = None, source: str | Path | None = None) -> None:
        self.line = line
        self.source = str(source) if source is not None else None
        where = ""
        if self.source:
            where = f"{self.source}: "
        if line is not None:
            where += f"line {line}: "
        super().__init__(f"{where}{message}")


class ManifestMismatchError(WorkshopError):
    pass


class AppNotInstalledError(WorkshopError):
    def __init__(self, app_id: int) -> None:
        self.app_id = app_id
        super().__init__(f"App {app_id} is not installed.")


class CatalogUnavailableError(WorkshopError):
    pass


@dataclass(frozen=True)
class CatalogHTTPError(CatalogUnavailableError):
    status_code: int
    body: str

    def __str__(self) -> str:  # pragma: no cover
        return f"HTTP {self.status_code}: {self.body}"


class ManifestIOError(WorkshopError):
    pass


class BackupError(ManifestIOError):
    pass


class SteamRunningError(WorkshopError):
    def __init__(self, names: list[str]) -> None:
        self.names = names
        super().__init__(
            f"{', '.join(names)} is running. Close it before changing workshop data, or pass --force."
        )

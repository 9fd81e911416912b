from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

import httpx

from .cancel import CancelToken, check
from .config import DEFAULT_API_HOST, DEFAULT_TIMEOUT_S
from .errors import CatalogHTTPError, CatalogUnavailableError
from .manifests import from_epoch

logger = logging.getLogger(__name__)

ICON_URL_TEMPLATE = "https://cdn.steamstatic.com/steamcommunity/public/images/apps/{app_id}/{icon}.jpg"
UNKNOWN_APP_NAME = "Unknown Game"

_GET_APPS_PATH = "/ICommunityService/GetApps/v1/"
_FILE_DETAILS_PATH = "/ISteamRemoteStorage/GetPublishedFileDetails/v1/"


@dataclass(frozen=True)
class AppMetadata:
    app_id: int
    name: str
    icon_url: str | None = None
    icon_bytes: bytes | None = None


@dataclass(frozen=True)
class ItemFreshness:
    title: str | None
    time_updated: datetime


def build_file_details_form(item_ids: list[str]) -> dict[str, str]:
    form = {"itemcount": str(len(item_ids))}
    for i, item_id in enumerate(item_ids):
        form[f"publishedfileids[{i}]"] = item_id
    return form


def _file_details(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    response = payload.get("response")
    if not isinstance(response, dict):
        return []
    details = response.get("publishedfiledetails")
    if not isinstance(details, list):
        return []
    return [d for d in details if isinstance(d, dict)]


def parse_titles(payload: Any) -> dict[str, str]:
    out: dict[str, str] = {}
    for detail in _file_details(payload):
        item_id = detail.get("publishedfileid")
        title = detail.get("title")
        if item_id is None or not isinstance(title, str) or not title:
            continue
        item_id = str(item_id)
        if item_id:
            out[item_id] = title
    return out


def parse_freshness(payload: Any) -> dict[str, ItemFreshness]:
    out: dict[str, ItemFreshness] = {}
    for detail in _file_details(payload):
        item_id = str(detail.get("publishedfileid") or "")
        if not item_id:
            continue
        title = detail.get("title")
        raw_updated = detail.get("time_updated")
        if isinstance(raw_updated, bool):
            continue
        try:
            updated = from_epoch(int(str(raw_updated)))
        except (OverflowError, OSError, ValueError):
            logger.debug("Ignoring unusable time_updated %r for item %s", raw_updated, item_id)
            continue
        out[item_id] = ItemFreshness(
            title=title if isinstance(title, str) and title else None,
            time_updated=updated,
        )
    return out


class CatalogClient:
    """
    Steam Web API client for app and workshop item metadata.

    Holds no local state beyond the HTTP connection pool. Every lookup for a set
    of item ids is a single request.
    """

    def __init__(
        self,
        *,
        api_host: str = DEFAULT_API_HOST,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        http: httpx.Client | None = None,
    ) -> None:
        self.api_host = api_host.rstrip("/")
        self.timeout_s = timeout_s
        self._http = http or httpx.Client(timeout=timeout_s, follow_redirects=True)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "CatalogClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if not url.startswith(("http://", "https://")):
            url = f"{self.api_host}{url}"
        try:
            resp = self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise CatalogUnavailableError(f"Request failed: {e}") from e
        if resp.status_code >= 400:
            raise CatalogHTTPError(resp.status_code, resp.text)
        return resp

    def _json(self, resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise CatalogUnavailableError(f"Catalog returned a non-JSON response from {resp.url}") from e

    def _post_file_details(self, item_ids: list[str], cancel: CancelToken | None) -> Any:
        check(cancel)
        logger.debug("Requesting details for %d workshop item(s)", len(item_ids))
        resp = self._request("POST", _FILE_DETAILS_PATH, data=build_file_details_form(item_ids))
        check(cancel)
        return self._json(resp)

    def fetch_titles(self, item_ids: Iterable[str], *, cancel: CancelToken | None = None) -> dict[str, str]:
        ids = list(item_ids)
        if not ids:
            return {}
        return parse_titles(self._post_file_details(ids, cancel))

    def fetch_freshness(
        self,
        item_ids: Iterable[str],
        *,
        cancel: CancelToken | None = None,
    ) -> dict[str, ItemFreshness]:
        ids = list(item_ids)
        if not ids:
            return {}
        return parse_freshness(self._post_file_details(ids, cancel))

    def fetch_app_metadata(self, app_id: int, *, cancel: CancelToken | None = None) -> AppMetadata:
        check(cancel)
        resp = self._request("GET", _GET_APPS_PATH, params={"appids[0]": str(app_id)})
        payload = self._json(resp)

        response = payload.get("response") if isinstance(payload, dict) else None
        apps = response.get("apps") if isinstance(response, dict) else None
        app = apps[0] if isinstance(apps, list) and apps and isinstance(apps[0], dict) else None
        if app is None:
            return AppMetadata(app_id=app_id, name=UNKNOWN_APP_NAME)

        icon = app.get("icon")
        icon_url: str | None = None
        icon_bytes: bytes | None = None
        if isinstance(icon, str) and icon:
            icon_url = ICON_URL_TEMPLATE.format(app_id=app_id, icon=icon)
            icon_bytes = self._fetch_icon(icon_url, cancel)

        name = app.get("name")
        found_id = app.get("appid")
        return AppMetadata(
            app_id=found_id if isinstance(found_id, int) and not isinstance(found_id, bool) else app_id,
            name=name if isinstance(name, str) and name else UNKNOWN_APP_NAME,
            icon_url=icon_url,
            icon_bytes=icon_bytes,
        )

    def _fetch_icon(self, url: str, cancel: CancelToken | None) -> bytes | None:
        check(cancel)
        try:
            return self._request("GET", url).content
        except CatalogUnavailableError as e:
            logger.info("Icon download failed, continuing without it: %s", e)
            return None

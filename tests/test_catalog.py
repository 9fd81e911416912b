import unittest
from datetime import datetime, timezone
from urllib.parse import parse_qs

import httpx

from workshopkeeper.catalog import CatalogClient, build_file_details_form
from workshopkeeper.errors import CatalogHTTPError, CatalogUnavailableError

DETAILS_PAYLOAD = {
    "response": {
        "result": 1,
        "resultcount": 3,
        "publishedfiledetails": [
            {"publishedfileid": "100", "result": 1, "title": "Arena Pack", "time_updated": 1704153600},
            {"publishedfileid": "200", "result": 1, "title": "", "time_updated": "1704067200"},
            {"publishedfileid": "300", "result": 9},
        ],
    }
}


def _client(handler) -> CatalogClient:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return CatalogClient(api_host="https://api.example.test", http=http)


class TestItemDetails(unittest.TestCase):
    def test_titles_are_fetched_in_one_form_post(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=DETAILS_PAYLOAD)

        client = _client(handler)
        try:
            titles = client.fetch_titles(["100", "200", "300"])
        finally:
            client.close()

        self.assertEqual(titles, {"100": "Arena Pack"})
        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0].method, "POST")
        self.assertEqual(seen[0].url.path, "/ISteamRemoteStorage/GetPublishedFileDetails/v1/")
        form = parse_qs(seen[0].content.decode("utf-8"))
        self.assertEqual(form["itemcount"], ["3"])
        self.assertEqual(form["publishedfileids[0]"], ["100"])
        self.assertEqual(form["publishedfileids[2]"], ["300"])

    def test_empty_input_makes_no_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client = _client(handler)
        try:
            self.assertEqual(client.fetch_titles([]), {})
            self.assertEqual(client.fetch_freshness([]), {})
        finally:
            client.close()

    def test_freshness_parses_update_times(self) -> None:
        client = _client(lambda request: httpx.Response(200, json=DETAILS_PAYLOAD))
        try:
            fresh = client.fetch_freshness(["100", "200", "300"])
        finally:
            client.close()

        self.assertEqual(sorted(fresh), ["100", "200"])
        self.assertEqual(fresh["100"].title, "Arena Pack")
        self.assertEqual(fresh["100"].time_updated, datetime(2024, 1, 2, tzinfo=timezone.utc))
        self.assertIsNone(fresh["200"].title)
        self.assertEqual(fresh["200"].time_updated, datetime(2024, 1, 1, tzinfo=timezone.utc))

    def test_out_of_range_update_time_is_skipped(self) -> None:
        payload = {
            "response": {
                "publishedfiledetails": [
                    {"publishedfileid": "100", "title": "Far Future", "time_updated": 10**18},
                    {"publishedfileid": "200", "title": "Bots", "time_updated": 1704067200},
                ]
            }
        }
        client = _client(lambda request: httpx.Response(200, json=payload))
        try:
            fresh = client.fetch_freshness(["100", "200"])
        finally:
            client.close()

        self.assertEqual(list(fresh), ["200"])

    def test_non_success_status_raises(self) -> None:
        client = _client(lambda request: httpx.Response(503, text="busy"))
        try:
            with self.assertRaises(CatalogHTTPError) as ctx:
                client.fetch_titles(["100"])
        finally:
            client.close()
        self.assertEqual(ctx.exception.status_code, 503)

    def test_transport_error_raises_catalog_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        client = _client(handler)
        try:
            with self.assertRaises(CatalogUnavailableError):
                client.fetch_freshness(["100"])
        finally:
            client.close()

    def test_form_layout(self) -> None:
        self.assertEqual(
            build_file_details_form(["7", "8"]),
            {"itemcount": "2", "publishedfileids[0]": "7", "publishedfileids[1]": "8"},
        )


class TestAppMetadata(unittest.TestCase):
    def test_icon_failure_does_not_fail_the_lookup(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.host == "cdn.steamstatic.com":
                return httpx.Response(404)
            return httpx.Response(
                200,
                json={"response": {"apps": [{"appid": 282440, "name": "Quake Live", "icon": "abc"}]}},
            )

        client = _client(handler)
        try:
            meta = client.fetch_app_metadata(282440)
        finally:
            client.close()

        self.assertEqual(meta.name, "Quake Live")
        self.assertEqual(meta.app_id, 282440)
        self.assertIsNone(meta.icon_bytes)
        self.assertEqual(
            meta.icon_url,
            "https://cdn.steamstatic.com/steamcommunity/public/images/apps/282440/abc.jpg",
        )
        self.assertEqual(seen[0].url.params["appids[0]"], "282440")

    def test_icon_bytes_are_returned(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cdn.steamstatic.com":
                return httpx.Response(200, content=b"\xff\xd8jpeg")
            return httpx.Response(200, json={"response": {"apps": [{"appid": 1, "name": "Game", "icon": "i"}]}})

        client = _client(handler)
        try:
            meta = client.fetch_app_metadata(1)
        finally:
            client.close()
        self.assertEqual(meta.icon_bytes, b"\xff\xd8jpeg")

    def test_unknown_app(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"response": {"apps": []}}))
        try:
            meta = client.fetch_app_metadata(5)
        finally:
            client.close()
        self.assertEqual(meta.name, "Unknown Game")
        self.assertIsNone(meta.icon_url)


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import io
import json
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch
from urllib import parse
import sys

SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
	sys.path.insert(0, str(SCRIPT_DIR))

from torn_news_fetch import (
	KeyRotation,
	TornApiError,
	build_news_url,
	default_target_date,
	fetch_faction_news,
	news_in_window,
	next_page_url,
	torn_get_json,
	utc_day_bounds,
)


class FakeResponse(io.BytesIO):
	def __enter__(self) -> FakeResponse:
		return self

	def __exit__(self, *exc: object) -> None:
		self.close()


def fake_response(payload: dict) -> FakeResponse:
	return FakeResponse(json.dumps(payload).encode("utf-8"))


def query_of(url: str) -> dict[str, str]:
	return dict(parse.parse_qsl(parse.urlsplit(url).query))


class TornNewsFetchTests(unittest.TestCase):
	def test_key_rotation_is_round_robin(self) -> None:
		keys = KeyRotation(["a", " b ", ""])

		self.assertEqual([keys.next_key() for _ in range(5)], ["a", "b", "a", "b", "a"])

	def test_key_rotation_requires_a_key(self) -> None:
		with self.assertRaises(ValueError):
			KeyRotation(["", "  "])

	def test_utc_day_bounds(self) -> None:
		self.assertEqual(utc_day_bounds("2024-01-02"), (1704153600, 1704240000))

	def test_default_target_date_is_yesterday_utc(self) -> None:
		now = datetime(2024, 3, 1, 5, 0, tzinfo=timezone.utc)
		self.assertEqual(default_target_date(now), "2024-02-29")

	def test_next_page_url_forces_html_and_key(self) -> None:
		prev = "https://api.torn.com/v2/faction/news?striptags=true&limit=100&to=1704200000&cat=armoryAction&key=old"

		url = next_page_url(prev, "new")

		query = query_of(url)
		self.assertEqual(query["striptags"], "false")
		self.assertEqual(query["key"], "new")
		self.assertEqual(query["to"], "1704200000")

	def test_fetch_follows_prev_links_and_rotates_keys(self) -> None:
		start, end = utc_day_bounds("2024-01-02")
		pages = {
			"first": {
				"news": [{"id": "b", "text": "XID=1 deposited 1 x Xanax", "timestamp": start + 20}],
				"_metadata": {"links": {"prev": f"https://api.torn.com/v2/faction/news?to={start + 19}&cat=armoryAction"}},
			},
			"second": {
				"news": [{"id": "a", "text": "plain", "timestamp": start + 10}],
				"_metadata": {"links": {"prev": None}},
			},
		}
		requested: list[str] = []

		def get_json(url: str) -> dict:
			requested.append(url)
			return pages["first"] if len(requested) == 1 else pages["second"]

		news, raw_pages = fetch_faction_news(
			start,
			end,
			KeyRotation(["k1", "k2"]),
			delay=0.5,
			get_json=get_json,
			sleep=lambda _seconds: None,
		)

		self.assertEqual([entry["id"] for entry in news], ["b", "a"])
		self.assertEqual(len(raw_pages), 2)
		self.assertEqual(query_of(requested[0])["key"], "k1")
		self.assertEqual(query_of(requested[1])["key"], "k2")
		self.assertEqual(query_of(requested[1])["striptags"], "false")
		self.assertTrue(raw_pages[0]["has_html"])
		self.assertNotIn("k1", raw_pages[0]["request_url"])

	def test_fetch_stops_on_repeated_link(self) -> None:
		page = {
			"news": [{"id": "a", "text": "x", "timestamp": 1}],
			"_metadata": {"links": {"prev": "https://api.torn.com/v2/faction/news?to=0"}},
		}
		calls = []

		def get_json(url: str) -> dict:
			calls.append(url)
			return page

		fetch_faction_news(0, 10, KeyRotation(["k"]), delay=0, get_json=get_json)

		self.assertEqual(len(calls), 2)

	def test_get_json_retries_rate_limit(self) -> None:
		responses = [
			fake_response({"error": {"code": 5, "error": "Too many requests"}}),
			fake_response({"news": []}),
		]
		waits: list[float] = []

		with patch("torn_news_fetch.request.urlopen", side_effect=responses):
			data = torn_get_json(build_news_url(0, 10, "k"), sleep=waits.append)

		self.assertEqual(data, {"news": []})
		self.assertEqual(len(waits), 1)

	def test_get_json_raises_on_key_error(self) -> None:
		with patch("torn_news_fetch.request.urlopen", return_value=fake_response({"error": {"code": 2, "error": "Incorrect key"}})):
			with self.assertRaises(TornApiError) as ctx:
				torn_get_json(build_news_url(0, 10, "k"), sleep=lambda _seconds: None)

		self.assertEqual(ctx.exception.code, 2)

	def test_news_in_window_drops_duplicates_and_out_of_range(self) -> None:
		news = [
			{"id": 1, "timestamp": 100},
			{"id": 1, "timestamp": 100},
			{"id": 2, "timestamp": 200},
			{"id": 3, "timestamp": 99},
			{"id": 4, "timestamp": "bad"},
		]

		self.assertEqual([entry["id"] for entry in news_in_window(news, 100, 200)], [1])


if __name__ == "__main__":
	unittest.main()

"""Fetch faction armory news from the Torn v2 API.

Pages are requested newest first (``sort=DESC``) and followed through
``_metadata.links.prev`` until the window is exhausted. The key is re-applied
to every follow-up URL and ``striptags=false`` is forced so the text keeps the
``XID=`` profile links the classifier depends on.
"""

from __future__ import annotations

import json
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from urllib import error, parse, request

from progress import ProgressReporter


TORN_NEWS_ENDPOINT = "https://api.torn.com/v2/faction/news"
DEFAULT_PAGE_LIMIT = 100
DAY_SECONDS = 86400

# Torn API error codes worth waiting out: too many requests, temporary error,
# API disabled, backend error.
RETRYABLE_API_CODES = {5, 8, 9, 14}


class TornApiError(RuntimeError):
	def __init__(self, code: int, message: str) -> None:
		super().__init__(f"Torn API error {code}: {message}")
		self.code = code


@dataclass
class KeyRotation:
	"""Round-robin API key provider handed to the fetcher."""

	keys: list[str]
	_index: int = field(default=0, repr=False)

	def __post_init__(self) -> None:
		self.keys = [key.strip() for key in self.keys if key and key.strip()]
		if not self.keys:
			raise ValueError("At least one Torn API key is required")

	def next_key(self) -> str:
		key = self.keys[self._index]
		self._index = (self._index + 1) % len(self.keys)
		return key


def utc_day_bounds(date_str: str) -> tuple[int, int]:
	day = datetime.strptime(date_str, "%Y-%m-%d").replace(tzinfo=timezone.utc)
	start = int(day.timestamp())
	return start, start + DAY_SECONDS


def default_target_date(now: datetime | None = None) -> str:
	"""Yesterday in UTC, the last fully elapsed day."""
	current = now or datetime.now(timezone.utc)
	return (current.astimezone(timezone.utc) - timedelta(days=1)).strftime("%Y-%m-%d")


def build_news_url(from_ts: int, to_ts: int, key: str, *, limit: int = DEFAULT_PAGE_LIMIT) -> str:
	params = {
		"striptags": "false",
		"limit": str(limit),
		"sort": "DESC",
		"from": str(from_ts),
		"to": str(to_ts),
		"cat": "armoryAction",
		"key": key,
	}
	return f"{TORN_NEWS_ENDPOINT}?{parse.urlencode(params)}"


def next_page_url(prev_url: str, key: str) -> str:
	parts = parse.urlsplit(prev_url)
	query = [(name, value) for name, value in parse.parse_qsl(parts.query, keep_blank_values=True) if name not in {"striptags", "key"}]
	query.append(("striptags", "false"))
	query.append(("key", key))
	return parse.urlunsplit((parts.scheme, parts.netloc, parts.path, parse.urlencode(query), parts.fragment))


def redact_key(url: str) -> str:
	parts = parse.urlsplit(url)
	query = [(name, "***" if name == "key" else value) for name, value in parse.parse_qsl(parts.query, keep_blank_values=True)]
	return parse.urlunsplit((parts.scheme, parts.netloc, parts.path, parse.urlencode(query), parts.fragment))


def torn_get_json(
	url: str,
	*,
	timeout: float = 30.0,
	max_retries: int = 6,
	sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
	"""GET JSON with retry/backoff on server, network and Torn rate-limit errors."""
	headers = {"User-Agent": "armory-news-ledger/1.0", "Accept": "application/json"}
	attempt = 0
	while True:
		req = request.Request(url, headers=headers, method="GET")
		try:
			with request.urlopen(req, timeout=timeout) as resp:
				data = json.loads(resp.read().decode("utf-8"))
		except error.HTTPError as exc:
			if exc.code >= 500 and attempt < max_retries:
				backoff = min((2**attempt) + random.uniform(0, 0.5), 30.0)
				print(f"[fetch] server error {exc.code}; retrying in {backoff:.2f}s", flush=True)
				sleep(backoff)
				attempt += 1
				continue
			raise RuntimeError(f"Torn API HTTP error {exc.code} for {redact_key(url)}") from exc
		except error.URLError as exc:
			if attempt < max_retries:
				backoff = min((2**attempt) + random.uniform(0, 0.5), 30.0)
				print(f"[fetch] network error {exc}; retrying in {backoff:.2f}s", flush=True)
				sleep(backoff)
				attempt += 1
				continue
			raise RuntimeError(f"Network error: {exc}") from exc

		api_error = data.get("error") if isinstance(data, dict) else None
		if api_error:
			code = int(api_error.get("code", -1))
			message = str(api_error.get("error") or "unknown error")
			if code in RETRYABLE_API_CODES and attempt < max_retries:
				wait_for = min(10.0 * (attempt + 1), 60.0) + random.uniform(0, 0.5)
				print(f"[fetch] API error {code} ({message}); waiting {wait_for:.2f}s", flush=True)
				sleep(wait_for)
				attempt += 1
				continue
			raise TornApiError(code, message)
		if not isinstance(data, dict):
			raise RuntimeError(f"Unexpected Torn API payload for {redact_key(url)}")
		return data


def fetch_faction_news(
	from_ts: int,
	to_ts: int,
	keys: KeyRotation,
	*,
	delay: float = 0.5,
	max_pages: int | None = None,
	get_json: Callable[[str], dict[str, Any]] = torn_get_json,
	sleep: Callable[[float], None] = time.sleep,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
	"""Return ``(news, raw_pages)`` for ``[from_ts, to_ts)`` in API order."""
	news: list[dict[str, Any]] = []
	raw_pages: list[dict[str, Any]] = []
	seen_urls: set[str] = set()
	url: str | None = build_news_url(from_ts, to_ts, keys.next_key())
	progress = ProgressReporter(label="[fetch] page progress", total=None, unit="pages", non_tty_every=10)

	while url:
		data = get_json(url)
		page_news = [entry for entry in (data.get("news") or []) if isinstance(entry, dict)]
		metadata = data.get("_metadata")
		raw_pages.append(
			{
				"request_url": redact_key(url),
				"has_html": any("XID=" in str(entry.get("text") or "") for entry in page_news),
				"news": page_news,
				"_metadata": metadata,
			}
		)
		news.extend(page_news)
		progress.step(records=len(news))

		prev_link = ((metadata or {}).get("links") or {}).get("prev")
		if not prev_link or not page_news:
			break
		if max_pages is not None and len(raw_pages) >= max_pages:
			print(f"[fetch] Reached max pages ({max_pages}); stopping early.", flush=True)
			break
		base_link = redact_key(prev_link)
		if base_link in seen_urls:
			print("[fetch] Pagination link repeated; stopping.", flush=True)
			break
		seen_urls.add(base_link)
		url = next_page_url(prev_link, keys.next_key())
		if delay > 0:
			sleep(delay)

	progress.step(0, done=True, records=len(news))
	progress.close()
	return news, raw_pages


def news_in_window(news: list[dict[str, Any]], from_ts: int, to_ts: int) -> list[dict[str, Any]]:
	"""Drop duplicates (by id) and entries outside ``[from_ts, to_ts)``."""
	seen: set[str] = set()
	kept: list[dict[str, Any]] = []
	for entry in news:
		try:
			ts = int(entry.get("timestamp"))
		except (TypeError, ValueError):
			continue
		if ts < from_ts or ts >= to_ts:
			continue
		entry_id = entry.get("id")
		if entry_id is not None:
			key = str(entry_id)
			if key in seen:
				continue
			seen.add(key)
		kept.append(entry)
	return kept

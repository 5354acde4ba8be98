#!/usr/bin/env python3
"""Classify faction armory news text into structured armory events.

Each news record is a free-text sentence, optionally with HTML profile links
carrying ``XID=<digits>`` user ids, for example:

	<a href="...profiles.php?XID=100">Alice</a> loaned 3x Katana to
	<a href="...profiles.php?XID=200">Bob</a> from the faction armory

Records with no XID token, no recognised phrase, or a recognised phrase whose
fields cannot be extracted are dropped. ``classify`` never raises on text/int
input; ``classify_records`` additionally reports why records were dropped.

Run directly to classify a saved raw dump:

	python classify_armory_news.py logs/2025/01/14.raw.json
"""

from __future__ import annotations

import argparse
import html
import json
import re
import sys
from pathlib import Path
from typing import Any, Iterable

from armory_events import ArmoryEvent, sort_records
from armory_patterns import CategoryPattern, DEFAULT_TABLE, load_pattern_table
from progress import ProgressReporter


XID_RE = re.compile(r"XID=(\d+)")
MARKUP_START_RE = re.compile(r"<|&lt;")
TRAILING_FROM_RE = re.compile(r"\s+from\s*$", re.IGNORECASE)

SKIP_REASONS = ("no_user_ids", "no_category", "extraction_failed", "invalid_event")


def extract_user_ids(text: str) -> list[str]:
	"""Ordered XID tokens; repeated ids keep their first position."""
	seen: set[str] = set()
	ordered: list[str] = []
	for match in XID_RE.finditer(text):
		uid = match.group(1)
		if uid in seen:
			continue
		seen.add(uid)
		ordered.append(uid)
	return ordered


def clean_item_name(raw: str) -> str:
	text = str(raw or "")
	markup = MARKUP_START_RE.search(text)
	if markup:
		text = text[: markup.start()]
	text = html.unescape(text)
	text = re.sub(r"\s+", " ", text).strip()
	text = TRAILING_FROM_RE.sub("", text)
	return text.strip()


def find_pattern(text: str, table: Iterable[CategoryPattern]) -> CategoryPattern | None:
	for entry in table:
		if entry.applies_to(text):
			return entry
	return None


def _classify_with_reason(
	text: str,
	timestamp: int,
	table: Iterable[CategoryPattern],
) -> tuple[ArmoryEvent | None, str | None]:
	user_ids = extract_user_ids(text)
	if not user_ids:
		return None, "no_user_ids"

	entry = find_pattern(text, table)
	if entry is None:
		return None, "no_category"

	extracted = entry.extract(text)
	if extracted is None:
		return None, "extraction_failed"
	raw_item, quantity = extracted
	item = clean_item_name(raw_item)
	if not item:
		return None, "extraction_failed"

	initiator = user_ids[0]
	category = entry.category
	if entry.attribution == "first":
		user_id = initiator
		counterparty: str | None = None
	else:
		user_id = user_ids[1] if len(user_ids) > 1 else initiator
		counterparty = initiator

	# A loan whose receiver is the initiator is a loan to themselves.
	if category == "loaned_receive" and user_id == initiator:
		category = "loaned"
		counterparty = None

	try:
		event = ArmoryEvent(
			category=category,
			user_id=user_id,
			counterparty_id=counterparty,
			item=item,
			quantity=quantity,
			timestamp=int(timestamp),
		)
	except (TypeError, ValueError):
		return None, "invalid_event"
	return event, None


def classify(
	text: str,
	timestamp: int,
	table: Iterable[CategoryPattern] = DEFAULT_TABLE,
) -> ArmoryEvent | None:
	event, _reason = _classify_with_reason(str(text or ""), timestamp, table)
	return event


def build_flag(timestamp: Any, flag: str, text: str) -> dict[str, Any]:
	return {
		"severity": "info",
		"flag": flag,
		"timestamp": timestamp,
		"raw_excerpt": re.sub(r"\s+", " ", text).strip()[:500],
	}


def classify_records(
	records: list[dict[str, Any]],
	table: Iterable[CategoryPattern] = DEFAULT_TABLE,
	*,
	progress_label: str | None = None,
) -> tuple[list[ArmoryEvent], list[dict[str, Any]], dict[str, int]]:
	"""Classify records in the order given.

	Callers that feed the result to the ledger must pass records sorted by
	ascending timestamp (see ``armory_events.sort_records``).
	"""
	table = tuple(table)
	events: list[ArmoryEvent] = []
	flags: list[dict[str, Any]] = []
	counters: dict[str, int] = {"records_total": len(records), "events_total": 0}
	for reason in SKIP_REASONS:
		counters[f"skipped_{reason}"] = 0

	progress = None
	if progress_label:
		progress = ProgressReporter(label=progress_label, total=len(records), unit="records", non_tty_every=500)

	for idx, record in enumerate(records, start=1):
		text = str(record.get("text") or "")
		timestamp = record.get("timestamp")
		try:
			ts_value = int(timestamp)
		except (TypeError, ValueError):
			event, reason = None, "invalid_event"
		else:
			event, reason = _classify_with_reason(text, ts_value, table)

		if event is not None:
			events.append(event)
			counters["events_total"] += 1
			category_key = f"category_{event.category}"
			counters[category_key] = counters.get(category_key, 0) + 1
		else:
			counters[f"skipped_{reason}"] += 1
			flags.append(build_flag(timestamp, f"skipped_{reason}", text))

		if progress is not None:
			progress.step(events=len(events), skipped=len(flags), done=idx == len(records))

	return events, flags, counters


def load_news_records(path: Path) -> list[dict[str, Any]]:
	"""Read news records from a raw page dump or a plain list of records."""
	with path.open("r", encoding="utf-8") as handle:
		payload = json.load(handle)
	if isinstance(payload, list):
		return payload
	if isinstance(payload, dict) and isinstance(payload.get("pages"), list):
		records: list[dict[str, Any]] = []
		for page in payload["pages"]:
			records.extend(page.get("news") or [])
		return records
	if isinstance(payload, dict) and isinstance(payload.get("news"), list):
		return payload["news"]
	raise RuntimeError(f"Unrecognised news file layout: {path}")


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Classify armory news records into structured events")
	parser.add_argument("input", help="Raw page dump (DD.raw.json) or a JSON list of {text, timestamp}")
	parser.add_argument("--patterns", default=None, help="Optional JSON pattern table override")
	parser.add_argument("--output", default=None, help="Write classified events as JSON to this path")
	return parser


def main() -> int:
	args = build_parser().parse_args()
	try:
		table = load_pattern_table(Path(args.patterns) if args.patterns else None)
		records = sort_records(load_news_records(Path(args.input)))
	except (OSError, ValueError, RuntimeError) as exc:
		print(f"Fatal error: {exc}", file=sys.stderr)
		return 1

	events, flags, counters = classify_records(records, table, progress_label="[classify] record progress")
	payload = [
		{
			"category": event.category,
			"user_id": event.user_id,
			"counterparty_id": event.counterparty_id,
			"item": event.item,
			"quantity": event.quantity,
			"timestamp": event.timestamp,
		}
		for event in events
	]
	if args.output:
		output_path = Path(args.output)
		output_path.parent.mkdir(parents=True, exist_ok=True)
		output_path.write_text(json.dumps(payload, indent=2, ensure_ascii=True), encoding="utf-8")
		print(f"Events written to: {output_path}")

	print(f"Records processed: {counters['records_total']}")
	print(f"Events classified: {counters['events_total']}")
	print("Skipped records by reason:")
	for reason in SKIP_REASONS:
		print(f"  - {reason}: {counters[f'skipped_{reason}']}")
	for flag in flags[:10]:
		print(f"  ! {flag['flag']} @ {flag['timestamp']}: {flag['raw_excerpt'][:120]}")
	if len(flags) > 10:
		print(f"  ! ... {len(flags) - 10} more")
	return 0


if __name__ == "__main__":
	raise SystemExit(main())

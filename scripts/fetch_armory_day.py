#!/usr/bin/env python3
"""Fetch one UTC day of faction armory news and update the armory logs.

Steps:
1. Fetch every armoryAction news page for ``[day, day + 86400)``.
2. Save the raw pages to logs/YYYY/MM/DD.raw.json.
3. Sort the records by ascending timestamp and classify them.
4. Save the per-user daily log to logs/YYYY/MM/DD.json.
5. Apply the day's loans, returns and retrievals to loaned_items.json.
6. Write the month summary once every day of the month is present and
   refresh logs/index.json.
7. Optionally commit and push the changed files.

API keys come from ``--api-key`` (repeatable) or the comma-separated
``TORN_API_KEYS`` environment variable. Items listed in items.json
(``oc_items``) are exempt from outstanding loan tracking.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from armory_events import sort_records
from armory_patterns import CategoryPattern, load_pattern_table
from classify_armory_news import classify_records
from git_publish import ensure_within, publish_changes
from loan_ledger import apply_events, build_daily_log, load_ledger, outstanding_totals, save_ledger
from month_summary import build_month_summary, month_dir, refresh_index
from script_paths import DATA_ROOT, ITEMS_FILE, LOANS_FILE, LOGS_DIR
from torn_news_fetch import KeyRotation, default_target_date, fetch_faction_news, news_in_window, utc_day_bounds


API_KEYS_ENV = "TORN_API_KEYS"


def load_oc_items(path: Path) -> set[str]:
	"""Read the exclusion set: a JSON list of names or ``{"oc_items": [...]}``."""
	if not path.exists():
		return set()
	with path.open("r", encoding="utf-8") as handle:
		payload = json.load(handle)
	names = payload.get("oc_items", []) if isinstance(payload, dict) else payload
	if not isinstance(names, list):
		raise ValueError(f"oc_items in {path} must be a list of item names")
	return {str(name).strip() for name in names if str(name).strip()}


def resolve_api_keys(cli_keys: list[str] | None, environ: dict[str, str] | None = None) -> list[str]:
	keys = [key for key in (cli_keys or []) if key.strip()]
	if keys:
		return keys
	raw = (environ if environ is not None else os.environ).get(API_KEYS_ENV, "")
	return [key.strip() for key in raw.split(",") if key.strip()]


def write_json(path: Path, payload: Any) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(json.dumps(payload, indent=2, ensure_ascii=True), encoding="utf-8")


def process_day(
	news: list[dict[str, Any]],
	*,
	date_str: str,
	from_ts: int,
	to_ts: int,
	ledger: dict[str, Any],
	exclusion: set[str],
	table: tuple[CategoryPattern, ...],
) -> tuple[dict[str, Any], list[dict[str, Any]], dict[str, int]]:
	"""Classify one day of news, fold it into ``ledger`` and return the day payload."""
	# The API pages newest first; reverse so same-second records stay chronological.
	records = sort_records(reversed(news_in_window(news, from_ts, to_ts)))
	events, flags, counters = classify_records(records, table, progress_label="[classify] record progress")
	daily_log = build_daily_log(events)
	flags.extend(apply_events(ledger, events, exclusion))
	payload = {
		"meta": {
			"date": date_str,
			"from": from_ts,
			"to": to_ts,
			"generated_at": int(datetime.now(timezone.utc).timestamp()),
			"records_total": counters["records_total"],
			"events_total": counters["events_total"],
		},
		"users": daily_log,
	}
	return payload, flags, counters


def resolve_paths(args: argparse.Namespace) -> tuple[Path, Path, Path, Path]:
	"""Return ``(data_root, logs_dir, loans_path, items_path)`` for the run."""
	if args.data_dir:
		data_root = Path(args.data_dir)
		logs_dir, loans_path, items_path = data_root / "logs", data_root / "loaned_items.json", data_root / "items.json"
	else:
		data_root, logs_dir, loans_path, items_path = DATA_ROOT, LOGS_DIR, LOANS_FILE, ITEMS_FILE
	if args.loans_file:
		loans_path = Path(args.loans_file)
	if args.items_file:
		items_path = Path(args.items_file)
	return data_root, logs_dir, loans_path, items_path


def run_day(
	args: argparse.Namespace,
	*,
	fetcher: Callable[..., tuple[list[dict[str, Any]], list[dict[str, Any]]]] = fetch_faction_news,
) -> int:
	date_str = args.date or default_target_date()
	from_ts, to_ts = utc_day_bounds(date_str)
	year, month, day = (int(part) for part in date_str.split("-"))

	data_root, logs_dir, loans_path, items_path = resolve_paths(args)
	if args.commit:
		# Reject outputs git cannot stage before anything is written.
		ensure_within([logs_dir, loans_path], data_root)

	api_keys = resolve_api_keys(args.api_key)
	if not api_keys:
		raise RuntimeError(f"No Torn API key given; use --api-key or set {API_KEYS_ENV}")
	table = load_pattern_table(Path(args.patterns) if args.patterns else None)
	exclusion = load_oc_items(items_path)
	ledger = load_ledger(loans_path)

	print(f"[fetch] Fetching armory news for {date_str} ({from_ts}..{to_ts})", flush=True)
	news, raw_pages = fetcher(from_ts, to_ts, KeyRotation(api_keys), delay=float(args.delay))
	print(f"[fetch] Pages: {len(raw_pages)}, records: {len(news)}", flush=True)

	payload, flags, counters = process_day(
		news,
		date_str=date_str,
		from_ts=from_ts,
		to_ts=to_ts,
		ledger=ledger,
		exclusion=exclusion,
		table=table,
	)

	print(f"Records processed: {counters['records_total']}")
	print(f"Events classified: {counters['events_total']}")
	for key in sorted(counters):
		if key.startswith("category_"):
			print(f"  - {key.replace('category_', '')}: {counters[key]}")
	skipped = {key: value for key, value in counters.items() if key.startswith("skipped_") and value}
	for key, value in sorted(skipped.items()):
		print(f"  ! {key}: {value}")
	unmatched = [flag for flag in flags if flag.get("flag") == "resolution_exceeds_outstanding"]
	if unmatched:
		print(f"[ledger] Resolutions exceeding outstanding loans: {len(unmatched)}")

	if args.dry_run:
		totals = outstanding_totals(ledger)
		print(f"Dry run complete. Users with outstanding loans: {len(totals)}")
		print(json.dumps(payload["meta"], indent=2, ensure_ascii=True))
		return 0

	folder = month_dir(logs_dir, year, month)
	written: list[Path] = []
	if not args.no_raw:
		raw_path = folder / f"{day:02d}.raw.json"
		write_json(
			raw_path,
			{
				"from": from_ts,
				"to": to_ts,
				"fetched_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
				"pages": raw_pages,
			},
		)
		written.append(raw_path)
		print(f"Saved raw log: {raw_path}")

	day_path = folder / f"{day:02d}.json"
	write_json(day_path, payload)
	written.append(day_path)
	print(f"Saved daily log: {day_path}")

	save_ledger(loans_path, ledger)
	written.append(loans_path)
	print(f"[ledger] Updated {loans_path}")

	if not args.skip_month:
		summary, month_flags = build_month_summary(logs_dir, year, month)
		if summary is not None:
			print(f"[month] Wrote summary for {year:04d}-{month:02d}")
			written.extend([folder / "summary.json", folder / "summary.msgpack"])
		else:
			missing = month_flags[0].get("missing_days", []) if month_flags else []
			print(f"[month] {year:04d}-{month:02d} incomplete; {len(missing)} day(s) missing")
	index = refresh_index(logs_dir)
	written.append(logs_dir / "index.json")
	print(f"[month] Index updated, dataset ID: {index.get('datasetId')}")

	if args.commit:
		publish_changes(written, f"Add daily armory log for {date_str}", cwd=data_root)
	return 0


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Fetch one day of faction armory news and update the loan ledger")
	parser.add_argument("date", nargs="?", default=None, help="UTC day to fetch, YYYY-MM-DD (default: yesterday)")
	parser.add_argument("--api-key", action="append", default=None, help=f"Torn API key (repeatable; default ${API_KEYS_ENV})")
	parser.add_argument(
		"--delay",
		type=float,
		default=0.5,
		help="Delay in seconds between page requests (default: 0.5)",
	)
	parser.add_argument("--data-dir", default=None, help="Directory holding logs/, loaned_items.json and items.json")
	parser.add_argument("--loans-file", default=None, help="Loan ledger JSON path")
	parser.add_argument("--items-file", default=None, help="JSON file with the oc_items exclusion list")
	parser.add_argument("--patterns", default=None, help="Optional JSON pattern table override")
	parser.add_argument("--no-raw", action="store_true", help="Do not save the raw page dump")
	parser.add_argument("--skip-month", action="store_true", help="Do not attempt the month summary")
	parser.add_argument("--dry-run", action="store_true", help="Fetch and classify without writing anything")
	parser.add_argument("--commit", action="store_true", help="git add/commit/push the written files")
	return parser


def main() -> int:
	args = build_parser().parse_args()
	try:
		return run_day(args)
	except KeyboardInterrupt:
		print("Interrupted by user.", file=sys.stderr)
		return 130
	except Exception as exc:  # noqa: BLE001 - surface fatal errors for CLI use
		print(f"Fatal error: {exc}", file=sys.stderr)
		return 1


if __name__ == "__main__":
	raise SystemExit(main())

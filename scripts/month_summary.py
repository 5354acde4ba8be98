#!/usr/bin/env python3
"""Merge daily armory logs into a month summary and refresh the log index.

Daily logs live at ``logs/YYYY/MM/DD.json`` as ``{"meta": {...}, "users": {...}}``.
A month summary is only written once every day of the month has a log, unless
``--allow-partial`` is given. Outputs:

- logs/YYYY/MM/summary.json     merged users plus per-category/per-user counts
- logs/YYYY/MM/summary.msgpack  the same payload, compact
- logs/index.json               months, days and summary files with sha256
"""

from __future__ import annotations

import argparse
import calendar
import hashlib
import json
import re
import sys
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import msgpack

from armory_events import CATEGORIES
from script_paths import LOGS_DIR


DAY_FILE_RE = re.compile(r"^(\d{2})\.json$")
MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")
SUMMARY_FILES = ("summary.json", "summary.msgpack")
INDEX_SCHEMA_VERSION = 1


def load_json(path: Path) -> Any:
	with path.open("r", encoding="utf-8") as handle:
		return json.load(handle)


def write_json(path: Path, payload: Any) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(json.dumps(payload, indent=2, ensure_ascii=True), encoding="utf-8")


def write_msgpack(path: Path, payload: Any) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	packed = msgpack.packb(payload, use_bin_type=True)
	path.write_bytes(packed)


def _sha256_file(path: Path) -> str:
	return hashlib.sha256(path.read_bytes()).hexdigest()


def _canonical_json(value: object) -> str:
	return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def merge_month(daily_logs: Iterable[dict[str, Any]]) -> dict[str, dict[str, dict[str, list[list[Any]]]]]:
	"""Concatenate per user/category/item sequences across days, in input order."""
	merged: dict[str, dict[str, dict[str, list[list[Any]]]]] = {}
	for log in daily_logs:
		for uid, bucket in log.items():
			target = merged.setdefault(uid, {category: {} for category in CATEGORIES})
			for category, items in bucket.items():
				target_items = target.setdefault(category, {})
				for item, entries in items.items():
					target_items.setdefault(item, []).extend(list(entry) for entry in entries)
	return merged


def month_days(year: int, month: int) -> list[str]:
	_, last_day = calendar.monthrange(year, month)
	return [f"{day:02d}" for day in range(1, last_day + 1)]


def month_dir(logs_dir: Path, year: int, month: int) -> Path:
	return logs_dir / f"{year:04d}" / f"{month:02d}"


def parse_month(value: str) -> tuple[int, int]:
	match = MONTH_RE.match(value.strip())
	if not match:
		raise ValueError(f"Month must look like YYYY-MM, got {value!r}")
	year, month = int(match.group(1)), int(match.group(2))
	if not 1 <= month <= 12:
		raise ValueError(f"Month out of range: {value!r}")
	return year, month


def load_month_logs(logs_dir: Path, year: int, month: int) -> tuple[list[dict[str, Any]], list[str]]:
	folder = month_dir(logs_dir, year, month)
	logs: list[dict[str, Any]] = []
	missing: list[str] = []
	for day in month_days(year, month):
		path = folder / f"{day}.json"
		if not path.exists():
			missing.append(day)
			continue
		payload = load_json(path)
		users = payload.get("users") if isinstance(payload, dict) and "users" in payload else payload
		logs.append(users or {})
	return logs, missing


def summarize_month(merged: dict[str, Any]) -> dict[str, Any]:
	events_by_category: dict[str, int] = defaultdict(int)
	quantity_by_category: dict[str, int] = defaultdict(int)
	per_user: dict[str, dict[str, int]] = {}
	for uid, bucket in merged.items():
		user_counts: dict[str, int] = defaultdict(int)
		for category, items in bucket.items():
			for entries in items.values():
				events_by_category[category] += len(entries)
				quantity_by_category[category] += sum(int(entry[0]) for entry in entries)
				user_counts[category] += len(entries)
		per_user[uid] = dict(sorted(user_counts.items()))
	return {
		"users_total": len(merged),
		"events_by_category": dict(sorted(events_by_category.items())),
		"quantity_by_category": dict(sorted(quantity_by_category.items())),
		"events_by_user": dict(sorted(per_user.items())),
	}


def build_month_summary(
	logs_dir: Path,
	year: int,
	month: int,
	*,
	allow_partial: bool = False,
) -> tuple[dict[str, Any] | None, list[dict[str, Any]]]:
	flags: list[dict[str, Any]] = []
	logs, missing = load_month_logs(logs_dir, year, month)
	if missing:
		flags.append(
			{
				"severity": "info" if allow_partial else "warning",
				"flag": "month_incomplete",
				"month": f"{year:04d}-{month:02d}",
				"missing_days": missing,
			}
		)
		if not allow_partial:
			return None, flags

	merged = merge_month(logs)
	summary = {
		"meta": {
			"month": f"{year:04d}-{month:02d}",
			"days_included": len(logs),
			"days_missing": missing,
			"generated_at": int(datetime.now(timezone.utc).timestamp()),
		},
		"totals": summarize_month(merged),
		"users": merged,
	}
	folder = month_dir(logs_dir, year, month)
	write_json(folder / "summary.json", summary)
	write_msgpack(folder / "summary.msgpack", summary)
	return summary, flags


def refresh_index(logs_dir: Path = LOGS_DIR, index_path: Path | None = None) -> dict[str, Any]:
	"""Rebuild the log index: days per month plus hashed month summary files."""
	index_path = index_path or logs_dir / "index.json"
	months: dict[str, dict[str, Any]] = {}
	if logs_dir.exists():
		for year_dir in sorted(path for path in logs_dir.iterdir() if path.is_dir() and path.name.isdigit()):
			for folder in sorted(
				path for path in year_dir.iterdir() if path.is_dir() and path.name.isdigit() and 1 <= int(path.name) <= 12
			):
				days = sorted(
					match.group(1)
					for match in (DAY_FILE_RE.match(path.name) for path in folder.iterdir())
					if match
				)
				summaries: dict[str, dict[str, int | str]] = {}
				for name in SUMMARY_FILES:
					path = folder / name
					if path.exists():
						summaries[name] = {
							"sizeBytes": int(path.stat().st_size),
							"sha256": _sha256_file(path),
						}
				if not days and not summaries:
					continue
				key = f"{year_dir.name}-{folder.name}"
				expected = len(month_days(int(year_dir.name), int(folder.name)))
				months[key] = {
					"days": days,
					"complete": len(days) == expected,
					"summaries": summaries,
				}

	index = {
		"schema_version": INDEX_SCHEMA_VERSION,
		"generatedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
		"months": months,
	}
	index["datasetId"] = hashlib.sha256(_canonical_json(months).encode("utf-8")).hexdigest()[:16]
	write_json(index_path, index)
	return index


def parse_args() -> argparse.Namespace:
	parser = argparse.ArgumentParser(description="Merge daily armory logs into a month summary")
	parser.add_argument("--month", required=True, help="Month to merge, YYYY-MM")
	parser.add_argument("--logs-dir", default=str(LOGS_DIR))
	parser.add_argument(
		"--allow-partial",
		action="store_true",
		help="Write the summary even when some days of the month have no log",
	)
	return parser.parse_args()


def main() -> int:
	args = parse_args()
	logs_dir = Path(args.logs_dir)
	try:
		year, month = parse_month(args.month)
		summary, flags = build_month_summary(logs_dir, year, month, allow_partial=bool(args.allow_partial))
		index = refresh_index(logs_dir)
	except (OSError, ValueError) as exc:
		print(f"Fatal error: {exc}", file=sys.stderr)
		return 1

	for flag in flags:
		print(f"[month] {flag['severity']}: {flag['flag']} missing={','.join(flag.get('missing_days', []))}")
	if summary is None:
		print(f"[month] Summary not written for {args.month}")
	else:
		totals = summary["totals"]
		print(f"[month] Wrote summary for {args.month}: users={totals['users_total']}")
		for category, count in totals["events_by_category"].items():
			print(f"  - {category}: {count}")
	print(f"[month] Index updated, dataset ID: {index.get('datasetId')}")
	return 0


if __name__ == "__main__":
	raise SystemExit(main())

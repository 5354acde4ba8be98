from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path
import sys

import msgpack

SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
	sys.path.insert(0, str(SCRIPT_DIR))

from armory_events import ArmoryEvent
from loan_ledger import build_daily_log
from month_summary import build_month_summary, merge_month, month_days, parse_month, refresh_index


DAY = 86400
FEB_START = 1706745600  # 2024-02-01T00:00:00Z


def write_day(logs_dir: Path, day: str, users: dict) -> None:
	path = logs_dir / "2024" / "02" / f"{day}.json"
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(json.dumps({"meta": {"date": f"2024-02-{day}"}, "users": users}), encoding="utf-8")


def month_events() -> list[ArmoryEvent]:
	return [
		ArmoryEvent("deposited", "100", None, "Xanax", 5, FEB_START + 60),
		ArmoryEvent("loaned_receive", "200", "100", "Katana", 1, FEB_START + 120),
		ArmoryEvent("deposited", "100", None, "Xanax", 2, FEB_START + DAY + 60),
		ArmoryEvent("returned", "200", None, "Katana", 1, FEB_START + 2 * DAY + 5),
		ArmoryEvent("given", "300", "100", "Xanax", 1, FEB_START + 2 * DAY + 9),
	]


class MonthSummaryTests(unittest.TestCase):
	def test_merge_of_daily_logs_equals_single_batch(self) -> None:
		events = month_events()
		by_day: dict[int, list[ArmoryEvent]] = {}
		for event in events:
			by_day.setdefault((event.timestamp - FEB_START) // DAY, []).append(event)

		merged = merge_month(build_daily_log(day_events) for _, day_events in sorted(by_day.items()))

		self.assertEqual(merged, build_daily_log(events))

	def test_merge_is_pure_concatenation(self) -> None:
		day_one = {"100": {"deposited": {"Xanax": [[5, 1]]}}}
		day_two = {"100": {"deposited": {"Xanax": [[2, 2]]}}, "200": {"used": {"Bag": [[1, 3]]}}}

		merged = merge_month([day_one, day_two])

		self.assertEqual(merged["100"]["deposited"], {"Xanax": [[5, 1], [2, 2]]})
		self.assertEqual(merged["200"]["used"], {"Bag": [[1, 3]]})
		self.assertEqual(day_one["100"]["deposited"]["Xanax"], [[5, 1]])

	def test_month_days_handles_leap_year(self) -> None:
		self.assertEqual(len(month_days(2024, 2)), 29)
		self.assertEqual(len(month_days(2023, 2)), 28)
		self.assertEqual(month_days(2024, 4)[-1], "30")

	def test_parse_month_rejects_bad_input(self) -> None:
		self.assertEqual(parse_month("2024-02"), (2024, 2))
		with self.assertRaises(ValueError):
			parse_month("2024-13")
		with self.assertRaises(ValueError):
			parse_month("Feb 2024")

	def test_incomplete_month_is_not_written(self) -> None:
		with tempfile.TemporaryDirectory() as tmp:
			logs_dir = Path(tmp) / "logs"
			write_day(logs_dir, "01", {})

			summary, flags = build_month_summary(logs_dir, 2024, 2)

			self.assertIsNone(summary)
			self.assertEqual(flags[0]["flag"], "month_incomplete")
			self.assertEqual(len(flags[0]["missing_days"]), 28)
			self.assertFalse((logs_dir / "2024" / "02" / "summary.json").exists())

	def test_complete_month_writes_json_and_msgpack(self) -> None:
		with tempfile.TemporaryDirectory() as tmp:
			logs_dir = Path(tmp) / "logs"
			for day in month_days(2024, 2):
				write_day(logs_dir, day, {})
			write_day(logs_dir, "02", build_daily_log(month_events()[:2]))

			summary, flags = build_month_summary(logs_dir, 2024, 2)

			self.assertEqual(flags, [])
			self.assertEqual(summary["totals"]["events_by_category"]["deposited"], 1)
			self.assertEqual(summary["totals"]["quantity_by_category"]["deposited"], 5)
			packed = (logs_dir / "2024" / "02" / "summary.msgpack").read_bytes()
			self.assertEqual(msgpack.unpackb(packed, raw=False), summary)
			on_disk = json.loads((logs_dir / "2024" / "02" / "summary.json").read_text(encoding="utf-8"))
			self.assertEqual(on_disk["users"]["200"]["loaned_receive"]["Katana"], [[1, FEB_START + 120, "100"]])

	def test_refresh_index_lists_days_and_summaries(self) -> None:
		with tempfile.TemporaryDirectory() as tmp:
			logs_dir = Path(tmp) / "logs"
			write_day(logs_dir, "01", {})
			write_day(logs_dir, "02", {})
			(logs_dir / "2024" / "02" / "02.raw.json").write_text("{}", encoding="utf-8")
			build_month_summary(logs_dir, 2024, 2, allow_partial=True)

			index = refresh_index(logs_dir)

			month = index["months"]["2024-02"]
			self.assertEqual(month["days"], ["01", "02"])
			self.assertFalse(month["complete"])
			self.assertEqual(sorted(month["summaries"]), ["summary.json", "summary.msgpack"])
			self.assertEqual(len(month["summaries"]["summary.json"]["sha256"]), 64)
			self.assertEqual(len(index["datasetId"]), 16)
			self.assertTrue((logs_dir / "index.json").exists())


if __name__ == "__main__":
	unittest.main()

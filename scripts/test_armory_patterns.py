from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path
import sys

SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
	sys.path.insert(0, str(SCRIPT_DIR))

from armory_events import ArmoryEvent, sort_records
from armory_patterns import DEFAULT_TABLE, compile_pattern_entry, load_pattern_table
from classify_armory_news import classify


class ArmoryPatternTests(unittest.TestCase):
	def test_default_table_priority_order(self) -> None:
		self.assertEqual(
			[entry.category for entry in DEFAULT_TABLE],
			["used", "filled", "deposited", "loaned", "loaned_receive", "returned", "retrieved", "given"],
		)

	def test_override_file_changes_phrasing_without_code(self) -> None:
		entries = [
			{
				"category": "deposited",
				"keywords": ["donated"],
				"patterns": [r"donated (?:(?P<quantity>\d+)\s?x\s*)?(?P<item>.+)$"],
				"attribution": "first",
			}
		]
		with tempfile.TemporaryDirectory() as tmp:
			path = Path(tmp) / "patterns.json"
			path.write_text(json.dumps({"patterns": entries}), encoding="utf-8")

			table = load_pattern_table(path)

		event = classify("XID=7 donated 3x Morphine", 1, table)
		self.assertEqual((event.category, event.item, event.quantity), ("deposited", "Morphine", 3))
		self.assertIsNone(classify("XID=7 deposited 3 x Morphine", 1, table))

	def test_fixed_item_entry(self) -> None:
		entry = compile_pattern_entry(
			{
				"category": "filled",
				"keywords": ["filled one of"],
				"fixed_item": "Empty Blood Bag",
				"fixed_quantity": 1,
			}
		)

		event = classify("XID=7 filled one of the faction's bags", 1, (entry,))
		self.assertEqual((event.item, event.quantity), ("Empty Blood Bag", 1))

	def test_comma_grouped_quantities(self) -> None:
		deposit = classify("XID=7 deposited 1,000 x Xanax", 1)
		return_event = classify("XID=7 returned 1,200x Bullets to the faction armory", 2)

		self.assertEqual((deposit.item, deposit.quantity), ("Xanax", 1000))
		self.assertEqual((return_event.item, return_event.quantity), ("Bullets", 1200))

	def test_invalid_entries_are_rejected(self) -> None:
		with self.assertRaises(ValueError):
			compile_pattern_entry({"category": "stolen", "keywords": ["stole"], "patterns": ["(?P<item>.+)"]})
		with self.assertRaises(ValueError):
			compile_pattern_entry({"category": "used", "keywords": ["used"], "patterns": [r"used (\d+)"]})
		with self.assertRaises(ValueError):
			compile_pattern_entry({"category": "used", "keywords": ["used"], "patterns": ["(?P<item>.+)"], "attribution": "third"})
		with self.assertRaises(ValueError):
			compile_pattern_entry({"category": "used", "keywords": [], "patterns": ["(?P<item>.+)"]})


class ArmoryEventTests(unittest.TestCase):
	def test_counterparty_required_for_receiving_categories(self) -> None:
		with self.assertRaises(ValueError):
			ArmoryEvent("retrieved", "200", None, "Katana", 1, 1)
		with self.assertRaises(ValueError):
			ArmoryEvent("deposited", "200", "100", "Xanax", 1, 1)

	def test_invalid_fields_are_rejected(self) -> None:
		with self.assertRaises(ValueError):
			ArmoryEvent("deposited", "abc", None, "Xanax", 1, 1)
		with self.assertRaises(ValueError):
			ArmoryEvent("deposited", "1", None, "  ", 1, 1)
		with self.assertRaises(ValueError):
			ArmoryEvent("deposited", "1", None, "Xanax", True, 1)

	def test_log_entry_shapes(self) -> None:
		self.assertEqual(ArmoryEvent("returned", "200", None, "Katana", 2, 9).log_entry(), [2, 9])
		self.assertEqual(ArmoryEvent("given", "200", "100", "Xanax", 1, 9).log_entry(), [1, 9, "100"])

	def test_sort_records_is_stable_ascending(self) -> None:
		records = [
			{"text": "c", "timestamp": 5},
			{"text": "a", "timestamp": 1},
			{"text": "d", "timestamp": 5},
			{"text": "b", "timestamp": 3},
		]

		self.assertEqual([record["text"] for record in sort_records(records)], ["a", "b", "c", "d"])


if __name__ == "__main__":
	unittest.main()

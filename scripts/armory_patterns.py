"""Phrase patterns used to classify armory news text.

The table is evaluated in order; the first entry whose keywords are all present
(and none of whose excluded keywords are) decides the category. Within an
entry, ``patterns`` are tried in order and the first match supplies the named
groups ``item`` and (optionally) ``quantity``.

A JSON file with the same entry shape can replace the defaults, either as a
bare list or as ``{"patterns": [...]}``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from armory_events import CATEGORIES


ATTRIBUTIONS = {"first", "second"}

QTY = r"(?:(?P<quantity>\d[\d,]*)\s?x\s*)?"

DEFAULT_PATTERNS: list[dict[str, Any]] = [
	{
		"category": "used",
		"keywords": ["used one of"],
		"patterns": [r"used one of the faction's (?P<item>.+?) items"],
		"attribution": "first",
		"fixed_quantity": 1,
	},
	{
		# Item is taken from the text; the pack name is not assumed.
		"category": "filled",
		"keywords": ["filled one of"],
		"patterns": [r"filled one of the faction's (?P<item>.+?) items"],
		"attribution": "first",
		"fixed_quantity": 1,
	},
	{
		"category": "deposited",
		"keywords": ["deposited"],
		"patterns": [rf"deposited {QTY}(?P<item>.+)$"],
		"attribution": "first",
	},
	{
		"category": "loaned",
		"keywords": ["loaned", "to themselves"],
		"patterns": [
			rf"loaned {QTY}(?P<item>.+?) to .+? from the faction armory",
			rf"loaned {QTY}(?P<item>.+?) to themselves",
		],
		"attribution": "first",
	},
	{
		"category": "loaned_receive",
		"keywords": ["loaned"],
		"excluded_keywords": ["to themselves"],
		"patterns": [rf"loaned {QTY}(?P<item>.+?) to .+ from the faction armory"],
		"attribution": "second",
	},
	{
		"category": "returned",
		"keywords": ["returned"],
		"patterns": [
			r"returned (?P<quantity>\d[\d,]*)\s?x\s*(?P<item>.+?)(?:\s+to the faction armory)?\s*$",
			r"(?P<quantity>\d[\d,]*)\s?x\s*(?P<item>.+?)(?:\s+to the faction armory)?\s*$",
		],
		"attribution": "first",
	},
	{
		"category": "retrieved",
		"keywords": ["retrieved"],
		"patterns": [rf"retrieved {QTY}(?P<item>.+?) from "],
		"attribution": "second",
	},
	{
		"category": "given",
		"keywords": ["gave"],
		"patterns": [
			rf"gave {QTY}(?P<item>.+?) to ",
			r"(?P<quantity>\d[\d,]*)\s?x\s*(?P<item>.+?)(?: to | from |$)",
		],
		"attribution": "second",
	},
]


@dataclass(frozen=True)
class CategoryPattern:
	category: str
	keywords: tuple[str, ...]
	excluded_keywords: tuple[str, ...]
	patterns: tuple[re.Pattern[str], ...]
	attribution: str
	fixed_item: str | None = None
	fixed_quantity: int | None = None

	def applies_to(self, text: str) -> bool:
		if not all(keyword in text for keyword in self.keywords):
			return False
		return not any(keyword in text for keyword in self.excluded_keywords)

	def extract(self, text: str) -> tuple[str, int] | None:
		"""Return ``(raw_item, quantity)`` from the first matching pattern."""
		for pattern in self.patterns:
			match = pattern.search(text)
			if not match:
				continue
			groups = match.groupdict()
			item = self.fixed_item or groups.get("item") or ""
			if self.fixed_quantity is not None:
				quantity = self.fixed_quantity
			else:
				raw_quantity = groups.get("quantity")
				quantity = int(raw_quantity.replace(",", "")) if raw_quantity else 1
			return item, quantity
		if self.fixed_item and not self.patterns:
			return self.fixed_item, self.fixed_quantity or 1
		return None


def compile_pattern_entry(entry: dict[str, Any]) -> CategoryPattern:
	category = str(entry.get("category") or "")
	if category not in CATEGORIES:
		raise ValueError(f"Unknown category in pattern table: {category!r}")
	attribution = str(entry.get("attribution") or "first")
	if attribution not in ATTRIBUTIONS:
		raise ValueError(f"Unknown attribution for {category}: {attribution!r}")

	keywords = tuple(str(word) for word in entry.get("keywords") or [])
	if not keywords:
		raise ValueError(f"Pattern entry for {category} needs at least one keyword")

	fixed_item = entry.get("fixed_item")
	compiled: list[re.Pattern[str]] = []
	for raw in entry.get("patterns") or []:
		pattern = re.compile(raw, re.DOTALL)
		if "item" not in pattern.groupindex and not fixed_item:
			raise ValueError(f"Pattern for {category} has no 'item' group: {raw}")
		compiled.append(pattern)
	if not compiled and not fixed_item:
		raise ValueError(f"Pattern entry for {category} needs patterns or a fixed_item")

	fixed_quantity = entry.get("fixed_quantity")
	if fixed_quantity is not None:
		fixed_quantity = int(fixed_quantity)
		if fixed_quantity < 1:
			raise ValueError(f"fixed_quantity for {category} must be >= 1")

	return CategoryPattern(
		category=category,
		keywords=keywords,
		excluded_keywords=tuple(str(word) for word in entry.get("excluded_keywords") or []),
		patterns=tuple(compiled),
		attribution=attribution,
		fixed_item=str(fixed_item) if fixed_item else None,
		fixed_quantity=fixed_quantity,
	)


def compile_patterns(entries: list[dict[str, Any]]) -> tuple[CategoryPattern, ...]:
	return tuple(compile_pattern_entry(entry) for entry in entries)


def load_pattern_table(path: Path | None) -> tuple[CategoryPattern, ...]:
	if path is None:
		return DEFAULT_TABLE
	with path.open("r", encoding="utf-8") as handle:
		payload = json.load(handle)
	entries = payload.get("patterns") if isinstance(payload, dict) else payload
	if not isinstance(entries, list):
		raise ValueError(f"Pattern file must hold a list of entries: {path}")
	return compile_patterns(entries)


DEFAULT_TABLE = compile_patterns(DEFAULT_PATTERNS)

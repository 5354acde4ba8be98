"""Daily log aggregation and loan ledger reconciliation.

Ledger layout (``loaned_items.json``)::

	{
		"current": {uid: {item: [[quantity, granted_at, grantor], ...]}},
		"history": {uid: {item: [[amount, granted_at, resolved_at, counterparty], ...]}}
	}

``current`` batches are kept oldest first and are consumed FIFO by returns and
retrievals. Every return/retrieval appends to ``history``: one record per batch
it touched, plus one record with ``granted_at = None`` for any amount that no
outstanding batch covered. Items in the exclusion set never touch ``current``.

Events must be applied in ascending timestamp order.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable

from armory_events import CATEGORIES, RESOLUTION_CATEGORIES, ArmoryEvent


# Loans sort ahead of resolutions sharing their timestamp when a daily log is replayed.
REPLAY_PRIORITY = {"loaned_receive": 0, "returned": 1, "retrieved": 1}


def empty_ledger() -> dict[str, dict[str, Any]]:
	return {"current": {}, "history": {}}


def normalize_ledger(payload: Any) -> dict[str, dict[str, Any]]:
	"""Accept a persisted ledger, migrating the older ``active`` partition name."""
	if not isinstance(payload, dict):
		raise ValueError("Loan ledger must be a JSON object")
	ledger = dict(payload)
	if "current" not in ledger and "active" in ledger:
		ledger["current"] = ledger.pop("active")
	ledger.setdefault("current", {})
	ledger.setdefault("history", {})
	if not isinstance(ledger["current"], dict) or not isinstance(ledger["history"], dict):
		raise ValueError("Loan ledger partitions must be JSON objects")
	return ledger


def load_ledger(path: Path) -> dict[str, dict[str, Any]]:
	if not path.exists():
		return empty_ledger()
	with path.open("r", encoding="utf-8") as handle:
		return normalize_ledger(json.load(handle))


def save_ledger(path: Path, ledger: dict[str, dict[str, Any]]) -> None:
	"""Write the ledger atomically so a crash never leaves a half-written file."""
	path.parent.mkdir(parents=True, exist_ok=True)
	tmp_path = path.with_suffix(path.suffix + ".tmp")
	tmp_path.write_text(json.dumps(ledger, indent=2, ensure_ascii=True), encoding="utf-8")
	tmp_path.replace(path)


def new_user_bucket() -> dict[str, dict[str, list[list[Any]]]]:
	return {category: {} for category in CATEGORIES}


def build_daily_log(events: Iterable[ArmoryEvent]) -> dict[str, dict[str, dict[str, list[list[Any]]]]]:
	log: dict[str, dict[str, dict[str, list[list[Any]]]]] = {}
	for event in events:
		bucket = log.get(event.user_id)
		if bucket is None:
			bucket = new_user_bucket()
			log[event.user_id] = bucket
		bucket[event.category].setdefault(event.item, []).append(event.log_entry())
	return log


def daily_log_events(log: dict[str, Any]) -> tuple[list[ArmoryEvent], list[dict[str, Any]]]:
	"""Flatten a daily log back into ledger-relevant events in replay order."""
	events: list[tuple[int, int, int, ArmoryEvent]] = []
	flags: list[dict[str, Any]] = []
	sequence = 0
	for uid, bucket in log.items():
		for category in REPLAY_PRIORITY:
			for item, entries in (bucket.get(category) or {}).items():
				for entry in entries:
					try:
						event = ArmoryEvent.from_log_entry(uid, category, item, entry)
					except (IndexError, TypeError, ValueError) as exc:
						flags.append(
							{
								"severity": "warning",
								"flag": "daily_log_entry_invalid",
								"user_id": uid,
								"category": category,
								"item": item,
								"value": str(exc),
							}
						)
						continue
					events.append((event.timestamp, REPLAY_PRIORITY[category], sequence, event))
					sequence += 1
	events.sort(key=lambda row: row[:3])
	return [row[3] for row in events], flags


def _history_list(ledger: dict[str, Any], uid: str, item: str) -> list[list[Any]]:
	return ledger["history"].setdefault(uid, {}).setdefault(item, [])


def grant_loan(ledger: dict[str, Any], event: ArmoryEvent) -> None:
	batches = ledger["current"].setdefault(event.user_id, {}).setdefault(event.item, [])
	batches.append([event.quantity, event.timestamp, event.counterparty_id])


def resolve_loan(ledger: dict[str, Any], event: ArmoryEvent, *, track_current: bool) -> int:
	"""Consume ``event.quantity`` FIFO from current batches and record history.

	Returns the amount that no outstanding batch covered.
	"""
	history = _history_list(ledger, event.user_id, event.item)
	retriever = event.counterparty_id if event.category == "retrieved" else None
	remaining = event.quantity

	user_current = ledger["current"].get(event.user_id)
	batches = user_current.get(event.item) if (track_current and user_current) else None
	while batches and remaining > 0:
		head = batches[0]
		available = int(head[0])
		granted_at = head[1] if len(head) > 1 else None
		grantor = head[2] if len(head) > 2 else None
		counterparty = retriever if retriever is not None else grantor
		if available > remaining:
			head[0] = available - remaining
			history.append([remaining, granted_at, event.timestamp, counterparty])
			remaining = 0
			break
		batches.pop(0)
		history.append([available, granted_at, event.timestamp, counterparty])
		remaining -= available

	if track_current and user_current is not None and event.item in user_current and not user_current[event.item]:
		del user_current[event.item]
		if not user_current:
			del ledger["current"][event.user_id]

	if remaining > 0:
		history.append([remaining, None, event.timestamp, retriever])
	return remaining


def apply_events(
	ledger: dict[str, Any],
	events: Iterable[ArmoryEvent],
	exclusion: set[str] | frozenset[str] = frozenset(),
) -> list[dict[str, Any]]:
	"""Fold events into the ledger in place; returns informational flags."""
	flags: list[dict[str, Any]] = []
	for event in events:
		tracked = event.item not in exclusion
		if event.category == "loaned_receive":
			if tracked:
				grant_loan(ledger, event)
			continue
		if event.category not in RESOLUTION_CATEGORIES:
			continue
		unmatched = resolve_loan(ledger, event, track_current=tracked)
		if tracked and unmatched:
			flags.append(
				{
					"severity": "info",
					"flag": "resolution_exceeds_outstanding",
					"user_id": event.user_id,
					"item": event.item,
					"timestamp": event.timestamp,
					"requested": event.quantity,
					"unmatched": unmatched,
				}
			)
	return flags


def apply_daily(
	log: dict[str, Any],
	ledger: dict[str, Any],
	exclusion: set[str] | frozenset[str] = frozenset(),
) -> list[dict[str, Any]]:
	events, flags = daily_log_events(log)
	flags.extend(apply_events(ledger, events, exclusion))
	return flags


def outstanding_totals(ledger: dict[str, Any]) -> dict[str, dict[str, int]]:
	totals: dict[str, dict[str, int]] = {}
	for uid, items in sorted(ledger.get("current", {}).items()):
		per_item = {item: sum(int(batch[0]) for batch in batches) for item, batches in sorted(items.items()) if batches}
		if per_item:
			totals[uid] = per_item
	return totals

"""Structured armory events and raw news record helpers.

Category keys double as DailyLog bucket names:

- deposited       first XID token, ``[quantity, timestamp]``
- used            first XID token, ``[1, timestamp]``
- filled          first XID token, ``[1, timestamp]``
- loaned          first XID token (loan to themselves), ``[quantity, timestamp]``
- loaned_receive  receiver (second token), ``[quantity, timestamp, initiator]``
- returned        first XID token, ``[quantity, timestamp]``
- retrieved       retrieved-from user (second token), ``[quantity, timestamp, retriever]``
- given           recipient (second token), ``[quantity, timestamp, giver]``
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable


CATEGORIES = (
	"deposited",
	"used",
	"filled",
	"loaned",
	"loaned_receive",
	"returned",
	"retrieved",
	"given",
)
COUNTERPARTY_CATEGORIES = {"loaned_receive", "retrieved", "given"}
RESOLUTION_CATEGORIES = {"returned", "retrieved"}


def is_user_id(value: Any) -> bool:
	return isinstance(value, str) and value.isdigit()


@dataclass(frozen=True)
class ArmoryEvent:
	category: str
	user_id: str
	counterparty_id: str | None
	item: str
	quantity: int
	timestamp: int

	def __post_init__(self) -> None:
		if self.category not in CATEGORIES:
			raise ValueError(f"Unknown armory category: {self.category!r}")
		if not is_user_id(self.user_id):
			raise ValueError(f"Invalid user id: {self.user_id!r}")
		if self.category in COUNTERPARTY_CATEGORIES:
			if not is_user_id(self.counterparty_id):
				raise ValueError(f"{self.category} event requires a counterparty id")
		elif self.counterparty_id is not None:
			raise ValueError(f"{self.category} event does not carry a counterparty id")
		if not isinstance(self.item, str) or not self.item.strip():
			raise ValueError("Item name must be non-empty")
		if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 1:
			raise ValueError(f"Quantity must be a positive integer, got {self.quantity!r}")
		if isinstance(self.timestamp, bool) or not isinstance(self.timestamp, int):
			raise ValueError(f"Timestamp must be an integer, got {self.timestamp!r}")

	def log_entry(self) -> list[Any]:
		if self.category in COUNTERPARTY_CATEGORIES:
			return [self.quantity, self.timestamp, self.counterparty_id]
		return [self.quantity, self.timestamp]

	@classmethod
	def from_log_entry(cls, user_id: str, category: str, item: str, entry: list[Any]) -> ArmoryEvent:
		counterparty = entry[2] if len(entry) > 2 else None
		return cls(
			category=category,
			user_id=str(user_id),
			counterparty_id=str(counterparty) if counterparty is not None else None,
			item=item,
			quantity=int(entry[0]),
			timestamp=int(entry[1]),
		)


def news_record(text: str, timestamp: int) -> dict[str, Any]:
	return {"text": text, "timestamp": int(timestamp)}


def sort_records(records: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
	"""Return records in ascending timestamp order.

	Ledger reconciliation consumes loan batches FIFO, so every batch handed to
	the classifier/reconciler must be in this order. The sort is stable: records
	sharing a timestamp keep their relative input order.
	"""
	return sorted(records, key=lambda record: int(record.get("timestamp") or 0))

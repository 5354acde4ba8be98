from __future__ import annotations

from pathlib import Path


SCRIPTS_DIR = Path(__file__).resolve().parent


def _resolve_data_root() -> Path:
	"""Prefer current working directory when it already holds armory data."""
	cwd = Path.cwd().resolve()
	if (cwd / "loaned_items.json").is_file() or (cwd / "logs").is_dir():
		return cwd
	return SCRIPTS_DIR.parent


DATA_ROOT = _resolve_data_root()

LOGS_DIR = DATA_ROOT / "logs"
LOANS_FILE = DATA_ROOT / "loaned_items.json"
ITEMS_FILE = DATA_ROOT / "items.json"

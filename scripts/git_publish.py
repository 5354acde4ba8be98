"""Commit and push the files written by a daily run."""

from __future__ import annotations

import subprocess
from pathlib import Path


def _git(args: list[str], cwd: Path) -> subprocess.CompletedProcess[str]:
	return subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, timeout=120)


def ensure_within(paths: list[Path], cwd: Path) -> list[str]:
	"""Return ``paths`` relative to ``cwd``; raises ValueError for any path outside it."""
	root = cwd.resolve()
	relative: list[str] = []
	for path in paths:
		resolved = path.resolve()
		if not resolved.is_relative_to(root):
			raise ValueError(f"Cannot commit {resolved}: outside {root}")
		relative.append(resolved.relative_to(root).as_posix())
	return relative


def publish_changes(paths: list[Path], message: str, cwd: Path) -> bool:
	"""Stage, commit and push the given paths. Returns False when nothing changed."""
	root = cwd.resolve()
	existing = [name for name in ensure_within(paths, root) if (root / name).exists()]
	if not existing:
		print("[git] Nothing to stage.")
		return False

	added = _git(["add", "--", *existing], root)
	if added.returncode != 0:
		raise RuntimeError(f"git add failed: {added.stderr.strip()}")

	staged = _git(["diff", "--cached", "--quiet"], root)
	if staged.returncode == 0:
		print("[git] No changes to commit.")
		return False

	committed = _git(["commit", "-m", message], root)
	if committed.returncode != 0:
		raise RuntimeError(f"git commit failed: {committed.stderr.strip() or committed.stdout.strip()}")

	pushed = _git(["push"], root)
	if pushed.returncode != 0:
		raise RuntimeError(f"git push failed: {pushed.stderr.strip()}")
	print(f"[git] Committed and pushed: {message}")
	return True

"""Polling file watcher that drives tool hot reload."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path

logger = logging.getLogger(__name__)

FileState = tuple[int, int]  # (mtime_ns, size)
ChangeCallback = Callable[[str, str], Awaitable[None]]

CHANGE = "change"
RENAME = "rename"

SKIP_DIRS = frozenset({"__pycache__", "node_modules"})


def scan_tree(root: Path, predicate: Callable[[Path], bool]) -> dict[str, FileState]:
	"""Stat every file under root that satisfies predicate.

	Hidden directories and cache directories are not descended into.
	"""
	states: dict[str, FileState] = {}
	if not root.is_dir():
		return states
	for dirpath, dirnames, filenames in os.walk(root):
		dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and d not in SKIP_DIRS)
		for filename in sorted(filenames):
			path = Path(dirpath) / filename
			if not predicate(path):
				continue
			try:
				st = path.stat()
			except OSError:
				continue
			states[str(path.resolve())] = (st.st_mtime_ns, st.st_size)
	return states


def diff_states(old: dict[str, FileState], new: dict[str, FileState]) -> list[tuple[str, str]]:
	"""Return (kind, path) pairs, sorted by path.

	New or modified files are reported as CHANGE, vanished files as RENAME
	(a delete is a rename out of the tree from the watcher's point of view).
	"""
	changes: list[tuple[str, str]] = []
	for path, state in new.items():
		if old.get(path) != state:
			changes.append((CHANGE, path))
	for path in old:
		if path not in new:
			changes.append((RENAME, path))
	changes.sort(key=lambda c: c[1])
	return changes


class ToolWatcher:
	"""Poll a directory tree and report tool file changes.

	Runs as a single asyncio task. Each tick stats the tree in a worker
	thread, diffs against the previous tick and awaits the callback once per
	changed path, in path order. A failing callback is logged and the loop
	keeps polling.
	"""

	def __init__(
		self,
		root: Path,
		on_change: ChangeCallback,
		predicate: Callable[[Path], bool],
		interval_s: float = 1.0,
	) -> None:
		self.root = root
		self.interval_s = interval_s
		self._on_change = on_change
		self._predicate = predicate
		self._states: dict[str, FileState] = {}
		self._task: asyncio.Task[None] | None = None
		self._stopping = asyncio.Event()

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()

	async def start(self) -> None:
		if self.running:
			return
		self._states = await asyncio.to_thread(scan_tree, self.root, self._predicate)
		self._stopping.clear()
		self._task = asyncio.create_task(self._poll_loop())
		logger.info("Watching %s for tool changes (every %.2fs)", self.root, self.interval_s)

	async def stop(self) -> None:
		if self._task is None:
			return
		self._stopping.set()
		self._task.cancel()
		try:
			await self._task
		except asyncio.CancelledError:
			pass
		self._task = None

	async def poll_once(self) -> list[tuple[str, str]]:
		"""Run a single scan/diff/notify cycle and return what changed."""
		current = await asyncio.to_thread(scan_tree, self.root, self._predicate)
		changes = diff_states(self._states, current)
		self._states = current
		for kind, path in changes:
			try:
				await self._on_change(kind, path)
			except Exception:
				logger.exception("Reload callback failed for %s (%s)", path, kind)
		return changes

	async def _poll_loop(self) -> None:
		while not self._stopping.is_set():
			try:
				await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_s)
				return
			except asyncio.TimeoutError:
				pass
			await self.poll_once()

"""Per-tool call metrics, timing helpers and logging setup."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass
class ToolMetrics:
	"""Rolling call statistics kept on each registry entry.

	Updated in place by the dispatch engine on every call so readers see
	new values immediately.
	"""

	call_count: int = 0
	error_count: int = 0
	timeout_count: int = 0
	total_execution_time_s: float = 0.0
	avg_execution_time_s: float = 0.0
	last_called: str | None = None

	@property
	def success_rate(self) -> float:
		"""Fraction of calls that completed without error."""
		if self.call_count == 0:
			return 0.0
		return (self.call_count - self.error_count) / self.call_count

	def record(self, duration_s: float, success: bool, timed_out: bool = False) -> None:
		self.call_count += 1
		if not success:
			self.error_count += 1
		if timed_out:
			self.timeout_count += 1
		self.total_execution_time_s += duration_s
		self.avg_execution_time_s = self.total_execution_time_s / self.call_count
		self.last_called = datetime.now(timezone.utc).isoformat()

	def to_dict(self) -> dict[str, object]:
		return {
			"call_count": self.call_count,
			"error_count": self.error_count,
			"timeout_count": self.timeout_count,
			"total_execution_time_s": round(self.total_execution_time_s, 4),
			"avg_execution_time_s": round(self.avg_execution_time_s, 4),
			"success_rate": round(self.success_rate, 3),
			"last_called": self.last_called,
		}


class Timer:
	"""Context manager for timing operations.

	`elapsed` reads the running time inside the block and is frozen on exit.
	"""

	def __init__(self) -> None:
		self._start: float = 0.0
		self._end: float | None = None

	def __enter__(self) -> Timer:
		self._start = time.monotonic()
		self._end = None
		return self

	def __exit__(self, *args: object) -> None:
		self._end = time.monotonic()

	@property
	def elapsed(self) -> float:
		end = self._end if self._end is not None else time.monotonic()
		return end - self._start


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
	"""Configure logging with optional JSON output format.

	Args:
		level: Log level (DEBUG, INFO, WARNING, ERROR).
		json_format: If True, emit structured JSON log lines.
	"""
	root = logging.getLogger("toolhost")
	root.setLevel(getattr(logging, level.upper(), logging.INFO))

	if root.handlers:
		return

	# stdout carries the MCP stdio stream, so logs go to stderr
	handler = logging.StreamHandler()

	if json_format:
		handler.setFormatter(_JsonFormatter())
	else:
		handler.setFormatter(logging.Formatter(
			"%(asctime)s [%(levelname)s] %(name)s: %(message)s",
			datefmt="%Y-%m-%d %H:%M:%S",
		))

	root.addHandler(handler)


class _JsonFormatter(logging.Formatter):
	"""Emit log records as JSON lines."""

	def format(self, record: logging.LogRecord) -> str:
		data = {
			"ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
			"level": record.levelname,
			"logger": record.name,
			"msg": record.getMessage(),
		}
		if record.exc_info and record.exc_info[1]:
			data["exception"] = str(record.exc_info[1])
		return json.dumps(data)

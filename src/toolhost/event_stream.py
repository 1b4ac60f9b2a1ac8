"""JSONL event stream for structured post-run analysis."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

from toolhost.events import Event
from toolhost.tracing import get_current_trace_context


class EventStream:
	"""Append-only JSONL writer for host events.

	Instances are observers: pass one in a component's `listeners` and every
	event it emits becomes one jq-friendly line.
	"""

	def __init__(self, path: Path) -> None:
		self._path = path
		self._file: IO[str] | None = None

	@property
	def path(self) -> Path:
		return self._path

	def open(self) -> None:
		self._path.parent.mkdir(parents=True, exist_ok=True)
		self._file = self._path.open("a", encoding="utf-8")

	def close(self) -> None:
		if self._file is not None:
			self._file.close()
			self._file = None

	def __call__(self, event: Event) -> None:
		payload = event.to_dict()
		event_type = payload.pop("event_type", event.event_type)
		self.emit(event_type, details=payload)

	def emit(
		self,
		event_type: str,
		*,
		details: dict[str, Any] | None = None,
		trace_id: str = "",
		span_id: str = "",
	) -> None:
		if self._file is None:
			return
		# Auto-extract trace context from OTEL if not explicitly provided
		if not trace_id:
			trace_id, span_id = get_current_trace_context()
		record: dict[str, Any] = {
			"timestamp": datetime.now(timezone.utc).isoformat(),
			"event_type": event_type,
			"details": details or {},
			"trace_id": trace_id,
			"span_id": span_id,
		}
		self._file.write(json.dumps(record, separators=(",", ":"), default=str) + "\n")
		self._file.flush()

"""Events passed from the registry, dispatch and gate engines to observers.

Observers are plain callables handed to each component at construction.
There is no global bus: whoever builds a component decides who listens.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar

from toolhost.models import PhaseValidationResult

logger = logging.getLogger(__name__)


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


@dataclass
class Event:
	"""Base for everything observers receive."""

	event_type: ClassVar[str] = "event"

	def to_dict(self) -> dict[str, Any]:
		data = asdict(self)
		data["event_type"] = self.event_type
		return data


# -- Registry --

TOOL_REGISTERED = "tool_registered"
TOOL_UNREGISTERED = "tool_unregistered"
TOOL_LOAD_ERROR = "tool_load_error"
TOOL_ENABLED_CHANGED = "tool_enabled_changed"
TOOLS_RELOADED = "tools_reloaded"


@dataclass
class RegistryEvent(Event):
	"""A change to the set of registered tools.

	`kind` is one of the TOOL_* constants above.
	"""

	event_type: ClassVar[str] = "registry"

	kind: str = ""
	tool_name: str = ""
	source_file: str | None = None
	error: str = ""
	details: dict[str, Any] = field(default_factory=dict)
	timestamp: str = field(default_factory=_now_iso)

	def to_dict(self) -> dict[str, Any]:
		data = super().to_dict()
		data["event_type"] = self.kind or self.event_type
		return data


# -- Dispatch --

OUTCOME_SUCCESS = "success"
OUTCOME_ERROR = "error"
OUTCOME_INVALID_ARGUMENTS = "invalid_arguments"
OUTCOME_TIMEOUT = "timeout"
OUTCOME_DISABLED = "disabled"


@dataclass
class DispatchCompleted(Event):
	event_type: ClassVar[str] = "dispatch_completed"

	tool_name: str = ""
	outcome: str = OUTCOME_SUCCESS
	duration_s: float = 0.0
	error: str = ""
	request_id: str = ""
	timestamp: str = field(default_factory=_now_iso)

	@property
	def success(self) -> bool:
		return self.outcome == OUTCOME_SUCCESS


# -- Gates --


@dataclass
class GateEvaluated(Event):
	"""One completed phase-transition evaluation."""

	event_type: ClassVar[str] = "gate_evaluated"

	instance_id: str = ""
	workflow_type: str = ""
	from_phase: str = ""
	to_phase: str = ""
	policy: str = ""
	result: PhaseValidationResult = field(default_factory=PhaseValidationResult)
	timestamp: str = field(default_factory=_now_iso)

	def to_dict(self) -> dict[str, Any]:
		return {
			"event_type": self.event_type,
			"instance_id": self.instance_id,
			"workflow_type": self.workflow_type,
			"from_phase": self.from_phase,
			"to_phase": self.to_phase,
			"policy": self.policy,
			"passed": self.result.passed,
			"can_proceed": self.result.can_proceed,
			"requires_approval": self.result.requires_approval,
			"auto_fix_applied": self.result.auto_fix_applied,
			"errors": list(self.result.errors),
			"warnings": list(self.result.warnings),
			"gates": {g.gate_id: g.passed for g in self.result.gate_results},
			"timestamp": self.timestamp,
		}


# -- Workflow lifecycle --


@dataclass
class WorkflowStarted(Event):
	event_type: ClassVar[str] = "workflow_started"

	instance_id: str = ""
	workflow_type: str = "default"
	phases: list[str] = field(default_factory=list)
	metadata: dict[str, Any] = field(default_factory=dict)
	timestamp: str = field(default_factory=_now_iso)


@dataclass
class PhaseStarted(Event):
	event_type: ClassVar[str] = "phase_started"

	instance_id: str = ""
	phase: str = ""
	phase_index: int | None = None
	timestamp: str = field(default_factory=_now_iso)


@dataclass
class PhaseCompleted(Event):
	event_type: ClassVar[str] = "phase_completed"

	instance_id: str = ""
	phase: str = ""
	status: str = "completed"  # completed | failed
	issues: list[str] = field(default_factory=list)
	rework: list[str] = field(default_factory=list)
	timestamp: str = field(default_factory=_now_iso)


@dataclass
class WorkflowCompleted(Event):
	event_type: ClassVar[str] = "workflow_completed"

	instance_id: str = ""
	status: str = "completed"  # completed | failed
	timestamp: str = field(default_factory=_now_iso)


@dataclass
class CustomMetric(Event):
	"""A caller-defined measurement attached to a workflow instance."""

	event_type: ClassVar[str] = "custom_metric"

	instance_id: str = ""
	name: str = ""
	value: float = 0.0
	unit: str = ""
	timestamp: str = field(default_factory=_now_iso)


Listener = Callable[[Event], Any]


def notify(listeners: Iterable[Listener], event: Event) -> None:
	"""Deliver an event to every listener.

	A listener that raises is logged and skipped; the remaining listeners
	still receive the event and the emitting operation is unaffected.
	"""
	for listener in listeners:
		try:
			listener(event)
		except Exception:
			logger.exception("Event listener %r failed on %s", listener, event.event_type)

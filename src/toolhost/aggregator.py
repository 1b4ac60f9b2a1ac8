"""Metrics & reporting aggregator.

A pure consumer of events: pass the aggregator as a listener to the dispatch
and gate engines (and feed it workflow lifecycle events) and it keeps
per-instance tracking records plus cross-instance rollups. Nothing else
mutates its state. Reports are computed from the current state and never
change it.

All durations are in seconds and all rates are percentages.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from toolhost.config import MetricsConfig
from toolhost.events import (
	OUTCOME_TIMEOUT,
	CustomMetric,
	DispatchCompleted,
	Event,
	GateEvaluated,
	PhaseCompleted,
	PhaseStarted,
	WorkflowCompleted,
	WorkflowStarted,
)

logger = logging.getLogger(__name__)

GATE_SUCCESS_THRESHOLD = 70.0
WORKFLOW_SUCCESS_THRESHOLD = 80.0
LONG_PHASE_S = 24 * 3600.0
TOOL_ERROR_THRESHOLD = 30.0
TOOL_MIN_CALLS = 5
MAX_BOTTLENECKS = 10

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}
_RANGE_RE = re.compile(r"^(\d+)\s*([smhdw])$")
_RANGE_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _parse_ts(value: str | None) -> datetime | None:
	if not value:
		return None
	ts = datetime.fromisoformat(value)
	if ts.tzinfo is None:
		ts = ts.replace(tzinfo=timezone.utc)
	return ts


def _seconds_between(start: str | None, end: str | None) -> float | None:
	a, b = _parse_ts(start), _parse_ts(end)
	if a is None or b is None:
		return None
	return max(0.0, (b - a).total_seconds())


def parse_time_range(value: str | timedelta | None) -> timedelta | None:
	"""Parse '30d', '12h', '90m', ... into a timedelta. None/'all' = unbounded."""
	if value is None or isinstance(value, timedelta):
		return value
	text = value.strip().lower()
	if text in ("", "all"):
		return None
	match = _RANGE_RE.match(text)
	if not match:
		raise ValueError(f"Invalid time range: {value!r} (expected e.g. '30d', '12h')")
	return timedelta(**{_RANGE_UNITS[match.group(2)]: int(match.group(1))})


def _from_dict(cls: type, data: dict[str, Any]) -> Any:
	names = {f.name for f in fields(cls)}
	return cls(**{k: v for k, v in data.items() if k in names})


# -- Per-instance records --


@dataclass
class GateRecord:
	gate_id: str
	gate_name: str = ""
	passed: bool = True
	duration_s: float = 0.0
	timestamp: str = ""
	errors: list[str] = field(default_factory=list)
	warnings: list[str] = field(default_factory=list)
	auto_fix_applied: bool = False


@dataclass
class PhaseRecord:
	index: int
	name: str
	status: str = "running"  # running | completed | failed
	start_time: str = ""
	end_time: str | None = None
	duration_s: float | None = None
	gates: list[GateRecord] = field(default_factory=list)
	issues: list[str] = field(default_factory=list)
	rework: list[str] = field(default_factory=list)

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> PhaseRecord:
		record = _from_dict(cls, {k: v for k, v in data.items() if k != "gates"})
		record.gates = [_from_dict(GateRecord, g) for g in data.get("gates", [])]
		return record


@dataclass
class QualityMetrics:
	gate_success_rate: float = 0.0
	rework_count: int = 0
	blocker_count: int = 0
	issue_count: int = 0


@dataclass
class CustomMetricRecord:
	name: str
	value: float
	unit: str = ""
	timestamp: str = ""


@dataclass
class WorkflowInstanceMetrics:
	"""Tracking record for one workflow instance."""

	instance_id: str
	workflow_type: str = "default"
	status: str = "running"  # running | completed | failed
	start_time: str = ""
	end_time: str | None = None
	duration_s: float | None = None
	phases: list[PhaseRecord] = field(default_factory=list)
	gates: list[GateRecord] = field(default_factory=list)
	quality: QualityMetrics = field(default_factory=QualityMetrics)
	completion_rate: float = 0.0
	custom_metrics: list[CustomMetricRecord] = field(default_factory=list)
	metadata: dict[str, Any] = field(default_factory=dict)

	def current_phase(self) -> PhaseRecord | None:
		for phase in reversed(self.phases):
			if phase.status == "running":
				return phase
		return None

	def to_dict(self) -> dict[str, Any]:
		return asdict(self)

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> WorkflowInstanceMetrics:
		nested = {"phases", "gates", "quality", "custom_metrics"}
		record = _from_dict(cls, {k: v for k, v in data.items() if k not in nested})
		record.phases = [PhaseRecord.from_dict(p) for p in data.get("phases", [])]
		record.gates = [_from_dict(GateRecord, g) for g in data.get("gates", [])]
		record.quality = _from_dict(QualityMetrics, data.get("quality", {}))
		record.custom_metrics = [_from_dict(CustomMetricRecord, m) for m in data.get("custom_metrics", [])]
		return record


# -- Cross-instance rollups --


@dataclass
class RunStats:
	"""Rollup for a workflow type or a workflow_type:phase pair."""

	started: int = 0
	completed: int = 0
	failed: int = 0
	total_duration_s: float = 0.0
	average_duration_s: float = 0.0
	success_rate: float = 0.0
	average_completion_rate: float = 0.0
	last_updated: str = ""

	@property
	def finished(self) -> int:
		return self.completed + self.failed

	def start(self, when: str) -> None:
		self.started += 1
		self._refresh(when)

	def finish(self, success: bool, duration_s: float | None, when: str, completion_rate: float | None = None) -> None:
		if success:
			self.completed += 1
		else:
			self.failed += 1
		if duration_s is not None:
			self.total_duration_s += duration_s
			self.average_duration_s = self.total_duration_s / self.finished
		if completion_rate is not None:
			prior = self.average_completion_rate * (self.finished - 1)
			self.average_completion_rate = (prior + completion_rate) / self.finished
		self._refresh(when)

	def _refresh(self, when: str) -> None:
		self.success_rate = self.completed / self.started * 100 if self.started else 0.0
		self.last_updated = when


@dataclass
class GateStats:
	gate_name: str = ""
	executions: int = 0
	passed: int = 0
	failed: int = 0
	total_duration_s: float = 0.0
	average_duration_s: float = 0.0
	success_rate: float = 0.0
	last_updated: str = ""

	def record(self, passed: bool, duration_s: float, when: str) -> None:
		self.executions += 1
		if passed:
			self.passed += 1
		else:
			self.failed += 1
		self.total_duration_s += duration_s
		self.average_duration_s = self.total_duration_s / self.executions
		self.success_rate = self.passed / self.executions * 100
		self.last_updated = when


@dataclass
class ToolStats:
	calls: int = 0
	errors: int = 0
	timeouts: int = 0
	total_duration_s: float = 0.0
	average_duration_s: float = 0.0
	last_updated: str = ""

	@property
	def error_rate(self) -> float:
		return self.errors / self.calls * 100 if self.calls else 0.0

	def record(self, event: DispatchCompleted) -> None:
		self.calls += 1
		if not event.success:
			self.errors += 1
		if event.outcome == OUTCOME_TIMEOUT:
			self.timeouts += 1
		self.total_duration_s += event.duration_s
		self.average_duration_s = self.total_duration_s / self.calls
		self.last_updated = event.timestamp


class MetricsAggregator:
	"""Event-fed tracking records, rollups, reports and persistence."""

	def __init__(self, config: MetricsConfig | None = None) -> None:
		self.config = config or MetricsConfig()
		self.storage_dir = self.config.resolved_storage_dir
		self.instances: dict[str, WorkflowInstanceMetrics] = {}
		self.workflow_stats: dict[str, RunStats] = {}
		self.phase_stats: dict[str, RunStats] = {}
		self.gate_stats: dict[str, GateStats] = {}
		self.tool_stats: dict[str, ToolStats] = {}
		self._reporting_task: asyncio.Task[None] | None = None
		self._handlers: dict[type, Callable[[Any], None]] = {
			WorkflowStarted: self._on_workflow_started,
			PhaseStarted: self._on_phase_started,
			PhaseCompleted: self._on_phase_completed,
			WorkflowCompleted: self._on_workflow_completed,
			CustomMetric: self._on_custom_metric,
			GateEvaluated: self._on_gate_evaluated,
			DispatchCompleted: self._on_dispatch_completed,
		}

	# -- event intake --

	def __call__(self, event: Event) -> None:
		if not self.config.enabled:
			return
		handler = self._handlers.get(type(event))
		if handler is not None:
			handler(event)

	def _on_workflow_started(self, event: WorkflowStarted) -> None:
		metadata = {"planned_phases": list(event.phases), **event.metadata}
		self.instances[event.instance_id] = WorkflowInstanceMetrics(
			instance_id=event.instance_id,
			workflow_type=event.workflow_type,
			start_time=event.timestamp,
			metadata=metadata,
		)
		self.workflow_stats.setdefault(event.workflow_type, RunStats()).start(event.timestamp)
		self._persist(event.instance_id)

	def _tracked(self, instance_id: str, event: Event) -> WorkflowInstanceMetrics | None:
		tracking = self.instances.get(instance_id)
		if tracking is None:
			logger.debug("Ignoring %s for untracked instance %s", event.event_type, instance_id)
		return tracking

	def _on_phase_started(self, event: PhaseStarted) -> None:
		tracking = self._tracked(event.instance_id, event)
		if tracking is None:
			return
		index = event.phase_index if event.phase_index is not None else len(tracking.phases)
		record = PhaseRecord(index=index, name=event.phase, start_time=event.timestamp)
		if index < len(tracking.phases):
			tracking.phases[index] = record
		else:
			tracking.phases.append(record)
		key = f"{tracking.workflow_type}:{event.phase}"
		self.phase_stats.setdefault(key, RunStats()).start(event.timestamp)
		self._persist(event.instance_id)

	def _on_phase_completed(self, event: PhaseCompleted) -> None:
		tracking = self._tracked(event.instance_id, event)
		if tracking is None:
			return
		record = next(
			(p for p in reversed(tracking.phases) if p.name == event.phase and p.status == "running"),
			None,
		)
		if record is None:
			logger.debug("No running phase %s for %s", event.phase, event.instance_id)
			return
		success = event.status == "completed"
		record.status = "completed" if success else "failed"
		record.end_time = event.timestamp
		record.duration_s = _seconds_between(record.start_time, event.timestamp)
		record.issues.extend(event.issues)
		record.rework.extend(event.rework)
		tracking.quality.issue_count += len(event.issues)
		tracking.quality.rework_count += len(event.rework)
		key = f"{tracking.workflow_type}:{event.phase}"
		self.phase_stats.setdefault(key, RunStats()).finish(success, record.duration_s, event.timestamp)
		self._persist(event.instance_id)

	def _on_workflow_completed(self, event: WorkflowCompleted) -> None:
		tracking = self._tracked(event.instance_id, event)
		if tracking is None:
			return
		success = event.status == "completed"
		tracking.status = "completed" if success else "failed"
		tracking.end_time = event.timestamp
		tracking.duration_s = _seconds_between(tracking.start_time, event.timestamp)
		done = sum(1 for p in tracking.phases if p.status == "completed")
		tracking.completion_rate = done / len(tracking.phases) * 100 if tracking.phases else 0.0
		self.workflow_stats.setdefault(tracking.workflow_type, RunStats()).finish(
			success, tracking.duration_s, event.timestamp, tracking.completion_rate,
		)
		self._persist(event.instance_id)

	def _on_custom_metric(self, event: CustomMetric) -> None:
		tracking = self._tracked(event.instance_id, event)
		if tracking is None:
			return
		tracking.custom_metrics.append(CustomMetricRecord(
			name=event.name, value=event.value, unit=event.unit, timestamp=event.timestamp,
		))
		self._persist(event.instance_id)

	def _on_gate_evaluated(self, event: GateEvaluated) -> None:
		tracking = self.instances.get(event.instance_id)
		for gate_result in event.result.gate_results:
			stats = self.gate_stats.setdefault(gate_result.gate_id, GateStats(gate_name=gate_result.gate_name))
			stats.record(gate_result.passed, gate_result.duration_s, event.timestamp)
			if tracking is None:
				continue
			record = GateRecord(
				gate_id=gate_result.gate_id,
				gate_name=gate_result.gate_name,
				passed=gate_result.passed,
				duration_s=gate_result.duration_s,
				timestamp=event.timestamp,
				errors=list(gate_result.errors),
				warnings=list(gate_result.warnings),
				auto_fix_applied=gate_result.auto_fix_applied,
			)
			tracking.gates.append(record)
			phase = tracking.current_phase()
			if phase is not None:
				phase.gates.append(record)
			if not gate_result.passed:
				tracking.quality.blocker_count += 1
		if tracking is not None and tracking.gates:
			passed = sum(1 for g in tracking.gates if g.passed)
			tracking.quality.gate_success_rate = passed / len(tracking.gates) * 100
			self._persist(event.instance_id)
		else:
			self.save_aggregated()

	def _on_dispatch_completed(self, event: DispatchCompleted) -> None:
		self.tool_stats.setdefault(event.tool_name, ToolStats()).record(event)

	# -- reads --

	def get_instance(self, instance_id: str) -> WorkflowInstanceMetrics | None:
		return self.instances.get(instance_id)

	def realtime(self) -> dict[str, Any]:
		running = [i for i in self.instances.values() if i.status == "running"]
		current: list[dict[str, Any]] = []
		for inst in running:
			done = sum(1 for p in inst.phases if p.status == "completed")
			current.append({
				"instance_id": inst.instance_id,
				"workflow_type": inst.workflow_type,
				"current_phase": inst.phases[-1].name if inst.phases else "starting",
				"progress": round(done / len(inst.phases) * 100) if inst.phases else 0,
			})
		return {
			"active_workflows": len(running),
			"workflow_types": sorted({i.workflow_type for i in running}),
			"current_phases": current,
			"instance_count": len(self.instances),
		}

	def _matching_instances(
		self,
		window: timedelta | None,
		workflow_types: list[str] | None,
		now: datetime,
	) -> list[WorkflowInstanceMetrics]:
		selected: list[WorkflowInstanceMetrics] = []
		for inst in self.instances.values():
			if workflow_types and inst.workflow_type not in workflow_types:
				continue
			if window is not None:
				started = _parse_ts(inst.start_time)
				if started is None or started < now - window:
					continue
			selected.append(inst)
		return sorted(selected, key=lambda i: (i.start_time, i.instance_id))

	def generate_report(
		self,
		time_range: str | timedelta | None = None,
		workflow_types: list[str] | None = None,
		now: datetime | None = None,
	) -> dict[str, Any]:
		"""Point-in-time report. Reads state only.

		The time range limits which instances feed the summary; rollup
		sections reflect everything recorded, filtered by workflow type.
		"""
		now = now or _now()
		window = parse_time_range(time_range)
		types = list(workflow_types or [])

		def wanted(workflow_type: str) -> bool:
			return not types or workflow_type in types

		instances = self._matching_instances(window, types, now)

		workflows = [
			{"workflow_type": wt, **asdict(s), "efficiency": _efficiency(s.average_completion_rate, s.average_duration_s)}
			for wt, s in self.workflow_stats.items() if wanted(wt)
		]
		workflows.sort(key=lambda w: (-w["started"], w["workflow_type"]))

		phases = []
		for key, s in self.phase_stats.items():
			wt, _, phase = key.partition(":")
			if wanted(wt):
				phases.append({
					"workflow_type": wt,
					"phase": phase,
					**asdict(s),
					"efficiency": _efficiency(s.success_rate, s.average_duration_s),
				})
		phases.sort(key=lambda p: (-p["started"], p["workflow_type"], p["phase"]))

		gates = [
			{
				"gate_id": gid,
				**asdict(s),
				"reliability": (s.executions - s.failed) / s.executions * 100 if s.executions else 0.0,
			}
			for gid, s in self.gate_stats.items()
		]
		gates.sort(key=lambda g: (-g["executions"], g["gate_id"]))

		tools = [
			{"tool_name": name, **asdict(s), "error_rate": s.error_rate}
			for name, s in self.tool_stats.items()
		]
		tools.sort(key=lambda t: (-t["calls"], t["tool_name"]))

		bottlenecks = sorted(phases, key=lambda p: (-p["average_duration_s"], p["workflow_type"], p["phase"]))
		performance = {
			"workflow_performance": [
				{
					"workflow_type": w["workflow_type"],
					"average_duration_s": w["average_duration_s"],
					"success_rate": w["success_rate"],
					"throughput": w["completed"] / max(1, w["started"]) * 100,
					"performance_score": _performance_score(self.workflow_stats[w["workflow_type"]]),
				}
				for w in workflows
			],
			"bottlenecks": [
				{
					"workflow_type": p["workflow_type"],
					"phase": p["phase"],
					"average_duration_s": p["average_duration_s"],
					"success_rate": p["success_rate"],
					"impact": p["started"],
				}
				for p in bottlenecks[:MAX_BOTTLENECKS]
			],
		}

		return {
			"metadata": {
				"generated_at": now.isoformat(),
				"time_range": str(time_range) if time_range is not None else "all",
				"workflow_types": types or "all",
			},
			"summary": _summarize(instances),
			"workflows": workflows,
			"phases": phases,
			"gates": gates,
			"tools": tools,
			"performance": performance,
			"recommendations": self.recommendations(types),
		}

	def recommendations(self, workflow_types: list[str] | None = None) -> list[dict[str, Any]]:
		types = list(workflow_types or [])
		recs: list[dict[str, Any]] = []

		for gid, s in sorted(self.gate_stats.items()):
			if s.executions and s.success_rate < GATE_SUCCESS_THRESHOLD:
				recs.append({
					"type": "quality",
					"priority": "high",
					"gate": gid,
					"issue": "Low gate success rate",
					"recommendation": f"Review validation rules for {s.gate_name or gid} gate - success rate is {s.success_rate:.1f}%",
					"impact": "workflow_delays",
				})

		for key, s in sorted(self.phase_stats.items()):
			wt, _, phase = key.partition(":")
			if types and wt not in types:
				continue
			if s.average_duration_s > LONG_PHASE_S:
				recs.append({
					"type": "performance",
					"priority": "medium",
					"workflow": wt,
					"phase": phase,
					"issue": "Long phase duration",
					"recommendation": f"Consider breaking down {phase} phase in {wt} workflow",
					"impact": "workflow_efficiency",
				})

		for wt, s in sorted(self.workflow_stats.items()):
			if types and wt not in types:
				continue
			if s.finished and s.success_rate < WORKFLOW_SUCCESS_THRESHOLD:
				recs.append({
					"type": "process",
					"priority": "high",
					"workflow": wt,
					"issue": "Low workflow success rate",
					"recommendation": f"Review {wt} workflow process - success rate is {s.success_rate:.1f}%",
					"impact": "project_delivery",
				})

		for name, s in sorted(self.tool_stats.items()):
			if s.calls >= TOOL_MIN_CALLS and s.error_rate > TOOL_ERROR_THRESHOLD:
				recs.append({
					"type": "reliability",
					"priority": "medium",
					"tool": name,
					"issue": "High tool error rate",
					"recommendation": f"Review tool {name} - error rate is {s.error_rate:.1f}% over {s.calls} calls",
					"impact": "tool_availability",
				})

		recs.sort(key=lambda r: _PRIORITY_ORDER[r["priority"]])
		return recs

	# -- persistence --

	def _write_json(self, path: Path, data: Any) -> None:
		path.parent.mkdir(parents=True, exist_ok=True)
		tmp = path.with_suffix(path.suffix + ".tmp")
		tmp.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
		os.replace(tmp, path)

	def _persist(self, instance_id: str) -> None:
		tracking = self.instances.get(instance_id)
		if tracking is None:
			return
		try:
			self._write_json(self.storage_dir / "instances" / f"{instance_id}.json", tracking.to_dict())
		except OSError as exc:
			logger.error("Failed to persist metrics for %s: %s", instance_id, exc)
		self.save_aggregated()

	def aggregated_dict(self) -> dict[str, Any]:
		return {
			"workflow_stats": {k: asdict(v) for k, v in self.workflow_stats.items()},
			"phase_stats": {k: asdict(v) for k, v in self.phase_stats.items()},
			"gate_stats": {k: asdict(v) for k, v in self.gate_stats.items()},
			"tool_stats": {k: asdict(v) for k, v in self.tool_stats.items()},
		}

	def save_aggregated(self) -> None:
		try:
			self._write_json(self.storage_dir / "metrics" / "aggregated-metrics.json", self.aggregated_dict())
		except OSError as exc:
			logger.error("Failed to save aggregated metrics: %s", exc)

	def save_report(self, report: dict[str, Any], report_type: str = "comprehensive") -> Path:
		"""Write a timestamped copy and a `-latest` copy under reports/."""
		stamp = re.sub(r"[:.+]", "-", report["metadata"]["generated_at"])
		reports_dir = self.storage_dir / "reports"
		path = reports_dir / f"{report_type}-report-{stamp}.json"
		self._write_json(path, report)
		self._write_json(reports_dir / f"{report_type}-latest.json", report)
		return path

	def load(self) -> int:
		"""Restore instance records and rollups from storage. Returns instances loaded."""
		metrics_file = self.storage_dir / "metrics" / "aggregated-metrics.json"
		if metrics_file.exists():
			try:
				data = json.loads(metrics_file.read_text(encoding="utf-8"))
				self.workflow_stats = {k: _from_dict(RunStats, v) for k, v in data.get("workflow_stats", {}).items()}
				self.phase_stats = {k: _from_dict(RunStats, v) for k, v in data.get("phase_stats", {}).items()}
				self.gate_stats = {k: _from_dict(GateStats, v) for k, v in data.get("gate_stats", {}).items()}
				self.tool_stats = {k: _from_dict(ToolStats, v) for k, v in data.get("tool_stats", {}).items()}
			except (OSError, ValueError, TypeError, AttributeError) as exc:
				logger.warning("Could not load aggregated metrics from %s: %s", metrics_file, exc)

		loaded = 0
		instances_dir = self.storage_dir / "instances"
		if instances_dir.is_dir():
			for path in sorted(instances_dir.glob("*.json")):
				try:
					record = WorkflowInstanceMetrics.from_dict(json.loads(path.read_text(encoding="utf-8")))
				except (OSError, ValueError, TypeError, AttributeError) as exc:
					logger.warning("Skipping unreadable instance metrics %s: %s", path, exc)
					continue
				self.instances[record.instance_id] = record
				loaded += 1
		logger.info("Loaded %d tracked instances from %s", loaded, self.storage_dir)
		return loaded

	# -- periodic reporting --

	async def start(self) -> None:
		if not (self.config.enabled and self.config.reporting_enabled):
			return
		if self._reporting_task is None or self._reporting_task.done():
			self._reporting_task = asyncio.create_task(self._reporting_loop())

	async def _reporting_loop(self) -> None:
		while True:
			await asyncio.sleep(self.config.reporting_interval_s)
			try:
				self.save_report(self.generate_report(), "periodic")
				self.save_aggregated()
			except Exception:
				logger.exception("Periodic report failed")

	async def stop(self) -> None:
		if self._reporting_task is not None:
			self._reporting_task.cancel()
			try:
				await self._reporting_task
			except asyncio.CancelledError:
				pass
			self._reporting_task = None
		if self.config.enabled:
			for instance_id in list(self.instances):
				self._persist(instance_id)
			self.save_aggregated()


def _efficiency(rate: float, average_duration_s: float) -> float:
	"""Rate achieved per hour of average duration."""
	if average_duration_s <= 0:
		return 0.0
	return rate / (average_duration_s / 3600)


def _performance_score(stats: RunStats) -> float:
	speed = max(0.0, 100 - stats.average_duration_s / 3600) if stats.average_duration_s > 0 else 0.0
	reliability = stats.completed / stats.started * 100 if stats.started else 0.0
	return stats.success_rate * 0.4 + speed * 0.3 + reliability * 0.3


def _summarize(instances: list[WorkflowInstanceMetrics]) -> dict[str, Any]:
	total = len(instances)
	completed = sum(1 for i in instances if i.status == "completed")
	summary: dict[str, Any] = {
		"total_workflows": total,
		"completed_workflows": completed,
		"running_workflows": sum(1 for i in instances if i.status == "running"),
		"failed_workflows": sum(1 for i in instances if i.status == "failed"),
		"average_duration_s": 0.0,
		"success_rate": 0.0,
		"most_common_workflow_type": None,
		"average_gate_success_rate": 0.0,
	}
	if not total:
		return summary
	durations = [i.duration_s for i in instances if i.duration_s is not None]
	if durations:
		summary["average_duration_s"] = sum(durations) / len(durations)
	summary["success_rate"] = completed / total * 100
	counts: dict[str, int] = {}
	for inst in instances:
		counts[inst.workflow_type] = counts.get(inst.workflow_type, 0) + 1
	summary["most_common_workflow_type"] = min(counts, key=lambda wt: (-counts[wt], wt))
	rates = [i.quality.gate_success_rate for i in instances if i.gates]
	if rates:
		summary["average_gate_success_rate"] = sum(rates) / len(rates)
	return summary

"""Data models for the tool host: tool descriptors, execution results, gates."""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from toolhost.metrics import ToolMetrics

TOOL_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")

Priority = Literal["high", "medium", "low"]

ToolHandler = Callable[[dict[str, Any], dict[str, Any]], Awaitable[Any]]


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
	return uuid4().hex[:12]


@dataclass
class ArgumentValidation:
	"""Outcome of a tool's own argument check."""

	is_valid: bool = True
	errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ToolDescriptor:
	"""The contract every tool satisfies.

	Immutable once built. The registry tracks the mutable `enabled` flag and
	call metrics on the owning RegistryEntry instead.
	"""

	name: str
	description: str
	execute: ToolHandler
	category: str = "general"
	version: str = "1.0.0"
	input_schema: dict[str, Any] | None = None
	enabled: bool = True
	validate: Callable[[dict[str, Any]], ArgumentValidation] | None = None

	def public_fields(self) -> dict[str, Any]:
		return {
			"name": self.name,
			"description": self.description,
			"category": self.category,
			"version": self.version,
			"input_schema": self.input_schema,
			"enabled": self.enabled,
		}

	@classmethod
	def from_object(cls, obj: Any) -> ToolDescriptor:
		"""Build a descriptor from a duck-typed tool object or mapping.

		Missing optional fields fall back to defaults. Values are copied as-is
		so the registry's own validation reports any type problems.
		"""
		if isinstance(obj, ToolDescriptor):
			return obj
		if isinstance(obj, Mapping):
			get = obj.get
		else:
			def get(key: str, default: Any = None) -> Any:
				return getattr(obj, key, default)
		schema = get("input_schema")
		if schema is None:
			schema = get("inputSchema")
		return cls(
			name=get("name"),
			description=get("description"),
			execute=get("execute"),
			category=get("category") or "general",
			version=get("version") or "1.0.0",
			input_schema=schema,
			enabled=get("enabled", True) is not False,
			validate=get("validate"),
		)


def looks_like_tool(obj: Any) -> bool:
	"""Structural check for the tool contract: name, description, execute."""
	if isinstance(obj, ToolDescriptor):
		return True
	if isinstance(obj, type):
		return False
	if isinstance(obj, Mapping):
		name, description, execute = obj.get("name"), obj.get("description"), obj.get("execute")
	else:
		name = getattr(obj, "name", None)
		description = getattr(obj, "description", None)
		execute = getattr(obj, "execute", None)
	return isinstance(name, str) and isinstance(description, str) and callable(execute)


@dataclass
class RegistryEntry:
	"""A registered tool plus bookkeeping."""

	descriptor: ToolDescriptor
	registered_at: str = field(default_factory=_now_iso)
	source_file: str | None = None
	enabled: bool = True
	metrics: ToolMetrics = field(default_factory=ToolMetrics)

	@property
	def name(self) -> str:
		return self.descriptor.name

	@property
	def category(self) -> str:
		return self.descriptor.category

	def to_dict(self) -> dict[str, Any]:
		data = self.descriptor.public_fields()
		data["enabled"] = self.enabled
		data["registered_at"] = self.registered_at
		data["source_file"] = self.source_file
		data["metrics"] = self.metrics.to_dict()
		return data


@dataclass
class ContentBlock:
	"""One typed piece of tool output.

	Text blocks carry `text`; image and audio blocks carry base64 `data`
	and a `mime_type`.
	"""

	type: str = "text"
	text: str = ""
	data: str = ""
	mime_type: str = ""

	def to_dict(self) -> dict[str, str]:
		if self.type == "text":
			return {"type": self.type, "text": self.text}
		return {"type": self.type, "data": self.data, "mimeType": self.mime_type}

	@classmethod
	def from_value(cls, raw: Any) -> ContentBlock:
		if isinstance(raw, ContentBlock):
			return raw
		if not isinstance(raw, Mapping):
			return cls(text=str(raw))
		text = raw.get("text", "")
		if not isinstance(text, str):
			text = json.dumps(text, default=str)
		return cls(
			type=str(raw.get("type", "text")),
			text=text,
			data=str(raw.get("data", "")),
			mime_type=str(raw.get("mimeType", raw.get("mime_type", ""))),
		)


@dataclass
class ExecutionRequest:
	"""A single call into the dispatch engine."""

	tool_name: str
	args: dict[str, Any] = field(default_factory=dict)
	context: dict[str, Any] = field(default_factory=dict)
	deadline_s: float | None = None
	request_id: str = field(default_factory=_new_id)


@dataclass
class ExecutionResult:
	"""Tool output as returned to callers. Always well-formed, even on failure."""

	content: list[ContentBlock] = field(default_factory=list)
	is_error: bool = False
	metadata: dict[str, Any] = field(default_factory=dict)

	@classmethod
	def text(cls, text: str, **metadata: Any) -> ExecutionResult:
		return cls(content=[ContentBlock(text=text)], metadata=dict(metadata))

	@classmethod
	def error(cls, message: str, **metadata: Any) -> ExecutionResult:
		return cls(content=[ContentBlock(text=message)], is_error=True, metadata=dict(metadata))

	@property
	def text_content(self) -> str:
		return "\n".join(block.text for block in self.content if block.type == "text")

	def to_dict(self) -> dict[str, Any]:
		return {
			"content": [block.to_dict() for block in self.content],
			"is_error": self.is_error,
			"metadata": self.metadata,
		}

	@classmethod
	def from_value(cls, value: Any) -> ExecutionResult:
		"""Normalize whatever a handler returned into an ExecutionResult."""
		if isinstance(value, ExecutionResult):
			return value
		if isinstance(value, str):
			return cls.text(value)
		if isinstance(value, Mapping) and ("content" in value or "contentBlocks" in value):
			raw_blocks = value.get("contentBlocks", value.get("content")) or []
			blocks = [ContentBlock.from_value(raw) for raw in raw_blocks]
			is_error = bool(value.get("is_error", value.get("isError", False)))
			return cls(content=blocks, is_error=is_error, metadata=dict(value.get("metadata") or {}))
		return cls.text(json.dumps(value, indent=2, default=str))


# -- Workflow / gate models --


@dataclass
class Artifact:
	"""A document or output produced during a workflow."""

	name: str
	type: str = "document"
	content: str = ""
	created_at: str = field(default_factory=_now_iso)
	auto_generated: bool = False


@dataclass
class TestResults:
	"""Latest test run summary attached to a workflow instance."""

	__test__ = False

	total: int = 0
	passing: int = 0
	failing: int = 0
	coverage: float | None = None  # percent

	@property
	def all_passing(self) -> bool:
		return self.failing == 0


@dataclass
class WorkflowInstance:
	"""The subject a phase transition is validated against."""

	instance_id: str = field(default_factory=_new_id)
	workflow_type: str = "default"
	project_root: str = ""
	artifacts: list[Artifact] = field(default_factory=list)
	approvals: list[str] = field(default_factory=list)
	test_results: TestResults | None = None
	test_suites: dict[str, TestResults] = field(default_factory=dict)  # unit / integration / e2e

	def get_artifacts(self) -> list[Artifact]:
		return list(self.artifacts)

	def add_artifact(self, artifact: Artifact) -> None:
		self.artifacts.append(artifact)

	def find_artifact(self, name: str) -> Artifact | None:
		for artifact in self.artifacts:
			if artifact.name == name:
				return artifact
		return None


@dataclass
class Gate:
	"""A named bundle of rules checked before leaving a phase."""

	id: str
	name: str
	phase: str
	description: str = ""
	priority: Priority = "medium"
	rules: list[str] = field(default_factory=list)
	auto_fix: bool = False
	blocks_progression: bool = False
	custom: bool = False

	@property
	def is_blocking(self) -> bool:
		return self.priority == "high" and self.blocks_progression


@dataclass(frozen=True)
class Policy:
	"""How strictly gate failures block progression."""

	name: str
	description: str = ""
	allow_overrides: bool = True
	require_approval: bool = False
	block_on_failure: bool = False


@dataclass
class FixSuggestion:
	"""A remediation a rule proposes for auto-fix."""

	type: str  # create_artifact | update_content
	name: str = ""
	pattern: str = ""
	template: str = ""
	target: str = ""
	content: str = ""

	def to_dict(self) -> dict[str, str]:
		return {
			"type": self.type,
			"name": self.name,
			"pattern": self.pattern,
			"template": self.template,
			"target": self.target,
			"content": self.content,
		}


@dataclass
class RuleResult:
	rule_id: str
	passed: bool = True
	errors: list[str] = field(default_factory=list)
	warnings: list[str] = field(default_factory=list)
	fix_suggestions: list[FixSuggestion] = field(default_factory=list)

	def fail(self, message: str) -> None:
		self.passed = False
		self.errors.append(message)

	def to_dict(self) -> dict[str, Any]:
		return {
			"rule_id": self.rule_id,
			"passed": self.passed,
			"errors": list(self.errors),
			"warnings": list(self.warnings),
			"fix_suggestions": [s.to_dict() for s in self.fix_suggestions],
		}


@dataclass
class GateExecutionResult:
	"""Outcome of running every rule of one gate."""

	gate_id: str
	gate_name: str
	passed: bool = True
	errors: list[str] = field(default_factory=list)
	warnings: list[str] = field(default_factory=list)
	rule_results: list[RuleResult] = field(default_factory=list)
	fix_suggestions: list[FixSuggestion] = field(default_factory=list)
	executed_at: str = field(default_factory=_now_iso)
	duration_s: float = 0.0
	auto_fix_applied: bool = False
	retried: bool = False

	def to_dict(self) -> dict[str, Any]:
		return {
			"gate_id": self.gate_id,
			"gate_name": self.gate_name,
			"passed": self.passed,
			"errors": list(self.errors),
			"warnings": list(self.warnings),
			"rule_results": [r.to_dict() for r in self.rule_results],
			"fix_suggestions": [s.to_dict() for s in self.fix_suggestions],
			"executed_at": self.executed_at,
			"duration_s": round(self.duration_s, 4),
			"auto_fix_applied": self.auto_fix_applied,
			"retried": self.retried,
		}


@dataclass
class PhaseValidationResult:
	"""Everything a workflow operator needs to decide on a phase transition."""

	instance_id: str = ""
	from_phase: str = ""
	to_phase: str = ""
	policy: str = ""
	passed: bool = True
	can_proceed: bool = True
	requires_approval: bool = False
	auto_fix_applied: bool = False
	errors: list[str] = field(default_factory=list)
	warnings: list[str] = field(default_factory=list)
	gate_results: list[GateExecutionResult] = field(default_factory=list)

	def to_dict(self) -> dict[str, Any]:
		return {
			"instance_id": self.instance_id,
			"from_phase": self.from_phase,
			"to_phase": self.to_phase,
			"policy": self.policy,
			"passed": self.passed,
			"can_proceed": self.can_proceed,
			"requires_approval": self.requires_approval,
			"auto_fix_applied": self.auto_fix_applied,
			"errors": list(self.errors),
			"warnings": list(self.warnings),
			"gate_results": [g.to_dict() for g in self.gate_results],
		}

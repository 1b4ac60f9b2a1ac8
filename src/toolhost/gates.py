"""Validation gate engine -- policy-driven checks on workflow phase transitions.

Gates relevant to the phase being left are run one after another, and the
rules inside each gate run in declaration order, so error and warning
ordering is reproducible. A gate passes when all of its rules pass. Failing
high-priority gates that block progression make the transition fail;
everything else is advisory and surfaces as warnings.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from toolhost.config import GatesConfig
from toolhost.errors import AutoFixFailure, GateRuleError, ValidationError
from toolhost.events import GateEvaluated, Listener, notify
from toolhost.metrics import Timer
from toolhost.models import (
	Artifact,
	FixSuggestion,
	Gate,
	GateExecutionResult,
	PhaseValidationResult,
	Policy,
	RuleResult,
	WorkflowInstance,
)
from toolhost.rules import BUILTIN_RULES, CustomRule, RuleFunc
from toolhost.tracing import HostTracer

logger = logging.getLogger(__name__)

DEFAULT_GATES: tuple[Gate, ...] = (
	Gate(
		id="requirements_documented",
		name="Requirements Documentation Gate",
		description="Validates that requirements are properly documented",
		phase="analysis",
		priority="high",
		rules=["requirements_file_exists", "requirements_are_clear", "acceptance_criteria_defined"],
		blocks_progression=True,
	),
	Gate(
		id="stakeholder_signoff",
		name="Stakeholder Sign-off Gate",
		description="Validates stakeholder approval",
		phase="analysis",
		priority="high",
		rules=["stakeholder_approval_received", "requirements_reviewed"],
		blocks_progression=True,
	),
	Gate(
		id="architecture_approved",
		name="Architecture Approval Gate",
		description="Validates architecture documentation and decisions",
		phase="architecture",
		priority="high",
		rules=[
			"architecture_document_exists",
			"technical_decisions_documented",
			"security_considerations_addressed",
			"scalability_addressed",
		],
		blocks_progression=True,
	),
	Gate(
		id="technology_stack_validated",
		name="Technology Stack Validation Gate",
		description="Validates technology choices",
		phase="architecture",
		priority="medium",
		rules=["technology_choices_justified", "dependencies_compatible", "licensing_compliant"],
	),
	Gate(
		id="code_quality_gate",
		name="Code Quality Gate",
		description="Validates code quality standards",
		phase="implementation",
		priority="high",
		rules=["code_style_compliant", "test_coverage_adequate", "no_critical_issues", "documentation_complete"],
		auto_fix=True,
		blocks_progression=True,
	),
	Gate(
		id="security_gate",
		name="Security Validation Gate",
		description="Validates security requirements",
		phase="implementation",
		priority="high",
		rules=[
			"no_security_vulnerabilities",
			"authentication_implemented",
			"authorization_implemented",
			"data_encryption_implemented",
		],
		blocks_progression=True,
	),
	Gate(
		id="test_completion_gate",
		name="Test Completion Gate",
		description="Validates testing completeness",
		phase="testing",
		priority="high",
		rules=["unit_tests_passing", "integration_tests_passing", "e2e_tests_passing", "test_coverage_meets_threshold"],
		blocks_progression=True,
	),
	Gate(
		id="performance_gate",
		name="Performance Validation Gate",
		description="Validates performance requirements",
		phase="testing",
		priority="medium",
		rules=["response_time_acceptable", "resource_usage_acceptable", "scalability_tested"],
	),
	Gate(
		id="deployment_readiness_gate",
		name="Deployment Readiness Gate",
		description="Validates deployment readiness",
		phase="deployment",
		priority="high",
		rules=["all_tests_passing", "deployment_scripts_ready", "monitoring_configured", "rollback_plan_ready"],
		blocks_progression=True,
	),
)

# gate phase category -> substrings of phase names that select it
PHASE_PATTERNS: dict[str, tuple[str, ...]] = {
	"analysis": ("analysis", "planning", "requirements"),
	"architecture": ("architecture", "design"),
	"implementation": ("implementation", "development", "coding"),
	"testing": ("testing", "qa", "validation"),
	"deployment": ("deployment", "release", "production"),
}

BUILTIN_POLICIES: dict[str, Policy] = {
	"strict": Policy(
		name="strict",
		description="All gates must pass",
		allow_overrides=False,
		require_approval=True,
		block_on_failure=True,
	),
	"flexible": Policy(
		name="flexible",
		description="High priority gates must pass, medium can be overridden",
	),
	"development": Policy(
		name="development",
		description="Warnings only, allows progression",
	),
}


class GateConfigEntry(BaseModel):
	"""One gate in the JSON gate config file (camelCase or snake_case keys)."""

	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

	name: str
	phase: str
	description: str = ""
	priority: Literal["high", "medium", "low"] = "medium"
	rules: list[str] = Field(default_factory=list)
	auto_fix: bool = False
	blocks_progression: bool = False

	def to_gate(self, gate_id: str) -> Gate:
		return Gate(
			id=gate_id,
			name=self.name,
			phase=self.phase,
			description=self.description,
			priority=self.priority,
			rules=list(self.rules),
			auto_fix=self.auto_fix,
			blocks_progression=self.blocks_progression,
			custom=True,
		)


def load_gates(path: Path | None = None) -> list[Gate]:
	"""Built-in gates merged with the optional JSON gate config.

	A config entry with a built-in id replaces that gate in place; new ids
	are appended. A missing file is not an error. Entries that fail
	validation are logged and skipped.
	"""
	gates: dict[str, Gate] = {g.id: replace(g, rules=list(g.rules)) for g in DEFAULT_GATES}
	if path is None or not path.exists():
		return list(gates.values())

	try:
		data = json.loads(path.read_text(encoding="utf-8"))
	except (OSError, json.JSONDecodeError) as exc:
		logger.warning("Ignoring unreadable gate config %s: %s", path, exc)
		return list(gates.values())
	if not isinstance(data, dict):
		logger.warning("Ignoring gate config %s: top level must be an object", path)
		return list(gates.values())

	loaded = 0
	for gate_id, raw in data.items():
		try:
			entry = GateConfigEntry.model_validate(raw)
		except pydantic.ValidationError as exc:
			logger.warning("Skipping invalid gate %s in %s: %s", gate_id, path, exc)
			continue
		gates[gate_id] = entry.to_gate(gate_id)
		loaded += 1
	logger.info("Loaded %d custom gates from %s", loaded, path)
	return list(gates.values())


class ValidationGateEngine:
	"""Evaluates phase transitions against gates, rules and a policy."""

	def __init__(
		self,
		config: GatesConfig | None = None,
		gates: Iterable[Gate] | None = None,
		listeners: Iterable[Listener] = (),
		tracer: HostTracer | None = None,
	) -> None:
		self.config = config or GatesConfig()
		self._listeners: list[Listener] = list(listeners)
		self._tracer = tracer or HostTracer()
		self._rules: dict[str, RuleFunc] = dict(BUILTIN_RULES)
		self._custom_rules: dict[str, CustomRule] = {}
		self._policies: dict[str, Policy] = dict(BUILTIN_POLICIES)
		self._gates: dict[str, Gate] = {}
		if gates is None:
			self.reload_gates()
		else:
			self._gates = {g.id: g for g in gates}

	def add_listener(self, listener: Listener) -> None:
		self._listeners.append(listener)

	# -- configuration --

	@property
	def gates(self) -> list[Gate]:
		return list(self._gates.values())

	@property
	def policies(self) -> dict[str, Policy]:
		return dict(self._policies)

	def get_gate(self, gate_id: str) -> Gate | None:
		return self._gates.get(gate_id)

	def reload_gates(self) -> int:
		"""Reload gates from defaults plus the configured gate file."""
		self._gates = {g.id: g for g in load_gates(self.config.resolved_config_path)}
		return len(self._gates)

	def register_rule(self, rule_id: str, rule: RuleFunc) -> None:
		self._rules[rule_id] = rule

	def add_custom_rule(self, rule_id: str, rule: CustomRule | Mapping[str, Any]) -> CustomRule:
		"""Register a data-driven rule. Takes precedence over named rules."""
		if isinstance(rule, CustomRule):
			custom = rule.model_copy(update={"id": rule_id})
		else:
			try:
				custom = CustomRule.model_validate({**rule, "id": rule_id})
			except pydantic.ValidationError as exc:
				raise ValidationError(
					[f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()],
					subject=f"rule {rule_id}",
				) from exc
		self._custom_rules[rule_id] = custom
		return custom

	def register_policy(self, policy: Policy) -> None:
		self._policies[policy.name] = policy

	def get_policy(self, name: str) -> Policy:
		policy = self._policies.get(name)
		if policy is None:
			raise ValidationError([f"unknown policy '{name}' (known: {', '.join(sorted(self._policies))})"])
		return policy

	def gates_for_phase(self, phase: str) -> list[Gate]:
		name = phase.lower()
		selected: list[Gate] = []
		for gate in self._gates.values():
			gate_phase = gate.phase.lower()
			if gate_phase == name:
				selected.append(gate)
				continue
			patterns = PHASE_PATTERNS.get(gate_phase, ())
			if any(pattern in name for pattern in patterns):
				selected.append(gate)
		return selected

	# -- execution --

	async def execute_rule(self, rule_id: str, instance: WorkflowInstance, phase: str) -> RuleResult:
		"""Run one rule. Never raises: a broken rule is a failed rule."""
		try:
			custom = self._custom_rules.get(rule_id)
			if custom is not None:
				result = custom.execute(instance, phase)
			else:
				rule = self._rules.get(rule_id)
				if rule is None:
					return RuleResult(rule_id, warnings=[f"Unknown rule: {rule_id}"])
				result = rule(instance, phase)
				if inspect.isawaitable(result):
					result = await result
			if not isinstance(result, RuleResult):
				raise TypeError(f"rule returned {type(result).__name__}, expected RuleResult")
		except Exception as exc:
			error = GateRuleError(rule_id, exc)
			logger.warning("%s", error)
			return RuleResult(rule_id, passed=False, errors=[str(error)])
		if not result.rule_id:
			result.rule_id = rule_id
		return result

	async def execute_gate(self, gate: Gate, instance: WorkflowInstance, phase: str) -> GateExecutionResult:
		with Timer() as timer, self._tracer.start_gate_span(gate.id) as span:
			result = GateExecutionResult(gate_id=gate.id, gate_name=gate.name)
			for rule_id in gate.rules:
				rule_result = await self.execute_rule(rule_id, instance, phase)
				result.rule_results.append(rule_result)
				if not rule_result.passed:
					result.passed = False
					result.errors.extend(rule_result.errors)
				result.warnings.extend(rule_result.warnings)
				result.fix_suggestions.extend(rule_result.fix_suggestions)
			result.duration_s = timer.elapsed
			span.set_attribute("gate.passed", result.passed)
		return result

	async def apply_auto_fix(
		self,
		gate: Gate,
		suggestions: list[FixSuggestion],
		instance: WorkflowInstance,
	) -> list[str]:
		"""Apply fix suggestions to the instance once.

		Returns a description of each applied fix.

		Raises:
			AutoFixFailure: nothing could be applied.
		"""
		applied: list[str] = []
		problems: list[str] = []
		for suggestion in suggestions:
			try:
				if suggestion.type == "create_artifact":
					name = suggestion.name or suggestion.pattern
					if not name:
						problems.append("create_artifact suggestion has no name")
						continue
					instance.add_artifact(Artifact(
						name=name,
						type="document",
						content=suggestion.content or f"Generated by validation auto-fix ({suggestion.template or 'blank'})",
						auto_generated=True,
					))
					applied.append(f"Created artifact: {name}")
				elif suggestion.type == "update_content":
					artifact = instance.find_artifact(suggestion.target)
					if artifact is None:
						problems.append(f"No artifact to update: {suggestion.target}")
						continue
					artifact.content = f"{artifact.content}\n{suggestion.content}" if artifact.content else suggestion.content
					applied.append(f"Updated content: {suggestion.target}")
				else:
					problems.append(f"Unknown fix type: {suggestion.type}")
			except Exception as exc:
				problems.append(f"Fix failed: {exc}")
		if not applied:
			raise AutoFixFailure(gate.id, problems)
		if problems:
			logger.warning("Auto-fix for %s partially applied: %s", gate.id, "; ".join(problems))
		logger.info("Auto-fix for %s: %s", gate.id, "; ".join(applied))
		return applied

	async def _run_with_fix(
		self,
		gate: Gate,
		instance: WorkflowInstance,
		phase: str,
	) -> GateExecutionResult:
		"""Run a gate, then at most one fix-and-retry if it failed."""
		result = await self.execute_gate(gate, instance, phase)
		if result.passed or not gate.auto_fix or not result.fix_suggestions:
			return result
		try:
			await self.apply_auto_fix(gate, result.fix_suggestions, instance)
		except AutoFixFailure as exc:
			logger.warning("%s", exc)
			return result
		retry = await self.execute_gate(gate, instance, phase)
		retry.auto_fix_applied = True
		retry.retried = True
		return retry

	async def evaluate_phase_transition(
		self,
		instance: WorkflowInstance,
		from_phase: str,
		to_phase: str,
		policy: str | None = None,
	) -> PhaseValidationResult:
		"""Decide whether `instance` may move from `from_phase` to `to_phase`.

		Raises:
			ValidationError: the policy name is unknown.
		"""
		active = self.get_policy(policy or self.config.default_policy)
		result = PhaseValidationResult(
			instance_id=instance.instance_id,
			from_phase=from_phase,
			to_phase=to_phase,
			policy=active.name,
		)
		blocking_failures: list[str] = []

		with self._tracer.start_transition_span(instance.instance_id, from_phase, to_phase) as span:
			for gate in self.gates_for_phase(from_phase):
				try:
					gate_result = await self._run_with_fix(gate, instance, from_phase)
				except Exception as exc:
					logger.exception("Gate %s crashed", gate.id)
					gate_result = GateExecutionResult(
						gate_id=gate.id,
						gate_name=gate.name,
						passed=False,
						errors=[f"Gate execution failed ({gate.name}): {exc}"],
					)
				result.gate_results.append(gate_result)
				if gate_result.auto_fix_applied:
					result.auto_fix_applied = True

				if gate_result.passed:
					result.warnings.extend(gate_result.warnings)
				elif gate.is_blocking:
					blocking_failures.append(gate.id)
					result.errors.extend(gate_result.errors)
					result.warnings.extend(gate_result.warnings)
				else:
					result.warnings.extend(gate_result.errors)
					result.warnings.extend(gate_result.warnings)

				if active.require_approval and gate.priority == "high":
					result.requires_approval = True

			result.passed = not blocking_failures
			result.can_proceed = not (blocking_failures and active.block_on_failure)
			span.set_attribute("transition.passed", result.passed)
			span.set_attribute("transition.can_proceed", result.can_proceed)

		logger.info(
			"Phase %s -> %s for %s under %s: passed=%s can_proceed=%s (%d gates, %d blocking failures)",
			from_phase, to_phase, instance.instance_id, active.name,
			result.passed, result.can_proceed, len(result.gate_results), len(blocking_failures),
		)
		notify(self._listeners, GateEvaluated(
			instance_id=instance.instance_id,
			workflow_type=instance.workflow_type,
			from_phase=from_phase,
			to_phase=to_phase,
			policy=active.name,
			result=result,
		))
		return result

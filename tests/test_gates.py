"""Tests for the validation gate engine."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from conftest import Recorder, make_instance

from toolhost.config import GatesConfig
from toolhost.errors import AutoFixFailure, ValidationError
from toolhost.events import GateEvaluated
from toolhost.gates import DEFAULT_GATES, ValidationGateEngine, load_gates
from toolhost.models import Artifact, FixSuggestion, Gate, Policy, RuleResult, TestResults, WorkflowInstance


def _gate(**overrides: object) -> Gate:
	defaults: dict[str, object] = {
		"id": "g1",
		"name": "Gate One",
		"phase": "analysis",
		"priority": "high",
		"rules": [],
		"blocks_progression": True,
	}
	defaults.update(overrides)
	return Gate(**defaults)  # type: ignore[arg-type]


def _ready_for_design() -> WorkflowInstance:
	return make_instance(
		artifacts=[Artifact(name="requirements.md", content="Scope\n\nAcceptance Criteria:\n- it works")],
		approvals=["requirements review by PM"],
	)


class TestGateSelection:
	def test_exact_phase(self, gate_engine: ValidationGateEngine) -> None:
		ids = [g.id for g in gate_engine.gates_for_phase("analysis")]
		assert ids == ["requirements_documented", "stakeholder_signoff"]

	def test_pattern_match(self, gate_engine: ValidationGateEngine) -> None:
		assert [g.id for g in gate_engine.gates_for_phase("System-Design")] == [
			"architecture_approved", "technology_stack_validated",
		]
		assert [g.id for g in gate_engine.gates_for_phase("release")] == ["deployment_readiness_gate"]

	def test_no_gates(self, gate_engine: ValidationGateEngine) -> None:
		assert gate_engine.gates_for_phase("retrospective") == []


class TestExecuteGate:
	@pytest.mark.asyncio
	async def test_two_failing_rules_in_order(self) -> None:
		engine = ValidationGateEngine(gates=[])
		gate = _gate(rules=["stakeholder_approval_received", "requirements_reviewed"])
		result = await engine.execute_gate(gate, make_instance(), "analysis")
		assert not result.passed
		assert result.errors == ["Stakeholder approval not received", "Requirements have not been reviewed"]
		assert [r.rule_id for r in result.rule_results] == ["stakeholder_approval_received", "requirements_reviewed"]

	@pytest.mark.asyncio
	async def test_unknown_rule_is_warning(self) -> None:
		engine = ValidationGateEngine(gates=[])
		result = await engine.execute_gate(_gate(rules=["does_not_exist"]), make_instance(), "analysis")
		assert result.passed
		assert result.warnings == ["Unknown rule: does_not_exist"]

	@pytest.mark.asyncio
	async def test_raising_rule_becomes_error(self) -> None:
		engine = ValidationGateEngine(gates=[])

		def broken(instance: WorkflowInstance, phase: str) -> RuleResult:
			raise RuntimeError("kaboom")

		engine.register_rule("broken", broken)
		result = await engine.execute_gate(_gate(rules=["broken", "stakeholder_approval_received"]), make_instance(), "x")
		assert not result.passed
		assert result.errors == ["Rule execution failed (broken): kaboom", "Stakeholder approval not received"]

	@pytest.mark.asyncio
	async def test_async_rule_and_wrong_return_type(self) -> None:
		engine = ValidationGateEngine(gates=[])

		async def ok(instance: WorkflowInstance, phase: str) -> RuleResult:
			return RuleResult("ok")

		engine.register_rule("ok", ok)
		engine.register_rule("weird", lambda instance, phase: True)
		assert (await engine.execute_rule("ok", make_instance(), "analysis")).passed
		weird = await engine.execute_rule("weird", make_instance(), "analysis")
		assert not weird.passed
		assert "expected RuleResult" in weird.errors[0]

	@pytest.mark.asyncio
	async def test_duration_covers_rules(self) -> None:
		engine = ValidationGateEngine(gates=[])

		async def slow(instance: WorkflowInstance, phase: str) -> RuleResult:
			await asyncio.sleep(0.02)
			return RuleResult("slow")

		engine.register_rule("slow", slow)
		result = await engine.execute_gate(_gate(rules=["slow"]), make_instance(), "analysis")
		assert result.passed
		assert result.duration_s >= 0.015

	@pytest.mark.asyncio
	async def test_custom_rule_takes_precedence(self) -> None:
		engine = ValidationGateEngine(gates=[])
		engine.add_custom_rule("stakeholder_approval_received", {"type": "artifact_check", "artifactPattern": "signoff"})
		result = await engine.execute_rule("stakeholder_approval_received", make_instance(approvals=["pm"]), "analysis")
		assert result.errors == ["Required artifact not found: signoff"]

	def test_invalid_custom_rule(self) -> None:
		engine = ValidationGateEngine(gates=[])
		with pytest.raises(ValidationError, match="rule bad"):
			engine.add_custom_rule("bad", {"type": "telepathy"})


class TestAutoFix:
	@pytest.mark.asyncio
	async def test_fix_then_single_retry(self) -> None:
		engine = ValidationGateEngine(gates=[_gate(auto_fix=True, rules=["requirements_file_exists"])])
		instance = make_instance()
		result = await engine.evaluate_phase_transition(instance, "analysis", "design")
		assert result.passed
		assert result.auto_fix_applied
		gate_result = result.gate_results[0]
		assert gate_result.retried
		created = instance.find_artifact("requirements.md")
		assert created is not None
		assert created.auto_generated

	@pytest.mark.asyncio
	async def test_no_fix_when_disabled(self) -> None:
		engine = ValidationGateEngine(gates=[_gate(rules=["requirements_file_exists"])])
		instance = make_instance()
		result = await engine.evaluate_phase_transition(instance, "analysis", "design")
		assert not result.passed
		assert instance.artifacts == []

	@pytest.mark.asyncio
	async def test_retry_still_failing(self) -> None:
		engine = ValidationGateEngine(gates=[
			_gate(auto_fix=True, rules=["requirements_file_exists", "stakeholder_approval_received"]),
		])
		result = await engine.evaluate_phase_transition(make_instance(), "analysis", "design")
		assert not result.passed
		assert result.auto_fix_applied
		assert result.errors == ["Stakeholder approval not received"]

	@pytest.mark.asyncio
	async def test_update_content(self) -> None:
		engine = ValidationGateEngine(gates=[])
		instance = make_instance(artifacts=[Artifact(name="README.md", content="intro")])
		applied = await engine.apply_auto_fix(
			_gate(), [FixSuggestion(type="update_content", target="README.md", content="usage")], instance,
		)
		assert applied == ["Updated content: README.md"]
		assert instance.find_artifact("README.md").content == "intro\nusage"

	@pytest.mark.asyncio
	async def test_nothing_applied_raises(self) -> None:
		engine = ValidationGateEngine(gates=[])
		with pytest.raises(AutoFixFailure, match="Unknown fix type: rewrite_history"):
			await engine.apply_auto_fix(_gate(), [FixSuggestion(type="rewrite_history")], make_instance())


class TestPhaseTransition:
	@pytest.mark.asyncio
	async def test_strict_blocks(self, gate_engine: ValidationGateEngine) -> None:
		result = await gate_engine.evaluate_phase_transition(make_instance(), "analysis", "design", policy="strict")
		assert not result.passed
		assert not result.can_proceed
		assert result.requires_approval
		assert result.errors == [
			"Requirements documentation not found",
			"Stakeholder approval not received",
			"Requirements have not been reviewed",
		]

	@pytest.mark.asyncio
	async def test_flexible_reports_but_allows(self, gate_engine: ValidationGateEngine) -> None:
		result = await gate_engine.evaluate_phase_transition(make_instance(), "analysis", "design")
		assert result.policy == "flexible"
		assert not result.passed
		assert result.can_proceed
		assert not result.requires_approval

	@pytest.mark.asyncio
	async def test_strict_all_passing(self, gate_engine: ValidationGateEngine) -> None:
		result = await gate_engine.evaluate_phase_transition(_ready_for_design(), "analysis", "design", policy="strict")
		assert result.passed
		assert result.can_proceed
		assert result.errors == []
		assert [g.gate_id for g in result.gate_results] == ["requirements_documented", "stakeholder_signoff"]

	@pytest.mark.asyncio
	async def test_non_blocking_failure_is_warning(self) -> None:
		engine = ValidationGateEngine(gates=[
			_gate(id="advisory", priority="medium", rules=["stakeholder_approval_received"]),
		])
		result = await engine.evaluate_phase_transition(make_instance(), "analysis", "design", policy="strict")
		assert result.passed
		assert result.can_proceed
		assert result.errors == []
		assert result.warnings == ["Stakeholder approval not received"]

	@pytest.mark.asyncio
	async def test_passing_gate_warnings_propagate(self) -> None:
		engine = ValidationGateEngine(gates=[_gate(rules=["requirements_are_clear"])])
		instance = make_instance(artifacts=[Artifact(name="requirements.md")])
		result = await engine.evaluate_phase_transition(instance, "analysis", "design")
		assert result.passed
		assert result.warnings == ["Requirements document is empty: requirements.md"]

	@pytest.mark.asyncio
	async def test_testing_phase(self, gate_engine: ValidationGateEngine) -> None:
		passing = TestResults(total=10, passing=10)
		instance = make_instance(
			test_results=TestResults(total=30, passing=30, coverage=91.0),
			test_suites={"unit": passing, "integration": passing, "e2e": passing},
		)
		result = await gate_engine.evaluate_phase_transition(instance, "testing", "deployment", policy="strict")
		assert result.passed
		assert "Unknown rule: response_time_acceptable" in result.warnings

	@pytest.mark.asyncio
	async def test_unknown_policy(self, gate_engine: ValidationGateEngine) -> None:
		with pytest.raises(ValidationError, match="unknown policy 'yolo'"):
			await gate_engine.evaluate_phase_transition(make_instance(), "analysis", "design", policy="yolo")

	@pytest.mark.asyncio
	async def test_registered_policy(self) -> None:
		engine = ValidationGateEngine(gates=[_gate(rules=["stakeholder_approval_received"])])
		engine.register_policy(Policy(name="gatekeeper", block_on_failure=True))
		result = await engine.evaluate_phase_transition(make_instance(), "analysis", "design", policy="gatekeeper")
		assert not result.can_proceed
		assert not result.requires_approval

	@pytest.mark.asyncio
	async def test_emits_gate_evaluated(self, gate_engine: ValidationGateEngine, recorder: Recorder) -> None:
		await gate_engine.evaluate_phase_transition(make_instance(), "analysis", "design")
		events = recorder.of_type(GateEvaluated)
		assert len(events) == 1
		assert events[0].instance_id == "wf1"
		assert events[0].workflow_type == "feature"
		assert len(events[0].result.gate_results) == 2


class TestGateConfig:
	def test_defaults_without_file(self, tmp_path: Path) -> None:
		gates = load_gates(tmp_path / "missing.json")
		assert [g.id for g in gates] == [g.id for g in DEFAULT_GATES]

	def test_loaded_gates(self, tmp_path: Path) -> None:
		path = tmp_path / "custom-gates.json"
		path.write_text(json.dumps({
			"stakeholder_signoff": {
				"name": "Relaxed Sign-off",
				"phase": "analysis",
				"priority": "low",
				"rules": ["stakeholder_approval_received"],
			},
			"docs_gate": {
				"name": "Docs Gate",
				"phase": "implementation",
				"priority": "high",
				"rules": ["readme_exists"],
				"autoFix": True,
				"blocksProgression": True,
			},
			"broken": {"phase": "analysis", "priority": "urgent"},
		}))
		gates = {g.id: g for g in load_gates(path)}
		assert "broken" not in gates
		assert gates["stakeholder_signoff"].priority == "low"
		assert gates["stakeholder_signoff"].custom
		assert gates["docs_gate"].auto_fix is True
		assert gates["docs_gate"].is_blocking
		ids = list(gates)
		assert ids.index("stakeholder_signoff") == 1
		assert ids[-1] == "docs_gate"

	def test_unreadable_file(self, tmp_path: Path) -> None:
		path = tmp_path / "custom-gates.json"
		path.write_text("{not json")
		assert len(load_gates(path)) == len(DEFAULT_GATES)

	def test_engine_reload(self, tmp_path: Path) -> None:
		path = tmp_path / "custom-gates.json"
		engine = ValidationGateEngine(GatesConfig(config_path=str(path)))
		assert engine.get_gate("docs_gate") is None
		path.write_text(json.dumps({"docs_gate": {"name": "Docs", "phase": "implementation"}}))
		assert engine.reload_gates() == len(DEFAULT_GATES) + 1
		assert engine.get_gate("docs_gate") is not None

	def test_default_gates_not_mutated(self, tmp_path: Path) -> None:
		gates = load_gates(None)
		gates[0].rules.append("extra")
		assert "extra" not in DEFAULT_GATES[0].rules

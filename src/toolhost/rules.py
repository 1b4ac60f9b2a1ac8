"""Gate rules: built-in named predicates and custom rule primitives.

A rule takes the workflow instance and the phase being left and returns a
RuleResult. Rules may be plain functions or coroutines.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from toolhost.models import Artifact, FixSuggestion, RuleResult, TestResults, WorkflowInstance

RuleFunc = Callable[[WorkflowInstance, str], Union[RuleResult, Awaitable[RuleResult]]]

COVERAGE_THRESHOLD = 80.0

REQUIREMENT_MARKERS = ("requirement", "prd", "brief")


def _requirement_artifacts(instance: WorkflowInstance) -> list[Artifact]:
	return [
		a for a in instance.get_artifacts()
		if any(marker in a.name.lower() for marker in REQUIREMENT_MARKERS)
	]


def requirements_file_exists(instance: WorkflowInstance, phase: str) -> RuleResult:
	result = RuleResult("requirements_file_exists")
	if not _requirement_artifacts(instance):
		result.fail("Requirements documentation not found")
		result.fix_suggestions.append(FixSuggestion(
			type="create_artifact",
			name="requirements.md",
			template="requirements_template",
		))
	return result


def requirements_are_clear(instance: WorkflowInstance, phase: str) -> RuleResult:
	result = RuleResult("requirements_are_clear")
	for artifact in _requirement_artifacts(instance):
		if not artifact.content.strip():
			result.warnings.append(f"Requirements document is empty: {artifact.name}")
	return result


def acceptance_criteria_defined(instance: WorkflowInstance, phase: str) -> RuleResult:
	result = RuleResult("acceptance_criteria_defined")
	docs = _requirement_artifacts(instance)
	if docs and not any("acceptance criteria" in a.content.lower() for a in docs):
		result.warnings.append("No acceptance criteria found in requirements documentation")
	return result


def stakeholder_approval_received(instance: WorkflowInstance, phase: str) -> RuleResult:
	result = RuleResult("stakeholder_approval_received")
	if not instance.approvals:
		result.fail("Stakeholder approval not received")
	return result


def requirements_reviewed(instance: WorkflowInstance, phase: str) -> RuleResult:
	result = RuleResult("requirements_reviewed")
	if not any("requirement" in approval.lower() for approval in instance.approvals):
		result.fail("Requirements have not been reviewed")
	return result


def architecture_document_exists(instance: WorkflowInstance, phase: str) -> RuleResult:
	result = RuleResult("architecture_document_exists")
	found = any(
		"architecture" in a.name.lower() or a.type == "architecture"
		for a in instance.get_artifacts()
	)
	if not found:
		result.fail("Architecture documentation not found")
	return result


def _check_failing(result: RuleResult, tests: TestResults | None, label: str) -> RuleResult:
	if tests is None:
		result.warnings.append(f"No {label}results recorded")
	elif not tests.all_passing:
		result.fail(f"{tests.failing} {label}tests are failing")
	return result


def all_tests_passing(instance: WorkflowInstance, phase: str) -> RuleResult:
	return _check_failing(RuleResult("all_tests_passing"), instance.test_results, "")


def _suite_rule(suite: str) -> RuleFunc:
	rule_id = f"{suite}_tests_passing"

	def rule(instance: WorkflowInstance, phase: str) -> RuleResult:
		return _check_failing(RuleResult(rule_id), instance.test_suites.get(suite), f"{suite} ")

	rule.__name__ = rule_id
	return rule


def _coverage_rule(rule_id: str) -> RuleFunc:
	def rule(instance: WorkflowInstance, phase: str) -> RuleResult:
		result = RuleResult(rule_id)
		tests = instance.test_results
		if tests is None or tests.coverage is None:
			result.warnings.append("No coverage data recorded")
		elif tests.coverage < COVERAGE_THRESHOLD:
			result.fail(f"Test coverage {tests.coverage:.1f}% is below the {COVERAGE_THRESHOLD:.0f}% threshold")
		return result

	rule.__name__ = rule_id
	return rule


BUILTIN_RULES: dict[str, RuleFunc] = {
	"requirements_file_exists": requirements_file_exists,
	"requirements_are_clear": requirements_are_clear,
	"acceptance_criteria_defined": acceptance_criteria_defined,
	"stakeholder_approval_received": stakeholder_approval_received,
	"requirements_reviewed": requirements_reviewed,
	"architecture_document_exists": architecture_document_exists,
	"all_tests_passing": all_tests_passing,
	"unit_tests_passing": _suite_rule("unit"),
	"integration_tests_passing": _suite_rule("integration"),
	"e2e_tests_passing": _suite_rule("e2e"),
	"test_coverage_meets_threshold": _coverage_rule("test_coverage_meets_threshold"),
	"test_coverage_adequate": _coverage_rule("test_coverage_adequate"),
}


# -- Custom rules --


class CustomRule(BaseModel):
	"""A data-driven rule registered at runtime or loaded from config.

	Accepts both snake_case and camelCase keys (`artifactPattern`, ...).
	"""

	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

	id: str = ""
	type: Literal["artifact_check", "file_check", "content_check"]
	artifact_pattern: str = ""
	artifact_type: str = ""
	file_path: str = ""
	required_text: list[str] = Field(default_factory=list)
	auto_create: bool = False
	template: str = ""
	created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

	def execute(self, instance: WorkflowInstance, phase: str) -> RuleResult:
		if self.type == "artifact_check":
			return self._artifact_check(instance)
		if self.type == "file_check":
			return self._file_check(instance)
		return self._content_check(instance)

	def _matches(self, name: str, type_: str) -> bool:
		if self.artifact_pattern and self.artifact_pattern in name:
			return True
		return bool(self.artifact_type) and type_ == self.artifact_type

	def _artifact_check(self, instance: WorkflowInstance) -> RuleResult:
		result = RuleResult(self.id)
		if not any(self._matches(a.name, a.type) for a in instance.get_artifacts()):
			result.fail(f"Required artifact not found: {self.artifact_pattern or self.artifact_type}")
			if self.auto_create:
				result.fix_suggestions.append(FixSuggestion(
					type="create_artifact",
					name=self.artifact_pattern,
					pattern=self.artifact_pattern,
					template=self.template,
				))
		return result

	def _resolve(self, instance: WorkflowInstance) -> Path:
		return Path(instance.project_root or ".") / self.file_path

	def _file_check(self, instance: WorkflowInstance) -> RuleResult:
		result = RuleResult(self.id)
		if not self._resolve(instance).exists():
			result.fail(f"Required file not found: {self.file_path}")
		return result

	def _content_check(self, instance: WorkflowInstance) -> RuleResult:
		"""Every required snippet must appear in the matching artifact or file."""
		result = RuleResult(self.id)
		if self.file_path:
			path = self._resolve(instance)
			if not path.is_file():
				result.fail(f"Required file not found: {self.file_path}")
				return result
			texts = [(self.file_path, path.read_text(encoding="utf-8", errors="replace"))]
		else:
			texts = [(a.name, a.content) for a in instance.get_artifacts() if self._matches(a.name, a.type)]
			if not texts:
				result.fail(f"Required artifact not found: {self.artifact_pattern or self.artifact_type}")
				return result
		for snippet in self.required_text:
			if not any(snippet.lower() in body.lower() for _, body in texts):
				target = texts[0][0]
				result.fail(f"Required content missing from {target}: {snippet}")
				result.fix_suggestions.append(FixSuggestion(
					type="update_content",
					target=target,
					content=snippet,
				))
		return result

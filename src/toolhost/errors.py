"""Error taxonomy for the tool host."""

from __future__ import annotations


class ToolHostError(Exception):
	"""Base class for all tool host errors."""


class ValidationError(ToolHostError, ValueError):
	"""A tool descriptor or call arguments are malformed.

	Always carries the full list of violations, not just the first one.
	"""

	def __init__(self, errors: list[str], subject: str = "") -> None:
		self.errors = list(errors)
		self.subject = subject
		prefix = f"Validation failed for {subject}" if subject else "Validation failed"
		super().__init__(f"{prefix}: {'; '.join(self.errors)}")


class RegistrationConflictError(ToolHostError, ValueError):
	"""A tool with the same name is already registered."""

	def __init__(self, name: str) -> None:
		self.name = name
		super().__init__(f"Tool already registered: {name}")


class NotFoundError(ToolHostError, LookupError):
	"""No tool with the requested name exists."""

	def __init__(self, name: str) -> None:
		self.name = name
		super().__init__(f"Tool not found: {name}")


class ToolTimeoutError(ToolHostError):
	"""A handler did not finish before its deadline."""

	def __init__(self, tool_name: str, timeout_s: float) -> None:
		self.tool_name = tool_name
		self.timeout_s = timeout_s
		super().__init__(f"Tool execution timeout: {tool_name} (>{timeout_s:g}s)")


class GateRuleError(ToolHostError):
	"""A gate rule implementation raised."""

	def __init__(self, rule_id: str, cause: BaseException) -> None:
		self.rule_id = rule_id
		self.cause = cause
		super().__init__(f"Rule execution failed ({rule_id}): {cause}")


class AutoFixFailure(ToolHostError):
	"""An auto-fix attempt raised or changed nothing."""

	def __init__(self, gate_id: str, reasons: list[str]) -> None:
		self.gate_id = gate_id
		self.reasons = list(reasons)
		detail = "; ".join(self.reasons) if self.reasons else "no fixes applied"
		super().__init__(f"Auto-fix failed for gate {gate_id}: {detail}")

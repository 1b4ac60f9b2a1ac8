"""Dispatch engine -- resolve, validate, run under a deadline, account.

Timeout semantics: when a handler outlives its deadline the caller gets an
is_error result straight away, but the handler task is left running. It is
kept in `detached`, its eventual outcome is logged, and `drain()` waits for
whatever is still running at shutdown. Cancelling the *caller* of
`execute()` does cancel the handler.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from jsonschema import Draft7Validator

from toolhost.config import DispatchConfig
from toolhost.errors import NotFoundError, ToolTimeoutError, ValidationError
from toolhost.events import (
	OUTCOME_DISABLED,
	OUTCOME_ERROR,
	OUTCOME_INVALID_ARGUMENTS,
	OUTCOME_SUCCESS,
	OUTCOME_TIMEOUT,
	DispatchCompleted,
	Listener,
	notify,
)
from toolhost.metrics import Timer
from toolhost.models import ExecutionRequest, ExecutionResult, RegistryEntry, ToolDescriptor
from toolhost.registry import ToolRegistry
from toolhost.tracing import HostTracer

logger = logging.getLogger(__name__)

EMPTY_INPUT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


def schema_errors(schema: Mapping[str, Any], args: Mapping[str, Any]) -> list[str]:
	"""All JSON Schema violations of args, ordered by location."""
	validator = Draft7Validator(schema)
	errors = sorted(
		validator.iter_errors(args),
		key=lambda e: (tuple(str(p) for p in e.absolute_path), e.message),
	)
	messages: list[str] = []
	for error in errors:
		location = ".".join(str(p) for p in error.absolute_path)
		messages.append(f"{location}: {error.message}" if location else error.message)
	return messages


def custom_validation_errors(descriptor: ToolDescriptor, args: Mapping[str, Any]) -> list[str]:
	"""Run a descriptor's own validate hook, accepting either result shape."""
	if descriptor.validate is None:
		return []
	try:
		outcome = descriptor.validate(dict(args))
	except Exception as exc:
		return [f"validate raised {type(exc).__name__}: {exc}"]
	if isinstance(outcome, Mapping):
		is_valid = outcome.get("is_valid", outcome.get("isValid", True))
		errors = outcome.get("errors") or []
	else:
		is_valid = getattr(outcome, "is_valid", bool(outcome))
		errors = getattr(outcome, "errors", None) or []
	if is_valid:
		return []
	return [str(e) for e in errors] or ["arguments rejected by validate"]


class DispatchEngine:
	"""Turns ExecutionRequests into ExecutionResults with bounded latency."""

	def __init__(
		self,
		registry: ToolRegistry,
		config: DispatchConfig | None = None,
		listeners: Iterable[Listener] = (),
		tracer: HostTracer | None = None,
	) -> None:
		self.registry = registry
		self.config = config or DispatchConfig()
		self._listeners: list[Listener] = list(listeners)
		self._tracer = tracer or HostTracer()
		self.detached: set[asyncio.Task[Any]] = set()
		self.total_calls = 0
		self.total_errors = 0
		self.total_timeouts = 0

	def add_listener(self, listener: Listener) -> None:
		self._listeners.append(listener)

	# -- transport-facing API --

	def list_tools(self) -> list[dict[str, Any]]:
		tools: list[dict[str, Any]] = []
		for entry in self.registry.list(enabled=True):
			descriptor = entry.descriptor
			tools.append({
				"name": descriptor.name,
				"description": descriptor.description,
				"inputSchema": dict(descriptor.input_schema or EMPTY_INPUT_SCHEMA),
			})
		return tools

	async def call_tool(
		self,
		name: str,
		args: Any = None,
		context: Mapping[str, Any] | None = None,
	) -> ExecutionResult:
		"""Call a tool by name.

		Raises:
			ValidationError: the request itself is malformed (bad name or
				non-object arguments).
			NotFoundError: no tool with that name is registered.
		"""
		if not isinstance(name, str) or not name:
			raise ValidationError(["tool name must be a non-empty string"])
		if args is None:
			args = {}
		if not isinstance(args, Mapping):
			raise ValidationError([f"arguments must be an object, got {type(args).__name__}"], subject=name)
		request = ExecutionRequest(tool_name=name, args=dict(args), context=dict(context or {}))
		return await self.execute(request)

	# -- core --

	def validate_arguments(self, descriptor: ToolDescriptor, args: Mapping[str, Any]) -> list[str]:
		errors: list[str] = []
		if descriptor.input_schema is not None:
			errors.extend(schema_errors(descriptor.input_schema, args))
		errors.extend(custom_validation_errors(descriptor, args))
		return errors

	async def execute(self, request: ExecutionRequest) -> ExecutionResult:
		entry = self.registry.get(request.tool_name)
		if entry is None:
			raise NotFoundError(request.tool_name)

		descriptor = entry.descriptor
		with Timer() as timer, self._tracer.start_dispatch_span(descriptor.name, request.request_id) as span:
			if not entry.enabled:
				result = ExecutionResult.error(f"Tool is disabled: {descriptor.name}")
				return self._finish(entry, request, OUTCOME_DISABLED, timer, result, span)

			errors = self.validate_arguments(descriptor, request.args)
			if errors:
				listing = "\n".join(f"- {e}" for e in errors)
				result = ExecutionResult.error(
					f"Invalid arguments for tool {descriptor.name}:\n{listing}",
					validation_errors=errors,
				)
				return self._finish(entry, request, OUTCOME_INVALID_ARGUMENTS, timer, result, span)

			context: dict[str, Any] = {
				"tool_name": descriptor.name,
				"request_id": request.request_id,
				"timestamp": datetime.now(timezone.utc).isoformat(),
			}
			context.update(request.context)
			deadline = request.deadline_s if request.deadline_s is not None else self.config.default_timeout_s

			task = asyncio.create_task(
				self._invoke(descriptor, dict(request.args), context),
				name=f"tool:{descriptor.name}:{request.request_id}",
			)
			try:
				done, _ = await asyncio.wait({task}, timeout=deadline)
			except asyncio.CancelledError:
				task.cancel()
				raise

			if not done:
				self._detach(task, descriptor.name, request.request_id)
				timeout_error = ToolTimeoutError(descriptor.name, deadline)
				result = ExecutionResult.error(str(timeout_error), timeout=True, timeout_s=deadline)
				return self._finish(entry, request, OUTCOME_TIMEOUT, timer, result, span, error=str(timeout_error))

			if task.cancelled():
				message = f"Error executing tool {descriptor.name}: handler was cancelled"
				return self._finish(entry, request, OUTCOME_ERROR, timer, ExecutionResult.error(message), span, error=message)

			exc = task.exception()
			if exc is not None:
				logger.warning("Tool %s raised %s: %s", descriptor.name, type(exc).__name__, exc)
				span.record_exception(exc)
				message = f"Error executing tool {descriptor.name}: {exc}"
				result = ExecutionResult.error(message, error_type=type(exc).__name__)
				return self._finish(entry, request, OUTCOME_ERROR, timer, result, span, error=str(exc))

			result = ExecutionResult.from_value(task.result())
			outcome = OUTCOME_ERROR if result.is_error else OUTCOME_SUCCESS
			return self._finish(entry, request, outcome, timer, result, span, error=result.text_content if result.is_error else "")

	@staticmethod
	async def _invoke(descriptor: ToolDescriptor, args: dict[str, Any], context: dict[str, Any]) -> Any:
		value = descriptor.execute(args, context)
		if inspect.isawaitable(value):
			value = await value
		return value

	def _finish(
		self,
		entry: RegistryEntry,
		request: ExecutionRequest,
		outcome: str,
		timer: Timer,
		result: ExecutionResult,
		span: Any,
		error: str = "",
	) -> ExecutionResult:
		duration = timer.elapsed
		success = outcome == OUTCOME_SUCCESS
		entry.metrics.record(duration, success=success, timed_out=outcome == OUTCOME_TIMEOUT)
		self.total_calls += 1
		if not success:
			self.total_errors += 1
		if outcome == OUTCOME_TIMEOUT:
			self.total_timeouts += 1

		result.metadata.setdefault("tool_name", entry.name)
		result.metadata.setdefault("request_id", request.request_id)
		result.metadata["execution_time_s"] = round(duration, 4)
		span.set_attribute("tool.outcome", outcome)
		span.set_attribute("tool.duration_s", duration)

		logger.debug("Tool %s finished: %s in %.3fs", entry.name, outcome, duration)
		notify(self._listeners, DispatchCompleted(
			tool_name=entry.name,
			outcome=outcome,
			duration_s=duration,
			error=error,
			request_id=request.request_id,
		))
		return result

	# -- detached continuations --

	def _detach(self, task: asyncio.Task[Any], tool_name: str, request_id: str) -> None:
		logger.warning("Tool %s (%s) timed out; leaving handler running detached", tool_name, request_id)
		self.detached.add(task)
		task.add_done_callback(functools.partial(self._on_detached_done, tool_name, request_id))

	def _on_detached_done(self, tool_name: str, request_id: str, task: asyncio.Task[Any]) -> None:
		self.detached.discard(task)
		if task.cancelled():
			logger.info("Detached call %s (%s) was cancelled", tool_name, request_id)
			return
		exc = task.exception()
		if exc is not None:
			logger.warning("Detached call %s (%s) failed after timeout: %s", tool_name, request_id, exc)
		else:
			logger.info("Detached call %s (%s) completed after timeout", tool_name, request_id)

	async def drain(self, timeout: float | None = None) -> int:
		"""Wait for detached handlers; cancel whatever outlives timeout.

		Returns the number of handlers that finished on their own.
		"""
		pending = set(self.detached)
		if not pending:
			return 0
		done, still_running = await asyncio.wait(pending, timeout=timeout)
		for task in still_running:
			task.cancel()
		if still_running:
			await asyncio.gather(*still_running, return_exceptions=True)
			logger.warning("Cancelled %d detached tool calls at shutdown", len(still_running))
		return len(done)

	def stats(self) -> dict[str, Any]:
		return {
			"total_calls": self.total_calls,
			"total_errors": self.total_errors,
			"total_timeouts": self.total_timeouts,
			"detached": len(self.detached),
		}

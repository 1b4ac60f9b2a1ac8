"""OpenTelemetry spans for dispatch and gate evaluation, no-op when unavailable."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator

from toolhost.config import TracingConfig

logger = logging.getLogger(__name__)

try:
	from opentelemetry import trace
	from opentelemetry.sdk.resources import Resource
	from opentelemetry.sdk.trace import TracerProvider
	from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

	OTEL_AVAILABLE = True
except ImportError:
	OTEL_AVAILABLE = False


class NoOpSpan:
	"""Stands in for a span when tracing is off; accepts what the host records."""

	def set_attribute(self, key: str, value: Any) -> None:
		pass

	def record_exception(self, exception: BaseException) -> None:
		pass


def _span_exporter(config: TracingConfig) -> Any:
	"""Exporter for the configured backend, or None for `exporter = "none"`."""
	if config.exporter == "none":
		return None
	if config.exporter == "otlp":
		try:
			from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
		except ImportError:
			logger.warning("OTLP exporter not available, falling back to console. Install toolhost[otlp]")
		else:
			return OTLPSpanExporter(endpoint=config.otlp_endpoint)
	return ConsoleSpanExporter()


class HostTracer:
	"""Opens spans around tool calls, phase transitions and gates.

	Every span method yields a NoOpSpan unless tracing is enabled and the
	opentelemetry SDK is installed.
	"""

	def __init__(self, config: TracingConfig | None = None) -> None:
		self._config = config or TracingConfig()
		self._tracer: Any = None
		if not self._config.enabled:
			return
		if not OTEL_AVAILABLE:
			logger.warning("Tracing enabled but opentelemetry not installed. Install toolhost[tracing]")
			return

		provider = TracerProvider(resource=Resource.create({"service.name": self._config.service_name}))
		exporter = _span_exporter(self._config)
		if exporter is not None:
			provider.add_span_processor(SimpleSpanProcessor(exporter))
		trace.set_tracer_provider(provider)
		self._tracer = trace.get_tracer("toolhost")

	@property
	def active(self) -> bool:
		return self._tracer is not None

	@contextmanager
	def _span(self, name: str, attributes: dict[str, Any]) -> Generator[Any, None, None]:
		if not self.active:
			yield NoOpSpan()
			return
		with self._tracer.start_as_current_span(name, attributes=attributes) as span:
			yield span

	def start_dispatch_span(self, tool_name: str, request_id: str = "") -> Any:
		attributes: dict[str, Any] = {"tool.name": tool_name}
		if request_id:
			attributes["tool.request_id"] = request_id
		return self._span("tool.call", attributes)

	def start_transition_span(self, instance_id: str, from_phase: str, to_phase: str) -> Any:
		return self._span("phase.transition", {
			"workflow.instance_id": instance_id,
			"phase.from": from_phase,
			"phase.to": to_phase,
		})

	def start_gate_span(self, gate_id: str) -> Any:
		return self._span("gate", {"gate.id": gate_id})


def get_current_trace_context() -> tuple[str, str]:
	"""(trace_id, span_id) of the active span as hex, or ("", "") outside one."""
	if not OTEL_AVAILABLE:
		return ("", "")
	ctx = trace.get_current_span().get_span_context()
	if not ctx.is_valid:
		return ("", "")
	return (format(ctx.trace_id, "032x"), format(ctx.span_id, "016x"))

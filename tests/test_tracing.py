"""Tests for OpenTelemetry tracing integration."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from toolhost.config import TracingConfig
from toolhost.tracing import OTEL_AVAILABLE, HostTracer, NoOpSpan, _span_exporter, get_current_trace_context


class TestNoOpSpan:
	def test_accepts_recorded_data(self) -> None:
		span = NoOpSpan()
		span.set_attribute("key", "value")
		span.record_exception(ValueError("test"))


class TestTracingDisabled:
	def test_returns_noop_when_disabled(self) -> None:
		tracer = HostTracer(TracingConfig(enabled=False))
		assert not tracer.active
		with tracer.start_dispatch_span("echo", "r1") as span:
			assert isinstance(span, NoOpSpan)
		with tracer.start_transition_span("wf1", "analysis", "design") as span:
			assert isinstance(span, NoOpSpan)
		with tracer.start_gate_span("g1") as span:
			assert isinstance(span, NoOpSpan)

	def test_default_config_is_disabled(self) -> None:
		assert not HostTracer().active


class TestNoOpFallback:
	def test_tracer_works_when_otel_not_installed(self) -> None:
		with patch("toolhost.tracing.OTEL_AVAILABLE", False):
			tracer = HostTracer(TracingConfig(enabled=True))
			assert not tracer.active
			with tracer.start_dispatch_span("echo") as span:
				assert isinstance(span, NoOpSpan)

	def test_trace_context_empty_without_otel(self) -> None:
		with patch("toolhost.tracing.OTEL_AVAILABLE", False):
			assert get_current_trace_context() == ("", "")


class TestTraceContext:
	def test_no_active_span(self) -> None:
		# outside any span OTEL reports an invalid, all-zero context
		assert get_current_trace_context() == ("", "")

	def test_availability_flag_is_bool(self) -> None:
		assert isinstance(OTEL_AVAILABLE, bool)


class TestExporterSelection:
	def test_none_exporter(self) -> None:
		assert _span_exporter(TracingConfig(exporter="none")) is None

	def test_console_exporter(self) -> None:
		pytest.importorskip("opentelemetry.sdk", reason="opentelemetry-sdk not installed")
		from opentelemetry.sdk.trace.export import ConsoleSpanExporter

		assert isinstance(_span_exporter(TracingConfig(exporter="console")), ConsoleSpanExporter)

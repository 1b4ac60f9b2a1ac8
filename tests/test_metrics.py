"""Tests for per-tool metrics, timing and logging setup."""

from __future__ import annotations

import json
import logging
import sys
import time

import pytest

from toolhost.metrics import Timer, ToolMetrics, _JsonFormatter, setup_logging


class TestToolMetrics:
	def test_empty(self) -> None:
		m = ToolMetrics()
		assert m.success_rate == 0.0
		assert m.last_called is None

	def test_record(self) -> None:
		m = ToolMetrics()
		m.record(0.2, success=True)
		m.record(0.4, success=False, timed_out=True)
		assert m.call_count == 2
		assert m.error_count == 1
		assert m.timeout_count == 1
		assert m.avg_execution_time_s == pytest.approx(0.3)
		assert m.success_rate == pytest.approx(0.5)
		assert m.last_called is not None

	def test_to_dict(self) -> None:
		m = ToolMetrics()
		m.record(0.123456, success=True)
		data = m.to_dict()
		assert data["call_count"] == 1
		assert data["avg_execution_time_s"] == 0.1235
		assert data["success_rate"] == 1.0


class TestTimer:
	def test_measures_elapsed(self) -> None:
		with Timer() as t:
			time.sleep(0.01)
		assert t.elapsed >= 0.01

	def test_running_then_frozen(self) -> None:
		with Timer() as t:
			first = t.elapsed
			time.sleep(0.01)
			assert t.elapsed > first
		frozen = t.elapsed
		time.sleep(0.01)
		assert t.elapsed == frozen


class TestSetupLogging:
	def test_sets_level_and_handler(self) -> None:
		setup_logging("DEBUG")
		logger = logging.getLogger("toolhost")
		assert logger.level == logging.DEBUG
		assert len(logger.handlers) == 1

	def test_idempotent(self) -> None:
		setup_logging("INFO")
		setup_logging("WARNING")
		logger = logging.getLogger("toolhost")
		assert len(logger.handlers) == 1
		assert logger.level == logging.WARNING

	def test_json_format(self) -> None:
		setup_logging("INFO", json_format=True)
		handler = logging.getLogger("toolhost").handlers[0]
		assert isinstance(handler.formatter, _JsonFormatter)


class TestJsonFormatter:
	def test_format(self) -> None:
		record = logging.LogRecord("toolhost.x", logging.INFO, __file__, 1, "hello %s", ("world",), None)
		data = json.loads(_JsonFormatter().format(record))
		assert data["msg"] == "hello world"
		assert data["level"] == "INFO"
		assert data["logger"] == "toolhost.x"

	def test_includes_exception(self) -> None:
		try:
			raise ValueError("bad")
		except ValueError:
			record = logging.LogRecord("toolhost", logging.ERROR, __file__, 1, "oops", (), sys.exc_info())
		data = json.loads(_JsonFormatter().format(record))
		assert data["exception"] == "bad"

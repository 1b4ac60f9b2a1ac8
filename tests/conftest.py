"""Shared pytest fixtures and factory functions for toolhost tests."""

from __future__ import annotations

import asyncio
import logging
import textwrap
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from toolhost.config import DispatchConfig, GatesConfig, MetricsConfig, RegistryConfig
from toolhost.dispatch import DispatchEngine
from toolhost.events import Event
from toolhost.gates import ValidationGateEngine
from toolhost.models import ToolDescriptor, WorkflowInstance
from toolhost.registry import ToolRegistry

ECHO_SCHEMA: dict[str, Any] = {
	"type": "object",
	"properties": {"text": {"type": "string"}},
	"required": ["text"],
}


async def echo_handler(args: dict[str, Any], context: dict[str, Any]) -> str:
	return args["text"]


async def slow_handler(args: dict[str, Any], context: dict[str, Any]) -> str:
	await asyncio.sleep(args.get("delay", 0.5))
	return "late"


async def failing_handler(args: dict[str, Any], context: dict[str, Any]) -> str:
	raise RuntimeError("boom")


def make_descriptor(**overrides: Any) -> ToolDescriptor:
	"""Create a ToolDescriptor with sensible defaults, overridable via kwargs."""
	defaults: dict[str, Any] = {
		"name": "echo",
		"description": "Echo the text argument",
		"execute": echo_handler,
		"category": "util",
		"input_schema": ECHO_SCHEMA,
	}
	defaults.update(overrides)
	return ToolDescriptor(**defaults)


def make_instance(**overrides: Any) -> WorkflowInstance:
	"""Create a WorkflowInstance with sensible defaults, overridable via kwargs."""
	defaults: dict[str, Any] = {
		"instance_id": "wf1",
		"workflow_type": "feature",
	}
	defaults.update(overrides)
	return WorkflowInstance(**defaults)


def write_tool_file(directory: Path, filename: str, body: str) -> Path:
	"""Write a dedented tool module and return its path."""
	path = directory / filename
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(textwrap.dedent(body), encoding="utf-8")
	return path


ECHO_TOOL_MODULE = """
	from toolhost.models import ToolDescriptor


	async def _echo(args, context):
		return args["text"]


	def register_tools(registrar):
		registrar.add(ToolDescriptor(
			name="file_echo",
			description="Echo from a tool file",
			execute=_echo,
			category="files",
			input_schema={"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
		))
"""


class Recorder:
	"""Listener that keeps every event it receives."""

	def __init__(self) -> None:
		self.events: list[Event] = []

	def __call__(self, event: Event) -> None:
		self.events.append(event)

	def of_type(self, cls: type) -> list[Any]:
		return [e for e in self.events if isinstance(e, cls)]


@pytest.fixture(autouse=True)
def _isolate_logging() -> Iterator[None]:
	"""Undo handlers and levels that setup_logging() installs on the toolhost logger."""
	logger = logging.getLogger("toolhost")
	saved_handlers, saved_level = list(logger.handlers), logger.level
	logger.handlers.clear()
	yield
	logger.handlers[:] = saved_handlers
	logger.setLevel(saved_level)


@pytest.fixture()
def tools_dir(tmp_path: Path) -> Path:
	path = tmp_path / "tools"
	path.mkdir()
	return path


@pytest.fixture()
def recorder() -> Recorder:
	return Recorder()


@pytest.fixture()
def registry(tools_dir: Path, recorder: Recorder) -> ToolRegistry:
	return ToolRegistry(RegistryConfig(tools_dir=str(tools_dir), watch_interval_s=0.05), listeners=[recorder])


@pytest.fixture()
def engine(registry: ToolRegistry, recorder: Recorder) -> DispatchEngine:
	return DispatchEngine(registry, DispatchConfig(default_timeout_s=1.0), listeners=[recorder])


@pytest.fixture()
def gate_engine(tmp_path: Path, recorder: Recorder) -> ValidationGateEngine:
	config = GatesConfig(config_path=str(tmp_path / "custom-gates.json"))
	return ValidationGateEngine(config, listeners=[recorder])


@pytest.fixture()
def metrics_config(tmp_path: Path) -> MetricsConfig:
	return MetricsConfig(storage_dir=str(tmp_path / "tracking"), reporting_enabled=False)

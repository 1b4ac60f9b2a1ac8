"""Composition root: builds and wires every component from a HostConfig."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from toolhost.aggregator import MetricsAggregator
from toolhost.config import HostConfig, apply_env_overrides, load_config
from toolhost.dispatch import DispatchEngine
from toolhost.docs import generate_docs
from toolhost.event_stream import EventStream
from toolhost.events import TOOLS_RELOADED, Event, Listener, RegistryEvent, notify
from toolhost.gates import ValidationGateEngine
from toolhost.registry import ToolRegistry
from toolhost.tracing import HostTracer

logger = logging.getLogger(__name__)


def load_host_config(path: str | Path | None) -> HostConfig:
	"""Load a config file, or fall back to defaults plus environment."""
	if path is not None and Path(path).exists():
		return load_config(path)
	return apply_env_overrides(HostConfig())


class ToolHost:
	"""Owns the registry, dispatch engine, gate engine and aggregator.

	Observers are wired here and nowhere else: the aggregator and the
	optional JSONL event stream listen to dispatch and gate events, the
	event stream also records registry changes.
	"""

	def __init__(self, config: HostConfig | None = None) -> None:
		self.config = config or HostConfig()
		self.tracer = HostTracer(self.config.tracing)

		self.event_stream: EventStream | None = None
		if self.config.events.path:
			self.event_stream = EventStream(Path(self.config.events.path))

		self.aggregator = MetricsAggregator(self.config.metrics)

		self._observers: list[Listener] = [self.aggregator]
		if self.event_stream is not None:
			self._observers.append(self.event_stream)

		registry_listeners: list[Listener] = [self._on_registry_event]
		if self.event_stream is not None:
			registry_listeners.append(self.event_stream)
		self.registry = ToolRegistry(self.config.registry, listeners=registry_listeners)
		self.dispatch = DispatchEngine(
			self.registry, self.config.dispatch, listeners=self._observers, tracer=self.tracer,
		)
		self.gates = ValidationGateEngine(self.config.gates, listeners=self._observers, tracer=self.tracer)
		self._started = False

	@classmethod
	def from_config_file(cls, path: str | Path | None) -> ToolHost:
		return cls(load_host_config(path))

	async def start(self, discover: bool = True) -> None:
		if self._started:
			return
		if self.event_stream is not None:
			self.event_stream.open()
		if self.config.metrics.enabled:
			self.aggregator.load()
		if discover:
			await self.registry.discover()
			if self.config.registry.hot_reload:
				await self.registry.watch()
			if self.config.registry.generate_docs:
				self.write_docs()
		await self.aggregator.start()
		self._started = True
		logger.info(
			"Tool host %s %s started with %d tools",
			self.config.server.name, self.config.server.version, len(self.registry),
		)

	async def close(self) -> None:
		await self.registry.close()
		finished = await self.dispatch.drain(timeout=self.config.dispatch.default_timeout_s)
		if finished:
			logger.info("Drained %d detached tool calls", finished)
		await self.aggregator.stop()
		if self.event_stream is not None:
			self.event_stream.close()
		self._started = False

	async def __aenter__(self) -> ToolHost:
		await self.start()
		return self

	async def __aexit__(self, *exc: Any) -> None:
		await self.close()

	def record(self, event: Event) -> None:
		"""Feed a workflow lifecycle event to the observers."""
		notify(self._observers, event)

	def write_docs(self, output_dir: Path | None = None) -> tuple[Path, Path]:
		return generate_docs(
			self.registry,
			output_dir or self.config.registry.resolved_docs_dir,
			title=f"{self.config.server.name} tools",
			version=self.config.server.version,
		)

	def _on_registry_event(self, event: Event) -> None:
		if not isinstance(event, RegistryEvent):
			return
		if event.kind == TOOLS_RELOADED and self.config.registry.generate_docs:
			try:
				self.write_docs()
			except OSError as exc:
				logger.warning("Could not regenerate tool docs: %s", exc)

	def status(self) -> dict[str, Any]:
		return {
			"server": {"name": self.config.server.name, "version": self.config.server.version},
			"registry": self.registry.stats(),
			"dispatch": self.dispatch.stats(),
			"gates": len(self.gates.gates),
			"workflows": self.aggregator.realtime(),
		}

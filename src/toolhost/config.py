"""TOML configuration loader for the tool host."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class ServerConfig:
	"""Identity advertised to protocol clients."""

	name: str = "toolhost"
	version: str = "0.1.0"


@dataclass
class RegistryConfig:
	"""Tool discovery and hot reload settings."""

	tools_dir: str = "tools"
	hot_reload: bool = True
	watch_interval_s: float = 1.0
	generate_docs: bool = False
	docs_dir: str = ""  # empty = tools_dir
	max_tools: int = 100

	@property
	def resolved_tools_dir(self) -> Path:
		return Path(os.path.expanduser(self.tools_dir)).resolve()

	@property
	def resolved_docs_dir(self) -> Path:
		if not self.docs_dir:
			return self.resolved_tools_dir
		return Path(os.path.expanduser(self.docs_dir)).resolve()


@dataclass
class DispatchConfig:
	"""Tool call settings."""

	default_timeout_s: float = 30.0


@dataclass
class GatesConfig:
	"""Validation gate settings."""

	config_path: str = ".toolhost/custom-gates.json"
	default_policy: str = "flexible"  # strict | flexible | development

	@property
	def resolved_config_path(self) -> Path | None:
		if not self.config_path:
			return None
		return Path(os.path.expanduser(self.config_path))


@dataclass
class MetricsConfig:
	"""Workflow tracking and reporting settings."""

	enabled: bool = True
	storage_dir: str = ".toolhost/tracking"
	reporting_enabled: bool = True
	reporting_interval_s: float = 3600.0

	@property
	def resolved_storage_dir(self) -> Path:
		return Path(os.path.expanduser(self.storage_dir))


@dataclass
class EventsConfig:
	"""JSONL event stream settings."""

	path: str = ""  # empty = disabled


@dataclass
class TracingConfig:
	"""OpenTelemetry tracing settings."""

	enabled: bool = False
	service_name: str = "toolhost"
	exporter: str = "console"  # console | otlp | none
	otlp_endpoint: str = "http://localhost:4317"


@dataclass
class LoggingConfig:
	level: str = "INFO"
	json_format: bool = False


@dataclass
class HostConfig:
	"""Top-level tool host configuration."""

	server: ServerConfig = field(default_factory=ServerConfig)
	registry: RegistryConfig = field(default_factory=RegistryConfig)
	dispatch: DispatchConfig = field(default_factory=DispatchConfig)
	gates: GatesConfig = field(default_factory=GatesConfig)
	metrics: MetricsConfig = field(default_factory=MetricsConfig)
	events: EventsConfig = field(default_factory=EventsConfig)
	tracing: TracingConfig = field(default_factory=TracingConfig)
	logging: LoggingConfig = field(default_factory=LoggingConfig)


def _build_server(data: dict[str, Any]) -> ServerConfig:
	sc = ServerConfig()
	if "name" in data:
		sc.name = str(data["name"])
	if "version" in data:
		sc.version = str(data["version"])
	return sc


def _build_registry(data: dict[str, Any]) -> RegistryConfig:
	rc = RegistryConfig()
	if "tools_dir" in data:
		rc.tools_dir = str(data["tools_dir"])
	if "hot_reload" in data:
		rc.hot_reload = bool(data["hot_reload"])
	if "watch_interval_s" in data:
		rc.watch_interval_s = float(data["watch_interval_s"])
	if "generate_docs" in data:
		rc.generate_docs = bool(data["generate_docs"])
	if "docs_dir" in data:
		rc.docs_dir = str(data["docs_dir"])
	if "max_tools" in data:
		rc.max_tools = int(data["max_tools"])
	return rc


def _build_dispatch(data: dict[str, Any]) -> DispatchConfig:
	dc = DispatchConfig()
	if "default_timeout_s" in data:
		dc.default_timeout_s = float(data["default_timeout_s"])
	return dc


def _build_gates(data: dict[str, Any]) -> GatesConfig:
	gc = GatesConfig()
	if "config_path" in data:
		gc.config_path = str(data["config_path"])
	if "default_policy" in data:
		gc.default_policy = str(data["default_policy"])
	return gc


def _build_metrics(data: dict[str, Any]) -> MetricsConfig:
	mc = MetricsConfig()
	if "enabled" in data:
		mc.enabled = bool(data["enabled"])
	if "storage_dir" in data:
		mc.storage_dir = str(data["storage_dir"])
	if "reporting_enabled" in data:
		mc.reporting_enabled = bool(data["reporting_enabled"])
	if "reporting_interval_s" in data:
		mc.reporting_interval_s = float(data["reporting_interval_s"])
	return mc


def _build_events(data: dict[str, Any]) -> EventsConfig:
	ec = EventsConfig()
	if "path" in data:
		ec.path = str(data["path"])
	return ec


def _build_tracing(data: dict[str, Any]) -> TracingConfig:
	tc = TracingConfig()
	if "enabled" in data:
		tc.enabled = bool(data["enabled"])
	if "service_name" in data:
		tc.service_name = str(data["service_name"])
	if "exporter" in data:
		tc.exporter = str(data["exporter"])
	if "otlp_endpoint" in data:
		tc.otlp_endpoint = str(data["otlp_endpoint"])
	return tc


def _build_logging(data: dict[str, Any]) -> LoggingConfig:
	lc = LoggingConfig()
	if "level" in data:
		lc.level = str(data["level"])
	if "json_format" in data:
		lc.json_format = bool(data["json_format"])
	return lc


def apply_env_overrides(config: HostConfig, environ: dict[str, str] | None = None) -> HostConfig:
	"""Apply TOOLHOST_* environment variables on top of a loaded config."""
	env = os.environ if environ is None else environ
	if env.get("TOOLHOST_TOOLS_DIR"):
		config.registry.tools_dir = env["TOOLHOST_TOOLS_DIR"]
	if env.get("TOOLHOST_GATE_CONFIG"):
		config.gates.config_path = env["TOOLHOST_GATE_CONFIG"]
	if env.get("TOOLHOST_POLICY"):
		config.gates.default_policy = env["TOOLHOST_POLICY"]
	if env.get("TOOLHOST_TIMEOUT"):
		try:
			config.dispatch.default_timeout_s = float(env["TOOLHOST_TIMEOUT"])
		except ValueError as exc:
			raise ValueError(f"TOOLHOST_TIMEOUT must be a number: {env['TOOLHOST_TIMEOUT']!r}") from exc
	return config


def load_config(path: str | Path) -> HostConfig:
	"""Load a toolhost.toml config file.

	Args:
		path: Path to the TOML config file.

	Returns:
		Parsed HostConfig with environment overrides applied.

	Raises:
		FileNotFoundError: If config file doesn't exist.
		tomllib.TOMLDecodeError: If config is invalid TOML.
	"""
	config_path = Path(path)
	if not config_path.exists():
		raise FileNotFoundError(f"Config file not found: {config_path}")

	with open(config_path, "rb") as f:
		data = tomllib.load(f)

	hc = HostConfig()
	if "server" in data:
		hc.server = _build_server(data["server"])
	if "registry" in data:
		hc.registry = _build_registry(data["registry"])
	if "dispatch" in data:
		hc.dispatch = _build_dispatch(data["dispatch"])
	if "gates" in data:
		hc.gates = _build_gates(data["gates"])
	if "metrics" in data:
		hc.metrics = _build_metrics(data["metrics"])
	if "events" in data:
		hc.events = _build_events(data["events"])
	if "tracing" in data:
		hc.tracing = _build_tracing(data["tracing"])
	if "logging" in data:
		hc.logging = _build_logging(data["logging"])
	return apply_env_overrides(hc)


_KNOWN_POLICIES = ("strict", "flexible", "development")


def validate_config(config: HostConfig) -> list[tuple[str, str]]:
	"""Perform semantic validation of a loaded HostConfig.

	Returns a list of (level, message) tuples where level is 'error' or 'warning'.
	"""
	issues: list[tuple[str, str]] = []

	tools_dir = config.registry.resolved_tools_dir
	if not tools_dir.exists():
		issues.append(("warning", f"registry.tools_dir does not exist: {tools_dir}"))
	elif not tools_dir.is_dir():
		issues.append(("error", f"registry.tools_dir is not a directory: {tools_dir}"))

	if config.dispatch.default_timeout_s <= 0:
		issues.append(("error", f"dispatch.default_timeout_s must be positive: {config.dispatch.default_timeout_s}"))
	elif config.dispatch.default_timeout_s > 600:
		issues.append(("warning", f"dispatch.default_timeout_s is very high: {config.dispatch.default_timeout_s}s"))

	if config.registry.watch_interval_s <= 0:
		issues.append(("error", "registry.watch_interval_s must be positive"))
	if config.registry.max_tools <= 0:
		issues.append(("error", "registry.max_tools must be positive"))

	if config.gates.default_policy not in _KNOWN_POLICIES:
		issues.append((
			"warning",
			f"gates.default_policy is not a built-in policy: {config.gates.default_policy}",
		))
	gate_path = config.gates.resolved_config_path
	if gate_path is not None and gate_path.exists() and not gate_path.is_file():
		issues.append(("error", f"gates.config_path is not a file: {gate_path}"))

	if config.metrics.reporting_interval_s < 60:
		issues.append(("warning", f"metrics.reporting_interval_s is very low: {config.metrics.reporting_interval_s}s"))

	if config.tracing.exporter not in ("console", "otlp", "none"):
		issues.append(("error", f"tracing.exporter must be console, otlp or none: {config.tracing.exporter}"))

	return issues

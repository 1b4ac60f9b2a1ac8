"""Tool registry -- discovery, validation, indexing and hot reload.

The registry state is an immutable, generation-stamped RegistrySnapshot.
Every mutation builds a new snapshot from the current one and swaps the
reference in plain synchronous code, so a reader on the event loop always
sees either the previous or the next complete mapping. Async writers
(discover, reload) serialise on an asyncio.Lock and import tool modules in a
worker thread before taking the current snapshot and swapping.

Tool files expose their tools through a module-level entrypoint:

	def register_tools(registrar):
		registrar.add(ToolDescriptor(name="echo", description="...", execute=echo))

Modules without `register_tools` fall back to every module-level value that
structurally satisfies the tool contract (name, description, execute).
"""

from __future__ import annotations

import asyncio
import hashlib
import importlib.machinery
import importlib.util
import logging
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from types import CodeType, MappingProxyType, ModuleType
from typing import Any

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from toolhost.config import RegistryConfig
from toolhost.errors import RegistrationConflictError, ValidationError
from toolhost.events import (
	TOOL_ENABLED_CHANGED,
	TOOL_LOAD_ERROR,
	TOOL_REGISTERED,
	TOOL_UNREGISTERED,
	TOOLS_RELOADED,
	Listener,
	RegistryEvent,
	notify,
)
from toolhost.models import TOOL_NAME_RE, RegistryEntry, ToolDescriptor, looks_like_tool
from toolhost.watcher import ToolWatcher, scan_tree

logger = logging.getLogger(__name__)

ENTRYPOINT = "register_tools"
_MODULE_PREFIX = "_toolhost_tools_"


def is_tool_file(path: Path) -> bool:
	"""Whether a path looks like a loadable tool module."""
	name = path.name
	if path.suffix != ".py":
		return False
	if name.startswith(".") or name.startswith("__"):
		return False
	if name.startswith("test_") or name.endswith("_test.py") or name == "conftest.py":
		return False
	return True


def validate_descriptor(descriptor: ToolDescriptor) -> list[str]:
	"""Return every contract violation of a descriptor (empty if valid)."""
	errors: list[str] = []
	name = descriptor.name
	if not isinstance(name, str) or not name:
		errors.append("name is required and must be a non-empty string")
	elif not TOOL_NAME_RE.match(name):
		errors.append(f"name '{name}' may only contain letters, digits, '_' and '-'")
	if not isinstance(descriptor.description, str) or not descriptor.description:
		errors.append("description is required and must be a non-empty string")
	if not callable(descriptor.execute):
		errors.append("execute must be a callable")
	if not isinstance(descriptor.category, str):
		errors.append("category must be a string")
	if not isinstance(descriptor.version, str):
		errors.append("version must be a string")
	schema = descriptor.input_schema
	if schema is not None:
		if not isinstance(schema, Mapping):
			errors.append("input_schema must be an object")
		else:
			try:
				Draft7Validator.check_schema(schema)
			except SchemaError as exc:
				errors.append(f"input_schema is not a valid JSON Schema: {exc.message}")
	if descriptor.validate is not None and not callable(descriptor.validate):
		errors.append("validate must be a callable when present")
	return errors


class ToolCollector:
	"""The registrar handed to a tool module's `register_tools` entrypoint."""

	def __init__(self, source_file: str | None = None) -> None:
		self.source_file = source_file
		self.tools: list[ToolDescriptor] = []

	def add(self, tool: Any) -> ToolDescriptor:
		descriptor = ToolDescriptor.from_object(tool)
		self.tools.append(descriptor)
		return descriptor


def _module_name(path: str) -> str:
	digest = hashlib.sha1(path.encode("utf-8")).hexdigest()[:16]
	return f"{_MODULE_PREFIX}{digest}"


class _SourceLoader(importlib.machinery.SourceFileLoader):
	"""Loader that ignores bytecode caches, which key on whole-second mtimes."""

	def get_code(self, fullname: str) -> CodeType:
		path = self.get_filename(fullname)
		return self.source_to_code(self.get_data(path), path)


def _import_file(path: str) -> ModuleType:
	module_name = _module_name(path)
	loader = _SourceLoader(module_name, path)
	spec = importlib.util.spec_from_file_location(module_name, path, loader=loader)
	if spec is None:
		raise ImportError(f"Cannot load module from {path}")
	module = importlib.util.module_from_spec(spec)
	# dataclasses and pickling resolve classes through sys.modules
	sys.modules[module_name] = module
	try:
		loader.exec_module(module)
	except BaseException:
		sys.modules.pop(module_name, None)
		raise
	return module


def collect_tools(module: ModuleType, source_file: str | None = None) -> list[ToolDescriptor]:
	"""Ask a loaded module for its tools."""
	entrypoint = getattr(module, ENTRYPOINT, None)
	if callable(entrypoint):
		collector = ToolCollector(source_file)
		entrypoint(collector)
		return collector.tools
	seen: set[int] = set()
	tools: list[ToolDescriptor] = []
	for attr, value in vars(module).items():
		if attr.startswith("_") or id(value) in seen:
			continue
		if looks_like_tool(value):
			seen.add(id(value))
			tools.append(ToolDescriptor.from_object(value))
	return tools


def load_tool_file(path: str) -> list[ToolDescriptor]:
	"""Import a tool file and collect its tools. Blocking; run off the loop."""
	return collect_tools(_import_file(path), path)


def _index_categories(entries: Mapping[str, RegistryEntry]) -> dict[str, tuple[str, ...]]:
	categories: dict[str, list[str]] = {}
	for name in sorted(entries):
		categories.setdefault(entries[name].category, []).append(name)
	return {cat: tuple(names) for cat, names in categories.items()}


@dataclass(frozen=True)
class RegistrySnapshot:
	"""One complete, never-mutated view of the registry."""

	generation: int = 0
	entries: Mapping[str, RegistryEntry] = field(default_factory=lambda: MappingProxyType({}))
	categories: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))

	@classmethod
	def build(cls, generation: int, entries: dict[str, RegistryEntry]) -> RegistrySnapshot:
		return cls(
			generation=generation,
			entries=MappingProxyType(dict(entries)),
			categories=MappingProxyType(_index_categories(entries)),
		)

	def get(self, name: str) -> RegistryEntry | None:
		return self.entries.get(name)

	def __len__(self) -> int:
		return len(self.entries)

	def __contains__(self, name: object) -> bool:
		return name in self.entries


@dataclass
class _FileUpdate:
	entries: dict[str, RegistryEntry]
	removed: list[RegistryEntry]
	added: list[RegistryEntry]
	failures: list[tuple[str, str]]  # (tool label, message)


class ToolRegistry:
	"""Authoritative mapping of tool name to RegistryEntry."""

	def __init__(
		self,
		config: RegistryConfig | None = None,
		listeners: Iterable[Listener] = (),
	) -> None:
		self.config = config or RegistryConfig()
		self._listeners: list[Listener] = list(listeners)
		self._snapshot = RegistrySnapshot()
		self._lock = asyncio.Lock()
		self._watcher: ToolWatcher | None = None
		self.load_errors = 0
		self.last_scan: str | None = None

	# -- observers --

	def add_listener(self, listener: Listener) -> None:
		self._listeners.append(listener)

	def _emit(self, kind: str, tool_name: str = "", source_file: str | None = None, **kwargs: Any) -> None:
		notify(self._listeners, RegistryEvent(kind=kind, tool_name=tool_name, source_file=source_file, **kwargs))

	# -- reads --

	def snapshot(self) -> RegistrySnapshot:
		return self._snapshot

	@property
	def generation(self) -> int:
		return self._snapshot.generation

	def get(self, name: str) -> RegistryEntry | None:
		return self._snapshot.get(name)

	def list(
		self,
		category: str | None = None,
		enabled: bool | None = None,
		search: str | None = None,
		version: str | None = None,
	) -> list[RegistryEntry]:
		"""Filtered entries, sorted by name."""
		snap = self._snapshot
		needle = search.lower() if search else None
		result: list[RegistryEntry] = []
		for name in sorted(snap.entries):
			entry = snap.entries[name]
			if category is not None and entry.category != category:
				continue
			if enabled is not None and entry.enabled != enabled:
				continue
			if version is not None and entry.descriptor.version != version:
				continue
			if needle is not None:
				haystack = f"{entry.name}\n{entry.descriptor.description}".lower()
				if needle not in haystack:
					continue
			result.append(entry)
		return result

	def __len__(self) -> int:
		return len(self._snapshot)

	# -- writes --

	def _swap(self, entries: dict[str, RegistryEntry]) -> RegistrySnapshot:
		self._snapshot = RegistrySnapshot.build(self._snapshot.generation + 1, entries)
		return self._snapshot

	def register(self, descriptor: Any, source_file: str | None = None) -> RegistryEntry:
		"""Validate and insert one tool.

		Raises:
			ValidationError: descriptor violates the tool contract, or the
				registry is full.
			RegistrationConflictError: a tool with the same name exists.
		"""
		descriptor = ToolDescriptor.from_object(descriptor)
		errors = validate_descriptor(descriptor)
		label = descriptor.name if isinstance(descriptor.name, str) else ""
		if errors:
			raise ValidationError(errors, subject=label)
		current = self._snapshot
		if descriptor.name in current:
			raise RegistrationConflictError(descriptor.name)
		if len(current) >= self.config.max_tools:
			raise ValidationError([f"registry is full ({self.config.max_tools} tools)"], subject=label)

		entry = RegistryEntry(descriptor=descriptor, source_file=source_file, enabled=descriptor.enabled)
		entries = dict(current.entries)
		entries[descriptor.name] = entry
		self._swap(entries)
		logger.debug("Registered tool %s (%s)", descriptor.name, descriptor.category)
		self._emit(TOOL_REGISTERED, descriptor.name, source_file)
		return entry

	def unregister(self, name: str) -> bool:
		current = self._snapshot
		entry = current.get(name)
		if entry is None:
			return False
		entries = dict(current.entries)
		del entries[name]
		self._swap(entries)
		logger.debug("Unregistered tool %s", name)
		self._emit(TOOL_UNREGISTERED, name, entry.source_file)
		return True

	def set_enabled(self, name: str, enabled: bool) -> bool:
		current = self._snapshot
		entry = current.get(name)
		if entry is None:
			return False
		entries = dict(current.entries)
		# metrics object is shared so in-flight dispatches keep counting
		entries[name] = replace(entry, enabled=enabled)
		self._swap(entries)
		self._emit(TOOL_ENABLED_CHANGED, name, entry.source_file, details={"enabled": enabled})
		return True

	# -- discovery & reload --

	def _record_load_error(self, source_file: str, message: str, tool_name: str = "") -> None:
		self.load_errors += 1
		logger.warning("Failed to load tool%s from %s: %s", f" {tool_name}" if tool_name else "", source_file, message)
		self._emit(TOOL_LOAD_ERROR, tool_name, source_file, error=message)

	def _plan_file_update(
		self,
		current: RegistrySnapshot,
		source_file: str,
		descriptors: list[ToolDescriptor] | None,
	) -> _FileUpdate:
		"""Compute the mapping after replacing one file's tools.

		descriptors=None keeps the file's current tools untouched.
		"""
		if descriptors is None:
			return _FileUpdate(dict(current.entries), [], [], [])
		entries = {n: e for n, e in current.entries.items() if e.source_file != source_file}
		removed = [e for e in current.entries.values() if e.source_file == source_file]
		added: list[RegistryEntry] = []
		failures: list[tuple[str, str]] = []
		for descriptor in descriptors:
			label = descriptor.name if isinstance(descriptor.name, str) and descriptor.name else "<unnamed>"
			errors = validate_descriptor(descriptor)
			if errors:
				failures.append((label, str(ValidationError(errors, subject=label))))
				continue
			if descriptor.name in entries:
				failures.append((label, str(RegistrationConflictError(descriptor.name))))
				continue
			if len(entries) >= self.config.max_tools:
				failures.append((label, f"registry is full ({self.config.max_tools} tools)"))
				continue
			entry = RegistryEntry(descriptor=descriptor, source_file=source_file, enabled=descriptor.enabled)
			entries[descriptor.name] = entry
			added.append(entry)
		return _FileUpdate(entries, removed, added, failures)

	async def _load(self, source_file: str) -> list[ToolDescriptor] | None:
		"""Import a file off the loop. None means the import failed."""
		try:
			return await asyncio.to_thread(load_tool_file, source_file)
		except Exception as exc:
			self._record_load_error(source_file, f"{type(exc).__name__}: {exc}")
			return None

	def _publish(self, source_file: str, update: _FileUpdate) -> None:
		self._swap(update.entries)
		for name, message in update.failures:
			self._record_load_error(source_file, message, tool_name=name)

	async def discover(self, root: str | Path | None = None) -> int:
		"""Scan a directory tree and register every tool found.

		Returns the number of tools registered by this scan. Files already
		known to the registry have their tools replaced.
		"""
		root_path = Path(root).resolve() if root is not None else self.config.resolved_tools_dir
		if not root_path.is_dir():
			logger.warning("Tools directory does not exist: %s", root_path)
			self.last_scan = datetime.now(timezone.utc).isoformat()
			return 0

		registered = 0
		async with self._lock:
			files = sorted(await asyncio.to_thread(scan_tree, root_path, is_tool_file))
			for source_file in files:
				descriptors = await self._load(source_file)
				if descriptors is None:
					continue
				update = self._plan_file_update(self._snapshot, source_file, descriptors)
				self._publish(source_file, update)
				for entry in update.added:
					self._emit(TOOL_REGISTERED, entry.name, source_file)
				registered += len(update.added)
			self.last_scan = datetime.now(timezone.utc).isoformat()

		logger.info(
			"Discovered %d tools in %s (%d files, %d load errors total)",
			registered, root_path, len(files), self.load_errors,
		)
		return registered

	async def reload_file(self, path: str | Path) -> list[RegistryEntry]:
		"""Replace one file's tools in a single snapshot swap.

		If the file no longer exists (or stopped being a tool file) its tools
		are removed. If it exists but fails to import, its previous tools stay
		registered and a load error is recorded. Returns the entries now
		registered from the file.
		"""
		source_file = str(Path(path).resolve())
		async with self._lock:
			file_path = Path(source_file)
			if file_path.is_file() and is_tool_file(file_path):
				descriptors = await self._load(source_file)
			else:
				descriptors = []
			update = self._plan_file_update(self._snapshot, source_file, descriptors)
			self._publish(source_file, update)

		for entry in update.removed:
			self._emit(TOOL_UNREGISTERED, entry.name, source_file)
		for entry in update.added:
			self._emit(TOOL_REGISTERED, entry.name, source_file)
		self._emit(
			TOOLS_RELOADED,
			source_file=source_file,
			details={
				"removed": [e.name for e in update.removed],
				"registered": [e.name for e in update.added],
				"generation": self.generation,
			},
		)
		if descriptors is not None:
			logger.info(
				"Reloaded %s: %d removed, %d registered",
				source_file, len(update.removed), len(update.added),
			)
		return update.added

	async def _on_file_event(self, kind: str, path: str) -> None:
		logger.debug("Tool file %s: %s", kind, path)
		await self.reload_file(path)

	async def watch(self, root: str | Path | None = None) -> ToolWatcher:
		"""Start hot reload for a directory tree."""
		root_path = Path(root).resolve() if root is not None else self.config.resolved_tools_dir
		if self._watcher is not None:
			await self._watcher.stop()
		self._watcher = ToolWatcher(
			root_path,
			self._on_file_event,
			is_tool_file,
			interval_s=self.config.watch_interval_s,
		)
		await self._watcher.start()
		return self._watcher

	@property
	def watching(self) -> bool:
		return self._watcher is not None and self._watcher.running

	async def close(self) -> None:
		if self._watcher is not None:
			await self._watcher.stop()
			self._watcher = None

	# -- stats --

	def stats(self) -> dict[str, Any]:
		snap = self._snapshot
		enabled = sum(1 for e in snap.entries.values() if e.enabled)
		return {
			"total_tools": len(snap),
			"enabled_tools": enabled,
			"disabled_tools": len(snap) - enabled,
			"load_errors": self.load_errors,
			"last_scan": self.last_scan,
			"generation": snap.generation,
			"categories": {cat: list(names) for cat, names in snap.categories.items()},
			"tools_dir": str(self.config.resolved_tools_dir),
			"hot_reload": self.watching,
		}

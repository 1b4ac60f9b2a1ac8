"""Tool catalogue generation: a markdown document and an OpenAPI schema."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from toolhost.models import RegistryEntry
from toolhost.registry import ToolRegistry

logger = logging.getLogger(__name__)

DOCS_FILENAME = "TOOLS.md"
SCHEMA_FILENAME = "tools-schema.json"

_RESULT_SCHEMA: dict[str, Any] = {
	"type": "object",
	"properties": {
		"content": {
			"type": "array",
			"items": {
				"type": "object",
				"properties": {"type": {"type": "string"}, "text": {"type": "string"}},
			},
		},
		"is_error": {"type": "boolean"},
		"metadata": {"type": "object"},
	},
}


def _group_by_category(entries: list[RegistryEntry]) -> dict[str, list[RegistryEntry]]:
	groups: dict[str, list[RegistryEntry]] = {}
	for entry in sorted(entries, key=lambda e: (e.category, e.name)):
		groups.setdefault(entry.category, []).append(entry)
	return groups


def build_markdown(entries: list[RegistryEntry], title: str = "Tool Catalogue", generated_at: str | None = None) -> str:
	generated_at = generated_at or datetime.now(timezone.utc).isoformat()
	lines = [
		f"# {title}",
		"",
		f"Generated: {generated_at}",
		f"Total Tools: {len(entries)}",
		"",
	]
	for category, tools in _group_by_category(entries).items():
		lines.append(f"## {category[:1].upper()}{category[1:]} Tools")
		lines.append("")
		for entry in tools:
			d = entry.descriptor
			lines.extend([
				f"### {d.name}",
				"",
				f"**Description:** {d.description}",
				"",
				f"**Version:** {d.version}",
				"",
				f"**Status:** {'Enabled' if entry.enabled else 'Disabled'}",
				"",
			])
			if d.input_schema is not None:
				lines.extend([
					"**Input Schema:**",
					"```json",
					json.dumps(d.input_schema, indent=2, default=str),
					"```",
					"",
				])
			lines.extend(["---", ""])
	return "\n".join(lines)


def build_openapi(entries: list[RegistryEntry], title: str = "Tool Catalogue", version: str = "1.0.0") -> dict[str, Any]:
	"""OpenAPI 3.0 document describing one POST operation per tool."""
	schema: dict[str, Any] = {
		"openapi": "3.0.0",
		"info": {"title": title, "version": version, "description": "Tools exposed by this host"},
		"paths": {},
		"components": {"schemas": {}},
	}
	for entry in sorted(entries, key=lambda e: e.name):
		d = entry.descriptor
		operation: dict[str, Any] = {
			"summary": d.description,
			"operationId": d.name,
			"tags": [d.category],
			"responses": {
				"200": {
					"description": "Tool execution result",
					"content": {"application/json": {"schema": _RESULT_SCHEMA}},
				},
			},
		}
		if d.input_schema is not None:
			schema["components"]["schemas"][f"{d.name}Input"] = d.input_schema
			operation["requestBody"] = {
				"content": {
					"application/json": {"schema": {"$ref": f"#/components/schemas/{d.name}Input"}},
				},
			}
		schema["paths"][f"/tools/{d.name}"] = {"post": operation}
	return schema


def generate_docs(
	registry: ToolRegistry,
	output_dir: Path,
	title: str = "Tool Catalogue",
	version: str = "1.0.0",
) -> tuple[Path, Path]:
	"""Write TOOLS.md and tools-schema.json for the live registry."""
	entries = registry.list()
	output_dir.mkdir(parents=True, exist_ok=True)
	docs_path = output_dir / DOCS_FILENAME
	schema_path = output_dir / SCHEMA_FILENAME
	docs_path.write_text(build_markdown(entries, title), encoding="utf-8")
	schema_path.write_text(json.dumps(build_openapi(entries, title, version), indent=2, default=str), encoding="utf-8")
	logger.info("Wrote tool docs for %d tools to %s", len(entries), output_dir)
	return docs_path, schema_path

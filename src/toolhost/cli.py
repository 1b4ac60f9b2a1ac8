"""CLI interface for toolhost."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from toolhost.config import load_config, validate_config
from toolhost.gates import ValidationGateEngine
from toolhost.host import ToolHost, load_host_config
from toolhost.metrics import setup_logging

DEFAULT_CONFIG = "toolhost.toml"


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="toolhost",
		description="Tool host - discover, serve and gate tools over MCP",
	)
	parser.add_argument("--log-level", default="WARNING", help="Log level for CLI commands")
	sub = parser.add_subparsers(dest="command")

	# toolhost serve
	serve = sub.add_parser("serve", help="Start the MCP server (stdio)")
	serve.add_argument("--config", default=DEFAULT_CONFIG)

	# toolhost tools
	tools = sub.add_parser("tools", help="Discover and list tools")
	tools.add_argument("--config", default=DEFAULT_CONFIG)
	tools.add_argument("--category", default=None)
	tools.add_argument("--search", default=None)
	enabled = tools.add_mutually_exclusive_group()
	enabled.add_argument("--enabled", dest="enabled", action="store_const", const=True, default=None)
	enabled.add_argument("--disabled", dest="enabled", action="store_const", const=False)
	tools.add_argument("--json", action="store_true", help="Emit JSON instead of text")

	# toolhost docs
	docs = sub.add_parser("docs", help="Generate TOOLS.md and tools-schema.json")
	docs.add_argument("--config", default=DEFAULT_CONFIG)
	docs.add_argument("--output", default=None, help="Output directory (default: registry.docs_dir)")

	# toolhost report
	report = sub.add_parser("report", help="Print a workflow metrics report")
	report.add_argument("--config", default=DEFAULT_CONFIG)
	report.add_argument("--time-range", default=None, help="e.g. 30d, 12h (default: all)")
	report.add_argument("--workflow-type", action="append", default=[], dest="workflow_types")
	report.add_argument("--save", action="store_true", help="Also write the report under reports/")

	# toolhost gates
	gates = sub.add_parser("gates", help="List validation gates")
	gates.add_argument("--config", default=DEFAULT_CONFIG)
	gates.add_argument("--phase", default=None, help="Only gates that apply when leaving this phase")

	# toolhost validate-config
	vc = sub.add_parser("validate-config", help="Validate config file semantically")
	vc.add_argument("--config", default=DEFAULT_CONFIG)

	return parser


def cmd_serve(args: argparse.Namespace) -> int:
	"""Start the MCP server."""
	try:
		from toolhost.mcp_server import run_mcp_server
	except ImportError:
		print("MCP dependencies not installed. Run: pip install -e .", file=sys.stderr)
		return 1

	run_mcp_server(args.config)
	return 0


def cmd_tools(args: argparse.Namespace) -> int:
	"""Discover tools and print them."""
	host = ToolHost(load_host_config(args.config))

	async def _discover() -> None:
		await host.registry.discover()

	asyncio.run(_discover())
	entries = host.registry.list(category=args.category, enabled=args.enabled, search=args.search)

	if args.json:
		print(json.dumps([e.to_dict() for e in entries], indent=2, default=str))
		return 0

	if not entries:
		print("No tools found.")
	for entry in entries:
		flag = "" if entry.enabled else " (disabled)"
		print(f"  {entry.name} [{entry.category}] v{entry.descriptor.version}{flag}: {entry.descriptor.description}")
	stats = host.registry.stats()
	print(f"\n{stats['total_tools']} tool(s), {stats['load_errors']} load error(s)")
	return 1 if stats["load_errors"] else 0


def cmd_docs(args: argparse.Namespace) -> int:
	"""Generate tool documentation."""
	host = ToolHost(load_host_config(args.config))

	async def _discover() -> None:
		await host.registry.discover()

	asyncio.run(_discover())
	output = Path(args.output) if args.output else None
	docs_path, schema_path = host.write_docs(output)
	print(f"Wrote {docs_path}")
	print(f"Wrote {schema_path}")
	return 0


def cmd_report(args: argparse.Namespace) -> int:
	"""Print a metrics report from persisted tracking data."""
	host = ToolHost(load_host_config(args.config))
	host.aggregator.load()
	try:
		report = host.aggregator.generate_report(
			time_range=args.time_range,
			workflow_types=args.workflow_types or None,
		)
	except ValueError as e:
		print(f"Error: {e}")
		return 1
	print(json.dumps(report, indent=2, default=str))
	if args.save:
		path = host.aggregator.save_report(report)
		print(f"Saved {path}", file=sys.stderr)
	return 0


def cmd_gates(args: argparse.Namespace) -> int:
	"""List gates, optionally for one phase."""
	config = load_host_config(args.config)
	engine = ValidationGateEngine(config.gates)
	gates = engine.gates_for_phase(args.phase) if args.phase else engine.gates
	if not gates:
		print("No gates apply.")
		return 0
	for gate in gates:
		marks = []
		if gate.is_blocking:
			marks.append("blocking")
		if gate.auto_fix:
			marks.append("auto-fix")
		if gate.custom:
			marks.append("custom")
		suffix = f" ({', '.join(marks)})" if marks else ""
		print(f"  {gate.id} [{gate.phase}/{gate.priority}]{suffix}: {', '.join(gate.rules)}")
	return 0


def cmd_validate_config(args: argparse.Namespace) -> int:
	"""Validate config file semantically."""
	config = load_config(args.config)
	issues = validate_config(config)

	errors = [(lvl, msg) for lvl, msg in issues if lvl == "error"]
	warnings = [(lvl, msg) for lvl, msg in issues if lvl == "warning"]

	for level, msg in issues:
		print(f"[{level.upper()}] {msg}")

	if not issues:
		print("Config OK")

	print(f"\n{len(errors)} error(s), {len(warnings)} warning(s)")
	return 1 if errors else 0


COMMANDS = {
	"serve": cmd_serve,
	"tools": cmd_tools,
	"docs": cmd_docs,
	"report": cmd_report,
	"gates": cmd_gates,
	"validate-config": cmd_validate_config,
}


def main(argv: list[str] | None = None) -> int:
	parser = build_parser()
	args = parser.parse_args(argv)
	setup_logging(args.log_level)

	if args.command is None:
		parser.print_help()
		return 0

	handler = COMMANDS.get(args.command)
	if handler is None:
		print(f"Unknown command: {args.command}")
		return 1

	try:
		return handler(args)
	except FileNotFoundError as e:
		print(f"Error: {e}")
		return 1


if __name__ == "__main__":
	sys.exit(main())

"""Tests for CLI argument parsing and commands."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import ECHO_TOOL_MODULE, write_tool_file

from toolhost.cli import build_parser, main


@pytest.fixture()
def config_file(tmp_path: Path, tools_dir: Path) -> Path:
	path = tmp_path / "toolhost.toml"
	path.write_text(
		f'[registry]\ntools_dir = "{tools_dir}"\n'
		f'[gates]\nconfig_path = "{tmp_path / "custom-gates.json"}"\n'
		f'[metrics]\nstorage_dir = "{tmp_path / "tracking"}"\nreporting_enabled = false\n'
	)
	return path


class TestArgParsing:
	def test_no_command_returns_0(self) -> None:
		assert main([]) == 0

	def test_tools_flags(self) -> None:
		args = build_parser().parse_args(["tools", "--category", "net", "--disabled", "--json"])
		assert args.command == "tools"
		assert args.category == "net"
		assert args.enabled is False
		assert args.json is True

	def test_report_workflow_types_append(self) -> None:
		args = build_parser().parse_args(["report", "--workflow-type", "a", "--workflow-type", "b"])
		assert args.workflow_types == ["a", "b"]

	def test_default_config_path(self) -> None:
		assert build_parser().parse_args(["gates"]).config == "toolhost.toml"


class TestTools:
	def test_lists_discovered_tools(self, config_file: Path, tools_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
		write_tool_file(tools_dir, "echo_tool.py", ECHO_TOOL_MODULE)
		assert main(["tools", "--config", str(config_file)]) == 0
		out = capsys.readouterr().out
		assert "file_echo [files]" in out
		assert "1 tool(s), 0 load error(s)" in out

	def test_json_output(self, config_file: Path, tools_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
		write_tool_file(tools_dir, "echo_tool.py", ECHO_TOOL_MODULE)
		assert main(["tools", "--config", str(config_file), "--json"]) == 0
		data = json.loads(capsys.readouterr().out)
		assert data[0]["name"] == "file_echo"

	def test_load_errors_exit_1(self, config_file: Path, tools_dir: Path) -> None:
		write_tool_file(tools_dir, "broken.py", "def oops(:\n")
		assert main(["tools", "--config", str(config_file)]) == 1


class TestDocs:
	def test_writes_docs(self, config_file: Path, tools_dir: Path, tmp_path: Path) -> None:
		write_tool_file(tools_dir, "echo_tool.py", ECHO_TOOL_MODULE)
		out = tmp_path / "out"
		assert main(["docs", "--config", str(config_file), "--output", str(out)]) == 0
		assert "file_echo" in (out / "TOOLS.md").read_text()
		assert (out / "tools-schema.json").exists()


class TestReport:
	def test_empty_report(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
		assert main(["report", "--config", str(config_file), "--time-range", "7d"]) == 0
		report = json.loads(capsys.readouterr().out)
		assert report["summary"]["total_workflows"] == 0

	def test_invalid_time_range(self, config_file: Path) -> None:
		assert main(["report", "--config", str(config_file), "--time-range", "forever"]) == 1

	def test_save(self, config_file: Path, tmp_path: Path) -> None:
		assert main(["report", "--config", str(config_file), "--save"]) == 0
		assert (tmp_path / "tracking" / "reports" / "comprehensive-latest.json").exists()


class TestGates:
	def test_phase_filter(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
		assert main(["gates", "--config", str(config_file), "--phase", "analysis"]) == 0
		out = capsys.readouterr().out
		assert "requirements_documented [analysis/high] (blocking)" in out
		assert "security_gate" not in out

	def test_no_gates(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
		assert main(["gates", "--config", str(config_file), "--phase", "retrospective"]) == 0
		assert "No gates apply." in capsys.readouterr().out


class TestValidateConfig:
	def test_ok(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
		assert main(["validate-config", "--config", str(config_file)]) == 0
		assert "Config OK" in capsys.readouterr().out

	def test_errors_exit_1(self, tmp_path: Path, tools_dir: Path) -> None:
		path = tmp_path / "bad.toml"
		path.write_text(f'[registry]\ntools_dir = "{tools_dir}"\n[dispatch]\ndefault_timeout_s = 0\n')
		assert main(["validate-config", "--config", str(path)]) == 1

	def test_missing_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
		assert main(["validate-config", "--config", str(tmp_path / "nope.toml")]) == 1
		assert "Config file not found" in capsys.readouterr().out


class TestServe:
	def test_delegates_to_mcp_server(self, config_file: Path) -> None:
		pytest.importorskip("mcp", reason="mcp package not installed")
		with patch("toolhost.mcp_server.run_mcp_server") as run:
			assert main(["serve", "--config", str(config_file)]) == 0
		run.assert_called_once_with(str(config_file))

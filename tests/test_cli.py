"""
CLI interface tests for dll-depends.
Tests the command-line interface and main entry point.
"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import FakeImportExtractor
from dll_depends.error_handling import ToolNotFoundError
from dll_depends.main import cli


@pytest.fixture
def sample_binary(temp_dir):
    """app.exe importing one present and one missing library."""
    (temp_dir / "app.exe").write_bytes(b"MZ")
    (temp_dir / "present.dll").write_bytes(b"MZ")
    return temp_dir / "app.exe"


@pytest.fixture
def fake_extractor():
    return FakeImportExtractor(
        {"app.exe": ["present.dll", "missing_runtime.dll"], "present.dll": []}
    )


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_cli_help(self):
        """Test CLI help message."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "dll-depends" in result.output.lower()
        assert "--tree-print" in result.output
        assert "--dumpbin" in result.output

    def test_cli_version(self):
        """Test CLI version display."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "1.0.0" in result.output

    def test_sample_config(self):
        """Sample configuration is valid JSON and needs no target."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--sample-config"])

        assert result.exit_code == 0
        sample = json.loads(result.output)
        assert sample["extractor"]["backend"] == "dumpbin"


class TestResolveCommand:
    """Test resolving a binary end to end."""

    def test_table_output(self, sample_binary, fake_extractor):
        """Default view is the table, and missing modules are flagged."""
        runner = CliRunner()
        with patch("dll_depends.main.get_import_extractor", return_value=fake_extractor):
            result = runner.invoke(cli, [str(sample_binary)])

        assert result.exit_code == 0
        assert "present.dll" in result.output
        assert "Not Found" in result.output
        assert "1 unresolved" in result.output
        assert "missing_runtime.dll" in result.output

    def test_tree_output(self, sample_binary, fake_extractor):
        """Tree view nests imports under the root."""
        runner = CliRunner()
        with patch("dll_depends.main.get_import_extractor", return_value=fake_extractor):
            result = runner.invoke(cli, [str(sample_binary), "--tree-print"])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert any(line.strip() == "app.exe" for line in lines)
        assert any("├── present.dll" in line for line in lines)
        assert any("└── missing_runtime.dll" in line for line in lines)

    def test_json_output_file(self, sample_binary, fake_extractor, temp_dir):
        """JSON export to a file."""
        output_file = temp_dir / "graph.json"
        runner = CliRunner()
        with patch("dll_depends.main.get_import_extractor", return_value=fake_extractor):
            result = runner.invoke(
                cli,
                [
                    str(sample_binary),
                    "--output-format",
                    "json",
                    "--output-file",
                    str(output_file),
                ],
            )

        assert result.exit_code == 0
        data = json.loads(output_file.read_text(encoding="utf-8"))
        assert data["root"] == "app.exe"
        assert data["unresolved"] == ["missing_runtime.dll"]
        assert data["total_modules"] == 3

    def test_search_path_option(self, sample_binary, temp_dir):
        """Extra directories are searched after the binary's own."""
        extra = temp_dir / "extra"
        extra.mkdir()
        (extra / "missing_runtime.dll").write_bytes(b"MZ")
        output_file = temp_dir / "graph.json"
        extractor = FakeImportExtractor({"app.exe": ["missing_runtime.dll"]})

        runner = CliRunner()
        with patch("dll_depends.main.get_import_extractor", return_value=extractor):
            result = runner.invoke(
                cli,
                [
                    str(sample_binary),
                    "-s",
                    str(extra),
                    "--output-format",
                    "json",
                    "-o",
                    str(output_file),
                ],
            )

        assert result.exit_code == 0
        data = json.loads(output_file.read_text(encoding="utf-8"))
        assert data["unresolved"] == []

    def test_options_reach_extractor_factory(self, sample_binary, fake_extractor):
        """Backend and dumpbin path are handed to the extractor factory."""
        runner = CliRunner()
        with patch(
            "dll_depends.main.get_import_extractor", return_value=fake_extractor
        ) as factory:
            result = runner.invoke(
                cli,
                [str(sample_binary), "--extractor", "PEFILE", "--dumpbin", "C:/tools/dumpbin.exe"],
            )

        assert result.exit_code == 0
        backend, dumpbin_path, _ = factory.call_args.args
        assert backend == "pefile"
        assert dumpbin_path.endswith("dumpbin.exe")

    def test_environment_backend(self, sample_binary, fake_extractor, monkeypatch):
        """DLL_DEPENDS_BACKEND selects the backend when no option is given."""
        monkeypatch.setenv("DLL_DEPENDS_BACKEND", "pefile")
        runner = CliRunner()
        with patch(
            "dll_depends.main.get_import_extractor", return_value=fake_extractor
        ) as factory:
            result = runner.invoke(cli, [str(sample_binary)])

        assert result.exit_code == 0
        assert factory.call_args.args[0] == "pefile"


class TestErrorHandling:
    """Test fatal conditions and usage errors."""

    def test_missing_target(self, temp_dir):
        """Nonexistent target is a usage error."""
        runner = CliRunner()
        result = runner.invoke(cli, [str(temp_dir / "nope.exe")])

        assert result.exit_code == 2
        assert "does not exist" in result.output

    def test_missing_target_argument(self):
        runner = CliRunner()
        result = runner.invoke(cli, [])

        assert result.exit_code == 2

    def test_explicit_dumpbin_missing(self, sample_binary, temp_dir):
        """A --dumpbin path that does not exist is fatal."""
        runner = CliRunner()
        result = runner.invoke(
            cli, [str(sample_binary), "--dumpbin", str(temp_dir / "dumpbin.exe")]
        )

        assert result.exit_code == 1
        assert "dumpbin not found" in result.output

    def test_dumpbin_not_discovered(self, sample_binary):
        """Failing tool discovery is fatal."""
        runner = CliRunner()
        with patch(
            "dll_depends.main.get_import_extractor",
            side_effect=ToolNotFoundError("Failed to find dumpbin.exe"),
        ):
            result = runner.invoke(cli, [str(sample_binary)])

        assert result.exit_code == 1
        assert "Failed to find dumpbin.exe" in result.output

    def test_unreadable_root(self, temp_dir):
        """A root that is not a PE image is fatal."""
        target = temp_dir / "readme.dll"
        target.write_text("not a portable executable")

        runner = CliRunner()
        result = runner.invoke(cli, [str(target), "--extractor", "pefile"])

        assert result.exit_code == 1
        assert "Cannot read imports" in result.output

    def test_invalid_max_concurrent(self, sample_binary):
        runner = CliRunner()
        result = runner.invoke(cli, [str(sample_binary), "--max-concurrent", "0"])

        assert result.exit_code == 1
        assert "max_concurrent" in result.output

    def test_invalid_output_format(self, sample_binary):
        runner = CliRunner()
        result = runner.invoke(cli, [str(sample_binary), "--output-format", "xml"])

        assert result.exit_code == 2

    def test_output_file_requires_json(self, sample_binary, temp_dir):
        runner = CliRunner()
        result = runner.invoke(
            cli, [str(sample_binary), "--output-file", str(temp_dir / "out.txt")]
        )

        assert result.exit_code == 1
        assert "JSON" in result.output

    def test_config_value_of_wrong_type(self, sample_binary, temp_dir):
        """A mistyped config value is a clean configuration error."""
        config_file = temp_dir / "settings.json"
        config_file.write_text(json.dumps({"extractor": {"timeout_seconds": "abc"}}))

        runner = CliRunner()
        result = runner.invoke(cli, [str(sample_binary), "--config", str(config_file)])

        assert result.exit_code == 1
        assert "timeout_seconds must be a number" in result.output
        assert not isinstance(result.exception, TypeError)

    def test_config_section_not_a_mapping(self, sample_binary, temp_dir):
        """A scalar where a section belongs is a clean configuration error."""
        config_file = temp_dir / "settings.yaml"
        config_file.write_text("resolve: 5\n")

        runner = CliRunner()
        result = runner.invoke(cli, [str(sample_binary), "--config", str(config_file)])

        assert result.exit_code == 1
        assert "must be a mapping" in result.output
        assert not isinstance(result.exception, AttributeError)

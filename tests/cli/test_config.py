"""Tests for CLI configuration commands."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from gitferry.cli.app import app

runner = CliRunner()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config" / "gitferry"
    config_dir.mkdir(parents=True)
    return config_dir


@pytest.fixture(name="_mock_config_dir")
def mock_config_dir(temp_config_dir: Path) -> None:
    """Point the config module at the temp directory."""
    with patch("gitferry.config.get_config_dir", return_value=temp_config_dir):
        yield


class TestVersionCommand:
    """Test version command."""

    def test_version_flag(self) -> None:
        """Test --version flag shows version."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "gitferry version" in result.stdout
        assert "0.1.0" in result.stdout

    def test_version_short_flag(self) -> None:
        """Test -v flag shows version."""
        result = runner.invoke(app, ["-v"])
        assert result.exit_code == 0
        assert "gitferry version" in result.stdout


class TestHelpCommand:
    """Test help command."""

    def test_help_flag(self) -> None:
        """Test --help lists the subcommands."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "sync" in result.stdout
        assert "config" in result.stdout

    def test_config_help(self) -> None:
        """Test config --help shows config commands."""
        result = runner.invoke(app, ["config", "--help"])
        assert result.exit_code == 0
        assert "show" in result.stdout
        assert "get" in result.stdout
        assert "set" in result.stdout


class TestConfigShowCommand:
    """Test config show command."""

    def test_config_show_empty(self, _mock_config_dir: None) -> None:
        """Test config show with no configuration."""
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "No configuration found" in result.stdout

    def test_config_show_with_values(self, temp_config_dir: Path, _mock_config_dir: None) -> None:
        """Test config show displays configuration values."""
        config_file = temp_config_dir / "config.json"
        config_file.write_text(json.dumps({"agent": "mirror/1.0", "timeout": "60"}, indent=2))

        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "agent" in result.stdout
        assert "mirror/1.0" in result.stdout
        assert "timeout" in result.stdout


class TestConfigGetSetCommands:
    """Test config get and set commands."""

    def test_config_set_value(self, temp_config_dir: Path, _mock_config_dir: None) -> None:
        """Test config set persists the value."""
        result = runner.invoke(app, ["config", "set", "concurrent_discovery", "true"])
        assert result.exit_code == 0
        assert "Set concurrent_discovery" in result.stdout

        config = json.loads((temp_config_dir / "config.json").read_text())
        assert config == {"concurrent_discovery": "true"}

    def test_config_get_value(self, _mock_config_dir: None) -> None:
        """Test config get prints a stored value."""
        runner.invoke(app, ["config", "set", "agent", "mirror/1.0"])

        result = runner.invoke(app, ["config", "get", "agent"])
        assert result.exit_code == 0
        assert "mirror/1.0" in result.stdout

    def test_config_get_missing(self, _mock_config_dir: None) -> None:
        """Test config get fails for an unset key."""
        result = runner.invoke(app, ["config", "get", "agent"])
        assert result.exit_code == 1
        assert "agent is not set" in result.stdout

    def test_config_set_unknown_key(self, temp_config_dir: Path, _mock_config_dir: None) -> None:
        """Test config set refuses keys the sync command never reads."""
        result = runner.invoke(app, ["config", "set", "colour", "blue"])
        assert result.exit_code == 1
        assert "Unknown setting colour" in result.stdout
        assert not (temp_config_dir / "config.json").exists()

    def test_config_set_invalid_value(self, _mock_config_dir: None) -> None:
        """Test config set refuses values that cannot be coerced."""
        result = runner.invoke(app, ["config", "set", "timeout", "soon"])
        assert result.exit_code == 1
        assert "Invalid value for timeout" in result.stdout

"""Unit tests for the codetunnel CLI."""

from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from codetunnel import __version__
from codetunnel.cli import build_controller, build_options, main
from codetunnel.config_manager import CodeTunnelConfig, ConfigManager
from codetunnel.errors import ResolutionError
from codetunnel.session import SessionOptions


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def controller():
    """Replace the wired SessionController with a mock."""
    mock_controller = Mock()
    with patch("codetunnel.cli.build_controller", return_value=mock_controller) as build:
        mock_controller.build = build
        yield mock_controller


class TestMainGroup:
    """Tests for the top-level command group."""

    def test_no_args_shows_help(self, runner):
        result = runner.invoke(main, [])
        assert result.exit_code == 0
        assert "codetunnel open dev-box" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_unknown_command_shows_help(self, runner):
        result = runner.invoke(main, ["launch"])
        assert result.exit_code == 2
        assert "Error:" in result.output
        assert "Commands:" in result.output


class TestOpenCommand:
    """Tests for `codetunnel open`."""

    def test_defaults(self, runner, controller):
        result = runner.invoke(main, ["open", "dev-box"])

        assert result.exit_code == 0, result.output
        controller.run.assert_called_once_with("dev-box", "~", SessionOptions())

    def test_flags(self, runner, controller):
        result = runner.invoke(
            main,
            [
                "open",
                "gcp:my-instance",
                "~/project",
                "--skip-sync",
                "--sync-back",
                "--no-open",
                "--bind",
                "0.0.0.0:8080",
                "--remote-port",
                "9000",
                "--ssh-flags",
                "-i key.pem",
            ],
        )

        assert result.exit_code == 0, result.output
        controller.run.assert_called_once_with(
            "gcp:my-instance",
            "~/project",
            SessionOptions(
                skip_sync=True,
                sync_back=True,
                open_browser=False,
                bind_address="0.0.0.0:8080",
                remote_port="9000",
                ssh_flags="-i key.pem",
            ),
        )

    def test_config_defaults_apply(self, runner, controller):
        ConfigManager.set_value("sync_back", "true")
        ConfigManager.set_value("ssh_flags", "-p 2222")

        result = runner.invoke(main, ["open", "dev-box"])

        assert result.exit_code == 0, result.output
        options = controller.run.call_args.args[2]
        assert options.sync_back is True
        assert options.ssh_flags == "-p 2222"

    def test_flag_overrides_config(self, runner, controller):
        ConfigManager.set_value("ssh_flags", "-p 2222")

        result = runner.invoke(main, ["open", "dev-box", "--ssh-flags", "-v"])

        assert result.exit_code == 0, result.output
        assert controller.run.call_args.args[2].ssh_flags == "-v"

    def test_session_error_exits_1(self, runner, controller):
        controller.run.side_effect = ResolutionError("'gcloud compute ssh --dry-run x' failed")

        result = runner.invoke(main, ["open", "gcp:x"])

        assert result.exit_code == 1
        assert "Error: 'gcloud compute ssh --dry-run x' failed" in result.output

    def test_interrupt_exits_130(self, runner, controller):
        controller.run.side_effect = KeyboardInterrupt()

        result = runner.invoke(main, ["open", "dev-box"])

        assert result.exit_code == 130
        assert "Cancelled by user." in result.output

    def test_unexpected_error_exits_1(self, runner, controller):
        controller.run.side_effect = RuntimeError("boom")

        result = runner.invoke(main, ["open", "dev-box"])

        assert result.exit_code == 1
        assert "Unexpected error: boom" in result.output

    def test_nested_usage_error_shows_subcommand_help(self, runner):
        result = runner.invoke(main, ["config", "set", "sync_back"])

        assert result.exit_code == 2
        assert "Error:" in result.output
        assert "Set KEY to VALUE" in result.output

    def test_missing_host_shows_help(self, runner, controller):
        result = runner.invoke(main, ["open"])

        assert result.exit_code == 2
        assert "Error:" in result.output
        assert "--sync-back" in result.output
        controller.run.assert_not_called()

    def test_bad_config_path(self, runner, controller, tmp_path):
        result = runner.invoke(main, ["open", "dev-box", "--config", str(tmp_path / "nope.toml")])

        assert result.exit_code == 1
        assert "Config file not found" in result.output
        controller.run.assert_not_called()


class TestBuildHelpers:
    """Tests for option merging and controller wiring."""

    def test_build_options_bool_flags_only_enable(self):
        config = CodeTunnelConfig(skip_sync=True, no_open=True)
        options = build_options(config, False, False, False, None, None, None)
        assert options.skip_sync is True
        assert options.open_browser is False

    def test_build_options_bind_from_config(self):
        config = CodeTunnelConfig(bind_address="127.0.0.1:9999")
        assert build_options(config, False, False, False, None, None, None).bind_address == "127.0.0.1:9999"
        assert build_options(config, False, False, False, ":7000", None, None).bind_address == ":7000"

    def test_build_controller_uses_config(self, tmp_path, monkeypatch):
        monkeypatch.delenv("VSCODE_CONFIG_DIR", raising=False)
        monkeypatch.delenv("VSCODE_EXTENSIONS_DIR", raising=False)
        config = CodeTunnelConfig(
            server_path="/opt/cs/server",
            server_download_url="https://example.com/cs-linux",
            vscode_config_dir=str(tmp_path / "user"),
            vscode_extensions_dir=str(tmp_path / "ext"),
        )

        controller = build_controller(config)

        assert controller.tunnel.server_path == "/opt/cs/server"
        assert controller.tunnel.download_url == "https://example.com/cs-linux"
        assert controller.sync.settings.local_dir == tmp_path / "user"
        assert controller.sync.extensions.local_dir == tmp_path / "ext"


class TestConfigCommands:
    """Tests for `codetunnel config`."""

    def test_set_and_show(self, runner):
        result = runner.invoke(main, ["config", "set", "bind_address", "0.0.0.0:8080"])
        assert result.exit_code == 0, result.output
        assert "Set bind_address" in result.output

        result = runner.invoke(main, ["config", "show"])
        assert result.exit_code == 0, result.output
        assert "0.0.0.0:8080" in result.output
        assert "server_download_url" in result.output

    def test_set_unknown_key(self, runner):
        result = runner.invoke(main, ["config", "set", "colour", "blue"])
        assert result.exit_code == 1
        assert "Unknown config key" in result.output

    def test_path(self, runner, mock_config_path):
        result = runner.invoke(main, ["config", "path"])
        assert result.exit_code == 0
        assert result.output.strip() == str(mock_config_path)


class TestConfigFileErrors:
    """Config problems surface as config errors, not crashes."""

    def test_set_creates_custom_config(self, runner, tmp_path):
        custom = tmp_path / "new.toml"

        result = runner.invoke(main, ["config", "set", "sync_back", "true", "--config", str(custom)])

        assert result.exit_code == 0, result.output
        assert ConfigManager.load_config(str(custom)).sync_back is True

    def test_open_with_string_bool_in_config(self, runner, controller, mock_config_path):
        mock_config_path.write_text('skip_sync = "false"\n')

        result = runner.invoke(main, ["open", "dev-box"])

        assert result.exit_code == 1
        assert "Invalid value for skip_sync" in result.output
        assert "Unexpected error" not in result.output
        controller.run.assert_not_called()

    def test_open_with_numeric_bind_address(self, runner, controller, mock_config_path):
        mock_config_path.write_text("bind_address = 8080\n")

        result = runner.invoke(main, ["open", "dev-box"])

        assert result.exit_code == 1
        assert "Invalid value for bind_address" in result.output
        controller.run.assert_not_called()

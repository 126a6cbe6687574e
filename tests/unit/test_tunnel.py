"""Unit tests for tunnel module."""

import threading

import pytest

from codetunnel.command_runner import CommandResult
from codetunnel.errors import BootstrapError, StartError
from codetunnel.tunnel import (
    TunnelHandle,
    TunnelOrchestrator,
    build_bootstrap_script,
    remote_path_arg,
    ssh_flag_args,
)
from tests.mocks.subprocess_mock import FakeProcess, FakeRunner


class TestRemotePathArg:
    """Tests for remote path quoting."""

    def test_home(self):
        assert remote_path_arg("~") == "~"

    def test_home_relative_keeps_tilde(self):
        assert remote_path_arg("~/my project") == "~/'my project'"

    def test_absolute(self):
        assert remote_path_arg("/srv/app") == "/srv/app"

    def test_shell_metacharacters_quoted(self):
        assert remote_path_arg("/tmp/a;rm -rf b") == "'/tmp/a;rm -rf b'"


class TestSshFlagArgs:
    def test_empty(self):
        assert ssh_flag_args("") == []

    def test_split(self):
        assert ssh_flag_args("-i key.pem -o 'ProxyJump=bastion host'") == [
            "-i",
            "key.pem",
            "-o",
            "ProxyJump=bastion host",
        ]


class TestBootstrapScript:
    """Tests for the remote bootstrap script."""

    def test_default_script(self):
        script = build_bootstrap_script()
        lines = script.splitlines()

        assert lines[0] == "set -euxo pipefail || exit 1"
        assert "pkill -f ~/.cache/codetunnel/codetunnel-server || true" in lines
        assert "mkdir -p ~/.local/share/code-server ~/.cache/codetunnel" in lines
        assert "cd ~/.cache/codetunnel" in lines
        assert "wget -N https://codesrv-ci.cdr.sh/latest-linux" in lines
        assert "ln latest-linux ~/.cache/codetunnel/codetunnel-server" in lines
        assert lines[-1] == "chmod +x ~/.cache/codetunnel/codetunnel-server"

    def test_download_precedes_swap(self):
        script = build_bootstrap_script()
        assert script.index("pkill") < script.index("wget -N") < script.index("ln ") < script.index("chmod")

    def test_custom_location(self):
        script = build_bootstrap_script("/opt/cs/server", "https://example.com/builds/cs-linux")
        assert "wget -N https://example.com/builds/cs-linux" in script
        assert "ln cs-linux /opt/cs/server" in script
        assert "cd /opt/cs" in script


class TestBootstrap:
    """Tests for TunnelOrchestrator.bootstrap."""

    def test_pipes_script_to_remote_bash(self):
        runner = FakeRunner()
        orchestrator = TunnelOrchestrator(runner=runner)

        orchestrator.bootstrap("10.0.0.5", "-i key.pem")

        call = runner.calls[0]
        assert call["cmd"] == ["ssh", "-i", "key.pem", "10.0.0.5", "/bin/bash"]
        assert call["input_text"] == build_bootstrap_script()
        assert call["capture"] is False

    def test_failure_reports_command_and_script(self):
        runner = FakeRunner(results={"ssh": CommandResult(returncode=8)})
        orchestrator = TunnelOrchestrator(runner=runner)

        with pytest.raises(BootstrapError) as exc_info:
            orchestrator.bootstrap("10.0.0.5", "-i key.pem")

        error = exc_info.value
        assert error.returncode == 8
        assert error.command == "ssh -i key.pem 10.0.0.5 /bin/bash"
        assert "---ssh cmd---" in str(error)
        assert "---download script---" in str(error)
        assert "wget -N" in str(error)


class TestTunnelCommand:
    """Tests for the tunnel ssh command."""

    def test_command_shape(self):
        orchestrator = TunnelOrchestrator(runner=FakeRunner())

        cmd = orchestrator.build_tunnel_command(
            "10.0.0.5", "-i key.pem", "127.0.0.1:8443", "9000", "~/project"
        )

        assert cmd == [
            "ssh",
            "-tt",
            "-q",
            "-L",
            "127.0.0.1:8443:localhost:9000",
            "-i",
            "key.pem",
            "10.0.0.5",
            "cd ~/project; ~/.cache/codetunnel/codetunnel-server "
            "--host 127.0.0.1 --allow-http --no-auth --port=9000",
        ]

    def test_start_tunnel_returns_handle(self):
        runner = FakeRunner()
        orchestrator = TunnelOrchestrator(runner=runner)

        handle = orchestrator.start_tunnel("dev-box", "", "127.0.0.1:8443", "9000", "~")

        assert handle.process is runner.process
        assert handle.bind_address == "127.0.0.1:8443"
        assert handle.remote_port == "9000"
        assert handle.command == runner.spawned[0]
        assert handle.is_running()

    def test_spawn_failure(self):
        runner = FakeRunner()
        runner.spawn_error = FileNotFoundError("ssh")
        orchestrator = TunnelOrchestrator(runner=runner)

        with pytest.raises(StartError) as exc_info:
            orchestrator.start_tunnel("dev-box", "", "127.0.0.1:8443", "9000", "~")

        assert exc_info.value.command.startswith("ssh -tt -q -L 127.0.0.1:8443:localhost:9000")


class TestTunnelHandle:
    """Tests for TunnelHandle supervision."""

    @pytest.fixture
    def process(self):
        return FakeProcess()

    @pytest.fixture
    def handle(self, process):
        return TunnelHandle(
            command=["ssh"], bind_address="127.0.0.1:8443", remote_port="9000", process=process
        )

    def test_exit_reported_once(self, handle, process):
        calls = []
        fired = threading.Event()

        def on_exit(returncode):
            calls.append(returncode)
            fired.set()

        watcher = handle.wait_for_exit(on_exit)
        assert calls == []

        process.exit(3)
        assert fired.wait(2)
        watcher.join(2)

        assert calls == [3]
        assert handle.returncode == 3
        assert not handle.is_running()

    def test_second_watcher_rejected(self, handle, process):
        handle.wait_for_exit(lambda rc: None)
        with pytest.raises(RuntimeError, match="already being watched"):
            handle.wait_for_exit(lambda rc: None)
        process.exit(0)

    def test_terminate_running(self, handle, process):
        handle.terminate()
        assert process.terminate_calls == 1
        assert not handle.is_running()

    def test_terminate_after_exit_is_noop(self, handle, process):
        process.exit(0)
        handle.terminate()
        assert process.terminate_calls == 0

    def test_terminate_never_kills(self, caplog):
        stubborn = FakeProcess(ignore_terminate=True)
        handle = TunnelHandle(
            command=["ssh"], bind_address="127.0.0.1:8443", remote_port="9000", process=stubborn
        )

        handle.terminate(timeout=0.01)

        assert stubborn.terminate_calls == 1
        assert stubborn.kill_calls == 0
        assert "did not exit" in caplog.text
        stubborn.exit(0)

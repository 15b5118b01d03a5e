"""Unit tests for the remote gdbserver supervisor."""
import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from rdebug.debug.session import RemoteSession
from rdebug.debug.supervisor import (
    RemoteProcessSupervisor,
    SupervisorState,
    gdb_setup_commands,
    gdbserver_invocation,
    kill_pattern_command,
    launcher_script,
    port_check_command,
    start_command,
    write_script_command,
)
from rdebug.deploy.exceptions import RemoteConnectionError, RemoteProcessError
from rdebug.deploy.transport import CommandResult


def result(code=0, stdout="", stderr=""):
    return CommandResult(code, stdout, stderr)


def make_session(**overrides):
    values = dict(
        ssh_host="10.0.0.2",
        ssh_port=2222,
        gdb_port=10000,
        local_program_path="/build/app",
        remote_program_path="/opt/app/bin/app",
        output_file="/tmp/app.output",
        control_script_path="/tmp/app.sh",
        program_args=["--config", "my file.cfg"],
        library_dirs=["/opt/app/lib"],
    )
    values.update(overrides)
    return RemoteSession(**values)


class FakeRemote:
    """Answers remote commands by substring, records everything it was sent."""

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.commands = []

    async def run(self, handle, command, timeout=None):
        self.commands.append(command)
        for needle, answer in self.answers.items():
            if needle in command:
                return answer.pop(0) if isinstance(answer, list) else answer
        return result()


def create_supervisor(remote):
    transport = Mock()
    transport.run_remote_async = AsyncMock(side_effect=remote.run)
    time = Mock()
    time.async_sleep = AsyncMock()
    supervisor = RemoteProcessSupervisor(transport, time, Mock())
    return supervisor, time


class TestCommandBuilders:

    def test_invocation_sets_library_path_and_quotes_args(self):
        invocation = gdbserver_invocation(make_session())

        assert invocation == (
            "env LD_LIBRARY_PATH=/opt/app/lib:$LD_LIBRARY_PATH "
            "gdbserver :10000 /opt/app/bin/app --config 'my file.cfg'"
        )

    def test_library_dirs_with_spaces_are_quoted(self):
        session = make_session(library_dirs=["/opt/my app/lib", "/opt/app/lib"], program_args=[])

        invocation = gdbserver_invocation(session)

        assert invocation.startswith("env LD_LIBRARY_PATH='/opt/my app/lib:/opt/app/lib':$LD_LIBRARY_PATH gdbserver")

    def test_invocation_without_libraries(self):
        invocation = gdbserver_invocation(make_session(library_dirs=[], program_args=[]))

        assert invocation == "gdbserver :10000 /opt/app/bin/app"

    def test_launcher_prefers_stdbuf(self):
        script = launcher_script(make_session())

        assert script.startswith("#!/bin/sh\n")
        assert "exec stdbuf -oL -eL env LD_LIBRARY_PATH" in script

    def test_script_written_through_heredoc(self):
        command = write_script_command(make_session())

        assert command.startswith("cat > /tmp/app.sh << 'EOFSCRIPT'\n")
        assert command.endswith("EOFSCRIPT\nchmod +x /tmp/app.sh")

    def test_start_truncates_output_and_echoes_pid(self):
        command = start_command(make_session())

        assert command.startswith("rm -f /tmp/app.output; touch /tmp/app.output; nohup /tmp/app.sh")
        assert command.endswith("& echo $!")

    def test_kill_command_tolerates_no_match(self):
        command = kill_pattern_command("gdbserver :10000")

        assert "grep -v grep" in command
        assert command.endswith("|| true")

    def test_port_check_does_not_match_longer_ports(self):
        assert "':10000([^0-9]|$)'" in port_check_command(10000)

    def test_gdb_setup_uses_sysroot_when_known(self):
        assert gdb_setup_commands("/sdk/sysroots/armv7")[0] == "set sysroot /sdk/sysroots/armv7"
        assert gdb_setup_commands(None)[0] == "set sysroot remote:/"


class TestLifecycle:

    def setup_method(self):
        self.handle = Mock(host="10.0.0.2")
        self.session = make_session()

    def run(self, coroutine):
        return asyncio.run(coroutine)

    def start(self, supervisor):
        self.run(supervisor.prepare(self.handle, self.session))
        return self.run(supervisor.start(self.handle, self.session))

    def test_prepare_kills_stale_server_then_writes_script(self):
        remote = FakeRemote()
        supervisor, _ = create_supervisor(remote)

        self.run(supervisor.prepare(self.handle, self.session))

        assert remote.commands[0] == kill_pattern_command("gdbserver :10000")
        assert remote.commands[1].startswith("cat > /tmp/app.sh")
        assert supervisor.state == SupervisorState.PREPARING

    def test_start_records_pid(self):
        remote = FakeRemote({"nohup": result(stdout="4242\n")})
        supervisor, _ = create_supervisor(remote)

        pid = self.start(supervisor)

        assert pid == 4242
        assert self.session.process_id == 4242

    def test_start_without_pid_fails(self):
        remote = FakeRemote({"nohup": result(stdout="")})
        supervisor, _ = create_supervisor(remote)

        with pytest.raises(RemoteProcessError, match="no PID"):
            self.start(supervisor)

    def test_verify_succeeds_first_try(self):
        remote = FakeRemote({"nohup": result(stdout="4242\n")})
        supervisor, time = create_supervisor(remote)
        self.start(supervisor)

        verification = self.run(supervisor.verify(self.handle, self.session))

        assert verification.process_alive and verification.port_listening
        assert verification.attempts == 1
        assert supervisor.running
        time.async_sleep.assert_not_awaited()

    def test_verify_backs_off_until_listening(self):
        remote = FakeRemote({
            "nohup": result(stdout="4242\n"),
            "tuln": [result(1), result(1), result()],
        })
        supervisor, time = create_supervisor(remote)
        self.start(supervisor)

        verification = self.run(supervisor.verify(self.handle, self.session, initial_delay=0.5, backoff=2.0))

        assert verification.attempts == 3
        assert [c[0][0] for c in time.async_sleep.await_args_list] == [0.5, 1.0]

    def test_dead_process_raises_with_log_tail(self):
        remote = FakeRemote({
            "nohup": result(stdout="4242\n"),
            "ps | grep 'gdbserver :10000' | grep -v grep": result(1),
            "head -n 20": result(stdout="/opt/app/bin/app: error while loading shared libraries\n"),
        })
        supervisor, _ = create_supervisor(remote)
        self.start(supervisor)

        with pytest.raises(RemoteProcessError) as exc_info:
            self.run(supervisor.verify(self.handle, self.session, attempts=3))

        assert "error while loading shared libraries" in exc_info.value.log_tail
        assert "after 3 check(s)" in str(exc_info.value)

    def test_port_never_listening_is_only_a_warning(self):
        remote = FakeRemote({"nohup": result(stdout="4242\n"), "tuln": result(1)})
        supervisor, _ = create_supervisor(remote)
        self.start(supervisor)

        verification = self.run(supervisor.verify(self.handle, self.session, attempts=2))

        assert verification.process_alive
        assert not verification.port_listening
        assert supervisor.running

    def test_terminate_is_idempotent(self):
        remote = FakeRemote({"nohup": result(stdout="4242\n")})
        supervisor, _ = create_supervisor(remote)
        self.start(supervisor)
        sent_before = len(remote.commands)

        first = self.run(supervisor.terminate(self.handle))
        second = self.run(supervisor.terminate(self.handle))

        assert first.success and second.success
        assert len(remote.commands) == sent_before + 1
        assert "kill -9 4242" in remote.commands[-1]
        assert supervisor.state == SupervisorState.IDLE

    def test_terminate_when_idle_sends_nothing(self):
        remote = FakeRemote()
        supervisor, _ = create_supervisor(remote)

        outcome = self.run(supervisor.terminate(self.handle))

        assert outcome.success
        assert remote.commands == []

    def test_terminate_collects_connection_errors(self):
        remote = FakeRemote({"nohup": result(stdout="4242\n")})
        supervisor, _ = create_supervisor(remote)
        self.start(supervisor)
        supervisor.transport.run_remote_async.side_effect = RemoteConnectionError("gone")

        outcome = self.run(supervisor.terminate(self.handle))

        assert not outcome.success
        assert supervisor.state == SupervisorState.IDLE

    def test_invalid_transition_is_rejected(self):
        supervisor, _ = create_supervisor(FakeRemote())

        with pytest.raises(RemoteProcessError, match="Invalid supervisor transition"):
            self.run(supervisor.start(self.handle, self.session))

"""Unit tests for the remote output monitor."""
import asyncio
from datetime import datetime

from unittest.mock import AsyncMock, Mock

from rdebug.deploy.exceptions import RemoteConnectionError
from rdebug.deploy.transport import CommandResult
from rdebug.debug.monitor import (
    OutputMonitor,
    classify_line,
    format_line,
    is_banner,
    tail_command,
)


class FakeStream:
    """StreamingProcess double: yields fixed lines, optionally blocks afterwards."""

    def __init__(self, lines, pid=321, block=False, code=0):
        self._lines = lines
        self.pid = pid
        self.block = block
        self.code = code
        self.terminated = 0

    async def lines(self):
        for line in self._lines:
            yield line
        while self.block and not self.terminated:
            await asyncio.sleep(0.01)

    def terminate(self):
        self.terminated += 1

    async def wait(self):
        return self.code


class RecordingSink:
    def __init__(self):
        self.lines = []
        self.closed = False

    def append(self, line, is_error=False):
        self.lines.append((line, is_error))

    def close(self):
        self.closed = True


def create_monitor(*streams):
    transport = Mock()
    transport.ssh_cmd.side_effect = lambda handle, command: ["ssh", "root@10.0.0.2", command]
    transport.child_env.return_value = {"SSHPASS": "pw"}
    transport.run_remote_async = AsyncMock(return_value=CommandResult(0, "", ""))
    process = Mock()
    process.spawn_stream = AsyncMock(side_effect=list(streams))
    sink = RecordingSink()
    monitor = OutputMonitor(transport, process, sink, Mock(), clock=lambda: datetime(2026, 1, 2, 9, 5, 7))
    return monitor, process, sink


class TestLineHandling:

    def test_error_classification_is_case_insensitive(self):
        assert classify_line("ERROR: boom")
        assert classify_line("Warning: low memory")
        assert classify_line("test FAILED")
        assert not classify_line("processing frame 12")

    def test_gdbserver_banners(self):
        assert is_banner("Remote debugging from host 10.0.0.1, port 51234")
        assert is_banner("Process /opt/app/bin/app created; pid = 812")
        assert not is_banner("Processing item 3")

    def test_format(self):
        line = format_line("hello", False, datetime(2026, 1, 2, 9, 5, 7))

        assert line == "[09:05:07] [OUT] hello"

    def test_tail_command_starts_at_end(self):
        assert tail_command("/tmp/app.output") == "tail -f -n 0 /tmp/app.output 2>/dev/null"


class TestOutputMonitor:

    def test_lines_are_forwarded_and_classified(self):
        stream = FakeStream([
            "Process /opt/app/bin/app created; pid = 812",
            "Listening on port 10000",
            "Remote debugging from host 10.0.0.1, port 51234",
            "starting up",
            "",
            "error: config missing",
        ])
        monitor, process, sink = create_monitor(stream)

        async def scenario():
            await monitor.start(Mock(), "/tmp/app.output")
            await monitor._reader

        asyncio.run(scenario())

        cmd = process.spawn_stream.await_args[0][0]
        assert cmd[-1] == "tail -f -n 0 /tmp/app.output 2>/dev/null"
        assert process.spawn_stream.await_args[1]["env"] == {"SSHPASS": "pw"}
        forwarded = sink.lines[1:-1]
        assert forwarded == [
            ("[09:05:07] [OUT] Listening on port 10000", False),
            ("[09:05:07] [OUT] starting up", False),
            ("[09:05:07] [ERR] error: config missing", True),
        ]
        assert sink.lines[-1] == ("[09:05:07] [OUT] Remote streaming ended", False)
        assert monitor.status().lines_forwarded == 3

    def test_second_start_stops_first_stream(self):
        first = FakeStream([], pid=1, block=True)
        second = FakeStream([], pid=2, block=True)
        monitor, _, _ = create_monitor(first, second)

        async def scenario():
            await monitor.start(Mock(), "/tmp/a.output")
            await monitor.start(Mock(), "/tmp/b.output")
            status = monitor.status()
            await monitor.cleanup()
            return status

        status = asyncio.run(scenario())

        assert first.terminated == 1
        assert second.terminated == 1
        assert status.pid == 2
        assert status.output_file == "/tmp/b.output"

    def test_cleanup_is_idempotent(self):
        stream = FakeStream([], block=True)
        monitor, _, sink = create_monitor(stream)

        async def scenario():
            await monitor.start(Mock(), "/tmp/app.output")
            await monitor.cleanup()
            await monitor.cleanup()

        asyncio.run(scenario())

        assert stream.terminated == 1
        assert [line for line, _ in sink.lines if "stopped" in line] == ["[09:05:07] [OUT] Remote streaming stopped"]
        assert not monitor.status().active
        monitor.transport.run_remote_async.assert_awaited_once()

    def test_cleanup_kills_remote_tail(self):
        stream = FakeStream([], block=True)
        monitor, _, _ = create_monitor(stream)
        handle = Mock(host="10.0.0.2")

        async def scenario():
            await monitor.start(handle, "/tmp/app.output")
            await monitor.cleanup()

        asyncio.run(scenario())

        used_handle, command = monitor.transport.run_remote_async.await_args[0]
        assert used_handle is handle
        assert command.startswith("ps | grep 'tail -f -n 0 /tmp/app.output' | grep -v grep")
        assert "xargs kill -9" in command

    def test_cleanup_survives_unreachable_device(self):
        stream = FakeStream([], block=True)
        monitor, _, sink = create_monitor(stream)
        monitor.transport.run_remote_async.side_effect = RemoteConnectionError("No route to host")

        async def scenario():
            await monitor.start(Mock(host="10.0.0.2"), "/tmp/app.output")
            await monitor.cleanup()

        asyncio.run(scenario())

        assert stream.terminated == 1
        assert sink.lines[-1] == ("[09:05:07] [OUT] Remote streaming stopped", False)
        monitor.log.warning.assert_called_once()

    def test_stream_ending_on_its_own_marks_monitor_inactive(self):
        stream = FakeStream([], pid=7, code=255)
        monitor, _, sink = create_monitor(stream)

        async def scenario():
            await monitor.start(Mock(), "/tmp/a.output")
            await monitor._reader

        asyncio.run(scenario())

        status = monitor.status()
        assert not status.active
        assert status.pid is None
        assert status.describe() == "Monitor: inactive"
        assert sink.lines[-1] == ("[09:05:07] [ERR] Remote streaming ended (exit code 255)", True)

    def test_restart_after_stream_ended(self):
        first = FakeStream([], pid=1, code=255)
        second = FakeStream([], pid=2, block=True)
        monitor, _, _ = create_monitor(first, second)

        async def scenario():
            await monitor.start(Mock(), "/tmp/a.output")
            await monitor._reader
            await monitor.start(Mock(), "/tmp/a.output")
            status = monitor.status()
            await monitor.cleanup()
            return status

        status = asyncio.run(scenario())

        assert first.terminated == 0
        assert status.active
        assert status.pid == 2

    def test_cleanup_without_start_does_nothing(self):
        monitor, process, sink = create_monitor()

        asyncio.run(monitor.cleanup())

        assert sink.lines == []
        process.spawn_stream.assert_not_awaited()

    def test_status_describes_inactive_monitor(self):
        monitor, _, _ = create_monitor()

        assert monitor.status().describe() == "Monitor: inactive"

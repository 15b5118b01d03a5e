"""
Live streaming of the remote program's output.

One ``tail -f -n 0`` runs over the session's control channel and pushes
every new line of the remote output file to the sink as it is written;
there is no polling and no extra SSH handshake.
"""

import asyncio
import re
import shlex
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from rdebug.core.protocols import Logger, OutputSink, ProcessExecutor, StreamingProcess
from rdebug.deploy.exceptions import RemoteDebugError
from rdebug.deploy.transport import ConnectionHandle, SSHTransport
from rdebug.debug.supervisor import kill_pattern_command


ERROR_RE = re.compile(r"error|warning|fail", re.IGNORECASE)

# gdbserver's own chatter, not program output
BANNER_RES = (
    re.compile(r"^Remote debugging"),
    re.compile(r"^Process .* created"),
)


def classify_line(line: str) -> bool:
    """True when the line looks like an error or warning."""
    return bool(ERROR_RE.search(line))


def is_banner(line: str) -> bool:
    return any(pattern.search(line) for pattern in BANNER_RES)


def format_line(line: str, is_error: bool, now: datetime) -> str:
    prefix = "[ERR]" if is_error else "[OUT]"
    return f"[{now.strftime('%H:%M:%S')}] {prefix} {line}"


def tail_command(output_file: str) -> str:
    return f"tail -f -n 0 {shlex.quote(output_file)} 2>/dev/null"


def tail_pattern(output_file: str) -> str:
    """How the streaming tail shows up in the remote process list."""
    return f"tail -f -n 0 {output_file}"


@dataclass
class MonitorStatus:
    active: bool
    pid: Optional[int]
    output_file: Optional[str]
    lines_forwarded: int

    def describe(self) -> str:
        if not self.active:
            return "Monitor: inactive"
        return (
            f"Monitor: active (streaming) | pid: {self.pid or 'N/A'} | "
            f"file: {self.output_file} | lines: {self.lines_forwarded}"
        )


class OutputMonitor:
    """
    Tails one remote file into an OutputSink.

    Args:
        transport: Builds the ssh command for the control channel
        process_executor: Spawns the streaming ssh process
        sink: Receives formatted lines
        logger: Logging abstraction
        clock: Timestamp source for lines (default: datetime.now)
    """

    def __init__(
        self,
        transport: SSHTransport,
        process_executor: ProcessExecutor,
        sink: OutputSink,
        logger: Logger,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.transport = transport
        self.process = process_executor
        self.sink = sink
        self.log = logger
        self.clock = clock
        self.active = False
        self.job_handle: Optional[StreamingProcess] = None
        self.handle: Optional[ConnectionHandle] = None
        self.output_file: Optional[str] = None
        self.lines_forwarded = 0
        self._reader: Optional[asyncio.Task] = None

    async def start(self, handle: ConnectionHandle, output_file: str) -> None:
        """Begin streaming output_file; any previous stream is stopped first."""
        if self.active:
            await self.cleanup()

        cmd = self.transport.ssh_cmd(handle, tail_command(output_file))
        env = self.transport.child_env(handle)
        self.job_handle = await self.process.spawn_stream(cmd, env=env)
        self.handle = handle
        self.output_file = output_file
        self.lines_forwarded = 0
        self.active = True
        self._reader = asyncio.create_task(self._forward(self.job_handle))

        self._emit(f"Remote streaming started: {output_file}", False)
        self.log.info(f"Streaming remote output from {output_file}")

    async def _forward(self, job: StreamingProcess) -> None:
        async for line in job.lines():
            if not self.active:
                break
            if not line or is_banner(line):
                continue
            self._emit(line, classify_line(line))
            self.lines_forwarded += 1

        code = await job.wait()
        # ssh went away on its own (dropped link, device reboot)
        if self.active and job is self.job_handle:
            self.active = False
            self.job_handle = None
            self.handle = None
            self._reader = None
            ended = "Remote streaming ended"
            if code not in (0, None):
                ended += f" (exit code {code})"
            self._emit(ended, code not in (0, None))
            self.log.warning(f"Output streaming from {self.output_file} ended (exit code {code})")

    def _emit(self, line: str, is_error: bool) -> None:
        self.sink.append(format_line(line, is_error, self.clock()), is_error)

    async def cleanup(self) -> None:
        """
        Stop streaming. Safe to call repeatedly or when never started.

        Terminating the local ssh client does not reach the remote tail (it
        has no pty and nothing writes to the file once gdbserver is gone),
        so it is killed explicitly.
        """
        if not self.active:
            return
        self.active = False

        job, self.job_handle = self.job_handle, None
        if job is not None:
            try:
                job.terminate()
            except OSError as e:
                self.log.debug(f"Streaming process already gone: {e}")

        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        handle, self.handle = self.handle, None
        if handle is not None and self.output_file:
            try:
                await self.transport.run_remote_async(
                    handle, kill_pattern_command(tail_pattern(self.output_file))
                )
            except RemoteDebugError as e:
                self.log.warning(f"Could not stop remote tail on {handle.host}: {e}")

        self._emit("Remote streaming stopped", False)

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            active=self.active,
            pid=self.job_handle.pid if self.job_handle else None,
            output_file=self.output_file,
            lines_forwarded=self.lines_forwarded,
        )

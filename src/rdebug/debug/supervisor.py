"""
Remote gdbserver supervision.

Lifecycle (one instance per SessionManager):

    IDLE -> PREPARING -> STARTING -> VERIFYING -> RUNNING -> TERMINATING -> IDLE

All process matching uses plain ``ps | grep`` so it works with BusyBox,
whose ps has no column-selection flags but always prints the PID first.
"""

import shlex
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

from rdebug.core.protocols import Logger, TimeProvider
from rdebug.deploy.base import CleanupResult
from rdebug.deploy.exceptions import (
    AuthError,
    RemoteConnectionError,
    RemoteProcessError,
)
from rdebug.deploy.transport import ConnectionHandle, SSHTransport

if TYPE_CHECKING:
    from rdebug.debug.session import RemoteSession


LOG_TAIL_LINES = 20
VERIFY_ATTEMPTS = 5
VERIFY_INITIAL_DELAY = 0.5
VERIFY_BACKOFF = 2.0


class SupervisorState(Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    STARTING = "starting"
    VERIFYING = "verifying"
    RUNNING = "running"
    TERMINATING = "terminating"


ALLOWED_TRANSITIONS = {
    SupervisorState.IDLE: {SupervisorState.PREPARING},
    SupervisorState.PREPARING: {SupervisorState.STARTING, SupervisorState.TERMINATING},
    SupervisorState.STARTING: {SupervisorState.VERIFYING, SupervisorState.TERMINATING},
    SupervisorState.VERIFYING: {SupervisorState.RUNNING, SupervisorState.TERMINATING},
    SupervisorState.RUNNING: {SupervisorState.TERMINATING},
    SupervisorState.TERMINATING: {SupervisorState.IDLE},
}


@dataclass
class VerificationResult:
    """What verification could confirm about the started gdbserver."""
    process_alive: bool
    port_listening: bool
    attempts: int
    log_tail: str = ""


# ----------------------------------------------------------------------
# Remote command builders (pure)
# ----------------------------------------------------------------------

def find_pids_command(pattern: str) -> str:
    """List PIDs whose command line contains pattern (BusyBox ps compatible)."""
    return f"ps | grep {shlex.quote(pattern)} | grep -v grep | awk '{{print $1}}'"


def kill_pattern_command(pattern: str) -> str:
    """Kill every process matching pattern; succeeds when none is running."""
    return f"{find_pids_command(pattern)} | xargs kill -9 2>/dev/null || true"


def gdbserver_pattern(gdb_port: int) -> str:
    return f"gdbserver :{gdb_port}"


def gdbserver_invocation(session: "RemoteSession") -> str:
    """The env + gdbserver command line the launcher script executes."""
    parts = []
    if session.library_dirs:
        parts.append(f"env LD_LIBRARY_PATH={shlex.quote(':'.join(session.library_dirs))}:$LD_LIBRARY_PATH")
    parts.append(f"gdbserver :{session.gdb_port}")
    parts.append(shlex.quote(session.remote_program_path))
    parts.extend(shlex.quote(arg) for arg in session.program_args)
    return " ".join(parts)


def launcher_script(session: "RemoteSession") -> str:
    """Shell script that runs gdbserver with line-buffered stdout/stderr."""
    invocation = gdbserver_invocation(session)
    return (
        "#!/bin/sh\n"
        "if command -v stdbuf >/dev/null 2>&1; then\n"
        f"  exec stdbuf -oL -eL {invocation}\n"
        "fi\n"
        f"exec {invocation}\n"
    )


def write_script_command(session: "RemoteSession") -> str:
    script = shlex.quote(session.control_script_path)
    return (
        f"cat > {script} << 'EOFSCRIPT'\n"
        f"{launcher_script(session)}"
        "EOFSCRIPT\n"
        f"chmod +x {script}"
    )


def start_command(session: "RemoteSession") -> str:
    output = shlex.quote(session.output_file)
    script = shlex.quote(session.control_script_path)
    # stdin/stdout/stderr all redirected, otherwise ssh waits for the child
    return f"rm -f {output}; touch {output}; nohup {script} >> {output} 2>&1 < /dev/null & echo $!"


def process_check_command(gdb_port: int) -> str:
    return f"ps | grep {shlex.quote(gdbserver_pattern(gdb_port))} | grep -v grep"


def port_check_command(gdb_port: int) -> str:
    return (
        "(ss -tuln 2>/dev/null || netstat -tuln 2>/dev/null) "
        f"| grep -E ':{gdb_port}([^0-9]|$)'"
    )


def log_tail_command(output_file: str, lines: int = LOG_TAIL_LINES) -> str:
    return f"head -n {lines} {shlex.quote(output_file)} 2>/dev/null"


def gdb_setup_commands(target_sysroot: Optional[str] = None) -> List[str]:
    """Commands the local gdb runs before 'target remote'."""
    commands = []
    if target_sysroot:
        # Symbols from the SDK sysroot load much faster than over the wire
        commands.append(f"set sysroot {target_sysroot}")
        commands.append("set auto-load safe-path /")
    else:
        commands.append("set sysroot remote:/")
    commands += [
        "set pagination off",
        "set print pretty on",
        "set breakpoint pending on",
        "set print inferior-events off",
        "set auto-solib-add on",
        "set stop-on-solib-events 0",
    ]
    return commands


class RemoteProcessSupervisor:
    """
    Starts, verifies and stops gdbserver on the device.

    Args:
        transport: SSH transport
        time_provider: Drives verification backoff
        logger: Logging abstraction
    """

    def __init__(self, transport: SSHTransport, time_provider: TimeProvider, logger: Logger):
        self.transport = transport
        self.time = time_provider
        self.log = logger
        self.state = SupervisorState.IDLE
        self.pid: Optional[int] = None
        self.output_file: Optional[str] = None
        self._gdb_port: Optional[int] = None
        self._script_path: Optional[str] = None

    def _transition(self, new_state: SupervisorState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RemoteProcessError(
                f"Invalid supervisor transition {self.state.value} -> {new_state.value}"
            )
        self.log.debug(f"gdbserver supervisor: {self.state.value} -> {new_state.value}")
        self.state = new_state

    @property
    def running(self) -> bool:
        return self.state == SupervisorState.RUNNING

    def planned_commands(self, session: "RemoteSession") -> List[str]:
        """Exact remote command sequence prepare() + start() would issue."""
        return [
            kill_pattern_command(gdbserver_pattern(session.gdb_port)),
            write_script_command(session),
            start_command(session),
        ]

    async def prepare(self, handle: ConnectionHandle, session: "RemoteSession") -> None:
        """Kill any earlier gdbserver on the port and write the launcher script."""
        self._transition(SupervisorState.PREPARING)
        self._gdb_port = session.gdb_port
        self._script_path = session.control_script_path
        self.output_file = session.output_file

        await self.transport.run_remote_async(handle, kill_pattern_command(gdbserver_pattern(session.gdb_port)))

        result = await self.transport.run_remote_async(handle, write_script_command(session))
        if not result.ok:
            raise RemoteProcessError(
                f"Could not write launcher script {session.control_script_path}: {result.stderr.strip()}"
            )
        self.log.debug(f"Launcher: {gdbserver_invocation(session)}")

    async def start(self, handle: ConnectionHandle, session: "RemoteSession") -> int:
        """Launch the script detached; return the PID of the launcher."""
        self._transition(SupervisorState.STARTING)
        result = await self.transport.run_remote_async(handle, start_command(session))
        pid_text = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
        if not result.ok or not pid_text.isdigit():
            raise RemoteProcessError(
                f"Failed to start gdbserver on {handle.host}: {result.stderr.strip() or 'no PID returned'}\n"
                f"Run 'rdebug diagnostic' for more information."
            )
        self.pid = int(pid_text)
        session.process_id = self.pid
        self.log.info(f"✓ gdbserver started (PID {self.pid})")
        return self.pid

    async def verify(
        self,
        handle: ConnectionHandle,
        session: "RemoteSession",
        attempts: int = VERIFY_ATTEMPTS,
        initial_delay: float = VERIFY_INITIAL_DELAY,
        backoff: float = VERIFY_BACKOFF,
    ) -> VerificationResult:
        """
        Poll until gdbserver is alive and its port is listening.

        Raises:
            RemoteProcessError: process never seen alive (log tail attached)

        A live process whose port is not yet listening is only a warning:
        some gdbserver builds bind lazily on the first connection.
        """
        self._transition(SupervisorState.VERIFYING)
        delay = initial_delay
        alive = listening = False
        attempt = 0

        for attempt in range(1, attempts + 1):
            alive = (await self.transport.run_remote_async(handle, process_check_command(session.gdb_port))).ok
            if alive:
                listening = (await self.transport.run_remote_async(handle, port_check_command(session.gdb_port))).ok
                if listening:
                    break
            if attempt < attempts:
                await self.time.async_sleep(delay)
                delay *= backoff

        if not alive:
            tail = await self.fetch_log_tail(handle, session.output_file)
            raise RemoteProcessError(
                f"gdbserver is not running on {handle.host} after {attempt} check(s)\n"
                f"Output of {session.output_file}:\n{tail or '(empty)'}",
                log_tail=tail,
            )

        self._transition(SupervisorState.RUNNING)
        if listening:
            self.log.info(f"✓ gdbserver listening on port {session.gdb_port}")
        else:
            self.log.warning(
                f"Port {session.gdb_port} may not be listening yet "
                f"(gdbserver can wait for the first connection to open it)"
            )
        return VerificationResult(process_alive=alive, port_listening=listening, attempts=attempt)

    async def fetch_log_tail(self, handle: ConnectionHandle, output_file: str) -> str:
        try:
            result = await self.transport.run_remote_async(handle, log_tail_command(output_file))
        except (AuthError, RemoteConnectionError) as e:
            return f"(could not fetch log: {e})"
        return result.stdout.strip()

    async def terminate(self, handle: Optional[ConnectionHandle]) -> CleanupResult:
        """
        Kill the remote gdbserver. Idempotent: in IDLE nothing is sent.

        Never raises; problems are collected in the result.
        """
        if self.state in (SupervisorState.IDLE, SupervisorState.TERMINATING):
            return CleanupResult(success=True, errors=[])

        self._transition(SupervisorState.TERMINATING)
        errors = []
        if handle is None:
            errors.append("No connection to remote host; gdbserver may still be running")
        else:
            commands = []
            if self._gdb_port is not None:
                commands.append(kill_pattern_command(gdbserver_pattern(self._gdb_port)))
            if self._script_path:
                commands.append(kill_pattern_command(self._script_path))
            if self.pid:
                commands.append(f"kill -9 {self.pid} 2>/dev/null || true")
            try:
                await self.transport.run_remote_async(handle, "; ".join(commands))
            except (AuthError, RemoteConnectionError) as e:
                errors.append(f"Failed to stop gdbserver: {e}")

        self.pid = None
        self._transition(SupervisorState.IDLE)
        return CleanupResult(success=len(errors) == 0, errors=errors)

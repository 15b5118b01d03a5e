"""Protocol definitions for dependency injection.

Every external dependency of the orchestrator (filesystem, subprocesses,
time, environment, user interaction) is expressed as a Protocol here.
Production implementations live in ``rdebug.core.implementations``; tests
substitute Mocks or small fakes.

The last three protocols (Prompter, OutputSink, DebuggerLauncher) stand in
for the host that drives a debug session: something that can ask the user
a question, show a stream of log lines, and run a debugger front-end.
"""

from typing import Protocol, Dict, Any, Optional, List, Union, Iterator, AsyncIterator
from pathlib import Path


class Logger(Protocol):
    """Abstraction for logging operations."""

    def info(self, message: str) -> None:
        """Log informational message."""
        ...

    def warning(self, message: str) -> None:
        """Log warning message."""
        ...

    def error(self, message: str) -> None:
        """Log error message."""
        ...

    def debug(self, message: str) -> None:
        """Log debug message."""
        ...


class FileSystemService(Protocol):
    """Abstraction for local filesystem reads.

    The manifest scanner and the orchestrator only ever read the local
    build tree, so this protocol is read-only apart from log directories.
    """

    def exists(self, path: Union[str, Path]) -> bool:
        """Check if path exists."""
        ...

    def is_file(self, path: Union[str, Path]) -> bool:
        """Check if path is a file."""
        ...

    def is_dir(self, path: Union[str, Path]) -> bool:
        """Check if path is a directory."""
        ...

    def is_readable(self, path: Union[str, Path]) -> bool:
        """Check if path can be opened for reading."""
        ...

    def read_file(self, path: Union[str, Path]) -> str:
        """Read entire file as string."""
        ...

    def rglob(self, path: Union[str, Path], pattern: str) -> List[Path]:
        """Recursively find all files matching pattern below path."""
        ...

    def iterdir(self, path: Union[str, Path]) -> Iterator[Path]:
        """Iterate over directory contents."""
        ...


class ProcessResult(Protocol):
    """Result of a completed subprocess (subprocess.CompletedProcess shape)."""

    returncode: int
    stdout: Any
    stderr: Any


class StreamingProcess(Protocol):
    """A long-running child process whose stdout is consumed line by line."""

    pid: Optional[int]

    def lines(self) -> AsyncIterator[str]:
        """Yield decoded stdout lines as they arrive."""
        ...

    def terminate(self) -> None:
        """Ask the process to stop. Safe to call on an exited process."""
        ...

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        ...


class ProcessExecutor(Protocol):
    """Abstraction for process execution.

    ``run`` mirrors subprocess.run; ``spawn_stream`` starts a child process
    on the running asyncio loop for continuous output consumption.
    """

    def run(
        self,
        cmd: List[str],
        input: Optional[bytes] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ProcessResult:
        """Run command to completion, capturing stdout/stderr as bytes."""
        ...

    async def spawn_stream(
        self,
        cmd: List[str],
        env: Optional[Dict[str, str]] = None,
    ) -> StreamingProcess:
        """Start command and return a handle for streaming its stdout."""
        ...


class TimeProvider(Protocol):
    """Abstraction for time operations.

    Enables deterministic testing of waits and retry backoff.
    """

    def current_time(self) -> float:
        """Get current time in seconds since epoch."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for the given number of seconds."""
        ...

    async def async_sleep(self, seconds: float) -> None:
        """Yield to the event loop for the given number of seconds."""
        ...


class EnvironmentProvider(Protocol):
    """Abstraction for environment access."""

    def get_environ(self) -> Dict[str, str]:
        """Get copy of environment variables."""
        ...


class ToolLocator(Protocol):
    """Abstraction for local tool discovery (ssh, sshpass, rsync, gdb)."""

    def find_tool(self, tool_name: str) -> Optional[str]:
        """Find tool in PATH and return absolute path, or None if not found."""
        ...

    def has_tool(self, tool_name: str) -> bool:
        """Check if tool exists in PATH."""
        ...


class ConfigLoader(Protocol):
    """Abstraction for configuration file loading."""

    def load_yaml(self, path: str) -> Dict[str, Any]:
        """Load YAML file and return parsed dictionary."""
        ...


class Prompter(Protocol):
    """Asks the user for a line of input.

    Returns None when the user cancels (EOF, Escape, Ctrl-D).
    """

    def ask(self, prompt: str, default: str = "") -> Optional[str]:
        ...


class OutputSink(Protocol):
    """Destination for streamed remote output lines."""

    def append(self, line: str, is_error: bool = False) -> None:
        ...

    def close(self) -> None:
        ...


class DebuggerLauncher(Protocol):
    """Runs a local debugger front-end against a remote gdbserver."""

    async def run(
        self,
        program: str,
        server_address: str,
        setup_commands: List[str],
    ) -> int:
        """Run the debugger until it exits; return its exit code."""
        ...

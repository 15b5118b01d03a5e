"""Production implementations of dependency injection protocols.

These wrap the real filesystem, subprocess, time and terminal. For testing,
use mocks or test doubles instead of these implementations.
"""

import asyncio
import logging
import logging.handlers
import os
import shutil
import subprocess
import sys
import time
from pathlib import Path
from typing import Dict, Any, Optional, List, Union, Iterator, AsyncIterator

import yaml


DEFAULT_LOG_FILE = "~/.local/state/rdebug/rdebug.log"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 3


class ConsoleLogger:
    """Logger that prints to console (stdout/stderr)."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def info(self, message: str) -> None:
        """Print info message to stdout."""
        print(message)

    def warning(self, message: str) -> None:
        """Print warning message to stdout."""
        print(f"Warning: {message}")

    def error(self, message: str) -> None:
        """Print error message to stderr."""
        print(f"Error: {message}", file=sys.stderr)

    def debug(self, message: str) -> None:
        """Print debug message only in verbose mode."""
        if self.verbose:
            print(f"  {message}")


class PersistentLogger:
    """Console logger that also keeps every message in a rotating log file.

    Notifications on the terminal scroll away; the file does not, so failures
    during unattended deploys can be inspected after the fact.
    """

    def __init__(self, log_file: Optional[str] = None, console: Optional[ConsoleLogger] = None):
        self.console = console or ConsoleLogger()
        self.log_file = Path(os.path.expanduser(log_file or DEFAULT_LOG_FILE))
        self._logger = logging.getLogger(f"rdebug.session.{id(self)}")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.handlers.RotatingFileHandler(
                self.log_file,
                maxBytes=LOG_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
            handler.setFormatter(logging.Formatter(
                "%(asctime)s %(levelname)-7s %(message)s"
            ))
            self._logger.addHandler(handler)
        except OSError as e:
            # Console output still works without the file
            self.console.warning(f"Cannot open log file {self.log_file}: {e}")
            self._logger.addHandler(logging.NullHandler())

    def info(self, message: str) -> None:
        self.console.info(message)
        self._logger.info(message)

    def warning(self, message: str) -> None:
        self.console.warning(message)
        self._logger.warning(message)

    def error(self, message: str) -> None:
        self.console.error(message)
        self._logger.error(message)

    def debug(self, message: str) -> None:
        self.console.debug(message)
        self._logger.debug(message)

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)


class RealFileSystemService:
    """Filesystem service using real pathlib operations."""

    def exists(self, path: Union[str, Path]) -> bool:
        return Path(path).exists()

    def is_file(self, path: Union[str, Path]) -> bool:
        return Path(path).is_file()

    def is_dir(self, path: Union[str, Path]) -> bool:
        return Path(path).is_dir()

    def is_readable(self, path: Union[str, Path]) -> bool:
        return os.access(path, os.R_OK)

    def read_file(self, path: Union[str, Path]) -> str:
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            return f.read()

    def rglob(self, path: Union[str, Path], pattern: str) -> List[Path]:
        return sorted(Path(path).rglob(pattern))

    def iterdir(self, path: Union[str, Path]) -> Iterator[Path]:
        return Path(path).iterdir()


class AsyncioStreamingProcess:
    """Wrapper around asyncio.subprocess.Process for line streaming."""

    def __init__(self, process: asyncio.subprocess.Process):
        self._process = process
        self.pid = process.pid

    async def lines(self) -> AsyncIterator[str]:
        assert self._process.stdout is not None
        while True:
            raw = await self._process.stdout.readline()
            if not raw:
                break
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    def terminate(self) -> None:
        if self._process.returncode is None:
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass

    async def wait(self) -> int:
        return await self._process.wait()


class SubprocessExecutor:
    """Process executor using real subprocess / asyncio subprocesses."""

    def run(
        self,
        cmd: List[str],
        input: Optional[bytes] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        return subprocess.run(
            cmd,
            input=input,
            capture_output=True,
            env=env,
            timeout=timeout,
        )

    async def spawn_stream(
        self,
        cmd: List[str],
        env: Optional[Dict[str, str]] = None,
    ) -> AsyncioStreamingProcess:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            env=env,
        )
        return AsyncioStreamingProcess(process)


class SystemTimeProvider:
    """Time provider using real time / asyncio modules."""

    def current_time(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    async def async_sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class SystemEnvironmentProvider:
    """Environment provider using real os.environ."""

    def get_environ(self) -> Dict[str, str]:
        return dict(os.environ)


class SystemToolLocator:
    """Tool locator using real shutil.which."""

    def find_tool(self, tool_name: str) -> Optional[str]:
        return shutil.which(tool_name)

    def has_tool(self, tool_name: str) -> bool:
        return self.find_tool(tool_name) is not None


class YamlConfigLoader:
    """Config loader using the YAML parser."""

    def __init__(self, filesystem: RealFileSystemService):
        self.fs = filesystem

    def load_yaml(self, path: str) -> Dict[str, Any]:
        content = self.fs.read_file(path)
        return yaml.safe_load(content) or {}


class ConsolePrompter:
    """Prompts on the controlling terminal."""

    def ask(self, prompt: str, default: str = "") -> Optional[str]:
        suffix = f" [{default}]" if default else ""
        try:
            answer = input(f"{prompt}{suffix}: ")
        except EOFError:
            return None
        return answer if answer else default


class ConsoleSink:
    """Writes streamed remote output to stdout."""

    def append(self, line: str, is_error: bool = False) -> None:
        print(line, file=sys.stderr if is_error else sys.stdout, flush=True)

    def close(self) -> None:
        pass


class FileSink:
    """Appends streamed remote output to a local file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = open(self.path, 'a', encoding='utf-8', buffering=1)

    def append(self, line: str, is_error: bool = False) -> None:
        if not self._handle.closed:
            self._handle.write(line + "\n")

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.close()


class GdbDebuggerLauncher:
    """Runs a local gdb attached to the remote gdbserver."""

    def __init__(self, gdb_path: str = "gdb"):
        self.gdb_path = gdb_path

    def build_command(self, program: str, server_address: str, setup_commands: List[str]) -> List[str]:
        cmd = [self.gdb_path, "-q"]
        for setup in setup_commands:
            cmd += ["-ex", setup]
        cmd += ["-ex", f"target remote {server_address}", program]
        return cmd

    async def run(self, program: str, server_address: str, setup_commands: List[str]) -> int:
        process = await asyncio.create_subprocess_exec(
            *self.build_command(program, server_address, setup_commands)
        )
        return await process.wait()

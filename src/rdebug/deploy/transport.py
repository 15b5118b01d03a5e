"""
SSH transport: one multiplexed control channel per (host, port).

Every remote operation (commands, scp, rsync, tar batches) goes through an
OpenSSH ControlMaster socket, so only the first call pays the full handshake.
The master lingers for CONTROL_PERSIST_SECONDS after the last use and then
exits on its own.

Password authentication is delegated to ``sshpass -e``; the password travels
in the child's SSHPASS environment variable, never on the command line.
"""

import asyncio
import hashlib
import io
import os
import shlex
import subprocess
import tarfile
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from rdebug.core.protocols import (
    EnvironmentProvider,
    Logger,
    ProcessExecutor,
    ToolLocator,
)
from .exceptions import (
    AuthError,
    ConfigurationError,
    ConnectionRefused,
    RemoteConnectionError,
    TransferFailed,
)


CONTROL_PERSIST_SECONDS = 600
CONNECT_TIMEOUT_SECONDS = 10
COMMAND_TIMEOUT_SECONDS = 300
SSH_EXIT_ERROR = 255

# sshpass exit codes (man sshpass)
SSHPASS_WRONG_PASSWORD = 5
SSHPASS_HOST_KEY_UNKNOWN = 6

AUTH_MARKERS = ("Permission denied", "Authentication failed", "Too many authentication failures")
REFUSED_MARKERS = ("Connection refused",)
UNREACHABLE_MARKERS = (
    "Could not resolve hostname",
    "No route to host",
    "Connection timed out",
    "Operation timed out",
    "Network is unreachable",
    "Connection closed by",
    "Connection reset",
)


@dataclass
class Credentials:
    """How to authenticate against the remote device."""
    user: str = "root"
    password: Optional[str] = field(default=None, repr=False)
    identity_file: Optional[str] = None


@dataclass
class ConnectionHandle:
    """A reusable control channel to one remote host."""
    host: str
    port: int
    credentials: Credentials
    control_path: str
    remote_rsync: Optional[bool] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def target(self) -> str:
        return f"{self.credentials.user}@{self.host}"

    @property
    def key(self) -> Tuple[str, int]:
        return (self.host, self.port)


@dataclass
class CommandResult:
    """Outcome of one remote command."""
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def control_path_for(host: str, port: int, user: str, directory: Optional[str] = None) -> str:
    """Socket path for a (user, host, port) master.

    Unix sockets are limited to ~104 bytes, so the path is a short hash.
    """
    digest = hashlib.sha1(f"{user}@{host}:{port}".encode()).hexdigest()[:12]
    base = directory or os.path.join(tempfile.gettempdir(), f"rdebug-{os.getuid()}")
    return os.path.join(base, f"cm-{digest}")


def classify_ssh_failure(exit_code: int, stderr: str, host: str, port: int) -> Optional[Exception]:
    """Map an ssh/sshpass failure to a typed error, or None if it is a remote command failure."""
    if exit_code == SSHPASS_WRONG_PASSWORD or any(m in stderr for m in AUTH_MARKERS):
        return AuthError(
            f"Authentication to {host}:{port} failed\n"
            f"Check REMOTE_SSH_PASS (or SSHPASS) / REMOTE_SSH_KEY.\n"
            f"ssh said: {stderr.strip()}"
        )
    if exit_code == SSHPASS_HOST_KEY_UNKNOWN:
        return AuthError(f"Host key of {host} is unknown and could not be accepted")
    if any(m in stderr for m in REFUSED_MARKERS):
        return ConnectionRefused(
            f"Connection to {host}:{port} refused\n"
            f"Is sshd running on the device and listening on port {port}?"
        )
    if exit_code == SSH_EXIT_ERROR or any(m in stderr for m in UNREACHABLE_MARKERS):
        return RemoteConnectionError(
            f"Cannot reach {host}:{port}\n"
            f"Troubleshooting:\n"
            f"  1. Check network: ping {host}\n"
            f"  2. Verify SSH access: ssh -p {port} root@{host}\n"
            f"ssh said: {stderr.strip()}"
        )
    return None


class ConnectionPool:
    """Open control channels keyed by (host, port).

    Handles are shared by every component of a SessionManager; each carries
    its own lock so commands on one channel never interleave.
    """

    def __init__(self):
        self._handles: Dict[Tuple[str, int], ConnectionHandle] = {}
        self._lock = threading.Lock()

    def get(self, host: str, port: int) -> Optional[ConnectionHandle]:
        with self._lock:
            return self._handles.get((host, port))

    def put(self, handle: ConnectionHandle) -> None:
        with self._lock:
            self._handles[handle.key] = handle

    def remove(self, host: str, port: int) -> Optional[ConnectionHandle]:
        with self._lock:
            return self._handles.pop((host, port), None)

    def handles(self) -> List[ConnectionHandle]:
        with self._lock:
            return list(self._handles.values())


class SSHTransport:
    """
    Executes remote operations over multiplexed SSH.

    Args:
        process_executor: Runs ssh/scp/rsync
        env_provider: Base environment for child processes
        tool_locator: Detects sshpass / rsync availability
        logger: Logging abstraction
        pool: Shared ConnectionPool (one per SessionManager)
        control_dir: Directory for control sockets (default: $TMPDIR/rdebug-<uid>)
    """

    def __init__(
        self,
        process_executor: ProcessExecutor,
        env_provider: EnvironmentProvider,
        tool_locator: ToolLocator,
        logger: Logger,
        pool: Optional[ConnectionPool] = None,
        control_dir: Optional[str] = None,
    ):
        self.process = process_executor
        self.env = env_provider
        self.tools = tool_locator
        self.log = logger
        self.pool = pool or ConnectionPool()
        self.control_dir = control_dir

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    def _ssh_options(self, handle: ConnectionHandle) -> List[str]:
        options = [
            "-o", "StrictHostKeyChecking=no",
            "-o", "UserKnownHostsFile=/dev/null",
            "-o", "LogLevel=ERROR",
            "-o", f"ConnectTimeout={CONNECT_TIMEOUT_SECONDS}",
            "-o", "ControlMaster=auto",
            "-o", f"ControlPath={handle.control_path}",
            "-o", f"ControlPersist={CONTROL_PERSIST_SECONDS}",
        ]
        if handle.credentials.identity_file:
            options += ["-i", handle.credentials.identity_file]
        if not handle.credentials.password:
            options += ["-o", "BatchMode=yes"]
        return options

    def _auth_prefix(self, handle: ConnectionHandle) -> List[str]:
        return ["sshpass", "-e"] if handle.credentials.password else []

    def child_env(self, handle: ConnectionHandle) -> Dict[str, str]:
        env = self.env.get_environ()
        if handle.credentials.password:
            env["SSHPASS"] = handle.credentials.password
        return env

    def ssh_cmd(self, handle: ConnectionHandle, command: str) -> List[str]:
        """Build the full argv for running command on the remote host."""
        return (
            self._auth_prefix(handle)
            + ["ssh", "-p", str(handle.port)]
            + self._ssh_options(handle)
            + [handle.target, command]
        )

    def ssh_shell(self, handle: ConnectionHandle) -> str:
        """ssh invocation as a single string, for rsync's -e option."""
        parts = ["ssh", "-p", str(handle.port)] + self._ssh_options(handle)
        return " ".join(shlex.quote(p) for p in parts)

    def _execute(
        self,
        handle: ConnectionHandle,
        cmd: List[str],
        input: Optional[bytes] = None,
        timeout: float = COMMAND_TIMEOUT_SECONDS,
    ) -> CommandResult:
        with handle.lock:
            try:
                result = self.process.run(cmd, input=input, env=self.child_env(handle), timeout=timeout)
            except subprocess.TimeoutExpired:
                raise RemoteConnectionError(
                    f"Command to {handle.host} timed out after {timeout}s: {cmd[-1]}"
                )
            except FileNotFoundError as e:
                raise ConfigurationError(f"Required local tool not found: {e.filename or cmd[0]}")
        return CommandResult(
            exit_code=result.returncode,
            stdout=_decode(result.stdout),
            stderr=_decode(result.stderr),
        )

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def connect(self, host: str, port: int, credentials: Credentials) -> ConnectionHandle:
        """
        Open (or reuse) the control channel to host:port.

        Raises:
            ConfigurationError: host missing, or sshpass needed but not installed
            AuthError: credentials rejected
            RemoteConnectionError / ConnectionRefused: host unreachable
        """
        if not host:
            raise ConfigurationError("REMOTE_SSH_HOST is not set")

        existing = self.pool.get(host, port)
        if existing is not None and self.is_alive(existing):
            self.log.debug(f"Reusing control channel to {host}:{port}")
            return existing

        if credentials.password and not self.tools.has_tool("sshpass"):
            raise ConfigurationError(
                "Password authentication requires 'sshpass'\n"
                "Install it (apt install sshpass) or configure REMOTE_SSH_KEY instead."
            )

        control_path = control_path_for(host, port, credentials.user, self.control_dir)
        os.makedirs(os.path.dirname(control_path), mode=0o700, exist_ok=True)
        handle = ConnectionHandle(host=host, port=port, credentials=credentials, control_path=control_path)

        # -f -N: authenticate, then leave the master running in the background
        cmd = (
            self._auth_prefix(handle)
            + ["ssh", "-p", str(port)]
            + self._ssh_options(handle)
            + ["-f", "-N", handle.target]
        )
        self.log.debug(f"Opening control channel to {host}:{port}")
        result = self._execute(handle, cmd, timeout=CONNECT_TIMEOUT_SECONDS * 3)
        if not result.ok:
            error = classify_ssh_failure(result.exit_code, result.stderr, host, port)
            raise error or RemoteConnectionError(
                f"Failed to open SSH control channel to {host}:{port}: {result.stderr.strip()}"
            )

        self.pool.put(handle)
        return handle

    def is_alive(self, handle: ConnectionHandle) -> bool:
        """Ask the master process whether it is still running."""
        cmd = ["ssh", "-o", f"ControlPath={handle.control_path}", "-O", "check", handle.target]
        try:
            result = self._execute(handle, cmd, timeout=CONNECT_TIMEOUT_SECONDS)
        except (RemoteConnectionError, ConfigurationError):
            return False
        return result.ok

    def disconnect(self, handle: ConnectionHandle) -> None:
        """Stop the master. Tolerates a master that has already gone away."""
        self.pool.remove(handle.host, handle.port)
        cmd = ["ssh", "-o", f"ControlPath={handle.control_path}", "-O", "exit", handle.target]
        try:
            self._execute(handle, cmd, timeout=CONNECT_TIMEOUT_SECONDS)
        except (RemoteConnectionError, ConfigurationError) as e:
            self.log.debug(f"Control channel to {handle.host} already closed: {e}")

    def disconnect_all(self) -> None:
        for handle in self.pool.handles():
            self.disconnect(handle)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def run_remote(self, handle: ConnectionHandle, command: str, timeout: float = COMMAND_TIMEOUT_SECONDS) -> CommandResult:
        """
        Run one shell command on the remote host.

        A non-zero exit of the remote command is returned, not raised;
        transport-level failures (auth, unreachable) raise.
        """
        result = self._execute(handle, self.ssh_cmd(handle, command), timeout=timeout)
        if result.exit_code == SSH_EXIT_ERROR or result.exit_code == SSHPASS_WRONG_PASSWORD:
            error = classify_ssh_failure(result.exit_code, result.stderr, handle.host, handle.port)
            if error is not None:
                raise error
        return result

    def upload_file(self, handle: ConnectionHandle, local_path: str, remote_path: str) -> CommandResult:
        """Copy one file with scp over the control channel."""
        cmd = (
            self._auth_prefix(handle)
            + ["scp", "-q", "-P", str(handle.port)]
            + self._ssh_options(handle)
            + [local_path, f"{handle.target}:{remote_path}"]
        )
        result = self._execute(handle, cmd)
        if not result.ok:
            error = classify_ssh_failure(result.exit_code, result.stderr, handle.host, handle.port)
            if isinstance(error, AuthError):
                raise error
            raise TransferFailed(f"scp {local_path} -> {remote_path} failed: {result.stderr.strip()}")
        return result

    def upload_batch(self, handle: ConnectionHandle, local_paths: List[str], remote_dir: str) -> CommandResult:
        """
        Transfer many files into one remote directory in a single round trip.

        The files are packed into an in-memory tar archive (flat, by basename,
        modes preserved) and piped into ``tar -xf -`` on the remote side.
        """
        if not local_paths:
            return CommandResult(0, "", "")

        archive = build_tar_archive([(p, Path(p).name) for p in local_paths])
        command = f"tar -xf - -C {shlex.quote(remote_dir)}"
        result = self._execute(handle, self.ssh_cmd(handle, command), input=archive)
        if not result.ok:
            error = classify_ssh_failure(result.exit_code, result.stderr, handle.host, handle.port)
            if isinstance(error, AuthError):
                raise error
            raise TransferFailed(
                f"Batch upload of {len(local_paths)} file(s) to {remote_dir} failed: {result.stderr.strip()}"
            )
        return result

    def sync_directory(self, handle: ConnectionHandle, local_dir: str, remote_dir: str) -> CommandResult:
        """
        Copy a directory's contents into remote_dir.

        Additive only: files that exist remotely but not locally are left
        alone. Uses rsync when both ends have it, otherwise a tar stream.
        """
        if self.tools.has_tool("rsync") and self._remote_has_rsync(handle):
            cmd = (
                self._auth_prefix(handle)
                + ["rsync", "-a", "-e", self.ssh_shell(handle)]
                + [local_dir.rstrip("/") + "/", f"{handle.target}:{remote_dir.rstrip('/')}/"]
            )
            result = self._execute(handle, cmd)
        else:
            archive = build_tar_archive(_walk_directory(local_dir))
            quoted = shlex.quote(remote_dir)
            command = f"mkdir -p {quoted} && tar -xf - -C {quoted}"
            result = self._execute(handle, self.ssh_cmd(handle, command), input=archive)

        if not result.ok:
            error = classify_ssh_failure(result.exit_code, result.stderr, handle.host, handle.port)
            if isinstance(error, AuthError):
                raise error
            raise TransferFailed(f"Sync {local_dir} -> {remote_dir} failed: {result.stderr.strip()}")
        return result

    def _remote_has_rsync(self, handle: ConnectionHandle) -> bool:
        if handle.remote_rsync is None:
            result = self.run_remote(handle, "command -v rsync >/dev/null 2>&1")
            handle.remote_rsync = result.ok
        return handle.remote_rsync

    # ------------------------------------------------------------------
    # Async variants: run in a worker thread, never block the event loop
    # ------------------------------------------------------------------

    async def connect_async(self, host: str, port: int, credentials: Credentials) -> ConnectionHandle:
        return await asyncio.to_thread(self.connect, host, port, credentials)

    async def run_remote_async(self, handle: ConnectionHandle, command: str, timeout: float = COMMAND_TIMEOUT_SECONDS) -> CommandResult:
        return await asyncio.to_thread(self.run_remote, handle, command, timeout)

    async def upload_file_async(self, handle: ConnectionHandle, local_path: str, remote_path: str) -> CommandResult:
        return await asyncio.to_thread(self.upload_file, handle, local_path, remote_path)

    async def upload_batch_async(self, handle: ConnectionHandle, local_paths: List[str], remote_dir: str) -> CommandResult:
        return await asyncio.to_thread(self.upload_batch, handle, local_paths, remote_dir)

    async def sync_directory_async(self, handle: ConnectionHandle, local_dir: str, remote_dir: str) -> CommandResult:
        return await asyncio.to_thread(self.sync_directory, handle, local_dir, remote_dir)

    async def disconnect_async(self, handle: ConnectionHandle) -> None:
        await asyncio.to_thread(self.disconnect, handle)


def build_tar_archive(entries: List[Tuple[str, str]]) -> bytes:
    """Pack (local_path, archive_name) pairs into an uncompressed tar.

    Uncompressed because BusyBox tar on small targets often lacks gzip.
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.USTAR_FORMAT) as tar:
        for local_path, arcname in entries:
            info = tar.gettarinfo(local_path, arcname=arcname)
            info.uid = info.gid = 0
            info.uname = info.gname = "root"
            if info.isfile():
                with open(local_path, "rb") as f:
                    tar.addfile(info, f)
            else:
                tar.addfile(info)
    return buffer.getvalue()


def _walk_directory(local_dir: str) -> List[Tuple[str, str]]:
    root = Path(local_dir)
    return [(str(p), str(p.relative_to(root))) for p in sorted(root.rglob("*"))]


def _decode(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)

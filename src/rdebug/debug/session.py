"""
Remote debug sessions.

SessionManager owns every stateful piece of a remote debug workflow (the
connection pool, the gdbserver supervisor, the output monitor and the one
active RemoteSession) and exposes the operations a host drives:

    deploy()                scan the build tree and copy artifacts
    start_remote_debug()    deploy, start gdbserver, attach output streaming
    run_debugger()          run the local debugger, tear down when it exits
    stop_session()          stop streaming, kill gdbserver
    diagnostic()            read-only health report
    show_planned_commands() the exact remote commands, without running them
    cleanup_monitor(), monitor_status()
"""

import asyncio
import os
import posixpath
import shlex
from dataclasses import dataclass, field
from typing import List, Optional

from rdebug.core.protocols import (
    DebuggerLauncher,
    EnvironmentProvider,
    FileSystemService,
    Logger,
    OutputSink,
    ProcessExecutor,
    Prompter,
    TimeProvider,
    ToolLocator,
)
from rdebug.deploy.base import (
    CleanupResult,
    DeploymentReport,
    DeploymentStatus,
    InstallItem,
    ItemKind,
    group_items,
    is_protected_path,
)
from rdebug.deploy.exceptions import (
    ConfigurationError,
    RemoteProcessError,
    TransferFailed,
)
from rdebug.deploy.manifest import ManifestScanner
from rdebug.deploy.orchestrator import DeploymentOrchestrator
from rdebug.deploy.transport import ConnectionPool, SSHTransport
from rdebug.debug.diagnostic import DiagnosticReport, RemoteDiagnostics
from rdebug.debug.monitor import MonitorStatus, OutputMonitor, tail_command, tail_pattern
from rdebug.debug.supervisor import (
    RemoteProcessSupervisor,
    VerificationResult,
    gdb_setup_commands,
    gdbserver_pattern,
    kill_pattern_command,
)
from rdebug.utils.config import RemoteSettings


@dataclass
class RemoteSession:
    """State of one remote-debug attempt."""
    ssh_host: str
    ssh_port: int
    gdb_port: int
    local_program_path: str
    remote_program_path: str
    output_file: str
    control_script_path: str
    program_args: List[str] = field(default_factory=list)
    library_dirs: List[str] = field(default_factory=list)
    process_id: Optional[int] = None
    verification: Optional[VerificationResult] = None

    @classmethod
    def create(
        cls,
        settings: RemoteSettings,
        local_program_path: str,
        remote_program_path: str,
        program_args: Optional[List[str]] = None,
        library_dirs: Optional[List[str]] = None,
    ) -> "RemoteSession":
        """Derive scratch paths (<tmp>/<program>.output, <tmp>/<program>.sh)."""
        scratch = posixpath.join(settings.remote_tmp_dir, posixpath.basename(remote_program_path))
        return cls(
            ssh_host=settings.ssh_host,
            ssh_port=settings.ssh_port,
            gdb_port=settings.gdb_port,
            local_program_path=local_program_path,
            remote_program_path=remote_program_path,
            output_file=f"{scratch}.output",
            control_script_path=f"{scratch}.sh",
            program_args=list(program_args or []),
            library_dirs=list(library_dirs or []),
        )

    @property
    def server_address(self) -> str:
        return f"{self.ssh_host}:{self.gdb_port}"


class SessionManager:
    """
    Coordinates deployment and remote debugging for one device.

    Args:
        settings: Resolved configuration
        filesystem: Local filesystem access
        process_executor: Subprocess execution
        time_provider: Waits and backoff
        env_provider: Environment for child processes
        tool_locator: Local tool discovery
        logger: Persistent log surface
        prompter: Asks the user for program arguments / path
        sink: Receives streamed remote output
        debugger: Local debugger front-end
    """

    def __init__(
        self,
        settings: RemoteSettings,
        filesystem: FileSystemService,
        process_executor: ProcessExecutor,
        time_provider: TimeProvider,
        env_provider: EnvironmentProvider,
        tool_locator: ToolLocator,
        logger: Logger,
        prompter: Prompter,
        sink: OutputSink,
        debugger: Optional[DebuggerLauncher] = None,
    ):
        self.settings = settings
        self.fs = filesystem
        self.time = time_provider
        self.tools = tool_locator
        self.log = logger
        self.prompter = prompter
        self.sink = sink
        self.debugger = debugger

        self.pool = ConnectionPool()
        self.transport = SSHTransport(process_executor, env_provider, tool_locator, logger, pool=self.pool)
        self.scanner = ManifestScanner(filesystem, logger)
        self.orchestrator = DeploymentOrchestrator(self.transport, filesystem, logger)
        self.supervisor = RemoteProcessSupervisor(self.transport, time_provider, logger)
        self.monitor = OutputMonitor(self.transport, process_executor, sink, logger)
        self.diagnostics = RemoteDiagnostics(self.transport, filesystem, tool_locator, logger)
        self.session: Optional[RemoteSession] = None

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def scan(self) -> List[InstallItem]:
        """Scan the configured build tree for install items."""
        if not self.settings.build_dir:
            raise ConfigurationError(
                "No build directory: pass --build-dir or run from a tree containing CMakeCache.txt"
            )
        return self.scanner.scan_build_tree(self.settings.build_dir, self.settings.install_prefix)

    def _same_file(self, a: str, b: str) -> bool:
        return os.path.realpath(a) == os.path.realpath(b)

    def with_program(self, items: List[InstallItem], local_program: Optional[str]) -> List[InstallItem]:
        """Append the debug target if no manifest installs it."""
        if not local_program:
            return items
        if any(i.kind == ItemKind.EXECUTABLE and self._same_file(i.source, local_program) for i in items):
            return items
        return items + [InstallItem(
            kind=ItemKind.EXECUTABLE,
            source=local_program,
            destination=self.settings.deploy_remote_path,
        )]

    def remote_program_for(self, items: List[InstallItem], local_program: str) -> str:
        for item in items:
            if item.kind == ItemKind.EXECUTABLE and self._same_file(item.source, local_program):
                return posixpath.join(item.destination, item.name)
        return posixpath.join(self.settings.deploy_remote_path, os.path.basename(local_program))

    @staticmethod
    def library_dirs(items: List[InstallItem]) -> List[str]:
        dirs: List[str] = []
        for item in items:
            if item.kind == ItemKind.LIBRARY and item.destination not in dirs:
                dirs.append(item.destination)
        return dirs

    def resolve_program(self, interactive: bool = True) -> str:
        """Local executable to debug: LOCAL_PROGRAM_PATH, else ask (default from CMakeCache)."""
        program = self.settings.local_program_path
        if program and self.fs.is_file(program) and self.fs.is_readable(program):
            return program

        if not interactive:
            raise ConfigurationError(
                f"LOCAL_PROGRAM_PATH is not set or not readable: {program or '(unset)'}"
            )

        answer = self.prompter.ask("Program to debug", default=self.settings.default_program_path or "")
        if not answer:
            raise ConfigurationError("No executable given and LOCAL_PROGRAM_PATH is not set")
        if not (self.fs.is_file(answer) and self.fs.is_readable(answer)):
            raise ConfigurationError(f"Executable does not exist or is not readable: {answer}")
        self.settings.local_program_path = answer
        return answer

    def _scan_or_empty(self) -> List[InstallItem]:
        try:
            return self.scan()
        except ConfigurationError as e:
            self.log.warning(f"{e}\nDeploying only the debug target.")
            return []

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    async def deploy(self, items: Optional[List[InstallItem]] = None) -> DeploymentReport:
        """
        Scan (unless items are given) and deploy.

        Returns a DeploymentReport; configuration problems end up in
        report.error rather than being raised.
        """
        try:
            self.settings.require_connection()
            if items is None:
                items = self.with_program(self.scan(), self.settings.local_program_path)
        except ConfigurationError as e:
            self.log.error(str(e))
            return DeploymentReport(error=e)

        return await self.orchestrator.deploy(
            items,
            self.settings.ssh_host,
            self.settings.ssh_port,
            self.settings.credentials,
        )

    # ------------------------------------------------------------------
    # Debug session
    # ------------------------------------------------------------------

    def ask_arguments(self) -> List[str]:
        answer = self.prompter.ask("Program arguments", default="")
        if answer is None:
            raise ConfigurationError("Debug session cancelled")
        try:
            return shlex.split(answer)
        except ValueError as e:
            raise ConfigurationError(f"Cannot parse program arguments: {e}")

    async def start_remote_debug(
        self,
        args: Optional[List[str]] = None,
        deploy: bool = True,
        interactive: bool = True,
    ) -> RemoteSession:
        """
        Deploy, start gdbserver, attach the output monitor.

        Args:
            args: Program arguments (None: ask the user)
            deploy: Deploy before starting (skip when artifacts are current)
            interactive: Allow prompting for missing input

        Returns:
            The running RemoteSession

        Raises:
            ConfigurationError, AuthError, RemoteConnectionError,
            TransferFailed, RemoteProcessError
        """
        self.settings.require_connection()
        if args is None:
            args = self.ask_arguments() if interactive else []
        local_program = self.resolve_program(interactive)

        items = self.with_program(
            self._scan_or_empty() if self.settings.build_dir else [],
            local_program,
        )

        if deploy:
            report = await self.deploy(items)
            if report.error is not None:
                raise report.error
            program_key = next(i.key for i in items if i.kind == ItemKind.EXECUTABLE
                               and self._same_file(i.source, local_program))
            if program_key not in {i.key for i in report.deployed}:
                raise TransferFailed(f"{local_program} was not deployed; see the log above")
            if report.status == DeploymentStatus.PARTIAL:
                self.log.warning("Deployment was partial; continuing because the program itself was deployed")

        if self.session is not None:
            await self.stop_session()

        handle = await self.transport.connect_async(
            self.settings.ssh_host, self.settings.ssh_port, self.settings.credentials
        )
        session = RemoteSession.create(
            self.settings,
            local_program,
            self.remote_program_for(items, local_program),
            args,
            self.library_dirs(items),
        )
        self.session = session

        try:
            self.log.info(f"Preparing gdbserver on {session.ssh_host}...")
            await self.supervisor.prepare(handle, session)
            await self.supervisor.start(handle, session)

            wait_seconds = self.settings.debug_wait_ms / 1000
            self.log.info(f"Waiting {wait_seconds:g}s for gdbserver to listen...")
            await self.time.async_sleep(wait_seconds)

            if self.settings.monitor_enabled:
                # wait for both even when one fails
                outcomes = await asyncio.gather(
                    self.supervisor.verify(handle, session),
                    self.monitor.start(handle, session.output_file),
                    return_exceptions=True,
                )
                for outcome in outcomes:
                    if isinstance(outcome, BaseException):
                        raise outcome
                verification = outcomes[0]
            else:
                self.log.info("Remote output monitoring disabled (DAP_MONITOR_ENABLED=false)")
                verification = await self.supervisor.verify(handle, session)
            session.verification = verification
        except Exception as e:
            self.log.error(str(e))
            await self.stop_session()
            raise

        return session

    async def run_debugger(self, session: Optional[RemoteSession] = None) -> int:
        """Run the local debugger against the session; tear the session down afterwards."""
        session = session or self.session
        if session is None:
            raise ConfigurationError("No active remote debug session")
        if self.debugger is None:
            raise ConfigurationError("No debugger front-end configured")

        self.log.info(f"Connecting debugger to {session.server_address}...")
        try:
            return await self.debugger.run(
                session.local_program_path,
                session.server_address,
                gdb_setup_commands(self.settings.target_sysroot),
            )
        finally:
            await self.stop_session()

    async def stop_session(self) -> CleanupResult:
        """
        Tear down the active session.

        Stops streaming (local client and remote tail) and kills gdbserver.
        Each step is attempted even if an earlier one fails; errors are
        collected. The sink stays open so a later session on this manager
        keeps streaming into it; shutdown() releases it.
        """
        errors = []

        try:
            await self.monitor.cleanup()
        except Exception as e:
            errors.append(f"Failed to stop output monitor: {e}")

        try:
            handle = self.pool.get(self.settings.ssh_host, self.settings.ssh_port)
            result = await self.supervisor.terminate(handle)
            errors.extend(result.errors)
        except Exception as e:
            errors.append(f"Failed to stop gdbserver: {e}")

        for error in errors:
            self.log.warning(error)
        self.session = None
        return CleanupResult(success=len(errors) == 0, errors=errors)

    async def shutdown(self) -> CleanupResult:
        """Stop the session, release the output sink and close every control channel."""
        result = await self.stop_session()

        try:
            self.sink.close()
        except Exception as e:
            result.errors.append(f"Failed to release output sink: {e}")

        for handle in self.pool.handles():
            try:
                await self.transport.disconnect_async(handle)
            except Exception as e:
                result.errors.append(f"Failed to close connection to {handle.host}: {e}")
        result.success = len(result.errors) == 0
        return result

    async def cleanup_remote(self) -> CleanupResult:
        """Kill leftover gdbserver / tail processes from earlier runs on the device."""
        self.settings.require_connection()
        handle = await self.transport.connect_async(
            self.settings.ssh_host, self.settings.ssh_port, self.settings.credentials
        )
        commands = [kill_pattern_command(gdbserver_pattern(self.settings.gdb_port))]
        program = self.settings.local_program_path or self.settings.default_program_path
        if program:
            output_file = posixpath.join(self.settings.remote_tmp_dir, os.path.basename(program)) + ".output"
            commands.append(kill_pattern_command(tail_pattern(output_file)))

        errors = []
        result = await self.transport.run_remote_async(handle, "; ".join(commands))
        if not result.ok:
            errors.append(result.stderr.strip())
        await self.transport.disconnect_async(handle)
        return CleanupResult(success=not errors, errors=errors)

    # ------------------------------------------------------------------
    # Monitor control
    # ------------------------------------------------------------------

    async def cleanup_monitor(self) -> bool:
        """Stop streaming without ending the session. Returns whether it was active."""
        was_active = self.monitor.active
        await self.monitor.cleanup()
        return was_active

    def monitor_status(self) -> MonitorStatus:
        return self.monitor.status()

    # ------------------------------------------------------------------
    # Read-only helpers
    # ------------------------------------------------------------------

    async def diagnostic(self) -> DiagnosticReport:
        return await self.diagnostics.run(self.settings, self._scan_quietly())

    def _scan_quietly(self) -> Optional[List[InstallItem]]:
        try:
            return self.scan()
        except ConfigurationError:
            return None

    def show_planned_commands(self, args: Optional[List[str]] = None) -> List[str]:
        """
        Every remote command a deploy + debug run would issue, in order.

        Purely local: reads the build tree, never connects.
        """
        program = self.settings.local_program_path or self.settings.default_program_path or "<program>"
        items = self.with_program(self._scan_quietly() or [], program)
        lines = ["# deploy"]

        for group in group_items([i for i in items if not is_protected_path(i.destination)]):
            destination = shlex.quote(group.destination)
            lines.append(f"mkdir -p {destination}")
            for item in group.directories:
                target = group.destination if item.contents_only else posixpath.join(group.destination, item.name)
                lines.append(f"# sync {item.source}/ -> {target}/ (rsync -a, no delete)")
            if group.batch_items:
                names = " ".join(i.name for i in group.batch_items)
                lines.append(f"tar -xf - -C {destination}  # {names}")
            if group.executables:
                lines.append("chmod +x " + " ".join(
                    shlex.quote(posixpath.join(group.destination, i.name)) for i in group.executables
                ))
        for item in items:
            if is_protected_path(item.destination):
                lines.append(f"# refused (protected path): {item.source} -> {item.destination}")

        session = RemoteSession.create(
            self.settings,
            program,
            self.remote_program_for(items, program),
            args or [],
            self.library_dirs(items),
        )
        lines.append("# gdbserver")
        lines.extend(self.supervisor.planned_commands(session))
        if self.settings.monitor_enabled:
            lines.append("# output streaming")
            lines.append(tail_command(session.output_file))
        lines.append("# local debugger")
        lines.extend(gdb_setup_commands(self.settings.target_sysroot))
        lines.append(f"target remote {session.server_address}")
        return lines

"""Read-only health report for the remote debug setup.

Nothing here changes remote state: the checks only read configuration,
run ``echo``/``ps``/``ss`` style queries and report.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from rdebug.core.protocols import FileSystemService, Logger, ToolLocator
from rdebug.deploy.base import InstallItem, is_protected_path
from rdebug.deploy.exceptions import (
    AuthError,
    ConfigurationError,
    RemoteConnectionError,
)
from rdebug.deploy.transport import ConnectionHandle, SSHTransport
from rdebug.utils.config import RemoteSettings


class DiagnosticCheck:
    """Represents a single diagnostic check"""
    def __init__(self, name: str, status: str, message: str, critical: bool = False):
        self.name = name
        self.status = status  # 'pass', 'warn', 'fail', 'skip'
        self.message = message
        self.critical = critical


@dataclass
class DiagnosticReport:
    settings_lines: List[str] = field(default_factory=list)
    checks: List[DiagnosticCheck] = field(default_factory=list)

    @property
    def all_pass(self) -> bool:
        return all(
            check.status != 'fail' and not (check.critical and check.status == 'warn')
            for check in self.checks
        )

    def check(self, name: str) -> Optional[DiagnosticCheck]:
        for c in self.checks:
            if c.name == name:
                return c
        return None


class RemoteDiagnostics:
    """Remote setup checker with dependency injection.

    Args:
        transport: SSH transport (only used for read-only queries)
        filesystem: Local filesystem access
        tool_locator: Local tool discovery
        logger: Logging abstraction
    """

    def __init__(
        self,
        transport: SSHTransport,
        filesystem: FileSystemService,
        tool_locator: ToolLocator,
        logger: Logger,
    ):
        self.transport = transport
        self.fs = filesystem
        self.tools = tool_locator
        self.log = logger

    def check_configuration(self, settings: RemoteSettings) -> DiagnosticCheck:
        try:
            settings.require_connection()
        except ConfigurationError as e:
            return DiagnosticCheck('Configuration', 'fail', str(e).splitlines()[0], critical=True)
        return DiagnosticCheck('Configuration', 'pass', f'Target {settings.ssh_user}@{settings.ssh_host}:{settings.ssh_port}')

    def check_local_tools(self, settings: RemoteSettings) -> DiagnosticCheck:
        required = ['ssh', 'scp', 'tar']
        if settings.ssh_password:
            required.append('sshpass')
        missing = [tool for tool in required if not self.tools.has_tool(tool)]
        if missing:
            return DiagnosticCheck('Local tools', 'fail', f"Missing: {', '.join(missing)}", critical=True)

        notes = []
        if not self.tools.has_tool('rsync'):
            notes.append('rsync not found (directories will be copied with tar)')
        if not self.tools.has_tool(settings.local_gdb_path):
            notes.append(f'debugger {settings.local_gdb_path} not found')
        if notes:
            return DiagnosticCheck('Local tools', 'warn', '; '.join(notes))
        return DiagnosticCheck('Local tools', 'pass', ', '.join(required + ['rsync', settings.local_gdb_path]))

    def check_program(self, settings: RemoteSettings) -> DiagnosticCheck:
        program = settings.local_program_path
        if not program:
            default = settings.default_program_path
            hint = f' (will suggest {default})' if default else ''
            return DiagnosticCheck('Local program', 'warn', f'LOCAL_PROGRAM_PATH not set{hint}')
        if not (self.fs.is_file(program) and self.fs.is_readable(program)):
            return DiagnosticCheck('Local program', 'fail', f'Not readable: {program}')
        return DiagnosticCheck('Local program', 'pass', program)

    def check_deploy_path(self, settings: RemoteSettings, items: Optional[List[InstallItem]]) -> DiagnosticCheck:
        if is_protected_path(settings.deploy_remote_path):
            return DiagnosticCheck(
                'Deploy path', 'fail',
                f'DEPLOY_REMOTE_PATH={settings.deploy_remote_path} is a protected system directory',
                critical=True,
            )
        if items is None:
            return DiagnosticCheck('Deploy path', 'warn', 'No install manifests found in the build tree')

        destinations = sorted({i.destination for i in items})
        if settings.deploy_remote_path in destinations:
            return DiagnosticCheck(
                'Deploy path', 'warn',
                f'DEPLOY_REMOTE_PATH={settings.deploy_remote_path} is also an install destination; '
                f'the debug binary may overwrite an installed file',
            )
        refused = [d for d in destinations if is_protected_path(d)]
        if refused:
            return DiagnosticCheck('Deploy path', 'warn', f"Install destinations refused: {', '.join(refused)}")
        return DiagnosticCheck('Deploy path', 'pass', f'{len(items)} item(s) to {len(destinations)} destination(s)')

    async def check_connectivity(self, settings: RemoteSettings) -> tuple:
        """Returns (check, handle or None)."""
        try:
            handle = await self.transport.connect_async(settings.ssh_host, settings.ssh_port, settings.credentials)
            result = await self.transport.run_remote_async(handle, 'echo OK')
        except AuthError as e:
            return DiagnosticCheck('SSH connection', 'fail', f'Authentication failed: {e}', critical=True), None
        except (RemoteConnectionError, ConfigurationError) as e:
            return DiagnosticCheck('SSH connection', 'fail', str(e).splitlines()[0], critical=True), None

        if result.stdout.strip() != 'OK':
            return DiagnosticCheck('SSH connection', 'fail', f'Unexpected reply: {result.stdout.strip()!r}', critical=True), handle
        return DiagnosticCheck('SSH connection', 'pass', 'OK'), handle

    async def check_gdbserver(self, handle: ConnectionHandle) -> DiagnosticCheck:
        result = await self.transport.run_remote_async(handle, 'command -v gdbserver || which gdbserver')
        path = result.stdout.strip()
        if not result.ok or not path:
            return DiagnosticCheck('gdbserver', 'fail', 'gdbserver not found on the device PATH', critical=True)
        return DiagnosticCheck('gdbserver', 'pass', path)

    async def check_running(self, handle: ConnectionHandle) -> DiagnosticCheck:
        result = await self.transport.run_remote_async(handle, 'ps | grep gdbserver | grep -v grep')
        lines = [l for l in result.stdout.splitlines() if l.strip()]
        if lines:
            return DiagnosticCheck('gdbserver processes', 'warn', f'{len(lines)} running: ' + ' | '.join(lines))
        return DiagnosticCheck('gdbserver processes', 'pass', 'none running')

    async def check_port(self, handle: ConnectionHandle, gdb_port: int) -> DiagnosticCheck:
        result = await self.transport.run_remote_async(
            handle, '(ss -tuln 2>/dev/null || netstat -tuln 2>/dev/null) | grep LISTEN'
        )
        listening = [l for l in result.stdout.splitlines() if f':{gdb_port} ' in l or l.rstrip().endswith(f':{gdb_port}')]
        if listening:
            return DiagnosticCheck('GDB port', 'warn', f'Port {gdb_port} already in use')
        return DiagnosticCheck('GDB port', 'pass', f'Port {gdb_port} free')

    async def run(self, settings: RemoteSettings, items: Optional[List[InstallItem]] = None) -> DiagnosticReport:
        """Run every check; remote checks are skipped when the device is unreachable."""
        report = DiagnosticReport(settings_lines=settings.describe())
        report.checks.append(self.check_configuration(settings))
        report.checks.append(self.check_local_tools(settings))
        report.checks.append(self.check_program(settings))
        report.checks.append(self.check_deploy_path(settings, items))

        if report.checks[0].status == 'fail':
            report.checks.append(DiagnosticCheck('SSH connection', 'skip', 'configuration incomplete'))
            return report

        connectivity, handle = await self.check_connectivity(settings)
        report.checks.append(connectivity)
        if handle is None or connectivity.status == 'fail':
            return report

        try:
            report.checks.append(await self.check_gdbserver(handle))
            report.checks.append(await self.check_running(handle))
            report.checks.append(await self.check_port(handle, settings.gdb_port))
        except (AuthError, RemoteConnectionError) as e:
            report.checks.append(DiagnosticCheck('Remote checks', 'fail', str(e)))
        return report

    def print_results(self, report: DiagnosticReport) -> None:
        """Print the report in the same table layout as the other commands."""
        self.log.info("=" * 80)
        self.log.info("REMOTE DEBUG DIAGNOSTIC")
        self.log.info("=" * 80)
        for line in report.settings_lines:
            self.log.info(f"  {line}")
        self.log.info("")

        symbols = {
            'pass': '✓',
            'warn': '⚠',
            'fail': '✗',
            'skip': '-',
        }
        for check in report.checks:
            symbol = symbols.get(check.status, '?')
            critical_marker = ' [CRITICAL]' if check.critical and check.status != 'pass' else ''
            self.log.info(f"{symbol} {check.name}: {check.message}{critical_marker}")

        self.log.info("")
        pass_count = sum(1 for c in report.checks if c.status == 'pass')
        warn_count = sum(1 for c in report.checks if c.status == 'warn')
        fail_count = sum(1 for c in report.checks if c.status == 'fail')
        self.log.info(f"Summary: {pass_count} passed, {warn_count} warnings, {fail_count} failed")
        self.log.info("=" * 80)

"""
Deployment orchestrator: turns InstallItems into files on the device.

Sequence per invocation:
    1. Refuse items aimed at protected system paths (unconditional)
    2. Skip items whose local source is missing or unreadable
    3. Bucket the rest by destination directory
    4. Open the control channel (failure here aborts before any transfer)
    5. Per group, one after the other: mkdir -p, sync directories,
       one tar batch for files/libraries/executables, chmod +x executables

Groups run strictly sequentially. Small targets do not cope well with
parallel tar extraction, and sequential groups keep the remote log readable.
"""

import posixpath
import shlex
from typing import List

from rdebug.core.protocols import FileSystemService, Logger
from .base import (
    DeploymentGroup,
    DeploymentReport,
    DeploymentStatus,
    InstallItem,
    group_items,
)
from .exceptions import (
    AuthError,
    ConfigurationError,
    RemoteConnectionError,
    SafetyViolation,
    TransferFailed,
)
from .transport import ConnectionHandle, Credentials, SSHTransport


class DeploymentOrchestrator:
    """
    Deploys a list of InstallItems in as few round trips as possible.

    Args:
        transport: SSH transport (shares the session's connection pool)
        filesystem: Local read access for source validation
        logger: Progress and error reporting
    """

    def __init__(self, transport: SSHTransport, filesystem: FileSystemService, logger: Logger):
        self.transport = transport
        self.fs = filesystem
        self.log = logger

    def validate(self, items: List[InstallItem], report: DeploymentReport) -> List[InstallItem]:
        """Drop protected-path and unreadable items, recording why."""
        deployable = []
        for item in items:
            try:
                item.check_destination()
            except SafetyViolation as violation:
                self.log.error(f"{violation} ({item.source})")
                report.violations.append(violation)
                continue

            if not self.fs.exists(item.source) or not self.fs.is_readable(item.source):
                self.log.warning(f"Skipping {item.source}: missing or not readable (not built yet?)")
                report.skipped.append(item.source)
                continue

            deployable.append(item)
        return deployable

    async def deploy(
        self,
        items: List[InstallItem],
        host: str,
        port: int,
        credentials: Credentials,
    ) -> DeploymentReport:
        """
        Deploy items to host:port.

        Never raises for per-group problems; the returned report carries
        succeeded and failed groups. Connection and authentication failures
        end the deployment before any transfer and are stored in report.error.
        """
        report = DeploymentReport()

        if not items:
            report.error = ConfigurationError("Nothing to deploy: no install items found")
            self.log.error(str(report.error))
            return report

        deployable = self.validate(items, report)
        if not deployable:
            self.log.error("No deployable items left after validation")
            return report

        groups = group_items(deployable)
        report.groups_total = len(groups)

        try:
            handle = await self.transport.connect_async(host, port, credentials)
        except (AuthError, RemoteConnectionError, ConfigurationError) as e:
            self.log.error(str(e))
            report.error = e
            return report

        self.log.info(f"Deploying {len(deployable)} item(s) in {len(groups)} group(s) to {host}")
        for index, group in enumerate(groups, start=1):
            self.log.info(f"[{index}/{len(groups)}] {group.destination} ({len(group)} item(s))")
            try:
                await self._deploy_group(handle, group)
            except (TransferFailed, AuthError, RemoteConnectionError) as e:
                self.log.error(f"[{index}/{len(groups)}] {group.destination} failed: {e}")
                report.failed_groups[group.destination] = str(e)
                continue
            report.succeeded_groups.append(group.destination)
            report.deployed.extend(group.directories + group.batch_items)

        self._summarize(report)
        return report

    async def _deploy_group(self, handle: ConnectionHandle, group: DeploymentGroup) -> None:
        destination = group.destination
        quoted = shlex.quote(destination)

        result = await self.transport.run_remote_async(handle, f"mkdir -p {quoted}")
        if not result.ok:
            raise TransferFailed(f"Cannot create {destination}: {result.stderr.strip()}")

        for item in group.directories:
            target = destination if item.contents_only else posixpath.join(destination, item.name)
            self.log.debug(f"  sync {item.source} -> {target}")
            await self.transport.sync_directory_async(handle, item.source, target)

        batch = group.batch_items
        if batch:
            self.log.debug(f"  batch {len(batch)} file(s) -> {destination}")
            await self.transport.upload_batch_async(handle, [i.source for i in batch], destination)

        if group.executables:
            targets = " ".join(
                shlex.quote(posixpath.join(destination, item.name)) for item in group.executables
            )
            result = await self.transport.run_remote_async(handle, f"chmod +x {targets}")
            if not result.ok:
                raise TransferFailed(f"chmod +x failed in {destination}: {result.stderr.strip()}")

    def _summarize(self, report: DeploymentReport) -> None:
        status = report.status
        if status == DeploymentStatus.SUCCESS:
            self.log.info(f"✓ Deploy completed: {len(report.succeeded_groups)}/{report.groups_total} group(s)")
            return

        self.log.warning(
            f"Deploy {status.value}: {len(report.succeeded_groups)}/{report.groups_total} group(s) succeeded"
        )
        for destination, message in report.failed_groups.items():
            self.log.warning(f"  ✗ {destination}: {message}")
        for violation in report.violations:
            self.log.warning(f"  ✗ refused: {violation.destination}")
        for source in report.skipped:
            self.log.warning(f"  - skipped: {source}")

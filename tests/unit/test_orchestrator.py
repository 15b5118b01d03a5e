"""Unit tests for DeploymentOrchestrator."""
import asyncio

from unittest.mock import AsyncMock, Mock, call

from rdebug.deploy.base import DeploymentStatus, InstallItem, ItemKind
from rdebug.deploy.exceptions import (
    AuthError,
    ConfigurationError,
    RemoteConnectionError,
    TransferFailed,
)
from rdebug.deploy.orchestrator import DeploymentOrchestrator
from rdebug.deploy.transport import CommandResult, Credentials


def ok(stdout=""):
    return CommandResult(0, stdout, "")


def create_mock_transport():
    transport = Mock()
    transport.connect_async = AsyncMock(return_value=Mock(host="10.0.0.2"))
    transport.run_remote_async = AsyncMock(return_value=ok())
    transport.upload_batch_async = AsyncMock(return_value=ok())
    transport.sync_directory_async = AsyncMock(return_value=ok())
    return transport


def create_mock_filesystem(unreadable=()):
    fs = Mock()
    fs.exists.side_effect = lambda p: p not in unreadable
    fs.is_readable.return_value = True
    return fs


def deploy(orchestrator, items):
    return asyncio.run(orchestrator.deploy(items, "10.0.0.2", 2222, Credentials(password="pw")))


ITEMS = [
    InstallItem(ItemKind.EXECUTABLE, "/build/app", "/opt/app/bin"),
    InstallItem(ItemKind.LIBRARY, "/build/libcore.so", "/opt/app/lib"),
    InstallItem(ItemKind.FILE, "/src/app.conf", "/opt/app/bin"),
    InstallItem(ItemKind.DIRECTORY, "/src/assets", "/opt/app/share"),
]


class TestDeploy:

    def setup_method(self):
        self.transport = create_mock_transport()
        self.logger = Mock()
        self.orchestrator = DeploymentOrchestrator(self.transport, create_mock_filesystem(), self.logger)

    def test_groups_deploy_with_one_batch_each(self):
        report = deploy(self.orchestrator, ITEMS)

        assert report.status == DeploymentStatus.SUCCESS
        assert report.succeeded_groups == ["/opt/app/bin", "/opt/app/lib", "/opt/app/share"]
        assert self.transport.connect_async.await_count == 1
        assert self.transport.upload_batch_async.await_args_list[0][0][1:] == (
            ["/src/app.conf", "/build/app"], "/opt/app/bin"
        )
        assert self.transport.upload_batch_async.await_count == 2
        self.transport.sync_directory_async.assert_awaited_once()
        assert self.transport.sync_directory_async.await_args[0][1:] == ("/src/assets", "/opt/app/share/assets")

    def test_executables_chmodded_in_one_command(self):
        items = [
            InstallItem(ItemKind.EXECUTABLE, "/build/app", "/opt/bin"),
            InstallItem(ItemKind.EXECUTABLE, "/build/tool", "/opt/bin"),
        ]

        deploy(self.orchestrator, items)

        commands = [c[0][1] for c in self.transport.run_remote_async.await_args_list]
        assert commands == ["mkdir -p /opt/bin", "chmod +x /opt/bin/app /opt/bin/tool"]

    def test_contents_only_directory_syncs_into_destination(self):
        items = [InstallItem(ItemKind.DIRECTORY, "/src/data", "/opt/share", contents_only=True)]

        deploy(self.orchestrator, items)

        assert self.transport.sync_directory_async.await_args[0][2] == "/opt/share"

    def test_protected_destination_is_never_written(self):
        items = [
            InstallItem(ItemKind.EXECUTABLE, "/build/app", "/usr/bin"),
            InstallItem(ItemKind.FILE, "/src/app.conf", "/opt/app"),
        ]

        report = deploy(self.orchestrator, items)

        assert report.status == DeploymentStatus.PARTIAL
        assert [v.destination for v in report.violations] == ["/usr/bin"]
        remote_commands = " ".join(c[0][1] for c in self.transport.run_remote_async.await_args_list)
        assert "/usr/bin" not in remote_commands
        for batch in self.transport.upload_batch_async.await_args_list:
            assert batch[0][2] != "/usr/bin"

    def test_only_protected_items_fails_without_connecting(self):
        report = deploy(self.orchestrator, [InstallItem(ItemKind.FILE, "/src/passwd", "/etc")])

        assert report.status == DeploymentStatus.FAILED
        self.transport.connect_async.assert_not_awaited()

    def test_unreadable_sources_are_skipped(self):
        self.orchestrator.fs = create_mock_filesystem(unreadable={"/build/libcore.so"})

        report = deploy(self.orchestrator, ITEMS)

        assert report.skipped == ["/build/libcore.so"]
        assert "/opt/app/lib" not in report.succeeded_groups
        assert report.status == DeploymentStatus.PARTIAL

    def test_unreachable_host_makes_no_transfer(self):
        self.transport.connect_async.side_effect = RemoteConnectionError("No route to host")

        report = deploy(self.orchestrator, ITEMS)

        assert isinstance(report.error, RemoteConnectionError)
        assert report.status == DeploymentStatus.FAILED
        self.transport.run_remote_async.assert_not_awaited()
        self.transport.upload_batch_async.assert_not_awaited()
        self.transport.sync_directory_async.assert_not_awaited()

    def test_auth_error_is_reported(self):
        self.transport.connect_async.side_effect = AuthError("Permission denied")

        report = deploy(self.orchestrator, ITEMS)

        assert isinstance(report.error, AuthError)

    def test_failed_group_does_not_stop_later_groups(self):
        self.transport.upload_batch_async.side_effect = [TransferFailed("disk full"), ok()]

        report = deploy(self.orchestrator, ITEMS)

        assert report.status == DeploymentStatus.PARTIAL
        assert report.failed_groups == {"/opt/app/bin": "disk full"}
        assert report.succeeded_groups == ["/opt/app/lib", "/opt/app/share"]
        assert report.exit_code() == 2

    def test_mkdir_failure_fails_group(self):
        self.transport.run_remote_async.return_value = CommandResult(1, "", "Read-only file system")

        report = deploy(self.orchestrator, ITEMS[:1])

        assert "Read-only file system" in report.failed_groups["/opt/app/bin"]
        self.transport.upload_batch_async.assert_not_awaited()

    def test_empty_item_list_is_configuration_error(self):
        report = deploy(self.orchestrator, [])

        assert isinstance(report.error, ConfigurationError)
        self.transport.connect_async.assert_not_awaited()

    def test_progress_is_logged_per_group(self):
        deploy(self.orchestrator, ITEMS)

        progress = [c[0][0] for c in self.logger.info.call_args_list if c[0][0].startswith("[")]
        assert progress[0].startswith("[1/3] /opt/app/bin")
        assert progress[-1].startswith("[3/3] /opt/app/share")

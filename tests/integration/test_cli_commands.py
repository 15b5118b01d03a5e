"""Integration tests for the CLI commands.

Parsers are exercised for real; the session manager is patched out so no
command ever reaches a device.
"""
import argparse
import sys

import pytest
from unittest.mock import AsyncMock, Mock, patch

import rdebug
from rdebug.commands import cleanup, debug, deploy, diagnostic, plan, settings_from_args
from rdebug.debug.diagnostic import DiagnosticCheck, DiagnosticReport
from rdebug.deploy.base import CleanupResult, DeploymentReport
from rdebug.deploy.exceptions import ConfigurationError
from rdebug.utils.config import RemoteSettings


def parse(module, argv):
    parser = argparse.ArgumentParser()
    module.setup_parser(parser)
    return parser.parse_args(argv)


def create_mock_manager():
    manager = Mock()
    manager.deploy = AsyncMock(return_value=DeploymentReport(groups_total=1, succeeded_groups=["/opt"]))
    manager.shutdown = AsyncMock(return_value=CleanupResult(success=True, errors=[]))
    manager.diagnostic = AsyncMock(return_value=DiagnosticReport(checks=[DiagnosticCheck('SSH connection', 'pass', 'OK')]))
    manager.cleanup_remote = AsyncMock(return_value=CleanupResult(success=True, errors=[]))
    manager.start_remote_debug = AsyncMock(return_value=Mock(server_address="10.0.0.2:10000"))
    manager.run_debugger = AsyncMock(return_value=0)
    return manager


class TestParsers:

    def test_common_arguments(self):
        args = parse(deploy, ['-B', 'build', '--target', 'root@10.0.0.2:2222', '--gdb-port', '2345', '-v'])

        assert args.build_dir == 'build'
        assert args.target == 'root@10.0.0.2:2222'
        assert args.gdb_port == 2345
        assert args.verbose is True
        assert args.install_prefix is None

    def test_debug_defaults(self):
        args = parse(debug, [])

        assert args.no_deploy is False
        assert args.no_monitor is False
        assert args.server_only is False
        assert args.program_args == []
        assert debug.program_arguments(args) is None

    def test_debug_program_arguments_after_separator(self):
        args = parse(debug, ['--no-deploy', '--', '--config', 'a.cfg'])

        assert args.no_deploy is True
        assert debug.program_arguments(args) == ['--config', 'a.cfg']

    def test_no_prompt_means_no_arguments(self):
        args = parse(debug, ['--no-prompt'])

        assert debug.program_arguments(args) == []


class TestSettingsFromArgs:

    @patch('rdebug.commands.load_settings')
    def test_target_overrides_configuration(self, mock_load):
        mock_load.return_value = RemoteSettings(ssh_host="cache-host", ssh_port=2222)
        args = argparse.Namespace(build_dir=None, config=None, target='admin@10.0.0.9:22', gdb_port=None, log_file=None)

        settings = settings_from_args(args)

        assert (settings.ssh_user, settings.ssh_host, settings.ssh_port) == ('admin', '10.0.0.9', 22)
        assert settings.origins['ssh_host'] == 'command line'

    @patch('rdebug.commands.load_settings')
    def test_target_without_port_keeps_configured_port(self, mock_load):
        mock_load.return_value = RemoteSettings(ssh_port=2200)
        args = argparse.Namespace(build_dir=None, config=None, target='board', gdb_port=4000, log_file=None)

        settings = settings_from_args(args)

        assert settings.ssh_port == 2200
        assert settings.gdb_port == 4000


class TestCommands:

    def setup_method(self):
        self.manager = create_mock_manager()
        self.settings = RemoteSettings(ssh_host="10.0.0.2", ssh_password="pw", log_file="/tmp/rdebug-test.log")

    def patches(self, module):
        return (
            patch(f'rdebug.commands.{module}.settings_from_args', return_value=self.settings),
            patch(f'rdebug.commands.{module}.create_logger', return_value=Mock()),
            patch(f'rdebug.commands.{module}.create_session_manager', return_value=self.manager),
        )

    def test_deploy_success_exit_code(self):
        p1, p2, p3 = self.patches('deploy')
        with p1, p2, p3:
            code = deploy.execute(parse(deploy, []))

        assert code == 0
        self.manager.shutdown.assert_awaited_once()

    def test_deploy_partial_exit_code(self):
        self.manager.deploy.return_value = DeploymentReport(
            groups_total=2, succeeded_groups=["/opt/a"], failed_groups={"/opt/b": "boom"}
        )
        p1, p2, p3 = self.patches('deploy')
        with p1, p2, p3:
            code = deploy.execute(parse(deploy, []))

        assert code == 2

    def test_deploy_install_prefix_override(self):
        p1, p2, p3 = self.patches('deploy')
        with p1, p2, p3:
            deploy.execute(parse(deploy, ['--install-prefix', '/opt/stage']))

        assert self.settings.install_prefix == '/opt/stage'

    def test_diagnostic_exit_code(self):
        self.manager.diagnostic.return_value = DiagnosticReport(
            checks=[DiagnosticCheck('gdbserver', 'fail', 'not found', critical=True)]
        )
        p1, p2, p3 = self.patches('diagnostic')
        with p1, p2, p3:
            code = diagnostic.execute(parse(diagnostic, []))

        assert code == 1
        self.manager.diagnostics.print_results.assert_called_once()

    def test_cleanup_command(self):
        p1, p2, p3 = self.patches('cleanup')
        with p1, p2, p3:
            code = cleanup.execute(parse(cleanup, []))

        assert code == 0
        self.manager.cleanup_remote.assert_awaited_once()

    def test_plan_prints_commands(self, capsys):
        self.manager.show_planned_commands.return_value = ["# deploy", "mkdir -p /opt/app"]
        p1, p2, p3 = self.patches('plan')
        with p1, p2, p3:
            code = plan.execute(parse(plan, ['--', '-v']))

        assert code == 0
        self.manager.show_planned_commands.assert_called_once_with(['-v'])
        assert capsys.readouterr().out == "# deploy\nmkdir -p /opt/app\n"

    def test_debug_runs_debugger_and_shuts_down(self):
        p1, p2, p3 = self.patches('debug')
        with p1, p2, p3:
            code = debug.execute(parse(debug, ['--output', '-', '--', '--fast']))

        assert code == 0
        self.manager.start_remote_debug.assert_awaited_once_with(['--fast'], deploy=True, interactive=True)
        self.manager.run_debugger.assert_awaited_once()
        self.manager.shutdown.assert_awaited_once()

    def test_debug_shuts_down_after_failure(self):
        self.manager.start_remote_debug.side_effect = ConfigurationError("No executable given")
        p1, p2, p3 = self.patches('debug')
        with p1, p2, p3:
            with pytest.raises(ConfigurationError):
                debug.execute(parse(debug, ['--output', '-', '--no-prompt']))

        self.manager.shutdown.assert_awaited_once()
        self.manager.run_debugger.assert_not_awaited()


class TestMain:

    def test_no_command_prints_help(self, capsys):
        with patch.object(sys, 'argv', ['rdebug']):
            with pytest.raises(SystemExit) as exc_info:
                rdebug.main()

        assert exc_info.value.code == 1
        assert 'usage: rdebug' in capsys.readouterr().out

    def test_known_error_exits_without_traceback(self, capsys):
        with patch.object(sys, 'argv', ['rdebug', 'deploy']), \
             patch('rdebug.commands.deploy.execute', side_effect=ConfigurationError("REMOTE_SSH_HOST is not set")):
            with pytest.raises(SystemExit) as exc_info:
                rdebug.main()

        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert 'Error: REMOTE_SSH_HOST is not set' in err
        assert 'Traceback' not in err

    def test_keyboard_interrupt(self):
        with patch.object(sys, 'argv', ['rdebug', 'plan']), \
             patch('rdebug.commands.plan.execute', side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc_info:
                rdebug.main()

        assert exc_info.value.code == 130

    def test_exit_code_is_propagated(self):
        with patch.object(sys, 'argv', ['rdebug', 'deploy']), \
             patch('rdebug.commands.deploy.execute', return_value=2):
            with pytest.raises(SystemExit) as exc_info:
                rdebug.main()

        assert exc_info.value.code == 2

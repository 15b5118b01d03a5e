"""Shared plumbing for the rdebug subcommands."""
from rdebug.core import (
    ConsoleLogger,
    PersistentLogger,
    RealFileSystemService,
    SystemEnvironmentProvider,
    YamlConfigLoader,
)
from rdebug.deploy.factory import parse_target
from rdebug.utils.config import load_settings


def add_common_arguments(parser):
    """Options every subcommand understands"""
    parser.add_argument(
        '--build-dir', '-B',
        help='CMake build directory (default: nearest CMakeCache.txt)'
    )
    parser.add_argument(
        '--config',
        help='YAML config file (default: .rdebug.yaml or ~/.config/rdebug/config.yaml)'
    )
    parser.add_argument(
        '--target',
        help='Device as [user@]host[:port], overrides REMOTE_SSH_HOST/PORT/USER'
    )
    parser.add_argument(
        '--gdb-port',
        type=int,
        help='gdbserver port on the device (overrides REMOTE_GDBSERVER_PORT)'
    )
    parser.add_argument(
        '--log-file',
        help='Persistent log file (default: ~/.local/state/rdebug/rdebug.log)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Show debug output'
    )


def settings_from_args(args):
    """Resolve settings, then apply command-line overrides on top."""
    filesystem = RealFileSystemService()
    settings = load_settings(
        env_provider=SystemEnvironmentProvider(),
        filesystem=filesystem,
        config_loader=YamlConfigLoader(filesystem),
        build_dir=getattr(args, 'build_dir', None),
        config_path=getattr(args, 'config', None),
    )

    if getattr(args, 'target', None):
        user, host, port = parse_target(args.target)
        settings.ssh_host = host
        settings.origins['ssh_host'] = 'command line'
        if user:
            settings.ssh_user = user
            settings.origins['ssh_user'] = 'command line'
        if port:
            settings.ssh_port = port
            settings.origins['ssh_port'] = 'command line'
    if getattr(args, 'gdb_port', None):
        settings.gdb_port = args.gdb_port
        settings.origins['gdb_port'] = 'command line'
    if getattr(args, 'log_file', None):
        settings.log_file = args.log_file
    return settings


def create_logger(args, settings):
    return PersistentLogger(
        log_file=settings.log_file,
        console=ConsoleLogger(verbose=getattr(args, 'verbose', False)),
    )

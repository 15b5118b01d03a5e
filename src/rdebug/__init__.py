"""
rdebug - Remote deploy and debug for embedded Linux targets

Reads the CMake install manifests of a build tree, copies the artifacts to
a device over a single multiplexed SSH connection, runs the program under
gdbserver there and streams its output back while a local gdb is attached.
"""
import argparse
import sys

__version__ = "1.0.0"


def main():
    """Main CLI entry point"""
    from rdebug.commands import cleanup, debug, deploy, diagnostic, plan
    from rdebug.deploy.exceptions import RemoteDebugError

    parser = argparse.ArgumentParser(
        prog='rdebug',
        description='rdebug: remote deploy and gdbserver debugging',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  rdebug deploy -B build                   # Copy everything cmake --install would
  rdebug debug -B build -- --config a.cfg  # Deploy, start gdbserver, attach gdb
  rdebug debug --server-only --no-deploy   # gdbserver only, attach from an IDE
  rdebug plan -B build                     # Show remote commands, do nothing
  rdebug diagnostic                        # Check config, SSH and gdbserver
  rdebug cleanup                           # Kill leftover gdbserver on the device

Configuration comes from the environment, CMakeCache.txt or .rdebug.yaml
(REMOTE_SSH_HOST, REMOTE_SSH_PORT, REMOTE_SSH_PASS, REMOTE_GDBSERVER_PORT, ...).
        '''
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    # Deploy command
    deploy_parser = subparsers.add_parser('deploy', help='Deploy build artifacts')
    deploy.setup_parser(deploy_parser)

    # Debug command
    debug_parser = subparsers.add_parser('debug', help='Start a remote debug session')
    debug.setup_parser(debug_parser)

    # Plan command
    plan_parser = subparsers.add_parser('plan', help='Show planned remote commands')
    plan.setup_parser(plan_parser)

    # Diagnostic command
    diagnostic_parser = subparsers.add_parser('diagnostic', help='Check remote debug setup')
    diagnostic.setup_parser(diagnostic_parser)

    # Cleanup command
    cleanup_parser = subparsers.add_parser('cleanup', help='Kill leftover remote processes')
    cleanup.setup_parser(cleanup_parser)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Dispatch to command handler
    try:
        if args.command == 'deploy':
            sys.exit(deploy.execute(args))
        elif args.command == 'debug':
            sys.exit(debug.execute(args))
        elif args.command == 'plan':
            sys.exit(plan.execute(args))
        elif args.command == 'diagnostic':
            sys.exit(diagnostic.execute(args))
        elif args.command == 'cleanup':
            sys.exit(cleanup.execute(args))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except RemoteDebugError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)

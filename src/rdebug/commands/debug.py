"""Deploy, start gdbserver on the device and attach a local debugger"""
import argparse
import asyncio
import os

from rdebug.commands import add_common_arguments, create_logger, settings_from_args
from rdebug.core import ConsoleSink, FileSink
from rdebug.core.implementations import DEFAULT_LOG_FILE
from rdebug.deploy.factory import create_session_manager


def setup_parser(parser):
    """Setup argument parser for debug command"""
    add_common_arguments(parser)
    parser.add_argument(
        '--program', '-p',
        help='Local executable to debug (overrides LOCAL_PROGRAM_PATH)'
    )
    parser.add_argument(
        '--no-deploy',
        action='store_true',
        help='Skip deployment (artifacts already on the device)'
    )
    parser.add_argument(
        '--no-monitor',
        action='store_true',
        help='Do not stream the remote program output'
    )
    parser.add_argument(
        '--output', '-o',
        help="Where streamed output goes: a file, or '-' for the terminal "
             "(default: terminal with --server-only, else remote-output.log next to the log file)"
    )
    parser.add_argument(
        '--server-only',
        action='store_true',
        help='Start gdbserver and stream output, but do not launch gdb (Ctrl-C to stop)'
    )
    parser.add_argument(
        '--no-prompt',
        action='store_true',
        help='Never ask for input; missing program arguments mean none'
    )
    parser.add_argument(
        'program_args',
        nargs=argparse.REMAINDER,
        help='Arguments for the remote program, after --'
    )


def program_arguments(args):
    """None means 'ask'; an explicit '--' with nothing after it means no arguments."""
    raw = list(args.program_args or [])
    if raw and raw[0] == '--':
        return raw[1:]
    if raw:
        return raw
    return [] if args.no_prompt else None


def create_sink(args, settings):
    target = args.output
    if target is None:
        if args.server_only:
            return ConsoleSink()
        log_dir = os.path.dirname(os.path.expanduser(settings.log_file or DEFAULT_LOG_FILE))
        target = os.path.join(log_dir, 'remote-output.log')
    if target == '-':
        return ConsoleSink()
    return FileSink(target)


async def _debug(manager, args, logger):
    try:
        session = await manager.start_remote_debug(
            program_arguments(args),
            deploy=not args.no_deploy,
            interactive=not args.no_prompt,
        )
        if args.server_only:
            logger.info(f"gdbserver ready at {session.server_address} (Ctrl-C to stop)")
            await asyncio.Event().wait()
            return 0
        return await manager.run_debugger(session)
    finally:
        await manager.shutdown()


def execute(args):
    """Execute debug command

    Returns:
        Exit code of the local debugger (0 in --server-only mode)
    """
    settings = settings_from_args(args)
    if args.program:
        settings.local_program_path = args.program
        settings.origins['local_program_path'] = 'command line'
    if args.no_monitor:
        settings.monitor_enabled = False

    logger = create_logger(args, settings)
    try:
        sink = create_sink(args, settings)
        if isinstance(sink, FileSink):
            logger.info(f"Remote output: {sink.path}")
        manager = create_session_manager(settings, logger, sink)
        return asyncio.run(_debug(manager, args, logger))
    finally:
        logger.close()

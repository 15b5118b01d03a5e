"""Print the remote commands a debug run would issue, without connecting"""
import argparse

from rdebug.commands import add_common_arguments, create_logger, settings_from_args
from rdebug.core import ConsoleSink
from rdebug.deploy.factory import create_session_manager


def setup_parser(parser):
    """Setup argument parser for plan command"""
    add_common_arguments(parser)
    parser.add_argument(
        '--program', '-p',
        help='Local executable to debug (overrides LOCAL_PROGRAM_PATH)'
    )
    parser.add_argument(
        'program_args',
        nargs=argparse.REMAINDER,
        help='Arguments for the remote program, after --'
    )


def execute(args):
    """Execute plan command"""
    settings = settings_from_args(args)
    if args.program:
        settings.local_program_path = args.program

    program_args = list(args.program_args or [])
    if program_args and program_args[0] == '--':
        program_args = program_args[1:]
    logger = create_logger(args, settings)
    try:
        manager = create_session_manager(settings, logger, ConsoleSink())
        for line in manager.show_planned_commands(program_args):
            print(line)
    finally:
        logger.close()
    return 0

"""Read-only check of configuration, connectivity and gdbserver state"""
import asyncio

from rdebug.commands import add_common_arguments, create_logger, settings_from_args
from rdebug.core import ConsoleSink
from rdebug.deploy.factory import create_session_manager


def setup_parser(parser):
    """Setup argument parser for diagnostic command"""
    add_common_arguments(parser)


async def _diagnose(manager):
    try:
        return await manager.diagnostic()
    finally:
        await manager.shutdown()


def execute(args):
    """Execute diagnostic command

    Returns:
        Exit code: 0 if no critical problem was found, 1 otherwise
    """
    settings = settings_from_args(args)
    logger = create_logger(args, settings)
    try:
        manager = create_session_manager(settings, logger, ConsoleSink())
        report = asyncio.run(_diagnose(manager))
        manager.diagnostics.print_results(report)
    finally:
        logger.close()
    return 0 if report.all_pass else 1

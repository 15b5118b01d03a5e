"""Kill leftover gdbserver and output streams on the device"""
import asyncio

from rdebug.commands import add_common_arguments, create_logger, settings_from_args
from rdebug.core import ConsoleSink
from rdebug.deploy.factory import create_session_manager


def setup_parser(parser):
    """Setup argument parser for cleanup command"""
    add_common_arguments(parser)


async def _cleanup(manager):
    try:
        return await manager.cleanup_remote()
    finally:
        await manager.shutdown()


def execute(args):
    """Execute cleanup command"""
    settings = settings_from_args(args)
    logger = create_logger(args, settings)
    try:
        manager = create_session_manager(settings, logger, ConsoleSink())
        result = asyncio.run(_cleanup(manager))
        if result.success:
            logger.info(f"✓ Remote debug processes on {settings.ssh_host} stopped")
        else:
            for error in result.errors:
                logger.warning(error)
    finally:
        logger.close()
    return 0 if result.success else 1

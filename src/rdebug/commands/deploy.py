"""Deploy build artifacts to the device"""
import asyncio

from rdebug.commands import add_common_arguments, create_logger, settings_from_args
from rdebug.core import ConsoleSink
from rdebug.deploy.factory import create_session_manager


def setup_parser(parser):
    """Setup argument parser for deploy command"""
    add_common_arguments(parser)
    parser.add_argument(
        '--install-prefix',
        help='Value for ${CMAKE_INSTALL_PREFIX} (default: the one recorded in the manifests)'
    )


async def _deploy(manager):
    try:
        return await manager.deploy()
    finally:
        await manager.shutdown()


def execute(args):
    """Execute deploy command

    Returns:
        Exit code: 0 success, 2 partial deployment, 1 failure
    """
    settings = settings_from_args(args)
    if args.install_prefix:
        settings.install_prefix = args.install_prefix

    logger = create_logger(args, settings)
    try:
        manager = create_session_manager(settings, logger, ConsoleSink())
        report = asyncio.run(_deploy(manager))
    finally:
        logger.close()
    return report.exit_code()

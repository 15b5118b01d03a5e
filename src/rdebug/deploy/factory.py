"""
Target parsing and production wiring.

Target string format (--target on the command line):
    host                   → default user, default port
    host:2222              → custom SSH port
    user@host              → custom user
    user@[fe80::1]:2222    → IPv6
"""

from typing import Optional, Tuple

from rdebug.core.protocols import DebuggerLauncher, Logger, OutputSink, Prompter
from rdebug.deploy.exceptions import ConfigurationError


def parse_target(target: str) -> Tuple[Optional[str], str, Optional[int]]:
    """
    Split a target string into (user, host, port).

    Missing parts come back as None so the caller can keep configured values.

    Raises:
        ConfigurationError: malformed string or non-numeric port
    """
    if not target:
        raise ConfigurationError("Empty target")

    user = None
    host_part = target
    if '@' in target:
        user, host_part = target.split('@', 1)
        if not user:
            raise ConfigurationError(f"Missing user before '@': {target}")

    if host_part.startswith('['):
        bracket_end = host_part.find(']')
        if bracket_end == -1:
            raise ConfigurationError(f"Malformed IPv6 address: {target}")
        host = host_part[1:bracket_end]
        remainder = host_part[bracket_end + 1:]
        port_str = remainder[1:] if remainder.startswith(':') else None
    elif host_part.count(':') == 1:
        host, port_str = host_part.split(':', 1)
    else:
        # Bare IPv6 without brackets has no port
        host, port_str = host_part, None

    if not host:
        raise ConfigurationError(f"Missing host: {target}")

    port = None
    if port_str is not None:
        if not port_str.isdigit():
            raise ConfigurationError(f"Invalid port in target '{target}'")
        port = int(port_str)
    return user, host, port


def create_session_manager(
    settings,
    logger: Logger,
    sink: OutputSink,
    prompter: Optional[Prompter] = None,
    debugger: Optional[DebuggerLauncher] = None,
):
    """
    Build a SessionManager with production dependencies.

    Args:
        settings: Resolved RemoteSettings
        logger: Logger for the whole session
        sink: Destination of streamed remote output
        prompter: Interactive prompts (default: terminal)
        debugger: Local debugger (default: gdb from settings)
    """
    # Lazy import to avoid circular dependencies
    from rdebug.core import (
        ConsolePrompter,
        GdbDebuggerLauncher,
        RealFileSystemService,
        SubprocessExecutor,
        SystemEnvironmentProvider,
        SystemTimeProvider,
        SystemToolLocator,
    )
    from rdebug.debug.session import SessionManager

    return SessionManager(
        settings=settings,
        filesystem=RealFileSystemService(),
        process_executor=SubprocessExecutor(),
        time_provider=SystemTimeProvider(),
        env_provider=SystemEnvironmentProvider(),
        tool_locator=SystemToolLocator(),
        logger=logger,
        prompter=prompter or ConsolePrompter(),
        sink=sink,
        debugger=debugger or GdbDebuggerLauncher(settings.local_gdb_path),
    )

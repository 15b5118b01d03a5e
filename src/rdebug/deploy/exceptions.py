"""
Deployment and remote-debug exceptions.

Each class maps to one recovery policy:

    ConfigurationError   user must fix input (env, cache, build); not retried
    AuthError            bad credentials; surfaced immediately, no retry
    RemoteConnectionError host unreachable/refused; user may re-invoke
    TransferFailed       one file/group failed; orchestrator continues
    RemoteProcessError   gdbserver failed to start/listen; carries log tail
    SafetyViolation      protected destination; always refused
"""

from typing import Optional


class RemoteDebugError(Exception):
    """Base class for all rdebug failures."""
    pass


class ConfigurationError(RemoteDebugError):
    """
    Raised when required input is missing or unusable.

    Examples:
        - REMOTE_SSH_HOST not set in environment or CMakeCache.txt
        - Build directory empty or no cmake_install.cmake found
        - LOCAL_PROGRAM_PATH not readable
    """
    pass


class AuthError(RemoteDebugError):
    """Raised when the remote host rejects the supplied credentials."""
    pass


class RemoteConnectionError(RemoteDebugError):
    """Raised when the remote host cannot be reached."""
    pass


class ConnectionRefused(RemoteConnectionError):
    """Raised when the remote host actively refused the SSH connection."""
    pass


class TransferFailed(RemoteDebugError):
    """Raised when a file, batch or directory transfer fails."""
    pass


class RemoteProcessError(RemoteDebugError):
    """
    Raised when gdbserver fails to start or dies during verification.

    Attributes:
        log_tail: First lines of the remote output file, for diagnosis
    """

    def __init__(self, message: str, log_tail: str = ""):
        super().__init__(message)
        self.log_tail = log_tail


class SafetyViolation(RemoteDebugError):
    """
    Raised (or recorded) when an item targets a protected system path.

    Never retried, never overridable by configuration.
    """

    def __init__(self, destination: str, item: Optional[object] = None):
        super().__init__(
            f"Refusing to deploy into protected path '{destination}'"
        )
        self.destination = destination
        self.item = item

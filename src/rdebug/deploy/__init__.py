"""
Deployment subsystem.

Discovers what a CMake build installs and copies it to a remote device:
    - ManifestScanner: parse cmake_install.cmake files into InstallItems
    - SSHTransport: multiplexed ssh/scp/rsync/tar transport
    - DeploymentOrchestrator: group by destination, transfer, chmod

Public API:
    - InstallItem, ItemKind, DeploymentGroup, group_items
    - DeploymentReport, DeploymentStatus, CleanupResult
    - Exceptions: ConfigurationError, AuthError, RemoteConnectionError,
      ConnectionRefused, TransferFailed, RemoteProcessError, SafetyViolation
"""

from .base import (
    PROTECTED_PATHS,
    InstallItem,
    ItemKind,
    DeploymentGroup,
    DeploymentReport,
    DeploymentStatus,
    CleanupResult,
    group_items,
    is_protected_path,
)
from .exceptions import (
    RemoteDebugError,
    ConfigurationError,
    AuthError,
    RemoteConnectionError,
    ConnectionRefused,
    TransferFailed,
    RemoteProcessError,
    SafetyViolation,
)
from .manifest import ManifestScanner, scan_build_tree
from .transport import SSHTransport, ConnectionPool, ConnectionHandle, Credentials, CommandResult
from .orchestrator import DeploymentOrchestrator

__all__ = [
    # Data model
    "PROTECTED_PATHS",
    "InstallItem",
    "ItemKind",
    "DeploymentGroup",
    "DeploymentReport",
    "DeploymentStatus",
    "CleanupResult",
    "group_items",
    "is_protected_path",

    # Exceptions
    "RemoteDebugError",
    "ConfigurationError",
    "AuthError",
    "RemoteConnectionError",
    "ConnectionRefused",
    "TransferFailed",
    "RemoteProcessError",
    "SafetyViolation",

    # Components
    "ManifestScanner",
    "scan_build_tree",
    "SSHTransport",
    "ConnectionPool",
    "ConnectionHandle",
    "Credentials",
    "CommandResult",
    "DeploymentOrchestrator",
]

"""
Deployment data model: install items, destination groups and result types.
"""

import posixpath
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .exceptions import SafetyViolation


# Remote directories deployment must never write into. Matched exactly after
# normalisation; subdirectories such as /usr/lib/myapp are allowed.
PROTECTED_PATHS = frozenset({
    "/",
    "/bin",
    "/sbin",
    "/lib",
    "/lib64",
    "/usr",
    "/usr/bin",
    "/usr/sbin",
    "/usr/lib",
    "/usr/lib64",
    "/etc",
    "/boot",
    "/dev",
    "/proc",
    "/sys",
    "/var",
    "/root",
})


def normalize_remote_dir(path: str) -> str:
    """Collapse duplicate slashes, dots and trailing slash of a remote path."""
    normalized = posixpath.normpath(path)
    # POSIX keeps a leading '//' as implementation-defined; treat it as '/'
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return normalized


def is_protected_path(path: str) -> bool:
    return normalize_remote_dir(path) in PROTECTED_PATHS


class ItemKind(Enum):
    FILE = "file"
    DIRECTORY = "directory"
    LIBRARY = "library"
    EXECUTABLE = "executable"


@dataclass(frozen=True)
class InstallItem:
    """
    One artifact to deploy.

    Attributes:
        kind: What the artifact is (drives transfer method and chmod)
        source: Absolute local path
        destination: Absolute remote directory
        contents_only: For directories whose source ends with '/': copy the
            directory's contents into destination instead of the directory
    """
    kind: ItemKind
    source: str
    destination: str
    contents_only: bool = False

    @property
    def name(self) -> str:
        return Path(self.source).name

    @property
    def key(self) -> tuple:
        return (self.source, self.destination)

    def check_destination(self) -> None:
        """Raise SafetyViolation if destination is a protected path."""
        if is_protected_path(self.destination):
            raise SafetyViolation(normalize_remote_dir(self.destination), item=self)


@dataclass
class DeploymentGroup:
    """InstallItems sharing one destination directory."""
    destination: str
    files: List[InstallItem] = field(default_factory=list)
    directories: List[InstallItem] = field(default_factory=list)
    executables: List[InstallItem] = field(default_factory=list)

    def add(self, item: InstallItem) -> None:
        if normalize_remote_dir(item.destination) != self.destination:
            raise ValueError(
                f"Item destination {item.destination} does not match group {self.destination}"
            )
        if item.kind == ItemKind.DIRECTORY:
            self.directories.append(item)
        elif item.kind == ItemKind.EXECUTABLE:
            self.executables.append(item)
        else:
            self.files.append(item)

    @property
    def batch_items(self) -> List[InstallItem]:
        """Items that travel in the single tar batch (files, libraries, executables)."""
        return self.files + self.executables

    def __len__(self) -> int:
        return len(self.files) + len(self.directories) + len(self.executables)


def group_items(items: List[InstallItem]) -> List[DeploymentGroup]:
    """Bucket items by normalised destination, keeping first-seen order."""
    groups: Dict[str, DeploymentGroup] = {}
    for item in items:
        destination = normalize_remote_dir(item.destination)
        if destination not in groups:
            groups[destination] = DeploymentGroup(destination=destination)
        groups[destination].add(item)
    return list(groups.values())


class DeploymentStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class DeploymentReport:
    """
    Outcome of one deploy() invocation.

    Attributes:
        groups_total: Number of destination groups attempted
        succeeded_groups: Destinations fully deployed
        failed_groups: Destination -> error message
        violations: Items refused because of a protected destination
        skipped: Sources that were missing or unreadable
        deployed: Items transferred successfully
        error: Fatal error that stopped deployment before any transfer
    """
    groups_total: int = 0
    succeeded_groups: List[str] = field(default_factory=list)
    failed_groups: Dict[str, str] = field(default_factory=dict)
    violations: List[SafetyViolation] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    deployed: List[InstallItem] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def status(self) -> DeploymentStatus:
        if self.error is not None:
            return DeploymentStatus.FAILED
        if self.failed_groups:
            return DeploymentStatus.PARTIAL if self.succeeded_groups else DeploymentStatus.FAILED
        if self.violations or self.skipped:
            return DeploymentStatus.PARTIAL if self.succeeded_groups else DeploymentStatus.FAILED
        return DeploymentStatus.SUCCESS

    @property
    def success(self) -> bool:
        return self.status == DeploymentStatus.SUCCESS

    def exit_code(self) -> int:
        """CLI exit status: 0 success, 2 partial success, 1 failure."""
        return {
            DeploymentStatus.SUCCESS: 0,
            DeploymentStatus.PARTIAL: 2,
            DeploymentStatus.FAILED: 1,
        }[self.status]


@dataclass
class CleanupResult:
    """
    Result of cleanup operation.

    Attributes:
        success: Whether cleanup succeeded
        errors: List of non-fatal issues encountered during cleanup
    """
    success: bool
    errors: List[str]

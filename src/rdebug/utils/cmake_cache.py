"""CMakeCache.txt reading.

The cache is the one place a CMake project can pin device coordinates
(REMOTE_SSH_HOST, REMOTE_SSH_PASS, ...) next to the build, so it doubles as
a configuration source.
"""
import re
from pathlib import Path
from typing import Dict, Optional, Union

from rdebug.core.protocols import FileSystemService

CACHE_FILENAME = "CMakeCache.txt"
MAX_SEARCH_DEPTH = 4

_ENTRY_RE = re.compile(r"^([A-Za-z0-9_.+\-]+):([A-Za-z_]+)=(.*)$")


def parse_cmake_cache(text: str) -> Dict[str, str]:
    """Parse 'NAME:TYPE=value' entries; comments and blank lines are ignored."""
    entries = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or line.startswith("//"):
            continue
        match = _ENTRY_RE.match(line)
        if match:
            entries[match.group(1)] = match.group(3)
    return entries


def locate_cmake_cache(fs: FileSystemService, search_root: Union[str, Path]) -> Optional[Path]:
    """Find the CMakeCache.txt closest to search_root.

    Looks in search_root itself first, then walks down one level at a time
    (shallowest match wins, at most MAX_SEARCH_DEPTH levels, hidden
    directories skipped). Nothing deeper than that is ever listed.
    """
    root = Path(search_root)
    direct = root / CACHE_FILENAME
    if fs.is_file(direct):
        return direct

    if not fs.is_dir(root):
        return None

    level = [root]
    for _ in range(MAX_SEARCH_DEPTH):
        next_level = []
        for directory in level:
            try:
                children = sorted(fs.iterdir(directory))
            except OSError:
                continue
            next_level.extend(c for c in children if not c.name.startswith(".") and fs.is_dir(c))

        found = [d / CACHE_FILENAME for d in next_level if fs.is_file(d / CACHE_FILENAME)]
        if found:
            return min(found, key=str)
        level = next_level
    return None


class CMakeCache:
    """Read-only view of one CMakeCache.txt."""

    def __init__(self, path: Optional[Path], entries: Dict[str, str]):
        self.path = path
        self.entries = entries

    @classmethod
    def load(cls, fs: FileSystemService, search_root: Union[str, Path]) -> "CMakeCache":
        """Load the nearest cache, or an empty one if none exists."""
        path = locate_cmake_cache(fs, search_root)
        if path is None:
            return cls(None, {})
        return cls(path, parse_cmake_cache(fs.read_file(path)))

    @property
    def build_dir(self) -> Optional[Path]:
        return self.path.parent if self.path else None

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.entries.get(name)
        return value if value not in (None, "") else default

    def default_program_path(self) -> Optional[str]:
        """<PROJECT>_BINARY_DIR/<PROJECT>, the usual location of the main executable."""
        project = self.get("CMAKE_PROJECT_NAME")
        if not project:
            return None
        binary_dir = self.get(f"{project}_BINARY_DIR") or (str(self.build_dir) if self.build_dir else None)
        if not binary_dir:
            return None
        return f"{binary_dir}/{project}"

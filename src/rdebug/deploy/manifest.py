"""
Install-manifest scanner.

Reads the ``cmake_install.cmake`` scripts CMake generates in every build
directory instead of the hand-written CMakeLists.txt, so install destinations
arrive with variables already substituted. Only a narrow slice of CMake
syntax matters here:

    set(CMAKE_INSTALL_PREFIX "/usr")
    file(INSTALL DESTINATION "${CMAKE_INSTALL_PREFIX}/bin" TYPE EXECUTABLE FILES
        "/home/dev/build/app"
        )

Grammar version 1 was validated against the output of CMake 3.16 - 3.28.
If a new CMake release changes the generated layout, bump
MANIFEST_GRAMMAR_VERSION after re-checking the directives below.
"""

import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Dict, Iterator, List, Optional, Tuple, Union

from rdebug.core.protocols import FileSystemService, Logger
from .base import InstallItem, ItemKind
from .exceptions import ConfigurationError


MANIFEST_GRAMMAR_VERSION = 1
MANIFEST_FILENAME = "cmake_install.cmake"

TYPE_TO_KIND = {
    "EXECUTABLE": ItemKind.EXECUTABLE,
    "PROGRAM": ItemKind.EXECUTABLE,
    "SHARED_LIBRARY": ItemKind.LIBRARY,
    "STATIC_LIBRARY": ItemKind.LIBRARY,
    "MODULE": ItemKind.LIBRARY,
    "DIRECTORY": ItemKind.DIRECTORY,
    "FILE": ItemKind.FILE,
}

# Keywords that end the FILES list of a file(INSTALL ...) call
INSTALL_KEYWORDS = frozenset({
    "DESTINATION", "TYPE", "FILES", "OPTIONAL", "RENAME",
    "MESSAGE_NEVER", "MESSAGE_LAZY", "MESSAGE_ALWAYS",
    "PERMISSIONS", "FILE_PERMISSIONS", "DIRECTORY_PERMISSIONS",
    "USE_SOURCE_PERMISSIONS", "NO_SOURCE_PERMISSIONS",
    "FILES_MATCHING", "PATTERN", "REGEX", "EXCLUDE",
})

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_UNRESOLVED_RE = re.compile(r"\$(\{|ENV\{|<)")


class ManifestSyntaxError(ValueError):
    """A single statement could not be parsed."""

    def __init__(self, message: str, line: int):
        super().__init__(message)
        self.line = line


@dataclass
class Command:
    """One CMake command invocation: name, arguments, starting line."""
    name: str
    args: List[str]
    line: int


def _read_arguments(text: str, pos: int, line: int) -> Tuple[List[str], int, int]:
    """Read arguments after an opening '(' up to its matching ')'.

    Returns (arguments, position after ')', current line number).
    """
    args: List[str] = []
    depth = 1
    token = ""
    in_token = False
    start_line = line

    while pos < len(text):
        ch = text[pos]

        if ch == '"':
            # Quoted argument; backslash escapes the next character
            pos += 1
            value = ""
            while pos < len(text) and text[pos] != '"':
                if text[pos] == "\\" and pos + 1 < len(text):
                    value += text[pos + 1]
                    pos += 2
                    continue
                if text[pos] == "\n":
                    line += 1
                value += text[pos]
                pos += 1
            if pos >= len(text):
                raise ManifestSyntaxError("unterminated quoted argument", start_line)
            token += value
            in_token = True
            pos += 1
            continue

        if ch == "#":
            while pos < len(text) and text[pos] != "\n":
                pos += 1
            continue

        if ch.isspace():
            if ch == "\n":
                line += 1
            if in_token:
                args.append(token)
                token, in_token = "", False
            pos += 1
            continue

        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                if in_token:
                    args.append(token)
                return args, pos + 1, line

        token += ch
        in_token = True
        pos += 1

    raise ManifestSyntaxError("unterminated command (missing ')')", start_line)


def iter_commands(text: str, on_error=None) -> Iterator[Command]:
    """Yield every top-level command in a CMake script.

    Statements that cannot be parsed are reported through ``on_error`` and
    skipped; parsing resumes on the next line.
    """
    pos = 0
    line = 1
    length = len(text)

    while pos < length:
        ch = text[pos]
        if ch == "\n":
            line += 1
            pos += 1
            continue
        if ch.isspace():
            pos += 1
            continue
        if ch == "#":
            while pos < length and text[pos] != "\n":
                pos += 1
            continue

        match = _IDENT_RE.match(text, pos)
        if match is None:
            if on_error:
                on_error(ManifestSyntaxError(f"unexpected character {ch!r}", line))
            pos = _skip_line(text, pos)
            continue

        name = match.group(0)
        after = match.end()
        while after < length and text[after] in " \t":
            after += 1
        if after >= length or text[after] != "(":
            if on_error:
                on_error(ManifestSyntaxError(f"'{name}' is not followed by '('", line))
            pos = _skip_line(text, pos)
            continue

        try:
            args, end, end_line = _read_arguments(text, after + 1, line)
        except ManifestSyntaxError as e:
            if on_error:
                on_error(e)
            pos = _skip_line(text, pos)
            continue

        yield Command(name=name.lower(), args=args, line=line)
        pos = end
        line = end_line


def _skip_line(text: str, pos: int) -> int:
    end = text.find("\n", pos)
    return len(text) if end == -1 else end


class ManifestScanner:
    """Discovers InstallItems from the cmake_install.cmake files of a build tree.

    Args:
        filesystem: Read access to the build tree
        logger: Receives warnings for skipped directives
    """

    def __init__(self, filesystem: FileSystemService, logger: Logger):
        self.fs = filesystem
        self.log = logger

    def find_manifests(self, build_dir: Union[str, Path]) -> List[Path]:
        return [p for p in self.fs.rglob(build_dir, MANIFEST_FILENAME) if self.fs.is_file(p)]

    def scan_build_tree(
        self,
        build_dir: Union[str, Path],
        install_prefix: Optional[str] = None,
    ) -> List[InstallItem]:
        """Return every install item declared under build_dir.

        Args:
            build_dir: CMake binary directory (where CMakeCache.txt lives)
            install_prefix: Overrides the CMAKE_INSTALL_PREFIX baked into
                the manifests (e.g. '/opt/app' to stage away from /usr)

        Raises:
            ConfigurationError: build_dir missing/empty or no manifest found
        """
        if not build_dir or not self.fs.is_dir(build_dir):
            raise ConfigurationError(
                f"Build directory not found: {build_dir}\n"
                f"Configure and build the project first (cmake -B <dir> && cmake --build <dir>)."
            )
        if not any(True for _ in self.fs.iterdir(build_dir)):
            raise ConfigurationError(f"Build directory is empty: {build_dir}")

        manifests = self.find_manifests(build_dir)
        if not manifests:
            raise ConfigurationError(
                f"No {MANIFEST_FILENAME} found under {build_dir}\n"
                f"Make sure the project declares install() rules and has been configured."
            )

        items: Dict[tuple, InstallItem] = {}
        for manifest in manifests:
            try:
                text = self.fs.read_file(manifest)
            except OSError as e:
                self.log.warning(f"Cannot read {manifest}: {e}")
                continue
            for item in self.parse_manifest(text, manifest, install_prefix):
                items.setdefault(item.key, item)

        self.log.debug(f"Scanned {len(manifests)} manifest(s), found {len(items)} install item(s)")
        return list(items.values())

    def parse_manifest(
        self,
        text: str,
        path: Union[str, Path] = "<manifest>",
        install_prefix: Optional[str] = None,
    ) -> List[InstallItem]:
        """Parse a single manifest. Malformed directives are skipped with a warning."""
        prefix = install_prefix.rstrip("/") if install_prefix is not None else None
        manifest_dir = PurePosixPath(str(path)).parent
        items: List[InstallItem] = []

        def report(error: ManifestSyntaxError) -> None:
            self.log.warning(f"{path}:{error.line}: {error} (skipped)")

        for command in iter_commands(text, on_error=report):
            if command.name == "set" and command.args[:1] == ["CMAKE_INSTALL_PREFIX"]:
                if install_prefix is None and len(command.args) >= 2:
                    prefix = command.args[1].rstrip("/")
                continue

            if command.name != "file" or command.args[:1] != ["INSTALL"]:
                continue

            try:
                items.extend(self._parse_install(command, prefix, manifest_dir))
            except ManifestSyntaxError as e:
                report(e)

        return items

    def _parse_install(
        self,
        command: Command,
        prefix: Optional[str],
        manifest_dir: PurePosixPath,
    ) -> List[InstallItem]:
        options: Dict[str, List[str]] = {}
        current = None
        for arg in command.args[1:]:
            if arg in INSTALL_KEYWORDS:
                current = arg
                options.setdefault(current, [])
            elif current is not None:
                options[current].append(arg)

        destination = (options.get("DESTINATION") or [None])[0]
        type_name = (options.get("TYPE") or [None])[0]
        sources = options.get("FILES") or []

        if destination is None:
            raise ManifestSyntaxError("file(INSTALL) without DESTINATION", command.line)
        if type_name is None:
            raise ManifestSyntaxError("file(INSTALL) without TYPE", command.line)
        if type_name not in TYPE_TO_KIND:
            raise ManifestSyntaxError(f"unknown install TYPE {type_name}", command.line)
        if not sources:
            raise ManifestSyntaxError("file(INSTALL) without FILES", command.line)
        if "RENAME" in options:
            raise ManifestSyntaxError("RENAME installs are not supported", command.line)

        destination = self._expand(destination, prefix, command.line)
        if not destination.startswith("/"):
            raise ManifestSyntaxError(
                f"destination '{destination}' is not absolute", command.line
            )

        kind = TYPE_TO_KIND[type_name]
        items = []
        for source in sources:
            # A source may itself be a ';'-separated CMake list
            for part in filter(None, source.split(";")):
                expanded = self._expand(part, prefix, command.line)
                contents_only = kind == ItemKind.DIRECTORY and expanded.endswith("/")
                resolved = expanded if expanded.startswith("/") else str(manifest_dir / expanded)
                items.append(InstallItem(
                    kind=kind,
                    source=resolved.rstrip("/") or "/",
                    destination=destination,
                    contents_only=contents_only,
                ))
        return items

    def _expand(self, value: str, prefix: Optional[str], line: int) -> str:
        if "${CMAKE_INSTALL_PREFIX}" in value:
            if prefix is None:
                raise ManifestSyntaxError("CMAKE_INSTALL_PREFIX is not set", line)
            value = value.replace("${CMAKE_INSTALL_PREFIX}", prefix)
        value = value.replace("$ENV{DESTDIR}", "")
        if _UNRESOLVED_RE.search(value):
            raise ManifestSyntaxError(f"unresolved variable in '{value}'", line)
        return value


def scan_build_tree(
    build_dir: Union[str, Path],
    install_prefix: Optional[str] = None,
    filesystem: Optional[FileSystemService] = None,
    logger: Optional[Logger] = None,
) -> List[InstallItem]:
    """Convenience wrapper around ManifestScanner with production dependencies."""
    from rdebug.core import RealFileSystemService, ConsoleLogger

    scanner = ManifestScanner(filesystem or RealFileSystemService(), logger or ConsoleLogger())
    return scanner.scan_build_tree(build_dir, install_prefix)

"""Core dependency injection infrastructure for rdebug.

Protocol-based abstractions for every external dependency (filesystem,
subprocess, time, environment, user interaction) with production
implementations. Components receive these through their constructors, so
unit tests never touch a real device.
"""

from rdebug.core.protocols import (
    Logger,
    FileSystemService,
    ProcessExecutor,
    ProcessResult,
    StreamingProcess,
    TimeProvider,
    EnvironmentProvider,
    ToolLocator,
    ConfigLoader,
    Prompter,
    OutputSink,
    DebuggerLauncher,
)

from rdebug.core.implementations import (
    ConsoleLogger,
    PersistentLogger,
    RealFileSystemService,
    SubprocessExecutor,
    SystemTimeProvider,
    SystemEnvironmentProvider,
    SystemToolLocator,
    YamlConfigLoader,
    ConsolePrompter,
    ConsoleSink,
    FileSink,
    GdbDebuggerLauncher,
)

__all__ = [
    # Protocols
    "Logger",
    "FileSystemService",
    "ProcessExecutor",
    "ProcessResult",
    "StreamingProcess",
    "TimeProvider",
    "EnvironmentProvider",
    "ToolLocator",
    "ConfigLoader",
    "Prompter",
    "OutputSink",
    "DebuggerLauncher",
    # Implementations
    "ConsoleLogger",
    "PersistentLogger",
    "RealFileSystemService",
    "SubprocessExecutor",
    "SystemTimeProvider",
    "SystemEnvironmentProvider",
    "SystemToolLocator",
    "YamlConfigLoader",
    "ConsolePrompter",
    "ConsoleSink",
    "FileSink",
    "GdbDebuggerLauncher",
]

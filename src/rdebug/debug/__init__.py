"""Remote debug session: gdbserver supervision and output streaming."""
from rdebug.debug.diagnostic import DiagnosticCheck, DiagnosticReport, RemoteDiagnostics
from rdebug.debug.monitor import MonitorStatus, OutputMonitor
from rdebug.debug.session import RemoteSession, SessionManager
from rdebug.debug.supervisor import (
    RemoteProcessSupervisor,
    SupervisorState,
    VerificationResult,
    gdb_setup_commands,
)

__all__ = [
    'DiagnosticCheck',
    'DiagnosticReport',
    'RemoteDiagnostics',
    'MonitorStatus',
    'OutputMonitor',
    'RemoteSession',
    'SessionManager',
    'RemoteProcessSupervisor',
    'SupervisorState',
    'VerificationResult',
    'gdb_setup_commands',
]

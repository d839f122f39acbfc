"""
The Supervisor package.
Manages the lifecycle of the supervised local processes.

This package contains the central ProcessSupervisor class and its helper modules,
which together handle spawning process groups, streaming their output, applying
the restart policy and terminating everything on exit.
"""
from .errors import (AlreadyRunning, InvalidConfig, NotRunning, SignalFailed, SpawnFailed, SupervisorClosed,
                     SupervisorError, UnknownProcess, WriteFailed)
from .events import EventChannel, Subscription
from .models import (LogRecord, LogStream, ProcessInfo, ProcessKey, ProcessSpec, ProcessStatus, ProjectConfig,
                     StatusEvent)
from .shutdown import ShutdownReport, TerminationResult
from .supervisor import ProcessSupervisor, make_key, validate_project

__all__ = [
    'ProcessSupervisor', 'make_key', 'validate_project',
    'EventChannel', 'Subscription', 'ShutdownReport', 'TerminationResult',
    'LogRecord', 'LogStream', 'ProcessInfo', 'ProcessKey', 'ProcessSpec', 'ProcessStatus', 'ProjectConfig',
    'StatusEvent',
    'SupervisorError', 'AlreadyRunning', 'InvalidConfig', 'NotRunning', 'SignalFailed', 'SpawnFailed',
    'SupervisorClosed', 'UnknownProcess', 'WriteFailed',
]

"""
Core package - Contains core utilities and infrastructure.

This package provides:
- Task: Task serializer admitting one operation onto the channel at a time
- Utils: Error types and reply line helpers
- Config: Configuration loading and management (gcode_driver.core.config)
- Logging: Logging utilities
"""

from .logging import get_logger, setup_logging
from .task import Task, TaskSerializer, create_task_queue, empty_queue
from .utils import (
    CommandError,
    ConfigurationError,
    GcodeDriverError,
    InvalidPatternError,
    MissingCommandError,
    MissingPatternError,
    NoMatchError,
    ProtocolError,
    ProtocolTimeoutError,
    RegistryLockedError,
    SessionBusyError,
    TransportError,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "Task",
    "TaskSerializer",
    "create_task_queue",
    "empty_queue",
    "CommandError",
    "ConfigurationError",
    "GcodeDriverError",
    "InvalidPatternError",
    "MissingCommandError",
    "MissingPatternError",
    "NoMatchError",
    "ProtocolError",
    "ProtocolTimeoutError",
    "RegistryLockedError",
    "SessionBusyError",
    "TransportError",
]

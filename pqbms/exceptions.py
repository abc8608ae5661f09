"""
Exception classes for PowerQueen BMS communication.

Every error raised by this package derives from BMSError, which carries a
message, an optional context dictionary and a numeric ERROR_CODE. The error
codes line up with the exit codes of the command line tool, so a caller can
map an exception straight to a process exit status.

Hierarchy:
    BMSError
    ├── CatalogError
    │   └── UnknownCommandError
    ├── DecodeError
    │   └── TruncatedFrameError
    ├── TransportError
    ├── PollTimeoutError
    └── PollCancelledError
"""

from typing import Any, Dict, Optional


class BMSError(Exception):
    """Base exception class for BMS errors."""

    ERROR_CODE = 1

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.error_code = self.ERROR_CODE

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and JSON output."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class CatalogError(BMSError):
    """Raised when the command table is malformed."""


class UnknownCommandError(CatalogError, KeyError):
    """Raised when a command name is not present in the catalog."""

    def __init__(self, name: str):
        super().__init__(f"Unknown command: {name}", {"command": name})
        self.name = name

    def __str__(self) -> str:
        return self.message


class DecodeError(BMSError):
    """Raised when a response frame cannot be decoded."""

    ERROR_CODE = 3


class TruncatedFrameError(DecodeError):
    """Raised when a frame is shorter than the layout being decoded."""

    def __init__(self, frame_kind: str, required_length: int, actual_length: int):
        super().__init__(
            f"{frame_kind} frame needs at least {required_length} bytes, "
            f"got {actual_length}",
            {
                "frame_kind": frame_kind,
                "required_length": required_length,
                "actual_length": actual_length,
            },
        )
        self.frame_kind = frame_kind
        self.required_length = required_length
        self.actual_length = actual_length


class TransportError(BMSError):
    """Raised when subscribe, unsubscribe or write fails on the link."""

    ERROR_CODE = 4

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        channel: Optional[str] = None,
    ):
        super().__init__(message, {"operation": operation, "channel": channel})
        self.operation = operation
        self.channel = channel


class PollTimeoutError(BMSError):
    """Raised when no notification answers a command in time."""

    ERROR_CODE = 2

    def __init__(self, command: str, timeout: float):
        super().__init__(
            f"No response to {command} within {timeout:.2f}s",
            {"command": command, "timeout": timeout},
        )
        self.command = command
        self.timeout = timeout


class PollCancelledError(BMSError):
    """Raised when a stop signal interrupts a poll in progress."""

    def __init__(self, command: str):
        super().__init__(f"Polling cancelled during {command}", {"command": command})
        self.command = command

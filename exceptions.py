"""Custom exception hierarchy for pagetrace."""
from __future__ import annotations

from typing import Any, Optional


class PagetraceError(Exception):
    """Base exception for all pagetrace errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Driver-related exceptions
class DriverError(PagetraceError):
    """Base exception for errors raised through a driver handle."""

    pass


class NotFoundError(DriverError):
    """Raised when a window, frame or element cannot be located."""

    pass


class WindowNotFoundError(NotFoundError):
    """Raised when the focused window is gone or its handle is unavailable."""

    def __init__(self, message: str, handle: Optional[str] = None):
        details = {"handle": handle} if handle else {}
        super().__init__(message, details)
        self.handle = handle


class FrameNotFoundError(NotFoundError):
    """Raised when the selected frame no longer exists."""

    pass


class ElementNotFoundError(NotFoundError):
    """Raised when no element matches a locator."""

    def __init__(self, message: str, locator: Optional[str] = None):
        details = {"locator": locator} if locator else {}
        super().__init__(message, details)
        self.locator = locator


class StaleReferenceError(DriverError):
    """Raised when an element reference is no longer attached to the page."""

    pass


class UnhandledAlertError(DriverError):
    """Raised when an open alert/confirm/prompt blocks the browser."""

    def __init__(self, message: str, alert_text: Optional[str] = None):
        super().__init__(message)
        self.alert_text = alert_text


class ElementNotInteractableError(DriverError):
    """Raised when an element exists but cannot be interacted with."""

    def __init__(self, message: str, locator: Optional[str] = None):
        details = {"locator": locator} if locator else {}
        super().__init__(message, details)
        self.locator = locator


class DriverTimeoutError(DriverError):
    """Raised when a driver operation times out."""

    def __init__(self, message: str, timeout: Optional[float] = None):
        details = {"timeout": timeout} if timeout else {}
        super().__init__(message, details)
        self.timeout = timeout


class DriverSessionLostError(DriverError):
    """Raised when the driver handle itself is no longer usable."""

    pass


class BackendNotFoundError(DriverError):
    """Raised when no driver backend is registered under a name."""

    def __init__(self, name: str, available: Optional[list[str]] = None):
        super().__init__(
            f"Unknown browser backend: {name}",
            {"available": available} if available else None,
        )
        self.name = name
        self.available = available or []


# Command exceptions
class CommandError(PagetraceError):
    """Base exception for command execution errors."""

    pass


class CommandFailure(CommandError):
    """Raised when a scripted assertion or verification does not hold."""

    def __init__(self, message: str, expected: Optional[str] = None, actual: Optional[str] = None):
        details = {}
        if expected is not None:
            details["expected"] = expected
        if actual is not None:
            details["actual"] = actual
        super().__init__(message, details)
        self.expected = expected
        self.actual = actual


class UnknownCommandError(CommandError):
    """Raised when a script names a command that does not exist."""

    def __init__(self, name: str):
        super().__init__(f"Unknown command: {name}", {"command": name})
        self.name = name


# Script definition exceptions
class ScriptDefinitionError(PagetraceError):
    """Base exception for script definition/loading errors."""

    pass


class ScriptLoadError(ScriptDefinitionError):
    """Raised when a script file cannot be loaded or parsed."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        details = {"file_path": file_path} if file_path else {}
        super().__init__(message, details)
        self.file_path = file_path


class ScriptValidationError(ScriptDefinitionError):
    """Raised when a script definition is invalid."""

    def __init__(self, message: str, script_id: Optional[str] = None, field: Optional[str] = None):
        details = {}
        if script_id:
            details["script_id"] = script_id
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.script_id = script_id
        self.field = field


# Configuration exceptions
class ConfigurationError(PagetraceError):
    """Raised when configuration is invalid."""

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when a required config file is not found."""

    def __init__(self, file_path: str):
        super().__init__(f"Configuration file not found: {file_path}", {"file_path": file_path})
        self.file_path = file_path

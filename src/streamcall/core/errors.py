from __future__ import annotations


class EngineError(Exception):
    """Base exception for this project."""


class ConfigError(EngineError):
    """Raised when configuration is invalid or incomplete."""

    def __init__(self, message: str, *, path: str | None = None):
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class ParseIncomplete(EngineError):
    """A candidate object is not balanced yet. Normal while a turn is still streaming."""

    def __init__(self, start: int):
        super().__init__(f"unbalanced object starting at offset {start}")
        self.start = start


class ParseError(EngineError):
    """A balanced candidate could not be decoded, even after repair."""

    def __init__(self, message: str, *, snippet: str = ""):
        super().__init__(message)
        self.snippet = snippet


class ContractViolation(EngineError):
    """Text is JSON shaped like the structured response but breaks its schema."""


class ValidationError(EngineError):
    """A tool call is missing required parameters or is blocked for the active mode."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class DuplicateCallError(EngineError):
    """The same semantic call is already executing."""

    def __init__(self, key: str):
        super().__init__(f"Tool call is already executing: {key}")
        self.key = key


class RegistryError(EngineError):
    """An execution registry move would break the pending/executing/completed ordering."""


class InvocationError(EngineError):
    """Raised by tool invokers. `status` carries an HTTP-like status code when known."""

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status


class ToolExecutionError(EngineError):
    transient = False

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class TransientExecutionError(ToolExecutionError):
    """Timeout, network failure, or a retryable status (429/5xx)."""

    transient = True


class PermanentExecutionError(ToolExecutionError):
    """Any other failure. Never retried."""

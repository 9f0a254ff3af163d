"""Error types raised by the layout engine and its collaborators."""

from __future__ import annotations


class MangoDisplayError(Exception):
    """Base class for all mangodisplay errors."""


# ── Validation (model unchanged) ─────────────────────────────────────────

class InvalidValue(MangoDisplayError, ValueError):
    """A value failed a positivity, range or enum check."""


class UnsupportedMode(MangoDisplayError, ValueError):
    """The requested mode is not in the output's known mode list."""

    def __init__(self, name: str, width: int, height: int, refresh_hz: float | None = None) -> None:
        mode = f"{width}x{height}"
        if refresh_hz is not None:
            mode += f"@{refresh_hz:.3f}Hz"
        super().__init__(f"{name} does not support mode {mode}")
        self.name = name
        self.width = width
        self.height = height
        self.refresh_hz = refresh_hz


class MalformedRule(MangoDisplayError, ValueError):
    """A persisted ``monitorrule=`` line could not be parsed."""

    def __init__(self, reason: str, line: str = "", line_number: int | None = None) -> None:
        where = f"line {line_number}: " if line_number is not None else ""
        super().__init__(f"{where}{reason}")
        self.reason = reason
        self.line = line
        self.line_number = line_number


# ── Session ──────────────────────────────────────────────────────────────

class DuplicateOutput(MangoDisplayError):
    """An output with this name already exists in the session."""


class UnknownOutput(MangoDisplayError, KeyError):
    """No output with this name exists in the session."""

    def __str__(self) -> str:
        return f"Unknown output: {self.args[0]}" if self.args else "Unknown output"


class OverlapError(MangoDisplayError):
    """The change would make two enabled outputs overlap."""


class OperationInProgress(MangoDisplayError):
    """A background query or apply is already running for this session."""


# ── External tool ────────────────────────────────────────────────────────

class QueryFailed(MangoDisplayError):
    """Querying outputs from the external tool failed."""


class QueryTimeout(QueryFailed):
    """The external tool did not answer the query in time."""


class PreviewApplyFailed(MangoDisplayError):
    """Applying the live preview failed. ``diagnostic`` holds the tool's stderr."""

    def __init__(self, message: str, diagnostic: str = "", returncode: int | None = None) -> None:
        super().__init__(message)
        self.diagnostic = diagnostic
        self.returncode = returncode


# ── Files ────────────────────────────────────────────────────────────────

class ConfigIOError(MangoDisplayError, OSError):
    """Reading or writing a configuration file failed."""

    def __init__(self, message: str, path=None) -> None:
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        return self.args[0] if self.args else "configuration I/O error"

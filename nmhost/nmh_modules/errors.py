"""Error types for the native messaging host."""
from __future__ import annotations

from dataclasses import dataclass, field

_MAX_CONTEXT_CHARS = 500


def _json_safe(value: object) -> object:
    """Coerce a context value into JSON-compatible primitives."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    return str(value)


@dataclass(frozen=True)
class _StructuredError:
    """Failure value carried inside IOFailure.

    operation names the function that failed; error_type is a
    short tag callers can branch on.
    """

    operation: str
    error_type: str
    message: str
    context: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Flatten to a dict for structured log records."""
        return {
            "kind": type(self).__name__,
            "operation": self.operation,
            "error_type": self.error_type,
            "message": self.message,
            "context": _json_safe(self.context),
        }

    def __str__(self) -> str:
        text = (
            f"{type(self).__name__}[{self.operation}]"
            f" {self.error_type}: {self.message}"
        )
        if not self.context:
            return text
        ctx = str(self.context)
        if len(ctx) > _MAX_CONTEXT_CHARS:
            ctx = ctx[: _MAX_CONTEXT_CHARS - 3] + "..."
        return f"{text} | context={ctx}"


@dataclass(frozen=True)
class TransportError(_StructuredError):
    """Failure reading or writing one frame.

    error_type is one of EndOfStream, IncompleteRead,
    FrameTooLarge, ReadError, WriteError, FlushError.
    """


@dataclass(frozen=True)
class InstallError(_StructuredError):
    """Failure writing host files or registering the host.

    error_type is one of ErrorCreatingProjectKey,
    ErrorWritingProjectKey, FirefoxNotFound, InvalidJsonPath,
    ErrorWritingConfigData, UnsupportedPlatform.
    """

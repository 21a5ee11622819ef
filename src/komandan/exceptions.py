"""Error taxonomy for komandan.

Every failure the engine reports is a KomandanError subclass carrying an
ErrorContext, so callers can tell a rejected connection from a denied
privilege escalation or a bad module argument. A non-zero exit code is
never an exception: it is reported in the ExecutionResult.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorTypes:
    """String constants classifying komandan errors."""

    MISSING_FIELD = "missing_field"
    CONNECTION_ERROR = "connection_error"
    ELEVATION_DENIED = "elevation_denied"
    MODULE_ERROR = "module_error"
    TRANSFER_ERROR = "transfer_error"
    EXECUTION_TIMEOUT = "execution_timeout"
    PATTERN_ERROR = "pattern_error"
    CONFIG_ERROR = "config_error"
    UNEXPECTED_ERROR = "unexpected_error"
    UNKNOWN = "unknown"


class ConnectionStage(str, Enum):
    """The step of connection establishment that failed."""

    CONNECT = "connect"
    HANDSHAKE = "handshake"
    HOST_KEY = "host_key"
    AUTHENTICATE = "authenticate"
    CHANNEL = "channel"


@dataclass
class ErrorContext:
    """Structured context attached to every komandan error.

    Attributes:
        error_type: One of the ErrorTypes constants
        host: Display label of the host involved (if any)
        task: Display label of the task involved (if any)
        details: Additional error-specific fields
    """

    error_type: str = ErrorTypes.UNKNOWN
    host: str | None = None
    task: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        result: dict[str, Any] = {"error_type": self.error_type}
        if self.host is not None:
            result["host"] = self.host
        if self.task is not None:
            result["task"] = self.task
        if self.details:
            result["details"] = dict(self.details)
        return result


class KomandanError(Exception):
    """Base class for all errors reported by the engine.

    Attributes:
        message: Human-readable error message
        context: Structured error context
    """

    error_type = ErrorTypes.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        host: str | None = None,
        task: str | None = None,
        **details: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            error_type=self.error_type,
            host=host,
            task=task,
            details=details,
        )

    def __str__(self) -> str:
        return self.message

    def with_labels(self, host: str | None = None, task: str | None = None) -> "KomandanError":
        """Fill in host/task labels that were not known where the error was raised."""
        if host is not None and self.context.host is None:
            self.context.host = host
        if task is not None and self.context.task is None:
            self.context.task = task
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {"msg": self.message, **self.context.to_dict()}


class MissingField(KomandanError):
    """A host is under-specified after merging with the defaults."""

    error_type = ErrorTypes.MISSING_FIELD

    def __init__(self, field_name: str, **kwargs: Any) -> None:
        super().__init__(f"Missing required host field: {field_name}", field=field_name, **kwargs)
        self.field = field_name


class ConnectionError(KomandanError):
    """Opening or authenticating the SSH session failed.

    Attributes:
        stage: The ConnectionStage that failed
        cause: Description of the underlying failure
    """

    error_type = ErrorTypes.CONNECTION_ERROR

    def __init__(self, stage: ConnectionStage, cause: str, **kwargs: Any) -> None:
        super().__init__(
            f"SSH {stage.value} failed: {cause}",
            stage=stage.value,
            cause=cause,
            **kwargs,
        )
        self.stage = stage
        self.cause = cause


class ElevationError(KomandanError):
    """Privilege escalation was rejected on the remote host."""

    error_type = ErrorTypes.ELEVATION_DENIED

    DENIED = "denied"

    def __init__(self, message: str, reason: str = DENIED, **kwargs: Any) -> None:
        super().__init__(message, reason=reason, **kwargs)
        self.reason = reason


class ModuleError(KomandanError):
    """Module parameters are invalid or contradictory."""

    error_type = ErrorTypes.MODULE_ERROR

    def __init__(self, module: str, message: str, **kwargs: Any) -> None:
        super().__init__(f"{module}: {message}", module=module, **kwargs)
        self.module = module


class TransferError(KomandanError):
    """A file transfer failed on the local or the remote side."""

    error_type = ErrorTypes.TRANSFER_ERROR


class ExecutionTimeout(KomandanError):
    """A unit of work exceeded its caller-supplied deadline."""

    error_type = ErrorTypes.EXECUTION_TIMEOUT

    def __init__(self, timeout: float, **kwargs: Any) -> None:
        super().__init__(f"Execution timed out after {timeout}s", timeout=timeout, **kwargs)
        self.timeout = timeout


class PatternError(KomandanError):
    """A ``~regex`` host pattern failed to compile."""

    error_type = ErrorTypes.PATTERN_ERROR


class ConfigError(KomandanError):
    """A configuration value could not be parsed."""

    error_type = ErrorTypes.CONFIG_ERROR


class UnexpectedError(KomandanError):
    """An exception the engine has no classification for.

    Raised in place of the original exception, which is chained as
    ``__cause__``, so one unit's failure stays in that unit's slot.
    """

    error_type = ErrorTypes.UNEXPECTED_ERROR

    def __init__(self, error: BaseException, **kwargs: Any) -> None:
        super().__init__(f"{type(error).__name__}: {error}", exception=type(error).__name__, **kwargs)

"""Type definitions for komandan.

This module defines the values exchanged with the scripting front end
(Host, Task, ExecutionResult, UnitResult) and the fully-resolved
connection target the engine works with internally (ResolvedHost).
Caller-supplied values are frozen: the engine never mutates them.
"""

import re
from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from .exceptions import KomandanError
from .modules import Cmd, Module


class ElevationMethod(str, Enum):
    """How a command is re-issued under another identity."""

    NONE = "none"
    SUDO = "sudo"
    SU = "su"

    @classmethod
    def parse(cls, value: "str | ElevationMethod") -> "ElevationMethod":
        """Parse an elevation method name.

        Raises:
            ValueError: If the name is not a supported method
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Unsupported elevation method: {value}. Valid methods: {valid}") from None


ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def freeze_env(env: Mapping[str, str] | None) -> Mapping[str, str]:
    """Copy an env mapping into a read-only one, checking variable names.

    Raises:
        ValueError: If a name is not a valid shell variable name
    """
    frozen = {str(k): str(v) for k, v in (env or {}).items()}
    for key in frozen:
        if not ENV_NAME.match(key):
            raise ValueError(f"Invalid environment variable name: {key!r}")
    return MappingProxyType(frozen)


@dataclass(frozen=True)
class Host:
    """Connection and identity parameters of a target machine.

    Every optional field left as None is filled from the Defaults Store
    at resolution time.

    Attributes:
        address: Hostname or IP address to connect to
        name: Optional label used for filtering and reporting
        port: SSH port (default 22 via the defaults)
        user: Login user
        private_key_file: Private key path for public key authentication
        private_key_pass: Passphrase of the private key
        password: Login password
        agent: Authenticate with keys held by the SSH agent
        host_key_check: Verify the host key against known_hosts (default True)
        known_hosts_file: Known-hosts store to verify against
        tags: Labels used for filtering
        env: Environment variables set for every command
        elevate: Run commands under an elevated identity
        elevation_method: "sudo", "su" or "none"
        as_user: Identity to elevate to (superuser when unset)
        elevation_password: Password for the elevation prompt (defaults to password)

    Example:
        >>> host = Host(address="10.0.0.5", name="web01", user="deploy", tags={"web"})
        >>> host.label
        'web01'
    """

    address: str | None = None
    name: str | None = None
    port: int | None = None
    user: str | None = None
    private_key_file: str | None = None
    private_key_pass: str | None = field(default=None, repr=False)
    password: str | None = field(default=None, repr=False)
    agent: bool | None = None
    host_key_check: bool | None = None
    known_hosts_file: str | None = None
    tags: frozenset[str] = frozenset()
    env: Mapping[str, str] = field(default_factory=dict)
    elevate: bool | None = None
    elevation_method: str | None = None
    as_user: str | None = None
    elevation_password: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """Freeze collections and validate the port."""
        tags = self.tags
        if isinstance(tags, str):
            tags = [tags]
        object.__setattr__(self, "tags", frozenset(tags or ()))
        object.__setattr__(self, "env", freeze_env(self.env))

        if self.port is not None:
            if isinstance(self.port, bool) or not isinstance(self.port, int):
                raise ValueError(f"Port is not an integer: {self.port!r}")
            if not 0 < self.port <= 65535:
                raise ValueError(f"Port is out of range: {self.port}")
        if self.elevation_method is not None:
            ElevationMethod.parse(self.elevation_method)

    @property
    def label(self) -> str:
        """Display label: the name, else user@address:port, else the address."""
        if self.name:
            return self.name
        if self.user and self.address:
            return f"{self.user}@{self.address}:{self.port or 22}"
        return self.address or "<unknown host>"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Host":
        """Create a host from a mapping such as a parsed host manifest entry.

        Raises:
            ValueError: If the mapping has keys that are not host fields
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown host fields: {', '.join(sorted(unknown))}")
        return cls(**dict(data))


@dataclass(frozen=True)
class Task:
    """One unit of work: a module invocation plus execution policy.

    A bare string is accepted as the module and treated as a shell command.

    Attributes:
        module: The module variant to run
        name: Optional label, used for logging and reporting only
        ignore_exit_code: Treat a non-zero exit code as success
        elevate: Overrides the host's elevate setting when not None
        elevation_method: Overrides the host's elevation method
        as_user: Overrides the host's elevation target identity
        env: Environment variables, merged over the host's (task wins)

    Example:
        >>> task = Task("uptime", name="check uptime")
        >>> task.module
        Cmd(cmd='uptime')
    """

    module: Module | str
    name: str | None = None
    ignore_exit_code: bool | None = None
    elevate: bool | None = None
    elevation_method: str | None = None
    as_user: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Coerce a command string into a Cmd module and freeze env."""
        if isinstance(self.module, str):
            object.__setattr__(self, "module", Cmd(cmd=self.module))
        elif not isinstance(self.module, Module):
            raise TypeError(f"Task module must be a Module or a command string, got {type(self.module).__name__}")
        object.__setattr__(self, "env", freeze_env(self.env))
        if self.elevation_method is not None:
            ElevationMethod.parse(self.elevation_method)

    @property
    def label(self) -> str:
        """Display label: the name, else a short module description."""
        return self.name or self.module.describe()


@dataclass(frozen=True)
class KeyAuth:
    """Public key authentication with a private key file."""

    private_key_file: str
    passphrase: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class PasswordAuth:
    """Password authentication."""

    password: str = field(repr=False)


@dataclass(frozen=True)
class AgentAuth:
    """Authentication with identities held by the SSH agent."""

    agent_path: str | None = None


AuthMethod = KeyAuth | PasswordAuth | AgentAuth


@dataclass(frozen=True)
class Elevation:
    """Resolved privilege-escalation settings for one unit of work.

    Attributes:
        method: Escalation mechanism (NONE disables wrapping)
        as_user: Target identity, None for the superuser
        password: Password written when the prompt appears
        prompt_timeout: Read window for the password prompt, in seconds
    """

    method: ElevationMethod = ElevationMethod.NONE
    as_user: str | None = None
    password: str | None = field(default=None, repr=False)
    prompt_timeout: float = 2.0

    @property
    def enabled(self) -> bool:
        """Whether commands are wrapped at all."""
        return self.method is not ElevationMethod.NONE


@dataclass(frozen=True)
class ResolvedHost:
    """A host merged with the defaults into a fully-specified target.

    Attributes:
        label: Display label of the original host
        address: Hostname or IP address
        port: SSH port
        user: Login user
        auth: The single authentication method to use
        host_key_check: Whether to verify the host key
        known_hosts_file: Known-hosts store used when verifying
        connect_timeout: Bound on connection establishment, in seconds
        env: Defaults env merged with the host env
        tags: Host tags
        elevate: Host-level elevate setting
        elevation_method: Host-level elevation method
        as_user: Host-level elevation target
        elevation_password: Password for the elevation prompt
        prompt_timeout: Read window for the elevation prompt
    """

    label: str
    address: str
    port: int
    user: str
    auth: AuthMethod
    host_key_check: bool = True
    known_hosts_file: str | None = None
    connect_timeout: float = 30.0
    env: Mapping[str, str] = field(default_factory=dict)
    tags: frozenset[str] = frozenset()
    elevate: bool = False
    elevation_method: ElevationMethod = ElevationMethod.SUDO
    as_user: str | None = None
    elevation_password: str | None = field(default=None, repr=False)
    prompt_timeout: float = 2.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", freeze_env(self.env))


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of running one task on one host.

    Attributes:
        stdout: Decoded standard output
        stderr: Decoded standard error
        exit_code: Exit status of the last command run

    Example:
        >>> result = ExecutionResult(stdout="hi\\n", stderr="", exit_code=0)
        >>> result.succeeded
        True
    """

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def succeeded(self) -> bool:
        """Whether the exit code is zero."""
        return self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary for the scripting front end."""
        return {"stdout": self.stdout, "stderr": self.stderr, "exit_code": self.exit_code}


@dataclass(frozen=True)
class UnitResult:
    """One slot of a batch: the result or the error of a (host, task) unit.

    Attributes:
        host: Display label of the host
        task: Display label of the task
        result: The execution result, when the unit ran to completion
        error: The error that terminated the unit, if any
        ignore_exit_code: Whether a non-zero exit code counts as success
    """

    host: str
    task: str
    result: ExecutionResult | None = None
    error: KomandanError | None = None
    ignore_exit_code: bool = False

    @property
    def ok(self) -> bool:
        """No error, and a zero (or ignored) exit code."""
        if self.error is not None or self.result is None:
            return False
        return self.ignore_exit_code or self.result.succeeded

    @property
    def failed(self) -> bool:
        """Inverse of ok."""
        return not self.ok

    def unwrap(self) -> ExecutionResult:
        """Return the result or raise the unit's error."""
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        data: dict[str, Any] = {"host": self.host, "task": self.task, "ok": self.ok}
        if self.result is not None:
            data.update(self.result.to_dict())
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data

"""Defaults Store for komandan.

Provides the fallback values applied to every host field left unset.
``Defaults`` is an immutable snapshot; ``DefaultsStore`` holds the current
values and hands snapshots to the engine. The process-wide ``DEFAULTS``
store is initialized once from ``KOMANDAN_*`` environment variables.

Mutation discipline: set defaults before issuing execution calls. Every
batch works on a snapshot taken before fan-out, so a concurrent ``set``
never reaches a running worker, but it is not synchronized with the batch
either.
"""

import dataclasses
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping

from .exceptions import ConfigError
from .types import ElevationMethod, freeze_env

logger = logging.getLogger(__name__)

ENV_PREFIX = "KOMANDAN_"

ENV_FORWARDING_MODES = ("inline", "native")

DEFAULT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def default_known_hosts_file() -> str:
    """The user's OpenSSH known-hosts file."""
    return os.path.join(os.path.expanduser("~"), ".ssh", "known_hosts")


def default_parallelism() -> int:
    """Worker count used when none is configured, as ThreadPoolExecutor does."""
    return min(32, (os.cpu_count() or 1) + 4)


@dataclass(frozen=True)
class Defaults:
    """An immutable set of default values.

    Attributes:
        port: SSH port
        user: Login user
        private_key_file: Private key path
        private_key_pass: Private key passphrase
        password: Login password
        agent: Authenticate with the SSH agent when nothing else is configured
        known_hosts_file: Known-hosts store used for host key verification
        host_key_check: Verify host keys
        ignore_exit_code: Treat non-zero exit codes as success
        elevate: Run commands under an elevated identity
        elevation_method: "sudo", "su" or "none"
        as_user: Elevation target identity (superuser when unset)
        connect_timeout: Bound on connection establishment, in seconds
        prompt_timeout: Read window for the elevation password prompt, in seconds
        parallelism: Worker pool size for batch calls
        env_forwarding: "inline" (export in the command) or "native" (SSH env requests)
        env: Environment variables set for every command
    """

    port: int = 22
    user: str | None = None
    private_key_file: str | None = None
    private_key_pass: str | None = field(default=None, repr=False)
    password: str | None = field(default=None, repr=False)
    agent: bool = False
    known_hosts_file: str | None = field(default_factory=default_known_hosts_file)
    host_key_check: bool = True
    ignore_exit_code: bool = False
    elevate: bool = False
    elevation_method: str = "sudo"
    as_user: str | None = None
    connect_timeout: float = 30.0
    prompt_timeout: float = 2.0
    parallelism: int = field(default_factory=default_parallelism)
    env_forwarding: str = "inline"
    env: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_ENV))

    def __post_init__(self) -> None:
        """Validate field types and ranges, and freeze env."""
        for f in dataclasses.fields(self):
            if f.name != "env":
                _check_type(f.name, getattr(self, f.name))

        if not 0 < self.port <= 65535:
            raise ValueError(f"port is out of range: {self.port}")
        if self.parallelism < 1:
            raise ValueError(f"parallelism must be at least 1: {self.parallelism}")
        if self.connect_timeout <= 0 or self.prompt_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if self.env_forwarding not in ENV_FORWARDING_MODES:
            raise ValueError(
                f"env_forwarding must be one of {', '.join(ENV_FORWARDING_MODES)}: {self.env_forwarding}"
            )
        ElevationMethod.parse(self.elevation_method)

        object.__setattr__(self, "env", freeze_env(self.env))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary, leaving secrets out."""
        result = {}
        for f in dataclasses.fields(self):
            if f.name in ("private_key_pass", "password"):
                continue
            value = getattr(self, f.name)
            result[f.name] = dict(value) if f.name == "env" else value
        return result


_BOOL_FIELDS = {"agent", "host_key_check", "ignore_exit_code", "elevate"}
_INT_FIELDS = {"port", "parallelism"}
_FLOAT_FIELDS = {"connect_timeout", "prompt_timeout"}
_REQUIRED_FIELDS = _BOOL_FIELDS | _INT_FIELDS | _FLOAT_FIELDS | {"elevation_method", "env_forwarding"}


def _check_type(name: str, value: Any) -> None:
    if value is None:
        if name in _REQUIRED_FIELDS:
            raise ValueError(f"{name} cannot be None")
        return
    if name in _BOOL_FIELDS:
        ok = isinstance(value, bool)
    elif name in _INT_FIELDS:
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif name in _FLOAT_FIELDS:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    else:
        ok = isinstance(value, str)
    if not ok:
        raise ValueError(f"Invalid type for {name}: {type(value).__name__}")


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def parse_bool(name: str, value: str) -> bool:
    """Parse a boolean environment value.

    Raises:
        ConfigError: If the value is not a recognized boolean
    """
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}", variable=name)


def parse_number(name: str, value: str, kind: type) -> Any:
    """Parse an int or float environment value.

    Raises:
        ConfigError: If the value does not parse
    """
    try:
        return kind(value.strip())
    except ValueError:
        raise ConfigError(f"{name} must be {'an integer' if kind is int else 'a number'}, got {value!r}",
                          variable=name) from None


# field name -> (environment variable suffix, parser kind)
_ENVIRONMENT_FIELDS = {
    "port": ("SSH_PORT", int),
    "user": ("SSH_USER", str),
    "private_key_file": ("SSH_PRIVATE_KEY_FILE", str),
    "private_key_pass": ("SSH_PRIVATE_KEY_PASS", str),
    "password": ("SSH_PASSWORD", str),
    "agent": ("SSH_AGENT", bool),
    "known_hosts_file": ("SSH_KNOWN_HOSTS_FILE", str),
    "host_key_check": ("SSH_HOST_KEY_CHECK", bool),
    "connect_timeout": ("CONNECT_TIMEOUT", float),
    "prompt_timeout": ("PROMPT_TIMEOUT", float),
    "parallelism": ("PARALLELISM", int),
    "env_forwarding": ("ENV_FORWARDING", str),
}


def load_from_environment(environ: Mapping[str, str] | None = None) -> Defaults:
    """Build defaults from ``KOMANDAN_*`` environment variables.

    Args:
        environ: Environment to read (default os.environ)

    Returns:
        Defaults with every variable that is set applied

    Raises:
        ConfigError: If a variable holds an invalid value
    """
    environ = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for name, (suffix, kind) in _ENVIRONMENT_FIELDS.items():
        variable = ENV_PREFIX + suffix
        raw = environ.get(variable)
        if raw is None or raw == "":
            continue
        if kind is bool:
            values[name] = parse_bool(variable, raw)
        elif kind in (int, float):
            values[name] = parse_number(variable, raw, kind)
        else:
            values[name] = raw

    try:
        return Defaults(**values)
    except ValueError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


class DefaultsStore:
    """Mutable holder of the current defaults.

    Example:
        >>> store = DefaultsStore()
        >>> store.set("user", "deploy")
        >>> store.snapshot().user
        'deploy'
    """

    def __init__(self, defaults: Defaults | None = None):
        self._lock = threading.Lock()
        self._initial = defaults if defaults is not None else Defaults()
        self._current = self._initial

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> "DefaultsStore":
        """Create a store initialized from ``KOMANDAN_*`` environment variables."""
        return cls(load_from_environment(environ))

    def get(self, name: str) -> Any:
        """Return the current value of a field.

        Raises:
            ValueError: If there is no such field
        """
        self._check_name(name)
        value = getattr(self._current, name)
        return dict(value) if name == "env" else value

    def set(self, name: str, value: Any) -> None:
        """Set one field.

        Raises:
            ValueError: If there is no such field or the value is invalid
        """
        self.update(**{name: value})

    def update(self, **values: Any) -> None:
        """Set several fields at once; nothing changes if any value is invalid."""
        for name in values:
            self._check_name(name)
        with self._lock:
            self._current = dataclasses.replace(self._current, **values)
        logger.debug(f"Defaults updated: {', '.join(sorted(values))}")

    def get_env(self, key: str) -> str | None:
        """Return a default environment variable, or None."""
        return self._current.env.get(key)

    def set_env(self, key: str, value: str) -> None:
        """Set a default environment variable."""
        with self._lock:
            env = dict(self._current.env)
            env[str(key)] = str(value)
            self._current = dataclasses.replace(self._current, env=env)

    def unset_env(self, key: str) -> None:
        """Remove a default environment variable if it is set."""
        with self._lock:
            env = dict(self._current.env)
            env.pop(key, None)
            self._current = dataclasses.replace(self._current, env=env)

    def snapshot(self) -> Defaults:
        """The current defaults as an immutable value."""
        return self._current

    def reset(self) -> None:
        """Restore the values the store was created with."""
        with self._lock:
            self._current = self._initial

    @staticmethod
    def _check_name(name: str) -> None:
        if name not in {f.name for f in dataclasses.fields(Defaults)}:
            raise ValueError(f"Unknown default: {name}")


DEFAULTS = DefaultsStore.from_environment()

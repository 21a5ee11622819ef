"""Host resolution.

Merges a partial Host with a Defaults snapshot into a ResolvedHost, and
derives per-task settings (elevation, env, exit code policy) from the
resolved host and the task. Everything here is side-effect free.
"""

from typing import Mapping

from .defaults import Defaults
from .exceptions import MissingField
from .types import (
    AgentAuth,
    AuthMethod,
    Elevation,
    ElevationMethod,
    Host,
    KeyAuth,
    PasswordAuth,
    ResolvedHost,
    Task,
)


def merge_env(*layers: Mapping[str, str] | None) -> dict[str, str]:
    """Merge environment mappings, later layers winning on key conflicts.

    Example:
        >>> merge_env({"A": "1", "B": "1"}, {"B": "2"})
        {'A': '1', 'B': '2'}
    """
    merged: dict[str, str] = {}
    for layer in layers:
        if layer:
            merged.update(layer)
    return merged


def _pick(value, default):
    return default if value is None else value


def _auth_from(private_key_file, private_key_pass, password, agent) -> AuthMethod | None:
    """First configured method: key, then password, then agent."""
    if private_key_file:
        return KeyAuth(private_key_file, private_key_pass)
    if password:
        return PasswordAuth(password)
    if agent:
        return AgentAuth()
    return None


def resolve_auth(host: Host, defaults: Defaults) -> AuthMethod | None:
    """Choose the authentication method for a host.

    Auth material on the host itself takes precedence over the defaults as
    a whole, so a host with an explicit password is not switched to a
    default private key. Within one source the order is key, password,
    agent; there is no fallback from one method to another.
    """
    auth = _auth_from(
        host.private_key_file,
        _pick(host.private_key_pass, defaults.private_key_pass),
        host.password,
        host.agent,
    )
    if auth is None:
        auth = _auth_from(
            defaults.private_key_file,
            defaults.private_key_pass,
            defaults.password,
            defaults.agent if host.agent is None else False,
        )
    return auth


def resolve_host(host: Host, defaults: Defaults) -> ResolvedHost:
    """Fill the unset fields of a host from the defaults.

    Args:
        host: Caller-supplied host, never modified
        defaults: Defaults snapshot

    Returns:
        The fully-specified connection target

    Raises:
        MissingField: If address, user or every auth method is missing
    """
    if not host.address:
        raise MissingField("address", host=host.label)

    user = _pick(host.user, defaults.user)
    if not user:
        raise MissingField("user", host=host.label)

    auth = resolve_auth(host, defaults)
    if auth is None:
        raise MissingField("auth", host=host.label)

    port = _pick(host.port, defaults.port)
    password = _pick(host.password, defaults.password)

    return ResolvedHost(
        label=host.name or f"{user}@{host.address}:{port}",
        address=host.address,
        port=port,
        user=user,
        auth=auth,
        host_key_check=_pick(host.host_key_check, defaults.host_key_check),
        known_hosts_file=_pick(host.known_hosts_file, defaults.known_hosts_file),
        connect_timeout=defaults.connect_timeout,
        env=merge_env(defaults.env, host.env),
        tags=host.tags,
        elevate=_pick(host.elevate, defaults.elevate),
        elevation_method=ElevationMethod.parse(_pick(host.elevation_method, defaults.elevation_method)),
        as_user=_pick(host.as_user, defaults.as_user),
        elevation_password=_pick(host.elevation_password, password),
        prompt_timeout=defaults.prompt_timeout,
    )


def resolve_elevation(resolved: ResolvedHost, task: Task) -> Elevation:
    """Elevation settings for one task on a resolved host; the task wins."""
    elevate = _pick(task.elevate, resolved.elevate)
    if task.elevation_method is not None:
        method = ElevationMethod.parse(task.elevation_method)
    else:
        method = resolved.elevation_method
    if not elevate or method is ElevationMethod.NONE:
        return Elevation(prompt_timeout=resolved.prompt_timeout)
    return Elevation(
        method=method,
        as_user=_pick(task.as_user, resolved.as_user),
        password=resolved.elevation_password,
        prompt_timeout=resolved.prompt_timeout,
    )


def resolve_ignore_exit_code(task: Task, defaults: Defaults) -> bool:
    """The task's exit code policy, falling back to the default."""
    return bool(_pick(task.ignore_exit_code, defaults.ignore_exit_code))

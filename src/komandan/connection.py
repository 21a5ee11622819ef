"""SSH connection management for komandan.

Opens one authenticated asyncssh session per unit of work. Establishment
is split into stages so a failure names what went wrong:

- connect: TCP connection to address:port
- handshake: SSH protocol negotiation
- host_key: verification against the known-hosts file (fails closed)
- authenticate: the single configured authentication method

Connections are never pooled or shared. ``open_connection`` is an async
context manager that closes the session on every exit path.
"""

import asyncio
import logging
import os
import socket
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import asyncssh

from .exceptions import ConnectionError, ConnectionStage
from .types import AgentAuth, KeyAuth, PasswordAuth, ResolvedHost

logger = logging.getLogger(__name__)

KEEPALIVE_INTERVAL = 30.0


def connect_options(target: ResolvedHost) -> dict[str, Any]:
    """Convert a resolved host to asyncssh.connect() kwargs.

    Exactly one authentication method is enabled; the others are
    explicitly disabled so asyncssh does not fall back to them.
    """
    options: dict[str, Any] = {
        "username": target.user,
        "keepalive_interval": KEEPALIVE_INTERVAL,
        "known_hosts": os.path.expanduser(target.known_hosts_file) if target.host_key_check else None,
    }

    auth = target.auth
    if isinstance(auth, KeyAuth):
        options["client_keys"] = [os.path.expanduser(auth.private_key_file)]
        options["passphrase"] = auth.passphrase
        options["agent_path"] = None
        options["password"] = None
        options["preferred_auth"] = "publickey"
    elif isinstance(auth, PasswordAuth):
        options["password"] = auth.password
        options["client_keys"] = None
        options["agent_path"] = None
        options["preferred_auth"] = "password,keyboard-interactive"
    elif isinstance(auth, AgentAuth):
        # connect() passes the agent's identities as client_keys
        options["agent_path"] = None
        options["password"] = None
        options["preferred_auth"] = "publickey"

    return options


def _describe(error: BaseException) -> str:
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return "timed out"
    return str(error) or type(error).__name__


def classify_error(error: BaseException) -> ConnectionStage | None:
    """Map an exception raised by asyncssh.connect() to the failed stage."""
    if isinstance(error, asyncssh.HostKeyNotVerifiable):
        return ConnectionStage.HOST_KEY
    if isinstance(error, (asyncssh.PermissionDenied, asyncssh.KeyImportError, asyncssh.KeyEncryptionError)):
        return ConnectionStage.AUTHENTICATE
    if isinstance(error, (asyncssh.Error, OSError, asyncio.TimeoutError, TimeoutError)):
        return ConnectionStage.HANDSHAKE
    return None


def _check_local_files(target: ResolvedHost) -> None:
    """Fail before any network I/O when required local files are missing."""
    if target.host_key_check:
        known_hosts = target.known_hosts_file
        if not known_hosts or not os.path.exists(os.path.expanduser(known_hosts)):
            raise ConnectionError(
                ConnectionStage.HOST_KEY,
                f"known hosts file not found: {known_hosts}",
                host=target.label,
            )
    auth = target.auth
    if isinstance(auth, KeyAuth) and not os.path.exists(os.path.expanduser(auth.private_key_file)):
        raise ConnectionError(
            ConnectionStage.AUTHENTICATE,
            f"private key file not found: {auth.private_key_file}",
            host=target.label,
        )


async def _connect_agent(target: ResolvedHost) -> asyncssh.SSHAgentClient:
    path = target.auth.agent_path or os.environ.get("SSH_AUTH_SOCK")
    if not path:
        raise ConnectionError(
            ConnectionStage.AUTHENTICATE,
            "no ssh-agent available: SSH_AUTH_SOCK is not set",
            host=target.label,
        )
    try:
        return await asyncssh.connect_agent(path)
    except (OSError, asyncssh.Error) as e:
        raise ConnectionError(
            ConnectionStage.AUTHENTICATE,
            f"cannot connect to ssh-agent at {path}: {_describe(e)}",
            host=target.label,
        ) from e


async def agent_keys(target: ResolvedHost, agent: asyncssh.SSHAgentClient) -> list:
    """List the identities held by the agent, the only keys offered under AgentAuth.

    Raises:
        ConnectionError: With stage AUTHENTICATE if the agent fails or is empty
    """
    try:
        keys = await agent.get_keys()
    except (OSError, ValueError, asyncssh.Error) as e:
        raise ConnectionError(
            ConnectionStage.AUTHENTICATE,
            f"cannot list ssh-agent identities: {_describe(e)}",
            host=target.label,
        ) from e
    if not keys:
        raise ConnectionError(ConnectionStage.AUTHENTICATE, "ssh-agent holds no identities", host=target.label)
    return list(keys)


async def tcp_connect(target: ResolvedHost) -> socket.socket:
    """Open a TCP connection to the host, trying each resolved address.

    Raises:
        ConnectionError: With stage CONNECT if no address accepts the connection
    """
    loop = asyncio.get_running_loop()
    try:
        infos = await asyncio.wait_for(
            loop.getaddrinfo(target.address, target.port, type=socket.SOCK_STREAM),
            timeout=target.connect_timeout,
        )
    except (OSError, asyncio.TimeoutError) as e:
        raise ConnectionError(
            ConnectionStage.CONNECT,
            f"cannot resolve {target.address}: {_describe(e)}",
            host=target.label,
        ) from e

    last_error: BaseException | None = None
    for family, sock_type, proto, _, sockaddr in infos:
        sock = socket.socket(family, sock_type, proto)
        sock.setblocking(False)
        try:
            await asyncio.wait_for(loop.sock_connect(sock, sockaddr), timeout=target.connect_timeout)
            return sock
        except (OSError, asyncio.TimeoutError) as e:
            sock.close()
            last_error = e
            logger.debug(f"TCP connect to {sockaddr} failed: {_describe(e)}")
        except asyncio.CancelledError:
            sock.close()
            raise

    cause = _describe(last_error) if last_error else "no usable address"
    raise ConnectionError(
        ConnectionStage.CONNECT,
        f"{target.address}:{target.port}: {cause}",
        host=target.label,
    ) from last_error


class Connection:
    """An authenticated SSH session exclusively owned by one unit of work.

    Example:
        async with open_connection(target) as conn:
            async with conn.create_process("uptime") as process:
                ...
    """

    def __init__(self, target: ResolvedHost, conn: asyncssh.SSHClientConnection):
        self.target = target
        self._conn = conn

    @property
    def label(self) -> str:
        """Display label of the connected host."""
        return self.target.label

    @property
    def is_closed(self) -> bool:
        """Whether the session has been closed."""
        return self._conn.is_closed()

    def create_process(
        self,
        command: str,
        env: dict[str, str] | None = None,
        term_type: str | None = None,
    ):
        """Start a remote process on a new channel.

        Output is read as bytes. Usable with ``await`` or ``async with``.

        Args:
            command: Command line for the remote shell
            env: Variables forwarded with SSH environment requests
            term_type: Request a pseudo-terminal of this type
        """
        kwargs: dict[str, Any] = {"encoding": None}
        if env:
            kwargs["env"] = env
        if term_type:
            kwargs["term_type"] = term_type
        return self._conn.create_process(command, **kwargs)

    def start_sftp_client(self):
        """Open an SFTP session on a new channel (an async context manager)."""
        return self._conn.start_sftp_client()

    async def close(self) -> None:
        """Close the session and wait until it is torn down."""
        if not self._conn.is_closed():
            self._conn.close()
        await self._conn.wait_closed()
        logger.debug(f"Disconnected from {self.label}")

    async def __aenter__(self) -> "Connection":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


async def connect(target: ResolvedHost) -> Connection:
    """Open and authenticate an SSH session.

    Args:
        target: Fully-resolved host

    Returns:
        The open connection; the caller must close it

    Raises:
        ConnectionError: With the stage that failed
    """
    _check_local_files(target)
    options = connect_options(target)

    logger.debug(f"Connecting to {target.address}:{target.port} as {target.user}")
    sock = await tcp_connect(target)

    agent = None
    try:
        if isinstance(target.auth, AgentAuth):
            agent = await _connect_agent(target)
            options["client_keys"] = await agent_keys(target, agent)
        conn = await asyncio.wait_for(
            asyncssh.connect(target.address, target.port, sock=sock, **options),
            timeout=target.connect_timeout,
        )
    except asyncio.CancelledError:
        sock.close()
        raise
    except Exception as e:
        sock.close()
        stage = classify_error(e)
        if stage is None:
            raise
        raise ConnectionError(stage, _describe(e), host=target.label) from e
    finally:
        if agent is not None:
            agent.close()
            await agent.wait_closed()

    logger.info(f"Connected to {target.label}")
    return Connection(target, conn)


@asynccontextmanager
async def open_connection(target: ResolvedHost) -> AsyncIterator[Connection]:
    """Connect to a host for the duration of a ``async with`` block.

    The session is closed when the block exits, whether it returns,
    raises or is cancelled.
    """
    conn = await connect(target)
    try:
        yield conn
    finally:
        await conn.close()

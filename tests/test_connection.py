"""Tests for SSH connection establishment."""

import asyncio
import socket
from unittest.mock import AsyncMock, MagicMock, patch

import asyncssh
import pytest

from komandan.connection import (
    KEEPALIVE_INTERVAL,
    Connection,
    classify_error,
    connect,
    connect_options,
    open_connection,
    tcp_connect,
)
from komandan.exceptions import ConnectionError, ConnectionStage
from komandan.types import AgentAuth, KeyAuth, PasswordAuth, ResolvedHost


def target(auth=None, host_key_check=False, known_hosts_file=None, address="127.0.0.1", port=22, **kwargs):
    return ResolvedHost(
        label="web01",
        address=address,
        port=port,
        user="deploy",
        auth=auth or PasswordAuth("pw"),
        host_key_check=host_key_check,
        known_hosts_file=known_hosts_file,
        **kwargs,
    )


def free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestConnectOptions:
    """Tests for the asyncssh.connect() keyword arguments."""

    def test_key_auth(self):
        """Test that key auth disables password and agent."""
        options = connect_options(target(KeyAuth("/keys/id_ed25519", "pp")))

        assert options["username"] == "deploy"
        assert options["client_keys"] == ["/keys/id_ed25519"]
        assert options["passphrase"] == "pp"
        assert options["agent_path"] is None
        assert options["password"] is None
        assert options["preferred_auth"] == "publickey"
        assert options["keepalive_interval"] == KEEPALIVE_INTERVAL

    def test_password_auth(self):
        """Test that password auth disables keys and agent."""
        options = connect_options(target(PasswordAuth("pw")))

        assert options["password"] == "pw"
        assert options["client_keys"] is None
        assert options["agent_path"] is None
        assert options["preferred_auth"] == "password,keyboard-interactive"

    def test_agent_auth(self):
        """Test that agent auth leaves key selection to connect()."""
        options = connect_options(target(AgentAuth("/run/agent.sock")))

        assert options["agent_path"] is None
        assert options["password"] is None
        assert options["preferred_auth"] == "publickey"

    def test_host_key_check(self, tmp_path):
        """Test that known_hosts is only passed when checking."""
        known_hosts = str(tmp_path / "known_hosts")

        assert connect_options(target(host_key_check=True, known_hosts_file=known_hosts))["known_hosts"] == known_hosts
        assert connect_options(target(host_key_check=False))["known_hosts"] is None


class TestClassifyError:
    """Tests for mapping asyncssh errors to stages."""

    def test_stages(self):
        """Test each stage mapping."""
        assert classify_error(asyncssh.HostKeyNotVerifiable("mismatch")) is ConnectionStage.HOST_KEY
        assert classify_error(asyncssh.PermissionDenied("denied")) is ConnectionStage.AUTHENTICATE
        assert classify_error(asyncssh.KeyImportError("bad key")) is ConnectionStage.AUTHENTICATE
        assert classify_error(asyncssh.ConnectionLost("reset")) is ConnectionStage.HANDSHAKE
        assert classify_error(asyncio.TimeoutError()) is ConnectionStage.HANDSHAKE
        assert classify_error(ValueError("other")) is None


class TestTcpConnect:
    """Tests for the TCP stage."""

    @pytest.mark.asyncio
    async def test_refused(self):
        """Test that a closed port fails at the connect stage."""
        with pytest.raises(ConnectionError) as exc_info:
            await tcp_connect(target(port=free_port(), connect_timeout=5))

        assert exc_info.value.stage is ConnectionStage.CONNECT
        assert exc_info.value.context.host == "web01"

    @pytest.mark.asyncio
    async def test_accepted(self):
        """Test connecting to a listening socket."""
        with socket.socket() as server:
            server.bind(("127.0.0.1", 0))
            server.listen(1)
            sock = await tcp_connect(target(port=server.getsockname()[1], connect_timeout=5))
            try:
                assert sock.getpeername() == server.getsockname()
            finally:
                sock.close()


class TestConnect:
    """Tests for full connection establishment."""

    @pytest.mark.asyncio
    async def test_missing_known_hosts_fails_closed(self, tmp_path):
        """Test that host key checking without a known-hosts file fails before any I/O."""
        with patch("komandan.connection.tcp_connect", new=AsyncMock()) as tcp:
            with pytest.raises(ConnectionError) as exc_info:
                await connect(target(host_key_check=True, known_hosts_file=str(tmp_path / "nope")))

        assert exc_info.value.stage is ConnectionStage.HOST_KEY
        tcp.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_private_key(self, tmp_path):
        """Test that a missing key file fails at the authenticate stage."""
        with pytest.raises(ConnectionError) as exc_info:
            await connect(target(KeyAuth(str(tmp_path / "id_missing"))))

        assert exc_info.value.stage is ConnectionStage.AUTHENTICATE
        assert "private key file not found" in exc_info.value.cause

    @pytest.mark.asyncio
    async def test_success(self):
        """Test that asyncssh gets the pre-connected socket and options."""
        sock = MagicMock()
        ssh_conn = MagicMock()
        with patch("komandan.connection.tcp_connect", new=AsyncMock(return_value=sock)), \
                patch("asyncssh.connect", new=AsyncMock(return_value=ssh_conn)) as ssh_connect:
            conn = await connect(target())

        assert isinstance(conn, Connection)
        assert conn.label == "web01"
        args, kwargs = ssh_connect.call_args
        assert args == ("127.0.0.1", 22)
        assert kwargs["sock"] is sock
        assert kwargs["password"] == "pw"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error, stage", [
        (asyncssh.PermissionDenied("Permission denied"), ConnectionStage.AUTHENTICATE),
        (asyncssh.HostKeyNotVerifiable("Host key is not trusted"), ConnectionStage.HOST_KEY),
        (asyncssh.ProtocolError("bad banner"), ConnectionStage.HANDSHAKE),
    ])
    async def test_failure_stage(self, error, stage):
        """Test that asyncssh failures are reported with their stage and the socket closed."""
        sock = MagicMock()
        with patch("komandan.connection.tcp_connect", new=AsyncMock(return_value=sock)), \
                patch("asyncssh.connect", new=AsyncMock(side_effect=error)):
            with pytest.raises(ConnectionError) as exc_info:
                await connect(target())

        assert exc_info.value.stage is stage
        assert exc_info.value.__cause__ is error
        sock.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_agent_identities_only(self):
        """Test that agent auth offers exactly the agent's keys and closes the agent."""
        key = MagicMock(name="agent-key")
        agent = MagicMock()
        agent.get_keys = AsyncMock(return_value=[key])
        agent.wait_closed = AsyncMock()
        with patch("komandan.connection.tcp_connect", new=AsyncMock(return_value=MagicMock())), \
                patch("asyncssh.connect_agent", new=AsyncMock(return_value=agent)) as connect_agent, \
                patch("asyncssh.connect", new=AsyncMock(return_value=MagicMock())) as ssh_connect:
            await connect(target(AgentAuth("/run/agent.sock")))

        connect_agent.assert_awaited_once_with("/run/agent.sock")
        kwargs = ssh_connect.call_args.kwargs
        assert kwargs["client_keys"] == [key]
        assert kwargs["agent_path"] is None
        agent.close.assert_called_once()
        agent.wait_closed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_agent(self):
        """Test that an agent without identities fails authentication before the handshake."""
        sock = MagicMock()
        agent = MagicMock()
        agent.get_keys = AsyncMock(return_value=[])
        agent.wait_closed = AsyncMock()
        with patch("komandan.connection.tcp_connect", new=AsyncMock(return_value=sock)), \
                patch("asyncssh.connect_agent", new=AsyncMock(return_value=agent)), \
                patch("asyncssh.connect", new=AsyncMock()) as ssh_connect:
            with pytest.raises(ConnectionError, match="holds no identities") as exc_info:
                await connect(target(AgentAuth("/run/agent.sock")))

        assert exc_info.value.stage is ConnectionStage.AUTHENTICATE
        ssh_connect.assert_not_called()
        sock.close.assert_called_once()
        agent.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_agent_socket_unset(self, monkeypatch):
        """Test agent auth with no socket configured anywhere."""
        monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
        with patch("komandan.connection.tcp_connect", new=AsyncMock(return_value=MagicMock())), \
                patch("asyncssh.connect", new=AsyncMock()) as ssh_connect:
            with pytest.raises(ConnectionError, match="SSH_AUTH_SOCK is not set") as exc_info:
                await connect(target(AgentAuth()))

        assert exc_info.value.stage is ConnectionStage.AUTHENTICATE
        ssh_connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_open_connection_closes(self):
        """Test that the context manager closes the session even on error."""
        ssh_conn = MagicMock()
        ssh_conn.is_closed.return_value = False
        ssh_conn.wait_closed = AsyncMock()
        with patch("komandan.connection.tcp_connect", new=AsyncMock(return_value=MagicMock())), \
                patch("asyncssh.connect", new=AsyncMock(return_value=ssh_conn)):
            with pytest.raises(RuntimeError):
                async with open_connection(target()):
                    raise RuntimeError("boom")

        ssh_conn.close.assert_called_once()
        ssh_conn.wait_closed.assert_awaited_once()


class TestConnection:
    """Tests for the Connection wrapper."""

    def test_create_process_options(self):
        """Test that output is binary and env/pty are only passed when set."""
        ssh_conn = MagicMock()
        conn = Connection(target(), ssh_conn)

        conn.create_process("uptime")
        ssh_conn.create_process.assert_called_with("uptime", encoding=None)

        conn.create_process("su -c id", env={"A": "1"}, term_type="dumb")
        ssh_conn.create_process.assert_called_with("su -c id", encoding=None, env={"A": "1"}, term_type="dumb")

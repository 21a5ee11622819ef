"""Shared fixtures: in-memory stand-ins for asyncssh processes, SFTP and connections."""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from unittest.mock import patch

import asyncssh
import pytest

from komandan.defaults import Defaults
from komandan.exceptions import ConnectionError, ConnectionStage


class FakeReader:
    """Byte stream that blocks like an SSH channel until data or EOF arrives."""

    def __init__(self, data: bytes = b""):
        self._buffer = bytearray(data)
        self._eof = False
        self._event = asyncio.Event()

    def feed(self, data: bytes) -> None:
        self._buffer += data
        self._event.set()

    def feed_eof(self) -> None:
        self._eof = True
        self._event.set()

    async def _wait(self) -> None:
        self._event.clear()
        await self._event.wait()

    async def read(self, n: int = -1) -> bytes:
        if n < 0:
            while not self._eof:
                await self._wait()
            data = bytes(self._buffer)
            self._buffer.clear()
            return data
        while not self._buffer and not self._eof:
            await self._wait()
        data = bytes(self._buffer[:n])
        del self._buffer[:n]
        return data


class FakeWriter:
    def __init__(self, process: "FakeProcess"):
        self._process = process
        self.written = b""
        self.eof = False

    def write(self, data: bytes) -> None:
        self.written += data
        self._process.on_input(data)

    def write_eof(self) -> None:
        self.eof = True
        self._process.on_eof()


class FakeProcess:
    """A remote process whose output is scripted.

    Output is delivered immediately; both streams reach EOF when stdin is
    closed. ``responder(process, data)`` is called for every stdin write.
    """

    def __init__(self, stdout=b"", stderr=b"", returncode=0, responder=None, delay=0.0):
        self.stdout = FakeReader(stdout)
        self.stderr = FakeReader(stderr)
        self.stdin = FakeWriter(self)
        self.returncode = returncode
        self.responder = responder
        self.delay = delay

    def on_input(self, data: bytes) -> None:
        if self.responder:
            self.responder(self, data)

    def on_eof(self) -> None:
        self.stdout.feed_eof()
        self.stderr.feed_eof()

    async def wait(self):
        return self

    async def __aenter__(self) -> "FakeProcess":
        if self.delay:
            await asyncio.sleep(self.delay)
        return self

    async def __aexit__(self, *exc) -> None:
        return None


class FakeSFTPFile:
    def __init__(self, sftp: "FakeSFTP", path: str, mode: str):
        self._sftp = sftp
        self._path = path
        self._offset = 0
        if "w" in mode:
            sftp.files[path] = b""

    async def write(self, data: bytes) -> None:
        self._sftp.files[self._path] += data
        self._sftp.writes += 1

    async def read(self, n: int = -1) -> bytes:
        content = self._sftp.files[self._path]
        end = len(content) if n < 0 else self._offset + n
        data = content[self._offset:end]
        self._offset += len(data)
        return data

    async def __aenter__(self) -> "FakeSFTPFile":
        return self

    async def __aexit__(self, *exc) -> None:
        return None


class FakeSFTP:
    """In-memory remote filesystem."""

    def __init__(self, files=None, dirs=None, read_only=False):
        self.files: dict[str, bytes] = dict(files or {})
        self.dirs: set[str] = set(dirs or ())
        self.modes: dict[str, int] = {}
        self.recursive: list[tuple[str, str, str]] = []
        self.read_only = read_only
        self.writes = 0

    def open(self, path: str, mode: str = "rb") -> FakeSFTPFile:
        if "w" in mode and self.read_only:
            raise asyncssh.SFTPPermissionDenied("Permission denied")
        if "r" in mode and path not in self.files:
            raise asyncssh.SFTPNoSuchFile("No such file")
        return FakeSFTPFile(self, path, mode)

    async def chmod(self, path: str, mode: int) -> None:
        self.modes[path] = mode

    async def isdir(self, path: str) -> bool:
        return path in self.dirs

    async def put(self, local, remote, recurse=False, preserve=False) -> None:
        self.recursive.append(("put", local, remote))

    async def get(self, remote, local, recurse=False, preserve=False) -> None:
        self.recursive.append(("get", remote, local))

    async def __aenter__(self) -> "FakeSFTP":
        return self

    async def __aexit__(self, *exc) -> None:
        return None


class FakeConnection:
    """Stands in for komandan.connection.Connection.

    ``factory(command)`` returns the FakeProcess for each command; by
    default every command succeeds silently.
    """

    def __init__(self, factory=None, sftp: FakeSFTP | None = None, label: str = "fake-host"):
        self.label = label
        self.factory = factory or (lambda command: FakeProcess())
        self.sftp = sftp or FakeSFTP()
        self.commands: list[str] = []
        self.envs: list = []
        self.term_types: list = []
        self.closed = False

    def create_process(self, command, env=None, term_type=None):
        self.commands.append(command)
        self.envs.append(env)
        self.term_types.append(term_type)
        return self.factory(command)

    def start_sftp_client(self) -> FakeSFTP:
        return self.sftp

    async def close(self) -> None:
        self.closed = True


class FakeNetwork:
    """Replaces open_connection: every host answers through a FakeConnection.

    ``behaviour(address, command)`` returns a FakeProcess; raising from it
    simulates a channel failure. Addresses in ``unreachable`` fail to connect.
    """

    def __init__(self, behaviour=None, unreachable=()):
        self.behaviour = behaviour or (lambda address, command: FakeProcess(stdout=f"{address}\n".encode()))
        self.unreachable = set(unreachable)
        self.connections: list[FakeConnection] = []
        self.targets = []
        self.threads: set[str] = set()
        self._lock = threading.Lock()

    @asynccontextmanager
    async def open_connection(self, target):
        with self._lock:
            self.targets.append(target)
            self.threads.add(threading.current_thread().name)
        if target.address in self.unreachable:
            raise ConnectionError(ConnectionStage.CONNECT, "Connection refused", host=target.label)
        conn = FakeConnection(lambda command: self.behaviour(target.address, command), label=target.label)
        with self._lock:
            self.connections.append(conn)
        try:
            yield conn
        finally:
            await conn.close()

    def patch(self):
        return patch("komandan.scheduler.open_connection", new=self.open_connection)


@pytest.fixture
def defaults():
    """Deterministic defaults that ignore the test runner's environment."""
    return Defaults(known_hosts_file="/nonexistent/known_hosts", parallelism=4)


@pytest.fixture(autouse=True)
def _reset_komandan_logger():
    """configure_logging stops propagation; restore it so caplog sees records."""
    yield
    logger = logging.getLogger("komandan")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)

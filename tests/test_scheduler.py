"""Tests for unit execution and batch scheduling."""

import time

import pytest

from conftest import FakeNetwork, FakeProcess
from komandan.exceptions import (
    ConnectionError,
    ConnectionStage,
    ExecutionTimeout,
    MissingField,
    ModuleError,
    UnexpectedError,
)
from komandan.modules import Apt, Cmd, Template
from komandan.scheduler import (
    WORKER_THREAD_PREFIX,
    run_over_hosts,
    run_over_tasks,
    run_sequence,
    run_unit,
    run_unit_async,
)
from komandan.types import Host, Task


@pytest.fixture
def network():
    net = FakeNetwork()
    with net.patch():
        yield net


@pytest.fixture
def host():
    return Host(address="10.0.0.1", name="web01", user="deploy", password="pw")


class TestRunUnit:
    """Tests for a single unit of work."""

    def test_success(self, network, host, defaults):
        """Test resolving, connecting, running and closing."""
        unit = run_unit(host, Task("hostname"), defaults)

        assert unit.ok
        assert unit.host == "web01"
        assert unit.task == "cmd(cmd=hostname)"
        assert unit.result.stdout == "10.0.0.1\n"
        assert network.connections[0].closed

    def test_env_layers(self, network, defaults):
        """Test that defaults, host and task env reach the command, task winning."""
        host = Host(address="h", user="u", password="pw", env={"A": "host", "B": "host"})

        run_unit(host, Task("env", env={"B": "task"}), defaults)

        assert network.connections[0].commands == [
            "export DEBIAN_FRONTEND=noninteractive; export A=host; export B=task; env"
        ]

    def test_missing_field_in_slot(self, network, defaults):
        """Test that resolution errors are returned, not raised."""
        unit = run_unit(Host(address="h"), Task("id"), defaults)

        assert not unit.ok
        assert isinstance(unit.error, MissingField)
        assert unit.error.context.task == "cmd(cmd=id)"
        assert network.targets == []

    def test_connection_error_labelled(self, defaults, host):
        """Test that connection errors carry host and task labels."""
        with FakeNetwork(unreachable={"10.0.0.1"}).patch():
            unit = run_unit(host, Task("id", name="whoami"), defaults)

        assert unit.error.stage is ConnectionStage.CONNECT
        assert unit.error.context.host == "web01"
        assert unit.error.context.task == "whoami"

    def test_non_zero_exit(self, defaults, host):
        """Test that a failing command is a result, not an error."""
        with FakeNetwork(lambda a, c: FakeProcess(stderr=b"nope\n", returncode=2)).patch():
            unit = run_unit(host, Task("false"), defaults)

        assert unit.error is None
        assert unit.result.exit_code == 2
        assert not unit.ok

    def test_ignore_exit_code(self, defaults, host):
        """Test that ignore_exit_code makes a failing command ok."""
        with FakeNetwork(lambda a, c: FakeProcess(returncode=1)).patch():
            unit = run_unit(host, Task("grep x /etc/motd", ignore_exit_code=True), defaults)

        assert unit.ok
        assert unit.result.exit_code == 1

    def test_timeout(self, defaults, host):
        """Test that the deadline ends the unit with ExecutionTimeout."""
        with FakeNetwork(lambda a, c: FakeProcess(delay=5)).patch():
            started = time.monotonic()
            unit = run_unit(host, Task("sleep 5"), defaults, timeout=0.1)

        assert isinstance(unit.error, ExecutionTimeout)
        assert unit.error.timeout == 0.1
        assert time.monotonic() - started < 2

    def test_module_error_in_slot(self, network, host, defaults):
        """Test that a single unit records invalid module parameters."""
        unit = run_unit(host, Task(Apt(action="purge")), defaults)

        assert isinstance(unit.error, ModuleError)

    @pytest.mark.asyncio
    async def test_async(self, network, host, defaults):
        """Test running a unit inside an existing event loop."""
        unit = await run_unit_async(host, Task("hostname"), defaults)

        assert unit.result.stdout == "10.0.0.1\n"


class TestRunOverHosts:
    """Tests for fan-out over hosts."""

    def hosts(self, n):
        return [Host(address=f"10.0.0.{i}", name=f"h{i}", user="u", password="pw") for i in range(1, n + 1)]

    def test_results_in_host_order(self, defaults):
        """Test one slot per host in input order, whatever finishes first."""
        def behaviour(address, command):
            delay = 0.2 if address.endswith(".1") else 0.0
            return FakeProcess(stdout=address.encode(), delay=delay)

        with FakeNetwork(behaviour).patch():
            units = run_over_hosts(self.hosts(4), Task("hostname"), defaults)

        assert [u.host for u in units] == ["h1", "h2", "h3", "h4"]
        assert [u.result.stdout for u in units] == ["10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.0.4"]

    def test_runs_on_worker_threads(self, network, defaults):
        """Test that units run on the named worker pool."""
        run_over_hosts(self.hosts(3), Task("hostname"), defaults)

        assert network.threads
        assert all(name.startswith(WORKER_THREAD_PREFIX) for name in network.threads)

    def test_concurrent(self, defaults):
        """Test that hosts run at the same time."""
        with FakeNetwork(lambda a, c: FakeProcess(delay=0.3)).patch():
            started = time.monotonic()
            run_over_hosts(self.hosts(4), Task("sleep"), defaults, parallelism=4)

        assert time.monotonic() - started < 1.0

    def test_failures_isolated(self, defaults):
        """Test that one unreachable host does not affect the others."""
        hosts = self.hosts(3) + [Host(address="10.0.0.9", name="nouser")]
        with FakeNetwork(unreachable={"10.0.0.2"}).patch():
            units = run_over_hosts(hosts, Task("hostname"), defaults)

        assert [u.ok for u in units] == [True, False, True, False]
        assert isinstance(units[1].error, ConnectionError)
        assert isinstance(units[3].error, MissingField)

    def test_unexpected_exception_isolated(self, defaults):
        """Test that an unclassified exception fails only its own slot."""
        def behaviour(address, command):
            if address == "10.0.0.2":
                raise RuntimeError("driver bug")
            return FakeProcess(stdout=b"ok\n")

        with FakeNetwork(behaviour).patch():
            units = run_over_hosts(self.hosts(3), Task("hostname"), defaults)

        assert [u.ok for u in units] == [True, False, True]
        assert isinstance(units[1].error, UnexpectedError)
        assert isinstance(units[1].error.__cause__, RuntimeError)
        assert "RuntimeError: driver bug" in str(units[1].error)
        assert units[1].error.to_dict()["host"] == "h2"

    def test_module_error_raised_before_connecting(self, network, defaults):
        """Test that invalid module parameters fail the whole call early."""
        with pytest.raises(ModuleError):
            run_over_hosts(self.hosts(2), Task(Cmd()), defaults)

        assert network.targets == []

    def test_empty(self, network, defaults):
        """Test an empty host list."""
        assert run_over_hosts([], Task("id"), defaults) == []


class TestRunOverTasks:
    """Tests for fan-out over tasks on one host."""

    def test_results_in_task_order(self, host, defaults):
        """Test that slots follow the task order even when completion differs."""
        def behaviour(address, command):
            name = command.rsplit("; ", 1)[-1]
            delay = {"slow": 0.3, "medium": 0.15}.get(name, 0.0)
            return FakeProcess(stdout=name.encode(), delay=delay)

        with FakeNetwork(behaviour).patch():
            units = run_over_tasks(host, [Task("slow"), Task("medium"), Task("fast")], defaults)

        assert [u.result.stdout for u in units] == [
            "slow",
            "medium",
            "fast",
        ]

    def test_one_connection_per_task(self, network, host, defaults):
        """Test that tasks never share a session."""
        run_over_tasks(host, [Task("a"), Task("b"), Task("c")], defaults)

        assert len(network.connections) == 3
        assert all(len(conn.commands) == 1 for conn in network.connections)

    def test_undecodable_template_in_slot(self, network, host, defaults, tmp_path):
        """Test that a template that is not UTF-8 fails its slot, not the batch."""
        src = tmp_path / "motd.j2"
        src.write_bytes("Bienvenue \xe0 {{ name }}\n".encode("latin-1"))

        units = run_over_tasks(
            host,
            [Task("echo hi"), Task(Template(src=str(src), dst="/etc/motd", vars={"name": "web01"}))],
            defaults,
        )

        assert len(units) == 2
        assert units[0].ok
        assert isinstance(units[1].error, ModuleError)
        assert "not valid UTF-8" in str(units[1].error)

    def test_missing_field_raised(self, network, defaults):
        """Test that an unresolvable host fails the call."""
        with pytest.raises(MissingField):
            run_over_tasks(Host(address="h"), [Task("a")], defaults)

    def test_module_error_raised(self, network, host, defaults):
        """Test that any invalid task fails the call before connecting."""
        with pytest.raises(ModuleError):
            run_over_tasks(host, [Task("a"), Task(Apt())], defaults)

        assert network.targets == []


class TestRunSequence:
    """Tests for ordered task lists."""

    def test_stops_after_failure(self, host, defaults):
        """Test that tasks after a failed one are not run."""
        def behaviour(address, command):
            return FakeProcess(returncode=1 if command.endswith("two") else 0)

        network = FakeNetwork(behaviour)
        with network.patch():
            units = run_sequence(host, [Task("one"), Task("two"), Task("three")], defaults)

        assert len(units) == 2
        assert units[0].ok
        assert not units[1].ok
        assert len(network.connections) == 2

    def test_ignored_failure_continues(self, host, defaults):
        """Test that an ignored exit code does not stop the sequence."""
        with FakeNetwork(lambda a, c: FakeProcess(returncode=1)).patch():
            units = run_sequence(host, [Task("one", ignore_exit_code=True), Task("two")], defaults)

        assert len(units) == 2

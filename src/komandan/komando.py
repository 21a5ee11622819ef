"""Front-end entry points.

These are the calls a script makes. Each takes a snapshot of the
process-wide defaults when it starts; set defaults before calling.

Example:
    >>> from komandan import Host, Task, komando
    >>> from komandan.modules import Apt
    >>> host = Host(address="10.0.0.5", user="deploy", private_key_file="~/.ssh/id_ed25519")
    >>> result = komando(host, Task(Apt(package="nginx"), elevate=True))
    >>> result.exit_code
    0
"""

import asyncio
from typing import Sequence

from .defaults import DEFAULTS
from .modules import Module
from .scheduler import run_over_hosts, run_over_tasks, run_sequence, run_unit, run_unit_async
from .types import ExecutionResult, Host, Task, UnitResult

TaskLike = Task | Module | str


def as_task(task: TaskLike) -> Task:
    """Accept a Task, a bare module or a command string."""
    if isinstance(task, Task):
        return task
    return Task(task)


def komando(host: Host, task: TaskLike, timeout: float | None = None) -> ExecutionResult:
    """Run a task on a host and return its result.

    A non-zero exit code is returned, not raised.

    Raises:
        MissingField: If the host is under-specified
        ModuleError: If the module parameters are invalid
        ConnectionError: If the session cannot be established
        ElevationError: If elevation is denied
        TransferError: If a file transfer fails
        ExecutionTimeout: If the timeout expires
    """
    return run_unit(host, as_task(task), DEFAULTS.snapshot(), timeout).unwrap()


async def komando_async(host: Host, task: TaskLike, timeout: float | None = None) -> ExecutionResult:
    """Async version of komando for callers already in an event loop."""
    unit = await run_unit_async(host, as_task(task), DEFAULTS.snapshot(), timeout)
    return unit.unwrap()


def komando_parallel_hosts(
    hosts: Sequence[Host],
    task: TaskLike,
    timeout: float | None = None,
    parallelism: int | None = None,
) -> list[UnitResult]:
    """Run a task on many hosts concurrently; one result slot per host, in order."""
    return run_over_hosts(list(hosts), as_task(task), DEFAULTS.snapshot(), timeout, parallelism)


def komando_parallel_tasks(
    host: Host,
    tasks: Sequence[TaskLike],
    timeout: float | None = None,
    parallelism: int | None = None,
) -> list[UnitResult]:
    """Run many tasks on one host concurrently; results follow the task order."""
    return run_over_tasks(host, [as_task(t) for t in tasks], DEFAULTS.snapshot(), timeout, parallelism)


def komando_sequence(host: Host, tasks: Sequence[TaskLike], timeout: float | None = None) -> list[UnitResult]:
    """Run tasks in order on one host, stopping after the first failed unit."""
    return run_sequence(host, [as_task(t) for t in tasks], DEFAULTS.snapshot(), timeout)


async def komando_parallel_hosts_async(
    hosts: Sequence[Host],
    task: TaskLike,
    timeout: float | None = None,
    parallelism: int | None = None,
) -> list[UnitResult]:
    """Async version of komando_parallel_hosts; the batch runs on worker threads."""
    return await asyncio.to_thread(komando_parallel_hosts, hosts, task, timeout, parallelism)


async def komando_parallel_tasks_async(
    host: Host,
    tasks: Sequence[TaskLike],
    timeout: float | None = None,
    parallelism: int | None = None,
) -> list[UnitResult]:
    """Async version of komando_parallel_tasks; the batch runs on worker threads."""
    return await asyncio.to_thread(komando_parallel_tasks, host, tasks, timeout, parallelism)


async def komando_sequence_async(
    host: Host,
    tasks: Sequence[TaskLike],
    timeout: float | None = None,
) -> list[UnitResult]:
    """Async version of komando_sequence."""
    return await asyncio.to_thread(komando_sequence, host, tasks, timeout)

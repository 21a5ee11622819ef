"""Unit execution and batch scheduling.

A unit is one (host, task) pair: resolve the host, compile the module,
open a connection, execute the plan, close the connection. Batches run
units on a pool of worker threads, each unit driving its own event loop
with ``asyncio.run`` and owning its own connection, so a slow or hung
host only ties up its own worker.

Every batch reads a single Defaults snapshot taken before fan-out.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

from .connection import open_connection
from .defaults import DEFAULTS, Defaults
from .exceptions import ExecutionTimeout, KomandanError, UnexpectedError
from .executor import execute_plan
from .logging import get_logger, log_scope
from .plan import ActionPlan
from .resolver import merge_env, resolve_elevation, resolve_host, resolve_ignore_exit_code
from .types import ExecutionResult, Host, ResolvedHost, Task, UnitResult

logger = logging.getLogger(__name__)

WORKER_THREAD_PREFIX = "komandan-worker"


async def _run_plan(target: ResolvedHost, task: Task, plan: ActionPlan, defaults: Defaults) -> ExecutionResult:
    env = merge_env(target.env, task.env)
    elevation = resolve_elevation(target, task)
    async with open_connection(target) as conn:
        return await execute_plan(conn, plan, env=env, elevation=elevation, env_forwarding=defaults.env_forwarding)


async def run_unit_async(
    host: Host,
    task: Task,
    defaults: Defaults | None = None,
    timeout: float | None = None,
) -> UnitResult:
    """Run one task on one host.

    Errors never escape: every KomandanError is recorded in the returned
    UnitResult, labelled with the host and task. Any other exception is
    recorded as an UnexpectedError.

    Args:
        host: Target host
        task: Task to run
        defaults: Defaults snapshot (current process-wide defaults if None)
        timeout: Deadline for the whole unit in seconds, connection included

    Returns:
        The unit's result slot
    """
    defaults = defaults if defaults is not None else DEFAULTS.snapshot()
    host_label = host.label
    log = get_logger(__name__, host=host_label, task=task.label)

    try:
        target = resolve_host(host, defaults)
        host_label = target.label
        log = log.bind(host=host_label)
        plan = task.module.compile()

        with log.performance("Unit", level=logging.DEBUG):
            if timeout is None:
                result = await _run_plan(target, task, plan, defaults)
            else:
                try:
                    result = await asyncio.wait_for(_run_plan(target, task, plan, defaults), timeout=timeout)
                except asyncio.TimeoutError:
                    raise ExecutionTimeout(timeout) from None
    except KomandanError as e:
        e.with_labels(host=host_label, task=task.label)
        log.warning(f"Unit failed: {e}")
        return UnitResult(host=host_label, task=task.label, error=e)
    except Exception as e:
        logger.exception(f"Unexpected error on {host_label} running {task.label}")
        error = UnexpectedError(e, host=host_label, task=task.label)
        error.__cause__ = e
        return UnitResult(host=host_label, task=task.label, error=error)

    log.info(f"Unit finished with exit code {result.exit_code}")
    return UnitResult(
        host=host_label,
        task=task.label,
        result=result,
        ignore_exit_code=resolve_ignore_exit_code(task, defaults),
    )


def run_unit(
    host: Host,
    task: Task,
    defaults: Defaults | None = None,
    timeout: float | None = None,
) -> UnitResult:
    """Blocking version of run_unit_async, driving its own event loop."""
    return asyncio.run(run_unit_async(host, task, defaults, timeout))


def _pool_size(defaults: Defaults, parallelism: int | None, units: int) -> int:
    return max(1, min(parallelism or defaults.parallelism, units))


def run_over_hosts(
    hosts: Sequence[Host],
    task: Task,
    defaults: Defaults | None = None,
    timeout: float | None = None,
    parallelism: int | None = None,
) -> list[UnitResult]:
    """Run one task on many hosts concurrently.

    The module is compiled up front, so invalid parameters fail the call
    before any connection is attempted. Per-host failures, including a
    host that cannot be resolved, land in that host's slot.

    Args:
        hosts: Target hosts
        task: Task to run on each host
        defaults: Defaults snapshot (taken now from DEFAULTS if None)
        timeout: Per-unit deadline in seconds
        parallelism: Worker count (defaults.parallelism if None)

    Returns:
        One UnitResult per host, in the order of hosts

    Raises:
        ModuleError: If the task's module parameters are invalid
    """
    defaults = defaults if defaults is not None else DEFAULTS.snapshot()
    task.module.compile()
    if not hosts:
        return []

    workers = _pool_size(defaults, parallelism, len(hosts))
    with log_scope(logger, "Batch over hosts", level=logging.DEBUG, hosts=len(hosts), workers=workers):
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=WORKER_THREAD_PREFIX) as pool:
            futures = [pool.submit(run_unit, host, task, defaults, timeout) for host in hosts]
            return [future.result() for future in futures]


def run_over_tasks(
    host: Host,
    tasks: Sequence[Task],
    defaults: Defaults | None = None,
    timeout: float | None = None,
    parallelism: int | None = None,
) -> list[UnitResult]:
    """Run many tasks on one host concurrently, one connection per task.

    The host is resolved and every module compiled up front.

    Args:
        host: Target host
        tasks: Tasks to run
        defaults: Defaults snapshot (taken now from DEFAULTS if None)
        timeout: Per-unit deadline in seconds
        parallelism: Worker count (defaults.parallelism if None)

    Returns:
        One UnitResult per task, in the order of tasks regardless of
        completion order

    Raises:
        MissingField: If the host cannot be resolved
        ModuleError: If any task's module parameters are invalid
    """
    defaults = defaults if defaults is not None else DEFAULTS.snapshot()
    resolve_host(host, defaults)
    for task in tasks:
        task.module.compile()
    if not tasks:
        return []

    workers = _pool_size(defaults, parallelism, len(tasks))
    with log_scope(logger, "Batch over tasks", level=logging.DEBUG, host=host.label, tasks=len(tasks)):
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=WORKER_THREAD_PREFIX) as pool:
            futures = [pool.submit(run_unit, host, task, defaults, timeout) for task in tasks]
            return [future.result() for future in futures]


def run_sequence(
    host: Host,
    tasks: Sequence[Task],
    defaults: Defaults | None = None,
    timeout: float | None = None,
) -> list[UnitResult]:
    """Run tasks one after another on a host, stopping at the first failure.

    A unit fails when it errors or exits non-zero without
    ignore_exit_code. Each task gets its own connection.

    Returns:
        The results of the units that ran, in order
    """
    defaults = defaults if defaults is not None else DEFAULTS.snapshot()
    resolve_host(host, defaults)
    for task in tasks:
        task.module.compile()

    results = []
    for task in tasks:
        unit = run_unit(host, task, defaults, timeout)
        results.append(unit)
        if not unit.ok:
            logger.info(f"Stopping task list on {unit.host} after failed task: {unit.task}")
            break
    return results
